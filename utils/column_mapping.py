"""
Column mapping for imported spreadsheet rows.

The only place that interprets the raw row structurally. A column mapping
maps spreadsheet column headers to logical field names:

    {"Client Po #": "POName", "Item": "SKU", "Qty": "quantity"}
"""

from typing import Any, Mapping, Optional

from config.shipping import COLUMN_NAME_VARIANTS


def _present(row: Mapping[str, Any], key: str) -> bool:
    if key not in row:
        return False
    value = row[key]
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def get_column_for_field(
    column_mapping: Optional[Mapping[str, str]],
    logical_field: str,
) -> Optional[str]:
    """
    Find the spreadsheet column mapped to a logical field.

    Args:
        column_mapping: Spreadsheet column -> logical field
        logical_field: e.g. "SKU"

    Returns:
        Column header, or None if the field is not mapped
    """
    if not column_mapping:
        return None
    for column, mapped_field in column_mapping.items():
        if mapped_field == logical_field:
            return column
    return None


def get_mapped_value(
    row: Mapping[str, Any],
    logical_field: str,
    column_mapping: Optional[Mapping[str, str]] = None,
) -> Optional[Any]:
    """
    Resolve a logical field's value in a raw row.

    Order: the mapped column, then the logical name itself, then the
    known header variants for that field. Blank strings count as absent.

    Examples:
        >>> get_mapped_value({"Qty": 5}, "quantity", {"Qty": "quantity"})
        5
        >>> get_mapped_value({"Client Po": "PO-1"}, "POName", {})
        'PO-1'
    """
    column = get_column_for_field(column_mapping, logical_field)
    if column and _present(row, column):
        return row[column]

    if _present(row, logical_field):
        return row[logical_field]

    for variant in COLUMN_NAME_VARIANTS.get(logical_field, []):
        if _present(row, variant):
            return row[variant]

    return None


def get_mapped_text(
    row: Mapping[str, Any],
    logical_field: str,
    column_mapping: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """Like get_mapped_value but stringified and stripped."""
    value = get_mapped_value(row, logical_field, column_mapping)
    if value is None:
        return None
    # Spreadsheet readers turn "1001" into 1001.0
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None
