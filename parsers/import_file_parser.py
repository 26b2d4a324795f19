"""
Spreadsheet parser for shipment import uploads.

Reads a CSV or XLSX file into raw row dicts keyed by the original column
headers. No field interpretation happens here: the column mapper does
that at processing time.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from io import BytesIO
from pathlib import Path
from typing import Any, Optional, Union

import pandas as pd
import structlog

from exceptions import ImportFileParseError

logger = structlog.get_logger(__name__)

SUPPORTED_EXTENSIONS = (".csv", ".xlsx")


@dataclass
class ImportFileParseResult:
    """Parsed spreadsheet."""
    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    sheet_name: Optional[str] = None

    @property
    def has_data(self) -> bool:
        return len(self.rows) > 0


def _cell_value(value: Any) -> Any:
    """Convert a pandas cell to a JSON-storable value."""
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            return None
        return value.to_pydatetime().isoformat()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "item"):
        # numpy scalar
        return _cell_value(value.item())
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _extension(filename: str) -> str:
    return Path(filename).suffix.lower()


def parse_import_file(
    file: Union[str, Path, BytesIO],
    filename: str,
    sheet_name: Optional[str] = None,
) -> ImportFileParseResult:
    """
    Parse an import spreadsheet.

    Args:
        file: File path or file-like object
        filename: Original file name (extension picks the reader)
        sheet_name: Worksheet to read for Excel files, first sheet if None

    Returns:
        ImportFileParseResult with headers and one dict per non-empty row

    Raises:
        ImportFileParseError: Unsupported type, unreadable file or no rows
    """
    extension = _extension(filename)
    if extension not in SUPPORTED_EXTENSIONS:
        raise ImportFileParseError(
            message=f"Unsupported file type: {extension or 'none'}",
            details={"filename": filename, "supported": list(SUPPORTED_EXTENSIONS)}
        )

    logger.info("parsing_import_file", filename=filename, extension=extension)

    try:
        if extension == ".csv":
            frame = pd.read_csv(file, dtype=object, skip_blank_lines=True)
            used_sheet = None
        else:
            excel = pd.ExcelFile(file, engine="openpyxl")
            used_sheet = sheet_name or excel.sheet_names[0]
            if used_sheet not in excel.sheet_names:
                raise ImportFileParseError(
                    message=f"Sheet not found: {used_sheet}",
                    details={"filename": filename, "sheets": excel.sheet_names}
                )
            frame = pd.read_excel(excel, sheet_name=used_sheet, dtype=object)
    except ImportFileParseError:
        raise
    except Exception as e:
        logger.error("import_file_read_failed", filename=filename, error=str(e))
        raise ImportFileParseError(
            message="Failed to read import file",
            details={"filename": filename, "original_error": str(e)}
        )

    frame = frame.dropna(how="all")
    frame.columns = [str(column).strip() for column in frame.columns]
    columns = [column for column in frame.columns if not column.startswith("Unnamed:")]

    rows = []
    for record in frame[columns].to_dict(orient="records"):
        row = {column: _cell_value(value) for column, value in record.items()}
        if any(value is not None for value in row.values()):
            rows.append(row)

    if not rows:
        raise ImportFileParseError(
            message="Import file contains no data rows",
            details={"filename": filename}
        )

    logger.info("import_file_parsed", filename=filename, rows=len(rows), columns=len(columns))
    return ImportFileParseResult(columns=columns, rows=rows, sheet_name=used_sheet)
