"""
Purchase order and product schemas (read-only lookups for the importer).
"""

from typing import Optional

from models.base import BaseSchema


class PurchaseOrder(BaseSchema):
    """Purchase order referenced by its human-readable PO number."""
    id: str
    po_number: str
    status: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "PurchaseOrder":
        return cls(id=str(row["id"]), po_number=row["po_number"], status=row.get("status"))


class Product(BaseSchema):
    """Product referenced by SKU."""
    id: str
    sku: str
    name: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "Product":
        return cls(id=str(row["id"]), sku=row["sku"], name=row.get("name"))
