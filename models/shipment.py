"""
Shipment schemas.

A shipment is identified by its shipping number. Rows that could not be
matched to a line item allocation are parked in `suspected_products`
until the reconciliation pass consumes them.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from models.base import BaseSchema, SubRecord


class ShippingMode(str, Enum):
    """Canonical shipping modes."""
    AIR = "Air"
    SEA = "Sea"
    GROUND = "Ground"


def modes_match(left: Optional[str], right: Optional[str]) -> bool:
    """
    Case-insensitive mode comparison.

    Absent on either side is compatible; both present must be equal.
    """
    if not left or not right:
        return True
    return left.strip().lower() == right.strip().lower()


class SuspectedProduct(SubRecord):
    """A (sku, size, quantity) tuple awaiting reconciliation."""
    sku: str
    size_name: Optional[str] = None
    quantity: int = 0

    @property
    def key(self) -> tuple:
        return (self.sku, self.size_name, self.quantity)


class Shipment(BaseSchema):
    """Shipment as stored in shipments."""

    id: str
    shipping_number: str
    shipping_mode: Optional[str] = None
    ship_date: Optional[datetime] = None
    exfactory_date: Optional[datetime] = None
    eta: Optional[datetime] = None
    suspected_products: list[SuspectedProduct] = Field(default_factory=list)

    @classmethod
    def from_row(cls, row: dict) -> "Shipment":
        return cls(
            id=str(row["id"]),
            shipping_number=row["shipping_number"],
            shipping_mode=row.get("shipping_mode"),
            ship_date=row.get("ship_date"),
            exfactory_date=row.get("exfactory_date"),
            eta=row.get("eta"),
            suspected_products=row.get("suspected_products") or [],
        )

    @property
    def sort_date(self) -> Optional[datetime]:
        """Date used to break reconciliation ties."""
        return self.exfactory_date or self.ship_date

    def find_suspected(self, sku: str, size_name: Optional[str], quantity: int) -> int:
        """Index of the suspected entry with this key, or -1."""
        for index, entry in enumerate(self.suspected_products):
            if entry.key == (sku, size_name, quantity):
                return index
        return -1

    def upsert_suspected(self, entry: SuspectedProduct) -> bool:
        """
        Insert or replace the suspected entry keyed by (sku, size_name, quantity).

        Returns:
            True if a new entry was added, False if an existing one was replaced
        """
        entries = list(self.suspected_products)
        index = self.find_suspected(entry.sku, entry.size_name, entry.quantity)
        if index >= 0:
            entries[index] = entry
            self.suspected_products = entries
            return False
        entries.append(entry)
        self.suspected_products = entries
        return True

    def remove_suspected(self, indexes: set[int]) -> list[SuspectedProduct]:
        """Drop entries at `indexes`; returns the removed entries."""
        removed = [e for i, e in enumerate(self.suspected_products) if i in indexes]
        self.suspected_products = [
            e for i, e in enumerate(self.suspected_products) if i not in indexes
        ]
        return removed

    def suspected_payload(self) -> list[dict]:
        return [
            entry.model_dump(mode="json", exclude_none=True)
            for entry in self.suspected_products
        ]
