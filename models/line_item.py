"""
Line item schemas.

A line item links a purchase order to a product, or carries a size
breakdown whose entries are addressed by csm_sku. Shipment allocations
are embedded in the `shipments` JSONB column and are only ever updated
in place by the import pipeline.
"""

from datetime import datetime
from typing import Optional

from pydantic import Field

from models.base import BaseSchema, SubRecord


class SizeBreakdownEntry(SubRecord):
    """One size ordered on a line item."""
    size_name: str
    csm_sku: Optional[str] = None
    quantity: int = 0


class AllocationSize(SubRecord):
    """Quantity of one size inside a shipment allocation."""
    size_name: str
    quantity: int = 0


class ShipmentAllocation(SubRecord):
    """One shipment allocation entry on a line item."""
    shipment_id: Optional[str] = None
    shipment_name: Optional[str] = None
    quantity: int = 0
    shipping_mode: Optional[str] = None
    shipdate: Optional[datetime] = None
    size_breakdown: list[AllocationSize] = Field(default_factory=list)

    @property
    def has_size_breakdown(self) -> bool:
        return len(self.size_breakdown) > 0

    @property
    def is_bound(self) -> bool:
        """True once a shipment has been assigned to this allocation."""
        return bool(self.shipment_id)

    def size_quantity(self, size_name: str) -> Optional[int]:
        for size in self.size_breakdown:
            if size.size_name == size_name:
                return size.quantity
        return None


class LineItem(BaseSchema):
    """Line item as stored in line_items."""

    id: str
    po_id: Optional[str] = None
    product_id: Optional[str] = None
    status: Optional[str] = None
    quantity: Optional[int] = None
    size_breakdown: list[SizeBreakdownEntry] = Field(default_factory=list)
    shipments: list[ShipmentAllocation] = Field(default_factory=list)

    @classmethod
    def from_row(cls, row: dict) -> "LineItem":
        return cls(
            id=str(row["id"]),
            po_id=row.get("po_id"),
            product_id=row.get("product_id"),
            status=row.get("status"),
            quantity=row.get("quantity"),
            size_breakdown=row.get("size_breakdown") or [],
            shipments=row.get("shipments") or [],
        )

    def sizes_for_sku(self, sku: str) -> list[SizeBreakdownEntry]:
        """Size entries whose csm_sku equals `sku`, in breakdown order."""
        return [size for size in self.size_breakdown if size.csm_sku and size.csm_sku == sku]

    def csm_sku_for_size(self, size_name: str) -> Optional[str]:
        for size in self.size_breakdown:
            if size.size_name == size_name:
                return size.csm_sku
        return None

    def replace_allocation(self, index: int, allocation: ShipmentAllocation) -> None:
        """Overwrite the allocation at `index`; the list never grows."""
        if index < 0 or index >= len(self.shipments):
            raise IndexError(f"No shipment allocation at index {index} on line item {self.id}")
        allocations = list(self.shipments)
        allocations[index] = allocation
        self.shipments = allocations

    def shipments_payload(self) -> list[dict]:
        """JSON-ready shipments list for persistence."""
        return [
            allocation.model_dump(mode="json", exclude_none=True)
            for allocation in self.shipments
        ]
