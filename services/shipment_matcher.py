"""
Shipment matcher.

Binds a resolved row to one existing shipment allocation on its line
item. Allocations are only ever updated in place; a row that finds no
allocation is parked on the shipment's suspected_products instead.
"""

from dataclasses import dataclass, field
from typing import Optional

import structlog

from config import settings
from models.import_data import RowStatus
from models.line_item import LineItem, ShipmentAllocation
from models.notification import Notification, WebhookOperation
from models.shipment import Shipment, SuspectedProduct, modes_match
from services.entity_store import EntityStore, get_entity_store
from services.row_resolver import RowResolution
from exceptions import EntityWriteError, ShipmentAllocationGrewError

logger = structlog.get_logger(__name__)

UNMATCHED_DEFER = "defer"
UNMATCHED_FAIL = "fail"


@dataclass
class MatchResult:
    """Row outcome produced by the matcher."""
    status: RowStatus
    message: Optional[str] = None
    error: Optional[str] = None
    line_item_id: Optional[str] = None
    shipment_id: Optional[str] = None
    notifications: list[Notification] = field(default_factory=list)

    @property
    def deferred(self) -> bool:
        return self.status == RowStatus.PENDING_RECONCILIATION


def _claim_order(allocations: list[ShipmentAllocation], shipment: Shipment) -> list[int]:
    """
    Candidate indexes: allocations already bound to this shipment first,
    then unbound ones. Allocations bound elsewhere are never taken.
    """
    same = [
        i for i, a in enumerate(allocations)
        if a.is_bound and (a.shipment_id == shipment.id or a.shipment_name == shipment.shipping_number)
    ]
    unbound = [i for i, a in enumerate(allocations) if not a.is_bound]
    return same + unbound


def find_standard_allocation(
    line_item: LineItem,
    shipment: Shipment,
    quantity: int,
    shipping_mode: Optional[str],
) -> int:
    """Index of the size-less allocation matching quantity and mode, or -1."""
    for index in _claim_order(line_item.shipments, shipment):
        allocation = line_item.shipments[index]
        if allocation.has_size_breakdown:
            continue
        if allocation.quantity != quantity:
            continue
        if not modes_match(allocation.shipping_mode, shipping_mode):
            continue
        return index
    return -1


def find_size_allocation(
    line_item: LineItem,
    shipment: Shipment,
    size_name: str,
    quantity: int,
    shipping_mode: Optional[str],
) -> int:
    """Index of the single-size allocation for `size_name` with `quantity`, or -1."""
    for index in _claim_order(line_item.shipments, shipment):
        allocation = line_item.shipments[index]
        if len(allocation.size_breakdown) != 1:
            continue
        size = allocation.size_breakdown[0]
        if size.size_name != size_name or size.quantity != quantity:
            continue
        if not modes_match(allocation.shipping_mode, shipping_mode):
            continue
        return index
    return -1


def bind_allocation(allocation: ShipmentAllocation, shipment: Shipment) -> ShipmentAllocation:
    """Copy of `allocation` pointing at `shipment`."""
    return allocation.model_copy(update={
        "shipment_id": shipment.id,
        "shipment_name": shipment.shipping_number,
        "shipdate": shipment.ship_date or allocation.shipdate,
        "shipping_mode": shipment.shipping_mode or allocation.shipping_mode,
    })


class ShipmentMatcher:
    """Applies a RowResolution to line item allocations or suspected products."""

    def __init__(self, store: Optional[EntityStore] = None, unmatched_policy: Optional[str] = None):
        self.store = store or get_entity_store()
        self.unmatched_policy = unmatched_policy or settings.import_unmatched_policy

    # ===================
    # PERSISTENCE
    # ===================

    def save_allocations(self, line_item: LineItem, count_before: int) -> Notification:
        """
        Persist a line item's allocation list.

        Raises:
            ShipmentAllocationGrewError: The list would grow or did grow
            EntityWriteError: The update was rejected
        """
        if len(line_item.shipments) > count_before:
            raise ShipmentAllocationGrewError(line_item.id, count_before, len(line_item.shipments))

        payload = {"shipments": line_item.shipments_payload()}
        result = self.store.update("lineItem", line_item.id, payload)
        if not result.success:
            raise EntityWriteError("lineItem", "update", result.message or "Failed to update line item", result.errors)

        stored = (result.data or {}).get("shipments")
        if stored is not None and len(stored) > count_before:
            raise ShipmentAllocationGrewError(line_item.id, count_before, len(stored))

        return Notification(
            entity_type="lineItem",
            operation=WebhookOperation.PUT,
            payload=payload,
            entity_id=line_item.id,
            response_meta={"id": line_item.id},
        )

    def add_suspected(self, shipment: Shipment, entry: SuspectedProduct) -> Notification:
        """Upsert a suspected product on the freshest copy of the shipment."""
        current = self.store.get("Shipment", shipment.id)
        fresh = Shipment.from_row(current) if current else shipment
        added = fresh.upsert_suspected(entry)

        payload = {"suspected_products": fresh.suspected_payload()}
        result = self.store.update("Shipment", fresh.id, payload)
        if not result.success:
            raise EntityWriteError("Shipment", "update", result.message or "Failed to update shipment", result.errors)

        shipment.suspected_products = fresh.suspected_products
        logger.info(
            "suspected_product_recorded",
            shipment_id=fresh.id,
            sku=entry.sku,
            size_name=entry.size_name,
            quantity=entry.quantity,
            added=added,
        )
        return Notification(
            entity_type="Shipment",
            operation=WebhookOperation.PUT,
            payload=payload,
            entity_id=fresh.id,
            response_meta={"id": fresh.id},
        )

    # ===================
    # MATCHING
    # ===================

    def match(self, resolution: RowResolution) -> MatchResult:
        """
        Bind the row to an allocation, or record it as a suspected product.

        Returns:
            MatchResult with the row status and any webhook notifications
        """
        if resolution.is_size_pricing:
            return self._match_size(resolution)
        return self._match_standard(resolution)

    def _bind(self, line_item: LineItem, index: int, shipment: Shipment) -> Notification:
        count_before = len(line_item.shipments)
        line_item.replace_allocation(index, bind_allocation(line_item.shipments[index], shipment))
        notification = self.save_allocations(line_item, count_before)
        logger.info(
            "allocation_bound",
            line_item_id=line_item.id,
            allocation_index=index,
            shipment_id=shipment.id,
        )
        return notification

    def _match_standard(self, resolution: RowResolution) -> MatchResult:
        fields = resolution.fields
        line_item = resolution.line_item
        shipment = resolution.shipment

        index = find_standard_allocation(line_item, shipment, fields.quantity, fields.shipping_mode)
        if index >= 0:
            notification = self._bind(line_item, index, shipment)
            return MatchResult(
                status=RowStatus.SUCCESS,
                message=f"Successfully updated line item {line_item.id} with shipment {shipment.shipping_number}",
                line_item_id=line_item.id,
                shipment_id=shipment.id,
                notifications=[notification],
            )

        notification = self.add_suspected(
            shipment,
            SuspectedProduct(sku=fields.sku, quantity=fields.quantity),
        )
        reason = f"No shipment allocation on line item {line_item.id} matches quantity {fields.quantity}"
        if fields.shipping_mode:
            reason += f" and mode {fields.shipping_mode}"

        logger.info(
            "allocation_unmatched",
            line_item_id=line_item.id,
            shipment_id=shipment.id,
            policy=self.unmatched_policy,
        )

        if self.unmatched_policy == UNMATCHED_FAIL:
            return MatchResult(
                status=RowStatus.FAILURE,
                error=f"{reason}. Added to suspectedProducts on shipment {shipment.shipping_number}",
                line_item_id=line_item.id,
                shipment_id=shipment.id,
                notifications=[notification],
            )

        return MatchResult(
            status=RowStatus.SUCCESS,
            message=f"Added to suspectedProducts on shipment {shipment.shipping_number} ({reason})",
            line_item_id=line_item.id,
            shipment_id=shipment.id,
            notifications=[notification],
        )

    def _match_size(self, resolution: RowResolution) -> MatchResult:
        fields = resolution.fields
        line_item = resolution.line_item
        shipment = resolution.shipment
        size = resolution.matched_size

        index = find_size_allocation(line_item, shipment, size.size_name, fields.quantity, fields.shipping_mode)
        if index >= 0:
            notification = self._bind(line_item, index, shipment)
            return MatchResult(
                status=RowStatus.SUCCESS,
                message=(
                    f"Successfully updated size {size.size_name} on line item {line_item.id} "
                    f"with shipment {shipment.shipping_number}"
                ),
                line_item_id=line_item.id,
                shipment_id=shipment.id,
                notifications=[notification],
            )

        notification = self.add_suspected(
            shipment,
            SuspectedProduct(sku=fields.sku, size_name=size.size_name, quantity=fields.quantity),
        )
        return MatchResult(
            status=RowStatus.PENDING_RECONCILIATION,
            message=(
                f"Size {size.size_name} added to suspectedProducts on shipment "
                f"{shipment.shipping_number}; awaiting reconciliation"
            ),
            line_item_id=line_item.id,
            shipment_id=shipment.id,
            notifications=[notification],
        )


# Singleton instance
_shipment_matcher: Optional[ShipmentMatcher] = None


def get_shipment_matcher() -> ShipmentMatcher:
    """Get or create ShipmentMatcher instance."""
    global _shipment_matcher
    if _shipment_matcher is None:
        _shipment_matcher = ShipmentMatcher()
    return _shipment_matcher
