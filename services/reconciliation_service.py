"""
End-of-job reconciliation for size-pricing rows.

Runs once per job after its last row is processed. Multi-size
allocations that could not be matched row by row are bound to a shipment
whose suspected_products covers every size in the allocation; the
consumed suspected entries are removed and the rows that produced them
promoted to success. Parked rows left over afterwards fail.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

import structlog

from models.import_data import RowStatus
from models.line_item import LineItem, ShipmentAllocation
from models.notification import Notification, WebhookOperation
from models.shipment import Shipment
from services.entity_store import EntityStore, get_entity_store
from services.import_data_service import ImportDataService, get_import_data_service
from services.shipment_matcher import bind_allocation
from exceptions import EntityWriteError, ShipmentAllocationGrewError
from utils.column_mapping import get_mapped_text
from utils.date_utils import parse_date

logger = structlog.get_logger(__name__)


@dataclass
class AllocationBinding:
    line_item_id: str
    allocation_index: int
    shipment_id: str


@dataclass
class ReconciliationResult:
    bindings: list[AllocationBinding] = field(default_factory=list)
    promoted_rows: int = 0
    failed_rows: int = 0
    notifications: list[Notification] = field(default_factory=list)


def match_allocation_sizes(
    line_item: LineItem,
    allocation: ShipmentAllocation,
    shipment: Shipment,
    consumed: set[int],
) -> Optional[dict[str, int]]:
    """
    Map each size of `allocation` to an unconsumed suspected entry on `shipment`.

    An entry qualifies when its sku is the size's csm_sku on the line
    item and its size name and quantity equal the allocation's. A mode on
    the allocation must equal the shipment's mode.

    Returns:
        {size_name: suspected index}, or None if any size is uncovered
    """
    if allocation.shipping_mode:
        if not shipment.shipping_mode:
            return None
        if allocation.shipping_mode.strip().lower() != shipment.shipping_mode.strip().lower():
            return None

    picks: dict[str, int] = {}
    for size in allocation.size_breakdown:
        csm_sku = line_item.csm_sku_for_size(size.size_name)
        if not csm_sku:
            return None
        taken = consumed | set(picks.values())
        index = next(
            (
                i for i, entry in enumerate(shipment.suspected_products)
                if i not in taken
                and entry.sku == csm_sku
                and entry.size_name == size.size_name
                and entry.quantity == size.quantity
            ),
            None,
        )
        if index is None:
            return None
        picks[size.size_name] = index
    return picks


def choose_candidate(
    candidates: list[tuple[Shipment, dict[str, int]]],
) -> tuple[Shipment, dict[str, int]]:
    """
    Earliest exfactory (else ship) date wins; undated shipments go last.

    Equal dates keep candidate order.
    """
    def sort_key(candidate: tuple[Shipment, dict[str, int]]):
        parsed: Optional[datetime] = parse_date(candidate[0].sort_date)
        return (parsed is None, parsed.timestamp() if parsed else 0.0)

    return sorted(candidates, key=sort_key)[0]


class ReconciliationService:
    """Binds multi-size allocations to shipments after a job drains."""

    def __init__(
        self,
        store: Optional[EntityStore] = None,
        import_data_service: Optional[ImportDataService] = None,
    ):
        self.store = store or get_entity_store()
        self.import_data = import_data_service or get_import_data_service()

    def _load_shipments(self, shipment_ids: Iterable[str]) -> list[Shipment]:
        shipments = []
        for shipment_id in sorted(set(shipment_ids)):
            row = self.store.get("Shipment", shipment_id)
            if row is None:
                logger.warning("reconciliation_shipment_missing", shipment_id=shipment_id)
                continue
            shipments.append(Shipment.from_row(row))
        return shipments

    def _persist_line_item(self, line_item: LineItem, count_before: int) -> Notification:
        if len(line_item.shipments) > count_before:
            raise ShipmentAllocationGrewError(line_item.id, count_before, len(line_item.shipments))
        payload = {"shipments": line_item.shipments_payload()}
        result = self.store.update("lineItem", line_item.id, payload)
        if not result.success:
            raise EntityWriteError("lineItem", "update", result.message or "Failed to update line item", result.errors)
        return Notification(
            entity_type="lineItem",
            operation=WebhookOperation.PUT,
            payload=payload,
            entity_id=line_item.id,
            response_meta={"id": line_item.id},
        )

    def _persist_shipment(self, shipment: Shipment) -> Notification:
        payload = {"suspected_products": shipment.suspected_payload()}
        result = self.store.update("Shipment", shipment.id, payload)
        if not result.success:
            raise EntityWriteError("Shipment", "update", result.message or "Failed to update shipment", result.errors)
        return Notification(
            entity_type="Shipment",
            operation=WebhookOperation.PUT,
            payload=payload,
            entity_id=shipment.id,
            response_meta={"id": shipment.id},
        )

    def reconcile(
        self,
        import_data_id: str,
        column_mapping: Optional[dict[str, str]],
        line_item_ids: Iterable[str],
        shipment_ids: Iterable[str],
    ) -> ReconciliationResult:
        """
        Reconcile one job's parked size-pricing rows.

        Args:
            import_data_id: Job whose rows are promoted or failed
            column_mapping: Job column mapping, used to read row SKUs
            line_item_ids: Size-pricing line items touched by the job
            shipment_ids: Shipments touched by the job
        """
        outcome = ReconciliationResult()
        shipments = self._load_shipments(shipment_ids)
        consumed: dict[str, set[int]] = {shipment.id: set() for shipment in shipments}

        logger.info(
            "reconciliation_started",
            import_data_id=import_data_id,
            line_items=len(set(line_item_ids)),
            shipments=len(shipments),
        )

        for line_item_id in sorted(set(line_item_ids)):
            row = self.store.get("lineItem", line_item_id)
            if row is None:
                logger.warning("reconciliation_line_item_missing", line_item_id=line_item_id)
                continue
            line_item = LineItem.from_row(row)
            count_before = len(line_item.shipments)
            changed = False

            for index, allocation in enumerate(line_item.shipments):
                if not allocation.has_size_breakdown or allocation.is_bound:
                    continue

                candidates = []
                for shipment in shipments:
                    picks = match_allocation_sizes(line_item, allocation, shipment, consumed[shipment.id])
                    if picks is not None:
                        candidates.append((shipment, picks))
                if not candidates:
                    continue

                shipment, picks = choose_candidate(candidates)
                line_item.replace_allocation(index, bind_allocation(allocation, shipment))
                consumed[shipment.id].update(picks.values())
                changed = True
                outcome.bindings.append(AllocationBinding(line_item.id, index, shipment.id))
                logger.info(
                    "allocation_reconciled",
                    line_item_id=line_item.id,
                    allocation_index=index,
                    shipment_id=shipment.id,
                    candidates=len(candidates),
                )

            if changed:
                outcome.notifications.append(self._persist_line_item(line_item, count_before))

        # (shipment id, sku) pairs whose suspected entries were consumed
        resolved: set[tuple[str, str]] = set()
        for shipment in shipments:
            indexes = consumed[shipment.id]
            if not indexes:
                continue
            removed = shipment.remove_suspected(indexes)
            resolved.update((shipment.id, entry.sku) for entry in removed)
            outcome.notifications.append(self._persist_shipment(shipment))

        self._settle_rows(import_data_id, column_mapping, shipments, resolved, outcome)

        logger.info(
            "reconciliation_complete",
            import_data_id=import_data_id,
            bound=len(outcome.bindings),
            promoted=outcome.promoted_rows,
            failed=outcome.failed_rows,
        )
        return outcome

    def _settle_rows(
        self,
        import_data_id: str,
        column_mapping: Optional[dict[str, str]],
        shipments: list[Shipment],
        resolved: set[tuple[str, str]],
        outcome: ReconciliationResult,
    ) -> None:
        """Promote parked rows whose suspected entry was consumed; fail the rest."""
        parked = self.import_data.get_all_rows(import_data_id, status=RowStatus.PENDING_RECONCILIATION)
        if not parked:
            return

        names = {shipment.id: shipment.shipping_number for shipment in shipments}
        promoted: dict[str, list[str]] = {}
        leftovers = []
        for row in parked:
            sku = get_mapped_text(row.data, "SKU", column_mapping)
            if row.shipment_id and (row.shipment_id, sku) in resolved:
                promoted.setdefault(row.shipment_id, []).append(row.id)
            else:
                leftovers.append((row, sku))

        for shipment_id, row_ids in promoted.items():
            outcome.promoted_rows += self.import_data.set_rows_status(
                row_ids,
                RowStatus.SUCCESS,
                message=f"Reconciled with shipment {names.get(shipment_id, shipment_id)}",
                only_from=RowStatus.PENDING_RECONCILIATION,
            )

        for row, sku in leftovers:
            shipping_number = get_mapped_text(row.data, "shippingNumber", column_mapping)
            outcome.failed_rows += self.import_data.set_rows_status(
                [row.id],
                RowStatus.FAILURE,
                error=f"No suspected products found to reconcile SKU {sku} on shipment {shipping_number}",
                only_from=RowStatus.PENDING_RECONCILIATION,
            )


# Singleton instance
_reconciliation_service: Optional[ReconciliationService] = None


def get_reconciliation_service() -> ReconciliationService:
    """Get or create ReconciliationService instance."""
    global _reconciliation_service
    if _reconciliation_service is None:
        _reconciliation_service = ReconciliationService()
    return _reconciliation_service
