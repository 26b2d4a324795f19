"""
Row resolver for the shipment import pipeline.

Turns one raw import row into exactly one
(purchase order, line item, size?, shipment) tuple, or raises a
RowProcessingError subclass whose message is written back to the row.

Resolution steps:
    1. Extract POName, SKU, shippingNumber, quantity (+ optional mode/dates)
    2. Purchase order by PO number (exactly one)
    3. Product by SKU -> line item join; unknown SKU -> size-pricing lookup
       by csm_sku inside line item size breakdowns
    4. Reject Invoiced/Delivered line items
    5. Shipment by shipping number: reuse + update, or create
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

import structlog

from config.shipping import BLOCKING_LINE_ITEM_STATUSES, REQUIRED_IMPORT_FIELDS
from models.base import PaginationParams
from models.line_item import LineItem, SizeBreakdownEntry
from models.notification import Notification, WebhookOperation
from models.purchase_order import Product, PurchaseOrder
from models.shipment import Shipment
from services.entity_store import EntityStore, get_entity_store
from exceptions import (
    AmbiguousSizeError,
    EntityWriteError,
    InvalidQuantityError,
    LineItemLockedError,
    LineItemNotFoundError,
    MissingFieldsError,
    MultipleLineItemsError,
    MultiplePurchaseOrdersError,
    MultipleProductsError,
    MultipleShipmentsError,
    PurchaseOrderNotFoundError,
    SizeSkuNotFoundError,
)
from utils.column_mapping import get_mapped_text, get_mapped_value
from utils.date_utils import compute_eta, format_shipping_mode, parse_date, today_utc

logger = structlog.get_logger(__name__)


@dataclass
class RowFields:
    """Logical fields extracted from a raw row."""
    po_name: str
    sku: str
    shipping_number: str
    quantity: int
    shipping_mode: Optional[str] = None
    ship_date: Optional[datetime] = None
    exfactory_date: Optional[datetime] = None


@dataclass
class RowResolution:
    """Everything the shipment matcher needs for one row."""
    fields: RowFields
    purchase_order: PurchaseOrder
    line_item: LineItem
    shipment: Shipment
    is_size_pricing: bool = False
    matched_size: Optional[SizeBreakdownEntry] = None
    shipment_created: bool = False
    notifications: list[Notification] = field(default_factory=list)


def parse_quantity(raw: Any) -> int:
    """
    Parse an imported quantity as an integer.

    Raises:
        InvalidQuantityError: Value is not a whole number
    """
    if isinstance(raw, bool):
        raise InvalidQuantityError(raw)
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        if raw.is_integer():
            return int(raw)
        raise InvalidQuantityError(raw)
    text = str(raw).strip().replace(",", "")
    try:
        return int(text)
    except ValueError:
        try:
            number = float(text)
        except ValueError:
            raise InvalidQuantityError(raw)
        if number.is_integer():
            return int(number)
        raise InvalidQuantityError(raw)


def extract_row_fields(row: Mapping[str, Any], column_mapping: Optional[Mapping[str, str]]) -> RowFields:
    """
    Pull the logical fields out of a raw row.

    Raises:
        MissingFieldsError: Any of POName, SKU, shippingNumber, quantity absent
        InvalidQuantityError: Quantity present but not a whole number
    """
    po_name = get_mapped_text(row, "POName", column_mapping) or get_mapped_text(row, "PONumber", column_mapping)
    sku = get_mapped_text(row, "SKU", column_mapping)
    shipping_number = get_mapped_text(row, "shippingNumber", column_mapping)
    raw_quantity = get_mapped_value(row, "quantity", column_mapping)

    missing = [
        name
        for name, value in zip(REQUIRED_IMPORT_FIELDS, (po_name, sku, shipping_number, raw_quantity))
        if value is None
    ]
    if missing:
        raise MissingFieldsError(missing)

    return RowFields(
        po_name=po_name,
        sku=sku,
        shipping_number=shipping_number,
        quantity=parse_quantity(raw_quantity),
        shipping_mode=format_shipping_mode(get_mapped_text(row, "shippingMode", column_mapping)),
        ship_date=parse_date(get_mapped_value(row, "shipDate", column_mapping)),
        exfactory_date=parse_date(get_mapped_value(row, "exfactoryDate", column_mapping)),
    )


class RowResolver:
    """Resolves import rows against purchase orders, products, line items and shipments."""

    def __init__(self, store: Optional[EntityStore] = None):
        self.store = store or get_entity_store()

    # ===================
    # LOOKUPS
    # ===================

    def find_purchase_order(self, po_name: str) -> PurchaseOrder:
        result = self.store.query("PO", {"po_number": po_name}, pagination=PaginationParams(page_size=10))
        if not result.data:
            raise PurchaseOrderNotFoundError(po_name)
        if len(result.data) > 1:
            raise MultiplePurchaseOrdersError(po_name, len(result.data))
        return PurchaseOrder.from_row(result.data[0])

    def find_product(self, sku: str) -> Optional[Product]:
        """Product for a SKU, None when the SKU is not a product (size-level SKU)."""
        result = self.store.query("Product", {"sku": sku}, pagination=PaginationParams(page_size=10))
        if not result.data:
            return None
        if len(result.data) > 1:
            raise MultipleProductsError(sku)
        return Product.from_row(result.data[0])

    def find_shipments(self, shipping_number: str) -> list[Shipment]:
        result = self.store.query(
            "Shipment",
            {"shipping_number": shipping_number},
            pagination=PaginationParams(page_size=10),
        )
        return [Shipment.from_row(row) for row in result.data]

    def find_product_line_item(self, po: PurchaseOrder, product: Product, fields: RowFields) -> LineItem:
        result = self.store.query(
            "lineItem",
            {"po_id": po.id, "product_id": product.id},
            pagination=PaginationParams(page_size=1000),
        )
        if not result.data:
            raise LineItemNotFoundError(fields.po_name, fields.sku)
        if len(result.data) > 1:
            raise MultipleLineItemsError(fields.po_name, fields.sku)
        return LineItem.from_row(result.data[0])

    def find_size_line_item(
        self,
        po: PurchaseOrder,
        fields: RowFields,
        target: Optional[Shipment],
    ) -> tuple[LineItem, SizeBreakdownEntry]:
        """
        Size-pricing lookup: the SKU names a size inside a line item.

        Prefers the line item whose size entry quantity equals the imported
        quantity, else the first line item carrying the SKU.
        """
        result = self.store.query(
            "lineItem",
            {"po_id": po.id, "size_breakdown": {"$contains": [{"csm_sku": fields.sku}]}},
            pagination=PaginationParams(page_size=1000),
        )
        candidates = [
            item for item in (LineItem.from_row(row) for row in result.data)
            if item.sizes_for_sku(fields.sku)
        ]
        if not candidates:
            raise SizeSkuNotFoundError(fields.po_name, fields.sku)

        chosen = next(
            (
                item for item in candidates
                if any(size.quantity == fields.quantity for size in item.sizes_for_sku(fields.sku))
            ),
            candidates[0],
        )

        return chosen, self.select_size(chosen, fields, target)

    def select_size(
        self,
        line_item: LineItem,
        fields: RowFields,
        target: Optional[Shipment],
    ) -> SizeBreakdownEntry:
        """
        Pick the size entry this row refers to.

        One size with the SKU is used as is. Several are narrowed by the
        imported quantity, then by the first size still unresolved for the
        target shipment.

        Raises:
            AmbiguousSizeError: No rule singles out a size
        """
        sizes = line_item.sizes_for_sku(fields.sku)
        if len(sizes) == 1:
            return sizes[0]

        by_quantity = [size for size in sizes if size.quantity == fields.quantity]
        if len(by_quantity) == 1:
            return by_quantity[0]

        pool = by_quantity or sizes
        for size in pool:
            if self._size_unresolved(line_item, size, fields, target):
                logger.info(
                    "size_disambiguated_by_open_allocation",
                    line_item_id=line_item.id,
                    sku=fields.sku,
                    size_name=size.size_name,
                )
                return size

        raise AmbiguousSizeError(fields.sku, [size.size_name for size in sizes])

    def _size_unresolved(
        self,
        line_item: LineItem,
        size: SizeBreakdownEntry,
        fields: RowFields,
        target: Optional[Shipment],
    ) -> bool:
        if target is not None and any(
            entry.sku == fields.sku and entry.size_name == size.size_name
            for entry in target.suspected_products
        ):
            return False
        return not any(
            allocation.is_bound
            and allocation.shipment_name == fields.shipping_number
            and allocation.size_quantity(size.size_name) is not None
            for allocation in line_item.shipments
        )

    # ===================
    # SHIPMENT UPSERT
    # ===================

    def upsert_shipment(
        self,
        fields: RowFields,
        existing: list[Shipment],
    ) -> tuple[Shipment, bool, Notification]:
        """
        Reuse or create the row's shipment.

        Returns:
            (shipment, created?, webhook notification for the write)
        """
        if len(existing) > 1:
            raise MultipleShipmentsError(fields.shipping_number)

        if existing:
            current = existing[0]
            mode = fields.shipping_mode or current.shipping_mode
            ship_date = fields.ship_date or current.ship_date
            payload = {
                "shipping_number": fields.shipping_number,
                "shipping_mode": mode,
                "ship_date": ship_date,
                "exfactory_date": fields.exfactory_date or current.exfactory_date,
                "eta": compute_eta(ship_date, mode) or current.eta,
            }
            result = self.store.update("Shipment", current.id, payload)
            if not result.success:
                raise EntityWriteError("Shipment", "update", result.message or "Failed to update shipment", result.errors)

            shipment = Shipment.from_row(result.data) if result.data else current.model_copy(update=payload)
            logger.info("shipment_reused", shipment_id=shipment.id, shipping_number=fields.shipping_number)
            notification = Notification(
                entity_type="Shipment",
                operation=WebhookOperation.PUT,
                payload=payload,
                entity_id=shipment.id,
                response_meta={"id": shipment.id},
            )
            return shipment, False, notification

        ship_date = fields.ship_date or today_utc()
        payload = {
            "shipping_number": fields.shipping_number,
            "shipping_mode": fields.shipping_mode,
            "ship_date": ship_date,
            "exfactory_date": fields.exfactory_date,
            "eta": compute_eta(ship_date, fields.shipping_mode),
            "suspected_products": [],
        }
        result = self.store.create("Shipment", payload)
        if not result.success or not result.id:
            raise EntityWriteError("Shipment", "create", result.message or "Failed to create shipment", result.errors)

        shipment = Shipment.from_row(result.data) if result.data else Shipment(id=result.id, **payload)
        logger.info("shipment_created", shipment_id=shipment.id, shipping_number=fields.shipping_number)
        notification = Notification(
            entity_type="Shipment",
            operation=WebhookOperation.POST,
            payload=payload,
            entity_id=shipment.id,
            response_meta={"id": shipment.id},
        )
        return shipment, True, notification

    # ===================
    # ENTRY POINT
    # ===================

    def resolve(
        self,
        row: Mapping[str, Any],
        column_mapping: Optional[Mapping[str, str]] = None,
    ) -> RowResolution:
        """
        Resolve one raw row.

        The shipment write is the only side effect and happens last, so a
        row that fails resolution leaves no trace outside its own record.

        Raises:
            RowProcessingError: Classified failure for the row
            EntityWriteError: The shipment write was rejected
        """
        fields = extract_row_fields(row, column_mapping)
        logger.debug(
            "resolving_row",
            po_name=fields.po_name,
            sku=fields.sku,
            shipping_number=fields.shipping_number,
            quantity=fields.quantity,
        )

        po = self.find_purchase_order(fields.po_name)
        existing_shipments = self.find_shipments(fields.shipping_number)
        target = existing_shipments[0] if len(existing_shipments) == 1 else None

        product = self.find_product(fields.sku)
        matched_size = None
        if product is not None:
            line_item = self.find_product_line_item(po, product, fields)
        else:
            line_item, matched_size = self.find_size_line_item(po, fields, target)

        status = line_item.status or ""
        if status in BLOCKING_LINE_ITEM_STATUSES:
            raise LineItemLockedError(status)

        shipment, created, notification = self.upsert_shipment(fields, existing_shipments)

        return RowResolution(
            fields=fields,
            purchase_order=po,
            line_item=line_item,
            shipment=shipment,
            is_size_pricing=product is None,
            matched_size=matched_size,
            shipment_created=created,
            notifications=[notification],
        )


# Singleton instance
_row_resolver: Optional[RowResolver] = None


def get_row_resolver() -> RowResolver:
    """Get or create RowResolver instance."""
    global _row_resolver
    if _row_resolver is None:
        _row_resolver = RowResolver()
    return _row_resolver
