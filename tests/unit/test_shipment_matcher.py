"""
Unit tests for ShipmentMatcher.

Run: pytest tests/unit/test_shipment_matcher.py -v
"""

import pytest
from typing import Optional

from models.import_data import RowStatus
from models.line_item import LineItem
from models.purchase_order import PurchaseOrder
from models.shipment import Shipment
from services.row_resolver import RowFields, RowResolution
from services.shipment_matcher import (
    ShipmentMatcher,
    UNMATCHED_DEFER,
    UNMATCHED_FAIL,
    find_standard_allocation,
)
from exceptions import ShipmentAllocationGrewError
from tests.factories import LineItemFactory, PurchaseOrderFactory, ShipmentFactory, new_id


def seed(mock_db, item: dict, shipment: dict) -> tuple[LineItem, Shipment]:
    mock_db.set_table_data("line_items", [item])
    mock_db.set_table_data("shipments", [shipment])
    return LineItem.from_row(item), Shipment.from_row(shipment)


def resolution_for(
    line_item: LineItem,
    shipment: Shipment,
    quantity: int,
    sku: str = "SKU-100",
    shipping_mode: Optional[str] = None,
    size_name: Optional[str] = None,
) -> RowResolution:
    fields = RowFields(
        po_name="PO-1001",
        sku=sku,
        shipping_number=shipment.shipping_number,
        quantity=quantity,
        shipping_mode=shipping_mode,
    )
    matched_size = None
    if size_name is not None:
        matched_size = next(s for s in line_item.size_breakdown if s.size_name == size_name)
    return RowResolution(
        fields=fields,
        purchase_order=PurchaseOrder.from_row(PurchaseOrderFactory.create()),
        line_item=line_item,
        shipment=shipment,
        is_size_pricing=size_name is not None,
        matched_size=matched_size,
    )


@pytest.fixture
def matcher(mock_db) -> ShipmentMatcher:
    return ShipmentMatcher(unmatched_policy=UNMATCHED_DEFER)


# ===================
# STANDARD MATCHING
# ===================

class TestStandardMatch:

    def test_binds_matching_allocation(self, matcher, mock_db):
        item, shipment = seed(
            mock_db,
            LineItemFactory.create(new_id(), shipments=[
                LineItemFactory.allocation(5, "Air"),
                LineItemFactory.allocation(10, "Sea"),
            ]),
            ShipmentFactory.create("SHP-1", shipping_mode="Sea"),
        )

        result = matcher.match(resolution_for(item, shipment, 10, shipping_mode="Sea"))

        assert result.status == RowStatus.SUCCESS
        assert result.message == f"Successfully updated line item {item.id} with shipment SHP-1"
        stored = mock_db.find("line_items", item.id)["shipments"]
        assert len(stored) == 2
        assert "shipment_id" not in stored[0]
        assert stored[1]["shipment_id"] == shipment.id
        assert stored[1]["shipment_name"] == "SHP-1"

    def test_mode_mismatch_not_bound(self, matcher, mock_db):
        item, shipment = seed(
            mock_db,
            LineItemFactory.create(new_id(), shipments=[LineItemFactory.allocation(10, "Air")]),
            ShipmentFactory.create("SHP-1"),
        )

        result = matcher.match(resolution_for(item, shipment, 10, shipping_mode="Sea"))

        assert result.status == RowStatus.SUCCESS
        assert result.message.startswith("Added to suspectedProducts on shipment SHP-1")
        assert "shipment_id" not in mock_db.find("line_items", item.id)["shipments"][0]

    def test_allocation_bound_elsewhere_is_not_taken(self, mock_db):
        item = LineItem.from_row(LineItemFactory.create(new_id(), shipments=[
            LineItemFactory.allocation(10, shipment_id=new_id(), shipment_name="SHP-OTHER"),
        ]))
        shipment = Shipment.from_row(ShipmentFactory.create("SHP-1"))

        assert find_standard_allocation(item, shipment, 10, None) == -1

    def test_allocation_bound_to_same_shipment_preferred(self, mock_db):
        shipment = Shipment.from_row(ShipmentFactory.create("SHP-1"))
        item = LineItem.from_row(LineItemFactory.create(new_id(), shipments=[
            LineItemFactory.allocation(10),
            LineItemFactory.allocation(10, shipment_id=shipment.id, shipment_name="SHP-1"),
        ]))

        assert find_standard_allocation(item, shipment, 10, None) == 1

    def test_allocation_list_never_grows(self, matcher, mock_db):
        item, shipment = seed(
            mock_db,
            LineItemFactory.create(new_id(), shipments=[LineItemFactory.allocation(3)]),
            ShipmentFactory.create("SHP-1"),
        )

        matcher.match(resolution_for(item, shipment, 99))

        assert len(mock_db.find("line_items", item.id)["shipments"]) == 1

    def test_growth_rejected_before_write(self, matcher, mock_db):
        item, shipment = seed(
            mock_db,
            LineItemFactory.create(new_id(), shipments=[LineItemFactory.allocation(3)]),
            ShipmentFactory.create("SHP-1"),
        )
        item.shipments = item.shipments + item.shipments

        with pytest.raises(ShipmentAllocationGrewError):
            matcher.save_allocations(item, count_before=1)

        assert len(mock_db.find("line_items", item.id)["shipments"]) == 1


# ===================
# UNMATCHED POLICY
# ===================

class TestUnmatchedPolicy:

    def test_defer_records_suspected_and_succeeds(self, matcher, mock_db):
        item, shipment = seed(
            mock_db,
            LineItemFactory.create(new_id(), shipments=[LineItemFactory.allocation(3)]),
            ShipmentFactory.create("SHP-1"),
        )

        result = matcher.match(resolution_for(item, shipment, 7))

        assert result.status == RowStatus.SUCCESS
        suspected = mock_db.find("shipments", shipment.id)["suspected_products"]
        assert suspected == [{"sku": "SKU-100", "quantity": 7}]

    def test_fail_records_suspected_and_fails(self, mock_db):
        matcher = ShipmentMatcher(unmatched_policy=UNMATCHED_FAIL)
        item, shipment = seed(
            mock_db,
            LineItemFactory.create(new_id(), shipments=[LineItemFactory.allocation(3)]),
            ShipmentFactory.create("SHP-1"),
        )

        result = matcher.match(resolution_for(item, shipment, 7))

        assert result.status == RowStatus.FAILURE
        assert result.error.endswith("Added to suspectedProducts on shipment SHP-1")
        assert len(mock_db.find("shipments", shipment.id)["suspected_products"]) == 1

    def test_same_suspected_key_is_replaced(self, matcher, mock_db):
        item, shipment = seed(
            mock_db,
            LineItemFactory.create(new_id()),
            ShipmentFactory.create("SHP-1", suspected_products=[ShipmentFactory.suspected("SKU-100", 7)]),
        )

        matcher.match(resolution_for(item, shipment, 7))
        matcher.match(resolution_for(item, shipment, 8))

        suspected = mock_db.find("shipments", shipment.id)["suspected_products"]
        assert [(e["sku"], e["quantity"]) for e in suspected] == [("SKU-100", 7), ("SKU-100", 8)]

    def test_suspected_written_to_fresh_shipment(self, matcher, mock_db):
        item, shipment = seed(
            mock_db,
            LineItemFactory.create(new_id()),
            ShipmentFactory.create("SHP-1"),
        )
        # Another row parked an entry after this resolution was built
        mock_db.find("shipments", shipment.id)["suspected_products"] = [ShipmentFactory.suspected("OTHER", 1)]

        matcher.match(resolution_for(item, shipment, 7))

        skus = [e["sku"] for e in mock_db.find("shipments", shipment.id)["suspected_products"]]
        assert skus == ["OTHER", "SKU-100"]


# ===================
# SIZE PRICING
# ===================

class TestSizeMatch:

    def test_binds_single_size_allocation(self, matcher, mock_db):
        item, shipment = seed(
            mock_db,
            LineItemFactory.create(
                new_id(),
                size_breakdown=[LineItemFactory.size("S", "SKU-S", 4), LineItemFactory.size("M", "SKU-M", 6)],
                shipments=[
                    LineItemFactory.allocation(4, sizes=[("S", 4)]),
                    LineItemFactory.allocation(6, sizes=[("M", 6)]),
                ],
            ),
            ShipmentFactory.create("SHP-1"),
        )

        result = matcher.match(resolution_for(item, shipment, 6, sku="SKU-M", size_name="M"))

        assert result.status == RowStatus.SUCCESS
        stored = mock_db.find("line_items", item.id)["shipments"]
        assert "shipment_id" not in stored[0]
        assert stored[1]["shipment_id"] == shipment.id

    def test_multi_size_allocation_is_deferred(self, matcher, mock_db):
        item, shipment = seed(
            mock_db,
            LineItemFactory.create(
                new_id(),
                size_breakdown=[LineItemFactory.size("S", "SKU-S", 4), LineItemFactory.size("M", "SKU-M", 6)],
                shipments=[LineItemFactory.allocation(10, "Sea", sizes=[("S", 4), ("M", 6)])],
            ),
            ShipmentFactory.create("SHP-1"),
        )

        result = matcher.match(resolution_for(item, shipment, 4, sku="SKU-S", size_name="S"))

        assert result.status == RowStatus.PENDING_RECONCILIATION
        assert result.deferred is True
        assert result.message == "Size S added to suspectedProducts on shipment SHP-1; awaiting reconciliation"
        assert mock_db.find("shipments", shipment.id)["suspected_products"] == [
            {"sku": "SKU-S", "size_name": "S", "quantity": 4},
        ]
        assert "shipment_id" not in mock_db.find("line_items", item.id)["shipments"][0]

    def test_size_deferral_ignores_fail_policy(self, mock_db):
        matcher = ShipmentMatcher(unmatched_policy=UNMATCHED_FAIL)
        item, shipment = seed(
            mock_db,
            LineItemFactory.create(new_id(), size_breakdown=[LineItemFactory.size("S", "SKU-S", 4)]),
            ShipmentFactory.create("SHP-1"),
        )

        result = matcher.match(resolution_for(item, shipment, 4, sku="SKU-S", size_name="S"))

        assert result.status == RowStatus.PENDING_RECONCILIATION
