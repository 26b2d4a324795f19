"""
Unit tests for EntityStore.

Run: pytest tests/unit/test_entity_store.py -v
"""

import pytest
from datetime import datetime, timezone

from models.base import PaginationParams
from models.entity_schema import UpdateMode
from services.entity_store import EntityStore, get_entity_store, is_object_id
from exceptions import EntitySchemaNotFoundError
from tests.factories import LineItemFactory, PurchaseOrderFactory, ShipmentFactory, new_id


@pytest.fixture
def store(mock_db) -> EntityStore:
    return get_entity_store()


class TestIsObjectId:

    @pytest.mark.parametrize("value", [new_id(), "65a1f0c2b3d4e5f6a7b8c9d0"])
    def test_valid(self, value):
        assert is_object_id(value)

    @pytest.mark.parametrize("value", ["", "abc", "65a1f0c2b3d4e5f6a7b8c9dz", 12, None])
    def test_invalid(self, value):
        assert not is_object_id(value)


class TestSchemas:

    def test_builtin_schema(self, store):
        assert store.get_schema("Shipment").table == "shipments"

    def test_unknown_entity_type(self, store):
        with pytest.raises(EntitySchemaNotFoundError):
            store.get_schema("Spaceship")

    def test_stored_schema_wins(self, store, mock_db):
        mock_db.set_table_data("entity_schemas", [{
            "entity": "Shipment",
            "table_name": "shipments_v2",
            "basic_fields": {"shipping_number": "string"},
        }])
        assert store.get_schema("Shipment").table == "shipments_v2"


class TestCreate:

    def test_creates_with_id_and_timestamps(self, store, mock_db):
        result = store.create("PO", {"po_number": "PO-1"})

        assert result.success is True
        assert result.id is not None
        stored = mock_db.find("purchase_orders", result.id)
        assert stored["po_number"] == "PO-1"
        assert stored["created_at"] == stored["updated_at"]

    def test_missing_required_field(self, store, mock_db):
        result = store.create("PO", {"status": "Open"})

        assert result.success is False
        assert result.errors == ["po_number is required."]
        assert mock_db.rows("purchase_orders") == []

    def test_type_mismatch(self, store):
        result = store.create("lineItem", {"po_id": new_id(), "quantity": "ten"})

        assert result.success is False
        assert "Field quantity should be of type number, not str" in result.errors

    def test_invalid_object_id(self, store):
        result = store.create("lineItem", {"po_id": "not-an-id"})

        assert result.success is False
        assert result.errors[0].startswith("Field po_id should be of type ObjectId")

    def test_dates_stored_as_iso_strings(self, store, mock_db):
        result = store.create("Shipment", {
            "shipping_number": "SHP-1",
            "ship_date": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "eta": None,
        })

        stored = mock_db.find("shipments", result.id)
        assert stored["ship_date"] == "2024-01-01T00:00:00+00:00"
        assert stored["eta"] is None

    def test_custom_and_hashed_fields(self, store, mock_db):
        mock_db.set_table_data("entity_schemas", [{
            "entity": "Supplier",
            "table_name": "suppliers",
            "basic_fields": {"name": "string", "portal_password": "string"},
            "custom_fields": {"region": "string"},
            "required_fields": ["name"],
            "hashed_fields": ["portal_password"],
        }])

        result = store.create("Supplier", {"name": "Acme", "region": "EU", "portal_password": "s3cret"})

        stored = mock_db.find("suppliers", result.id)
        assert stored["custom_fields"] == {"region": "EU"}
        assert "region" not in stored
        assert stored["portal_password"] != "s3cret"
        assert store.verify_hashed("s3cret", stored["portal_password"])


class TestUpdate:

    def test_replace(self, store, mock_db):
        shipment = ShipmentFactory.create(shipping_number="SHP-1", shipping_mode="Sea")
        mock_db.set_table_data("shipments", [shipment])

        result = store.update("Shipment", shipment["id"], {"shipping_mode": "Air"})

        assert result.success is True
        assert result.data["shipping_mode"] == "Air"
        assert mock_db.find("shipments", shipment["id"])["shipping_mode"] == "Air"

    def test_append_concatenates_arrays(self, store, mock_db):
        shipment = ShipmentFactory.create(suspected_products=[ShipmentFactory.suspected("A", 1)])
        mock_db.set_table_data("shipments", [shipment])

        store.update(
            "Shipment",
            shipment["id"],
            {"suspected_products": [ShipmentFactory.suspected("B", 2)]},
            mode=UpdateMode.APPEND,
        )

        stored = mock_db.find("shipments", shipment["id"])
        assert [entry["sku"] for entry in stored["suspected_products"]] == ["A", "B"]

    def test_missing_entity(self, store):
        result = store.update("Shipment", new_id(), {"shipping_mode": "Air"})

        assert result.success is False
        assert result.message == "No entity found with the provided ID."

    def test_validation_failure_writes_nothing(self, store, mock_db):
        shipment = ShipmentFactory.create()
        mock_db.set_table_data("shipments", [shipment])

        result = store.update("Shipment", shipment["id"], {"suspected_products": "oops"})

        assert result.success is False
        assert mock_db.find("shipments", shipment["id"])["suspected_products"] == []


class TestQuery:

    @pytest.fixture
    def seeded(self, mock_db):
        po_a = PurchaseOrderFactory.create(po_number="PO-A")
        po_b = PurchaseOrderFactory.create(po_number="PO-B", status="Closed")
        po_c = PurchaseOrderFactory.create(po_number="PO-C", status=None)
        mock_db.set_table_data("purchase_orders", [po_a, po_b, po_c])
        return po_a, po_b, po_c

    def test_scalar_equality(self, store, seeded):
        result = store.query("PO", {"po_number": "PO-B"})
        assert [row["po_number"] for row in result.data] == ["PO-B"]
        assert result.total == 1

    def test_list_means_membership(self, store, seeded):
        result = store.query("PO", {"po_number": ["PO-A", "PO-C"]}, sort=[{"po_number": "asc"}])
        assert [row["po_number"] for row in result.data] == ["PO-A", "PO-C"]

    def test_none_means_null(self, store, seeded):
        result = store.query("PO", {"status": None})
        assert [row["po_number"] for row in result.data] == ["PO-C"]

    def test_not_equal_operator(self, store, seeded):
        result = store.query("PO", {"status": {"$ne": "Closed"}, "po_number": {"$ne": "PO-C"}})
        assert [row["po_number"] for row in result.data] == ["PO-A"]

    def test_sort_descending_and_pagination(self, store, seeded):
        result = store.query(
            "PO",
            sort=[{"po_number": "desc"}],
            pagination=PaginationParams(page=2, page_size=2),
        )
        assert [row["po_number"] for row in result.data] == ["PO-A"]
        assert result.total == 3

    def test_invalid_object_id_matches_nothing(self, store, seeded):
        assert store.query("PO", {"id": "not-an-id"}).data == []

    def test_contains_on_json_array(self, store, mock_db):
        po_id = new_id()
        wanted = LineItemFactory.create(po_id, size_breakdown=[LineItemFactory.size("M", "SKU-M", 3)])
        other = LineItemFactory.create(po_id, size_breakdown=[LineItemFactory.size("L", "SKU-L", 3)])
        mock_db.set_table_data("line_items", [wanted, other])

        result = store.query("lineItem", {"po_id": po_id, "size_breakdown": {"$contains": [{"csm_sku": "SKU-M"}]}})

        assert [row["id"] for row in result.data] == [wanted["id"]]

    def test_count(self, store, seeded):
        assert store.count("PO") == 3
        assert store.count("PO", {"status": "Closed"}) == 1


class TestDelete:

    def test_delete(self, store, mock_db):
        po = PurchaseOrderFactory.create()
        mock_db.set_table_data("purchase_orders", [po])

        result = store.delete("PO", po["id"])

        assert result.success is True
        assert mock_db.rows("purchase_orders") == []
        assert store.get("PO", po["id"]) is None

    def test_delete_missing(self, store):
        assert store.delete("PO", new_id()).success is False
