"""
API tests for the entity and import routes.

The app is used without a context manager so the lifespan (database
check and scheduler start) does not run.

Run: pytest tests/unit/test_api_routes.py -v
"""

import json

import pytest
from fastapi.testclient import TestClient

from main import app
from tests.factories import (
    LineItemFactory,
    ProductFactory,
    PurchaseOrderFactory,
    new_id,
)


@pytest.fixture
def client(mock_db) -> TestClient:
    return TestClient(app)


# ===================
# ENTITIES
# ===================

class TestEntityRoutes:

    def test_create_and_get(self, client, mock_db):
        created = client.post("/api/entities/PO", json={"po_number": "PO-1"})

        assert created.status_code == 201
        body = created.json()
        assert body["success"] is True

        fetched = client.get(f"/api/entities/PO/{body['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["po_number"] == "PO-1"

    def test_create_validation_error(self, client):
        response = client.post("/api/entities/PO", json={"status": "Open"})

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "ENTITY_VALIDATION_FAILED"
        assert error["details"]["errors"] == ["po_number is required."]

    def test_query_with_filter(self, client, mock_db):
        mock_db.set_table_data("purchase_orders", [
            PurchaseOrderFactory.create(po_number="PO-1"),
            PurchaseOrderFactory.create(po_number="PO-2"),
        ])

        response = client.get("/api/entities/PO", params={"filter": json.dumps({"po_number": "PO-2"})})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["data"][0]["po_number"] == "PO-2"

    def test_query_malformed_filter(self, client):
        response = client.get("/api/entities/PO", params={"filter": "{not json"})
        assert response.status_code == 422

    def test_unknown_entity_type(self, client):
        response = client.get("/api/entities/Spaceship")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ENTITY_SCHEMA_NOT_FOUND"

    def test_get_missing(self, client):
        response = client.get(f"/api/entities/PO/{new_id()}")
        assert response.status_code == 404

    def test_patch_append(self, client, mock_db):
        po_id = new_id()
        item = LineItemFactory.create(po_id, shipments=[LineItemFactory.allocation(1)])
        mock_db.set_table_data("line_items", [item])

        response = client.patch(
            f"/api/entities/lineItem/{item['id']}",
            params={"mode": "append"},
            json={"shipments": [LineItemFactory.allocation(2)]},
        )

        assert response.status_code == 200
        assert [a["quantity"] for a in mock_db.find("line_items", item["id"])["shipments"]] == [1, 2]

    def test_patch_missing(self, client):
        response = client.patch(f"/api/entities/PO/{new_id()}", json={"status": "Closed"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ENTITY_NOT_FOUND"

    def test_delete(self, client, mock_db):
        po = PurchaseOrderFactory.create()
        mock_db.set_table_data("purchase_orders", [po])

        response = client.delete(f"/api/entities/PO/{po['id']}")

        assert response.status_code == 200
        assert mock_db.rows("purchase_orders") == []


# ===================
# IMPORT DATA
# ===================

CSV_BODY = b"Client Po,Item,Shipment,Qty,Mode\nPO-1001,SKU-100,SHP-1,10,Sea\nPO-404,SKU-100,SHP-1,10,Sea\n"
MAPPING = {"Client Po": "POName", "Item": "SKU", "Qty": "quantity", "Mode": "shippingMode"}


class TestImportRoutes:

    def upload(self, client, content: bytes = CSV_BODY, filename: str = "upload.csv", mapping=None):
        return client.post(
            "/api/import-data/upload",
            files={"file": (filename, content, "text/csv")},
            data={"column_mapping": json.dumps(MAPPING if mapping is None else mapping)},
        )

    def test_upload_creates_job(self, client, mock_db):
        response = self.upload(client)

        assert response.status_code == 201
        body = response.json()
        assert body["rows_created"] == 2
        assert body["columns"] == ["Client Po", "Item", "Shipment", "Qty", "Mode"]

        rows = mock_db.rows("import_data_rows")
        assert len(rows) == 2
        assert rows[0]["data"]["Client Po"] == "PO-1001"
        assert mock_db.find("import_data", body["import_data_id"])["column_mapping"] == MAPPING

    def test_upload_invalid_mapping(self, client):
        response = client.post(
            "/api/import-data/upload",
            files={"file": ("upload.csv", CSV_BODY, "text/csv")},
            data={"column_mapping": "[1, 2]"},
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_COLUMN_MAPPING"

    def test_upload_unsupported_file(self, client):
        response = self.upload(client, filename="upload.pdf")

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "IMPORT_FILE_PARSE_ERROR"

    def test_process_then_inspect(self, client, mock_db):
        po = PurchaseOrderFactory.create(po_number="PO-1001")
        product = ProductFactory.create(sku="SKU-100")
        mock_db.set_table_data("purchase_orders", [po])
        mock_db.set_table_data("products", [product])
        mock_db.set_table_data("line_items", [
            LineItemFactory.create(po["id"], product_id=product["id"], shipments=[LineItemFactory.allocation(10, "Sea")]),
        ])
        import_data_id = self.upload(client).json()["import_data_id"]

        report = client.post("/api/import-data/process")
        assert report.status_code == 200
        assert report.json()["processed"] == 2
        assert report.json()["jobs_completed"] == [import_data_id]

        job = client.get(f"/api/import-data/{import_data_id}").json()
        assert job["processing_status"] == "completed"
        assert job["progress"]["success"] == 1
        assert job["progress"]["failure"] == 1

        failures = client.get(f"/api/import-data/{import_data_id}/rows", params={"status": "failure"}).json()
        assert failures["total"] == 1
        assert failures["data"][0]["error"] == "PO not found: PO-404"

    def test_missing_job(self, client):
        response = client.get(f"/api/import-data/{new_id()}")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "IMPORT_DATA_NOT_FOUND"

    def test_rows_of_missing_job(self, client):
        assert client.get(f"/api/import-data/{new_id()}/rows").status_code == 404


# ===================
# APP
# ===================

class TestApp:

    def test_health(self, client, mock_db):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["import_scheduler"]["running"] is False

    def test_root(self, client):
        assert client.get("/").json()["health"] == "/health"

    def test_websocket_room(self, client):
        with client.websocket_connect("/ws/import-data/job-1") as websocket:
            websocket.send_text("ping")
