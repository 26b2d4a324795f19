"""
Shared test fixtures.

Provides an in-memory Supabase fake that applies filters, ordering,
pagination and writes, so services can be exercised end to end.
"""

import os
import sys
from pathlib import Path

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Settings are loaded at import time
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("IMPORT_SCHEDULER_ENABLED", "false")

import copy
import json
import pytest
from unittest.mock import patch
from typing import Any, Callable, Generator, Optional
from uuid import uuid4


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: Any = None, count: Optional[int] = None):
        self.data = data if data is not None else []
        self.count = count


def _read_column(row: dict, column: str) -> Any:
    """Resolve plain columns and `json_col->>key` paths."""
    if "->>" in column:
        base, key = column.split("->>", 1)
        value = (row.get(base) or {}).get(key)
        return None if value is None else str(value)
    return row.get(column)


def _equal(left: Any, right: Any) -> bool:
    if left == right:
        return True
    if left is None or right is None:
        return False
    return str(left) == str(right)


def _sort_key(value: Any) -> tuple:
    if value is None:
        return (1, "")
    if isinstance(value, (int, float)):
        return (0, value)
    return (0, str(value))


def _contains(value: Any, operand: Any) -> bool:
    """JSONB @> semantics for dicts and lists of dicts."""
    if isinstance(operand, dict):
        if not isinstance(value, dict):
            return False
        return all(k in value and _contains(value[k], v) for k, v in operand.items())
    if isinstance(operand, list):
        if not isinstance(value, list):
            return False
        return all(any(_contains(item, wanted) for item in value) for wanted in operand)
    return _equal(value, operand)


class MockSupabaseQuery:
    """Chainable query builder evaluated against a MockSupabaseClient table."""

    def __init__(self, client: "MockSupabaseClient", table: str, operation: str, payload: Any = None):
        self._client = client
        self._table = table
        self._operation = operation
        self._payload = payload
        self._filters: list[Callable[[dict], bool]] = []
        self._orders: list[tuple[str, bool]] = []
        self._limit: Optional[int] = None
        self._range: Optional[tuple[int, int]] = None
        self._is_single = False
        self._count: Optional[str] = None

    # --- builder methods ---

    def select(self, *args, count: Optional[str] = None, **kwargs):
        self._count = count
        return self

    def eq(self, column, value):
        self._filters.append(lambda row: _equal(_read_column(row, column), value))
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: not _equal(_read_column(row, column), value))
        return self

    def in_(self, column, values):
        values = list(values)
        self._filters.append(lambda row: any(_equal(_read_column(row, column), v) for v in values))
        return self

    def is_(self, column, value):
        if value in ("null", None):
            self._filters.append(lambda row: _read_column(row, column) is None)
        else:
            self._filters.append(lambda row: _equal(_read_column(row, column), value))
        return self

    def _compare(self, column, value, check):
        def predicate(row):
            current = _read_column(row, column)
            return current is not None and check(current, value)
        self._filters.append(predicate)
        return self

    def lt(self, column, value):
        return self._compare(column, value, lambda a, b: a < b)

    def lte(self, column, value):
        return self._compare(column, value, lambda a, b: a <= b)

    def gt(self, column, value):
        return self._compare(column, value, lambda a, b: a > b)

    def gte(self, column, value):
        return self._compare(column, value, lambda a, b: a >= b)

    def contains(self, column, value):
        if isinstance(value, str):
            value = json.loads(value)
        self._filters.append(lambda row: _contains(_read_column(row, column), value))
        return self

    def order(self, column, desc: bool = False, **kwargs):
        self._orders.append((column, desc))
        return self

    def limit(self, count):
        self._limit = count
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def single(self):
        self._is_single = True
        return self

    # --- execution ---

    def _matching(self) -> list[dict]:
        return [row for row in self._client.rows(self._table) if all(f(row) for f in self._filters)]

    def execute(self) -> MockSupabaseResponse:
        self._client.calls.append((self._table, self._operation))

        if self._operation == "insert":
            records = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = []
            for record in records:
                row = copy.deepcopy(record)
                row.setdefault("id", str(uuid4()))
                self._client.rows(self._table).append(row)
                inserted.append(copy.deepcopy(row))
            return MockSupabaseResponse(data=inserted, count=len(inserted))

        if self._operation == "update":
            updated = []
            for row in self._matching():
                row.update(copy.deepcopy(self._payload))
                updated.append(copy.deepcopy(row))
            return MockSupabaseResponse(data=updated, count=len(updated))

        if self._operation == "delete":
            doomed = self._matching()
            remaining = [row for row in self._client.rows(self._table) if row not in doomed]
            self._client.set_table_data(self._table, remaining)
            return MockSupabaseResponse(data=copy.deepcopy(doomed), count=len(doomed))

        rows = self._matching()
        for column, desc in reversed(self._orders):
            rows.sort(key=lambda row: _sort_key(_read_column(row, column)), reverse=desc)
        total = len(rows)
        if self._range is not None:
            start, end = self._range
            rows = rows[start:end + 1]
        if self._limit is not None:
            rows = rows[:self._limit]
        rows = rows[:self._client.max_rows]

        data = copy.deepcopy(rows)
        count = total if self._count else None
        if self._is_single:
            return MockSupabaseResponse(data=data[0] if data else None, count=count)
        return MockSupabaseResponse(data=data, count=count)


class MockSupabaseTable:
    """Entry point for operations on one table."""

    def __init__(self, client: "MockSupabaseClient", name: str):
        self._client = client
        self._name = name

    def select(self, *args, **kwargs):
        return MockSupabaseQuery(self._client, self._name, "select").select(*args, **kwargs)

    def insert(self, data):
        return MockSupabaseQuery(self._client, self._name, "insert", data)

    def update(self, data):
        return MockSupabaseQuery(self._client, self._name, "update", data)

    def delete(self):
        return MockSupabaseQuery(self._client, self._name, "delete")


class MockSupabaseClient:
    """In-memory Supabase client."""

    # PostgREST default max-rows: selects never return more than this
    max_rows = 1000

    def __init__(self):
        self._tables: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str]] = []

    def set_table_data(self, table_name: str, data: list):
        """Replace a table's rows."""
        self._tables[table_name] = [copy.deepcopy(row) for row in data]

    def rows(self, table_name: str) -> list[dict]:
        """Live row list for a table (mutations are visible to queries)."""
        return self._tables.setdefault(table_name, [])

    def find(self, table_name: str, row_id: str) -> Optional[dict]:
        return next((row for row in self.rows(table_name) if str(row.get("id")) == str(row_id)), None)

    def table(self, name: str) -> MockSupabaseTable:
        return MockSupabaseTable(self, name)


# ===================
# FIXTURES
# ===================

_SINGLETONS = [
    ("services.entity_store", "_entity_store"),
    ("services.import_data_service", "_import_data_service"),
    ("services.row_resolver", "_row_resolver"),
    ("services.shipment_matcher", "_shipment_matcher"),
    ("services.reconciliation_service", "_reconciliation_service"),
    ("services.import_processor", "_import_processor"),
    ("services.import_scheduler", "_import_scheduler"),
    ("integrations.webhook", "_notifier"),
    ("integrations.realtime", "_broadcaster"),
]


@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create an in-memory Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("purchase_orders", [
                {"id": "po-1", "po_number": "PO-1001"}
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase, monkeypatch) -> Generator:
    """
    Patch every database client lookup with the in-memory client.

    Service singletons are reset so each test builds fresh instances.
    """
    import importlib

    for module_name, attribute in _SINGLETONS:
        monkeypatch.setattr(importlib.import_module(module_name), attribute, None)

    with patch("config.database.get_supabase_client", return_value=mock_supabase):
        with patch("services.entity_store.get_supabase_client", return_value=mock_supabase):
            with patch("services.import_data_service.get_supabase_client", return_value=mock_supabase):
                with patch("integrations.webhook.get_supabase_client", return_value=mock_supabase):
                    yield mock_supabase
