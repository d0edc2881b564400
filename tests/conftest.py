"""
Shared test fixtures.
"""

import sys
from pathlib import Path

# Add project root to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
import uuid
from unittest.mock import patch
from datetime import datetime
from typing import Generator, Optional

from config.settings import Settings

# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data=None, count: int = None):
        self.data = data if data is not None else []
        self.count = count if count is not None else (len(self.data) if isinstance(self.data, list) else 1)


def _unescape_like(pattern: str) -> str:
    return pattern.replace("\\%", "%").replace("\\_", "_").replace("\\\\", "\\")


def _split_logic_terms(filters: str) -> list[str]:
    """Split an or_ filter string on commas outside double quotes, unquoting values."""
    terms, current = [], []
    quoted = escaped = False
    for ch in filters:
        if escaped:
            current.append(ch)
            escaped = False
        elif quoted and ch == "\\":
            escaped = True
        elif ch == '"':
            quoted = not quoted
        elif ch == "," and not quoted:
            terms.append("".join(current))
            current = []
        else:
            current.append(ch)
    terms.append("".join(current))
    return terms


class MockSupabaseQuery:
    """
    Mock query builder with chainable methods.

    Filters are applied for real against the table's rows, so writes made
    through one query are visible to the next.
    """

    def __init__(self, table: "MockSupabaseTable", action: str = "select", payload=None):
        self._table = table
        self._action = action
        self._payload = payload
        self._filters = []
        self._order = None
        self._limit = None
        self._offset = 0
        self._is_single = False

    def select(self, *args, **kwargs):
        return self

    def eq(self, column, value):
        self._filters.append(lambda r: r.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda r: r.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self._filters.append(lambda r: r.get(column) in values)
        return self

    def ilike(self, column, pattern):
        target = _unescape_like(pattern).lower()
        self._filters.append(lambda r: str(r.get(column) or "").lower() == target)
        return self

    def or_(self, filters: str):
        """PostgREST logic filter: comma-separated column.op.value terms, any may match."""
        terms = []
        for term in _split_logic_terms(filters):
            column, op, value = term.split(".", 2)
            if op == "ilike":
                terms.append((column, _unescape_like(value).lower(), True))
            elif op == "eq":
                terms.append((column, value, False))
            else:
                raise NotImplementedError(f"or_ operator not mocked: {op}")

        def matches(row):
            for column, target, fold in terms:
                cell = str(row.get(column) or "")
                if (cell.lower() if fold else cell) == target:
                    return True
            return False

        self._filters.append(matches)
        return self

    def single(self):
        self._is_single = True
        return self

    def order(self, column, desc: bool = False, **kwargs):
        self._order = (column, desc)
        return self

    def range(self, start, end):
        self._offset = start
        self._limit = end - start + 1
        return self

    def limit(self, count):
        self._limit = count
        return self

    def _matches(self, row: dict) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self) -> MockSupabaseResponse:
        self._table.calls.append(self._action)
        if self._table.error is not None:
            raise self._table.error

        if self._action == "insert":
            items = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = []
            for item in items:
                row = dict(item)
                row.setdefault("id", str(uuid.uuid4()))
                row.setdefault("created_at", datetime.utcnow().isoformat() + "Z")
                self._table.rows.append(row)
                inserted.append(dict(row))
            return MockSupabaseResponse(data=inserted)

        if self._action == "update":
            updated = []
            for row in self._table.rows:
                if self._matches(row):
                    row.update(self._payload)
                    updated.append(dict(row))
            return MockSupabaseResponse(data=updated)

        if self._action == "delete":
            removed = [r for r in self._table.rows if self._matches(r)]
            self._table.rows[:] = [r for r in self._table.rows if not self._matches(r)]
            return MockSupabaseResponse(data=removed)

        data = [dict(r) for r in self._table.rows if self._matches(r)]
        if self._order:
            column, desc = self._order
            data.sort(key=lambda r: (r.get(column) is None, str(r.get(column) or "")), reverse=desc)
        data = data[self._offset:]
        if self._limit is not None:
            data = data[:self._limit]
        if self._is_single:
            return MockSupabaseResponse(data=data[0] if data else None, count=1 if data else 0)
        return MockSupabaseResponse(data=data)


class MockSupabaseTable:
    """Mock Supabase table holding its rows in a list."""

    def __init__(self, rows: Optional[list] = None):
        self.rows = rows if rows is not None else []
        self.error: Optional[Exception] = None
        self.calls: list[str] = []

    def select(self, *args, **kwargs):
        return MockSupabaseQuery(self, "select")

    def insert(self, data):
        return MockSupabaseQuery(self, "insert", data)

    def update(self, data):
        return MockSupabaseQuery(self, "update", data)

    def delete(self):
        return MockSupabaseQuery(self, "delete")


class MockSupabaseClient:
    """Mock Supabase client."""

    def __init__(self):
        self._tables: dict[str, MockSupabaseTable] = {}

    def set_table_data(self, table_name: str, data: list):
        """Configure rows for a table."""
        self.table(table_name).rows[:] = [dict(r) for r in data]

    def set_table_error(self, table_name: str, error: Exception):
        """Make every query on a table raise."""
        self.table(table_name).error = error

    def rows(self, table_name: str) -> list:
        return self.table(table_name).rows

    def table(self, name: str) -> MockSupabaseTable:
        if name not in self._tables:
            self._tables[name] = MockSupabaseTable()
        return self._tables[name]


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("customers", [
                {"id": "cust-1", "name": "Acme"}
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with mock.

    Usage:
        def test_something(mock_db, mock_supabase):
            # Any code using get_supabase_client() gets the mock
    """
    with patch("config.database.get_supabase_client", return_value=mock_supabase):
        with patch("services.entity_store.get_supabase_client", return_value=mock_supabase):
            with patch("services.import_session_store.get_supabase_client", return_value=mock_supabase):
                with patch("services.import_history_service.get_supabase_client", return_value=mock_supabase):
                    yield mock_supabase


@pytest.fixture
def import_settings() -> Settings:
    """Settings with import defaults, independent of any .env file."""
    return Settings(
        _env_file=None,
        import_max_workers=1,
        import_row_timeout_seconds=5.0,
        import_error_limit=50,
        import_retain_manual_matches=False,
    )


@pytest.fixture
def session_store():
    from services.import_session_store import InMemorySessionStore
    return InMemorySessionStore(ttl_minutes=60)


@pytest.fixture
def entity_store(mock_supabase):
    from services.entity_store import SupabaseEntityStore
    return SupabaseEntityStore(mock_supabase)


@pytest.fixture
def history_service(mock_supabase):
    from services.import_history_service import ImportHistoryService
    return ImportHistoryService(mock_supabase)


@pytest.fixture
def import_service(session_store, entity_store, history_service, import_settings):
    """ImportService over the in-memory session store and the mock database."""
    from services.import_service import ImportService
    return ImportService(
        session_store=session_store,
        entity_store=entity_store,
        history=history_service,
        config=import_settings,
    )


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client(import_service):
    """
    Create FastAPI test client wired to the test import service.

    Usage:
        def test_endpoint(test_client):
            response = test_client.get("/api/imports/entity-types")
            assert response.status_code == 200
    """
    from fastapi.testclient import TestClient
    from main import app

    with patch("routes.imports.get_import_service", return_value=import_service):
        yield TestClient(app)
