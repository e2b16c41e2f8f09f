"""
Test configuration and fixtures for the Stockflow backend test suite.

Provides:
- In-memory SQLite test database (isolated per test)
- Fresh shared reconciliation engine per test
- FastAPI TestClient fixture
- Sample collections
"""
import sqlite3
from contextlib import contextmanager
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from backend.core.db.base import SCHEMA
from backend.core.store import reset_engine


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

def _create_test_db() -> sqlite3.Connection:
    """Create an in-memory SQLite database with the Stockflow schema."""
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.executescript(SCHEMA)
    return conn


@contextmanager
def _test_get_db(conn: sqlite3.Connection):
    """Replacement for get_db() that uses the shared test connection."""
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


@pytest.fixture()
def test_db():
    """Provide a fresh in-memory SQLite database for each test."""
    conn = _create_test_db()
    yield conn
    conn.close()


@pytest.fixture()
def patch_db(test_db):
    """
    Patch the get_db context manager across all db modules so that
    every database call uses the in-memory test database.
    """
    cm = lambda: _test_get_db(test_db)  # noqa: E731

    reset_engine()
    with (
        patch("backend.core.db.base.get_db", cm),
        patch("backend.core.db.records.get_db", cm),
    ):
        yield test_db
    reset_engine()


@pytest.fixture()
def client(patch_db):
    """
    Provide a FastAPI TestClient with the database patched.

    Skips init_db so no file database is created during tests.
    """
    from backend.api.main import app

    with patch("backend.api.main.init_db"):
        with TestClient(app) as c:
            yield c


@pytest.fixture()
def api_key():
    """Require the key "secret" on write endpoints."""
    class _Settings:
        API_KEY = "secret"

    with patch("backend.api.security.get_settings", return_value=_Settings()):
        yield "secret"


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

@pytest.fixture()
def sample_collections():
    """Opening 100, closing 102 for AB-12; two indents of 60 each."""
    return {
        "stock_snapshots": [
            {"itemCode": "AB-12", "itemName": "Hex Bolt M8", "stockQty": 100},
        ],
        "purchase_inspections": [
            {"poNo": "PO-1", "items": [{"itemCode": "AB-12", "okQty": 30}]},
        ],
        "internal_issues": [
            {"itemCode": "AB-12", "issueQty": 10, "transactionType": "Purchase"},
            {"itemCode": "AB-12", "issueQty": 5, "transactionType": "Vendor"},
            {"itemCode": "AB-12", "issueQty": 8, "transactionType": "Stock"},
        ],
        "vendor_dept_orders": [
            {"items": [{"itemCode": "AB-12", "qty": 15, "okQty": 15}]},
        ],
        "vendor_issues": [
            {"items": [{"itemCode": "AB-12", "qty": 25}]},
        ],
        "vendor_inspections": [
            {"itemCode": "AB-12", "okQty": 3, "reworkQty": 1, "rejectQty": 1},
        ],
        "purchases": [
            {"poNo": "PO-1", "indentNo": "S-8/25-01", "items": [{"itemCode": "AB-12", "purchaseQty": 40}]},
        ],
        "requests": [
            {"indentNo": "S-8/25-02", "indentBy": "Assembly", "items": [{"itemCode": "AB-12", "qty": 60}]},
            {"indentNo": "S-8/25-01", "indentBy": "Machining", "items": [{"itemCode": "AB-12", "qty": 60}]},
        ],
    }


@pytest.fixture()
def loaded_client(client, sample_collections):
    """TestClient with every sample collection stored."""
    for name, records in sample_collections.items():
        resp = client.put(f"/api/reconcile/collections/{name}", json={"records": records})
        assert resp.status_code == 200
    return client
