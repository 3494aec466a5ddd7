"""
Pytest configuration and shared fixtures for QueryGate tests.
"""

import pytest
from fastapi.testclient import TestClient

from app.infrastructure.memory.store import TableStore


@pytest.fixture
def store():
    """Fresh in-memory table store."""
    return TableStore()


@pytest.fixture
def sales_rows():
    """Return sample sales rows."""
    return [
        {"id": 1, "region": "EU", "product": "Widget", "amount": 100.0, "order_date": "2024-01-05", "active": True},
        {"id": 2, "region": "US", "product": "Gadget", "amount": 250.0, "order_date": "2024-02-10", "active": True},
        {"id": 3, "region": "EU", "product": "Gadget", "amount": 75.5, "order_date": "2024-03-15", "active": False},
        {"id": 4, "region": "APAC", "product": "Widget", "amount": None, "order_date": "2024-03-20", "active": True},
    ]


@pytest.fixture
def sales_store(store, sales_rows):
    """Store with a sales table loaded."""
    store.add_table("sales", sales_rows)
    return store


@pytest.fixture
def client(store):
    """Create a test client for the FastAPI app, bound to a fresh store."""
    from app.main import app
    from app.core.dependencies import get_store

    app.dependency_overrides[get_store] = lambda: store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
