"""Pytest configuration and fixtures.

The application reads its settings at import time, so the test environment
is set up before anything from ``catalog_bulk`` is imported.
"""

import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["UPLOADS_DIR"] = tempfile.mkdtemp(prefix="catalog-bulk-uploads-")

from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

import catalog_bulk.db.models  # noqa: E402,F401
from catalog_bulk.db.base import Base  # noqa: E402
from catalog_bulk.db.models import CatalogItem, ProductVariant  # noqa: E402
from catalog_bulk.db.session import SessionLocal, engine  # noqa: E402
from catalog_bulk.services import progress_tracker  # noqa: E402

SELLER_ID = 1
OTHER_SELLER_ID = 2


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    """Progress snapshots go to a mock instead of a live Redis."""
    client = MagicMock()
    client.get.return_value = None
    monkeypatch.setattr(progress_tracker, "redis_client", client)
    return client


@pytest.fixture(scope="function")
def db_session() -> Session:
    """Fresh in-memory schema per test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_item(db_session):
    """Factory for committed catalog items."""

    def _make(
        name: str = "Item",
        price: str = "10.00",
        seller_id: int = SELLER_ID,
        **fields,
    ) -> CatalogItem:
        item = CatalogItem(seller_id=seller_id, name=name, price=price, **fields)
        db_session.add(item)
        db_session.commit()
        db_session.refresh(item)
        return item

    return _make


@pytest.fixture
def make_variant(db_session):
    def _make(product: CatalogItem, sku: str, stock_quantity: int = 0) -> ProductVariant:
        variant = ProductVariant(
            product_id=product.id,
            name=f"{product.name} / {sku}",
            sku=sku,
            stock_quantity=stock_quantity,
        )
        db_session.add(variant)
        db_session.commit()
        db_session.refresh(variant)
        return variant

    return _make


@pytest.fixture
def client(db_session) -> TestClient:
    """API client; depends on db_session so the schema exists."""
    from catalog_bulk.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def seller_headers() -> dict[str, str]:
    return {"X-Seller-Id": str(SELLER_ID)}

