"""Shared pytest fixtures for the Stock Ledger tests."""

import os
import sys
from pathlib import Path

import mongomock
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Settings are read at import time; pin the values the tests rely on.
os.environ.pop("DATABASE_URL", None)
os.environ.pop("DATABASE_NAME", None)
os.environ["TAX_RATE"] = "0.21"
os.environ["CURRENCY_DECIMALS"] = "2"
os.environ["LIST_LIMIT"] = "100"

from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402
from catalog import create_product  # noqa: E402
from database import ensure_indexes  # noqa: E402
from schemas import Product  # noqa: E402


class FakePhotoStore:
    """In-memory stand-in for the Cloudinary photo store."""

    def __init__(self):
        self.uploaded = {}
        self.deleted = []

    def upload(self, base64_payload):
        photo_id = f"photo-{len(self.uploaded) + 1}"
        self.uploaded[photo_id] = base64_payload
        return {"url": f"https://images.test/{photo_id}.jpg", "id": photo_id}

    def delete(self, photo_id):
        self.deleted.append(photo_id)


class BrokenDeletePhotoStore(FakePhotoStore):
    """Photo store whose deletions always fail."""

    def delete(self, photo_id):
        raise RuntimeError("photo service unavailable")


@pytest.fixture
def db():
    database = mongomock.MongoClient().get_database("stock_ledger_test")
    ensure_indexes(database)
    return database


@pytest.fixture
def photo_store():
    return FakePhotoStore()


@pytest.fixture
def broken_photo_store():
    return BrokenDeletePhotoStore()


@pytest.fixture
def make_product(db):
    """Insert a product and return its stored document."""

    def _make(code="A1", name="Widget", stock=10, sale_price=100.0, cost_price=60.0, **extra):
        product = Product(code=code, name=name, stock=stock, sale_price=sale_price, cost_price=cost_price, **extra)
        return create_product(db, product)

    return _make


@pytest.fixture
def client(db, photo_store, monkeypatch):
    monkeypatch.setattr(main, "db", db)
    monkeypatch.setattr(main, "photo_store", photo_store)
    return TestClient(main.app)
