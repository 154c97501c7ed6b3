"""Tests for product catalog and payment log operations."""

import pytest
from pymongo.errors import PyMongoError

import catalog
from ledger import DuplicateKey, NotFound, Unexpected
from schemas import Collection, Payment, Product


def test_create_product_stores_defaults(db):
    created = catalog.create_product(db, Product(code="A1", name="Widget"))

    assert created["code"] == "A1"
    assert created["stock"] == 0
    assert created["photo_url"] == ""
    assert isinstance(created["_id"], str)
    assert created["created_at"] is not None


def test_duplicate_code_is_rejected_and_store_unchanged(db, make_product):
    make_product(code="A1", name="Widget", stock=4)

    with pytest.raises(DuplicateKey):
        catalog.create_product(db, Product(code="A1", name="Other", stock=99))

    assert db["product"].count_documents({}) == 1
    assert db["product"].find_one({"code": "A1"})["name"] == "Widget"


def test_create_product_uploads_photo(db, photo_store):
    created = catalog.create_product(db, Product(code="A1", name="Widget"), "data:image/png;base64,AAAA", photo_store)

    assert created["photo_id"] == "photo-1"
    assert created["photo_url"] == "https://images.test/photo-1.jpg"


def test_duplicate_code_releases_uploaded_photo(db, make_product, photo_store):
    make_product(code="A1")

    with pytest.raises(DuplicateKey):
        catalog.create_product(db, Product(code="A1", name="Other"), "data:image/png;base64,AAAA", photo_store)

    assert photo_store.deleted == ["photo-1"]


def test_photo_requires_configured_store(db):
    with pytest.raises(Unexpected):
        catalog.create_product(db, Product(code="A1", name="Widget"), "data:image/png;base64,AAAA")

    assert db["product"].count_documents({}) == 0


def test_list_products_most_recent_first(db, make_product):
    for n in range(3):
        make_product(code=f"P{n}")

    codes = [p["code"] for p in catalog.list_products(db)]

    assert codes == ["P2", "P1", "P0"]


def test_list_products_is_capped(db):
    db["product"].insert_many([{"code": f"P{n}", "name": "x", "stock": 0} for n in range(105)])

    assert len(catalog.list_products(db)) == 100


def test_search_matches_code_name_and_category(db, make_product):
    make_product(code="TOOL-1", name="Hammer", category="Hardware")
    make_product(code="X9", name="Screwdriver", category="hardware")
    make_product(code="F1", name="Apple", category="Fruit")

    assert {p["code"] for p in catalog.search_products(db, "HARD")} == {"TOOL-1", "X9"}
    assert {p["code"] for p in catalog.search_products(db, "tool")} == {"TOOL-1"}
    assert {p["code"] for p in catalog.search_products(db, "apple")} == {"F1"}


def test_search_treats_query_literally(db, make_product):
    make_product(code="A.1", name="Dot")
    make_product(code="AB1", name="Plain")

    assert [p["code"] for p in catalog.search_products(db, "A.1")] == ["A.1"]


def test_get_product_by_code_or_id(db, make_product):
    product = make_product(code="A1")

    assert catalog.get_product(db, "A1")["_id"] == product["_id"]
    assert catalog.get_product(db, product["_id"])["code"] == "A1"
    with pytest.raises(NotFound):
        catalog.get_product(db, "B2")


def test_delete_product_releases_photo(db, photo_store):
    catalog.create_product(db, Product(code="A1", name="Widget"), "data:image/png;base64,AAAA", photo_store)

    catalog.delete_product(db, "A1", photo_store)

    assert photo_store.deleted == ["photo-1"]
    assert db["product"].count_documents({}) == 0


def test_delete_unknown_product(db):
    with pytest.raises(NotFound):
        catalog.delete_product(db, "A1")


def test_get_transaction_with_malformed_id(db):
    with pytest.raises(NotFound):
        catalog.get_transaction(db, "sale", "not-an-id")


def test_record_payment_and_collection(db):
    payment = catalog.record_payment(db, Payment(amount=250.0, transaction_id="abc", supplier="Acme"))
    collection = catalog.record_payment(db, Collection(amount=20.5, method="card", transaction_id="def"))

    assert payment["supplier"] == "Acme"
    assert payment["method"] == "cash"
    assert collection["client"] == "Walk-in"
    assert db["payment"].count_documents({}) == 1
    assert db["collection"].count_documents({}) == 1
    assert [c["amount"] for c in catalog.list_records(db, catalog.COLLECTION)] == [20.5]


def test_duplicate_code_survives_failing_photo_cleanup(db, make_product, broken_photo_store):
    make_product(code="A1")

    with pytest.raises(DuplicateKey):
        catalog.create_product(db, Product(code="A1", name="Other"), "data:image/png;base64,AAAA",
                               broken_photo_store)


def test_storage_failure_releases_uploaded_photo(db, photo_store, monkeypatch):
    def failing_insert(*args, **kwargs):
        raise PyMongoError("connection lost")

    monkeypatch.setattr(catalog, "create_document", failing_insert)

    with pytest.raises(Unexpected):
        catalog.create_product(db, Product(code="A1", name="Widget"), "data:image/png;base64,AAAA", photo_store)

    assert photo_store.deleted == ["photo-1"]
