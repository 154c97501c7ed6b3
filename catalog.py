"""
Product catalog and payment log operations.
"""

import re
from typing import Optional

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import create_document, get_documents
from ledger import DuplicateKey, NotFound, Unexpected, product_filter, serialize
from photos import PhotoStore
from schemas import Collection, Payment, Product
from settings import LIST_LIMIT, get_logger

logger = get_logger("catalog")

PAYMENT = "payment"
COLLECTION = "collection"


def _release_photo(photo_store: Optional[PhotoStore], photo_id: str) -> None:
    """Delete a photo uploaded for a product that was not stored."""
    if not photo_id or photo_store is None:
        return
    try:
        photo_store.delete(photo_id)
    except Exception:
        # The insert failure is what the caller sees
        logger.exception("Could not release orphaned photo %s", photo_id)


def create_product(db: Database, product: Product, photo_base64: Optional[str] = None,
                   photo_store: Optional[PhotoStore] = None) -> dict:
    """Store a new product, uploading its photo first when one is given."""
    data = product.model_dump()
    if photo_base64:
        if photo_store is None:
            raise Unexpected("Photo storage not configured")
        try:
            uploaded = photo_store.upload(photo_base64)
        except Exception as exc:
            raise Unexpected(f"Photo upload failed: {exc}") from exc
        data["photo_url"] = uploaded["url"]
        data["photo_id"] = uploaded["id"]

    try:
        inserted_id = create_document("product", data, database=db)
    except PyMongoError as exc:
        _release_photo(photo_store, data["photo_id"])
        if isinstance(exc, DuplicateKeyError):
            logger.warning("Rejected product with duplicate code %s", product.code)
            raise DuplicateKey(f"Product code already exists: {product.code}") from exc
        raise Unexpected(f"Could not store product: {exc}") from exc

    logger.info("Created product %s (%s)", product.code, inserted_id)
    return serialize(db["product"].find_one({"_id": ObjectId(inserted_id)}))


def get_product(db: Database, product_ref: str) -> dict:
    product = db["product"].find_one(product_filter(db, product_ref))
    if product is None:
        raise NotFound(f"Product not found: {product_ref}")
    return serialize(product)


def list_products(db: Database) -> list:
    return get_documents("product", limit=LIST_LIMIT, database=db)


def search_products(db: Database, q: str) -> list:
    """Case-insensitive substring match over code, name and category."""
    pattern = {"$regex": re.escape(q), "$options": "i"}
    fil = {"$or": [{"code": pattern}, {"name": pattern}, {"category": pattern}]}
    return get_documents("product", fil, limit=LIST_LIMIT, database=db)


def delete_product(db: Database, product_ref: str, photo_store: Optional[PhotoStore] = None) -> None:
    """Delete a product and release its photo."""
    product = db["product"].find_one(product_filter(db, product_ref))
    if product is None:
        raise NotFound(f"Product not found: {product_ref}")

    if product.get("photo_id"):
        if photo_store is None:
            raise Unexpected("Photo storage not configured")
        try:
            photo_store.delete(product["photo_id"])
        except Exception as exc:
            raise Unexpected(f"Photo deletion failed: {exc}") from exc

    db["product"].delete_one({"_id": product["_id"]})
    logger.info("Deleted product %s", product["code"])


def get_transaction(db: Database, kind: str, transaction_id: str) -> dict:
    if not ObjectId.is_valid(transaction_id):
        raise NotFound(f"{kind.capitalize()} not found: {transaction_id}")
    doc = db[kind].find_one({"_id": ObjectId(transaction_id)})
    if doc is None:
        raise NotFound(f"{kind.capitalize()} not found: {transaction_id}")
    return serialize(doc)


def list_records(db: Database, kind: str) -> list:
    return get_documents(kind, limit=LIST_LIMIT, database=db)


def record_payment(db: Database, record) -> dict:
    """Append a payment (to a supplier) or collection (from a client).

    The referenced transaction and its balance are not checked.
    """
    if not isinstance(record, (Payment, Collection)):
        raise TypeError(f"Expected Payment or Collection, got {type(record).__name__}")
    kind = COLLECTION if isinstance(record, Collection) else PAYMENT
    try:
        inserted_id = create_document(kind, record, database=db)
    except PyMongoError as exc:
        raise Unexpected(f"Could not store {kind}: {exc}") from exc
    logger.info("Logged %s of %s against %s", kind, record.amount, record.transaction_id)
    return serialize(db[kind].find_one({"_id": ObjectId(inserted_id)}))
