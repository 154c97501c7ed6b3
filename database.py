"""
MongoDB access for the Stock Ledger API.

Exposes the module-level ``db`` handle (``None`` when no database is
configured) plus small helpers shared by the ledger and the HTTP layer.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from settings import DATABASE_NAME, DATABASE_URL, get_logger

logger = get_logger("database")

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_indexes(database: Database) -> None:
    """Create the indexes the ledger relies on (idempotent)."""
    database["product"].create_index([("code", ASCENDING)], unique=True)
    database["product"].create_index([("created_at", DESCENDING)])
    for name in ("sale", "purchase", "payment", "collection"):
        database[name].create_index([("created_at", DESCENDING)])
    logger.info("Indexes ensured on %s", database.name)


def create_document(collection_name: str, data: Union[BaseModel, dict], database: Optional[Database] = None) -> str:
    """Insert a document stamped with created_at/updated_at and return its id as a string."""
    database = database if database is not None else db
    if database is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    now = utcnow()
    if data_dict.get("created_at") is None:
        data_dict["created_at"] = now
    data_dict["updated_at"] = now

    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  database: Optional[Database] = None) -> list:
    """Return documents most recent first, with ``_id`` rendered as a string."""
    database = database if database is not None else db
    if database is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME.")

    cursor = database[collection_name].find(filter_dict or {}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
    if limit:
        cursor = cursor.limit(limit)

    docs = list(cursor)
    for doc in docs:
        doc["_id"] = str(doc["_id"])
    return docs


def ledger_status(database: Database) -> dict:
    """Document counts per ledger collection and whether product codes are enforced unique."""
    indexes = database["product"].index_information()
    code_index = any(
        info.get("unique") and [field for field, _ in info["key"]] == ["code"]
        for info in indexes.values()
    )
    counts = {
        name: database[name].count_documents({})
        for name in ("product", "sale", "purchase", "payment", "collection")
    }
    return {"unique_product_code": bool(code_index), "counts": counts}
