"""
Inventory ledger and transaction recorder.

Every stock mutation is a single conditional ``find_one_and_update`` so that
the precondition (enough stock, product exists) and the write happen in one
atomic step on the product document. A multi-item transaction resolves and
pre-checks all of its items before touching stock, and reverts whatever it
already applied if a later item still fails.
"""

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Union

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, utcnow
from schemas import LineItem, Purchase, Sale
from settings import CURRENCY_DECIMALS, TAX_RATE, get_logger

logger = get_logger("ledger")

SALE = "sale"
PURCHASE = "purchase"

_MAX_ADJUST_ATTEMPTS = 5

# Stock is stored as a BSON int64
MAX_QUANTITY = 2 ** 63 - 1
MAX_UNIT_PRICE = 1e12


class LedgerError(Exception):
    """Base class for failures surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(LedgerError):
    """A referenced product or record does not exist."""

    status_code = 404


class InsufficientStock(LedgerError):
    """A sale asks for more units than are available."""

    status_code = 400


class DuplicateKey(LedgerError):
    """A product code is already taken."""

    status_code = 400


class ValidationFailure(LedgerError):
    status_code = 400


class Unexpected(LedgerError):
    """Storage or photo store failure."""

    status_code = 500


@dataclass(frozen=True)
class ItemRequest:
    """One requested line of a sale or purchase."""

    product_ref: str
    quantity: int
    unit_price: Optional[float] = None


@dataclass(frozen=True)
class StockUpdate:
    """Product document as it was before the change, plus the resulting stock."""

    product: dict
    stock: int


def product_filter(db: Database, ref: Union[str, ObjectId]) -> dict:
    """Build a query matching one product by id, falling back to its business code."""
    if isinstance(ref, ObjectId):
        return {"_id": ref}
    if ObjectId.is_valid(ref):
        oid = ObjectId(ref)
        if db["product"].count_documents({"_id": oid}, limit=1):
            return {"_id": oid}
    return {"code": ref}


def serialize(doc: dict) -> dict:
    doc = dict(doc)
    doc["_id"] = str(doc["_id"])
    return doc


def money(value: Decimal) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-CURRENCY_DECIMALS), rounding=ROUND_HALF_UP)


def _check_quantity(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationFailure(f"Quantity must be a whole number of at least 1, got {quantity!r}")
    if quantity > MAX_QUANTITY:
        raise ValidationFailure(f"Quantity cannot exceed {MAX_QUANTITY}, got {quantity}")


def _check_unit_price(product_ref, unit_price) -> None:
    if unit_price is None:
        return
    if isinstance(unit_price, bool) or not isinstance(unit_price, (int, float)) \
            or not math.isfinite(unit_price) or not 0 <= unit_price <= MAX_UNIT_PRICE:
        raise ValidationFailure(
            f"Unit price for {product_ref} must be between 0 and {MAX_UNIT_PRICE:g}, got {unit_price!r}"
        )


# ----- Inventory Ledger -----

def apply_sale_delta(db: Database, product_ref, quantity: int) -> StockUpdate:
    """Take ``quantity`` units out of stock, refusing to go below zero."""
    _check_quantity(quantity)
    flt = product_filter(db, product_ref)
    before = db["product"].find_one_and_update(
        {**flt, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.BEFORE,
    )
    if before is None:
        current = db["product"].find_one(flt)
        if current is None:
            raise NotFound(f"Product not found: {product_ref}")
        raise InsufficientStock(
            f"Insufficient stock for {current['name']}: "
            f"{current.get('stock', 0)} available, {quantity} requested"
        )
    return StockUpdate(product=before, stock=before["stock"] - quantity)


def apply_purchase_delta(db: Database, product_ref, quantity: int) -> StockUpdate:
    """Add ``quantity`` units to stock; there is no upper bound."""
    _check_quantity(quantity)
    before = db["product"].find_one_and_update(
        product_filter(db, product_ref),
        {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.BEFORE,
    )
    if before is None:
        raise NotFound(f"Product not found: {product_ref}")
    return StockUpdate(product=before, stock=before.get("stock", 0) + quantity)


def adjust_stock(db: Database, product_ref, delta: int) -> dict:
    """Manual entry (positive) or exit (negative); the result is clamped at zero."""
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationFailure(f"Stock adjustment must be a whole number, got {delta!r}")
    if abs(delta) > MAX_QUANTITY:
        raise ValidationFailure(f"Stock adjustment cannot exceed {MAX_QUANTITY} units, got {delta}")

    products = db["product"]
    flt = product_filter(db, product_ref)
    for _ in range(_MAX_ADJUST_ATTEMPTS):
        if delta >= 0:
            doc = products.find_one_and_update(
                flt,
                {"$inc": {"stock": delta}, "$set": {"updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        else:
            doc = products.find_one_and_update(
                {**flt, "stock": {"$gte": -delta}},
                {"$inc": {"stock": delta}, "$set": {"updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
            if doc is None:
                doc = products.find_one_and_update(
                    {**flt, "stock": {"$lt": -delta}},
                    {"$set": {"stock": 0, "updated_at": utcnow()}},
                    return_document=ReturnDocument.AFTER,
                )
        if doc is not None:
            logger.info("Adjusted stock of %s by %+d, now %d", doc["code"], delta, doc["stock"])
            return serialize(doc)
        if products.find_one(flt) is None:
            raise NotFound(f"Product not found: {product_ref}")

    raise Unexpected(f"Could not adjust stock of {product_ref}: stock changed concurrently")


def _revert(db: Database, kind: str, applied: List[tuple]) -> None:
    for product_id, quantity in reversed(applied):
        if kind == SALE:
            db["product"].update_one({"_id": product_id}, {"$inc": {"stock": quantity}})
            continue
        reverted = db["product"].find_one_and_update(
            {"_id": product_id, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}},
        )
        if reverted is None:
            logger.error("Could not revert purchase of %d units of %s: stock already consumed", quantity, product_id)
    if applied:
        logger.warning("Reverted %d stock change(s) of an aborted %s", len(applied), kind)


# ----- Transaction Recorder -----

def _resolve_products(db: Database, items: List[ItemRequest]) -> List[dict]:
    products = []
    for item in items:
        product = db["product"].find_one(product_filter(db, item.product_ref))
        if product is None:
            raise NotFound(f"Product not found: {item.product_ref}")
        products.append(product)
    return products


def _precheck_stock(items: List[ItemRequest], products: List[dict]) -> None:
    # The same product may appear on several lines
    requested = {}
    for item, product in zip(items, products):
        requested[product["_id"]] = requested.get(product["_id"], 0) + item.quantity
    for product in products:
        wanted = requested.pop(product["_id"], None)
        if wanted is not None and product.get("stock", 0) < wanted:
            raise InsufficientStock(
                f"Insufficient stock for {product['name']}: "
                f"{product.get('stock', 0)} available, {wanted} requested"
            )


def record_transaction(db: Database, kind: str, items: Iterable[ItemRequest],
                       counterparty: Optional[str] = None, tax_rate: Optional[float] = None) -> dict:
    """Apply the stock effect of ``items`` and store the resulting sale or purchase.

    Sales are priced at each product's current sale price; purchases at the
    caller's unit price, falling back to the product's cost price. Tax is
    ``tax_rate`` (default ``TAX_RATE``) of the subtotal. Either every line's
    stock change is kept and the record is stored, or none is.
    """
    if kind not in (SALE, PURCHASE):
        raise ValueError(f"Unknown transaction kind: {kind}")

    items = list(items)
    if not items:
        raise ValidationFailure("A transaction needs at least one item")
    for item in items:
        _check_quantity(item.quantity)
        _check_unit_price(item.product_ref, item.unit_price)

    rate = Decimal(str(TAX_RATE if tax_rate is None else tax_rate))
    products = _resolve_products(db, items)
    if kind == SALE:
        _precheck_stock(items, products)

    applied = []
    lines = []
    subtotal = Decimal("0")
    try:
        for item, product in zip(items, products):
            if kind == SALE:
                update = apply_sale_delta(db, product["_id"], item.quantity)
                unit_price = update.product.get("sale_price", 0)
            else:
                update = apply_purchase_delta(db, product["_id"], item.quantity)
                unit_price = item.unit_price if item.unit_price is not None else update.product.get("cost_price", 0)
            applied.append((product["_id"], item.quantity))

            line_subtotal = money(Decimal(str(unit_price)) * item.quantity)
            subtotal += line_subtotal
            lines.append(LineItem(
                product_id=str(product["_id"]),
                code=update.product["code"],
                name=update.product["name"],
                quantity=item.quantity,
                unit_price=float(unit_price),
                subtotal=float(line_subtotal),
            ))

        tax = money(subtotal * rate)
        fields = dict(
            items=lines,
            subtotal=float(subtotal),
            tax_rate=float(rate),
            tax=float(tax),
            total=float(subtotal + tax),
            created_at=utcnow(),
        )
        if kind == SALE:
            record = Sale(**fields, **({"client": counterparty} if counterparty else {}))
        else:
            record = Purchase(**fields, **({"supplier": counterparty} if counterparty else {}))
        inserted_id = create_document(kind, record, database=db)
    except Exception as exc:
        _revert(db, kind, applied)
        if isinstance(exc, LedgerError):
            raise
        raise Unexpected(f"Could not record {kind}: {exc}") from exc

    logger.info("Recorded %s %s: %d item(s), total %s", kind, inserted_id, len(lines), fields["total"])
    return record.model_dump() | {"_id": inserted_id}
