from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import catalog
import ledger
from database import db, ensure_indexes, ledger_status
from ledger import ItemRequest, LedgerError, Unexpected
from photos import photo_store_from_env
from schemas import Collection as CollectionSchema, Payment as PaymentSchema, Product as ProductSchema
from settings import PORT, get_logger

logger = get_logger("api")

photo_store = photo_store_from_env()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if db is not None:
        ensure_indexes(db)
    else:
        logger.warning("DATABASE_URL/DATABASE_NAME not set; API will answer 500 on data endpoints")
    yield


app = FastAPI(title="Stock Ledger API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----- Helpers -----

def get_db():
    if db is None:
        raise Unexpected("Database not configured")
    return db


# ----- Error responses -----

@app.exception_handler(LedgerError)
async def ledger_error_handler(_: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "kind": type(exc).__name__})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError):
    message = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": message, "kind": "ValidationFailure"})


@app.exception_handler(PyMongoError)
async def storage_error_handler(_: Request, exc: PyMongoError):
    logger.error("Storage failure: %s", exc)
    return JSONResponse(status_code=500, content={"error": f"Storage failure: {exc}", "kind": "Unexpected"})


@app.exception_handler(Exception)
async def unexpected_error_handler(_: Request, exc: Exception):
    logger.exception("Unhandled error")
    return JSONResponse(status_code=500, content={"error": "Internal server error", "kind": "Unexpected"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


# ----- Request bodies -----

class CreateProductRequest(ProductSchema):
    base64_photo: Optional[str] = None


class StockAdjustment(BaseModel):
    quantity: int  # positive = entry, negative = exit


class TransactionItem(BaseModel):
    product_ref: str
    quantity: int
    unit_price: Optional[float] = None


class CreateSaleRequest(BaseModel):
    client: Optional[str] = None
    items: List[TransactionItem]


class CreatePurchaseRequest(BaseModel):
    supplier: Optional[str] = None
    items: List[TransactionItem]


def _item_requests(items: List[TransactionItem]) -> List[ItemRequest]:
    return [ItemRequest(product_ref=i.product_ref, quantity=i.quantity, unit_price=i.unit_price) for i in items]


# ----- Product Endpoints -----

@app.post("/api/products", response_model=dict)
def add_product(payload: CreateProductRequest):
    product = ProductSchema(**payload.model_dump(exclude={"base64_photo"}))
    return catalog.create_product(get_db(), product, payload.base64_photo, photo_store)


@app.get("/api/products", response_model=List[dict])
def list_products():
    return catalog.list_products(get_db())


@app.get("/api/products/search", response_model=List[dict])
def search_products(q: str):
    return catalog.search_products(get_db(), q)


@app.get("/api/products/{product_ref}", response_model=dict)
def get_product(product_ref: str):
    return catalog.get_product(get_db(), product_ref)


@app.patch("/api/products/{product_ref}/stock", response_model=dict)
def adjust_stock(product_ref: str, payload: StockAdjustment):
    return ledger.adjust_stock(get_db(), product_ref, payload.quantity)


@app.delete("/api/products/{product_ref}", response_model=dict)
def delete_product(product_ref: str):
    catalog.delete_product(get_db(), product_ref, photo_store)
    return {"deleted": True}


# ----- Sales / Purchases -----

@app.post("/api/sales", response_model=dict)
def create_sale(payload: CreateSaleRequest):
    return ledger.record_transaction(get_db(), ledger.SALE, _item_requests(payload.items), payload.client)


@app.get("/api/sales", response_model=List[dict])
def list_sales():
    return catalog.list_records(get_db(), ledger.SALE)


@app.get("/api/sales/{sale_id}", response_model=dict)
def get_sale(sale_id: str):
    return catalog.get_transaction(get_db(), ledger.SALE, sale_id)


@app.post("/api/purchases", response_model=dict)
def create_purchase(payload: CreatePurchaseRequest):
    return ledger.record_transaction(get_db(), ledger.PURCHASE, _item_requests(payload.items), payload.supplier)


@app.get("/api/purchases", response_model=List[dict])
def list_purchases():
    return catalog.list_records(get_db(), ledger.PURCHASE)


@app.get("/api/purchases/{purchase_id}", response_model=dict)
def get_purchase(purchase_id: str):
    return catalog.get_transaction(get_db(), ledger.PURCHASE, purchase_id)


# ----- Payments / Collections -----

@app.post("/api/payments", response_model=dict)
def add_payment(payment: PaymentSchema):
    return catalog.record_payment(get_db(), payment)


@app.get("/api/payments", response_model=List[dict])
def list_payments():
    return catalog.list_records(get_db(), catalog.PAYMENT)


@app.post("/api/collections", response_model=dict)
def add_collection(collection: CollectionSchema):
    return catalog.record_payment(get_db(), collection)


@app.get("/api/collections", response_model=List[dict])
def list_collections():
    return catalog.list_records(get_db(), catalog.COLLECTION)


# ----- Misc -----

@app.get("/")
def read_root():
    return {"message": "Stock Ledger API"}


@app.get("/health")
def health():
    """Report whether the store is reachable and the product code index is in place."""
    if db is None:
        return {"database": "not configured"}
    return {"database": "connected", **ledger_status(db)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
