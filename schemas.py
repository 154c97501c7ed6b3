"""
Database Schemas for the Stock Ledger

Each Pydantic model represents a MongoDB collection in the connected database.
Collection name is the lowercase of the class name (e.g., Product -> "product").
Sale and Purchase share the Transaction shape; Payment and Collection share
the PaymentRecord shape.
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

WALK_IN_CLIENT = "Walk-in"
UNKNOWN_SUPPLIER = "Unknown"


class Product(BaseModel):
    """Products held in inventory"""
    code: str = Field(..., min_length=1, description="Unique business code / SKU")
    name: str = Field(..., min_length=1, description="Display name")
    category: str = Field("", description="Category")
    stock: int = Field(0, ge=0, le=2 ** 63 - 1, description="Units in stock")
    cost_price: float = Field(0.0, ge=0, allow_inf_nan=False, description="Cost price")
    sale_price: float = Field(0.0, ge=0, allow_inf_nan=False, description="Sale price")
    supplier: str = Field("", description="Supplier label")
    photo_url: str = Field("", description="Public URL of the attached photo")
    photo_id: str = Field("", description="Photo store identifier, used for deletion")


class LineItem(BaseModel):
    """Snapshot of a product at transaction time"""
    product_id: str = Field(..., description="Referenced product _id as string")
    code: str = Field(..., description="Product code at time of transaction")
    name: str = Field(..., description="Product name at time of transaction")
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)
    subtotal: float = Field(..., ge=0, description="quantity * unit_price")


class Transaction(BaseModel):
    items: List[LineItem] = Field(default_factory=list)
    subtotal: float = Field(..., ge=0)
    tax_rate: float = Field(..., ge=0)
    tax: float = Field(..., ge=0)
    total: float = Field(..., ge=0)
    created_at: Optional[datetime] = None


class Sale(Transaction):
    """Sales to clients; stock goes down"""
    client: str = Field(WALK_IN_CLIENT)


class Purchase(Transaction):
    """Purchases from suppliers; stock goes up"""
    supplier: str = Field(UNKNOWN_SUPPLIER)


class PaymentRecord(BaseModel):
    amount: float = Field(..., gt=0, allow_inf_nan=False)
    method: str = Field("cash", description="Payment method label")
    transaction_id: str = Field(..., min_length=1, description="Originating sale/purchase _id")
    created_at: Optional[datetime] = None


class Payment(PaymentRecord):
    """Money paid to a supplier against a purchase"""
    supplier: str = Field(UNKNOWN_SUPPLIER)


class Collection(PaymentRecord):
    """Money collected from a client against a sale"""
    client: str = Field(WALK_IN_CLIENT)
