from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel, Field

from storefront.shared.config import settings
from storefront.shared.utils import to_money

class ProductDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    description: str
    price: Decimal
    original_price: Optional[Decimal] = None
    images: List[str] = []
    category: str
    brand: Optional[str] = None
    tags: List[str] = []
    stock_quantity: int = 0
    is_active: bool = True
    is_featured: bool = False
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

class CategoryDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    description: Optional[str] = None
    slug: str
    is_active: bool = True

    class Config:
        populate_by_name = True


def is_available(product: dict) -> bool:
    """Whether a product can be put in a cart or ordered at all."""
    return bool(product.get("is_active", False)) and product.get("stock_quantity", 0) > 0


def availability_status(product: dict) -> str:
    if not product.get("is_active", False):
        return "inactive"
    stock = product.get("stock_quantity", 0)
    if stock <= 0:
        return "out-of-stock"
    if stock <= settings.LOW_STOCK_THRESHOLD:
        return "low-stock"
    return "in-stock"


def serialize_product(doc: dict) -> dict:
    doc["id"] = str(doc["_id"])
    doc["price"] = to_money(doc.get("price"))
    if doc.get("original_price") is not None:
        doc["original_price"] = to_money(doc["original_price"])
    doc["in_stock"] = doc.get("stock_quantity", 0) > 0
    doc["availability_status"] = availability_status(doc)
    return doc
