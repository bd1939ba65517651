from datetime import datetime
from typing import Optional, List, Tuple, Iterable
from decimal import Decimal
import secrets
import string
import time
from pydantic import BaseModel, Field

from storefront.shared.utils import to_money

class CartItemDB(BaseModel):
    product_id: str
    quantity: int
    price: Decimal # Snapshot at add time
    added_at: datetime = Field(default_factory=datetime.utcnow)

class CartDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    items: List[CartItemDB] = []
    total: Decimal = Decimal("0")
    item_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class ShippingAddressDB(BaseModel):
    type: str = "home"
    street: str
    city: str
    state: str
    zip_code: str
    country: str = "United States"

class OrderItemDB(BaseModel):
    product_id: str
    name: str
    price: Decimal
    quantity: int
    image: Optional[str] = None

class StatusChangeDB(BaseModel):
    from_status: Optional[str] = Field(None, alias="from")
    to_status: str = Field(..., alias="to")
    at: datetime = Field(default_factory=datetime.utcnow)
    actor: str
    forced: bool = False
    note: Optional[str] = None

    class Config:
        populate_by_name = True

class OrderDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    order_number: str
    items: List[OrderItemDB]
    shipping_address: ShippingAddressDB
    payment_method: str = "cod"
    payment_status: str = "pending"
    order_status: str = "pending"
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    total: Decimal
    notes: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    admin_notes: Optional[str] = None
    status_history: List[StatusChangeDB] = []
    checkout_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

class CheckoutDB(BaseModel):
    """Durable record of an in-flight checkout; see orders.checkout."""
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    order_number: str
    lines: List[dict]
    state: str = "started"
    decremented: List[dict] = []
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True


def cart_totals(items: Iterable[dict]) -> Tuple[Decimal, int]:
    """Derive (total, item_count) from cart lines. Never read the stored values."""
    total = Decimal("0")
    count = 0
    for item in items:
        total += to_money(item["price"]) * item["quantity"]
        count += item["quantity"]
    return to_money(total), count


_BASE36 = string.digits + string.ascii_uppercase

def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))

def generate_order_number() -> str:
    timestamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"ORD-{timestamp}-{suffix}"
