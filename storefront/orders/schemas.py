from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict
from decimal import Decimal
from datetime import datetime, timezone
import math

from storefront.shared.config import settings
from storefront.shared.security_config import sanitize_input
from storefront.shared.utils import Pagination, to_money
from storefront.orders.lifecycle import OrderStatus, PaymentStatus

# --- Cart ---
class CartItemAdd(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1, le=settings.MAX_CART_ITEM_QUANTITY)

class CartItemUpdate(BaseModel):
    quantity: int = Field(..., le=settings.MAX_CART_ITEM_QUANTITY, description="0 or less removes the line")

class CartSyncItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)

class CartSyncRequest(BaseModel):
    items: List[CartSyncItem] = []

class CartProductView(BaseModel):
    id: str
    name: str
    images: List[str] = []
    price: Decimal
    stock_quantity: int
    in_stock: bool
    is_active: bool

class CartItemResponse(BaseModel):
    product_id: str
    quantity: int
    price: Decimal
    subtotal: Decimal
    product: Optional[CartProductView] = None

class CartResponse(BaseModel):
    user_id: str
    items: List[CartItemResponse]
    total: Decimal
    item_count: int
    updated_at: Optional[datetime] = None

class CartCountResponse(BaseModel):
    item_count: int

class CartSyncResponse(BaseModel):
    cart: CartResponse
    skipped: List[dict] = []

# --- Orders ---
class ShippingAddress(BaseModel):
    type: str = Field("home", pattern="^(home|work|other)$")
    street: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    zip_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field("United States", max_length=100)

    @field_validator('street', 'city', 'state', 'zip_code', 'country')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class OrderCreate(BaseModel):
    shipping_address: ShippingAddress
    payment_method: str = Field("cod", pattern="^cod$")
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator('notes')
    def sanitize_notes(cls, v):
        return sanitize_input(v)

class CancelOrderRequest(BaseModel):
    cancellation_reason: Optional[str] = Field(None, max_length=500)

    @field_validator('cancellation_reason')
    def sanitize_reason(cls, v):
        return sanitize_input(v)

class AdminOrderStatusUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    tracking_number: Optional[str] = Field(None, max_length=100)
    estimated_delivery: Optional[datetime] = None
    admin_notes: Optional[str] = Field(None, max_length=1000)
    force: bool = False

    @field_validator('tracking_number', 'admin_notes')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

    @field_validator('estimated_delivery')
    def naive_utc(cls, v):
        # Stored datetimes are naive UTC
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

class ShippingAddressResponse(BaseModel):
    type: str
    street: str
    city: str
    state: str
    zip_code: str
    country: str

class OrderItemResponse(BaseModel):
    product_id: str
    name: str
    price: Decimal
    quantity: int
    image: Optional[str] = None

class StatusChangeResponse(BaseModel):
    from_status: Optional[str] = Field(None, alias="from")
    to_status: str = Field(..., alias="to")
    at: datetime
    actor: str
    forced: bool = False
    note: Optional[str] = None

    class Config:
        populate_by_name = True

class OrderResponse(BaseModel):
    id: str
    user_id: str
    order_number: str
    items: List[OrderItemResponse]
    shipping_address: ShippingAddressResponse
    payment_method: str
    payment_status: PaymentStatus
    payment_status_display: str
    order_status: OrderStatus
    status_display: str
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    total: Decimal
    item_count: int
    delivery_days: Optional[int] = None
    notes: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    admin_notes: Optional[str] = None
    status_history: List[StatusChangeResponse] = []
    created_at: datetime
    updated_at: Optional[datetime] = None

class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    pagination: Pagination

class TrackingItem(BaseModel):
    name: str
    quantity: int
    image: Optional[str] = None

class TrackingResponse(BaseModel):
    order_number: str
    order_status: OrderStatus
    status_display: str
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    created_at: datetime
    items: List[TrackingItem]

class OrderStatsResponse(BaseModel):
    total_orders: int
    status_counts: Dict[str, int]
    total_spent: Decimal
    average_order_value: Decimal

class AdminOrderStatsResponse(BaseModel):
    total_orders: int
    status_counts: Dict[str, int]
    payment_status_counts: Dict[str, int]
    total_revenue: Decimal
    average_order_value: Decimal

class DailyRevenue(BaseModel):
    date: str
    revenue: Decimal
    orders: int

class RevenueResponse(BaseModel):
    period: str
    start_date: datetime
    total_revenue: Decimal
    order_count: int
    daily: List[DailyRevenue]


MONEY_FIELDS = ("subtotal", "shipping_cost", "tax", "total")


def delivery_days(order: dict) -> Optional[int]:
    """Days from placement to delivery, or to the estimate while in transit."""
    end = order.get("delivered_at") or order.get("estimated_delivery")
    if not end:
        return None
    # Partial days count as a whole day
    return max(math.ceil((end - order["created_at"]).total_seconds() / 86400), 0)


def serialize_order(doc: dict) -> dict:
    data = dict(doc)
    data["id"] = str(doc["_id"])
    for key in MONEY_FIELDS:
        data[key] = to_money(doc.get(key))
    data["items"] = [dict(item, price=to_money(item["price"])) for item in doc.get("items", [])]
    data["status_display"] = OrderStatus(doc["order_status"]).display
    data["payment_status_display"] = PaymentStatus(doc["payment_status"]).display
    data["item_count"] = sum(item["quantity"] for item in doc.get("items", []))
    data["delivery_days"] = delivery_days(doc)
    return data
