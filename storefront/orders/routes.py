from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from decimal import Decimal
from typing import Optional
import logging

from storefront.shared.utils import (
    get_db, str_to_oid, to_money, SuccessResponse, Pagination,
    NotFoundException, ForbiddenException, InvalidTransitionException,
)
from storefront.shared.security_config import limiter
from storefront.auth.dependencies import get_current_user
from storefront.orders import cart as cart_service
from storefront.orders.checkout import place_order
from storefront.orders.lifecycle import (
    OrderStatus, Actor, can_be_cancelled, transition_order,
)
from storefront.orders.schemas import (
    CartItemAdd, CartItemUpdate, CartSyncRequest, CartResponse, CartCountResponse,
    CartSyncResponse, OrderCreate, CancelOrderRequest, OrderResponse,
    OrderListResponse, TrackingResponse, OrderStatsResponse, serialize_order,
)

logger = logging.getLogger("storefront.orders")

cart_router = APIRouter(prefix="/cart", tags=["cart"])
order_router = APIRouter(prefix="/orders", tags=["orders"])


async def _cart_response(db, user_id: str, cart: Optional[dict] = None) -> CartResponse:
    return CartResponse(**await cart_service.build_cart_view(db, user_id, cart))


# Cart
@cart_router.get("", response_model=SuccessResponse[CartResponse])
@limiter.limit("60/minute")
async def get_cart(request: Request, user: dict = Depends(get_current_user)):
    db = get_db(request)
    return SuccessResponse(data=await _cart_response(db, user["id"]))


@cart_router.post("/add", response_model=SuccessResponse[CartResponse])
async def add_to_cart(item: CartItemAdd, request: Request, user: dict = Depends(get_current_user)):
    db = get_db(request)
    cart = await cart_service.add_item(db, user["id"], item.product_id, item.quantity)
    return SuccessResponse(data=await _cart_response(db, user["id"], cart), message="Item added to cart")


@cart_router.put("/update/{product_id}", response_model=SuccessResponse[CartResponse])
async def update_cart_item(product_id: str, update: CartItemUpdate, request: Request, user: dict = Depends(get_current_user)):
    db = get_db(request)
    cart = await cart_service.update_item_quantity(db, user["id"], product_id, update.quantity)
    message = "Item removed from cart" if update.quantity <= 0 else "Cart updated"
    return SuccessResponse(data=await _cart_response(db, user["id"], cart), message=message)


@cart_router.delete("/remove/{product_id}", response_model=SuccessResponse[CartResponse])
async def remove_cart_item(product_id: str, request: Request, user: dict = Depends(get_current_user)):
    db = get_db(request)
    cart = await cart_service.remove_item(db, user["id"], product_id)
    return SuccessResponse(data=await _cart_response(db, user["id"], cart), message="Item removed from cart")


@cart_router.delete("/clear", response_model=SuccessResponse[CartResponse])
async def clear_cart(request: Request, user: dict = Depends(get_current_user)):
    db = get_db(request)
    cart = await cart_service.clear_cart(db, user["id"])
    return SuccessResponse(data=await _cart_response(db, user["id"], cart), message="Cart cleared")


@cart_router.get("/count", response_model=SuccessResponse[CartCountResponse])
async def cart_count(request: Request, user: dict = Depends(get_current_user)):
    db = get_db(request)
    return SuccessResponse(data=CartCountResponse(item_count=await cart_service.item_count(db, user["id"])))


@cart_router.post("/sync", response_model=SuccessResponse[CartSyncResponse])
async def sync_cart(sync: CartSyncRequest, request: Request, user: dict = Depends(get_current_user)):
    db = get_db(request)
    cart, skipped = await cart_service.sync_cart(db, user["id"], [item.dict() for item in sync.items])
    return SuccessResponse(
        data=CartSyncResponse(cart=await _cart_response(db, user["id"], cart), skipped=skipped),
        message="Cart synced",
    )


# Orders
@order_router.post("", response_model=SuccessResponse[OrderResponse], status_code=201)
@limiter.limit("10/minute")
async def create_order(order_in: OrderCreate, request: Request, background_tasks: BackgroundTasks, user: dict = Depends(get_current_user)):
    db = get_db(request)
    order = await place_order(db, user, order_in.shipping_address.dict(), order_in.notes)
    background_tasks.add_task(request.app.state.notifier.order_placed, order, user)
    return SuccessResponse(data=OrderResponse(**serialize_order(order)), message="Order placed successfully")


@order_router.get("", response_model=SuccessResponse[OrderListResponse])
async def list_orders(
    request: Request,
    user: dict = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = None,
):
    db = get_db(request)
    query = {"user_id": user["id"]}
    if status:
        query["order_status"] = status.value

    skip = (page - 1) * limit
    total = await db.orders.count_documents(query)
    cursor = db.orders.find(query).sort("created_at", -1).skip(skip).limit(limit)
    orders = [OrderResponse(**serialize_order(doc)) for doc in await cursor.to_list(length=limit)]
    return SuccessResponse(data=OrderListResponse(orders=orders, pagination=Pagination.build(page, limit, total)))


@order_router.get("/stats/summary", response_model=SuccessResponse[OrderStatsResponse])
async def order_stats(request: Request, user: dict = Depends(get_current_user)):
    db = get_db(request)
    pipeline = [
        {"$match": {"user_id": user["id"]}},
        {"$group": {"_id": "$order_status", "count": {"$sum": 1}, "spent": {"$sum": "$total"}}},
    ]
    status_counts = {s.value: 0 for s in OrderStatus}
    total_orders = 0
    total_spent = Decimal("0")
    async for row in db.orders.aggregate(pipeline):
        status_counts[row["_id"]] = row["count"]
        total_orders += row["count"]
        if row["_id"] != OrderStatus.CANCELLED.value:
            total_spent += to_money(row["spent"])

    counted = total_orders - status_counts[OrderStatus.CANCELLED.value]
    average = to_money(total_spent / counted) if counted else Decimal("0.00")
    return SuccessResponse(data=OrderStatsResponse(
        total_orders=total_orders,
        status_counts=status_counts,
        total_spent=to_money(total_spent),
        average_order_value=average,
    ))


@order_router.get("/tracking/{order_number}", response_model=SuccessResponse[TrackingResponse])
@limiter.limit("30/minute")
async def track_order(order_number: str, request: Request):
    db = get_db(request)
    order = await db.orders.find_one({"order_number": order_number.upper()})
    if not order:
        raise NotFoundException("Order not found")
    return SuccessResponse(data=TrackingResponse(
        order_number=order["order_number"],
        order_status=order["order_status"],
        status_display=OrderStatus(order["order_status"]).display,
        tracking_number=order.get("tracking_number"),
        estimated_delivery=order.get("estimated_delivery"),
        created_at=order["created_at"],
        items=[
            {"name": item["name"], "quantity": item["quantity"], "image": item.get("image")}
            for item in order["items"]
        ],
    ))


@order_router.get("/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(order_id: str, request: Request, user: dict = Depends(get_current_user)):
    db = get_db(request)
    order = await db.orders.find_one({"_id": str_to_oid(order_id, "Order")})
    if not order:
        raise NotFoundException("Order not found")
    if order["user_id"] != user["id"] and user.get("role") != "admin":
        raise ForbiddenException("Not authorized to view this order")
    return SuccessResponse(data=OrderResponse(**serialize_order(order)))


@order_router.put("/{order_id}/cancel", response_model=SuccessResponse[OrderResponse])
async def cancel_order(
    order_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[CancelOrderRequest] = None,
    user: dict = Depends(get_current_user),
):
    db = get_db(request)
    order = await db.orders.find_one({"_id": str_to_oid(order_id, "Order")})
    if not order:
        raise NotFoundException("Order not found")
    if order["user_id"] != user["id"]:
        raise ForbiddenException("Not authorized to cancel this order")
    if not can_be_cancelled(order):
        raise InvalidTransitionException(
            order["order_status"], OrderStatus.CANCELLED.value,
            "Order cannot be cancelled at this stage",
        )

    result = await transition_order(
        db, order, OrderStatus.CANCELLED,
        actor=Actor.CUSTOMER,
        reason=(body.cancellation_reason if body else None) or "Cancelled by customer",
    )
    background_tasks.add_task(request.app.state.notifier.status_changed, result.order, user)
    return SuccessResponse(data=OrderResponse(**serialize_order(result.order)), message="Order cancelled successfully")
