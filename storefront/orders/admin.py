from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
import logging
import re

from bson import ObjectId

from storefront.shared.utils import (
    get_db, str_to_oid, to_money, SuccessResponse, Pagination,
    NotFoundException, BadRequestException, ConflictException,
)
from storefront.auth.dependencies import require_admin
from storefront.orders.lifecycle import OrderStatus, PaymentStatus, Actor, transition_order
from storefront.orders.schemas import (
    AdminOrderStatusUpdate, OrderResponse, OrderListResponse,
    AdminOrderStatsResponse, RevenueResponse, serialize_order,
)
from storefront.products.stock import restore_items

logger = logging.getLogger("storefront.admin")

router = APIRouter(prefix="/admin", tags=["admin"])

REVENUE_PERIODS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}


async def _get_order(db, order_id: str) -> dict:
    order = await db.orders.find_one({"_id": str_to_oid(order_id, "Order")})
    if not order:
        raise NotFoundException("Order not found")
    return order


async def _count_by(db, field: str) -> dict:
    counts = {}
    async for row in db.orders.aggregate([{"$group": {"_id": f"${field}", "count": {"$sum": 1}}}]):
        counts[row["_id"]] = row["count"]
    return counts


@router.get("/orders", response_model=SuccessResponse[OrderListResponse])
async def list_all_orders(
    request: Request,
    admin: dict = Depends(require_admin),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    search: Optional[str] = None,
):
    db = get_db(request)
    query = {}
    if status:
        query["order_status"] = status.value
    if payment_status:
        query["payment_status"] = payment_status.value
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"order_number": pattern}, {"items.name": pattern}]

    skip = (page - 1) * limit
    total = await db.orders.count_documents(query)
    cursor = db.orders.find(query).sort("created_at", -1).skip(skip).limit(limit)
    orders = [OrderResponse(**serialize_order(doc)) for doc in await cursor.to_list(length=limit)]
    return SuccessResponse(data=OrderListResponse(orders=orders, pagination=Pagination.build(page, limit, total)))


@router.get("/orders/stats", response_model=SuccessResponse[AdminOrderStatsResponse])
async def order_stats(request: Request, admin: dict = Depends(require_admin)):
    db = get_db(request)
    status_counts = {s.value: 0 for s in OrderStatus}
    status_counts.update(await _count_by(db, "order_status"))
    payment_status_counts = {s.value: 0 for s in PaymentStatus}
    payment_status_counts.update(await _count_by(db, "payment_status"))

    revenue = Decimal("0")
    counted = 0
    async for doc in db.orders.find({"order_status": {"$ne": OrderStatus.CANCELLED.value}}, {"total": 1}):
        revenue += to_money(doc["total"])
        counted += 1

    return SuccessResponse(data=AdminOrderStatsResponse(
        total_orders=sum(status_counts.values()),
        status_counts=status_counts,
        payment_status_counts=payment_status_counts,
        total_revenue=to_money(revenue),
        average_order_value=to_money(revenue / counted) if counted else Decimal("0.00"),
    ))


@router.get("/orders/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(order_id: str, request: Request, admin: dict = Depends(require_admin)):
    db = get_db(request)
    return SuccessResponse(data=OrderResponse(**serialize_order(await _get_order(db, order_id))))


@router.put("/orders/{order_id}/status", response_model=SuccessResponse[OrderResponse])
async def update_order_status(
    order_id: str,
    update: AdminOrderStatusUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    admin: dict = Depends(require_admin),
):
    db = get_db(request)
    if update.status is None and not (update.tracking_number or update.estimated_delivery or update.admin_notes):
        raise BadRequestException("Nothing to update")

    order = await _get_order(db, order_id)
    result = await transition_order(
        db, order, update.status,
        actor=Actor.ADMIN,
        reason=update.admin_notes if update.status == OrderStatus.CANCELLED else None,
        tracking_number=update.tracking_number,
        estimated_delivery=update.estimated_delivery,
        # A cancel keeps the notes as its reason only
        admin_notes=None if update.status == OrderStatus.CANCELLED else update.admin_notes,
        force=update.force,
    )

    if result.changed:
        customer = await db.users.find_one({"_id": ObjectId(order["user_id"])})
        if customer:
            background_tasks.add_task(request.app.state.notifier.status_changed, result.order, customer)

    message = f"Order status updated to {result.status.value}" if result.changed else "Order updated"
    return SuccessResponse(data=OrderResponse(**serialize_order(result.order)), message=message)


@router.delete("/orders/{order_id}", response_model=SuccessResponse[dict])
async def delete_order(order_id: str, request: Request, admin: dict = Depends(require_admin)):
    db = get_db(request)
    order = await _get_order(db, order_id)
    if order["order_status"] != OrderStatus.PENDING.value:
        raise BadRequestException("Only pending orders can be deleted")

    result = await db.orders.delete_one({"_id": order["_id"], "order_status": OrderStatus.PENDING.value})
    if result.deleted_count == 0:
        raise ConflictException("Order was modified concurrently, please retry")

    restored = await restore_items(db, order["items"])
    logger.info("Order deleted", extra={
        "order_id": order_id,
        "order_number": order["order_number"],
        "user_id": admin["id"],
        "quantity": restored,
    })
    return SuccessResponse(data={"id": order_id, "stock_restored": restored}, message="Order deleted successfully")


@router.get("/analytics/revenue", response_model=SuccessResponse[RevenueResponse])
async def revenue_analytics(
    request: Request,
    admin: dict = Depends(require_admin),
    period: str = Query("30d", pattern="^(7d|30d|90d|1y)$"),
):
    db = get_db(request)
    start = datetime.utcnow() - timedelta(days=REVENUE_PERIODS[period])
    query = {
        "created_at": {"$gte": start},
        "order_status": {"$ne": OrderStatus.CANCELLED.value},
    }

    daily = defaultdict(lambda: {"revenue": Decimal("0"), "orders": 0})
    async for doc in db.orders.find(query, {"total": 1, "created_at": 1}):
        bucket = daily[doc["created_at"].strftime("%Y-%m-%d")]
        bucket["revenue"] += to_money(doc["total"])
        bucket["orders"] += 1

    rows = [
        {"date": day, "revenue": to_money(values["revenue"]), "orders": values["orders"]}
        for day, values in sorted(daily.items())
    ]
    return SuccessResponse(data=RevenueResponse(
        period=period,
        start_date=start,
        total_revenue=to_money(sum((row["revenue"] for row in rows), Decimal("0"))),
        order_count=sum(row["orders"] for row in rows),
        daily=rows,
    ))
