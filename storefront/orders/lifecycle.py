"""Order status lifecycle.

State machine:
    pending -> confirmed -> processing -> shipped -> delivered
    pending | confirmed -> cancelled

``transition_order`` is the only code path that writes ``order_status``.
Tracking-number assignment, customer cancellation and admin status updates
all go through it, so their side effects cannot drift apart.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pymongo import ReturnDocument

from storefront.orders.models import StatusChangeDB
from storefront.products.stock import restore_items
from storefront.shared.utils import ConflictException, InvalidTransitionException

logger = logging.getLogger("storefront.orders.lifecycle")


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def display(self) -> str:
        return self.value.capitalize()


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def display(self) -> str:
        return self.value.capitalize()


class Actor(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"
    SYSTEM = "system"


ORDER_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})
PRE_SHIPPING_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING})


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


def can_be_cancelled(order: dict) -> bool:
    return OrderStatus(order["order_status"]) in CANCELLABLE_STATUSES


@dataclass
class TransitionResult:
    order: dict
    previous_status: OrderStatus
    status: OrderStatus
    forced: bool = False
    stock_restored: int = 0

    @property
    def changed(self) -> bool:
        return self.previous_status != self.status


async def transition_order(
    db,
    order: dict,
    target: Optional[OrderStatus] = None,
    *,
    actor: Actor,
    reason: Optional[str] = None,
    tracking_number: Optional[str] = None,
    estimated_delivery: Optional[datetime] = None,
    admin_notes: Optional[str] = None,
    force: bool = False,
) -> TransitionResult:
    """Move ``order`` to ``target`` and apply the side effects of the move.

    When ``target`` is omitted, a tracking number implies ``shipped`` for an
    order that has not shipped yet; otherwise the status is left as is and
    only notes/tracking are written.
    Moves outside ``ORDER_TRANSITIONS`` raise ``InvalidTransitionException``
    unless ``force`` is set; nothing may leave ``cancelled``.

    The write is conditional on the status that was read, so a concurrent
    transition makes this one fail with ``ConflictException`` instead of
    applying side effects twice.
    """
    current = OrderStatus(order["order_status"])
    if target is None:
        target = OrderStatus.SHIPPED if tracking_number and current in PRE_SHIPPING_STATUSES else current
    target = OrderStatus(target)

    forced = False
    if target != current and not can_transition(current, target):
        if current == OrderStatus.CANCELLED:
            raise InvalidTransitionException(
                current.value, target.value, "Cancelled orders cannot be reopened"
            )
        if not force:
            raise InvalidTransitionException(current.value, target.value)
        forced = True
        logger.warning("Forced order transition", extra={
            "order_id": str(order["_id"]),
            "order_number": order.get("order_number"),
            "from_status": current.value,
            "to_status": target.value,
            "actor": Actor(actor).value,
        })

    now = datetime.utcnow()
    updates = {"updated_at": now}
    if tracking_number:
        updates["tracking_number"] = tracking_number
    if estimated_delivery:
        updates["estimated_delivery"] = estimated_delivery
    if admin_notes:
        updates["admin_notes"] = admin_notes

    update = {"$set": updates}
    if target != current:
        updates["order_status"] = target.value
        if target == OrderStatus.DELIVERED:
            # Cash on delivery: payment is collected with the parcel
            updates["delivered_at"] = now
            updates["payment_status"] = PaymentStatus.PAID.value
        elif target == OrderStatus.CANCELLED:
            updates["cancelled_at"] = now
            if reason:
                updates["cancellation_reason"] = reason
            if order.get("payment_status") == PaymentStatus.PAID.value:
                updates["payment_status"] = PaymentStatus.REFUNDED.value

        change = StatusChangeDB(
            from_status=current.value,
            to_status=target.value,
            at=now,
            actor=Actor(actor).value,
            forced=forced,
            note=reason or admin_notes,
        )
        update["$push"] = {"status_history": change.dict(by_alias=True)}

    updated = await db.orders.find_one_and_update(
        {"_id": order["_id"], "order_status": current.value},
        update,
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ConflictException("Order was modified concurrently, please retry")

    restored = 0
    if target == OrderStatus.CANCELLED and current != OrderStatus.CANCELLED:
        restored = await restore_items(db, updated["items"])

    if target != current:
        logger.info("Order status changed", extra={
            "order_id": str(updated["_id"]),
            "order_number": updated.get("order_number"),
            "from_status": current.value,
            "to_status": target.value,
            "actor": Actor(actor).value,
        })

    return TransitionResult(
        order=updated,
        previous_status=current,
        status=target,
        forced=forced,
        stock_restored=restored,
    )
