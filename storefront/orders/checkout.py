"""Checkout: turn a user's cart into an order.

Order insert, stock decrements and cart clear are separate single-document
writes. They are coordinated through a checkout intent stored in the
``checkouts`` collection before the first write:

    started -> order_created -> stock_reserved -> completed
    started | order_created -> rolled_back

A failed conditional decrement rolls the attempt back on the spot (restore
what was taken, delete the order). ``recover_checkouts`` finishes intents
left behind by a crashed process: ``stock_reserved`` rolls forward, earlier
states roll back.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from storefront.orders.models import (
    CheckoutDB, OrderDB, OrderItemDB, cart_totals, generate_order_number,
)
from storefront.products.models import is_available
from storefront.products.stock import decrement_stock, restore_items
from storefront.shared.config import settings
from storefront.shared.utils import (
    CENTS, to_money, to_mongo, EmptyCartException, UnavailableItemsException,
)

logger = logging.getLogger("storefront.checkout")

ORDER_NUMBER_ATTEMPTS = 3


class CheckoutState:
    STARTED = "started"
    ORDER_CREATED = "order_created"
    STOCK_RESERVED = "stock_reserved"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"

    OPEN = (STARTED, ORDER_CREATED, STOCK_RESERVED)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    total: Decimal


def calculate_totals(subtotal: Decimal) -> OrderTotals:
    subtotal = to_money(subtotal)
    if subtotal > settings.FREE_SHIPPING_THRESHOLD:
        shipping_cost = Decimal("0.00")
    else:
        shipping_cost = to_money(settings.SHIPPING_FEE)
    tax = (subtotal * settings.TAX_RATE).quantize(CENTS, rounding=ROUND_HALF_UP)
    return OrderTotals(
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax=tax,
        total=subtotal + shipping_cost + tax,
    )


def _unavailable_line(line: dict, product: Optional[dict]) -> dict:
    available = 0
    if product and product.get("is_active", False):
        available = max(product.get("stock_quantity", 0), 0)
    return {
        "product_id": line["product_id"],
        "name": product["name"] if product else None,
        "requested": line["quantity"],
        "available": available,
    }


async def _load_products(db, lines) -> dict:
    ids = [ObjectId(line["product_id"]) for line in lines]
    products = {}
    async for doc in db.products.find({"_id": {"$in": ids}}):
        products[str(doc["_id"])] = doc
    return products


async def _set_state(db, checkout_id, state: str, **fields):
    fields.update({"state": state, "updated_at": datetime.utcnow()})
    await db.checkouts.update_one({"_id": checkout_id}, {"$set": fields})


async def _clear_cart(db, user_id: str):
    await db.carts.update_one(
        {"user_id": user_id},
        {"$set": {"items": [], "total": 0.0, "item_count": 0, "updated_at": datetime.utcnow()}},
    )


async def _roll_back(db, checkout: dict, error: str):
    restored = await restore_items(db, checkout.get("decremented", []))
    await db.orders.delete_one({
        "order_number": checkout["order_number"],
        "checkout_id": str(checkout["_id"]),
    })
    await _set_state(db, checkout["_id"], CheckoutState.ROLLED_BACK, error=error)
    logger.warning("Checkout rolled back", extra={
        "checkout_id": str(checkout["_id"]),
        "order_number": checkout["order_number"],
        "user_id": checkout["user_id"],
        "quantity": restored,
    })


async def _roll_forward(db, checkout: dict):
    await _clear_cart(db, checkout["user_id"])
    await _set_state(db, checkout["_id"], CheckoutState.COMPLETED)
    logger.info("Checkout rolled forward", extra={
        "checkout_id": str(checkout["_id"]),
        "order_number": checkout["order_number"],
        "user_id": checkout["user_id"],
    })


async def recover_checkouts(db, user_id: Optional[str] = None, older_than: Optional[timedelta] = None) -> dict:
    """Resolve checkout intents that were abandoned mid-sequence."""
    if older_than is None:
        older_than = timedelta(seconds=settings.CHECKOUT_RECOVERY_SECONDS)
    query = {
        "state": {"$in": list(CheckoutState.OPEN)},
        "updated_at": {"$lte": datetime.utcnow() - older_than},
    }
    if user_id is not None:
        query["user_id"] = user_id

    summary = {"rolled_forward": 0, "rolled_back": 0}
    async for checkout in db.checkouts.find(query):
        if checkout["state"] == CheckoutState.STOCK_RESERVED:
            await _roll_forward(db, checkout)
            summary["rolled_forward"] += 1
        else:
            await _roll_back(db, checkout, "recovered after interruption")
            summary["rolled_back"] += 1
    return summary


async def _insert_order(db, checkout_id, order: OrderDB) -> ObjectId:
    for attempt in range(ORDER_NUMBER_ATTEMPTS):
        try:
            result = await db.orders.insert_one(to_mongo(order.dict(by_alias=True, exclude={"id"})))
            return result.inserted_id
        except DuplicateKeyError:
            if attempt == ORDER_NUMBER_ATTEMPTS - 1:
                raise
            order.order_number = generate_order_number()
            await db.checkouts.update_one(
                {"_id": checkout_id}, {"$set": {"order_number": order.order_number}}
            )


async def place_order(db, user: dict, shipping_address: dict, notes: Optional[str] = None) -> dict:
    """Create an order from the user's cart. Returns the stored order."""
    user_id = user["id"]
    await recover_checkouts(db, user_id=user_id)

    cart = await db.carts.find_one({"user_id": user_id})
    if not cart or not cart.get("items"):
        raise EmptyCartException()
    lines = cart["items"]

    # All-or-nothing validation against the live catalog
    products = await _load_products(db, lines)
    unavailable = []
    for line in lines:
        product = products.get(line["product_id"])
        if product is None or not is_available(product) or product["stock_quantity"] < line["quantity"]:
            unavailable.append(_unavailable_line(line, product))
    if unavailable:
        raise UnavailableItemsException(unavailable)

    subtotal, _ = cart_totals(lines)
    totals = calculate_totals(subtotal)

    checkout = CheckoutDB(
        user_id=user_id,
        order_number=generate_order_number(),
        lines=[{"product_id": line["product_id"], "quantity": line["quantity"]} for line in lines],
    )
    checkout_doc = checkout.dict(by_alias=True, exclude={"id"})
    checkout_id = (await db.checkouts.insert_one(checkout_doc)).inserted_id
    checkout_doc["_id"] = checkout_id

    order = OrderDB(
        user_id=user_id,
        order_number=checkout.order_number,
        items=[
            OrderItemDB(
                product_id=line["product_id"],
                name=products[line["product_id"]]["name"],
                price=to_money(line["price"]),
                quantity=line["quantity"],
                image=next(iter(products[line["product_id"]].get("images") or []), None),
            )
            for line in lines
        ],
        shipping_address=shipping_address,
        subtotal=totals.subtotal,
        shipping_cost=totals.shipping_cost,
        tax=totals.tax,
        total=totals.total,
        notes=notes,
        checkout_id=str(checkout_id),
    )
    order_id = await _insert_order(db, checkout_id, order)
    checkout_doc["order_number"] = order.order_number
    await _set_state(db, checkout_id, CheckoutState.ORDER_CREATED)

    for line in lines:
        taken = await decrement_stock(db, ObjectId(line["product_id"]), line["quantity"])
        if taken is None:
            # Another checkout got there first
            current = await db.products.find_one({"_id": ObjectId(line["product_id"])})
            await _roll_back(db, checkout_doc, f"stock changed for {line['product_id']}")
            raise UnavailableItemsException([_unavailable_line(line, current)])
        taken_line = {"product_id": line["product_id"], "quantity": line["quantity"]}
        checkout_doc["decremented"].append(taken_line)
        await db.checkouts.update_one(
            {"_id": checkout_id},
            {"$push": {"decremented": taken_line}, "$set": {"updated_at": datetime.utcnow()}},
        )
    await _set_state(db, checkout_id, CheckoutState.STOCK_RESERVED)

    await _clear_cart(db, user_id)
    await _set_state(db, checkout_id, CheckoutState.COMPLETED)

    created = await db.orders.find_one({"_id": order_id})
    logger.info("Order created", extra={
        "order_id": str(order_id),
        "order_number": created["order_number"],
        "user_id": user_id,
        "checkout_id": str(checkout_id),
    })
    return created
