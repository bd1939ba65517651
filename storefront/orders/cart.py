"""Cart operations.

One cart document per user, created lazily on the first write. ``total`` and
``item_count`` are recomputed from the lines on every write and are never
accepted from anywhere else.
"""
import logging
from datetime import datetime
from typing import List, Optional

from bson import ObjectId

from storefront.orders.models import CartDB, CartItemDB, cart_totals
from storefront.products.models import is_available
from storefront.shared.config import settings
from storefront.shared.utils import (
    str_to_oid, to_money, to_mongo, NotFoundException, UnavailableException,
    InsufficientStockException, BadRequestException,
)

logger = logging.getLogger("storefront.cart")


def _check_line_limit(quantity: int):
    if quantity > settings.MAX_CART_ITEM_QUANTITY:
        raise BadRequestException(
            f"Quantity cannot exceed {settings.MAX_CART_ITEM_QUANTITY} per item",
            details={"max_quantity": settings.MAX_CART_ITEM_QUANTITY},
        )


async def _save_items(db, user_id: str, items: List[dict]) -> dict:
    total, item_count = cart_totals(items)
    now = datetime.utcnow()
    await db.carts.update_one(
        {"user_id": user_id},
        {
            "$set": {
                "items": to_mongo(items),
                "total": to_mongo(total),
                "item_count": item_count,
                "updated_at": now,
            },
            "$setOnInsert": {"created_at": now},
        },
        upsert=True,
    )
    return await db.carts.find_one({"user_id": user_id})


async def get_cart_doc(db, user_id: str) -> Optional[dict]:
    return await db.carts.find_one({"user_id": user_id})


async def build_cart_view(db, user_id: str, cart: Optional[dict] = None) -> dict:
    """Cart lines joined with the live product state for display."""
    if cart is None:
        cart = await get_cart_doc(db, user_id)
    if not cart:
        cart = CartDB(user_id=user_id).dict()

    items = cart.get("items", [])
    product_ids = [ObjectId(item["product_id"]) for item in items]
    products = {}
    if product_ids:
        async for doc in db.products.find({"_id": {"$in": product_ids}}):
            products[str(doc["_id"])] = doc

    lines = []
    for item in items:
        price = to_money(item["price"])
        product = products.get(item["product_id"])
        lines.append({
            "product_id": item["product_id"],
            "quantity": item["quantity"],
            "price": price,
            "subtotal": to_money(price * item["quantity"]),
            "product": {
                "id": item["product_id"],
                "name": product["name"],
                "images": product.get("images", []),
                "price": to_money(product["price"]),
                "stock_quantity": product.get("stock_quantity", 0),
                "in_stock": product.get("stock_quantity", 0) > 0,
                "is_active": product.get("is_active", False),
            } if product else None,
        })

    total, item_count = cart_totals(items)
    return {
        "user_id": user_id,
        "items": lines,
        "total": total,
        "item_count": item_count,
        "updated_at": cart.get("updated_at"),
    }


async def add_item(db, user_id: str, product_id: str, quantity: int) -> dict:
    product = await db.products.find_one({"_id": str_to_oid(product_id, "Product")})
    if not product:
        raise NotFoundException("Product not found")
    if not is_available(product):
        raise UnavailableException("Product is not available")

    cart = await get_cart_doc(db, user_id)
    items = list(cart.get("items", [])) if cart else []

    existing = next((item for item in items if item["product_id"] == product_id), None)
    new_quantity = quantity + (existing["quantity"] if existing else 0)
    _check_line_limit(new_quantity)
    if product["stock_quantity"] < new_quantity:
        raise InsufficientStockException(product_id, new_quantity, product["stock_quantity"])

    if existing:
        # Merge: the original price snapshot is kept
        existing["quantity"] = new_quantity
    else:
        items.append(CartItemDB(
            product_id=product_id,
            quantity=quantity,
            price=to_money(product["price"]),
        ).dict())

    logger.info("Cart item added", extra={"user_id": user_id, "product_id": product_id, "quantity": quantity})
    return await _save_items(db, user_id, items)


async def update_item_quantity(db, user_id: str, product_id: str, quantity: int) -> dict:
    cart = await get_cart_doc(db, user_id)
    if not cart:
        raise NotFoundException("Cart not found")

    items = list(cart.get("items", []))
    line = next((item for item in items if item["product_id"] == product_id), None)
    if line is None:
        raise NotFoundException("Item not found in cart")

    if quantity <= 0:
        return await remove_item(db, user_id, product_id)

    _check_line_limit(quantity)
    product = await db.products.find_one({"_id": str_to_oid(product_id, "Product")})
    if not product:
        raise NotFoundException("Product not found")
    if not product.get("is_active", False):
        raise UnavailableException("Product is not available")
    if product["stock_quantity"] < quantity:
        raise InsufficientStockException(product_id, quantity, product["stock_quantity"])

    line["quantity"] = quantity
    return await _save_items(db, user_id, items)


async def remove_item(db, user_id: str, product_id: str) -> Optional[dict]:
    """Drop the line for ``product_id``. Missing carts and lines are no-ops."""
    cart = await get_cart_doc(db, user_id)
    if not cart:
        return None
    items = [item for item in cart.get("items", []) if item["product_id"] != product_id]
    if len(items) == len(cart.get("items", [])):
        return cart
    return await _save_items(db, user_id, items)


async def clear_cart(db, user_id: str) -> Optional[dict]:
    cart = await get_cart_doc(db, user_id)
    if not cart:
        return None
    return await _save_items(db, user_id, [])


async def item_count(db, user_id: str) -> int:
    cart = await get_cart_doc(db, user_id)
    return cart.get("item_count", 0) if cart else 0


async def sync_cart(db, user_id: str, lines: List[dict]):
    """Replace the cart with client-side ``lines``.

    Unknown or unavailable products are skipped; quantities are capped at
    the available stock and the per-line limit. Returns ``(cart, skipped)``.
    """
    merged = {}
    for line in lines:
        merged[line["product_id"]] = merged.get(line["product_id"], 0) + line["quantity"]

    items = []
    skipped = []
    for product_id, requested in merged.items():
        try:
            oid = str_to_oid(product_id, "Product")
        except NotFoundException:
            skipped.append({"product_id": product_id, "reason": "not_found"})
            continue
        product = await db.products.find_one({"_id": oid})
        if not product:
            skipped.append({"product_id": product_id, "reason": "not_found"})
            continue
        if not is_available(product):
            skipped.append({"product_id": product_id, "reason": "unavailable"})
            continue

        quantity = min(requested, product["stock_quantity"], settings.MAX_CART_ITEM_QUANTITY)
        if quantity < requested:
            skipped.append({"product_id": product_id, "reason": "quantity_capped", "quantity": quantity})
        items.append(CartItemDB(
            product_id=product_id,
            quantity=quantity,
            price=to_money(product["price"]),
        ).dict())

    cart = await _save_items(db, user_id, items)
    return cart, skipped
