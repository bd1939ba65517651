"""Stock mutations for products.

All writes are relative ``$inc`` deltas. Decrements are conditional on the
current quantity so that concurrent checkouts cannot drive stock below zero;
nothing here clamps silently.
"""
import logging
from datetime import datetime
from typing import Optional

from bson import ObjectId
from pymongo import ReturnDocument

from storefront.shared.utils import InsufficientStockException, NotFoundException

logger = logging.getLogger("storefront.stock")


async def decrement_stock(db, product_id: ObjectId, quantity: int) -> Optional[dict]:
    """Take ``quantity`` units if, and only if, that many are available.

    Returns the updated product, or ``None`` when the product is missing,
    inactive or short of stock.
    """
    product = await db.products.find_one_and_update(
        {"_id": product_id, "is_active": True, "stock_quantity": {"$gte": quantity}},
        {"$inc": {"stock_quantity": -quantity}, "$set": {"updated_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if product is not None:
        logger.info("Stock decremented", extra={
            "product_id": str(product_id), "quantity": quantity,
        })
    return product


async def restore_stock(db, product_id: ObjectId, quantity: int) -> bool:
    # Restores apply even to deactivated products: the units still exist.
    result = await db.products.update_one(
        {"_id": product_id},
        {"$inc": {"stock_quantity": quantity}, "$set": {"updated_at": datetime.utcnow()}},
    )
    if result.matched_count == 0:
        logger.warning("Stock restore skipped, product missing", extra={
            "product_id": str(product_id), "quantity": quantity,
        })
        return False
    logger.info("Stock restored", extra={"product_id": str(product_id), "quantity": quantity})
    return True


async def restore_items(db, items) -> int:
    """Return every ``{product_id, quantity}`` line to stock. Returns units restored."""
    restored = 0
    for item in items:
        if await restore_stock(db, ObjectId(item["product_id"]), item["quantity"]):
            restored += item["quantity"]
    return restored


async def adjust_stock(db, product_id: ObjectId, delta: int) -> dict:
    """Administrative relative adjustment; rejects results below zero."""
    if delta >= 0:
        product = await db.products.find_one_and_update(
            {"_id": product_id},
            {"$inc": {"stock_quantity": delta}, "$set": {"updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if product is None:
            raise NotFoundException("Product not found")
        return product

    product = await db.products.find_one_and_update(
        {"_id": product_id, "stock_quantity": {"$gte": -delta}},
        {"$inc": {"stock_quantity": delta}, "$set": {"updated_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if product is None:
        current = await db.products.find_one({"_id": product_id})
        if current is None:
            raise NotFoundException("Product not found")
        raise InsufficientStockException(str(product_id), -delta, current.get("stock_quantity", 0))
    return product
