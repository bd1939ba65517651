from fastapi import APIRouter, Depends, Query, Request
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import logging
import re

from storefront.shared.utils import (
    get_db, str_to_oid, money_to_db, SuccessResponse, NotFoundException,
    ConflictException, BadRequestException,
)
from storefront.shared.security_config import limiter
from storefront.auth.dependencies import require_admin, get_optional_user
from storefront.products.schemas import (
    ProductCreate, ProductUpdate, ProductResponse, ProductListResponse,
    CategoryCreate, CategoryResponse, StockAdjustment,
)
from storefront.products.models import ProductDB, CategoryDB, serialize_product
from storefront.products.stock import adjust_stock

logger = logging.getLogger("storefront.products")

router = APIRouter(tags=["products"])

MONEY_FIELDS = ("price", "original_price")


def _money_fields_to_db(data: dict) -> dict:
    for key in MONEY_FIELDS:
        if data.get(key) is not None:
            data[key] = money_to_db(data[key])
    return data


async def _category_exists(db, slug: str) -> bool:
    return await db.categories.find_one({"slug": slug}) is not None


# Products
@router.get("/products", response_model=SuccessResponse[ProductListResponse])
@limiter.limit("60/minute")
async def list_products(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    search: Optional[str] = None,
    in_stock: Optional[bool] = None,
):
    db = get_db(request)
    query = {"is_active": True}
    if category:
        query["category"] = category.lower()

    price_query = {}
    if min_price is not None:
        price_query["$gte"] = float(min_price)
    if max_price is not None:
        price_query["$lte"] = float(max_price)
    if price_query:
        query["price"] = price_query

    if in_stock is True:
        query["stock_quantity"] = {"$gt": 0}
    elif in_stock is False:
        query["stock_quantity"] = {"$lte": 0}

    if search:
        query["name"] = {"$regex": re.escape(search), "$options": "i"}

    skip = (page - 1) * limit
    total = await db.products.count_documents(query)
    cursor = db.products.find(query).sort("created_at", -1).skip(skip).limit(limit)
    products = [ProductResponse(**serialize_product(doc)) for doc in await cursor.to_list(length=limit)]

    return SuccessResponse(data=ProductListResponse(
        products=products,
        total=total,
        page=page,
        limit=limit
    ))


@router.get("/products/featured", response_model=SuccessResponse[List[ProductResponse]])
async def featured_products(request: Request, limit: int = Query(10, ge=1, le=50)):
    db = get_db(request)
    cursor = db.products.find({
        "is_featured": True, "is_active": True, "stock_quantity": {"$gt": 0}
    }).sort("created_at", -1).limit(limit)
    return SuccessResponse(data=[ProductResponse(**serialize_product(doc)) for doc in await cursor.to_list(length=limit)])


@router.get("/products/{product_id}", response_model=SuccessResponse[ProductResponse])
@limiter.limit("60/minute")
async def get_product(product_id: str, request: Request, user: Optional[dict] = Depends(get_optional_user)):
    db = get_db(request)
    query = {"_id": str_to_oid(product_id, "Product")}
    # Admins can still open deactivated products
    if not user or user.get("role") != "admin":
        query["is_active"] = True
    product = await db.products.find_one(query)
    if not product:
        raise NotFoundException("Product not found")
    return SuccessResponse(data=ProductResponse(**serialize_product(product)))


@router.post("/products", response_model=SuccessResponse[ProductResponse], status_code=201)
async def create_product(product: ProductCreate, request: Request, admin: dict = Depends(require_admin)):
    db = get_db(request)
    if not await _category_exists(db, product.category):
        raise BadRequestException(f"Invalid category: '{product.category}' not found")

    product_db = ProductDB(created_by=admin["id"], **product.dict())
    product_dict = _money_fields_to_db(product_db.dict(by_alias=True, exclude={"id"}))

    new_product = await db.products.insert_one(product_dict)
    created_product = await db.products.find_one({"_id": new_product.inserted_id})
    logger.info("Product created", extra={"product_id": str(new_product.inserted_id), "user_id": admin["id"]})

    return SuccessResponse(data=ProductResponse(**serialize_product(created_product)), message="Product created successfully")


@router.put("/products/{product_id}", response_model=SuccessResponse[ProductResponse])
async def update_product(product_id: str, product_update: ProductUpdate, request: Request, admin: dict = Depends(require_admin)):
    db = get_db(request)
    oid = str_to_oid(product_id, "Product")
    product = await db.products.find_one({"_id": oid})
    if not product:
        raise NotFoundException("Product not found")

    update_data = {k: v for k, v in product_update.dict().items() if v is not None}
    if "category" in update_data:
        update_data["category"] = update_data["category"].lower()
        if not await _category_exists(db, update_data["category"]):
            raise BadRequestException(f"Invalid category: '{update_data['category']}' not found")
    _money_fields_to_db(update_data)

    if update_data:
        update_data["updated_at"] = datetime.utcnow()
        await db.products.update_one({"_id": oid}, {"$set": update_data})

    updated_product = await db.products.find_one({"_id": oid})
    return SuccessResponse(data=ProductResponse(**serialize_product(updated_product)), message="Product updated successfully")


@router.delete("/products/{product_id}", response_model=SuccessResponse[dict])
async def delete_product(product_id: str, request: Request, admin: dict = Depends(require_admin)):
    db = get_db(request)
    oid = str_to_oid(product_id, "Product")
    result = await db.products.update_one(
        {"_id": oid},
        {"$set": {"is_active": False, "updated_at": datetime.utcnow()}}
    )
    if result.matched_count == 0:
        raise NotFoundException("Product not found")
    logger.info("Product deactivated", extra={"product_id": product_id, "user_id": admin["id"]})
    return SuccessResponse(data={"id": product_id}, message="Product deleted successfully")


@router.post("/products/{product_id}/stock", response_model=SuccessResponse[ProductResponse])
async def adjust_product_stock(product_id: str, adjustment: StockAdjustment, request: Request, admin: dict = Depends(require_admin)):
    db = get_db(request)
    product = await adjust_stock(db, str_to_oid(product_id, "Product"), adjustment.delta)
    logger.info("Stock adjusted", extra={
        "product_id": product_id, "quantity": adjustment.delta, "user_id": admin["id"],
    })
    return SuccessResponse(data=ProductResponse(**serialize_product(product)), message="Stock updated")


# Categories
@router.get("/categories", response_model=SuccessResponse[List[CategoryResponse]])
async def list_categories(request: Request):
    db = get_db(request)
    categories = []
    async for doc in db.categories.find({"is_active": True}).sort("name", 1):
        doc["id"] = str(doc["_id"])
        categories.append(CategoryResponse(**doc))
    return SuccessResponse(data=categories)


@router.post("/categories", response_model=SuccessResponse[CategoryResponse], status_code=201)
async def create_category(category: CategoryCreate, request: Request, admin: dict = Depends(require_admin)):
    db = get_db(request)
    if await _category_exists(db, category.slug):
        raise ConflictException("Category slug already exists")

    cat_db = CategoryDB(**category.dict())
    new_cat = await db.categories.insert_one(cat_db.dict(by_alias=True, exclude={"id"}))
    created_cat = await db.categories.find_one({"_id": new_cat.inserted_id})
    created_cat["id"] = str(created_cat["_id"])

    return SuccessResponse(data=CategoryResponse(**created_cat), message="Category created successfully")
