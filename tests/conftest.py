"""Shared fixtures.

The app runs against an in-memory Mongo (mongomock-motor) and records emails
in memory. Service-level tests drive coroutines with ``run``.
"""
import asyncio
from decimal import Decimal

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from storefront.auth.models import UserDB
from storefront.main import create_app, ensure_indexes
from storefront.notifications.email import InMemoryEmailSender
from storefront.orders import cart as cart_service
from storefront.products.models import ProductDB, CategoryDB
from storefront.shared.config import settings
from storefront.shared.security_config import limiter
from storefront.shared.utils import create_access_token, to_mongo

ADDRESS = {
    "type": "home",
    "street": "12 Market Street",
    "city": "Springfield",
    "state": "IL",
    "zip_code": "62701",
    "country": "United States",
}


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def mongo_client():
    return AsyncMongoMockClient()


@pytest.fixture
def db(mongo_client):
    database = mongo_client[settings.MONGO_DB_NAME]
    run(ensure_indexes(database))
    return database


@pytest.fixture
def email_sender():
    return InMemoryEmailSender()


@pytest.fixture
def app(mongo_client, email_sender):
    limiter.enabled = False
    return create_app(client_factory=lambda url: mongo_client, email_sender=email_sender)


@pytest.fixture
def client(app, db):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(db):
    def _make(email="buyer@example.com", name="Buyer", role="user"):
        user = UserDB(email=email, password_hash="unused", name=name, role=role).dict(by_alias=True, exclude={"id"})
        user["_id"] = run(db.users.insert_one(user)).inserted_id
        user["id"] = str(user["_id"])
        token = create_access_token({"sub": user["id"], "role": role})
        user["headers"] = {"Authorization": f"Bearer {token}"}
        return user
    return _make


@pytest.fixture
def buyer(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@example.com", name="Admin", role="admin")


@pytest.fixture
def make_category(db):
    def _make(slug="gadgets", name="Gadgets"):
        run(db.categories.insert_one(CategoryDB(name=name, slug=slug).dict(by_alias=True, exclude={"id"})))
        return slug
    return _make


@pytest.fixture
def make_product(db):
    def _make(name="Widget", price="25.00", stock=10, is_active=True, category="gadgets", is_featured=False):
        product = ProductDB(
            name=name,
            description=f"{name} description",
            price=Decimal(price),
            images=[f"https://cdn.example.com/{name.lower()}.jpg"],
            category=category,
            stock_quantity=stock,
            is_active=is_active,
            is_featured=is_featured,
        )
        result = run(db.products.insert_one(to_mongo(product.dict(by_alias=True, exclude={"id"}))))
        return str(result.inserted_id)
    return _make


@pytest.fixture
def stock_of(db):
    def _stock(product_id):
        return run(db.products.find_one({"_id": ObjectId(product_id)}))["stock_quantity"]
    return _stock


@pytest.fixture
def fill_cart(db):
    def _fill(user, *lines):
        cart = None
        for product_id, quantity in lines:
            cart = run(cart_service.add_item(db, user["id"], product_id, quantity))
        return cart
    return _fill
