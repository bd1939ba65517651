"""Tests for money handling, totals and order numbers."""
import re
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from storefront.orders.checkout import calculate_totals
from storefront.orders.models import cart_totals, generate_order_number
from storefront.orders.schemas import delivery_days
from storefront.shared.utils import Pagination, to_money, to_mongo


@pytest.mark.parametrize("subtotal,shipping,tax,total", [
    ("0.01", "10.00", "0.00", "10.01"),
    ("99.99", "10.00", "8.00", "117.99"),
    ("100.00", "10.00", "8.00", "118.00"),
    ("100.01", "0.00", "8.00", "108.01"),
    ("250.50", "0.00", "20.04", "270.54"),
])
def test_calculate_totals(subtotal, shipping, tax, total):
    totals = calculate_totals(Decimal(subtotal))
    assert totals.shipping_cost == Decimal(shipping)
    assert totals.tax == Decimal(tax)
    assert totals.total == Decimal(total)
    assert totals.total == totals.subtotal + totals.shipping_cost + totals.tax


def test_to_money_rounds_half_up():
    assert to_money(2.675) == Decimal("2.68")
    assert to_money("0.125") == Decimal("0.13")
    assert to_money(None) == Decimal("0.00")


def test_to_mongo_converts_nested_decimals():
    doc = {"total": Decimal("1.10"), "items": [{"price": Decimal("0.55")}], "name": "x"}
    assert to_mongo(doc) == {"total": 1.1, "items": [{"price": 0.55}], "name": "x"}


def test_cart_totals_avoid_float_drift():
    items = [{"price": 0.1, "quantity": 3}, {"price": 0.2, "quantity": 1}]
    assert cart_totals(items) == (Decimal("0.50"), 4)
    assert cart_totals([]) == (Decimal("0.00"), 0)


def test_order_number_format_and_uniqueness():
    numbers = {generate_order_number() for _ in range(200)}
    assert len(numbers) == 200
    assert all(re.fullmatch(r"ORD-[0-9A-Z]+-[0-9A-Z]{5}", n) for n in numbers)


def test_delivery_days():
    created = datetime(2026, 1, 1, 12)
    assert delivery_days({"created_at": created}) is None
    assert delivery_days({"created_at": created, "estimated_delivery": created + timedelta(days=5)}) == 5
    assert delivery_days({
        "created_at": created,
        "estimated_delivery": created + timedelta(days=5),
        "delivered_at": created + timedelta(days=2, hours=3),
    }) == 3
    assert delivery_days({"created_at": created, "delivered_at": created + timedelta(days=2)}) == 2
    assert delivery_days({"created_at": created, "estimated_delivery": created - timedelta(hours=1)}) == 0


def test_pagination_build():
    page = Pagination.build(page=1, limit=10, total=0)
    assert page.total_pages == 0
    assert not page.has_next_page and not page.has_prev_page
    assert Pagination.build(page=3, limit=10, total=31).has_next_page
