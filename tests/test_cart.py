"""Tests for the cart endpoints and cart service."""
from decimal import Decimal

import pytest
from bson import ObjectId

from storefront.orders import cart as cart_service
from storefront.shared.utils import InsufficientStockException, NotFoundException

from conftest import run


def _line(cart, product_id):
    return next(item for item in cart["items"] if item["product_id"] == product_id)


class TestGetCart:
    def test_empty_cart_shape_for_new_user(self, client, buyer):
        response = client.get("/api/cart", headers=buyer["headers"])
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["data"]["items"] == []
        assert Decimal(body["data"]["total"]) == 0
        assert body["data"]["item_count"] == 0

    def test_requires_authentication(self, client):
        response = client.get("/api/cart")
        assert response.status_code == 401
        assert response.json()["status"] == "error"

    def test_lines_carry_live_product_view(self, client, buyer, make_product, fill_cart):
        product_id = make_product(price="12.50", stock=4)
        fill_cart(buyer, (product_id, 2))

        data = client.get("/api/cart", headers=buyer["headers"]).json()["data"]
        line = data["items"][0]
        assert line["product"]["name"] == "Widget"
        assert line["product"]["in_stock"] is True
        assert Decimal(line["subtotal"]) == Decimal("25.00")


class TestAddItem:
    def test_add_creates_cart_with_price_snapshot(self, client, buyer, make_product):
        product_id = make_product(price="19.99")
        response = client.post("/api/cart/add", json={"product_id": product_id, "quantity": 2}, headers=buyer["headers"])
        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data["items"]) == 1
        assert Decimal(data["items"][0]["price"]) == Decimal("19.99")
        assert Decimal(data["total"]) == Decimal("39.98")
        assert data["item_count"] == 2

    def test_adding_same_product_twice_merges_lines(self, client, buyer, make_product):
        product_id = make_product(stock=10)
        client.post("/api/cart/add", json={"product_id": product_id, "quantity": 2}, headers=buyer["headers"])
        response = client.post("/api/cart/add", json={"product_id": product_id, "quantity": 3}, headers=buyer["headers"])

        data = response.json()["data"]
        assert len(data["items"]) == 1
        assert data["items"][0]["quantity"] == 5
        assert data["item_count"] == 5

    def test_merge_keeps_original_snapshot_price(self, db, buyer, make_product, fill_cart):
        product_id = make_product(price="10.00")
        fill_cart(buyer, (product_id, 1))
        run(db.products.update_one({"_id": ObjectId(product_id)}, {"$set": {"price": 15.0}}))

        cart = run(cart_service.add_item(db, buyer["id"], product_id, 1))
        assert _line(cart, product_id)["price"] == 10.0
        assert cart["total"] == 20.0

    def test_insufficient_stock(self, client, buyer, make_product):
        product_id = make_product(stock=3)
        response = client.post("/api/cart/add", json={"product_id": product_id, "quantity": 4}, headers=buyer["headers"])
        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Only 3 items available in stock"
        assert body["data"]["available"] == 3

    def test_merged_quantity_checked_against_stock(self, client, buyer, make_product):
        product_id = make_product(stock=5)
        client.post("/api/cart/add", json={"product_id": product_id, "quantity": 3}, headers=buyer["headers"])
        response = client.post("/api/cart/add", json={"product_id": product_id, "quantity": 3}, headers=buyer["headers"])
        assert response.status_code == 400
        assert response.json()["data"]["requested"] == 6

    def test_merged_quantity_capped_per_line(self, client, buyer, make_product):
        product_id = make_product(stock=500)
        client.post("/api/cart/add", json={"product_id": product_id, "quantity": 60}, headers=buyer["headers"])
        response = client.post("/api/cart/add", json={"product_id": product_id, "quantity": 50}, headers=buyer["headers"])
        assert response.status_code == 400
        assert response.json()["data"]["max_quantity"] == 100

    def test_inactive_product_is_unavailable(self, client, buyer, make_product):
        product_id = make_product(is_active=False)
        response = client.post("/api/cart/add", json={"product_id": product_id, "quantity": 1}, headers=buyer["headers"])
        assert response.status_code == 400
        assert response.json()["message"] == "Product is not available"

    def test_out_of_stock_product_is_unavailable(self, client, buyer, make_product):
        product_id = make_product(stock=0)
        response = client.post("/api/cart/add", json={"product_id": product_id, "quantity": 1}, headers=buyer["headers"])
        assert response.status_code == 400

    @pytest.mark.parametrize("product_id", [str(ObjectId()), "not-an-id"])
    def test_missing_product(self, client, buyer, product_id):
        response = client.post("/api/cart/add", json={"product_id": product_id, "quantity": 1}, headers=buyer["headers"])
        assert response.status_code == 404

    def test_zero_quantity_rejected(self, client, buyer, make_product):
        product_id = make_product()
        response = client.post("/api/cart/add", json={"product_id": product_id, "quantity": 0}, headers=buyer["headers"])
        assert response.status_code == 422


class TestUpdateItem:
    def test_quantity_zero_removes_line(self, client, buyer, make_product, fill_cart):
        keep = make_product(name="Keep", price="10.00")
        drop = make_product(name="Drop", price="7.50")
        fill_cart(buyer, (keep, 1), (drop, 2))

        response = client.put(f"/api/cart/update/{drop}", json={"quantity": 0}, headers=buyer["headers"])
        assert response.status_code == 200
        data = response.json()["data"]
        assert [item["product_id"] for item in data["items"]] == [keep]
        # Total drops by exactly 2 x 7.50
        assert Decimal(data["total"]) == Decimal("10.00")
        assert data["item_count"] == 1

    def test_update_sets_quantity(self, client, buyer, make_product, fill_cart):
        product_id = make_product(stock=10)
        fill_cart(buyer, (product_id, 1))
        response = client.put(f"/api/cart/update/{product_id}", json={"quantity": 7}, headers=buyer["headers"])
        assert response.json()["data"]["items"][0]["quantity"] == 7

    def test_update_above_stock(self, db, buyer, make_product, fill_cart):
        product_id = make_product(stock=3)
        fill_cart(buyer, (product_id, 1))
        with pytest.raises(InsufficientStockException):
            run(cart_service.update_item_quantity(db, buyer["id"], product_id, 4))

    def test_update_line_not_in_cart(self, client, buyer, make_product, fill_cart):
        in_cart = make_product(name="In")
        other = make_product(name="Other")
        fill_cart(buyer, (in_cart, 1))
        response = client.put(f"/api/cart/update/{other}", json={"quantity": 1}, headers=buyer["headers"])
        assert response.status_code == 404
        assert response.json()["message"] == "Item not found in cart"

    def test_update_without_cart(self, db, buyer, make_product):
        with pytest.raises(NotFoundException):
            run(cart_service.update_item_quantity(db, buyer["id"], make_product(), 1))


class TestRemoveAndClear:
    def test_remove_missing_line_is_noop(self, client, buyer, make_product, fill_cart):
        product_id = make_product()
        fill_cart(buyer, (product_id, 2))
        before = client.get("/api/cart", headers=buyer["headers"]).json()["data"]

        response = client.delete(f"/api/cart/remove/{ObjectId()}", headers=buyer["headers"])
        assert response.status_code == 200
        after = response.json()["data"]
        assert after["items"] == before["items"]
        assert after["total"] == before["total"]

    def test_remove_twice_is_idempotent(self, client, buyer, make_product, fill_cart):
        product_id = make_product()
        fill_cart(buyer, (product_id, 2))
        first = client.delete(f"/api/cart/remove/{product_id}", headers=buyer["headers"])
        second = client.delete(f"/api/cart/remove/{product_id}", headers=buyer["headers"])
        assert first.status_code == second.status_code == 200
        assert second.json()["data"]["items"] == []

    def test_remove_without_cart_returns_empty_shape(self, client, buyer):
        response = client.delete(f"/api/cart/remove/{ObjectId()}", headers=buyer["headers"])
        assert response.status_code == 200
        assert response.json()["data"]["item_count"] == 0

    def test_clear(self, client, buyer, make_product, fill_cart):
        fill_cart(buyer, (make_product(name="A"), 1), (make_product(name="B"), 2))
        response = client.delete("/api/cart/clear", headers=buyer["headers"])
        data = response.json()["data"]
        assert data["items"] == []
        assert Decimal(data["total"]) == 0


class TestTotalsInvariant:
    def test_totals_match_lines_after_mixed_operations(self, db, buyer, make_product):
        a = make_product(name="A", price="3.33", stock=50)
        b = make_product(name="B", price="0.10", stock=50)
        c = make_product(name="C", price="99.99", stock=50)

        run(cart_service.add_item(db, buyer["id"], a, 3))
        run(cart_service.add_item(db, buyer["id"], b, 7))
        run(cart_service.add_item(db, buyer["id"], c, 1))
        run(cart_service.update_item_quantity(db, buyer["id"], a, 5))
        run(cart_service.remove_item(db, buyer["id"], c))
        cart = run(cart_service.add_item(db, buyer["id"], b, 2))

        expected_total = sum(Decimal(str(i["price"])) * i["quantity"] for i in cart["items"])
        assert Decimal(str(cart["total"])) == expected_total == Decimal("17.55")
        assert cart["item_count"] == sum(i["quantity"] for i in cart["items"]) == 14


class TestCountAndSync:
    def test_count(self, client, buyer, make_product, fill_cart):
        assert client.get("/api/cart/count", headers=buyer["headers"]).json()["data"]["item_count"] == 0
        fill_cart(buyer, (make_product(), 3))
        assert client.get("/api/cart/count", headers=buyer["headers"]).json()["data"]["item_count"] == 3

    def test_sync_replaces_cart_and_reports_skips(self, client, buyer, make_product, fill_cart):
        old = make_product(name="Old")
        fill_cart(buyer, (old, 1))
        fine = make_product(name="Fine", stock=10)
        short = make_product(name="Short", stock=2)
        inactive = make_product(name="Gone", is_active=False)
        missing = str(ObjectId())

        response = client.post("/api/cart/sync", json={"items": [
            {"product_id": fine, "quantity": 1},
            {"product_id": fine, "quantity": 1},
            {"product_id": short, "quantity": 5},
            {"product_id": inactive, "quantity": 1},
            {"product_id": missing, "quantity": 1},
        ]}, headers=buyer["headers"])

        assert response.status_code == 200
        data = response.json()["data"]
        quantities = {item["product_id"]: item["quantity"] for item in data["cart"]["items"]}
        assert quantities == {fine: 2, short: 2}
        reasons = {skip["product_id"]: skip["reason"] for skip in data["skipped"]}
        assert reasons == {short: "quantity_capped", inactive: "unavailable", missing: "not_found"}
