"""
Tests for the order workflow: checkout, cancellation and status transitions,
with stock reconciliation checked after every step.
"""
import warnings
from pathlib import Path
from unittest.mock import patch

import pytest

from cart import add_item, get_cart
from conftest import ADDRESS, auth_headers
from errors import Forbidden, InvalidState, NotFound, ValidationFailed
from orders import cancel_order, checkout, generate_order_number, resolve_shipping_address, update_order_status
from schemas import AddToCartRequest, CheckoutRequest, ShippingAddress


def _stock(db, product):
    return db["product"].find_one({"_id": product["_id"]})["stock"]


def _fill_cart(db, user, product, quantity=1):
    add_item(db, user, AddToCartRequest(product_id=str(product["_id"]), quantity=quantity))


def _place(db, user, product, quantity=1, method="COD"):
    _fill_cart(db, user, product, quantity)
    return checkout(db, user, CheckoutRequest(payment_method=method, shipping_address=ShippingAddress(**ADDRESS)))


class TestCheckout:

    def test_checkout_places_order(self, client, user_headers, db, user, product):
        _fill_cart(db, user, product, 2)
        resp = client.post("/orders/checkout", headers=user_headers,
                           json={"payment_method": "COD", "shipping_address": ADDRESS})
        assert resp.status_code == 201
        order = resp.json()
        assert order["order_status"] == "Pending"
        assert order["payment_status"] == "Pending"
        assert order["total_price"] == pytest.approx(20.0)
        assert order["shipping_price"] == 0
        assert order["order_number"].startswith("ORD-")
        assert order["items"][0]["title"] == "Plain Tee"
        assert _stock(db, product) == 3
        assert get_cart(db, str(user["_id"]))["items"] == []

    def test_empty_cart(self, client, user_headers):
        resp = client.post("/orders/checkout", headers=user_headers,
                           json={"payment_method": "COD", "shipping_address": ADDRESS})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Your cart is empty"

    def test_insufficient_stock_creates_nothing(self, db, user, product):
        _fill_cart(db, user, product, 3)
        db["product"].update_one({"_id": product["_id"]}, {"$set": {"stock": 2}})
        with pytest.raises(InvalidState) as exc:
            checkout(db, user, CheckoutRequest(payment_method="COD", shipping_address=ShippingAddress(**ADDRESS)))
        assert "Plain Tee" in exc.value.detail
        assert db["order"].count_documents({}) == 0
        assert _stock(db, product) == 2
        assert len(get_cart(db, str(user["_id"]))["items"]) == 1

    def test_lost_race_releases_earlier_reservations(self, db, user, make_product):
        first = make_product(title="First", stock=5)
        second = make_product(title="Second", stock=5)
        _fill_cart(db, user, first, 2)
        _fill_cart(db, user, second, 2)
        with patch("orders.reserve_stock", side_effect=[True, False]), \
                patch("orders.release_stock") as release:
            with pytest.raises(InvalidState):
                checkout(db, user, CheckoutRequest(payment_method="COD",
                                                   shipping_address=ShippingAddress(**ADDRESS)))
        release.assert_called_once_with(db, str(first["_id"]), 2)
        assert db["order"].count_documents({}) == 0

    def test_deleted_product(self, db, user, product):
        _fill_cart(db, user, product)
        db["product"].delete_one({"_id": product["_id"]})
        with pytest.raises(NotFound):
            checkout(db, user, CheckoutRequest(payment_method="COD", shipping_address=ShippingAddress(**ADDRESS)))

    def test_order_number_collision_retries(self, db, user, product, make_product):
        _place(db, user, product)
        taken = db["order"].find_one()["order_number"]
        other = make_product(title="Other")
        with patch("orders.generate_order_number", side_effect=[taken, "ORD-2099-0001"]):
            order = _place(db, user, other)
        assert order["order_number"] == "ORD-2099-0001"

    def test_order_number_exhausted_restores_stock(self, db, user, product, make_product):
        _place(db, user, product)
        taken = db["order"].find_one()["order_number"]
        other = make_product(title="Other", stock=4)
        with patch("orders.generate_order_number", return_value=taken):
            with pytest.raises(InvalidState):
                _place(db, user, other, 2)
        assert _stock(db, other) == 4
        assert db["order"].count_documents({}) == 1

    def test_order_number_format(self):
        prefix, year, digits = generate_order_number().split("-")
        assert prefix == "ORD"
        assert len(year) == 4
        assert 1000 <= int(digits) <= 9999


class TestShippingAddress:

    def test_supplied_address_wins(self, user):
        resolved = resolve_shipping_address({**user, "addresses": []}, ShippingAddress(**ADDRESS))
        assert resolved["street"] == "1 Main St"

    def test_default_saved_address(self, user):
        addresses = [{**ADDRESS, "street": "First"}, {**ADDRESS, "street": "Default", "is_default": True}]
        assert resolve_shipping_address({**user, "addresses": addresses}, None)["street"] == "Default"

    def test_first_saved_address(self, user):
        addresses = [{**ADDRESS, "street": "First", "phone": None}, {**ADDRESS, "street": "Second"}]
        resolved = resolve_shipping_address({**user, "addresses": addresses}, None)
        assert resolved["street"] == "First"
        assert resolved["phone"] == ""

    def test_no_address(self, user):
        with pytest.raises(ValidationFailed):
            resolve_shipping_address(user, None)


class TestCancel:

    def test_cancel_restores_stock_once(self, client, user_headers, db, user, product):
        order = _place(db, user, product, 2)
        assert _stock(db, product) == 3
        first = client.patch(f"/orders/my-orders/{order['_id']}/cancel", headers=user_headers)
        assert first.status_code == 200
        assert first.json()["order_status"] == "Cancelled"
        assert _stock(db, product) == 5
        second = client.patch(f"/orders/my-orders/{order['_id']}/cancel", headers=user_headers)
        assert second.status_code == 200
        assert _stock(db, product) == 5

    def test_cancel_by_order_number(self, db, user, product):
        order = _place(db, user, product)
        assert cancel_order(db, order["order_number"], user)["order_status"] == "Cancelled"

    def test_cancel_unknown(self, db, user):
        with pytest.raises(NotFound):
            cancel_order(db, "ORD-1999-0000", user)

    def test_cancel_not_owner(self, db, user, other_user, product):
        order = _place(db, user, product)
        with pytest.raises(Forbidden):
            cancel_order(db, str(order["_id"]), other_user)

    def test_shipped_needs_admin(self, db, user, admin, make_product):
        a = make_product(title="A", stock=5)
        b = make_product(title="B", stock=5)
        _fill_cart(db, user, a, 2)
        order = _place(db, user, b, 1)
        update_order_status(db, str(order["_id"]), "Shipped")

        with pytest.raises(InvalidState):
            cancel_order(db, str(order["_id"]), user)
        assert _stock(db, a) == 3

        cancelled = cancel_order(db, str(order["_id"]), admin)
        assert cancelled["order_status"] == "Cancelled"
        assert _stock(db, a) == 5
        assert _stock(db, b) == 5

    def test_delivered_cannot_be_cancelled(self, db, user, admin, product):
        order = _place(db, user, product)
        update_order_status(db, str(order["_id"]), "Delivered")
        with pytest.raises(InvalidState):
            cancel_order(db, str(order["_id"]), admin)


class TestStatusUpdates:

    def test_admin_only(self, client, user_headers, db, user, product):
        order = _place(db, user, product)
        resp = client.patch(f"/orders/admin/{order['_id']}/status", headers=user_headers,
                            json={"status": "Shipped"})
        assert resp.status_code == 403

    def test_unknown_status_rejected(self, client, admin_headers, db, user, product):
        order = _place(db, user, product)
        resp = client.patch(f"/orders/admin/{order['_id']}/status", headers=admin_headers,
                            json={"status": "Lost"})
        assert resp.status_code == 422

    def test_cod_delivery_marks_paid(self, client, admin_headers, db, user, product):
        order = _place(db, user, product)
        resp = client.patch(f"/orders/admin/{order['_id']}/status", headers=admin_headers,
                            json={"status": "Delivered"})
        assert resp.status_code == 200
        assert resp.json()["order_status"] == "Delivered"
        assert resp.json()["payment_status"] == "Paid"

    def test_card_delivery_keeps_payment_status(self, db, user, product):
        order = _place(db, user, product, method="Card")
        assert update_order_status(db, str(order["_id"]), "Delivered")["payment_status"] == "Pending"

    def test_cancel_via_status_restores_stock_once(self, db, user, product):
        order = _place(db, user, product, 2)
        update_order_status(db, str(order["_id"]), "Processing")
        update_order_status(db, str(order["_id"]), "Cancelled")
        assert _stock(db, product) == 5
        update_order_status(db, str(order["_id"]), "Cancelled")
        assert _stock(db, product) == 5

    def test_terminal_states_are_final(self, db, user, product):
        order = _place(db, user, product)
        update_order_status(db, str(order["_id"]), "Cancelled")
        with pytest.raises(InvalidState):
            update_order_status(db, str(order["_id"]), "Pending")
        assert _stock(db, product) == 5

    def test_invalid_order_id(self, db):
        with pytest.raises(ValidationFailed):
            update_order_status(db, "nope", "Shipped")

    def test_stock_never_negative(self, db, user, other_user, product):
        _place(db, user, product, 5)
        assert _stock(db, product) == 0
        with pytest.raises(InvalidState):
            _fill_cart(db, other_user, product, 1)
        assert _stock(db, product) >= 0


class TestViewing:

    def test_my_orders_newest_first(self, client, user_headers, db, user, make_product):
        first = _place(db, user, make_product(title="One"))
        second = _place(db, user, make_product(title="Two"))
        resp = client.get("/orders/my-orders", headers=user_headers)
        assert [o["id"] for o in resp.json()] == [str(second["_id"]), str(first["_id"])]

    def test_view_own_order(self, client, user_headers, db, user, product):
        order = _place(db, user, product)
        assert client.get(f"/orders/my-orders/{order['_id']}", headers=user_headers).status_code == 200

    def test_view_foreign_order(self, client, db, user, other_user, admin, product):
        order = _place(db, user, product)
        url = f"/orders/my-orders/{order['_id']}"
        assert client.get(url, headers=auth_headers(other_user)).status_code == 403
        assert client.get(url, headers=auth_headers(admin)).status_code == 200

    def test_view_bad_ids(self, client, user_headers):
        assert client.get("/orders/my-orders/bad", headers=user_headers).status_code == 400
        assert client.get(f"/orders/my-orders/{'0' * 24}", headers=user_headers).status_code == 404

    def test_admin_list_includes_customer(self, client, admin_headers, db, user, product):
        _place(db, user, product)
        orders = client.get("/orders/admin/all", headers=admin_headers).json()
        assert orders[0]["user"] == {"id": str(user["_id"]), "name": "Alice", "email": "alice@example.com"}


def test_module_source_compiles_without_escape_warnings():
    source = (Path(__file__).resolve().parent.parent / "orders.py").read_text()
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        compile(source, "orders.py", "exec")
