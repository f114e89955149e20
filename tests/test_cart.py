import pytest

from cart import add_item, cart_total, get_cart, remove_item, update_quantity
from errors import InvalidState, NotFound, ValidationFailed
from schemas import AddToCartRequest, UpdateCartItemRequest


def _add(db, user, product, quantity=1, **variant):
    return add_item(db, user, AddToCartRequest(product_id=str(product["_id"]), quantity=quantity, **variant))


def _assert_total(cart):
    assert cart["total_price"] == pytest.approx(sum(i["price"] * i["quantity"] for i in cart["items"]))


def test_cart_created_lazily(client, user_headers, db):
    resp = client.get("/cart", headers=user_headers)
    assert resp.status_code == 200
    assert resp.json()["items"] == []
    assert db["cart"].count_documents({}) == 1
    client.get("/cart", headers=user_headers)
    assert db["cart"].count_documents({}) == 1


def test_add_merges_same_line(db, user, product):
    _add(db, user, product, 1, selected_color="Red")
    cart = _add(db, user, product, 2, selected_color="Red")
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 3
    _assert_total(cart)


def test_variants_are_separate_lines(db, user, product):
    _add(db, user, product, 1, selected_color="Red")
    cart = _add(db, user, product, 1, selected_color="Blue")
    assert len(cart["items"]) == 2
    assert cart["total_price"] == pytest.approx(20.0)


def test_add_checks_resulting_quantity(db, user, product):
    _add(db, user, product, 4)
    with pytest.raises(InvalidState):
        _add(db, user, product, 2)


def test_add_inactive_product(db, user, make_product):
    hidden = make_product(title="Hidden", is_active=False)
    with pytest.raises(NotFound):
        _add(db, user, hidden)


def test_add_invalid_product_id(client, user_headers):
    resp = client.post("/cart", headers=user_headers, json={"product_id": "abc", "quantity": 1})
    assert resp.status_code == 400


def test_price_is_snapshotted(db, user, product):
    _add(db, user, product, 1)
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"price": 99.0}})
    cart = _add(db, user, product, 1)
    assert cart["items"][0]["price"] == 10.0
    assert cart["total_price"] == pytest.approx(20.0)


def test_update_quantity(client, user_headers, db, user, product):
    _add(db, user, product, 1)
    resp = client.patch("/cart/quantity", headers=user_headers,
                        json={"product_id": str(product["_id"]), "quantity": 4})
    assert resp.status_code == 200
    assert resp.json()["total_price"] == pytest.approx(40.0)
    assert resp.json()["items"][0]["product"]["title"] == "Plain Tee"


def test_update_quantity_over_stock(db, user, product):
    _add(db, user, product, 1)
    with pytest.raises(InvalidState):
        update_quantity(db, user, UpdateCartItemRequest(product_id=str(product["_id"]), quantity=6))


def test_update_missing_line(db, user, product):
    with pytest.raises(NotFound):
        update_quantity(db, user, UpdateCartItemRequest(product_id=str(product["_id"]), quantity=1))


def test_update_ambiguous_variant(db, user, product):
    _add(db, user, product, 1, selected_size="S")
    _add(db, user, product, 1, selected_size="M")
    with pytest.raises(ValidationFailed):
        update_quantity(db, user, UpdateCartItemRequest(product_id=str(product["_id"]), quantity=2))
    cart = update_quantity(db, user, UpdateCartItemRequest(product_id=str(product["_id"]), quantity=2,
                                                           selected_size="M"))
    assert [i["quantity"] for i in cart["items"]] == [1, 2]
    _assert_total(cart)


def test_remove_item(client, user_headers, db, user, product, make_product):
    other = make_product(title="Other", price=3.5)
    _add(db, user, product, 2)
    _add(db, user, other, 1)
    resp = client.delete(f"/cart/{product['_id']}", headers=user_headers)
    assert resp.status_code == 200
    assert [i["product_id"] for i in resp.json()["items"]] == [str(other["_id"])]
    assert resp.json()["total_price"] == pytest.approx(3.5)
    assert client.delete(f"/cart/{product['_id']}", headers=user_headers).status_code == 404


def test_remove_single_variant(db, user, product):
    _add(db, user, product, 1, selected_size="S")
    _add(db, user, product, 1, selected_size="M")
    cart = remove_item(db, user, str(product["_id"]), size="S")
    assert [i["selected_size"] for i in cart["items"]] == ["M"]


def test_clear_cart(client, user_headers, db, user, product):
    _add(db, user, product, 2)
    assert client.delete("/cart", headers=user_headers).status_code == 200
    cart = get_cart(db, str(user["_id"]))
    assert cart["items"] == []
    assert cart["total_price"] == 0


def test_cart_total():
    assert cart_total([{"price": 2.5, "quantity": 2}, {"price": 1, "quantity": 3}]) == 8


def test_cart_requires_login(client):
    assert client.get("/cart").status_code == 401


def test_mixed_case_ids_share_one_line(db, user, product):
    pid = str(product["_id"])
    _add(db, user, {"_id": pid.upper()}, 2)
    cart = _add(db, user, product, 1)
    assert [(i["product_id"], i["quantity"]) for i in cart["items"]] == [(pid, 3)]
    with pytest.raises(InvalidState):
        _add(db, user, {"_id": pid.upper()}, 3)


def test_update_and_remove_accept_mixed_case_ids(db, user, product):
    pid = str(product["_id"])
    _add(db, user, product, 1)
    cart = update_quantity(db, user, UpdateCartItemRequest(product_id=pid.upper(), quantity=2))
    assert cart["items"][0]["quantity"] == 2
    assert remove_item(db, user, pid.upper())["items"] == []
