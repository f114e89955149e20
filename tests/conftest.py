"""
Shared fixtures: an in-memory MongoDB per test, an HTTP client wired to it,
and factories for accounts, catalog entries and delivered orders.
"""
import os

os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["MAIL_BACKEND"] = "console"

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from categories import create_category
from database import create_document, ensure_indexes, get_db
from mailer import Mailer, get_mailer
from products import create_product
from schemas import CategoryIn, Order, OrderItem, ProductIn, ShippingAddress
from security import create_access_token
from users import create_user

PASSWORD = "secret123"

ADDRESS = {"street": "1 Main St", "city": "Springfield", "state": "IL", "zip": "62701", "phone": "555-0100"}


@pytest.fixture
def db():
    database = mongomock.MongoClient()["ecommerce_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def mail():
    return Mailer(backend="console")


@pytest.fixture
def client(db, mail):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[get_mailer] = lambda: mail
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def auth_headers(user: dict) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def user(db):
    return create_user(db, "Alice", "alice@example.com", PASSWORD)


@pytest.fixture
def other_user(db):
    return create_user(db, "Bob", "bob@example.com", PASSWORD)


@pytest.fixture
def admin(db):
    return create_user(db, "Root", "admin@example.com", PASSWORD, role="admin")


@pytest.fixture
def user_headers(user):
    return auth_headers(user)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def category(db, admin):
    return create_category(db, CategoryIn(title="Shirts"), admin)


@pytest.fixture
def make_product(db, admin, category):
    def factory(title="Plain Tee", price=10.0, stock=5, **extra):
        payload = ProductIn(title=title, price=price, stock=stock, category=str(category["_id"]), **extra)
        return create_product(db, payload, admin)
    return factory


@pytest.fixture
def product(make_product):
    return make_product()


@pytest.fixture
def delivered_order(db):
    """Insert a Delivered order for ``user`` containing ``product``."""
    def factory(user, product, quantity=1, number="ORD-2024-0001"):
        item = OrderItem(product_id=str(product["_id"]), title=product["title"],
                         quantity=quantity, price=product["price"])
        order = Order(user_id=str(user["_id"]), items=[item], shipping_address=ShippingAddress(**ADDRESS),
                      total_price=product["price"] * quantity, order_status="Delivered",
                      payment_status="Paid", order_number=number)
        return create_document(db, "order", order.model_dump())
    return factory
