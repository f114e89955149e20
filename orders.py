r"""
Order workflow: checkout, status transitions and stock reconciliation.

    Pending -> Processing -> Shipped -> Delivered
       \___________\___________\______-> Cancelled

Delivered and Cancelled are terminal. Stock is taken when an order is
placed and given back exactly once when it is cancelled.
"""
import logging
import random
from typing import Iterable, List, Optional

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from cart import cart_total, clear_cart
from database import create_document, get_db, serialize, to_object_id, utcnow
from errors import Forbidden, InvalidState, NotFound, ValidationFailed
from products import find_product, release_stock, reserve_stock
from schemas import CheckoutRequest, Order, OrderItem, OrderStatusUpdate, ShippingAddress
from security import ensure_owner_or_admin, get_current_user, is_admin, require_admin

logger = logging.getLogger("shop.orders")

router = APIRouter(prefix="/orders", tags=["Orders"])

PENDING = "Pending"
DELIVERED = "Delivered"
CANCELLED = "Cancelled"
ORDER_STATUSES = ("Pending", "Processing", "Shipped", "Delivered", "Cancelled")
TERMINAL_STATUSES = (DELIVERED, CANCELLED)
OPEN_STATUSES = tuple(s for s in ORDER_STATUSES if s not in TERMINAL_STATUSES)
ORDER_NUMBER_ATTEMPTS = 5


def generate_order_number() -> str:
    return f"ORD-{utcnow().year}-{random.randint(1000, 9999)}"


def resolve_shipping_address(user: dict, supplied: Optional[ShippingAddress]) -> dict:
    """Caller supplied address first, then the default saved address, then the first one."""
    if supplied is not None:
        return supplied.model_dump()
    addresses = user.get("addresses") or []
    primary = next((a for a in addresses if a.get("is_default")), None) or (addresses[0] if addresses else None)
    if primary is None:
        raise ValidationFailed(
            "Shipping address is required. Please provide it in the checkout or update your profile."
        )
    return ShippingAddress(
        street=primary["street"],
        city=primary["city"],
        state=primary["state"],
        zip=primary["zip"],
        phone=primary.get("phone") or user.get("phone") or "",
    ).model_dump()


def _release_all(db: Database, items: Iterable[dict]) -> None:
    for item in items:
        release_stock(db, item["product_id"], item["quantity"])


def _insert_order(db: Database, **fields) -> Optional[dict]:
    """Insert with a fresh order number, regenerating on collision."""
    for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
        order_number = generate_order_number()
        data = Order(**fields, order_number=order_number).model_dump()
        try:
            return create_document(db, "order", data)
        except DuplicateKeyError:
            logger.warning("Order number %s already taken (attempt %d)", order_number, attempt)
    return None


def checkout(db: Database, user: dict, payload: CheckoutRequest) -> dict:
    user_id = str(user["_id"])
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart or not cart.get("items"):
        raise InvalidState("Your cart is empty")

    shipping_address = resolve_shipping_address(user, payload.shipping_address)

    order_items: List[dict] = []
    for line in cart["items"]:
        product = find_product(db, line["product_id"])
        if not product:
            raise NotFound(f"Product {line['product_id']} no longer exists")
        if product.get("stock", 0) < line["quantity"]:
            logger.warning("Checkout refused for user %s: not enough stock of %s", user_id, product["_id"])
            raise InvalidState(f"Insufficient stock for product: {product['title']}")
        order_items.append(OrderItem(
            product_id=line["product_id"],
            title=product["title"],
            quantity=line["quantity"],
            price=line["price"],
            selected_color=line.get("selected_color"),
            selected_size=line.get("selected_size"),
        ).model_dump())

    reserved: List[dict] = []
    for item in order_items:
        if not reserve_stock(db, item["product_id"], item["quantity"]):
            _release_all(db, reserved)
            logger.warning("Checkout lost a stock race on %s", item["product_id"])
            raise InvalidState(f"Insufficient stock for product: {item['title']}")
        reserved.append(item)

    try:
        order = _insert_order(
            db,
            user_id=user_id,
            items=order_items,
            shipping_address=shipping_address,
            payment_method=payload.payment_method,
            total_price=cart_total(cart["items"]),
        )
    except PyMongoError:
        _release_all(db, reserved)
        raise
    if order is None:
        _release_all(db, reserved)
        raise InvalidState("Could not allocate an order number, please retry")

    clear_cart(db, user_id)
    logger.info("Order %s placed by user %s (%d items, total %.2f)",
                order["order_number"], user_id, len(order_items), order["total_price"])
    return order


def find_order(db: Database, order_ref: str) -> Optional[dict]:
    """Look an order up by ObjectId string or by order number (ORD-YYYY-NNNN)."""
    oid = to_object_id(order_ref)
    if oid is not None:
        return db["order"].find_one({"_id": oid})
    return db["order"].find_one({"order_number": order_ref})


def _get_by_id(db: Database, order_id: str) -> dict:
    oid = to_object_id(order_id)
    if oid is None:
        raise ValidationFailed("Invalid Order ID")
    order = db["order"].find_one({"_id": oid})
    if not order:
        raise NotFound("Order not found")
    return order


def get_user_orders(db: Database, user: dict) -> List[dict]:
    return list(db["order"].find({"user_id": str(user["_id"])}).sort([("created_at", -1), ("_id", -1)]))


def get_order(db: Database, order_id: str, user: dict) -> dict:
    order = _get_by_id(db, order_id)
    ensure_owner_or_admin(user, order["user_id"], "You are not authorized to view this order")
    return order


def attach_customers(db: Database, orders: List[dict]) -> List[dict]:
    """Serialize ``orders`` with the name and email of each customer."""
    user_ids = {to_object_id(o["user_id"]) for o in orders} - {None}
    users = {
        str(u["_id"]): {"id": str(u["_id"]), "name": u.get("name"), "email": u.get("email")}
        for u in db["user"].find({"_id": {"$in": list(user_ids)}})
    }
    result = []
    for order in orders:
        view = serialize(order)
        view["user"] = users.get(order["user_id"])
        result.append(view)
    return result


def list_all_orders(db: Database) -> List[dict]:
    return attach_customers(db, list(db["order"].find().sort([("created_at", -1), ("_id", -1)])))


def _cancel(db: Database, order: dict, allowed_from: Iterable[str]) -> dict:
    """Flip ``order`` to Cancelled and restore its stock, at most once."""
    cancelled = db["order"].find_one_and_update(
        {"_id": order["_id"], "order_status": {"$in": list(allowed_from)}},
        {"$set": {"order_status": CANCELLED, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if cancelled is None:
        current = db["order"].find_one({"_id": order["_id"]})
        if current and current["order_status"] == CANCELLED:
            return current
        raise InvalidState("Order status changed, it can no longer be cancelled")
    _release_all(db, cancelled["items"])
    logger.info("Order %s cancelled, stock restored for %d items",
                cancelled["order_number"], len(cancelled["items"]))
    return cancelled


def update_order_status(db: Database, order_id: str, status: str) -> dict:
    order = _get_by_id(db, order_id)
    current = order["order_status"]
    if status == current:
        return order
    if current in TERMINAL_STATUSES:
        raise InvalidState(f"Cannot change the status of a {current} order")

    if status == CANCELLED:
        return _cancel(db, order, OPEN_STATUSES)

    changes = {"order_status": status, "updated_at": utcnow()}
    # cash on delivery is settled when the parcel is handed over
    if status == DELIVERED and order.get("payment_method") == "COD":
        changes["payment_status"] = "Paid"
    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "order_status": current},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise InvalidState("Order status changed concurrently, please retry")
    logger.info("Order %s moved %s -> %s", order["order_number"], current, status)
    return updated


def cancel_order(db: Database, order_ref: str, user: dict) -> dict:
    order = find_order(db, order_ref)
    if not order:
        raise NotFound("Order not found. TIP: Use the order ID or the Order Number (ORD-XXXX).")

    admin = is_admin(user)
    if order["user_id"] != str(user["_id"]) and not admin:
        logger.warning("User %s tried to cancel order %s they do not own", user["_id"], order["_id"])
        raise Forbidden("You are not authorized to cancel this order")

    status = order["order_status"]
    if status == CANCELLED:
        return order
    if status == DELIVERED:
        raise InvalidState("Delivered orders cannot be cancelled")
    if status != PENDING and not admin:
        raise InvalidState(f'Your order is already "{status}". Please contact support to cancel.')

    return _cancel(db, order, OPEN_STATUSES if admin else (PENDING,))


@router.post("/checkout", status_code=201)
def checkout_route(payload: CheckoutRequest, user: dict = Depends(get_current_user),
                   db: Database = Depends(get_db)):
    return serialize(checkout(db, user, payload))


@router.get("/my-orders")
def my_orders_route(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return [serialize(o) for o in get_user_orders(db, user)]


@router.get("/my-orders/{order_id}")
def get_order_route(order_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(get_order(db, order_id, user))


@router.patch("/my-orders/{order_ref}/cancel")
def cancel_order_route(order_ref: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(cancel_order(db, order_ref, user))


@router.get("/admin/all")
def all_orders_route(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return list_all_orders(db)


@router.patch("/admin/{order_id}/status")
def update_status_route(order_id: str, payload: OrderStatusUpdate, admin: dict = Depends(require_admin),
                        db: Database = Depends(get_db)):
    return serialize(update_order_status(db, order_id, payload.status))
