import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.database import Database

from database import canonical_id, get_db, serialize, utcnow
from errors import InvalidState, NotFound, ValidationFailed
from products import find_product
from schemas import AddToCartRequest, Cart, CartItem, UpdateCartItemRequest
from security import get_current_user

logger = logging.getLogger("shop.cart")

router = APIRouter(prefix="/cart", tags=["Cart"])


def cart_total(items: List[dict]) -> float:
    return sum(item["price"] * item["quantity"] for item in items)


def _same_line(item: dict, product_id: str, color: Optional[str], size: Optional[str]) -> bool:
    return (
        item["product_id"] == product_id
        and item.get("selected_color") == color
        and item.get("selected_size") == size
    )


def _matching_lines(items: List[dict], product_id: str, color: Optional[str], size: Optional[str]) -> List[int]:
    """Indexes of lines for ``product_id``; color/size narrow the match only when given."""
    return [
        i for i, item in enumerate(items)
        if item["product_id"] == product_id
        and (color is None or item.get("selected_color") == color)
        and (size is None or item.get("selected_size") == size)
    ]


def get_cart(db: Database, user_id: str) -> dict:
    """Return the user's cart, creating an empty one on first access."""
    return db["cart"].find_one_and_update(
        {"user_id": user_id},
        {"$setOnInsert": {**Cart(user_id=user_id).model_dump(exclude={"user_id"}), "created_at": utcnow()}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def _save_items(db: Database, cart: dict, items: List[dict]) -> dict:
    return db["cart"].find_one_and_update(
        {"_id": cart["_id"]},
        {"$set": {"items": items, "total_price": cart_total(items), "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )


def _live_product(db: Database, product_id: str) -> dict:
    if canonical_id(product_id) is None:
        raise ValidationFailed("Invalid product id")
    product = find_product(db, product_id, active_only=True)
    if not product:
        raise NotFound("Product not found")
    return product


def add_item(db: Database, user: dict, payload: AddToCartRequest) -> dict:
    product = _live_product(db, payload.product_id)
    product_id = str(product["_id"])
    cart = get_cart(db, str(user["_id"]))
    items = list(cart.get("items", []))

    line = next(
        (item for item in items
         if _same_line(item, product_id, payload.selected_color, payload.selected_size)),
        None,
    )
    wanted = payload.quantity + (line["quantity"] if line else 0)
    if product.get("stock", 0) < wanted:
        logger.warning("Add to cart refused: %s has %s in stock, %s wanted",
                       product["_id"], product.get("stock", 0), wanted)
        raise InvalidState("Insufficient stock available")

    if line:
        line["quantity"] = wanted
    else:
        items.append(CartItem(
            product_id=product_id,
            quantity=payload.quantity,
            price=product["price"],
            selected_color=payload.selected_color,
            selected_size=payload.selected_size,
        ).model_dump())
    return _save_items(db, cart, items)


def update_quantity(db: Database, user: dict, payload: UpdateCartItemRequest) -> dict:
    cart = get_cart(db, str(user["_id"]))
    items = list(cart.get("items", []))
    product_id = canonical_id(payload.product_id) or payload.product_id
    matches = _matching_lines(items, product_id, payload.selected_color, payload.selected_size)
    if not matches:
        raise NotFound("Product not found in cart")
    if len(matches) > 1:
        raise ValidationFailed("Several variants of this product are in the cart; specify selected_color/selected_size")

    product = find_product(db, product_id)
    if product and product.get("stock", 0) < payload.quantity:
        raise InvalidState("Insufficient stock available")

    items[matches[0]]["quantity"] = payload.quantity
    return _save_items(db, cart, items)


def remove_item(db: Database, user: dict, product_id: str, color: Optional[str] = None,
                size: Optional[str] = None) -> dict:
    cart = get_cart(db, str(user["_id"]))
    items = list(cart.get("items", []))
    product_id = canonical_id(product_id) or product_id
    matches = set(_matching_lines(items, product_id, color, size))
    if not matches:
        raise NotFound("Product not found in cart")
    return _save_items(db, cart, [item for i, item in enumerate(items) if i not in matches])


def clear_cart(db: Database, user_id: str) -> None:
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {"items": [], "total_price": 0, "updated_at": utcnow()}},
    )


def cart_view(db: Database, cart: dict) -> dict:
    """Serialize a cart with a short summary of each line's product."""
    view = serialize(cart)
    for item in view.get("items", []):
        product = find_product(db, item["product_id"])
        item["product"] = {
            "id": item["product_id"],
            "title": product.get("title"),
            "slug": product.get("slug"),
            "images": product.get("images", []),
            "price": product.get("price"),
        } if product else None
    return view


@router.get("")
def get_cart_route(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return cart_view(db, get_cart(db, str(user["_id"])))


@router.post("", status_code=201)
def add_item_route(payload: AddToCartRequest, user: dict = Depends(get_current_user),
                   db: Database = Depends(get_db)):
    return cart_view(db, add_item(db, user, payload))


@router.patch("/quantity")
def update_quantity_route(payload: UpdateCartItemRequest, user: dict = Depends(get_current_user),
                          db: Database = Depends(get_db)):
    return cart_view(db, update_quantity(db, user, payload))


@router.delete("/{product_id}")
def remove_item_route(product_id: str, selected_color: Optional[str] = None, selected_size: Optional[str] = None,
                      user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return cart_view(db, remove_item(db, user, product_id, selected_color, selected_size))


@router.delete("")
def clear_cart_route(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    clear_cart(db, str(user["_id"]))
    return {"message": "Cart cleared successfully"}
