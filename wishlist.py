import logging

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.database import Database

from database import canonical_id, get_db, serialize, utcnow
from errors import NotFound, ValidationFailed
from products import find_product
from schemas import Wishlist, WishlistToggle
from security import get_current_user

logger = logging.getLogger("shop.wishlist")

router = APIRouter(prefix="/wishlist", tags=["Wishlist"])


def get_wishlist(db: Database, user_id: str) -> dict:
    return db["wishlist"].find_one_and_update(
        {"user_id": user_id},
        {"$setOnInsert": {**Wishlist(user_id=user_id).model_dump(exclude={"user_id"}), "created_at": utcnow()}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def toggle(db: Database, user: dict, product_id: str) -> dict:
    """Add ``product_id`` to the wishlist, or remove it when already there."""
    if canonical_id(product_id) is None:
        raise ValidationFailed("Invalid product id")
    product = find_product(db, product_id)
    if not product:
        raise NotFound("Product not found")
    product_id = str(product["_id"])

    wishlist = get_wishlist(db, str(user["_id"]))
    if product_id in wishlist.get("products", []):
        update, message = {"$pull": {"products": product_id}}, "Product removed from wishlist"
    else:
        update, message = {"$addToSet": {"products": product_id}}, "Product added to wishlist"
    update["$set"] = {"updated_at": utcnow()}
    wishlist = db["wishlist"].find_one_and_update(
        {"_id": wishlist["_id"]}, update, return_document=ReturnDocument.AFTER
    )
    logger.debug("%s (user %s, product %s)", message, user["_id"], product_id)
    return {"message": message, "wishlist": serialize(wishlist)}


def clear_wishlist(db: Database, user_id: str) -> None:
    db["wishlist"].update_one({"user_id": user_id}, {"$set": {"products": [], "updated_at": utcnow()}})


@router.get("")
def get_wishlist_route(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(get_wishlist(db, str(user["_id"])))


@router.post("/toggle")
def toggle_route(payload: WishlistToggle, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return toggle(db, user, payload.product_id)


@router.delete("")
def clear_wishlist_route(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    clear_wishlist(db, str(user["_id"]))
    return {"message": "Wishlist cleared"}
