"""
Product reviews with moderation.

A review is accepted only from a user who has received the product, starts
unapproved, and counts toward the product's rating once an admin approves it.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import canonical_id, create_document, get_db, serialize, to_object_id, utcnow
from errors import Conflict, InvalidState, NotFound, ValidationFailed
from products import find_product
from schemas import Review, ReviewIn, ReviewStatusUpdate
from security import ensure_owner_or_admin, get_current_user, require_admin

logger = logging.getLogger("shop.reviews")

router = APIRouter(prefix="/reviews", tags=["Reviews"])


def _has_received(db: Database, user_id: str, product_id: str) -> bool:
    return db["order"].find_one({
        "user_id": user_id,
        "order_status": "Delivered",
        "items.product_id": product_id,
    }) is not None


def submit_review(db: Database, user: dict, payload: ReviewIn) -> dict:
    if canonical_id(payload.product_id) is None:
        raise ValidationFailed("Invalid product id")
    product = find_product(db, payload.product_id)
    if not product:
        raise NotFound("Product not found")

    product_id = str(product["_id"])
    user_id = str(user["_id"])
    if not _has_received(db, user_id, product_id):
        raise InvalidState("You can only review products you have purchased and received.")
    if db["review"].find_one({"user_id": user_id, "product_id": product_id}):
        raise Conflict("You have already reviewed this product")

    data = Review(**{**payload.model_dump(), "user_id": user_id, "product_id": product_id}).model_dump()
    try:
        review = create_document(db, "review", data)
    except DuplicateKeyError:
        raise Conflict("You have already reviewed this product")
    logger.info("Review %s submitted for product %s", review["_id"], product_id)
    return review


def recompute_ratings(db: Database, product_id: str) -> None:
    """Rebuild the product's rating aggregates from its approved reviews."""
    stats = list(db["review"].aggregate([
        {"$match": {"product_id": product_id, "is_approved": True}},
        {"$group": {"_id": "$product_id", "average": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ]))
    if stats:
        changes = {"ratings_average": round(stats[0]["average"], 1), "ratings_count": stats[0]["count"]}
    else:
        changes = {"ratings_average": 0, "ratings_count": 0}
    db["product"].update_one({"_id": to_object_id(product_id)}, {"$set": changes})
    logger.debug("Ratings for %s now %s", product_id, changes)


def get_product_reviews(db: Database, product_id: str) -> List[dict]:
    product_id = canonical_id(product_id) or product_id
    reviews = list(
        db["review"].find({"product_id": product_id, "is_approved": True}).sort([("created_at", -1), ("_id", -1)])
    )
    user_ids = list({to_object_id(r["user_id"]) for r in reviews} - {None})
    names = {str(u["_id"]): u.get("name") for u in db["user"].find({"_id": {"$in": user_ids}})}
    result = []
    for review in reviews:
        view = serialize(review)
        view["user"] = {"id": review["user_id"], "name": names.get(review["user_id"])}
        result.append(view)
    return result


def get_pending_reviews(db: Database) -> List[dict]:
    return list(db["review"].find({"is_approved": False}).sort([("created_at", 1), ("_id", 1)]))


def _get_review(db: Database, review_id: str) -> dict:
    oid = to_object_id(review_id)
    if oid is None:
        raise ValidationFailed("Invalid review id")
    review = db["review"].find_one({"_id": oid})
    if not review:
        raise NotFound("Review not found")
    return review


def update_review_status(db: Database, review_id: str, is_approved: bool) -> dict:
    review = _get_review(db, review_id)
    if review.get("is_approved") == is_approved:
        return review
    db["review"].update_one(
        {"_id": review["_id"]},
        {"$set": {"is_approved": is_approved, "updated_at": utcnow()}},
    )
    recompute_ratings(db, review["product_id"])
    logger.info("Review %s %s", review["_id"], "approved" if is_approved else "unapproved")
    return db["review"].find_one({"_id": review["_id"]})


def delete_review(db: Database, review_id: str, user: dict) -> None:
    review = _get_review(db, review_id)
    ensure_owner_or_admin(user, review["user_id"], "You are not authorized to delete this review")
    db["review"].delete_one({"_id": review["_id"]})
    if review.get("is_approved"):
        recompute_ratings(db, review["product_id"])
    logger.info("Review %s deleted", review["_id"])


@router.post("", status_code=201)
def submit_review_route(payload: ReviewIn, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(submit_review(db, user, payload))


@router.get("/product/{product_id}")
def product_reviews_route(product_id: str, db: Database = Depends(get_db)):
    return get_product_reviews(db, product_id)


@router.get("/admin/pending")
def pending_reviews_route(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return [serialize(r) for r in get_pending_reviews(db)]


@router.patch("/admin/{review_id}/status")
def review_status_route(review_id: str, payload: ReviewStatusUpdate, admin: dict = Depends(require_admin),
                        db: Database = Depends(get_db)):
    return serialize(update_review_status(db, review_id, payload.is_approved))


@router.delete("/{review_id}")
def delete_review_route(review_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    delete_review(db, review_id, user)
    return {"message": "Review deleted successfully"}
