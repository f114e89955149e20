import logging
from collections import defaultdict
from typing import List

from fastapi import APIRouter, Depends
from pymongo.database import Database

from database import get_db, serialize, to_object_id
from orders import attach_customers
from security import require_admin

logger = logging.getLogger("shop.dashboard")

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])

LOW_STOCK_THRESHOLD = 10
LOW_STOCK_LIMIT = 10
RECENT_ORDERS = 5


def total_revenue(db: Database) -> float:
    rows = list(db["order"].aggregate([
        {"$match": {"order_status": "Delivered"}},
        {"$group": {"_id": None, "total": {"$sum": "$total_price"}}},
    ]))
    return round(rows[0]["total"], 2) if rows else 0


def sales_by_category(db: Database) -> List[dict]:
    """Delivered line totals grouped by the category their product belongs to."""
    # order lines reference products by id string, so the product join happens on the grouped rows
    per_product = list(db["order"].aggregate([
        {"$match": {"order_status": "Delivered"}},
        {"$unwind": "$items"},
        {"$group": {
            "_id": "$items.product_id",
            "total": {"$sum": {"$multiply": ["$items.price", "$items.quantity"]}},
        }},
    ]))
    product_ids = [oid for oid in (to_object_id(row["_id"]) for row in per_product) if oid is not None]
    category_of = {
        str(p["_id"]): p.get("category")
        for p in db["product"].find({"_id": {"$in": product_ids}}, {"category": 1})
    }

    totals = defaultdict(float)
    for row in per_product:
        category_id = category_of.get(str(to_object_id(row["_id"])))
        if category_id is not None:
            totals[category_id] += row["total"]

    category_ids = [oid for oid in map(to_object_id, totals) if oid is not None]
    titles = {str(c["_id"]): c["title"] for c in db["category"].find({"_id": {"$in": category_ids}})}
    return [
        {"category": category_id, "title": titles.get(category_id), "total_sales": round(total, 2)}
        for category_id, total in sorted(totals.items(), key=lambda kv: kv[1], reverse=True)
    ]


def get_stats(db: Database) -> dict:
    low_stock = db["product"].find(
        {"stock": {"$lt": LOW_STOCK_THRESHOLD}}, {"title": 1, "stock": 1, "images": 1}
    ).limit(LOW_STOCK_LIMIT)
    recent = list(db["order"].find().sort([("created_at", -1), ("_id", -1)]).limit(RECENT_ORDERS))
    return {
        "overview": {
            "total_revenue": total_revenue(db),
            "total_orders": db["order"].count_documents({}),
            "total_products": db["product"].count_documents({}),
            "total_users": db["user"].count_documents({"role": "user"}),
        },
        "low_stock_products": [serialize(p) for p in low_stock],
        "recent_orders": attach_customers(db, recent),
        "sales_by_category": sales_by_category(db),
    }


@router.get("/stats")
def stats_route(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    logger.debug("Dashboard stats requested by %s", admin["_id"])
    return get_stats(db)
