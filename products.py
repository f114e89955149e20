import logging
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from categories import find_category
from database import create_document, get_db, get_documents, serialize, to_object_id, utcnow
from errors import Conflict, NotFound, ValidationFailed
from schemas import Product, ProductIn, ProductUpdate
from security import require_admin
from slugs import slugify

logger = logging.getLogger("shop.products")

router = APIRouter(prefix="/products", tags=["Products"])

SORT_OPTIONS = {
    "price_asc": [("price", 1)],
    "price_desc": [("price", -1)],
    "newest": [("created_at", -1), ("_id", -1)],
}
RELATED_LIMIT = 4


def find_product(db: Database, id_or_slug: str, active_only: bool = False) -> Optional[dict]:
    oid = to_object_id(id_or_slug)
    filt = {"_id": oid} if oid is not None else {"slug": id_or_slug}
    if active_only:
        filt["is_active"] = True
    return db["product"].find_one(filt)


def get_product(db: Database, id_or_slug: str, active_only: bool = False) -> dict:
    product = find_product(db, id_or_slug, active_only=active_only)
    if not product:
        raise NotFound("Product not found")
    return product


def _resolve_category_id(db: Database, id_or_slug: str) -> str:
    category = find_category(db, id_or_slug)
    if not category:
        raise NotFound("Category not found")
    return str(category["_id"])


def _make_slug(title: str, slug: Optional[str]) -> str:
    result = slugify(slug or title)
    if not result:
        raise ValidationFailed("Product slug cannot be empty")
    return result


def _check_unique(db: Database, slug: Optional[str], sku: Optional[str], exclude_id=None) -> None:
    not_self = {"_id": {"$ne": exclude_id}} if exclude_id is not None else {}
    if slug and db["product"].find_one({"slug": slug, **not_self}):
        raise Conflict("Product slug already exists")
    if sku and db["product"].find_one({"sku": sku, **not_self}):
        raise Conflict("SKU already exists")


def create_product(db: Database, payload: ProductIn, user: dict) -> dict:
    category_id = _resolve_category_id(db, payload.category)
    slug = _make_slug(payload.title, payload.slug)
    _check_unique(db, slug, payload.sku)
    data = Product(
        **payload.model_dump(exclude={"slug", "category"}),
        slug=slug,
        category=category_id,
        created_by=str(user["_id"]),
    ).model_dump()
    try:
        product = create_document(db, "product", data)
    except DuplicateKeyError:
        raise Conflict("Product slug already exists")
    logger.info("Product '%s' created", slug)
    return product


def _csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def list_products(db: Database, page: int = 1, limit: int = 10, search: Optional[str] = None,
                  category: Optional[str] = None, min_price: Optional[float] = None,
                  max_price: Optional[float] = None, colors: Optional[str] = None,
                  sizes: Optional[str] = None, sort: Optional[str] = None) -> dict:
    empty = {"items": [], "page": page, "limit": limit, "total": 0}
    filt = {"is_active": True}
    if search:
        filt["title"] = {"$regex": re.escape(search), "$options": "i"}
    if category:
        found = find_category(db, category)
        if not found:
            return empty
        filt["category"] = str(found["_id"])
    price_cond = {}
    if min_price is not None:
        price_cond["$gte"] = min_price
    if max_price is not None:
        price_cond["$lte"] = max_price
    if price_cond:
        filt["price"] = price_cond
    if _csv(colors):
        filt["colors"] = {"$in": _csv(colors)}
    if _csv(sizes):
        filt["sizes"] = {"$in": _csv(sizes)}

    sort_spec = SORT_OPTIONS.get(sort or "newest", SORT_OPTIONS["newest"])
    found = get_documents(db, "product", filt, sort=sort_spec, skip=(page - 1) * limit, limit=limit)
    items = [serialize(p) for p in found]
    total = db["product"].count_documents(filt)
    return {"items": items, "page": page, "limit": limit, "total": total}


def related_products(db: Database, product: dict) -> List[dict]:
    cursor = db["product"].find({
        "category": product["category"],
        "is_active": True,
        "_id": {"$ne": product["_id"]},
    }).limit(RELATED_LIMIT)
    return list(cursor)


def update_product(db: Database, product_id: str, payload: ProductUpdate) -> dict:
    product = get_product(db, product_id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "category" in changes:
        changes["category"] = _resolve_category_id(db, changes["category"])
    if "slug" in changes:
        changes["slug"] = _make_slug(changes.get("title", product["title"]), changes["slug"])
    _check_unique(db, changes.get("slug"), changes.get("sku"), exclude_id=product["_id"])
    changes["updated_at"] = utcnow()
    try:
        db["product"].update_one({"_id": product["_id"]}, {"$set": changes})
    except DuplicateKeyError:
        raise Conflict("Product slug already exists")
    return db["product"].find_one({"_id": product["_id"]})


def soft_delete_product(db: Database, product_id: str) -> dict:
    product = get_product(db, product_id)
    db["product"].update_one(
        {"_id": product["_id"]},
        {"$set": {"is_active": False, "updated_at": utcnow()}},
    )
    logger.info("Product %s deactivated", product["_id"])
    return db["product"].find_one({"_id": product["_id"]})


def reserve_stock(db: Database, product_id: str, quantity: int) -> bool:
    """Atomically take ``quantity`` units; False when fewer are in stock."""
    result = db["product"].update_one(
        {"_id": to_object_id(product_id), "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}},
    )
    return result.modified_count == 1


def release_stock(db: Database, product_id: str, quantity: int) -> None:
    db["product"].update_one({"_id": to_object_id(product_id)}, {"$inc": {"stock": quantity}})


@router.post("", status_code=201)
def create_product_route(payload: ProductIn, admin: dict = Depends(require_admin),
                         db: Database = Depends(get_db)):
    return serialize(create_product(db, payload, admin))


@router.get("")
def list_products_route(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    category: Optional[str] = Query(None, description="Category id or slug"),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    colors: Optional[str] = Query(None, description="Comma separated, e.g. Red,Black"),
    sizes: Optional[str] = Query(None, description="Comma separated, e.g. S,M,L"),
    sort: Optional[str] = Query(None, description="price_asc|price_desc|newest"),
    db: Database = Depends(get_db),
):
    return list_products(db, page, limit, search, category, min_price, max_price, colors, sizes, sort)


@router.get("/{id_or_slug}")
def get_product_route(id_or_slug: str, db: Database = Depends(get_db)):
    return serialize(get_product(db, id_or_slug, active_only=True))


@router.get("/{id_or_slug}/related")
def related_products_route(id_or_slug: str, db: Database = Depends(get_db)):
    product = get_product(db, id_or_slug, active_only=True)
    return [serialize(p) for p in related_products(db, product)]


@router.patch("/{product_id}")
def update_product_route(product_id: str, payload: ProductUpdate, admin: dict = Depends(require_admin),
                         db: Database = Depends(get_db)):
    return serialize(update_product(db, product_id, payload))


@router.delete("/{product_id}")
def delete_product_route(product_id: str, admin: dict = Depends(require_admin),
                         db: Database = Depends(get_db)):
    return serialize(soft_delete_product(db, product_id))
