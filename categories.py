import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, get_documents, serialize, to_object_id, utcnow
from errors import Conflict, NotFound, ValidationFailed
from schemas import Category, CategoryIn, CategoryUpdate
from security import require_admin
from slugs import slugify

logger = logging.getLogger("shop.categories")

router = APIRouter(prefix="/categories", tags=["Categories"])


def find_category(db: Database, id_or_slug: str, active_only: bool = False) -> Optional[dict]:
    """Look a category up by ObjectId string or by slug."""
    oid = to_object_id(id_or_slug)
    filt = {"_id": oid} if oid is not None else {"slug": id_or_slug}
    if active_only:
        filt["is_active"] = True
    return db["category"].find_one(filt)


def get_category(db: Database, id_or_slug: str, active_only: bool = True) -> dict:
    category = find_category(db, id_or_slug, active_only=active_only)
    if not category:
        raise NotFound("Category not found")
    return category


def _make_slug(title: str, slug: Optional[str]) -> str:
    result = slugify(slug or title)
    if not result:
        raise ValidationFailed("Category slug cannot be empty")
    return result


def _check_unique(db: Database, title: str, slug: str, exclude_id=None) -> None:
    filt = {"$or": [{"title": title}, {"slug": slug}]}
    if exclude_id is not None:
        filt["_id"] = {"$ne": exclude_id}
    if db["category"].find_one(filt):
        raise Conflict("Category title or slug already exists")


def _check_parent(db: Database, parent_id: Optional[str], self_id=None) -> Optional[str]:
    if not parent_id:
        return None
    oid = to_object_id(parent_id)
    if oid is None:
        raise ValidationFailed("Invalid parent category id")
    if self_id is not None and oid == self_id:
        raise ValidationFailed("A category cannot be its own parent")
    if not db["category"].find_one({"_id": oid}):
        raise NotFound("Parent category not found")
    return str(oid)


def create_category(db: Database, payload: CategoryIn, user: dict) -> dict:
    slug = _make_slug(payload.title, payload.slug)
    _check_unique(db, payload.title, slug)
    data = Category(
        **payload.model_dump(exclude={"slug", "parent_category"}),
        slug=slug,
        parent_category=_check_parent(db, payload.parent_category),
        created_by=str(user["_id"]),
    ).model_dump()
    try:
        category = create_document(db, "category", data)
    except DuplicateKeyError:
        raise Conflict("Category title or slug already exists")
    logger.info("Category '%s' created", slug)
    return category


def list_categories(db: Database, page: int = 1, limit: int = 10, search: Optional[str] = None,
                    parent_category: Optional[str] = None) -> dict:
    filt = {"is_active": True}
    if search:
        filt["title"] = {"$regex": re.escape(search), "$options": "i"}
    if parent_category:
        filt["parent_category"] = parent_category
    found = get_documents(db, "category", filt, sort=[("created_at", -1), ("_id", -1)],
                          skip=(page - 1) * limit, limit=limit)
    items = [serialize(c) for c in found]
    total = db["category"].count_documents(filt)
    return {"items": items, "page": page, "limit": limit, "total": total}


def update_category(db: Database, category_id: str, payload: CategoryUpdate) -> dict:
    category = get_category(db, category_id, active_only=False)
    # only parent_category may be cleared with an explicit null
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items()
               if v is not None or k == "parent_category"}
    if "slug" in changes or "title" in changes:
        title = changes.get("title") or category["title"]
        if "slug" in changes:
            changes["slug"] = _make_slug(title, changes["slug"])
        _check_unique(db, title, changes.get("slug", category["slug"]), exclude_id=category["_id"])
    if "parent_category" in changes:
        changes["parent_category"] = _check_parent(db, changes["parent_category"], self_id=category["_id"])
    changes["updated_at"] = utcnow()
    try:
        db["category"].update_one({"_id": category["_id"]}, {"$set": changes})
    except DuplicateKeyError:
        raise Conflict("Category title or slug already exists")
    return db["category"].find_one({"_id": category["_id"]})


def soft_delete_category(db: Database, category_id: str) -> dict:
    category = get_category(db, category_id, active_only=False)
    db["category"].update_one(
        {"_id": category["_id"]},
        {"$set": {"is_active": False, "updated_at": utcnow()}},
    )
    logger.info("Category %s deactivated", category["_id"])
    return db["category"].find_one({"_id": category["_id"]})


@router.post("", status_code=201)
def create_category_route(payload: CategoryIn, admin: dict = Depends(require_admin),
                          db: Database = Depends(get_db)):
    return serialize(create_category(db, payload, admin))


@router.get("")
def list_categories_route(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    parent_category: Optional[str] = None,
    db: Database = Depends(get_db),
):
    return list_categories(db, page, limit, search, parent_category)


@router.get("/{id_or_slug}")
def get_category_route(id_or_slug: str, db: Database = Depends(get_db)):
    return serialize(get_category(db, id_or_slug))


@router.patch("/{category_id}")
def update_category_route(category_id: str, payload: CategoryUpdate, admin: dict = Depends(require_admin),
                          db: Database = Depends(get_db)):
    return serialize(update_category(db, category_id, payload))


@router.delete("/{category_id}")
def delete_category_route(category_id: str, admin: dict = Depends(require_admin),
                          db: Database = Depends(get_db)):
    return serialize(soft_delete_category(db, category_id))
