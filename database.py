"""
MongoDB access for the e-commerce API.

Each collection is named after the lower-cased entity ("user", "product",
"order", ...). References between documents are stored as id strings.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import settings

logger = logging.getLogger("shop.database")

client = MongoClient(settings.database_url, serverSelectionTimeoutMS=settings.database_timeout_ms)
db = client[settings.database_name]


def get_db() -> Database:
    """FastAPI dependency returning the active database handle."""
    return db


def utcnow() -> datetime:
    """Naive UTC, the form pymongo hands back for stored dates."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: str) -> Optional[ObjectId]:
    """Return an ObjectId for a valid id string, else None."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def canonical_id(value: str) -> Optional[str]:
    """Lower-case hex form of an id string, or None when it is not a valid id."""
    oid = to_object_id(value)
    return str(oid) if oid is not None else None


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Copy a stored document into a JSON friendly dict with an ``id`` key."""
    if doc is None:
        return None
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(database: Database, collection_name: str, data: Dict[str, Any]) -> dict:
    """Insert ``data`` stamped with created/updated times and return the stored document."""
    now = utcnow()
    doc = {**data, "created_at": now, "updated_at": now}
    doc["_id"] = database[collection_name].insert_one(doc).inserted_id
    return doc


def get_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None,
                  sort=None, skip: int = 0, limit: int = 0) -> list:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database: Database) -> None:
    """Create the unique indexes the services rely on."""
    database["user"].create_index("email", unique=True)
    database["category"].create_index("title", unique=True)
    database["category"].create_index("slug", unique=True)
    database["product"].create_index("slug", unique=True)
    database["product"].create_index("category")
    database["cart"].create_index("user_id", unique=True)
    database["wishlist"].create_index("user_id", unique=True)
    database["review"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["order"].create_index("order_number", unique=True)
    database["order"].create_index("user_id")
    logger.debug("Indexes ensured on %s", database.name)
