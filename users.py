import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, get_documents, serialize, to_object_id, utcnow
from errors import Conflict, NotFound, ValidationFailed
from schemas import ProfileUpdate, User, UserAdminUpdate
from security import get_current_user, hash_password, require_admin

logger = logging.getLogger("shop.users")

router = APIRouter(prefix="/users", tags=["Users"])

PRIVATE_FIELDS = (
    "hashed_password",
    "reset_password_token",
    "reset_password_expires",
    "refresh_token",
    "refresh_token_expires",
)


def public_user(user: dict) -> dict:
    """Serialize a user without credential material."""
    d = serialize(user)
    for field in PRIVATE_FIELDS:
        d.pop(field, None)
    return d


def normalize_email(email: str) -> str:
    return email.strip().lower()


def find_by_email(db: Database, email: str) -> Optional[dict]:
    return db["user"].find_one({"email": normalize_email(email)})


def get_user(db: Database, user_id: str) -> dict:
    oid = to_object_id(user_id)
    if oid is None:
        raise ValidationFailed("Invalid user id")
    user = db["user"].find_one({"_id": oid})
    if not user:
        raise NotFound("User not found")
    return user


def create_user(db: Database, name: str, email: str, password: str, role: str = "user") -> dict:
    email = normalize_email(email)
    if db["user"].find_one({"email": email}):
        raise Conflict("Email already exists")
    data = User(name=name, email=email, hashed_password=hash_password(password), role=role).model_dump()
    try:
        user = create_document(db, "user", data)
    except DuplicateKeyError:
        raise Conflict("Email already exists")
    logger.info("Registered %s account %s", role, user["_id"])
    return user


def _update_user(db: Database, user: dict, changes: Dict[str, Any]) -> dict:
    if "email" in changes:
        changes["email"] = normalize_email(changes["email"])
        clash = db["user"].find_one({"email": changes["email"], "_id": {"$ne": user["_id"]}})
        if clash:
            raise Conflict("Email already exists")
    if not changes:
        return user
    changes["updated_at"] = utcnow()
    try:
        db["user"].update_one({"_id": user["_id"]}, {"$set": changes})
    except DuplicateKeyError:
        raise Conflict("Email already exists")
    return db["user"].find_one({"_id": user["_id"]})


def update_profile(db: Database, user: dict, data: ProfileUpdate) -> dict:
    return _update_user(db, user, data.model_dump(exclude_unset=True, exclude_none=True))


def admin_update_user(db: Database, user_id: str, data: UserAdminUpdate) -> dict:
    user = get_user(db, user_id)
    updated = _update_user(db, user, data.model_dump(exclude_unset=True, exclude_none=True))
    logger.info("User %s updated by admin", user_id)
    return updated


def list_users(db: Database) -> List[dict]:
    return get_documents(db, "user", sort=[("created_at", -1), ("_id", -1)])


def delete_user(db: Database, user_id: str) -> None:
    user = get_user(db, user_id)
    db["user"].delete_one({"_id": user["_id"]})
    logger.info("User %s deleted", user_id)


@router.patch("/profile")
def update_profile_route(payload: ProfileUpdate, user: dict = Depends(get_current_user),
                         db: Database = Depends(get_db)):
    return public_user(update_profile(db, user, payload))


@router.get("")
def list_users_route(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return [public_user(u) for u in list_users(db)]


@router.patch("/{user_id}")
def admin_update_user_route(user_id: str, payload: UserAdminUpdate, admin: dict = Depends(require_admin),
                            db: Database = Depends(get_db)):
    return public_user(admin_update_user(db, user_id, payload))


@router.delete("/{user_id}")
def delete_user_route(user_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    delete_user(db, user_id)
    return {"id": user_id, "deleted": True}
