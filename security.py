import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Optional, Tuple

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pymongo.database import Database

from config import settings
from database import get_db, to_object_id, utcnow
from errors import Forbidden, Unauthorized

logger = logging.getLogger("shop.security")

security = HTTPBearer(auto_error=False)
password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds)
# salted, so stored refresh hashes cannot be looked up directly
token_ctx = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return password_ctx.verify(password, hashed)


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def create_access_token(user: dict) -> str:
    now = utcnow()
    payload = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "role": user.get("role", "user"),
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_expires_min),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")


def new_refresh_token(user_id: str) -> Tuple[str, str]:
    """Return ``(raw_token, stored_hash)``; the raw token embeds the owner id."""
    secret = secrets.token_urlsafe(32)
    return f"{user_id}.{secret}", token_ctx.hash(secret)


def split_refresh_token(token: str) -> Tuple[Optional[str], str]:
    user_id, _, secret = token.partition(".")
    if not secret or to_object_id(user_id) is None:
        return None, ""
    return user_id, secret


def verify_refresh_secret(secret: str, stored_hash: Optional[str]) -> bool:
    if not stored_hash:
        return False
    return token_ctx.verify(secret, stored_hash)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Database = Depends(get_db),
) -> dict:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthorized("Not authenticated")
    payload = decode_token(credentials.credentials)
    oid = to_object_id(payload.get("sub"))
    if oid is None:
        raise Unauthorized("Invalid token")
    user = db["user"].find_one({"_id": oid})
    if not user:
        raise Unauthorized("User not found")
    if user.get("is_blocked"):
        raise Unauthorized("Your account has been blocked")
    return user


def is_admin(user: dict) -> bool:
    return user.get("role") == "admin"


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not is_admin(user):
        logger.warning("Admin route refused for user %s", user["_id"])
        raise Forbidden("Admin only")
    return user


def ensure_owner_or_admin(user: dict, owner_id: str, detail: str) -> None:
    if str(user["_id"]) != owner_id and not is_admin(user):
        raise Forbidden(detail)
