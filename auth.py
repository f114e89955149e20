import logging
import secrets
from datetime import timedelta

from fastapi import APIRouter, BackgroundTasks, Depends
from pymongo.database import Database

from config import settings
from database import get_db, to_object_id, utcnow
from errors import NotFound, Unauthorized, ValidationFailed
from mailer import Mailer, get_mailer
from schemas import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
)
from security import (
    create_access_token,
    get_current_user,
    hash_password,
    is_admin,
    new_refresh_token,
    require_admin,
    sha256_hex,
    split_refresh_token,
    verify_password,
    verify_refresh_secret,
)
from users import create_user, find_by_email, public_user

logger = logging.getLogger("shop.auth")

router = APIRouter(prefix="/auth", tags=["Auth"])


def issue_tokens(db: Database, user: dict) -> dict:
    """Sign an access token and rotate the stored refresh token for ``user``."""
    raw_refresh, refresh_hash = new_refresh_token(str(user["_id"]))
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "refresh_token": refresh_hash,
            "refresh_token_expires": utcnow() + timedelta(days=settings.refresh_token_days),
        }},
    )
    return {
        "message": "Login successfully",
        "access_token": create_access_token(user),
        "refresh_token": raw_refresh,
        "token_type": "bearer",
    }


def register(db: Database, payload: RegisterRequest, role: str = "user") -> dict:
    create_user(db, payload.name, payload.email, payload.password, role=role)
    if role == "admin":
        return {"message": "Admin account created successfully"}
    return {"message": "User registered successfully"}


def login(db: Database, payload: LoginRequest, admin_only: bool = False) -> dict:
    user = find_by_email(db, payload.email)
    if not user:
        raise Unauthorized("Invalid credentials")
    if admin_only and not is_admin(user):
        logger.warning("Non-admin %s refused at admin login", user["_id"])
        raise Unauthorized("Access denied. This portal is for Admins only.")
    if user.get("is_blocked"):
        logger.warning("Blocked account %s tried to log in", user["_id"])
        raise Unauthorized("Your account has been blocked")
    if not verify_password(payload.password, user.get("hashed_password", "")):
        raise Unauthorized("Invalid credentials")
    return issue_tokens(db, user)


def refresh(db: Database, token: str) -> dict:
    user_id, secret = split_refresh_token(token)
    expired = Unauthorized("Refresh token invalid or expired. Please login again.")
    if user_id is None:
        raise expired
    user = db["user"].find_one({
        "_id": to_object_id(user_id),
        "refresh_token_expires": {"$gt": utcnow()},
    })
    if not user or not verify_refresh_secret(secret, user.get("refresh_token")):
        raise expired
    if user.get("is_blocked"):
        raise Unauthorized("Your account has been blocked")
    return issue_tokens(db, user)


def logout(db: Database, user: dict) -> dict:
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$unset": {"refresh_token": "", "refresh_token_expires": ""}},
    )
    return {"message": "Logged out successfully"}


def forgot_password(db: Database, email: str) -> str:
    """Store a hashed reset token for ``email`` and return the link carrying the raw token."""
    user = find_by_email(db, email)
    if not user:
        raise NotFound("User not found")
    raw_token = secrets.token_hex(32)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "reset_password_token": sha256_hex(raw_token),
            "reset_password_expires": utcnow() + timedelta(minutes=settings.reset_token_minutes),
        }},
    )
    logger.info("Password reset requested for user %s", user["_id"])
    return f"{settings.frontend_url}/reset-password?token={raw_token}"


def reset_password(db: Database, token: str, new_password: str) -> dict:
    user = db["user"].find_one({
        "reset_password_token": sha256_hex(token),
        "reset_password_expires": {"$gt": utcnow()},
    })
    if not user:
        raise ValidationFailed("Token invalid or expired")
    db["user"].update_one(
        {"_id": user["_id"]},
        {
            "$set": {"hashed_password": hash_password(new_password), "updated_at": utcnow()},
            "$unset": {"reset_password_token": "", "reset_password_expires": ""},
        },
    )
    logger.info("Password reset completed for user %s", user["_id"])
    return {"message": "Password reset successfully"}


def change_password(db: Database, user: dict, old_password: str, new_password: str) -> dict:
    if not verify_password(old_password, user.get("hashed_password", "")):
        raise ValidationFailed("Old password incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"hashed_password": hash_password(new_password), "updated_at": utcnow()}},
    )
    return {"message": "Password changed successfully"}


@router.post("/register", status_code=201)
def register_route(payload: RegisterRequest, db: Database = Depends(get_db)):
    return register(db, payload)


@router.post("/login")
def login_route(payload: LoginRequest, db: Database = Depends(get_db)):
    return login(db, payload)


@router.post("/admin/register", status_code=201)
def admin_register_route(payload: RegisterRequest, admin: dict = Depends(require_admin),
                         db: Database = Depends(get_db)):
    return register(db, payload, role="admin")


@router.post("/admin/login")
def admin_login_route(payload: LoginRequest, db: Database = Depends(get_db)):
    return login(db, payload, admin_only=True)


@router.get("/profile")
def profile_route(user: dict = Depends(get_current_user)):
    return {"message": "Profile data fetched successfully", "user": public_user(user)}


@router.post("/refresh")
def refresh_route(payload: RefreshRequest, db: Database = Depends(get_db)):
    return refresh(db, payload.refresh_token)


@router.post("/logout")
def logout_route(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return logout(db, user)


@router.post("/forgot-password")
def forgot_password_route(payload: ForgotPasswordRequest, background_tasks: BackgroundTasks,
                          db: Database = Depends(get_db), mailer: Mailer = Depends(get_mailer)):
    reset_link = forgot_password(db, payload.email)
    background_tasks.add_task(mailer.send_reset_password_email, payload.email, reset_link)
    return {"message": "Password reset email sent successfully"}


@router.post("/reset-password")
def reset_password_route(payload: ResetPasswordRequest, db: Database = Depends(get_db)):
    return reset_password(db, payload.token, payload.password)


@router.post("/change-password")
def change_password_route(payload: ChangePasswordRequest, user: dict = Depends(get_current_user),
                          db: Database = Depends(get_db)):
    return change_password(db, user, payload.old_password, payload.new_password)
