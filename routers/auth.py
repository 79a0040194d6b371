import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException

import config
from database import create_document, db, now_utc, require_db
from emailer import email_service
from routers.site_settings import general_setting
from schemas import (
    ForgotPasswordIn,
    LoginIn,
    PasswordUpdateIn,
    ProfileUpdateIn,
    RegisterIn,
    ResetPasswordIn,
    User,
)
from security import (
    hash_password,
    hash_token,
    protect,
    public_user,
    random_token,
    token_for,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"], dependencies=[Depends(require_db)])


def _auth_response(user: dict) -> dict:
    return {"success": True, "token": token_for(user), "user": public_user(user)}


@router.post("/register", status_code=201)
def register(data: RegisterIn):
    if not general_setting("registration_enabled", True):
        raise HTTPException(status_code=403, detail="Registration is currently disabled")
    email = data.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists with this email")

    verification_token = random_token()
    user = User(
        name=data.name,
        email=email,
        password_hash=hash_password(data.password),
        email_verification_token=hash_token(verification_token),
    )
    user_id = create_document("user", user)
    doc = db["user"].find_one({"email": email})
    logger.info("New user registered: %s (%s)", email, user_id)

    email_service.send_verification_email(
        email, data.name, f"{config.FRONTEND_URL}/verify-email/{verification_token}"
    )
    return _auth_response(doc)


@router.post("/login")
def login(data: LoginIn):
    user = db["user"].find_one({"email": data.email.lower()})
    if not user or not verify_password(data.password, user.get("password_hash")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _auth_response(user)


@router.post("/logout")
def logout():
    # tokens are stateless; the client drops its copy
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me")
def me(user: dict = Depends(protect)):
    return {"success": True, "user": public_user(user)}


@router.put("/profile")
def update_profile(data: ProfileUpdateIn, user: dict = Depends(protect)):
    updates = data.model_dump(exclude_unset=True)
    if "social_links" in updates and updates["social_links"] is not None:
        merged = {**(user.get("social_links") or {}), **data.social_links.model_dump(exclude_unset=True)}
        updates["social_links"] = merged
    if not updates:
        return {"success": True, "user": public_user(user)}
    updates["updated_at"] = now_utc()
    db["user"].update_one({"_id": user["_id"]}, {"$set": updates})
    return {"success": True, "user": public_user(db["user"].find_one({"_id": user["_id"]}))}


@router.put("/password")
def update_password(data: PasswordUpdateIn, user: dict = Depends(protect)):
    if not verify_password(data.current_password, user.get("password_hash")):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(data.new_password), "updated_at": now_utc()}},
    )
    return {"success": True, "message": "Password updated successfully", "token": token_for(user)}


@router.post("/forgot-password")
def forgot_password(data: ForgotPasswordIn):
    user = db["user"].find_one({"email": data.email.lower()})
    if not user:
        raise HTTPException(status_code=404, detail="There is no user with that email")

    raw = random_token()
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "password_reset_token": hash_token(raw),
            "password_reset_expires": now_utc() + timedelta(minutes=config.RESET_TOKEN_MINUTES),
        }},
    )
    reset_url = f"{config.FRONTEND_URL}/reset-password/{raw}"
    if not email_service.send_password_reset_email(user["email"], user.get("name", ""), reset_url):
        db["user"].update_one(
            {"_id": user["_id"]},
            {"$unset": {"password_reset_token": "", "password_reset_expires": ""}},
        )
        raise HTTPException(status_code=500, detail="Email could not be sent")
    return {"success": True, "message": "Password reset email sent"}


@router.post("/reset-password/{token}")
def reset_password(token: str, data: ResetPasswordIn):
    user = db["user"].find_one({
        "password_reset_token": hash_token(token),
        "password_reset_expires": {"$gt": now_utc()},
    })
    if not user:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    db["user"].update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password_hash": hash_password(data.password), "updated_at": now_utc()},
            "$unset": {"password_reset_token": "", "password_reset_expires": ""},
        },
    )
    return _auth_response(db["user"].find_one({"_id": user["_id"]}))


@router.get("/verify-email/{token}")
def verify_email(token: str):
    user = db["user"].find_one({"email_verification_token": hash_token(token)})
    if not user:
        raise HTTPException(status_code=400, detail="Invalid verification token")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"is_email_verified": True, "updated_at": now_utc()},
         "$unset": {"email_verification_token": ""}},
    )
    return {"success": True, "message": "Email verified successfully"}
