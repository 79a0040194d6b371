import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt  # PyJWT
from bson import ObjectId
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

import config
from database import db, serialize_doc

# -------------------------------------------------------------------
# Password hashing
# -------------------------------------------------------------------
# bcrypt for new hashes; argon2 hashes from older accounts still verify
pwd_context = CryptContext(
    schemes=["bcrypt", "argon2"],
    deprecated="auto",
    bcrypt__rounds=config.BCRYPT_ROUNDS,
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # unknown or malformed hash
        return False


def random_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


# -------------------------------------------------------------------
# Auth/JWT utilities
# -------------------------------------------------------------------
security = HTTPBearer(auto_error=False)

SENSITIVE_USER_FIELDS = (
    "password_hash",
    "password_reset_token",
    "password_reset_expires",
    "email_verification_token",
)


def create_jwt(payload: dict, seconds: int = config.JWT_EXPIRE_SECONDS) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(seconds=seconds)
    to_encode = {**payload, "iat": int(now.timestamp()), "exp": int(exp.timestamp())}
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm="HS256")


def decode_jwt(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def token_for(user: dict) -> str:
    return create_jwt({"id": str(user["_id"]), "role": user.get("role", "reader")})


def public_user(user: dict) -> dict:
    """Serialized user without credentials or one-time tokens."""
    data = {k: v for k, v in user.items() if k not in SENSITIVE_USER_FIELDS}
    return serialize_doc(data)


def _user_from_token(token: str) -> dict:
    data = decode_jwt(token)
    user_id = data.get("id")
    if not user_id or not ObjectId.is_valid(user_id):
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise HTTPException(status_code=401, detail="The user belonging to this token no longer exists")
    return user


# -------------------------------------------------------------------
# Route dependencies
# -------------------------------------------------------------------
def protect(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> dict:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Not authorized to access this route")
    return _user_from_token(credentials.credentials)


def optional_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Optional[dict]:
    if credentials is None or not credentials.credentials:
        return None
    try:
        return _user_from_token(credentials.credentials)
    except HTTPException:
        return None


def restrict_to(*roles: str):
    def checker(user: dict = Depends(protect)) -> dict:
        if user.get("role") not in roles:
            raise HTTPException(
                status_code=403,
                detail=f"User role {user.get('role')} is not authorized to access this route",
            )
        return user

    return checker


require_admin = restrict_to("admin")


def is_admin(user: Optional[dict]) -> bool:
    return bool(user) and user.get("role") == "admin"


def ensure_owner_or_admin(user: dict, owner_id: Optional[str], what: str = "resource"):
    if is_admin(user) or (owner_id and str(user["_id"]) == str(owner_id)):
        return
    raise HTTPException(status_code=403, detail=f"Not authorized to modify this {what}")
