from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from pydantic import ValidationError
from pydantic.alias_generators import to_snake
from fastapi.exceptions import RequestValidationError

import config
from database import db, now_utc, require_db, serialize_doc
from schemas import SiteSettings
from security import require_admin

router = APIRouter(prefix="/api/site-settings", tags=["site-settings"], dependencies=[Depends(require_db)])
admin_router = APIRouter(prefix="/api/admin/settings", tags=["admin"], dependencies=[Depends(require_db)])

SINGLETON = {"singleton": True}
PUBLIC_FIELDS = (
    "feature_toggles",
    "site_name",
    "site_description",
    "social_links",
    "theme",
    "contact_email",
    "contact_phone",
    "contact_address",
    "business_hours",
)


def _defaults() -> dict:
    data = SiteSettings(site_url=config.APP_URL, support_email=config.SUPPORT_EMAIL).model_dump()
    if config.ADMIN_EMAILS:
        data["contact_email"] = config.ADMIN_EMAILS[0]
    return data


def get_site_settings() -> dict:
    """Load the settings singleton, creating it with defaults on first access."""
    doc = db["sitesettings"].find_one(SINGLETON)
    if doc:
        return doc
    ts = now_utc()
    db["sitesettings"].update_one(
        SINGLETON,
        {"$setOnInsert": {**_defaults(), "created_at": ts, "updated_at": ts}},
        upsert=True,
    )
    return db["sitesettings"].find_one(SINGLETON)


def general_setting(name: str, default: Any = None) -> Any:
    return (get_site_settings().get("general_settings") or {}).get(name, default)


def _snake_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {to_snake(k): _snake_keys(v) for k, v in value.items()}
    return value


def _deep_merge(base: dict, updates: dict) -> dict:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# -------------------------------------------------------------------
# Public
# -------------------------------------------------------------------
@router.get("")
def public_settings():
    settings = get_site_settings()
    return {"success": True, "data": serialize_doc({k: settings.get(k) for k in PUBLIC_FIELDS})}


# -------------------------------------------------------------------
# Admin
# -------------------------------------------------------------------
@admin_router.get("")
def admin_get_settings(admin: dict = Depends(require_admin)):
    settings = get_site_settings()
    settings.pop("singleton", None)
    return {"success": True, "data": serialize_doc(settings)}


@admin_router.put("")
def admin_update_settings(payload: Dict[str, Any] = Body(...), admin: dict = Depends(require_admin)):
    current = get_site_settings()
    fields = set(SiteSettings.model_fields)
    stored = {k: v for k, v in current.items() if k in fields}
    updates = {k: v for k, v in _snake_keys(payload).items() if k in fields}
    try:
        validated = SiteSettings.model_validate(_deep_merge(stored, updates))
    except ValidationError as e:
        raise RequestValidationError(e.errors())
    db["sitesettings"].update_one(
        SINGLETON,
        {"$set": {**validated.model_dump(), "updated_at": now_utc(), "updated_by": str(admin["_id"])}},
        upsert=True,
    )
    settings = db["sitesettings"].find_one(SINGLETON)
    settings.pop("singleton", None)
    return {"success": True, "message": "Settings updated successfully", "data": serialize_doc(settings)}
