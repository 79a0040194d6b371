import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

import config
from database import create_document, db, now_utc, paginate, require_db, serialize_doc, serialize_many
from emailer import email_service, render_template
from scheduler import newsletter_scheduler
from schemas import (
    EmailTemplate,
    EmailTemplateIn,
    EmailTemplateUpdateIn,
    Newsletter,
    PreferencesIn,
    SendTestIn,
    SubscribeIn,
    TemplatePreviewIn,
    TemplateSendIn,
    UnsubscribeIn,
)
from security import hash_token, random_token, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/newsletter", tags=["newsletter"], dependencies=[Depends(require_db)])
templates_router = APIRouter(
    prefix="/api/admin/email-templates",
    tags=["admin"],
    dependencies=[Depends(require_db), Depends(require_admin)],
)


def format_count(n: int) -> str:
    """45000 -> '45K+', 2300000 -> '2M+'."""
    if n >= 1_000_000:
        return f"{n // 1_000_000}M+"
    if n >= 1000:
        return f"{n // 1000}K+"
    return str(n)


# -------------------------------------------------------------------
# Subscribers
# -------------------------------------------------------------------
@router.get("/public/metrics")
def public_metrics():
    def count(pref: str = None) -> int:
        query = {"is_active": True}
        if pref:
            query[f"preferences.{pref}"] = True
        return db["newsletter"].count_documents(query)

    return {
        "success": True,
        "data": {
            "weeklyDigest": format_count(count("weekly_digest")),
            "dealAlerts": format_count(count("deals")),
            "destinations": format_count(count("destinations")),
            "travelTips": format_count(count("travel_tips")),
            "totalActive": format_count(count()),
        },
    }


@router.post("/subscribe", status_code=201)
def subscribe(data: SubscribeIn, response: Response):
    email = data.email.lower()
    existing = db["newsletter"].find_one({"email": email})
    if existing and existing.get("is_active") and existing.get("status") == "subscribed":
        raise HTTPException(status_code=400, detail="Email is already subscribed to our newsletter")

    raw = random_token()
    if existing:
        db["newsletter"].update_one(
            {"_id": existing["_id"]},
            {"$set": {
                "status": "subscribed",
                "is_active": True,
                "name": data.name or existing.get("name"),
                "preferences": data.preferences.model_dump(),
                "subscribed_at": now_utc(),
                "unsubscribed_at": None,
                "updated_at": now_utc(),
            }},
        )
        logger.info("Newsletter subscription reactivated for %s", email)
        response.status_code = 200
        message = "Welcome back! Your subscription has been reactivated."
    else:
        subscriber = Newsletter(
            **data.model_dump(exclude={"email"}),
            email=email,
            verification_token=hash_token(raw),
            subscribed_at=now_utc(),
        )
        create_document("newsletter", subscriber)
        email_service.send_verification_email(
            email, data.name, f"{config.FRONTEND_URL}/newsletter/verify/{raw}"
        )
        logger.info("New newsletter subscriber %s via %s", email, data.source)
        message = "Successfully subscribed to newsletter!"

    return {"success": True, "message": message, "data": {"email": email}}


@router.post("/unsubscribe")
def unsubscribe(data: UnsubscribeIn):
    result = db["newsletter"].update_one(
        {"email": data.email.lower()},
        {"$set": {
            "status": "unsubscribed",
            "is_active": False,
            "unsubscribed_at": now_utc(),
            "updated_at": now_utc(),
        }},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Email not found in our newsletter list")
    return {"success": True, "message": "Successfully unsubscribed from newsletter"}


@router.get("/verify/{token}")
def verify_subscription(token: str):
    subscriber = db["newsletter"].find_one({"verification_token": hash_token(token)})
    if not subscriber:
        raise HTTPException(status_code=400, detail="Invalid or expired verification token")
    db["newsletter"].update_one(
        {"_id": subscriber["_id"]},
        {"$set": {"is_verified": True, "updated_at": now_utc()}, "$unset": {"verification_token": ""}},
    )
    return {"success": True, "message": "Email verified successfully"}


@router.put("/preferences")
def update_preferences(data: PreferencesIn):
    result = db["newsletter"].update_one(
        {"email": data.email.lower()},
        {"$set": {"preferences": data.preferences.model_dump(), "updated_at": now_utc()}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Subscriber not found")
    return {"success": True, "message": "Preferences updated successfully"}


# -------------------------------------------------------------------
# Admin
# -------------------------------------------------------------------
@router.get("/stats")
def newsletter_stats(admin: dict = Depends(require_admin)):
    stats = newsletter_scheduler.stats()
    stats.update({
        "unsubscribed": db["newsletter"].count_documents({"status": "unsubscribed"}),
        "verified": db["newsletter"].count_documents({"is_verified": True}),
        "bySource": {
            row["_id"] or "unknown": row["count"]
            for row in db["newsletter"].aggregate([{"$group": {"_id": "$source", "count": {"$sum": 1}}}])
        },
    })
    return {"success": True, "data": stats}


@router.get("/subscribers")
def list_subscribers(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    search: Optional[str] = None,
    admin: dict = Depends(require_admin),
):
    query: dict = {}
    if status and status != "all":
        query["status"] = status
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"email": pattern}, {"name": pattern}]
    subscribers, meta = paginate("newsletter", query, page, limit, projection={"verification_token": 0})
    return {"success": True, "data": serialize_many(subscribers), "pagination": meta}


@router.post("/send-weekly")
def send_weekly(admin: dict = Depends(require_admin)):
    result = newsletter_scheduler.send_weekly_newsletter()
    logger.info("Weekly newsletter triggered manually by %s", admin.get("email"))
    return {"success": True, "data": result}


@router.post("/send-test")
def send_test(data: SendTestIn, admin: dict = Depends(require_admin)):
    if not newsletter_scheduler.send_test_newsletter(data.email):
        raise HTTPException(status_code=400, detail="Test newsletter could not be sent")
    return {"success": True, "message": "Test newsletter sent"}


@router.get("/email-config")
def email_config(admin: dict = Depends(require_admin)):
    ok = email_service.test_config()
    return {
        "success": True,
        "data": {"configured": email_service.configured, "connected": ok, "host": email_service.host},
    }


@router.get("/scheduler")
def scheduler_status(admin: dict = Depends(require_admin)):
    return {"success": True, "data": newsletter_scheduler.status()}


@router.post("/scheduler/start")
def scheduler_start(admin: dict = Depends(require_admin)):
    started = newsletter_scheduler.start()
    message = "Newsletter scheduler started" if started else "Newsletter scheduler is already running"
    return {"success": True, "message": message, "data": newsletter_scheduler.status()}


@router.post("/scheduler/stop")
def scheduler_stop(admin: dict = Depends(require_admin)):
    stopped = newsletter_scheduler.stop()
    message = "Newsletter scheduler stopped" if stopped else "Newsletter scheduler is not running"
    return {"success": True, "message": message, "data": newsletter_scheduler.status()}


# -------------------------------------------------------------------
# Email templates
# -------------------------------------------------------------------
def _template_or_404(key: str) -> dict:
    tpl = db["emailtemplate"].find_one({"key": key.lower()})
    if not tpl:
        raise HTTPException(status_code=404, detail="Email template not found")
    return tpl


@templates_router.get("")
def list_templates(type: Optional[str] = None, active: Optional[bool] = None):
    query: dict = {}
    if type:
        query["type"] = type
    if active is not None:
        query["is_active"] = active
    return {"success": True, "data": serialize_many(db["emailtemplate"].find(query).sort("key", 1))}


@templates_router.get("/{key}")
def get_template(key: str):
    return {"success": True, "data": serialize_doc(_template_or_404(key))}


@templates_router.post("", status_code=201)
def create_template(data: EmailTemplateIn):
    if db["emailtemplate"].find_one({"key": data.key}):
        raise HTTPException(status_code=400, detail="Template with this key already exists")
    create_document("emailtemplate", EmailTemplate(**data.model_dump()))
    logger.info("Email template %s created", data.key)
    return {"success": True, "data": serialize_doc(_template_or_404(data.key))}


@templates_router.put("/{key}")
def update_template(key: str, data: EmailTemplateUpdateIn):
    tpl = _template_or_404(key)
    updates = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    if updates.get("key", tpl["key"]) != tpl["key"] and db["emailtemplate"].find_one({"key": updates["key"]}):
        raise HTTPException(status_code=400, detail="Template with this key already exists")
    updates["updated_at"] = now_utc()
    db["emailtemplate"].update_one({"_id": tpl["_id"]}, {"$set": updates})
    return {"success": True, "data": serialize_doc(db["emailtemplate"].find_one({"_id": tpl["_id"]}))}


@templates_router.delete("/{key}")
def delete_template(key: str):
    tpl = _template_or_404(key)
    db["emailtemplate"].delete_one({"_id": tpl["_id"]})
    return {"success": True, "message": "Email template deleted", "data": {}}


@templates_router.post("/{key}/preview")
def preview_template(key: str, data: TemplatePreviewIn):
    tpl = _template_or_404(key)
    return {
        "success": True,
        "data": {
            "subject": render_template(tpl["subject"], data.variables),
            "html": render_template(tpl["html_content"], data.variables),
            "text": render_template(tpl.get("text_content") or "", data.variables),
        },
    }


@templates_router.post("/{key}/send")
def send_template(key: str, data: TemplateSendIn):
    tpl = _template_or_404(key)
    if not tpl.get("is_active", True):
        raise HTTPException(status_code=400, detail="Email template is inactive")
    summary = email_service.send_custom_email(
        data.to, tpl["subject"], tpl["html_content"], tpl.get("text_content") or "", data.variables
    )
    logger.info("Template %s sent to %d recipients (%d failed)", key, summary["sent"], summary["failed"])
    return {"success": summary["sent"] > 0, "data": summary}
