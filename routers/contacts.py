import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from database import create_document, db, now_utc, paginate, require_db, serialize_doc, serialize_many, to_object_id
from schemas import Contact, ContactIn, ContactStatusIn
from security import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/contact", tags=["contact"], dependencies=[Depends(require_db)])


def _get_or_404(contact_id: str) -> dict:
    contact = db["contact"].find_one({"_id": to_object_id(contact_id)})
    if not contact:
        raise HTTPException(status_code=404, detail="Contact message not found")
    return contact


@router.post("", status_code=201)
def create_contact(data: ContactIn):
    contact_id = create_document("contact", Contact(**data.model_dump()))
    logger.info("New contact message %s from %s", contact_id, data.email)
    return {
        "success": True,
        "message": "Thank you for your message. We'll get back to you soon!",
        "data": {"id": contact_id},
    }


@router.get("")
def list_contacts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    search: Optional[str] = None,
    admin: dict = Depends(require_admin),
):
    query: dict = {}
    if status and status != "all":
        query["status"] = status
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"email": pattern}, {"subject": pattern}, {"message": pattern}]
    contacts, meta = paginate("contact", query, page, limit)
    return {"success": True, "data": serialize_many(contacts), "pagination": meta}


@router.get("/{contact_id}")
def get_contact(contact_id: str, admin: dict = Depends(require_admin)):
    return {"success": True, "data": serialize_doc(_get_or_404(contact_id))}


@router.put("/{contact_id}/status")
def update_contact_status(contact_id: str, data: ContactStatusIn, admin: dict = Depends(require_admin)):
    contact = _get_or_404(contact_id)
    updates = {"status": data.status, "updated_at": now_utc()}
    if data.admin_notes is not None:
        updates["admin_notes"] = data.admin_notes
    if data.status == "replied" and not contact.get("replied_at"):
        updates["replied_at"] = now_utc()
    db["contact"].update_one({"_id": contact["_id"]}, {"$set": updates})
    return {"success": True, "data": serialize_doc(_get_or_404(contact_id))}


@router.delete("/{contact_id}")
def delete_contact(contact_id: str, admin: dict = Depends(require_admin)):
    contact = _get_or_404(contact_id)
    db["contact"].delete_one({"_id": contact["_id"]})
    return {"success": True, "message": "Contact message deleted", "data": {}}
