import logging
import re
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from database import create_document, db, now_utc, paginate, require_db, serialize_doc, serialize_many, to_object_id
from schemas import Partner, PartnerIn, PartnerStatusIn
from security import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/partners", tags=["partners"], dependencies=[Depends(require_db)])

STATUSES = ("pending", "reviewed", "approved", "rejected")


def _get_or_404(partner_id: str) -> dict:
    partner = db["partner"].find_one({"_id": to_object_id(partner_id)})
    if not partner:
        raise HTTPException(status_code=404, detail="Partnership request not found")
    return partner


@router.post("", status_code=201)
def create_partner(data: PartnerIn):
    partner_id = create_document("partner", Partner(**data.model_dump()))
    logger.info("Partnership request %s from %s (%s)", partner_id, data.company, data.partnership_type)
    return {
        "success": True,
        "message": "Partnership request submitted successfully",
        "data": {"id": partner_id},
    }


@router.get("")
def list_partners(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    partnership_type: Optional[str] = Query(None, alias="partnershipType"),
    search: Optional[str] = None,
    admin: dict = Depends(require_admin),
):
    query: dict = {}
    if status and status != "all":
        query["status"] = status
    if partnership_type and partnership_type != "all":
        query["partnership_type"] = partnership_type
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [
            {"first_name": pattern},
            {"last_name": pattern},
            {"email": pattern},
            {"company": pattern},
        ]
    partners, meta = paginate("partner", query, page, limit)
    return {"success": True, "data": serialize_many(partners), "pagination": meta}


@router.get("/stats")
def partner_stats(admin: dict = Depends(require_admin)):
    month_ago = now_utc() - timedelta(days=30)
    return {
        "success": True,
        "data": {
            "total": db["partner"].count_documents({}),
            "pending": db["partner"].count_documents({"status": "pending"}),
            "recent": db["partner"].count_documents({"created_at": {"$gte": month_ago}}),
            "byStatus": {s: db["partner"].count_documents({"status": s}) for s in STATUSES},
        },
    }


@router.get("/{partner_id}")
def get_partner(partner_id: str, admin: dict = Depends(require_admin)):
    return {"success": True, "data": serialize_doc(_get_or_404(partner_id))}


@router.put("/{partner_id}/status")
def update_partner_status(partner_id: str, data: PartnerStatusIn, admin: dict = Depends(require_admin)):
    partner = _get_or_404(partner_id)
    updates = {
        "status": data.status,
        "reviewed_at": now_utc(),
        "reviewed_by": str(admin["_id"]),
        "updated_at": now_utc(),
    }
    if data.admin_notes is not None:
        updates["admin_notes"] = data.admin_notes
    db["partner"].update_one({"_id": partner["_id"]}, {"$set": updates})
    return {
        "success": True,
        "message": "Partnership status updated successfully",
        "data": serialize_doc(_get_or_404(partner_id)),
    }


@router.delete("/{partner_id}")
def delete_partner(partner_id: str, admin: dict = Depends(require_admin)):
    partner = _get_or_404(partner_id)
    db["partner"].delete_one({"_id": partner["_id"]})
    return {"success": True, "message": "Partnership request deleted successfully", "data": {}}
