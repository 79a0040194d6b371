import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import ValidationError
from fastapi.exceptions import RequestValidationError
from pymongo import DESCENDING, ReturnDocument

from database import (
    create_document,
    db,
    now_utc,
    paginate,
    parse_sort,
    require_db,
    serialize_doc,
    serialize_many,
    to_object_id,
)
from schemas import Photo, PhotoIn, PhotoModerateIn, PhotoStatusIn
from security import optional_user, require_admin
from uploads import upload_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/photos", tags=["photos"], dependencies=[Depends(require_db)])

PUBLIC = {"status": "approved", "is_public": True}
SORT_FIELDS = {
    "createdAt": "created_at",
    "approvedAt": "approved_at",
    "likes": "likes",
    "views": "views",
    "downloads": "downloads",
}


def _get_or_404(photo_id: str) -> dict:
    photo = db["photo"].find_one({"_id": to_object_id(photo_id)})
    if not photo:
        raise HTTPException(status_code=404, detail="Photo not found")
    return photo


def _save_submission(data: PhotoIn, user: Optional[dict]) -> dict:
    fields = data.model_dump()
    fields["tags"] = [t.strip().lower() for t in fields["tags"] if t.strip()]
    if user:
        fields["photographer"]["user_id"] = str(user["_id"])
    photo_id = create_document("photo", Photo(**fields, submitted_at=now_utc()))
    logger.info("Photo %s submitted by %s", photo_id, data.photographer.email)
    return {
        "success": True,
        "message": "Photo submitted successfully and is pending review",
        "data": serialize_doc(_get_or_404(photo_id)),
    }


# -------------------------------------------------------------------
# Public
# -------------------------------------------------------------------
@router.get("")
def list_photos(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    category: Optional[str] = None,
    country: Optional[str] = None,
    tag: Optional[str] = None,
    search: Optional[str] = None,
    sort: Optional[str] = "-createdAt",
):
    query: dict = dict(PUBLIC)
    if category and category != "all":
        query["category"] = category
    if country:
        query["location.country"] = {"$regex": f"^{re.escape(country)}$", "$options": "i"}
    if tag:
        query["tags"] = tag.lower()
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"title": pattern}, {"description": pattern}, {"location.city": pattern}]
    photos, meta = paginate("photo", query, page, limit, parse_sort(sort, SORT_FIELDS, ("created_at", DESCENDING)))
    return {"success": True, "data": serialize_many(photos), "pagination": meta}


@router.get("/featured")
def featured_photos(limit: int = Query(8, ge=1, le=50)):
    photos = db["photo"].find({**PUBLIC, "is_featured": True}).sort("approved_at", DESCENDING).limit(limit)
    return {"success": True, "data": serialize_many(photos)}


@router.get("/categories")
def photo_categories():
    rows = db["photo"].aggregate([
        {"$match": PUBLIC},
        {"$group": {"_id": "$category", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
    ])
    return {"success": True, "data": [{"category": r["_id"], "count": r["count"]} for r in rows]}


@router.get("/locations")
def photo_locations():
    rows = db["photo"].aggregate([
        {"$match": PUBLIC},
        {"$group": {"_id": "$location.country", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
    ])
    return {"success": True, "data": [{"country": r["_id"], "count": r["count"]} for r in rows]}


# -------------------------------------------------------------------
# Admin (declared before /{photo_id})
# -------------------------------------------------------------------
@router.get("/admin/all")
def list_all_photos(
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
        query["$or"] = [{"title": pattern}, {"photographer.name": pattern}, {"photographer.email": pattern}]
    photos, meta = paginate("photo", query, page, limit)
    return {"success": True, "data": serialize_many(photos), "pagination": meta}


@router.get("/admin/pending")
def pending_photos(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(require_admin),
):
    photos, meta = paginate("photo", {"status": "pending"}, page, limit, ("submitted_at", DESCENDING))
    return {"success": True, "data": serialize_many(photos), "pagination": meta}


@router.put("/admin/{photo_id}/moderate")
def moderate_photo(photo_id: str, data: PhotoModerateIn, admin: dict = Depends(require_admin)):
    photo = _get_or_404(photo_id)
    updates = {"status": data.status, "moderation_notes": data.moderation_notes, "updated_at": now_utc()}
    if data.status == "approved":
        updates["approved_at"] = now_utc()
    if data.is_featured is not None:
        updates["is_featured"] = data.is_featured
    db["photo"].update_one({"_id": photo["_id"]}, {"$set": updates})
    logger.info("Photo %s %s by %s", photo_id, data.status, admin.get("email"))
    return {"success": True, "message": f"Photo {data.status} successfully", "data": serialize_doc(_get_or_404(photo_id))}


@router.put("/admin/{photo_id}/status")
def update_photo_status(photo_id: str, data: PhotoStatusIn, admin: dict = Depends(require_admin)):
    photo = _get_or_404(photo_id)
    updates = {k: v for k, v in data.model_dump().items() if v is not None}
    if data.status == "approved" and not photo.get("approved_at"):
        updates["approved_at"] = now_utc()
    updates["updated_at"] = now_utc()
    db["photo"].update_one({"_id": photo["_id"]}, {"$set": updates})
    return {"success": True, "data": serialize_doc(_get_or_404(photo_id))}


@router.delete("/admin/{photo_id}")
def delete_photo(photo_id: str, admin: dict = Depends(require_admin)):
    photo = _get_or_404(photo_id)
    db["photo"].delete_one({"_id": photo["_id"]})
    db["comment"].delete_many({"resource_type": "photo", "resource_id": photo_id})
    return {"success": True, "message": "Photo deleted successfully", "data": {}}


# -------------------------------------------------------------------
# Submissions
# -------------------------------------------------------------------
@router.post("", status_code=201)
def submit_photo(data: PhotoIn, user: Optional[dict] = Depends(optional_user)):
    return _save_submission(data, user)


@router.post("/upload", status_code=201)
def upload_photo(
    image: UploadFile = File(...),
    title: str = Form(...),
    country: str = Form(...),
    photographer_name: str = Form(..., alias="photographerName"),
    photographer_email: str = Form(..., alias="photographerEmail"),
    description: str = Form(""),
    city: Optional[str] = Form(None),
    category: str = Form("other"),
    tags: str = Form(""),
    camera: Optional[str] = Form(None),
    user: Optional[dict] = Depends(optional_user),
):
    """Multipart variant of submit; the image is stored on Cloudinary."""
    try:
        data = PhotoIn(
            title=title,
            description=description,
            image_url="pending-upload",
            location={"country": country, "city": city},
            photographer={"name": photographer_name, "email": photographer_email},
            tags=[t for t in tags.split(",") if t.strip()],
            category=category,
            camera=camera,
        )
    except ValidationError as e:
        raise RequestValidationError(e.errors())
    uploaded = upload_image(image, "photos")
    data.image_url = uploaded["url"]
    data.thumbnail_url = uploaded["url"]
    return _save_submission(data, user)


# -------------------------------------------------------------------
# Single photo
# -------------------------------------------------------------------
@router.get("/{photo_id}")
def get_photo(photo_id: str):
    photo = db["photo"].find_one_and_update(
        {**PUBLIC, "_id": to_object_id(photo_id)},
        {"$inc": {"views": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not photo:
        raise HTTPException(status_code=404, detail="Photo not found")
    return {"success": True, "data": serialize_doc(photo)}


def _bump(photo_id: str, field: str) -> dict:
    photo = db["photo"].find_one_and_update(
        {**PUBLIC, "_id": to_object_id(photo_id)},
        {"$inc": {field: 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not photo:
        raise HTTPException(status_code=404, detail="Photo not found")
    return photo


@router.put("/{photo_id}/like")
def like_photo(photo_id: str):
    return {"success": True, "data": {"likes": _bump(photo_id, "likes")["likes"]}}


@router.put("/{photo_id}/download")
def download_photo(photo_id: str):
    return {"success": True, "data": {"downloads": _bump(photo_id, "downloads")["downloads"]}}
