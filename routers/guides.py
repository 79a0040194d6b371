import re
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
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
from moderation import sanitize_rich_text
from routers.posts import unique_slug
from schemas import Guide, GuideIn, GuideUpdateIn
from security import require_admin, restrict_to
from uploads import upload_image

router = APIRouter(prefix="/api/guides", tags=["guides"], dependencies=[Depends(require_db)])
admin_router = APIRouter(prefix="/api/admin/guides", tags=["admin"], dependencies=[Depends(require_db)])

editor = restrict_to("admin", "contributor")

PUBLIC = {"is_published": True}
GUIDE_TYPES = ("itinerary", "budget", "photography", "food", "adventure")
SORT_FIELDS = {
    "createdAt": "created_at",
    "publishedAt": "published_at",
    "views": "views",
    "rating": "rating",
    "title": "title",
}


def _get_or_404(guide_id: str) -> dict:
    guide = db["guide"].find_one({"_id": to_object_id(guide_id)})
    if not guide:
        raise HTTPException(status_code=404, detail="Guide not found")
    return guide


def _clean_sections(fields: dict) -> dict:
    for section in fields.get("sections") or []:
        section["content"] = sanitize_rich_text(section.get("content"))
    return fields


# -------------------------------------------------------------------
# Public
# -------------------------------------------------------------------
@router.get("")
def list_guides(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    type: Optional[str] = None,
    difficulty: Optional[str] = None,
    destination: Optional[str] = None,
    search: Optional[str] = None,
    sort: Optional[str] = "-publishedAt",
):
    query: dict = dict(PUBLIC)
    if type:
        query["type"] = type
    if difficulty:
        query["difficulty"] = difficulty
    if destination:
        query["destination.slug"] = destination.lower()
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"title": pattern}, {"description": pattern}, {"destination.name": pattern}]
    items, meta = paginate("guide", query, page, limit, parse_sort(sort, SORT_FIELDS, ("published_at", DESCENDING)))
    return {"success": True, "count": len(items), "data": serialize_many(items), "pagination": meta}


@router.get("/featured")
def featured_guides():
    items = db["guide"].find({**PUBLIC, "is_featured": True}).sort("published_at", DESCENDING).limit(6)
    return {"success": True, "data": serialize_many(items)}


@router.get("/destination/{destination_slug}")
def guides_by_destination(destination_slug: str):
    items = db["guide"].find({**PUBLIC, "destination.slug": destination_slug.lower()}).sort("published_at", DESCENDING)
    return {"success": True, "data": serialize_many(items)}


@router.get("/type/{guide_type}")
def guides_by_type(guide_type: str, page: int = Query(1, ge=1), limit: int = Query(12, ge=1, le=100)):
    if guide_type not in GUIDE_TYPES:
        raise HTTPException(status_code=400, detail="Invalid guide type")
    items, meta = paginate("guide", {**PUBLIC, "type": guide_type}, page, limit, ("published_at", DESCENDING))
    return {"success": True, "data": serialize_many(items), "pagination": meta}


@router.get("/{slug}")
def get_guide(slug: str):
    guide = db["guide"].find_one_and_update(
        {**PUBLIC, "slug": slug.lower()},
        {"$inc": {"views": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not guide:
        raise HTTPException(status_code=404, detail="Guide not found")
    return {"success": True, "data": serialize_doc(guide)}


@router.put("/{guide_id}/download")
def register_download(guide_id: str):
    guide = db["guide"].find_one_and_update(
        {**PUBLIC, "_id": to_object_id(guide_id)},
        {"$inc": {"download_count": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not guide:
        raise HTTPException(status_code=404, detail="Guide not found")
    return {"success": True, "data": {"downloadCount": guide["download_count"]}}


# -------------------------------------------------------------------
# Editors
# -------------------------------------------------------------------
@router.post("/upload-image")
def upload_guide_image(image: UploadFile = File(...), user: dict = Depends(editor)):
    return {"success": True, "data": upload_image(image, "guides")}


def create_guide(data: GuideIn, user: dict = Depends(editor)):
    fields = _clean_sections(data.model_dump())
    if not fields["author"].get("name"):
        fields["author"] = {"name": user.get("name"), "avatar": user.get("avatar"), "bio": user.get("bio")}
    guide = Guide(
        **fields,
        slug=unique_slug("guide", data.title),
        published_at=now_utc() if data.is_published else None,
    )
    guide_id = create_document("guide", guide)
    return {"success": True, "data": serialize_doc(_get_or_404(guide_id))}


def update_guide(guide_id: str, data: GuideUpdateIn, user: dict = Depends(editor)):
    guide = _get_or_404(guide_id)
    updates = _clean_sections({k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None})
    if "title" in updates and updates["title"] != guide["title"]:
        updates["slug"] = unique_slug("guide", updates["title"], exclude_id=guide["_id"])
    if updates.get("is_published") and not guide.get("published_at"):
        updates["published_at"] = now_utc()
    updates["updated_at"] = now_utc()
    db["guide"].update_one({"_id": guide["_id"]}, {"$set": updates})
    return {"success": True, "data": serialize_doc(_get_or_404(guide_id))}


def delete_guide(guide_id: str, admin: dict = Depends(require_admin)):
    guide = _get_or_404(guide_id)
    db["guide"].delete_one({"_id": guide["_id"]})
    db["comment"].delete_many({"resource_type": "guide", "resource_id": guide_id})
    return {"success": True, "message": "Guide deleted successfully", "data": {}}


def list_all_guides(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    admin: dict = Depends(require_admin),
):
    query: dict = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"title": pattern}, {"destination.name": pattern}]
    items, meta = paginate("guide", query, page, limit)
    return {"success": True, "data": serialize_many(items), "pagination": meta}


def get_guide_by_id(guide_id: str, admin: dict = Depends(require_admin)):
    return {"success": True, "data": serialize_doc(_get_or_404(guide_id))}


for _r in (router, admin_router):
    _r.add_api_route("", create_guide, methods=["POST"], status_code=201)
    _r.add_api_route("/{guide_id}", update_guide, methods=["PUT"])
    _r.add_api_route("/{guide_id}", delete_guide, methods=["DELETE"])
admin_router.add_api_route("", list_all_guides, methods=["GET"])
admin_router.add_api_route("/{guide_id}", get_guide_by_id, methods=["GET"])
