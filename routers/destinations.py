import re
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pymongo import DESCENDING

from database import create_document, db, now_utc, paginate, parse_sort, require_db, serialize_doc, serialize_many, to_object_id
from routers.posts import unique_slug
from schemas import Destination, DestinationIn, DestinationUpdateIn
from security import require_admin
from uploads import upload_image

router = APIRouter(prefix="/api/destinations", tags=["destinations"], dependencies=[Depends(require_db)])
admin_router = APIRouter(prefix="/api/admin/destinations", tags=["admin"], dependencies=[Depends(require_db)])

PUBLIC = {"is_active": True, "status": "published"}
SORT_FIELDS = {"createdAt": "created_at", "name": "name", "rating": "rating", "country": "country"}


def _get_or_404(destination_id: str) -> dict:
    destination = db["destination"].find_one({"_id": to_object_id(destination_id)})
    if not destination:
        raise HTTPException(status_code=404, detail="Destination not found")
    return destination


# -------------------------------------------------------------------
# Public
# -------------------------------------------------------------------
@router.get("")
def list_destinations(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    country: Optional[str] = None,
    continent: Optional[str] = None,
    is_popular: Optional[bool] = Query(None, alias="isPopular"),
    is_featured: Optional[bool] = Query(None, alias="isFeatured"),
    search: Optional[str] = None,
    sort: Optional[str] = "-createdAt",
):
    query: dict = dict(PUBLIC)
    if country:
        query["country"] = {"$regex": f"^{re.escape(country)}$", "$options": "i"}
    if continent:
        query["continent"] = {"$regex": f"^{re.escape(continent)}$", "$options": "i"}
    if is_popular is not None:
        query["is_popular"] = is_popular
    if is_featured is not None:
        query["is_featured"] = is_featured
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"description": pattern}, {"country": pattern}]
    items, meta = paginate("destination", query, page, limit, parse_sort(sort, SORT_FIELDS, ("created_at", DESCENDING)))
    return {"success": True, "count": len(items), "data": serialize_many(items), "pagination": meta}


@router.get("/featured")
def featured_destinations():
    items = db["destination"].find({**PUBLIC, "is_featured": True}).sort("created_at", DESCENDING).limit(6)
    return {"success": True, "data": serialize_many(items)}


@router.get("/popular")
def popular_destinations():
    items = db["destination"].find({**PUBLIC, "is_popular": True}).sort("rating", DESCENDING).limit(10)
    return {"success": True, "data": serialize_many(items)}


@router.get("/admin/{destination_id}")
def get_destination_by_id(destination_id: str, admin: dict = Depends(require_admin)):
    return {"success": True, "data": serialize_doc(_get_or_404(destination_id))}


@router.get("/{slug}")
def get_destination(slug: str):
    destination = db["destination"].find_one({**PUBLIC, "slug": slug.lower()})
    if not destination:
        raise HTTPException(status_code=404, detail="Destination not found")
    data = serialize_doc(destination)
    data["guides"] = serialize_many(
        db["guide"].find({"is_published": True, "destination.slug": destination["slug"]}).limit(6)
    )
    return {"success": True, "data": data}


# -------------------------------------------------------------------
# Admin
# -------------------------------------------------------------------
def create_destination(data: DestinationIn, admin: dict = Depends(require_admin)):
    destination = Destination(**data.model_dump(), slug=unique_slug("destination", data.name))
    destination_id = create_document("destination", destination)
    return {"success": True, "data": serialize_doc(_get_or_404(destination_id))}


def update_destination(destination_id: str, data: DestinationUpdateIn, admin: dict = Depends(require_admin)):
    destination = _get_or_404(destination_id)
    updates = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    if "name" in updates and updates["name"] != destination["name"]:
        updates["slug"] = unique_slug("destination", updates["name"], exclude_id=destination["_id"])
    updates["updated_at"] = now_utc()
    db["destination"].update_one({"_id": destination["_id"]}, {"$set": updates})
    return {"success": True, "data": serialize_doc(_get_or_404(destination_id))}


def delete_destination(destination_id: str, admin: dict = Depends(require_admin)):
    destination = _get_or_404(destination_id)
    db["destination"].delete_one({"_id": destination["_id"]})
    db["comment"].delete_many({"resource_type": "destination", "resource_id": destination_id})
    return {"success": True, "message": "Destination deleted successfully", "data": {}}


def list_all_destinations(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    search: Optional[str] = None,
    admin: dict = Depends(require_admin),
):
    query: dict = {}
    if status:
        query["status"] = status
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"country": pattern}]
    items, meta = paginate("destination", query, page, limit)
    return {"success": True, "data": serialize_many(items), "pagination": meta}


@router.post("/upload-image")
def upload_destination_image(image: UploadFile = File(...), admin: dict = Depends(require_admin)):
    return {"success": True, "data": upload_image(image, "destinations")}


for _r in (router, admin_router):
    _r.add_api_route("", create_destination, methods=["POST"], status_code=201)
    _r.add_api_route("/{destination_id}", update_destination, methods=["PUT"])
    _r.add_api_route("/{destination_id}", delete_destination, methods=["DELETE"])
admin_router.add_api_route("", list_all_destinations, methods=["GET"])
admin_router.add_api_route("/{destination_id}", get_destination_by_id, methods=["GET"])
