import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo import DESCENDING, ReturnDocument

from database import create_document, db, is_object_id, now_utc, paginate, require_db, serialize_doc, to_object_id
from routers.posts import unique_slug
from schemas import Resource, ResourceIn, ResourceUpdateIn
from security import ensure_owner_or_admin, require_admin, restrict_to

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/resources", tags=["resources"], dependencies=[Depends(require_db)])

editor = restrict_to("admin", "contributor")

ACTIVE = {"is_active": True}
RANKING = [("average_rating", DESCENDING), ("created_at", DESCENDING)]


def _get_or_404(resource_id: str) -> dict:
    resource = db["resource"].find_one({"_id": to_object_id(resource_id)})
    if not resource:
        raise HTTPException(status_code=404, detail="Resource not found")
    return resource


def with_refs(resources: List[dict]) -> List[dict]:
    """Inline author name/avatar and destination name/slug."""
    user_ids = {r.get("author_id") for r in resources if is_object_id(r.get("author_id"))}
    dest_ids = {d for r in resources for d in r.get("destinations") or [] if is_object_id(d)}
    authors = {
        str(u["_id"]): serialize_doc(u)
        for u in db["user"].find({"_id": {"$in": [to_object_id(i) for i in user_ids]}}, {"name": 1, "avatar": 1})
    }
    destinations = {
        str(d["_id"]): serialize_doc(d)
        for d in db["destination"].find({"_id": {"$in": [to_object_id(i) for i in dest_ids]}}, {"name": 1, "slug": 1})
    }
    out = []
    for r in resources:
        data = serialize_doc(r)
        data["author"] = authors.get(r.get("author_id"))
        data["destinations"] = [destinations[d] for d in r.get("destinations") or [] if d in destinations]
        out.append(data)
    return out


# -------------------------------------------------------------------
# Public
# -------------------------------------------------------------------
@router.get("")
def list_resources(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    type: Optional[str] = None,
    is_recommended: Optional[bool] = Query(None, alias="isRecommended"),
    is_featured: Optional[bool] = Query(None, alias="isFeatured"),
):
    query: dict = dict(ACTIVE)
    if category:
        query["category"] = category
    if type:
        query["type"] = type
    if is_recommended is not None:
        query["is_recommended"] = is_recommended
    if is_featured is not None:
        query["is_featured"] = is_featured
    items, meta = paginate("resource", query, page, limit, RANKING)
    return {"success": True, "count": len(items), "data": with_refs(items), "pagination": meta}


@router.get("/featured")
def featured_resources():
    items = db["resource"].find({**ACTIVE, "is_featured": True}).sort("average_rating", DESCENDING).limit(8)
    return {"success": True, "data": with_refs(list(items))}


@router.get("/category/{category}")
def resources_by_category(category: str):
    items = list(db["resource"].find({**ACTIVE, "category": category}).sort(RANKING))
    return {"success": True, "count": len(items), "data": with_refs(items)}


@router.get("/{slug}")
def get_resource(slug: str):
    resource = db["resource"].find_one({**ACTIVE, "slug": slug.lower()})
    if not resource:
        raise HTTPException(status_code=404, detail="Resource not found")
    return {"success": True, "data": with_refs([resource])[0]}


@router.post("/{resource_id}/click")
def track_click(resource_id: str):
    resource = db["resource"].find_one_and_update(
        {"_id": to_object_id(resource_id)},
        {"$inc": {"click_count": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not resource:
        raise HTTPException(status_code=404, detail="Resource not found")
    return {"success": True, "data": {"clickCount": resource["click_count"]}}


# -------------------------------------------------------------------
# Editors
# -------------------------------------------------------------------
@router.post("", status_code=201)
def create_resource(data: ResourceIn, user: dict = Depends(editor)):
    ts = now_utc()
    resource = Resource(
        **data.model_dump(),
        slug=unique_slug("resource", data.title),
        author_id=str(user["_id"]),
        last_updated=ts,
    )
    resource_id = create_document("resource", resource)
    logger.info("Resource %s created by %s", resource_id, user.get("email"))
    return {"success": True, "data": with_refs([_get_or_404(resource_id)])[0]}


@router.put("/{resource_id}")
def update_resource(resource_id: str, data: ResourceUpdateIn, user: dict = Depends(editor)):
    resource = _get_or_404(resource_id)
    ensure_owner_or_admin(user, resource.get("author_id"), "resource")
    updates = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    if "title" in updates and updates["title"] != resource["title"]:
        updates["slug"] = unique_slug("resource", updates["title"], exclude_id=resource["_id"])
    updates["last_updated"] = updates["updated_at"] = now_utc()
    updated = db["resource"].find_one_and_update(
        {"_id": resource["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    return {"success": True, "data": with_refs([updated])[0]}


@router.delete("/{resource_id}")
def delete_resource(resource_id: str, admin: dict = Depends(require_admin)):
    resource = _get_or_404(resource_id)
    db["resource"].delete_one({"_id": resource["_id"]})
    return {"success": True, "message": "Resource deleted successfully", "data": {}}
