import re

from fastapi import APIRouter, Depends, HTTPException

from database import create_document, db, now_utc, require_db, serialize_doc, to_object_id
from routers.posts import unique_slug
from schemas import Category, CategoryIn, CategoryUpdateIn
from security import require_admin

router = APIRouter(prefix="/api/categories", tags=["categories"], dependencies=[Depends(require_db)])


def _with_post_count(category: dict) -> dict:
    data = serialize_doc(category)
    data["postCount"] = db["post"].count_documents(
        {"status": "published", "categories": str(category["_id"])}
    )
    return data


@router.get("")
def list_categories():
    categories = db["category"].find({"is_active": True}).sort("name", 1)
    return {"success": True, "data": [_with_post_count(c) for c in categories]}


@router.get("/{slug}")
def get_category(slug: str):
    category = db["category"].find_one({"slug": slug.lower()})
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return {"success": True, "data": _with_post_count(category)}


@router.post("", status_code=201)
def create_category(data: CategoryIn, admin: dict = Depends(require_admin)):
    if db["category"].find_one({"name": {"$regex": f"^{re.escape(data.name)}$", "$options": "i"}}):
        raise HTTPException(status_code=400, detail="Category already exists")
    category = Category(**data.model_dump(), slug=unique_slug("category", data.name))
    category_id = create_document("category", category)
    return {"success": True, "data": serialize_doc(db["category"].find_one({"_id": to_object_id(category_id)}))}


@router.put("/{category_id}")
def update_category(category_id: str, data: CategoryUpdateIn, admin: dict = Depends(require_admin)):
    category = db["category"].find_one({"_id": to_object_id(category_id)})
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    updates = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    if "name" in updates and updates["name"] != category["name"]:
        updates["slug"] = unique_slug("category", updates["name"], exclude_id=category["_id"])
    updates["updated_at"] = now_utc()
    db["category"].update_one({"_id": category["_id"]}, {"$set": updates})
    return {"success": True, "data": serialize_doc(db["category"].find_one({"_id": category["_id"]}))}


@router.delete("/{category_id}")
def delete_category(category_id: str, admin: dict = Depends(require_admin)):
    category = db["category"].find_one({"_id": to_object_id(category_id)})
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    cid = str(category["_id"])
    db["category"].delete_one({"_id": category["_id"]})
    db["post"].update_many({"categories": cid}, {"$pull": {"categories": cid}})
    return {"success": True, "message": "Category deleted successfully", "data": {}}
