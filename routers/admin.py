import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo import DESCENDING, ReturnDocument

from database import db, is_object_id, now_utc, paginate, parse_sort, require_db, to_object_id
from emailer import email_service
from routers.posts import (
    SORT_FIELDS,
    category_name,
    create_post,
    delete_post,
    get_post_or_404,
    submit_post,
    update_post,
    with_authors,
)
from schemas import PostIn, PostModerateIn, PostStatusIn, PostUpdateIn
from security import public_user, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_db), Depends(require_admin)],
)


# -------------------------------------------------------------------
# Dashboard
# -------------------------------------------------------------------
@router.get("/dashboard/stats")
def dashboard_stats():
    recent_users = db["user"].find({}).sort("created_at", DESCENDING).limit(5)
    recent_posts = db["post"].find({}).sort("created_at", DESCENDING).limit(5)
    return {
        "success": True,
        "data": {
            "totals": {
                "users": db["user"].count_documents({}),
                "posts": db["post"].count_documents({}),
                "publishedPosts": db["post"].count_documents({"status": "published"}),
                "destinations": db["destination"].count_documents({}),
                "guides": db["guide"].count_documents({}),
                "photos": db["photo"].count_documents({}),
                "subscribers": db["newsletter"].count_documents({"status": "subscribed", "is_active": True}),
                "pendingPosts": db["post"].count_documents({"status": "pending"}),
                "pendingComments": db["comment"].count_documents({"status": "pending"}),
                "flaggedComments": db["comment"].count_documents({"flag_count": {"$gt": 0}}),
                "pendingPhotos": db["photo"].count_documents({"status": "pending"}),
                "unreadContacts": db["contact"].count_documents({"status": "unread"}),
                "pendingPartners": db["partner"].count_documents({"status": "pending"}),
            },
            "recentUsers": [public_user(u) for u in recent_users],
            "recentPosts": with_authors(list(recent_posts)),
        },
    }


# -------------------------------------------------------------------
# Post moderation
# -------------------------------------------------------------------
@router.get("/posts")
def list_all_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    search: Optional[str] = None,
    author: Optional[str] = None,
    sort: Optional[str] = "-createdAt",
):
    query: dict = {}
    if status and status != "all":
        query["status"] = status
    if author:
        query["author_id"] = author
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"title": pattern}, {"excerpt": pattern}]
    posts, meta = paginate("post", query, page, limit, parse_sort(sort, SORT_FIELDS, ("created_at", DESCENDING)))
    return {"success": True, "data": with_authors(posts), "pagination": meta}


@router.get("/posts/pending")
def pending_posts(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100)):
    posts, meta = paginate("post", {"status": "pending"}, page, limit, ("submitted_at", DESCENDING))
    return {"success": True, "data": with_authors(posts), "pagination": meta}


@router.post("/posts", status_code=201)
def admin_create_post(data: PostIn, admin: dict = Depends(require_admin)):
    return {"success": True, "data": with_authors([create_post(data, admin)])[0]}


@router.get("/posts/{post_id}")
def admin_get_post(post_id: str):
    return {"success": True, "data": with_authors([get_post_or_404(post_id)])[0]}


@router.put("/posts/{post_id}")
def admin_update_post(post_id: str, data: PostUpdateIn, admin: dict = Depends(require_admin)):
    post = update_post(get_post_or_404(post_id), data, admin)
    return {"success": True, "data": with_authors([post])[0]}


@router.put("/posts/{post_id}/status")
def update_post_status(post_id: str, data: PostStatusIn):
    post = get_post_or_404(post_id)
    updates = {"status": data.status, "updated_at": now_utc()}
    if data.status == "published" and not post.get("published_at"):
        updates["published_at"] = now_utc()
    if data.status == "pending" and not post.get("submitted_at"):
        updates["submitted_at"] = now_utc()
    post = db["post"].find_one_and_update(
        {"_id": post["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    return {"success": True, "data": with_authors([post])[0]}


def _moderate(post: dict, status: str, notes: Optional[str], admin: dict) -> dict:
    updates = {
        "status": status,
        "moderated_by": str(admin["_id"]),
        "moderated_at": now_utc(),
        "moderation_notes": notes,
        "updated_at": now_utc(),
    }
    if status == "published" and not post.get("published_at"):
        updates["published_at"] = now_utc()
    post = db["post"].find_one_and_update(
        {"_id": post["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    logger.info("Post %s %s by %s", post["_id"], status, admin.get("email"))
    if status == "published" and is_object_id(post.get("author_id")):
        author = db["user"].find_one({"_id": to_object_id(post["author_id"])})
        if author:
            email_service.send_post_approved_notification(post, author, category_name(post))
    return post


@router.put("/posts/{post_id}/approve")
def approve_post(post_id: str, admin: dict = Depends(require_admin)):
    post = get_post_or_404(post_id)
    if post.get("status") == "published":
        raise HTTPException(status_code=400, detail="Post is already published")
    post = _moderate(post, "published", None, admin)
    return {"success": True, "message": "Post approved and published", "data": with_authors([post])[0]}


@router.put("/posts/{post_id}/moderate")
def moderate_post(post_id: str, data: PostModerateIn, admin: dict = Depends(require_admin)):
    post = _moderate(get_post_or_404(post_id), data.status, data.moderation_notes, admin)
    return {"success": True, "message": f"Post {data.status} successfully", "data": with_authors([post])[0]}


@router.put("/posts/{post_id}/submit")
def admin_submit_post(post_id: str, admin: dict = Depends(require_admin)):
    post = submit_post(get_post_or_404(post_id), admin)
    return {"success": True, "data": with_authors([post])[0]}


@router.delete("/posts/{post_id}")
def admin_delete_post(post_id: str):
    delete_post(get_post_or_404(post_id))
    return {"success": True, "message": "Post deleted successfully", "data": {}}
