"""
Threaded comments attached to blog posts, destinations, guides and photos.

A comment belongs to one resource, identified by (resource_type, resource_id).
Replies point at their parent through parent_id and must share the parent's
resource. Only comments whose status is "approved" are ever shown publicly.
Collecting AUTO_HIDE_FLAGS reports moves a comment to "hidden".
"""
import logging
import re
from collections import defaultdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from database import (
    create_document,
    db,
    is_object_id,
    now_utc,
    paginate,
    require_db,
    serialize_doc,
    to_object_id,
)
from middleware import client_ip
from moderation import PROFANITY_ERROR, contains_profanity, extract_mentions, strip_html
from routers.site_settings import general_setting
from schemas import (
    Comment,
    CommentEditIn,
    CommentFlagIn,
    CommentIn,
    CommentModerateIn,
)
from security import is_admin, optional_user, protect, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/comments", tags=["comments"], dependencies=[Depends(require_db)])
admin_router = APIRouter(prefix="/api/admin/comments", tags=["admin"], dependencies=[Depends(require_db)])

AUTO_HIDE_FLAGS = 3
RESOURCE_COLLECTIONS = {
    "blog": "post",
    "destination": "destination",
    "guide": "guide",
    "photo": "photo",
}
SORT_FIELDS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "likes": "likes",
    "dislikes": "dislikes",
}
PRIVATE_FIELDS = ("ip_address", "user_agent", "flag_reasons", "moderation_notes")


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------
def public_comment(doc: dict) -> dict:
    data = {k: v for k, v in doc.items() if k not in PRIVATE_FIELDS}
    data["author"] = {k: v for k, v in (doc.get("author") or {}).items() if k != "email"}
    out = serialize_doc(data)
    out["score"] = doc.get("likes", 0) - doc.get("dislikes", 0)
    return out


def _get_or_404(comment_id: str) -> dict:
    comment = db["comment"].find_one({"_id": to_object_id(comment_id)})
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")
    return comment


def _check_resource_type(resource_type: str):
    if resource_type not in RESOURCE_COLLECTIONS:
        raise HTTPException(status_code=400, detail="Invalid resource type")


def _clean_content(raw: str) -> str:
    content = strip_html(raw)
    if not content:
        raise HTTPException(status_code=400, detail="Content must be between 1-2000 characters")
    if contains_profanity(content):
        raise HTTPException(status_code=400, detail=PROFANITY_ERROR)
    return content


def _sort(sort_by: str, sort_order: str):
    field = SORT_FIELDS.get(sort_by, "created_at")
    return field, ASCENDING if sort_order == "asc" else DESCENDING


def comment_stats(resource_type: str, resource_id: str) -> dict:
    base = {"resource_type": resource_type, "resource_id": resource_id, "status": "approved"}
    total = db["comment"].count_documents(base)
    top_level = db["comment"].count_documents({**base, "parent_id": None})
    totals = list(
        db["comment"].aggregate([
            {"$match": base},
            {"$group": {"_id": None, "likes": {"$sum": "$likes"}, "dislikes": {"$sum": "$dislikes"}}},
        ])
    )
    likes = totals[0]["likes"] if totals else 0
    dislikes = totals[0]["dislikes"] if totals else 0
    return {
        "totalComments": total,
        "totalLikes": likes,
        "totalDislikes": dislikes,
        "avgLikes": round(likes / total, 2) if total else 0,
        "topLevelComments": top_level,
        "replies": total - top_level,
    }


def _comments_pagination(meta: dict) -> dict:
    return {**meta, "totalComments": meta["total"]}


# -------------------------------------------------------------------
# Public reads
# -------------------------------------------------------------------
@router.get("/flagged")
def flagged_comments(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    admin: dict = Depends(require_admin),
):
    comments, meta = paginate("comment", {"flag_count": {"$gt": 0}}, page, limit, _sort(sort_by, sort_order))
    return {
        "success": True,
        "data": {"comments": [serialize_doc(c) for c in comments], "pagination": _comments_pagination(meta)},
    }


@router.get("/stats/{resource_type}/{resource_id}")
def get_comment_stats(resource_type: str, resource_id: str):
    _check_resource_type(resource_type)
    return {"success": True, "data": comment_stats(resource_type, resource_id)}


@router.get("/{resource_type}/{resource_id}")
def get_comments(
    resource_type: str,
    resource_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    include_replies: bool = Query(True, alias="includeReplies"),
    parent_id: Optional[str] = Query(None, alias="parentId"),
):
    _check_resource_type(resource_type)
    query = {
        "resource_type": resource_type,
        "resource_id": resource_id,
        "parent_id": parent_id or None,
        "status": "approved",
    }
    comments, meta = paginate("comment", query, page, limit, _sort(sort_by, sort_order))
    data = [public_comment(c) for c in comments]

    if include_replies and not parent_id and comments:
        ids = [str(c["_id"]) for c in comments]
        replies = defaultdict(list)
        cursor = db["comment"].find({"parent_id": {"$in": ids}, "status": "approved"}).sort("created_at", ASCENDING)
        for reply in cursor:
            replies[reply["parent_id"]].append(public_comment(reply))
        for item in data:
            item["replies"] = replies.get(item["id"], [])
            item["replyCount"] = len(item["replies"])

    return {
        "success": True,
        "data": {
            "comments": data,
            "pagination": _comments_pagination(meta),
            "stats": comment_stats(resource_type, resource_id),
        },
    }


@router.get("/{comment_id}")
def get_comment(comment_id: str):
    comment = _get_or_404(comment_id)
    if comment.get("status") != "approved":
        raise HTTPException(status_code=404, detail="Comment not found")
    return {"success": True, "data": public_comment(comment)}


# -------------------------------------------------------------------
# Submit
# -------------------------------------------------------------------
@router.post("", status_code=201)
def submit_comment(data: CommentIn, request: Request, user: Optional[dict] = Depends(optional_user)):
    if not general_setting("comments_enabled", True):
        raise HTTPException(status_code=403, detail="Comments are currently disabled")

    content = _clean_content(data.content)
    if contains_profanity(data.author.name):
        raise HTTPException(status_code=400, detail=PROFANITY_ERROR)

    # opaque ids (slugs, external keys) are accepted as-is
    if is_object_id(data.resource_id):
        collection = RESOURCE_COLLECTIONS[data.resource_type]
        if not db[collection].find_one({"_id": to_object_id(data.resource_id)}, {"_id": 1}):
            raise HTTPException(status_code=400, detail=f"{data.resource_type.capitalize()} not found")

    if data.parent_id:
        if not is_object_id(data.parent_id):
            raise HTTPException(status_code=400, detail="Invalid parent comment ID")
        parent = db["comment"].find_one({"_id": to_object_id(data.parent_id)})
        if not parent:
            raise HTTPException(status_code=400, detail="Parent comment not found")
        if parent["resource_type"] != data.resource_type or parent["resource_id"] != data.resource_id:
            raise HTTPException(status_code=400, detail="Parent comment belongs to different resource")

    fields = data.model_dump()
    fields["content"] = content
    fields["parent_id"] = data.parent_id or None
    if user and not fields["author"].get("avatar"):
        fields["author"]["avatar"] = user.get("avatar")

    mentions = extract_mentions(content)
    if mentions:
        logger.info("Comment by %s mentions %s", data.author.email, ", ".join(mentions))

    comment = Comment(
        **fields,
        user_id=str(user["_id"]) if user else None,
        mentions=[{"name": m} for m in mentions],
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    comment_id = create_document("comment", comment)
    doc = db["comment"].find_one({"_id": to_object_id(comment_id)})
    return {
        "success": True,
        "message": "Comment submitted successfully",
        "data": {"commentId": comment_id, "comment": public_comment(doc)},
    }


# -------------------------------------------------------------------
# Reactions, edits, flags
# -------------------------------------------------------------------
def _react(comment_id: str, field: str) -> dict:
    comment = db["comment"].find_one_and_update(
        {"_id": to_object_id(comment_id), "status": "approved"},
        {"$inc": {field: 1}},
        return_document=ReturnDocument.AFTER,
    )
    if comment is None:
        _get_or_404(comment_id)
        verb = "like" if field == "likes" else "dislike"
        raise HTTPException(status_code=400, detail=f"Cannot {verb} unapproved comment")
    return comment


@router.post("/{comment_id}/like")
def like_comment(comment_id: str, user: dict = Depends(protect)):
    comment = _react(comment_id, "likes")
    return {
        "success": True,
        "message": "Comment liked successfully",
        "data": {"likes": comment["likes"], "score": comment["likes"] - comment.get("dislikes", 0)},
    }


@router.post("/{comment_id}/dislike")
def dislike_comment(comment_id: str, user: dict = Depends(protect)):
    comment = _react(comment_id, "dislikes")
    return {
        "success": True,
        "message": "Comment disliked successfully",
        "data": {"dislikes": comment["dislikes"], "score": comment.get("likes", 0) - comment["dislikes"]},
    }


@router.put("/{comment_id}")
def edit_comment(comment_id: str, data: CommentEditIn, user: dict = Depends(protect)):
    comment = _get_or_404(comment_id)
    author_email = (comment.get("author") or {}).get("email", "")
    if not is_admin(user) and user.get("email", "").lower() != author_email.lower():
        raise HTTPException(status_code=403, detail="You can only edit your own comments")

    content = _clean_content(data.content)
    now = now_utc()
    updated = db["comment"].find_one_and_update(
        {"_id": comment["_id"]},
        {
            "$set": {"content": content, "edited": True, "updated_at": now},
            "$push": {"edit_history": {"content": comment["content"], "edited_at": now, "reason": data.reason}},
        },
        return_document=ReturnDocument.AFTER,
    )
    return {"success": True, "message": "Comment edited successfully", "data": {"comment": public_comment(updated)}}


@router.post("/{comment_id}/flag")
def flag_comment(comment_id: str, data: CommentFlagIn, user: dict = Depends(protect)):
    reporter = str(user["_id"])
    entry = {
        "reason": data.reason,
        "reported_by": reporter,
        "reported_at": now_utc(),
        "description": data.description,
    }
    comment = db["comment"].find_one_and_update(
        {"_id": to_object_id(comment_id), "flag_reasons.reported_by": {"$ne": reporter}},
        {"$push": {"flag_reasons": entry}, "$inc": {"flag_count": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if comment is None:
        _get_or_404(comment_id)
        raise HTTPException(status_code=400, detail="You have already flagged this comment")

    if comment["flag_count"] >= AUTO_HIDE_FLAGS and comment.get("status") != "hidden":
        comment = db["comment"].find_one_and_update(
            {"_id": comment["_id"]},
            {"$set": {"status": "hidden", "updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )
        logger.info("Comment %s hidden after %d flags", comment_id, comment["flag_count"])

    return {
        "success": True,
        "message": "Comment flagged successfully",
        "data": {"flagCount": comment["flag_count"], "status": comment["status"]},
    }


# -------------------------------------------------------------------
# Moderation
# -------------------------------------------------------------------
@router.patch("/{comment_id}/moderate")
def moderate_comment(comment_id: str, data: CommentModerateIn, admin: dict = Depends(require_admin)):
    comment = _get_or_404(comment_id)
    updates = {
        "status": data.status,
        "moderated_by": str(admin["_id"]),
        "moderated_at": now_utc(),
        "updated_at": now_utc(),
    }
    if data.moderation_notes:
        updates["moderation_notes"] = data.moderation_notes
    db["comment"].update_one({"_id": comment["_id"]}, {"$set": updates})
    return {
        "success": True,
        "message": "Comment moderated successfully",
        "data": {"commentId": comment_id, "status": data.status},
    }


@router.delete("/{comment_id}")
def delete_comment(comment_id: str, user: dict = Depends(protect)):
    comment = _get_or_404(comment_id)
    author_email = (comment.get("author") or {}).get("email", "")
    if not is_admin(user) and user.get("email", "").lower() != author_email.lower():
        raise HTTPException(status_code=403, detail="You can only delete your own comments")
    # direct replies only; deeper descendants are left in place
    replies = db["comment"].delete_many({"parent_id": str(comment["_id"])})
    db["comment"].delete_one({"_id": comment["_id"]})
    return {
        "success": True,
        "message": "Comment and its replies deleted successfully",
        "data": {"deletedReplies": replies.deleted_count},
    }


@admin_router.get("")
def admin_list_comments(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    resource_type: Optional[str] = Query(None, alias="resourceType"),
    resource_id: Optional[str] = Query(None, alias="resourceId"),
    search: Optional[str] = None,
    admin: dict = Depends(require_admin),
):
    query: dict = {}
    if status:
        query["status"] = status
    if resource_type:
        query["resource_type"] = resource_type
    if resource_id:
        query["resource_id"] = resource_id
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"content": pattern}, {"author.name": pattern}, {"author.email": pattern}]
    comments, meta = paginate("comment", query, page, limit)
    return {"success": True, "data": [serialize_doc(c) for c in comments], "pagination": meta}
