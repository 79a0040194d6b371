"""
Contributor workspace: a contributor's own posts in every status, plus
dashboard counts. Admins may use it for their own posts too.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pymongo import DESCENDING, ReturnDocument

from database import db, is_object_id, now_utc, paginate, require_db, serialize_doc, to_object_id
from emailer import email_service
from routers.posts import category_name, create_post, delete_post, update_post, with_authors
from schemas import PostIn, PostUpdateIn
from security import restrict_to
from uploads import upload_image

logger = logging.getLogger(__name__)

contributor = restrict_to("admin", "contributor")

router = APIRouter(
    prefix="/api/contributor",
    tags=["contributor"],
    dependencies=[Depends(require_db), Depends(contributor)],
)

STATUSES = ("draft", "pending", "published", "rejected", "inactive")
EDITABLE = ("draft", "rejected")


def _own_post_or_404(post_id: str, user: dict, action: str) -> dict:
    post = None
    if is_object_id(post_id):
        post = db["post"].find_one({"_id": to_object_id(post_id), "author_id": str(user["_id"])})
    if not post:
        raise HTTPException(status_code=404, detail=f"Post not found or you do not have permission to {action} it")
    return post


def status_counts(author_id: str) -> dict:
    counts = dict.fromkeys(STATUSES, 0)
    for row in db["post"].aggregate([
        {"$match": {"author_id": author_id}},
        {"$group": {"_id": "$status", "count": {"$sum": 1}}},
    ]):
        counts[row["_id"]] = row["count"]
    return counts


def _moderator_names(posts) -> dict:
    ids = {p.get("moderated_by") for p in posts if is_object_id(p.get("moderated_by"))}
    return {
        str(u["_id"]): u["name"]
        for u in db["user"].find({"_id": {"$in": [to_object_id(i) for i in ids]}}, {"name": 1})
    }


@router.get("/dashboard")
def dashboard(user: dict = Depends(contributor)):
    author_id = str(user["_id"])
    counts = status_counts(author_id)
    totals = next(iter(db["post"].aggregate([
        {"$match": {"author_id": author_id, "status": "published"}},
        {"$group": {"_id": None, "views": {"$sum": "$view_count"}, "likes": {"$sum": "$like_count"}}},
    ])), {})

    recent = (
        db["post"]
        .find({"author_id": author_id}, {"title": 1, "slug": 1, "status": 1, "created_at": 1,
                                          "updated_at": 1, "published_at": 1})
        .sort("updated_at", DESCENDING)
        .limit(5)
    )
    rejections = list(
        db["post"]
        .find({"author_id": author_id, "status": "rejected"},
              {"title": 1, "moderation_notes": 1, "moderated_at": 1, "moderated_by": 1})
        .sort("moderated_at", DESCENDING)
        .limit(3)
    )
    moderators = _moderator_names(rejections)
    recent_rejections = []
    for post in rejections:
        data = serialize_doc(post)
        data["moderatedBy"] = moderators.get(post.get("moderated_by"))
        recent_rejections.append(data)

    return {
        "success": True,
        "data": {
            "stats": {
                "totalPosts": sum(counts.values()),
                "publishedPosts": counts["published"],
                "pendingPosts": counts["pending"],
                "rejectedPosts": counts["rejected"],
                "draftPosts": counts["draft"],
                "totalViews": totals.get("views", 0),
                "totalLikes": totals.get("likes", 0),
            },
            "recentPosts": [serialize_doc(p) for p in recent],
            "recentRejections": recent_rejections,
        },
    }


@router.get("/posts")
def my_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    user: dict = Depends(contributor),
):
    author_id = str(user["_id"])
    query: dict = {"author_id": author_id}
    if status and status != "all":
        query["status"] = status
    posts, meta = paginate("post", query, page, limit, ("created_at", DESCENDING))
    return {
        "success": True,
        "data": with_authors(posts),
        "pagination": meta,
        "statusCounts": status_counts(author_id),
    }


@router.post("/posts", status_code=201)
def submit_new_post(data: PostIn, user: dict = Depends(contributor)):
    # contributor posts go straight to the review queue
    post = create_post(data.model_copy(update={"status": "pending"}), user)
    email_service.send_contributor_submission_notification(post, user, category_name(post))
    return {
        "success": True,
        "message": "Post submitted successfully and is pending approval",
        "data": with_authors([post])[0],
    }


@router.put("/posts/{post_id}")
def edit_my_post(post_id: str, data: PostUpdateIn, user: dict = Depends(contributor)):
    post = _own_post_or_404(post_id, user, "edit")
    if post.get("status") not in EDITABLE:
        raise HTTPException(status_code=400, detail="You can only edit posts that are in draft or rejected status")

    updated = update_post(post, data, user)
    resubmitted = post["status"] == "rejected"
    if resubmitted:
        updated = db["post"].find_one_and_update(
            {"_id": post["_id"]},
            {"$set": {"status": "pending", "submitted_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )
        logger.info("Post %s resubmitted by %s", post_id, user.get("email"))
    message = "Post updated and resubmitted for approval" if resubmitted else "Post updated successfully"
    return {"success": True, "message": message, "data": with_authors([updated])[0]}


@router.delete("/posts/{post_id}")
def delete_my_post(post_id: str, user: dict = Depends(contributor)):
    post = _own_post_or_404(post_id, user, "delete")
    if post.get("status") == "published":
        raise HTTPException(
            status_code=400,
            detail="Published posts cannot be deleted. Contact an admin to archive it.",
        )
    delete_post(post)
    return {"success": True, "message": "Post deleted successfully", "data": {}}


@router.post("/upload-image")
def upload_post_image(image: UploadFile = File(...), user: dict = Depends(contributor)):
    return {"success": True, "data": upload_image(image, "posts")}
