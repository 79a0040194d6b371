import logging
import math
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pymongo import DESCENDING, ReturnDocument

from database import (
    create_document,
    db,
    is_object_id,
    now_utc,
    paginate,
    parse_sort,
    require_db,
    serialize_doc,
    to_object_id,
)
from emailer import email_service
from moderation import sanitize_rich_text, strip_html
from schemas import Post, PostIn, PostUpdateIn
from security import ensure_owner_or_admin, is_admin, protect
from uploads import upload_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/posts", tags=["posts"], dependencies=[Depends(require_db)])

SORT_FIELDS = {
    "createdAt": "created_at",
    "publishedAt": "published_at",
    "updatedAt": "updated_at",
    "viewCount": "view_count",
    "likeCount": "like_count",
    "title": "title",
}
AUTHOR_FIELDS = {"name": 1, "avatar": 1, "bio": 1}


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------
def slugify(title: str) -> str:
    s = re.sub(r"[^a-zA-Z0-9\s-]", "", title).strip().lower()
    s = re.sub(r"[\s-]+", "-", s)
    return s.strip("-")


def unique_slug(collection: str, title: str, exclude_id=None) -> str:
    base = slugify(title) or collection
    slug, n = base, 1
    while True:
        query = {"slug": slug}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if not db[collection].find_one(query, {"_id": 1}):
            return slug
        n += 1
        slug = f"{base}-{n}"


def read_time(content: str) -> int:
    words = len((strip_html(content) or "").split())
    return max(1, math.ceil(words / 200))


def with_authors(posts: List[dict]) -> List[dict]:
    ids = {p.get("author_id") for p in posts if is_object_id(p.get("author_id"))}
    authors = {
        str(u["_id"]): u
        for u in db["user"].find({"_id": {"$in": [to_object_id(i) for i in ids]}}, AUTHOR_FIELDS)
    }
    out = []
    for p in posts:
        data = serialize_doc(p)
        data.pop("likes", None)
        author = authors.get(p.get("author_id"))
        data["author"] = serialize_doc(author) if author else None
        out.append(data)
    return out


def get_post_or_404(post_id: str) -> dict:
    post = db["post"].find_one({"_id": to_object_id(post_id)})
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


def category_name(post: dict) -> str:
    cats = post.get("categories") or []
    if cats and is_object_id(cats[0]):
        cat = db["category"].find_one({"_id": to_object_id(cats[0])}, {"name": 1})
        if cat:
            return cat["name"]
    return "Travel"


def _resolve_category(category: str) -> Optional[str]:
    if is_object_id(category):
        return category
    cat = db["category"].find_one({"slug": category.lower()}, {"_id": 1})
    return str(cat["_id"]) if cat else None


def create_post(data: PostIn, author: dict) -> dict:
    """Insert a post for `author`. Non-admin authors cannot self-publish."""
    fields = data.model_dump()
    status = fields.pop("status")
    if not is_admin(author) and status not in ("draft", "pending"):
        status = "draft"
    fields["content"] = sanitize_rich_text(fields["content"])
    fields["tags"] = [t.strip().lower() for t in fields["tags"] if t.strip()]
    ts = now_utc()
    post = Post(
        **fields,
        status=status,
        slug=unique_slug("post", fields["title"]),
        author_id=str(author["_id"]),
        read_time=read_time(fields["content"]),
        published_at=ts if status == "published" else None,
        submitted_at=ts if status == "pending" else None,
    )
    post_id = create_document("post", post)
    logger.info("Post %s created by %s with status %s", post_id, author.get("email"), status)
    return db["post"].find_one({"_id": to_object_id(post_id)})


def update_post(post: dict, data, editor: dict) -> dict:
    updates = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    if "status" in updates and not is_admin(editor) and updates["status"] not in ("draft", "pending"):
        raise HTTPException(status_code=403, detail="Only admins can publish posts")
    if "title" in updates and updates["title"] != post.get("title"):
        updates["slug"] = unique_slug("post", updates["title"], exclude_id=post["_id"])
    if "content" in updates:
        updates["content"] = sanitize_rich_text(updates["content"])
        updates["read_time"] = read_time(updates["content"])
    if "tags" in updates:
        updates["tags"] = [t.strip().lower() for t in updates["tags"] if t.strip()]
    status = updates.get("status")
    if status == "published" and not post.get("published_at"):
        updates["published_at"] = now_utc()
    if status == "pending" and not post.get("submitted_at"):
        updates["submitted_at"] = now_utc()
    updates["updated_at"] = now_utc()
    return db["post"].find_one_and_update(
        {"_id": post["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )


def submit_post(post: dict, user: dict) -> dict:
    """draft/rejected -> pending, then notify the admins."""
    ensure_owner_or_admin(user, post.get("author_id"), "post")
    if post.get("status") not in ("draft", "rejected"):
        raise HTTPException(status_code=400, detail="Only draft or rejected posts can be submitted for review")
    updated = db["post"].find_one_and_update(
        {"_id": post["_id"]},
        {"$set": {"status": "pending", "submitted_at": now_utc(), "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    author = db["user"].find_one({"_id": to_object_id(post["author_id"])}) if is_object_id(post.get("author_id")) else None
    email_service.send_contributor_submission_notification(updated, author or user, category_name(updated))
    return updated


def delete_post(post: dict):
    post_id = str(post["_id"])
    db["post"].delete_one({"_id": post["_id"]})
    db["comment"].delete_many({"resource_type": "blog", "resource_id": post_id})


# -------------------------------------------------------------------
# Public
# -------------------------------------------------------------------
@router.get("")
def list_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    tags: Optional[str] = None,
    search: Optional[str] = None,
    author: Optional[str] = None,
    featured: Optional[bool] = None,
    sort: Optional[str] = "-publishedAt",
):
    query: dict = {"status": "published"}
    if category:
        query["categories"] = _resolve_category(category)
    if tags:
        query["tags"] = {"$in": [t.strip().lower() for t in tags.split(",") if t.strip()]}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"title": pattern}, {"excerpt": pattern}, {"content": pattern}]
    if author:
        query["author_id"] = author
    if featured is not None:
        query["is_featured"] = featured
    posts, meta = paginate("post", query, page, limit, parse_sort(sort, SORT_FIELDS, ("published_at", DESCENDING)))
    return {"success": True, "count": len(posts), "data": with_authors(posts), "pagination": meta}


@router.get("/featured")
def featured_posts(limit: int = Query(6, ge=1, le=50)):
    posts = db["post"].find({"status": "published", "is_featured": True}).sort("published_at", DESCENDING).limit(limit)
    return {"success": True, "data": with_authors(list(posts))}


@router.get("/popular")
def popular_posts(limit: int = Query(10, ge=1, le=50)):
    posts = (
        db["post"]
        .find({"status": "published"})
        .sort([("view_count", DESCENDING), ("like_count", DESCENDING)])
        .limit(limit)
    )
    return {"success": True, "data": with_authors(list(posts))}


@router.get("/category/{category}")
def posts_by_category(category: str, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100)):
    category_id = _resolve_category(category)
    if not category_id:
        raise HTTPException(status_code=404, detail="Category not found")
    posts, meta = paginate("post", {"status": "published", "categories": category_id}, page, limit,
                           ("published_at", DESCENDING))
    return {"success": True, "data": with_authors(posts), "pagination": meta}


@router.get("/{identifier}")
def get_post(identifier: str):
    key = {"_id": to_object_id(identifier)} if is_object_id(identifier) else {"slug": identifier}
    post = db["post"].find_one_and_update(
        {**key, "status": "published"},
        {"$inc": {"view_count": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return {"success": True, "data": with_authors([post])[0]}


# -------------------------------------------------------------------
# Authenticated
# -------------------------------------------------------------------
@router.post("", status_code=201)
def create(data: PostIn, user: dict = Depends(protect)):
    return {"success": True, "data": with_authors([create_post(data, user)])[0]}


@router.post("/upload-image")
def upload_post_image(image: UploadFile = File(...), user: dict = Depends(protect)):
    return {"success": True, "data": upload_image(image, "posts")}


@router.put("/{post_id}")
def update(post_id: str, data: PostUpdateIn, user: dict = Depends(protect)):
    post = get_post_or_404(post_id)
    ensure_owner_or_admin(user, post.get("author_id"), "post")
    return {"success": True, "data": with_authors([update_post(post, data, user)])[0]}


@router.delete("/{post_id}")
def delete(post_id: str, user: dict = Depends(protect)):
    post = get_post_or_404(post_id)
    ensure_owner_or_admin(user, post.get("author_id"), "post")
    delete_post(post)
    return {"success": True, "message": "Post deleted successfully", "data": {}}


@router.put("/{post_id}/submit")
def submit(post_id: str, user: dict = Depends(protect)):
    post = submit_post(get_post_or_404(post_id), user)
    return {"success": True, "message": "Post submitted for review", "data": with_authors([post])[0]}


@router.put("/{post_id}/like")
def toggle_like(post_id: str, user: dict = Depends(protect)):
    post = get_post_or_404(post_id)
    uid = str(user["_id"])
    if uid in post.get("likes", []):
        post = db["post"].find_one_and_update(
            {"_id": post["_id"], "likes": uid},
            {"$pull": {"likes": uid}, "$inc": {"like_count": -1}},
            return_document=ReturnDocument.AFTER,
        ) or post
        liked = False
    else:
        post = db["post"].find_one_and_update(
            {"_id": post["_id"], "likes": {"$ne": uid}},
            {"$addToSet": {"likes": uid}, "$inc": {"like_count": 1}},
            return_document=ReturnDocument.AFTER,
        ) or post
        liked = True
    return {"success": True, "data": {"liked": liked, "likeCount": post.get("like_count", 0)}}
