import re
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile

from database import create_document, db, now_utc, paginate, require_db, to_object_id
from schemas import User, UserCreateIn, UserUpdateIn
from security import ensure_owner_or_admin, hash_password, protect, public_user, require_admin
from uploads import upload_image

router = APIRouter(prefix="/api/users", tags=["users"], dependencies=[Depends(require_db)])
admin_router = APIRouter(prefix="/api/admin/users", tags=["admin"], dependencies=[Depends(require_db)])

SUMMARY = {"name": 1, "avatar": 1, "bio": 1, "role": 1}


def _get_user_or_404(user_id: str) -> dict:
    user = db["user"].find_one({"_id": to_object_id(user_id)})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _summaries(ids) -> list:
    oids = [to_object_id(i) for i in ids if i]
    return [public_user(u) for u in db["user"].find({"_id": {"$in": oids}}, SUMMARY)]


# -------------------------------------------------------------------
# Public profile
# -------------------------------------------------------------------
@router.get("/{user_id}")
def get_user(user_id: str):
    return {"success": True, "data": public_user(_get_user_or_404(user_id))}


@router.get("/{user_id}/followers")
def get_followers(user_id: str):
    user = _get_user_or_404(user_id)
    followers = _summaries(user.get("followers", []))
    return {"success": True, "count": len(followers), "data": followers}


@router.get("/{user_id}/following")
def get_following(user_id: str):
    user = _get_user_or_404(user_id)
    following = _summaries(user.get("following", []))
    return {"success": True, "count": len(following), "data": following}


@router.get("/{user_id}/stats")
def get_user_stats(user_id: str):
    user = _get_user_or_404(user_id)
    return {
        "success": True,
        "data": {
            "followers": len(user.get("followers", [])),
            "following": len(user.get("following", [])),
            "posts": db["post"].count_documents({"author_id": user_id, "status": "published"}),
            "joinedAt": user.get("created_at"),
            "isPremium": user.get("is_premium", False),
            "role": user.get("role"),
        },
    }


@router.put("/{user_id}/follow")
def toggle_follow(user_id: str, me: dict = Depends(protect)):
    target = _get_user_or_404(user_id)
    my_id = str(me["_id"])
    if my_id == str(target["_id"]):
        raise HTTPException(status_code=400, detail="You cannot follow yourself")

    if my_id in target.get("followers", []):
        db["user"].update_one({"_id": target["_id"]}, {"$pull": {"followers": my_id}})
        db["user"].update_one({"_id": me["_id"]}, {"$pull": {"following": user_id}})
        following = False
    else:
        db["user"].update_one({"_id": target["_id"]}, {"$addToSet": {"followers": my_id}})
        db["user"].update_one({"_id": me["_id"]}, {"$addToSet": {"following": user_id}})
        following = True

    target = db["user"].find_one({"_id": target["_id"]}, {"followers": 1})
    return {
        "success": True,
        "message": "User followed" if following else "User unfollowed",
        "data": {"following": following, "followersCount": len(target.get("followers", []))},
    }


@router.put("/{user_id}/avatar")
def upload_avatar(user_id: str, file: UploadFile = File(...), me: dict = Depends(protect)):
    user = _get_user_or_404(user_id)
    ensure_owner_or_admin(me, str(user["_id"]), "user")
    uploaded = upload_image(file, "avatars")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"avatar": uploaded["url"], "updated_at": now_utc()}})
    return {"success": True, "data": {"avatar": uploaded["url"]}}


# -------------------------------------------------------------------
# Admin management
# -------------------------------------------------------------------
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[str] = None,
    search: Optional[str] = None,
    admin: dict = Depends(require_admin),
):
    query: dict = {}
    if role:
        query["role"] = role
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"email": pattern}]
    users, meta = paginate("user", query, page, limit)
    return {"success": True, "data": [public_user(u) for u in users], "pagination": meta}


def create_user(data: UserCreateIn, admin: dict = Depends(require_admin)):
    email = data.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists with this email")
    fields = data.model_dump(exclude={"password", "email"})
    user = User(**fields, email=email, password_hash=hash_password(data.password))
    user_id = create_document("user", user)
    return {"success": True, "data": public_user(db["user"].find_one({"_id": to_object_id(user_id)}))}


def update_user(user_id: str, data: UserUpdateIn, admin: dict = Depends(require_admin)):
    user = _get_user_or_404(user_id)
    updates = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    if "email" in updates:
        updates["email"] = updates["email"].lower()
        clash = db["user"].find_one({"email": updates["email"], "_id": {"$ne": user["_id"]}})
        if clash:
            raise HTTPException(status_code=400, detail="User already exists with this email")
    if "password" in updates:
        updates["password_hash"] = hash_password(updates.pop("password"))
    updates["updated_at"] = now_utc()
    db["user"].update_one({"_id": user["_id"]}, {"$set": updates})
    return {"success": True, "data": public_user(db["user"].find_one({"_id": user["_id"]}))}


def delete_user(user_id: str, admin: dict = Depends(require_admin)):
    user = _get_user_or_404(user_id)
    if user["_id"] == admin["_id"]:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    uid = str(user["_id"])
    db["user"].delete_one({"_id": user["_id"]})
    db["user"].update_many({}, {"$pull": {"followers": uid, "following": uid}})
    return {"success": True, "message": "User deleted successfully", "data": {}}


for _r in (router, admin_router):
    _r.add_api_route("", list_users, methods=["GET"])
    _r.add_api_route("", create_user, methods=["POST"], status_code=201)
    _r.add_api_route("/{user_id}", update_user, methods=["PUT"])
    _r.add_api_route("/{user_id}", delete_user, methods=["DELETE"])
admin_router.add_api_route("/{user_id}", get_user, methods=["GET"])
