import re
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, File, Query, UploadFile
from pymongo.database import Database

import storage
from counters import SUBSCRIPTIONS, is_active
from database import find_page, get_db, get_or_404, objid, to_str_id, utcnow
from responses import BadRequest, Conflict, Page, Unauthorized, api_response
from routers.auth import public_user
from routers.videos import video_summaries
from schemas import ChangePasswordRequest, ProfileUpdateRequest
from security import PRIVATE_USER_FIELDS, get_current_user, get_optional_user, hash_password, verify_password

router = APIRouter(prefix="/users", tags=["Users"])
logger = structlog.get_logger(__name__)

PROFILE_FIELDS = {
    "username": 1, "full_name": 1, "avatar": 1, "cover_image": 1, "bio": 1,
    "subscribers_count": 1, "created_at": 1,
}


# -------------------- Me --------------------
@router.get("/me")
def get_me(user: dict = Depends(get_current_user)):
    return api_response({"user": public_user(user)}, "Current user fetched successfully")


@router.patch("/me")
def update_me(payload: ProfileUpdateRequest, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise BadRequest("Nothing to update")
    if "full_name" in changes:
        changes["full_name"] = changes["full_name"].strip()
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        if db["user"].find_one({"email": changes["email"], "_id": {"$ne": user["_id"]}}, {"_id": 1}):
            raise Conflict("Email is already in use")
    changes["updated_at"] = utcnow()

    db["user"].update_one({"_id": user["_id"]}, {"$set": changes})
    updated = db["user"].find_one({"_id": user["_id"]}, PRIVATE_USER_FIELDS)
    logger.info("profile updated", user_id=str(user["_id"]), fields=sorted(changes))
    return api_response({"user": public_user(updated)}, "Account details updated successfully")


@router.post("/change-password")
def change_password(payload: ChangePasswordRequest, user: dict = Depends(get_current_user),
                    db: Database = Depends(get_db)):
    stored = db["user"].find_one({"_id": user["_id"]}, {"password_hash": 1})
    if not verify_password(payload.old_password, stored.get("password_hash", "") if stored else ""):
        raise Unauthorized("Old password is incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(payload.new_password), "updated_at": utcnow()}},
    )
    logger.info("password changed", user_id=str(user["_id"]))
    return api_response({}, "Password changed successfully")


async def _replace_image(db: Database, user: dict, upload: UploadFile, field: str, folder: str):
    stored = await storage.upload(upload, "image", folder)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {field: stored.secure_url, "updated_at": utcnow()}})
    storage.remove(user.get(field))
    logger.info("profile image replaced", user_id=str(user["_id"]), field=field)
    return db["user"].find_one({"_id": user["_id"]}, PRIVATE_USER_FIELDS)


@router.patch("/avatar")
async def update_avatar(avatar: UploadFile = File(...), user: dict = Depends(get_current_user),
                        db: Database = Depends(get_db)):
    updated = await _replace_image(db, user, avatar, "avatar", "avatars")
    return api_response({"user": public_user(updated)}, "Avatar updated successfully")


@router.patch("/cover-image")
async def update_cover_image(cover_image: UploadFile = File(...), user: dict = Depends(get_current_user),
                             db: Database = Depends(get_db)):
    updated = await _replace_image(db, user, cover_image, "cover_image", "covers")
    return api_response({"user": public_user(updated)}, "Cover image updated successfully")


@router.get("/my-videos")
def my_videos(page: Page = Depends(), user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    videos, total = find_page(db, "video", {"owner": user["_id"]}, page)
    return api_response({"videos": video_summaries(db, videos)}, f"{total} videos found", meta=page.meta(total))


# -------------------- Channels --------------------
@router.get("/search")
def search_users(q: str = Query(..., min_length=1), page: Page = Depends(), db: Database = Depends(get_db)):
    pattern = {"$regex": re.escape(q.strip()), "$options": "i"}
    filter_dict = {"$or": [{"username": pattern}, {"full_name": pattern}]}
    users, total = find_page(db, "user", filter_dict, page,
                             sort=[("subscribers_count", -1), ("_id", 1)], projection=PROFILE_FIELDS)
    return api_response({"users": [to_str_id(u) for u in users]}, f"{total} users found", meta=page.meta(total))


@router.get("/{user_id}")
def get_channel(user_id: str, viewer: Optional[dict] = Depends(get_optional_user), db: Database = Depends(get_db)):
    uid = objid(user_id, "user id")
    channel = get_or_404(db, "user", uid, "User", projection=PROFILE_FIELDS)
    channel["videos_count"] = db["video"].count_documents({"owner": uid, "is_published": True})
    channel["is_subscribed"] = bool(viewer) and is_active(db, SUBSCRIPTIONS, viewer["_id"], uid)
    return api_response({"channel": to_str_id(channel)}, "Channel fetched successfully")


@router.get("/{user_id}/videos")
def channel_videos(user_id: str, page: Page = Depends(), db: Database = Depends(get_db)):
    uid = objid(user_id, "user id")
    get_or_404(db, "user", uid, "User", projection={"_id": 1})
    videos, total = find_page(db, "video", {"owner": uid, "is_published": True}, page,
                              sort=[("published_at", -1), ("_id", -1)])
    return api_response({"videos": video_summaries(db, videos)}, f"{total} videos found", meta=page.meta(total))
