import re
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from pymongo.database import Database

import storage
from counters import SUBSCRIPTIONS, adjust_counter, is_active, log_view
from database import (
    attach_users,
    create_document,
    find_page,
    get_db,
    get_or_404,
    get_owned,
    objid,
    to_str_id,
    utcnow,
)
from responses import BadRequest, Forbidden, NotFound, Page, Unauthorized, api_response
from schemas import Category, Video, VideoUpdateRequest
from security import get_current_user, get_optional_user

router = APIRouter(prefix="/videos", tags=["Videos"])
logger = structlog.get_logger(__name__)

SORT_FIELDS = ("published_at", "created_at", "views", "likes_count")
OWNER_FIELDS = {"username": 1, "full_name": 1, "avatar": 1, "subscribers_count": 1}


# -------------------- Helpers --------------------
def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def ensure_can_watch(db: Database, video: Dict[str, Any], user: Optional[Dict[str, Any]]) -> None:
    """Unpublished videos are visible to their owner only; subscribers-only videos need a subscription."""
    is_owner = user is not None and video.get("owner") == user["_id"]
    if not video.get("is_published") and not is_owner:
        raise NotFound("Video not found")
    if video.get("subscribers_only") and not is_owner:
        if user is None:
            raise Unauthorized("Authentication required to view this video")
        if not is_active(db, SUBSCRIPTIONS, user["_id"], video["owner"]):
            raise Forbidden("You must be a subscriber to view this video")


def parse_tag_ids(db: Database, raw: Optional[List[str]]) -> List[ObjectId]:
    """Keep the ids that name existing tags, in order and without repeats."""
    ids = []
    for value in raw or []:
        value = value.strip()
        if ObjectId.is_valid(value) and ObjectId(value) not in ids:
            ids.append(ObjectId(value))
    if not ids:
        return []
    existing = {t["_id"] for t in db["tag"].find({"_id": {"$in": ids}}, {"_id": 1})}
    return [i for i in ids if i in existing]


def adjust_tag_usage(db: Database, tag_ids: List[ObjectId], delta: int) -> None:
    for tag_id in tag_ids:
        adjust_counter(db["tag"], tag_id, "usage_count", delta)


def video_summaries(db: Database, videos: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [to_str_id(v) for v in attach_users(db, videos)]


# -------------------- Video Upload & Feed --------------------
@router.get("")
def list_videos(
    page: Page = Depends(),
    search: Optional[str] = None,
    category: Optional[Category] = None,
    sort_by: str = Query("published_at"),
    db: Database = Depends(get_db),
):
    if sort_by not in SORT_FIELDS:
        raise BadRequest(f"sort_by must be one of {', '.join(SORT_FIELDS)}")
    filter_dict: Dict[str, Any] = {"is_published": True}
    if search and search.strip():
        filter_dict["title"] = {"$regex": re.escape(search.strip()), "$options": "i"}
    if category:
        filter_dict["category"] = category

    videos, total = find_page(db, "video", filter_dict, page, sort=[(sort_by, -1), ("_id", -1)])
    return api_response(
        {"videos": video_summaries(db, videos), "total_videos": total},
        f"{total} videos found", meta=page.meta(total),
    )


@router.get("/{video_id}")
def get_video(
    video_id: str,
    request: Request,
    user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    vid = objid(video_id, "video id")
    video = get_or_404(db, "video", vid, "Video")
    ensure_can_watch(db, video, user)

    _, views = log_view(db, vid, viewer_id=user["_id"] if user else None, ip_address=client_ip(request))
    video["views"] = views
    payload = attach_users(db, [video], projection=OWNER_FIELDS)[0]
    return api_response({"video": to_str_id(payload)}, "Video fetched successfully")


@router.post("")
async def upload_video(
    title: str = Form(...),
    description: str = Form(""),
    category: Category = Form("Other"),
    tags: Optional[str] = Form(None),  # comma separated tag ids
    is_published: bool = Form(False),
    subscribers_only: bool = Form(False),
    duration: Optional[float] = Form(None, ge=0),
    video_file: UploadFile = File(...),
    thumbnail: Optional[UploadFile] = File(None),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if not title.strip():
        raise BadRequest("Title is required")
    tag_ids = parse_tag_ids(db, tags.split(",") if tags else [])

    stored_video = await storage.upload(video_file, "video", "videos")
    stored_thumb = await storage.upload(thumbnail, "image", "thumbnails") if thumbnail is not None else None

    video = Video(
        owner=user["_id"],
        video_file=stored_video.secure_url,
        thumbnail=stored_thumb.secure_url if stored_thumb else None,
        title=title.strip(),
        description=description.strip(),
        duration=stored_video.duration if stored_video.duration is not None else duration,
        category=category,
        tags=tag_ids,
        is_published=is_published,
        subscribers_only=subscribers_only,
        published_at=utcnow() if is_published else None,
    )
    doc = create_document(db, "video", video)
    adjust_tag_usage(db, tag_ids, 1)
    logger.info("video uploaded", video_id=str(doc["_id"]), user_id=str(user["_id"]))
    payload = attach_users(db, [doc], projection=OWNER_FIELDS)[0]
    return api_response({"video": to_str_id(payload)}, "Video uploaded successfully", 201)


@router.patch("/{video_id}")
def update_video(
    video_id: str,
    payload: VideoUpdateRequest,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    vid = objid(video_id, "video id")
    video = get_owned(db, "video", vid, user, "Video")

    changes: Dict[str, Any] = payload.model_dump(exclude_none=True, exclude={"tags"})
    if "title" in changes:
        changes["title"] = changes["title"].strip()
        if not changes["title"]:
            raise BadRequest("Title cannot be empty")
    if "description" in changes:
        changes["description"] = changes["description"].strip()
    if payload.tags is not None:
        new_tags = parse_tag_ids(db, payload.tags)
        old_tags = video.get("tags", [])
        adjust_tag_usage(db, [t for t in new_tags if t not in old_tags], 1)
        adjust_tag_usage(db, [t for t in old_tags if t not in new_tags], -1)
        changes["tags"] = new_tags
    changes["updated_at"] = utcnow()

    db["video"].update_one({"_id": vid}, {"$set": changes})
    updated = db["video"].find_one({"_id": vid})
    logger.info("video updated", video_id=video_id, user_id=str(user["_id"]), fields=sorted(changes))
    return api_response({"video": video_summaries(db, [updated])[0]}, "Video updated successfully")


@router.delete("/{video_id}")
def delete_video(video_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    vid = objid(video_id, "video id")
    video = get_owned(db, "video", vid, user, "Video")

    db["video"].delete_one({"_id": vid})
    # Likes and comments keep their soft-deleted rows, like any other unlike or comment delete.
    now = utcnow()
    retired = {"$set": {"is_deleted": True, "deleted_at": now, "updated_at": now}}
    comment_ids = [c["_id"] for c in db["comment"].find({"target.kind": "video", "target.id": vid}, {"_id": 1})]
    db["like"].update_many({"target.kind": "video", "target.id": vid, "is_deleted": False}, retired)
    if comment_ids:
        db["like"].update_many({"target.kind": "comment", "target.id": {"$in": comment_ids}, "is_deleted": False},
                               retired)
    db["comment"].update_many({"target.kind": "video", "target.id": vid, "is_deleted": False}, retired)
    db["view"].delete_many({"video": vid})
    db["analytics"].delete_many({"video": vid})
    db["playlist"].update_many({"videos": vid}, {"$pull": {"videos": vid}})
    db["user"].update_many({"watch_history": vid}, {"$pull": {"watch_history": vid}})
    adjust_tag_usage(db, video.get("tags", []), -1)
    storage.remove(video.get("video_file"))
    storage.remove(video.get("thumbnail"))

    logger.info("video deleted", video_id=video_id, user_id=str(user["_id"]))
    return api_response({}, "Video deleted successfully")


@router.post("/{video_id}/publish")
def toggle_publish(video_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    vid = objid(video_id, "video id")
    video = get_owned(db, "video", vid, user, "Video")

    published = not video.get("is_published", False)
    changes: Dict[str, Any] = {"is_published": published, "updated_at": utcnow()}
    if published:
        changes["published_at"] = changes["updated_at"]
    db["video"].update_one({"_id": vid}, {"$set": changes})
    updated = db["video"].find_one({"_id": vid})

    state = "published" if published else "unpublished"
    logger.info(f"video {state}", video_id=video_id, user_id=str(user["_id"]))
    return api_response(
        {"is_published": published, "video": video_summaries(db, [updated])[0]},
        f"Video {state} successfully",
    )
