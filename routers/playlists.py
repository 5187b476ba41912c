from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, UploadFile
from pymongo.database import Database

import storage
from config import get_settings
from database import (
    NOT_DELETED,
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
from responses import BadRequest, Forbidden, Page, api_response
from routers.videos import ensure_can_watch, video_summaries
from schemas import Playlist, PlaylistUpdateRequest
from security import get_current_user, get_optional_user

router = APIRouter(prefix="/playlists", tags=["Playlists"])
logger = structlog.get_logger(__name__)

VIDEO_FIELDS = {"title": 1, "thumbnail": 1, "duration": 1, "views": 1, "owner": 1, "is_published": 1}


def _playlist_out(db: Database, playlist: dict, with_videos: bool = False,
                  viewer: Optional[dict] = None) -> dict:
    out = attach_users(db, [playlist])[0]
    out["videos_count"] = len(playlist.get("videos", []))
    if with_videos and playlist.get("videos"):
        # Drafts are listed for their owner only.
        visible: List[Dict[str, Any]] = [{"is_published": True}]
        if viewer is not None:
            visible.append({"owner": viewer["_id"]})
        cursor = db["video"].find({"_id": {"$in": playlist["videos"]}, "$or": visible}, VIDEO_FIELDS)
        found = {v["_id"]: v for v in cursor}
        out["videos"] = video_summaries(db, [found[v] for v in playlist["videos"] if v in found])
    return to_str_id(out)


# -------------------- Reads --------------------
@router.get("")
def public_playlists(page: Page = Depends(), db: Database = Depends(get_db)):
    rows, total = find_page(db, "playlist", {"is_public": True, **NOT_DELETED}, page,
                            sort=[("created_at", -1), ("_id", -1)])
    return api_response({"playlists": [_playlist_out(db, p) for p in rows]},
                        f"{total} playlists found", meta=page.meta(total))


@router.get("/user")
def my_playlists(page: Page = Depends(), user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    rows, total = find_page(db, "playlist", {"owner": user["_id"], **NOT_DELETED}, page,
                            sort=[("created_at", -1), ("_id", -1)])
    return api_response({"playlists": [_playlist_out(db, p) for p in rows]},
                        f"{total} playlists found", meta=page.meta(total))


@router.get("/{playlist_id}")
def get_playlist(playlist_id: str, user: Optional[dict] = Depends(get_optional_user),
                 db: Database = Depends(get_db)):
    playlist = get_or_404(db, "playlist", objid(playlist_id, "playlist id"), "Playlist", extra=NOT_DELETED)
    if not playlist.get("is_public") and (user is None or playlist["owner"] != user["_id"]):
        raise Forbidden("This playlist is private")
    return api_response({"playlist": _playlist_out(db, playlist, with_videos=True, viewer=user)},
                        "Playlist fetched successfully")


# -------------------- Writes --------------------
@router.post("")
async def create_playlist(
    name: str = Form(...),
    description: str = Form(""),
    is_public: bool = Form(True),
    thumbnail: Optional[UploadFile] = File(None),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if not name.strip():
        raise BadRequest("Playlist name is required")
    stored = await storage.upload(thumbnail, "image", "thumbnails") if thumbnail is not None else None
    playlist = Playlist(owner=user["_id"], name=name.strip(), description=description.strip(),
                        is_public=is_public, thumbnail=stored.secure_url if stored else None)
    doc = create_document(db, "playlist", playlist)
    logger.info("playlist created", playlist_id=str(doc["_id"]), user_id=str(user["_id"]))
    return api_response({"playlist": _playlist_out(db, doc)}, "Playlist created successfully", 201)


@router.patch("/{playlist_id}")
async def update_playlist(
    playlist_id: str,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    is_public: Optional[bool] = Form(None),
    thumbnail: Optional[UploadFile] = File(None),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    pid = objid(playlist_id, "playlist id")
    playlist = get_owned(db, "playlist", pid, user, "Playlist", extra=NOT_DELETED)
    payload = PlaylistUpdateRequest(name=name, description=description, is_public=is_public)
    changes = payload.model_dump(exclude_none=True)
    if "name" in changes:
        changes["name"] = changes["name"].strip()
        if not changes["name"]:
            raise BadRequest("Playlist name cannot be empty")
    if "description" in changes:
        changes["description"] = changes["description"].strip()
    if thumbnail is not None:
        stored = await storage.upload(thumbnail, "image", "thumbnails")
        changes["thumbnail"] = stored.secure_url
    changes["updated_at"] = utcnow()
    db["playlist"].update_one({"_id": pid}, {"$set": changes})
    if "thumbnail" in changes:
        storage.remove(playlist.get("thumbnail"))
    logger.info("playlist updated", playlist_id=playlist_id, user_id=str(user["_id"]), fields=sorted(changes))
    return api_response({"playlist": _playlist_out(db, db["playlist"].find_one({"_id": pid}))},
                        "Playlist updated successfully")


@router.delete("/{playlist_id}")
def delete_playlist(playlist_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    pid = objid(playlist_id, "playlist id")
    get_owned(db, "playlist", pid, user, "Playlist", extra=NOT_DELETED)
    now = utcnow()
    db["playlist"].update_one({"_id": pid}, {"$set": {"is_deleted": True, "deleted_at": now, "updated_at": now}})
    logger.info("playlist deleted", playlist_id=playlist_id, user_id=str(user["_id"]))
    return api_response({}, "Playlist deleted successfully")


@router.post("/{playlist_id}/videos/{video_id}")
def add_video(playlist_id: str, video_id: str, user: dict = Depends(get_current_user),
              db: Database = Depends(get_db)):
    pid = objid(playlist_id, "playlist id")
    vid = objid(video_id, "video id")
    get_owned(db, "playlist", pid, user, "Playlist", extra=NOT_DELETED)
    video = get_or_404(db, "video", vid, "Video", projection={"owner": 1, "is_published": 1, "subscribers_only": 1})
    ensure_can_watch(db, video, user)

    cap = get_settings().playlist_max_videos
    # Either already present (idempotent) or room left under the cap.
    result = db["playlist"].update_one(
        {"_id": pid, "$or": [{"videos": vid}, {f"videos.{cap - 1}": {"$exists": False}}]},
        {"$addToSet": {"videos": vid}, "$set": {"updated_at": utcnow()}},
    )
    if not result.matched_count:
        raise BadRequest(f"A playlist can hold at most {cap} videos")
    logger.info("video added to playlist", playlist_id=playlist_id, video_id=video_id, user_id=str(user["_id"]))
    return api_response({"playlist": _playlist_out(db, db["playlist"].find_one({"_id": pid}))},
                        "Video added to playlist successfully")


@router.delete("/{playlist_id}/videos/{video_id}")
def remove_video(playlist_id: str, video_id: str, user: dict = Depends(get_current_user),
                 db: Database = Depends(get_db)):
    pid = objid(playlist_id, "playlist id")
    vid = objid(video_id, "video id")
    get_owned(db, "playlist", pid, user, "Playlist", extra=NOT_DELETED)
    db["playlist"].update_one({"_id": pid}, {"$pull": {"videos": vid}, "$set": {"updated_at": utcnow()}})
    logger.info("video removed from playlist", playlist_id=playlist_id, video_id=video_id,
                user_id=str(user["_id"]))
    return api_response({"playlist": _playlist_out(db, db["playlist"].find_one({"_id": pid}))},
                        "Video removed from playlist successfully")
