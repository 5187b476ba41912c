import structlog
from fastapi import APIRouter, Depends
from pymongo.database import Database

from config import get_settings
from counters import add_to_watch_history
from database import get_db, get_or_404, objid, utcnow
from responses import Page, api_response
from routers.videos import ensure_can_watch, video_summaries
from security import get_current_user

router = APIRouter(prefix="/watch-history", tags=["Watch History"])
logger = structlog.get_logger(__name__)


@router.post("/{video_id}")
def add_to_history(video_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    vid = objid(video_id, "video id")
    video = get_or_404(db, "video", vid, "Video", projection={"owner": 1, "is_published": 1, "subscribers_only": 1})
    ensure_can_watch(db, video, user)
    history = add_to_watch_history(db, user["_id"], vid, get_settings().watch_history_limit)
    logger.info("watch history updated", user_id=str(user["_id"]), video_id=video_id, size=len(history))
    return api_response({"watch_history_count": len(history)}, "Added to watch history")


@router.get("")
def get_history(page: Page = Depends(), user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    stored = db["user"].find_one({"_id": user["_id"]}, {"watch_history": 1}) or {}
    history = stored.get("watch_history", [])
    ids = history[page.skip:page.skip + page.limit]
    found = {v["_id"]: v for v in db["video"].find({"_id": {"$in": ids}})}
    videos = [found[i] for i in ids if i in found]
    return api_response({"videos": video_summaries(db, videos)}, "Watch history fetched successfully",
                        meta=page.meta(len(history)))


@router.delete("")
def clear_history(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"watch_history": [], "updated_at": utcnow()}})
    logger.info("watch history cleared", user_id=str(user["_id"]))
    return api_response({}, "Watch history cleared")


@router.delete("/{video_id}")
def remove_from_history(video_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    vid = objid(video_id, "video id")
    db["user"].update_one({"_id": user["_id"]}, {"$pull": {"watch_history": vid}, "$set": {"updated_at": utcnow()}})
    return api_response({}, "Removed from watch history")
