from datetime import date, datetime
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends
from pymongo.database import Database

from database import find_page, get_db, get_owned, objid, to_str_id
from responses import BadRequest, Page, api_response
from security import get_current_user

router = APIRouter(prefix="/analytics", tags=["Analytics"])
logger = structlog.get_logger(__name__)

EMPTY_TOTALS = {"views": 0, "likes": 0, "comments": 0}


def date_range(start_date: Optional[date], end_date: Optional[date]) -> Dict[str, Any]:
    """Bucket filter on the day field; both ends inclusive."""
    if start_date and end_date and start_date > end_date:
        raise BadRequest("start_date must not be after end_date")
    bounds: Dict[str, Any] = {}
    if start_date:
        bounds["$gte"] = datetime.combine(start_date, datetime.min.time())
    if end_date:
        bounds["$lte"] = datetime.combine(end_date, datetime.min.time())
    return {"date": bounds} if bounds else {}


def totals(db: Database, query: Dict[str, Any]) -> Dict[str, int]:
    rows: List[Dict[str, Any]] = list(db["analytics"].aggregate([
        {"$match": query},
        {"$group": {
            "_id": None,
            "views": {"$sum": "$views"},
            "likes": {"$sum": "$likes"},
            "comments": {"$sum": "$comments"},
        }},
    ]))
    if not rows:
        return dict(EMPTY_TOTALS)
    return {k: rows[0].get(k, 0) for k in EMPTY_TOTALS}


@router.get("/video/{video_id}")
def video_analytics(
    video_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: Page = Depends(),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    vid = objid(video_id, "video id")
    get_owned(db, "video", vid, user, "Video")
    query = {"video": vid, **date_range(start_date, end_date)}
    buckets, total = find_page(db, "analytics", query, page, sort=[("date", -1)])
    logger.info("video analytics fetched", video_id=video_id, user_id=str(user["_id"]))
    return api_response(
        {"analytics": [to_str_id(b) for b in buckets], "totals": totals(db, query)},
        "Video analytics fetched successfully", meta=page.meta(total),
    )


@router.get("/user")
def user_analytics(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: Page = Depends(),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    video_ids = db["video"].distinct("_id", {"owner": user["_id"]})
    query = {"video": {"$in": video_ids}, **date_range(start_date, end_date)}
    buckets, total = find_page(db, "analytics", query, page, sort=[("date", -1), ("video", 1)])
    titles = {v["_id"]: v for v in db["video"].find({"_id": {"$in": video_ids}}, {"title": 1, "thumbnail": 1})}
    for b in buckets:
        b["video"] = titles.get(b["video"], {"_id": b["video"]})
    logger.info("user analytics fetched", user_id=str(user["_id"]), videos=len(video_ids))
    return api_response(
        {"analytics": [to_str_id(b) for b in buckets], "totals": totals(db, query)},
        "User analytics fetched successfully", meta=page.meta(total),
    )
