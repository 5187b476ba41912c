from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Request
from pymongo.database import Database

from counters import log_view
from database import attach_users, find_page, get_db, get_or_404, get_owned, objid, to_str_id
from responses import Page, api_response
from routers.videos import client_ip, ensure_can_watch
from security import get_current_user, get_optional_user

router = APIRouter(prefix="/views", tags=["Views"])
logger = structlog.get_logger(__name__)


@router.post("/{video_id}")
def add_view(video_id: str, request: Request, user: Optional[dict] = Depends(get_optional_user),
             db: Database = Depends(get_db)):
    vid = objid(video_id, "video id")
    video = get_or_404(db, "video", vid, "Video", projection={"owner": 1, "is_published": 1, "subscribers_only": 1})
    ensure_can_watch(db, video, user)

    created, views = log_view(db, vid, viewer_id=user["_id"] if user else None, ip_address=client_ip(request))
    if created:
        return api_response({"views": views, "counted": True}, "View recorded successfully", 201)
    return api_response({"views": views, "counted": False}, "View already counted")


@router.get("/{video_id}")
def list_views(video_id: str, page: Page = Depends(), user: dict = Depends(get_current_user),
               db: Database = Depends(get_db)):
    vid = objid(video_id, "video id")
    get_owned(db, "video", vid, user, "Video")

    rows, total = find_page(db, "view", {"video": vid}, page, sort=[("created_at", -1), ("_id", -1)])
    for row in rows:
        # IPs are only exposed for anonymous views
        if row.get("viewer") is not None:
            row.pop("ip_address", None)
    rows = attach_users(db, rows, field="viewer")
    return api_response({"views": [to_str_id(r) for r in rows]}, f"{total} views found", meta=page.meta(total))
