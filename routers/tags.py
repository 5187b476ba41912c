import re
from typing import Optional

import structlog
from fastapi import APIRouter, Depends
from pymongo.database import Database

from database import create_document, find_page, get_db, get_or_404, objid, to_str_id, utcnow
from responses import Conflict, Page, api_response
from routers.videos import video_summaries
from schemas import Tag, TagRequest
from security import get_current_user

router = APIRouter(prefix="/tags", tags=["Tags"])
logger = structlog.get_logger(__name__)


def _name_taken(db: Database, name: str, exclude=None) -> bool:
    query = {"name": name}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    return db["tag"].count_documents(query, limit=1) > 0


@router.get("")
def list_tags(search: Optional[str] = None, page: Page = Depends(), db: Database = Depends(get_db)):
    filter_dict = {}
    if search and search.strip():
        filter_dict["name"] = {"$regex": re.escape(search.strip().lower())}
    tags, total = find_page(db, "tag", filter_dict, page, sort=[("usage_count", -1), ("name", 1)])
    return api_response({"tags": [to_str_id(t) for t in tags]}, f"{total} tags found", meta=page.meta(total))


@router.get("/{tag_id}")
def get_tag(tag_id: str, db: Database = Depends(get_db)):
    tag = get_or_404(db, "tag", objid(tag_id, "tag id"), "Tag")
    return api_response({"tag": to_str_id(tag)}, "Tag fetched successfully")


@router.get("/{tag_id}/videos")
def tag_videos(tag_id: str, page: Page = Depends(), db: Database = Depends(get_db)):
    tid = objid(tag_id, "tag id")
    get_or_404(db, "tag", tid, "Tag")
    videos, total = find_page(db, "video", {"tags": tid, "is_published": True}, page,
                              sort=[("published_at", -1), ("_id", -1)])
    return api_response({"videos": video_summaries(db, videos)}, f"{total} videos found", meta=page.meta(total))


@router.post("")
def create_tag(payload: TagRequest, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    tag = Tag(name=payload.name)
    if _name_taken(db, tag.name):
        raise Conflict("Tag already exists")
    doc = create_document(db, "tag", tag)
    logger.info("tag created", tag_id=str(doc["_id"]), name=tag.name, user_id=str(user["_id"]))
    return api_response({"tag": to_str_id(doc)}, "Tag created successfully", 201)


@router.patch("/{tag_id}")
def update_tag(tag_id: str, payload: TagRequest, user: dict = Depends(get_current_user),
               db: Database = Depends(get_db)):
    tid = objid(tag_id, "tag id")
    get_or_404(db, "tag", tid, "Tag")
    name = Tag(name=payload.name).name
    if _name_taken(db, name, exclude=tid):
        raise Conflict("Tag already exists")
    db["tag"].update_one({"_id": tid}, {"$set": {"name": name, "updated_at": utcnow()}})
    logger.info("tag renamed", tag_id=tag_id, name=name, user_id=str(user["_id"]))
    return api_response({"tag": to_str_id(db["tag"].find_one({"_id": tid}))}, "Tag updated successfully")


@router.delete("/{tag_id}")
def delete_tag(tag_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    tid = objid(tag_id, "tag id")
    get_or_404(db, "tag", tid, "Tag")
    db["tag"].delete_one({"_id": tid})
    result = db["video"].update_many({"tags": tid}, {"$pull": {"tags": tid}})
    logger.info("tag deleted", tag_id=tag_id, user_id=str(user["_id"]), videos=result.modified_count)
    return api_response({}, "Tag deleted successfully")
