from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from fastapi import APIRouter, Depends
from pymongo.database import Database

from counters import adjust_counter, bump_daily
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
from responses import BadRequest, NotFound, Page, api_response
from routers.notifications import notify
from routers.videos import ensure_can_watch
from schemas import Comment, CommentKind, CommentRequest, CommentUpdateRequest, Target
from security import get_current_user, get_optional_user

router = APIRouter(prefix="/comments", tags=["Comments"])
logger = structlog.get_logger(__name__)


def load_target(db: Database, kind: CommentKind, target_id: str, user: Optional[dict]) -> Dict[str, Any]:
    tid = objid(target_id, f"{kind.value} id")
    if kind is CommentKind.VIDEO:
        video = get_or_404(db, "video", tid, "Video")
        ensure_can_watch(db, video, user)
        return video
    return get_or_404(db, "post", tid, "Post", extra=NOT_DELETED)


def thread_ids(db: Database, root_id: ObjectId) -> List[ObjectId]:
    """The comment and every reply below it."""
    ids = [root_id]
    frontier = [root_id]
    while frontier:
        children = [c["_id"] for c in db["comment"].find(
            {"parent_comment": {"$in": frontier}, **NOT_DELETED}, {"_id": 1})]
        ids.extend(children)
        frontier = children
    return ids


# -------------------- Comments --------------------
@router.get("/{kind}/{target_id}")
def list_comments(
    kind: CommentKind,
    target_id: str,
    parent: Optional[str] = None,
    page: Page = Depends(),
    user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    target = load_target(db, kind, target_id, user)
    filter_dict: Dict[str, Any] = {
        "target.kind": kind.value,
        "target.id": target["_id"],
        "parent_comment": objid(parent, "parent comment id") if parent else None,
        **NOT_DELETED,
    }
    comments, total = find_page(db, "comment", filter_dict, page, sort=[("created_at", -1), ("_id", -1)])
    for c in comments:
        c["replies_count"] = db["comment"].count_documents({"parent_comment": c["_id"], **NOT_DELETED})
    comments = attach_users(db, comments)
    return api_response({"comments": [to_str_id(c) for c in comments]},
                        f"{total} comments found", meta=page.meta(total))


@router.post("/{kind}/{target_id}")
def add_comment(
    kind: CommentKind,
    target_id: str,
    payload: CommentRequest,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    target = load_target(db, kind, target_id, user)
    parent_id = None
    if payload.parent_comment:
        parent_id = objid(payload.parent_comment, "parent comment id")
        parent = get_or_404(db, "comment", parent_id, "Parent comment", extra=NOT_DELETED)
        if parent["target"]["id"] != target["_id"] or parent["target"]["kind"] != kind.value:
            raise BadRequest("Parent comment belongs to a different thread")

    content = payload.content.strip()
    if not content:
        raise BadRequest("Comment content is required")
    comment = Comment(owner=user["_id"], target=Target(kind=kind.value, id=target["_id"]),
                      content=content, parent_comment=parent_id)
    doc = create_document(db, "comment", comment)
    adjust_counter(db[kind.value], target["_id"], "comments_count", 1)
    if kind is CommentKind.VIDEO:
        bump_daily(db, target["_id"], "comments")
    notify(db, target["owner"], user["_id"], "comment", f"{user['username']} commented on your {kind.value}",
           comment=doc["_id"], **{kind.value: target["_id"]})

    logger.info("comment added", comment_id=str(doc["_id"]), kind=kind.value, target=str(target["_id"]),
                user_id=str(user["_id"]))
    doc = attach_users(db, [doc])[0]
    return api_response({"comment": to_str_id(doc)}, "Comment added successfully", 201)


@router.patch("/{comment_id}")
def update_comment(comment_id: str, payload: CommentUpdateRequest, user: dict = Depends(get_current_user),
                   db: Database = Depends(get_db)):
    cid = objid(comment_id, "comment id")
    get_owned(db, "comment", cid, user, "Comment", extra=NOT_DELETED)
    content = payload.content.strip()
    if not content:
        raise BadRequest("Comment content is required")
    db["comment"].update_one({"_id": cid}, {"$set": {"content": content, "updated_at": utcnow()}})
    updated = db["comment"].find_one({"_id": cid})
    return api_response({"comment": to_str_id(updated)}, "Comment updated successfully")


@router.delete("/{comment_id}")
def delete_comment(comment_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cid = objid(comment_id, "comment id")
    comment = get_owned(db, "comment", cid, user, "Comment", extra=NOT_DELETED)

    now = utcnow()
    result = db["comment"].update_many(
        {"_id": {"$in": thread_ids(db, cid)}, **NOT_DELETED},
        {"$set": {"is_deleted": True, "deleted_at": now, "updated_at": now}},
    )
    removed = result.modified_count
    if not removed:
        raise NotFound("Comment not found")
    target = comment["target"]
    comments_count = adjust_counter(db[target["kind"]], target["id"], "comments_count", -removed)

    logger.info("comment deleted", comment_id=comment_id, user_id=str(user["_id"]), removed=removed)
    return api_response({"removed": removed, "comments_count": comments_count}, "Comment deleted successfully")
