from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from fastapi import APIRouter, Depends
from pymongo.database import Database

from counters import LIKES, bump_daily, current_count, is_active, toggle
from database import NOT_DELETED, find_page, get_db, get_or_404, objid, to_str_id
from responses import Page, api_response
from routers.notifications import notify
from routers.videos import ensure_can_watch
from schemas import LikeKind
from security import get_current_user

router = APIRouter(prefix="/likes", tags=["Likes"])
logger = structlog.get_logger(__name__)

TARGET_FIELDS = {
    LikeKind.VIDEO.value: {"title": 1, "thumbnail": 1, "owner": 1, "likes_count": 1},
    LikeKind.POST.value: {"content": 1, "owner": 1, "likes_count": 1},
    LikeKind.COMMENT.value: {"content": 1, "owner": 1, "target": 1, "likes_count": 1},
}


def _target(db: Database, kind: LikeKind, target_id: str):
    rel = LIKES[kind.value]
    tid = objid(target_id, f"{kind.value} id")
    target = get_or_404(db, rel.target_collection, tid, rel.label,
                        extra=rel.target_query(tid),
                        projection={"owner": 1, "is_published": 1, "subscribers_only": 1})
    return rel, tid, target


def _attach_targets(db: Database, likes: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    ids_by_kind: Dict[str, List[ObjectId]] = {}
    for like in likes:
        ids_by_kind.setdefault(like["target"]["kind"], []).append(like["target"]["id"])
    found: Dict[ObjectId, Dict[str, Any]] = {}
    for kind, ids in ids_by_kind.items():
        query: Dict[str, Any] = {"_id": {"$in": ids}}
        if LIKES[kind].soft_deleted_target:
            query.update(NOT_DELETED)
        for doc in db[kind].find(query, TARGET_FIELDS[kind]):
            found[doc["_id"]] = doc
    return [{**like, "item": found.get(like["target"]["id"])} for like in likes]


# -------------------- Likes --------------------
@router.post("/{kind}/{target_id}")
def toggle_like(kind: LikeKind, target_id: str, user: dict = Depends(get_current_user),
                db: Database = Depends(get_db)):
    rel, tid, target = _target(db, kind, target_id)
    if kind is LikeKind.VIDEO:
        ensure_can_watch(db, target, user)
    result = toggle(db, rel, user["_id"], tid)

    if result.active and result.changed:
        if kind is LikeKind.VIDEO:
            bump_daily(db, tid, "likes")
        if target.get("owner"):
            notify(db, target["owner"], user["_id"], "like", f"{user['username']} liked your {kind.value}",
                   **{kind.value: tid})

    message = f"{rel.label} liked successfully" if result.active else f"{rel.label} unliked successfully"
    return api_response({"liked": result.active, "likes_count": result.count}, message)


@router.get("/user")
def liked_by_me(
    kind: Optional[LikeKind] = None,
    page: Page = Depends(),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    filter_dict: Dict[str, Any] = {"liked_by": user["_id"], "is_deleted": False}
    if kind is not None:
        filter_dict["target.kind"] = kind.value
    likes, total = find_page(db, "like", filter_dict, page, sort=[("created_at", -1), ("_id", -1)])
    return api_response(
        {"likes": [to_str_id(like) for like in _attach_targets(db, likes)]},
        f"{total} liked items found", meta=page.meta(total),
    )


@router.get("/{kind}/{target_id}/count")
def like_count(kind: LikeKind, target_id: str, db: Database = Depends(get_db)):
    rel, tid, _ = _target(db, kind, target_id)
    return api_response({"likes_count": current_count(db, rel, tid)}, "Like count fetched successfully")


@router.get("/{kind}/{target_id}/is-liked")
def is_liked(kind: LikeKind, target_id: str, user: dict = Depends(get_current_user),
             db: Database = Depends(get_db)):
    rel, tid, _ = _target(db, kind, target_id)
    return api_response({"is_liked": is_active(db, rel, user["_id"], tid)}, "Like status fetched successfully")
