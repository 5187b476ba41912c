"""
Join records and the denormalized counters that mirror them.

A like or a subscription is a join record between an actor and a target.
The target carries a counter (likes_count, subscribers_count) that must
equal the number of active join records pointing at it. Every state change
goes through a single atomic write on the join collection:

* activate   - upsert of the active row; only the call that inserted it increments
* deactivate - find_one_and_update flipping the active row to deleted; only the
               call that flipped it decrements

The partial unique indexes from database.ensure_indexes (one active row per
actor/target) make concurrent activations collapse into one insert. A
DuplicateKeyError from the losing upsert means "already active".

Views are the one-directional variant: a view is inserted once per
(video, viewer) or (video, ip_address) and never removed.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog
from bson import ObjectId
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import utcnow
from responses import Conflict, NotFound
from schemas import Like, LikeKind, Subscription, Target, View

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Relation:
    label: str
    collection: str
    actor_field: str
    target_field: str
    target_collection: str
    counter: str
    build: Callable[[ObjectId, ObjectId], BaseModel]
    kind: Optional[str] = None
    soft_deleted_target: bool = False

    def key(self, actor_id: ObjectId, target_id: ObjectId) -> Dict[str, Any]:
        key = {self.actor_field: actor_id, self.target_field: target_id}
        if self.kind:
            key["target.kind"] = self.kind
        return key

    def active(self, actor_id: ObjectId, target_id: ObjectId) -> Dict[str, Any]:
        return {**self.key(actor_id, target_id), "is_deleted": False}

    def active_for_target(self, target_id: ObjectId) -> Dict[str, Any]:
        query = {self.target_field: target_id, "is_deleted": False}
        if self.kind:
            query["target.kind"] = self.kind
        return query

    def target_query(self, target_id: ObjectId) -> Dict[str, Any]:
        query: Dict[str, Any] = {"_id": target_id}
        if self.soft_deleted_target:
            query["is_deleted"] = {"$ne": True}
        return query


@dataclass
class ToggleResult:
    active: bool
    count: int
    # False when a concurrent caller already made the same change
    changed: bool = True


def _like_row(kind: str) -> Callable[[ObjectId, ObjectId], BaseModel]:
    def build(actor_id: ObjectId, target_id: ObjectId) -> BaseModel:
        return Like(liked_by=actor_id, target=Target(kind=kind, id=target_id))
    return build


LIKES: Dict[str, Relation] = {
    kind.value: Relation(
        label=kind.value.capitalize(),
        collection="like",
        actor_field="liked_by",
        target_field="target.id",
        target_collection=kind.value,
        counter="likes_count",
        build=_like_row(kind.value),
        kind=kind.value,
        soft_deleted_target=kind is not LikeKind.VIDEO,
    )
    for kind in LikeKind
}

SUBSCRIPTIONS = Relation(
    label="Channel",
    collection="subscription",
    actor_field="subscriber",
    target_field="channel",
    target_collection="user",
    counter="subscribers_count",
    build=lambda actor_id, target_id: Subscription(subscriber=actor_id, channel=target_id),
)


# -------------------- Counters --------------------
def adjust_counter(collection: Collection, doc_id: ObjectId, field: str, delta: int) -> int:
    """Apply a signed increment to a counter, never letting it drop below zero. Returns the new value."""
    projection = {field: 1}
    if delta >= 0:
        doc = collection.find_one_and_update(
            {"_id": doc_id}, {"$inc": {field: delta}},
            projection=projection, return_document=ReturnDocument.AFTER,
        )
    else:
        doc = collection.find_one_and_update(
            {"_id": doc_id, field: {"$gte": -delta}}, {"$inc": {field: delta}},
            projection=projection, return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            doc = collection.find_one_and_update(
                {"_id": doc_id, field: {"$lt": -delta}}, {"$set": {field: 0}},
                projection=projection, return_document=ReturnDocument.AFTER,
            )
            if doc is not None:
                logger.warning("counter clamped at zero", collection=collection.name,
                               id=str(doc_id), field=field, delta=delta)
            else:
                doc = collection.find_one({"_id": doc_id}, projection)
    if doc is None:
        return 0
    return doc.get(field, 0)


def current_count(db: Database, rel: Relation, target_id: ObjectId) -> int:
    doc = db[rel.target_collection].find_one({"_id": target_id}, {rel.counter: 1})
    return doc.get(rel.counter, 0) if doc else 0


def recount(db: Database, rel: Relation, target_id: ObjectId) -> int:
    """Recompute a target's counter from its active join rows and store it."""
    n = db[rel.collection].count_documents(rel.active_for_target(target_id))
    db[rel.target_collection].update_one({"_id": target_id}, {"$set": {rel.counter: n}})
    return n


# -------------------- Join records --------------------
def is_active(db: Database, rel: Relation, actor_id: ObjectId, target_id: ObjectId) -> bool:
    return db[rel.collection].count_documents(rel.active(actor_id, target_id), limit=1) > 0


def activate(db: Database, rel: Relation, actor_id: ObjectId, target_id: ObjectId) -> Tuple[bool, int]:
    """Create the active join row if absent. Returns (created, counter)."""
    row = rel.build(actor_id, target_id).model_dump()
    if db[rel.target_collection].count_documents(rel.target_query(target_id), limit=1) == 0:
        raise NotFound(f"{rel.label} not found")

    query = rel.active(actor_id, target_id)
    taken = {k.split(".")[0] for k in query}
    now = utcnow()
    on_insert = {k: v for k, v in row.items() if k not in taken}
    on_insert.update(created_at=now, updated_at=now)
    try:
        result = db[rel.collection].update_one(query, {"$setOnInsert": on_insert}, upsert=True)
        created = result.upserted_id is not None
    except DuplicateKeyError:
        created = False
    if not created:
        return False, current_count(db, rel, target_id)
    return True, adjust_counter(db[rel.target_collection], target_id, rel.counter, 1)


def deactivate(db: Database, rel: Relation, actor_id: ObjectId, target_id: ObjectId) -> Tuple[bool, int]:
    """Soft-delete the active join row if present. Returns (removed, counter)."""
    now = utcnow()
    row = db[rel.collection].find_one_and_update(
        rel.active(actor_id, target_id),
        {"$set": {"is_deleted": True, "deleted_at": now, "updated_at": now}},
    )
    if row is None:
        return False, current_count(db, rel, target_id)
    return True, adjust_counter(db[rel.target_collection], target_id, rel.counter, -1)


def toggle(db: Database, rel: Relation, actor_id: ObjectId, target_id: ObjectId) -> ToggleResult:
    removed, count = deactivate(db, rel, actor_id, target_id)
    if removed:
        result = ToggleResult(active=False, count=count)
    else:
        created, count = activate(db, rel, actor_id, target_id)
        result = ToggleResult(active=True, count=count, changed=created)
    logger.info("toggled", join=rel.collection, kind=rel.kind, actor=str(actor_id),
                target=str(target_id), active=result.active, count=result.count)
    return result


# -------------------- Views --------------------
def log_view(db: Database, video_id: ObjectId, viewer_id: Optional[ObjectId] = None,
             ip_address: Optional[str] = None) -> Tuple[bool, int]:
    """Record a unique view and bump the video's view counter once. Returns (created, views)."""
    row = View(video=video_id, viewer=viewer_id, ip_address=ip_address).model_dump()
    if viewer_id is not None:
        query = {"video": video_id, "viewer": viewer_id}
    else:
        query = {"video": video_id, "ip_address": row["ip_address"]}
    now = utcnow()
    on_insert = {k: v for k, v in row.items() if k not in query}
    on_insert.update(created_at=now, updated_at=now)
    try:
        result = db["view"].update_one(query, {"$setOnInsert": on_insert}, upsert=True)
        created = result.upserted_id is not None
    except DuplicateKeyError:
        created = False

    if not created:
        doc = db["video"].find_one({"_id": video_id}, {"views": 1})
        return False, doc.get("views", 0) if doc else 0
    views = adjust_counter(db["video"], video_id, "views", 1)
    bump_daily(db, video_id, "views")
    logger.info("view logged", video_id=str(video_id),
                viewer=str(viewer_id) if viewer_id else None, ip_address=row["ip_address"])
    return True, views


# -------------------- Analytics --------------------
def today() -> datetime:
    return utcnow().replace(hour=0, minute=0, second=0, microsecond=0)


def bump_daily(db: Database, video_id: ObjectId, field: str, amount: int = 1) -> None:
    """Add to the video's analytics bucket for the current UTC day."""
    now = utcnow()
    query = {"video": video_id, "date": today()}
    update = {
        "$inc": {field: amount},
        "$set": {"updated_at": now},
        "$setOnInsert": {"created_at": now},
    }
    try:
        db["analytics"].update_one(query, update, upsert=True)
    except DuplicateKeyError:
        # Lost the race to create today's bucket; it exists now.
        db["analytics"].update_one(query, {"$inc": {field: amount}, "$set": {"updated_at": now}})


# -------------------- Watch history --------------------
def push_recent(history: List[Any], item: Any, limit: int) -> List[Any]:
    """Move or insert item at the front, drop duplicates and truncate to limit."""
    return ([item] + [h for h in history if h != item])[:limit]


def add_to_watch_history(db: Database, user_id: ObjectId, video_id: ObjectId, limit: int,
                         attempts: int = 5) -> List[ObjectId]:
    users = db["user"]
    for _ in range(attempts):
        user = users.find_one({"_id": user_id}, {"watch_history": 1})
        if user is None:
            raise NotFound("User not found")
        current = user.get("watch_history")
        updated = push_recent(current or [], video_id, limit)
        # Compare-and-set on the array read above.
        guard: Dict[str, Any] = {"_id": user_id}
        guard["watch_history"] = current if current is not None else {"$exists": False}
        result = users.update_one(guard, {"$set": {"watch_history": updated, "updated_at": utcnow()}})
        if result.matched_count:
            return updated
    raise Conflict("Watch history is being updated concurrently, please retry")
