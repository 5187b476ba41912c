"""
MongoDB access: client, per-request database handle, indexes and document helpers.

Each Pydantic model in schemas.py maps to a collection named after the
lowercased class name (User -> "user", Video -> "video", ...).
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import structlog
from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import get_settings
from responses import BadRequest, Forbidden, NotFound

logger = structlog.get_logger(__name__)

_client: Optional[MongoClient] = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        settings = get_settings()
        _client = MongoClient(settings.database_url, serverSelectionTimeoutMS=settings.database_timeout_ms)
    return _client


def get_db() -> Database:
    """FastAPI dependency returning the application database."""
    return get_client()[get_settings().database_name]


def close_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("username", unique=True)
    db["user"].create_index("email", unique=True)
    db["user"].create_index([("subscribers_count", DESCENDING)])

    db["video"].create_index([("owner", ASCENDING), ("created_at", DESCENDING)])
    db["video"].create_index([("is_published", ASCENDING), ("published_at", DESCENDING)])
    db["video"].create_index([("category", ASCENDING), ("created_at", DESCENDING)])
    db["video"].create_index([("tags", ASCENDING)])

    # Only one active like / subscription per (actor, target); soft-deleted rows are kept.
    db["like"].create_index(
        [("liked_by", ASCENDING), ("target.kind", ASCENDING), ("target.id", ASCENDING)],
        unique=True, partialFilterExpression={"is_deleted": False},
    )
    db["like"].create_index([("target.kind", ASCENDING), ("target.id", ASCENDING)])
    db["subscription"].create_index(
        [("subscriber", ASCENDING), ("channel", ASCENDING)],
        unique=True, partialFilterExpression={"is_deleted": False},
    )
    db["subscription"].create_index([("channel", ASCENDING), ("is_deleted", ASCENDING)])

    # A view is keyed by the authenticated viewer or, for anonymous traffic, the IP.
    db["view"].create_index(
        [("video", ASCENDING), ("viewer", ASCENDING)],
        unique=True, partialFilterExpression={"viewer": {"$type": "objectId"}},
    )
    db["view"].create_index(
        [("video", ASCENDING), ("ip_address", ASCENDING)],
        unique=True, partialFilterExpression={"ip_address": {"$type": "string"}},
    )

    db["comment"].create_index([("target.kind", ASCENDING), ("target.id", ASCENDING), ("created_at", DESCENDING)])
    db["comment"].create_index([("parent_comment", ASCENDING), ("created_at", DESCENDING)])
    db["post"].create_index([("owner", ASCENDING), ("created_at", DESCENDING)])
    db["playlist"].create_index([("owner", ASCENDING), ("is_public", ASCENDING), ("created_at", DESCENDING)])
    db["notification"].create_index([("user", ASCENDING), ("is_read", ASCENDING), ("created_at", DESCENDING)])
    db["tag"].create_index("name", unique=True)
    db["analytics"].create_index([("video", ASCENDING), ("date", ASCENDING)], unique=True)
    logger.info("indexes ensured", database=db.name)


# -------------------- Helpers --------------------
def utcnow() -> datetime:
    # Naive UTC, the form pymongo hands back on reads.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def objid(id_str: Any, label: str = "id") -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    if not isinstance(id_str, str) or not ObjectId.is_valid(id_str):
        raise BadRequest(f"Invalid {label}")
    return ObjectId(id_str)


def _plain(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return to_str_id(value)
    return value


def to_str_id(doc):
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        d[k] = _plain(v)
    return d


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Insert a document stamped with created_at/updated_at and return it with its _id."""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    doc["_id"] = db[collection_name].insert_one(doc).inserted_id
    return doc


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[Sequence[Tuple[str, int]]] = None,
    skip: int = 0,
    limit: int = 0,
    projection: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(list(sort))
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def find_page(db: Database, collection_name: str, filter_dict: Dict[str, Any], page,
              sort: Optional[Sequence[Tuple[str, int]]] = None,
              projection: Optional[Dict[str, Any]] = None) -> Tuple[List[Dict[str, Any]], int]:
    """One page of documents plus the total matching count."""
    items = get_documents(db, collection_name, filter_dict, sort=sort or [("created_at", DESCENDING)],
                          skip=page.skip, limit=page.limit, projection=projection)
    total = db[collection_name].count_documents(filter_dict)
    return items, total


USER_PUBLIC_FIELDS = {"username": 1, "full_name": 1, "avatar": 1}


def attach_users(db: Database, docs: List[Dict[str, Any]], field: str = "owner",
                 projection: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Replace each doc's user reference in `field` with a small user summary."""
    ids = {d.get(field) for d in docs if isinstance(d.get(field), ObjectId)}
    users = {}
    if ids:
        for u in db["user"].find({"_id": {"$in": list(ids)}}, projection or USER_PUBLIC_FIELDS):
            users[u["_id"]] = u
    out = []
    for d in docs:
        item = {**d}
        ref = d.get(field)
        if isinstance(ref, ObjectId):
            item[field] = users.get(ref) or {"_id": ref}
        out.append(item)
    return out


NOT_DELETED = {"is_deleted": {"$ne": True}}


def get_or_404(db: Database, collection_name: str, doc_id: ObjectId, label: str,
               extra: Optional[Dict[str, Any]] = None,
               projection: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    doc = db[collection_name].find_one({"_id": doc_id, **(extra or {})}, projection)
    if not doc:
        raise NotFound(f"{label} not found")
    return doc


def get_owned(db: Database, collection_name: str, doc_id: ObjectId, user: Dict[str, Any], label: str,
              extra: Optional[Dict[str, Any]] = None, owner_field: str = "owner") -> Dict[str, Any]:
    """Fetch a document the current user must own: 404 when missing, 403 for anyone else."""
    doc = get_or_404(db, collection_name, doc_id, label, extra)
    if doc.get(owner_field) != user["_id"]:
        raise Forbidden(f"You do not own this {label.lower()}")
    return doc
