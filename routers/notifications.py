from typing import Any, Dict, Optional

import structlog
from bson import ObjectId
from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.database import Database

from database import attach_users, create_document, find_page, get_db, objid, to_str_id, utcnow
from responses import NotFound, Page, api_response
from schemas import Notification
from security import get_current_user

router = APIRouter(prefix="/notifications", tags=["Notifications"])
logger = structlog.get_logger(__name__)


def notify(db: Database, user_id: ObjectId, from_user_id: ObjectId, type: str, message: str,
           **refs: Optional[ObjectId]) -> Optional[Dict[str, Any]]:
    """Write a notification for user_id. Nobody is notified about their own actions."""
    if user_id == from_user_id:
        return None
    notification = Notification(user=user_id, from_user=from_user_id, type=type, message=message, **refs)
    doc = create_document(db, "notification", notification)
    logger.info("notification created", user_id=str(user_id), from_user=str(from_user_id), type=type)
    return doc


# -------------------- Notifications --------------------
@router.get("")
def list_notifications(
    is_read: Optional[bool] = None,
    page: Page = Depends(),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    filter_dict: Dict[str, Any] = {"user": user["_id"]}
    if is_read is not None:
        filter_dict["is_read"] = is_read
    items, total = find_page(db, "notification", filter_dict, page, sort=[("created_at", -1), ("_id", -1)])
    unread = db["notification"].count_documents({"user": user["_id"], "is_read": False})
    items = attach_users(db, items, field="from_user")
    return api_response(
        {"notifications": [to_str_id(n) for n in items], "unread_count": unread},
        "Notifications fetched successfully", meta=page.meta(total),
    )


@router.patch("/all/read")
def mark_all_read(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    result = db["notification"].update_many(
        {"user": user["_id"], "is_read": False},
        {"$set": {"is_read": True, "updated_at": utcnow()}},
    )
    logger.info("notifications marked read", user_id=str(user["_id"]), count=result.modified_count)
    return api_response({"modified_count": result.modified_count}, "All notifications marked as read")


@router.post("/{notification_id}/read")
def mark_read(notification_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    nid = objid(notification_id, "notification id")
    doc = db["notification"].find_one_and_update(
        {"_id": nid, "user": user["_id"]},
        {"$set": {"is_read": True, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise NotFound("Notification not found")
    return api_response({"notification": to_str_id(doc)}, "Notification marked as read")


@router.delete("/{notification_id}")
def delete_notification(notification_id: str, user: dict = Depends(get_current_user),
                        db: Database = Depends(get_db)):
    nid = objid(notification_id, "notification id")
    result = db["notification"].delete_one({"_id": nid, "user": user["_id"]})
    if not result.deleted_count:
        raise NotFound("Notification not found")
    logger.info("notification deleted", notification_id=notification_id, user_id=str(user["_id"]))
    return api_response({}, "Notification deleted successfully")
