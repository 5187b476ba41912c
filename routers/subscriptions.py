import structlog
from fastapi import APIRouter, Depends
from pymongo.database import Database

from counters import SUBSCRIPTIONS, activate, current_count, deactivate, is_active, toggle
from database import USER_PUBLIC_FIELDS, attach_users, find_page, get_db, get_or_404, objid, to_str_id
from responses import Conflict, NotFound, Page, api_response
from routers.notifications import notify
from routers.videos import video_summaries
from schemas import SubscribeRequest
from security import get_current_user

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])
logger = structlog.get_logger(__name__)

CHANNEL_FIELDS = {**USER_PUBLIC_FIELDS, "subscribers_count": 1}


def _notify_subscribed(db: Database, user: dict, channel_id) -> None:
    notify(db, channel_id, user["_id"], "subscription", f"{user['username']} subscribed to your channel")


# -------------------- Subscribe --------------------
@router.post("")
def subscribe(payload: SubscribeRequest, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cid = objid(payload.channel_id, "channel id")
    created, count = activate(db, SUBSCRIPTIONS, user["_id"], cid)
    if not created:
        raise Conflict("Already subscribed to this channel")
    _notify_subscribed(db, user, cid)
    logger.info("subscribed", user_id=str(user["_id"]), channel_id=str(cid))
    return api_response({"is_subscribed": True, "subscribers_count": count}, "Subscribed successfully", 201)


@router.delete("/{channel_id}")
def unsubscribe(channel_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cid = objid(channel_id, "channel id")
    SUBSCRIPTIONS.build(user["_id"], cid)  # rejects self-subscription
    removed, count = deactivate(db, SUBSCRIPTIONS, user["_id"], cid)
    if not removed:
        raise NotFound("Not subscribed to this channel")
    logger.info("unsubscribed", user_id=str(user["_id"]), channel_id=str(cid))
    return api_response({"is_subscribed": False, "subscribers_count": count}, "Unsubscribed successfully")


@router.post("/toggle/{channel_id}")
def toggle_subscription(channel_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cid = objid(channel_id, "channel id")
    result = toggle(db, SUBSCRIPTIONS, user["_id"], cid)
    if result.active and result.changed:
        _notify_subscribed(db, user, cid)
    channel = db["user"].find_one({"_id": cid}, CHANNEL_FIELDS)
    message = "Subscribed successfully" if result.active else "Unsubscribed successfully"
    return api_response(
        {"is_subscribed": result.active, "subscribers_count": result.count, "channel": to_str_id(channel)},
        message,
    )


# -------------------- Reads --------------------
@router.get("")
def my_subscriptions(page: Page = Depends(), user: dict = Depends(get_current_user),
                     db: Database = Depends(get_db)):
    rows, total = find_page(db, "subscription", {"subscriber": user["_id"], "is_deleted": False}, page)
    rows = attach_users(db, rows, field="channel", projection=CHANNEL_FIELDS)
    return api_response({"subscriptions": [to_str_id(r) for r in rows]},
                        f"{total} subscriptions found", meta=page.meta(total))


@router.get("/is-subscribed/{channel_id}")
def is_subscribed(channel_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cid = objid(channel_id, "channel id")
    return api_response({"is_subscribed": is_active(db, SUBSCRIPTIONS, user["_id"], cid)},
                        "Subscription status fetched successfully")


@router.get("/feed")
def subscription_feed(page: Page = Depends(), user: dict = Depends(get_current_user),
                      db: Database = Depends(get_db)):
    channel_ids = db["subscription"].distinct("channel", {"subscriber": user["_id"], "is_deleted": False})
    videos, total = find_page(db, "video", {"owner": {"$in": channel_ids}, "is_published": True}, page,
                              sort=[("published_at", -1), ("_id", -1)])
    return api_response({"videos": video_summaries(db, videos)}, f"{total} videos found", meta=page.meta(total))


@router.get("/users/{user_id}/subscribers")
def channel_subscribers(user_id: str, page: Page = Depends(), db: Database = Depends(get_db)):
    uid = objid(user_id, "user id")
    get_or_404(db, "user", uid, "User", projection={"_id": 1})
    rows, total = find_page(db, "subscription", {"channel": uid, "is_deleted": False}, page)
    rows = attach_users(db, rows, field="subscriber")
    return api_response({"subscribers": [to_str_id(r) for r in rows]},
                        f"{total} subscribers found", meta=page.meta(total))


@router.get("/users/{user_id}/subscribers/count")
def channel_subscriber_count(user_id: str, db: Database = Depends(get_db)):
    uid = objid(user_id, "user id")
    get_or_404(db, "user", uid, "User", projection={"_id": 1})
    return api_response({"subscribers_count": current_count(db, SUBSCRIPTIONS, uid)},
                        "Subscriber count fetched successfully")
