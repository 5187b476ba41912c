import structlog
from fastapi import APIRouter, Depends
from pymongo.database import Database

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
from responses import BadRequest, Page, api_response
from schemas import Post, PostRequest
from security import get_current_user

router = APIRouter(prefix="/posts", tags=["Posts"])
logger = structlog.get_logger(__name__)


def _clean(content: str) -> str:
    content = content.strip()
    if not content:
        raise BadRequest("Post content is required")
    return content


def _post_out(db: Database, post: dict) -> dict:
    return to_str_id(attach_users(db, [post])[0])


# -------------------- Posts --------------------
@router.get("")
def post_feed(page: Page = Depends(), db: Database = Depends(get_db)):
    posts, total = find_page(db, "post", dict(NOT_DELETED), page, sort=[("created_at", -1), ("_id", -1)])
    posts = attach_users(db, posts)
    return api_response({"posts": [to_str_id(p) for p in posts]}, f"{total} posts found", meta=page.meta(total))


@router.get("/users/{user_id}")
def user_posts(user_id: str, page: Page = Depends(), db: Database = Depends(get_db)):
    uid = objid(user_id, "user id")
    get_or_404(db, "user", uid, "User", projection={"_id": 1})
    posts, total = find_page(db, "post", {"owner": uid, **NOT_DELETED}, page, sort=[("created_at", -1), ("_id", -1)])
    posts = attach_users(db, posts)
    return api_response({"posts": [to_str_id(p) for p in posts]}, f"{total} posts found", meta=page.meta(total))


@router.get("/{post_id}")
def get_post(post_id: str, db: Database = Depends(get_db)):
    post = get_or_404(db, "post", objid(post_id, "post id"), "Post", extra=NOT_DELETED)
    return api_response({"post": _post_out(db, post)}, "Post fetched successfully")


@router.post("")
def create_post(payload: PostRequest, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    doc = create_document(db, "post", Post(owner=user["_id"], content=_clean(payload.content)))
    logger.info("post created", post_id=str(doc["_id"]), user_id=str(user["_id"]))
    return api_response({"post": _post_out(db, doc)}, "Post created successfully", 201)


@router.patch("/{post_id}")
def update_post(post_id: str, payload: PostRequest, user: dict = Depends(get_current_user),
                db: Database = Depends(get_db)):
    pid = objid(post_id, "post id")
    get_owned(db, "post", pid, user, "Post", extra=NOT_DELETED)
    db["post"].update_one({"_id": pid}, {"$set": {"content": _clean(payload.content), "updated_at": utcnow()}})
    logger.info("post updated", post_id=post_id, user_id=str(user["_id"]))
    return api_response({"post": _post_out(db, db["post"].find_one({"_id": pid}))}, "Post updated successfully")


@router.delete("/{post_id}")
def delete_post(post_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    pid = objid(post_id, "post id")
    get_owned(db, "post", pid, user, "Post", extra=NOT_DELETED)
    now = utcnow()
    db["post"].update_one({"_id": pid}, {"$set": {"is_deleted": True, "deleted_at": now, "updated_at": now}})
    logger.info("post deleted", post_id=post_id, user_id=str(user["_id"]))
    return api_response({}, "Post deleted successfully")
