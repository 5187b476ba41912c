from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Body, Cookie, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo.database import Database

import storage
from config import get_settings
from database import create_document, get_db, to_str_id
from responses import BadRequest, Conflict, NotFound, Unauthorized, api_response
from schemas import LoginRequest, RefreshRequest, User
from security import (
    PRIVATE_USER_FIELDS,
    REFRESH,
    decode_token,
    get_current_user,
    hash_password,
    issue_tokens,
    verify_password,
)

router = APIRouter(prefix="/auth", tags=["Auth"])
logger = structlog.get_logger(__name__)


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    d = {k: v for k, v in doc.items() if k not in PRIVATE_USER_FIELDS}
    return to_str_id(d)


def with_token_cookies(response: JSONResponse, tokens: Dict[str, str]) -> JSONResponse:
    secure = get_settings().cookie_secure
    for name in ("access_token", "refresh_token"):
        response.set_cookie(name, tokens[name], httponly=True, secure=secure, samesite="strict")
    return response


# -------------------- Auth --------------------
@router.post("/register")
async def register(
    username: str = Form(...),
    email: str = Form(...),
    full_name: str = Form(...),
    password: str = Form(..., min_length=8),
    avatar: Optional[UploadFile] = File(None),
    cover_image: Optional[UploadFile] = File(None),
    db: Database = Depends(get_db),
):
    username = username.strip().lower()
    email = email.strip().lower()
    if db["user"].find_one({"$or": [{"username": username}, {"email": email}]}, {"_id": 1}):
        raise Conflict("User with this email or username already exists")
    if avatar is None:
        raise BadRequest("Avatar file is required")

    avatar_file = await storage.upload(avatar, "image", "avatars")
    cover_file = await storage.upload(cover_image, "image", "covers") if cover_image is not None else None

    try:
        user = User(
            username=username,
            email=email,
            full_name=full_name,
            avatar=avatar_file.secure_url,
            cover_image=cover_file.secure_url if cover_file else None,
            password_hash=hash_password(password),
        )
    except ValidationError:
        storage.remove(avatar_file.secure_url)
        if cover_file:
            storage.remove(cover_file.secure_url)
        raise

    user_doc = create_document(db, "user", user)
    tokens = issue_tokens(db, user_doc)
    logger.info("user registered", user_id=str(user_doc["_id"]), username=username)
    response = api_response({"user": public_user(user_doc), **tokens}, "User registered successfully", 201)
    return with_token_cookies(response, tokens)


@router.post("/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    query = {}
    if payload.username:
        query["username"] = payload.username.strip().lower()
    if payload.email:
        query["email"] = payload.email.lower()
    user = db["user"].find_one(query)
    if not user:
        raise NotFound("User does not exist")
    if not verify_password(payload.password, user.get("password_hash", "")):
        raise Unauthorized("Invalid credentials")

    tokens = issue_tokens(db, user)
    logger.info("user logged in", user_id=str(user["_id"]))
    response = api_response({"user": public_user(user), **tokens}, "User logged in successfully")
    return with_token_cookies(response, tokens)


@router.post("/logout")
def logout(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    db["user"].update_one({"_id": user["_id"]}, {"$unset": {"refresh_token": ""}})
    response = api_response({}, "User logged out successfully")
    response.delete_cookie("access_token")
    response.delete_cookie("refresh_token")
    logger.info("user logged out", user_id=str(user["_id"]))
    return response


@router.post("/refresh-token")
def refresh_token(
    payload: Optional[RefreshRequest] = Body(None),
    refresh_cookie: Optional[str] = Cookie(default=None, alias="refresh_token"),
    db: Database = Depends(get_db),
):
    incoming = (payload.refresh_token if payload else None) or refresh_cookie
    if not incoming:
        raise BadRequest("Refresh token is required")

    user_id = decode_token(incoming, REFRESH)
    user = db["user"].find_one({"_id": user_id})
    if not user or user.get("refresh_token") != incoming:
        raise Unauthorized("Invalid or expired refresh token")

    tokens = issue_tokens(db, user, rotate_from=incoming)
    logger.info("tokens rotated", user_id=str(user_id))
    return with_token_cookies(api_response(tokens, "Tokens refreshed successfully"), tokens)
