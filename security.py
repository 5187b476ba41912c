"""
Password hashing, signed tokens and the current-user dependencies.

Access tokens are read from the Authorization bearer header first, then from
the access_token cookie.
"""
from datetime import timedelta
from functools import lru_cache
from typing import Any, Dict, Optional

import jwt
from bson import ObjectId
from fastapi import Cookie, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pymongo.database import Database

from config import get_settings
from database import get_db, utcnow
from responses import Unauthorized

bearer_scheme = HTTPBearer(auto_error=False)

ACCESS = "access"
REFRESH = "refresh"

# Fields never sent to clients.
PRIVATE_USER_FIELDS = {"password_hash": 0, "refresh_token": 0}


@lru_cache()
def _pwd_context() -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=get_settings().bcrypt_rounds)


def hash_password(password: str) -> str:
    return _pwd_context().hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return _pwd_context().verify(password, hashed)


def create_access_token(user: Dict[str, Any]) -> str:
    settings = get_settings()
    payload = {
        "sub": str(user["_id"]),
        "username": user.get("username"),
        "email": user.get("email"),
        "type": ACCESS,
        "exp": utcnow() + timedelta(minutes=settings.access_token_expire_minutes),
    }
    return jwt.encode(payload, settings.access_token_secret, algorithm=settings.token_algorithm)


def create_refresh_token(user: Dict[str, Any]) -> str:
    settings = get_settings()
    payload = {
        "sub": str(user["_id"]),
        "type": REFRESH,
        # jti keeps tokens minted within the same second distinct
        "jti": str(ObjectId()),
        "exp": utcnow() + timedelta(days=settings.refresh_token_expire_days),
    }
    return jwt.encode(payload, settings.refresh_token_secret, algorithm=settings.token_algorithm)


def decode_token(token: str, token_type: str = ACCESS) -> ObjectId:
    """Return the user id in a valid token of the given type, else raise Unauthorized."""
    settings = get_settings()
    secret = settings.access_token_secret if token_type == ACCESS else settings.refresh_token_secret
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.token_algorithm])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token has expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")
    sub = payload.get("sub")
    if payload.get("type") != token_type or not sub or not ObjectId.is_valid(sub):
        raise Unauthorized("Invalid token")
    return ObjectId(sub)


def issue_tokens(db: Database, user: Dict[str, Any], rotate_from: Optional[str] = None) -> Dict[str, str]:
    """Mint a new token pair and store the refresh token, replacing any previous one.

    With rotate_from, the swap only happens if that token is still the stored
    one, so a refresh token can be redeemed once.
    """
    access_token = create_access_token(user)
    refresh_token = create_refresh_token(user)
    query: Dict[str, Any] = {"_id": user["_id"]}
    if rotate_from is not None:
        query["refresh_token"] = rotate_from
    result = db["user"].update_one(query, {"$set": {"refresh_token": refresh_token, "updated_at": utcnow()}})
    if not result.matched_count:
        raise Unauthorized("Invalid or expired refresh token")
    return {"access_token": access_token, "refresh_token": refresh_token}


def _token_from_request(credentials: Optional[HTTPAuthorizationCredentials], cookie_token: Optional[str]) -> Optional[str]:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return cookie_token or None


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    access_token: Optional[str] = Cookie(default=None),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    token = _token_from_request(credentials, access_token)
    if not token:
        raise Unauthorized("Authentication required")
    user_id = decode_token(token, ACCESS)
    user = db["user"].find_one({"_id": user_id}, PRIVATE_USER_FIELDS)
    if not user:
        raise Unauthorized("User no longer exists")
    return user


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    access_token: Optional[str] = Cookie(default=None),
    db: Database = Depends(get_db),
) -> Optional[Dict[str, Any]]:
    """Like get_current_user, but anonymous callers get None. A bad token is still rejected."""
    token = _token_from_request(credentials, access_token)
    if not token:
        return None
    user_id = decode_token(token, ACCESS)
    return db["user"].find_one({"_id": user_id}, PRIVATE_USER_FIELDS)
