import os
import tempfile

# Must be in place before the app reads its settings.
os.environ["VIDSHARE_BCRYPT_ROUNDS"] = "4"
os.environ["VIDSHARE_UPLOAD_DIR"] = tempfile.mkdtemp(prefix="vidshare-uploads-")
os.environ["VIDSHARE_LOG_LEVEL"] = "WARNING"

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import get_settings
from database import create_document, ensure_indexes, get_db, utcnow
from schemas import Video, User
from security import _pwd_context, create_access_token, hash_password

get_settings.cache_clear()
_pwd_context.cache_clear()

from main import app  # noqa: E402

PASSWORD = "password123"
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture
def db():
    database = mongomock.MongoClient()["vidshare_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(username="alice", **fields):
        user = User(
            username=username,
            email=fields.pop("email", f"{username}@example.com"),
            full_name=fields.pop("full_name", username.capitalize()),
            avatar=fields.pop("avatar", "/static/avatars/default.png"),
            password_hash=hash_password(fields.pop("password", PASSWORD)),
            **fields,
        )
        return create_document(db, "user", user)
    return _make


@pytest.fixture
def make_video(db):
    def _make(owner, title="A video", is_published=True, **fields):
        video = Video(
            owner=owner["_id"],
            video_file="/static/videos/sample.mp4",
            title=title,
            is_published=is_published,
            published_at=utcnow() if is_published else None,
            **fields,
        )
        return create_document(db, "video", video)
    return _make


def auth(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


def data(response):
    return response.json()["data"]
