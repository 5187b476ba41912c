"""
Upload storage on the local disk, served back through the static mount.

upload(file, kind, folder) -> StoredFile(secure_url, duration)
"""
import os
from dataclasses import dataclass
from typing import Optional

import structlog
from bson import ObjectId
from fastapi import UploadFile

from config import get_settings
from responses import BadRequest, InternalError

logger = structlog.get_logger(__name__)

DEFAULT_EXT = {"video": ".mp4", "image": ".jpg"}


@dataclass
class StoredFile:
    secure_url: str
    path: str
    size: int
    duration: Optional[float] = None


def upload_root() -> str:
    root = os.path.abspath(get_settings().upload_dir)
    os.makedirs(root, exist_ok=True)
    return root


async def upload(file: UploadFile, kind: str, folder: str) -> StoredFile:
    """Persist an uploaded file under <upload_dir>/<folder>/ and return its public URL."""
    if file.content_type is None or not file.content_type.startswith(f"{kind}/"):
        raise BadRequest(f"Only {kind} files are allowed for {folder}")

    ext = os.path.splitext(file.filename or "")[1] or DEFAULT_EXT.get(kind, "")
    name = f"{ObjectId()}{ext}"
    directory = os.path.join(upload_root(), folder)
    destination = os.path.join(directory, name)

    content = await file.read()
    if not content:
        raise BadRequest(f"Uploaded {kind} file is empty")
    try:
        os.makedirs(directory, exist_ok=True)
        with open(destination, "wb") as f:
            f.write(content)
    except OSError as e:
        logger.error("upload failed", folder=folder, error=str(e))
        raise InternalError(f"Failed to upload {kind}")

    url = f"{get_settings().static_url}/{folder}/{name}"
    logger.info("file stored", url=url, size=len(content))
    return StoredFile(secure_url=url, path=destination, size=len(content))


def remove(url: Optional[str]) -> bool:
    """Delete a previously stored file given its public URL. Returns whether a file was removed."""
    prefix = get_settings().static_url.rstrip("/") + "/"
    if not url or not url.startswith(prefix):
        return False
    path = os.path.join(upload_root(), *url[len(prefix):].split("/"))
    if not os.path.isfile(path):
        return False
    try:
        os.remove(path)
    except OSError as e:
        logger.warning("could not remove stored file", path=path, error=str(e))
        return False
    return True
