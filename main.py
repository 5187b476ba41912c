import logging
import os
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from database import close_client, ensure_indexes, get_db
from responses import ApiError, api_response, error_response
from routers import (
    analytics,
    auth,
    comments,
    health,
    likes,
    notifications,
    playlists,
    posts,
    subscriptions,
    tags,
    users,
    videos,
    views,
    watch_history,
)
from storage import upload_root

settings = get_settings()

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(settings.log_level.upper())),
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = app.dependency_overrides.get(get_db, get_db)()
    ensure_indexes(db)
    logger.info("startup", app=settings.app_name, version=settings.app_version, database=db.name)
    yield
    close_client()
    logger.info("shutdown")


app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Uploaded files are served back from the upload directory
app.mount(settings.static_url, StaticFiles(directory=upload_root()), name="static")


# -------------------- Errors --------------------
def _field_errors(errors) -> list:
    out = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form"))
        msg = err.get("msg", "Invalid value").replace("Value error, ", "", 1)
        out.append(f"{loc}: {msg}" if loc else msg)
    return out


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc, ApiError):
        return error_response(exc.status_code, exc.message, exc.errors, headers=exc.headers)
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc):
    errors = exc.errors()
    message = errors[0].get("msg", "Validation failed").replace("Value error, ", "", 1) if errors else "Validation failed"
    return error_response(400, message, _field_errors(errors))


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    logger.warning("duplicate key", path=request.url.path, error=str(exc))
    return error_response(409, "Resource already exists")


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.exception("database error", path=request.url.path)
    return error_response(500, "Database error")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled error", path=request.url.path)
    return error_response(500, "Internal Server Error")


# -------------------- Routes --------------------
for module in (
    health,
    auth,
    users,
    videos,
    likes,
    subscriptions,
    views,
    comments,
    posts,
    playlists,
    tags,
    notifications,
    watch_history,
    analytics,
):
    app.include_router(module.router, prefix=settings.api_prefix)


@app.get("/")
def read_root():
    return api_response({"name": settings.app_name, "version": settings.app_version}, "Video sharing backend is running")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
