"""
Response envelope and error types.

Every response, success or failure, is rendered as
{statusCode, data, message, success, errors?, meta?}.
"""
import math
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Query
from fastapi.responses import JSONResponse

from config import get_settings


# -------------------- Errors --------------------
class ApiError(HTTPException):
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[str]] = None,
                 status_code: Optional[int] = None):
        code = status_code or type(self).status_code
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(status_code=code, detail=self.message)


class BadRequest(ApiError):
    status_code = 400
    default_message = "Bad request"


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class Conflict(ApiError):
    status_code = 409
    default_message = "Conflict"


class InternalError(ApiError):
    status_code = 500
    default_message = "Internal Server Error"


# -------------------- Envelope --------------------
def envelope(status_code: int, data: Any, message: str, errors: Optional[List[str]] = None,
             meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    errors = errors or []
    body: Dict[str, Any] = {
        "statusCode": status_code,
        "data": data,
        "message": message,
        "success": status_code < 400 and not errors,
    }
    if errors:
        body["errors"] = errors
    if meta:
        body["meta"] = meta
    return body


def api_response(data: Any = None, message: str = "Success", status_code: int = 200,
                 meta: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=envelope(status_code, data, message, meta=meta),
        headers=headers,
    )


def error_response(status_code: int, message: str, errors: Optional[List[str]] = None,
                   headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=envelope(status_code, None, message, errors=errors),
        headers=headers,
    )


# -------------------- Pagination --------------------
class Page:
    """page/limit query parameters, usable as a dependency."""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: Optional[int] = Query(None, ge=1),
    ):
        settings = get_settings()
        self.page = page
        self.limit = min(limit or settings.default_page_size, settings.max_page_size)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def meta(self, total: int) -> Dict[str, Any]:
        return {
            "pagination": {
                "current": self.page,
                "pageSize": self.limit,
                "total": total,
                "totalPages": math.ceil(total / self.limit) if self.limit else 0,
            }
        }
