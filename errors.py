"""
Error shaping for the Book Club API.

Request-shape failures (pydantic) and business-rule violations raised by the
workflows share one body so clients can render them the same way::

    {"message": "Validation error", "errors": [{"msg": ..., "param": ..., "location": ...}]}
"""
import logging
import re
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("bookclub.errors")

_REQUEST_LOCATIONS = {"body", "query", "path", "header", "cookie"}
_INDEX_NAME = re.compile(r"index: (\w+?)_-?1\b")


class ValidationFailed(HTTPException):
    """A business rule rejected the request; reported like a field validation error."""

    def __init__(self, param: str, msg: str, location: str = "body"):
        super().__init__(status_code=400, detail=msg)
        self.errors = [{"msg": msg, "param": param, "location": location}]


def validation_body(errors: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"message": "Validation error", "errors": errors}


def _request_error_item(error: Dict[str, Any]) -> Dict[str, Any]:
    loc = list(error.get("loc") or [])
    location = "body"
    if loc and loc[0] in _REQUEST_LOCATIONS:
        location = loc.pop(0)
    param = ".".join(str(part) for part in loc) or location
    return {"msg": error.get("msg", "Invalid value"), "param": param, "location": location}


def duplicate_key_field(exc: DuplicateKeyError) -> Optional[str]:
    details = exc.details or {}
    key_pattern = details.get("keyPattern") or details.get("keyValue")
    if key_pattern:
        return next(iter(key_pattern))
    match = _INDEX_NAME.search(str(exc))
    return match.group(1) if match else None


def install_error_handlers(app: FastAPI, hide_details: bool) -> None:
    @app.exception_handler(ValidationFailed)
    async def business_rule_handler(request: Request, exc: ValidationFailed):
        logger.info(f"Rejected {request.method} {request.url.path}: {exc.errors[0]['param']}")
        return JSONResponse(status_code=exc.status_code, content=validation_body(exc.errors))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [_request_error_item(e) for e in exc.errors()]
        return JSONResponse(status_code=400, content=validation_body(errors))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail
        if exc.status_code == 404 and message == "Not Found":
            message = "Route not found"
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": message},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(DuplicateKeyError)
    async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
        field = duplicate_key_field(exc)
        msg = f"{field} already exists" if field else "Duplicate value violates a unique constraint"
        return JSONResponse(
            status_code=400,
            content=validation_body([{"msg": msg, "param": field or "body", "location": "body"}]),
        )

    @app.exception_handler(Exception)
    async def server_error_handler(request: Request, exc: Exception):
        # Starlette re-raises after this handler, so the server logs the traceback.
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc!r}")
        content: Dict[str, Any] = {"message": "Internal server error"}
        if not hide_details:
            content["details"] = str(exc) or "Unexpected error"
        return JSONResponse(status_code=500, content=content)
