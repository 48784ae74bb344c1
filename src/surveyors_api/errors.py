"""
Error taxonomy and the centralized translator.

Services and dependencies raise AppError tagged with an ErrorKind. The
handlers registered here turn AppError, request validation failures,
psycopg2 errors, unmatched routes and unexpected exceptions into one JSON
shape: {message, code, timestamp, path}. Stack detail is added outside
production.
"""
import logging
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.pool import PoolError
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.surveyors_api.config import Settings

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    VALIDATION = (400, "VALIDATION_ERROR", "Validation failed")
    UNAUTHORIZED = (401, "UNAUTHORIZED", "Unauthorized access")
    FORBIDDEN = (403, "FORBIDDEN", "Access forbidden")
    NOT_FOUND = (404, "NOT_FOUND", "Resource not found")
    CONFLICT = (409, "CONFLICT", "Resource conflict")
    SERVER_ERROR = (500, "INTERNAL_ERROR", "Internal server error")
    SERVICE_UNAVAILABLE = (503, "SERVICE_UNAVAILABLE", "Service unavailable")

    def __init__(self, status_code: int, code: str, default_message: str) -> None:
        self.status_code = status_code
        self.code = code
        self.default_message = default_message


class AppError(Exception):
    """Application error carrying its kind, a client-safe message and an optional code override."""

    def __init__(
        self,
        kind: ErrorKind,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        self.kind = kind
        self.message = message or kind.default_message
        self.code = code or kind.code
        self.errors = errors
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.kind.status_code


# Most specific first; isinstance order matters for the psycopg2 hierarchy.
_STORE_ERRORS: Tuple[Tuple[type, ErrorKind, str, str], ...] = (
    (pg_errors.UniqueViolation, ErrorKind.CONFLICT, "DUPLICATE_ENTRY", "Resource already exists"),
    (pg_errors.ForeignKeyViolation, ErrorKind.VALIDATION, "FOREIGN_KEY_ERROR", "Referenced resource does not exist"),
    (pg_errors.NotNullViolation, ErrorKind.VALIDATION, "CONSTRAINT_VIOLATION", "A required value is missing"),
    (pg_errors.CheckViolation, ErrorKind.VALIDATION, "CONSTRAINT_VIOLATION", "A value is outside the allowed range"),
    (pg_errors.StringDataRightTruncation, ErrorKind.VALIDATION, "VALUE_TOO_LONG", "A value is too long for its field"),
    (pg_errors.InsufficientPrivilege, ErrorKind.SERVICE_UNAVAILABLE, "DATABASE_ACCESS_ERROR", "Database access denied"),
    (pg_errors.InvalidAuthorizationSpecification, ErrorKind.SERVICE_UNAVAILABLE, "DATABASE_ACCESS_ERROR", "Database access denied"),
    (pg_errors.InvalidPassword, ErrorKind.SERVICE_UNAVAILABLE, "DATABASE_ACCESS_ERROR", "Database access denied"),
    (psycopg2.OperationalError, ErrorKind.SERVICE_UNAVAILABLE, "DATABASE_CONNECTION_ERROR", "Database connection failed"),
    (PoolError, ErrorKind.SERVICE_UNAVAILABLE, "DATABASE_CONNECTION_ERROR", "Database connection failed"),
)


# PUBLIC_INTERFACE
def classify_store_error(exc: Exception) -> AppError:
    """Map a psycopg2 (or pool) error onto the application taxonomy."""
    for error_type, kind, code, message in _STORE_ERRORS:
        if isinstance(exc, error_type):
            return AppError(kind, message, code=code)
    return AppError(ErrorKind.SERVER_ERROR)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_body(request: Request, message: str, code: str) -> Dict[str, Any]:
    return {
        "message": message,
        "code": code,
        "timestamp": _timestamp(),
        "path": request.url.path,
    }


def _debug_fields(exc: BaseException) -> Dict[str, Any]:
    return {
        "details": str(exc),
        "stack": traceback.format_exception(type(exc), exc, exc.__traceback__),
    }


def _validation_items(exc: RequestValidationError) -> List[Dict[str, Any]]:
    items = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "path", "query")]
        field = ".".join(loc) or "body"
        message = str(err.get("msg", "Invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        value = err.get("input")
        # Passwords never leave the server, not even in an error echo.
        if "password" in field.lower() or isinstance(value, dict):
            value = None
        items.append({"field": field, "message": message, "value": jsonable_encoder(value)})
    return items


# PUBLIC_INTERFACE
def register_error_handlers(app: FastAPI, settings: Settings) -> None:
    """Install the translator for every error the API can surface."""

    def _respond(request: Request, error: AppError, cause: BaseException) -> JSONResponse:
        log_level = logging.ERROR if error.status_code >= 500 else logging.WARNING
        logger.log(
            log_level,
            "%s %s -> %d %s: %s",
            request.method,
            request.url.path,
            error.status_code,
            error.code,
            cause,
            exc_info=cause if error.status_code >= 500 else None,
        )
        body = _error_body(request, error.message, error.code)
        if error.errors:
            body["errors"] = error.errors
        if not settings.is_production:
            body.update(_debug_fields(cause))
        return JSONResponse(status_code=error.status_code, content=body)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return _respond(request, exc, exc)

    @app.exception_handler(psycopg2.Error)
    async def store_error_handler(request: Request, exc: psycopg2.Error) -> JSONResponse:
        return _respond(request, classify_store_error(exc), exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        items = _validation_items(exc)
        logger.info("%s %s -> 400 validation failed on %s", request.method, request.url.path,
                    ", ".join(item["field"] for item in items))
        return JSONResponse(status_code=400, content={"message": "Validation failed", "errors": items})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            return JSONResponse(
                status_code=404,
                content={
                    "message": "Route not found",
                    "code": "ROUTE_NOT_FOUND",
                    "path": request.url.path,
                    "method": request.method,
                    "timestamp": _timestamp(),
                },
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, str(exc.detail), "HTTP_ERROR"),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        return _respond(request, AppError(ErrorKind.SERVER_ERROR), exc)
