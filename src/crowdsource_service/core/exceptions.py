"""Error taxonomy and exception handlers for consistent error responses."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from crowdsource_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from pydantic import ValidationError
    from starlette.types import ExceptionHandler


class ServiceError(Exception):
    """Error carrying an error code, HTTP status and structured details."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any],
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details = details


class SchemaError(ServiceError):
    """Malformed or absent required input."""

    def __init__(self, message: str, violations: list[dict[str, Any]] | None = None) -> None:
        super().__init__("SCHEMA_ERROR", message, 400, {"violations": violations or []})

    @classmethod
    def for_field(
        cls,
        message: str,
        loc: str,
        msg: str,
        error_type: str = "value_error",
    ) -> SchemaError:
        """Build a SchemaError for a single offending field."""
        return cls(message, [{"loc": loc, "msg": msg, "type": error_type}])

    @classmethod
    def from_validation_error(cls, message: str, exc: ValidationError) -> SchemaError:
        """Build a SchemaError listing every violated constraint."""
        violations = [
            {
                "loc": ".".join(str(part) for part in error["loc"]),
                "msg": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        return cls(message, violations)


class InvalidStateError(ServiceError):
    """Operation is not legal for the entity's current state."""

    def __init__(self, message: str) -> None:
        super().__init__("INVALID_STATE", message, 409, {})


class PermissionDeniedError(ServiceError):
    """Authenticated but lacking the role or ownership required."""

    def __init__(self, message: str = "Permission denied") -> None:
        super().__init__("PERMISSION_DENIED", message, 403, {})


class UnauthenticatedError(ServiceError):
    """Missing or invalid credential."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__("UNAUTHENTICATED", message, 401, {})


class NotFoundError(ServiceError):
    """Entity absent or soft-deleted."""

    def __init__(self, message: str) -> None:
        super().__init__("NOT_FOUND", message, 404, {})


class ConfigError(ServiceError):
    """Task-type registry inconsistency."""

    def __init__(self, message: str) -> None:
        super().__init__("CONFIG_ERROR", message, 500, {})


class IdCollisionError(ConfigError):
    """Two enabled task types claim the same id."""


logger = get_logger(__name__)

# Framework-raised HTTP errors (routing misses, wrong methods) in the service envelope.
_HTTP_ERRORS: dict[int, tuple[str, str]] = {
    404: ("NOT_FOUND", "Resource not found"),
    405: ("METHOD_NOT_ALLOWED", "Method not allowed"),
}


def _envelope(
    status_code: int,
    error: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": details or {}},
    )


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Render a ServiceError; 5xx errors are logged as errors, the rest as warnings."""
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        "Service error",
        extra={
            "error_code": exc.error,
            "status_code": exc.status_code,
            "method": request.method,
            "path": request.url.path,
        },
    )
    return _envelope(exc.status_code, exc.error, exc.message, exc.details)


async def unhandled_exception_handler(request: Request, _exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", extra={"path": request.url.path})
    return _envelope(500, "INTERNAL_ERROR", "An unexpected error occurred")


async def http_exception_handler(
    _request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    error, message = _HTTP_ERRORS.get(exc.status_code, ("HTTP_ERROR", str(exc.detail)))
    return _envelope(exc.status_code, error, message)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the app."""
    app.add_exception_handler(ServiceError, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(
        StarletteHTTPException,
        cast("ExceptionHandler", http_exception_handler),
    )
    app.add_exception_handler(Exception, unhandled_exception_handler)
