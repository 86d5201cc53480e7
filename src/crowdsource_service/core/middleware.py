"""ASGI middleware for request validation."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

JSON = "application/json"
MULTIPART = "multipart/form-data"

_JSON_ONLY: tuple[str, ...] = (JSON,)
_JSON_OR_UPLOAD: tuple[str, ...] = (JSON, MULTIPART)

# (method, path pattern) -> accepted media types
_ROUTES: tuple[tuple[str, re.Pattern[str], tuple[str, ...]], ...] = (
    ("POST", re.compile(r"^/tasks$"), _JSON_OR_UPLOAD),
    ("PATCH", re.compile(r"^/tasks/[^/]+$"), _JSON_OR_UPLOAD),
    ("POST", re.compile(r"^/tasks/[^/]+/data$"), _JSON_OR_UPLOAD),
    ("POST", re.compile(r"^/assignments$"), _JSON_ONLY),
    ("PATCH", re.compile(r"^/assignments/[^/]+$"), _JSON_ONLY),
    ("POST", re.compile(r"^/assignments/[^/]+/data$"), _JSON_OR_UPLOAD),
    ("PATCH", re.compile(r"^/task-types/[^/]+$"), _JSON_ONLY),
)


class _BodyTooLarge(Exception):
    pass


def _accepted_types(method: str, path: str) -> tuple[str, ...] | None:
    for route_method, pattern, accepted in _ROUTES:
        if route_method == method and pattern.match(path) is not None:
            return accepted
    return None


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": {}},
    )


def _too_large() -> JSONResponse:
    return _error(413, "PAYLOAD_TOO_LARGE", "Request body exceeds maximum allowed size")


async def _read_body(receive: Receive, limit: int) -> bytes:
    body = bytearray()
    while True:
        message = await receive()
        body += cast("bytes", message.get("body", b""))
        if len(body) > limit:
            raise _BodyTooLarge
        if not message.get("more_body", False):
            return bytes(body)


class RequestValidationMiddleware:
    """
    Validates Content-Type and JSON body size before routing.

    Only the mutating endpoints listed in ``_ROUTES`` are checked; anything
    else falls through so the router can answer 404 or 405. A media type
    outside the route's accepted list is a 415.

    JSON bodies are buffered up to ``max_body_size`` (413 beyond it) and
    replayed downstream. Multipart bodies pass through untouched; each
    uploaded file is checked against the upload limit when it is read.
    """

    def __init__(self, app: ASGIApp, max_body_size: int) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        accepted = _accepted_types(
            cast("str", scope.get("method", "GET")), cast("str", scope.get("path", ""))
        )
        if accepted is None:
            await self.app(scope, receive, send)
            return

        headers: dict[bytes, bytes] = dict(cast("list[tuple[bytes, bytes]]", scope["headers"]))
        media_type = headers.get(b"content-type", b"").decode("latin-1").split(";")[0]
        media_type = media_type.strip().lower()

        if media_type not in accepted:
            expected = " or ".join(accepted)
            response = _error(415, "UNSUPPORTED_MEDIA_TYPE", f"Content-Type must be {expected}")
            await response(scope, receive, send)
            return

        if media_type == MULTIPART:
            await self.app(scope, receive, send)
            return

        declared = headers.get(b"content-length", b"")
        if declared.isdigit() and int(declared) > self.max_body_size:
            await _too_large()(scope, receive, send)
            return
        try:
            body = await _read_body(receive, self.max_body_size)
        except _BodyTooLarge:
            await _too_large()(scope, receive, send)
            return

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if replayed:
                return {"type": "http.disconnect"}
            replayed = True
            message: dict[str, Any] = {"type": "http.request", "body": body, "more_body": False}
            return message

        await self.app(scope, replay, send)
