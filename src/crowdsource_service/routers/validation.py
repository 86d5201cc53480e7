"""Shared request parsing helpers for the routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from starlette.datastructures import UploadFile as StarletteUploadFile

from crowdsource_service.core.exceptions import SchemaError, ServiceError, UnauthenticatedError
from crowdsource_service.core.state import get_app_state
from crowdsource_service.task_types.base import UploadedFile

if TYPE_CHECKING:
    from fastapi import Request

    from crowdsource_service.models import Principal

BODY_FIELD = "body"


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising SchemaError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise SchemaError.for_field(
            "Request body is not valid JSON", "body", str(exc), "json_invalid"
        ) from exc

    if not isinstance(data, dict):
        raise SchemaError.for_field(
            "Request body must be a JSON object", "body", "Expected an object", "dict_type"
        )

    return data


def extract_bearer_token(authorization: str | None, *, required: bool) -> str | None:
    """Extract the bearer token from the Authorization header."""
    if authorization is None:
        if required:
            raise UnauthenticatedError("Missing Authorization header")
        return None

    if not authorization.startswith("Bearer "):
        raise UnauthenticatedError("Authorization header must use Bearer scheme")

    token = authorization[len("Bearer ") :]
    if not token:
        raise UnauthenticatedError("Bearer token must not be empty")

    return token


async def resolve_principal(request: Request, *, required: bool) -> Principal | None:
    """Ask the Identity service who the caller is. Anonymous callers yield None."""
    token = extract_bearer_token(request.headers.get("authorization"), required=required)
    if token is None:
        return None

    state = get_app_state()
    if state.identity_client is None:
        msg = "IdentityClient not initialized"
        raise RuntimeError(msg)
    return await state.identity_client.verify_token(token)


async def read_payload(
    request: Request,
    max_file_size: int,
) -> tuple[dict[str, Any], list[UploadedFile]]:
    """
    Read a JSON or multipart request.

    Multipart requests carry the JSON object in the ``body`` form field and
    any number of files in the other fields.
    """
    content_type = request.headers.get("content-type", "").lower()
    if not content_type.startswith("multipart/form-data"):
        raw_body = await request.body()
        return ({} if raw_body == b"" else parse_json_body(raw_body)), []

    form = await request.form()
    body: dict[str, Any] = {}
    files: list[UploadedFile] = []
    for field_name, value in form.multi_items():
        if isinstance(value, StarletteUploadFile):
            content = await value.read()
            if len(content) > max_file_size:
                raise ServiceError(
                    "PAYLOAD_TOO_LARGE",
                    f"File exceeds maximum size of {max_file_size} bytes",
                    413,
                    {"field": field_name},
                )
            files.append(
                UploadedFile(
                    field_name=field_name,
                    filename=value.filename or "",
                    content_type=value.content_type or "application/octet-stream",
                    content=content,
                )
            )
        elif field_name == BODY_FIELD:
            body = parse_json_body(value.encode())
    return body, files


def query_flag(request: Request, name: str) -> bool:
    """True when the query parameter is the string ``true``."""
    return request.query_params.get(name) == "true"
