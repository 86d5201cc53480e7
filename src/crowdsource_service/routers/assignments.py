"""Assignment lifecycle endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from crowdsource_service.config import get_settings
from crowdsource_service.core.state import get_app_state
from crowdsource_service.routers.validation import (
    parse_json_body,
    query_flag,
    read_payload,
    resolve_principal,
)
from crowdsource_service.task_types.base import HookRequest

if TYPE_CHECKING:
    from crowdsource_service.services.assignment_manager import AssignmentManager

router = APIRouter()


def _assignment_manager() -> AssignmentManager:
    state = get_app_state()
    if state.assignment_manager is None:
        msg = "AssignmentManager not initialized"
        raise RuntimeError(msg)
    return state.assignment_manager


async def _json_body(request: Request) -> dict[str, Any]:
    raw_body = await request.body()
    return {} if raw_body == b"" else parse_json_body(raw_body)


# ---------------------------------------------------------------------------
# POST /assignments, GET /assignments (MUST be before /assignments/{id})
# ---------------------------------------------------------------------------


@router.post("/assignments", status_code=201)
async def create_assignment(request: Request) -> JSONResponse:
    """Create an assignment (work or signup) against a published task."""
    principal = await resolve_principal(request, required=True)
    body = await _json_body(request)
    result = _assignment_manager().create_assignment(
        principal, body, dict(request.query_params)
    )
    return JSONResponse(status_code=201, content=result)


@router.get("/assignments")
async def find_assignments(request: Request) -> dict[str, Any]:
    """List the caller's assignments."""
    principal = await resolve_principal(request, required=True)
    return _assignment_manager().find_assignments(principal, request.query_params)


# ---------------------------------------------------------------------------
# Assignment data
# ---------------------------------------------------------------------------


@router.post("/assignments/{assignment_id}/data")
async def post_assignment_data(assignment_id: str, request: Request) -> dict[str, Any]:
    """Post the subscriber's task-type specific submission."""
    principal = await resolve_principal(request, required=True)
    body, files = await read_payload(request, get_settings().uploads.max_file_size)
    hook_request = HookRequest(
        principal=principal,
        body=body,
        query=dict(request.query_params),
        files=files,
    )
    return _assignment_manager().post_assignment_data(principal, assignment_id, hook_request)


@router.get("/assignments/{assignment_id}/data")
async def get_assignment_data(assignment_id: str, request: Request) -> dict[str, Any]:
    """Read the task-type specific view of an assignment."""
    principal = await resolve_principal(request, required=True)
    hook_request = HookRequest(principal=principal, body=None, query=dict(request.query_params))
    return _assignment_manager().get_assignment_data(principal, assignment_id, hook_request)


# ---------------------------------------------------------------------------
# Single assignment
# ---------------------------------------------------------------------------


@router.get("/assignments/{assignment_id}")
async def get_assignment(assignment_id: str, request: Request) -> dict[str, Any]:
    """Get an assignment; ``?data=true`` adds the task-type projection."""
    principal = await resolve_principal(request, required=True)
    return _assignment_manager().get_assignment(
        principal, assignment_id, include_data=query_flag(request, "data")
    )


@router.patch("/assignments/{assignment_id}")
async def patch_assignment(assignment_id: str, request: Request) -> dict[str, Any]:
    """Change an assignment's status."""
    principal = await resolve_principal(request, required=True)
    body = await _json_body(request)
    return _assignment_manager().patch_assignment(
        principal, assignment_id, body, dict(request.query_params)
    )


@router.delete("/assignments/{assignment_id}", status_code=204)
async def delete_assignment(assignment_id: str, request: Request) -> Response:
    """Soft-delete an assignment."""
    principal = await resolve_principal(request, required=True)
    _assignment_manager().delete_assignment(principal, assignment_id)
    return Response(status_code=204)
