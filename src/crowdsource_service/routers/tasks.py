"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from crowdsource_service.config import get_settings
from crowdsource_service.core.state import get_app_state
from crowdsource_service.routers.validation import query_flag, read_payload, resolve_principal
from crowdsource_service.task_types.base import HookRequest

if TYPE_CHECKING:
    from crowdsource_service.services.task_manager import TaskManager
    from crowdsource_service.task_types.base import UploadedFile

router = APIRouter()

PICTURE_FIELD = "picture"


def _task_manager() -> TaskManager:
    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)
    return state.task_manager


def _picture(files: list[UploadedFile]) -> UploadedFile | None:
    return next((upload for upload in files if upload.field_name == PICTURE_FIELD), None)


# ---------------------------------------------------------------------------
# POST /tasks, GET /tasks (MUST be before /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Create a task, optionally with a picture (multipart field ``picture``)."""
    principal = await resolve_principal(request, required=True)
    body, files = await read_payload(request, get_settings().uploads.max_file_size)
    result = _task_manager().create_task(principal, body, _picture(files))
    return JSONResponse(status_code=201, content=result)


@router.get("/tasks")
async def find_tasks(request: Request) -> dict[str, Any]:
    """List tasks visible to the caller."""
    principal = await resolve_principal(request, required=False)
    return _task_manager().find_tasks(principal, request.query_params)


# ---------------------------------------------------------------------------
# Task data
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/data")
async def post_task_data(task_id: str, request: Request) -> dict[str, Any]:
    """Post the task-type specific payload."""
    principal = await resolve_principal(request, required=True)
    body, files = await read_payload(request, get_settings().uploads.max_file_size)
    hook_request = HookRequest(
        principal=principal,
        body=body,
        query=dict(request.query_params),
        files=files,
    )
    return _task_manager().post_task_data(principal, task_id, hook_request)


@router.get("/tasks/{task_id}/data")
async def get_task_data(task_id: str, request: Request) -> dict[str, Any]:
    """Read the task-type specific view of a task."""
    principal = await resolve_principal(request, required=True)
    hook_request = HookRequest(principal=principal, body=None, query=dict(request.query_params))
    return _task_manager().get_task_data(principal, task_id, hook_request)


# ---------------------------------------------------------------------------
# Single task
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, request: Request) -> dict[str, Any]:
    """Get a task; ``?data=true`` adds the task-type projection."""
    principal = await resolve_principal(request, required=False)
    return _task_manager().get_task(principal, task_id, include_data=query_flag(request, "data"))


@router.patch("/tasks/{task_id}")
async def patch_task(task_id: str, request: Request) -> dict[str, Any]:
    """Edit task info and/or change its status."""
    principal = await resolve_principal(request, required=True)
    body, files = await read_payload(request, get_settings().uploads.max_file_size)
    return _task_manager().patch_task(principal, task_id, body, _picture(files))


@router.delete("/tasks/{task_id}", status_code=204)
async def delete_task(task_id: str, request: Request) -> Response:
    """Soft-delete a task."""
    principal = await resolve_principal(request, required=True)
    _task_manager().delete_task(principal, task_id)
    return Response(status_code=204)
