"""Task-type registry endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request, Response

from crowdsource_service.core.state import get_app_state
from crowdsource_service.routers.validation import parse_json_body, resolve_principal

if TYPE_CHECKING:
    from crowdsource_service.services.task_manager import TaskManager

router = APIRouter()


def _task_manager() -> TaskManager:
    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)
    return state.task_manager


@router.get("/task-types")
async def get_task_types() -> dict[str, Any]:
    """List registered task types."""
    return _task_manager().get_task_types()


@router.patch("/task-types/{type_id}")
async def patch_task_type(type_id: str, request: Request) -> dict[str, Any]:
    """Enable or disable a task type."""
    principal = await resolve_principal(request, required=True)
    body = parse_json_body(await request.body())
    return _task_manager().patch_task_type(principal, type_id, body)


@router.delete("/task-types/{type_id}", status_code=204)
async def delete_task_type(type_id: str, request: Request) -> Response:
    """Unregister a task type."""
    principal = await resolve_principal(request, required=True)
    _task_manager().delete_task_type(principal, type_id)
    return Response(status_code=204)
