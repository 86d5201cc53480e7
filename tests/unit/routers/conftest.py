"""Router test fixtures with a mocked Identity service."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from crowdsource_service.app import create_app
from crowdsource_service.config import clear_settings_cache
from crowdsource_service.core.exceptions import ServiceError, UnauthenticatedError
from crowdsource_service.core.lifespan import lifespan
from crowdsource_service.core.state import get_app_state, reset_app_state
from tests.helpers import TOKENS, auth, write_config

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from crowdsource_service.models import Principal


async def _verify_token(token: str) -> Principal:
    principal = TOKENS.get(token)
    if principal is None:
        raise UnauthenticatedError("Token verification failed")
    return principal


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def config_overrides() -> dict[str, Any]:
    """Keyword overrides for write_config; override in a test module to tweak limits."""
    return {}


@pytest.fixture
async def app(tmp_path: Path, config_overrides: dict[str, Any]) -> AsyncIterator[Any]:
    """Create a test app with temp storage and a mocked Identity service."""
    config_path = write_config(tmp_path, **config_overrides)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        # Replace the Identity client with a mock that knows the test tokens
        state = get_app_state()
        if state.identity_client is not None:
            await state.identity_client.close()
        mock_identity = AsyncMock()
        mock_identity.close = AsyncMock()
        mock_identity.verify_token = AsyncMock(side_effect=_verify_token)
        state.identity_client = mock_identity

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Mock override fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_identity_unavailable(_app: Any) -> None:
    """Configure the Identity mock to simulate service unavailability."""
    state = get_app_state()
    state.identity_client.verify_token = AsyncMock(
        side_effect=ServiceError(
            "IDENTITY_SERVICE_UNAVAILABLE", "Cannot connect to Identity service", 502, {}
        )
    )


# ---------------------------------------------------------------------------
# Lifecycle helper functions
# ---------------------------------------------------------------------------
TASK_BODY = {"name": "Guess it", "description": "Find the number", "excerption": "Guess"}


async def create_task(
    client: AsyncClient,
    *,
    token: str = "publisher-token",
    type_id: str | None = "guess-number",
    **fields: Any,
) -> Any:
    """Create a task via POST /tasks and return the response."""
    body: dict[str, Any] = {**TASK_BODY, **fields}
    if type_id is not None:
        body["type"] = type_id
    return await client.post("/tasks", json=body, headers=auth(token))


async def publish_task(
    client: AsyncClient,
    data: dict[str, Any],
    *,
    token: str = "publisher-token",
    type_id: str = "guess-number",
) -> str:
    """Create a task, post its data and walk it to PUBLISHED. Returns the task id."""
    created = await create_task(client, token=token, type_id=type_id)
    assert created.status_code == 201
    task_id: str = created.json()["id"]

    response = await client.post(f"/tasks/{task_id}/data", json=data, headers=auth(token))
    assert response.status_code == 200
    for status, actor in (
        ("SUBMITTED", token),
        ("ADMITTED", "task-admin-token"),
        ("PUBLISHED", token),
    ):
        response = await client.patch(
            f"/tasks/{task_id}", json={"status": status}, headers=auth(actor)
        )
        assert response.status_code == 200
    return task_id
