"""Body and upload size limits."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import pytest

from tests.helpers import auth, png_bytes
from tests.unit.routers.conftest import TASK_BODY

if TYPE_CHECKING:
    from httpx import AsyncClient


@pytest.fixture
def config_overrides() -> dict[str, Any]:
    return {"max_body_size": 256, "max_file_size": 32}


@pytest.mark.unit
async def test_oversized_json_body_is_413(client: AsyncClient) -> None:
    response = await client.post(
        "/tasks",
        json={**TASK_BODY, "description": "x" * 512},
        headers=auth("publisher-token"),
    )
    assert response.status_code == 413
    assert response.json()["error"] == "PAYLOAD_TOO_LARGE"


@pytest.mark.unit
async def test_json_body_within_limit_is_accepted(client: AsyncClient) -> None:
    response = await client.post("/tasks", json=TASK_BODY, headers=auth("publisher-token"))
    assert response.status_code == 201


@pytest.mark.unit
async def test_oversized_upload_is_413(client: AsyncClient) -> None:
    """Multipart bodies skip the JSON limit; each file is checked on its own."""
    response = await client.post(
        "/tasks",
        data={"body": json.dumps({**TASK_BODY, "description": "x" * 512})},
        files={"picture": ("cover.png", png_bytes(), "image/png")},
        headers=auth("publisher-token"),
    )
    assert response.status_code == 413
    assert response.json()["details"] == {"field": "picture"}


@pytest.mark.unit
async def test_small_upload_passes_file_check(client: AsyncClient) -> None:
    response = await client.post(
        "/tasks",
        data={"body": json.dumps({**TASK_BODY, "description": "x" * 512})},
        files={"picture": ("notes.txt", b"tiny", "text/plain")},
        headers=auth("publisher-token"),
    )
    assert response.status_code == 400
    assert response.json()["details"]["violations"][0]["loc"] == "picture"
