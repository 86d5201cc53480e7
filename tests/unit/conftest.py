"""Unit test fixtures: auto-clear caches between tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from crowdsource_service.config import clear_settings_cache
from crowdsource_service.core.state import reset_app_state
from tests.helpers import build_engine

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from tests.helpers import Engine


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


@pytest.fixture
def engine(tmp_path: Path) -> Iterator[Engine]:
    """Task and assignment managers over a temporary store."""
    wired = build_engine(tmp_path)
    yield wired
    wired.store.close()
