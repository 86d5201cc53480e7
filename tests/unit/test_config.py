"""Configuration loading tests."""

from __future__ import annotations

import os

import pytest
from pydantic import ValidationError

from crowdsource_service.config import (
    Settings,
    clear_settings_cache,
    get_config_path,
    get_safe_config,
    get_settings,
)
from tests.helpers import write_config


@pytest.fixture
def config_env(tmp_path, monkeypatch):
    """Point CONFIG_PATH at a freshly written config file."""
    config_path = write_config(tmp_path)
    monkeypatch.setenv("CONFIG_PATH", str(config_path))
    clear_settings_cache()
    return config_path


@pytest.mark.unit
def test_config_loads_from_yaml(config_env):
    """Valid config loads without error."""
    settings = get_settings()

    assert isinstance(settings, Settings)
    assert settings.service.name == "crowdsource"
    assert settings.listing.default_limit == 10
    assert settings.uploads.thumbnail_width == 32
    assert len(settings.task_types.plugins) == 2


@pytest.mark.unit
def test_config_path_prefers_environment(config_env):
    """CONFIG_PATH wins over the project default."""
    assert get_config_path() == config_env


@pytest.mark.unit
def test_config_path_defaults_to_project_root(monkeypatch):
    """Without CONFIG_PATH the project-level config.yaml is used."""
    monkeypatch.delenv("CONFIG_PATH", raising=False)
    path = get_config_path()
    assert path.name == "config.yaml"
    assert (path.parent / "pyproject.toml").exists()


@pytest.mark.unit
def test_settings_are_cached(config_env):
    """get_settings returns the same object until the cache is cleared."""
    first = get_settings()
    assert get_settings() is first
    clear_settings_cache()
    assert get_settings() is not first


@pytest.mark.unit
def test_config_missing_section_fails(tmp_path, monkeypatch):
    """A missing section fails validation: there are no defaults."""
    config_path = write_config(tmp_path)
    text = config_path.read_text()
    trimmed = text[: text.index("listing:")] + text[text.index("task_types:") :]
    config_path.write_text(trimmed)
    monkeypatch.setenv("CONFIG_PATH", str(config_path))

    with pytest.raises(ValidationError):
        get_settings()


@pytest.mark.unit
def test_config_rejects_unknown_keys(tmp_path, monkeypatch):
    """Unknown keys are rejected by extra=forbid."""
    config_path = write_config(tmp_path)
    config_path.write_text(config_path.read_text() + "unexpected:\n  key: 1\n")
    monkeypatch.setenv("CONFIG_PATH", str(config_path))

    with pytest.raises(ValidationError):
        get_settings()


@pytest.mark.unit
def test_config_rejects_non_mapping(tmp_path, monkeypatch):
    """A YAML document that is not a mapping is rejected."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text("- just\n- a list\n")
    monkeypatch.setenv("CONFIG_PATH", str(config_path))

    with pytest.raises(ValueError, match="Invalid config file"):
        get_settings()


@pytest.mark.unit
def test_safe_config_is_plain_dump(config_env):
    """No key is sensitive today, so the safe config matches the settings dump."""
    safe = get_safe_config()
    assert safe == get_settings().model_dump()
    assert os.environ["CONFIG_PATH"] == str(config_env)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("old", "new"),
    [
        ("default_limit: 10", "default_limit: 60"),
        ("max_limit: 49", "max_limit: 0"),
        ("thumbnail_width: 32", "thumbnail_width: -1"),
    ],
)
def test_config_rejects_out_of_range_values(tmp_path, monkeypatch, old, new):
    """Limits and sizes must be positive, and the default page fits the maximum."""
    config_path = write_config(tmp_path)
    config_path.write_text(config_path.read_text().replace(old, new))
    monkeypatch.setenv("CONFIG_PATH", str(config_path))

    with pytest.raises(ValidationError):
        get_settings()
