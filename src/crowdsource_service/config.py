"""
Configuration management for the crowdsource service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

REDACTION_MARKER = "***"
_SENSITIVE_KEYS = ("secret", "password", "private_key", "api_key")


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class IdentityConfig(BaseModel):
    """Identity service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    verify_token_path: str
    timeout_seconds: int


class UploadsConfig(BaseModel):
    """Uploaded file storage configuration."""

    model_config = ConfigDict(extra="forbid")
    directory: str
    max_file_size: int = Field(gt=0)
    thumbnail_width: int = Field(gt=0)
    thumbnail_height: int = Field(gt=0)


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int = Field(gt=0)


class ListingConfig(BaseModel):
    """Pagination limits for list endpoints."""

    model_config = ConfigDict(extra="forbid")
    default_limit: int = Field(gt=0)
    max_limit: int = Field(gt=0)

    @model_validator(mode="after")
    def _check_default_within_max(self) -> ListingConfig:
        if self.default_limit > self.max_limit:
            msg = "default_limit must not exceed max_limit"
            raise ValueError(msg)
        return self


class TaskTypesConfig(BaseModel):
    """Task-type plugins loaded at startup, as ``module.path:ClassName`` entries."""

    model_config = ConfigDict(extra="forbid")
    plugins: list[str] = Field(min_length=1)


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    identity: IdentityConfig
    uploads: UploadsConfig
    request: RequestConfig
    listing: ListingConfig
    task_types: TaskTypesConfig


def get_config_path() -> Path:
    """Determine configuration file path."""
    env_path = os.environ.get("CONFIG_PATH")
    if env_path:
        return Path(env_path)
    # src/crowdsource_service/config.py -> project root
    return Path(__file__).resolve().parents[2] / "config.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache settings from the configuration file."""
    config_path = get_config_path()
    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ValueError(msg)
    return Settings(**raw)


def clear_settings_cache() -> None:
    """Drop cached settings. Used in testing."""
    get_settings.cache_clear()


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTION_MARKER
            if any(marker in key.lower() for marker in _SENSITIVE_KEYS)
            else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    redacted: dict[str, Any] = _redact(get_settings().model_dump())
    return redacted
