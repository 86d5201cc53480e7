"""Structured logging tests."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime

import pytest
from freezegun import freeze_time
from starlette.requests import Request

from crowdsource_service.core.exceptions import (
    ConfigError,
    InvalidStateError,
    service_error_handler,
)
from crowdsource_service.logging import (
    ROOT_LOGGER_NAME,
    DailyRotatingFileHandler,
    JSONFormatter,
    get_logger,
    setup_logging,
)


def _record(message: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="crowdsource_service.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record



def _request(method: str, path: str) -> Request:
    return Request(
        {"type": "http", "method": method, "path": path, "headers": [], "query_string": b""}
    )

@pytest.mark.unit
def test_json_formatter_emits_extra_fields() -> None:
    """Structured context passed via extra lands under the extra key."""
    output = JSONFormatter("crowdsource").format(_record("Task created", task_id="t-1"))
    data = json.loads(output)

    assert data["service"] == "crowdsource"
    assert data["level"] == "INFO"
    assert data["message"] == "Task created"
    assert data["extra"] == {"task_id": "t-1"}


@pytest.mark.unit
def test_json_formatter_omits_empty_extra() -> None:
    data = json.loads(JSONFormatter("crowdsource").format(_record("plain")))
    assert "extra" not in data


@pytest.mark.unit
def test_setup_logging_writes_daily_file(tmp_path) -> None:
    """Records reach the rotating file as JSON lines."""
    log_directory = tmp_path / "logs"
    logger = setup_logging("INFO", "crowdsource", str(log_directory))
    get_logger("test").info("hello", extra={"answer": 42})
    for handler in logger.handlers:
        handler.flush()

    files = list(log_directory.glob("*.log"))
    assert len(files) == 1
    line = files[0].read_text().strip().splitlines()[-1]
    assert json.loads(line)["extra"] == {"answer": 42}
    assert logger.propagate is False


@pytest.mark.unit
def test_setup_logging_rejects_unknown_level(tmp_path) -> None:
    with pytest.raises(ValueError, match="Invalid log level"):
        setup_logging("CHATTY", "crowdsource", str(tmp_path))


@pytest.mark.unit
def test_get_logger_stays_in_package_tree() -> None:
    assert get_logger("foo").name == f"{ROOT_LOGGER_NAME}.foo"
    assert get_logger(f"{ROOT_LOGGER_NAME}.services").name == f"{ROOT_LOGGER_NAME}.services"


@pytest.mark.unit
def test_daily_file_handler_rolls_over_to_next_date(tmp_path) -> None:
    """After the midnight rollover records go to the new day's file."""
    with freeze_time("2026-03-01T23:59:59Z") as frozen:
        handler = DailyRotatingFileHandler(tmp_path)
        handler.setFormatter(JSONFormatter("crowdsource"))
        handler.emit(_record("before midnight"))

        frozen.move_to("2026-03-02T00:00:01Z")
        handler.doRollover()
        handler.emit(_record("after midnight"))
        handler.close()

    assert "before midnight" in (tmp_path / "2026-03-01.log").read_text()
    assert json.loads((tmp_path / "2026-03-02.log").read_text())["message"] == "after midnight"
    assert handler.rolloverAt == int(datetime(2026, 3, 3, tzinfo=UTC).timestamp())


@pytest.mark.unit
async def test_service_errors_are_logged_as_warnings(caplog, monkeypatch) -> None:
    """Client-side service errors log at WARNING with the error code in extra."""
    monkeypatch.setattr(logging.getLogger(ROOT_LOGGER_NAME), "propagate", True)
    caplog.set_level(logging.INFO, logger=ROOT_LOGGER_NAME)
    request = _request("PATCH", "/tasks/t-1")

    response = await service_error_handler(request, InvalidStateError("Task is not published"))

    assert response.status_code == 409
    [record] = [r for r in caplog.records if r.name == f"{ROOT_LOGGER_NAME}.core.exceptions"]
    assert record.levelno == logging.WARNING
    assert record.error_code == "INVALID_STATE"
    assert record.status_code == 409
    assert record.path == "/tasks/t-1"


@pytest.mark.unit
async def test_server_side_service_errors_are_logged_as_errors(caplog, monkeypatch) -> None:
    monkeypatch.setattr(logging.getLogger(ROOT_LOGGER_NAME), "propagate", True)
    caplog.set_level(logging.INFO, logger=ROOT_LOGGER_NAME)
    request = _request("GET", "/task-types")

    await service_error_handler(request, ConfigError("Task type registry is inconsistent"))

    [record] = [r for r in caplog.records if r.name == f"{ROOT_LOGGER_NAME}.core.exceptions"]
    assert record.levelno == logging.ERROR
    assert record.error_code == "CONFIG_ERROR"
