"""Tests for JSONLogFormatter and configure_logging."""

import json
import logging
import sys
from collections.abc import Generator

import pytest

from forum_rbac.config.constants import ServiceName
from forum_rbac.logging import JSONLogFormatter, configure_logging


def _record(msg: str = "checked %s", *args: object, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("forum_rbac.rbac.service", logging.WARNING, __file__, 10, msg, args or ("x",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONLogFormatter:
    def test_base_fields(self) -> None:
        entry = json.loads(JSONLogFormatter().format(_record("denied %s", "topic.pin")))
        assert entry["level"] == "WARNING"
        assert entry["service"] == "rbac"
        assert entry["logger"] == "forum_rbac.rbac.service"
        assert entry["message"] == "denied topic.pin"
        assert entry["timestamp"].endswith("+00:00")
        assert "user_id" not in entry

    def test_context_fields_from_extra(self) -> None:
        record = _record(user_id=7, permission="topic.pin", code="NO_PERMISSION", unrelated="skip")
        entry = json.loads(JSONLogFormatter(service="api").format(record))
        assert entry["service"] == "api"
        assert entry["user_id"] == 7
        assert entry["permission"] == "topic.pin"
        assert entry["code"] == "NO_PERMISSION"
        assert "unrelated" not in entry

    def test_exception_included(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _record()
            record.exc_info = sys.exc_info()
        entry = json.loads(JSONLogFormatter().format(record))
        assert "RuntimeError: boom" in entry["exception"]


@pytest.fixture
def restore_root() -> Generator[logging.Logger]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestConfigureLogging:
    def test_replaces_handlers(self, restore_root: logging.Logger) -> None:
        restore_root.addHandler(logging.NullHandler())
        configure_logging(ServiceName.RBAC, level="debug")

        assert restore_root.level == logging.DEBUG
        assert len(restore_root.handlers) == 1
        assert isinstance(restore_root.handlers[0].formatter, JSONLogFormatter)

    def test_output_is_json(self, restore_root: logging.Logger, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(level=logging.INFO)
        logging.getLogger("forum_rbac.test").info("ready", extra={"user_id": 3})

        line = capsys.readouterr().out.strip().splitlines()[-1]
        entry = json.loads(line)
        assert entry["message"] == "ready"
        assert entry["user_id"] == 3
