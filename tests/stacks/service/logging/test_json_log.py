import json
import logging
import sys
from unittest.mock import MagicMock, patch

import pytest

from stacks.service.logging.configuration import LogLevel, LoggingConfiguration
from stacks.service.logging.container import formatter_factory
from stacks.service.logging.log import JSONFormatter, setup_logging


class TestJSONFormatter:
    @staticmethod
    def record(msg: str = "Sweep %s", args: tuple = ("done",), **kwargs) -> logging.LogRecord:
        return logging.LogRecord(
            "stacks.circulation.sweeps",
            logging.WARNING,
            "sweeps.py",
            42,
            msg,
            args,
            kwargs.get("exc_info"),
        )

    def test_format(self):
        formatter = JSONFormatter()
        data = json.loads(formatter.format(self.record()))

        assert data["host"] == formatter.hostname
        assert data["name"] == "stacks.circulation.sweeps"
        assert data["level"] == "WARNING"
        assert data["filename"] == "sweeps.py"
        assert data["message"] == "Sweep done"
        assert "timestamp" in data
        assert "traceback" not in data
        assert "celery" not in data

    def test_format_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = self.record(exc_info=sys.exc_info())

        data = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in data["traceback"]

    def test_bad_format_args(self):
        record = self.record(msg="%d loans", args=("many",))
        data = json.loads(JSONFormatter().format(record))
        assert data["message"].startswith("Log message could not be formatted.")

    def test_extra_attributes(self):
        record = self.record()
        record.stacks_loan_id = 12
        record.stacks_unserializable = object()
        record.other = "ignored"

        data = json.loads(JSONFormatter().format(record))
        assert data["loan_id"] == 12
        assert "unserializable" not in data
        assert "other" not in data

    def test_celery_task(self):
        task = MagicMock()
        task.name = "overdue_sweep"
        task.request.id = "request-1"
        task.request.retries = 2
        with patch("stacks.service.logging.log.celery_task", task):
            data = json.loads(JSONFormatter().format(self.record()))

        assert data["celery"] == {
            "request_id": "request-1",
            "task_name": "overdue_sweep",
            "retries": 2,
        }


def test_formatter_factory():
    assert isinstance(formatter_factory(True), JSONFormatter)
    formatter = formatter_factory(False)
    assert not isinstance(formatter, JSONFormatter)
    assert isinstance(formatter, logging.Formatter)


def test_setup_logging():
    handler = logging.NullHandler()
    root = logging.getLogger()
    old_handlers, old_level = root.handlers[:], root.level
    try:
        setup_logging(LogLevel.debug, LogLevel.error, handler)
        assert root.level == logging.DEBUG
        assert root.handlers == [handler]
        assert logging.getLogger("sqlalchemy.engine").level == logging.ERROR
    finally:
        root.handlers = old_handlers
        root.setLevel(old_level)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.NOTSET)


class TestLogLevel:
    def test_levelno(self):
        assert LogLevel.warning.levelno == logging.WARNING

    @pytest.mark.parametrize(
        "level, expected",
        [
            (logging.INFO, LogLevel.info),
            ("error", LogLevel.error),
            ("DEBUG", LogLevel.debug),
        ],
    )
    def test_from_level(self, level: int | str, expected: LogLevel):
        assert LogLevel.from_level(level) == expected

    def test_from_level_invalid(self):
        with pytest.raises(ValueError, match="not a valid LogLevel"):
            LogLevel.from_level("loud")


def test_logging_configuration(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("STACKS_LOG_LEVEL", "debug")
    monkeypatch.setenv("STACKS_LOG_JSON", "false")
    config = LoggingConfiguration()
    assert config.level == LogLevel.debug
    assert config.json is False
    assert LoggingConfiguration(verbose_level="Error").verbose_level == LogLevel.error
