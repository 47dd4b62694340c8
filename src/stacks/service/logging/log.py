from __future__ import annotations

import logging
import socket
import threading
from typing import Any

from celery import current_task as celery_task

from stacks.service.logging.configuration import LogLevel
from stacks.util.datetime_helpers import from_timestamp
from stacks.util.json import json_serializer

# Extra attributes with this prefix, e.g. `log.info(..., extra={"stacks_loan_id": 7})`,
# are copied into the JSON document without it.
EXTRA_PREFIX = "stacks_"


class JSONFormatter(logging.Formatter):
    """Formats each record as a single line of JSON."""

    def __init__(self) -> None:
        super().__init__()
        self.hostname = socket.getfqdn()
        self.main_thread_id = threading.main_thread().ident

    @staticmethod
    def _serializable(value: Any) -> bool:
        try:
            json_serializer(value)
        except (TypeError, ValueError):
            return False
        return True

    @staticmethod
    def _message(record: logging.LogRecord) -> str:
        try:
            return record.getMessage()
        except Exception as e:
            # A bad format string in a log call must not take down the sweep
            # that made it.
            return (
                f"Log message could not be formatted. Exception: {e!r}. "
                f"Original message: message={record.msg!r} args={record.args!r}"
            )

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "host": self.hostname,
            "name": record.name,
            "level": record.levelname,
            "filename": record.filename,
            "message": self._message(record),
            "timestamp": from_timestamp(record.created).isoformat(),
        }
        if record.exc_info:
            data["traceback"] = self.formatException(record.exc_info)
        if record.stack_info:
            data["stack"] = self.formatStack(record.stack_info)
        if record.process:
            data["process"] = record.process
        if record.thread and record.thread != self.main_thread_id:
            data["thread"] = record.thread

        # Lets the lines of one sweep run be picked out of the worker log.
        if celery_task:
            data["celery"] = {
                "request_id": celery_task.request.id,
                "task_name": celery_task.name,
                "retries": celery_task.request.retries,
            }

        for key, value in vars(record).items():
            name = key.removeprefix(EXTRA_PREFIX)
            if (
                name != key
                and name not in data
                and value is not None
                and self._serializable(value)
            ):
                data[name] = value

        return json_serializer(data)


def create_stream_handler(formatter: logging.Formatter) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    level: LogLevel,
    verbose_level: LogLevel,
    stream: logging.Handler,
) -> None:
    logging.basicConfig(force=True, level=level.value, handlers=[stream])

    # Libraries that log every statement or message only get through at
    # the verbose level.
    for name in ("sqlalchemy.engine", "celery.worker.strategy", "kombu", "amqp"):
        logging.getLogger(name).setLevel(verbose_level.value)
