"""Entry point for the Celery command line tools:

    celery -A stacks.celery.app worker
    celery -A stacks.celery.app beat

Nothing in the engine imports this module. Importing it builds the
services container and registers every task.
"""

import logging
from logging.handlers import WatchedFileHandler
from typing import Any

from celery.signals import setup_logging

from stacks.service.container import container_instance


@setup_logging.connect
def celery_logger_setup(loglevel: int, logfile: str | None, **kwargs: Any) -> None:
    # Our own logging is already set up by the container; Celery may only
    # lower the root level or add a log file.
    services = container_instance()
    configured = services.logging.config.level()  # type: ignore[attr-defined]
    root = logging.getLogger()
    if configured is None or loglevel < configured.levelno:
        root.setLevel(loglevel)

    if logfile:
        handler = WatchedFileHandler(logfile, encoding="utf-8")
        handler.setFormatter(services.logging.json_formatter())
        root.addHandler(handler)


services = container_instance()
services.init_resources()

from stacks.celery.tasks import import_celery_tasks  # noqa: E402

import_celery_tasks()

app = services.celery.app()
