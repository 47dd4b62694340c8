from __future__ import annotations

import logging

from dependency_injector import providers
from dependency_injector.containers import DeclarativeContainer
from dependency_injector.providers import Provider

from stacks.service.logging.log import (
    JSONFormatter,
    create_stream_handler,
    setup_logging,
)


def formatter_factory(json: bool) -> logging.Formatter:
    if json:
        return JSONFormatter()
    return logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")


class Logging(DeclarativeContainer):
    config = providers.Configuration()

    json_formatter: Provider[logging.Formatter] = providers.Singleton(JSONFormatter)

    formatter: Provider[logging.Formatter] = providers.Singleton(
        formatter_factory, json=config.json
    )

    stream_handler: Provider[logging.Handler] = providers.Singleton(
        create_stream_handler, formatter=formatter
    )

    logging = providers.Resource(
        setup_logging,
        level=config.level,
        verbose_level=config.verbose_level,
        stream=stream_handler,
    )
