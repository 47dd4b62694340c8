from typing import Any

from dependency_injector import providers
from dependency_injector.containers import DeclarativeContainer
from dependency_injector.providers import Provider

from stacks.service.circulation.configuration import CirculationConfiguration


def circulation_settings(config: dict[str, Any]) -> CirculationConfiguration:
    return CirculationConfiguration.model_validate(config)


class Circulation(DeclarativeContainer):
    config = providers.Configuration()

    settings: Provider[CirculationConfiguration] = providers.Singleton(
        circulation_settings, config=config
    )
