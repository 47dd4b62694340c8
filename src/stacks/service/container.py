from dependency_injector import providers
from dependency_injector.containers import DeclarativeContainer

from stacks.service.celery.configuration import CeleryConfiguration
from stacks.service.celery.container import CeleryContainer
from stacks.service.circulation.configuration import CirculationConfiguration
from stacks.service.circulation.container import Circulation
from stacks.service.email.configuration import EmailConfiguration
from stacks.service.email.container import Email
from stacks.service.logging.configuration import LoggingConfiguration
from stacks.service.logging.container import Logging
from stacks.service.notification.container import NotificationContainer

# Top level configuration key -> settings class that reads it from the environment.
CONFIGURATION = {
    "logging": LoggingConfiguration,
    "email": EmailConfiguration,
    "celery": CeleryConfiguration,
    "circulation": CirculationConfiguration,
}


class Services(DeclarativeContainer):
    """Every long-lived service the circulation engine uses."""

    config = providers.Configuration()

    logging = providers.Container(Logging, config=config.logging)
    email = providers.Container(Email, config=config.email)
    celery = providers.Container(CeleryContainer, config=config.celery)
    circulation = providers.Container(Circulation, config=config.circulation)
    notification = providers.Container(
        NotificationContainer,
        config=config.email,
        send_email=email.send_email,
    )


def create_container() -> Services:
    container = Services()
    container.config.from_dict(
        {key: settings().model_dump() for key, settings in CONFIGURATION.items()}
    )
    return container


_container_instance: Services | None = None


def container_instance() -> Services:
    """The process-wide container, for entry points (Celery, scripts) that
    have no other way to get one. Anything that can take a `Services` as an
    argument should.
    """
    global _container_instance
    if _container_instance is None:
        _container_instance = create_container()
    return _container_instance
