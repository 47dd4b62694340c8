from dependency_injector import providers
from dependency_injector.containers import DeclarativeContainer
from dependency_injector.providers import Provider

from stacks.service.notification.dispatcher import (
    NotificationDispatcher,
    dispatcher_factory,
)


class NotificationContainer(DeclarativeContainer):
    config = providers.Configuration()

    send_email = providers.Dependency()

    dispatcher: Provider[NotificationDispatcher] = providers.Singleton(
        dispatcher_factory,
        mail_server=config.server,
        send_email=send_email.provider,
    )
