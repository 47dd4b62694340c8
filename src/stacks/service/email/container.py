from dependency_injector import providers
from dependency_injector.containers import DeclarativeContainer

from stacks.service.email.email import emailer_factory, send_email


class Email(DeclarativeContainer):
    """Mail transport used by the notification dispatcher."""

    config = providers.Configuration()

    emailer = providers.Singleton(
        emailer_factory,
        host=config.server,
        port=config.port,
        username=config.username,
        password=config.password,
    )

    send_email = providers.Callable(send_email, emailer=emailer, sender=config.sender)
