"""Outgoing patron mail, sent through redmail."""

from email.message import EmailMessage
from typing import Protocol

from redmail.email.sender import EmailSender

from stacks.core.config import CannotLoadConfiguration


class SendEmailCallable(Protocol):
    """`send_email` with the emailer and sender already bound."""

    def __call__(
        self,
        *,
        subject: str,
        receivers: list[str] | str,
        html: str | None = None,
        text: str | None = None,
    ) -> EmailMessage: ...


def emailer_factory(
    host: str | None, port: int, username: str | None, password: str | None
) -> EmailSender:
    if not host:
        raise CannotLoadConfiguration(
            "No mail server configured. Set STACKS_MAIL_SERVER to send patron email."
        )
    # redmail leaves username and password as None when no login is needed.
    credentials = dict(username=username, password=password)
    return EmailSender(host=host, port=port, **credentials)  # type: ignore[arg-type]


def send_email(
    *,
    emailer: EmailSender,
    sender: str,
    subject: str,
    receivers: list[str] | str,
    html: str | None = None,
    text: str | None = None,
) -> EmailMessage:
    if isinstance(receivers, str):
        receivers = [receivers]
    return emailer.send(
        subject=subject,
        sender=sender,
        receivers=receivers,
        text=text,
        html=html,
    )
