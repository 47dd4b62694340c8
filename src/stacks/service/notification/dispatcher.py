"""Patron notifications.

Every circulation event a patron should hear about is recorded as a
`Notification` row in the same unit of work as the event itself, and
e-mailed to the patron when a mail server is configured. Delivery is
best effort: a failure is logged and never undoes the circulation
change that caused it.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from pydantic_core import to_jsonable_python
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stacks.service.email.email import SendEmailCallable
from stacks.sqlalchemy.model.notification import Notification, NotificationType
from stacks.sqlalchemy.model.patron import Patron
from stacks.util.log import LoggerMixin

# Title and message for each kind of notification. The message is
# formatted with the payload the caller passes to `notify`.
TEMPLATES: Mapping[NotificationType, tuple[str, str]] = {
    NotificationType.ITEM_ISSUED: (
        "Item issued",
        "'{title}' has been issued to you. Please return it by {due_date:%Y-%m-%d}.",
    ),
    NotificationType.ITEM_RETURNED: (
        "Item returned",
        "Thank you for returning '{title}'.",
    ),
    NotificationType.FINE_APPLIED: (
        "Fine applied",
        "A fine of {amount} ({reason}) has been applied to your account for '{title}'.",
    ),
    NotificationType.DUE_REMINDER: (
        "Item due soon",
        "'{title}' is due on {due_date:%Y-%m-%d}.",
    ),
    NotificationType.HOLD_PLACED: (
        "Hold placed",
        "You are number {position} in line for '{title}'.",
    ),
    NotificationType.HOLD_FULFILLED: (
        "Hold fulfilled",
        "'{title}' is now on loan to you. Please return it by {due_date:%Y-%m-%d}.",
    ),
    NotificationType.HOLD_REJECTED: (
        "Hold rejected",
        "Your hold on '{title}' was rejected: {reason}",
    ),
    NotificationType.HOLD_CANCELLED: (
        "Hold cancelled",
        "Your hold on '{title}' has been cancelled.",
    ),
    NotificationType.DUE_DATE_EXTENDED: (
        "Due date extended",
        "'{title}' is now due on {due_date:%Y-%m-%d}.",
    ),
    NotificationType.RENEWAL_REQUESTED: (
        "Renewal requested",
        "Your request to renew '{title}' until {requested_due_date:%Y-%m-%d} is awaiting review.",
    ),
    NotificationType.RENEWAL_APPROVED: (
        "Renewal approved",
        "Your renewal of '{title}' was approved. It is now due on {due_date:%Y-%m-%d}.",
    ),
    NotificationType.RENEWAL_REJECTED: (
        "Renewal rejected",
        "Your request to renew '{title}' was rejected.",
    ),
}


class NotificationDispatcherProtocol(Protocol):
    def notify(
        self,
        db: Session,
        patron: Patron,
        notification_type: NotificationType,
        *,
        entity_type: str | None = None,
        entity_id: int | None = None,
        **payload: Any,
    ) -> Notification | None: ...


class NotificationDispatcher(LoggerMixin):
    def __init__(self, send_email: SendEmailCallable | None = None) -> None:
        self._send_email = send_email

    @staticmethod
    def render(
        notification_type: NotificationType, payload: Mapping[str, Any]
    ) -> tuple[str, str]:
        title, template = TEMPLATES[notification_type]
        return title, template.format(**payload)

    def notify(
        self,
        db: Session,
        patron: Patron,
        notification_type: NotificationType,
        *,
        entity_type: str | None = None,
        entity_id: int | None = None,
        **payload: Any,
    ) -> Notification | None:
        """Record a notification for a patron and try to deliver it.

        :return: The recorded Notification, or None if it couldn't be
            recorded.
        """
        try:
            title, message = self.render(notification_type, payload)
        except (KeyError, ValueError):
            self.log.exception(
                f"Could not render {notification_type} notification for patron {patron.id}."
            )
            return None

        try:
            with db.begin_nested():
                notification = Notification(
                    patron=patron,
                    type=notification_type,
                    title=title,
                    message=message,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    data=to_jsonable_python(dict(payload)),
                )
                db.add(notification)
        except SQLAlchemyError:
            self.log.exception(
                f"Could not record {notification_type} notification for patron {patron.id}."
            )
            return None

        self.deliver(patron, title, message)
        return notification

    def deliver(self, patron: Patron, subject: str, text: str) -> bool:
        if self._send_email is None or not patron.email:
            return False
        try:
            self._send_email(subject=subject, receivers=[patron.email], text=text)
        except Exception:
            self.log.exception(f"Failed to e-mail patron {patron.id}: {subject}")
            return False
        return True


def dispatcher_factory(
    mail_server: str | None, send_email: SendEmailCallable
) -> NotificationDispatcher:
    # Without a mail server, notifications are only recorded in-app.
    return NotificationDispatcher(send_email if mail_server else None)
