import datetime
import logging
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from stacks.service.notification.dispatcher import (
    TEMPLATES,
    NotificationDispatcher,
    dispatcher_factory,
)
from stacks.sqlalchemy.model.notification import Notification, NotificationType
from stacks.util.datetime_helpers import datetime_utc
from tests.fixtures.database import DatabaseTransactionFixture


class DispatcherFixture:
    def __init__(self, db: DatabaseTransactionFixture):
        self.db = db
        self.send_email = MagicMock()
        self.dispatcher = NotificationDispatcher(self.send_email)
        self.patron = db.patron(name="Ada", email="ada@example.org")


@pytest.fixture
def dispatcher_fixture(db: DatabaseTransactionFixture) -> DispatcherFixture:
    return DispatcherFixture(db)


def test_every_notification_type_has_a_template():
    assert set(TEMPLATES) == set(NotificationType)


def test_render():
    title, message = NotificationDispatcher.render(
        NotificationType.DUE_REMINDER,
        {"title": "Middlemarch", "due_date": datetime_utc(2024, 3, 6)},
    )
    assert title == "Item due soon"
    assert message == "'Middlemarch' is due on 2024-03-06."

    with pytest.raises(KeyError):
        NotificationDispatcher.render(NotificationType.DUE_REMINDER, {})


class TestNotify:
    def test_records_and_emails(self, dispatcher_fixture: DispatcherFixture):
        db = dispatcher_fixture.db
        due = datetime_utc(2024, 3, 18, 10)

        notification = dispatcher_fixture.dispatcher.notify(
            db.session,
            dispatcher_fixture.patron,
            NotificationType.ITEM_ISSUED,
            entity_type="loan",
            entity_id=12,
            title="Middlemarch",
            due_date=due,
            transaction_id="TXN-1",
        )

        assert isinstance(notification, Notification)
        assert notification.id is not None
        assert notification.patron == dispatcher_fixture.patron
        assert notification.type == NotificationType.ITEM_ISSUED
        assert notification.title == "Item issued"
        assert notification.message == (
            "'Middlemarch' has been issued to you. Please return it by 2024-03-18."
        )
        assert notification.entity_type == "loan"
        assert notification.entity_id == 12
        assert notification.read is False
        # The payload is stored as JSON.
        data = dict(notification.data)
        stored_due = data.pop("due_date")
        assert datetime.datetime.fromisoformat(stored_due) == due
        assert data == {"title": "Middlemarch", "transaction_id": "TXN-1"}

        dispatcher_fixture.send_email.assert_called_once_with(
            subject="Item issued",
            receivers=["ada@example.org"],
            text=notification.message,
        )

    def test_amounts_are_stored_as_json(self, dispatcher_fixture: DispatcherFixture):
        notification = dispatcher_fixture.dispatcher.notify(
            dispatcher_fixture.db.session,
            dispatcher_fixture.patron,
            NotificationType.FINE_APPLIED,
            entity_type="fine",
            entity_id=3,
            title="Middlemarch",
            reason="overdue",
            amount=Decimal("2.00"),
        )
        assert notification is not None
        assert notification.message == (
            "A fine of 2.00 (overdue) has been applied to your account for 'Middlemarch'."
        )
        assert notification.data["amount"] == "2.00"

    def test_patron_without_email(self, dispatcher_fixture: DispatcherFixture):
        db = dispatcher_fixture.db
        patron = db.patron(name="No Email", email=None)

        notification = dispatcher_fixture.dispatcher.notify(
            db.session, patron, NotificationType.HOLD_CANCELLED, title="Emma"
        )

        # Still recorded in-app.
        assert notification is not None
        assert patron.notifications == [notification]
        dispatcher_fixture.send_email.assert_not_called()

    def test_render_failure(
        self, dispatcher_fixture: DispatcherFixture, caplog: pytest.LogCaptureFixture
    ):
        db = dispatcher_fixture.db
        caplog.set_level(logging.ERROR)

        notification = dispatcher_fixture.dispatcher.notify(
            db.session, dispatcher_fixture.patron, NotificationType.HOLD_PLACED
        )

        assert notification is None
        assert db.session.query(Notification).count() == 0
        dispatcher_fixture.send_email.assert_not_called()
        assert "Could not render HoldPlaced notification" in caplog.text

    def test_record_failure(
        self,
        dispatcher_fixture: DispatcherFixture,
        caplog: pytest.LogCaptureFixture,
        monkeypatch: pytest.MonkeyPatch,
    ):
        db = dispatcher_fixture.db
        caplog.set_level(logging.ERROR)
        patron = dispatcher_fixture.patron

        def broken_add(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("disk full"))

        monkeypatch.setattr(db.session, "add", broken_add)
        notification = dispatcher_fixture.dispatcher.notify(
            db.session, patron, NotificationType.HOLD_CANCELLED, title="Emma"
        )

        assert notification is None
        dispatcher_fixture.send_email.assert_not_called()
        assert "Could not record HoldCancelled notification" in caplog.text

    def test_email_failure_is_logged(
        self, dispatcher_fixture: DispatcherFixture, caplog: pytest.LogCaptureFixture
    ):
        db = dispatcher_fixture.db
        caplog.set_level(logging.ERROR)
        dispatcher_fixture.send_email.side_effect = ConnectionRefusedError()

        notification = dispatcher_fixture.dispatcher.notify(
            db.session,
            dispatcher_fixture.patron,
            NotificationType.ITEM_RETURNED,
            title="Emma",
        )

        # The notification is kept even though it couldn't be e-mailed.
        assert notification is not None
        assert notification.id is not None
        assert "Failed to e-mail patron" in caplog.text


class TestDeliver:
    def test_deliver(self, dispatcher_fixture: DispatcherFixture):
        dispatcher = dispatcher_fixture.dispatcher
        assert dispatcher.deliver(dispatcher_fixture.patron, "Subject", "Body") is True
        dispatcher_fixture.send_email.assert_called_once_with(
            subject="Subject", receivers=["ada@example.org"], text="Body"
        )

    def test_without_email_service(self, dispatcher_fixture: DispatcherFixture):
        dispatcher = NotificationDispatcher()
        assert dispatcher.deliver(dispatcher_fixture.patron, "Subject", "Body") is False


def test_dispatcher_factory():
    send_email = MagicMock()

    dispatcher = dispatcher_factory(None, send_email)
    assert dispatcher._send_email is None

    dispatcher = dispatcher_factory("smtp.example.org", send_email)
    assert dispatcher._send_email is send_email


def test_notification_created_at(dispatcher_fixture: DispatcherFixture):
    db = dispatcher_fixture.db
    notification = dispatcher_fixture.dispatcher.notify(
        db.session,
        dispatcher_fixture.patron,
        NotificationType.RENEWAL_REJECTED,
        title="Emma",
    )
    assert notification is not None
    assert isinstance(notification.created_at, datetime.datetime)
    assert notification.created_at.tzinfo is not None
