from __future__ import annotations

from collections.abc import Sequence
from typing import Any
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select

from stacks.circulation.service import CirculationService
from stacks.service.circulation.configuration import CirculationConfiguration
from stacks.service.notification.dispatcher import NotificationDispatcher
from stacks.sqlalchemy.model.catalog import CopyStatus, Item
from stacks.sqlalchemy.model.hold import Queue
from stacks.sqlalchemy.model.notification import Notification, NotificationType
from stacks.sqlalchemy.model.patron import Patron
from tests.fixtures.database import DatabaseTransactionFixture


class CirculationFixture:
    """A CirculationService wired to the test transaction, with a real
    notification dispatcher whose e-mail sending is mocked out.
    """

    def __init__(self, db: DatabaseTransactionFixture) -> None:
        self.db = db
        self.send_email = MagicMock()
        self.dispatcher = NotificationDispatcher(send_email=self.send_email)
        self.settings = CirculationConfiguration()
        self.service = CirculationService(db.session, self.settings, self.dispatcher)

    def configure(self, **overrides: Any) -> CirculationService:
        """Swap in different library policy settings."""
        self.settings = self.settings.model_copy(update=overrides)
        self.service = CirculationService(
            self.db.session, self.settings, self.dispatcher
        )
        return self.service

    def notifications(
        self, patron: Patron, notification_type: NotificationType | None = None
    ) -> Sequence[Notification]:
        query = select(Notification).where(Notification.patron_id == patron.id)
        if notification_type is not None:
            query = query.where(Notification.type == notification_type)
        return self.db.session.scalars(query.order_by(Notification.id)).all()

    def queue(self, item: Item) -> Queue:
        return self.db.session.scalars(
            select(Queue).where(Queue.item_id == item.id)
        ).one()

    def assert_counts_consistent(self, item: Item) -> None:
        """The cached available count matches the copies on the shelf."""
        self.db.session.expire(item)
        shelf = sum(1 for c in item.copies if c.status == CopyStatus.AVAILABLE)
        assert item.available_copies == shelf
        assert 0 <= item.available_copies <= item.quantity


@pytest.fixture
def circulation(db: DatabaseTransactionFixture) -> CirculationFixture:
    return CirculationFixture(db)
