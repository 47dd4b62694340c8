from __future__ import annotations

import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Enum as SaEnum,
    ForeignKey,
    Index,
    Integer,
    Unicode,
)
from sqlalchemy.orm import Mapped, relationship

from stacks.sqlalchemy.model.base import Base
from stacks.sqlalchemy.types import UtcDateTime
from stacks.util.datetime_helpers import utc_now

if TYPE_CHECKING:
    from stacks.sqlalchemy.model.patron import Patron


class NotificationType(StrEnum):
    ITEM_ISSUED = "ItemIssued"
    ITEM_RETURNED = "ItemReturned"
    FINE_APPLIED = "FineApplied"
    DUE_REMINDER = "DueReminder"
    HOLD_PLACED = "HoldPlaced"
    HOLD_FULFILLED = "HoldFulfilled"
    HOLD_REJECTED = "HoldRejected"
    HOLD_CANCELLED = "HoldCancelled"
    DUE_DATE_EXTENDED = "DueDateExtended"
    RENEWAL_REQUESTED = "RenewalRequested"
    RENEWAL_APPROVED = "RenewalApproved"
    RENEWAL_REJECTED = "RenewalRejected"


class Notification(Base):
    """The in-app record of an event that was sent to a patron."""

    __tablename__ = "notifications"
    id: Mapped[int] = Column(Integer, primary_key=True)
    patron_id: Mapped[int] = Column(
        Integer, ForeignKey("patrons.id"), index=True, nullable=False
    )
    patron: Mapped[Patron] = relationship("Patron", back_populates="notifications")

    type: Mapped[NotificationType] = Column(SaEnum(NotificationType), nullable=False)
    title: Mapped[str] = Column(Unicode, nullable=False)
    message: Mapped[str] = Column(Unicode, nullable=False)

    # The record the notification is about, e.g. ("loan", 12).
    entity_type = Column(Unicode, nullable=True)
    entity_id = Column(Integer, nullable=True)
    data: Mapped[dict[str, Any]] = Column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime.datetime] = Column(
        UtcDateTime, nullable=False, default=utc_now, index=True
    )
    read: Mapped[bool] = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_notifications_entity", "entity_type", "entity_id", "type"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} patron_id={self.patron_id} type={self.type}>"
