from __future__ import annotations

import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import Column, Enum as SaEnum, Integer, Unicode
from sqlalchemy.orm import Mapped, relationship

from stacks.sqlalchemy.model.base import Base
from stacks.sqlalchemy.types import UtcDateTime
from stacks.util.datetime_helpers import utc_now

if TYPE_CHECKING:
    from stacks.sqlalchemy.model.fine import Fine
    from stacks.sqlalchemy.model.hold import HoldRequest
    from stacks.sqlalchemy.model.loan import Loan
    from stacks.sqlalchemy.model.notification import Notification


class PatronStatus(StrEnum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    LOCKED = "Locked"


class Patron(Base):
    __tablename__ = "patrons"
    id: Mapped[int] = Column(Integer, primary_key=True)

    # The patron's identifier in the library's user store.
    external_identifier = Column(Unicode, unique=True, nullable=True)
    name: Mapped[str] = Column(Unicode, nullable=False)
    email = Column(Unicode, nullable=True)
    status: Mapped[PatronStatus] = Column(
        SaEnum(PatronStatus), nullable=False, default=PatronStatus.ACTIVE
    )
    created: Mapped[datetime.datetime] = Column(
        UtcDateTime, nullable=False, default=utc_now
    )

    loans: Mapped[list[Loan]] = relationship("Loan", back_populates="patron")
    hold_requests: Mapped[list[HoldRequest]] = relationship(
        "HoldRequest", back_populates="patron"
    )
    fines: Mapped[list[Fine]] = relationship("Fine", back_populates="patron")
    notifications: Mapped[list[Notification]] = relationship(
        "Notification", back_populates="patron"
    )

    @property
    def is_active(self) -> bool:
        """Only Active patrons may borrow or be served from a holds queue."""
        return self.status == PatronStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Patron id={self.id} name={self.name!r} status={self.status}>"
