from __future__ import annotations

import datetime
import uuid
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import Column, Enum as SaEnum, ForeignKey, Index, Integer, Unicode
from sqlalchemy.orm import Mapped, relationship

from stacks.sqlalchemy.model.base import Base
from stacks.sqlalchemy.types import UtcDateTime
from stacks.util.datetime_helpers import utc_now

if TYPE_CHECKING:
    from stacks.sqlalchemy.model.catalog import Copy, Item
    from stacks.sqlalchemy.model.fine import Fine
    from stacks.sqlalchemy.model.patron import Patron
    from stacks.sqlalchemy.model.renewal import RenewalRequest


class LoanStatus(StrEnum):
    ISSUED = "Issued"
    OVERDUE = "Overdue"
    RETURNED = "Returned"


class Loan(Base):
    """One borrowing episode: a patron has one copy of an item.

    A loan is active until `return_date` is set. After that it is
    history and is never modified again.
    """

    __tablename__ = "loans"
    id: Mapped[int] = Column(Integer, primary_key=True)
    transaction_id: Mapped[str] = Column(Unicode, unique=True, nullable=False)

    patron_id: Mapped[int] = Column(
        Integer, ForeignKey("patrons.id"), index=True, nullable=False
    )
    patron: Mapped[Patron] = relationship("Patron", back_populates="loans")

    item_id: Mapped[int] = Column(
        Integer, ForeignKey("items.id"), index=True, nullable=False
    )
    item: Mapped[Item] = relationship("Item", back_populates="loans")

    copy_id: Mapped[int] = Column(
        Integer, ForeignKey("copies.id"), index=True, nullable=False
    )
    copy: Mapped[Copy] = relationship("Copy", back_populates="loans")

    issue_date: Mapped[datetime.datetime] = Column(
        UtcDateTime, nullable=False, default=utc_now
    )
    due_date: Mapped[datetime.datetime] = Column(UtcDateTime, nullable=False, index=True)
    return_date = Column(UtcDateTime, nullable=True, index=True)
    status: Mapped[LoanStatus] = Column(
        SaEnum(LoanStatus), nullable=False, default=LoanStatus.ISSUED, index=True
    )
    return_condition = Column(Unicode, nullable=True)

    extension_count: Mapped[int] = Column(Integer, nullable=False, default=0)
    last_extension_date = Column(UtcDateTime, nullable=True)
    renewal_count: Mapped[int] = Column(Integer, nullable=False, default=0)
    last_renewal_date = Column(UtcDateTime, nullable=True)
    notes = Column(Unicode, nullable=True)

    fines: Mapped[list[Fine]] = relationship("Fine", back_populates="loan")
    renewal_requests: Mapped[list[RenewalRequest]] = relationship(
        "RenewalRequest", back_populates="loan"
    )

    __table_args__ = (
        # A copy can only be out on one loan at a time.
        Index(
            "ix_loans_active_copy",
            "copy_id",
            unique=True,
            postgresql_where=return_date.is_(None),
            sqlite_where=return_date.is_(None),
        ),
    )

    @staticmethod
    def generate_transaction_id(now: datetime.datetime | None = None) -> str:
        """A short, human-readable identifier such as TXN2024A1B2C3D4."""
        now = now or utc_now()
        return f"TXN{now.year}{uuid.uuid4().hex[:8].upper()}"

    @property
    def is_active(self) -> bool:
        return self.return_date is None

    def is_past_due(self, as_of: datetime.datetime | None = None) -> bool:
        as_of = as_of or utc_now()
        return self.is_active and self.due_date < as_of

    def add_note(self, note: str) -> None:
        """Append a line to the loan's audit notes."""
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Loan) or self.id is None or other.id is None:
            return NotImplemented
        return self.id < other.id

    def __repr__(self) -> str:
        return (
            f"<Loan id={self.id} transaction_id={self.transaction_id} "
            f"patron_id={self.patron_id} copy_id={self.copy_id} status={self.status}>"
        )
