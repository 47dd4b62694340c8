from __future__ import annotations

import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import Column, Enum as SaEnum, ForeignKey, Index, Integer, Unicode, text
from sqlalchemy.orm import Mapped, relationship

from stacks.sqlalchemy.model.base import Base
from stacks.sqlalchemy.types import UtcDateTime
from stacks.util.datetime_helpers import utc_now

if TYPE_CHECKING:
    from stacks.sqlalchemy.model.loan import Loan
    from stacks.sqlalchemy.model.patron import Patron


class RenewalStatus(StrEnum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class RenewalRequest(Base):
    """A patron asking for more time with a loan. Staff approve or reject it."""

    __tablename__ = "renewal_requests"
    id: Mapped[int] = Column(Integer, primary_key=True)
    loan_id: Mapped[int] = Column(
        Integer, ForeignKey("loans.id"), index=True, nullable=False
    )
    loan: Mapped[Loan] = relationship("Loan", back_populates="renewal_requests")
    patron_id: Mapped[int] = Column(
        Integer, ForeignKey("patrons.id"), index=True, nullable=False
    )
    patron: Mapped[Patron] = relationship("Patron")
    item_id: Mapped[int] = Column(Integer, ForeignKey("items.id"), nullable=False)

    request_date: Mapped[datetime.datetime] = Column(
        UtcDateTime, nullable=False, default=utc_now
    )
    current_due_date: Mapped[datetime.datetime] = Column(UtcDateTime, nullable=False)
    requested_due_date: Mapped[datetime.datetime] = Column(UtcDateTime, nullable=False)
    approved_due_date = Column(UtcDateTime, nullable=True)
    reason = Column(Unicode)

    status: Mapped[RenewalStatus] = Column(
        SaEnum(RenewalStatus), nullable=False, default=RenewalStatus.PENDING
    )
    admin_notes = Column(Unicode)
    decided_at = Column(UtcDateTime, nullable=True)

    __table_args__ = (
        Index(
            "ix_renewal_requests_pending_loan",
            "loan_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == RenewalStatus.PENDING

    def __repr__(self) -> str:
        return f"<RenewalRequest id={self.id} loan_id={self.loan_id} status={self.status}>"
