# Fine, FinePayment
from __future__ import annotations

import datetime
from decimal import Decimal
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import (
    Column,
    Enum as SaEnum,
    ForeignKey,
    Index,
    Integer,
    Unicode,
)
from sqlalchemy.orm import Mapped, relationship

from stacks.circulation.exceptions import FineAlreadySettled, InvalidPaymentAmount
from stacks.sqlalchemy.model.base import Base, MoneyType
from stacks.sqlalchemy.types import UtcDateTime
from stacks.util.datetime_helpers import utc_now

if TYPE_CHECKING:
    from stacks.sqlalchemy.model.catalog import Item
    from stacks.sqlalchemy.model.loan import Loan
    from stacks.sqlalchemy.model.patron import Patron


class FineReason(StrEnum):
    OVERDUE = "Overdue"
    DAMAGED = "Damaged"
    LOST = "Lost"
    MANUAL = "Manual"


class FineStatus(StrEnum):
    OUTSTANDING = "Outstanding"
    PARTIAL_PAID = "Partial Paid"
    PAID = "Paid"
    WAIVED = "Waived"


class PaymentMethod(StrEnum):
    CASH = "Cash"
    CARD = "Card"
    ONLINE_TRANSFER = "Online Transfer"


class Fine(Base):
    """Money a patron owes the library.

    Fines are never deleted. A loan-linked fine exists at most once per
    reason, which is what keeps overdue fines from being charged twice.
    """

    __tablename__ = "fines"
    id: Mapped[int] = Column(Integer, primary_key=True)
    patron_id: Mapped[int] = Column(
        Integer, ForeignKey("patrons.id"), index=True, nullable=False
    )
    patron: Mapped[Patron] = relationship("Patron", back_populates="fines")
    item_id = Column(Integer, ForeignKey("items.id"), index=True, nullable=True)
    item: Mapped[Item | None] = relationship("Item")
    # Null for fines an administrator raised by hand.
    loan_id = Column(Integer, ForeignKey("loans.id"), index=True, nullable=True)
    loan: Mapped[Loan | None] = relationship("Loan", back_populates="fines")

    amount: Mapped[Decimal] = Column(MoneyType, nullable=False)
    reason: Mapped[FineReason] = Column(SaEnum(FineReason), nullable=False)
    status: Mapped[FineStatus] = Column(
        SaEnum(FineStatus), nullable=False, default=FineStatus.OUTSTANDING, index=True
    )
    created: Mapped[datetime.datetime] = Column(
        UtcDateTime, nullable=False, default=utc_now
    )
    # When payment is due.
    due_date = Column(UtcDateTime, nullable=True)
    notes = Column(Unicode)

    waived_by = Column(Unicode, nullable=True)
    waived_reason = Column(Unicode, nullable=True)
    waived_date = Column(UtcDateTime, nullable=True)

    payments: Mapped[list[FinePayment]] = relationship(
        "FinePayment",
        back_populates="fine",
        order_by="FinePayment.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index(
            "ix_fines_loan_reason",
            "loan_id",
            "reason",
            unique=True,
            postgresql_where=loan_id.isnot(None),
            sqlite_where=loan_id.isnot(None),
        ),
    )

    @property
    def paid_amount(self) -> Decimal:
        return sum((p.amount for p in self.payments), Decimal("0.00"))

    @property
    def remaining_amount(self) -> Decimal:
        if self.status == FineStatus.WAIVED:
            return Decimal("0.00")
        return max(Decimal(self.amount) - self.paid_amount, Decimal("0.00"))

    @property
    def is_settled(self) -> bool:
        return self.status in (FineStatus.PAID, FineStatus.WAIVED)

    def record_payment(
        self,
        amount: Decimal,
        method: PaymentMethod,
        reference: str | None = None,
        notes: str | None = None,
        when: datetime.datetime | None = None,
    ) -> FinePayment:
        """Apply a payment to this fine and update its status.

        :raise FineAlreadySettled: If the fine is already paid or waived.
        :raise InvalidPaymentAmount: If the amount isn't positive or is more
            than what's still owed.
        """
        if self.is_settled:
            raise FineAlreadySettled(f"Fine {self.id} is already {self.status}.")
        amount = Decimal(amount)
        remaining = self.remaining_amount
        if amount <= 0 or amount > remaining:
            raise InvalidPaymentAmount(
                f"Payment must be between 0.01 and {remaining}, got {amount}."
            )
        payment = FinePayment(
            amount=amount,
            method=method,
            reference=reference,
            notes=notes,
            date=when or utc_now(),
        )
        self.payments.append(payment)
        self.status = (
            FineStatus.PAID if amount == remaining else FineStatus.PARTIAL_PAID
        )
        return payment

    def waive(
        self, waived_by: str, reason: str, when: datetime.datetime | None = None
    ) -> None:
        if self.is_settled:
            raise FineAlreadySettled(f"Fine {self.id} is already {self.status}.")
        self.status = FineStatus.WAIVED
        self.waived_by = waived_by
        self.waived_reason = reason
        self.waived_date = when or utc_now()

    def __repr__(self) -> str:
        return (
            f"<Fine id={self.id} loan_id={self.loan_id} reason={self.reason} "
            f"amount={self.amount} status={self.status}>"
        )


class FinePayment(Base):
    __tablename__ = "fine_payments"
    id: Mapped[int] = Column(Integer, primary_key=True)
    fine_id: Mapped[int] = Column(
        Integer, ForeignKey("fines.id", ondelete="CASCADE"), index=True, nullable=False
    )
    fine: Mapped[Fine] = relationship("Fine", back_populates="payments")
    amount: Mapped[Decimal] = Column(MoneyType, nullable=False)
    method: Mapped[PaymentMethod] = Column(SaEnum(PaymentMethod), nullable=False)
    reference = Column(Unicode, nullable=True)
    date: Mapped[datetime.datetime] = Column(
        UtcDateTime, nullable=False, default=utc_now
    )
    notes = Column(Unicode)
