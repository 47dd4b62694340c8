# Item, Copy
from __future__ import annotations

import datetime
from decimal import Decimal
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    Column,
    Enum as SaEnum,
    ForeignKey,
    Integer,
    Unicode,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, relationship

from stacks.sqlalchemy.model.base import Base, MoneyType
from stacks.sqlalchemy.types import UtcDateTime

if TYPE_CHECKING:
    from stacks.sqlalchemy.model.hold import HoldRequest, Queue
    from stacks.sqlalchemy.model.loan import Loan


class CopyStatus(StrEnum):
    AVAILABLE = "Available"
    ISSUED = "Issued"
    UNDER_REPAIR = "Under Repair"
    LOST = "Lost"


class CopyCondition(StrEnum):
    NEW = "New"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
    DAMAGED = "Damaged"


class Item(Base):
    """A title in the catalog. The library owns one or more physical
    copies of it.

    `available_copies` is a cached count of the copies whose status is
    Available. It is never assigned directly once the item is in
    circulation: `CatalogStore` changes it with conditional UPDATEs, so
    two concurrent transactions can never both take the last copy.
    """

    __tablename__ = "items"
    id: Mapped[int] = Column(Integer, primary_key=True)
    title: Mapped[str] = Column(Unicode, nullable=False, index=True)
    author = Column(Unicode)
    isbn = Column(Unicode, unique=True, nullable=True)

    quantity: Mapped[int] = Column(Integer, nullable=False, default=0)
    available_copies: Mapped[int] = Column(Integer, nullable=False, default=0)
    price: Mapped[Decimal] = Column(MoneyType, nullable=False, default=Decimal("0"))
    default_loan_period_days: Mapped[int] = Column(Integer, nullable=False, default=14)

    copies: Mapped[list[Copy]] = relationship(
        "Copy", back_populates="item", order_by="Copy.copy_number"
    )
    loans: Mapped[list[Loan]] = relationship("Loan", back_populates="item")
    hold_requests: Mapped[list[HoldRequest]] = relationship(
        "HoldRequest", back_populates="item"
    )
    queue: Mapped[Queue | None] = relationship(
        "Queue", back_populates="item", uselist=False
    )

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_items_quantity"),
        CheckConstraint(
            "available_copies >= 0 AND available_copies <= quantity",
            name="ck_items_available_copies",
        ),
    )

    @property
    def default_loan_period(self) -> datetime.timedelta:
        return datetime.timedelta(days=self.default_loan_period_days)

    def __repr__(self) -> str:
        return (
            f"<Item id={self.id} title={self.title!r} "
            f"available={self.available_copies}/{self.quantity}>"
        )


class Copy(Base):
    """One physical unit of an Item."""

    __tablename__ = "copies"
    id: Mapped[int] = Column(Integer, primary_key=True)
    item_id: Mapped[int] = Column(
        Integer, ForeignKey("items.id", ondelete="CASCADE"), index=True, nullable=False
    )
    item: Mapped[Item] = relationship("Item", back_populates="copies")

    copy_number: Mapped[int] = Column(Integer, nullable=False)
    barcode: Mapped[str] = Column(Unicode, unique=True, nullable=False)
    status: Mapped[CopyStatus] = Column(
        SaEnum(CopyStatus), nullable=False, default=CopyStatus.AVAILABLE, index=True
    )
    condition: Mapped[CopyCondition] = Column(
        SaEnum(CopyCondition), nullable=False, default=CopyCondition.GOOD
    )
    notes = Column(Unicode)
    last_issued_date = Column(UtcDateTime)

    loans: Mapped[list[Loan]] = relationship("Loan", back_populates="copy")

    __table_args__ = (UniqueConstraint("item_id", "copy_number"),)

    def __repr__(self) -> str:
        return f"<Copy id={self.id} item_id={self.item_id} number={self.copy_number} status={self.status}>"
