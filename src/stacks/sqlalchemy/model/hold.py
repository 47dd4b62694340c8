# HoldRequest, Queue, QueueMember
from __future__ import annotations

import datetime
import math
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import (
    Column,
    Enum as SaEnum,
    ForeignKey,
    Index,
    Integer,
    Unicode,
    text,
)
from sqlalchemy.orm import Mapped, relationship

from stacks.circulation.exceptions import InvalidStateTransition
from stacks.sqlalchemy.model.base import Base
from stacks.sqlalchemy.types import UtcDateTime
from stacks.util.datetime_helpers import utc_now

if TYPE_CHECKING:
    from stacks.sqlalchemy.model.catalog import Copy, Item
    from stacks.sqlalchemy.model.loan import Loan
    from stacks.sqlalchemy.model.patron import Patron


class HoldRequestType(StrEnum):
    BORROW = "Borrow"


class HoldRequestStatus(StrEnum):
    PENDING = "Pending"
    APPROVED = "Approved"
    FULFILLED = "Fulfilled"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


HOLD_REQUEST_TRANSITIONS: dict[HoldRequestStatus, frozenset[HoldRequestStatus]] = {
    HoldRequestStatus.PENDING: frozenset(
        {
            HoldRequestStatus.APPROVED,
            HoldRequestStatus.FULFILLED,
            HoldRequestStatus.REJECTED,
            HoldRequestStatus.CANCELLED,
        }
    ),
    HoldRequestStatus.APPROVED: frozenset(
        {
            HoldRequestStatus.FULFILLED,
            HoldRequestStatus.REJECTED,
            HoldRequestStatus.CANCELLED,
        }
    ),
    HoldRequestStatus.FULFILLED: frozenset(),
    HoldRequestStatus.REJECTED: frozenset(),
    HoldRequestStatus.CANCELLED: frozenset(),
}


class HoldRequest(Base):
    """The durable record of a patron waiting for an item.

    The item's `Queue` decides who is served next; this row is the
    audit trail of the same fact and is kept in step with it.
    """

    __tablename__ = "hold_requests"
    id: Mapped[int] = Column(Integer, primary_key=True)

    patron_id: Mapped[int] = Column(
        Integer, ForeignKey("patrons.id"), index=True, nullable=False
    )
    patron: Mapped[Patron] = relationship("Patron", back_populates="hold_requests")
    item_id: Mapped[int] = Column(
        Integer, ForeignKey("items.id"), index=True, nullable=False
    )
    item: Mapped[Item] = relationship("Item", back_populates="hold_requests")

    request_type: Mapped[HoldRequestType] = Column(
        SaEnum(HoldRequestType), nullable=False, default=HoldRequestType.BORROW
    )
    status: Mapped[HoldRequestStatus] = Column(
        SaEnum(HoldRequestStatus),
        nullable=False,
        default=HoldRequestStatus.PENDING,
        index=True,
    )
    # Higher priority requests are served first.
    priority: Mapped[int] = Column(Integer, nullable=False, default=0)
    request_date: Mapped[datetime.datetime] = Column(
        UtcDateTime, nullable=False, default=utc_now
    )
    notes = Column(Unicode)

    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=True)
    loan: Mapped[Loan | None] = relationship("Loan")

    review_date = Column(UtcDateTime, nullable=True)
    review_notes = Column(Unicode, nullable=True)

    __table_args__ = (
        # A patron can only be waiting once for any given item.
        Index(
            "ix_hold_requests_open_per_patron_item",
            "patron_id",
            "item_id",
            unique=True,
            postgresql_where=text("status IN ('PENDING', 'APPROVED')"),
            sqlite_where=text("status IN ('PENDING', 'APPROVED')"),
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.status in (HoldRequestStatus.PENDING, HoldRequestStatus.APPROVED)

    def transition(
        self,
        status: HoldRequestStatus,
        when: datetime.datetime | None = None,
        notes: str | None = None,
    ) -> None:
        """Move this request to a new status, recording when and why.

        :raise InvalidStateTransition: If the request can't move from its
            current status to `status`.
        """
        if status not in HOLD_REQUEST_TRANSITIONS[self.status]:
            raise InvalidStateTransition(
                f"Hold request {self.id} cannot go from {self.status} to {status}."
            )
        self.status = status
        self.review_date = when or utc_now()
        if notes is not None:
            self.review_notes = notes

    def __repr__(self) -> str:
        return (
            f"<HoldRequest id={self.id} patron_id={self.patron_id} "
            f"item_id={self.item_id} status={self.status}>"
        )


class QueueMemberStatus(StrEnum):
    WAITING = "waiting"
    ISSUED = "issued"
    SKIPPED = "skipped"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class QueueMember(Base):
    """A patron's place in an item's queue.

    Only `waiting` members hold a position. Members who leave the queue
    keep their row, with the reason they left, and lose their position.
    """

    __tablename__ = "queue_members"
    id: Mapped[int] = Column(Integer, primary_key=True)
    queue_id: Mapped[int] = Column(
        Integer, ForeignKey("queues.id", ondelete="CASCADE"), index=True, nullable=False
    )
    queue: Mapped[Queue] = relationship("Queue", back_populates="members")
    patron_id: Mapped[int] = Column(
        Integer, ForeignKey("patrons.id"), index=True, nullable=False
    )
    patron: Mapped[Patron] = relationship("Patron")
    hold_request_id = Column(Integer, ForeignKey("hold_requests.id"), nullable=True)
    hold_request: Mapped[HoldRequest | None] = relationship("HoldRequest")

    position = Column(Integer, nullable=True)
    priority: Mapped[int] = Column(Integer, nullable=False, default=0)
    date_joined: Mapped[datetime.datetime] = Column(
        UtcDateTime, nullable=False, default=utc_now
    )
    status: Mapped[QueueMemberStatus] = Column(
        SaEnum(QueueMemberStatus), nullable=False, default=QueueMemberStatus.WAITING
    )
    date_left = Column(UtcDateTime, nullable=True)

    @property
    def rank(self) -> tuple[int, datetime.datetime, float]:
        # Members that already have a position keep their relative order
        # when priority and join time are equal; newcomers go last.
        position = self.position if self.position is not None else math.inf
        return (-self.priority, self.date_joined, position)

    def __repr__(self) -> str:
        return (
            f"<QueueMember patron_id={self.patron_id} position={self.position} "
            f"priority={self.priority} status={self.status}>"
        )


class Queue(Base):
    """The ordered waiting list for one item."""

    __tablename__ = "queues"
    id: Mapped[int] = Column(Integer, primary_key=True)
    item_id: Mapped[int] = Column(
        Integer, ForeignKey("items.id"), unique=True, nullable=False
    )
    item: Mapped[Item] = relationship("Item", back_populates="queue")

    members: Mapped[list[QueueMember]] = relationship(
        "QueueMember",
        back_populates="queue",
        cascade="all, delete-orphan",
        order_by="QueueMember.id",
    )

    # The last admission out of this queue: who was offered a freed
    # copy, which copy, and the loan it turned into.
    current_notified_patron_id = Column(
        Integer, ForeignKey("patrons.id"), nullable=True
    )
    assigned_copy_id = Column(Integer, ForeignKey("copies.id"), nullable=True)
    assigned_copy: Mapped[Copy | None] = relationship("Copy")
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=True)
    updated_at = Column(UtcDateTime, nullable=True, onupdate=utc_now)

    @property
    def waiting(self) -> list[QueueMember]:
        """Members still waiting, in the order they will be served."""
        return sorted(
            (m for m in self.members if m.status == QueueMemberStatus.WAITING),
            key=lambda m: m.rank,
        )

    @property
    def waiting_count(self) -> int:
        return len(self.waiting)

    def member_for(self, patron_id: int) -> QueueMember | None:
        for member in self.waiting:
            if member.patron_id == patron_id:
                return member
        return None

    def add(self, member: QueueMember) -> None:
        # Column defaults only apply at INSERT, and renumbering needs them now.
        if member.status is None:
            member.status = QueueMemberStatus.WAITING
        if member.date_joined is None:
            member.date_joined = utc_now()
        self.members.append(member)
        self.renumber()

    def remove(
        self,
        member: QueueMember,
        status: QueueMemberStatus,
        when: datetime.datetime | None = None,
    ) -> None:
        """Take a member out of the line and close the gap they leave."""
        member.status = status
        member.position = None
        member.date_left = when or utc_now()
        self.renumber()
        if status == QueueMemberStatus.WITHDRAWN and (
            self.current_notified_patron_id == member.patron_id
        ):
            self.clear_offer()

    def renumber(self) -> None:
        for position, member in enumerate(self.waiting, start=1):
            member.position = position

    def record_offer(self, patron_id: int, copy_id: int, loan_id: int) -> None:
        self.current_notified_patron_id = patron_id
        self.assigned_copy_id = copy_id
        self.loan_id = loan_id

    def clear_offer(self) -> None:
        self.current_notified_patron_id = None
        self.assigned_copy_id = None
        self.loan_id = None

    def __repr__(self) -> str:
        return f"<Queue id={self.id} item_id={self.item_id} waiting={self.waiting_count}>"
