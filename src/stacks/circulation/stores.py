"""Database access for the circulation engine.

The engine and the holds queue manager only touch the database through
these stores. Counters and copy statuses that several transactions may
race on are changed with conditional UPDATE statements, never with a
read-modify-write in Python.
"""

from __future__ import annotations

import datetime
import functools
from collections.abc import Callable, Sequence
from decimal import Decimal
from typing import Any, TypeVar

from sqlalchemy import exists, or_, select, update
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
)
from sqlalchemy.orm import Session
from typing_extensions import ParamSpec

from stacks.circulation.exceptions import (
    FineNotFound,
    HoldRequestNotFound,
    ItemNotFound,
    LoanNotFound,
    PatronNotFound,
    QueueNotFound,
    RenewalNotFound,
    StoreUnavailable,
)
from stacks.sqlalchemy.model.catalog import Copy, CopyStatus, Item
from stacks.sqlalchemy.model.fine import Fine, FineReason
from stacks.sqlalchemy.model.hold import HoldRequest, HoldRequestStatus, Queue
from stacks.sqlalchemy.model.loan import Loan, LoanStatus
from stacks.sqlalchemy.model.notification import Notification, NotificationType
from stacks.sqlalchemy.model.patron import Patron
from stacks.sqlalchemy.model.renewal import RenewalRequest, RenewalStatus
from stacks.sqlalchemy.util import create, expire_attributes, get_one_or_create
from stacks.util.log import LoggerMixin

P = ParamSpec("P")
T = TypeVar("T")

STORE_UNAVAILABLE_ERRORS = (OperationalError, DisconnectionError, InterfaceError)


def translate_store_errors(fn: Callable[P, T]) -> Callable[P, T]:
    """Surface lost database connections as a retryable StoreUnavailable."""

    @functools.wraps(fn)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return fn(*args, **kwargs)
        except STORE_UNAVAILABLE_ERRORS as e:
            raise StoreUnavailable(
                "The circulation database is unavailable.", debug_info=str(e)
            ) from e

    return wrapper


class _Store(LoggerMixin):
    def __init__(self, db: Session):
        self._db = db

    @property
    def db(self) -> Session:
        return self._db


class PatronStore(_Store):
    @translate_store_errors
    def get_patron(self, patron_id: int) -> Patron:
        patron = self._db.get(Patron, patron_id)
        if patron is None:
            raise PatronNotFound(f"Patron {patron_id} not found.")
        return patron

    @translate_store_errors
    def is_active_patron(self, patron_id: int) -> bool:
        patron = self._db.get(Patron, patron_id)
        return patron is not None and patron.is_active


class CatalogStore(_Store):
    @translate_store_errors
    def get_item(self, item_id: int) -> Item:
        item = self._db.get(Item, item_id)
        if item is None:
            raise ItemNotFound(f"Item {item_id} not found.")
        return item

    @translate_store_errors
    def find_available_copy(self, item_id: int) -> Copy | None:
        return self._db.scalars(
            select(Copy)
            .where(Copy.item_id == item_id, Copy.status == CopyStatus.AVAILABLE)
            .order_by(Copy.copy_number)
            .limit(1)
        ).first()

    @translate_store_errors
    def claim_copy(self, copy_id: int, when: datetime.datetime) -> bool:
        """Move a copy from Available to Issued.

        :return: False if some other transaction got the copy first.
        """
        result = self._db.execute(
            update(Copy)
            .where(Copy.id == copy_id, Copy.status == CopyStatus.AVAILABLE)
            .values(status=CopyStatus.ISSUED, last_issued_date=when)
            .execution_options(synchronize_session=False)
        )
        expire_attributes(self._db, Copy, copy_id, "status", "last_issued_date")
        return result.rowcount == 1  # type: ignore[attr-defined, no-any-return]

    @translate_store_errors
    def set_copy_status(
        self, copy: Copy, status: CopyStatus, notes: str | None = None
    ) -> None:
        copy.status = status
        if notes:
            copy.notes = f"{copy.notes}\n{notes}" if copy.notes else notes

    @translate_store_errors
    def decrement_available_copies(self, item_id: int) -> bool:
        """Take one copy out of the item's available count.

        :return: False if the count was already zero.
        """
        result = self._db.execute(
            update(Item)
            .where(Item.id == item_id, Item.available_copies > 0)
            .values(available_copies=Item.available_copies - 1)
            .execution_options(synchronize_session=False)
        )
        expire_attributes(self._db, Item, item_id, "available_copies")
        return result.rowcount == 1  # type: ignore[attr-defined, no-any-return]

    @translate_store_errors
    def increment_available_copies(self, item_id: int) -> bool:
        result = self._db.execute(
            update(Item)
            .where(Item.id == item_id, Item.available_copies < Item.quantity)
            .values(available_copies=Item.available_copies + 1)
            .execution_options(synchronize_session=False)
        )
        expire_attributes(self._db, Item, item_id, "available_copies")
        return result.rowcount == 1  # type: ignore[attr-defined, no-any-return]

    @translate_store_errors
    def available_copy_count(self, item_id: int) -> int:
        """Count the Available copies directly, ignoring the cached counter."""
        return len(
            self._db.scalars(
                select(Copy.id).where(
                    Copy.item_id == item_id, Copy.status == CopyStatus.AVAILABLE
                )
            ).all()
        )

    def allocate_copy(self, item_id: int, when: datetime.datetime) -> Copy | None:
        """Reserve one available copy of an item for a new loan.

        The item's counter is taken first, so only as many transactions as
        there are available copies ever get to claim one. If the counter
        says a copy is free but every claim loses a race, the counter is
        given back.

        :return: The claimed copy, or None if nothing is available.
        """
        if not self.decrement_available_copies(item_id):
            return None
        while (copy := self.find_available_copy(item_id)) is not None:
            if self.claim_copy(copy.id, when):
                return copy
        self.log.warning(
            f"Item {item_id} counted an available copy but none could be claimed."
        )
        self.increment_available_copies(item_id)
        return None


class LedgerStore(_Store):
    # Loans

    @translate_store_errors
    def get_loan(self, loan_id: int) -> Loan:
        loan = self._db.get(Loan, loan_id)
        if loan is None:
            raise LoanNotFound(f"Loan {loan_id} not found.")
        return loan

    @translate_store_errors
    def active_loan(self, item_id: int, patron_id: int) -> Loan | None:
        return self._db.scalars(
            select(Loan)
            .where(
                Loan.item_id == item_id,
                Loan.patron_id == patron_id,
                Loan.return_date.is_(None),
            )
            .order_by(Loan.issue_date)
            .limit(1)
        ).first()

    @translate_store_errors
    def add_loan(
        self,
        item: Item,
        patron: Patron,
        copy: Copy,
        due_date: datetime.datetime,
        when: datetime.datetime,
        notes: str | None = None,
    ) -> Loan:
        loan, _ = create(
            self._db,
            Loan,
            transaction_id=Loan.generate_transaction_id(when),
            item=item,
            patron=patron,
            copy=copy,
            issue_date=when,
            due_date=due_date,
            status=LoanStatus.ISSUED,
            notes=notes,
        )
        return loan

    @translate_store_errors
    def loans_past_due(
        self,
        cutoff: datetime.datetime,
        *,
        fines_charged: bool = True,
        after_id: int = 0,
        limit: int | None = None,
    ) -> Sequence[Loan]:
        """Active loans that were due before `cutoff` and still need work:
        either they aren't marked Overdue yet or, when the library charges
        overdue fines, they have no overdue fine. Ordered by id, starting
        after `after_id`.
        """
        needs_work = Loan.status != LoanStatus.OVERDUE
        if fines_charged:
            has_overdue_fine = exists().where(
                Fine.loan_id == Loan.id, Fine.reason == FineReason.OVERDUE
            )
            needs_work = or_(needs_work, ~has_overdue_fine)
        query = (
            select(Loan)
            .where(
                Loan.id > after_id,
                Loan.return_date.is_(None),
                Loan.due_date < cutoff,
                needs_work,
            )
            .order_by(Loan.id)
        )
        if limit is not None:
            query = query.limit(limit)
        return self._db.scalars(query).all()

    @translate_store_errors
    def late_returns_without_overdue_fine(
        self,
        returned_since: datetime.datetime,
        *,
        after_id: int = 0,
        limit: int | None = None,
    ) -> Sequence[Loan]:
        """Loans returned since `returned_since` that came back after their
        due date but never got an overdue fine. This is what's left behind
        when fine creation fails during a return, along with returns inside
        the grace period, which the caller skips. Ordered by id, starting
        after `after_id`.
        """
        has_overdue_fine = exists().where(
            Fine.loan_id == Loan.id, Fine.reason == FineReason.OVERDUE
        )
        query = (
            select(Loan)
            .where(
                Loan.id > after_id,
                Loan.return_date >= returned_since,
                Loan.return_date > Loan.due_date,
                ~has_overdue_fine,
            )
            .order_by(Loan.id)
        )
        if limit is not None:
            query = query.limit(limit)
        return self._db.scalars(query).all()

    @translate_store_errors
    def loans_due_between(
        self, start: datetime.datetime, end: datetime.datetime
    ) -> Sequence[Loan]:
        return self._db.scalars(
            select(Loan)
            .where(
                Loan.return_date.is_(None),
                Loan.status == LoanStatus.ISSUED,
                Loan.due_date >= start,
                Loan.due_date <= end,
            )
            .order_by(Loan.due_date, Loan.id)
        ).all()

    # Hold requests and queues

    @translate_store_errors
    def get_hold_request(self, hold_request_id: int) -> HoldRequest:
        hold_request = self._db.get(HoldRequest, hold_request_id)
        if hold_request is None:
            raise HoldRequestNotFound(f"Hold request {hold_request_id} not found.")
        return hold_request

    @translate_store_errors
    def open_hold_request(self, item_id: int, patron_id: int) -> HoldRequest | None:
        return self._db.scalars(
            select(HoldRequest).where(
                HoldRequest.item_id == item_id,
                HoldRequest.patron_id == patron_id,
                HoldRequest.status.in_(
                    [HoldRequestStatus.PENDING, HoldRequestStatus.APPROVED]
                ),
            )
        ).first()

    @translate_store_errors
    def add_hold_request(self, **kwargs: Any) -> HoldRequest:
        hold_request, _ = create(self._db, HoldRequest, **kwargs)
        return hold_request

    @translate_store_errors
    def queue_for_item(self, item_id: int, lock: bool = False) -> Queue:
        """The item's queue, created if this is the first time anyone has
        waited for it.

        :param lock: Lock the queue row until the end of the transaction,
            so only one admission for this item runs at a time.
        """
        queue, _ = get_one_or_create(self._db, Queue, item_id=item_id)
        if lock:
            self._db.scalars(
                select(Queue)
                .where(Queue.id == queue.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).one()
        return queue

    @translate_store_errors
    def get_queue(self, queue_id: int, lock: bool = False) -> Queue:
        query = select(Queue).where(Queue.id == queue_id)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        queue = self._db.scalars(query).first()
        if queue is None:
            raise QueueNotFound(f"Queue {queue_id} not found.")
        return queue

    # Fines

    @translate_store_errors
    def get_fine(self, fine_id: int) -> Fine:
        fine = self._db.get(Fine, fine_id)
        if fine is None:
            raise FineNotFound(f"Fine {fine_id} not found.")
        return fine

    @translate_store_errors
    def fine_for(self, loan_id: int, reason: FineReason) -> Fine | None:
        return self._db.scalars(
            select(Fine).where(Fine.loan_id == loan_id, Fine.reason == reason)
        ).first()

    @translate_store_errors
    def add_fine(
        self,
        loan: Loan,
        reason: FineReason,
        amount: Decimal,
        when: datetime.datetime,
        payment_period: datetime.timedelta,
        notes: str | None = None,
    ) -> Fine:
        fine, _ = create(
            self._db,
            Fine,
            patron_id=loan.patron_id,
            item_id=loan.item_id,
            loan=loan,
            reason=reason,
            amount=amount,
            created=when,
            due_date=when + payment_period,
            notes=notes,
        )
        return fine

    def add_fine_once(
        self,
        loan: Loan,
        reason: FineReason,
        amount: Decimal,
        when: datetime.datetime,
        payment_period: datetime.timedelta,
        notes: str | None = None,
    ) -> Fine | None:
        """Create the loan's fine for `reason`, unless it already has one.

        The insert runs in a savepoint, so losing a race with another
        transaction for the same fine only discards the duplicate.

        :return: The new fine, or None if the loan already had one.
        """
        if self.fine_for(loan.id, reason) is not None:
            return None
        try:
            with self._db.begin_nested():
                fine = self.add_fine(loan, reason, amount, when, payment_period, notes)
        except IntegrityError:
            self.log.info(f"Loan {loan.id} already has a {reason} fine.")
            return None
        return fine

    # Renewals

    @translate_store_errors
    def get_renewal(self, renewal_id: int) -> RenewalRequest:
        renewal = self._db.get(RenewalRequest, renewal_id)
        if renewal is None:
            raise RenewalNotFound(f"Renewal request {renewal_id} not found.")
        return renewal

    @translate_store_errors
    def pending_renewal(self, loan_id: int) -> RenewalRequest | None:
        return self._db.scalars(
            select(RenewalRequest).where(
                RenewalRequest.loan_id == loan_id,
                RenewalRequest.status == RenewalStatus.PENDING,
            )
        ).first()

    @translate_store_errors
    def add_renewal(self, **kwargs: Any) -> RenewalRequest:
        renewal, _ = create(self._db, RenewalRequest, **kwargs)
        return renewal

    # Notifications

    @translate_store_errors
    def add_notification(self, **kwargs: Any) -> Notification:
        notification, _ = create(self._db, Notification, **kwargs)
        return notification

    @translate_store_errors
    def has_notification_since(
        self,
        notification_type: NotificationType,
        entity_type: str,
        entity_id: int,
        since: datetime.datetime,
    ) -> bool:
        return (
            self._db.scalars(
                select(Notification.id)
                .where(
                    Notification.type == notification_type,
                    Notification.entity_type == entity_type,
                    Notification.entity_id == entity_id,
                    Notification.created_at >= since,
                )
                .limit(1)
            ).first()
            is not None
        )