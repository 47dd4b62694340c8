from __future__ import annotations

import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stacks.circulation.data import AdmissionOutcome, AdmissionResult
from stacks.circulation.exceptions import (
    AlreadyCheckedOut,
    AlreadyQueued,
    NoAvailableCopies,
    NotAQueueMember,
    NotQueued,
    PatronInactive,
    RequestAlreadyProcessed,
)
from stacks.circulation.stores import CatalogStore, LedgerStore, PatronStore
from stacks.service.circulation.configuration import CirculationConfiguration
from stacks.service.notification.dispatcher import NotificationDispatcherProtocol
from stacks.sqlalchemy.model.hold import (
    HoldRequest,
    HoldRequestStatus,
    HoldRequestType,
    Queue,
    QueueMember,
    QueueMemberStatus,
)
from stacks.sqlalchemy.model.loan import Loan
from stacks.sqlalchemy.model.notification import NotificationType
from stacks.sqlalchemy.model.patron import Patron
from stacks.util.datetime_helpers import utc_now
from stacks.util.log import LoggerMixin

INACTIVE_PATRON_REASON = "Patron is inactive or locked"


class HoldsQueueManager(LoggerMixin):
    """Keeps each item's waiting list and serves it when copies free up.

    The `Queue` is the authoritative order of service. Every change to it
    is mirrored onto the patron's `HoldRequest` in the same unit of work.
    Anything that changes who is next in line locks the item's queue row
    first, so admissions for one item never interleave.
    """

    def __init__(
        self,
        db: Session,
        settings: CirculationConfiguration,
        dispatcher: NotificationDispatcherProtocol,
    ) -> None:
        self._db = db
        self.settings = settings
        self.dispatcher = dispatcher
        self.catalog = CatalogStore(db)
        self.ledger = LedgerStore(db)
        self.patrons = PatronStore(db)

    def join_queue(
        self,
        item_id: int,
        patron_id: int,
        priority: int = 0,
        notes: str | None = None,
    ) -> HoldRequest:
        """Put a patron in line for an item.

        If a copy is on the shelf the queue is served straight away, so
        the new member may leave the queue with a loan before this returns.
        """
        now = utc_now()
        item = self.catalog.get_item(item_id)
        patron = self.patrons.get_patron(patron_id)
        if not patron.is_active:
            raise PatronInactive(f"Patron {patron_id} cannot place holds.")
        if self.ledger.open_hold_request(item_id, patron_id) is not None:
            raise AlreadyQueued(f"Patron {patron_id} is already waiting for item {item_id}.")
        if self.ledger.active_loan(item_id, patron_id) is not None:
            raise AlreadyCheckedOut(f"Patron {patron_id} already has item {item_id}.")

        queue = self.ledger.queue_for_item(item_id, lock=True)
        try:
            with self._db.begin_nested():
                hold_request = self.ledger.add_hold_request(
                    patron=patron,
                    item=item,
                    request_type=HoldRequestType.BORROW,
                    status=HoldRequestStatus.PENDING,
                    priority=priority,
                    request_date=now,
                    notes=notes,
                )
        except IntegrityError as e:
            raise AlreadyQueued(
                f"Patron {patron_id} is already waiting for item {item_id}."
            ) from e

        member = QueueMember(
            patron=patron,
            hold_request=hold_request,
            priority=priority,
            date_joined=now,
            status=QueueMemberStatus.WAITING,
        )
        queue.add(member)
        self._db.flush()
        self.log.info(
            f"Patron {patron_id} joined the queue for item {item_id} at position {member.position}."
        )
        self.dispatcher.notify(
            self._db,
            patron,
            NotificationType.HOLD_PLACED,
            entity_type="hold_request",
            entity_id=hold_request.id,
            title=item.title,
            position=member.position,
        )

        if item.available_copies > 0:
            self.admit_next(item_id)
        return hold_request

    def admit_next(self, item_id: int) -> AdmissionResult:
        """Give a free copy of the item to the first eligible patron in line.

        Waiters who can no longer borrow are rejected and taken out of the
        queue on the way. Finding nobody to serve is not an error: the copy
        just stays on the shelf.
        """
        item = self.catalog.get_item(item_id)
        queue = self.ledger.queue_for_item(item_id, lock=True)
        if item.available_copies <= 0:
            return AdmissionResult.no_eligible_waiter()

        now = utc_now()
        skipped: list[HoldRequest] = []
        # Each pass either admits someone and returns, or removes one
        # member, so this can't run more times than there are members.
        for _ in range(queue.waiting_count):
            member = queue.waiting[0]
            if not member.patron.is_active:
                if member.hold_request is not None:
                    skipped.append(member.hold_request)
                self._reject(
                    queue, member, INACTIVE_PATRON_REASON, QueueMemberStatus.SKIPPED, now
                )
                continue

            loan = self._issue_to_member(queue, member, now)
            if loan is None:
                break
            return AdmissionResult(
                outcome=AdmissionOutcome.ADMITTED,
                loan=loan,
                hold_request=member.hold_request,
                skipped=skipped,
            )

        if skipped:
            self.log.info(
                f"Skipped {len(skipped)} ineligible waiter(s) for item {item_id}."
            )
        return AdmissionResult.no_eligible_waiter(skipped)

    def withdraw_from_queue(
        self, queue_id: int, patron_id: int, reason: str | None = None
    ) -> None:
        """A patron taking themselves out of a queue."""
        queue = self.ledger.get_queue(queue_id, lock=True)
        member = queue.member_for(patron_id)
        if member is None:
            raise NotAQueueMember(
                f"Patron {patron_id} is not waiting in queue {queue_id}."
            )
        hold_request = member.hold_request or self.ledger.open_hold_request(
            queue.item_id, patron_id
        )
        self._cancel(queue, member.patron, member, hold_request, reason)

    def cancel_hold(
        self, item_id: int, patron_id: int, reason: str | None = None
    ) -> HoldRequest:
        """Staff removing a patron's hold on an item."""
        hold_request = self.ledger.open_hold_request(item_id, patron_id)
        if hold_request is None:
            raise NotQueued(f"Patron {patron_id} has no hold on item {item_id}.")
        queue = self.ledger.queue_for_item(item_id, lock=True)
        self._cancel(
            queue, hold_request.patron, queue.member_for(patron_id), hold_request, reason
        )
        return hold_request

    def review_hold_request(
        self, hold_request_id: int, approve: bool, notes: str | None = None
    ) -> HoldRequest:
        hold_request = self.ledger.get_hold_request(hold_request_id)
        if hold_request.status != HoldRequestStatus.PENDING:
            raise RequestAlreadyProcessed(
                f"Hold request {hold_request_id} is already {hold_request.status}."
            )

        if approve:
            hold_request.transition(HoldRequestStatus.APPROVED, utc_now(), notes)
            if hold_request.item.available_copies > 0:
                self.admit_next(hold_request.item_id)
            return hold_request

        queue = self.ledger.queue_for_item(hold_request.item_id, lock=True)
        member = queue.member_for(hold_request.patron_id)
        if member is not None:
            self._reject(
                queue,
                member,
                notes or "Rejected by library staff",
                QueueMemberStatus.REJECTED,
                utc_now(),
            )
        else:
            hold_request.transition(HoldRequestStatus.REJECTED, utc_now(), notes)
        return hold_request

    def allocate_direct(
        self, item_id: int, patron_id: int, reason: str | None = None
    ) -> Loan:
        """Serve one specific waiter, out of turn."""
        self.catalog.get_item(item_id)
        patron = self.patrons.get_patron(patron_id)
        if self.ledger.open_hold_request(item_id, patron_id) is None:
            raise NotQueued(f"Patron {patron_id} is not waiting for item {item_id}.")
        if not patron.is_active:
            raise PatronInactive(f"Patron {patron_id} cannot borrow.")

        queue = self.ledger.queue_for_item(item_id, lock=True)
        member = queue.member_for(patron_id)
        if member is None:
            raise NotQueued(f"Patron {patron_id} is not in the queue for item {item_id}.")

        loan = self._issue_to_member(queue, member, utc_now(), notes=reason)
        if loan is None:
            raise NoAvailableCopies(f"No copies of item {item_id} are available.")
        return loan

    def fulfil(self, hold_request: HoldRequest, loan: Loan) -> None:
        """Close a patron's hold because they got the item some other way,
        e.g. it was issued to them at the desk.
        """
        now = utc_now()
        hold_request.transition(HoldRequestStatus.FULFILLED, now)
        hold_request.loan = loan
        queue = self.ledger.queue_for_item(hold_request.item_id, lock=True)
        member = queue.member_for(hold_request.patron_id)
        if member is not None:
            queue.remove(member, QueueMemberStatus.ISSUED, now)

    def _issue_to_member(
        self,
        queue: Queue,
        member: QueueMember,
        now: datetime.datetime,
        notes: str | None = None,
    ) -> Loan | None:
        item = queue.item
        copy = self.catalog.allocate_copy(item.id, now)
        if copy is None:
            return None

        loan = self.ledger.add_loan(
            item,
            member.patron,
            copy,
            due_date=now + item.default_loan_period,
            when=now,
            notes=notes or "Issued from the holds queue",
        )
        if member.hold_request is not None:
            member.hold_request.transition(HoldRequestStatus.FULFILLED, now)
            member.hold_request.loan = loan
        queue.remove(member, QueueMemberStatus.ISSUED, now)
        queue.record_offer(member.patron_id, copy.id, loan.id)
        self._db.flush()

        self.log.info(
            f"Admitted patron {member.patron_id} from the queue for item {item.id} "
            f"with copy {copy.id} (loan {loan.transaction_id})."
        )
        self.dispatcher.notify(
            self._db,
            member.patron,
            NotificationType.HOLD_FULFILLED,
            entity_type="loan",
            entity_id=loan.id,
            title=item.title,
            due_date=loan.due_date,
            transaction_id=loan.transaction_id,
        )
        return loan

    def _reject(
        self,
        queue: Queue,
        member: QueueMember,
        reason: str,
        status: QueueMemberStatus,
        now: datetime.datetime,
    ) -> None:
        if member.hold_request is not None:
            member.hold_request.transition(HoldRequestStatus.REJECTED, now, reason)
        queue.remove(member, status, now)
        self.log.info(
            f"Removed patron {member.patron_id} from the queue for item {queue.item_id}: {reason}"
        )
        self.dispatcher.notify(
            self._db,
            member.patron,
            NotificationType.HOLD_REJECTED,
            entity_type="hold_request",
            entity_id=member.hold_request_id,
            title=queue.item.title,
            reason=reason,
        )

    def _cancel(
        self,
        queue: Queue,
        patron: Patron,
        member: QueueMember | None,
        hold_request: HoldRequest | None,
        reason: str | None,
    ) -> None:
        now = utc_now()
        if hold_request is not None:
            hold_request.transition(HoldRequestStatus.CANCELLED, now, reason)
        if member is not None:
            queue.remove(member, QueueMemberStatus.WITHDRAWN, now)
        self.log.info(f"Patron {patron.id} left the queue for item {queue.item_id}.")
        self.dispatcher.notify(
            self._db,
            patron,
            NotificationType.HOLD_CANCELLED,
            entity_type="hold_request",
            entity_id=hold_request.id if hold_request is not None else None,
            title=queue.item.title,
        )
