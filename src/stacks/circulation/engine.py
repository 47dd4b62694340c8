from __future__ import annotations

import datetime
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stacks.circulation.data import ReturnCondition, ReturnResult
from stacks.circulation.exceptions import (
    AlreadyCheckedOut,
    CannotExtend,
    CannotRenew,
    ExtensionLimitReached,
    InvalidDueDate,
    LoanNotFound,
    NoActiveLoan,
    NoAvailableCopies,
    PatronInactive,
    RenewalAlreadyPending,
    RenewalLimitReached,
    RequestAlreadyProcessed,
    StoreUnavailable,
)
from stacks.circulation.fines import damage_fine, lost_fine, overdue_fine
from stacks.circulation.holds import HoldsQueueManager
from stacks.circulation.stores import CatalogStore, LedgerStore, PatronStore
from stacks.service.circulation.configuration import CirculationConfiguration
from stacks.service.notification.dispatcher import NotificationDispatcherProtocol
from stacks.sqlalchemy.model.catalog import CopyCondition, CopyStatus
from stacks.sqlalchemy.model.fine import Fine, FineReason
from stacks.sqlalchemy.model.loan import Loan, LoanStatus
from stacks.sqlalchemy.model.notification import NotificationType
from stacks.sqlalchemy.model.renewal import RenewalRequest, RenewalStatus
from stacks.util.datetime_helpers import to_utc, utc_now
from stacks.util.log import LoggerMixin


class CirculationEngine(LoggerMixin):
    """Issues, returns, extensions and renewals of physical copies.

    Every method works inside the caller's session and never commits it.
    If a method raises, the caller is expected to roll the whole unit of
    work back.
    """

    def __init__(
        self,
        db: Session,
        settings: CirculationConfiguration,
        dispatcher: NotificationDispatcherProtocol,
        holds: HoldsQueueManager | None = None,
    ) -> None:
        self._db = db
        self.settings = settings
        self.dispatcher = dispatcher
        self.catalog = CatalogStore(db)
        self.ledger = LedgerStore(db)
        self.patrons = PatronStore(db)
        self.holds = holds or HoldsQueueManager(db, settings, dispatcher)

    def issue_item(
        self,
        item_id: int,
        patron_id: int,
        due_date: datetime.datetime | None = None,
        notes: str | None = None,
    ) -> Loan:
        now = utc_now()
        patron = self.patrons.get_patron(patron_id)
        if not patron.is_active:
            raise PatronInactive(f"Patron {patron_id} cannot borrow.")
        item = self.catalog.get_item(item_id)

        if due_date is None:
            due_date = now + item.default_loan_period
        else:
            due_date = to_utc(due_date)
            if due_date <= now:
                raise InvalidDueDate(f"Due date {due_date} is not in the future.")

        if self.ledger.active_loan(item_id, patron_id) is not None:
            raise AlreadyCheckedOut(f"Patron {patron_id} already has item {item_id}.")

        copy = self.catalog.allocate_copy(item_id, now)
        if copy is None:
            raise NoAvailableCopies(f"No copies of '{item.title}' are available.")

        loan = self.ledger.add_loan(item, patron, copy, due_date, now, notes)
        hold_request = self.ledger.open_hold_request(item_id, patron_id)
        if hold_request is not None:
            self.holds.fulfil(hold_request, loan)

        self.log.info(
            f"Issued copy {copy.id} of item {item_id} to patron {patron_id} "
            f"(loan {loan.transaction_id}, due {due_date:%Y-%m-%d})."
        )
        self.dispatcher.notify(
            self._db,
            patron,
            NotificationType.ITEM_ISSUED,
            entity_type="loan",
            entity_id=loan.id,
            title=item.title,
            due_date=loan.due_date,
            transaction_id=loan.transaction_id,
        )
        return loan

    def return_item(
        self,
        item_id: int,
        patron_id: int,
        condition: ReturnCondition | None = None,
    ) -> ReturnResult:
        loan = self.ledger.active_loan(item_id, patron_id)
        if loan is None:
            raise NoActiveLoan(
                f"Patron {patron_id} does not have item {item_id} on loan."
            )
        return self._return(loan, condition or ReturnCondition())

    def return_loan(
        self, loan_id: int, condition: ReturnCondition | None = None
    ) -> ReturnResult:
        loan = self.ledger.get_loan(loan_id)
        if not loan.is_active:
            raise NoActiveLoan(f"Loan {loan.transaction_id} was already returned.")
        return self._return(loan, condition or ReturnCondition())

    def _return(self, loan: Loan, condition: ReturnCondition) -> ReturnResult:
        now = utc_now()
        loan.return_date = now
        loan.status = LoanStatus.RETURNED
        loan.return_condition = condition.label
        if condition.notes:
            loan.add_note(condition.notes)

        copy = loan.copy
        if condition.is_damaged:
            copy.condition = CopyCondition.DAMAGED
        elif condition.condition is not None:
            copy.condition = condition.condition
        self.catalog.set_copy_status(
            copy, condition.copy_status, notes=condition.damage_details
        )
        if condition.copy_status == CopyStatus.AVAILABLE:
            self.catalog.increment_available_copies(loan.item_id)
        self._db.flush()

        self.log.info(
            f"Loan {loan.transaction_id} returned; copy {copy.id} is now {condition.copy_status}."
        )
        fines = self._assess_fines(loan, condition, now)

        item = loan.item
        self.dispatcher.notify(
            self._db,
            loan.patron,
            NotificationType.ITEM_RETURNED,
            entity_type="loan",
            entity_id=loan.id,
            title=item.title,
            condition=loan.return_condition,
        )
        for fine in fines:
            self.dispatcher.notify(
                self._db,
                loan.patron,
                NotificationType.FINE_APPLIED,
                entity_type="fine",
                entity_id=fine.id,
                title=item.title,
                reason=str(fine.reason).lower(),
                amount=fine.amount,
            )

        # Whatever happened with fines, the next waiter may be served.
        admission = self.holds.admit_next(loan.item_id)
        return ReturnResult(loan=loan, fines=fines, admission=admission)

    def _assess_fines(
        self, loan: Loan, condition: ReturnCondition, now: datetime.datetime
    ) -> list[Fine]:
        """Charge whatever the return calls for.

        A failure here is logged and leaves the return in place. The
        overdue sweep picks up any overdue fine that didn't get created.
        """
        price = loan.item.price
        charges: list[tuple[FineReason, Decimal, str | None]] = []
        overdue = overdue_fine(
            loan.due_date,
            now,
            self.settings.daily_fine_rate,
            self.settings.grace_period_days,
        )
        if overdue > 0:
            charges.append((FineReason.OVERDUE, overdue, "Returned after the due date"))
        if condition.is_lost:
            charges.append(
                (
                    FineReason.LOST,
                    lost_fine(price, self.settings.lost_processing_fee),
                    "Item reported lost",
                )
            )
        elif condition.is_damaged:
            severity = (
                condition.damage_severity or self.settings.default_damage_severity
            )
            charges.append(
                (
                    FineReason.DAMAGED,
                    damage_fine(price, severity),
                    condition.damage_details or f"Damage: {severity}",
                )
            )

        fines = []
        for reason, amount, notes in charges:
            try:
                fine = self.ledger.add_fine_once(
                    loan,
                    reason,
                    amount,
                    now,
                    self.settings.fine_payment_period,
                    notes,
                )
            except (SQLAlchemyError, StoreUnavailable):
                self.log.exception(
                    f"Could not create {reason} fine for loan {loan.transaction_id}."
                )
                continue
            if fine is not None:
                fines.append(fine)
        return fines

    def extend_due_date(
        self,
        loan_id: int,
        new_due_date: datetime.datetime,
        reason: str | None = None,
    ) -> Loan:
        """Staff moving a loan's due date later, up to `max_extensions` times."""
        now = utc_now()
        loan = self.ledger.get_loan(loan_id)
        if not loan.is_active:
            raise CannotExtend(f"Loan {loan.transaction_id} has been returned.")
        if loan.status == LoanStatus.OVERDUE or loan.is_past_due(now):
            raise CannotExtend(f"Loan {loan.transaction_id} is overdue.")

        new_due_date = to_utc(new_due_date)
        if new_due_date <= now or new_due_date <= loan.due_date:
            raise InvalidDueDate(
                "The new due date must be in the future and later than the current one."
            )
        if loan.extension_count >= self.settings.max_extensions:
            raise ExtensionLimitReached(
                f"Loan {loan.transaction_id} has already been extended "
                f"{loan.extension_count} times."
            )

        previous = loan.due_date
        loan.due_date = new_due_date
        loan.extension_count += 1
        loan.last_extension_date = now
        note = f"{now:%Y-%m-%d}: due date extended from {previous:%Y-%m-%d} to {new_due_date:%Y-%m-%d}."
        if reason:
            note += f" Reason: {reason}"
        loan.add_note(note)

        self.log.info(f"Extended loan {loan.transaction_id} to {new_due_date:%Y-%m-%d}.")
        self.dispatcher.notify(
            self._db,
            loan.patron,
            NotificationType.DUE_DATE_EXTENDED,
            entity_type="loan",
            entity_id=loan.id,
            title=loan.item.title,
            due_date=loan.due_date,
            previous_due_date=previous,
        )
        return loan

    def request_renewal(
        self,
        loan_id: int,
        patron_id: int | None = None,
        reason: str | None = None,
    ) -> RenewalRequest:
        now = utc_now()
        loan = self.ledger.get_loan(loan_id)
        if patron_id is not None and loan.patron_id != patron_id:
            # Don't reveal that someone else's loan exists.
            raise LoanNotFound(f"Loan {loan_id} not found.")
        if not loan.is_active:
            raise CannotRenew(f"Loan {loan.transaction_id} has been returned.")
        if loan.status == LoanStatus.OVERDUE or loan.is_past_due(now):
            raise CannotRenew(f"Loan {loan.transaction_id} is overdue.")
        if self.ledger.pending_renewal(loan.id) is not None:
            raise RenewalAlreadyPending(
                f"Loan {loan.transaction_id} already has a renewal awaiting review."
            )
        if loan.renewal_count >= self.settings.max_renewals:
            raise RenewalLimitReached(
                f"Loan {loan.transaction_id} has already been renewed "
                f"{loan.renewal_count} times."
            )

        renewal = self.ledger.add_renewal(
            loan=loan,
            patron_id=loan.patron_id,
            item_id=loan.item_id,
            request_date=now,
            current_due_date=loan.due_date,
            requested_due_date=now + self.settings.renewal_period,
            reason=reason,
            status=RenewalStatus.PENDING,
        )
        self.log.info(f"Renewal {renewal.id} requested for loan {loan.transaction_id}.")
        self.dispatcher.notify(
            self._db,
            loan.patron,
            NotificationType.RENEWAL_REQUESTED,
            entity_type="renewal_request",
            entity_id=renewal.id,
            title=loan.item.title,
            requested_due_date=renewal.requested_due_date,
        )
        return renewal

    def approve_renewal(
        self,
        renewal_id: int,
        approved_due_date: datetime.datetime | None = None,
        admin_notes: str | None = None,
    ) -> RenewalRequest:
        now = utc_now()
        renewal = self._pending_renewal(renewal_id)
        loan = renewal.loan
        if not loan.is_active:
            raise CannotRenew(f"Loan {loan.transaction_id} has been returned.")
        if loan.renewal_count >= self.settings.max_renewals:
            raise RenewalLimitReached(
                f"Loan {loan.transaction_id} has already been renewed "
                f"{loan.renewal_count} times."
            )

        if approved_due_date is not None:
            due_date = to_utc(approved_due_date)
            if due_date <= now:
                raise InvalidDueDate(f"Due date {due_date} is not in the future.")
        else:
            due_date = renewal.requested_due_date

        loan.due_date = due_date
        loan.renewal_count += 1
        loan.last_renewal_date = now
        # An overdue fine that was already charged stays on the account.
        if loan.status == LoanStatus.OVERDUE and due_date > now:
            loan.status = LoanStatus.ISSUED

        renewal.status = RenewalStatus.APPROVED
        renewal.approved_due_date = due_date
        renewal.admin_notes = admin_notes
        renewal.decided_at = now

        self.log.info(
            f"Renewal {renewal.id} approved; loan {loan.transaction_id} due {due_date:%Y-%m-%d}."
        )
        self.dispatcher.notify(
            self._db,
            loan.patron,
            NotificationType.RENEWAL_APPROVED,
            entity_type="renewal_request",
            entity_id=renewal.id,
            title=loan.item.title,
            due_date=due_date,
        )
        return renewal

    def reject_renewal(
        self, renewal_id: int, admin_notes: str | None = None
    ) -> RenewalRequest:
        renewal = self._pending_renewal(renewal_id)
        renewal.status = RenewalStatus.REJECTED
        renewal.admin_notes = admin_notes
        renewal.decided_at = utc_now()

        self.log.info(f"Renewal {renewal.id} rejected.")
        self.dispatcher.notify(
            self._db,
            renewal.patron,
            NotificationType.RENEWAL_REJECTED,
            entity_type="renewal_request",
            entity_id=renewal.id,
            title=renewal.loan.item.title,
            admin_notes=admin_notes,
        )
        return renewal

    def _pending_renewal(self, renewal_id: int) -> RenewalRequest:
        renewal = self.ledger.get_renewal(renewal_id)
        if not renewal.is_pending:
            raise RequestAlreadyProcessed(
                f"Renewal request {renewal_id} is already {renewal.status}."
            )
        return renewal
