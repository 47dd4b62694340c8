from __future__ import annotations

import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from stacks.circulation.data import (
    AdmissionResult,
    OverdueSweepResult,
    ReturnCondition,
    ReturnResult,
)
from stacks.circulation.engine import CirculationEngine
from stacks.circulation.holds import HoldsQueueManager
from stacks.circulation.stores import LedgerStore
from stacks.circulation.sweeps import run_overdue_sweep, run_reminder_sweep
from stacks.service.circulation.configuration import CirculationConfiguration
from stacks.service.notification.dispatcher import NotificationDispatcherProtocol
from stacks.sqlalchemy.model.fine import Fine, FinePayment, PaymentMethod
from stacks.sqlalchemy.model.hold import HoldRequest
from stacks.sqlalchemy.model.loan import Loan
from stacks.sqlalchemy.model.renewal import RenewalRequest
from stacks.util.log import LoggerMixin

if TYPE_CHECKING:
    from stacks.service.container import Services


class CirculationService(LoggerMixin):
    """Everything the rest of the library application can ask of
    circulation, over one database session.
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
        self.holds = HoldsQueueManager(db, settings, dispatcher)
        self.engine = CirculationEngine(db, settings, dispatcher, holds=self.holds)
        self.ledger = LedgerStore(db)

    @classmethod
    def from_services(cls, db: Session, services: Services) -> CirculationService:
        return cls(
            db,
            services.circulation.settings(),
            services.notification.dispatcher(),
        )

    # Loans

    def issue_item(
        self,
        item_id: int,
        patron_id: int,
        due_date: datetime.datetime | None = None,
        notes: str | None = None,
    ) -> Loan:
        return self.engine.issue_item(item_id, patron_id, due_date, notes)

    def return_item(
        self,
        item_id: int,
        patron_id: int,
        condition: ReturnCondition | None = None,
    ) -> ReturnResult:
        return self.engine.return_item(item_id, patron_id, condition)

    def return_loan(
        self, loan_id: int, condition: ReturnCondition | None = None
    ) -> ReturnResult:
        return self.engine.return_loan(loan_id, condition)

    def extend_due_date(
        self,
        loan_id: int,
        new_due_date: datetime.datetime,
        reason: str | None = None,
    ) -> Loan:
        return self.engine.extend_due_date(loan_id, new_due_date, reason)

    def request_renewal(
        self,
        loan_id: int,
        patron_id: int | None = None,
        reason: str | None = None,
    ) -> RenewalRequest:
        return self.engine.request_renewal(loan_id, patron_id, reason)

    def approve_renewal(
        self,
        renewal_id: int,
        approved_due_date: datetime.datetime | None = None,
        admin_notes: str | None = None,
    ) -> RenewalRequest:
        return self.engine.approve_renewal(renewal_id, approved_due_date, admin_notes)

    def reject_renewal(
        self, renewal_id: int, admin_notes: str | None = None
    ) -> RenewalRequest:
        return self.engine.reject_renewal(renewal_id, admin_notes)

    # Holds

    def join_queue(
        self,
        item_id: int,
        patron_id: int,
        priority: int = 0,
        notes: str | None = None,
    ) -> HoldRequest:
        return self.holds.join_queue(item_id, patron_id, priority, notes)

    def admit_next(self, item_id: int) -> AdmissionResult:
        return self.holds.admit_next(item_id)

    def withdraw_from_queue(
        self, queue_id: int, patron_id: int, reason: str | None = None
    ) -> None:
        self.holds.withdraw_from_queue(queue_id, patron_id, reason)

    def cancel_hold(
        self, item_id: int, patron_id: int, reason: str | None = None
    ) -> HoldRequest:
        return self.holds.cancel_hold(item_id, patron_id, reason)

    def review_hold_request(
        self, hold_request_id: int, approve: bool, notes: str | None = None
    ) -> HoldRequest:
        return self.holds.review_hold_request(hold_request_id, approve, notes)

    def allocate_direct(
        self, item_id: int, patron_id: int, reason: str | None = None
    ) -> Loan:
        return self.holds.allocate_direct(item_id, patron_id, reason)

    # Fines

    def pay_fine(
        self,
        fine_id: int,
        amount: Decimal,
        method: PaymentMethod,
        reference: str | None = None,
        notes: str | None = None,
    ) -> FinePayment:
        fine = self.ledger.get_fine(fine_id)
        payment = fine.record_payment(amount, method, reference, notes)
        self.log.info(
            f"Recorded {method} payment of {payment.amount} on fine {fine.id}; "
            f"{fine.remaining_amount} remaining."
        )
        return payment

    def waive_fine(self, fine_id: int, waived_by: str, reason: str) -> Fine:
        fine = self.ledger.get_fine(fine_id)
        fine.waive(waived_by, reason)
        self.log.info(f"Fine {fine.id} waived by {waived_by}.")
        return fine

    # Sweeps

    def run_overdue_sweep(
        self, now: datetime.datetime | None = None
    ) -> OverdueSweepResult:
        return run_overdue_sweep(self._db, self.settings, self.dispatcher, now)

    def run_reminder_sweep(self, now: datetime.datetime | None = None) -> int:
        return run_reminder_sweep(self._db, self.settings, self.dispatcher, now)
