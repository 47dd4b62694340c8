"""Time-driven circulation work: overdue fines and due-date reminders.

Both sweeps are plain functions of a session and a point in time, and
both are safe to run again: a second run right after the first finds
nothing left to do. Scheduling them is the job of the Celery beat tasks
in `stacks.celery.tasks.circulation`.
"""

from __future__ import annotations

import datetime
import functools
import logging
from collections.abc import Callable, Iterator, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stacks.circulation.data import OverdueSweepResult
from stacks.circulation.exceptions import StoreUnavailable
from stacks.circulation.fines import days_overdue, overdue_fine
from stacks.circulation.stores import LedgerStore
from stacks.service.circulation.configuration import CirculationConfiguration
from stacks.service.notification.dispatcher import NotificationDispatcherProtocol
from stacks.sqlalchemy.model.fine import Fine, FineReason
from stacks.sqlalchemy.model.loan import Loan, LoanStatus
from stacks.sqlalchemy.model.notification import NotificationType
from stacks.util.datetime_helpers import start_of_day, utc_now
from stacks.util.log import elapsed_time_logging, pluralize

log = logging.getLogger(__name__)


def _in_batches(
    fetch: Callable[..., Sequence[Loan]], batch_size: int
) -> Iterator[Loan]:
    """Walk every row `fetch` matches, one batch at a time, by ascending
    id. Rows the caller leaves unchanged don't come round again in the
    same sweep.
    """
    after_id = 0
    while True:
        batch = fetch(after_id=after_id, limit=batch_size)
        yield from batch
        if len(batch) < batch_size:
            return
        after_id = batch[-1].id


def run_overdue_sweep(
    db: Session,
    settings: CirculationConfiguration,
    dispatcher: NotificationDispatcherProtocol,
    now: datetime.datetime | None = None,
) -> OverdueSweepResult:
    """Mark loans past their grace period as Overdue and charge each one
    overdue fine.

    Each loan is handled in its own savepoint, so one bad loan is logged
    and skipped without losing the work done on the others.
    """
    now = now or utc_now()
    ledger = LedgerStore(db)
    fines_charged = settings.daily_fine_rate > 0
    marked = created = failures = 0

    with elapsed_time_logging(log_method=log.info, message_prefix="Overdue sweep"):
        past_due = functools.partial(
            ledger.loans_past_due,
            now - settings.grace_period,
            fines_charged=fines_charged,
        )
        for loan in _in_batches(past_due, settings.sweep_batch_size):
            try:
                with db.begin_nested():
                    newly_overdue = loan.status != LoanStatus.OVERDUE
                    loan.status = LoanStatus.OVERDUE
                    fine = _charge_overdue_fine(ledger, settings, loan, now, now)
            except (SQLAlchemyError, StoreUnavailable):
                log.exception(f"Overdue sweep failed for loan {loan.id}.")
                failures += 1
                continue

            if newly_overdue:
                marked += 1
            if fine is not None:
                created += 1
                _notify_fine(db, dispatcher, loan, fine)

        # Late returns whose fine couldn't be created at the desk.
        late_returns = functools.partial(
            ledger.late_returns_without_overdue_fine,
            now - settings.late_return_lookback,
        )
        for loan in _in_batches(late_returns, settings.sweep_batch_size):
            if loan.return_date is None:
                continue
            try:
                with db.begin_nested():
                    fine = _charge_overdue_fine(
                        ledger, settings, loan, loan.return_date, now
                    )
            except (SQLAlchemyError, StoreUnavailable):
                log.exception(f"Overdue sweep failed for returned loan {loan.id}.")
                failures += 1
                continue

            if fine is not None:
                created += 1
                _notify_fine(db, dispatcher, loan, fine)

        log.info(
            f"Marked {pluralize(marked, 'loan')} overdue and created "
            f"{pluralize(created, 'overdue fine')}."
        )
        if failures:
            log.warning(f"{pluralize(failures, 'loan')} could not be processed.")

    return OverdueSweepResult(
        loans_marked_overdue=marked, fines_created=created, failures=failures
    )


def _charge_overdue_fine(
    ledger: LedgerStore,
    settings: CirculationConfiguration,
    loan: Loan,
    as_of: datetime.datetime,
    now: datetime.datetime,
) -> Fine | None:
    """Charge the overdue fine owed as of `as_of`, unless the loan already
    has one.
    """
    amount = overdue_fine(
        loan.due_date, as_of, settings.daily_fine_rate, settings.grace_period_days
    )
    if amount <= 0:
        return None
    return ledger.add_fine_once(
        loan,
        FineReason.OVERDUE,
        amount,
        now,
        settings.fine_payment_period,
        notes=(
            f"Overdue by {pluralize(days_overdue(loan.due_date, as_of), 'day')}; "
            f"grace period {pluralize(settings.grace_period_days, 'day')}."
        ),
    )


def _notify_fine(
    db: Session,
    dispatcher: NotificationDispatcherProtocol,
    loan: Loan,
    fine: Fine,
) -> None:
    dispatcher.notify(
        db,
        loan.patron,
        NotificationType.FINE_APPLIED,
        entity_type="fine",
        entity_id=fine.id,
        title=loan.item.title,
        reason="overdue",
        amount=fine.amount,
    )


def run_reminder_sweep(
    db: Session,
    settings: CirculationConfiguration,
    dispatcher: NotificationDispatcherProtocol,
    now: datetime.datetime | None = None,
) -> int:
    """Remind patrons about loans coming due soon.

    A loan gets at most one reminder per UTC calendar day.

    :return: The number of reminders sent.
    """
    now = now or utc_now()
    ledger = LedgerStore(db)
    today = start_of_day(now)
    sent = 0

    with elapsed_time_logging(log_method=log.info, message_prefix="Reminder sweep"):
        for loan in ledger.loans_due_between(now, now + settings.reminder_window):
            if ledger.has_notification_since(
                NotificationType.DUE_REMINDER, "loan", loan.id, today
            ):
                continue
            notification = dispatcher.notify(
                db,
                loan.patron,
                NotificationType.DUE_REMINDER,
                entity_type="loan",
                entity_id=loan.id,
                title=loan.item.title,
                due_date=loan.due_date,
            )
            if notification is not None:
                sent += 1
        log.info(f"Sent {pluralize(sent, 'due date reminder')}.")

    return sent
