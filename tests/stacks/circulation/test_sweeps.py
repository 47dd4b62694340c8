from decimal import Decimal
from unittest.mock import patch

import pytest
from freezegun import freeze_time
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from stacks.circulation.stores import LedgerStore
from stacks.service.logging.configuration import LogLevel
from stacks.sqlalchemy.model.fine import Fine, FineReason
from stacks.sqlalchemy.model.loan import Loan, LoanStatus
from stacks.sqlalchemy.model.notification import NotificationType
from tests.fixtures.circulation import CirculationFixture
from tests.fixtures.database import DatabaseTransactionFixture
from tests.fixtures.time import NOW, days


def overdue_fines(db: DatabaseTransactionFixture, loan: Loan) -> list[Fine]:
    return list(
        db.session.scalars(
            select(Fine).where(Fine.loan_id == loan.id, Fine.reason == FineReason.OVERDUE)
        )
    )


class TestOverdueSweep:
    def test_marks_and_fines(
        self,
        db: DatabaseTransactionFixture,
        circulation: CirculationFixture,
        caplog: pytest.LogCaptureFixture,
    ):
        caplog.set_level(LogLevel.info)
        item = db.item(title="Dune", copies=3)
        patron = db.patron()
        late = db.loan(item, patron, issue_date=NOW - days(19), due_date=NOW - days(5))
        in_grace = db.loan(item, patron, issue_date=NOW - days(15), due_date=NOW - days(1))
        current = db.loan(item, patron, issue_date=NOW, due_date=NOW + days(14))

        result = circulation.service.run_overdue_sweep(NOW)

        assert result.loans_marked_overdue == 1
        assert result.fines_created == 1
        assert result.failures == 0
        assert late.status == LoanStatus.OVERDUE
        assert in_grace.status == LoanStatus.ISSUED
        assert current.status == LoanStatus.ISSUED

        [fine] = overdue_fines(db, late)
        assert fine.amount == Decimal("3.00")
        assert fine.created == NOW
        assert fine.due_date == NOW + days(14)
        assert overdue_fines(db, in_grace) == []

        [notification] = circulation.notifications(patron, NotificationType.FINE_APPLIED)
        assert notification.entity_id == fine.id
        assert "Dune" in notification.message
        assert "Marked 1 loan overdue and created 1 overdue fine." in caplog.messages

    def test_idempotent(self, db: DatabaseTransactionFixture, circulation: CirculationFixture):
        item = db.item()
        patron = db.patron()
        late = db.loan(item, patron, issue_date=NOW - days(30), due_date=NOW - days(16))

        circulation.service.run_overdue_sweep(NOW)
        second = circulation.service.run_overdue_sweep(NOW)
        third = circulation.service.run_overdue_sweep(NOW + days(1))

        assert second.loans_marked_overdue == second.fines_created == 0
        assert third.loans_marked_overdue == third.fines_created == 0
        assert len(overdue_fines(db, late)) == 1
        assert len(circulation.notifications(patron, NotificationType.FINE_APPLIED)) == 1

    def test_overdue_loan_missing_fine(
        self, db: DatabaseTransactionFixture, circulation: CirculationFixture
    ):
        item = db.item()
        late = db.loan(
            item,
            db.patron(),
            issue_date=NOW - days(30),
            due_date=NOW - days(10),
            status=LoanStatus.OVERDUE,
        )

        result = circulation.service.run_overdue_sweep(NOW)

        assert result.loans_marked_overdue == 0
        assert result.fines_created == 1
        [fine] = overdue_fines(db, late)
        assert fine.amount == Decimal("8.00")

    def test_late_return_missing_fine(
        self, db: DatabaseTransactionFixture, circulation: CirculationFixture
    ):
        item = db.item(copies=2)
        patron = db.patron()
        recent = db.loan(item, patron, issue_date=NOW - days(20), due_date=NOW - days(10))
        recent.return_date = NOW - days(3)
        recent.status = LoanStatus.RETURNED
        old = db.loan(item, patron, issue_date=NOW - days(90), due_date=NOW - days(76))
        old.return_date = NOW - days(40)
        old.status = LoanStatus.RETURNED

        result = circulation.service.run_overdue_sweep(NOW)

        assert result.fines_created == 1
        [fine] = overdue_fines(db, recent)
        # Charged as of the day it came back, not as of today.
        assert fine.amount == Decimal("5.00")
        assert overdue_fines(db, old) == []

        assert circulation.service.run_overdue_sweep(NOW).fines_created == 0

    def test_failure_is_isolated(
        self,
        db: DatabaseTransactionFixture,
        circulation: CirculationFixture,
        caplog: pytest.LogCaptureFixture,
    ):
        item = db.item(copies=2)
        bad = db.loan(item, db.patron(), issue_date=NOW - days(30), due_date=NOW - days(10))
        good = db.loan(item, db.patron(), issue_date=NOW - days(30), due_date=NOW - days(9))

        original = LedgerStore.add_fine_once

        def flaky(self, loan, *args, **kwargs):
            if loan.id == bad.id:
                raise OperationalError("INSERT", {}, Exception("connection lost"))
            return original(self, loan, *args, **kwargs)

        with patch.object(LedgerStore, "add_fine_once", autospec=True, side_effect=flaky):
            result = circulation.service.run_overdue_sweep(NOW)

        assert result.failures == 1
        assert result.fines_created == 1
        assert overdue_fines(db, bad) == []
        assert len(overdue_fines(db, good)) == 1
        assert f"Overdue sweep failed for loan {bad.id}." in caplog.text

        # The next run picks up what was missed.
        retry = circulation.service.run_overdue_sweep(NOW)
        assert retry.fines_created == 1
        assert retry.failures == 0
        assert len(overdue_fines(db, bad)) == 1

    def test_batches_cover_every_loan(
        self, db: DatabaseTransactionFixture, circulation: CirculationFixture
    ):
        service = circulation.configure(sweep_batch_size=2)
        item = db.item(copies=3)
        for _ in range(3):
            db.loan(item, db.patron(), issue_date=NOW - days(30), due_date=NOW - days(10))

        assert service.run_overdue_sweep(NOW).fines_created == 3
        assert service.run_overdue_sweep(NOW).fines_created == 0

    def test_return_within_grace_does_not_block_missed_fine(
        self, db: DatabaseTransactionFixture, circulation: CirculationFixture
    ):
        service = circulation.configure(sweep_batch_size=1)
        item = db.item(copies=2)
        patron = db.patron()
        # Back one day late, inside the grace period: never fined.
        in_grace = db.loan(item, patron, issue_date=NOW - days(20), due_date=NOW - days(6))
        in_grace.return_date = NOW - days(5)
        in_grace.status = LoanStatus.RETURNED
        missed = db.loan(item, patron, issue_date=NOW - days(20), due_date=NOW - days(10))
        missed.return_date = NOW - days(4)
        missed.status = LoanStatus.RETURNED

        assert service.run_overdue_sweep(NOW).fines_created == 1
        assert overdue_fines(db, in_grace) == []
        assert len(overdue_fines(db, missed)) == 1

    def test_zero_rate_marks_every_loan_overdue(
        self, db: DatabaseTransactionFixture, circulation: CirculationFixture
    ):
        service = circulation.configure(daily_fine_rate=Decimal("0"), sweep_batch_size=1)
        item = db.item(copies=2)
        loans = [
            db.loan(item, db.patron(), issue_date=NOW - days(30), due_date=NOW - days(10))
            for _ in range(2)
        ]

        result = service.run_overdue_sweep(NOW)
        assert result.loans_marked_overdue == 2
        assert result.fines_created == 0
        assert [loan.status for loan in loans] == [LoanStatus.OVERDUE] * 2

        assert service.run_overdue_sweep(NOW).loans_marked_overdue == 0


class TestReminderSweep:
    def test_reminders(self, db: DatabaseTransactionFixture, circulation: CirculationFixture):
        item = db.item(title="Beloved", copies=4)
        patron = db.patron()
        due_soon = db.loan(item, patron, issue_date=NOW - days(13), due_date=NOW + days(1))
        db.loan(item, patron, issue_date=NOW, due_date=NOW + days(5))
        returned = db.loan(item, patron, issue_date=NOW - days(13), due_date=NOW + days(1))
        returned.return_date = NOW - days(1)
        returned.status = LoanStatus.RETURNED
        db.loan(
            item,
            patron,
            issue_date=NOW - days(20),
            due_date=NOW - days(6),
            status=LoanStatus.OVERDUE,
        )

        with freeze_time(NOW):
            assert circulation.service.run_reminder_sweep() == 1

        [notification] = circulation.notifications(patron, NotificationType.DUE_REMINDER)
        assert notification.entity_type == "loan"
        assert notification.entity_id == due_soon.id
        assert "'Beloved' is due on 2024-03-05" in notification.message

    def test_once_per_day(self, db: DatabaseTransactionFixture, circulation: CirculationFixture):
        item = db.item()
        patron = db.patron()
        db.loan(item, patron, issue_date=NOW - days(13), due_date=NOW + days(1))

        with freeze_time(NOW):
            assert circulation.service.run_reminder_sweep() == 1
        with freeze_time(NOW + days(0.5)):
            assert circulation.service.run_reminder_sweep() == 0
        # 08:00 the next day, the loan is still due within the window.
        with freeze_time(NOW + days(22 / 24)):
            assert circulation.service.run_reminder_sweep() == 1

        assert len(circulation.notifications(patron, NotificationType.DUE_REMINDER)) == 2

    def test_window(self, db: DatabaseTransactionFixture, circulation: CirculationFixture):
        service = circulation.configure(reminder_window_days=7)
        item = db.item()
        db.loan(item, db.patron(), issue_date=NOW, due_date=NOW + days(5))
        with freeze_time(NOW):
            assert service.run_reminder_sweep() == 1
