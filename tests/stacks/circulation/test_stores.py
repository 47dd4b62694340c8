import datetime
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from stacks.circulation.exceptions import (
    FineNotFound,
    HoldRequestNotFound,
    RenewalNotFound,
    StoreUnavailable,
)
from stacks.circulation.stores import CatalogStore, LedgerStore, PatronStore
from stacks.sqlalchemy.model.catalog import Copy, CopyStatus
from stacks.sqlalchemy.model.fine import FineReason
from stacks.sqlalchemy.model.loan import LoanStatus
from stacks.sqlalchemy.model.notification import NotificationType
from stacks.sqlalchemy.model.patron import PatronStatus
from tests.fixtures.circulation import CirculationFixture
from tests.fixtures.database import DatabaseTransactionFixture
from tests.fixtures.time import NOW, days


class TestCatalogStore:
    def test_counter_never_goes_negative(self, db: DatabaseTransactionFixture):
        catalog = CatalogStore(db.session)
        item = db.item(copies=1)

        assert catalog.decrement_available_copies(item.id) is True
        assert catalog.decrement_available_copies(item.id) is False
        assert item.available_copies == 0

    def test_counter_never_exceeds_quantity(self, db: DatabaseTransactionFixture):
        catalog = CatalogStore(db.session)
        item = db.item(copies=2)

        assert catalog.increment_available_copies(item.id) is False
        assert item.available_copies == 2
        catalog.decrement_available_copies(item.id)
        assert catalog.increment_available_copies(item.id) is True
        assert item.available_copies == 2

    def test_copy_claimed_once(self, db: DatabaseTransactionFixture):
        catalog = CatalogStore(db.session)
        item = db.item(copies=1)
        [copy] = item.copies

        assert catalog.claim_copy(copy.id, NOW) is True
        assert catalog.claim_copy(copy.id, NOW) is False
        assert copy.status == CopyStatus.ISSUED
        assert copy.last_issued_date == NOW

    def test_allocate(self, db: DatabaseTransactionFixture):
        catalog = CatalogStore(db.session)
        item = db.item(copies=2)

        first = catalog.allocate_copy(item.id, NOW)
        second = catalog.allocate_copy(item.id, NOW)

        assert first is not None and second is not None
        assert {first.copy_number, second.copy_number} == {1, 2}
        assert catalog.allocate_copy(item.id, NOW) is None
        assert item.available_copies == 0
        assert catalog.available_copy_count(item.id) == 0

    def test_allocate_loses_race(
        self, db: DatabaseTransactionFixture, caplog: pytest.LogCaptureFixture
    ):
        catalog = CatalogStore(db.session)
        item = db.item(copies=1)
        # Another transaction took the copy but the counter hasn't caught up.
        db.session.execute(
            update(Copy)
            .where(Copy.item_id == item.id)
            .values(status=CopyStatus.ISSUED)
        )

        assert catalog.allocate_copy(item.id, NOW) is None
        # The counter is given back.
        assert item.available_copies == 1
        assert "counted an available copy but none could be claimed" in caplog.text

    def test_lost_connection(self, db: DatabaseTransactionFixture):
        catalog = CatalogStore(db.session)
        with patch.object(
            Session,
            "get",
            side_effect=OperationalError("SELECT", {}, Exception("server closed")),
        ):
            with pytest.raises(StoreUnavailable) as excinfo:
                catalog.get_item(1)

        assert excinfo.value.retryable
        assert excinfo.value.problem_detail.status_code == 503
        assert "server closed" in excinfo.value.problem_detail.debug_message


class TestPatronStore:
    def test_is_active_patron(self, db: DatabaseTransactionFixture):
        patrons = PatronStore(db.session)
        active = db.patron()
        locked = db.patron(status=PatronStatus.LOCKED)

        assert patrons.is_active_patron(active.id) is True
        assert patrons.is_active_patron(locked.id) is False
        assert patrons.is_active_patron(-1) is False


class TestLedgerStore:
    def test_fine_charged_once(self, db: DatabaseTransactionFixture):
        ledger = LedgerStore(db.session)
        loan = db.loan(db.item(), db.patron())
        period = datetime.timedelta(days=14)

        fine = ledger.add_fine_once(loan, FineReason.OVERDUE, Decimal("2.00"), NOW, period)
        assert fine is not None
        assert ledger.add_fine_once(loan, FineReason.OVERDUE, Decimal("2.00"), NOW, period) is None
        assert ledger.fine_for(loan.id, FineReason.OVERDUE) == fine

        # A different reason is a different fine.
        assert ledger.add_fine_once(loan, FineReason.DAMAGED, Decimal("5.00"), NOW, period)

    def test_duplicate_insert_is_discarded(self, db: DatabaseTransactionFixture):
        ledger = LedgerStore(db.session)
        loan = db.loan(db.item(), db.patron())
        period = datetime.timedelta(days=14)
        existing = ledger.add_fine(loan, FineReason.OVERDUE, Decimal("2.00"), NOW, period)

        # Simulate a concurrent transaction creating the fine after our check.
        with patch.object(LedgerStore, "fine_for", return_value=None):
            assert (
                ledger.add_fine_once(loan, FineReason.OVERDUE, Decimal("2.00"), NOW, period)
                is None
            )
        assert ledger.fine_for(loan.id, FineReason.OVERDUE) == existing
        # The session is still usable.
        assert loan.status == LoanStatus.ISSUED

    def test_loans_past_due(self, db: DatabaseTransactionFixture):
        ledger = LedgerStore(db.session)
        item = db.item(copies=3)
        late = db.loan(item, db.patron(), issue_date=NOW - days(20), due_date=NOW - days(6))
        db.loan(item, db.patron(), issue_date=NOW, due_date=NOW + days(14))
        handled = db.loan(
            item,
            db.patron(),
            issue_date=NOW - days(20),
            due_date=NOW - days(6),
            status=LoanStatus.OVERDUE,
        )
        db.fine(handled)

        assert list(ledger.loans_past_due(NOW - days(2))) == [late]

    def test_loans_past_due_paging_and_unfined(self, db: DatabaseTransactionFixture):
        ledger = LedgerStore(db.session)
        item = db.item(copies=3)
        loans = [
            db.loan(
                item,
                db.patron(),
                issue_date=NOW - days(20),
                due_date=NOW - days(6),
                status=status,
            )
            for status in (LoanStatus.OVERDUE, LoanStatus.ISSUED, LoanStatus.ISSUED)
        ]
        cutoff = NOW - days(2)

        [first] = ledger.loans_past_due(cutoff, limit=1)
        assert first == loans[0]
        assert list(ledger.loans_past_due(cutoff, after_id=first.id)) == loans[1:]

        # Without fines, an Overdue loan has nothing left to do.
        assert list(ledger.loans_past_due(cutoff, fines_charged=False)) == loans[1:]

    def test_has_notification_since(
        self, db: DatabaseTransactionFixture, circulation: CirculationFixture
    ):
        ledger = LedgerStore(db.session)
        patron = db.patron()
        loan = db.loan(db.item(), patron, due_date=NOW + days(1))
        notification = circulation.dispatcher.notify(
            db.session,
            patron,
            NotificationType.DUE_REMINDER,
            entity_type="loan",
            entity_id=loan.id,
            title="Title",
            due_date=loan.due_date,
        )
        assert notification is not None
        notification.created_at = NOW
        db.session.flush()

        assert ledger.has_notification_since(
            NotificationType.DUE_REMINDER, "loan", loan.id, NOW - days(1)
        )
        assert not ledger.has_notification_since(
            NotificationType.DUE_REMINDER, "loan", loan.id, NOW + days(1)
        )
        assert not ledger.has_notification_since(
            NotificationType.ITEM_ISSUED, "loan", loan.id, NOW - days(1)
        )

    def test_not_found(self, db: DatabaseTransactionFixture):
        ledger = LedgerStore(db.session)
        with pytest.raises(HoldRequestNotFound):
            ledger.get_hold_request(-1)
        with pytest.raises(RenewalNotFound):
            ledger.get_renewal(-1)
        with pytest.raises(FineNotFound):
            ledger.get_fine(-1)
