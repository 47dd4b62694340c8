import pytest
from sqlalchemy.exc import IntegrityError

from stacks.sqlalchemy.model.loan import Loan, LoanStatus
from stacks.util.datetime_helpers import datetime_utc
from tests.fixtures.database import DatabaseTransactionFixture
from tests.fixtures.time import NOW, days


def test_generate_transaction_id():
    txn = Loan.generate_transaction_id(datetime_utc(2025, 6, 1))
    assert txn.startswith("TXN2025")
    assert len(txn) == 15
    assert txn[7:] == txn[7:].upper()
    assert Loan.generate_transaction_id(NOW) != Loan.generate_transaction_id(NOW)


def test_is_past_due(db: DatabaseTransactionFixture):
    loan = db.loan(db.item(), db.patron(), issue_date=NOW - days(14), due_date=NOW)
    assert loan.is_active
    assert not loan.is_past_due(NOW)
    assert loan.is_past_due(NOW + days(0.1))

    loan.return_date = NOW + days(1)
    assert not loan.is_active
    assert not loan.is_past_due(NOW + days(2))


def test_add_note(db: DatabaseTransactionFixture):
    loan = db.loan(db.item(), db.patron())
    loan.add_note("first")
    loan.add_note("second")
    assert loan.notes == "first\nsecond"


def test_one_active_loan_per_copy(db: DatabaseTransactionFixture):
    item = db.item()
    loan = db.loan(item, db.patron())

    with pytest.raises(IntegrityError):
        with db.session.begin_nested():
            db.session.add(
                Loan(
                    transaction_id=Loan.generate_transaction_id(NOW),
                    item=item,
                    patron=db.patron(),
                    copy=loan.copy,
                    issue_date=NOW,
                    due_date=NOW + days(14),
                    status=LoanStatus.ISSUED,
                )
            )
    db.session.expire_all()

    # Once it's back, the copy can go out again.
    loan.return_date = NOW
    loan.status = LoanStatus.RETURNED
    db.session.flush()
    db.session.add(
        Loan(
            transaction_id=Loan.generate_transaction_id(NOW),
            item=item,
            patron=db.patron(),
            copy=loan.copy,
            issue_date=NOW,
            due_date=NOW + days(14),
        )
    )
    db.session.flush()
