"""Period closures and the locks they impose on every write path."""

from datetime import date, datetime, timezone
from uuid import uuid4

import pytest

from ledger_kernel.domain.values import TransactionStatus, TransactionType
from ledger_kernel.exceptions import (
    OverlappingClosureError,
    PeriodClosureNotFoundError,
    PeriodLockedError,
    UnbalancedPeriodError,
)
from ledger_kernel.models.account import Account
from ledger_kernel.models.transaction import Transaction
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.transaction_processor import LedgerTransactionProcessor

JANUARY = {"period_start": "2025-01-01", "period_end": "2025-01-31"}


def income(account, when="2025-01-10", amount=10000):
    return {
        "description": "Salary",
        "amount": amount,
        "date": when,
        "type": "income",
        "account_id": str(account.id),
    }


@pytest.fixture
def account(make_account):
    return make_account(balance=0)


@pytest.fixture
def closed_january(processor, owner_id, account):
    processor.create_transaction(owner_id, income(account))
    return processor.create_period_closure(owner_id, JANUARY).closure


class TestCreateClosure:

    def test_closure_is_locked_and_stamped(self, owner_id, deterministic_clock, closed_january):
        assert closed_january.is_locked
        assert closed_january.closure_type == "monthly"
        assert closed_january.closed_at == deterministic_clock.now()
        assert closed_january.closed_by_id == owner_id
        assert closed_january.contains_date(date(2025, 1, 31))
        assert not closed_january.contains_date(date(2025, 2, 1))

    def test_overlap_rejected(self, processor, owner_id, closed_january):
        with pytest.raises(OverlappingClosureError) as exc_info:
            processor.create_period_closure(
                owner_id, {"period_start": "2025-01-15", "period_end": "2025-02-15"}
            )
        assert exc_info.value.existing_closure_id == str(closed_january.id)

    def test_transaction_without_lines_blocks_closure(self, session, processor, owner_id, account):
        broken = Transaction(
            owner_id=owner_id,
            account_id=account.id,
            description="Imported without lines",
            transaction_type=TransactionType.INCOME.value,
            amount=500,
            effective_date=date(2025, 1, 20),
            status=TransactionStatus.COMPLETED.value,
        )
        session.add(broken)
        session.flush()

        with pytest.raises(UnbalancedPeriodError) as exc_info:
            processor.create_period_closure(owner_id, JANUARY)

        [issue] = exc_info.value.issues
        assert issue["transaction_id"] == str(broken.id)
        assert issue["issue"] == "missing_entries"
        assert processor.lock_guard.check(owner_id, date(2025, 1, 20)).locked is False

    def test_transfers_and_payments_close_cleanly(self, processor, owner_id, account, make_account):
        card = make_account("credit", limit_amount=10000, closing_day=5, due_day=15)
        savings = make_account("savings")
        processor.create_transaction(owner_id, income(account))
        processor.transfer(owner_id, {
            "from_account_id": str(account.id),
            "to_account_id": str(savings.id),
            "amount": 1000,
            "date": "2025-01-11",
        })
        processor.pay_credit_card_bill(owner_id, {
            "credit_account_id": str(card.id),
            "debit_account_id": str(account.id),
            "amount": 500,
            "payment_date": "2025-01-12",
        })

        closure = processor.create_period_closure(owner_id, JANUARY).closure
        assert closure.is_locked

    def test_annual_closure_with_notes(self, processor, owner_id):
        closure = processor.create_period_closure(owner_id, {
            "period_start": "2024-01-01",
            "period_end": "2024-12-31",
            "closure_type": "annual",
            "notes": "Filed",
        }).closure
        assert (closure.closure_type, closure.notes) == ("annual", "Filed")


class TestLocks:

    def test_create_in_locked_period(self, session, processor, owner_id, account, closed_january):
        with pytest.raises(PeriodLockedError) as exc_info:
            processor.create_transaction(owner_id, income(account, "2025-01-20"))

        err = exc_info.value
        assert err.closure_id == str(closed_january.id)
        assert err.effective_date == "2025-01-20"
        assert LedgerSelector(session).account(owner_id, account.id).balance == 10000

    def test_edit_in_locked_period(self, session, processor, owner_id, account, closed_january):
        [txn] = LedgerSelector(session).transactions(owner_id)
        with pytest.raises(PeriodLockedError):
            processor.edit_transaction(owner_id, txn.id, {"amount": 1})

    def test_moving_into_locked_period(self, processor, owner_id, account, closed_january):
        txn = processor.create_transaction(owner_id, income(account, "2025-02-03")).transaction
        with pytest.raises(PeriodLockedError):
            processor.edit_transaction(owner_id, txn.id, {"date": "2025-01-30"})

    def test_delete_in_locked_period(self, session, processor, owner_id, closed_january):
        [txn] = LedgerSelector(session).transactions(owner_id)
        with pytest.raises(PeriodLockedError):
            processor.delete_transaction(owner_id, txn.id)

    def test_transfer_in_locked_period(self, processor, owner_id, account, make_account, closed_january):
        with pytest.raises(PeriodLockedError):
            processor.transfer(owner_id, {
                "from_account_id": str(account.id),
                "to_account_id": str(make_account("savings").id),
                "amount": 100,
                "date": "2025-01-31",
            })

    def test_later_periods_stay_open(self, processor, owner_id, account, closed_january):
        result = processor.create_transaction(owner_id, income(account, "2025-02-01"))
        assert result.balances[account.id] == 20000

    def test_locks_are_per_owner(self, session, deterministic_clock, closed_january):
        other_owner = uuid4()
        other_account = Account(
            owner_id=other_owner, name="Other", account_type="checking", balance=0
        )
        session.add(other_account)
        session.flush()
        processor = LedgerTransactionProcessor(session, clock=deterministic_clock)
        result = processor.create_transaction(other_owner, income(other_account, "2025-01-20"))
        assert result.balances[other_account.id] == 10000

    def test_fixed_series_stops_before_locked_month(self, processor, owner_id, account):
        processor.create_period_closure(
            owner_id, {"period_start": "2025-03-01", "period_end": "2025-03-31"}
        )
        result = processor.create_fixed_series(owner_id, income(account, "2025-01-10", 100))

        children = result.transactions[1:]
        assert [c.effective_date for c in children] == [date(2025, 1, 10), date(2025, 2, 10)]

    def test_fixed_series_starting_in_locked_month(self, processor, owner_id, account, closed_january):
        with pytest.raises(PeriodLockedError):
            processor.create_fixed_series(owner_id, income(account, "2025-01-20"))

    def test_installment_plan_crossing_lock(self, processor, owner_id, account):
        processor.create_period_closure(
            owner_id, {"period_start": "2025-03-01", "period_end": "2025-03-31"}
        )
        with pytest.raises(PeriodLockedError):
            processor.create_installment_plan(
                owner_id, {**income(account, "2025-01-10"), "type": "expense", "installments": 3}
            )


class TestUnlockRelock:

    def test_unlock_allows_writes_then_relock(self, processor, owner_id, account, deterministic_clock, closed_january):
        deterministic_clock.set_time(datetime(2025, 2, 3, 9, tzinfo=timezone.utc))

        unlocked = processor.unlock_period_closure(owner_id, closed_january.id)
        assert not unlocked.is_locked
        assert unlocked.unlocked_at == deterministic_clock.now()
        assert unlocked.unlocked_by_id == owner_id

        processor.create_transaction(owner_id, income(account, "2025-01-20", 500))

        relocked = processor.relock_period_closure(owner_id, closed_january.id)
        assert relocked.is_locked
        with pytest.raises(PeriodLockedError):
            processor.create_transaction(owner_id, income(account, "2025-01-21"))

    def test_unlock_is_idempotent(self, processor, owner_id, closed_january):
        processor.unlock_period_closure(owner_id, closed_january.id)
        assert not processor.unlock_period_closure(owner_id, closed_january.id).is_locked

    def test_unknown_closure(self, processor, owner_id):
        with pytest.raises(PeriodClosureNotFoundError):
            processor.unlock_period_closure(owner_id, uuid4())
