"""Read-side queries: trial balance, bills, transaction listings."""

from datetime import date
from uuid import uuid4

import pytest

from ledger_kernel.exceptions import (
    AccountNotFoundError,
    TransactionNotFoundError,
    ValidationError,
)
from ledger_kernel.selectors.ledger_selector import LedgerSelector


def _txn(account, amount, when, txn_type="expense"):
    return {
        "description": "Entry",
        "amount": amount,
        "date": when,
        "type": txn_type,
        "account_id": str(account.id),
    }


@pytest.fixture
def selector(session):
    return LedgerSelector(session)


class TestTrialBalance:

    def test_rows_per_ledger_code(self, selector, processor, owner_id, make_account):
        checking = make_account()
        card = make_account("credit", limit_amount=50000, closing_day=5, due_day=15)
        processor.create_transaction(owner_id, _txn(checking, 10000, "2025-01-02", "income"))
        processor.create_transaction(owner_id, _txn(card, 2500, "2025-01-03"))

        rows = {row.ledger_code: row for row in selector.trial_balance(owner_id)}

        assert rows["1.01.02"].balance == 10000
        assert rows["4.01.99"].credit_total == 10000
        assert rows["2.01.01"].credit_total == 2500
        assert rows["5.01.99"].debit_total == 2500
        assert selector.total_debits_credits(owner_id) == (12500, 12500)

    def test_as_of_excludes_later_lines(self, selector, processor, owner_id, make_account):
        checking = make_account()
        processor.create_transaction(owner_id, _txn(checking, 1000, "2025-01-02", "income"))
        processor.create_transaction(owner_id, _txn(checking, 4000, "2025-02-02", "income"))

        rows = selector.trial_balance(owner_id, as_of=date(2025, 1, 31))
        assert sum(r.debit_total for r in rows) == 1000

    def test_owners_are_isolated(self, selector, processor, owner_id, make_account):
        processor.create_transaction(owner_id, _txn(make_account(), 1000, "2025-01-02", "income"))
        assert selector.trial_balance(uuid4()) == []


class TestTransactions:

    def test_filter_by_account_and_range(self, selector, processor, owner_id, make_account):
        first = make_account(balance=10000)
        second = make_account(balance=10000)
        processor.create_transaction(owner_id, _txn(first, 100, "2025-01-05"))
        processor.create_transaction(owner_id, _txn(first, 200, "2025-02-05"))
        processor.create_transaction(owner_id, _txn(second, 300, "2025-01-06"))

        assert [t.amount for t in selector.transactions(owner_id)] == [100, 300, 200]
        assert [t.amount for t in selector.transactions(owner_id, account_id=first.id)] == [100, 200]
        in_january = selector.transactions(
            owner_id, start=date(2025, 1, 1), end=date(2025, 1, 31)
        )
        assert [t.amount for t in in_january] == [100, 300]

    def test_unknown_transaction(self, selector, owner_id):
        with pytest.raises(TransactionNotFoundError):
            selector.transaction(owner_id, uuid4())

    def test_unknown_account(self, selector, owner_id):
        with pytest.raises(AccountNotFoundError):
            selector.account(owner_id, uuid4())

    def test_accounts_lists_only_owner(self, selector, owner_id, make_account):
        make_account(name="Main")
        assert [a.name for a in selector.accounts(owner_id)] == ["Main"]


class TestCreditBill:

    def test_open_invoice(self, selector, processor, owner_id, make_account):
        card = make_account("credit", limit_amount=50000, closing_day=5, due_day=15)
        processor.create_transaction(owner_id, _txn(card, 4000, "2025-01-10"))
        processor.create_transaction(owner_id, _txn(card, 1000, "2025-01-12", "income"))

        bill = selector.credit_bill(owner_id, card.id, "2025-02", today=date(2025, 1, 15))

        assert bill.total_due == 3000
        assert bill.total_paid == 0
        assert not bill.is_closed
        assert bill.closing_date == date(2025, 2, 5)
        assert bill.late_fee == 0

    def test_fully_paid_invoice(self, selector, processor, owner_id, make_account):
        card = make_account("credit", limit_amount=50000, closing_day=5, due_day=15)
        checking = make_account(balance=10000)
        processor.create_transaction(owner_id, _txn(card, 4000, "2025-01-02"))
        processor.pay_credit_card_bill(owner_id, {
            "credit_account_id": str(card.id),
            "debit_account_id": str(checking.id),
            "amount": 4000,
            "payment_date": "2025-01-10",
        })

        bill = selector.credit_bill(owner_id, card.id, "2025-01", today=date(2025, 1, 10))

        assert bill.is_paid
        assert bill.minimum_payment == 0

    def test_requires_credit_account(self, selector, owner_id, make_account):
        with pytest.raises(ValidationError):
            selector.credit_bill(owner_id, make_account().id, "2025-01", today=date(2025, 1, 1))

    def test_requires_billing_cycle(self, selector, owner_id, make_account):
        card = make_account("credit", limit_amount=1000)
        with pytest.raises(ValidationError):
            selector.credit_bill(owner_id, card.id, "2025-01", today=date(2025, 1, 1))
