"""Idempotency keys: replays return the stored result and never write twice."""

from uuid import uuid4

import pytest

from ledger_kernel.exceptions import (
    InsufficientFundsError,
    PayloadMismatchError,
    ValidationError,
)
from ledger_kernel.models.account import Account
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.transaction_processor import Operation


def income(account, amount=10000):
    return {
        "description": "Salary",
        "amount": amount,
        "date": "2025-01-10",
        "type": "income",
        "account_id": str(account.id),
    }


class TestIdempotentReplay:

    def test_same_key_same_payload_writes_once(self, session, processor, owner_id, make_account):
        account = make_account()

        first = processor.create_transaction(owner_id, income(account), idempotency_key="k-1")
        second = processor.create_transaction(owner_id, income(account), idempotency_key="k-1")

        assert not first.replayed
        assert second.replayed
        assert second.transaction.id == first.transaction.id
        assert second.balances[account.id] == 10000
        assert len(LedgerSelector(session).transactions(owner_id)) == 1

    def test_different_payload_rejected(self, session, processor, owner_id, make_account):
        account = make_account()
        processor.create_transaction(owner_id, income(account), idempotency_key="k-2")

        with pytest.raises(PayloadMismatchError) as exc_info:
            processor.create_transaction(owner_id, income(account, 999), idempotency_key="k-2")

        assert exc_info.value.code == "PAYLOAD_MISMATCH"
        assert LedgerSelector(session).account(owner_id, account.id).balance == 10000

    def test_key_reused_for_other_operation_rejected(self, processor, owner_id, make_account):
        account = make_account(balance=5000)
        txn = processor.create_transaction(
            owner_id, income(account), idempotency_key="k-3"
        ).transaction
        with pytest.raises(PayloadMismatchError):
            processor.delete_transaction(owner_id, txn.id, idempotency_key="k-3")

    def test_keys_are_scoped_per_owner(self, session, processor, owner_id, make_account):
        other_owner = uuid4()
        other = Account(owner_id=other_owner, name="Other", account_type="checking", balance=0)
        session.add(other)
        session.flush()

        processor.create_transaction(owner_id, income(make_account()), idempotency_key="shared")
        result = processor.create_transaction(other_owner, income(other), idempotency_key="shared")
        assert not result.replayed

    def test_replayed_transfer_returns_both_legs(self, processor, owner_id, make_account):
        checking = make_account(balance=5000)
        savings = make_account("savings")
        payload = {
            "from_account_id": str(checking.id),
            "to_account_id": str(savings.id),
            "amount": 1000,
            "date": "2025-01-15",
        }

        first = processor.transfer(owner_id, payload, idempotency_key="t-1")
        again = processor.transfer(owner_id, payload, idempotency_key="t-1")

        assert [t.id for t in again.transactions] == [t.id for t in first.transactions]
        assert again.balances == {checking.id: 4000, savings.id: 1000}

    def test_replayed_delete_keeps_count(self, processor, owner_id, make_account):
        txn = processor.create_transaction(owner_id, income(make_account())).transaction

        first = processor.delete_transaction(owner_id, txn.id, idempotency_key="d-1")
        again = processor.delete_transaction(owner_id, txn.id, idempotency_key="d-1")

        assert first.deleted_count == again.deleted_count == 1
        assert again.replayed

    def test_replayed_closure(self, processor, owner_id):
        payload = {"period_start": "2024-12-01", "period_end": "2024-12-31"}
        first = processor.create_period_closure(owner_id, payload, idempotency_key="c-1")
        again = processor.create_period_closure(owner_id, payload, idempotency_key="c-1")
        assert again.closure.id == first.closure.id

    def test_failed_attempt_records_nothing(self, processor, owner_id, make_account):
        checking = make_account(balance=100)
        savings = make_account("savings")
        payload = {
            "from_account_id": str(checking.id),
            "to_account_id": str(savings.id),
            "amount": 1000,
            "date": "2025-01-15",
        }
        with pytest.raises(InsufficientFundsError):
            processor.transfer(owner_id, payload, idempotency_key="t-2")

        processor.create_transaction(owner_id, income(checking, 5000))
        result = processor.transfer(owner_id, payload, idempotency_key="t-2")

        assert not result.replayed
        assert result.balances[checking.id] == 4100


class TestExecute:

    def test_dispatch_by_operation_name(self, processor, owner_id, make_account):
        account = make_account()
        created = processor.execute(owner_id, Operation.CREATE_TRANSACTION, income(account))
        edited = processor.execute(owner_id, "edit-transaction", {
            "transaction_id": str(created.transaction.id),
            "updates": {"amount": 12000},
        })
        assert edited.balances[account.id] == 12000

        deleted = processor.execute(owner_id, "delete-transaction", {
            "transaction_id": str(created.transaction.id),
        })
        assert deleted.deleted_count == 1

    def test_unknown_operation(self, processor, owner_id):
        with pytest.raises(ValidationError) as exc_info:
            processor.execute(owner_id, "launch-rocket", {})
        assert exc_info.value.field == "operation"

    def test_payload_must_be_mapping(self, processor, owner_id):
        with pytest.raises(ValidationError):
            processor.execute(owner_id, Operation.TRANSFER, ["nope"])

    def test_to_payload_is_json_safe(self, processor, owner_id, make_account):
        account = make_account()
        payload = processor.execute(owner_id, Operation.CREATE_TRANSACTION, income(account)).to_payload()
        assert payload["balances"] == {str(account.id): 10000}
        assert payload["transaction_ids"] and isinstance(payload["transaction_ids"][0], str)
        assert payload["closure_id"] is None
