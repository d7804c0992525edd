"""Structured logs emitted around each ledger operation."""

import pytest

from ledger_kernel.exceptions import PeriodLockedError, SameAccountError
from ledger_kernel.logging_config import LogContext


def _messages(records):
    return [r["message"] for r in records]


class TestOperationLogging:

    def test_successful_operation_lifecycle(self, captured_logs, processor, owner_id, make_account):
        account = make_account()
        processor.create_transaction(owner_id, {
            "description": "Salary",
            "amount": 10000,
            "date": "2025-01-10",
            "type": "income",
            "account_id": str(account.id),
        }, idempotency_key="log-1")

        records = captured_logs()
        messages = _messages(records)
        assert messages.index("ledger_operation_started") < messages.index("transaction_created")
        assert messages.index("transaction_created") < messages.index("ledger_operation_completed")

        completed = next(r for r in records if r["message"] == "ledger_operation_completed")
        assert completed["operation"] == "create-transaction"
        assert completed["owner_id"] == str(owner_id)
        assert completed["idempotency_key"] == "log-1"
        assert completed["replayed"] is False
        assert completed["duration_ms"] >= 0
        assert len(completed["transaction_ids"]) == 1

        started = next(r for r in records if r["message"] == "ledger_operation_started")
        assert started["correlation_id"] == completed["correlation_id"]

    def test_rejection_logged_as_warning(self, captured_logs, processor, owner_id, make_account):
        account = make_account(balance=100)
        with pytest.raises(SameAccountError):
            processor.transfer(owner_id, {
                "from_account_id": str(account.id),
                "to_account_id": str(account.id),
                "amount": 50,
                "date": "2025-01-10",
            })

        [rejected] = [r for r in captured_logs() if r["message"] == "ledger_operation_rejected"]
        assert rejected["level"] == "WARNING"
        assert rejected["error_code"] == "SAME_ACCOUNT"
        assert rejected["operation"] == "transfer"

    def test_context_is_cleared_after_operation(self, processor, owner_id, make_account):
        account = make_account()
        processor.create_transaction(owner_id, {
            "description": "Gift",
            "amount": 100,
            "date": "2025-01-10",
            "type": "income",
            "account_id": str(account.id),
        })
        assert LogContext.get_all() == {}

    def test_period_lock_rejection_logged(self, captured_logs, processor, owner_id, make_account):
        account = make_account()
        processor.create_period_closure(
            owner_id, {"period_start": "2025-01-01", "period_end": "2025-01-31"}
        )
        with pytest.raises(PeriodLockedError):
            processor.create_transaction(owner_id, {
                "description": "Late entry",
                "amount": 100,
                "date": "2025-01-05",
                "type": "income",
                "account_id": str(account.id),
            })

        messages = _messages(captured_logs())
        assert "period_closure_created" in messages
        assert "period_lock_rejected" in messages
