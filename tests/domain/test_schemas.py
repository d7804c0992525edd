"""Payload validation for each operation contract."""

from datetime import date
from uuid import uuid4

import pytest

from ledger_kernel.domain.policy import InputLimits
from ledger_kernel.domain.schemas import (
    DEFAULT_BILL_PAYMENT_DESCRIPTION,
    DEFAULT_TRANSFER_IN_DESCRIPTION,
    parse_amount,
    parse_bill_payment,
    parse_date,
    parse_installment_count,
    parse_new_transaction,
    parse_period_closure,
    parse_scope,
    parse_transfer,
    parse_updates,
)
from ledger_kernel.domain.values import EditScope, TransactionStatus, TransactionType
from ledger_kernel.exceptions import ValidationError


def _payload(**overrides):
    payload = {
        "description": "  Groceries  ",
        "amount": 5000,
        "date": "2025-01-10",
        "type": "expense",
        "account_id": str(uuid4()),
    }
    payload.update(overrides)
    return payload


class TestNewTransaction:

    def test_valid_payload_is_normalized(self):
        parsed = parse_new_transaction(_payload())
        assert parsed.description == "Groceries"
        assert parsed.effective_date == date(2025, 1, 10)
        assert parsed.transaction_type == TransactionType.EXPENSE
        assert parsed.status == TransactionStatus.COMPLETED
        assert parsed.category_id is None

    @pytest.mark.parametrize(
        "field,value",
        [
            ("amount", 0),
            ("amount", -5),
            ("amount", 10.5),
            ("amount", True),
            ("amount", "5000"),
            ("date", "2025-02-30"),
            ("date", "10/01/2025"),
            ("type", "transfer"),
            ("type", "gift"),
            ("status", "cleared"),
            ("account_id", "not-a-uuid"),
            ("description", "   "),
            ("invoice_month", "2025-13"),
        ],
    )
    def test_invalid_field_names_the_field(self, field, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_new_transaction(_payload(**{field: value}))
        assert exc_info.value.field == field
        assert exc_info.value.code == "VALIDATION_ERROR"

    def test_amount_above_limit(self):
        with pytest.raises(ValidationError):
            parse_amount(101, limits=InputLimits(max_amount=100))

    def test_description_too_long(self):
        limits = InputLimits(max_description_length=5)
        with pytest.raises(ValidationError):
            parse_new_transaction(_payload(description="abcdef"), limits=limits)

    def test_non_mapping_payload(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_new_transaction(["not", "a", "dict"])
        assert exc_info.value.field == "payload"

    def test_date_object_accepted(self):
        assert parse_date(date(2025, 5, 1)) == date(2025, 5, 1)


class TestUpdates:

    def test_partial_update(self):
        updates = parse_updates({"amount": 700, "date": "2025-02-01"})
        assert updates.changed_fields() == ("amount", "effective_date")

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError, match="owner_id"):
            parse_updates({"owner_id": str(uuid4())})

    def test_empty_update_rejected(self):
        with pytest.raises(ValidationError):
            parse_updates({"description": None})


class TestOtherPayloads:

    def test_transfer_defaults_descriptions(self):
        parsed = parse_transfer({
            "from_account_id": str(uuid4()),
            "to_account_id": str(uuid4()),
            "amount": 2000,
            "date": "2025-01-15",
        })
        assert parsed.incoming_description == DEFAULT_TRANSFER_IN_DESCRIPTION

    def test_bill_payment_defaults(self):
        parsed = parse_bill_payment({
            "credit_account_id": str(uuid4()),
            "debit_account_id": str(uuid4()),
            "amount": 3500,
            "payment_date": "2025-01-15",
        })
        assert parsed.description == DEFAULT_BILL_PAYMENT_DESCRIPTION
        assert parsed.invoice_month is None

    def test_period_closure_end_before_start(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_period_closure({"period_start": "2025-02-01", "period_end": "2025-01-31"})
        assert exc_info.value.field == "period_end"

    def test_scope_defaults_to_current(self):
        assert parse_scope(None) == EditScope.CURRENT
        assert parse_scope("all") == EditScope.ALL

    @pytest.mark.parametrize("count", [1, 73, "3", False])
    def test_installment_count_bounds(self, count):
        with pytest.raises(ValidationError):
            parse_installment_count(count)
