"""
Input schemas -- strict validation of operation payloads.

Responsibility:
    Turns the raw structured payload of an operation contract (the dict a
    caller or the offline queue submits) into a validated, typed DTO.
    Malformed input never gets past this module.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Rules:
    description     trimmed, 1..max_description_length characters
    amount          int cents, 0 < amount <= max_amount (bool and float rejected)
    date            "YYYY-MM-DD" string or datetime.date, a real calendar day
    invoice_month   "YYYY-MM", month 01..12
    ids             UUID strings or uuid.UUID
    type            income | expense (transfers have their own operation)
    status          pending | completed
    scope           current | current-and-remaining | all
    updates         partial; unknown fields rejected; at least one field

Failure modes:
    - ValidationError(field, message) for the first failing field.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping, TypeVar
from uuid import UUID

from ledger_kernel.domain.dtos import (
    BillPaymentRequest,
    FixedSeriesRenewal,
    NewTransaction,
    PeriodClosureRequest,
    TransactionUpdates,
    TransferRequest,
)
from ledger_kernel.domain.policy import InputLimits
from ledger_kernel.domain.values import (
    ClosureType,
    EditScope,
    TransactionStatus,
    TransactionType,
)
from ledger_kernel.exceptions import ValidationError

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_INVOICE_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

_DEFAULT_LIMITS = InputLimits()

DEFAULT_TRANSFER_OUT_DESCRIPTION = "Transfer out"
DEFAULT_TRANSFER_IN_DESCRIPTION = "Transfer in"
DEFAULT_BILL_PAYMENT_DESCRIPTION = "Credit card bill payment"

_UPDATABLE_FIELDS = frozenset({
    "description",
    "amount",
    "date",
    "type",
    "category_id",
    "account_id",
    "status",
    "invoice_month",
})

E = TypeVar("E", bound=Enum)


# =============================================================================
# Field parsers
# =============================================================================


def parse_uuid(value: Any, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    if not isinstance(value, str):
        raise ValidationError(field, "must be a UUID string")
    try:
        return UUID(value)
    except ValueError:
        raise ValidationError(field, f"not a valid UUID: {value!r}") from None


def parse_optional_uuid(value: Any, field: str) -> UUID | None:
    if value is None:
        return None
    return parse_uuid(value, field)


def parse_date(value: Any, field: str = "date") -> date:
    # datetime is a date subclass; a timestamp is not a calendar day
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise ValidationError(field, "must be a date in YYYY-MM-DD format")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(field, f"not a calendar date: {value!r}") from None


def parse_amount(
    value: Any,
    field: str = "amount",
    limits: InputLimits = _DEFAULT_LIMITS,
) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, "must be an integer amount of cents")
    if value <= 0:
        raise ValidationError(field, "must be positive")
    if value > limits.max_amount:
        raise ValidationError(field, f"must not exceed {limits.max_amount}")
    return value


def parse_description(
    value: Any,
    field: str = "description",
    limits: InputLimits = _DEFAULT_LIMITS,
    default: str | None = None,
) -> str:
    """Trimmed description; default applies when value is missing or blank."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if default is not None:
            return default
        raise ValidationError(field, "is required")
    if not isinstance(value, str):
        raise ValidationError(field, "must be a string")
    text = value.strip()
    if len(text) > limits.max_description_length:
        raise ValidationError(
            field, f"must be at most {limits.max_description_length} characters"
        )
    return text


def parse_invoice_month(value: Any, field: str = "invoice_month") -> str | None:
    if value is None:
        return None
    if not isinstance(value, str) or not _INVOICE_MONTH_RE.match(value):
        raise ValidationError(field, "must be a month in YYYY-MM format")
    return value


def parse_enum(enum_cls: type[E], value: Any, field: str) -> E:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(field, f"must be one of: {allowed}") from None


def parse_transaction_type(value: Any, field: str = "type") -> TransactionType:
    parsed = parse_enum(TransactionType, value, field)
    if parsed == TransactionType.TRANSFER:
        raise ValidationError(field, "transfers must use the transfer operation")
    return parsed


def parse_scope(value: Any) -> EditScope:
    if value is None:
        return EditScope.CURRENT
    return parse_enum(EditScope, value, "scope")


def parse_installment_count(value: Any, limits: InputLimits = _DEFAULT_LIMITS) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("installments", "must be an integer")
    if not 2 <= value <= limits.max_installments:
        raise ValidationError(
            "installments", f"must be between 2 and {limits.max_installments}"
        )
    return value


def _require_mapping(payload: Any) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise ValidationError("payload", "must be an object")
    return payload


# =============================================================================
# Operation payloads
# =============================================================================


def parse_new_transaction(
    payload: Mapping[str, Any],
    limits: InputLimits = _DEFAULT_LIMITS,
) -> NewTransaction:
    payload = _require_mapping(payload)
    return NewTransaction(
        description=parse_description(payload.get("description"), limits=limits),
        amount=parse_amount(payload.get("amount"), limits=limits),
        effective_date=parse_date(payload.get("date")),
        transaction_type=parse_transaction_type(payload.get("type")),
        account_id=parse_uuid(payload.get("account_id"), "account_id"),
        category_id=parse_optional_uuid(payload.get("category_id"), "category_id"),
        status=parse_enum(
            TransactionStatus,
            payload.get("status", TransactionStatus.COMPLETED.value),
            "status",
        ),
        invoice_month=parse_invoice_month(payload.get("invoice_month")),
    )


def parse_updates(
    payload: Mapping[str, Any],
    limits: InputLimits = _DEFAULT_LIMITS,
) -> TransactionUpdates:
    payload = _require_mapping(payload)
    unknown = sorted(set(payload) - _UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError("updates", f"unknown field(s): {', '.join(unknown)}")
    present = {k: v for k, v in payload.items() if v is not None}
    if not present:
        raise ValidationError("updates", "at least one field is required")

    return TransactionUpdates(
        description=(
            parse_description(present["description"], limits=limits)
            if "description" in present
            else None
        ),
        amount=parse_amount(present["amount"], limits=limits) if "amount" in present else None,
        effective_date=parse_date(present["date"]) if "date" in present else None,
        transaction_type=(
            parse_transaction_type(present["type"]) if "type" in present else None
        ),
        category_id=parse_optional_uuid(present.get("category_id"), "category_id"),
        account_id=parse_optional_uuid(present.get("account_id"), "account_id"),
        status=(
            parse_enum(TransactionStatus, present["status"], "status")
            if "status" in present
            else None
        ),
        invoice_month=parse_invoice_month(present.get("invoice_month")),
    )


def parse_transfer(
    payload: Mapping[str, Any],
    limits: InputLimits = _DEFAULT_LIMITS,
) -> TransferRequest:
    """
    Validate a transfer payload.

    from_account_id == to_account_id is a business rule (SameAccountError),
    checked by the processor, not here.
    """
    payload = _require_mapping(payload)
    return TransferRequest(
        from_account_id=parse_uuid(payload.get("from_account_id"), "from_account_id"),
        to_account_id=parse_uuid(payload.get("to_account_id"), "to_account_id"),
        amount=parse_amount(payload.get("amount"), limits=limits),
        effective_date=parse_date(payload.get("date")),
        outgoing_description=parse_description(
            payload.get("outgoing_description"),
            "outgoing_description",
            limits,
            default=DEFAULT_TRANSFER_OUT_DESCRIPTION,
        ),
        incoming_description=parse_description(
            payload.get("incoming_description"),
            "incoming_description",
            limits,
            default=DEFAULT_TRANSFER_IN_DESCRIPTION,
        ),
    )


def parse_bill_payment(
    payload: Mapping[str, Any],
    limits: InputLimits = _DEFAULT_LIMITS,
) -> BillPaymentRequest:
    payload = _require_mapping(payload)
    return BillPaymentRequest(
        credit_account_id=parse_uuid(payload.get("credit_account_id"), "credit_account_id"),
        debit_account_id=parse_uuid(payload.get("debit_account_id"), "debit_account_id"),
        amount=parse_amount(payload.get("amount"), limits=limits),
        payment_date=parse_date(payload.get("payment_date"), "payment_date"),
        description=parse_description(
            payload.get("description"),
            limits=limits,
            default=DEFAULT_BILL_PAYMENT_DESCRIPTION,
        ),
        invoice_month=parse_invoice_month(payload.get("invoice_month")),
    )


def parse_period_closure(payload: Mapping[str, Any]) -> PeriodClosureRequest:
    payload = _require_mapping(payload)
    start = parse_date(payload.get("period_start"), "period_start")
    end = parse_date(payload.get("period_end"), "period_end")
    if end < start:
        raise ValidationError("period_end", "must not be before period_start")
    notes = payload.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("notes", "must be a string")
    return PeriodClosureRequest(
        period_start=start,
        period_end=end,
        closure_type=parse_enum(
            ClosureType,
            payload.get("closure_type", ClosureType.MONTHLY.value),
            "closure_type",
        ),
        notes=notes,
    )


def parse_fixed_series_renewal(payload: Mapping[str, Any]) -> FixedSeriesRenewal:
    payload = _require_mapping(payload)
    year = payload.get("year")
    if year is not None and (
        isinstance(year, bool) or not isinstance(year, int) or not 1 <= year <= 9999
    ):
        raise ValidationError("year", "must be an integer between 1 and 9999")
    return FixedSeriesRenewal(
        transaction_id=parse_uuid(payload.get("transaction_id"), "transaction_id"),
        year=year,
    )
