"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the service boundary:
    validated operation inputs (NewTransaction, TransactionUpdates,
    TransferRequest, BillPaymentRequest, PeriodClosureRequest,
    FixedSeriesRenewal), derived journal lines (JournalLineSpec), check
    results (DoubleEntryResult, LockCheck, BillStatus), and read snapshots
    of persisted rows
    (AccountInfo, TransactionInfo, PeriodClosureInfo, OperationResult).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service layer (never from domain logic).

Invariants enforced:
    - Services return DTOs, never ORM entities.
    - JournalLineSpec.amount is strictly positive.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Mapping
from uuid import UUID

from ledger_kernel.domain.values import (
    ClosureType,
    EntryType,
    LedgerCategory,
    TransactionStatus,
    TransactionType,
)

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.period_closure import PeriodClosure as PeriodClosureModel
    from ledger_kernel.models.transaction import Transaction as TransactionModel


# =============================================================================
# Journal lines
# =============================================================================


@dataclass(frozen=True)
class JournalLineSpec:
    """
    A derived, not-yet-persisted journal line.

    Raises:
        ValueError: amount is not a positive integer.
    """

    ledger_code: str
    ledger_category: LedgerCategory
    entry_type: EntryType
    amount: int
    account_id: UUID | None = None

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError("JournalLineSpec amount must be integer cents")
        if self.amount <= 0:
            raise ValueError(f"JournalLineSpec amount must be positive: {self.amount}")


@dataclass(frozen=True)
class DoubleEntryResult:
    """Outcome of a debit/credit balance check."""

    valid: bool
    total_debits: int
    total_credits: int
    difference: int

    def __bool__(self) -> bool:
        return self.valid


# =============================================================================
# Validated operation inputs
# =============================================================================


@dataclass(frozen=True)
class NewTransaction:
    """Validated input for a single income or expense transaction."""

    description: str
    amount: int
    effective_date: date
    transaction_type: TransactionType
    account_id: UUID
    status: TransactionStatus = TransactionStatus.COMPLETED
    category_id: UUID | None = None
    invoice_month: str | None = None


@dataclass(frozen=True)
class TransactionUpdates:
    """
    Validated partial update.  None means "leave unchanged".

    Contract:
        Fields cannot be cleared through an update, only replaced.
    """

    description: str | None = None
    amount: int | None = None
    effective_date: date | None = None
    transaction_type: TransactionType | None = None
    category_id: UUID | None = None
    account_id: UUID | None = None
    status: TransactionStatus | None = None
    invoice_month: str | None = None

    def changed_fields(self) -> tuple[str, ...]:
        return tuple(
            name
            for name in self.__dataclass_fields__
            if getattr(self, name) is not None
        )


@dataclass(frozen=True)
class TransferRequest:
    from_account_id: UUID
    to_account_id: UUID
    amount: int
    effective_date: date
    outgoing_description: str
    incoming_description: str


@dataclass(frozen=True)
class BillPaymentRequest:
    credit_account_id: UUID
    debit_account_id: UUID
    amount: int
    payment_date: date
    description: str
    invoice_month: str | None = None


@dataclass(frozen=True)
class FixedSeriesRenewal:
    """Extend a fixed series; year None means the year after its latest occurrence."""

    transaction_id: UUID
    year: int | None = None


@dataclass(frozen=True)
class PeriodClosureRequest:
    period_start: date
    period_end: date
    closure_type: ClosureType
    notes: str | None = None


# =============================================================================
# Read snapshots
# =============================================================================


@dataclass(frozen=True)
class AccountInfo:
    id: UUID
    owner_id: UUID
    name: str
    account_type: str
    balance: int
    limit_amount: int | None = None
    closing_day: int | None = None
    due_day: int | None = None

    @classmethod
    def from_model(cls, model: AccountModel) -> AccountInfo:
        return cls(
            id=model.id,
            owner_id=model.owner_id,
            name=model.name,
            account_type=model.account_type,
            balance=model.balance,
            limit_amount=model.limit_amount,
            closing_day=model.closing_day,
            due_day=model.due_day,
        )


@dataclass(frozen=True)
class TransactionInfo:
    """Immutable snapshot of a stored transaction."""

    id: UUID
    owner_id: UUID
    account_id: UUID
    description: str
    transaction_type: str
    amount: int
    effective_date: date
    status: str
    to_account_id: UUID | None = None
    linked_transaction_id: UUID | None = None
    category_id: UUID | None = None
    is_fixed: bool = False
    parent_transaction_id: UUID | None = None
    installments: int | None = None
    current_installment: int | None = None
    invoice_month: str | None = None
    invoice_month_overridden: bool = False

    @classmethod
    def from_model(cls, model: TransactionModel) -> TransactionInfo:
        return cls(
            id=model.id,
            owner_id=model.owner_id,
            account_id=model.account_id,
            description=model.description,
            transaction_type=model.transaction_type,
            amount=model.amount,
            effective_date=model.effective_date,
            status=model.status,
            to_account_id=model.to_account_id,
            linked_transaction_id=model.linked_transaction_id,
            category_id=model.category_id,
            is_fixed=model.is_fixed,
            parent_transaction_id=model.parent_transaction_id,
            installments=model.installments,
            current_installment=model.current_installment,
            invoice_month=model.invoice_month,
            invoice_month_overridden=model.invoice_month_overridden,
        )


@dataclass(frozen=True)
class PeriodClosureInfo:
    """
    Pure domain representation of a period closure.

    Non-goals:
        - Does NOT enforce locks (PeriodLockGuard does that).
    """

    id: UUID
    owner_id: UUID
    period_start: date
    period_end: date
    closure_type: str
    is_locked: bool
    closed_at: datetime
    closed_by_id: UUID
    unlocked_at: datetime | None = None
    unlocked_by_id: UUID | None = None
    notes: str | None = None

    def contains_date(self, check_date: date) -> bool:
        return self.period_start <= check_date <= self.period_end

    @classmethod
    def from_model(cls, model: PeriodClosureModel) -> PeriodClosureInfo:
        return cls(
            id=model.id,
            owner_id=model.owner_id,
            period_start=model.period_start,
            period_end=model.period_end,
            closure_type=model.closure_type,
            is_locked=model.is_locked,
            closed_at=model.closed_at,
            closed_by_id=model.closed_by_id,
            unlocked_at=model.unlocked_at,
            unlocked_by_id=model.unlocked_by_id,
            notes=model.notes,
        )


@dataclass(frozen=True)
class LockCheck:
    locked: bool
    closure: PeriodClosureInfo | None = None

    def __bool__(self) -> bool:
        return self.locked


@dataclass(frozen=True)
class OperationResult:
    """
    Outcome of a LedgerTransactionProcessor operation.

    Contract:
        balances holds the post-operation balance of every account the
        operation touched.  replayed is True when the result was served
        from a stored idempotency record instead of a new write.
    """

    operation: str
    transactions: tuple[TransactionInfo, ...] = ()
    balances: Mapping[UUID, int] = field(default_factory=dict)
    deleted_count: int = 0
    closure: PeriodClosureInfo | None = None
    replayed: bool = False

    @property
    def transaction(self) -> TransactionInfo | None:
        """The first (primary) transaction, if any."""
        return self.transactions[0] if self.transactions else None

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe summary for the offline replay path."""
        return {
            "operation": self.operation,
            "transaction_ids": [str(t.id) for t in self.transactions],
            "balances": {str(k): v for k, v in self.balances.items()},
            "deleted_count": self.deleted_count,
            "closure_id": str(self.closure.id) if self.closure else None,
            "replayed": self.replayed,
        }


@dataclass(frozen=True)
class BillStatus:
    """
    Derived state of one credit-card invoice.

    minimum_payment and late_fee are display-only derived values, not
    ledger state.
    """

    invoice_month: str
    closing_date: date
    due_date: date
    total_due: int
    total_paid: int
    is_closed: bool
    is_paid: bool
    minimum_payment: int
    late_fee: int = 0

    @property
    def remaining(self) -> int:
        return max(self.total_due - self.total_paid, 0)
