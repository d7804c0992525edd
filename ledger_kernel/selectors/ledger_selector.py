"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries -- account and transaction views,
    trial balance over journal lines, per-transaction double-entry
    diagnostics, derived balances, and credit-card invoice status.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.  MUST NOT import from services/ or outer
    layers.

Invariants enforced:
    - Read-only: nothing here adds, flushes or commits.
    - derived_balance() recomputes a balance from completed transactions,
      independent of the stored column, so the two can be compared.

Failure modes:
    - AccountNotFoundError / TransactionNotFoundError for unknown or foreign
      ids.
    - ValidationError when credit_bill() is asked about a non-credit
      account or a card without closing/due days.

Audit relevance:
    trial_balance() totals must always show debits == credits.
    derived_balance() == stored balance is the reconciliation check for
    every account.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.domain.billing_cycle import (
    DEFAULT_MINIMUM_PAYMENT_RATE,
    BillingCycleCalculator,
)
from ledger_kernel.domain.double_entry import DoubleEntryValidator
from ledger_kernel.domain.dtos import (
    AccountInfo,
    BillStatus,
    DoubleEntryResult,
    TransactionInfo,
)
from ledger_kernel.domain.values import EntryType, TransactionStatus
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    TransactionNotFoundError,
    ValidationError,
)
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.models.transaction import Transaction
from ledger_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class TrialBalanceRow:
    """Debit and credit totals for one ledger code."""

    ledger_code: str
    ledger_category: str
    debit_total: int
    credit_total: int

    @property
    def balance(self) -> int:
        """Net balance (debits - credits)."""
        return self.debit_total - self.credit_total


@dataclass(frozen=True)
class JournalLineView:
    transaction_id: UUID
    account_id: UUID | None
    ledger_code: str
    ledger_category: str
    entry_type: str
    amount: int
    effective_date: date


class LedgerSelector(BaseSelector[Transaction]):
    """Read-only queries over accounts, transactions and journal lines."""

    def account(self, owner_id: UUID, account_id: UUID) -> AccountInfo:
        model = self.session.execute(
            select(Account).where(Account.id == account_id, Account.owner_id == owner_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise AccountNotFoundError(str(account_id))
        return AccountInfo.from_model(model)

    def accounts(self, owner_id: UUID) -> list[AccountInfo]:
        rows = self.session.execute(
            select(Account)
            .where(Account.owner_id == owner_id)
            .order_by(Account.name)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [AccountInfo.from_model(a) for a in rows]

    def transaction(self, owner_id: UUID, transaction_id: UUID) -> TransactionInfo:
        return TransactionInfo.from_model(self._load_transaction(owner_id, transaction_id))

    def transactions(
        self,
        owner_id: UUID,
        account_id: UUID | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[TransactionInfo]:
        """Transactions ordered by date, optionally filtered by account and range."""
        stmt = select(Transaction).where(Transaction.owner_id == owner_id)
        if account_id is not None:
            stmt = stmt.where(Transaction.account_id == account_id)
        if start is not None:
            stmt = stmt.where(Transaction.effective_date >= start)
        if end is not None:
            stmt = stmt.where(Transaction.effective_date <= end)
        rows = self.session.execute(
            stmt.order_by(Transaction.effective_date, Transaction.created_at, Transaction.id)
        ).scalars().all()
        return [TransactionInfo.from_model(t) for t in rows]

    def journal_lines(self, owner_id: UUID, transaction_id: UUID) -> list[JournalLineView]:
        """Stored lines of a transaction (an incoming leg has none of its own)."""
        self._load_transaction(owner_id, transaction_id)
        rows = self.session.execute(
            select(JournalEntry)
            .where(JournalEntry.transaction_id == transaction_id)
            .order_by(JournalEntry.entry_type, JournalEntry.ledger_code)
        ).scalars().all()
        return [
            JournalLineView(
                transaction_id=e.transaction_id,
                account_id=e.account_id,
                ledger_code=e.ledger_code,
                ledger_category=e.ledger_category,
                entry_type=e.entry_type,
                amount=e.amount,
                effective_date=e.effective_date,
            )
            for e in rows
        ]

    def validate_transaction(self, owner_id: UUID, transaction_id: UUID) -> DoubleEntryResult:
        """
        Re-check the stored lines behind a transaction.

        The incoming leg of a transfer or bill payment is checked through
        its partner, which carries the pair's lines.
        """
        txn = self._load_transaction(owner_id, transaction_id)
        carrier_id = txn.id
        if txn.is_linked and not txn.is_outgoing_leg:
            carrier_id = txn.linked_transaction_id
        entries = self.session.execute(
            select(JournalEntry).where(JournalEntry.transaction_id == carrier_id)
        ).scalars().all()
        return DoubleEntryValidator.validate(entries)

    def trial_balance(self, owner_id: UUID, as_of: date | None = None) -> list[TrialBalanceRow]:
        stmt = (
            select(
                JournalEntry.ledger_code,
                JournalEntry.ledger_category,
                JournalEntry.entry_type,
                func.sum(JournalEntry.amount).label("total"),
            )
            .where(JournalEntry.owner_id == owner_id)
            .group_by(
                JournalEntry.ledger_code,
                JournalEntry.ledger_category,
                JournalEntry.entry_type,
            )
        )
        if as_of is not None:
            stmt = stmt.where(JournalEntry.effective_date <= as_of)

        totals: dict[tuple[str, str], dict[str, int]] = defaultdict(
            lambda: {EntryType.DEBIT.value: 0, EntryType.CREDIT.value: 0}
        )
        for row in self.session.execute(stmt).all():
            totals[(row.ledger_code, row.ledger_category)][row.entry_type] = int(row.total)

        return [
            TrialBalanceRow(
                ledger_code=code,
                ledger_category=category,
                debit_total=sides[EntryType.DEBIT.value],
                credit_total=sides[EntryType.CREDIT.value],
            )
            for (code, category), sides in sorted(totals.items())
        ]

    def total_debits_credits(self, owner_id: UUID) -> tuple[int, int]:
        rows = self.trial_balance(owner_id)
        return (
            sum(r.debit_total for r in rows),
            sum(r.credit_total for r in rows),
        )

    def derived_balance(self, owner_id: UUID, account_id: UUID) -> int:
        """Signed sum of the account's completed transactions."""
        rows = self.session.execute(
            select(Transaction).where(
                Transaction.owner_id == owner_id,
                Transaction.account_id == account_id,
                Transaction.status == TransactionStatus.COMPLETED.value,
            )
        ).scalars().all()
        return sum(t.signed_amount for t in rows)

    def credit_bill(
        self,
        owner_id: UUID,
        account_id: UUID,
        invoice_month: str,
        today: date,
        minimum_payment_rate=DEFAULT_MINIMUM_PAYMENT_RATE,
    ) -> BillStatus:
        """
        Status of one credit-card invoice.

        total_due is the net of charges and refunds billed to the invoice;
        total_paid sums payments and incoming transfers credited to it.
        """
        account = self.session.execute(
            select(Account).where(Account.id == account_id, Account.owner_id == owner_id)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))
        if not account.is_credit or account.closing_day is None or account.due_day is None:
            raise ValidationError("account_id", "must be a credit account with a billing cycle")

        rows = self.session.execute(
            select(Transaction).where(
                Transaction.owner_id == owner_id,
                Transaction.account_id == account_id,
                Transaction.invoice_month == invoice_month,
                Transaction.status == TransactionStatus.COMPLETED.value,
            )
        ).scalars().all()

        total_due = 0
        total_paid = 0
        for txn in rows:
            if txn.is_linked and not txn.is_outgoing_leg:
                total_paid += txn.amount
            else:
                total_due -= txn.signed_amount

        calculator = BillingCycleCalculator(
            account.closing_day, account.due_day, minimum_payment_rate
        )
        return calculator.bill_status(invoice_month, total_due, total_paid, today)

    def _load_transaction(self, owner_id: UUID, transaction_id: UUID) -> Transaction:
        txn = self.session.execute(
            select(Transaction).where(
                Transaction.id == transaction_id,
                Transaction.owner_id == owner_id,
            )
        ).scalar_one_or_none()
        if txn is None:
            raise TransactionNotFoundError(str(transaction_id))
        return txn
