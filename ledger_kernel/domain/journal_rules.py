"""
Journal derivation -- the debit/credit lines a transaction produces.

Responsibility:
    Pure mapping from the facts of one transaction (type, status, account
    kinds, category ledger code) to the journal lines it must carry.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Every non-empty result holds exactly one debit and one credit of the
      same amount, so it always passes DoubleEntryValidator.
    - Pending transactions derive no lines.
    - A linked pair (transfer or bill payment) carries its lines on the
      outgoing leg only: debit the destination account's line, credit the
      source account's line.  The incoming leg derives nothing.

Rules:
    income            debit own account line   credit revenue
    expense           debit expense            credit own account line
    outgoing leg      debit destination line   credit own account line
    incoming leg      (none)

    "Own account line" is an asset code, or the credit-card liability code
    for credit accounts, so a credit-card expense debits expense and
    credits liability, and a bill payment debits liability and credits
    asset.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from ledger_kernel.domain.dtos import JournalLineSpec
from ledger_kernel.domain.policy import ChartOfAccounts
from ledger_kernel.domain.values import (
    EntryType,
    LedgerCategory,
    TransactionStatus,
    TransactionType,
)


@dataclass(frozen=True)
class PostingFacts:
    """What journal derivation needs to know about a transaction."""

    transaction_type: str
    status: str
    amount: int
    account_id: UUID
    account_kind: str
    to_account_id: UUID | None = None
    to_account_kind: str | None = None
    is_linked: bool = False
    category_ledger_code: str | None = None


def derive_journal_lines(
    facts: PostingFacts,
    chart: ChartOfAccounts,
) -> tuple[JournalLineSpec, ...]:
    """
    Derive the journal lines for one transaction.

    Raises:
        ValueError: a transfer leg without to_account_id that is not the
            incoming side of a linked pair.
    """
    if facts.status != TransactionStatus.COMPLETED:
        return ()

    own_code, own_category = chart.line_for_account(facts.account_kind)

    if facts.to_account_id is not None:
        if facts.to_account_kind is None:
            raise ValueError("to_account_kind is required for an outgoing leg")
        dest_code, dest_category = chart.line_for_account(facts.to_account_kind)
        return _pair(
            debit=(dest_code, dest_category, facts.to_account_id),
            credit=(own_code, own_category, facts.account_id),
            amount=facts.amount,
        )

    if facts.is_linked:
        return ()

    if facts.transaction_type == TransactionType.INCOME:
        return _pair(
            debit=(own_code, own_category, facts.account_id),
            credit=(
                facts.category_ledger_code or chart.default_revenue_code,
                LedgerCategory.REVENUE,
                None,
            ),
            amount=facts.amount,
        )

    if facts.transaction_type == TransactionType.EXPENSE:
        return _pair(
            debit=(
                facts.category_ledger_code or chart.default_expense_code,
                LedgerCategory.EXPENSE,
                None,
            ),
            credit=(own_code, own_category, facts.account_id),
            amount=facts.amount,
        )

    raise ValueError(
        f"Cannot derive lines for unlinked {facts.transaction_type} "
        "without a destination account"
    )


def _pair(
    debit: tuple[str, LedgerCategory, UUID | None],
    credit: tuple[str, LedgerCategory, UUID | None],
    amount: int,
) -> tuple[JournalLineSpec, JournalLineSpec]:
    return (
        JournalLineSpec(
            ledger_code=debit[0],
            ledger_category=debit[1],
            entry_type=EntryType.DEBIT,
            amount=amount,
            account_id=debit[2],
        ),
        JournalLineSpec(
            ledger_code=credit[0],
            ledger_category=credit[1],
            entry_type=EntryType.CREDIT,
            amount=amount,
            account_id=credit[2],
        ),
    )
