"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import Account
from ledger_kernel.models.category import Category
from ledger_kernel.models.idempotency import IdempotencyRecord
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.models.period_closure import PeriodClosure
from ledger_kernel.models.transaction import Transaction

__all__ = [
    "Account",
    "Category",
    "IdempotencyRecord",
    "JournalEntry",
    "PeriodClosure",
    "Transaction",
]
