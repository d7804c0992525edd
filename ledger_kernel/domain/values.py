"""
Value enums shared by the domain core, the ORM models, and the services.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Models store these as String columns,
    so values read back from the database are plain ``str``; every enum here
    subclasses ``str`` so comparisons work either way.
"""

from enum import Enum


class AccountKind(str, Enum):
    """Kind of user-facing account."""

    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"
    INVESTMENT = "investment"
    MEAL_VOUCHER = "meal_voucher"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class TransactionStatus(str, Enum):
    """Only COMPLETED transactions affect balances and carry journal lines."""

    PENDING = "pending"
    COMPLETED = "completed"


class EntryType(str, Enum):
    """Side of a journal line."""

    DEBIT = "debit"
    CREDIT = "credit"


class LedgerCategory(str, Enum):
    """Chart-of-accounts category of a journal line."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class ClosureType(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class EditScope(str, Enum):
    """Breadth of an edit or delete across a transaction chain."""

    CURRENT = "current"
    CURRENT_AND_REMAINING = "current-and-remaining"
    ALL = "all"
