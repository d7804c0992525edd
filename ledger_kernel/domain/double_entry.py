"""
DoubleEntryValidator -- debit/credit balance check for journal lines.

Responsibility:
    Sums a set of journal lines by side and reports whether they balance.
    Used as an inline assertion after every processor write and as a
    diagnostic over stored lines (LedgerSelector.validate_transaction).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - sum(debit amounts) == sum(credit amounts) for every transaction and
      every logical operation.

Failure modes:
    - InternalConsistencyError from assert_balanced().  This is never a
      user error: it means journal derivation produced a bad line set, and
      the enclosing write must abort.
"""

from __future__ import annotations

from typing import Iterable, Protocol

from ledger_kernel.domain.dtos import DoubleEntryResult
from ledger_kernel.domain.values import EntryType
from ledger_kernel.exceptions import InternalConsistencyError


class _Line(Protocol):
    entry_type: str
    amount: int


class DoubleEntryValidator:
    """
    Stateless debit/credit validator.

    Contract:
        Accepts anything with ``entry_type`` and ``amount`` attributes
        (JournalLineSpec DTOs or JournalEntry rows).

    Guarantees:
        - validate() raises only on an unknown entry_type.
        - An empty line set is balanced (0 == 0).
    """

    @staticmethod
    def validate(entries: Iterable[_Line]) -> DoubleEntryResult:
        total_debits = 0
        total_credits = 0
        for entry in entries:
            if entry.entry_type == EntryType.DEBIT:
                total_debits += entry.amount
            elif entry.entry_type == EntryType.CREDIT:
                total_credits += entry.amount
            else:
                raise ValueError(f"Unknown entry_type: {entry.entry_type!r}")
        difference = total_debits - total_credits
        return DoubleEntryResult(
            valid=difference == 0,
            total_debits=total_debits,
            total_credits=total_credits,
            difference=difference,
        )

    @classmethod
    def assert_balanced(
        cls,
        entries: Iterable[_Line],
        transaction_id: object,
    ) -> DoubleEntryResult:
        """
        Validate and raise on imbalance.

        Raises:
            InternalConsistencyError: debits != credits.
        """
        result = cls.validate(entries)
        if not result.valid:
            raise InternalConsistencyError(
                transaction_id=str(transaction_id),
                total_debits=result.total_debits,
                total_credits=result.total_credits,
            )
        return result
