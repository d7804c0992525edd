"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for double-entry journal lines.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - For every transaction_id, sum(debit amounts) == sum(credit amounts).
      Checked by DoubleEntryValidator before the enclosing write commits.
    - A JournalEntry lives and dies with its Transaction
      (ON DELETE CASCADE on transaction_id).
    - amount > 0.

Audit relevance:
    Period closure refuses to lock a range that holds a completed
    transaction without a balanced set of these rows.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString


class JournalEntry(Base):
    """
    One debit or credit line attached to a transaction.

    Contract:
        ledger_code names the chart-of-accounts line (e.g. "1.01.02"),
        ledger_category its class (asset, liability, revenue, expense,
        equity).  account_id is set when the line posts to a user account.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_journal_amount_positive"),
        Index("idx_journal_transaction", "transaction_id"),
        Index("idx_journal_owner_date", "owner_id", "effective_date"),
    )

    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
    )

    account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    ledger_code: Mapped[str] = mapped_column(String(20), nullable=False)

    ledger_category: Mapped[str] = mapped_column(String(20), nullable=False)

    entry_type: Mapped[str] = mapped_column(String(10), nullable=False)

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    effective_date: Mapped[date] = mapped_column(Date, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.entry_type} {self.ledger_code} {self.amount}>"
