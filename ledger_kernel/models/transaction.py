"""
Module: ledger_kernel.models.transaction
Responsibility: ORM persistence for ledger transactions, including chain
    metadata for installment plans and fixed (recurring) series.
Architecture position: Kernel > Models.  May import from db/ and domain/values.py.

Invariants enforced:
    - amount is strictly positive; the balance sign is implied by
      transaction_type and, for transfer legs, by direction.
    - Only COMPLETED transactions affect Account.balance and carry
      JournalEntry rows.
    - Chains are stored flat: parent_transaction_id is an indexed plain
      column, not a foreign key, so chain members can be removed
      individually without cascading through the relationship.

Failure modes:
    - TransactionNotFoundError when an operation names an unknown id.
    - PeriodLockedError when effective_date falls in a locked closure.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.domain.values import TransactionStatus, TransactionType


class Transaction(TrackedBase):
    """
    A single income, expense, or transfer leg.

    Contract:
        Transfers and bill payments are stored as two linked rows pointing
        at each other through linked_transaction_id.  The outgoing leg
        carries to_account_id.

    Guarantees:
        - amount > 0 (ck_transaction_amount_positive).
        - invoice_month is "YYYY-MM" when set.
    """

    __tablename__ = "transactions"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
        Index("idx_transaction_owner_date", "owner_id", "effective_date"),
        Index("idx_transaction_account", "account_id"),
        Index("idx_transaction_parent", "parent_transaction_id"),
        Index("idx_transaction_linked", "linked_transaction_id"),
    )

    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    # Destination of the outgoing leg of a transfer or bill payment
    to_account_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    linked_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    category_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("categories.id"),
        nullable=True,
    )

    description: Mapped[str] = mapped_column(String(200), nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    effective_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=TransactionStatus.PENDING.value,
        nullable=False,
    )

    # Chain metadata
    is_fixed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    parent_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    installments: Mapped[int | None] = mapped_column(Integer, nullable=True)

    current_installment: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Credit-card billing placement
    invoice_month: Mapped[str | None] = mapped_column(String(7), nullable=True)

    invoice_month_overridden: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction {self.transaction_type} {self.amount} "
            f"{self.effective_date} ({self.status})>"
        )

    @property
    def is_completed(self) -> bool:
        return self.status == TransactionStatus.COMPLETED

    @property
    def is_linked(self) -> bool:
        return self.linked_transaction_id is not None

    @property
    def is_outgoing_leg(self) -> bool:
        """True for the leg of a linked pair that moves money out."""
        return self.is_linked and self.to_account_id is not None

    @property
    def signed_amount(self) -> int:
        """Balance effect on account_id if this transaction is completed."""
        if self.transaction_type == TransactionType.INCOME:
            return self.amount
        if self.transaction_type == TransactionType.EXPENSE:
            return -self.amount
        return -self.amount if self.to_account_id is not None else self.amount
