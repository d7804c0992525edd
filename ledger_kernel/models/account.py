"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for user accounts and their running balances.
Architecture position: Kernel > Models.  May import from db/ and domain/values.py.

Invariants enforced:
    - balance equals the signed sum of the account's completed transactions.
      It is only ever changed through LedgerStore.apply_balance_delta(),
      which issues an SQL-side ``balance = balance + :delta``.
    - Credit accounts may hold a negative balance (debt) down to
      ``-limit_amount``.

Failure modes:
    - AccountNotFoundError when an operation references an unknown account
      or an account owned by someone else.
"""

from uuid import UUID

from sqlalchemy import BigInteger, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.domain.values import AccountKind


class Account(TrackedBase):
    """
    An owner's checking, savings, credit, investment or meal-voucher account.

    Contract:
        Balances are integer cents.  closing_day and due_day are only
        meaningful for credit accounts and drive invoice-month placement.

    Non-goals:
        - Does NOT validate limit_amount against the balance; credit-limit
          checks happen in the transaction processor before a write.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        Index("idx_account_owner", "owner_id"),
    )

    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    account_type: Mapped[str] = mapped_column(String(20), nullable=False)

    balance: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    limit_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    closing_day: Mapped[int | None] = mapped_column(Integer, nullable=True)

    due_day: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<Account {self.name} ({self.account_type}): {self.balance}>"

    @property
    def is_credit(self) -> bool:
        return self.account_type == AccountKind.CREDIT

    @property
    def available(self) -> int:
        """Balance plus any limit headroom."""
        return self.balance + (self.limit_amount or 0)
