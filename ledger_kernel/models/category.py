"""
Module: ledger_kernel.models.category
Responsibility: ORM persistence for transaction categories and their optional
    chart-of-accounts mapping.
Architecture position: Kernel > Models.  May import from db/ only.
"""

from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class Category(TrackedBase):
    """
    Income or expense category.

    When ledger_code is set, journal lines for transactions in this category
    post to that revenue/expense line instead of the configured default.
    """

    __tablename__ = "categories"

    __table_args__ = (
        Index("idx_category_owner", "owner_id"),
    )

    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # "income" or "expense"
    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    ledger_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    def __repr__(self) -> str:
        return f"<Category {self.name} ({self.kind})>"
