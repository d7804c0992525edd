"""
Module: ledger_kernel.models.period_closure
Responsibility: ORM persistence for period closures -- administrative locks
    that block writes dated inside a finalized range.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - A locked closure blocks every create, edit (old and new date) and
      delete dated within [period_start, period_end].
    - Closing a period never mutates transaction data.

Failure modes:
    - UnbalancedPeriodError at creation if the range holds transactions
      without balanced journal lines.
    - PeriodLockedError for writes inside a locked range.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import Boolean, Date, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class PeriodClosure(TrackedBase):
    """
    A closed (and, while is_locked, write-protected) date range.

    Contract:
        Unlocking keeps the row and records unlocked_at/unlocked_by_id;
        relocking clears them.

    Non-goals:
        - Does NOT check overlap with other closures; PeriodService does.
    """

    __tablename__ = "period_closures"

    __table_args__ = (
        Index("idx_closure_owner_dates", "owner_id", "period_start", "period_end"),
    )

    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Inclusive bounds
    period_start: Mapped[date] = mapped_column(Date, nullable=False)

    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    closure_type: Mapped[str] = mapped_column(String(20), nullable=False)

    is_locked: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    closed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    closed_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    unlocked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    unlocked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        state = "locked" if self.is_locked else "unlocked"
        return f"<PeriodClosure {self.period_start}..{self.period_end}: {state}>"

    def contains_date(self, check_date: date) -> bool:
        """Check if a date falls within this closure."""
        return self.period_start <= check_date <= self.period_end

    def unlock(self, actor_id: UUID, unlocked_at: datetime) -> None:
        """Lift the write lock.

        Note: Requires unlocked_at from an injected clock.
        """
        self.is_locked = False
        self.unlocked_at = unlocked_at
        self.unlocked_by_id = actor_id

    def relock(self) -> None:
        self.is_locked = True
        self.unlocked_at = None
        self.unlocked_by_id = None
