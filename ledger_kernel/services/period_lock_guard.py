"""
PeriodLockGuard -- rejects writes dated inside a locked period closure.

Responsibility:
    Answers "is this date locked for this owner?" and raises
    PeriodLockedError for the first locked date among a set of dates.

Architecture position:
    Kernel > Services -- read-only against period_closures.

Invariants enforced:
    - A date is locked if a closure for the owner with is_locked = True has
      period_start <= date <= period_end.  Unlocked closures never block.
    - Callers pass every date they would write or vacate: the new date on
      create, both old and new dates on edit, the stored date on delete.

Failure modes:
    - PeriodLockedError from ensure_unlocked().
"""

from __future__ import annotations

from datetime import date
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import LockCheck, PeriodClosureInfo
from ledger_kernel.exceptions import PeriodLockedError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.period_closure import PeriodClosure

logger = get_logger("services.period_lock_guard")


class PeriodLockGuard:
    """
    Period lock checks for one session.

    Contract:
        Read-only.  Reflects closures visible in the caller's transaction.
    """

    def __init__(self, session: Session):
        self.session = session

    def _locked_closures(
        self,
        owner_id: UUID,
        earliest: date,
        latest: date,
    ) -> list[PeriodClosure]:
        return list(
            self.session.execute(
                select(PeriodClosure)
                .where(
                    PeriodClosure.owner_id == owner_id,
                    PeriodClosure.is_locked.is_(True),
                    PeriodClosure.period_start <= latest,
                    PeriodClosure.period_end >= earliest,
                )
                .order_by(PeriodClosure.period_start)
            ).scalars().all()
        )

    def check(self, owner_id: UUID, check_date: date) -> LockCheck:
        """Whether check_date is locked, with the covering closure if so."""
        closures = self._locked_closures(owner_id, check_date, check_date)
        if not closures:
            return LockCheck(locked=False)
        return LockCheck(locked=True, closure=PeriodClosureInfo.from_model(closures[0]))

    def ensure_unlocked(self, owner_id: UUID, dates: Iterable[date]) -> None:
        """
        Raise for the earliest locked date among dates.

        Raises:
            PeriodLockedError: Any date falls in a locked closure.
        """
        unique = sorted(set(dates))
        if not unique:
            return
        closures = self._locked_closures(owner_id, unique[0], unique[-1])
        for check_date in unique:
            for closure in closures:
                if closure.contains_date(check_date):
                    logger.info(
                        "period_lock_rejected",
                        extra={
                            "effective_date": check_date.isoformat(),
                            "closure_id": str(closure.id),
                        },
                    )
                    raise PeriodLockedError(
                        effective_date=check_date.isoformat(),
                        closure_id=str(closure.id),
                        period_start=closure.period_start.isoformat(),
                        period_end=closure.period_end.isoformat(),
                    )

    def first_locked(self, owner_id: UUID, dates: Iterable[date]) -> date | None:
        """The earliest locked date among dates, or None."""
        unique = sorted(set(dates))
        if not unique:
            return None
        closures = self._locked_closures(owner_id, unique[0], unique[-1])
        for check_date in unique:
            if any(c.contains_date(check_date) for c in closures):
                return check_date
        return None
