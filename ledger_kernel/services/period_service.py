"""
PeriodService -- period closure lifecycle and pre-close validation.

Responsibility:
    Creates period closures after checking that every completed transaction
    in the range carries a balanced journal line set, and unlocks or
    relocks existing closures.

Architecture position:
    Kernel > Services -- imperative shell, owns period_closures writes.

Invariants enforced:
    - A closure is only created when validate_period_entries() finds no
      issue in its range.  Validation is not re-run retroactively.
    - Two locked closures for the same owner never overlap.
    - Closing a period never mutates transactions or journal lines.

Failure modes:
    - UnbalancedPeriodError listing each transaction without entries or
      with debits != credits.
    - OverlappingClosureError when a locked closure already covers part of
      the range.
    - PeriodClosureNotFoundError on unlock/relock of an unknown closure.

Audit relevance:
    closed_by_id/closed_at and unlocked_by_id/unlocked_at record who lifted
    or imposed each lock and when (from the injected Clock).
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.double_entry import DoubleEntryValidator
from ledger_kernel.domain.dtos import PeriodClosureInfo, PeriodClosureRequest
from ledger_kernel.exceptions import (
    OverlappingClosureError,
    PeriodClosureNotFoundError,
    UnbalancedPeriodError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.period_closure import PeriodClosure
from ledger_kernel.models.transaction import Transaction
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.ledger_store import LedgerStore

logger = get_logger("services.period")


class PeriodService(BaseService[PeriodClosure]):
    """
    Service for managing period closures.

    Contract:
        Flushes only; the caller commits.  Timestamps come from the
        injected Clock.

    Non-goals:
        - Does NOT enforce locks on writes (PeriodLockGuard does that).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._store = LedgerStore(session)

    def _get_closure(self, owner_id: UUID, closure_id: UUID) -> PeriodClosure:
        closure = self.session.execute(
            select(PeriodClosure)
            .where(PeriodClosure.id == closure_id, PeriodClosure.owner_id == owner_id)
            .with_for_update()
        ).scalar_one_or_none()
        if closure is None:
            raise PeriodClosureNotFoundError(str(closure_id))
        return closure

    def validate_period_entries(
        self,
        owner_id: UUID,
        period_start: date,
        period_end: date,
    ) -> list[dict]:
        """
        Find completed transactions in the range without balanced lines.

        The incoming leg of a linked pair is checked through its partner,
        which carries the pair's lines.

        Returns:
            One dict per problem transaction: transaction_id, effective_date,
            description, issue ("missing_entries" or "unbalanced"),
            total_debits, total_credits.  Empty when the period is clean.
        """
        transactions = self._store.completed_in_range(owner_id, period_start, period_end)

        carrier_of: dict[UUID, UUID] = {}
        for txn in transactions:
            if txn.is_linked and not txn.is_outgoing_leg:
                carrier_of[txn.id] = txn.linked_transaction_id
            else:
                carrier_of[txn.id] = txn.id

        lines_by_carrier = defaultdict(list)
        for entry in self._store.journal_entries_for(set(carrier_of.values())):
            lines_by_carrier[entry.transaction_id].append(entry)

        issues: list[dict] = []
        for txn in transactions:
            lines = lines_by_carrier.get(carrier_of[txn.id], [])
            result = DoubleEntryValidator.validate(lines)
            if not lines:
                issue = "missing_entries"
            elif not result.valid:
                issue = "unbalanced"
            else:
                continue
            issues.append(_issue(txn, issue, result.total_debits, result.total_credits))
        return issues

    def create_closure(
        self,
        owner_id: UUID,
        request: PeriodClosureRequest,
        closed_by_id: UUID,
    ) -> PeriodClosureInfo:
        """
        Validate the range and insert a locked closure.

        Raises:
            OverlappingClosureError: A locked closure overlaps the range.
            UnbalancedPeriodError: The range holds problem transactions.
        """
        overlapping = self.session.execute(
            select(PeriodClosure).where(
                PeriodClosure.owner_id == owner_id,
                PeriodClosure.is_locked.is_(True),
                PeriodClosure.period_start <= request.period_end,
                PeriodClosure.period_end >= request.period_start,
            )
        ).scalars().first()
        if overlapping is not None:
            raise OverlappingClosureError(
                request.period_start.isoformat(),
                request.period_end.isoformat(),
                str(overlapping.id),
            )

        issues = self.validate_period_entries(
            owner_id, request.period_start, request.period_end
        )
        if issues:
            logger.warning(
                "period_closure_rejected",
                extra={
                    "period_start": request.period_start.isoformat(),
                    "period_end": request.period_end.isoformat(),
                    "issue_count": len(issues),
                },
            )
            raise UnbalancedPeriodError(
                request.period_start.isoformat(),
                request.period_end.isoformat(),
                issues,
            )

        closure = PeriodClosure(
            owner_id=owner_id,
            period_start=request.period_start,
            period_end=request.period_end,
            closure_type=request.closure_type.value,
            is_locked=True,
            closed_at=self._clock.now(),
            closed_by_id=closed_by_id,
            notes=request.notes,
        )
        self.session.add(closure)
        self.session.flush()

        logger.info(
            "period_closure_created",
            extra={
                "closure_id": str(closure.id),
                "period_start": request.period_start.isoformat(),
                "period_end": request.period_end.isoformat(),
                "closure_type": request.closure_type.value,
            },
        )
        return PeriodClosureInfo.from_model(closure)

    def unlock_closure(
        self,
        owner_id: UUID,
        closure_id: UUID,
        unlocked_by_id: UUID,
    ) -> PeriodClosureInfo:
        closure = self._get_closure(owner_id, closure_id)
        if closure.is_locked:
            closure.unlock(unlocked_by_id, self._clock.now())
            self.session.flush()
            logger.info("period_closure_unlocked", extra={"closure_id": str(closure_id)})
        return PeriodClosureInfo.from_model(closure)

    def relock_closure(self, owner_id: UUID, closure_id: UUID) -> PeriodClosureInfo:
        """
        Lock a previously unlocked closure again.

        Transactions written while it was unlocked are re-validated first.

        Raises:
            UnbalancedPeriodError: The range holds problem transactions.
            OverlappingClosureError: Another locked closure now overlaps.
        """
        closure = self._get_closure(owner_id, closure_id)
        if closure.is_locked:
            return PeriodClosureInfo.from_model(closure)

        overlapping = self.session.execute(
            select(PeriodClosure).where(
                PeriodClosure.owner_id == owner_id,
                PeriodClosure.id != closure.id,
                PeriodClosure.is_locked.is_(True),
                PeriodClosure.period_start <= closure.period_end,
                PeriodClosure.period_end >= closure.period_start,
            )
        ).scalars().first()
        if overlapping is not None:
            raise OverlappingClosureError(
                closure.period_start.isoformat(),
                closure.period_end.isoformat(),
                str(overlapping.id),
            )

        issues = self.validate_period_entries(
            owner_id, closure.period_start, closure.period_end
        )
        if issues:
            raise UnbalancedPeriodError(
                closure.period_start.isoformat(),
                closure.period_end.isoformat(),
                issues,
            )
        closure.relock()
        self.session.flush()
        logger.info("period_closure_relocked", extra={"closure_id": str(closure_id)})
        return PeriodClosureInfo.from_model(closure)

    def list_closures(self, owner_id: UUID) -> list[PeriodClosureInfo]:
        rows = self.session.execute(
            select(PeriodClosure)
            .where(PeriodClosure.owner_id == owner_id)
            .order_by(PeriodClosure.period_start)
        ).scalars().all()
        return [PeriodClosureInfo.from_model(c) for c in rows]


def _issue(txn: Transaction, issue: str, total_debits: int, total_credits: int) -> dict:
    return {
        "transaction_id": str(txn.id),
        "effective_date": txn.effective_date.isoformat(),
        "description": txn.description,
        "issue": issue,
        "total_debits": total_debits,
        "total_credits": total_credits,
    }
