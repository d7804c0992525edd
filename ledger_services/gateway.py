"""
Ledger gateways -- where queued operations are replayed.

Responsibility:
    ``LedgerGateway`` is the seam between the offline client and the system
    of record.  ``InProcessLedgerGateway`` runs each operation through
    ``LedgerTransactionProcessor`` in its own database transaction, with
    the server-side retry policy for transient conflicts.

Architecture position:
    Outer services.  Calls into ledger_kernel; configured by ledger_config.

Failure modes:
    - LedgerError subclasses from the processor propagate unchanged.
    - ConcurrencyConflictError after the retry budget is spent.
    - GatewayUnavailableError when the database cannot be reached.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Mapping
from uuid import UUID

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from ledger_config import LedgerSettings, get_active_config
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.retry import run_in_transaction
from ledger_kernel.services.transaction_processor import LedgerTransactionProcessor
from ledger_services.exceptions import GatewayUnavailableError

logger = get_logger("services.gateway")


class LedgerGateway(ABC):
    """Replay target for queued operations."""

    @abstractmethod
    def submit(
        self,
        owner_id: UUID,
        operation: str,
        payload: Mapping[str, Any],
        idempotency_key: str,
    ) -> dict[str, Any]:
        """
        Apply one operation and return its JSON-safe result.

        The result carries ``transaction_ids`` (in creation order) and
        ``closure_id``; see OperationResult.to_payload().
        """


class InProcessLedgerGateway(LedgerGateway):
    """
    Gateway backed by a local database session factory.

    Contract:
        Each submit() opens, commits and closes its own session.  Transient
        conflicts are retried with settings.retry.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: LedgerSettings | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._factory = session_factory
        self._settings = settings or get_active_config()
        self._clock = clock or SystemClock()
        self._sleep = sleep

    def submit(
        self,
        owner_id: UUID,
        operation: str,
        payload: Mapping[str, Any],
        idempotency_key: str,
    ) -> dict[str, Any]:
        def work(session: Session) -> dict[str, Any]:
            processor = LedgerTransactionProcessor(
                session,
                clock=self._clock,
                policy=self._settings.policy,
            )
            return processor.execute(owner_id, operation, payload, idempotency_key).to_payload()

        try:
            return run_in_transaction(
                operation,
                self._factory,
                work,
                policy=self._settings.retry,
                sleep=self._sleep,
            )
        except (OperationalError, InterfaceError) as exc:
            logger.warning("gateway_unavailable", extra={"error": str(exc.orig)})
            raise GatewayUnavailableError(str(exc.orig)) from exc
