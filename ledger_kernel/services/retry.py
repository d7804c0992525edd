"""
Retry -- bounded exponential backoff for transient database conflicts.

Responsibility:
    Classifies exceptions as transient (lock wait timeout, deadlock,
    serialization failure, SQLite "database is locked") and re-runs a unit
    of work with exponential backoff via tenacity.  After the attempt
    budget is spent the failure surfaces as ConcurrencyConflictError.

Architecture position:
    Kernel > Services.  Wraps whole units of work: each attempt must open
    its own database transaction (see run_in_transaction), because a
    session that hit a conflict has to roll back before it can be reused.

Invariants enforced:
    - Non-transient errors (validation, business rules, locks) are never
      retried; they propagate on the first attempt.
    - Transient errors are never swallowed: exhaustion raises.

Failure modes:
    - ConcurrencyConflictError(attempts=n) after n failed attempts.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ledger_kernel.db.engine import session_scope
from ledger_kernel.exceptions import ConcurrencyConflictError, LedgerError
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

# PostgreSQL SQLSTATEs: serialization_failure, deadlock_detected, lock_not_available
_TRANSIENT_PGCODES = frozenset({"40001", "40P01", "55P03"})

_TRANSIENT_MESSAGES = (
    "database is locked",
    "deadlock",
    "could not serialize",
    "lock timeout",
    "lock wait timeout",
    "canceling statement due to statement timeout",
)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff parameters.

    Delays grow initial_delay_ms * multiplier ** (retry - 1), capped at
    max_delay_ms.  The first call is not a retry, so a policy with
    max_retries=3 makes at most 4 attempts.
    """

    max_retries: int = 3
    initial_delay_ms: int = 100
    max_delay_ms: int = 5000
    multiplier: float = 2.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_ms(self, retry_number: int) -> int:
        """Delay before the given retry (1-based)."""
        raw = self.initial_delay_ms * self.multiplier ** (retry_number - 1)
        return int(min(raw, self.max_delay_ms))


def is_transient_error(exc: BaseException) -> bool:
    """True if retrying the same unit of work may succeed."""
    if isinstance(exc, LedgerError):
        return exc.retryable
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        pgcode = getattr(exc.orig, "pgcode", None)
        if pgcode in _TRANSIENT_PGCODES:
            return True
        message = str(exc.orig).lower()
        return any(fragment in message for fragment in _TRANSIENT_MESSAGES)
    return False


def run_with_retry(
    operation: str,
    fn: Callable[[], T],
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn, retrying transient failures with exponential backoff.

    Args:
        operation: Name used in logs and in the final error.
        fn: The unit of work.  Must be safe to call again after a
            transient failure (i.e. open its own transaction).
        policy: Backoff parameters; defaults to RetryPolicy().
        sleep: Injected for tests.

    Raises:
        ConcurrencyConflictError: fn kept failing transiently.
        Any non-transient exception fn raises, unchanged.
    """
    policy = policy or RetryPolicy()
    attempts = 0

    def _attempt() -> T:
        nonlocal attempts
        attempts += 1
        return fn()

    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "transient_conflict_retry",
            extra={
                "operation": operation,
                "attempt": state.attempt_number,
                "max_attempts": policy.max_attempts,
                "next_delay_ms": int(state.next_action.sleep * 1000) if state.next_action else 0,
                "error": str(exc),
            },
        )

    retrying = Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.initial_delay_ms / 1000,
            exp_base=policy.multiplier,
            max=policy.max_delay_ms / 1000,
        ),
        retry=retry_if_exception(is_transient_error),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )

    try:
        return retrying(_attempt)
    except (LedgerError, DBAPIError) as exc:
        if not is_transient_error(exc):
            raise
        logger.error(
            "transient_conflict_exhausted",
            extra={"operation": operation, "attempts": attempts},
        )
        raise ConcurrencyConflictError(operation, attempts, reason=str(exc)) from exc


def run_in_transaction(
    operation: str,
    factory: sessionmaker[Session],
    work: Callable[[Session], T],
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run work(session) in a fresh committed transaction, retrying conflicts.

    Each attempt gets a new session from factory; a failed attempt is
    rolled back before the next one starts.
    """

    def _unit() -> T:
        with session_scope(factory) as session:
            return work(session)

    return run_with_retry(operation, _unit, policy=policy, sleep=sleep)
