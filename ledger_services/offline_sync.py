"""
OfflineSyncReconciler -- client-side operation queue and ordered replay.

Responsibility:
    Persists operations made while offline in a local client store and
    replays them, strictly in enqueue order, against a LedgerGateway once
    connectivity returns.  Temporary ids assigned by the client are
    substituted with the real ids produced by earlier items.

Architecture position:
    Outer services.  Owns its own declarative base (ClientBase); the client
    store is a separate database from the system of record.

Invariants enforced:
    - One replay pass at a time per reconciler (per device); a concurrent
      call returns immediately with skipped=True.
    - Items are submitted in ascending sequence; a successful item is
      removed from the queue in the same client transaction that records
      its id mappings.
    - Every item carries an idempotency key, so resubmitting an item whose
      previous result was lost never applies it twice.
    - Nothing is silently dropped: an item either succeeds or is moved to
      the dead-letter state, where dead_letters() lists it until
      retry_dead_letter() requeues it.

Failure modes:
    - Non-retryable LedgerError (validation, not found, period locked,
      insufficient funds, credit limit...): dead-lettered at once.
    - Retryable errors: retried in place with exponential backoff until
      the item has used max_attempts, then dead-lettered.
    - GatewayUnavailableError: the pass stops, leaving the item and every
      later item queued.
"""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Mapping, Sequence
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import JSON, DateTime, Integer, String, Text, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ledger_config import OfflineSettings
from ledger_kernel.db.base import UUIDString
from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import LedgerError, ValidationError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.services.retry import is_transient_error
from ledger_kernel.services.transaction_processor import Operation
from ledger_kernel.utils.hashing import canonicalize_json
from ledger_services.exceptions import (
    GatewayUnavailableError,
    QueueItemNotFoundError,
    UnresolvedTemporaryIdError,
)
from ledger_services.gateway import LedgerGateway

logger = get_logger("services.offline_sync")

TEMP_ID_PREFIX = "temp-"


# =============================================================================
# Client store
# =============================================================================


class ClientBase(DeclarativeBase):
    """Declarative base for the client-side store."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
    }


class QueueItemStatus(str, Enum):
    PENDING = "pending"
    DEAD_LETTER = "dead_letter"


class OfflineQueueItem(ClientBase):
    """One operation waiting to be replayed."""

    __tablename__ = "offline_queue"

    id: Mapped[PyUUID] = mapped_column(primary_key=True, default=uuid4)
    sequence: Mapped[int] = mapped_column(Integer, unique=True, index=True)
    operation: Mapped[str] = mapped_column(String(50))
    payload: Mapped[dict] = mapped_column(JSON)
    temp_ids: Mapped[list] = mapped_column(JSON, default=list)
    idempotency_key: Mapped[str] = mapped_column(String(200), unique=True)
    created_at: Mapped[datetime]
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(
        String(20), default=QueueItemStatus.PENDING.value, index=True
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<OfflineQueueItem #{self.sequence} {self.operation} {self.status}>"


class OfflineIdMapping(ClientBase):
    """Temporary id assigned offline -> id returned by the system of record."""

    __tablename__ = "offline_id_mappings"

    temp_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    real_id: Mapped[str] = mapped_column(String(36))
    created_at: Mapped[datetime]


def create_client_tables(engine: Engine) -> None:
    ClientBase.metadata.create_all(engine)


# =============================================================================
# DTOs
# =============================================================================


@dataclass(frozen=True)
class QueuedOperation:
    id: PyUUID
    sequence: int
    operation: str
    payload: Mapping[str, Any]
    temp_ids: tuple[str, ...]
    idempotency_key: str
    created_at: datetime
    attempt_count: int
    status: QueueItemStatus
    last_error: str | None
    last_error_code: str | None

    @classmethod
    def from_model(cls, model: OfflineQueueItem) -> QueuedOperation:
        return cls(
            id=model.id,
            sequence=model.sequence,
            operation=model.operation,
            payload=dict(model.payload),
            temp_ids=tuple(model.temp_ids or ()),
            idempotency_key=model.idempotency_key,
            created_at=model.created_at,
            attempt_count=model.attempt_count,
            status=QueueItemStatus(model.status),
            last_error=model.last_error,
            last_error_code=model.last_error_code,
        )


@dataclass
class SyncReport:
    """Outcome of one replay() call."""

    skipped: bool = False
    succeeded: int = 0
    dead_lettered: int = 0
    stopped: bool = False
    remaining: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)


# =============================================================================
# Temporary ids
# =============================================================================


def substitute_temp_ids(value: Any, mapping: Mapping[str, str], key: str | None = None) -> Any:
    """
    Replace temporary ids in id-valued fields (keys ending in ``_id``).

    Raises:
        UnresolvedTemporaryIdError: A temporary id has no mapping yet.
    """
    if isinstance(value, Mapping):
        return {k: substitute_temp_ids(v, mapping, k) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_temp_ids(v, mapping, key) for v in value]
    if (
        isinstance(value, str)
        and key is not None
        and key.endswith("_id")
        and value.startswith(TEMP_ID_PREFIX)
    ):
        if value not in mapping:
            raise UnresolvedTemporaryIdError(value)
        return mapping[value]
    return value


def _result_ids(result: Mapping[str, Any]) -> list[str]:
    ids = list(result.get("transaction_ids") or [])
    if result.get("closure_id"):
        ids.append(result["closure_id"])
    return ids


# =============================================================================
# Reconciler
# =============================================================================


class OfflineSyncReconciler:
    """
    Queue and replay operations for one owner on one device.

    Contract:
        enqueue() only touches the client store.  replay() drains pending
        items through the gateway and reports what happened.
    """

    def __init__(
        self,
        client_factory: sessionmaker[Session],
        gateway: LedgerGateway,
        owner_id: PyUUID,
        device_id: str,
        settings: OfflineSettings | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._factory = client_factory
        self._gateway = gateway
        self.owner_id = owner_id
        self.device_id = device_id
        self._settings = settings or OfflineSettings()
        self._clock = clock or SystemClock()
        self._sleep = sleep
        self._replay_lock = threading.Lock()
        self._enqueue_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Queue
    # -------------------------------------------------------------------------

    def enqueue(
        self,
        operation: str,
        payload: Mapping[str, Any],
        idempotency_key: str | None = None,
        temp_ids: Sequence[str] = (),
    ) -> QueuedOperation:
        """
        Append an operation to the queue.

        Args:
            operation: One of the operation contract names.
            payload: The operation payload; may reference temporary ids.
            idempotency_key: Generated when not supplied.
            temp_ids: Temporary ids this operation's results stand for, in
                result order (e.g. ["temp-out", "temp-in"] for a transfer).

        Raises:
            ValidationError: Unknown operation, bad temp id, or a payload
                that is not JSON-serializable.
        """
        if operation not in Operation.ALL:
            raise ValidationError("operation", f"unknown operation {operation!r}")
        for temp_id in temp_ids:
            if not isinstance(temp_id, str) or not temp_id.startswith(TEMP_ID_PREFIX):
                raise ValidationError("temp_ids", f"must start with {TEMP_ID_PREFIX!r}")
        try:
            stored_payload = json.loads(canonicalize_json(dict(payload)))
        except TypeError as exc:
            raise ValidationError("payload", f"not JSON-serializable: {exc}") from exc

        key = idempotency_key or f"{self.device_id}:{uuid4()}"
        with self._enqueue_lock, session_scope(self._factory) as session:
            last = session.execute(select(func.max(OfflineQueueItem.sequence))).scalar()
            item = OfflineQueueItem(
                sequence=(last or 0) + 1,
                operation=operation,
                payload=stored_payload,
                temp_ids=list(temp_ids),
                idempotency_key=key,
                created_at=self._clock.now(),
                attempt_count=0,
                status=QueueItemStatus.PENDING.value,
            )
            session.add(item)
            session.flush()
            queued = QueuedOperation.from_model(item)

        logger.info(
            "offline_item_enqueued",
            extra={
                "device_id": self.device_id,
                "sequence": queued.sequence,
                "operation": operation,
                "idempotency_key": key,
            },
        )
        return queued

    def pending(self) -> list[QueuedOperation]:
        return self._list(QueueItemStatus.PENDING)

    def dead_letters(self) -> list[QueuedOperation]:
        return self._list(QueueItemStatus.DEAD_LETTER)

    def retry_dead_letter(self, item_id: PyUUID) -> QueuedOperation:
        """
        Requeue a dead-lettered item with a fresh attempt budget.

        The item keeps its sequence, so it replays in its original order
        relative to anything still pending.

        Raises:
            QueueItemNotFoundError: No dead-lettered item with that id.
        """
        with session_scope(self._factory) as session:
            item = session.get(OfflineQueueItem, item_id)
            if item is None or item.status != QueueItemStatus.DEAD_LETTER:
                raise QueueItemNotFoundError(str(item_id))
            item.status = QueueItemStatus.PENDING.value
            item.attempt_count = 0
            session.flush()
            queued = QueuedOperation.from_model(item)
        logger.info(
            "offline_item_requeued",
            extra={"device_id": self.device_id, "sequence": queued.sequence},
        )
        return queued

    def id_mappings(self) -> dict[str, str]:
        with session_scope(self._factory) as session:
            return self._load_mappings(session)

    def _list(self, status: QueueItemStatus) -> list[QueuedOperation]:
        with session_scope(self._factory) as session:
            rows = session.execute(
                select(OfflineQueueItem)
                .where(OfflineQueueItem.status == status.value)
                .order_by(OfflineQueueItem.sequence)
            ).scalars().all()
            return [QueuedOperation.from_model(r) for r in rows]

    def _load_mappings(self, session: Session) -> dict[str, str]:
        rows = session.execute(select(OfflineIdMapping)).scalars().all()
        return {m.temp_id: m.real_id for m in rows}

    # -------------------------------------------------------------------------
    # Replay
    # -------------------------------------------------------------------------

    def replay(self) -> SyncReport:
        """
        Replay pending items in sequence order.

        Returns:
            SyncReport; skipped=True when another replay is in progress.
        """
        if not self._replay_lock.acquire(blocking=False):
            logger.info("offline_replay_skipped", extra={"device_id": self.device_id})
            return SyncReport(skipped=True)
        try:
            with LogContext.bind(
                correlation_id=str(uuid4()),
                owner_id=self.owner_id,
                device_id=self.device_id,
            ):
                return self._replay_pending()
        finally:
            self._replay_lock.release()

    def _replay_pending(self) -> SyncReport:
        start = time.monotonic()
        report = SyncReport()
        with session_scope(self._factory) as session:
            item_ids = session.execute(
                select(OfflineQueueItem.id)
                .where(OfflineQueueItem.status == QueueItemStatus.PENDING.value)
                .order_by(OfflineQueueItem.sequence)
            ).scalars().all()

        logger.info("offline_replay_started", extra={"pending": len(item_ids)})
        for item_id in item_ids:
            if not self._replay_item(item_id, report):
                report.stopped = True
                break

        report.remaining = len(self.pending())
        logger.info(
            "offline_replay_completed",
            extra={
                "succeeded": report.succeeded,
                "dead_lettered": report.dead_lettered,
                "stopped": report.stopped,
                "remaining": report.remaining,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
            },
        )
        return report

    def _replay_item(self, item_id: PyUUID, report: SyncReport) -> bool:
        """Replay one item.  Returns False when the pass must stop."""
        with session_scope(self._factory) as session:
            item = session.get(OfflineQueueItem, item_id)
            if item is None or item.status != QueueItemStatus.PENDING.value:
                return True

            with LogContext.bind(
                operation=item.operation,
                idempotency_key=item.idempotency_key,
            ):
                try:
                    payload = substitute_temp_ids(item.payload, self._load_mappings(session))
                    result = self._submit(item, payload)
                except GatewayUnavailableError as exc:
                    self._record_failure(item, exc)
                    if item.attempt_count >= self._settings.max_attempts:
                        self._dead_letter(item, exc)
                        report.dead_lettered += 1
                    logger.warning(
                        "offline_replay_stopped",
                        extra={"sequence": item.sequence, "error": str(exc)},
                    )
                    return False
                except LedgerError as exc:
                    self._record_failure(item, exc)
                    self._dead_letter(item, exc)
                    report.dead_lettered += 1
                    return True

                now = self._clock.now()
                for temp_id, real_id in zip(item.temp_ids or (), _result_ids(result)):
                    session.merge(OfflineIdMapping(temp_id=temp_id, real_id=real_id, created_at=now))
                logger.info(
                    "offline_item_replayed",
                    extra={
                        "sequence": item.sequence,
                        "attempts": item.attempt_count,
                        "transaction_ids": result.get("transaction_ids", []),
                        "replayed": result.get("replayed", False),
                    },
                )
                report.succeeded += 1
                report.results.append(result)
                session.delete(item)
                return True

    def _submit(self, item: OfflineQueueItem, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Submit with in-place backoff for retryable errors other than disconnection."""
        remaining = max(self._settings.max_attempts - item.attempt_count, 1)

        def _attempt() -> dict[str, Any]:
            item.attempt_count += 1
            return self._gateway.submit(
                self.owner_id, item.operation, payload, item.idempotency_key
            )

        def _log_retry(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                "offline_item_retry",
                extra={
                    "sequence": item.sequence,
                    "attempt": item.attempt_count,
                    "max_attempts": self._settings.max_attempts,
                    "error": str(exc),
                },
            )

        policy = self._settings.retry_policy()
        retrying = Retrying(
            stop=stop_after_attempt(remaining),
            wait=wait_exponential(
                multiplier=policy.initial_delay_ms / 1000,
                exp_base=policy.multiplier,
                max=policy.max_delay_ms / 1000,
            ),
            retry=retry_if_exception(
                lambda exc: is_transient_error(exc)
                and not isinstance(exc, GatewayUnavailableError)
            ),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        return retrying(_attempt)

    def _record_failure(self, item: OfflineQueueItem, exc: LedgerError) -> None:
        item.last_error = str(exc)
        item.last_error_code = exc.code

    def _dead_letter(self, item: OfflineQueueItem, exc: LedgerError) -> None:
        item.status = QueueItemStatus.DEAD_LETTER.value
        logger.warning(
            "offline_item_dead_lettered",
            extra={
                "sequence": item.sequence,
                "attempts": item.attempt_count,
                "error_code": exc.code,
                "error": str(exc),
            },
        )
