"""
Module: ledger_kernel.models.idempotency
Responsibility: ORM persistence for idempotency records -- the stored outcome
    of an operation submitted with a client-generated idempotency key.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (owner_id, idempotency_key) is unique (uq_idempotency_owner_key).
    - The record is written in the same database transaction as the
      operation it describes, so a key is never recorded for a write that
      rolled back.

Failure modes:
    - IntegrityError on concurrent insert of the same key; the loser
      reads the winner's record.
    - PayloadMismatchError when a key is reused with a different payload.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString


class IdempotencyRecord(Base):
    """Outcome of one idempotent operation."""

    __tablename__ = "idempotency_records"

    __table_args__ = (
        UniqueConstraint("owner_id", "idempotency_key", name="uq_idempotency_owner_key"),
    )

    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False)

    operation: Mapped[str] = mapped_column(String(50), nullable=False)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Ids of the transactions (or closure) the operation produced, as strings
    result_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    deleted_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<IdempotencyRecord {self.operation} {self.idempotency_key}>"
