"""
LedgerStore -- durable storage of accounts, transactions and journal lines.

Responsibility:
    The only code that writes ledger rows.  Loads and locks accounts and
    transactions, applies balance deltas, replaces a transaction's journal
    lines, deletes transactions, and stores idempotency records.

Architecture position:
    Kernel > Services -- imperative shell, owns ledger persistence.
    Used by LedgerTransactionProcessor; flushes but never commits.

Invariants enforced:
    - Balance writes are SQL-side deltas (``balance = balance + :delta``),
      applied cumulatively.  A previously read balance is never written
      back, so concurrent operations cannot lose each other's updates.
    - Rows are locked with SELECT ... FOR UPDATE in ascending id order
      (transactions before accounts) so concurrent writers on PostgreSQL
      cannot deadlock on lock order.  On SQLite, BEGIN IMMEDIATE already
      serializes writers (see db/engine.py).
    - Every query is scoped by owner_id; another owner's row is reported
      as not found.

Failure modes:
    - AccountNotFoundError / TransactionNotFoundError for unknown or
      foreign ids.
    - ValidationError when a category id does not resolve.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import delete, or_, select, update

from ledger_kernel.domain.dtos import JournalLineSpec
from ledger_kernel.domain.values import TransactionStatus
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    TransactionNotFoundError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.category import Category
from ledger_kernel.models.idempotency import IdempotencyRecord
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.models.transaction import Transaction
from ledger_kernel.services.base import BaseService

logger = get_logger("services.ledger_store")


class LedgerStore(BaseService[Transaction]):
    """
    System-of-record persistence for the ledger.

    Contract:
        All reads filter on owner_id.  All writes flush within the caller's
        database transaction.

    Non-goals:
        - Does NOT check period locks, scopes or balances -- the processor
          composes those checks before calling into the store.
    """

    # =========================================================================
    # Accounts
    # =========================================================================

    def get_account(self, owner_id: UUID, account_id: UUID) -> Account:
        account = self.session.execute(
            select(Account).where(Account.id == account_id, Account.owner_id == owner_id)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    def lock_accounts(
        self,
        owner_id: UUID,
        account_ids: Iterable[UUID],
    ) -> dict[UUID, Account]:
        """
        Load and row-lock accounts in ascending id order.

        populate_existing refreshes any copy already in the identity map,
        so balances read after this call are current.

        Raises:
            AccountNotFoundError: Any id is unknown or foreign.
        """
        ids = sorted(set(account_ids), key=str)
        if not ids:
            return {}
        rows = self.session.execute(
            select(Account)
            .where(Account.id.in_(ids), Account.owner_id == owner_id)
            .order_by(Account.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        found = {account.id: account for account in rows}
        for account_id in ids:
            if account_id not in found:
                raise AccountNotFoundError(str(account_id))
        return found

    def apply_balance_delta(self, account_id: UUID, delta: int) -> None:
        """Add delta to the stored balance without reading it first."""
        if delta == 0:
            return
        self.session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(balance=Account.balance + delta)
            .execution_options(synchronize_session=False)
        )
        cached = self.session.identity_map.get(
            self.session.identity_key(Account, account_id)
        )
        if cached is not None:
            self.session.expire(cached, ["balance"])
        logger.debug(
            "balance_delta_applied",
            extra={"account_id": str(account_id), "delta": delta},
        )

    def read_balances(self, account_ids: Iterable[UUID]) -> dict[UUID, int]:
        """Current stored balances, straight from the database."""
        ids = list(set(account_ids))
        if not ids:
            return {}
        rows = self.session.execute(
            select(Account.id, Account.balance).where(Account.id.in_(ids))
        ).all()
        return {row.id: row.balance for row in rows}

    # =========================================================================
    # Categories
    # =========================================================================

    def get_category(self, owner_id: UUID, category_id: UUID | None) -> Category | None:
        if category_id is None:
            return None
        category = self.session.execute(
            select(Category).where(
                Category.id == category_id,
                Category.owner_id == owner_id,
            )
        ).scalar_one_or_none()
        if category is None:
            raise ValidationError("category_id", f"unknown category {category_id}")
        return category

    # =========================================================================
    # Transactions
    # =========================================================================

    def add_transaction(self, transaction: Transaction) -> Transaction:
        self.session.add(transaction)
        self.session.flush()
        return transaction

    def get_transaction(
        self,
        owner_id: UUID,
        transaction_id: UUID,
        for_update: bool = False,
    ) -> Transaction:
        stmt = select(Transaction).where(
            Transaction.id == transaction_id,
            Transaction.owner_id == owner_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        transaction = self.session.execute(stmt).scalar_one_or_none()
        if transaction is None:
            raise TransactionNotFoundError(str(transaction_id))
        return transaction

    def lock_transactions(
        self,
        owner_id: UUID,
        transaction_ids: Iterable[UUID],
    ) -> list[Transaction]:
        """
        Load and row-lock transactions in ascending id order.

        Raises:
            TransactionNotFoundError: Any id is unknown or foreign.
        """
        ids = sorted(set(transaction_ids), key=str)
        if not ids:
            return []
        rows = self.session.execute(
            select(Transaction)
            .where(Transaction.id.in_(ids), Transaction.owner_id == owner_id)
            .order_by(Transaction.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        found = {t.id for t in rows}
        for transaction_id in ids:
            if transaction_id not in found:
                raise TransactionNotFoundError(str(transaction_id))
        return list(rows)

    def load_chain(self, owner_id: UUID, root_id: UUID) -> list[Transaction]:
        """Root plus every child pointing at it (flat parent index)."""
        return list(
            self.session.execute(
                select(Transaction)
                .where(
                    Transaction.owner_id == owner_id,
                    or_(
                        Transaction.id == root_id,
                        Transaction.parent_transaction_id == root_id,
                    ),
                )
                .order_by(Transaction.effective_date, Transaction.current_installment)
            ).scalars().all()
        )

    def completed_in_range(
        self,
        owner_id: UUID,
        start: date,
        end: date,
    ) -> list[Transaction]:
        return list(
            self.session.execute(
                select(Transaction)
                .where(
                    Transaction.owner_id == owner_id,
                    Transaction.status == TransactionStatus.COMPLETED.value,
                    Transaction.effective_date >= start,
                    Transaction.effective_date <= end,
                )
                .order_by(Transaction.effective_date, Transaction.id)
            ).scalars().all()
        )

    def delete_transactions(self, transaction_ids: Sequence[UUID]) -> int:
        """Delete journal lines, then the transaction rows.  Returns row count."""
        if not transaction_ids:
            return 0
        self.delete_journal_entries(transaction_ids)
        for transaction in list(self.session.identity_map.values()):
            if isinstance(transaction, Transaction) and transaction.id in transaction_ids:
                self.session.expunge(transaction)
        result = self.session.execute(
            delete(Transaction)
            .where(Transaction.id.in_(list(transaction_ids)))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # =========================================================================
    # Journal lines
    # =========================================================================

    def journal_entries_for(self, transaction_ids: Iterable[UUID]) -> list[JournalEntry]:
        ids = list(transaction_ids)
        if not ids:
            return []
        return list(
            self.session.execute(
                select(JournalEntry)
                .where(JournalEntry.transaction_id.in_(ids))
                .order_by(JournalEntry.transaction_id, JournalEntry.entry_type)
            ).scalars().all()
        )

    def delete_journal_entries(self, transaction_ids: Iterable[UUID]) -> None:
        ids = list(transaction_ids)
        if not ids:
            return
        for entry in list(self.session.identity_map.values()):
            if isinstance(entry, JournalEntry) and entry.transaction_id in ids:
                self.session.expunge(entry)
        self.session.execute(
            delete(JournalEntry)
            .where(JournalEntry.transaction_id.in_(ids))
            .execution_options(synchronize_session=False)
        )

    def replace_journal_entries(
        self,
        transaction: Transaction,
        lines: Sequence[JournalLineSpec],
    ) -> list[JournalEntry]:
        """Drop the transaction's stored lines and write the given ones."""
        self.delete_journal_entries([transaction.id])
        entries = [
            JournalEntry(
                owner_id=transaction.owner_id,
                transaction_id=transaction.id,
                account_id=line.account_id,
                ledger_code=line.ledger_code,
                ledger_category=line.ledger_category.value,
                entry_type=line.entry_type.value,
                amount=line.amount,
                effective_date=transaction.effective_date,
            )
            for line in lines
        ]
        self.session.add_all(entries)
        self.session.flush()
        return entries

    # =========================================================================
    # Idempotency
    # =========================================================================

    def find_idempotency_record(
        self,
        owner_id: UUID,
        idempotency_key: str,
    ) -> IdempotencyRecord | None:
        return self.session.execute(
            select(IdempotencyRecord).where(
                IdempotencyRecord.owner_id == owner_id,
                IdempotencyRecord.idempotency_key == idempotency_key,
            )
        ).scalar_one_or_none()

    def save_idempotency_record(
        self,
        owner_id: UUID,
        idempotency_key: str,
        operation: str,
        payload_hash: str,
        result_ids: Sequence[UUID],
        deleted_count: int | None = None,
    ) -> IdempotencyRecord:
        record = IdempotencyRecord(
            owner_id=owner_id,
            idempotency_key=idempotency_key,
            operation=operation,
            payload_hash=payload_hash,
            result_ids=[str(i) for i in result_ids],
            deleted_count=deleted_count,
        )
        self.session.add(record)
        self.session.flush()
        return record
