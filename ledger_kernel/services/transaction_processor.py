"""
LedgerTransactionProcessor -- the atomic ledger operations.

Responsibility:
    Exposes create / edit / delete / transfer / pay-bill / period-closure
    (plus fixed-series, series renewal, installment-plan and mark-as-paid) as
    all-or-nothing units of work.  Each operation validates its payload, runs
    the pre-checks (PeriodLockGuard, BillingCycleCalculator, ScopeResolver),
    writes through LedgerStore, and asserts DoubleEntryValidator on every
    derived line set before the unit commits.

Architecture position:
    Kernel > Services -- orchestrator.  The only public write entry point
    of the kernel.  Outer layers (ledger_services) call execute() with an
    operation name and payload.

Invariants enforced:
    - Atomicity: every operation runs in one SAVEPOINT (auto_commit=False)
      or one committed transaction (auto_commit=True).  Any exception
      rolls the whole operation back; balances and journal lines are left
      exactly as before.
    - No lost updates: balances change only through SQL-side deltas on
      accounts locked in id order.
    - Every completed transaction's lines pass DoubleEntryValidator before
      commit; a mismatch raises InternalConsistencyError and aborts.
    - Period locks: every date written or vacated is checked.
    - Idempotency: with an idempotency_key, the outcome is recorded in the
      same unit of work; a replay with the same payload returns the stored
      result without writing; a different payload raises
      PayloadMismatchError.

Failure modes:
    - ValidationError, AccountNotFoundError, TransactionNotFoundError,
      PeriodLockedError, SameAccountError, InsufficientFundsError,
      CreditLimitExceededError, InvalidChainOperationError,
      UnbalancedPeriodError, OverlappingClosureError, PayloadMismatchError:
      surfaced immediately, nothing written.
    - ConcurrencyConflictError: a transient database conflict, raised after
      rollback; callers retry via services/retry.py.
    - InternalConsistencyError: logged at CRITICAL, nothing written.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from typing import Any, Callable, Iterable, Iterator, Mapping
from uuid import UUID, uuid4

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.billing_cycle import (
    BillingCycleCalculator,
    add_months,
    format_invoice_month,
    parse_invoice_month,
)
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.double_entry import DoubleEntryValidator
from ledger_kernel.domain.dtos import (
    NewTransaction,
    OperationResult,
    PeriodClosureInfo,
    TransactionInfo,
    TransactionUpdates,
)
from ledger_kernel.domain.journal_rules import PostingFacts, derive_journal_lines
from ledger_kernel.domain.policy import LedgerPolicy
from ledger_kernel.domain.recurrence import (
    fixed_series_dates,
    monthly_dates,
    split_installments,
    year_of_occurrences,
)
from ledger_kernel.domain import schemas
from ledger_kernel.domain.values import (
    EditScope,
    TransactionStatus,
    TransactionType,
)
from ledger_kernel.exceptions import (
    ConcurrencyConflictError,
    CreditLimitExceededError,
    InsufficientFundsError,
    InternalConsistencyError,
    InvalidChainOperationError,
    LedgerError,
    PayloadMismatchError,
    SameAccountError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.category import Category
from ledger_kernel.models.idempotency import IdempotencyRecord
from ledger_kernel.models.period_closure import PeriodClosure
from ledger_kernel.models.transaction import Transaction
from ledger_kernel.services.ledger_store import LedgerStore
from ledger_kernel.services.period_lock_guard import PeriodLockGuard
from ledger_kernel.services.period_service import PeriodService
from ledger_kernel.services.retry import is_transient_error
from ledger_kernel.services.scope_resolver import ScopeResolver
from ledger_kernel.utils.hashing import hash_payload

logger = get_logger("services.transaction_processor")


class Operation:
    """Operation names of the external contract."""

    CREATE_TRANSACTION = "create-transaction"
    EDIT_TRANSACTION = "edit-transaction"
    DELETE_TRANSACTION = "delete-transaction"
    TRANSFER = "transfer"
    PAY_BILL = "pay-bill"
    CREATE_PERIOD_CLOSURE = "create-period-closure"
    CREATE_FIXED_SERIES = "create-fixed-series"
    RENEW_FIXED_SERIES = "renew-fixed-series"
    CREATE_INSTALLMENT_PLAN = "create-installment-plan"
    MARK_AS_PAID = "mark-as-paid"

    ALL = frozenset({
        CREATE_TRANSACTION,
        EDIT_TRANSACTION,
        DELETE_TRANSACTION,
        TRANSFER,
        PAY_BILL,
        CREATE_PERIOD_CLOSURE,
        CREATE_FIXED_SERIES,
        RENEW_FIXED_SERIES,
        CREATE_INSTALLMENT_PLAN,
        MARK_AS_PAID,
    })


class LedgerTransactionProcessor:
    """
    Orchestrates the atomic ledger operations for one session.

    Contract:
        Each public operation takes the owner id and a structured payload
        (the operation contract), and returns an OperationResult of DTOs.
        With auto_commit=False (default) the caller owns the outer
        transaction and each operation runs in a SAVEPOINT; with
        auto_commit=True each operation commits or rolls back itself.

    Guarantees:
        - All-or-nothing: a failed operation leaves no trace.
        - Returned DTOs reflect the state the operation committed.

    Non-goals:
        - Does NOT retry transient conflicts itself; wrap calls in
          run_in_transaction() for that.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: LedgerPolicy | None = None,
        auto_commit: bool = False,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._policy = policy or LedgerPolicy()
        self._auto_commit = auto_commit
        self._store = LedgerStore(session)
        self._guard = PeriodLockGuard(session)
        self._scope = ScopeResolver(self._store)
        self._periods = PeriodService(session, self._clock)

    @property
    def store(self) -> LedgerStore:
        return self._store

    @property
    def lock_guard(self) -> PeriodLockGuard:
        return self._guard

    # =========================================================================
    # Dispatch
    # =========================================================================

    def execute(
        self,
        owner_id: UUID,
        operation: str,
        payload: Mapping[str, Any],
        idempotency_key: str | None = None,
    ) -> OperationResult:
        """
        Run an operation by contract name.

        Payload shapes:
            create-transaction, create-fixed-series: transaction fields
            create-installment-plan: transaction fields + installments
            edit-transaction: transaction_id, updates, scope
            delete-transaction: transaction_id, scope
            mark-as-paid: transaction_id
            renew-fixed-series: transaction_id, optional year
            transfer, pay-bill, create-period-closure: their fields

        Raises:
            ValidationError: Unknown operation or malformed payload.
        """
        if operation not in Operation.ALL:
            raise ValidationError("operation", f"unknown operation {operation!r}")
        if not isinstance(payload, Mapping):
            raise ValidationError("payload", "must be an object")

        if operation == Operation.CREATE_TRANSACTION:
            return self.create_transaction(owner_id, payload, idempotency_key=idempotency_key)
        if operation == Operation.EDIT_TRANSACTION:
            return self.edit_transaction(
                owner_id,
                payload.get("transaction_id"),
                payload.get("updates"),
                payload.get("scope"),
                idempotency_key=idempotency_key,
            )
        if operation == Operation.DELETE_TRANSACTION:
            return self.delete_transaction(
                owner_id,
                payload.get("transaction_id"),
                payload.get("scope"),
                idempotency_key=idempotency_key,
            )
        if operation == Operation.MARK_AS_PAID:
            return self.mark_as_paid(
                owner_id, payload.get("transaction_id"), idempotency_key=idempotency_key
            )
        if operation == Operation.TRANSFER:
            return self.transfer(owner_id, payload, idempotency_key=idempotency_key)
        if operation == Operation.PAY_BILL:
            return self.pay_credit_card_bill(owner_id, payload, idempotency_key=idempotency_key)
        if operation == Operation.CREATE_PERIOD_CLOSURE:
            return self.create_period_closure(owner_id, payload, idempotency_key=idempotency_key)
        if operation == Operation.CREATE_FIXED_SERIES:
            return self.create_fixed_series(owner_id, payload, idempotency_key=idempotency_key)
        if operation == Operation.RENEW_FIXED_SERIES:
            return self.renew_fixed_series(owner_id, payload, idempotency_key=idempotency_key)
        return self.create_installment_plan(owner_id, payload, idempotency_key=idempotency_key)

    # =========================================================================
    # Public operations
    # =========================================================================

    def create_transaction(
        self,
        owner_id: UUID,
        payload: Mapping[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> OperationResult:
        """
        Create one income or expense transaction.

        Raises:
            ValidationError, AccountNotFoundError, PeriodLockedError,
            CreditLimitExceededError.
        """

        def work() -> OperationResult:
            data = schemas.parse_new_transaction(payload, self._policy.limits)
            account = self._store.lock_accounts(owner_id, [data.account_id])[data.account_id]
            category = self._store.get_category(owner_id, data.category_id)
            self._guard.ensure_unlocked(owner_id, [data.effective_date])

            invoice_month, overridden = self._invoice_month(
                account, data.effective_date, data.invoice_month
            )
            txn = self._store.add_transaction(
                self._build(owner_id, data, invoice_month=invoice_month, overridden=overridden)
            )
            self._post(txn, account, category=category)

            logger.info(
                "transaction_created",
                extra={
                    "transaction_id": str(txn.id),
                    "transaction_type": txn.transaction_type,
                    "amount": txn.amount,
                    "status": txn.status,
                    "invoice_month": txn.invoice_month,
                },
            )
            return self._result(Operation.CREATE_TRANSACTION, [txn], [account.id])

        return self._run(Operation.CREATE_TRANSACTION, owner_id, payload, idempotency_key, work)

    def edit_transaction(
        self,
        owner_id: UUID,
        transaction_id: UUID | str,
        updates: Mapping[str, Any],
        scope: EditScope | str | None = EditScope.CURRENT,
        *,
        idempotency_key: str | None = None,
    ) -> OperationResult:
        """
        Apply a partial update to a transaction and, per scope, its chain.

        Each affected transaction has its old balance effect and journal
        lines reversed, the update applied, and its new effect re-applied.
        A date change moves every affected member by the same number of
        days.  invoice_month is recomputed on date/account changes unless
        overridden; an explicit invoice_month applies to the named
        transaction only.  A new amount on the outgoing leg of a transfer
        or bill payment must be covered by the source account, as it is
        when the pair is created.

        Raises:
            ValidationError, TransactionNotFoundError, AccountNotFoundError,
            PeriodLockedError, InvalidChainOperationError,
            InsufficientFundsError, CreditLimitExceededError.
        """
        request = {"transaction_id": transaction_id, "updates": updates, "scope": scope}

        def work() -> OperationResult:
            target_id = schemas.parse_uuid(transaction_id, "transaction_id")
            changes = schemas.parse_updates(updates, self._policy.limits)
            edit_scope = schemas.parse_scope(scope)

            target = self._store.get_transaction(owner_id, target_id)
            affected_ids = self._scope.resolve(owner_id, target, edit_scope)
            txns = self._store.lock_transactions(owner_id, affected_ids)
            target = next(t for t in txns if t.id == target_id)
            partner_id = target.linked_transaction_id

            if target.is_linked and (
                changes.transaction_type is not None
                or changes.account_id is not None
                or changes.category_id is not None
                or changes.invoice_month is not None
            ):
                raise InvalidChainOperationError(
                    str(target.id),
                    "type, account, category and invoice month of a linked "
                    "transfer or payment cannot be edited",
                )

            day_shift = (
                changes.effective_date - target.effective_date
                if changes.effective_date is not None
                else None
            )
            new_dates = {
                t.id: (t.effective_date + day_shift if day_shift else t.effective_date)
                for t in txns
            }
            self._guard.ensure_unlocked(
                owner_id,
                [t.effective_date for t in txns] + list(new_dates.values()),
            )

            account_ids = {t.account_id for t in txns} | {
                t.to_account_id for t in txns if t.to_account_id is not None
            }
            if changes.account_id is not None:
                account_ids.add(changes.account_id)
            accounts = self._store.lock_accounts(owner_id, account_ids)
            if changes.category_id is not None:
                self._store.get_category(owner_id, changes.category_id)

            for txn in txns:
                self._unpost(txn)

            for txn in txns:
                self._apply_updates(
                    txn,
                    changes,
                    new_date=new_dates[txn.id],
                    accounts=accounts,
                    is_target=txn.id == target.id,
                    is_partner=txn.id == partner_id,
                )
            self.session.flush()

            categories: dict[UUID, Category | None] = {}
            for txn in txns:
                if txn.category_id not in categories:
                    categories[txn.category_id] = self._store.get_category(
                        owner_id, txn.category_id
                    )
                if changes.amount is not None and txn.is_outgoing_leg and txn.is_completed:
                    self._require_funds(accounts[txn.account_id], txn.amount)
                self._post(
                    txn,
                    accounts[txn.account_id],
                    to_account=accounts.get(txn.to_account_id),
                    category=categories[txn.category_id],
                )

            logger.info(
                "transaction_edited",
                extra={
                    "transaction_id": str(target.id),
                    "scope": edit_scope.value,
                    "affected_count": len(txns),
                    "fields": list(changes.changed_fields()),
                },
            )
            return self._result(Operation.EDIT_TRANSACTION, txns, account_ids)

        return self._run(Operation.EDIT_TRANSACTION, owner_id, request, idempotency_key, work)

    def delete_transaction(
        self,
        owner_id: UUID,
        transaction_id: UUID | str,
        scope: EditScope | str | None = EditScope.CURRENT,
        *,
        idempotency_key: str | None = None,
    ) -> OperationResult:
        """
        Delete a transaction and, per scope, its chain; linked legs go together.

        A fixed-series template whose every occurrence is deleted goes too.

        Raises:
            ValidationError, TransactionNotFoundError, PeriodLockedError.
        """
        request = {"transaction_id": transaction_id, "scope": scope}

        def work() -> OperationResult:
            target_id = schemas.parse_uuid(transaction_id, "transaction_id")
            edit_scope = schemas.parse_scope(scope)

            target = self._store.get_transaction(owner_id, target_id)
            affected_ids = self._scope.resolve(owner_id, target, edit_scope, deleting=True)
            txns = self._store.lock_transactions(owner_id, affected_ids)
            self._guard.ensure_unlocked(owner_id, [t.effective_date for t in txns])

            account_ids = {t.account_id for t in txns}
            self._store.lock_accounts(owner_id, account_ids)
            for txn in txns:
                self._unpost(txn)
            deleted = self._store.delete_transactions([t.id for t in txns])

            logger.info(
                "transaction_deleted",
                extra={
                    "transaction_id": str(target_id),
                    "scope": edit_scope.value,
                    "deleted_count": deleted,
                },
            )
            return OperationResult(
                operation=Operation.DELETE_TRANSACTION,
                balances=self._store.read_balances(account_ids),
                deleted_count=deleted,
            )

        return self._run(Operation.DELETE_TRANSACTION, owner_id, request, idempotency_key, work)

    def mark_as_paid(
        self,
        owner_id: UUID,
        transaction_id: UUID | str,
        *,
        idempotency_key: str | None = None,
    ) -> OperationResult:
        """Settle a pending transaction (pending -> completed)."""
        return self.edit_transaction(
            owner_id,
            transaction_id,
            {"status": TransactionStatus.COMPLETED.value},
            EditScope.CURRENT,
            idempotency_key=idempotency_key,
        )

    def transfer(
        self,
        owner_id: UUID,
        payload: Mapping[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> OperationResult:
        """
        Move money between two of the owner's accounts.

        Creates an outgoing leg on the source (carrying the balanced pair:
        debit destination, credit source) and an incoming leg on the
        destination, linked to each other.

        Raises:
            ValidationError, SameAccountError, AccountNotFoundError,
            PeriodLockedError, InsufficientFundsError.
        """

        def work() -> OperationResult:
            req = schemas.parse_transfer(payload, self._policy.limits)
            if req.from_account_id == req.to_account_id:
                raise SameAccountError(str(req.from_account_id))

            accounts = self._store.lock_accounts(
                owner_id, [req.from_account_id, req.to_account_id]
            )
            source = accounts[req.from_account_id]
            destination = accounts[req.to_account_id]
            self._guard.ensure_unlocked(owner_id, [req.effective_date])
            self._require_funds(source, req.amount)

            outgoing, incoming = self._create_linked_pair(
                owner_id,
                source=source,
                destination=destination,
                amount=req.amount,
                effective_date=req.effective_date,
                outgoing=(TransactionType.TRANSFER, req.outgoing_description),
                incoming=(TransactionType.TRANSFER, req.incoming_description),
                invoice_override=None,
            )

            logger.info(
                "transfer_completed",
                extra={
                    "from_account_id": str(source.id),
                    "to_account_id": str(destination.id),
                    "amount": req.amount,
                    "outgoing_id": str(outgoing.id),
                    "incoming_id": str(incoming.id),
                },
            )
            return self._result(Operation.TRANSFER, [outgoing, incoming], accounts)

        return self._run(Operation.TRANSFER, owner_id, payload, idempotency_key, work)

    def pay_credit_card_bill(
        self,
        owner_id: UUID,
        payload: Mapping[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> OperationResult:
        """
        Pay a credit card from another account.

        Creates an outflow expense on the paying account (carrying the
        balanced pair: debit liability, credit asset) and a payment income
        on the card, linked.  The payment is credited to the most recently
        closed invoice unless invoice_month is given.

        Raises:
            ValidationError, SameAccountError, AccountNotFoundError,
            PeriodLockedError, InsufficientFundsError.
        """

        def work() -> OperationResult:
            req = schemas.parse_bill_payment(payload, self._policy.limits)
            if req.credit_account_id == req.debit_account_id:
                raise SameAccountError(str(req.credit_account_id))

            accounts = self._store.lock_accounts(
                owner_id, [req.credit_account_id, req.debit_account_id]
            )
            card = accounts[req.credit_account_id]
            payer = accounts[req.debit_account_id]
            if not card.is_credit:
                raise ValidationError("credit_account_id", "must be a credit account")
            self._guard.ensure_unlocked(owner_id, [req.payment_date])
            self._require_funds(payer, req.amount)

            outflow, payment = self._create_linked_pair(
                owner_id,
                source=payer,
                destination=card,
                amount=req.amount,
                effective_date=req.payment_date,
                outgoing=(TransactionType.EXPENSE, req.description),
                incoming=(TransactionType.INCOME, req.description),
                invoice_override=req.invoice_month,
            )

            logger.info(
                "bill_payment_completed",
                extra={
                    "credit_account_id": str(card.id),
                    "debit_account_id": str(payer.id),
                    "amount": req.amount,
                    "invoice_month": payment.invoice_month,
                },
            )
            return self._result(Operation.PAY_BILL, [outflow, payment], accounts)

        return self._run(Operation.PAY_BILL, owner_id, payload, idempotency_key, work)

    def create_period_closure(
        self,
        owner_id: UUID,
        payload: Mapping[str, Any],
        *,
        closed_by_id: UUID | None = None,
        idempotency_key: str | None = None,
    ) -> OperationResult:
        """
        Lock a period after validating its journal lines.

        Raises:
            ValidationError, UnbalancedPeriodError, OverlappingClosureError.
        """

        def work() -> OperationResult:
            req = schemas.parse_period_closure(payload)
            closure = self._periods.create_closure(owner_id, req, closed_by_id or owner_id)
            return OperationResult(operation=Operation.CREATE_PERIOD_CLOSURE, closure=closure)

        return self._run(
            Operation.CREATE_PERIOD_CLOSURE, owner_id, payload, idempotency_key, work
        )

    def unlock_period_closure(
        self,
        owner_id: UUID,
        closure_id: UUID,
        unlocked_by_id: UUID | None = None,
    ) -> PeriodClosureInfo:
        with self._unit_of_work():
            return self._periods.unlock_closure(
                owner_id, closure_id, unlocked_by_id or owner_id
            )

    def relock_period_closure(self, owner_id: UUID, closure_id: UUID) -> PeriodClosureInfo:
        with self._unit_of_work():
            return self._periods.relock_closure(owner_id, closure_id)

    def create_fixed_series(
        self,
        owner_id: UUID,
        payload: Mapping[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> OperationResult:
        """
        Create a fixed (monthly recurring) series.

        Writes a pending template root (is_fixed, no parent) and one child
        per month from the start date through December of the following
        year.  The first child takes the requested status, the rest are
        pending.  Generation stops before the first month whose date is
        locked; the start date itself must be unlocked.

        Raises:
            ValidationError, AccountNotFoundError, PeriodLockedError,
            CreditLimitExceededError.
        """

        def work() -> OperationResult:
            data = schemas.parse_new_transaction(payload, self._policy.limits)
            account = self._store.lock_accounts(owner_id, [data.account_id])[data.account_id]
            category = self._store.get_category(owner_id, data.category_id)
            self._guard.ensure_unlocked(owner_id, [data.effective_date])

            dates = fixed_series_dates(data.effective_date, self._policy.fixed_series_extra_years)
            first_locked = self._guard.first_locked(owner_id, dates)
            if first_locked is not None:
                dates = [d for d in dates if d < first_locked]

            invoice_month, overridden = self._invoice_month(
                account, data.effective_date, data.invoice_month
            )
            template = self._store.add_transaction(
                self._build(
                    owner_id,
                    replace(data, status=TransactionStatus.PENDING),
                    invoice_month=invoice_month,
                    overridden=overridden,
                    is_fixed=True,
                )
            )

            children = []
            for index, occurrence in enumerate(dates):
                status = data.status if index == 0 else TransactionStatus.PENDING
                month, month_overridden = self._invoice_month(
                    account, occurrence, _shift_month(data.invoice_month, index)
                )
                child = self._store.add_transaction(
                    self._build(
                        owner_id,
                        replace(data, effective_date=occurrence, status=status),
                        invoice_month=month,
                        overridden=month_overridden,
                        is_fixed=True,
                        parent_id=template.id,
                    )
                )
                self._post(child, account, category=category)
                children.append(child)

            logger.info(
                "fixed_series_created",
                extra={
                    "template_id": str(template.id),
                    "occurrences": len(children),
                    "stopped_at_locked_date": first_locked.isoformat() if first_locked else None,
                },
            )
            return self._result(
                Operation.CREATE_FIXED_SERIES, [template, *children], [account.id]
            )

        return self._run(Operation.CREATE_FIXED_SERIES, owner_id, payload, idempotency_key, work)

    def renew_fixed_series(
        self,
        owner_id: UUID,
        payload: Mapping[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> OperationResult:
        """
        Extend a fixed series with another calendar year of occurrences.

        ``transaction_id`` names the template root.  Without ``year`` the
        series grows into the year after its latest occurrence.  One pending
        child is added per month of that year on the template's day of
        month, skipping months the series already covers and months before
        the template.  Generation stops before the first locked date.
        Running it again for the same year adds nothing.

        Raises:
            ValidationError, TransactionNotFoundError,
            InvalidChainOperationError, AccountNotFoundError.
        """

        def work() -> OperationResult:
            req = schemas.parse_fixed_series_renewal(payload)
            root = self._store.lock_transactions(owner_id, [req.transaction_id])[0]
            if not root.is_fixed or root.parent_transaction_id is not None:
                raise InvalidChainOperationError(
                    str(root.id), "only a fixed series template can be renewed"
                )
            account = self._store.lock_accounts(owner_id, [root.account_id])[root.account_id]

            chain = self._store.load_chain(owner_id, root.id)
            year = req.year
            if year is None:
                year = max(t.effective_date.year for t in chain) + 1
            covered = {
                (t.effective_date.year, t.effective_date.month)
                for t in chain
                if t.parent_transaction_id == root.id
            }
            dates = [
                d
                for d in year_of_occurrences(root.effective_date, year)
                if d >= root.effective_date and (d.year, d.month) not in covered
            ]
            first_locked = self._guard.first_locked(owner_id, dates)
            if first_locked is not None:
                dates = [d for d in dates if d < first_locked]

            children = []
            for occurrence in dates:
                if root.invoice_month_overridden:
                    months = (occurrence.year - root.effective_date.year) * 12 + (
                        occurrence.month - root.effective_date.month
                    )
                    override = _shift_month(root.invoice_month, months)
                else:
                    override = None
                month, overridden = self._invoice_month(account, occurrence, override)
                children.append(
                    self._store.add_transaction(
                        Transaction(
                            owner_id=owner_id,
                            account_id=root.account_id,
                            category_id=root.category_id,
                            description=root.description,
                            transaction_type=root.transaction_type,
                            amount=root.amount,
                            effective_date=occurrence,
                            status=TransactionStatus.PENDING.value,
                            is_fixed=True,
                            parent_transaction_id=root.id,
                            invoice_month=month,
                            invoice_month_overridden=overridden,
                        )
                    )
                )

            logger.info(
                "fixed_series_renewed",
                extra={
                    "template_id": str(root.id),
                    "year": year,
                    "occurrences": len(children),
                    "stopped_at_locked_date": first_locked.isoformat() if first_locked else None,
                },
            )
            return self._result(Operation.RENEW_FIXED_SERIES, children, [account.id])

        return self._run(Operation.RENEW_FIXED_SERIES, owner_id, payload, idempotency_key, work)

    def create_installment_plan(
        self,
        owner_id: UUID,
        payload: Mapping[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> OperationResult:
        """
        Split a purchase into monthly installments.

        ``amount`` is the total; installment amounts differ by at most one
        cent and sum to it.  Installment 1 is the chain root; the others
        point at it.  Every installment date must be unlocked.

        Raises:
            ValidationError, AccountNotFoundError, PeriodLockedError,
            CreditLimitExceededError.
        """

        def work() -> OperationResult:
            if not isinstance(payload, Mapping):
                raise ValidationError("payload", "must be an object")
            count = schemas.parse_installment_count(
                payload.get("installments"), self._policy.limits
            )
            data = schemas.parse_new_transaction(
                {k: v for k, v in payload.items() if k != "installments"},
                self._policy.limits,
            )
            if data.amount < count:
                raise ValidationError("amount", f"too small to split into {count} installments")

            account = self._store.lock_accounts(owner_id, [data.account_id])[data.account_id]
            category = self._store.get_category(owner_id, data.category_id)
            dates = monthly_dates(data.effective_date, count)
            self._guard.ensure_unlocked(owner_id, dates)

            txns: list[Transaction] = []
            for index, (amount, occurrence) in enumerate(
                zip(split_installments(data.amount, count), dates)
            ):
                month, overridden = self._invoice_month(
                    account, occurrence, _shift_month(data.invoice_month, index)
                )
                txn = self._store.add_transaction(
                    self._build(
                        owner_id,
                        replace(data, amount=amount, effective_date=occurrence),
                        invoice_month=month,
                        overridden=overridden,
                        parent_id=txns[0].id if txns else None,
                        installments=count,
                        current_installment=index + 1,
                    )
                )
                self._post(txn, account, category=category)
                txns.append(txn)

            logger.info(
                "installment_plan_created",
                extra={
                    "root_id": str(txns[0].id),
                    "installments": count,
                    "total_amount": data.amount,
                },
            )
            return self._result(Operation.CREATE_INSTALLMENT_PLAN, txns, [account.id])

        return self._run(
            Operation.CREATE_INSTALLMENT_PLAN, owner_id, payload, idempotency_key, work
        )

    # =========================================================================
    # Unit of work, idempotency, logging
    # =========================================================================

    @contextmanager
    def _unit_of_work(self) -> Iterator[None]:
        if self._auto_commit:
            try:
                yield
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        else:
            with self.session.begin_nested():
                yield

    def _run(
        self,
        operation: str,
        owner_id: UUID,
        request: Any,
        idempotency_key: str | None,
        work: Callable[[], OperationResult],
    ) -> OperationResult:
        correlation_id = str(uuid4())
        start = time.monotonic()
        payload_hash = (
            hash_payload({"operation": operation, "payload": request})
            if idempotency_key
            else None
        )

        with LogContext.bind(
            correlation_id=correlation_id,
            owner_id=owner_id,
            operation=operation,
            idempotency_key=idempotency_key,
        ):
            logger.info("ledger_operation_started")
            try:
                with self._unit_of_work():
                    replayed = self._replay(owner_id, operation, idempotency_key, payload_hash)
                    if replayed is not None:
                        result = replayed
                    else:
                        result = work()
                        if idempotency_key:
                            self._record(owner_id, operation, idempotency_key, payload_hash, result)
            except IntegrityError:
                # Lost a race on the same idempotency key: serve the winner.
                replayed = self._replay_after_conflict(
                    owner_id, operation, idempotency_key, payload_hash
                )
                if replayed is None:
                    self._log_failure(operation, start)
                    raise
                result = replayed
            except DBAPIError as exc:
                self._log_failure(operation, start)
                if is_transient_error(exc):
                    raise ConcurrencyConflictError(operation, 1, reason=str(exc.orig)) from exc
                raise
            except LedgerError as exc:
                self._log_failure(operation, start, exc)
                raise
            except Exception:
                self._log_failure(operation, start)
                raise

            logger.info(
                "ledger_operation_completed",
                extra={
                    "duration_ms": round((time.monotonic() - start) * 1000, 2),
                    "transaction_ids": [str(t.id) for t in result.transactions],
                    "deleted_count": result.deleted_count,
                    "replayed": result.replayed,
                },
            )
            return result

    def _log_failure(
        self,
        operation: str,
        start: float,
        exc: LedgerError | None = None,
    ) -> None:
        duration_ms = round((time.monotonic() - start) * 1000, 2)
        if exc is not None and not isinstance(exc, InternalConsistencyError):
            logger.warning(
                "ledger_operation_rejected",
                extra={
                    "error_code": exc.code,
                    "error": str(exc),
                    "duration_ms": duration_ms,
                },
            )
            return
        logger.error(
            "ledger_operation_failed",
            extra={"duration_ms": duration_ms},
            exc_info=True,
        )

    def _replay(
        self,
        owner_id: UUID,
        operation: str,
        idempotency_key: str | None,
        payload_hash: str | None,
    ) -> OperationResult | None:
        if not idempotency_key:
            return None
        record = self._store.find_idempotency_record(owner_id, idempotency_key)
        if record is None:
            return None
        if record.payload_hash != payload_hash or record.operation != operation:
            raise PayloadMismatchError(idempotency_key, record.payload_hash, payload_hash or "")
        logger.info("idempotent_replay", extra={"recorded_operation": record.operation})
        return self._result_from_record(record)

    def _replay_after_conflict(
        self,
        owner_id: UUID,
        operation: str,
        idempotency_key: str | None,
        payload_hash: str | None,
    ) -> OperationResult | None:
        if not idempotency_key:
            return None
        return self._replay(owner_id, operation, idempotency_key, payload_hash)

    def _record(
        self,
        owner_id: UUID,
        operation: str,
        idempotency_key: str,
        payload_hash: str | None,
        result: OperationResult,
    ) -> None:
        if result.closure is not None:
            result_ids = [result.closure.id]
        else:
            result_ids = [t.id for t in result.transactions]
        self._store.save_idempotency_record(
            owner_id=owner_id,
            idempotency_key=idempotency_key,
            operation=operation,
            payload_hash=payload_hash or "",
            result_ids=result_ids,
            deleted_count=result.deleted_count if operation == Operation.DELETE_TRANSACTION else None,
        )

    def _result_from_record(self, record: IdempotencyRecord) -> OperationResult:
        ids = [UUID(i) for i in record.result_ids]
        if record.operation == Operation.CREATE_PERIOD_CLOSURE:
            closure = self.session.get(PeriodClosure, ids[0]) if ids else None
            return OperationResult(
                operation=record.operation,
                closure=PeriodClosureInfo.from_model(closure) if closure else None,
                replayed=True,
            )
        txns = [
            t
            for t in (self.session.get(Transaction, i) for i in ids)
            if t is not None
        ]
        account_ids = {t.account_id for t in txns}
        return OperationResult(
            operation=record.operation,
            transactions=tuple(TransactionInfo.from_model(t) for t in txns),
            balances=self._store.read_balances(account_ids),
            deleted_count=record.deleted_count or 0,
            replayed=True,
        )

    def _result(
        self,
        operation: str,
        txns: Iterable[Transaction],
        account_ids: Iterable[UUID],
    ) -> OperationResult:
        return OperationResult(
            operation=operation,
            transactions=tuple(TransactionInfo.from_model(t) for t in txns),
            balances=self._store.read_balances(account_ids),
        )

    # =========================================================================
    # Posting
    # =========================================================================

    def _build(
        self,
        owner_id: UUID,
        data: NewTransaction,
        *,
        invoice_month: str | None,
        overridden: bool,
        is_fixed: bool = False,
        parent_id: UUID | None = None,
        installments: int | None = None,
        current_installment: int | None = None,
    ) -> Transaction:
        return Transaction(
            owner_id=owner_id,
            account_id=data.account_id,
            category_id=data.category_id,
            description=data.description,
            transaction_type=data.transaction_type.value,
            amount=data.amount,
            effective_date=data.effective_date,
            status=data.status.value,
            is_fixed=is_fixed,
            parent_transaction_id=parent_id,
            installments=installments,
            current_installment=current_installment,
            invoice_month=invoice_month,
            invoice_month_overridden=overridden,
        )

    def _create_linked_pair(
        self,
        owner_id: UUID,
        *,
        source: Account,
        destination: Account,
        amount: int,
        effective_date: date,
        outgoing: tuple[TransactionType, str],
        incoming: tuple[TransactionType, str],
        invoice_override: str | None,
    ) -> tuple[Transaction, Transaction]:
        out_month, out_overridden = self._invoice_month(source, effective_date, None)
        in_month = None
        if destination.is_credit:
            in_month = invoice_override or self._payment_invoice_month(
                destination, effective_date
            )
        elif invoice_override is not None:
            raise ValidationError("invoice_month", "only credit accounts have invoices")

        out_txn = Transaction(
            owner_id=owner_id,
            account_id=source.id,
            to_account_id=destination.id,
            description=outgoing[1],
            transaction_type=outgoing[0].value,
            amount=amount,
            effective_date=effective_date,
            status=TransactionStatus.COMPLETED.value,
            invoice_month=out_month,
            invoice_month_overridden=out_overridden,
        )
        in_txn = Transaction(
            owner_id=owner_id,
            account_id=destination.id,
            description=incoming[1],
            transaction_type=incoming[0].value,
            amount=amount,
            effective_date=effective_date,
            status=TransactionStatus.COMPLETED.value,
            invoice_month=in_month,
            invoice_month_overridden=in_month is not None,
        )
        self.session.add_all([out_txn, in_txn])
        self.session.flush()
        out_txn.linked_transaction_id = in_txn.id
        in_txn.linked_transaction_id = out_txn.id
        self.session.flush()

        self._post(out_txn, source, to_account=destination)
        self._post(in_txn, destination)
        return out_txn, in_txn

    def _post(
        self,
        txn: Transaction,
        account: Account,
        to_account: Account | None = None,
        category: Category | None = None,
    ) -> None:
        """Write lines and apply the balance effect of a completed transaction."""
        if not txn.is_completed:
            return

        if (
            self._policy.enforce_credit_limit
            and account.is_credit
            and account.limit_amount is not None
            and txn.transaction_type == TransactionType.EXPENSE
            and txn.to_account_id is None
        ):
            available = account.balance + account.limit_amount
            if txn.amount > available:
                raise CreditLimitExceededError(str(account.id), available, txn.amount)

        lines = derive_journal_lines(
            PostingFacts(
                transaction_type=txn.transaction_type,
                status=txn.status,
                amount=txn.amount,
                account_id=txn.account_id,
                account_kind=account.account_type,
                to_account_id=txn.to_account_id,
                to_account_kind=to_account.account_type if to_account else None,
                is_linked=txn.is_linked,
                category_ledger_code=category.ledger_code if category else None,
            ),
            self._policy.chart,
        )
        try:
            DoubleEntryValidator.assert_balanced(lines, txn.id)
        except InternalConsistencyError as exc:
            logger.critical(
                "journal_imbalance_detected",
                extra={
                    "transaction_id": str(txn.id),
                    "total_debits": exc.total_debits,
                    "total_credits": exc.total_credits,
                },
            )
            raise

        if lines:
            self._store.replace_journal_entries(txn, lines)
        self._store.apply_balance_delta(txn.account_id, txn.signed_amount)

    def _unpost(self, txn: Transaction) -> None:
        """Reverse the balance effect and drop the lines of a transaction."""
        if not txn.is_completed:
            return
        self._store.delete_journal_entries([txn.id])
        self._store.apply_balance_delta(txn.account_id, -txn.signed_amount)

    def _apply_updates(
        self,
        txn: Transaction,
        changes: TransactionUpdates,
        *,
        new_date: date,
        accounts: Mapping[UUID, Account],
        is_target: bool,
        is_partner: bool,
    ) -> None:
        date_changed = new_date != txn.effective_date
        txn.effective_date = new_date

        if changes.amount is not None:
            txn.amount = changes.amount
        if changes.status is not None and not (txn.is_fixed and txn.parent_transaction_id is None):
            # The fixed-series template stays pending; only occurrences settle.
            txn.status = changes.status.value
        if is_partner:
            if date_changed and not txn.invoice_month_overridden:
                txn.invoice_month, txn.invoice_month_overridden = self._invoice_month(
                    accounts[txn.account_id], txn.effective_date, None
                )
            return

        if changes.description is not None:
            txn.description = changes.description
        if changes.transaction_type is not None:
            txn.transaction_type = changes.transaction_type.value
        if changes.category_id is not None:
            txn.category_id = changes.category_id

        account_changed = changes.account_id is not None and changes.account_id != txn.account_id
        if account_changed:
            txn.account_id = changes.account_id
        account = accounts[txn.account_id]

        if is_target and changes.invoice_month is not None:
            txn.invoice_month, txn.invoice_month_overridden = self._invoice_month(
                account, txn.effective_date, changes.invoice_month
            )
        elif account_changed or (date_changed and not txn.invoice_month_overridden):
            txn.invoice_month, txn.invoice_month_overridden = self._invoice_month(
                account, txn.effective_date, None
            )

    # =========================================================================
    # Checks and billing helpers
    # =========================================================================

    def _require_funds(self, account: Account, amount: int) -> None:
        if account.available < amount:
            raise InsufficientFundsError(str(account.id), account.available, amount)

    def _calculator(self, account: Account) -> BillingCycleCalculator | None:
        if not account.is_credit or account.closing_day is None or account.due_day is None:
            return None
        return BillingCycleCalculator(
            account.closing_day,
            account.due_day,
            self._policy.minimum_payment_rate,
        )

    def _invoice_month(
        self,
        account: Account,
        effective_date: date,
        override: str | None,
    ) -> tuple[str | None, bool]:
        """(invoice_month, overridden) for a transaction on account."""
        if not account.is_credit:
            if override is not None:
                raise ValidationError("invoice_month", "only credit accounts have invoices")
            return None, False
        if override is not None:
            return override, True
        calculator = self._calculator(account)
        if calculator is None:
            return None, False
        return calculator.invoice_month_for(effective_date), False

    def _payment_invoice_month(self, card: Account, payment_date: date) -> str | None:
        calculator = self._calculator(card)
        if calculator is None:
            return None
        return calculator.last_closed_invoice(payment_date)


def _shift_month(invoice_month: str | None, count: int) -> str | None:
    if invoice_month is None:
        return None
    return format_invoice_month(*add_months(*parse_invoice_month(invoice_month), count))
