"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
TYPED EXCEPTIONS
===============================================================================

Callers catch by type, never by message text:

    try:
        processor.create_transaction(owner_id, data)
    except PeriodLockedError as e:
        api_response(code=e.code, date=e.effective_date)

Every exception carries:
  1. A TYPED class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe, stable across releases)
  3. Structured DATA attributes (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- ValidationError
    |
    +-- NotFoundError
    |   +-- TransactionNotFoundError
    |   +-- AccountNotFoundError
    |   +-- PeriodClosureNotFoundError
    |
    +-- PeriodLockedError
    |
    +-- BusinessRuleError
    |   +-- SameAccountError
    |   +-- InsufficientFundsError
    |   +-- CreditLimitExceededError
    |   +-- InvalidChainOperationError
    |
    +-- PeriodClosureError
    |   +-- UnbalancedPeriodError
    |   +-- OverlappingClosureError
    |
    +-- ConcurrencyConflictError
    |
    +-- IdempotencyError
    |   +-- PayloadMismatchError
    |
    +-- InternalConsistencyError
    |
    +-- ConfigurationError

===============================================================================
RECOVERABILITY
===============================================================================

    ValidationError, NotFoundError, BusinessRuleError, PeriodLockedError,
    PeriodClosureError, IdempotencyError:
        Caller-recoverable. Surface immediately, never retried.

    ConcurrencyConflictError:
        Transient. Retried with backoff by run_with_retry(); raised to the
        caller only after the attempt budget is exhausted.

    InternalConsistencyError:
        Fatal. A derivation bug produced unbalanced journal lines. The
        enclosing write is aborted and the error is logged at CRITICAL.
"""


class LedgerError(Exception):
    """Base exception for all ledger kernel errors."""

    code: str = "LEDGER_ERROR"

    #: Whether an automatic retry of the same request can succeed.
    retryable: bool = False


# =============================================================================
# Validation
# =============================================================================


class ValidationError(LedgerError):
    """Input failed schema validation before reaching the store."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"Invalid {field}: {message}")


# =============================================================================
# Lookup
# =============================================================================


class NotFoundError(LedgerError):
    """Base for missing-record errors."""

    code: str = "NOT_FOUND"


class TransactionNotFoundError(NotFoundError):
    """Transaction does not exist or belongs to another owner."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class AccountNotFoundError(NotFoundError):
    """Account does not exist or belongs to another owner."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class PeriodClosureNotFoundError(NotFoundError):
    """Period closure does not exist or belongs to another owner."""

    code: str = "PERIOD_CLOSURE_NOT_FOUND"

    def __init__(self, closure_id: str):
        self.closure_id = closure_id
        super().__init__(f"Period closure not found: {closure_id}")


# =============================================================================
# Period lock
# =============================================================================


class PeriodLockedError(LedgerError):
    """A write would touch a date inside a locked period closure."""

    code: str = "PERIOD_LOCKED"

    def __init__(
        self,
        effective_date: str,
        closure_id: str,
        period_start: str,
        period_end: str,
    ):
        self.effective_date = effective_date
        self.closure_id = closure_id
        self.period_start = period_start
        self.period_end = period_end
        super().__init__(
            f"Date {effective_date} falls in locked period "
            f"{period_start}..{period_end}"
        )


# =============================================================================
# Business rules
# =============================================================================


class BusinessRuleError(LedgerError):
    """Base for user-recoverable business rule rejections."""

    code: str = "BUSINESS_RULE_VIOLATION"


class SameAccountError(BusinessRuleError):
    """Source and destination of a transfer or payment are the same account."""

    code: str = "SAME_ACCOUNT"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(
            f"Source and destination must differ (both are {account_id})"
        )


class InsufficientFundsError(BusinessRuleError):
    """The paying account cannot cover the amount, even with its limit."""

    code: str = "INSUFFICIENT_FUNDS"

    def __init__(self, account_id: str, available: int, requested: int):
        self.account_id = account_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient funds in account {account_id}: "
            f"available {available}, requested {requested}"
        )


class CreditLimitExceededError(BusinessRuleError):
    """A credit-card expense would push debt past the card limit."""

    code: str = "CREDIT_LIMIT_EXCEEDED"

    def __init__(self, account_id: str, available: int, requested: int):
        self.account_id = account_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Credit limit exceeded on account {account_id}: "
            f"available {available}, requested {requested}"
        )


class InvalidChainOperationError(BusinessRuleError):
    """The requested change is not allowed on this kind of transaction."""

    code: str = "INVALID_CHAIN_OPERATION"

    def __init__(self, transaction_id: str, reason: str):
        self.transaction_id = transaction_id
        self.reason = reason
        super().__init__(f"Transaction {transaction_id}: {reason}")


# =============================================================================
# Period closure
# =============================================================================


class PeriodClosureError(LedgerError):
    """Base for period closure errors."""

    code: str = "PERIOD_CLOSURE_ERROR"


class UnbalancedPeriodError(PeriodClosureError):
    """The period holds transactions with missing or unbalanced journal lines."""

    code: str = "UNBALANCED_PERIOD"

    def __init__(self, period_start: str, period_end: str, issues: list[dict]):
        self.period_start = period_start
        self.period_end = period_end
        self.issues = issues
        missing = sum(1 for i in issues if i.get("issue") == "missing_entries")
        unbalanced = len(issues) - missing
        super().__init__(
            f"Cannot close {period_start}..{period_end}: "
            f"{missing} transaction(s) without entries, "
            f"{unbalanced} unbalanced"
        )


class OverlappingClosureError(PeriodClosureError):
    """A locked closure already covers part of the requested range."""

    code: str = "OVERLAPPING_CLOSURE"

    def __init__(self, period_start: str, period_end: str, existing_closure_id: str):
        self.period_start = period_start
        self.period_end = period_end
        self.existing_closure_id = existing_closure_id
        super().__init__(
            f"Period {period_start}..{period_end} overlaps locked closure "
            f"{existing_closure_id}"
        )


# =============================================================================
# Concurrency
# =============================================================================


class ConcurrencyConflictError(LedgerError):
    """Lock wait timeout or serialization failure that outlived its retries."""

    code: str = "CONCURRENCY_CONFLICT"
    retryable: bool = True

    def __init__(self, operation: str, attempts: int, reason: str = ""):
        self.operation = operation
        self.attempts = attempts
        self.reason = reason
        super().__init__(
            f"Conflict in {operation} after {attempts} attempt(s), please retry"
            + (f": {reason}" if reason else "")
        )


# =============================================================================
# Idempotency
# =============================================================================


class IdempotencyError(LedgerError):
    """Base for idempotency errors."""

    code: str = "IDEMPOTENCY_ERROR"


class PayloadMismatchError(IdempotencyError):
    """
    Idempotency key reused with a different payload.

    This is a client protocol violation: a key identifies exactly one request.
    """

    code: str = "PAYLOAD_MISMATCH"

    def __init__(self, idempotency_key: str, expected_hash: str, received_hash: str):
        self.idempotency_key = idempotency_key
        self.expected_hash = expected_hash
        self.received_hash = received_hash
        super().__init__(
            f"Payload mismatch for idempotency key {idempotency_key}: "
            f"expected {expected_hash}, received {received_hash}"
        )


# =============================================================================
# Internal consistency
# =============================================================================


class InternalConsistencyError(LedgerError):
    """
    Derived journal lines do not balance.

    Indicates a derivation bug, never bad user input. Aborts the write.
    """

    code: str = "INTERNAL_CONSISTENCY"

    def __init__(self, transaction_id: str, total_debits: int, total_credits: int):
        self.transaction_id = transaction_id
        self.total_debits = total_debits
        self.total_credits = total_credits
        super().__init__(
            f"Journal lines for {transaction_id} do not balance: "
            f"debits {total_debits}, credits {total_credits}"
        )


# =============================================================================
# Configuration
# =============================================================================


class ConfigurationError(LedgerError):
    """Configuration could not be loaded or failed validation."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        super().__init__(message if source is None else f"{source}: {message}")
