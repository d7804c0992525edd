"""
Pytest fixtures for the ledger test suite.

Provides:
- A session-scoped engine and schema (SQLite file by default)
- Per-test sessions isolated by savepoint rollback
- A committing session factory for threaded concurrency tests
- Deterministic clock, structured log capture, account/category builders

Environment Variables:
- DATABASE_URL: run against another database (e.g. PostgreSQL) instead of
  the temporary SQLite file.
"""

import json
import logging
import os
import threading
from io import StringIO
from typing import Callable, Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base
from ledger_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.models.account import Account
from ledger_kernel.models.category import Category
from ledger_kernel.services.transaction_processor import LedgerTransactionProcessor


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ledger logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, processor):
            processor.create_transaction(...)
            logs = captured_logs()
            assert any(r["message"] == "transaction_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "postgres: mark test as requiring PostgreSQL")
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine(tmp_path_factory):
    """Single engine for the entire test session."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        url = f"sqlite:///{tmp_path_factory.mktemp('ledger') / 'ledger_test.db'}"
    eng = init_engine_from_url(url, echo=False, pool_size=30, max_overflow=20, pool_timeout=10)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end."""
    drop_tables()
    create_tables()
    yield
    drop_tables()


def _delete_all_rows(engine) -> None:
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection; its
    own commits release savepoints, and the outer transaction is rolled
    back at teardown.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Concurrency testing fixtures (real commits + row cleanup)
# =============================================================================


@pytest.fixture(scope="function")
def session_factory(db_engine, db_tables):
    """Committing session factory for threads; all rows deleted at teardown."""
    factory = get_session_factory()
    created: list[Session] = []
    lock = threading.Lock()

    def tracked_factory() -> Session:
        with lock:
            s = factory()
            created.append(s)
            return s

    yield tracked_factory

    for s in created:
        s.close()
    _delete_all_rows(db_engine)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def owner_id() -> UUID:
    return uuid4()


@pytest.fixture
def processor(session, deterministic_clock) -> LedgerTransactionProcessor:
    return LedgerTransactionProcessor(session, clock=deterministic_clock)


def build_account(
    session: Session,
    owner_id: UUID,
    account_type: str = "checking",
    balance: int = 0,
    name: str | None = None,
    limit_amount: int | None = None,
    closing_day: int | None = None,
    due_day: int | None = None,
) -> Account:
    account = Account(
        owner_id=owner_id,
        name=name or f"{account_type}-{uuid4().hex[:6]}",
        account_type=account_type,
        balance=balance,
        limit_amount=limit_amount,
        closing_day=closing_day,
        due_day=due_day,
    )
    session.add(account)
    session.flush()
    return account


@pytest.fixture
def make_account(session, owner_id) -> Callable[..., Account]:
    def _make(account_type: str = "checking", balance: int = 0, **kwargs) -> Account:
        return build_account(session, owner_id, account_type, balance, **kwargs)

    return _make


@pytest.fixture
def make_category(session, owner_id) -> Callable[..., Category]:
    def _make(name: str, kind: str = "expense", ledger_code: str | None = None) -> Category:
        category = Category(owner_id=owner_id, name=name, kind=kind, ledger_code=ledger_code)
        session.add(category)
        session.flush()
        return category

    return _make
