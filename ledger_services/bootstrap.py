"""
Process bootstrap -- settings, logging and database in one call.

Responsibility:
    Turns the active configuration set into a ready-to-use session factory.
    Logging is configured from ``settings.logging`` before the engine is
    built, so the engine's own startup log lands in the structured stream.

Architecture position:
    Outer services.  The only module that reads configuration and also
    initializes the kernel's engine.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.orm import Session, sessionmaker

from ledger_config import LedgerSettings, get_active_config
from ledger_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from ledger_kernel.logging_config import configure_logging, get_logger, level_from_name

logger = get_logger("services.bootstrap")


def init_ledger(
    config_path: Path | str | None = None,
    *,
    create_schema: bool = False,
) -> tuple[LedgerSettings, sessionmaker[Session]]:
    """
    Load settings, configure logging and initialize the database engine.

    Args:
        config_path: Explicit configuration file; see get_active_config().
        create_schema: Create missing tables after connecting.

    Returns:
        The active settings and the session factory bound to the new engine.
    """
    settings = get_active_config(config_path)
    configure_logging(level=level_from_name(settings.logging.level))

    db = settings.database
    init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        sqlite_busy_timeout=db.sqlite_busy_timeout,
    )
    if create_schema:
        create_tables()

    logger.info(
        "ledger_initialized",
        extra={"config_id": settings.config_id, "config_version": settings.version},
    )
    return settings, get_session_factory()
