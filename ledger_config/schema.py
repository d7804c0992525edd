"""
Configuration schema (``ledger_config.schema``).

Responsibility
--------------
Frozen dataclasses describing one assembled configuration set.  Kernel
policy objects (``LedgerPolicy``, ``RetryPolicy``) are embedded as-is;
everything the kernel does not consume (database, logging, offline
queue) is declared here.

Architecture position
---------------------
**Config layer**.  Imports kernel value objects; the kernel never imports
this module.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ledger_kernel.db.engine import DEFAULT_DATABASE_URL
from ledger_kernel.domain.policy import LedgerPolicy
from ledger_kernel.services.retry import RetryPolicy


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = DEFAULT_DATABASE_URL
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    sqlite_busy_timeout: float = 30.0


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class OfflineSettings:
    """
    Offline queue replay parameters.

    Attributes:
        max_attempts: Failed replays of one item before it is dead-lettered.
        initial_delay_ms / max_delay_ms / multiplier: Backoff between
            replay attempts after a gateway outage.
    """

    max_attempts: int = 5
    initial_delay_ms: int = 1000
    max_delay_ms: int = 60_000
    multiplier: float = 2.0

    def retry_policy(self) -> RetryPolicy:
        """Backoff for gateway outages during one replay pass."""
        return RetryPolicy(
            max_retries=self.max_attempts - 1,
            initial_delay_ms=self.initial_delay_ms,
            max_delay_ms=self.max_delay_ms,
            multiplier=self.multiplier,
        )


@dataclass(frozen=True)
class LedgerSettings:
    """
    One validated configuration set.

    Attributes:
        config_id: Identifier declared in the YAML file.
        version: Integer version declared in the YAML file.
        checksum: SHA-256 of the canonical source document.
    """

    config_id: str
    version: int
    checksum: str
    policy: LedgerPolicy = field(default_factory=LedgerPolicy)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    offline: OfflineSettings = field(default_factory=OfflineSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
