"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads one YAML configuration file and parses it into a typed
``LedgerSettings``.  Runtime callers go through
``ledger_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass.
* Unknown keys are rejected; a typo never silently falls back to a default.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the source.

Failure modes
-------------
* Missing file, malformed YAML, unknown keys, wrong types or out-of-range
  values  -> ``ConfigurationError`` naming the file and the key.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from ledger_config.schema import (
    DatabaseSettings,
    LedgerSettings,
    LoggingSettings,
    OfflineSettings,
)
from ledger_kernel.db.engine import database_url_from_env
from ledger_kernel.domain.policy import ChartOfAccounts, InputLimits, LedgerPolicy
from ledger_kernel.domain.values import AccountKind
from ledger_kernel.exceptions import ConfigurationError
from ledger_kernel.services.retry import RetryPolicy

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        ConfigurationError: File missing, unreadable YAML, or not a mapping.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigurationError("configuration file not found", source=str(path)) from None
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML: {exc}", source=str(path)) from exc
    if not isinstance(data, dict):
        raise ConfigurationError("top level must be a mapping", source=str(path))
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of data."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


class _Section:
    """Typed accessor over one YAML mapping; tracks the key path for errors."""

    def __init__(self, data: Any, path: str, source: str):
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} must be a mapping", source=source)
        self._data = data
        self._path = path
        self._source = source

    @property
    def source(self) -> str:
        return self._source

    def check_keys(self, allowed: set[str]) -> None:
        unknown = sorted(set(self._data) - allowed)
        if unknown:
            raise ConfigurationError(
                f"unknown key(s) in {self._path}: {', '.join(unknown)}",
                source=self._source,
            )

    def _fail(self, key: str, message: str) -> ConfigurationError:
        return ConfigurationError(f"{self._path}.{key} {message}", source=self._source)

    def has(self, key: str) -> bool:
        return key in self._data

    def section(self, key: str) -> _Section:
        return _Section(self._data.get(key), f"{self._path}.{key}", self._source)

    def get_int(self, key: str, default: int, minimum: int = 0) -> int:
        value = self._data.get(key, default)
        if isinstance(value, bool) or not isinstance(value, int):
            raise self._fail(key, "must be an integer")
        if value < minimum:
            raise self._fail(key, f"must be >= {minimum}")
        return value

    def get_float(self, key: str, default: float, minimum: float = 0.0) -> float:
        value = self._data.get(key, default)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise self._fail(key, "must be a number")
        if value < minimum:
            raise self._fail(key, f"must be >= {minimum}")
        return float(value)

    def get_bool(self, key: str, default: bool) -> bool:
        value = self._data.get(key, default)
        if not isinstance(value, bool):
            raise self._fail(key, "must be true or false")
        return value

    def get_str(self, key: str, default: str | None = None) -> str:
        value = self._data.get(key, default)
        if not isinstance(value, str) or not value:
            raise self._fail(key, "must be a non-empty string")
        return value

    def get_decimal(self, key: str, default: Decimal) -> Decimal:
        value = self._data.get(key, default)
        if isinstance(value, bool):
            raise self._fail(key, "must be a decimal number")
        try:
            return Decimal(str(value))
        except InvalidOperation:
            raise self._fail(key, "must be a decimal number") from None

    def mapping(self) -> dict[str, Any]:
        return dict(self._data)


def parse_chart(section: _Section) -> ChartOfAccounts:
    section.check_keys({
        "asset_codes",
        "credit_liability_code",
        "default_revenue_code",
        "default_expense_code",
        "fallback_asset_code",
    })
    defaults = ChartOfAccounts()
    asset_codes = dict(defaults.asset_codes)
    if section.has("asset_codes"):
        codes = section.section("asset_codes")
        kinds = {k.value for k in AccountKind if k != AccountKind.CREDIT}
        codes.check_keys(kinds)
        for kind in codes.mapping():
            asset_codes[kind] = codes.get_str(kind)
    return ChartOfAccounts(
        asset_codes=MappingProxyType(asset_codes),
        credit_liability_code=section.get_str(
            "credit_liability_code", defaults.credit_liability_code
        ),
        default_revenue_code=section.get_str("default_revenue_code", defaults.default_revenue_code),
        default_expense_code=section.get_str("default_expense_code", defaults.default_expense_code),
        fallback_asset_code=section.get_str("fallback_asset_code", defaults.fallback_asset_code),
    )


def parse_limits(section: _Section) -> InputLimits:
    section.check_keys({"max_amount", "max_description_length", "max_installments"})
    defaults = InputLimits()
    return InputLimits(
        max_amount=section.get_int("max_amount", defaults.max_amount, minimum=1),
        max_description_length=section.get_int(
            "max_description_length", defaults.max_description_length, minimum=1
        ),
        max_installments=section.get_int("max_installments", defaults.max_installments, minimum=2),
    )


def parse_policy(section: _Section) -> LedgerPolicy:
    section.check_keys({
        "chart_of_accounts",
        "limits",
        "minimum_payment_rate",
        "fixed_series_extra_years",
        "enforce_credit_limit",
    })
    defaults = LedgerPolicy()
    rate = section.get_decimal("minimum_payment_rate", defaults.minimum_payment_rate)
    if not Decimal(0) <= rate <= Decimal(1):
        raise ConfigurationError(
            "ledger.minimum_payment_rate must be between 0 and 1",
            source=section.source,
        )
    return LedgerPolicy(
        chart=parse_chart(section.section("chart_of_accounts")),
        limits=parse_limits(section.section("limits")),
        minimum_payment_rate=rate,
        fixed_series_extra_years=section.get_int(
            "fixed_series_extra_years", defaults.fixed_series_extra_years
        ),
        enforce_credit_limit=section.get_bool("enforce_credit_limit", defaults.enforce_credit_limit),
    )


def parse_retry(section: _Section) -> RetryPolicy:
    section.check_keys({"max_retries", "initial_delay_ms", "max_delay_ms", "multiplier"})
    defaults = RetryPolicy()
    return RetryPolicy(
        max_retries=section.get_int("max_retries", defaults.max_retries),
        initial_delay_ms=section.get_int("initial_delay_ms", defaults.initial_delay_ms),
        max_delay_ms=section.get_int("max_delay_ms", defaults.max_delay_ms),
        multiplier=section.get_float("multiplier", defaults.multiplier, minimum=1.0),
    )


def parse_offline(section: _Section) -> OfflineSettings:
    section.check_keys({"max_attempts", "initial_delay_ms", "max_delay_ms", "multiplier"})
    defaults = OfflineSettings()
    return OfflineSettings(
        max_attempts=section.get_int("max_attempts", defaults.max_attempts, minimum=1),
        initial_delay_ms=section.get_int("initial_delay_ms", defaults.initial_delay_ms),
        max_delay_ms=section.get_int("max_delay_ms", defaults.max_delay_ms),
        multiplier=section.get_float("multiplier", defaults.multiplier, minimum=1.0),
    )


def parse_database(section: _Section) -> DatabaseSettings:
    section.check_keys({"url", "echo", "pool_size", "max_overflow", "sqlite_busy_timeout"})
    defaults = DatabaseSettings()
    return DatabaseSettings(
        url=database_url_from_env(section.get_str("url", defaults.url)),
        echo=section.get_bool("echo", defaults.echo),
        pool_size=section.get_int("pool_size", defaults.pool_size, minimum=1),
        max_overflow=section.get_int("max_overflow", defaults.max_overflow),
        sqlite_busy_timeout=section.get_float("sqlite_busy_timeout", defaults.sqlite_busy_timeout),
    )


def parse_logging(section: _Section) -> LoggingSettings:
    section.check_keys({"level"})
    level = section.get_str("level", LoggingSettings().level).upper()
    if level not in _LOG_LEVELS:
        raise ConfigurationError(
            f"logging.level must be one of: {', '.join(sorted(_LOG_LEVELS))}",
            source=section.source,
        )
    return LoggingSettings(level=level)


def parse_settings(data: dict[str, Any], source: str) -> LedgerSettings:
    """
    Parse a configuration document into LedgerSettings.

    Raises:
        ConfigurationError: Unknown keys or invalid values.
    """
    root = _Section(data, "config", source)
    root.check_keys({
        "config_id",
        "version",
        "ledger",
        "retry",
        "offline",
        "database",
        "logging",
    })
    return LedgerSettings(
        config_id=root.get_str("config_id"),
        version=root.get_int("version", 1, minimum=1),
        checksum=compute_checksum(data),
        policy=parse_policy(root.section("ledger")),
        retry=parse_retry(root.section("retry")),
        offline=parse_offline(root.section("offline")),
        database=parse_database(root.section("database")),
        logging=parse_logging(root.section("logging")),
    )


def load_settings(path: Path) -> LedgerSettings:
    return parse_settings(load_yaml_file(path), str(path))
