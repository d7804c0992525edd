"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``LedgerSettings`` built
    from a YAML configuration set.

Architecture position:
    Configuration.  Sits above ``ledger_kernel`` and below
    ``ledger_services``.  The kernel MUST NEVER import from
    ``ledger_config``; the settings carry kernel policy objects that
    callers hand to the kernel explicitly.

Resolution order:
    1. ``config_path`` argument
    2. ``LEDGER_CONFIG_PATH`` environment variable
    3. ``ledger_config/sets/default.yaml``

Failure modes:
    - ``ConfigurationError`` -- missing file, invalid YAML, unknown key or
      invalid value.

Audit relevance:
    Every load emits a ``LEDGER_CONFIG_TRACE`` log entry containing the
    config_id, version, checksum and source path.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

from ledger_config.loader import load_settings
from ledger_config.schema import (
    DatabaseSettings,
    LedgerSettings,
    LoggingSettings,
    OfflineSettings,
)

_logger = logging.getLogger("ledger.config")

CONFIG_PATH_ENV = "LEDGER_CONFIG_PATH"

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
_DEFAULT_CONFIG_FILE = _DEFAULT_CONFIG_DIR / "default.yaml"

_cache: dict[Path, LedgerSettings] = {}
_cache_lock = threading.Lock()


def resolve_config_path(config_path: Path | str | None = None) -> Path:
    if config_path is not None:
        return Path(config_path)
    from_env = os.environ.get(CONFIG_PATH_ENV)
    if from_env:
        return Path(from_env)
    return _DEFAULT_CONFIG_FILE


def get_active_config(
    config_path: Path | str | None = None,
    *,
    refresh: bool = False,
) -> LedgerSettings:
    """The ONLY public configuration entrypoint.

    Settings are loaded once per resolved path and cached; pass
    ``refresh=True`` to re-read the file.

    Raises:
        ConfigurationError: The configuration could not be loaded.
    """
    path = resolve_config_path(config_path).resolve()
    with _cache_lock:
        if not refresh and path in _cache:
            return _cache[path]
        settings = load_settings(path)
        _cache[path] = settings

    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "config_id": settings.config_id,
            "config_version": settings.version,
            "checksum": settings.checksum,
            "source": str(path),
        },
    )
    return settings


def clear_config_cache() -> None:
    with _cache_lock:
        _cache.clear()


__all__ = [
    "CONFIG_PATH_ENV",
    "DatabaseSettings",
    "LedgerSettings",
    "LoggingSettings",
    "OfflineSettings",
    "clear_config_cache",
    "get_active_config",
    "resolve_config_path",
]
