"""
ledger_services -- Package init and public API.

Responsibility:
    Client-facing services around the ledger kernel: the offline operation
    queue and its ordered replay, the gateways replay targets, and process
    bootstrap from configuration.

Architecture position:
    Outer services.

    Dependency direction (enforced by tests/architecture/test_import_boundaries.py):
        ledger_services/ -> ledger_config/   (allowed)
        ledger_services/ -> ledger_kernel/   (allowed)
        ledger_kernel/   -> ledger_services/ (FORBIDDEN)
        ledger_config/   -> ledger_services/ (FORBIDDEN)

Failure modes:
    - GatewayUnavailableError when the system of record cannot be reached.
    - UnresolvedTemporaryIdError / QueueItemNotFoundError from the queue.
"""

from ledger_services.bootstrap import init_ledger
from ledger_services.exceptions import (
    GatewayUnavailableError,
    QueueItemNotFoundError,
    UnresolvedTemporaryIdError,
)
from ledger_services.gateway import InProcessLedgerGateway, LedgerGateway
from ledger_services.offline_sync import (
    OfflineSyncReconciler,
    QueuedOperation,
    QueueItemStatus,
    SyncReport,
    create_client_tables,
    substitute_temp_ids,
)

__all__ = [
    "GatewayUnavailableError",
    "InProcessLedgerGateway",
    "LedgerGateway",
    "OfflineSyncReconciler",
    "QueueItemNotFoundError",
    "QueueItemStatus",
    "QueuedOperation",
    "SyncReport",
    "UnresolvedTemporaryIdError",
    "create_client_tables",
    "substitute_temp_ids",
    "init_ledger",
]
