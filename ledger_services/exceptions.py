"""Client-side errors raised by the offline queue and the replay gateway."""

from ledger_kernel.exceptions import LedgerError, NotFoundError, ValidationError


class GatewayUnavailableError(LedgerError):
    """
    The system of record cannot be reached.

    Retryable.  Stops the current replay pass so queued operations are
    never applied out of order.
    """

    code: str = "GATEWAY_UNAVAILABLE"
    retryable: bool = True

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Ledger gateway unavailable: {reason}")


class UnresolvedTemporaryIdError(ValidationError):
    """A queued payload refers to a temporary id no earlier item produced."""

    code: str = "UNRESOLVED_TEMP_ID"

    def __init__(self, temp_id: str):
        self.temp_id = temp_id
        super().__init__("payload", f"unresolved temporary id {temp_id!r}")


class QueueItemNotFoundError(NotFoundError):
    code: str = "QUEUE_ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Offline queue item not found: {item_id}")
