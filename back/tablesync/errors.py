"""Error taxonomy for the table sync service."""


class TableSyncError(Exception):
    """Base class for every error raised by tablesync."""


class ApiError(TableSyncError):
    """The order API rejected a request or could not be reached."""

    def __init__(self, status_code: int | None, message: str):
        self.status_code = status_code
        self.message = message
        if status_code is None:
            super().__init__(message)
        else:
            super().__init__(f"{message} (status {status_code})")


class ReconciliationError(TableSyncError):
    """A quantity change could not be turned into order operations."""


class QuantityValidationError(ReconciliationError):
    """Target quantity rejected before any network call."""


class NoCancelableOrderError(ReconciliationError):
    """No open order holds enough units of the variant to remove."""

    def __init__(self, variant_key: str, needed: int, available: int = 0):
        self.variant_key = variant_key
        self.needed = needed
        self.available = available
        if available:
            message = (
                f"No cancelable order found for {variant_key}: "
                f"need to remove {needed}, only {available} removable"
            )
        else:
            message = f"No cancelable order found for {variant_key}"
        super().__init__(message)


class PartialReconciliationError(ReconciliationError):
    """
    An order was cancelled but its replacement could not be created.

    The table is left under-counted. This is never retried automatically
    because a blind retry may duplicate items; staff must verify the table.
    """

    def __init__(self, cancelled_order_id: int, lost_items: list, cause: Exception):
        self.cancelled_order_id = cancelled_order_id
        self.lost_items = lost_items
        self.cause = cause
        super().__init__(
            f"Order #{cancelled_order_id} was cancelled but its replacement "
            f"({len(lost_items)} line(s)) could not be created: {cause}"
        )


class ReconciliationTimeoutError(ReconciliationError):
    """A reconciliation did not settle within the configured timeout."""


class KanbanTransitionError(TableSyncError):
    """The requested kitchen move has no backend status transition."""
