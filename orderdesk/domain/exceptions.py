"""
Domain error taxonomy.

NotFound, InvalidState, ConcurrencyConflict and ValidationFailure are
client-actionable and never retried. StorageUnavailable and
CacheUnavailable are transient infrastructure failures.
"""
from typing import Any, Optional


class OrderDeskError(Exception):
    """Base class for all order domain errors."""


class OrderNotFoundError(OrderDeskError):
    pass


class InvalidOrderStateError(OrderDeskError):
    """Illegal status transition or an order that cannot be cancelled."""

    def __init__(self, message: str, current: Any = None, requested: Any = None) -> None:
        self.current = current
        self.requested = requested
        super().__init__(message)


class ConcurrencyConflictError(OrderDeskError):
    """The stored version no longer matches the version the caller loaded."""

    def __init__(self, order_id: Any, expected_version: Optional[int]) -> None:
        self.order_id = order_id
        self.expected_version = expected_version
        super().__init__(
            f"Order {order_id} was modified concurrently (expected version {expected_version})"
        )


class ValidationFailureError(OrderDeskError):
    pass


class StorageUnavailableError(OrderDeskError):
    pass


class CacheUnavailableError(OrderDeskError):
    pass


class LockUnavailableError(OrderDeskError):
    """The distributed lock backend could not be reached."""
