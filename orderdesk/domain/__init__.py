"""
Order domain: the aggregate, its status machine and the error taxonomy.
"""
from orderdesk.domain.exceptions import (
    CacheUnavailableError,
    ConcurrencyConflictError,
    InvalidOrderStateError,
    LockUnavailableError,
    OrderDeskError,
    OrderNotFoundError,
    StorageUnavailableError,
    ValidationFailureError,
)
from orderdesk.domain.order import Order, OrderItem, OrderStatus

__all__ = [
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderDeskError",
    "OrderNotFoundError",
    "InvalidOrderStateError",
    "ConcurrencyConflictError",
    "ValidationFailureError",
    "StorageUnavailableError",
    "CacheUnavailableError",
    "LockUnavailableError",
]
