"""
Pydantic schemas package.
"""
from orderdesk.schemas.order import (
    CancelOrderRequest,
    CreateOrderRequest,
    OrderItemRequest,
    OrderItemResponse,
    OrderPage,
    OrderResponse,
    OrderStatistics,
    UpdateOrderStatusRequest,
)

__all__ = [
    # Requests
    "CreateOrderRequest",
    "OrderItemRequest",
    "UpdateOrderStatusRequest",
    "CancelOrderRequest",
    # Responses
    "OrderResponse",
    "OrderItemResponse",
    "OrderPage",
    "OrderStatistics",
]
