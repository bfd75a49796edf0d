"""
Order Pydantic schemas for request/response validation.

JSON uses camelCase (``totalAmount``); Python code may use either name.
"""
from datetime import datetime
from decimal import Decimal
from math import ceil
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from orderdesk.domain.order import Order, OrderItem, OrderStatus
from orderdesk.repositories.base import PageRequest

DEGRADED_CREATE_NOTE = "Order creation is temporarily unavailable. Please try again later."


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# Requests

class OrderItemRequest(CamelModel):
    """Schema for one line of a new order."""

    product_id: str = Field(..., min_length=1, max_length=50)
    product_name: str = Field(..., min_length=1, max_length=200)
    product_description: Optional[str] = None
    product_sku: Optional[str] = Field(None, max_length=50)
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0, max_digits=19, decimal_places=2)
    discount_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=19, decimal_places=2)
    tax_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=19, decimal_places=2)
    notes: Optional[str] = None


class CreateOrderRequest(CamelModel):
    """Schema for creating an order."""

    customer_id: str = Field(..., min_length=1, max_length=50)
    customer_email: Optional[str] = Field(None, max_length=100)
    customer_name: Optional[str] = Field(None, max_length=100)
    items: list[OrderItemRequest] = Field(..., min_length=1)
    currency: str = Field("USD", min_length=3, max_length=3)
    shipping_address: Optional[str] = None
    billing_address: Optional[str] = None
    payment_method: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None


class UpdateOrderStatusRequest(CamelModel):
    """Schema for moving an order to a new status."""

    status: OrderStatus
    tracking_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value


class CancelOrderRequest(CamelModel):
    reason: Optional[str] = None


# Responses

class OrderItemResponse(CamelModel):
    item_id: Optional[UUID] = None
    product_id: str
    product_name: str
    product_description: Optional[str] = None
    product_sku: Optional[str] = None
    quantity: int
    unit_price: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    subtotal: Decimal
    notes: Optional[str] = None

    @classmethod
    def from_domain(cls, item: OrderItem) -> "OrderItemResponse":
        return cls.model_validate(item.model_dump())


class OrderResponse(CamelModel):
    """
    Order view returned by the service.

    ``degraded`` is true only for the fallback returned when the order
    could not be stored; such a response has no ``order_id``.
    """

    order_id: Optional[UUID] = None
    customer_id: str
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    status: OrderStatus
    items: list[OrderItemResponse] = Field(default_factory=list)
    total_amount: Decimal = Decimal("0")
    currency: str = "USD"
    shipping_address: Optional[str] = None
    billing_address: Optional[str] = None
    payment_method: Optional[str] = None
    payment_status: Optional[str] = None
    notes: Optional[str] = None
    tracking_number: Optional[str] = None
    cancelled_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: Optional[int] = None
    degraded: bool = False

    @classmethod
    def from_domain(cls, order: Order) -> "OrderResponse":
        data = order.model_dump(exclude={"items"})
        data["items"] = [OrderItemResponse.from_domain(item) for item in order.items]
        return cls.model_validate(data)

    @classmethod
    def degraded_for(cls, request: CreateOrderRequest) -> "OrderResponse":
        return cls(
            customer_id=request.customer_id,
            customer_email=request.customer_email,
            customer_name=request.customer_name,
            status=OrderStatus.PENDING,
            currency=request.currency,
            notes=DEGRADED_CREATE_NOTE,
            degraded=True,
        )


class OrderPage(CamelModel):
    """Schema for paginated order responses."""

    content: list[OrderResponse]
    page: int
    size: int
    total_elements: int
    total_pages: int

    @classmethod
    def build(cls, orders: list[Order], total: int, page: PageRequest) -> "OrderPage":
        return cls(
            content=[OrderResponse.from_domain(order) for order in orders],
            page=page.page,
            size=page.size,
            total_elements=total,
            total_pages=ceil(total / page.size) if total else 0,
        )


class OrderStatistics(CamelModel):
    customer_id: str
    total_orders: int = 0
    pending_orders: int = 0
    processing_orders: int = 0
    shipped_orders: int = 0
    delivered_orders: int = 0
    cancelled_orders: int = 0
    total_amount: Decimal = Decimal("0")
    average_amount: Decimal = Decimal("0")
