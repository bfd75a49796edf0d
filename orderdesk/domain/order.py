"""
Order aggregate - an order and the line items it exclusively owns.

The aggregate enforces its own invariants independent of storage:
``total_amount`` is the sum of item subtotals, status only moves along the
transition graph, and cancellation fields are set only on cancelled orders.
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from orderdesk.domain.exceptions import InvalidOrderStateError, ValidationFailureError

ZERO = Decimal("0")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @property
    def display_name(self) -> str:
        return _STATUS_INFO[self][0]

    @property
    def description(self) -> str:
        return _STATUS_INFO[self][1]

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self]

    def can_transition_to(self, new_status: "OrderStatus") -> bool:
        return new_status in _TRANSITIONS[self]

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Parse a status name case-insensitively."""
        try:
            return cls(value.strip().upper())
        except (AttributeError, ValueError):
            raise ValidationFailureError(f"Invalid order status: {value}") from None


_STATUS_INFO: dict[OrderStatus, tuple[str, str]] = {
    OrderStatus.PENDING: ("Pending", "Order has been placed and is awaiting processing"),
    OrderStatus.PROCESSING: ("Processing", "Order is being processed"),
    OrderStatus.SHIPPED: ("Shipped", "Order has been shipped"),
    OrderStatus.DELIVERED: ("Delivered", "Order has been delivered to customer"),
    OrderStatus.CANCELLED: ("Cancelled", "Order has been cancelled"),
}

# Directed and acyclic; DELIVERED and CANCELLED are terminal.
_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Statuses for which cancel() is refused. See can_be_cancelled().
_NON_CANCELLABLE: frozenset[OrderStatus] = frozenset(
    {OrderStatus.PENDING, OrderStatus.PROCESSING}
)


class OrderItem(BaseModel):
    """A line item. Only reachable through its parent order."""

    model_config = ConfigDict(validate_assignment=True)

    item_id: Optional[UUID] = None
    product_id: str
    product_name: str
    product_description: Optional[str] = None
    product_sku: Optional[str] = None
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    discount_amount: Decimal = Field(default=ZERO, ge=0)
    tax_amount: Decimal = Field(default=ZERO, ge=0)
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def subtotal(self) -> Decimal:
        """unit_price * quantity - discount_amount + tax_amount"""
        return self.unit_price * self.quantity - self.discount_amount + self.tax_amount

    @model_validator(mode="after")
    def _subtotal_not_negative(self) -> "OrderItem":
        if self.subtotal < ZERO:
            raise ValueError("Discount amount exceeds the item's price and tax")
        return self

    def update_quantity(self, new_quantity: int) -> None:
        if new_quantity <= 0:
            raise ValidationFailureError("Quantity must be greater than zero")
        self.quantity = new_quantity


class Order(BaseModel):
    """Order aggregate root."""

    order_id: Optional[UUID] = None
    customer_id: str
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    items: list[OrderItem] = Field(default_factory=list)
    status: OrderStatus = OrderStatus.PENDING
    currency: str = "USD"
    shipping_address: Optional[str] = None
    billing_address: Optional[str] = None
    payment_method: Optional[str] = None
    payment_status: str = "PENDING"
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

    # Items

    def add_item(self, item: OrderItem) -> None:
        self.items.append(item)

    def remove_item(self, item: OrderItem) -> None:
        """Remove an item; removal from the order is the only way an item is deleted."""
        for index, existing in enumerate(self.items):
            if existing is item:
                del self.items[index]
                return
        raise ValidationFailureError("Item does not belong to this order")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_amount(self) -> Decimal:
        """Sum of item subtotals, derived on every read so it cannot drift."""
        return sum((item.subtotal for item in self.items), ZERO)

    def recalculate_total(self) -> Decimal:
        return self.total_amount

    # Lifecycle

    def can_be_cancelled(self) -> bool:
        """
        True when the order is neither PENDING nor PROCESSING.

        NOTE: this is the inverse of what most order systems allow (early
        orders are usually the easiest to cancel). It is kept as-is until
        product owners confirm the intended policy; PENDING and PROCESSING
        orders can still reach CANCELLED through update_status().
        """
        return self.status not in _NON_CANCELLABLE

    def cancel(
        self,
        reason: Optional[str],
        cancelled_by: Optional[str],
        at: Optional[datetime] = None,
    ) -> None:
        if not self.can_be_cancelled():
            raise InvalidOrderStateError(
                f"Order in {self.status.value} status cannot be cancelled",
                current=self.status,
                requested=OrderStatus.CANCELLED,
            )
        self._mark_cancelled(reason, cancelled_by, at or utcnow())

    def update_status(
        self,
        new_status: OrderStatus,
        *,
        tracking_number: Optional[str] = None,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> None:
        """
        Apply a transition from the status graph and stamp its timestamp.

        Raises InvalidOrderStateError without touching the order when the
        transition is not an edge of the graph.
        """
        if not self.status.can_transition_to(new_status):
            raise InvalidOrderStateError(
                f"Invalid status transition from {self.status.value} to {new_status.value}",
                current=self.status,
                requested=new_status,
            )

        now = at or utcnow()
        if new_status is OrderStatus.CANCELLED:
            self._mark_cancelled(reason or "Status changed to CANCELLED", actor or "system", now)
            return

        self.status = new_status
        if new_status is OrderStatus.PROCESSING:
            self.processed_at = now
        elif new_status is OrderStatus.SHIPPED:
            self.shipped_at = now
            if tracking_number is not None:
                self.tracking_number = tracking_number
        elif new_status is OrderStatus.DELIVERED:
            self.delivered_at = now

    def _mark_cancelled(self, reason: Optional[str], cancelled_by: Optional[str], at: datetime) -> None:
        self.status = OrderStatus.CANCELLED
        self.cancelled_reason = reason
        self.cancelled_by = cancelled_by
        self.cancelled_at = at

    def belongs_to(self, customer_id: str) -> bool:
        return self.customer_id == customer_id

    def __repr__(self) -> str:
        return f"<Order {self.order_id} {self.status.value}>"
