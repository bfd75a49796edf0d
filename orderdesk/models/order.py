"""
Order and order item tables.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orderdesk.core.database import Base


class OrderRecord(Base):
    """Persisted order row. Items are owned through a cascading relationship."""

    __tablename__ = "orders"
    __table_args__ = (
        Index("idx_order_status_created", "status", "created_at"),
    )

    order_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Customer (denormalized)
    customer_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(100))
    customer_name: Mapped[Optional[str]] = mapped_column(String(100))

    # Status and money
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING", index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(19, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    # Descriptive
    shipping_address: Mapped[Optional[str]] = mapped_column(Text)
    billing_address: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100))
    payment_method: Mapped[Optional[str]] = mapped_column(String(50))
    payment_status: Mapped[str] = mapped_column(String(20), default="PENDING")

    # Cancellation
    cancelled_reason: Mapped[Optional[str]] = mapped_column(Text)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(100))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Lifecycle timestamps
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Optimistic concurrency counter, compared explicitly by the repository
    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    items: Mapped[list["OrderItemRecord"]] = relationship(
        "OrderItemRecord",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OrderItemRecord.position",
    )

    def __repr__(self) -> str:
        return f"<OrderRecord {self.order_id} {self.status}>"


class OrderItemRecord(Base):
    """Persisted line item row."""

    __tablename__ = "order_items"

    item_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("orders.order_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Keeps the order's item sequence stable across reloads
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    product_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    product_description: Mapped[Optional[str]] = mapped_column(Text)
    product_sku: Mapped[Optional[str]] = mapped_column(String(50))

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(19, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(19, 2), default=0)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(19, 2), default=0)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(19, 2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    order: Mapped["OrderRecord"] = relationship("OrderRecord", back_populates="items")

    def __repr__(self) -> str:
        return f"<OrderItemRecord {self.product_id} x{self.quantity}>"
