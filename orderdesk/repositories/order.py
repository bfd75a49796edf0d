"""
SQLAlchemy implementation of the order repository.
"""
import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from orderdesk.core.config import settings
from orderdesk.core.database import async_session_factory
from orderdesk.core.logging import get_logger
from orderdesk.domain.exceptions import (
    ConcurrencyConflictError,
    OrderNotFoundError,
    StorageUnavailableError,
)
from orderdesk.domain.order import Order, OrderItem, OrderStatus, utcnow
from orderdesk.models.order import OrderItemRecord, OrderRecord
from orderdesk.repositories.base import (
    CustomerOrderAggregate,
    OrderPageResult,
    OrderRepository,
    OrderSearchFilters,
    PageRequest,
    RepositoryScope,
)

logger = get_logger(__name__)

CENTS = Decimal("0.01")


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """Drivers without timezone support hand back naive UTC values."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value)).quantize(CENTS)


class SQLAlchemyOrderRepository(OrderRepository):
    """Order repository bound to one AsyncSession (one transaction)."""

    def __init__(self, session: AsyncSession, timeout: Optional[float] = None) -> None:
        self.session = session
        self.timeout = timeout if timeout is not None else settings.storage_timeout_seconds

    async def _execute(self, statement: Any, params: Any = None) -> Any:
        """Execute with a bounded timeout, translating transient failures."""
        try:
            if params is None:
                call = self.session.execute(statement)
            else:
                call = self.session.execute(statement, params)
            return await asyncio.wait_for(call, timeout=self.timeout)
        except (asyncio.TimeoutError, OperationalError, InterfaceError) as e:
            raise StorageUnavailableError(f"Order storage unavailable: {e}") from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise StorageUnavailableError(f"Order storage connection lost: {e}") from e
            raise

    # Writes

    async def save(self, order: Order) -> Order:
        if order.order_id is None or order.version is None:
            return await self._insert(order)
        return await self._update(order)

    async def _insert(self, order: Order) -> Order:
        now = utcnow()
        saved = order.model_copy(deep=True)
        saved.order_id = order.order_id or uuid4()
        saved.created_at = order.created_at or now
        saved.updated_at = now
        saved.version = 0
        saved.items = self._stamp_items(saved.items, now)

        await self._execute(insert(OrderRecord).values(**self._order_values(saved)))
        await self._insert_items(saved)

        logger.debug("Order inserted", order_id=str(saved.order_id))
        return saved

    async def _update(self, order: Order) -> Order:
        now = utcnow()
        saved = order.model_copy(deep=True)
        saved.updated_at = now
        saved.version = order.version + 1
        saved.items = self._stamp_items(saved.items, now)

        values = self._order_values(saved)
        values.pop("order_id")
        values.pop("created_at")
        stmt = (
            update(OrderRecord)
            .where(
                OrderRecord.order_id == order.order_id,
                OrderRecord.version == order.version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(stmt)

        if result.rowcount == 0:
            exists = await self._execute(
                select(OrderRecord.order_id).where(OrderRecord.order_id == order.order_id)
            )
            if exists.first() is None:
                raise OrderNotFoundError(f"Order not found with ID: {order.order_id}")
            raise ConcurrencyConflictError(order.order_id, order.version)

        # Items are owned by value: the stored set is replaced with the current one
        await self._execute(
            delete(OrderItemRecord)
            .where(OrderItemRecord.order_id == order.order_id)
            .execution_options(synchronize_session=False)
        )
        await self._insert_items(saved)
        return saved

    async def _insert_items(self, order: Order) -> None:
        if not order.items:
            return
        rows = [
            {
                "item_id": item.item_id,
                "order_id": order.order_id,
                "position": position,
                "product_id": item.product_id,
                "product_name": item.product_name,
                "product_description": item.product_description,
                "product_sku": item.product_sku,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "discount_amount": item.discount_amount,
                "tax_amount": item.tax_amount,
                "subtotal": item.subtotal,
                "notes": item.notes,
                "created_at": item.created_at,
                "updated_at": item.updated_at,
            }
            for position, item in enumerate(order.items)
        ]
        await self._execute(insert(OrderItemRecord), rows)

    @staticmethod
    def _stamp_items(items: list[OrderItem], now: datetime) -> list[OrderItem]:
        return [
            item.model_copy(
                update={
                    "item_id": item.item_id or uuid4(),
                    "created_at": item.created_at or now,
                    "updated_at": now,
                }
            )
            for item in items
        ]

    @staticmethod
    def _order_values(order: Order) -> dict[str, Any]:
        return {
            "order_id": order.order_id,
            "customer_id": order.customer_id,
            "customer_email": order.customer_email,
            "customer_name": order.customer_name,
            "status": order.status.value,
            "total_amount": order.total_amount,
            "currency": order.currency,
            "shipping_address": order.shipping_address,
            "billing_address": order.billing_address,
            "notes": order.notes,
            "tracking_number": order.tracking_number,
            "payment_method": order.payment_method,
            "payment_status": order.payment_status,
            "cancelled_reason": order.cancelled_reason,
            "cancelled_by": order.cancelled_by,
            "cancelled_at": order.cancelled_at,
            "processed_at": order.processed_at,
            "shipped_at": order.shipped_at,
            "delivered_at": order.delivered_at,
            "created_at": order.created_at,
            "updated_at": order.updated_at,
            "version": order.version,
        }

    # Reads

    def _select_orders(self):
        return (
            select(OrderRecord)
            .options(selectinload(OrderRecord.items))
            .execution_options(populate_existing=True)
        )

    async def find_by_id(self, order_id: UUID) -> Optional[Order]:
        # Items always travel with the order; the aggregate is one unit.
        return await self.find_by_id_with_items(order_id)

    async def find_by_id_with_items(self, order_id: UUID) -> Optional[Order]:
        result = await self._execute(
            self._select_orders().where(OrderRecord.order_id == order_id)
        )
        record = result.scalar_one_or_none()
        return self._to_domain(record) if record else None

    async def exists_for_customer(self, order_id: UUID, customer_id: str) -> bool:
        result = await self._execute(
            select(OrderRecord.order_id).where(
                OrderRecord.order_id == order_id,
                OrderRecord.customer_id == customer_id,
            )
        )
        return result.first() is not None

    async def _page(self, criteria: list[Any], page: PageRequest) -> OrderPageResult:
        count_stmt = select(func.count()).select_from(OrderRecord)
        stmt = self._select_orders()
        if criteria:
            count_stmt = count_stmt.where(*criteria)
            stmt = stmt.where(*criteria)

        total = (await self._execute(count_stmt)).scalar() or 0

        if page.descending:
            ordering = (OrderRecord.created_at.desc(), OrderRecord.order_id.desc())
        else:
            ordering = (OrderRecord.created_at.asc(), OrderRecord.order_id.asc())
        stmt = stmt.order_by(*ordering).offset(page.offset).limit(page.size)

        result = await self._execute(stmt)
        return [self._to_domain(record) for record in result.scalars().all()], total

    async def find_all(self, page: PageRequest) -> OrderPageResult:
        return await self._page([], page)

    async def find_by_customer_id(self, customer_id: str, page: PageRequest) -> OrderPageResult:
        return await self._page([OrderRecord.customer_id == customer_id], page)

    async def find_by_status(self, status: OrderStatus, page: PageRequest) -> OrderPageResult:
        return await self._page([OrderRecord.status == status.value], page)

    async def find_by_customer_id_and_status(
        self,
        customer_id: str,
        status: OrderStatus,
        page: PageRequest,
    ) -> OrderPageResult:
        return await self._page(
            [OrderRecord.customer_id == customer_id, OrderRecord.status == status.value],
            page,
        )

    async def search_orders(self, filters: OrderSearchFilters, page: PageRequest) -> OrderPageResult:
        criteria: list[Any] = []
        if filters.customer_id is not None:
            criteria.append(OrderRecord.customer_id == filters.customer_id)
        if filters.status is not None:
            criteria.append(OrderRecord.status == filters.status.value)
        if filters.start_date is not None:
            criteria.append(OrderRecord.created_at >= filters.start_date)
        if filters.end_date is not None:
            criteria.append(OrderRecord.created_at <= filters.end_date)
        if filters.min_amount is not None:
            criteria.append(OrderRecord.total_amount >= filters.min_amount)
        if filters.max_amount is not None:
            criteria.append(OrderRecord.total_amount <= filters.max_amount)
        return await self._page(criteria, page)

    # Sweeps

    async def claim_orders_for_status_update(self, cutoff: datetime, batch_size: int) -> list[Order]:
        stmt = (
            self._select_orders()
            .where(
                OrderRecord.status == OrderStatus.PENDING.value,
                OrderRecord.created_at < cutoff,
            )
            .order_by(OrderRecord.created_at.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        result = await self._execute(stmt)
        return [self._to_domain(record) for record in result.scalars().all()]

    async def update_status_batch(
        self,
        order_ids: Sequence[UUID],
        new_status: OrderStatus,
        timestamp: datetime,
    ) -> int:
        if not order_ids:
            return 0

        allowed_from = [status.value for status in OrderStatus if status.can_transition_to(new_status)]
        values: dict[str, Any] = {
            "status": new_status.value,
            "updated_at": timestamp,
            "version": OrderRecord.version + 1,
        }
        if new_status is OrderStatus.PROCESSING:
            values["processed_at"] = timestamp
        elif new_status is OrderStatus.SHIPPED:
            values["shipped_at"] = timestamp
        elif new_status is OrderStatus.DELIVERED:
            values["delivered_at"] = timestamp
        elif new_status is OrderStatus.CANCELLED:
            values.update(
                cancelled_at=timestamp,
                cancelled_reason="Cancelled by batch status update",
                cancelled_by="system",
            )

        stmt = (
            update(OrderRecord)
            .where(
                OrderRecord.order_id.in_(list(order_ids)),
                OrderRecord.status.in_(allowed_from),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(stmt)
        return result.rowcount or 0

    async def delete_cancelled_older_than(self, cutoff: datetime) -> int:
        expired = (
            select(OrderRecord.order_id)
            .where(
                OrderRecord.status == OrderStatus.CANCELLED.value,
                OrderRecord.cancelled_at < cutoff,
            )
        )
        # Not every backend enforces ON DELETE CASCADE, so children go first
        await self._execute(
            delete(OrderItemRecord)
            .where(OrderItemRecord.order_id.in_(expired))
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(
            delete(OrderRecord)
            .where(
                OrderRecord.status == OrderStatus.CANCELLED.value,
                OrderRecord.cancelled_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # Statistics

    async def count_by_status_for_customer(self, customer_id: str) -> dict[OrderStatus, int]:
        result = await self._execute(
            select(OrderRecord.status, func.count())
            .where(OrderRecord.customer_id == customer_id)
            .group_by(OrderRecord.status)
        )
        counts = {status: 0 for status in OrderStatus}
        for status, count in result.all():
            counts[OrderStatus(status)] = count
        return counts

    async def get_statistics_by_customer(self, customer_id: str) -> Optional[CustomerOrderAggregate]:
        result = await self._execute(
            select(
                OrderRecord.customer_id,
                func.count(),
                func.sum(OrderRecord.total_amount),
                func.avg(OrderRecord.total_amount),
            )
            .where(OrderRecord.customer_id == customer_id)
            .group_by(OrderRecord.customer_id)
        )
        row = result.first()
        if row is None:
            return None
        return CustomerOrderAggregate(
            customer_id=row[0],
            order_count=row[1],
            total_amount=_to_decimal(row[2]),
            average_amount=_to_decimal(row[3]),
        )

    # Mapping

    @staticmethod
    def _to_domain(record: OrderRecord) -> Order:
        """DB row -> aggregate"""
        return Order(
            order_id=record.order_id,
            customer_id=record.customer_id,
            customer_email=record.customer_email,
            customer_name=record.customer_name,
            items=[
                OrderItem(
                    item_id=item.item_id,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    product_description=item.product_description,
                    product_sku=item.product_sku,
                    quantity=item.quantity,
                    unit_price=_to_decimal(item.unit_price),
                    discount_amount=_to_decimal(item.discount_amount),
                    tax_amount=_to_decimal(item.tax_amount),
                    notes=item.notes,
                    created_at=_aware(item.created_at),
                    updated_at=_aware(item.updated_at),
                )
                for item in record.items
            ],
            status=OrderStatus(record.status),
            currency=record.currency,
            shipping_address=record.shipping_address,
            billing_address=record.billing_address,
            payment_method=record.payment_method,
            payment_status=record.payment_status,
            notes=record.notes,
            tracking_number=record.tracking_number,
            cancelled_reason=record.cancelled_reason,
            cancelled_by=record.cancelled_by,
            cancelled_at=_aware(record.cancelled_at),
            processed_at=_aware(record.processed_at),
            shipped_at=_aware(record.shipped_at),
            delivered_at=_aware(record.delivered_at),
            created_at=_aware(record.created_at),
            updated_at=_aware(record.updated_at),
            version=record.version,
        )


def sqlalchemy_repository_scope(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> RepositoryScope:
    """
    Build a scope factory: each ``async with scope() as repo`` is one
    transaction that commits on success and rolls back on error.
    """
    factory = session_factory or async_session_factory

    @asynccontextmanager
    async def scope() -> AsyncIterator[OrderRepository]:
        async with factory() as session:
            try:
                yield SQLAlchemyOrderRepository(session)
                await session.commit()
            except (OperationalError, InterfaceError) as e:
                await session.rollback()
                raise StorageUnavailableError(f"Order storage unavailable: {e}") from e
            except Exception:
                await session.rollback()
                raise

    return scope
