"""
In-process order storage.

Used when ``STORAGE_BACKEND=memory`` (local demos without PostgreSQL) and
by the test suite. Writes are applied immediately; there is no rollback.
Claims taken by ``claim_orders_for_status_update`` belong to the scope
that took them and are released when that scope exits, which mirrors
``FOR UPDATE SKIP LOCKED`` on the SQL backend.
"""
import asyncio
import itertools
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from orderdesk.domain.exceptions import ConcurrencyConflictError, OrderNotFoundError
from orderdesk.domain.order import ZERO, Order, OrderStatus, utcnow
from orderdesk.repositories.base import (
    CustomerOrderAggregate,
    OrderPageResult,
    OrderRepository,
    OrderSearchFilters,
    PageRequest,
)

CENTS = Decimal("0.01")


class InMemoryOrderStore:
    """Shared state behind every InMemoryOrderRepository scope."""

    def __init__(self) -> None:
        self.orders: dict[UUID, Order] = {}
        self.claims: dict[UUID, int] = {}
        self.lock = asyncio.Lock()
        self._scope_ids = itertools.count(1)

    @asynccontextmanager
    async def scope(self) -> AsyncIterator["InMemoryOrderRepository"]:
        scope_id = next(self._scope_ids)
        try:
            yield InMemoryOrderRepository(self, scope_id)
        finally:
            async with self.lock:
                for order_id in [oid for oid, owner in self.claims.items() if owner == scope_id]:
                    del self.claims[order_id]

    def clear(self) -> None:
        self.orders.clear()
        self.claims.clear()


class InMemoryOrderRepository(OrderRepository):
    def __init__(self, store: InMemoryOrderStore, scope_id: int = 0) -> None:
        self.store = store
        self.scope_id = scope_id

    async def save(self, order: Order) -> Order:
        async with self.store.lock:
            now = utcnow()
            saved = order.model_copy(deep=True)

            if order.order_id is None or order.version is None:
                saved.order_id = order.order_id or uuid4()
                saved.created_at = order.created_at or now
                saved.version = 0
            else:
                stored = self.store.orders.get(order.order_id)
                if stored is None:
                    raise OrderNotFoundError(f"Order not found with ID: {order.order_id}")
                if stored.version != order.version:
                    raise ConcurrencyConflictError(order.order_id, order.version)
                saved.created_at = stored.created_at
                saved.version = order.version + 1

            saved.updated_at = now
            for item in saved.items:
                if item.item_id is None:
                    item.item_id = uuid4()
                if item.created_at is None:
                    item.created_at = now
                item.updated_at = now

            self.store.orders[saved.order_id] = saved
            return saved.model_copy(deep=True)

    async def find_by_id(self, order_id: UUID) -> Optional[Order]:
        return await self.find_by_id_with_items(order_id)

    async def find_by_id_with_items(self, order_id: UUID) -> Optional[Order]:
        order = self.store.orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def exists_for_customer(self, order_id: UUID, customer_id: str) -> bool:
        order = self.store.orders.get(order_id)
        return order is not None and order.customer_id == customer_id

    def _page(self, predicate: Callable[[Order], bool], page: PageRequest) -> OrderPageResult:
        matches = sorted(
            (order for order in self.store.orders.values() if predicate(order)),
            key=lambda order: (order.created_at, str(order.order_id)),
            reverse=page.descending,
        )
        window = matches[page.offset:page.offset + page.size]
        return [order.model_copy(deep=True) for order in window], len(matches)

    async def find_all(self, page: PageRequest) -> OrderPageResult:
        return self._page(lambda order: True, page)

    async def find_by_customer_id(self, customer_id: str, page: PageRequest) -> OrderPageResult:
        return self._page(lambda order: order.customer_id == customer_id, page)

    async def find_by_status(self, status: OrderStatus, page: PageRequest) -> OrderPageResult:
        return self._page(lambda order: order.status is status, page)

    async def find_by_customer_id_and_status(
        self,
        customer_id: str,
        status: OrderStatus,
        page: PageRequest,
    ) -> OrderPageResult:
        return self._page(
            lambda order: order.customer_id == customer_id and order.status is status,
            page,
        )

    async def search_orders(self, filters: OrderSearchFilters, page: PageRequest) -> OrderPageResult:
        def matches(order: Order) -> bool:
            if filters.customer_id is not None and order.customer_id != filters.customer_id:
                return False
            if filters.status is not None and order.status is not filters.status:
                return False
            if filters.start_date is not None and order.created_at < filters.start_date:
                return False
            if filters.end_date is not None and order.created_at > filters.end_date:
                return False
            if filters.min_amount is not None and order.total_amount < filters.min_amount:
                return False
            if filters.max_amount is not None and order.total_amount > filters.max_amount:
                return False
            return True

        return self._page(matches, page)

    async def claim_orders_for_status_update(self, cutoff: datetime, batch_size: int) -> list[Order]:
        async with self.store.lock:
            candidates = sorted(
                (
                    order
                    for order in self.store.orders.values()
                    if order.status is OrderStatus.PENDING
                    and order.created_at < cutoff
                    and self.store.claims.get(order.order_id, self.scope_id) == self.scope_id
                ),
                key=lambda order: order.created_at,
            )[:batch_size]
            for order in candidates:
                self.store.claims[order.order_id] = self.scope_id
            return [order.model_copy(deep=True) for order in candidates]

    async def update_status_batch(
        self,
        order_ids: Sequence[UUID],
        new_status: OrderStatus,
        timestamp: datetime,
    ) -> int:
        updated = 0
        async with self.store.lock:
            for order_id in order_ids:
                order = self.store.orders.get(order_id)
                if order is None or not order.status.can_transition_to(new_status):
                    continue
                order.update_status(
                    new_status,
                    reason="Cancelled by batch status update",
                    actor="system",
                    at=timestamp,
                )
                order.updated_at = timestamp
                order.version += 1
                updated += 1
        return updated

    async def delete_cancelled_older_than(self, cutoff: datetime) -> int:
        async with self.store.lock:
            expired = [
                order_id
                for order_id, order in self.store.orders.items()
                if order.status is OrderStatus.CANCELLED
                and order.cancelled_at is not None
                and order.cancelled_at < cutoff
            ]
            for order_id in expired:
                del self.store.orders[order_id]
            return len(expired)

    def _customer_orders(self, customer_id: str) -> Iterable[Order]:
        return (order for order in self.store.orders.values() if order.customer_id == customer_id)

    async def count_by_status_for_customer(self, customer_id: str) -> dict[OrderStatus, int]:
        counts = {status: 0 for status in OrderStatus}
        for order in self._customer_orders(customer_id):
            counts[order.status] += 1
        return counts

    async def get_statistics_by_customer(self, customer_id: str) -> Optional[CustomerOrderAggregate]:
        amounts = [order.total_amount for order in self._customer_orders(customer_id)]
        if not amounts:
            return None
        total = sum(amounts, ZERO)
        return CustomerOrderAggregate(
            customer_id=customer_id,
            order_count=len(amounts),
            total_amount=total.quantize(CENTS),
            average_amount=(total / len(amounts)).quantize(CENTS),
        )
