"""
Order Service - orchestrates the order aggregate, its repository and the cache.

Caching policy:
- single orders are cache-aside on read and written through on update
- list, search and statistics results are cached briefly and dropped by
  tag whenever any order changes
- the cache is never authoritative; any cache failure is logged and the
  repository is used instead

Resilience:
- reads retry StorageUnavailableError with exponential backoff
- order creation retries, then returns a degraded response instead of failing
"""
import asyncio
from collections.abc import Awaitable, Callable
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError

from orderdesk.core.config import Settings, get_settings
from orderdesk.core.logging import get_logger
from orderdesk.domain.exceptions import (
    CacheUnavailableError,
    OrderNotFoundError,
    StorageUnavailableError,
    ValidationFailureError,
)
from orderdesk.domain.order import Order, OrderItem, OrderStatus, utcnow
from orderdesk.repositories.base import (
    OrderRepository,
    OrderSearchFilters,
    PageRequest,
    RepositoryScope,
)
from orderdesk.schemas.order import (
    CreateOrderRequest,
    OrderPage,
    OrderResponse,
    OrderStatistics,
    UpdateOrderStatusRequest,
)
from orderdesk.services import cache_keys
from orderdesk.services.cache import (
    ALL_ORDER_TAGS,
    ORDER_SEARCH,
    ORDER_STATISTICS,
    ORDERS,
    Cache,
)

logger = get_logger(__name__)

T = TypeVar("T")


class OrderService:
    """Order use cases under the caching and resilience policy."""

    def __init__(
        self,
        repository_scope: RepositoryScope,
        cache: Cache,
        settings: Optional[Settings] = None,
    ) -> None:
        self.repository_scope = repository_scope
        self.cache = cache
        self.settings = settings or get_settings()

    # ============================================
    # WRITES
    # ============================================

    async def create_order(self, request: CreateOrderRequest, actor_id: Optional[str] = None) -> OrderResponse:
        """
        Create a PENDING order from the request.

        When storage stays unavailable through every attempt, a degraded
        response (``degraded=True``, no ``order_id``) is returned instead
        of an error.
        """
        order = self._build_order(request)
        attempts = self.settings.create_retry_attempts

        for attempt in range(attempts):
            try:
                async with self.repository_scope() as repository:
                    saved = await repository.save(order)
                break
            except StorageUnavailableError as e:
                if attempt < attempts - 1:
                    logger.warning(
                        "Order creation failed, retrying",
                        customer_id=request.customer_id,
                        attempt=attempt + 1,
                        error=str(e),
                    )
                    await asyncio.sleep(self._backoff(attempt))
                    continue
                logger.error(
                    "Order creation unavailable, returning degraded response",
                    customer_id=request.customer_id,
                    attempts=attempts,
                    error=str(e),
                )
                return OrderResponse.degraded_for(request)

        await self._evict_tags(*ALL_ORDER_TAGS)

        logger.info(
            "Order created",
            order_id=str(saved.order_id),
            customer_id=saved.customer_id,
            total_amount=str(saved.total_amount),
            items=len(saved.items),
            actor=actor_id,
        )
        return OrderResponse.from_domain(saved)

    async def update_order_status(
        self,
        order_id: UUID,
        request: UpdateOrderStatusRequest,
        actor_id: Optional[str] = None,
    ) -> OrderResponse:
        def apply(order: Order) -> None:
            order.update_status(
                request.status,
                tracking_number=request.tracking_number,
                reason=request.cancellation_reason,
                actor=actor_id,
            )
            if request.notes:
                order.notes = request.notes

        saved, previous = await self._modify(order_id, apply)
        logger.info(
            "Order status updated",
            order_id=str(order_id),
            old_status=previous.value,
            new_status=saved.status.value,
            actor=actor_id,
        )
        return await self._write_through(saved)

    async def cancel_order(
        self,
        order_id: UUID,
        reason: Optional[str],
        actor_id: Optional[str],
    ) -> OrderResponse:
        saved, previous = await self._modify(
            order_id,
            lambda order: order.cancel(reason, actor_id),
        )
        logger.info(
            "Order cancelled",
            order_id=str(order_id),
            old_status=previous.value,
            reason=reason,
            actor=actor_id,
        )
        return await self._write_through(saved)

    async def _modify(
        self,
        order_id: UUID,
        mutate: Callable[[Order], None],
    ) -> tuple[Order, OrderStatus]:
        """Load, mutate and save one order in a single unit of work."""
        async with self.repository_scope() as repository:
            order = await repository.find_by_id_with_items(order_id)
            if order is None:
                raise OrderNotFoundError(f"Order not found with ID: {order_id}")
            previous = order.status
            mutate(order)
            saved = await repository.save(order)
        return saved, previous

    # ============================================
    # READS
    # ============================================

    async def get_order_by_id(self, order_id: UUID) -> OrderResponse:
        key = cache_keys.order_key(order_id)
        cached = await self._cache_get(key)
        if cached is not None:
            return OrderResponse.model_validate(cached)

        order = await self._read(lambda repository: repository.find_by_id_with_items(order_id))
        if order is None:
            raise OrderNotFoundError(f"Order not found with ID: {order_id}")

        response = OrderResponse.from_domain(order)
        await self._cache_put(key, response, self.settings.order_cache_ttl, ORDERS)
        return response

    async def get_order_by_id_for_customer(self, order_id: UUID, customer_id: str) -> OrderResponse:
        """Same as get_order_by_id, but another customer's order reads as missing."""
        owned = await self._read(
            lambda repository: repository.exists_for_customer(order_id, customer_id)
        )
        if not owned:
            raise OrderNotFoundError(f"Order not found with ID: {order_id}")
        return await self.get_order_by_id(order_id)

    async def get_all_orders(self, page: PageRequest) -> OrderPage:
        return await self._cached_page(
            cache_keys.all_orders_key(page),
            page,
            lambda repository: repository.find_all(page),
        )

    async def get_orders_by_customer(
        self,
        customer_id: str,
        page: PageRequest,
        status: Optional[OrderStatus] = None,
    ) -> OrderPage:
        if status is None:
            query = lambda repository: repository.find_by_customer_id(customer_id, page)  # noqa: E731
        else:
            query = lambda repository: repository.find_by_customer_id_and_status(  # noqa: E731
                customer_id, status, page
            )
        return await self._cached_page(
            cache_keys.customer_orders_key(customer_id, page, status),
            page,
            query,
        )

    async def get_orders_by_status(self, status: OrderStatus, page: PageRequest) -> OrderPage:
        return await self._cached_page(
            cache_keys.status_orders_key(status, page),
            page,
            lambda repository: repository.find_by_status(status, page),
        )

    async def search_orders(
        self,
        page: PageRequest,
        customer_id: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
    ) -> OrderPage:
        """
        Search with optional filters. Dates are whole UTC calendar days:
        ``start_date`` from its first instant, ``end_date`` through its last.
        """
        if start_date and end_date and start_date > end_date:
            raise ValidationFailureError("Start date must not be after end date")
        if min_amount is not None and max_amount is not None and min_amount > max_amount:
            raise ValidationFailureError("Minimum amount must not exceed maximum amount")

        filters = OrderSearchFilters(
            customer_id=customer_id,
            status=status,
            start_date=datetime.combine(start_date, time.min, tzinfo=timezone.utc) if start_date else None,
            end_date=datetime.combine(end_date, time.max, tzinfo=timezone.utc) if end_date else None,
            min_amount=min_amount,
            max_amount=max_amount,
        )
        key = cache_keys.search_orders_key(
            customer_id, status, start_date, end_date, min_amount, max_amount, page
        )
        return await self._cached_page(
            key,
            page,
            lambda repository: repository.search_orders(filters, page),
        )

    async def get_order_statistics(self, customer_id: str) -> OrderStatistics:
        key = cache_keys.statistics_key(customer_id)
        cached = await self._cache_get(key)
        if cached is not None:
            return OrderStatistics.model_validate(cached)

        async def collect(repository: OrderRepository) -> OrderStatistics:
            counts = await repository.count_by_status_for_customer(customer_id)
            aggregate = await repository.get_statistics_by_customer(customer_id)
            return OrderStatistics(
                customer_id=customer_id,
                total_orders=sum(counts.values()),
                pending_orders=counts.get(OrderStatus.PENDING, 0),
                processing_orders=counts.get(OrderStatus.PROCESSING, 0),
                shipped_orders=counts.get(OrderStatus.SHIPPED, 0),
                delivered_orders=counts.get(OrderStatus.DELIVERED, 0),
                cancelled_orders=counts.get(OrderStatus.CANCELLED, 0),
                total_amount=aggregate.total_amount if aggregate else Decimal("0"),
                average_amount=aggregate.average_amount if aggregate else Decimal("0"),
            )

        statistics = await self._read(collect)
        await self._cache_put(
            key, statistics, self.settings.order_statistics_cache_ttl, ORDER_STATISTICS
        )
        return statistics

    # ============================================
    # SWEEPS
    # ============================================

    async def process_pending_orders(self) -> int:
        """
        Move one batch of stale PENDING orders to PROCESSING.

        The claim skips rows held by a concurrent sweep, so replicas running
        this at the same time get disjoint batches.
        """
        cutoff = utcnow() - timedelta(minutes=self.settings.pending_order_cutoff_minutes)

        async with self.repository_scope() as repository:
            claimed = await repository.claim_orders_for_status_update(
                cutoff, self.settings.pending_order_batch_size
            )
            if not claimed:
                logger.info("No pending orders to process", cutoff=cutoff.isoformat())
                return 0

            updated = await repository.update_status_batch(
                [order.order_id for order in claimed],
                OrderStatus.PROCESSING,
                utcnow(),
            )

        await self._evict_tags(*ALL_ORDER_TAGS)
        logger.info("Pending orders processed", claimed=len(claimed), updated=updated)
        return updated

    async def delete_old_cancelled_orders(self, days_old: int) -> int:
        if days_old < 0:
            raise ValidationFailureError("days_old must not be negative")

        cutoff = utcnow() - timedelta(days=days_old)
        async with self.repository_scope() as repository:
            deleted = await repository.delete_cancelled_older_than(cutoff)

        await self._evict_tags(*ALL_ORDER_TAGS)
        logger.info("Old cancelled orders deleted", deleted=deleted, days_old=days_old)
        return deleted

    # ============================================
    # HELPERS
    # ============================================

    def _build_order(self, request: CreateOrderRequest) -> Order:
        try:
            order = Order(
                customer_id=request.customer_id,
                customer_email=request.customer_email,
                customer_name=request.customer_name,
                currency=request.currency,
                shipping_address=request.shipping_address,
                billing_address=request.billing_address,
                payment_method=request.payment_method,
                notes=request.notes,
            )
            for item in request.items:
                order.add_item(OrderItem(**item.model_dump()))
        except ValidationError as e:
            raise ValidationFailureError(f"Invalid order: {e.errors()[0]['msg']}") from e
        return order

    def _backoff(self, attempt: int) -> float:
        return self.settings.read_retry_backoff_seconds * (2 ** attempt)

    async def _read(self, query: Callable[[OrderRepository], Awaitable[T]]) -> T:
        """Run a read in its own scope, retrying transient storage failures."""
        attempts = self.settings.read_retry_attempts
        for attempt in range(attempts):
            try:
                async with self.repository_scope() as repository:
                    return await query(repository)
            except StorageUnavailableError as e:
                if attempt >= attempts - 1:
                    raise
                logger.warning(
                    "Order storage read failed, retrying",
                    attempt=attempt + 1,
                    error=str(e),
                )
                await asyncio.sleep(self._backoff(attempt))
        raise StorageUnavailableError("Max retries exceeded")

    async def _cached_page(
        self,
        key: str,
        page: PageRequest,
        query: Callable[[OrderRepository], Awaitable[tuple[list[Order], int]]],
    ) -> OrderPage:
        cached = await self._cache_get(key)
        if cached is not None:
            return OrderPage.model_validate(cached)

        orders, total = await self._read(query)
        result = OrderPage.build(orders, total, page)
        await self._cache_put(key, result, self.settings.order_search_cache_ttl, ORDER_SEARCH)
        return result

    async def _write_through(self, order: Order) -> OrderResponse:
        response = OrderResponse.from_domain(order)
        await self._cache_put(
            cache_keys.order_key(order.order_id),
            response,
            self.settings.order_cache_ttl,
            ORDERS,
        )
        await self._evict_tags(ORDER_SEARCH, ORDER_STATISTICS)
        return response

    async def _cache_get(self, key: str) -> Optional[Any]:
        try:
            return await self.cache.get(key)
        except CacheUnavailableError as e:
            logger.warning("Cache read failed, using storage", key=key, error=str(e))
            return None

    async def _cache_put(self, key: str, value: BaseModel, ttl: int, tag: str) -> None:
        try:
            await self.cache.put(key, value.model_dump(mode="json"), ttl, (tag,))
        except CacheUnavailableError as e:
            logger.warning("Cache write failed", key=key, error=str(e))

    async def _evict_tags(self, *tags: str) -> None:
        for tag in tags:
            try:
                await self.cache.evict_tag(tag)
            except CacheUnavailableError as e:
                logger.warning("Cache eviction failed", tag=tag, error=str(e))
