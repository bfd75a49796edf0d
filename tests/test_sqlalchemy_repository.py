"""
Tests for the SQLAlchemy order repository against SQLite (aiosqlite).
"""
import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from orderdesk.core.database import Base
from orderdesk.domain.exceptions import (
    ConcurrencyConflictError,
    OrderNotFoundError,
    StorageUnavailableError,
)
from orderdesk.domain.order import OrderItem, OrderStatus, utcnow
from orderdesk.repositories.base import OrderSearchFilters, PageRequest
from orderdesk.repositories.order import SQLAlchemyOrderRepository, sqlalchemy_repository_scope
from tests.factories import make_order


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def scope(session_factory):
    return sqlalchemy_repository_scope(session_factory)


class TestSave:
    """Tests for insert, optimistic update and item replacement."""

    async def test_round_trip(self, scope):
        order = make_order(unit_price="12.34")
        order.add_item(
            OrderItem(product_id="PROD-2", product_name="Cable", quantity=3, unit_price=Decimal("1.50"))
        )

        async with scope() as repository:
            saved = await repository.save(order)
        async with scope() as repository:
            loaded = await repository.find_by_id_with_items(saved.order_id)

        assert loaded.version == 0
        assert loaded.total_amount == Decimal("16.84")
        assert [item.product_id for item in loaded.items] == ["PROD-1", "PROD-2"]
        assert loaded.items[1].subtotal == Decimal("4.50")
        assert loaded.created_at.tzinfo is not None

    async def test_update_replaces_items_and_bumps_version(self, scope):
        async with scope() as repository:
            saved = await repository.save(make_order())

        saved.remove_item(saved.items[0])
        saved.add_item(
            OrderItem(product_id="PROD-9", product_name="Lamp", quantity=2, unit_price=Decimal("20.00"))
        )
        saved.update_status(OrderStatus.PROCESSING)
        async with scope() as repository:
            updated = await repository.save(saved)
        async with scope() as repository:
            loaded = await repository.find_by_id(saved.order_id)

        assert updated.version == 1
        assert loaded.version == 1
        assert loaded.status is OrderStatus.PROCESSING
        assert [item.product_id for item in loaded.items] == ["PROD-9"]
        assert loaded.total_amount == Decimal("40.00")

    async def test_stale_version_conflicts(self, scope):
        async with scope() as repository:
            saved = await repository.save(make_order())

        first = saved.model_copy(deep=True)
        second = saved.model_copy(deep=True)
        async with scope() as repository:
            await repository.save(first)

        with pytest.raises(ConcurrencyConflictError):
            async with scope() as repository:
                await repository.save(second)

    async def test_update_of_missing_order(self, scope):
        order = make_order()
        order.order_id = uuid4()
        order.version = 3

        with pytest.raises(OrderNotFoundError):
            async with scope() as repository:
                await repository.save(order)

    async def test_find_missing_returns_none(self, scope):
        async with scope() as repository:
            assert await repository.find_by_id(uuid4()) is None


class TestQueries:
    """Tests for paginated and filtered reads."""

    async def test_pagination_and_ordering(self, scope):
        async with scope() as repository:
            for hours in (3, 2, 1):
                await repository.save(make_order(age=timedelta(hours=hours)))

            first, total = await repository.find_all(PageRequest(page=0, size=2))
            second, _ = await repository.find_all(PageRequest(page=1, size=2))

        assert total == 3
        assert len(first) == 2
        assert len(second) == 1
        assert first[0].created_at > first[1].created_at > second[0].created_at

    async def test_search(self, scope):
        now = utcnow()
        async with scope() as repository:
            await repository.save(make_order("CUST-001", unit_price="10.00"))
            await repository.save(make_order("CUST-001", unit_price="75.00"))
            await repository.save(make_order("CUST-001", unit_price="75.00", age=timedelta(days=5)))
            await repository.save(make_order("CUST-002", unit_price="75.00"))

            orders, total = await repository.search_orders(
                OrderSearchFilters(
                    customer_id="CUST-001",
                    status=OrderStatus.PENDING,
                    start_date=now - timedelta(days=1),
                    end_date=now + timedelta(days=1),
                    min_amount=Decimal("50"),
                    max_amount=Decimal("100"),
                ),
                PageRequest(),
            )

        assert total == 1
        assert orders[0].total_amount == Decimal("75.00")

    async def test_by_status(self, scope):
        async with scope() as repository:
            await repository.save(make_order(status=OrderStatus.SHIPPED))
            await repository.save(make_order())

            orders, total = await repository.find_by_status(OrderStatus.SHIPPED, PageRequest())

        assert total == 1
        assert orders[0].status is OrderStatus.SHIPPED


class TestSweeps:
    """Tests for claims, batch updates and cleanup."""

    async def test_claim_and_batch_update(self, scope):
        async with scope() as repository:
            stale = await repository.save(make_order(age=timedelta(minutes=10)))
            fresh = await repository.save(make_order(age=timedelta(minutes=1)))

        async with scope() as repository:
            claimed = await repository.claim_orders_for_status_update(
                utcnow() - timedelta(minutes=5), 100
            )
            count = await repository.update_status_batch(
                [order.order_id for order in claimed], OrderStatus.PROCESSING, utcnow()
            )

        async with scope() as repository:
            stale_after = await repository.find_by_id(stale.order_id)
            fresh_after = await repository.find_by_id(fresh.order_id)

        assert [order.order_id for order in claimed] == [stale.order_id]
        assert count == 1
        assert stale_after.status is OrderStatus.PROCESSING
        assert stale_after.processed_at is not None
        assert stale_after.version == 1
        assert fresh_after.status is OrderStatus.PENDING

    async def test_batch_update_with_no_ids(self, scope):
        async with scope() as repository:
            assert await repository.update_status_batch([], OrderStatus.PROCESSING, utcnow()) == 0

    async def test_delete_cancelled_older_than(self, scope):
        async with scope() as repository:
            old = await repository.save(
                make_order(status=OrderStatus.CANCELLED, cancelled_age=timedelta(days=31))
            )
            recent = await repository.save(
                make_order(status=OrderStatus.CANCELLED, cancelled_age=timedelta(days=2))
            )
            pending = await repository.save(make_order(age=timedelta(days=60)))

        async with scope() as repository:
            deleted = await repository.delete_cancelled_older_than(utcnow() - timedelta(days=30))

        async with scope() as repository:
            assert await repository.find_by_id(old.order_id) is None
            assert await repository.find_by_id(recent.order_id) is not None
            assert await repository.find_by_id(pending.order_id) is not None
        assert deleted == 1


class TestStatistics:
    """Tests for aggregate queries."""

    async def test_statistics_by_customer(self, scope):
        async with scope() as repository:
            await repository.save(make_order("CUST-001", unit_price="10.00"))
            await repository.save(make_order("CUST-001", unit_price="25.00", status=OrderStatus.DELIVERED))

            counts = await repository.count_by_status_for_customer("CUST-001")
            aggregate = await repository.get_statistics_by_customer("CUST-001")
            missing = await repository.get_statistics_by_customer("NOBODY")

        assert counts[OrderStatus.PENDING] == 1
        assert counts[OrderStatus.DELIVERED] == 1
        assert counts[OrderStatus.SHIPPED] == 0
        assert aggregate.order_count == 2
        assert aggregate.total_amount == Decimal("35.00")
        assert aggregate.average_amount == Decimal("17.50")
        assert missing is None


class TestErrorTranslation:
    """Tests for mapping driver failures to StorageUnavailableError."""

    async def test_operational_error(self):
        session = MagicMock(spec=AsyncSession)
        session.execute = AsyncMock(
            side_effect=OperationalError("SELECT 1", {}, Exception("connection refused"))
        )
        repository = SQLAlchemyOrderRepository(session, timeout=1)

        with pytest.raises(StorageUnavailableError):
            await repository.find_by_id(uuid4())

    async def test_timeout(self):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        session = MagicMock(spec=AsyncSession)
        session.execute = slow
        repository = SQLAlchemyOrderRepository(session, timeout=0.01)

        with pytest.raises(StorageUnavailableError):
            await repository.find_by_id(uuid4())
