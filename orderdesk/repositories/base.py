"""
Order repository contract.

Every method is a coroutine bound to one unit of work (a repository
*scope*). Implementations translate their infrastructure failures into
StorageUnavailableError and raise the domain errors named below.
"""
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from decimal import Decimal
from typing import NamedTuple, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from orderdesk.domain.order import Order, OrderStatus


class PageRequest(BaseModel):
    """Zero-based page request ordered by creation time."""

    model_config = ConfigDict(frozen=True)

    page: int = Field(default=0, ge=0)
    size: int = Field(default=20, ge=1, le=100)
    descending: bool = True

    @property
    def offset(self) -> int:
        return self.page * self.size


class OrderSearchFilters(BaseModel):
    """Optional search criteria. A missing criterion matches every order."""

    model_config = ConfigDict(frozen=True)

    customer_id: Optional[str] = None
    status: Optional[OrderStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None


class CustomerOrderAggregate(NamedTuple):
    customer_id: str
    order_count: int
    total_amount: Decimal
    average_amount: Decimal


OrderPageResult = tuple[list[Order], int]


class OrderRepository(ABC):
    """Persistence contract for the order aggregate."""

    @abstractmethod
    async def save(self, order: Order) -> Order:
        """
        Insert or update an order with its items.

        A first save assigns ``order_id``, item ids, timestamps and version 0.
        Later saves bump ``version`` and raise ConcurrencyConflictError when
        the caller's version no longer matches the stored one.
        """

    @abstractmethod
    async def find_by_id(self, order_id: UUID) -> Optional[Order]:
        ...

    @abstractmethod
    async def find_by_id_with_items(self, order_id: UUID) -> Optional[Order]:
        ...

    @abstractmethod
    async def exists_for_customer(self, order_id: UUID, customer_id: str) -> bool:
        ...

    @abstractmethod
    async def find_all(self, page: PageRequest) -> OrderPageResult:
        ...

    @abstractmethod
    async def find_by_customer_id(self, customer_id: str, page: PageRequest) -> OrderPageResult:
        ...

    @abstractmethod
    async def find_by_status(self, status: OrderStatus, page: PageRequest) -> OrderPageResult:
        ...

    @abstractmethod
    async def find_by_customer_id_and_status(
        self,
        customer_id: str,
        status: OrderStatus,
        page: PageRequest,
    ) -> OrderPageResult:
        ...

    @abstractmethod
    async def search_orders(self, filters: OrderSearchFilters, page: PageRequest) -> OrderPageResult:
        ...

    @abstractmethod
    async def claim_orders_for_status_update(self, cutoff: datetime, batch_size: int) -> list[Order]:
        """
        Claim up to ``batch_size`` PENDING orders created before ``cutoff``.

        Rows already claimed by another open scope are skipped, never
        awaited, so concurrent claimers receive disjoint batches. The claim
        lasts until the calling scope ends.
        """

    @abstractmethod
    async def update_status_batch(
        self,
        order_ids: Sequence[UUID],
        new_status: OrderStatus,
        timestamp: datetime,
    ) -> int:
        """Move every listed order whose status allows it; returns the count updated."""

    @abstractmethod
    async def delete_cancelled_older_than(self, cutoff: datetime) -> int:
        ...

    @abstractmethod
    async def count_by_status_for_customer(self, customer_id: str) -> dict[OrderStatus, int]:
        ...

    @abstractmethod
    async def get_statistics_by_customer(self, customer_id: str) -> Optional[CustomerOrderAggregate]:
        ...


# A callable opening one unit of work, e.g. ``async with scope() as repo:``
RepositoryScope = Callable[[], AbstractAsyncContextManager[OrderRepository]]
