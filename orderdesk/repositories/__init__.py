"""
Repository package for data access layer.
"""
from orderdesk.repositories.base import (
    CustomerOrderAggregate,
    OrderPageResult,
    OrderRepository,
    OrderSearchFilters,
    PageRequest,
    RepositoryScope,
)
from orderdesk.repositories.memory import InMemoryOrderRepository, InMemoryOrderStore
from orderdesk.repositories.order import SQLAlchemyOrderRepository, sqlalchemy_repository_scope

__all__ = [
    "CustomerOrderAggregate",
    "OrderPageResult",
    "OrderRepository",
    "OrderSearchFilters",
    "PageRequest",
    "RepositoryScope",
    "InMemoryOrderRepository",
    "InMemoryOrderStore",
    "SQLAlchemyOrderRepository",
    "sqlalchemy_repository_scope",
]
