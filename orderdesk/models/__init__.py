"""
SQLAlchemy models package.
All models are imported here for easy access and Alembic discovery.
"""
from orderdesk.models.order import OrderItemRecord, OrderRecord

__all__ = [
    "OrderRecord",
    "OrderItemRecord",
]
