"""
API routers package.
"""
from orderdesk.routers.health import router as health_router
from orderdesk.routers.orders import router as orders_router

__all__ = [
    "health_router",
    "orders_router",
]
