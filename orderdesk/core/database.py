"""
Async SQLAlchemy plumbing for the order tables.

One engine per process, sized by DATABASE_POOL_SIZE / DATABASE_MAX_OVERFLOW.
Repository scopes open sessions from async_session_factory; the health
probe and init_db use the engine directly.
"""
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from orderdesk.core.config import settings
from orderdesk.core.logging import get_logger

logger = get_logger(__name__)

# False until init_db() has created or verified the orders schema
_db_available: bool = False


class Base(DeclarativeBase):
    """Declarative base for OrderRecord and OrderItemRecord."""


def create_engine() -> AsyncEngine:
    """
    Engine for DATABASE_URL.

    A bare ``postgresql://`` URL is switched to the asyncpg driver. Pre-ping
    drops dead pooled connections so the order repository sees fewer
    OperationalErrors after a database restart.
    """
    database_url = settings.database_url
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return create_async_engine(
        database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.database_echo,
        pool_pre_ping=True,
    )


engine = create_engine()
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Session for one unit of order work: commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """
    Create the orders and order_items tables when missing.

    Alembic owns the production schema. A connection failure is logged and
    recorded rather than raised, so the API still starts and answers
    /health/ready while order calls return 503.
    """
    global _db_available
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        _db_available = True
        logger.info("Order schema ready")
    except Exception as e:
        _db_available = False
        logger.warning("Order database unreachable", error=str(e))


def is_db_available() -> bool:
    """Whether the last init_db() reached the database."""
    return _db_available


async def close_db() -> None:
    """Dispose the pool on API or worker shutdown."""
    await engine.dispose()
    logger.info("Order database pool closed")
