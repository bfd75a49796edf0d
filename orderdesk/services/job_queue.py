"""
ARQ Job Queue Service - scheduled order sweeps.

Provides:
- Pending order status sweep (every 5 minutes)
- Cancelled order cleanup (daily at 02:00)
- System status heartbeat (every 30 minutes)

Every replica runs the same cron table; the sweeps take a named lease in
Redis first so only one replica executes a given job per tick.
"""
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional, TypeVar

from arq import cron
from arq.connections import RedisSettings
from redis.asyncio import Redis

from orderdesk.core.config import settings
from orderdesk.core.database import close_db
from orderdesk.core.logging import configure_logging, get_logger
from orderdesk.domain.exceptions import LockUnavailableError
from orderdesk.repositories.memory import InMemoryOrderStore
from orderdesk.repositories.order import sqlalchemy_repository_scope
from orderdesk.services.cache import build_cache
from orderdesk.services.distributed_lock import (
    InMemoryLockProvider,
    LockProvider,
    RedisLockProvider,
)
from orderdesk.services.order_service import OrderService

logger = get_logger(__name__)

T = TypeVar("T")

PROCESS_PENDING_LOCK = "orders:process-pending"
CLEANUP_CANCELLED_LOCK = "orders:cleanup-cancelled"


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from config."""
    if settings.redis_url:
        return RedisSettings.from_dsn(str(settings.redis_url))
    return RedisSettings()


async def run_exclusive(
    lock_provider: LockProvider,
    name: str,
    lease: float,
    min_hold: float,
    body: Callable[[], Awaitable[T]],
) -> Optional[T]:
    """
    Run ``body`` only if the ``name`` lease can be taken right now.

    Returns the body's result, or None when the lease is held elsewhere,
    the lock backend is down, or the body failed. Failures are logged and
    never re-raised, so the next scheduled run proceeds on its own.
    """
    try:
        acquired = await lock_provider.acquire(name, lease)
    except LockUnavailableError as e:
        logger.error("Job lock unavailable, skipping run", job=name, error=str(e))
        return None

    if not acquired:
        logger.info("Job skipped, lock held by another instance", job=name)
        return None

    started = time.monotonic()
    logger.info("Job started", job=name)
    try:
        result = await body()
        logger.info(
            "Job completed",
            job=name,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return result
    except Exception as e:
        logger.exception("Job failed", job=name, error=str(e))
        return None
    finally:
        remaining = min_hold - (time.monotonic() - started)
        await lock_provider.release(name, hold_for=max(remaining, 0))


# ============================================
# JOB FUNCTIONS
# ============================================

async def process_pending_orders_job(ctx: dict) -> dict[str, Any]:
    """Advance stale PENDING orders to PROCESSING."""
    service: OrderService = ctx["order_service"]
    updated = await run_exclusive(
        ctx["lock_provider"],
        PROCESS_PENDING_LOCK,
        lease=settings.status_sweep_lock_lease_seconds,
        min_hold=settings.status_sweep_lock_min_hold_seconds,
        body=service.process_pending_orders,
    )
    return {"updated": updated}


async def cleanup_cancelled_orders_job(ctx: dict) -> dict[str, Any]:
    """Delete cancelled orders past the retention window."""
    service: OrderService = ctx["order_service"]
    days_old = settings.cancelled_order_retention_days
    deleted = await run_exclusive(
        ctx["lock_provider"],
        CLEANUP_CANCELLED_LOCK,
        lease=settings.cleanup_lock_lease_seconds,
        min_hold=settings.cleanup_lock_min_hold_seconds,
        body=lambda: service.delete_old_cancelled_orders(days_old),
    )
    return {"deleted": deleted}


async def log_system_status_job(ctx: dict) -> dict[str, Any]:
    """Heartbeat so operators can see the scheduler is alive."""
    logger.info(
        "Scheduler heartbeat",
        environment=settings.environment,
        storage_backend=settings.storage_backend,
        cache_backend=settings.cache_backend,
    )
    return {"alive": True}


# ============================================
# WORKER LIFECYCLE
# ============================================

async def startup(ctx: dict) -> None:
    """Build the service graph once per worker process."""
    configure_logging()

    if settings.storage_backend == "memory":
        repository_scope = InMemoryOrderStore().scope
    else:
        repository_scope = sqlalchemy_repository_scope()

    cache = build_cache(settings)
    if settings.redis_url:
        lock_client = Redis.from_url(str(settings.redis_url))
        lock_provider: LockProvider = RedisLockProvider(lock_client)
        ctx["lock_client"] = lock_client
    else:
        logger.warning("Redis not configured - job locks are process-local")
        lock_provider = InMemoryLockProvider()

    ctx["cache"] = cache
    ctx["lock_provider"] = lock_provider
    ctx["order_service"] = OrderService(repository_scope, cache, settings)
    logger.info("Order worker started")


async def shutdown(ctx: dict) -> None:
    await ctx["cache"].close()
    if "lock_client" in ctx:
        await ctx["lock_client"].aclose()
    await close_db()
    logger.info("Order worker stopped")


# ============================================
# WORKER SETTINGS
# ============================================

class WorkerSettings:
    """ARQ worker configuration."""

    functions = [
        process_pending_orders_job,
        cleanup_cancelled_orders_job,
        log_system_status_job,
    ]

    cron_jobs = [
        # Status sweep every 5 minutes
        cron(process_pending_orders_job, minute=set(range(0, 60, 5)), run_at_startup=False),
        # Cleanup daily at 02:00
        cron(cleanup_cancelled_orders_job, hour=2, minute=0),
        # Heartbeat every 30 minutes
        cron(log_system_status_job, minute={0, 30}),
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = get_redis_settings()

    # Worker settings
    max_jobs = 10
    job_timeout = 3600  # 1 hour, cleanup may run long
    keep_result = 3600  # 1 hour
