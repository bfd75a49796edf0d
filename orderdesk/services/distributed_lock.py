"""
Named leases that keep a scheduled job to one instance at a time.

A lease expires on its own after ``lease`` seconds so a crashed holder
cannot block the job forever. On release the holder may keep the lock for
a short minimum hold, which stops a fast run on one instance from being
repeated by another instance whose clock fires a moment later.
"""
import time
from abc import ABC, abstractmethod

from redis.asyncio import Redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockError, RedisError

from orderdesk.core.logging import get_logger
from orderdesk.domain.exceptions import LockUnavailableError

logger = get_logger(__name__)


class LockProvider(ABC):
    @abstractmethod
    async def acquire(self, name: str, lease: float) -> bool:
        """Try once to take ``name`` for ``lease`` seconds. Never waits."""

    @abstractmethod
    async def release(self, name: str, hold_for: float = 0) -> None:
        """Release ``name``, or keep it for ``hold_for`` more seconds when positive."""


class InMemoryLockProvider(LockProvider):
    """Process-local leases, for single-instance deployments and tests."""

    def __init__(self) -> None:
        self._expiry: dict[str, float] = {}

    async def acquire(self, name: str, lease: float) -> bool:
        now = time.monotonic()
        if self._expiry.get(name, 0) > now:
            return False
        self._expiry[name] = now + lease
        return True

    async def release(self, name: str, hold_for: float = 0) -> None:
        if hold_for > 0:
            self._expiry[name] = time.monotonic() + hold_for
        else:
            self._expiry.pop(name, None)

    def is_held(self, name: str) -> bool:
        return self._expiry.get(name, 0) > time.monotonic()


class RedisLockProvider(LockProvider):
    """Leases stored in Redis, shared by every worker instance."""

    def __init__(self, client: Redis, prefix: str = "orderdesk:lock:") -> None:
        self.client = client
        self.prefix = prefix
        self._held: dict[str, Lock] = {}

    async def acquire(self, name: str, lease: float) -> bool:
        lock = self.client.lock(f"{self.prefix}{name}", timeout=lease, blocking=False)
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            raise LockUnavailableError(f"Lock backend unavailable: {e}") from e
        if acquired:
            self._held[name] = lock
        return acquired

    async def release(self, name: str, hold_for: float = 0) -> None:
        lock = self._held.pop(name, None)
        if lock is None:
            return
        try:
            if hold_for > 0:
                await lock.extend(hold_for, replace_ttl=True)
            else:
                await lock.release()
        except LockError:
            # Lease already expired; another instance may own it now
            logger.warning("Lock lease expired before release", lock=name)
        except RedisError as e:
            logger.warning("Failed to release lock", lock=name, error=str(e))
