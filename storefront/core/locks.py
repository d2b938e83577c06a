"""Per-user mutual exclusion for cart units of work.

With ``REDIS_URL`` configured the lock is a Redis lock shared by every worker;
otherwise an ``asyncio.Lock`` per user serializes requests inside this process.
The cart row is additionally locked with ``SELECT ... FOR UPDATE`` by the
services, so databases that honour row locks stay consistent either way.
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from redis.asyncio import Redis
from redis.exceptions import LockError, RedisError

from storefront.core.config import settings
from storefront.core.logging import get_logger
from storefront.services.exceptions import CartBusyError

logger = get_logger(__name__)


class CartLocks:
    """Lock registry keyed by user id."""

    def __init__(
        self,
        redis_url: str | None = None,
        *,
        prefix: str = "cart-lock",
        timeout: float | None = None,
        wait: float | None = None,
    ) -> None:
        self._prefix = prefix
        self._timeout = timeout or settings.CART_LOCK_TIMEOUT_SECONDS
        self._wait = wait or settings.CART_LOCK_WAIT_SECONDS
        self._redis: Redis | None = Redis.from_url(redis_url) if redis_url else None
        self._local: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _key(self, user_id) -> str:
        return f"{self._prefix}:{user_id}"

    def _local_lock(self, user_id) -> asyncio.Lock:
        key = self._key(user_id)
        lock = self._local.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._local[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, user_id) -> AsyncIterator[None]:
        if self._redis is None:
            lock = self._local_lock(user_id)
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self._wait)
            except asyncio.TimeoutError as exc:
                raise CartBusyError("Cart is being modified by another request, retry shortly") from exc
            try:
                yield
            finally:
                lock.release()
            return

        redis_lock = self._redis.lock(self._key(user_id), timeout=self._timeout, blocking_timeout=self._wait)
        try:
            acquired = await redis_lock.acquire()
        except RedisError as exc:
            logger.error("Cart lock backend unavailable", extra={"user_id": str(user_id), "error": str(exc)})
            raise CartBusyError("Cart lock unavailable, retry shortly") from exc
        if not acquired:
            raise CartBusyError("Cart is being modified by another request, retry shortly")
        try:
            yield
        finally:
            try:
                await redis_lock.release()
            except LockError:
                logger.warning("Cart lock expired before release", extra={"user_id": str(user_id)})


cart_locks = CartLocks(redis_url=settings.REDIS_URL)
