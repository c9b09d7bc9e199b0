import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Protocol

import anyio
import redis.asyncio as redis
from redis.exceptions import LockError, RedisError

from homedispatch.domain.errors import BookingBusy

logger = logging.getLogger("homedispatch.locks")


class BookingLocker(Protocol):
    def hold(self, booking_id: str) -> "AsyncIterator[None]": ...

    async def close(self) -> None: ...


class _Entry:
    __slots__ = ("lock", "waiters")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.waiters = 0


class InMemoryBookingLocker:
    """Per-booking mutual exclusion inside one process.

    Entries are reference counted and dropped once nobody holds or waits on
    them, so the table only grows with the number of bookings in flight.
    """

    def __init__(self, timeout_seconds: float = 10.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._entries: Dict[str, _Entry] = {}

    @asynccontextmanager
    async def hold(self, booking_id: str) -> AsyncIterator[None]:
        entry = self._entries.get(booking_id)
        if entry is None:
            entry = _Entry()
            self._entries[booking_id] = entry
        entry.waiters += 1
        try:
            try:
                with anyio.fail_after(self.timeout_seconds):
                    await entry.lock.acquire()
            except TimeoutError as exc:
                logger.warning("booking_lock_timeout", extra={"extra": {"booking_id": booking_id}})
                raise BookingBusy() from exc
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.waiters -= 1
            if entry.waiters == 0 and self._entries.get(booking_id) is entry:
                self._entries.pop(booking_id, None)

    def active_count(self) -> int:
        return len(self._entries)

    async def close(self) -> None:
        self._entries.clear()


class RedisBookingLocker:
    def __init__(
        self,
        redis_url: str,
        timeout_seconds: float = 10.0,
        redis_client: redis.Redis | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.redis = redis_client or redis.from_url(redis_url, encoding="utf-8", decode_responses=False)

    @asynccontextmanager
    async def hold(self, booking_id: str) -> AsyncIterator[None]:
        lock = self.redis.lock(
            f"booking-lock:{booking_id}",
            timeout=self.timeout_seconds * 3,
            blocking_timeout=self.timeout_seconds,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as exc:
            logger.warning(
                "booking_lock_redis_error",
                extra={"extra": {"booking_id": booking_id, "reason": type(exc).__name__}},
            )
            raise BookingBusy() from exc
        if not acquired:
            logger.warning("booking_lock_timeout", extra={"extra": {"booking_id": booking_id}})
            raise BookingBusy()
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning("booking_lock_expired", extra={"extra": {"booking_id": booking_id}})

    async def close(self) -> None:
        await self.redis.aclose()


def create_booking_locker(app_settings) -> BookingLocker:
    if app_settings.booking_lock_backend == "redis":
        if not app_settings.redis_url:
            raise RuntimeError("REDIS_URL is required when BOOKING_LOCK_BACKEND=redis")
        return RedisBookingLocker(app_settings.redis_url, timeout_seconds=app_settings.booking_lock_timeout_seconds)
    return InMemoryBookingLocker(timeout_seconds=app_settings.booking_lock_timeout_seconds)


booking_locker: BookingLocker = InMemoryBookingLocker()
