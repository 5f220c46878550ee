"""Per-key critical sections for chat coordination.

Each key (``chat:{id}``, ``subject:{id}``) gets its own in-process
``asyncio.Lock`` so coroutines in one worker queue cheaply, plus a Redis
``SET NX PX`` lease so several workers serialize on the same key. Keys are
independent: holding one never blocks another.
"""

import asyncio
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import redis.asyncio as redis
import structlog

from app.core.config import settings
from app.core.exceptions import SessionBusyError
from app.core.redis import get_optional_redis

logger = structlog.get_logger()

LOCK_PREFIX = "chat_lock:"
LEASE_POLL_SECONDS = 0.05


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    refs: int = 0


class KeyedLock:
    """Registry of per-key locks with an optional Redis lease."""

    def __init__(
        self,
        timeout_seconds: float,
        lease_ms: int,
        redis_getter: Callable[[], redis.Redis | None] = get_optional_redis,  # type: ignore[type-arg]
    ) -> None:
        self._timeout = timeout_seconds
        self._lease_ms = lease_ms
        self._redis_getter = redis_getter
        self._entries: dict[str, _LockEntry] = {}

    def is_locked(self, key: str) -> bool:
        """Check whether a coroutine in this process holds ``key``."""
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def hold(self, key: str, timeout: float | None = None) -> AsyncIterator[None]:
        """Hold ``key`` exclusively; raise SessionBusyError if the wait runs out."""
        entry = self._entries.setdefault(key, _LockEntry())
        entry.refs += 1
        try:
            wait = self._timeout if timeout is None else timeout
            try:
                async with asyncio.timeout(wait):
                    await entry.lock.acquire()
            except TimeoutError:
                logger.warning("Lock wait timed out", key=key, timeout=wait)
                raise SessionBusyError from None
            try:
                token = await self._acquire_lease(key, wait)
                try:
                    yield
                finally:
                    await self._release_lease(key, token)
            finally:
                entry.lock.release()
        finally:
            entry.refs -= 1
            if entry.refs == 0:
                self._entries.pop(key, None)

    async def _acquire_lease(self, key: str, wait: float) -> str | None:
        client = self._redis_getter()
        if client is None:
            return None
        token = uuid.uuid4().hex
        name = f"{LOCK_PREFIX}{key}"
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait
        while not await client.set(name, token, px=self._lease_ms, nx=True):
            if loop.time() >= deadline:
                logger.warning("Lease wait timed out", key=key, timeout=wait)
                raise SessionBusyError
            await asyncio.sleep(LEASE_POLL_SECONDS)
        return token

    async def _release_lease(self, key: str, token: str | None) -> None:
        if token is None:
            return
        client = self._redis_getter()
        if client is None:
            return
        name = f"{LOCK_PREFIX}{key}"
        # An expired lease may already belong to another worker.
        if await client.get(name) == token:
            await client.delete(name)


def session_key(chat_id: str) -> str:
    """Lock key for a chat session."""
    return f"chat:{chat_id}"


def subject_key(subject_id: str) -> str:
    """Lock key for a subject's create-or-get critical section."""
    return f"subject:{subject_id}"


chat_locks = KeyedLock(
    timeout_seconds=settings.chat.lock_timeout_seconds,
    lease_ms=settings.chat.lock_lease_ms,
)
