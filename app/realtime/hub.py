"""Process-wide realtime state: bus, presence, relay and typing sweeper."""

import asyncio

import structlog

from app.core.config import settings
from app.core.redis import get_optional_redis
from app.realtime.bus import RealtimeBus
from app.realtime.events import ChatEventPublisher
from app.realtime.presence import PresenceTracker
from app.realtime.relay import RedisRelay

logger = structlog.get_logger()


class RealtimeHub:
    """Owns the realtime components for one process."""

    def __init__(
        self,
        queue_size: int | None = None,
        typing_ttl_seconds: float | None = None,
        sweep_interval_seconds: float | None = None,
    ) -> None:
        config = settings.realtime
        self.bus = RealtimeBus(queue_size=queue_size or config.subscriber_queue_size)
        self.presence = PresenceTracker(
            typing_ttl_seconds=typing_ttl_seconds or config.typing_ttl_seconds
        )
        self.events = ChatEventPublisher(self.bus)
        self.relay: RedisRelay | None = None
        self._sweep_interval = sweep_interval_seconds or config.sweep_interval_seconds
        self._sweeper: asyncio.Task[None] | None = None

    @property
    def started(self) -> bool:
        return self._sweeper is not None

    async def start(self, relay: bool | None = None) -> None:
        """Start the typing sweeper and, if enabled, the Redis relay."""
        if self.started:
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="typing-sweeper")
        use_relay = settings.realtime.redis_relay if relay is None else relay
        client = get_optional_redis()
        if use_relay and client is not None:
            self.relay = RedisRelay(self.bus, client, settings.realtime.redis_channel)
            await self.relay.start()
        logger.info("Realtime hub started", relay=self.relay is not None)

    async def stop(self) -> None:
        if self.relay is not None:
            await self.relay.stop()
            self.relay = None
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self.bus.close()
        logger.info("Realtime hub stopped")

    async def expire_typing(self) -> int:
        """Broadcast the end of every expired typing entry."""
        expired = self.presence.sweep()
        for entry in expired:
            await self.events.user_typing(entry.chat_id, entry.user_id, False)
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.expire_typing()
            except Exception:
                logger.exception("Typing sweep failed")


_hub: RealtimeHub | None = None


async def init_realtime() -> RealtimeHub:
    """Create and start the process-wide hub."""
    global _hub  # noqa: PLW0603
    _hub = RealtimeHub()
    await _hub.start()
    return _hub


async def close_realtime() -> None:
    global _hub  # noqa: PLW0603
    if _hub is not None:
        await _hub.stop()
        _hub = None


def get_realtime() -> RealtimeHub:
    """Get the active realtime hub."""
    if _hub is None:
        raise RuntimeError("Realtime hub not initialized")
    return _hub
