"""Cross-process fan-out of bus events through Redis pub/sub."""

import asyncio
import json
import uuid

import redis.asyncio as redis
import structlog
from pydantic import ValidationError

from app.core.exceptions import ConnectionLostError
from app.realtime.backoff import ExponentialBackoff, supervise
from app.realtime.bus import BusEvent, RealtimeBus

logger = structlog.get_logger()


class RedisRelay:
    """Mirrors local publishes to a Redis channel and replays remote ones.

    Every event carries this process's ``origin`` id; the listener skips
    events it published itself so local subscribers never see duplicates.
    """

    def __init__(
        self,
        bus: RealtimeBus,
        client: redis.Redis,  # type: ignore[type-arg]
        channel: str,
        backoff: ExponentialBackoff | None = None,
    ) -> None:
        self._bus = bus
        self._redis = client
        self._channel = channel
        self._backoff = backoff or ExponentialBackoff(initial=0.5, maximum=30.0)
        self.origin = uuid.uuid4().hex
        self._task: asyncio.Task[None] | None = None
        self._subscribed = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Attach to the bus and start the supervised listener."""
        if self.running:
            return
        self._bus.attach_sink(self)
        self._task = asyncio.create_task(
            supervise("redis-relay", self._listen, self._backoff),
            name="redis-relay",
        )
        logger.info("Redis relay started", channel=self._channel, origin=self.origin)

    async def wait_ready(self, timeout: float = 5.0) -> None:
        """Block until the listener has subscribed."""
        async with asyncio.timeout(timeout):
            await self._subscribed.wait()

    async def stop(self) -> None:
        self._bus.attach_sink(None)
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Redis relay stopped", channel=self._channel)

    async def forward(self, event: BusEvent) -> None:
        """Publish a locally originated event to the other processes."""
        stamped = event.model_copy(update={"origin": self.origin})
        try:
            await self._redis.publish(self._channel, stamped.model_dump_json())
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.warning(
                "Relay publish failed", event_name=event.event, topic=event.topic, error=str(e)
            )

    async def handle_raw(self, raw: str | bytes) -> bool:
        """Replay one remote payload locally. Returns False when skipped."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            event = BusEvent.model_validate_json(raw)
        except (ValidationError, json.JSONDecodeError):
            logger.warning("Invalid relay payload ignored")
            return False
        if event.origin == self.origin:
            return False
        await self._bus.publish_event(event, forward=False)
        return True

    async def _listen(self, backoff: ExponentialBackoff) -> None:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(self._channel)
            self._subscribed.set()
            backoff.reset()
            logger.info("Relay subscribed", channel=self._channel)
            async for message in pubsub.listen():
                if not message or message.get("type") != "message":
                    continue
                await self.handle_raw(message["data"])
        except (redis.ConnectionError, redis.TimeoutError) as e:
            self._subscribed.clear()
            raise ConnectionLostError(str(e)) from e
        finally:
            await pubsub.aclose()
        raise ConnectionLostError("Relay subscription ended")
