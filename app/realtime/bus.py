"""In-process publish/subscribe bus for chat events.

Topics are ``chat:{chatId}`` for per-session events and ``admin-pool`` for
notifications every online admin should see. Each subscription owns a
bounded queue drained by a single task, so one subscriber sees a topic's
events in publish order and a slow subscriber never stalls the others. A
subscriber whose queue overflows is cancelled and its owner notified
through ``on_overflow``; it must resynchronize rather than skip events.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, Field

from app.core.clock import utcnow

logger = structlog.get_logger()

ADMIN_POOL_TOPIC = "admin-pool"


def chat_topic(chat_id: str) -> str:
    """Topic carrying one session's message and status events."""
    return f"chat:{chat_id}"


class BusEvent(BaseModel):
    """Envelope for everything that travels over the bus."""

    event: str
    topic: str
    data: dict[str, Any] = Field(default_factory=dict)
    published_at: datetime = Field(default_factory=utcnow)
    origin: str | None = None

    def to_frame(self) -> dict[str, Any]:
        """Client-facing websocket frame."""
        return {"event": self.event, "topic": self.topic, "data": self.data}


Handler = Callable[[BusEvent], Awaitable[None]]
OverflowCallback = Callable[["Subscription"], None]


class EventSink(Protocol):
    """Receives every locally published event (e.g. the Redis relay)."""

    async def forward(self, event: BusEvent) -> None: ...


class Subscription:
    """One handler attached to one topic."""

    def __init__(
        self,
        bus: "RealtimeBus",
        topic: str,
        handler: Handler,
        queue_size: int,
        on_overflow: OverflowCallback | None = None,
    ) -> None:
        self.topic = topic
        self._bus = bus
        self._handler = handler
        self._on_overflow = on_overflow
        self._queue: asyncio.Queue[BusEvent] = asyncio.Queue(maxsize=queue_size)
        self._task = asyncio.get_running_loop().create_task(
            self._pump(), name=f"bus-subscription:{topic}"
        )
        self._cancelled = False
        self.overflowed = False

    @property
    def active(self) -> bool:
        return not self._cancelled and not self._task.done()

    def offer(self, event: BusEvent) -> bool:
        """Queue ``event`` without blocking.

        A full buffer cancels the subscription, since the subscriber has
        already missed an event, and returns False.
        """
        if self._cancelled:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.overflowed = True
            logger.warning(
                "Subscriber buffer full, subscription cancelled",
                topic=self.topic,
                event_name=event.event,
                backlog=self._queue.qsize(),
            )
            self.cancel()
            if self._on_overflow is not None:
                self._on_overflow(self)
            return False
        return True

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        if self._cancelled:
            return
        await self._queue.join()

    def cancel(self) -> None:
        """Detach from the bus and stop delivery."""
        self._cancelled = True
        self._bus._detach(self)
        self._task.cancel()

    async def _pump(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._handler(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Subscriber handler failed", topic=self.topic, event_name=event.event
                )
            finally:
                self._queue.task_done()


class RealtimeBus:
    """Topic registry with FIFO delivery per subscription."""

    def __init__(self, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        self._topics: dict[str, list[Subscription]] = {}
        self._sink: EventSink | None = None

    def attach_sink(self, sink: EventSink | None) -> None:
        """Mirror local publishes to ``sink`` (None detaches)."""
        self._sink = sink

    def subscribe(
        self,
        topic: str,
        handler: Handler,
        on_overflow: OverflowCallback | None = None,
    ) -> Subscription:
        """Attach ``handler`` to ``topic``. Must be called inside the event loop."""
        subscription = Subscription(
            self, topic, handler, self._queue_size, on_overflow=on_overflow
        )
        self._topics.setdefault(topic, []).append(subscription)
        return subscription

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    @property
    def topics(self) -> list[str]:
        return list(self._topics)

    async def publish(self, topic: str, event: str, data: dict[str, Any]) -> int:
        """Publish a new event; returns the number of local subscribers reached."""
        return await self.publish_event(BusEvent(event=event, topic=topic, data=data))

    async def publish_event(self, event: BusEvent, forward: bool = True) -> int:
        """Deliver ``event`` locally and, unless it came from the sink, forward it."""
        delivered = 0
        for subscription in list(self._topics.get(event.topic, ())):
            if subscription.offer(event):
                delivered += 1
        if forward and self._sink is not None:
            await self._sink.forward(event)
        return delivered

    async def drain(self) -> None:
        """Wait for every subscription to finish its backlog."""
        for subscriptions in list(self._topics.values()):
            for subscription in list(subscriptions):
                await subscription.drain()

    async def close(self) -> None:
        """Cancel every subscription."""
        subscriptions = [s for subs in self._topics.values() for s in subs]
        for subscription in subscriptions:
            subscription.cancel()
        self._topics.clear()
        for subscription in subscriptions:
            try:
                await subscription._task
            except asyncio.CancelledError:
                pass

    def _detach(self, subscription: Subscription) -> None:
        subscriptions = self._topics.get(subscription.topic)
        if not subscriptions:
            return
        if subscription in subscriptions:
            subscriptions.remove(subscription)
        if not subscriptions:
            del self._topics[subscription.topic]
