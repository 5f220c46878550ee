"""Tests for the Redis pub/sub relay."""

import asyncio
from unittest.mock import AsyncMock

import fakeredis.aioredis
import pytest
import redis.asyncio as redis

from app.realtime.bus import BusEvent, RealtimeBus
from app.realtime.relay import RedisRelay

CHANNEL = "support-chat:test-events"


def _collector(seen: list[BusEvent], arrived: asyncio.Event):  # type: ignore[no-untyped-def]
    async def handler(event: BusEvent) -> None:
        seen.append(event)
        arrived.set()

    return handler


class TestHandleRaw:
    """Replaying payloads received from Redis."""

    @pytest.mark.asyncio
    async def test_remote_event_published_locally(
        self, fake_redis: fakeredis.aioredis.FakeRedis
    ) -> None:
        bus = RealtimeBus()
        relay = RedisRelay(bus, fake_redis, CHANNEL)
        seen: list[BusEvent] = []
        arrived = asyncio.Event()
        bus.subscribe("chat:1", _collector(seen, arrived))

        remote = BusEvent(event="new-message", topic="chat:1", data={"n": 1}, origin="other")
        assert await relay.handle_raw(remote.model_dump_json()) is True

        await asyncio.wait_for(arrived.wait(), timeout=1)
        assert seen[0].data == {"n": 1}
        await bus.close()

    @pytest.mark.asyncio
    async def test_own_origin_skipped(self, fake_redis: fakeredis.aioredis.FakeRedis) -> None:
        bus = RealtimeBus()
        relay = RedisRelay(bus, fake_redis, CHANNEL)
        mine = BusEvent(event="tick", topic="chat:1", origin=relay.origin)
        assert await relay.handle_raw(mine.model_dump_json().encode()) is False

    @pytest.mark.asyncio
    async def test_publish_failure_logged_not_raised(self) -> None:
        client = AsyncMock()
        client.publish.side_effect = redis.ConnectionError("connection refused")
        relay = RedisRelay(RealtimeBus(), client, CHANNEL)

        await relay.forward(BusEvent(event="new-message", topic="chat:1"))

        client.publish.assert_awaited_once()
        assert client.publish.await_args.args[0] == CHANNEL

    @pytest.mark.asyncio
    async def test_garbage_ignored(self, fake_redis: fakeredis.aioredis.FakeRedis) -> None:
        relay = RedisRelay(RealtimeBus(), fake_redis, CHANNEL)
        assert await relay.handle_raw("{not json") is False
        assert await relay.handle_raw('{"event": "x"}') is False


class TestFanOut:
    """Two processes sharing a Redis channel."""

    @pytest.mark.asyncio
    async def test_event_reaches_other_bus_once(
        self, fake_redis: fakeredis.aioredis.FakeRedis
    ) -> None:
        bus_a, bus_b = RealtimeBus(), RealtimeBus()
        relay_a = RedisRelay(bus_a, fake_redis, CHANNEL)
        relay_b = RedisRelay(bus_b, fake_redis, CHANNEL)
        await relay_a.start()
        await relay_b.start()
        await relay_a.wait_ready()
        await relay_b.wait_ready()

        seen_a: list[BusEvent] = []
        seen_b: list[BusEvent] = []
        arrived_a, arrived_b = asyncio.Event(), asyncio.Event()
        bus_a.subscribe("chat:1", _collector(seen_a, arrived_a))
        bus_b.subscribe("chat:1", _collector(seen_b, arrived_b))

        await bus_a.publish("chat:1", "new-message", {"id": "m-1"})

        await asyncio.wait_for(arrived_b.wait(), timeout=2)
        await asyncio.sleep(0.1)
        assert [e.data for e in seen_a] == [{"id": "m-1"}]
        assert [e.data for e in seen_b] == [{"id": "m-1"}]
        assert seen_b[0].origin == relay_a.origin

        await relay_a.stop()
        await relay_b.stop()
        assert relay_a.running is False
        await bus_a.close()
        await bus_b.close()

    @pytest.mark.asyncio
    async def test_stop_detaches_sink(self, fake_redis: fakeredis.aioredis.FakeRedis) -> None:
        bus = RealtimeBus()
        relay = RedisRelay(bus, fake_redis, CHANNEL)
        await relay.start()
        await relay.stop()

        assert relay.running is False
        assert await bus.publish("chat:1", "tick", {}) == 0
