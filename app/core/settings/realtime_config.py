"""Realtime bus, presence and reconnect configuration."""

from pydantic import BaseModel


class RealtimeConfig(BaseModel, frozen=True):
    """Realtime delivery settings."""

    typing_ttl_seconds: float
    sweep_interval_seconds: float
    subscriber_queue_size: int
    redis_relay: bool
    redis_channel: str
    reconnect_initial_seconds: float
    reconnect_max_seconds: float
