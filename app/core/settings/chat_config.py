"""Chat session coordination configuration."""

from pydantic import BaseModel


class ChatConfig(BaseModel, frozen=True):
    """Session store, arbiter and message log settings."""

    lock_timeout_seconds: float
    lock_lease_seconds: float
    require_assignment_to_reply: bool
    message_max_length: int
    message_rate_limit: str
    default_page_size: int

    @property
    def lock_lease_ms(self) -> int:
        """Redis lease length in milliseconds."""
        return int(self.lock_lease_seconds * 1000)
