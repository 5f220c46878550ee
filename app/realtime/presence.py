"""Ephemeral typing indicators and online counts.

Lives in memory only; a restart simply forgets who was typing.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class TypingEntry:
    chat_id: str
    user_id: str
    expires_at: float


class PresenceTracker:
    """Tracks who is typing where and how many sockets each user holds open."""

    def __init__(
        self,
        typing_ttl_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = typing_ttl_seconds
        self._clock = clock
        self._typing: dict[tuple[str, str], TypingEntry] = {}
        self._connections: dict[str, int] = {}

    # --- Typing ---

    def set_typing(self, chat_id: str, user_id: str, is_typing: bool) -> bool:
        """Upsert or clear a typing entry. Returns True if visible state changed."""
        key = (chat_id, user_id)
        if not is_typing:
            return self._typing.pop(key, None) is not None
        was_typing = key in self._typing and not self._expired(self._typing[key])
        self._typing[key] = TypingEntry(
            chat_id=chat_id,
            user_id=user_id,
            expires_at=self._clock() + self._ttl,
        )
        return not was_typing

    def typing_users(self, chat_id: str) -> list[str]:
        """Users currently typing in ``chat_id``, expired entries excluded."""
        return sorted(
            entry.user_id
            for (entry_chat, _), entry in self._typing.items()
            if entry_chat == chat_id and not self._expired(entry)
        )

    def sweep(self) -> list[TypingEntry]:
        """Drop expired entries and return them."""
        expired = [entry for entry in self._typing.values() if self._expired(entry)]
        for entry in expired:
            del self._typing[(entry.chat_id, entry.user_id)]
        return expired

    def drop_user(self, user_id: str) -> list[TypingEntry]:
        """Remove every typing entry of ``user_id`` and return them."""
        dropped = [entry for entry in self._typing.values() if entry.user_id == user_id]
        for entry in dropped:
            del self._typing[(entry.chat_id, entry.user_id)]
        return dropped

    # --- Online ---

    def connect(self, user_id: str) -> int:
        self._connections[user_id] = self._connections.get(user_id, 0) + 1
        return self._connections[user_id]

    def disconnect(self, user_id: str) -> int:
        """Release one connection; returns how many remain."""
        remaining = self._connections.get(user_id, 0) - 1
        if remaining <= 0:
            self._connections.pop(user_id, None)
            return 0
        self._connections[user_id] = remaining
        return remaining

    def is_online(self, user_id: str) -> bool:
        return user_id in self._connections

    @property
    def online_users(self) -> list[str]:
        return sorted(self._connections)

    def _expired(self, entry: TypingEntry) -> bool:
        return entry.expires_at <= self._clock()
