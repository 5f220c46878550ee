"""Reconnecting realtime client for the chat websocket.

Used by the CRM desktop agent and by load/smoke tooling. After every
(re)connect it reconciles over REST so messages missed while offline are
merged into the same de-duplicated buffer as live ones.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

import httpx
import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from app.core.config import settings
from app.core.exceptions import ConnectionLostError
from app.realtime import events
from app.realtime.backoff import ExponentialBackoff, supervise
from app.realtime.gateway import UNAUTHORIZED_CLOSE_CODE
from app.schemas.chat_schema import MessageResponse

logger = structlog.get_logger()

EventCallback = Callable[[str, dict[str, Any]], Awaitable[None]]
RECONCILE_PAGE_SIZE = 1000


class MessageBuffer:
    """Messages of one chat keyed by id, iterated in ``(timestamp, id)`` order."""

    def __init__(self) -> None:
        self._messages: dict[str, MessageResponse] = {}

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._messages

    def add(self, message: MessageResponse) -> bool:
        """Store ``message``; False if its id was already known."""
        if message.id in self._messages:
            return False
        self._messages[message.id] = message
        return True

    def merge(self, messages: Iterable[MessageResponse]) -> int:
        return sum(1 for message in messages if self.add(message))

    @property
    def messages(self) -> list[MessageResponse]:
        return sorted(self._messages.values(), key=lambda m: (m.timestamp, m.id))

    @property
    def last_id(self) -> str | None:
        ordered = self.messages
        return ordered[-1].id if ordered else None


class ChatRealtimeClient:
    """Keeps one websocket open with backoff and reconciles on every connect."""

    def __init__(
        self,
        base_url: str,
        token: str,
        ws_url: str | None = None,
        http: httpx.AsyncClient | None = None,
        backoff: ExponentialBackoff | None = None,
        on_event: EventCallback | None = None,
    ) -> None:
        self._token = token
        self._ws_url = ws_url or base_url.replace("http", "ws", 1).rstrip("/") + "/ws/chat"
        self._http = http or httpx.AsyncClient(base_url=base_url)
        self._owns_http = http is None
        self._backoff = backoff or ExponentialBackoff(
            initial=settings.realtime.reconnect_initial_seconds,
            maximum=settings.realtime.reconnect_max_seconds,
        )
        self._on_event = on_event
        self._ws: ClientConnection | None = None
        self._task: asyncio.Task[None] | None = None
        self.buffers: dict[str, MessageBuffer] = {}
        self.active_chat_id: str | None = None
        self.joined_chats: set[str] = set()
        self.connected = asyncio.Event()

    @property
    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    def buffer(self, chat_id: str) -> MessageBuffer:
        return self.buffers.setdefault(chat_id, MessageBuffer())

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(
                supervise("chat-client", self._run, self._backoff),
                name="chat-client",
            )

    async def close(self) -> None:
        """Stop reconnecting and release the socket and HTTP client."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._owns_http:
            await self._http.aclose()

    async def join_chat(self, chat_id: str) -> bool:
        """Subscribe to ``chat_id``; remembered and re-sent after reconnects."""
        self.joined_chats.add(chat_id)
        return await self._signal("join-chat", {"chatId": chat_id})

    async def leave_chat(self, chat_id: str) -> bool:
        self.joined_chats.discard(chat_id)
        return await self._signal("leave-chat", {"chatId": chat_id})

    async def send_typing(self, chat_id: str, is_typing: bool) -> bool:
        return await self._signal("typing", {"chatId": chat_id, "isTyping": is_typing})

    async def reconcile(self) -> None:
        """Restore the active chat and fetch messages missed while offline.

        Covers the active chat, every joined chat and every chat already
        buffered.
        """
        response = await self._http.get("/api/v1/chat/active", headers=self._auth_headers)
        response.raise_for_status()
        active = response.json()["data"]
        self.active_chat_id = (
            active["chatSession"]["chatId"] if active["hasActiveChat"] else None
        )

        chat_ids = set(self.buffers) | self.joined_chats
        if self.active_chat_id is not None:
            chat_ids.add(self.active_chat_id)
        for chat_id in sorted(chat_ids):
            await self._reconcile_chat(chat_id)

    async def _reconcile_chat(self, chat_id: str) -> int:
        """Page through ``chat_id`` after the last buffered message."""
        buffer = self.buffer(chat_id)
        since = buffer.last_id
        added = 0
        while True:
            params: dict[str, Any] = {"limit": RECONCILE_PAGE_SIZE}
            if since is not None:
                params["since"] = since
            response = await self._http.get(
                f"/api/v1/chat/{chat_id}/messages",
                params=params,
                headers=self._auth_headers,
            )
            if response.status_code == 400 and since is not None:
                logger.warning("Reconcile cursor rejected, replaying chat", chat_id=chat_id)
                since = None
                continue
            if response.status_code in (403, 404):
                logger.warning(
                    "Chat no longer reachable, forgetting it",
                    chat_id=chat_id,
                    status=response.status_code,
                )
                self.joined_chats.discard(chat_id)
                self.buffers.pop(chat_id, None)
                return added
            response.raise_for_status()

            page = response.json()["data"]
            messages = [MessageResponse.model_validate(m) for m in page["messages"]]
            added += buffer.merge(messages)
            if not page["hasMore"] or not messages:
                break
            since = messages[-1].id

        logger.info("Chat reconciled", chat_id=chat_id, added=added)
        return added

    async def handle_frame(self, frame: dict[str, Any]) -> None:
        """Apply one server frame to local state, then notify the callback."""
        event = frame.get("event", "")
        data = frame.get("data") or {}
        if event == events.NEW_MESSAGE:
            message = MessageResponse.model_validate(data["message"])
            self.buffer(message.chat_id).add(message)
        if self._on_event is not None:
            await self._on_event(event, data)

    async def _run(self, backoff: ExponentialBackoff) -> None:
        url = f"{self._ws_url}?token={self._token}"
        try:
            async with connect(url) as ws:
                self._ws = ws
                backoff.reset()
                logger.info("Chat socket connected", url=self._ws_url)
                for chat_id in sorted(self.joined_chats):
                    await self._signal("join-chat", {"chatId": chat_id})
                await self.reconcile()
                self.connected.set()
                async for raw in ws:
                    await self.handle_frame(json.loads(raw))
        except ConnectionClosed as e:
            if e.rcvd is not None and e.rcvd.code == UNAUTHORIZED_CLOSE_CODE:
                logger.error("Chat socket rejected the token")
                return
            raise ConnectionLostError(str(e)) from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 401:
                logger.error("Chat API rejected the token")
                return
            raise ConnectionLostError(str(e)) from e
        except (InvalidHandshake, httpx.TransportError) as e:
            raise ConnectionLostError(str(e)) from e
        finally:
            self._ws = None
            self.connected.clear()

        if ws.close_code == UNAUTHORIZED_CLOSE_CODE:
            logger.error("Chat socket rejected the token")
            return
        raise ConnectionLostError(f"Socket closed with code {ws.close_code}")

    async def _signal(self, event: str, data: dict[str, Any]) -> bool:
        """Send a client signal; dropped while disconnected."""
        if self._ws is None:
            logger.warning("Signal dropped while disconnected", signal=event)
            return False
        try:
            await self._ws.send(json.dumps({"event": event, "data": data}))
        except ConnectionClosed:
            logger.warning("Signal dropped, socket closing", signal=event)
            return False
        return True
