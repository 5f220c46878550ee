"""Websocket gateway between authenticated sockets and the realtime bus."""

import asyncio
from typing import Any

import structlog
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import AppException
from app.core.redis import get_optional_redis
from app.models.chat_session import ADMIN_ROLES
from app.realtime import events
from app.realtime.bus import ADMIN_POOL_TOPIC, BusEvent, Subscription, chat_topic
from app.realtime.hub import RealtimeHub
from app.repositories.chat_repo import ChatRepository
from app.schemas.auth_schema import CurrentUser
from app.schemas.realtime_schema import ClientSignal
from app.services.token_service import TokenService

logger = structlog.get_logger()

UNAUTHORIZED_CLOSE_CODE = 4401
# "Try again later": the client reconnects and reconciles what it missed.
LAGGING_CLOSE_CODE = 1013


def extract_token(websocket: WebSocket) -> str | None:
    """Token from ``?token=`` or an ``Authorization: Bearer`` header."""
    token = websocket.query_params.get("token")
    if token:
        return token
    auth_header = websocket.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


class GatewayConnection:
    """One authenticated socket and the topics it is subscribed to."""

    def __init__(
        self,
        websocket: WebSocket,
        user: CurrentUser,
        hub: RealtimeHub,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self.websocket = websocket
        self.user = user
        self._hub = hub
        self._session_factory = session_factory
        self._subscriptions: dict[str, Subscription] = {}
        self._send_lock = asyncio.Lock()
        self._lagging = asyncio.Event()

    @property
    def is_admin(self) -> bool:
        return self.user.role in ADMIN_ROLES

    @property
    def topics(self) -> list[str]:
        return sorted(self._subscriptions)

    async def open(self) -> list[str]:
        """Subscribe to the user's live chats (and the admin pool)."""
        async with self._session_factory() as session:
            chat_ids = await ChatRepository(session).find_live_chat_ids_for_user(
                self.user.id
            )
        for chat_id in chat_ids:
            self._subscribe(chat_topic(chat_id))
        if self.is_admin:
            self._subscribe(ADMIN_POOL_TOPIC)
        self._hub.presence.connect(self.user.id)
        return chat_ids

    async def close(self) -> None:
        """Drop subscriptions and presence; announce abandoned typing."""
        for subscription in self._subscriptions.values():
            subscription.cancel()
        self._subscriptions.clear()
        if self._hub.presence.disconnect(self.user.id) == 0:
            for entry in self._hub.presence.drop_user(self.user.id):
                await self._hub.events.user_typing(entry.chat_id, entry.user_id, False)

    async def send(self, event: str, data: dict[str, Any]) -> None:
        async with self._send_lock:
            await self.websocket.send_json({"event": event, "data": data})

    async def run(self) -> bool:
        """Handle client frames until the peer leaves or delivery falls behind.

        Returns True when a subscription overflowed; the caller then closes
        the socket. A peer disconnect propagates as ``WebSocketDisconnect``.
        """
        receiver = asyncio.create_task(self._receive_forever())
        lagging = asyncio.create_task(self._lagging.wait())
        try:
            await asyncio.wait({receiver, lagging}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            receiver.cancel()
            lagging.cancel()
        if receiver.done() and not receiver.cancelled():
            receiver.result()
        return self._lagging.is_set()

    async def _receive_forever(self) -> None:
        while True:
            raw = await self.websocket.receive_text()
            await self.handle(raw)

    async def handle(self, raw: str) -> None:
        """Dispatch one client frame; bad frames get an ``error`` reply."""
        try:
            signal = ClientSignal.model_validate_json(raw)
        except ValidationError as e:
            await self.send(events.ERROR, {"message": e.errors()[0]["msg"]})
            return

        chat_id = signal.data.chat_id
        match signal.event:
            case "join-chat":
                await self._join(chat_id)
            case "leave-chat":
                await self._leave(chat_id)
            case "typing":
                await self._typing(chat_id, signal.data.is_typing)

    async def _join(self, chat_id: str) -> None:
        async with self._session_factory() as session:
            chat = await ChatRepository(session).get_session(chat_id)
        if chat is None:
            await self.send(events.ERROR, {"chatId": chat_id, "message": "Chat not found"})
            return
        if not self.is_admin and not chat.has_participant(self.user.id):
            await self.send(
                events.ERROR,
                {"chatId": chat_id, "message": "Not a participant of this chat"},
            )
            return
        self._subscribe(chat_topic(chat_id))
        await self.send("joined-chat", {"chatId": chat_id})

    async def _typing(self, chat_id: str, is_typing: bool) -> None:
        if chat_topic(chat_id) not in self._subscriptions:
            await self.send(
                events.ERROR, {"chatId": chat_id, "message": "Join the chat first"}
            )
            return
        if self._hub.presence.set_typing(chat_id, self.user.id, is_typing):
            await self._hub.events.user_typing(chat_id, self.user.id, is_typing)

    async def _leave(self, chat_id: str) -> None:
        subscription = self._subscriptions.pop(chat_topic(chat_id), None)
        if subscription is not None:
            subscription.cancel()
        if self._hub.presence.set_typing(chat_id, self.user.id, False):
            await self._hub.events.user_typing(chat_id, self.user.id, False)

    def _subscribe(self, topic: str) -> None:
        if topic not in self._subscriptions:
            self._subscriptions[topic] = self._hub.bus.subscribe(
                topic, self._deliver, on_overflow=self._overflowed
            )

    def _overflowed(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.topic, None)
        self._lagging.set()

    async def _deliver(self, event: BusEvent) -> None:
        # Senders do not receive their own typing indicator.
        if event.event == events.USER_TYPING and event.data.get("userId") == self.user.id:
            return
        async with self._send_lock:
            await self.websocket.send_json(event.to_frame())


class ConnectionGateway:
    """Authenticates sockets and runs their receive loop."""

    def __init__(
        self,
        hub: RealtimeHub,
        session_factory: async_sessionmaker[AsyncSession],
        token_service: TokenService | None = None,
    ) -> None:
        self._hub = hub
        self._session_factory = session_factory
        self._token_service = token_service or TokenService(get_optional_redis())

    async def authenticate(self, websocket: WebSocket) -> CurrentUser | None:
        token = extract_token(websocket)
        if token is None:
            return None
        try:
            return await self._token_service.authenticate(token)
        except AppException as e:
            logger.info("Websocket rejected", code=e.code)
            return None

    async def serve(self, websocket: WebSocket) -> None:
        """Run one socket from handshake to disconnect."""
        await websocket.accept()
        user = await self.authenticate(websocket)
        if user is None:
            await websocket.close(code=UNAUTHORIZED_CLOSE_CODE, reason="Unauthorized")
            return

        connection = GatewayConnection(
            websocket, user, self._hub, self._session_factory
        )
        try:
            chat_ids = await connection.open()
            await connection.send(
                events.CONNECTED,
                {"userId": user.id, "role": user.role, "chatIds": chat_ids},
            )
            logger.info("Websocket connected", user_id=user.id, chats=len(chat_ids))
            if await connection.run():
                logger.warning("Websocket fell behind, closing", user_id=user.id)
                await websocket.close(
                    code=LAGGING_CLOSE_CODE, reason="Event backlog overflowed"
                )
        except WebSocketDisconnect:
            logger.info("Websocket disconnected", user_id=user.id)
        finally:
            await connection.close()
