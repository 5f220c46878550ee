"""Domain event publishing on top of the realtime bus."""

from typing import Any

from app.models.chat_message import ChatMessage
from app.models.chat_session import ChatSession
from app.realtime.bus import ADMIN_POOL_TOPIC, RealtimeBus, chat_topic
from app.schemas.chat_schema import ChatSessionResponse, MessageResponse

NEW_MESSAGE = "new-message"
USER_TYPING = "user-typing"
SESSION_CREATED = "session-created"
SESSION_CLAIMED = "session-claimed"
SESSION_UPDATED = "session-updated"
MESSAGES_READ = "messages-read"
CONNECTED = "connected"
ERROR = "error"


def _session_payload(chat: ChatSession) -> dict[str, Any]:
    return ChatSessionResponse.from_model(chat).model_dump(by_alias=True, mode="json")


def _message_payload(message: ChatMessage) -> dict[str, Any]:
    return MessageResponse.from_model(message).model_dump(by_alias=True, mode="json")


class ChatEventPublisher:
    """Turns committed chat changes into bus events.

    Services call these after commit while still holding the session lock,
    so the order of events on a chat topic matches commit order.
    """

    def __init__(self, bus: RealtimeBus) -> None:
        self._bus = bus

    async def session_created(self, chat: ChatSession) -> None:
        data = {"chatSession": _session_payload(chat)}
        await self._bus.publish(ADMIN_POOL_TOPIC, SESSION_CREATED, data)

    async def session_claimed(self, chat: ChatSession) -> None:
        data = {
            "chatId": chat.id,
            "adminId": chat.assigned_admin_id,
            "chatSession": _session_payload(chat),
        }
        await self._bus.publish(chat_topic(chat.id), SESSION_CLAIMED, data)
        await self._bus.publish(ADMIN_POOL_TOPIC, SESSION_CLAIMED, data)

    async def session_updated(self, chat: ChatSession, previous_status: str) -> None:
        data = {
            "chatId": chat.id,
            "previousStatus": str(previous_status),
            "status": str(chat.status),
            "chatSession": _session_payload(chat),
        }
        await self._bus.publish(chat_topic(chat.id), SESSION_UPDATED, data)
        await self._bus.publish(ADMIN_POOL_TOPIC, SESSION_UPDATED, data)

    async def new_message(self, message: ChatMessage, chat: ChatSession) -> None:
        """Deliver to the session; the admin pool gets a session snapshot."""
        session = _session_payload(chat)
        await self._bus.publish(
            chat_topic(chat.id),
            NEW_MESSAGE,
            {"message": _message_payload(message), "chatSession": session},
        )
        await self._bus.publish(
            ADMIN_POOL_TOPIC,
            SESSION_UPDATED,
            {
                "chatId": chat.id,
                "previousStatus": str(chat.status),
                "status": str(chat.status),
                "chatSession": session,
            },
        )

    async def messages_read(self, chat_id: str, user_id: str, marked: int) -> None:
        await self._bus.publish(
            chat_topic(chat_id),
            MESSAGES_READ,
            {"chatId": chat_id, "userId": user_id, "markedCount": marked},
        )

    async def user_typing(self, chat_id: str, user_id: str, is_typing: bool) -> None:
        await self._bus.publish(
            chat_topic(chat_id),
            USER_TYPING,
            {"chatId": chat_id, "userId": user_id, "isTyping": is_typing},
        )
