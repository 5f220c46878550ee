"""Message log: ordered, idempotent appends and cursor reads."""

import uuid

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import next_tick
from app.core.config import settings
from app.core.exceptions import (
    AuthorizationError,
    InvalidCursorError,
    InvalidMessageError,
    SessionNotFoundError,
)
from app.core.locks import KeyedLock, chat_locks, session_key
from app.models.chat_message import ChatMessage
from app.models.chat_session import ChatSession, ChatStatus, UserRole
from app.realtime.events import ChatEventPublisher
from app.repositories.chat_repo import ChatRepository
from app.schemas.auth_schema import CurrentUser
from app.schemas.chat_schema import (
    ChatSessionResponse,
    MessageListResponse,
    MessageResponse,
    MessageSentResponse,
)
from app.services.chat_state import apply_transition
from app.services.session_service import ensure_can_view, is_admin

logger = structlog.get_logger()

MAX_LIST_LIMIT = 1000
PREVIEW_LENGTH = 255


class MessageService:
    """Appends messages to a session and serves them back in order."""

    def __init__(
        self,
        chat_repo: ChatRepository,
        session: AsyncSession,
        events: ChatEventPublisher,
        locks: KeyedLock = chat_locks,
        require_assignment_to_reply: bool | None = None,
    ) -> None:
        self._chat_repo = chat_repo
        self._session = session
        self._events = events
        self._locks = locks
        if require_assignment_to_reply is None:
            require_assignment_to_reply = settings.chat.require_assignment_to_reply
        self._require_assignment = require_assignment_to_reply

    async def append(
        self,
        chat_id: str,
        sender: CurrentUser,
        body: str,
        message_type: str = "text",
        message_id: str | None = None,
    ) -> MessageSentResponse:
        """Append a message and apply its side effects on the session.

        A ``message_id`` the sender already used in this chat returns the
        stored message untouched; any other reuse is rejected. A subject
        writing to a resolved session reopens it; the assigned admin answering
        a reopened session takes it back to assigned.
        """
        preview = body.strip()
        if not preview:
            raise InvalidMessageError(message="Message body must not be empty")
        if len(body) > settings.chat.message_max_length:
            raise InvalidMessageError(
                message=f"Message exceeds {settings.chat.message_max_length} characters"
            )

        async with self._locks.hold(session_key(chat_id)):
            chat = await self._load(chat_id)
            ensure_can_view(chat, sender)

            if message_id is not None:
                stored = await self._chat_repo.find_message_by_id(message_id)
                if stored is not None:
                    if stored.chat_id != chat_id or stored.sender_id != sender.id:
                        raise InvalidMessageError(
                            message="Message id is already used by another message"
                        )
                    await self._session.commit()
                    return self._sent(stored, chat)

            if chat.status == ChatStatus.CLOSED:
                raise InvalidMessageError(message="Chat session is closed")
            self._authorize(chat, sender)

            previous = ChatStatus(chat.status)
            sender_is_admin = is_admin(sender)
            if not sender_is_admin and previous == ChatStatus.RESOLVED:
                apply_transition(
                    self._chat_repo,
                    chat,
                    ChatStatus.REOPENED,
                    actor_id=sender.id,
                    actor_role=sender.role,
                    action="reopen-by-message",
                )
            elif (
                sender_is_admin
                and previous == ChatStatus.REOPENED
                and chat.assigned_admin_id == sender.id
            ):
                apply_transition(
                    self._chat_repo,
                    chat,
                    ChatStatus.ASSIGNED,
                    actor_id=sender.id,
                    actor_role=sender.role,
                    action="reply",
                )

            timestamp = next_tick(chat.last_message_at)
            try:
                message = await self._chat_repo.create_message(
                    message_id=message_id or str(uuid.uuid4()),
                    chat_id=chat_id,
                    sender_id=sender.id,
                    sender_role=sender.role,
                    body=body,
                    message_type=message_type,
                    timestamp=timestamp,
                )
            except IntegrityError as e:
                await self._session.rollback()
                raise InvalidMessageError(
                    message="Message id is already used by another message"
                ) from e

            chat.last_message_at = timestamp
            chat.last_message_preview = preview[:PREVIEW_LENGTH]
            chat.updated_at = timestamp
            for participant in chat.participants:
                if participant.user_id != sender.id:
                    participant.unread_count += 1
            await self._session.commit()

            logger.info(
                "Message appended",
                chat_id=chat_id,
                message_id=message.id,
                sender_id=sender.id,
                status=chat.status,
            )
            await self._events.new_message(message, chat)
            if chat.status != previous:
                await self._events.session_updated(chat, previous)
            return self._sent(message, chat)

    async def list_messages(
        self,
        chat_id: str,
        user: CurrentUser,
        since_id: str | None = None,
        limit: int | None = None,
    ) -> MessageListResponse:
        """Messages in ``(timestamp, id)`` order, strictly after ``since_id``."""
        chat = await self._load(chat_id, fresh=False)
        ensure_can_view(chat, user)

        if limit is None:
            limit = settings.chat.default_page_size
        limit = max(1, min(limit, MAX_LIST_LIMIT))

        after: ChatMessage | None = None
        if since_id is not None:
            after = await self._chat_repo.find_message_by_id(since_id)
            if after is None or after.chat_id != chat_id:
                raise InvalidCursorError(message=f"Unknown message cursor: {since_id}")

        rows = await self._chat_repo.find_messages(
            chat_id,
            limit=limit + 1,
            after_timestamp=after.timestamp if after else None,
            after_id=after.id if after else None,
        )
        return MessageListResponse(
            chat_id=chat_id,
            messages=[MessageResponse.from_model(m) for m in rows[:limit]],
            has_more=len(rows) > limit,
        )

    # --- Internals ---

    async def _load(self, chat_id: str, fresh: bool = True) -> ChatSession:
        chat = await self._chat_repo.get_session(chat_id, fresh=fresh)
        if chat is None:
            raise SessionNotFoundError
        return chat

    def _authorize(self, chat: ChatSession, sender: CurrentUser) -> None:
        if not is_admin(sender):
            if chat.subject_id != sender.id:
                raise AuthorizationError(message="Not a participant of this chat")
            return
        if not self._require_assignment or sender.role == UserRole.SUPER_ADMIN:
            return
        if chat.assigned_admin_id != sender.id:
            raise AuthorizationError(
                message="Only the assigned admin can reply to this chat"
            )

    @staticmethod
    def _sent(message: ChatMessage, chat: ChatSession) -> MessageSentResponse:
        return MessageSentResponse(
            message=MessageResponse.from_model(message),
            chat_session=ChatSessionResponse.from_model(chat),
        )
