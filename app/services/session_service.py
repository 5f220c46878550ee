"""Session store: create-or-get, lookups, status changes and read receipts."""

import base64
import json
from collections.abc import Callable
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import ensure_utc
from app.core.exceptions import (
    AuthorizationError,
    InvalidCursorError,
    SessionNotFoundError,
)
from app.core.locks import KeyedLock, chat_locks, session_key, subject_key
from app.models.chat_session import ADMIN_ROLES, ChatSession, ChatStatus, UserRole
from app.realtime.events import ChatEventPublisher
from app.repositories.chat_repo import ChatRepository
from app.schemas.auth_schema import CurrentUser
from app.schemas.chat_schema import (
    ActiveSessionResponse,
    AuditEntryResponse,
    ChatSessionResponse,
    CreateSessionRequest,
    ReadReceiptResponse,
    SessionListResponse,
)
from app.services.chat_state import apply_transition

logger = structlog.get_logger()

MAX_PAGE_SIZE = 100


def encode_cursor(updated_at: datetime, chat_id: str) -> str:
    """Encode pagination cursor as base64url JSON."""
    payload = {"u": ensure_utc(updated_at).isoformat(), "i": chat_id}
    return base64.urlsafe_b64encode(json.dumps(payload).encode()).decode()


def decode_cursor(cursor: str) -> tuple[datetime, str]:
    """Decode pagination cursor. Raises InvalidCursorError on invalid input."""
    try:
        raw = base64.urlsafe_b64decode(cursor.encode())
        data = json.loads(raw)
        updated_at = ensure_utc(datetime.fromisoformat(data["u"]))
        chat_id = str(data["i"])
    except (ValueError, KeyError, TypeError) as exc:
        raise InvalidCursorError(message=f"Invalid cursor: {exc}") from exc
    return updated_at, chat_id


def is_admin(user: CurrentUser) -> bool:
    return user.role in ADMIN_ROLES


def ensure_admin(user: CurrentUser) -> None:
    """Raise AuthorizationError unless ``user`` belongs to the admin pool."""
    if not is_admin(user):
        raise AuthorizationError(message=f"Role '{user.role}' is not permitted")


def ensure_can_view(chat: ChatSession, user: CurrentUser) -> None:
    """Participants and admins may read a session."""
    if not is_admin(user) and not chat.has_participant(user.id):
        raise AuthorizationError(message="Not a participant of this chat")


class SessionService:
    """Owns chat session lifecycle outside of claiming and messaging."""

    def __init__(
        self,
        chat_repo: ChatRepository,
        session: AsyncSession,
        events: ChatEventPublisher,
        locks: KeyedLock = chat_locks,
    ) -> None:
        self._chat_repo = chat_repo
        self._session = session
        self._events = events
        self._locks = locks

    async def create_or_get_session(
        self, user: CurrentUser, request: CreateSessionRequest
    ) -> ChatSessionResponse:
        """Return the subject's live session, creating one if none exists.

        Subjects always open a session for themselves. Admins reach out by
        naming ``userId``; a session they create is claimed by them at once.
        """
        if is_admin(user):
            if request.user_id is None:
                raise AuthorizationError(message="Admins must name a user to chat with")
            subject_id, subject_role = request.user_id, request.user_role
            outreach = True
        else:
            if request.user_id is not None and request.user_id != user.id:
                raise AuthorizationError(message="Cannot open a chat for another user")
            subject_id, subject_role = user.id, user.role
            outreach = False

        async with self._locks.hold(subject_key(subject_id)):
            existing = await self._chat_repo.find_live_session_for_subject(subject_id)
            if existing is not None:
                await self._session.commit()
                return ChatSessionResponse.from_model(existing)

            chat = await self._chat_repo.create_session(
                subject_id=subject_id,
                subject_role=subject_role,
                is_support=request.is_support_chat and not outreach,
            )
            self._chat_repo.add_audit_entry(
                chat_id=chat.id,
                actor_id=user.id,
                action="create",
                to_status=ChatStatus.OPEN,
            )
            if outreach:
                apply_transition(
                    self._chat_repo,
                    chat,
                    ChatStatus.ASSIGNED,
                    actor_id=user.id,
                    actor_role=user.role,
                    action="claim",
                )
            await self._session.commit()

            logger.info(
                "Chat session created",
                chat_id=chat.id,
                subject_id=subject_id,
                created_by=user.id,
                status=chat.status,
            )
            await self._events.session_created(chat)
            if outreach:
                await self._events.session_claimed(chat)
            return ChatSessionResponse.from_model(chat)

    async def get_active_session(self, user: CurrentUser) -> ActiveSessionResponse:
        """Most recently active non-closed session the user takes part in."""
        chat = await self._chat_repo.find_active_session_for_user(user.id)
        if chat is None:
            return ActiveSessionResponse(has_active_chat=False)
        return ActiveSessionResponse(
            has_active_chat=True,
            chat_session=ChatSessionResponse.from_model(chat),
        )

    async def get_session(self, chat_id: str, user: CurrentUser) -> ChatSessionResponse:
        chat = await self._load(chat_id)
        ensure_can_view(chat, user)
        return ChatSessionResponse.from_model(chat)

    async def update_status(
        self, chat_id: str, new_status: ChatStatus, user: CurrentUser
    ) -> ChatSessionResponse:
        """Move a session along the status machine on behalf of an admin."""
        ensure_admin(user)
        return await self._transition(chat_id, ChatStatus(new_status), user)

    async def resolve(self, chat_id: str, user: CurrentUser) -> ChatSessionResponse:
        """Resolve; only the assigned admin or a super-admin may do this."""
        ensure_admin(user)

        def _authorize(chat: ChatSession) -> None:
            if user.role == UserRole.SUPER_ADMIN:
                return
            if chat.assigned_admin_id != user.id:
                raise AuthorizationError(
                    message="Only the assigned admin can resolve this chat"
                )

        return await self._transition(chat_id, ChatStatus.RESOLVED, user, _authorize)

    async def reopen(self, chat_id: str, user: CurrentUser) -> ChatSessionResponse:
        ensure_admin(user)
        return await self._transition(chat_id, ChatStatus.REOPENED, user)

    async def close(self, chat_id: str, user: CurrentUser) -> ChatSessionResponse:
        ensure_admin(user)
        return await self._transition(chat_id, ChatStatus.CLOSED, user)

    async def list_user_sessions(
        self,
        user: CurrentUser,
        limit: int = 20,
        cursor: str | None = None,
    ) -> SessionListResponse:
        """Sessions the caller participates in, newest activity first."""
        return await self._list(limit=limit, cursor=cursor, user_id=user.id)

    async def list_sessions(
        self,
        user: CurrentUser,
        status: ChatStatus | None = None,
        limit: int = 20,
        cursor: str | None = None,
    ) -> SessionListResponse:
        """Admin view over every session, optionally filtered by status."""
        ensure_admin(user)
        return await self._list(limit=limit, cursor=cursor, status=status)

    async def mark_read(self, chat_id: str, user: CurrentUser) -> ReadReceiptResponse:
        """Reset the caller's unread count and add them to ``read_by``."""
        async with self._locks.hold(session_key(chat_id)):
            chat = await self._load(chat_id, fresh=True)
            ensure_can_view(chat, user)

            participant = chat.participant(user.id)
            if participant is not None:
                participant.unread_count = 0
            marked = await self._chat_repo.mark_messages_read(chat_id, user.id)
            await self._session.commit()

            if marked:
                await self._events.messages_read(chat_id, user.id, marked)
        return ReadReceiptResponse(chat_id=chat_id, marked_count=marked)

    async def get_audit(self, chat_id: str, user: CurrentUser) -> list[AuditEntryResponse]:
        """Audit trail for super-admins."""
        if user.role != UserRole.SUPER_ADMIN:
            raise AuthorizationError(message="Audit trail is restricted to super admins")
        await self._load(chat_id)
        entries = await self._chat_repo.find_audit_entries(chat_id)
        return [AuditEntryResponse.from_model(entry) for entry in entries]

    # --- Internals ---

    async def _load(self, chat_id: str, fresh: bool = False) -> ChatSession:
        chat = await self._chat_repo.get_session(chat_id, fresh=fresh)
        if chat is None:
            raise SessionNotFoundError
        return chat

    async def _transition(
        self,
        chat_id: str,
        target: ChatStatus,
        user: CurrentUser,
        authorize: Callable[[ChatSession], None] | None = None,
    ) -> ChatSessionResponse:
        async with self._locks.hold(session_key(chat_id)):
            chat = await self._load(chat_id, fresh=True)
            if authorize is not None:
                authorize(chat)
            previous = apply_transition(
                self._chat_repo,
                chat,
                target,
                actor_id=user.id,
                actor_role=user.role,
            )
            await self._session.commit()

            logger.info(
                "Chat status changed",
                chat_id=chat_id,
                from_status=previous,
                to_status=target,
                actor_id=user.id,
            )
            if previous == ChatStatus.OPEN and target == ChatStatus.ASSIGNED:
                await self._events.session_claimed(chat)
            else:
                await self._events.session_updated(chat, previous)
            return ChatSessionResponse.from_model(chat)

    async def _list(
        self,
        limit: int,
        cursor: str | None,
        user_id: str | None = None,
        status: ChatStatus | None = None,
    ) -> SessionListResponse:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        cursor_updated_at: datetime | None = None
        cursor_id: str | None = None
        if cursor is not None:
            cursor_updated_at, cursor_id = decode_cursor(cursor)

        rows = await self._chat_repo.find_sessions(
            limit=limit + 1,
            user_id=user_id,
            status=status,
            cursor_updated_at=cursor_updated_at,
            cursor_id=cursor_id,
        )

        has_next = len(rows) > limit
        page_rows = rows[:limit]

        next_cursor: str | None = None
        if has_next and page_rows:
            last = page_rows[-1]
            next_cursor = encode_cursor(last.updated_at, last.id)

        return SessionListResponse(
            chat_sessions=[ChatSessionResponse.from_model(r) for r in page_rows],
            next_cursor=next_cursor,
            has_next=has_next,
        )
