"""Chat repository for session, participant, message and audit queries."""

from datetime import datetime

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.models.chat_audit import ChatAuditEntry
from app.models.chat_message import ChatMessage
from app.models.chat_session import ChatParticipant, ChatSession, ChatStatus


class ChatRepository:
    """Encapsulates chat database queries. Callers own the transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # --- Sessions ---

    async def get_session(self, chat_id: str, fresh: bool = False) -> ChatSession | None:
        """Find a session by id; ``fresh`` overwrites any stale identity-map copy."""
        stmt = select(ChatSession).where(ChatSession.id == chat_id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_live_session_for_subject(self, subject_id: str) -> ChatSession | None:
        """Latest non-closed session whose subject is ``subject_id``."""
        result = await self._session.execute(
            select(ChatSession)
            .where(
                and_(
                    ChatSession.subject_id == subject_id,
                    ChatSession.status != ChatStatus.CLOSED,
                )
            )
            .order_by(ChatSession.created_at.desc(), ChatSession.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_active_session_for_user(self, user_id: str) -> ChatSession | None:
        """Most recently active non-closed session that ``user_id`` takes part in."""
        activity = func.coalesce(ChatSession.last_message_at, ChatSession.created_at)
        result = await self._session.execute(
            select(ChatSession)
            .join(ChatParticipant, ChatParticipant.chat_id == ChatSession.id)
            .where(
                and_(
                    ChatParticipant.user_id == user_id,
                    ChatSession.status != ChatStatus.CLOSED,
                )
            )
            .order_by(activity.desc(), ChatSession.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_live_chat_ids_for_user(self, user_id: str) -> list[str]:
        """Ids of every non-closed session ``user_id`` participates in."""
        result = await self._session.execute(
            select(ChatSession.id)
            .join(ChatParticipant, ChatParticipant.chat_id == ChatSession.id)
            .where(
                and_(
                    ChatParticipant.user_id == user_id,
                    ChatSession.status != ChatStatus.CLOSED,
                )
            )
        )
        return list(result.scalars().all())

    async def create_session(
        self,
        subject_id: str,
        subject_role: str,
        is_support: bool,
    ) -> ChatSession:
        """Create an open session with its subject participant."""
        now = utcnow()
        chat = ChatSession(
            subject_id=subject_id,
            is_support=is_support,
            status=ChatStatus.OPEN,
            created_at=now,
            updated_at=now,
            participants=[
                ChatParticipant(
                    user_id=subject_id,
                    role=subject_role,
                    position=0,
                    unread_count=0,
                    joined_at=now,
                )
            ],
        )
        self._session.add(chat)
        await self._session.flush()
        return chat

    def set_admin_participant(self, chat: ChatSession, admin_id: str, role: str) -> None:
        """Attach ``admin_id`` as the session's single admin participant."""
        current = chat.admin_participant
        if current is None:
            chat.participants.append(
                ChatParticipant(
                    user_id=admin_id,
                    role=role,
                    position=len(chat.participants),
                    unread_count=0,
                    joined_at=utcnow(),
                )
            )
            return
        if current.user_id != admin_id:
            current.user_id = admin_id
            current.role = role
            current.unread_count = 0
            current.joined_at = utcnow()

    async def claim_open_session(self, chat_id: str, admin_id: str) -> bool:
        """Compare-and-swap ``open`` -> ``assigned``. True if this call won."""
        result = await self._session.execute(
            update(ChatSession)
            .where(
                and_(
                    ChatSession.id == chat_id,
                    ChatSession.status == ChatStatus.OPEN,
                    ChatSession.assigned_admin_id.is_(None),
                )
            )
            .values(
                status=ChatStatus.ASSIGNED,
                assigned_admin_id=admin_id,
                last_admin_id=admin_id,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def find_sessions(
        self,
        limit: int,
        user_id: str | None = None,
        status: str | None = None,
        cursor_updated_at: datetime | None = None,
        cursor_id: str | None = None,
    ) -> list[ChatSession]:
        """Fetch sessions with keyset pagination (updated_at DESC, id DESC).

        Returns ``limit`` rows. The caller should request ``limit + 1`` to
        detect whether a next page exists.
        """
        stmt = select(ChatSession)
        if user_id is not None:
            member = select(ChatParticipant.chat_id).where(
                ChatParticipant.user_id == user_id
            )
            stmt = stmt.where(ChatSession.id.in_(member))
        if status is not None:
            stmt = stmt.where(ChatSession.status == status)

        if cursor_updated_at is not None and cursor_id is not None:
            stmt = stmt.where(
                or_(
                    ChatSession.updated_at < cursor_updated_at,
                    and_(
                        ChatSession.updated_at == cursor_updated_at,
                        ChatSession.id < cursor_id,
                    ),
                )
            )

        stmt = stmt.order_by(
            ChatSession.updated_at.desc(),
            ChatSession.id.desc(),
        ).limit(limit)

        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    # --- Messages ---

    async def find_message_by_id(self, message_id: str) -> ChatMessage | None:
        """Find a chat message by its global id."""
        result = await self._session.execute(
            select(ChatMessage).where(ChatMessage.id == message_id)
        )
        return result.scalar_one_or_none()

    async def create_message(
        self,
        message_id: str,
        chat_id: str,
        sender_id: str,
        sender_role: str,
        body: str,
        message_type: str,
        timestamp: datetime,
    ) -> ChatMessage:
        """Append a single message."""
        message = ChatMessage(
            id=message_id,
            chat_id=chat_id,
            sender_id=sender_id,
            sender_role=sender_role,
            body=body,
            message_type=message_type,
            timestamp=timestamp,
            read_by=[sender_id],
        )
        self._session.add(message)
        await self._session.flush()
        return message

    async def find_messages(
        self,
        chat_id: str,
        limit: int,
        after_timestamp: datetime | None = None,
        after_id: str | None = None,
    ) -> list[ChatMessage]:
        """Messages ordered by (timestamp, id), optionally strictly after a cursor."""
        stmt = select(ChatMessage).where(ChatMessage.chat_id == chat_id)
        if after_timestamp is not None and after_id is not None:
            stmt = stmt.where(
                or_(
                    ChatMessage.timestamp > after_timestamp,
                    and_(
                        ChatMessage.timestamp == after_timestamp,
                        ChatMessage.id > after_id,
                    ),
                )
            )
        stmt = stmt.order_by(ChatMessage.timestamp.asc(), ChatMessage.id.asc()).limit(
            limit
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def mark_messages_read(self, chat_id: str, user_id: str) -> int:
        """Add ``user_id`` to read_by on messages sent by others. Returns count."""
        result = await self._session.execute(
            select(ChatMessage).where(
                and_(
                    ChatMessage.chat_id == chat_id,
                    ChatMessage.sender_id != user_id,
                )
            )
        )
        marked = 0
        for message in result.scalars():
            if user_id not in message.read_by:
                # Reassign so the JSON column is flagged dirty.
                message.read_by = [*message.read_by, user_id]
                marked += 1
        await self._session.flush()
        return marked

    # --- Audit ---

    def add_audit_entry(
        self,
        chat_id: str,
        actor_id: str,
        action: str,
        from_status: str | None = None,
        to_status: str | None = None,
        detail: str | None = None,
    ) -> ChatAuditEntry:
        """Stage an audit row in the current transaction."""
        entry = ChatAuditEntry(
            chat_id=chat_id,
            actor_id=actor_id,
            action=action,
            from_status=from_status,
            to_status=to_status,
            detail=detail,
        )
        self._session.add(entry)
        return entry

    async def find_audit_entries(self, chat_id: str) -> list[ChatAuditEntry]:
        """Audit trail for a session in chronological order."""
        result = await self._session.execute(
            select(ChatAuditEntry)
            .where(ChatAuditEntry.chat_id == chat_id)
            .order_by(ChatAuditEntry.id.asc())
        )
        return list(result.scalars().all())
