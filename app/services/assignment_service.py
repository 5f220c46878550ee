"""Assignment arbiter: exclusive claims and reassignment of chat sessions."""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AlreadyClaimedError,
    AuthorizationError,
    InvalidAssignmentError,
    InvalidTransitionError,
    SessionNotFoundError,
)
from app.core.locks import KeyedLock, chat_locks, session_key
from app.models.chat_session import OWNED_STATUSES, ChatSession, ChatStatus, UserRole
from app.realtime.events import ChatEventPublisher
from app.repositories.chat_repo import ChatRepository
from app.schemas.auth_schema import CurrentUser
from app.schemas.chat_schema import AssignTarget, AssignTo, ChatSessionResponse, SelfClaim
from app.services.chat_state import apply_transition
from app.services.session_service import ensure_admin

logger = structlog.get_logger()


def ensure_assignable(chat: ChatSession, admin_id: str) -> None:
    """The subject of a session can never be its admin."""
    if admin_id == chat.subject_id:
        raise InvalidAssignmentError(
            message="A chat cannot be assigned to its own subject"
        )


class AssignmentService:
    """Decides which admin owns a session.

    Claims are first-come-first-served: a fast status pre-check rejects
    sessions that are no longer open without waiting, then a conditional
    UPDATE under the per-session lock picks exactly one winner.
    """

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

    async def assign(
        self, chat_id: str, target: AssignTarget, user: CurrentUser
    ) -> ChatSessionResponse:
        """Route an assignment request to claim, dispatch or reassign."""
        ensure_admin(user)
        match target:
            case SelfClaim():
                return await self.claim(chat_id, user)
            case AssignTo(admin_id=admin_id) if admin_id == user.id:
                chat = await self._load(chat_id)
                if chat.status == ChatStatus.OPEN:
                    return await self.claim(chat_id, user)
                return await self.reassign(chat_id, admin_id, user)
            case AssignTo(admin_id=admin_id):
                chat = await self._load(chat_id)
                if chat.status == ChatStatus.OPEN:
                    return await self.dispatch(chat_id, admin_id, user)
                return await self.reassign(chat_id, admin_id, user)
            case _:
                raise ValueError(f"Unsupported assignment target: {target!r}")

    async def claim(self, chat_id: str, user: CurrentUser) -> ChatSessionResponse:
        """Claim an open session for the calling admin."""
        ensure_admin(user)
        return await self._claim_for(chat_id, user.id, user.role, user)

    async def dispatch(
        self, chat_id: str, admin_id: str, user: CurrentUser
    ) -> ChatSessionResponse:
        """Super-admin hands an open session to another admin."""
        if user.role != UserRole.SUPER_ADMIN:
            raise AuthorizationError(
                message="Only super admins can assign a chat to another admin"
            )
        return await self._claim_for(chat_id, admin_id, UserRole.ADMIN, user)

    async def reassign(
        self, chat_id: str, new_admin_id: str, user: CurrentUser
    ) -> ChatSessionResponse:
        """Overwrite ownership of an assigned or reopened session."""
        ensure_admin(user)
        async with self._locks.hold(session_key(chat_id)):
            chat = await self._load(chat_id, fresh=True)
            if user.role != UserRole.SUPER_ADMIN and chat.assigned_admin_id != user.id:
                raise AuthorizationError(
                    message="Only the assigned admin or a super admin can reassign"
                )
            ensure_assignable(chat, new_admin_id)
            if chat.status not in OWNED_STATUSES:
                raise InvalidTransitionError(
                    current=chat.status, requested=ChatStatus.ASSIGNED
                )

            previous = ChatStatus(chat.status)
            previous_admin = chat.assigned_admin_id
            new_role = user.role if new_admin_id == user.id else UserRole.ADMIN
            chat.assigned_admin_id = new_admin_id
            self._chat_repo.set_admin_participant(chat, new_admin_id, new_role)
            if previous == ChatStatus.REOPENED:
                apply_transition(
                    self._chat_repo,
                    chat,
                    ChatStatus.ASSIGNED,
                    actor_id=user.id,
                    actor_role=user.role,
                    action="reassign",
                )
            else:
                chat.last_admin_id = new_admin_id
                self._chat_repo.add_audit_entry(
                    chat_id=chat.id,
                    actor_id=user.id,
                    action="reassign",
                    from_status=previous,
                    to_status=chat.status,
                    detail=f"{previous_admin} -> {new_admin_id}",
                )
            await self._session.commit()

            logger.info(
                "Chat reassigned",
                chat_id=chat_id,
                from_admin=previous_admin,
                to_admin=new_admin_id,
                actor_id=user.id,
            )
            await self._events.session_updated(chat, previous)
            return ChatSessionResponse.from_model(chat)

    # --- Internals ---

    async def _load(self, chat_id: str, fresh: bool = False) -> ChatSession:
        chat = await self._chat_repo.get_session(chat_id, fresh=fresh)
        if chat is None:
            raise SessionNotFoundError
        return chat

    async def _claim_for(
        self,
        chat_id: str,
        admin_id: str,
        admin_role: str,
        actor: CurrentUser,
    ) -> ChatSessionResponse:
        chat = await self._load(chat_id, fresh=True)
        ensure_assignable(chat, admin_id)
        if chat.status != ChatStatus.OPEN:
            raise AlreadyClaimedError(assigned_admin_id=chat.assigned_admin_id)
        # End the read transaction before queueing on the lock.
        await self._session.commit()

        async with self._locks.hold(session_key(chat_id)):
            won = await self._chat_repo.claim_open_session(chat_id, admin_id)
            if not won:
                await self._session.rollback()
                current = await self._load(chat_id, fresh=True)
                logger.info(
                    "Chat claim lost",
                    chat_id=chat_id,
                    admin_id=admin_id,
                    assigned_admin_id=current.assigned_admin_id,
                )
                raise AlreadyClaimedError(assigned_admin_id=current.assigned_admin_id)

            chat = await self._load(chat_id, fresh=True)
            self._chat_repo.set_admin_participant(chat, admin_id, admin_role)
            self._chat_repo.add_audit_entry(
                chat_id=chat_id,
                actor_id=actor.id,
                action="claim",
                from_status=ChatStatus.OPEN,
                to_status=ChatStatus.ASSIGNED,
                detail=None if admin_id == actor.id else f"dispatched to {admin_id}",
            )
            await self._session.commit()

            logger.info("Chat claimed", chat_id=chat_id, admin_id=admin_id)
            await self._events.session_claimed(chat)
            return ChatSessionResponse.from_model(chat)
