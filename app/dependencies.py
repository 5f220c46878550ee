"""Global dependencies for the application."""

from collections.abc import Callable

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_async_session
from app.core.exceptions import AuthenticationError, AuthorizationError
from app.core.redis import get_optional_redis
from app.models.chat_session import UserRole
from app.realtime.events import ChatEventPublisher
from app.realtime.hub import get_realtime
from app.repositories.chat_repo import ChatRepository
from app.schemas.auth_schema import CurrentUser
from app.services.assignment_service import AssignmentService
from app.services.message_service import MessageService
from app.services.session_service import SessionService
from app.services.token_service import TokenService

ADMIN_POOL = (UserRole.ADMIN, UserRole.SUPER_ADMIN)
ALL_ROLES = (UserRole.CUSTOMER, UserRole.SALESPERSON, *ADMIN_POOL)


# --- Auth dependencies ---


def get_token_service() -> TokenService:
    """Get TokenService backed by the active Redis client, if any."""
    return TokenService(get_optional_redis())


def get_current_user(request: Request) -> CurrentUser:
    """Extract the authenticated user from middleware-populated state."""
    state = getattr(request, "state", None)
    user_id = getattr(state, "user_id", None) if state else None
    if user_id is None:
        raise AuthenticationError(message="Not authenticated")
    return CurrentUser(
        id=state.user_id,
        email=state.email,
        role=state.role,
    )


def require_role(*allowed_roles: str) -> Callable[..., CurrentUser]:
    """Dependency factory that enforces role-based access control."""

    def _check(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        if current_user.role not in allowed_roles:
            raise AuthorizationError(
                message=f"Role '{current_user.role}' is not permitted"
            )
        return current_user

    return _check


# --- Chat dependencies ---


def get_chat_repository(
    session: AsyncSession = Depends(get_async_session),
) -> ChatRepository:
    """Get ChatRepository bound to the current session."""
    return ChatRepository(session)


def get_event_publisher() -> ChatEventPublisher:
    """Get the publisher of the process-wide realtime hub."""
    return get_realtime().events


def get_session_service(
    chat_repo: ChatRepository = Depends(get_chat_repository),
    session: AsyncSession = Depends(get_async_session),
    events: ChatEventPublisher = Depends(get_event_publisher),
) -> SessionService:
    return SessionService(chat_repo=chat_repo, session=session, events=events)


def get_assignment_service(
    chat_repo: ChatRepository = Depends(get_chat_repository),
    session: AsyncSession = Depends(get_async_session),
    events: ChatEventPublisher = Depends(get_event_publisher),
) -> AssignmentService:
    return AssignmentService(chat_repo=chat_repo, session=session, events=events)


def get_message_service(
    chat_repo: ChatRepository = Depends(get_chat_repository),
    session: AsyncSession = Depends(get_async_session),
    events: ChatEventPublisher = Depends(get_event_publisher),
) -> MessageService:
    return MessageService(chat_repo=chat_repo, session=session, events=events)
