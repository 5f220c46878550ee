"""Chat session REST API router."""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query, Request

from app.core.config import settings
from app.core.rate_limit import limiter
from app.dependencies import (
    ADMIN_POOL,
    ALL_ROLES,
    get_assignment_service,
    get_current_user,
    get_message_service,
    get_session_service,
    require_role,
)
from app.models.chat_session import ChatStatus
from app.schemas.auth_schema import CurrentUser
from app.schemas.chat_schema import (
    ActiveSessionResponse,
    AssignRequest,
    AuditEntryResponse,
    ChatSessionResponse,
    CreateSessionRequest,
    MessageListResponse,
    MessageSentResponse,
    ReadReceiptResponse,
    SendMessageRequest,
    SessionListResponse,
)
from app.schemas.response_schema import ApiResponse, success_response
from app.services.assignment_service import AssignmentService
from app.services.message_service import MessageService
from app.services.session_service import SessionService

router = APIRouter(
    prefix="/api/v1/chat",
    tags=["chat"],
    dependencies=[Depends(require_role(*ALL_ROLES))],
)

CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
SessionServiceDep = Annotated[SessionService, Depends(get_session_service)]
AssignmentServiceDep = Annotated[AssignmentService, Depends(get_assignment_service)]
MessageServiceDep = Annotated[MessageService, Depends(get_message_service)]


@router.post("/session", response_model=ApiResponse[ChatSessionResponse])
async def create_session(
    payload: CreateSessionRequest,
    user: CurrentUserDep,
    service: SessionServiceDep,
) -> dict:
    """Create a chat session or return the subject's live one."""
    result = await service.create_or_get_session(user, payload)
    return success_response(result)


@router.post("/message", response_model=ApiResponse[MessageSentResponse])
@limiter.limit(settings.chat.message_rate_limit)
async def send_message(
    request: Request,
    payload: SendMessageRequest,
    user: CurrentUserDep,
    service: MessageServiceDep,
) -> dict:
    """Append a message to a session."""
    result = await service.append(
        chat_id=payload.chat_id,
        sender=user,
        body=payload.message,
        message_type=payload.message_type,
        message_id=payload.message_id,
    )
    return success_response(result, message="Message sent")


@router.get("/sessions/user", response_model=ApiResponse[SessionListResponse])
async def list_user_sessions(
    user: CurrentUserDep,
    service: SessionServiceDep,
    cursor: str | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
) -> dict:
    """List the caller's sessions with cursor-based pagination."""
    result = await service.list_user_sessions(user, limit=limit, cursor=cursor)
    return success_response(result)


@router.get(
    "/sessions",
    response_model=ApiResponse[SessionListResponse],
    dependencies=[Depends(require_role(*ADMIN_POOL))],
)
async def list_sessions(
    user: CurrentUserDep,
    service: SessionServiceDep,
    status: ChatStatus | None = Query(default=None),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
) -> dict:
    """List every session, optionally filtered by status."""
    result = await service.list_sessions(user, status=status, limit=limit, cursor=cursor)
    return success_response(result)


@router.get("/active", response_model=ApiResponse[ActiveSessionResponse])
async def get_active_session(
    user: CurrentUserDep,
    service: SessionServiceDep,
) -> dict:
    """Restore the caller's most recently active chat."""
    result = await service.get_active_session(user)
    return success_response(result)


@router.get("/{chat_id}/messages", response_model=ApiResponse[MessageListResponse])
async def list_messages(
    chat_id: str,
    user: CurrentUserDep,
    service: MessageServiceDep,
    since: str | None = Query(default=None, max_length=64),
    limit: int | None = Query(default=None, ge=1, le=1000),
) -> dict:
    """Messages in order, optionally only those after ``since``."""
    result = await service.list_messages(chat_id, user, since_id=since, limit=limit)
    return success_response(result)


@router.get("/{chat_id}/audit", response_model=ApiResponse[list[AuditEntryResponse]])
async def get_audit_trail(
    chat_id: str,
    user: CurrentUserDep,
    service: SessionServiceDep,
) -> dict:
    result = await service.get_audit(chat_id, user)
    return success_response(result)


@router.get("/{chat_id}", response_model=ApiResponse[ChatSessionResponse])
async def get_session(
    chat_id: str,
    user: CurrentUserDep,
    service: SessionServiceDep,
) -> dict:
    result = await service.get_session(chat_id, user)
    return success_response(result)


@router.put(
    "/{chat_id}/assign",
    response_model=ApiResponse[ChatSessionResponse],
    dependencies=[Depends(require_role(*ADMIN_POOL))],
)
async def assign_session(
    chat_id: str,
    user: CurrentUserDep,
    service: AssignmentServiceDep,
    payload: Annotated[AssignRequest | None, Body()] = None,
) -> dict:
    """Claim a session, or hand it to ``adminId``."""
    target = (payload or AssignRequest()).to_target()
    result = await service.assign(chat_id, target, user)
    return success_response(result, message="Chat assigned")


@router.put(
    "/{chat_id}/resolve",
    response_model=ApiResponse[ChatSessionResponse],
    dependencies=[Depends(require_role(*ADMIN_POOL))],
)
async def resolve_session(
    chat_id: str,
    user: CurrentUserDep,
    service: SessionServiceDep,
) -> dict:
    result = await service.resolve(chat_id, user)
    return success_response(result, message="Chat resolved")


@router.put(
    "/{chat_id}/reopen",
    response_model=ApiResponse[ChatSessionResponse],
    dependencies=[Depends(require_role(*ADMIN_POOL))],
)
async def reopen_session(
    chat_id: str,
    user: CurrentUserDep,
    service: SessionServiceDep,
) -> dict:
    result = await service.reopen(chat_id, user)
    return success_response(result, message="Chat reopened")


@router.put(
    "/{chat_id}/close",
    response_model=ApiResponse[ChatSessionResponse],
    dependencies=[Depends(require_role(*ADMIN_POOL))],
)
async def close_session(
    chat_id: str,
    user: CurrentUserDep,
    service: SessionServiceDep,
) -> dict:
    result = await service.close(chat_id, user)
    return success_response(result, message="Chat closed")


@router.put("/{chat_id}/read", response_model=ApiResponse[ReadReceiptResponse])
async def mark_read(
    chat_id: str,
    user: CurrentUserDep,
    service: SessionServiceDep,
) -> dict:
    """Reset the caller's unread count for a session."""
    result = await service.mark_read(chat_id, user)
    return success_response(result)
