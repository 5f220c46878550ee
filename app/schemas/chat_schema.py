"""Chat request and response schemas.

Wire format is camelCase to match the CRM web client; Python code uses the
snake_case field names.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.core.clock import ensure_utc
from app.models.chat_audit import ChatAuditEntry
from app.models.chat_message import ChatMessage
from app.models.chat_session import ChatSession, ChatStatus

MessageType = Literal["text", "image", "file"]
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# --- Requests ---


class CreateSessionRequest(CamelModel):
    """Create-or-get a chat session.

    Support requests open a session for the caller. Admins pass ``userId``
    (and ``userRole`` when the user is a salesperson) to reach out to a user.
    """

    user_id: str | None = Field(default=None, max_length=64)
    user_role: Literal["customer", "salesperson"] = "customer"
    is_support_chat: bool = False


class SendMessageRequest(CamelModel):
    """Append a message. ``messageId`` makes client retries idempotent."""

    chat_id: str = Field(..., min_length=1, max_length=36)
    message: str = Field(..., max_length=65535)
    message_type: MessageType = "text"
    message_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=64,
        pattern=r"^[A-Za-z0-9_\-:.]+$",
    )


@dataclass(frozen=True)
class SelfClaim:
    """Caller claims the session for themselves."""


@dataclass(frozen=True)
class AssignTo:
    """Caller hands the session to a specific admin."""

    admin_id: str


AssignTarget = SelfClaim | AssignTo


class AssignRequest(CamelModel):
    """Assign a session; omitting ``adminId`` means self-claim."""

    admin_id: str | None = Field(default=None, min_length=1, max_length=64)

    def to_target(self) -> AssignTarget:
        if self.admin_id is None:
            return SelfClaim()
        return AssignTo(admin_id=self.admin_id)


# --- Responses ---


class ParticipantResponse(CamelModel):
    """Session member."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    role: str
    unread_count: int
    joined_at: UtcDatetime


class ChatSessionResponse(CamelModel):
    """Chat session as seen by clients."""

    model_config = ConfigDict(frozen=True)

    chat_id: str
    subject_id: str
    is_support: bool
    status: ChatStatus
    assigned_admin_id: str | None = None
    participants: list[ParticipantResponse]
    unread_count: dict[str, int]
    last_message: str | None = None
    last_message_at: UtcDatetime | None = None
    created_at: UtcDatetime
    updated_at: UtcDatetime

    @classmethod
    def from_model(cls, chat: ChatSession) -> "ChatSessionResponse":
        return cls(
            chat_id=chat.id,
            subject_id=chat.subject_id,
            is_support=chat.is_support,
            status=ChatStatus(chat.status),
            assigned_admin_id=chat.assigned_admin_id,
            participants=[
                ParticipantResponse.model_validate(p) for p in chat.participants
            ],
            unread_count=chat.unread_counts,
            last_message=chat.last_message_preview,
            last_message_at=chat.last_message_at,
            created_at=chat.created_at,
            updated_at=chat.updated_at,
        )


class MessageResponse(CamelModel):
    """Single stored message."""

    model_config = ConfigDict(frozen=True)

    id: str
    chat_id: str
    sender_id: str
    sender_role: str
    body: str
    message_type: str
    timestamp: UtcDatetime
    read_by: list[str]

    @classmethod
    def from_model(cls, message: ChatMessage) -> "MessageResponse":
        return cls.model_validate(message)


class MessageSentResponse(CamelModel):
    """Stored message plus the session state after the append."""

    model_config = ConfigDict(frozen=True)

    message: MessageResponse
    chat_session: ChatSessionResponse


class MessageListResponse(CamelModel):
    """Ordered page of messages."""

    model_config = ConfigDict(frozen=True)

    chat_id: str
    messages: list[MessageResponse]
    has_more: bool = False


class SessionListResponse(CamelModel):
    """Paginated session list with cursor metadata."""

    model_config = ConfigDict(frozen=True)

    chat_sessions: list[ChatSessionResponse]
    next_cursor: str | None = None
    has_next: bool = False


class ActiveSessionResponse(CamelModel):
    """Reconnect/restore lookup result."""

    model_config = ConfigDict(frozen=True)

    has_active_chat: bool
    chat_session: ChatSessionResponse | None = None


class ReadReceiptResponse(CamelModel):
    """Result of marking a session read."""

    model_config = ConfigDict(frozen=True)

    chat_id: str
    marked_count: int


class AuditEntryResponse(CamelModel):
    """One audit trail row."""

    model_config = ConfigDict(frozen=True)

    actor_id: str
    action: str
    from_status: str | None = None
    to_status: str | None = None
    detail: str | None = None
    created_at: UtcDatetime

    @classmethod
    def from_model(cls, entry: ChatAuditEntry) -> "AuditEntryResponse":
        return cls.model_validate(entry)
