"""Chat session and participant database models."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import utcnow
from app.core.database import Base, PreciseDateTime


class ChatStatus(StrEnum):
    """Lifecycle states of a chat session."""

    OPEN = "open"
    ASSIGNED = "assigned"
    RESOLVED = "resolved"
    REOPENED = "reopened"
    CLOSED = "closed"


class UserRole(StrEnum):
    """CRM roles that can take part in a chat."""

    CUSTOMER = "customer"
    SALESPERSON = "salesperson"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


ADMIN_ROLES: frozenset[str] = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})
SUBJECT_ROLES: frozenset[str] = frozenset({UserRole.CUSTOMER, UserRole.SALESPERSON})
OWNED_STATUSES: frozenset[str] = frozenset({ChatStatus.ASSIGNED, ChatStatus.REOPENED})


def _new_id() -> str:
    return str(uuid.uuid4())


class ChatSession(Base):
    """Support conversation between one subject and at most one admin."""

    __tablename__ = "chat_sessions"
    __table_args__ = (
        Index("ix_chat_sessions_subject_id_status", "subject_id", "status"),
        Index("ix_chat_sessions_updated_at_id", "updated_at", "id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    is_support: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ChatStatus.OPEN, index=True
    )
    assigned_admin_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    last_admin_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_message_preview: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        PreciseDateTime, nullable=False, default=utcnow
    )
    last_message_at: Mapped[datetime | None] = mapped_column(
        PreciseDateTime, nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        PreciseDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    participants: Mapped[list["ChatParticipant"]] = relationship(
        back_populates="chat",
        order_by="ChatParticipant.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def admin_participant(self) -> "ChatParticipant | None":
        """The admin row, if an admin has joined."""
        for participant in self.participants:
            if participant.role in ADMIN_ROLES:
                return participant
        return None

    def participant(self, user_id: str) -> "ChatParticipant | None":
        """Find the participant row for ``user_id``."""
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def has_participant(self, user_id: str) -> bool:
        return self.participant(user_id) is not None

    @property
    def unread_counts(self) -> dict[str, int]:
        return {p.user_id: p.unread_count for p in self.participants}


class ChatParticipant(Base):
    """Membership row; position 0 is always the subject."""

    __tablename__ = "chat_participants"
    __table_args__ = (
        Index("ix_chat_participants_user_id_chat_id", "user_id", "chat_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    chat_id: Mapped[str] = mapped_column(
        ForeignKey("chat_sessions.id"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unread_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    joined_at: Mapped[datetime] = mapped_column(
        PreciseDateTime, nullable=False, default=utcnow
    )

    chat: Mapped[ChatSession] = relationship(back_populates="participants")
