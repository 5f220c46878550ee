"""Chat message database model."""

from datetime import datetime

from sqlalchemy import JSON, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, PreciseDateTime


class ChatMessage(Base):
    """Single message in a session's append-only log."""

    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_chat_id_timestamp_id", "chat_id", "timestamp", "id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    chat_id: Mapped[str] = mapped_column(
        ForeignKey("chat_sessions.id"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sender_role: Mapped[str] = mapped_column(String(20), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="text"
    )
    timestamp: Mapped[datetime] = mapped_column(PreciseDateTime, nullable=False)
    read_by: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
