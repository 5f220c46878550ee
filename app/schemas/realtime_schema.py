"""Websocket frames sent by clients."""

from typing import Literal

from pydantic import Field

from app.schemas.chat_schema import CamelModel

SignalName = Literal["join-chat", "leave-chat", "typing"]


class SignalData(CamelModel):
    """Payload of a client signal. ``userId`` is accepted but never trusted."""

    chat_id: str = Field(..., min_length=1, max_length=36)
    is_typing: bool = False
    user_id: str | None = None


class ClientSignal(CamelModel):
    """``{"event": "typing", "data": {"chatId": ..., "isTyping": true}}``"""

    event: SignalName
    data: SignalData
