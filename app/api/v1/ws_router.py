"""Realtime websocket endpoint."""

from fastapi import APIRouter, Depends, WebSocket
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import get_session_factory
from app.dependencies import get_token_service
from app.realtime.gateway import ConnectionGateway
from app.realtime.hub import get_realtime
from app.services.token_service import TokenService

router = APIRouter(tags=["realtime"])


@router.websocket("/ws/chat")
async def chat_socket(
    websocket: WebSocket,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    token_service: TokenService = Depends(get_token_service),
) -> None:
    """Authenticated event stream for chat sessions and the admin pool."""
    gateway = ConnectionGateway(get_realtime(), session_factory, token_service)
    await gateway.serve(websocket)
