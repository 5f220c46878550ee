"""Unit tests for SessionService."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AuthorizationError,
    InvalidCursorError,
    InvalidTransitionError,
    SessionNotFoundError,
)
from app.core.locks import KeyedLock
from app.models.chat_session import ChatStatus
from app.repositories.chat_repo import ChatRepository
from app.schemas.auth_schema import CurrentUser
from app.schemas.chat_schema import CreateSessionRequest
from app.services.session_service import (
    SessionService,
    decode_cursor,
    encode_cursor,
)
from tests.conftest import make_user


@pytest.fixture
def service(
    chat_repo: ChatRepository,
    db_session: AsyncSession,
    events: AsyncMock,
    locks: KeyedLock,
) -> SessionService:
    return SessionService(chat_repo, db_session, events, locks)


async def _assigned_chat(
    service: SessionService, customer: CurrentUser, admin: CurrentUser
) -> str:
    """Helper: create a support chat and move it to assigned."""
    created = await service.create_or_get_session(
        customer, CreateSessionRequest(is_support_chat=True)
    )
    await service.update_status(created.chat_id, ChatStatus.ASSIGNED, admin)
    return created.chat_id


class TestCursor:
    """Tests for session list cursor helpers."""

    def test_roundtrip(self) -> None:
        ts = datetime(2026, 3, 1, 12, 0, 0, 123456, tzinfo=UTC)
        assert decode_cursor(encode_cursor(ts, "c-1")) == (ts, "c-1")

    def test_garbage_rejected(self) -> None:
        with pytest.raises(InvalidCursorError):
            decode_cursor("not-a-cursor")


class TestCreateOrGet:
    """Tests for SessionService.create_or_get_session."""

    @pytest.mark.asyncio
    async def test_creates_open_support_session(
        self, service: SessionService, customer: CurrentUser, events: AsyncMock
    ) -> None:
        result = await service.create_or_get_session(
            customer, CreateSessionRequest(is_support_chat=True)
        )

        assert result.status == ChatStatus.OPEN
        assert result.subject_id == "cust-1"
        assert result.is_support is True
        assert result.assigned_admin_id is None
        assert [p.user_id for p in result.participants] == ["cust-1"]
        events.session_created.assert_awaited_once()
        events.session_claimed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_returns_existing_session(
        self, service: SessionService, customer: CurrentUser, events: AsyncMock
    ) -> None:
        first = await service.create_or_get_session(customer, CreateSessionRequest())
        second = await service.create_or_get_session(customer, CreateSessionRequest())

        assert second.chat_id == first.chat_id
        assert events.session_created.await_count == 1

    @pytest.mark.asyncio
    async def test_closed_session_replaced(
        self,
        service: SessionService,
        customer: CurrentUser,
        admin: CurrentUser,
    ) -> None:
        first = await service.create_or_get_session(customer, CreateSessionRequest())
        await service.close(first.chat_id, admin)

        second = await service.create_or_get_session(customer, CreateSessionRequest())
        assert second.chat_id != first.chat_id
        assert second.status == ChatStatus.OPEN

    @pytest.mark.asyncio
    async def test_subject_cannot_open_for_other(
        self, service: SessionService, customer: CurrentUser
    ) -> None:
        with pytest.raises(AuthorizationError):
            await service.create_or_get_session(
                customer, CreateSessionRequest(user_id="cust-2")
            )

    @pytest.mark.asyncio
    async def test_admin_outreach_claimed_at_once(
        self, service: SessionService, admin: CurrentUser, events: AsyncMock
    ) -> None:
        result = await service.create_or_get_session(
            admin, CreateSessionRequest(user_id="sales-1", user_role="salesperson")
        )

        assert result.status == ChatStatus.ASSIGNED
        assert result.subject_id == "sales-1"
        assert result.assigned_admin_id == "admin-1"
        assert result.is_support is False
        assert [(p.user_id, p.role) for p in result.participants] == [
            ("sales-1", "salesperson"),
            ("admin-1", "admin"),
        ]
        events.session_created.assert_awaited_once()
        events.session_claimed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_admin_without_user_rejected(
        self, service: SessionService, admin: CurrentUser
    ) -> None:
        with pytest.raises(AuthorizationError):
            await service.create_or_get_session(admin, CreateSessionRequest())


class TestLookups:
    """Tests for active/get lookups."""

    @pytest.mark.asyncio
    async def test_active_session(
        self, service: SessionService, customer: CurrentUser
    ) -> None:
        none = await service.get_active_session(customer)
        assert none.has_active_chat is False
        assert none.chat_session is None

        created = await service.create_or_get_session(customer, CreateSessionRequest())
        active = await service.get_active_session(customer)
        assert active.has_active_chat is True
        assert active.chat_session is not None
        assert active.chat_session.chat_id == created.chat_id

    @pytest.mark.asyncio
    async def test_get_session_permissions(
        self,
        service: SessionService,
        customer: CurrentUser,
        admin: CurrentUser,
    ) -> None:
        created = await service.create_or_get_session(customer, CreateSessionRequest())

        assert (await service.get_session(created.chat_id, customer)).chat_id == created.chat_id
        assert (await service.get_session(created.chat_id, admin)).chat_id == created.chat_id
        with pytest.raises(AuthorizationError):
            await service.get_session(created.chat_id, make_user("cust-2"))
        with pytest.raises(SessionNotFoundError):
            await service.get_session("missing", admin)


class TestStatusChanges:
    """Tests for resolve/reopen/close and the generic update."""

    @pytest.mark.asyncio
    async def test_update_status_requires_admin(
        self, service: SessionService, customer: CurrentUser
    ) -> None:
        created = await service.create_or_get_session(customer, CreateSessionRequest())
        with pytest.raises(AuthorizationError):
            await service.update_status(created.chat_id, ChatStatus.CLOSED, customer)

    @pytest.mark.asyncio
    async def test_open_to_assigned_emits_claim(
        self,
        service: SessionService,
        customer: CurrentUser,
        admin: CurrentUser,
        events: AsyncMock,
    ) -> None:
        chat_id = await _assigned_chat(service, customer, admin)

        events.session_claimed.assert_awaited_once()
        result = await service.get_session(chat_id, admin)
        assert result.assigned_admin_id == "admin-1"

    @pytest.mark.asyncio
    async def test_resolve_by_assignee(
        self,
        service: SessionService,
        customer: CurrentUser,
        admin: CurrentUser,
        events: AsyncMock,
    ) -> None:
        chat_id = await _assigned_chat(service, customer, admin)

        result = await service.resolve(chat_id, admin)

        assert result.status == ChatStatus.RESOLVED
        assert result.assigned_admin_id is None
        events.session_updated.assert_awaited_once()
        assert events.session_updated.await_args.args[1] == ChatStatus.ASSIGNED

    @pytest.mark.asyncio
    async def test_resolve_by_other_admin_rejected(
        self,
        service: SessionService,
        customer: CurrentUser,
        admin: CurrentUser,
        other_admin: CurrentUser,
    ) -> None:
        chat_id = await _assigned_chat(service, customer, admin)
        with pytest.raises(AuthorizationError):
            await service.resolve(chat_id, other_admin)

    @pytest.mark.asyncio
    async def test_super_admin_may_resolve(
        self,
        service: SessionService,
        customer: CurrentUser,
        admin: CurrentUser,
        super_admin: CurrentUser,
    ) -> None:
        chat_id = await _assigned_chat(service, customer, admin)
        result = await service.resolve(chat_id, super_admin)
        assert result.status == ChatStatus.RESOLVED

    @pytest.mark.asyncio
    async def test_resolve_open_rejected(
        self,
        service: SessionService,
        customer: CurrentUser,
        super_admin: CurrentUser,
    ) -> None:
        created = await service.create_or_get_session(customer, CreateSessionRequest())
        with pytest.raises(InvalidTransitionError):
            await service.resolve(created.chat_id, super_admin)

    @pytest.mark.asyncio
    async def test_reopen_restores_last_admin(
        self,
        service: SessionService,
        customer: CurrentUser,
        admin: CurrentUser,
    ) -> None:
        chat_id = await _assigned_chat(service, customer, admin)
        await service.resolve(chat_id, admin)

        result = await service.reopen(chat_id, admin)

        assert result.status == ChatStatus.REOPENED
        assert result.assigned_admin_id == "admin-1"

    @pytest.mark.asyncio
    async def test_closed_is_terminal(
        self,
        service: SessionService,
        customer: CurrentUser,
        admin: CurrentUser,
    ) -> None:
        created = await service.create_or_get_session(customer, CreateSessionRequest())
        closed = await service.close(created.chat_id, admin)
        assert closed.status == ChatStatus.CLOSED

        with pytest.raises(InvalidTransitionError):
            await service.reopen(created.chat_id, admin)
        with pytest.raises(InvalidTransitionError):
            await service.close(created.chat_id, admin)


class TestListing:
    """Tests for session listings."""

    @pytest.mark.asyncio
    async def test_admin_list_paginates(
        self, service: SessionService, admin: CurrentUser
    ) -> None:
        for i in range(3):
            await service.create_or_get_session(make_user(f"cust-{i}"), CreateSessionRequest())

        first = await service.list_sessions(admin, limit=2)
        assert len(first.chat_sessions) == 2
        assert first.has_next is True
        assert first.next_cursor is not None

        second = await service.list_sessions(admin, limit=2, cursor=first.next_cursor)
        assert len(second.chat_sessions) == 1
        assert second.has_next is False
        seen = {c.chat_id for c in first.chat_sessions + second.chat_sessions}
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_status_filter(
        self,
        service: SessionService,
        customer: CurrentUser,
        admin: CurrentUser,
    ) -> None:
        await _assigned_chat(service, customer, admin)
        await service.create_or_get_session(make_user("cust-2"), CreateSessionRequest())

        assigned = await service.list_sessions(admin, status=ChatStatus.ASSIGNED)
        assert [c.subject_id for c in assigned.chat_sessions] == ["cust-1"]

    @pytest.mark.asyncio
    async def test_list_requires_admin(
        self, service: SessionService, customer: CurrentUser
    ) -> None:
        with pytest.raises(AuthorizationError):
            await service.list_sessions(customer)

    @pytest.mark.asyncio
    async def test_user_list_only_own(
        self, service: SessionService, customer: CurrentUser
    ) -> None:
        mine = await service.create_or_get_session(customer, CreateSessionRequest())
        await service.create_or_get_session(make_user("cust-2"), CreateSessionRequest())

        result = await service.list_user_sessions(customer)
        assert [c.chat_id for c in result.chat_sessions] == [mine.chat_id]


class TestAudit:
    @pytest.mark.asyncio
    async def test_super_admin_only(
        self,
        service: SessionService,
        customer: CurrentUser,
        admin: CurrentUser,
        super_admin: CurrentUser,
    ) -> None:
        chat_id = await _assigned_chat(service, customer, admin)

        entries = await service.get_audit(chat_id, super_admin)
        assert [e.action for e in entries] == ["create", "status"]
        assert entries[1].to_status == "assigned"

        with pytest.raises(AuthorizationError):
            await service.get_audit(chat_id, admin)
