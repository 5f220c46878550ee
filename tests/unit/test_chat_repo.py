"""Unit tests for ChatRepository."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.chat_session import ChatSession, ChatStatus
from app.repositories.chat_repo import ChatRepository

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


async def _session_with_ts(
    chat_repo: ChatRepository,
    db_session: AsyncSession,
    subject_id: str,
    updated_at: datetime,
) -> ChatSession:
    """Helper: create a session with explicit updated_at for pagination tests."""
    chat = await chat_repo.create_session(
        subject_id=subject_id, subject_role="customer", is_support=True
    )
    chat.updated_at = updated_at
    await db_session.flush()
    return chat


class TestCreateSession:
    """Tests for ChatRepository.create_session."""

    @pytest.mark.asyncio
    async def test_create_session(self, chat_repo: ChatRepository) -> None:
        chat = await chat_repo.create_session(
            subject_id="cust-1", subject_role="customer", is_support=True
        )

        assert chat.id is not None
        assert chat.status == ChatStatus.OPEN
        assert chat.assigned_admin_id is None
        assert [p.user_id for p in chat.participants] == ["cust-1"]
        assert chat.participants[0].position == 0
        assert chat.unread_counts == {"cust-1": 0}

    @pytest.mark.asyncio
    async def test_get_session(
        self, chat_repo: ChatRepository, db_session: AsyncSession
    ) -> None:
        chat = await chat_repo.create_session(
            subject_id="cust-1", subject_role="customer", is_support=True
        )
        await db_session.commit()

        found = await chat_repo.get_session(chat.id, fresh=True)
        assert found is not None
        assert found.subject_id == "cust-1"
        assert await chat_repo.get_session("missing") is None


class TestLiveSessionLookup:
    """Tests for subject and participant lookups."""

    @pytest.mark.asyncio
    async def test_closed_session_is_not_live(
        self, chat_repo: ChatRepository, db_session: AsyncSession
    ) -> None:
        chat = await chat_repo.create_session(
            subject_id="cust-1", subject_role="customer", is_support=True
        )
        chat.status = ChatStatus.CLOSED
        await db_session.flush()

        assert await chat_repo.find_live_session_for_subject("cust-1") is None
        assert await chat_repo.find_active_session_for_user("cust-1") is None
        assert await chat_repo.find_live_chat_ids_for_user("cust-1") == []

    @pytest.mark.asyncio
    async def test_live_session_found(
        self, chat_repo: ChatRepository, db_session: AsyncSession
    ) -> None:
        chat = await chat_repo.create_session(
            subject_id="cust-1", subject_role="customer", is_support=True
        )
        await db_session.flush()

        live = await chat_repo.find_live_session_for_subject("cust-1")
        assert live is not None
        assert live.id == chat.id
        assert await chat_repo.find_live_session_for_subject("cust-2") is None

    @pytest.mark.asyncio
    async def test_active_prefers_recent_messages(
        self, chat_repo: ChatRepository, db_session: AsyncSession
    ) -> None:
        first = await chat_repo.create_session(
            subject_id="cust-1", subject_role="customer", is_support=True
        )
        second = await chat_repo.create_session(
            subject_id="cust-2", subject_role="customer", is_support=True
        )
        chat_repo.set_admin_participant(first, "admin-1", "admin")
        chat_repo.set_admin_participant(second, "admin-1", "admin")
        first.last_message_at = T0 + timedelta(hours=1)
        second.last_message_at = T0
        await db_session.flush()

        active = await chat_repo.find_active_session_for_user("admin-1")
        assert active is not None
        assert active.id == first.id
        ids = await chat_repo.find_live_chat_ids_for_user("admin-1")
        assert sorted(ids) == sorted([first.id, second.id])


class TestAdminParticipant:
    """Tests for ChatRepository.set_admin_participant."""

    @pytest.mark.asyncio
    async def test_append_then_replace(
        self, chat_repo: ChatRepository, db_session: AsyncSession
    ) -> None:
        chat = await chat_repo.create_session(
            subject_id="cust-1", subject_role="customer", is_support=True
        )
        chat_repo.set_admin_participant(chat, "admin-1", "admin")
        await db_session.flush()
        admin_row = chat.admin_participant
        assert admin_row is not None
        assert admin_row.user_id == "admin-1"
        assert admin_row.position == 1

        admin_row.unread_count = 3
        chat_repo.set_admin_participant(chat, "admin-2", "admin")
        await db_session.flush()

        assert len(chat.participants) == 2
        assert chat.admin_participant is admin_row
        assert admin_row.user_id == "admin-2"
        assert admin_row.unread_count == 0

    @pytest.mark.asyncio
    async def test_same_admin_is_noop(self, chat_repo: ChatRepository) -> None:
        chat = await chat_repo.create_session(
            subject_id="cust-1", subject_role="customer", is_support=True
        )
        chat_repo.set_admin_participant(chat, "admin-1", "admin")
        chat_repo.set_admin_participant(chat, "admin-1", "admin")
        assert len(chat.participants) == 2


class TestClaimOpenSession:
    """Tests for the open -> assigned compare-and-swap."""

    @pytest.mark.asyncio
    async def test_first_claim_wins(
        self, chat_repo: ChatRepository, db_session: AsyncSession
    ) -> None:
        chat = await chat_repo.create_session(
            subject_id="cust-1", subject_role="customer", is_support=True
        )
        await db_session.commit()

        assert await chat_repo.claim_open_session(chat.id, "admin-1") is True
        assert await chat_repo.claim_open_session(chat.id, "admin-2") is False
        await db_session.commit()

        fresh = await chat_repo.get_session(chat.id, fresh=True)
        assert fresh is not None
        assert fresh.status == ChatStatus.ASSIGNED
        assert fresh.assigned_admin_id == "admin-1"
        assert fresh.last_admin_id == "admin-1"

    @pytest.mark.asyncio
    async def test_claim_missing_session(self, chat_repo: ChatRepository) -> None:
        assert await chat_repo.claim_open_session("missing", "admin-1") is False


class TestFindSessions:
    """Tests for keyset-paginated session listing."""

    @pytest.mark.asyncio
    async def test_ordering_and_cursor(
        self, chat_repo: ChatRepository, db_session: AsyncSession
    ) -> None:
        created = [
            await _session_with_ts(
                chat_repo, db_session, f"cust-{i}", T0 + timedelta(minutes=i)
            )
            for i in range(3)
        ]

        page = await chat_repo.find_sessions(limit=2)
        assert [c.id for c in page] == [created[2].id, created[1].id]

        last = page[-1]
        rest = await chat_repo.find_sessions(
            limit=2, cursor_updated_at=last.updated_at, cursor_id=last.id
        )
        assert [c.id for c in rest] == [created[0].id]

    @pytest.mark.asyncio
    async def test_filters(
        self, chat_repo: ChatRepository, db_session: AsyncSession
    ) -> None:
        mine = await _session_with_ts(chat_repo, db_session, "cust-1", T0)
        other = await _session_with_ts(chat_repo, db_session, "cust-2", T0)
        other.status = ChatStatus.CLOSED
        await db_session.flush()

        by_user = await chat_repo.find_sessions(limit=10, user_id="cust-1")
        assert [c.id for c in by_user] == [mine.id]
        closed = await chat_repo.find_sessions(limit=10, status=ChatStatus.CLOSED)
        assert [c.id for c in closed] == [other.id]


class TestMessages:
    """Tests for the message log queries."""

    @pytest.mark.asyncio
    async def test_ordered_by_timestamp_then_id(
        self, chat_repo: ChatRepository
    ) -> None:
        chat = await chat_repo.create_session(
            subject_id="cust-1", subject_role="customer", is_support=True
        )
        await chat_repo.create_message("m-b", chat.id, "cust-1", "customer", "B", "text", T0)
        await chat_repo.create_message("m-a", chat.id, "cust-1", "customer", "A", "text", T0)
        await chat_repo.create_message(
            "m-0", chat.id, "admin-1", "admin", "C", "text", T0 + timedelta(seconds=1)
        )

        messages = await chat_repo.find_messages(chat.id, limit=10)
        assert [m.id for m in messages] == ["m-a", "m-b", "m-0"]

        after = await chat_repo.find_messages(
            chat.id, limit=10, after_timestamp=T0, after_id="m-a"
        )
        assert [m.id for m in after] == ["m-b", "m-0"]

    @pytest.mark.asyncio
    async def test_sender_has_read_own_message(self, chat_repo: ChatRepository) -> None:
        chat = await chat_repo.create_session(
            subject_id="cust-1", subject_role="customer", is_support=True
        )
        message = await chat_repo.create_message(
            "m-1", chat.id, "cust-1", "customer", "hi", "text", T0
        )
        assert message.read_by == ["cust-1"]
        found = await chat_repo.find_message_by_id("m-1")
        assert found is not None
        assert found.body == "hi"
        assert await chat_repo.find_message_by_id("m-404") is None

    @pytest.mark.asyncio
    async def test_mark_messages_read(self, chat_repo: ChatRepository) -> None:
        chat = await chat_repo.create_session(
            subject_id="cust-1", subject_role="customer", is_support=True
        )
        await chat_repo.create_message("m-1", chat.id, "cust-1", "customer", "q", "text", T0)
        await chat_repo.create_message(
            "m-2", chat.id, "admin-1", "admin", "a", "text", T0 + timedelta(seconds=1)
        )

        assert await chat_repo.mark_messages_read(chat.id, "admin-1") == 1
        assert await chat_repo.mark_messages_read(chat.id, "admin-1") == 0

        messages = await chat_repo.find_messages(chat.id, limit=10)
        assert messages[0].read_by == ["cust-1", "admin-1"]
        assert messages[1].read_by == ["admin-1"]


class TestAudit:
    @pytest.mark.asyncio
    async def test_entries_in_order(
        self, chat_repo: ChatRepository, db_session: AsyncSession
    ) -> None:
        chat = await chat_repo.create_session(
            subject_id="cust-1", subject_role="customer", is_support=True
        )
        chat_repo.add_audit_entry(chat.id, "cust-1", "create", to_status="open")
        chat_repo.add_audit_entry(
            chat.id, "admin-1", "claim", from_status="open", to_status="assigned"
        )
        await db_session.flush()

        entries = await chat_repo.find_audit_entries(chat.id)
        assert [e.action for e in entries] == ["create", "claim"]
        assert entries[1].actor_id == "admin-1"
