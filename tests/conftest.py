"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-support-chat-tests")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")

from collections.abc import AsyncGenerator  # noqa: E402
from pathlib import Path  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import fakeredis.aioredis  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.database import Base  # noqa: E402
from app.core.locks import KeyedLock  # noqa: E402
from app.models.chat_audit import ChatAuditEntry  # noqa: E402, F401
from app.models.chat_message import ChatMessage  # noqa: E402, F401
from app.models.chat_session import ChatSession  # noqa: E402, F401
from app.realtime.events import ChatEventPublisher  # noqa: E402
from app.realtime.hub import RealtimeHub  # noqa: E402
from app.repositories.chat_repo import ChatRepository  # noqa: E402
from app.schemas.auth_schema import CurrentUser  # noqa: E402
from app.services.token_service import TokenService  # noqa: E402

# --- Test DB (SQLite file per test, so concurrent sessions get real transactions) ---


@pytest.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh database with all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Provide a raw async session for repository tests."""
    async with session_factory() as session:
        yield session


# --- Test Redis (fakeredis) ---


@pytest.fixture
def fake_redis() -> fakeredis.aioredis.FakeRedis:
    """Create a fresh fake Redis client."""
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


@pytest.fixture(autouse=True)
def patch_redis(
    fake_redis: fakeredis.aioredis.FakeRedis, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Patch the global redis_client used by middleware, locks and tokens."""
    monkeypatch.setattr("app.core.redis.redis_client", fake_redis)


@pytest.fixture(autouse=True)
def disable_rate_limit(monkeypatch: pytest.MonkeyPatch) -> None:
    from app.core.rate_limit import limiter

    monkeypatch.setattr(limiter, "enabled", False)


# --- Realtime ---


@pytest.fixture(autouse=True)
def realtime_hub(monkeypatch: pytest.MonkeyPatch) -> RealtimeHub:
    """Install a fresh, unstarted hub as the process-wide one."""
    hub = RealtimeHub(queue_size=64, typing_ttl_seconds=5.0, sweep_interval_seconds=60.0)
    monkeypatch.setattr("app.realtime.hub._hub", hub)
    return hub


# --- Service building blocks ---


@pytest.fixture
def locks(fake_redis: fakeredis.aioredis.FakeRedis) -> KeyedLock:
    """Per-test lock registry backed by fake Redis."""
    return KeyedLock(timeout_seconds=5.0, lease_ms=5000, redis_getter=lambda: fake_redis)


@pytest.fixture
def events() -> AsyncMock:
    return AsyncMock(spec=ChatEventPublisher)


@pytest.fixture
def chat_repo(db_session: AsyncSession) -> ChatRepository:
    """Create a ChatRepository backed by the test DB session."""
    return ChatRepository(db_session)


def make_user(user_id: str, role: str = "customer") -> CurrentUser:
    return CurrentUser(id=user_id, email=f"{user_id}@test.com", role=role)


@pytest.fixture
def customer() -> CurrentUser:
    return make_user("cust-1", "customer")


@pytest.fixture
def admin() -> CurrentUser:
    return make_user("admin-1", "admin")


@pytest.fixture
def other_admin() -> CurrentUser:
    return make_user("admin-2", "admin")


@pytest.fixture
def super_admin() -> CurrentUser:
    return make_user("boss-1", "super_admin")


# --- Token helpers ---


@pytest.fixture
def token_service(fake_redis: fakeredis.aioredis.FakeRedis) -> TokenService:
    """Create a TokenService backed by fake Redis."""
    return TokenService(fake_redis)


def make_token(
    fake_redis: fakeredis.aioredis.FakeRedis,
    user_id: str = "cust-1",
    role: str = "customer",
) -> str:
    ts = TokenService(fake_redis)
    return ts.create_access_token(user_id=user_id, email=f"{user_id}@test.com", role=role)


def make_auth_headers(
    fake_redis: fakeredis.aioredis.FakeRedis,
    user_id: str = "cust-1",
    role: str = "customer",
) -> dict[str, str]:
    """Generate Authorization headers with a valid access token."""
    return {"Authorization": f"Bearer {make_token(fake_redis, user_id, role)}"}


# --- App override & client fixtures ---


@pytest.fixture
def application(session_factory: async_sessionmaker[AsyncSession]):  # type: ignore[no-untyped-def]
    """Import app lazily and point it at the test database."""
    from app.core.database import get_async_session, get_session_factory
    from app.main import app

    async def override_get_async_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_async_session] = override_get_async_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(application) -> AsyncGenerator[AsyncClient, None]:  # type: ignore[no-untyped-def]
    """Create an unauthenticated async test client."""
    transport = ASGITransport(app=application)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def client_for(application, fake_redis: fakeredis.aioredis.FakeRedis):  # type: ignore[no-untyped-def]
    """Factory for clients authenticated as a given user."""
    clients: list[AsyncClient] = []

    def _make(user_id: str, role: str) -> AsyncClient:
        client = AsyncClient(
            transport=ASGITransport(app=application),
            base_url="http://test",
            headers=make_auth_headers(fake_redis, user_id=user_id, role=role),
        )
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.aclose()


@pytest.fixture
def customer_client(client_for) -> AsyncClient:  # type: ignore[no-untyped-def]
    return client_for("cust-1", "customer")


@pytest.fixture
def admin_client(client_for) -> AsyncClient:  # type: ignore[no-untyped-def]
    return client_for("admin-1", "admin")


@pytest.fixture
def other_admin_client(client_for) -> AsyncClient:  # type: ignore[no-untyped-def]
    return client_for("admin-2", "admin")


@pytest.fixture
def super_admin_client(client_for) -> AsyncClient:  # type: ignore[no-untyped-def]
    return client_for("boss-1", "super_admin")
