"""Shared pytest fixtures for API, database, and cache integration tests.

Integration tests run against a throwaway SQLite database (aiosqlite) unless
TEST_DATABASE_URL points somewhere else, and against an in-memory stand-in for
the handful of Redis commands the link cache uses.
"""

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlinks.auth import create_access_token, create_user
from shortlinks.cache import LinkCache
from shortlinks.config import Settings
from shortlinks.database import Base, create_engine_for, get_db
from shortlinks.dependencies import ServiceManager, _service_manager
from shortlinks.main import app
from shortlinks.models import User

TEST_CLIENT_ADDRESS = ("203.0.113.7", 51000)


class InMemoryRedis:
    """Async double for the Redis commands used by LinkCache."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("redis unavailable")

    async def get(self, key: str) -> str | None:
        self._check()
        return self.store.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self._check()
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check()
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def ping(self) -> bool:
        self._check()
        return True


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=os.environ.get("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"),
        BASE_URL="http://sho.rt",
        JWT_SECRET="test-secret",
        BACKGROUND_QUEUE_SIZE=100,
        BACKGROUND_WORKERS=4,
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def fake_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def link_cache(fake_redis: InMemoryRedis, settings: Settings) -> LinkCache:
    return LinkCache(
        fake_redis,
        ttl_seconds=settings.CACHE_TTL_SECONDS,
        prefix=settings.CACHE_KEY_PREFIX,
        tombstone_ttl_seconds=settings.CACHE_TOMBSTONE_TTL_SECONDS,
    )


@pytest_asyncio.fixture
async def session_factory(settings: Settings) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_engine_for(settings.DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def manager(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    fake_redis: InMemoryRedis,
) -> AsyncGenerator[ServiceManager, None]:
    await _service_manager.cleanup()
    await _service_manager.initialize(settings, session_factory=session_factory, redis_client=fake_redis)
    yield _service_manager
    await _service_manager.cleanup()


@pytest_asyncio.fixture
async def client(
    manager: ServiceManager,
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app, client=TEST_CLIENT_ADDRESS)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def alice(db_session: AsyncSession) -> User:
    return await create_user(db_session, "alice", "alice-password", "alice@example.com")


@pytest_asyncio.fixture
async def bob(db_session: AsyncSession) -> User:
    return await create_user(db_session, "bob", "bob-password", "bob@example.com")


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> User:
    return await create_user(db_session, "root", "root-password", "root@example.com", is_admin=True)


@pytest.fixture
def alice_headers(alice: User, settings: Settings) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(alice, settings)}"}


@pytest.fixture
def bob_headers(bob: User, settings: Settings) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(bob, settings)}"}


@pytest.fixture
def admin_headers(admin: User, settings: Settings) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(admin, settings)}"}
