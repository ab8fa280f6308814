"""
Pytest fixtures for share link tests.
Provides an in-memory database, mock Redis, and an async test client.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Keep imports hermetic: never touch a developer .env database or Redis
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-long-enough-1234")

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
import pytest_asyncio
from unittest.mock import patch
from fastapi import Depends
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import StaticPool


class MockRedisService:
    """Mock Redis service for testing."""

    _counters = {}
    healthy = True

    @classmethod
    def reset(cls):
        cls._counters = {}
        cls.healthy = True

    @staticmethod
    async def check_rate_limit(scope: str, key: str, limit: int) -> tuple:
        counter_key = f"{scope}:{key}"
        count = MockRedisService._counters.get(counter_key, 0) + 1
        MockRedisService._counters[counter_key] = count
        if count > limit:
            return False, 0
        return True, limit - count

    @staticmethod
    async def health_check() -> bool:
        return MockRedisService.healthy

    @staticmethod
    async def close(client=None) -> None:
        return None


class FrozenClock:
    """Settable clock for expiry tests."""

    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def mock_redis():
    """Automatically mock Redis for all tests."""
    MockRedisService.reset()
    with patch("docshare.redis_client.RedisService", MockRedisService):
        with patch("docshare.routes.RedisService", MockRedisService):
            with patch("docshare.main.RedisService", MockRedisService):
                yield MockRedisService


@pytest_asyncio.fixture
async def engine():
    """Create a test database using SQLite in-memory."""
    from docshare.database import Base, make_engine

    engine = make_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


@pytest.fixture
def session_factory(engine):
    from docshare.database import make_session_factory

    return make_session_factory(engine)


@pytest_asyncio.fixture
async def admin_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def public_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def owner(admin_db):
    from docshare.models import User

    user = User(id="user-owner", email="owner@example.com", role="admin", company_id="company-a")
    admin_db.add(user)
    await admin_db.commit()
    return user


@pytest_asyncio.fixture
async def other_user(admin_db):
    from docshare.models import User

    user = User(id="user-other", email="other@example.com", role="admin", company_id="company-b")
    admin_db.add(user)
    await admin_db.commit()
    return user


@pytest_asyncio.fixture
async def document(admin_db, owner):
    from docshare.models import Document

    doc = Document(id="doc-1", title="Pitch deck", owner_id=owner.id, company_id=owner.company_id)
    admin_db.add(doc)
    await admin_db.commit()
    return doc


@pytest.fixture
def principal(owner):
    from docshare.auth import Principal

    return Principal(user_id=owner.id, email=owner.email, role=owner.role, company_id=owner.company_id)


@pytest.fixture
def controller_factory(admin_db, public_db, clock):
    """Build controllers over the test sessions with the frozen clock."""
    from docshare.services import LinkAccessController

    def factory(**kwargs):
        kwargs.setdefault("clock", clock)
        return LinkAccessController(admin_db, public_db, **kwargs)

    return factory


@pytest.fixture
def controller(controller_factory):
    return controller_factory()


@pytest_asyncio.fixture
async def client(session_factory, clock):
    """Create an async test client with the store handles and clock overridden."""
    from docshare.main import app
    from docshare.database import get_admin_db, get_public_db
    from docshare.routes import get_controller
    from docshare.services import LinkAccessController

    async def override_admin_db():
        async with session_factory() as session:
            yield session

    async def override_public_db():
        async with session_factory() as session:
            yield session

    async def override_controller(
        admin: AsyncSession = Depends(get_admin_db),
        public: AsyncSession = Depends(get_public_db),
    ):
        return LinkAccessController.from_settings(admin, public, clock=clock)

    app.dependency_overrides[get_admin_db] = override_admin_db
    app.dependency_overrides[get_public_db] = override_public_db
    app.dependency_overrides[get_controller] = override_controller

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(owner):
    from docshare.auth import create_access_token

    return {"Authorization": f"Bearer {create_access_token(owner.id)}"}


@pytest.fixture
def other_auth_headers(other_user):
    from docshare.auth import create_access_token

    return {"Authorization": f"Bearer {create_access_token(other_user.id)}"}
