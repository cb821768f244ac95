"""Shared test fixtures for backend and client tests."""

import os

# Must be set before the app (and its settings) are imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_assessment.db"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["JSON_LOGS"] = "false"
os.environ["ENVIRONMENT"] = "test"

from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

import assessment_platform.models  # noqa: E402,F401
from assessment_platform.api.deps import get_db, get_redis  # noqa: E402
from assessment_platform.auth.jwt import create_access_token  # noqa: E402
from assessment_platform.client.settings import ClientSettings  # noqa: E402
from assessment_platform.database import Base, engine, async_session  # noqa: E402
from assessment_platform.main import app  # noqa: E402
from assessment_platform.models import User  # noqa: E402
from assessment_platform.seed.demo_data import (  # noqa: E402
    seed_demo_tenant, seed_roles_and_permissions, seed_templates, write_local_data,
)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for refresh-token storage."""

    def __init__(self):
        self.data: dict[str, str] = {}

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.data[key] = value

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def delete(self, *keys: str) -> int:
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    async def aclose(self) -> None:
        pass


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh schema per test; the session commits like a request would."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    async with async_session() as session:
        yield session
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def seeded(db_session: AsyncSession) -> dict[str, User]:
    """Roles, permissions, menus, templates and one demo user per role."""
    roles = await seed_roles_and_permissions(db_session)
    await seed_templates(db_session)
    _, users = await seed_demo_tenant(db_session, roles)
    await db_session.commit()
    return users


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


def _override_db(session: AsyncSession):
    async def _get_db():
        yield session
        await session.commit()
    return _get_db


@pytest.fixture
def headers(seeded: dict[str, User]):
    """`headers("reviewer")` → bearer header for that role's demo user."""
    def _headers(role: str) -> dict:
        user = seeded[role]
        token = create_access_token(user.user_id, user.tenant_id, role, user.email)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, fake_redis: FakeRedis) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated HTTP client against the app; add headers per request."""
    async def _get_redis():
        yield fake_redis

    app.dependency_overrides[get_db] = _override_db(db_session)
    app.dependency_overrides[get_redis] = _get_redis
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def local_settings(tmp_path) -> ClientSettings:
    """Client settings in local (demo) mode over freshly exported JSON files."""
    write_local_data(tmp_path / "data")
    return ClientSettings(data_mode="local", data_dir=tmp_path / "data", environment="demo")


@pytest.fixture
def api_settings() -> ClientSettings:
    """Client settings pointed at the in-process app (pass an ASGITransport)."""
    return ClientSettings(data_mode="api", api_base_url="http://test/api/v1",
                          environment="development", retry_attempts=0)
