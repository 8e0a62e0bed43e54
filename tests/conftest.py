# tests/conftest.py
import os
from typing import AsyncGenerator, Dict
import uuid

# Settings are read at import time; configure them before app modules load
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from app import models  # noqa: E402,F401
from app.core.security import create_access_token  # noqa: E402
from app.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# =========================================
# One in-memory database per test
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(async_engine: AsyncEngine):
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Session handed to services directly; services commit their own work."""
    async with session_maker() as sess:
        yield sess


# =========================================
# HTTP client against the ASGI app
# =========================================
@pytest_asyncio.fixture(scope="function")
async def client(session_maker) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def override_get_db():
        async with session_maker() as sess:
            try:
                yield sess
                await sess.commit()
            except Exception:
                await sess.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def auth_headers(role: str, user_id: uuid.UUID | None = None, name: str | None = None) -> Dict[str, str]:
    claims = {"name": name} if name else None
    token = create_access_token(user_id or uuid.uuid4(), role, additional_claims=claims)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return auth_headers("admin", name="Ops Admin")


@pytest.fixture
def runner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def runner_headers(runner_id) -> Dict[str, str]:
    return auth_headers("runner", user_id=runner_id, name="Courier")
