import os

from cryptography.fernet import Fernet

# Settings are read at import time; configure before importing the app.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SESSION_ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("CREDENTIALS_ENCRYPTION_KEY", "7f" * 32)
os.environ.setdefault("INTERNAL_API_KEY", "test-internal")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("EXECUTION_MODE", "background")
os.environ.setdefault("STATUS_CALLBACK_URL", "")

import pytest
import httpx

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

# Import Base + all models so metadata is complete
from crosslister.models.base import Base
import crosslister.models  # noqa: F401

from crosslister.main import app
from crosslister.core.db import get_db
from crosslister.automation import timing


def _test_db_url() -> str:
    return os.getenv("DATABASE_URL_TEST") or "sqlite+aiosqlite://"


@pytest.fixture
async def async_engine():
    url = _test_db_url()
    if url.startswith("sqlite"):
        # one shared in-memory database for every session of the test
        engine = create_async_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    else:
        engine = create_async_engine(url, pool_pre_ping=True)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(bind=async_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def internal_headers():
    return {"X-Internal-Key": os.environ["INTERNAL_API_KEY"]}


@pytest.fixture(autouse=True)
def recorded_sleeps(monkeypatch):
    """Delays are recorded instead of slept."""
    slept: list[float] = []

    async def _sleep(seconds, *args, **kwargs):
        slept.append(seconds)

    monkeypatch.setattr(timing, "sleep", _sleep)
    return slept
