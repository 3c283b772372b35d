"""Pytest configuration and shared fixtures."""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test DB and key before app imports so config/engine use them
_DB_PATH = os.path.join(tempfile.gettempdir(), f"tokenward-test-{os.getpid()}.db")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_PATH}")
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-enough-length-000")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from tokenward.core.tokens import TokenCodec, get_token_codec
from tokenward.db.base import Base
from tokenward.db.session import async_session_maker, engine, init_db
from tokenward.main import app

TEST_SECRET = os.environ["SECRET_KEY"]
CLIENT_IP = "127.0.0.1"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: int) -> None:
        self.current += timedelta(seconds=seconds)


async def _clear_all() -> None:
    """Delete all rows in reverse dependency order so tests start clean."""
    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def codec(clock: FakeClock) -> TokenCodec:
    return TokenCodec(TEST_SECRET, "HS256", clock=clock)


@pytest_asyncio.fixture
async def clean_db():
    await init_db()
    await _clear_all()
    yield


@pytest_asyncio.fixture
async def session(clean_db):
    async with async_session_maker() as s:
        yield s
        await s.rollback()


@pytest_asyncio.fixture
async def client(clean_db, codec: TokenCodec):
    """AsyncClient against the app, with the token codec pinned to the test clock."""
    app.dependency_overrides[get_token_codec] = lambda: codec
    async with AsyncClient(
        transport=ASGITransport(app=app, client=(CLIENT_IP, 50000)),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.pop(get_token_codec, None)


@pytest.fixture(scope="session", autouse=True)
def _remove_test_db():
    yield
    if os.path.exists(_DB_PATH):
        os.remove(_DB_PATH)
