"""Shared test fixtures."""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from oopsreview.models.base import Base
from oopsreview.models.role import Role
from oopsreview.models.tag import Tag
from oopsreview.models.user import User

BASE_TIME = datetime(2026, 3, 1, 9, 0, 0)


class FakeClock:
    """Deterministic clock; advances one minute per ``tick()``."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def tick(self, minutes: int = 1) -> datetime:
        self.now += timedelta(minutes=minutes)
        return self.now


def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest_asyncio.fixture
async def db_session_factory():
    """Fresh in-memory database per test, shared across sessions via StaticPool."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine.sync_engine, "connect", _enable_foreign_keys)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def seeded_tags(db_session_factory):
    """Three tags: database, network, payments. Returns name -> id."""
    async with db_session_factory() as session:
        async with session.begin():
            tags = [Tag(name=name) for name in ("database", "network", "payments")]
            session.add_all(tags)
    return {t.name: t.id for t in tags}


@pytest_asyncio.fixture
async def responder(db_session_factory):
    """An Incident Manager user to attribute resolutions to."""
    async with db_session_factory() as session:
        async with session.begin():
            role = Role(name="Incident Manager", description="Manages incidents")
            user = User(
                role=role,
                username="jordan",
                full_name="Jordan Reyes",
                password_hash="x",
                salt="x",
                is_active=True,
            )
            session.add(user)
    return user
