"""Integration test fixtures — in-memory app, async client, per-role sessions."""

import os

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Force test config BEFORE any app imports
os.environ["DEBUG"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-integration-tests-0123456789"
os.environ["PASSWORD_ITERATIONS"] = "100000"
os.environ["LOG_DIR"] = os.path.join(os.path.dirname(__file__), ".logs")
os.environ["TRUST_FORWARDED_FOR"] = "true"

import oopsreview.database as db_mod
import oopsreview.dependencies as dep_mod

BASE_URL = "http://oopsreview.test"

# username -> (role, password, is_active)
TEST_USERS = {
    "admin": ("Administrator", "admin-pass-1", True),
    "manager": ("Incident Manager", "manager-pass-1", True),
    "dev": ("Developer", "dev-pass-1", True),
    "viewer": ("Viewer", "viewer-pass-1", True),
    "former": ("Developer", "former-pass-1", False),
}


def _reset_singletons():
    """Reset all module-level singletons so each test session starts clean."""
    db_mod._engine = None
    db_mod._session_factory = None
    dep_mod.reset_singletons()


def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def test_app():
    """Create test app with in-memory database (shared via StaticPool)."""
    _reset_singletons()

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine.sync_engine, "connect", _enable_foreign_keys)

    # Inject into database module BEFORE app import
    db_mod._engine = engine
    factory = async_sessionmaker(engine, expire_on_commit=False)
    db_mod._session_factory = factory

    dep_mod.get_app_config()

    from oopsreview.main import _seed_default_roles, app
    from oopsreview.models.base import Base
    from oopsreview.models.role import Role
    from oopsreview.models.user import User

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await _seed_default_roles(factory)

    hasher = dep_mod.get_password_hasher()
    async with factory() as session:
        async with session.begin():
            roles = {r.name: r for r in (await session.execute(select(Role))).scalars()}
            for username, (role_name, password, is_active) in TEST_USERS.items():
                salt = hasher.generate_salt()
                session.add(User(
                    role_id=roles[role_name].id,
                    username=username,
                    full_name=f"{username.title()} User",
                    password_hash=hasher.hash_password(password, salt),
                    salt=salt,
                    is_active=is_active,
                ))

    yield app

    await engine.dispose()
    _reset_singletons()


@pytest_asyncio.fixture(loop_scope="session")
async def client(test_app):
    """Async HTTP client for testing."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url=BASE_URL) as ac:
        yield ac


async def _login_headers(client, username):
    """Log in and return explicit cookie + CSRF headers, leaving the client jar empty."""
    _, password, _ = TEST_USERS[username]
    resp = await client.post(
        "/api/v1/auth/login",
        json={"login": username, "password": password},
    )
    assert resp.status_code == 200, f"Login failed: {resp.text}"
    cookie_name = dep_mod.get_app_config().session_cookie_name
    token = resp.cookies[cookie_name]
    client.cookies.clear()
    return {
        "Cookie": f"{cookie_name}={token}",
        "X-CSRF-Token": resp.json()["csrf_token"],
    }


@pytest_asyncio.fixture(loop_scope="session")
async def admin_headers(client):
    return await _login_headers(client, "admin")


@pytest_asyncio.fixture(loop_scope="session")
async def dev_headers(client):
    return await _login_headers(client, "dev")


@pytest_asyncio.fixture(loop_scope="session")
async def viewer_headers(client):
    return await _login_headers(client, "viewer")
