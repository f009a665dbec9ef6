"""Pytest configuration and fixtures for backend tests.

Database Handling:
- If TEST_DATABASE_URL is set (postgresql+asyncpg://...), tests run against it
- Otherwise an in-memory SQLite database (aiosqlite) is used
"""

import itertools
import os
import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from functools import cache

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

# Set test environment variables before importing app modules
os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-access-secret-" + "a" * 32)
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret-" + "b" * 32)

from polox_auth.core.config import Settings  # noqa: E402
from polox_auth.core.database import Base  # noqa: E402
from polox_auth.models import Company, User  # noqa: E402
from polox_auth.services.auth import hash_password  # noqa: E402
from polox_auth.services.auth_core import AuthCore  # noqa: E402
from polox_auth.services.identity import (  # noqa: E402
    Account,
    Identity,
    RequestInfo,
    Role,
    SessionInfo,
    TenantInfo,
)
from polox_auth.services.session_store import SessionStore  # noqa: E402

ACCESS_SECRET = "test-access-secret-" + "a" * 32
REFRESH_SECRET = "test-refresh-secret-" + "b" * 32
TEST_PASSWORD = "correct-horse-battery"

_email_counter = itertools.count(1)


class FakeClock:
    """Settable clock serving both wall time and a monotonic reading."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
        self._origin = self.now

    def __call__(self) -> datetime:
        return self.now

    def monotonic(self) -> float:
        return (self.now - self._origin).total_seconds() + 1000.0

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_settings(**overrides) -> Settings:
    """Settings for tests, independent of the process environment and .env."""
    values = {
        "environment": "test",
        "access_token_secret": ACCESS_SECRET,
        "refresh_token_secret": REFRESH_SECRET,
        "database_url": "sqlite+aiosqlite:///:memory:",
        "audit_log_authentication": True,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@cache
def default_password_hash() -> str:
    return hash_password(TEST_PASSWORD)


def request_info(ip: str = "10.0.0.1", path: str = "/api/test") -> RequestInfo:
    return RequestInfo(ip=ip, user_agent="pytest", method="GET", path=path)


def make_identity(
    role: Role = Role.USER,
    permissions: set[str] | None = None,
    modules: set[str] | None = None,
    tenant_id: uuid.UUID | None = None,
) -> Identity:
    """An in-memory identity for authorization and rate limit tests."""
    tenant_id = tenant_id or uuid.uuid4()
    now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    return Identity(
        account=Account(
            user_id=uuid.uuid4(),
            tenant_id=tenant_id,
            name="Test User",
            email="test@example.com",
            role=role,
            permissions=frozenset(permissions or ()),
            status="active",
            tenant=TenantInfo(
                id=tenant_id,
                name="Acme Ltda",
                domain=None,
                plan="starter",
                modules=frozenset(modules if modules is not None else {"leads", "clients"}),
                status="active",
            ),
        ),
        session=SessionInfo(id=uuid.uuid4(), token_id="jti", last_activity=now),
        raw_token="token",
        token_expires_at=now,
    )


# --- Clock / Settings ---


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


# --- Database Fixtures ---


@pytest_asyncio.fixture(scope="function")
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a database engine with all tables for one test."""
    url = os.environ.get("TEST_DATABASE_URL")
    if url:
        engine = create_async_engine(url, poolclass=NullPool, echo=False)
    else:
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def core(settings, clock, db_engine) -> AsyncGenerator[AuthCore, None]:
    """An initialised auth core bound to the test engine and fake clock."""
    auth_core = AuthCore(settings, clock=clock, monotonic=clock.monotonic, engine=db_engine)
    await auth_core.init(start_background_tasks=False)
    yield auth_core
    await auth_core.close()


@pytest_asyncio.fixture(scope="function")
async def db_session(core) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async with core.session_maker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def async_client(core) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client for an app built around the test core."""
    from polox_auth.main import create_app

    app = create_app(core)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# --- Test Factories ---


@pytest.fixture
def company_factory(db_session):
    """Factory for creating test Company objects."""

    async def _create_company(
        name: str = "Acme Ltda",
        status: str = "active",
        modules: list[str] | None = None,
        **kwargs,
    ) -> Company:
        company = Company(
            name=name,
            status=status,
            modules=modules if modules is not None else ["dashboard", "leads", "clients"],
            **kwargs,
        )
        db_session.add(company)
        await db_session.commit()
        return company

    return _create_company


@pytest.fixture
def user_factory(db_session, company_factory):
    """Factory for creating test User objects (password: TEST_PASSWORD)."""

    async def _create_user(
        company: Company | None = None,
        role: str = "user",
        status: str = "active",
        permissions: list[str] | None = None,
        email: str | None = None,
        **kwargs,
    ) -> User:
        if company is None:
            company = await company_factory()
        user = User(
            company_id=company.id,
            name=kwargs.pop("name", "Test User"),
            email=email or f"user{next(_email_counter)}@example.com",
            password_hash=kwargs.pop("password_hash", default_password_hash()),
            role=role,
            status=status,
            permissions=permissions if permissions is not None else [],
            **kwargs,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _create_user


@pytest.fixture
def login_as(core, db_session):
    """Open a session for a user directly and return its bearer headers.

    Bypasses /auth/login so tests do not spend the login rate limit.
    """

    async def _login(user: User, ttl: int | None = None) -> dict[str, str]:
        access = core.codec.issue_access_token(user.id)
        refresh = core.codec.issue_refresh_token(user.id)
        store = SessionStore(db_session, clock=core.clock)
        await store.create(
            user.id,
            user.company_id,
            access.jti,
            ttl if ttl is not None else core.settings.session_timeout_seconds,
            refresh_token_id=refresh.jti,
            ip_address="10.0.0.1",
            user_agent="pytest",
        )
        await db_session.commit()
        return {"Authorization": f"Bearer {access.token}"}

    return _login


@pytest_asyncio.fixture
async def company(company_factory) -> Company:
    return await company_factory()


@pytest_asyncio.fixture
async def user(user_factory, company) -> User:
    return await user_factory(company=company)


@pytest_asyncio.fixture
async def company_admin(user_factory, company) -> User:
    return await user_factory(company=company, role="company_admin", name="Company Admin")


@pytest_asyncio.fixture
async def super_admin(user_factory, company_factory) -> User:
    platform = await company_factory(name="Polo X", modules=["*"])
    return await user_factory(company=platform, role="super_admin", name="Super Admin")
