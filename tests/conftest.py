"""Shared pytest fixtures for the SquadLedger engine.

This module provides:
- A throwaway SQLite database per test (aiosqlite driver)
- Session factories for tests that need several concurrent sessions
- Helpers that bootstrap an administrator and approved squad members
- An HTTP client wired to the FastAPI app
"""

from collections.abc import AsyncGenerator

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

from squadledger.config import get_settings
from squadledger.database import create_schema, get_db, make_session_factory
from squadledger.services.access_service import AccessService
from squadledger.services.profile_service import ProfileService
from squadledger.services.project_service import ProjectService

ADMIN = "root"
CREATOR = "carol"


# ===========================================
# DATABASE FIXTURES
# ===========================================


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so separate sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ===========================================
# SQUAD FIXTURES
# ===========================================


@pytest_asyncio.fixture
async def admin(db_session) -> str:
    """The first principal to initialize access becomes administrator."""
    info = await AccessService(db_session).initialize_access(ADMIN)
    assert info.is_admin
    await ProfileService(db_session).register_user(ADMIN, "Root", "Mentor", "Master")
    return ADMIN


@pytest.fixture
def enroll(db_session, admin):
    """Register a principal and have the administrator approve them."""

    async def _enroll(
        principal: str,
        squad_role: str = "Journeyman",
        participation_level: str = "Journeyman",
    ) -> str:
        access = AccessService(db_session)
        await access.initialize_access(principal)
        await ProfileService(db_session).register_user(
            principal, principal.capitalize(), squad_role, participation_level
        )
        await access.request_approval(principal)
        await access.set_approval(admin, principal, "approved")
        return principal

    return _enroll


@pytest_asyncio.fixture
async def creator(enroll) -> str:
    return await enroll(CREATOR)


@pytest_asyncio.fixture
async def project(db_session, creator):
    """A pledging project with 100 HH of capacity, 10 of them in the pool."""
    return await ProjectService(db_session).create_project(
        creator, "Community Mural", 100.0, pool_hh=10.0, final_monetary_value=1000.0
    )


# ===========================================
# HTTP FIXTURES
# ===========================================


@pytest.fixture
def auth_headers():
    """Build a bearer header for a principal, signed with the engine secret."""
    settings = get_settings()

    def _headers(principal: str) -> dict[str, str]:
        token = jwt.encode(
            {"sub": principal}, settings.jwt_secret_key, algorithm=settings.jwt_algorithm
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the test database swapped in."""
    from squadledger.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
