"""
Test configuration and fixtures.

Provides:
- An in-memory SQLite database (aiosqlite) with the full schema per test
- Organizations and users for each role
- Bearer tokens shaped like the auth service's
- An HTTPX AsyncClient bound to the app with the test session injected
"""

import os
from collections.abc import AsyncGenerator

os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from support_portal.core import create_access_token, get_session
from support_portal.models import (
    AppRole,
    Base,
    Organization,
    OrganizationMember,
    User,
    UserRole,
)


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        yield session
        await session.rollback()


# =============================================================================
# TENANTS & USERS
# =============================================================================


async def make_user(
    session: AsyncSession,
    email: str,
    *roles: AppRole,
    organization: Organization | None = None,
    full_name: str | None = None,
) -> User:
    user = User(email=email, full_name=full_name)
    session.add(user)
    await session.flush()
    for role in roles:
        session.add(UserRole(user_id=user.id, role=role))
    if organization is not None:
        session.add(OrganizationMember(organization_id=organization.id, user_id=user.id))
    await session.flush()
    return user


@pytest.fixture
def new_user(session: AsyncSession):
    """Factory for extra users: ``await new_user(email, *roles, organization=...)``."""

    async def factory(email, *roles, organization=None, full_name=None):
        return await make_user(
            session, email, *roles, organization=organization, full_name=full_name
        )

    return factory


@pytest.fixture
async def org(session: AsyncSession) -> Organization:
    organization = Organization(name="Acme Corp", slug="acme-corp")
    session.add(organization)
    await session.flush()
    return organization


@pytest.fixture
async def other_org(session: AsyncSession) -> Organization:
    organization = Organization(name="Globex", slug="globex")
    session.add(organization)
    await session.flush()
    return organization


@pytest.fixture
async def client_user(session: AsyncSession, org: Organization) -> User:
    return await make_user(
        session, "jane@acme.test", AppRole.CLIENT, organization=org, full_name="Jane Client"
    )


@pytest.fixture
async def other_client(session: AsyncSession, other_org: Organization) -> User:
    return await make_user(session, "hank@globex.test", AppRole.CLIENT, organization=other_org)


@pytest.fixture
async def support_user(session: AsyncSession) -> User:
    return await make_user(session, "sam@agency.test", AppRole.SUPPORT, full_name="Sam Support")


@pytest.fixture
async def admin_user(session: AsyncSession) -> User:
    return await make_user(session, "ada@agency.test", AppRole.ADMIN)


@pytest.fixture
async def ops_user(session: AsyncSession) -> User:
    return await make_user(session, "otto@agency.test", AppRole.OPS)


@pytest.fixture
async def pending_user(session: AsyncSession) -> User:
    return await make_user(session, "new@nowhere.test")


# =============================================================================
# HTTP
# =============================================================================


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(user.id, user.email, user.full_name)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers():
    """Bearer headers for a user: ``headers(user)``."""
    return auth_headers


@pytest.fixture
async def api(session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    from support_portal.main import app

    async def override_session():
        yield session

    app.dependency_overrides[get_session] = override_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
