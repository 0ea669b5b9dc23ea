"""
Test configuration and fixtures.

Provides:
- A fresh SQLite database per test (file under tmp_path, schema via create_all)
- The session factory shared by request handlers and detached tasks
- Session token minting for authenticated requests
- HTTPX AsyncClient over ASGITransport with the DB and provider overridden
- A small seeding helper for tenants, memberships and delegation links
"""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_portal.db")
os.environ.setdefault("SESSION_JWT_SECRET", "test-secret-key-not-for-production")
os.environ["IDP_API_KEY"] = ""

from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from agency_portal.core.security import create_session_token
from agency_portal.db.session import get_db, get_session_factory
from agency_portal.models import AgencyClient, Base, Membership, PortalConfig, Role, Tenant, TenantKind
from agency_portal.services import background
from agency_portal.services.identity_provider import IdentityProviderClient, get_identity_provider
from main import app


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await background.drain()
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def provider() -> IdentityProviderClient:
    """Disabled provider: lookups return None and role sync is a no-op."""
    return IdentityProviderClient(api_key="")


# =============================================================================
# Seeding
# =============================================================================

class Seed:
    """Writes fixtures through their own committed sessions."""

    def __init__(self, session_factory: async_sessionmaker):
        self._factory = session_factory

    async def tenant(
        self,
        name: str = "Acme",
        kind: TenantKind = TenantKind.client,
        external_id: Optional[str] = None,
        members: Optional[dict[str, Role]] = None,
        onboarding_enabled: Optional[bool] = None,
    ) -> Tenant:
        async with self._factory() as session:
            tenant = Tenant(name=name, kind=kind.value, external_id=external_id)
            session.add(tenant)
            await session.flush()
            for user_id, role in (members or {}).items():
                session.add(Membership(tenant_id=tenant.id, user_id=user_id, role=role.value))
            if onboarding_enabled is not None:
                session.add(PortalConfig(tenant_id=tenant.id, onboarding_enabled=onboarding_enabled))
            await session.commit()
            return tenant

    async def member(self, tenant: Tenant, user_id: str, role: Role) -> None:
        async with self._factory() as session:
            session.add(Membership(tenant_id=tenant.id, user_id=user_id, role=role.value))
            await session.commit()

    async def link(self, agency: Tenant, client: Tenant) -> None:
        async with self._factory() as session:
            session.add(AgencyClient(agency_tenant_id=agency.id, client_tenant_id=client.id))
            await session.commit()


@pytest.fixture
def seed(session_factory) -> Seed:
    return Seed(session_factory)


# =============================================================================
# HTTP
# =============================================================================

def auth_headers(user_id: str, **claims) -> dict[str, str]:
    token = create_session_token(user_id, email=claims.get("email"), name=claims.get("name"))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth():
    return auth_headers


@pytest.fixture
async def client(session_factory, provider) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_identity_provider] = lambda: provider

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
