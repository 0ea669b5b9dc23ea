import asyncio

import pytest
from sqlalchemy import func, select

from agency_portal.core.exceptions import InsufficientRole, TenantNotFound
from agency_portal.models import Membership, Role, Tenant, TenantKind, UserProfile
from agency_portal.services import background
from agency_portal.services.tenant_service import TenantService, is_external_ref


async def _tenant_count(session_factory, external_id: str) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(func.count()).select_from(Tenant).where(Tenant.external_id == external_id)
        )
        return result.scalar_one()


def test_external_refs_are_recognised_by_prefix():
    assert is_external_ref("org_abc123")
    assert not is_external_ref("3f1c2a8e-0000-4000-8000-000000000000")


async def test_first_access_creates_client_tenant_with_owner(db, provider):
    tenant = await TenantService.resolve_tenant(db, "org_new1", "user_1", provider=provider)

    assert tenant.external_id == "org_new1"
    assert tenant.kind == TenantKind.client.value
    assert tenant.name == "Organization"
    membership = await TenantService.get_membership(db, tenant.id, "user_1")
    assert membership.role == Role.owner.value


async def test_second_access_returns_existing_tenant(db, provider):
    first = await TenantService.resolve_tenant(db, "org_again", "user_1", provider=provider)
    second = await TenantService.resolve_tenant(db, "org_again", "user_2", provider=provider)

    assert second.id == first.id
    assert await TenantService.get_membership(db, first.id, "user_2") is None


async def test_concurrent_first_access_creates_one_tenant(session_factory, provider):
    async def resolve(user_id: str) -> str:
        async with session_factory() as session:
            tenant = await TenantService.resolve_tenant(
                session, "org_race", user_id, provider=provider
            )
            return tenant.id

    ids = await asyncio.gather(*(resolve(f"user_{i}") for i in range(5)))

    assert len(set(ids)) == 1
    assert await _tenant_count(session_factory, "org_race") == 1


async def test_internal_id_resolves_after_existence_check(db, seed):
    tenant = await seed.tenant("Acme", members={"user_1": Role.owner})

    resolved = await TenantService.resolve_tenant(db, tenant.id, "user_1")
    assert resolved.id == tenant.id

    with pytest.raises(TenantNotFound):
        await TenantService.resolve_tenant(db, "00000000-0000-4000-8000-000000000000", "user_1")


async def test_unknown_external_ref_without_create_is_not_found(db):
    with pytest.raises(TenantNotFound):
        await TenantService.resolve_tenant(db, "org_missing", "user_1", create=False)


async def test_creation_upserts_active_tenant_pointer(db, provider, session_factory):
    tenant = await TenantService.resolve_tenant(
        db, "org_pointer", "user_1", provider=provider, session_factory=session_factory
    )
    await background.drain()

    async with session_factory() as session:
        profile = await session.get(UserProfile, "user_1")
    assert profile.active_tenant_id == tenant.id


async def test_switch_active_tenant_requires_membership(db, seed):
    mine = await seed.tenant("Mine", members={"user_1": Role.member})
    other = await seed.tenant("Other", members={"user_2": Role.owner})

    profile = await TenantService.switch_active_tenant(db, "user_1", mine.id)
    assert profile.active_tenant_id == mine.id

    with pytest.raises(InsufficientRole):
        await TenantService.switch_active_tenant(db, "user_1", other.id)


# ── Workspaces & landing ─────────────────────────────────────────────────────

async def test_landing_path_by_workspace_count(db, seed):
    assert await TenantService.landing_path(db, "user_1") == "/dashboard"

    first = await seed.tenant("First", external_id="org_first", members={"user_1": Role.member})
    assert await TenantService.landing_path(db, "user_1") == "/workspaces/org_first/dashboard"

    await seed.tenant("Second", members={"user_1": Role.admin})
    assert await TenantService.landing_path(db, "user_1") == "/select-workspace"

    workspaces = await TenantService.list_workspaces(db, "user_1")
    assert {w.ref for w in workspaces} >= {first.external_id}
    assert {w.role for w in workspaces} == {Role.member, Role.admin}


async def test_workspace_ref_falls_back_to_internal_id(db, seed):
    tenant = await seed.tenant("Internal", members={"user_1": Role.owner})

    [workspace] = await TenantService.list_workspaces(db, "user_1")
    assert workspace.ref == tenant.id


async def test_list_workspaces_endpoint(client, seed, auth):
    await seed.tenant("Acme", external_id="org_acme", members={"user_1": Role.owner})

    response = await client.get("/workspaces", headers=auth("user_1"))

    assert response.status_code == 200
    [workspace] = response.json()
    assert workspace["external_id"] == "org_acme"
    assert workspace["role"] == "owner"


async def test_landing_endpoint(client, seed, auth):
    tenant = await seed.tenant("Acme", members={"user_1": Role.member})

    response = await client.get("/landing", headers=auth("user_1"))

    assert response.status_code == 200
    assert response.json()["redirect_to"] == f"/workspaces/{tenant.id}/dashboard"


async def test_activate_sets_navigation_default(client, seed, auth, session_factory):
    tenant = await seed.tenant("Acme", members={"user_1": Role.member})

    response = await client.post(f"/workspaces/{tenant.id}/activate", headers=auth("user_1"))

    assert response.status_code == 204
    async with session_factory() as session:
        profile = await session.get(UserProfile, "user_1")
    assert profile.active_tenant_id == tenant.id


# ── Agencies ─────────────────────────────────────────────────────────────────

async def test_create_agency_and_client(client, auth, session_factory):
    response = await client.post("/agencies", json={"name": "Growth Co"}, headers=auth("agent"))
    assert response.status_code == 201
    agency = response.json()
    assert agency["kind"] == "agency"

    response = await client.post(
        f"/workspaces/{agency['id']}/clients",
        json={"name": "Client One"},
        headers=auth("agent"),
    )
    assert response.status_code == 201
    created = response.json()
    assert created["kind"] == "client"

    response = await client.get(f"/workspaces/{agency['id']}/clients", headers=auth("agent"))
    assert [c["id"] for c in response.json()] == [created["id"]]

    async with session_factory() as session:
        result = await session.execute(
            select(Membership).where(Membership.tenant_id == created["id"])
        )
        # Agency staff reach the client through delegation, not membership
        assert result.scalars().all() == []


async def test_client_tenant_cannot_manage_clients(client, seed, auth):
    tenant = await seed.tenant("Acme", members={"user_1": Role.owner})

    response = await client.post(
        f"/workspaces/{tenant.id}/clients", json={"name": "Nope"}, headers=auth("user_1")
    )

    assert response.status_code == 409
