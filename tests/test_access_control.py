import itertools
from datetime import datetime, timezone

import pytest
from sqlalchemy import update

from agency_portal.models import Role, Tenant, TenantKind
from agency_portal.services.access_service import (
    AccessControl,
    author_role_for,
    resolve_view_mode,
)
from agency_portal.services.tenant_service import TenantService


@pytest.mark.parametrize(
    "held, minimum",
    list(itertools.product(list(Role), list(Role))),
)
async def test_role_ordering(db, seed, held, minimum):
    tenant = await seed.tenant("Acme", members={"user_1": held})

    decision = await AccessControl.check_access(db, "user_1", tenant, minimum)

    assert decision.allowed == held.satisfies(minimum)
    if decision.allowed:
        assert decision.effective_role == held
        assert decision.via_delegation is False
    else:
        assert decision.effective_role is None
        assert decision.reason == "insufficient_role"


async def test_no_membership_is_denied(db, seed):
    tenant = await seed.tenant("Acme", members={"user_1": Role.owner})

    decision = await AccessControl.check_access(db, "stranger", tenant)

    assert not decision.allowed
    assert decision.reason == "no_membership"


@pytest.mark.parametrize("agency_role", [Role.owner, Role.admin])
async def test_delegation_caps_at_admin(db, seed, agency_role):
    agency = await seed.tenant("Agency", kind=TenantKind.agency, members={"agent": agency_role})
    client_tenant = await seed.tenant("Client")
    await seed.link(agency, client_tenant)

    decision = await AccessControl.check_access(db, "agent", client_tenant, Role.admin)
    assert decision.allowed
    assert decision.effective_role == Role.admin
    assert decision.via_delegation

    owner_only = await AccessControl.check_access(db, "agent", client_tenant, Role.owner)
    assert not owner_only.allowed


async def test_agency_member_gets_no_delegated_access(db, seed):
    agency = await seed.tenant("Agency", kind=TenantKind.agency, members={"junior": Role.member})
    client_tenant = await seed.tenant("Client")
    await seed.link(agency, client_tenant)

    decision = await AccessControl.check_access(db, "junior", client_tenant)

    assert not decision.allowed


async def test_direct_member_is_locked_to_member(db, seed):
    agency = await seed.tenant("Agency", kind=TenantKind.agency, members={"dual": Role.owner})
    client_tenant = await seed.tenant("Client", members={"dual": Role.member})
    await seed.link(agency, client_tenant)

    as_member = await AccessControl.check_access(db, "dual", client_tenant)
    assert as_member.allowed
    assert as_member.effective_role == Role.member
    assert not as_member.via_delegation

    as_admin = await AccessControl.check_access(db, "dual", client_tenant, Role.admin)
    assert not as_admin.allowed


async def test_delegation_never_applies_to_agency_tenants(db, seed):
    parent = await seed.tenant("Parent", kind=TenantKind.agency, members={"agent": Role.owner})
    child = await seed.tenant("Child", kind=TenantKind.agency)
    await seed.link(parent, child)

    decision = await AccessControl.check_access(db, "agent", child)

    assert not decision.allowed


async def test_any_managing_agency_grants_delegation(db, seed):
    first = await seed.tenant("First", kind=TenantKind.agency, members={"someone": Role.owner})
    second = await seed.tenant("Second", kind=TenantKind.agency, members={"agent": Role.admin})
    client_tenant = await seed.tenant("Client")
    await seed.link(first, client_tenant)
    await seed.link(second, client_tenant)

    decision = await AccessControl.check_access(db, "agent", client_tenant, Role.admin)

    assert decision.allowed
    assert decision.effective_role == Role.admin


async def test_role_change_applies_on_next_check(db, seed, session_factory):
    tenant = await seed.tenant("Acme", members={"user_1": Role.member})
    assert not (await AccessControl.check_access(db, "user_1", tenant, Role.admin)).allowed

    async with session_factory() as session:
        membership = await TenantService.get_membership(session, tenant.id, "user_1")
        membership.role = Role.admin.value
        await session.commit()

    assert (await AccessControl.check_access(db, "user_1", tenant, Role.admin)).allowed


# ── View mode ────────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "role, preview, agency_mode",
    [
        (Role.owner, False, True),
        (Role.admin, False, True),
        (Role.owner, True, False),
        (Role.admin, True, False),
        (Role.member, False, False),
        (Role.member, True, False),
    ],
)
def test_view_mode(role, preview, agency_mode):
    mode = resolve_view_mode(role, preview)

    assert mode.is_agency_mode is agency_mode
    assert mode.is_client_mode is not agency_mode


def test_author_role_follows_effective_role():
    assert author_role_for(Role.owner) == "agency"
    assert author_role_for(Role.admin) == "agency"
    assert author_role_for(Role.member) == "client"


# ── Request context over HTTP ────────────────────────────────────────────────

async def test_missing_session_redirects_to_sign_in(client, seed):
    tenant = await seed.tenant("Acme")

    response = await client.get(f"/workspaces/{tenant.id}/context")

    assert response.status_code == 303
    assert response.headers["location"] == "/auth/signin"


async def test_invalid_token_redirects_to_sign_in(client, seed):
    tenant = await seed.tenant("Acme")

    response = await client.get(
        f"/workspaces/{tenant.id}/context",
        headers={"Authorization": "Bearer not-a-token"},
    )

    assert response.status_code == 303
    assert response.headers["location"] == "/auth/signin"


async def test_denials_are_indistinguishable(client, seed, auth):
    home = await seed.tenant("Home", members={"user_1": Role.member})
    foreign = await seed.tenant("Foreign", members={"user_2": Role.owner})

    missing = await client.get(
        "/workspaces/00000000-0000-4000-8000-000000000000/context", headers=auth("user_1")
    )
    not_mine = await client.get(f"/workspaces/{foreign.id}/context", headers=auth("user_1"))
    too_low = await client.get(f"/workspaces/{home.id}/clients", headers=auth("user_1"))

    expected = f"/workspaces/{home.id}/dashboard"
    for response in (missing, not_mine, too_low):
        assert response.status_code == 303
        assert response.headers["location"] == expected
        assert response.content == missing.content


async def test_denial_goes_straight_to_first_workspace(client, seed, auth, session_factory):
    first = await seed.tenant("First", members={"user_1": Role.member})
    await seed.tenant("Second", members={"user_1": Role.member})
    foreign = await seed.tenant("Foreign", members={"user_2": Role.owner})
    async with session_factory() as session:
        await session.execute(
            update(Tenant)
            .where(Tenant.id == first.id)
            .values(created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        )
        await session.commit()

    denied = await client.get(f"/workspaces/{foreign.id}/context", headers=auth("user_1"))
    landing = await client.get("/landing", headers=auth("user_1"))

    assert denied.status_code == 303
    assert denied.headers["location"] == f"/workspaces/{first.id}/dashboard"
    assert landing.json()["redirect_to"] == "/select-workspace"


async def test_unknown_external_ref_for_user_without_workspaces(client, seed, auth):
    await seed.tenant("Existing", external_id="org_taken", members={"owner": Role.owner})

    response = await client.get("/workspaces/org_taken/context", headers=auth("outsider"))

    assert response.status_code == 303
    assert response.headers["location"] == "/dashboard"


async def test_context_for_delegated_admin(client, seed, auth):
    agency = await seed.tenant("Agency", kind=TenantKind.agency, members={"agent": Role.owner})
    client_tenant = await seed.tenant("Client")
    await seed.link(agency, client_tenant)

    response = await client.get(f"/workspaces/{client_tenant.id}/context", headers=auth("agent"))

    assert response.status_code == 200
    body = response.json()
    assert body["effective_role"] == "admin"
    assert body["via_delegation"] is True
    assert body["is_agency_mode"] is True


async def test_preview_forces_client_mode(client, seed, auth):
    tenant = await seed.tenant("Acme", members={"boss": Role.owner, "guest": Role.member})

    preview = await client.get(
        f"/workspaces/{tenant.id}/context", params={"preview": "client"}, headers=auth("boss")
    )
    member = await client.get(
        f"/workspaces/{tenant.id}/context", params={"preview": "false"}, headers=auth("guest")
    )

    assert preview.json()["is_client_mode"] is True
    assert preview.json()["effective_role"] == "owner"
    assert member.json()["is_agency_mode"] is False
