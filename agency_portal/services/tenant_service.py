"""
services/tenant_service.py
--------------------------
Tenant resolution and workspace management.

resolve_tenant turns an inbound workspace reference into a Tenant:
  - internal id          → returned after an existence check
  - external reference   → looked up by external_id; created on first access
    (prefix convention)    together with an owner membership for the caller

Creation is check-then-insert under the unique constraint on external_id.
A concurrent creator losing the race gets an IntegrityError; it rolls back
and re-resolves by lookup, so every caller converges on one tenant row.
The tenant and its owner membership commit together so no caller ever
observes a half-created tenant.
"""

import asyncio
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agency_portal.core.config import settings
from agency_portal.core.exceptions import InsufficientRole, TenantNotFound
from agency_portal.core.logging import get_logger
from agency_portal.models.tenant import (
    AgencyClient,
    Membership,
    Role,
    Tenant,
    TenantKind,
    UserProfile,
)
from agency_portal.schemas.tenant import WorkspaceRead
from agency_portal.services import background
from agency_portal.services.identity_provider import IdentityProviderClient

logger = get_logger(__name__)

DEFAULT_TENANT_NAME = "Organization"


def is_external_ref(ref: str) -> bool:
    return ref.startswith(settings.EXTERNAL_ORG_PREFIX)


def workspace_dashboard_path(tenant_ref: str) -> str:
    return f"/workspaces/{tenant_ref}/dashboard"


class TenantService:

    # ── Lookups ──────────────────────────────────────────────────────────────

    @staticmethod
    async def get_tenant_by_id(db: AsyncSession, tenant_id: str) -> Tenant | None:
        result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_tenant_by_external_id(db: AsyncSession, external_id: str) -> Tenant | None:
        result = await db.execute(
            select(Tenant)
            .where(Tenant.external_id == external_id)
            .order_by(Tenant.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_membership(
        db: AsyncSession, tenant_id: str, user_id: str
    ) -> Membership | None:
        result = await db.execute(
            select(Membership).where(
                Membership.tenant_id == tenant_id,
                Membership.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    # ── Resolution ───────────────────────────────────────────────────────────

    @staticmethod
    async def resolve_tenant(
        db: AsyncSession,
        ref: str,
        user_id: str,
        provider: Optional[IdentityProviderClient] = None,
        session_factory: Optional[async_sessionmaker] = None,
        create: bool = True,
    ) -> Tenant:
        """
        Resolve a workspace reference to a Tenant.

        Raises TenantNotFound when an internal id does not exist, or when an
        external reference is unknown and create=False.
        """
        if not is_external_ref(ref):
            tenant = await TenantService.get_tenant_by_id(db, ref)
            if tenant is None:
                raise TenantNotFound(user_id=user_id)
            return tenant

        tenant = await TenantService.get_tenant_by_external_id(db, ref)
        if tenant is not None:
            return tenant
        if not create:
            raise TenantNotFound(user_id=user_id)

        try:
            tenant = await TenantService._create_from_external(db, ref, user_id, provider)
        except IntegrityError:
            await db.rollback()
            logger.info("Tenant creation raced, re-resolving", external_id=ref)
            return await TenantService._lookup_after_conflict(db, ref, user_id)
        except OperationalError as exc:
            # Transient store error inside the race window: one bounded retry
            await db.rollback()
            logger.warning("Tenant creation failed, retrying once", external_id=ref, error=str(exc))
            await asyncio.sleep(settings.TENANT_RESOLVE_RETRY_BACKOFF_SECONDS)
            tenant = await TenantService.get_tenant_by_external_id(db, ref)
            if tenant is not None:
                return tenant
            try:
                tenant = await TenantService._create_from_external(db, ref, user_id, provider)
            except (IntegrityError, OperationalError):
                await db.rollback()
                return await TenantService._lookup_after_conflict(db, ref, user_id)

        if session_factory is not None:
            background.dispatch(
                TenantService.set_active_tenant_best_effort(session_factory, user_id, tenant.id),
                name=f"profile-active-tenant:{user_id}",
            )
        return tenant

    @staticmethod
    async def _create_from_external(
        db: AsyncSession,
        external_id: str,
        user_id: str,
        provider: Optional[IdentityProviderClient],
    ) -> Tenant:
        name = None
        if provider is not None:
            name = await provider.get_org_name(external_id)

        tenant = Tenant(
            external_id=external_id,
            name=name or DEFAULT_TENANT_NAME,
            kind=TenantKind.client.value,
        )
        db.add(tenant)
        await db.flush()
        db.add(Membership(tenant_id=tenant.id, user_id=user_id, role=Role.owner.value))
        await db.commit()
        await db.refresh(tenant)
        logger.info(
            "Tenant created from external reference",
            tenant_id=tenant.id,
            external_id=external_id,
            owner_user_id=user_id,
        )
        return tenant

    @staticmethod
    async def _lookup_after_conflict(db: AsyncSession, external_id: str, user_id: str) -> Tenant:
        tenant = await TenantService.get_tenant_by_external_id(db, external_id)
        if tenant is None:
            # The winning transaction may not be visible yet
            await asyncio.sleep(settings.TENANT_RESOLVE_RETRY_BACKOFF_SECONDS)
            tenant = await TenantService.get_tenant_by_external_id(db, external_id)
        if tenant is None:
            raise TenantNotFound("tenant_create_conflict", user_id=user_id)
        return tenant

    # ── Profile pointer ──────────────────────────────────────────────────────

    @staticmethod
    async def set_active_tenant(db: AsyncSession, user_id: str, tenant_id: str) -> UserProfile:
        profile = await db.get(UserProfile, user_id)
        if profile is None:
            profile = UserProfile(user_id=user_id, active_tenant_id=tenant_id)
            db.add(profile)
        else:
            profile.active_tenant_id = tenant_id
        await db.flush()
        return profile

    @staticmethod
    async def set_active_tenant_best_effort(
        session_factory: async_sessionmaker, user_id: str, tenant_id: str
    ) -> None:
        async with session_factory() as db:
            try:
                await TenantService.set_active_tenant(db, user_id, tenant_id)
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.info("Active tenant pointer already written concurrently", user_id=user_id)

    @staticmethod
    async def switch_active_tenant(db: AsyncSession, user_id: str, tenant_id: str) -> UserProfile:
        membership = await TenantService.get_membership(db, tenant_id, user_id)
        if membership is None:
            raise InsufficientRole("no_membership", user_id=user_id)
        return await TenantService.set_active_tenant(db, user_id, tenant_id)

    # ── Workspaces & landing ─────────────────────────────────────────────────

    @staticmethod
    async def list_workspaces(db: AsyncSession, user_id: str) -> list[WorkspaceRead]:
        result = await db.execute(
            select(Tenant, Membership.role)
            .join(Membership, Membership.tenant_id == Tenant.id)
            .where(Membership.user_id == user_id)
            .order_by(Tenant.created_at, Tenant.id)
        )
        return [
            WorkspaceRead(
                id=tenant.id,
                external_id=tenant.external_id,
                name=tenant.name,
                kind=tenant.kind,
                role=role,
            )
            for tenant, role in result.all()
        ]

    @staticmethod
    def landing_path_for(workspaces: list[WorkspaceRead]) -> str:
        if not workspaces:
            return settings.DEFAULT_LANDING_PATH
        if len(workspaces) == 1:
            return workspace_dashboard_path(workspaces[0].ref)
        return settings.SELECT_WORKSPACE_PATH

    @staticmethod
    async def landing_path(db: AsyncSession, user_id: str) -> str:
        return TenantService.landing_path_for(await TenantService.list_workspaces(db, user_id))

    @staticmethod
    async def denial_path(db: AsyncSession, user_id: str) -> str:
        """
        Where a refused request is sent: the caller's first workspace, oldest
        first, with no picker in between. No workspaces → default landing.
        """
        workspaces = await TenantService.list_workspaces(db, user_id)
        if not workspaces:
            return settings.DEFAULT_LANDING_PATH
        return workspace_dashboard_path(workspaces[0].ref)

    # ── Agencies & clients ───────────────────────────────────────────────────

    @staticmethod
    async def create_agency(db: AsyncSession, name: str, user_id: str) -> Tenant:
        tenant = Tenant(name=name, kind=TenantKind.agency.value)
        db.add(tenant)
        await db.flush()
        db.add(Membership(tenant_id=tenant.id, user_id=user_id, role=Role.owner.value))
        await db.flush()
        await db.refresh(tenant)
        logger.info("Agency created", tenant_id=tenant.id, owner_user_id=user_id)
        return tenant

    @staticmethod
    async def create_client_tenant(db: AsyncSession, agency_tenant_id: str, name: str) -> Tenant:
        client = Tenant(name=name, kind=TenantKind.client.value)
        db.add(client)
        await db.flush()
        db.add(AgencyClient(agency_tenant_id=agency_tenant_id, client_tenant_id=client.id))
        await db.flush()
        await db.refresh(client)
        logger.info("Client tenant created", tenant_id=client.id, agency_tenant_id=agency_tenant_id)
        return client

    @staticmethod
    async def list_agency_clients(db: AsyncSession, agency_tenant_id: str) -> list[Tenant]:
        result = await db.execute(
            select(Tenant)
            .join(AgencyClient, AgencyClient.client_tenant_id == Tenant.id)
            .where(AgencyClient.agency_tenant_id == agency_tenant_id)
            .order_by(Tenant.created_at)
        )
        return list(result.scalars().all())
