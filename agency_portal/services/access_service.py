"""
services/access_service.py
--------------------------
The single authorisation engine every workspace route goes through.

check_access(user, tenant, minimum_role):
  1. Direct membership that meets the minimum → allowed with that role.
  2. Direct membership below the minimum → denied. A lesser direct member
     is never lifted by delegation.
  3. No direct membership, client tenant → every AgencyClient row naming
     the tenant is checked; owner/admin of any managing agency is granted
     admin (never owner) in the client.
  4. Otherwise denied.

Decisions are computed per call and never cached: a role change takes
effect on the very next request.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.core.logging import get_logger
from agency_portal.models.tenant import AgencyClient, Membership, Role, Tenant, TenantKind

logger = get_logger(__name__)


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    effective_role: Optional[Role] = None
    via_delegation: bool = False
    # Log-only; never returned to the caller
    reason: Optional[str] = None


@dataclass(frozen=True)
class ViewMode:
    is_agency_mode: bool
    is_client_mode: bool


def author_role_for(effective_role: Role) -> str:
    """Authorship tag stored on messages and comments at write time."""
    return "agency" if Role(effective_role).is_agency else "client"


def resolve_view_mode(effective_role: Role, preview_requested: bool) -> ViewMode:
    """Preview can push an agency user into client view, never the reverse."""
    is_agency_mode = Role(effective_role).is_agency and not preview_requested
    return ViewMode(is_agency_mode=is_agency_mode, is_client_mode=not is_agency_mode)


class AccessControl:

    @staticmethod
    async def check_access(
        db: AsyncSession,
        user_id: str,
        tenant: Tenant,
        minimum_role: Role = Role.member,
    ) -> AccessDecision:
        minimum_role = Role(minimum_role)

        result = await db.execute(
            select(Membership.role).where(
                Membership.tenant_id == tenant.id,
                Membership.user_id == user_id,
            )
        )
        direct_role = result.scalar_one_or_none()

        if direct_role is not None:
            role = Role(direct_role)
            if role.satisfies(minimum_role):
                return AccessDecision(allowed=True, effective_role=role)
            return AccessControl._deny(user_id, tenant, minimum_role, "insufficient_role")

        if tenant.kind != TenantKind.client.value:
            return AccessControl._deny(user_id, tenant, minimum_role, "no_membership")

        delegated = await AccessControl._delegated_role(db, user_id, tenant.id)
        if delegated is None:
            return AccessControl._deny(user_id, tenant, minimum_role, "no_membership")
        if not delegated.satisfies(minimum_role):
            return AccessControl._deny(user_id, tenant, minimum_role, "insufficient_role")
        return AccessDecision(allowed=True, effective_role=delegated, via_delegation=True)

    @staticmethod
    async def _delegated_role(
        db: AsyncSession, user_id: str, client_tenant_id: str
    ) -> Optional[Role]:
        result = await db.execute(
            select(Membership.role)
            .join(AgencyClient, AgencyClient.agency_tenant_id == Membership.tenant_id)
            .where(
                AgencyClient.client_tenant_id == client_tenant_id,
                Membership.user_id == user_id,
            )
        )
        agency_roles = [Role(r) for r in result.scalars().all()]
        if any(r.is_agency for r in agency_roles):
            return Role.admin
        return None

    @staticmethod
    def _deny(user_id: str, tenant: Tenant, minimum_role: Role, reason: str) -> AccessDecision:
        logger.info(
            "Access denied",
            user_id=user_id,
            tenant_id=tenant.id,
            minimum_role=minimum_role.value,
            reason=reason,
        )
        return AccessDecision(allowed=False, reason=reason)
