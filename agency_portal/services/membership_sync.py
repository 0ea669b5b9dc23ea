"""
services/membership_sync.py
---------------------------
Background refresh of a user's Membership row from the identity provider.

Runs detached (see services/background.py) with its own session; the
request that triggered it has usually finished by the time it runs.
Only tenants carrying an external_id can be synced. An existing owner is
never demoted, since the provider has no owner role.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from agency_portal.core.logging import get_logger
from agency_portal.models.tenant import Membership, Role
from agency_portal.services import background
from agency_portal.services.identity_provider import IdentityProviderClient

logger = get_logger(__name__)


async def sync_membership_from_provider(
    session_factory: async_sessionmaker,
    provider: IdentityProviderClient,
    tenant_id: str,
    external_id: Optional[str],
    user_id: str,
) -> Optional[Role]:
    """Returns the role written, or None when nothing changed."""
    if not external_id or not provider.enabled:
        return None

    members = await provider.get_org_members(external_id)
    if members is None:
        return None
    member = next((m for m in members if m.user_id == user_id), None)
    if member is None:
        return None

    async with session_factory() as db:
        result = await db.execute(
            select(Membership).where(
                Membership.tenant_id == tenant_id,
                Membership.user_id == user_id,
            )
        )
        membership = result.scalar_one_or_none()

        if membership is None:
            db.add(Membership(tenant_id=tenant_id, user_id=user_id, role=member.role.value))
        elif membership.role == Role.owner.value or membership.role == member.role.value:
            return None
        else:
            membership.role = member.role.value

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.info("Membership written concurrently, skipping sync", tenant_id=tenant_id)
            return None

    logger.info("Membership synced", tenant_id=tenant_id, user_id=user_id, role=member.role.value)
    return member.role


def schedule_membership_sync(
    session_factory: async_sessionmaker,
    provider: IdentityProviderClient,
    tenant_id: str,
    external_id: Optional[str],
    user_id: str,
) -> None:
    if not external_id or not provider.enabled:
        return
    background.dispatch(
        sync_membership_from_provider(session_factory, provider, tenant_id, external_id, user_id),
        name=f"membership-sync:{tenant_id}:{user_id}",
    )
