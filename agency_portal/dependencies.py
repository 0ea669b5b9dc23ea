"""
dependencies.py
---------------
FastAPI dependency injection functions for authentication and the
per-request workspace context.

Flow for every /workspaces/{workspace_ref}/... route:
  1. HTTPBearer extracts the session token; get_current_user verifies it.
  2. TenantService.resolve_tenant normalises workspace_ref to a Tenant
     (creating it on first access through an external reference).
  3. AccessControl.check_access applies the route's minimum role.
  4. A detached role sync from the identity provider is dispatched.
  5. The view mode and onboarding gate are derived for this request only.
  6. Every page except /context and /onboarding then passes the gate
     (require_onboarded_workspace); blocked members go to onboarding.

Any denial raises an AccessDenied carrying the caller's first workspace as
its redirect target, so "no such tenant" and "not your tenant" produce the
same redirect.
"""

from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agency_portal.core.config import settings
from agency_portal.core.exceptions import (
    AccessDenied,
    InsufficientRole,
    NotAuthenticated,
    OnboardingRequired,
    TenantNotFound,
)
from agency_portal.core.logging import get_logger
from agency_portal.core.security import decode_session_token
from agency_portal.db.session import get_db, get_session_factory
from agency_portal.models.tenant import Role, Tenant
from agency_portal.schemas.tenant import OnboardingGateRead, RequestContextRead
from agency_portal.services.access_service import AccessControl, ViewMode, resolve_view_mode
from agency_portal.services.identity_provider import IdentityProviderClient, get_identity_provider
from agency_portal.services.membership_sync import schedule_membership_sync
from agency_portal.services.onboarding_service import GateDecision, OnboardingService
from agency_portal.services.tenant_service import TenantService

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_PREVIEW_VALUES = {"client", "true", "1", "yes"}


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class RequestContext:
    user: CurrentUser
    tenant: Tenant
    workspace_ref: str
    effective_role: Role
    via_delegation: bool
    view_mode: ViewMode
    gate: GateDecision

    @property
    def is_agency_mode(self) -> bool:
        return self.view_mode.is_agency_mode

    @property
    def is_client_mode(self) -> bool:
        return self.view_mode.is_client_mode

    def to_read(self) -> RequestContextRead:
        return RequestContextRead(
            tenant_id=self.tenant.id,
            tenant_name=self.tenant.name,
            tenant_kind=self.tenant.kind,
            effective_role=self.effective_role,
            via_delegation=self.via_delegation,
            is_agency_mode=self.is_agency_mode,
            is_client_mode=self.is_client_mode,
            onboarding_gate=OnboardingGateRead(
                active=self.gate.active,
                state=self.gate.state,
                blocked=self.gate.blocked,
                next_node_id=self.gate.next_node_id,
            ),
        )


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> CurrentUser:
    """
    Verify the provider-issued session token. Identity only: roles are
    always read from the Membership table, never from the token.
    """
    if credentials is None:
        raise NotAuthenticated()
    try:
        payload = decode_session_token(credentials.credentials)
    except JWTError as exc:
        logger.warning("Session token rejected", error=str(exc))
        raise NotAuthenticated()

    user_id = payload.get("sub")
    if not user_id:
        raise NotAuthenticated()
    return CurrentUser(id=user_id, email=payload.get("email"), name=payload.get("name"))


async def _denial_path_for(db: AsyncSession, user_id: str) -> str:
    try:
        return await TenantService.denial_path(db, user_id)
    except SQLAlchemyError as exc:
        logger.warning("Denial redirect lookup failed, using default", user_id=user_id, error=str(exc))
        return settings.DEFAULT_LANDING_PATH


def require_workspace(minimum_role: Role = Role.member):
    """
    Build the context dependency for a route requiring `minimum_role`.

    Usage:
        ctx: Annotated[RequestContext, Depends(require_workspace(Role.admin))]
    """

    async def dependency(
        workspace_ref: str,
        current_user: Annotated[CurrentUser, Depends(get_current_user)],
        db: Annotated[AsyncSession, Depends(get_db)],
        provider: Annotated[IdentityProviderClient, Depends(get_identity_provider)],
        session_factory: Annotated[async_sessionmaker, Depends(get_session_factory)],
        preview: Optional[str] = Query(
            default=None,
            description="Set to 'client' to preview the client view",
        ),
    ) -> RequestContext:
        try:
            tenant = await TenantService.resolve_tenant(
                db,
                workspace_ref,
                current_user.id,
                provider=provider,
                session_factory=session_factory,
            )
            schedule_membership_sync(
                session_factory, provider, tenant.id, tenant.external_id, current_user.id
            )
            decision = await AccessControl.check_access(db, current_user.id, tenant, minimum_role)
        except AccessDenied as exc:
            logger.info("Workspace access denied", user_id=current_user.id, reason=exc.reason)
            exc.landing_path = await _denial_path_for(db, current_user.id)
            raise
        except SQLAlchemyError as exc:
            logger.error(
                "Store error during tenant resolution",
                user_id=current_user.id,
                workspace_ref=workspace_ref,
                error=str(exc),
            )
            await db.rollback()
            raise TenantNotFound(
                "store_error",
                user_id=current_user.id,
                landing_path=settings.DEFAULT_LANDING_PATH,
            )

        if not decision.allowed:
            raise InsufficientRole(
                decision.reason,
                user_id=current_user.id,
                landing_path=await _denial_path_for(db, current_user.id),
            )

        preview_requested = (preview or "").lower() in _PREVIEW_VALUES
        view_mode = resolve_view_mode(decision.effective_role, preview_requested)
        gate = await OnboardingService.evaluate_gate(
            db, tenant.id, current_user.id, decision.effective_role
        )
        return RequestContext(
            user=current_user,
            tenant=tenant,
            workspace_ref=workspace_ref,
            effective_role=decision.effective_role,
            via_delegation=decision.via_delegation,
            view_mode=view_mode,
            gate=gate,
        )

    return dependency


def require_onboarded(ctx: RequestContext) -> RequestContext:
    """Raise OnboardingRequired when the member still has required steps."""
    if ctx.gate.blocked:
        raise OnboardingRequired(ctx.workspace_ref)
    return ctx


def require_onboarded_workspace(minimum_role: Role = Role.member):
    """
    require_workspace plus the onboarding gate. Every workspace page except
    the context bundle and the onboarding flow itself goes through this.
    """
    workspace = require_workspace(minimum_role)

    async def dependency(
        ctx: Annotated[RequestContext, Depends(workspace)],
    ) -> RequestContext:
        return require_onboarded(ctx)

    return dependency


# ── Shorthands ────────────────────────────────────────────────────────────────
MemberContext = Annotated[RequestContext, Depends(require_workspace(Role.member))]
GatedMemberContext = Annotated[RequestContext, Depends(require_onboarded_workspace(Role.member))]
AdminContext = Annotated[RequestContext, Depends(require_workspace(Role.admin))]
OwnerContext = Annotated[RequestContext, Depends(require_workspace(Role.owner))]
