"""
api/routes/workspaces.py
------------------------
Workspace discovery, landing redirect and the per-request context.

GET  /workspaces                          — Tenants the caller belongs to
GET  /landing                             — Where to send the caller after sign-in
GET  /workspaces/{workspace_ref}/context  — Resolved context bundle
GET  /workspaces/{workspace_ref}/dashboard — Dashboard bundle (onboarding-gated)
POST /workspaces/{workspace_ref}/activate — Set the navigation default
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.db.session import get_db
from agency_portal.dependencies import (
    CurrentUser,
    GatedMemberContext,
    MemberContext,
    get_current_user,
)
from agency_portal.schemas.portal import DashboardRead
from agency_portal.schemas.tenant import LandingRead, RequestContextRead, WorkspaceRead
from agency_portal.services.portal_service import PortalService
from agency_portal.services.tenant_service import TenantService

router = APIRouter(tags=["Workspaces"])


@router.get(
    "/workspaces",
    response_model=list[WorkspaceRead],
    summary="List the caller's workspaces",
)
async def list_workspaces(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> list[WorkspaceRead]:
    return await TenantService.list_workspaces(db, current_user.id)


@router.get(
    "/landing",
    response_model=LandingRead,
    summary="Post sign-in landing target",
)
async def landing(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> LandingRead:
    """No workspaces → default landing; one → its dashboard; several → picker."""
    workspaces = await TenantService.list_workspaces(db, current_user.id)
    return LandingRead(
        redirect_to=TenantService.landing_path_for(workspaces),
        workspaces=workspaces,
    )


@router.get(
    "/workspaces/{workspace_ref}/context",
    response_model=RequestContextRead,
    summary="Resolved tenant, role, view mode and onboarding gate",
)
async def get_context(ctx: MemberContext) -> RequestContextRead:
    return ctx.to_read()


@router.get(
    "/workspaces/{workspace_ref}/dashboard",
    response_model=DashboardRead,
    summary="Dashboard bundle",
)
async def dashboard(
    ctx: GatedMemberContext,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> DashboardRead:
    return await PortalService.build_dashboard(db, ctx.tenant, ctx.user.id, ctx.to_read())


@router.post(
    "/workspaces/{workspace_ref}/activate",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Make this workspace the caller's navigation default",
)
async def activate_workspace(
    ctx: GatedMemberContext,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> None:
    await TenantService.switch_active_tenant(db, ctx.user.id, ctx.tenant.id)
