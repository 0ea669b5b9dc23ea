"""
api/routes/portal.py
--------------------
Portal configuration and KPI snapshots.

GET /workspaces/{workspace_ref}/portal-config     — Config with derived flags (defaults if unset)
PUT /workspaces/{workspace_ref}/portal-config     — Upsert (admin)
GET /workspaces/{workspace_ref}/metrics/latest    — This month's snapshot, else the latest
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.db.session import get_db
from agency_portal.dependencies import AdminContext, GatedMemberContext
from agency_portal.schemas.portal import MetricRead, PortalConfigRead, PortalConfigUpdate
from agency_portal.services.portal_service import PortalService

router = APIRouter(prefix="/workspaces/{workspace_ref}", tags=["Portal"])


@router.get("/portal-config", response_model=PortalConfigRead, summary="Portal configuration")
async def get_config(
    ctx: GatedMemberContext,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> PortalConfigRead:
    return await PortalService.get_config(db, ctx.tenant.id)


@router.put("/portal-config", response_model=PortalConfigRead, summary="Update portal configuration")
async def update_config(
    body: PortalConfigUpdate,
    ctx: AdminContext,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> PortalConfigRead:
    return await PortalService.update_config(db, ctx.tenant.id, body)


@router.get("/metrics/latest", response_model=Optional[MetricRead], summary="Latest KPI snapshot")
async def latest_metrics(
    ctx: GatedMemberContext,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Optional[MetricRead]:
    snapshot = await PortalService.latest_metrics(db, ctx.tenant.id)
    return MetricRead.model_validate(snapshot) if snapshot else None
