"""
api/routes/agency.py
--------------------
Agency sign-up and client management.

POST /agencies                          — Create an agency; caller becomes owner
GET  /workspaces/{workspace_ref}/clients — Client tenants managed by this agency
POST /workspaces/{workspace_ref}/clients — Create a client tenant under this agency
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.core.exceptions import InvalidTransition
from agency_portal.db.session import get_db
from agency_portal.dependencies import AdminContext, CurrentUser, get_current_user
from agency_portal.models.tenant import TenantKind
from agency_portal.schemas.tenant import TenantCreate, TenantRead
from agency_portal.services.tenant_service import TenantService

router = APIRouter(tags=["Agencies"])


@router.post(
    "/agencies",
    response_model=TenantRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create an agency workspace",
)
async def create_agency(
    body: TenantCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> TenantRead:
    tenant = await TenantService.create_agency(db, body.name, current_user.id)
    return TenantRead.model_validate(tenant)


@router.get(
    "/workspaces/{workspace_ref}/clients",
    response_model=list[TenantRead],
    summary="List client workspaces managed by this agency",
)
async def list_clients(
    ctx: AdminContext,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> list[TenantRead]:
    clients = await TenantService.list_agency_clients(db, ctx.tenant.id)
    return [TenantRead.model_validate(c) for c in clients]


@router.post(
    "/workspaces/{workspace_ref}/clients",
    response_model=TenantRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a client workspace managed by this agency",
)
async def create_client(
    body: TenantCreate,
    ctx: AdminContext,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> TenantRead:
    if ctx.tenant.kind != TenantKind.agency.value:
        raise InvalidTransition("Only agency workspaces can manage clients")
    client = await TenantService.create_client_tenant(db, ctx.tenant.id, body.name)
    return TenantRead.model_validate(client)
