"""
api/routes/roadmap.py
---------------------
Roadmap endpoints.

GET    /workspaces/{workspace_ref}/roadmap            — Items by timeframe, then position
POST   /workspaces/{workspace_ref}/roadmap            — Add an item (admin)
DELETE /workspaces/{workspace_ref}/roadmap/{item_id}  — Remove an item (admin)
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.db.session import get_db
from agency_portal.dependencies import AdminContext, GatedMemberContext
from agency_portal.schemas.report import RoadmapItemCreate, RoadmapItemRead
from agency_portal.services.roadmap_service import RoadmapService

router = APIRouter(prefix="/workspaces/{workspace_ref}/roadmap", tags=["Roadmap"])


@router.get("", response_model=list[RoadmapItemRead], summary="Roadmap items")
async def list_items(
    ctx: GatedMemberContext,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> list[RoadmapItemRead]:
    items = await RoadmapService.list_items(db, ctx.tenant.id)
    return [RoadmapItemRead.model_validate(i) for i in items]


@router.post(
    "",
    response_model=RoadmapItemRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add a roadmap item",
)
async def create_item(
    body: RoadmapItemCreate,
    ctx: AdminContext,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> RoadmapItemRead:
    item = await RoadmapService.create_item(db, ctx.tenant.id, body, ctx.user.id)
    return RoadmapItemRead.model_validate(item)


@router.delete(
    "/{item_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a roadmap item",
)
async def delete_item(
    item_id: str,
    ctx: AdminContext,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> None:
    await RoadmapService.delete_item(db, ctx.tenant.id, item_id)
