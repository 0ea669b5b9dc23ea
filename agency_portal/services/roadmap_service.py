"""
services/roadmap_service.py
---------------------------
Roadmap items: this week, next week and blockers.

Listing order is timeframe first (this_week, next_week, blocker), then the
position inside the timeframe.
"""

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.core.exceptions import NotFound
from agency_portal.core.logging import get_logger
from agency_portal.db.base import utcnow
from agency_portal.models.roadmap import RoadmapItem, RoadmapTimeframe
from agency_portal.schemas.report import RoadmapItemCreate

logger = get_logger(__name__)

TIMEFRAME_ORDER = [t.value for t in RoadmapTimeframe]

_timeframe_rank = case(
    {value: index for index, value in enumerate(TIMEFRAME_ORDER)},
    value=RoadmapItem.timeframe,
    else_=len(TIMEFRAME_ORDER),
)


class RoadmapService:

    @staticmethod
    async def list_items(db: AsyncSession, tenant_id: str) -> list[RoadmapItem]:
        result = await db.execute(
            select(RoadmapItem)
            .where(RoadmapItem.tenant_id == tenant_id)
            .order_by(_timeframe_rank, RoadmapItem.order_index, RoadmapItem.created_at)
        )
        return list(result.scalars().all())

    @staticmethod
    async def create_item(
        db: AsyncSession, tenant_id: str, data: RoadmapItemCreate, actor_user_id: str
    ) -> RoadmapItem:
        result = await db.execute(
            select(func.max(RoadmapItem.order_index)).where(
                RoadmapItem.tenant_id == tenant_id,
                RoadmapItem.timeframe == data.timeframe.value,
            )
        )
        current_max = result.scalar_one_or_none()
        item = RoadmapItem(
            tenant_id=tenant_id,
            title=data.title,
            description=data.description,
            timeframe=data.timeframe.value,
            order_index=0 if current_max is None else current_max + 1,
            created_by=actor_user_id,
            created_at=utcnow(),
        )
        db.add(item)
        await db.flush()
        logger.info(
            "Roadmap item created",
            tenant_id=tenant_id,
            item_id=item.id,
            timeframe=item.timeframe,
        )
        return item

    @staticmethod
    async def delete_item(db: AsyncSession, tenant_id: str, item_id: str) -> None:
        result = await db.execute(
            select(RoadmapItem).where(
                RoadmapItem.id == item_id,
                RoadmapItem.tenant_id == tenant_id,
            )
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise NotFound("Roadmap item")
        await db.delete(item)
        await db.flush()
