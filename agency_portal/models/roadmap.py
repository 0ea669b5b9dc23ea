"""
models/roadmap.py
-----------------
Short-horizon roadmap shown on the client dashboard.

Items are grouped by timeframe and ordered within it by order_index; a new
item goes to the end of its timeframe.
"""

from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from agency_portal.db.base import Base, TimestampMixin, generate_uuid


class RoadmapTimeframe(str, PyEnum):
    this_week = "this_week"
    next_week = "next_week"
    blocker = "blocker"


class RoadmapItem(Base, TimestampMixin):
    __tablename__ = "roadmap_items"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    tenant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timeframe: Mapped[str] = mapped_column(String(16), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<RoadmapItem id={self.id} timeframe={self.timeframe}>"
