"""
models/metric.py
----------------
Per-tenant KPI snapshot for a reporting period.
"""

from datetime import date
from typing import Optional

from sqlalchemy import Date, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from agency_portal.db.base import Base, TimestampMixin, generate_uuid


class MetricSnapshot(Base, TimestampMixin):
    __tablename__ = "metrics"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    tenant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    leads: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    spend: Mapped[Optional[float]] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    cpl: Mapped[Optional[float]] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    roas: Mapped[Optional[float]] = mapped_column(Numeric(8, 2, asdecimal=False), nullable=True)
    work_completed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
