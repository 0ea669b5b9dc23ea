"""
models/report.py
----------------
Periodic client reports authored by the agency.

A report starts as a draft and is published once; published_at records the
first publication and is never moved afterwards. Clients only ever see
published reports that are not hidden from them.
"""

from datetime import date, datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agency_portal.db.base import Base, TimestampMixin, generate_uuid


class ReportStatus(str, PyEnum):
    draft = "draft"
    published = "published"


class ReportSectionType(str, PyEnum):
    summary = "summary"
    metrics = "metrics"
    insights = "insights"
    recommendations = "recommendations"
    next_steps = "next_steps"
    custom = "custom"


class Report(Base, TimestampMixin):
    __tablename__ = "reports"

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
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    period_start: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    period_end: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ReportStatus.draft.value
    )
    client_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)

    sections: Mapped[list["ReportSection"]] = relationship(
        "ReportSection",
        back_populates="report",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ReportSection.order_index",
    )

    def __repr__(self) -> str:
        return f"<Report id={self.id} status={self.status}>"


class ReportSection(Base, TimestampMixin):
    __tablename__ = "report_sections"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    report_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("reports.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    section_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ReportSectionType.custom.value
    )
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    report: Mapped["Report"] = relationship("Report", back_populates="sections")
