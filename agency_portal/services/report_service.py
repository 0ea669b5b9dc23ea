"""
services/report_service.py
--------------------------
Client reports and their sections.

Critical security invariant:
  Every report query includes tenant_id; a section is only reachable
  through a report of the resolved tenant.

Client view sees published, client-visible reports only. A hidden report
is indistinguishable from a missing one.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.core.exceptions import NotFound, ValidationIncomplete
from agency_portal.core.logging import get_logger
from agency_portal.db.base import utcnow
from agency_portal.models.report import Report, ReportSection, ReportStatus
from agency_portal.schemas.report import (
    ReportCreate,
    ReportSectionCreate,
    ReportSectionUpdate,
    ReportUpdate,
)

logger = get_logger(__name__)


def is_visible_to_client(report: Report) -> bool:
    return report.status == ReportStatus.published.value and report.client_visible


class ReportService:

    # ── Reads ────────────────────────────────────────────────────────────────

    @staticmethod
    async def _load(
        db: AsyncSession, tenant_id: str, report_id: str, refresh: bool = False
    ) -> Report:
        stmt = select(Report).where(Report.id == report_id, Report.tenant_id == tenant_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await db.execute(stmt)
        report = result.scalar_one_or_none()
        if report is None:
            raise NotFound("Report")
        return report

    @staticmethod
    async def get_report(
        db: AsyncSession, tenant_id: str, report_id: str, client_view: bool = False
    ) -> Report:
        report = await ReportService._load(db, tenant_id, report_id)
        if client_view and not is_visible_to_client(report):
            raise NotFound("Report")
        return report

    @staticmethod
    async def list_reports(
        db: AsyncSession,
        tenant_id: str,
        client_view: bool = False,
        limit: Optional[int] = None,
    ) -> list[Report]:
        """Newest first."""
        stmt = select(Report).where(Report.tenant_id == tenant_id)
        if client_view:
            stmt = stmt.where(
                Report.status == ReportStatus.published.value,
                Report.client_visible.is_(True),
            )
        stmt = stmt.order_by(Report.created_at.desc(), Report.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    # ── Authoring ────────────────────────────────────────────────────────────

    @staticmethod
    def _mark_published(report: Report) -> None:
        report.status = ReportStatus.published.value
        if report.published_at is None:
            report.published_at = utcnow()

    @staticmethod
    async def create_report(
        db: AsyncSession, tenant_id: str, data: ReportCreate, actor_user_id: str
    ) -> Report:
        report = Report(
            tenant_id=tenant_id,
            title=data.title,
            summary=data.summary,
            period_start=data.period_start,
            period_end=data.period_end,
            status=ReportStatus.draft.value,
            client_visible=data.client_visible,
            created_by=actor_user_id,
            created_at=utcnow(),
        )
        if data.status == ReportStatus.published:
            ReportService._mark_published(report)
        db.add(report)
        await db.flush()
        logger.info("Report created", tenant_id=tenant_id, report_id=report.id, status=report.status)
        return await ReportService._load(db, tenant_id, report.id, refresh=True)

    @staticmethod
    async def update_report(
        db: AsyncSession, tenant_id: str, report_id: str, data: ReportUpdate
    ) -> Report:
        report = await ReportService._load(db, tenant_id, report_id)
        if data.title is not None:
            report.title = data.title.strip()
        if data.summary is not None:
            report.summary = data.summary
        if data.period_start is not None:
            report.period_start = data.period_start
        if data.period_end is not None:
            report.period_end = data.period_end
        if data.client_visible is not None:
            report.client_visible = data.client_visible
        if data.status == ReportStatus.published:
            ReportService._mark_published(report)
        elif data.status == ReportStatus.draft:
            report.status = ReportStatus.draft.value

        if report.period_start and report.period_end and report.period_end < report.period_start:
            raise ValidationIncomplete("Report period ends before it starts", ["period_end"])
        await db.flush()
        return await ReportService._load(db, tenant_id, report_id, refresh=True)

    @staticmethod
    async def publish_report(db: AsyncSession, tenant_id: str, report_id: str) -> Report:
        report = await ReportService._load(db, tenant_id, report_id)
        ReportService._mark_published(report)
        await db.flush()
        logger.info("Report published", tenant_id=tenant_id, report_id=report_id)
        return await ReportService._load(db, tenant_id, report_id, refresh=True)

    @staticmethod
    async def delete_report(db: AsyncSession, tenant_id: str, report_id: str) -> None:
        report = await ReportService._load(db, tenant_id, report_id)
        await db.delete(report)
        await db.flush()
        logger.info("Report deleted", tenant_id=tenant_id, report_id=report_id)

    # ── Sections ─────────────────────────────────────────────────────────────

    @staticmethod
    def _section_in(report: Report, section_id: str) -> ReportSection:
        section = next((s for s in report.sections if s.id == section_id), None)
        if section is None:
            raise NotFound("Report section")
        return section

    @staticmethod
    async def add_section(
        db: AsyncSession, tenant_id: str, report_id: str, data: ReportSectionCreate
    ) -> Report:
        report = await ReportService._load(db, tenant_id, report_id)
        order_index = data.order_index
        if order_index is None:
            order_index = max((s.order_index for s in report.sections), default=-1) + 1
        db.add(
            ReportSection(
                report_id=report.id,
                section_type=data.section_type.value,
                title=data.title,
                content=data.content,
                order_index=order_index,
            )
        )
        await db.flush()
        return await ReportService._load(db, tenant_id, report_id, refresh=True)

    @staticmethod
    async def update_section(
        db: AsyncSession,
        tenant_id: str,
        report_id: str,
        section_id: str,
        data: ReportSectionUpdate,
    ) -> Report:
        report = await ReportService._load(db, tenant_id, report_id)
        section = ReportService._section_in(report, section_id)
        if data.title is not None:
            section.title = data.title
        if data.content is not None:
            section.content = data.content
        if data.order_index is not None:
            section.order_index = data.order_index
        await db.flush()
        return await ReportService._load(db, tenant_id, report_id, refresh=True)

    @staticmethod
    async def delete_section(
        db: AsyncSession, tenant_id: str, report_id: str, section_id: str
    ) -> Report:
        report = await ReportService._load(db, tenant_id, report_id)
        report.sections.remove(ReportService._section_in(report, section_id))
        await db.flush()
        return await ReportService._load(db, tenant_id, report_id, refresh=True)
