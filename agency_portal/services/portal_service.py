"""
services/portal_service.py
--------------------------
Per-tenant portal configuration, KPI snapshots and the dashboard bundle.

Roadmap and reports are only loaded when their section is switched on;
reports follow the same client-view filter as the reports page.

Non-critical dashboard parts (metrics, recent messages, unread count)
degrade to empty values on a store error instead of failing the page.
Each runs in its own savepoint so a failed statement does not abort the
request transaction.
"""

from datetime import date, timedelta
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.core.logging import get_logger
from agency_portal.models.metric import MetricSnapshot
from agency_portal.models.tenant import PortalConfig, Tenant, TenantKind
from agency_portal.schemas.deliverable import DeliverableRead
from agency_portal.schemas.message import MessageRead
from agency_portal.schemas.portal import (
    DashboardLayout,
    DashboardRead,
    MetricRead,
    PortalConfigRead,
    PortalConfigUpdate,
)
from agency_portal.schemas.report import ReportRead, RoadmapItemRead
from agency_portal.schemas.tenant import RequestContextRead, TenantRead
from agency_portal.services.deliverable_service import DeliverableService, project_deliverable
from agency_portal.services.message_service import MessageService
from agency_portal.services.report_service import ReportService
from agency_portal.services.roadmap_service import RoadmapService
from agency_portal.services.tenant_service import TenantService

logger = get_logger(__name__)

DASHBOARD_REPORT_LIMIT = 3


def _month_bounds(today: date) -> tuple[date, date]:
    start = today.replace(day=1)
    next_month = (start + timedelta(days=32)).replace(day=1)
    return start, next_month - timedelta(days=1)


class PortalService:

    # ── Configuration ────────────────────────────────────────────────────────

    @staticmethod
    def _layout_from(raw: Optional[dict], tenant_id: str) -> DashboardLayout:
        if not raw:
            return DashboardLayout()
        try:
            return DashboardLayout.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Stored dashboard layout invalid, using defaults", tenant_id=tenant_id, error=str(exc))
            return DashboardLayout()

    @staticmethod
    async def get_config(db: AsyncSession, tenant_id: str) -> PortalConfigRead:
        config = await db.get(PortalConfig, tenant_id)
        layout = PortalService._layout_from(config.dashboard_layout if config else None, tenant_id)
        return PortalConfigRead(
            tenant_id=tenant_id,
            onboarding_enabled=bool(config and config.onboarding_enabled),
            dashboard_layout=layout,
            flags=layout.flags(),
        )

    @staticmethod
    async def update_config(
        db: AsyncSession, tenant_id: str, data: PortalConfigUpdate
    ) -> PortalConfigRead:
        config = await db.get(PortalConfig, tenant_id)
        if config is None:
            config = PortalConfig(tenant_id=tenant_id, onboarding_enabled=False)
            db.add(config)
        if data.onboarding_enabled is not None:
            config.onboarding_enabled = data.onboarding_enabled
        if data.dashboard_layout is not None:
            config.dashboard_layout = data.dashboard_layout.model_dump()
        await db.flush()
        logger.info(
            "Portal config updated",
            tenant_id=tenant_id,
            onboarding_enabled=config.onboarding_enabled,
        )
        return await PortalService.get_config(db, tenant_id)

    # ── Metrics ──────────────────────────────────────────────────────────────

    @staticmethod
    async def latest_metrics(
        db: AsyncSession, tenant_id: str, today: Optional[date] = None
    ) -> Optional[MetricSnapshot]:
        """This month's snapshot if there is one, else the most recent."""
        month_start, month_end = _month_bounds(today or date.today())
        result = await db.execute(
            select(MetricSnapshot)
            .where(
                MetricSnapshot.tenant_id == tenant_id,
                MetricSnapshot.period_start >= month_start,
                MetricSnapshot.period_end <= month_end,
            )
            .order_by(MetricSnapshot.period_start.desc())
            .limit(1)
        )
        snapshot = result.scalar_one_or_none()
        if snapshot is not None:
            return snapshot

        result = await db.execute(
            select(MetricSnapshot)
            .where(MetricSnapshot.tenant_id == tenant_id)
            .order_by(MetricSnapshot.period_start.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ── Dashboard ────────────────────────────────────────────────────────────

    @staticmethod
    async def build_dashboard(
        db: AsyncSession,
        tenant: Tenant,
        user_id: str,
        context: RequestContextRead,
    ) -> DashboardRead:
        config = await PortalService.get_config(db, tenant.id)
        client_view = context.is_client_mode

        deliverables = await DeliverableService.list_deliverables(db, tenant.id, client_view=client_view)
        items: list[DeliverableRead] = [project_deliverable(d, client_view) for d in deliverables]

        clients: list[TenantRead] = []
        if tenant.kind == TenantKind.agency.value and context.is_agency_mode:
            clients = [
                TenantRead.model_validate(c)
                for c in await TenantService.list_agency_clients(db, tenant.id)
            ]

        metrics = None
        try:
            async with db.begin_nested():
                snapshot = await PortalService.latest_metrics(db, tenant.id)
            metrics = MetricRead.model_validate(snapshot) if snapshot else None
        except SQLAlchemyError as exc:
            logger.warning("Metrics unavailable for dashboard", tenant_id=tenant.id, error=str(exc))

        recent: list[MessageRead] = []
        unread = 0
        try:
            async with db.begin_nested():
                messages = await MessageService.recent_messages(db, tenant.id)
                unread = await MessageService.unread_count(db, tenant.id, user_id)
            recent = [MessageRead.model_validate(m) for m in messages]
        except SQLAlchemyError as exc:
            logger.warning("Messages unavailable for dashboard", tenant_id=tenant.id, error=str(exc))

        roadmap: list[RoadmapItemRead] = []
        if config.flags.get("show_roadmap"):
            roadmap = [
                RoadmapItemRead.model_validate(i)
                for i in await RoadmapService.list_items(db, tenant.id)
            ]

        reports: list[ReportRead] = []
        if config.flags.get("show_reports"):
            reports = [
                ReportRead.model_validate(r)
                for r in await ReportService.list_reports(
                    db, tenant.id, client_view=client_view, limit=DASHBOARD_REPORT_LIMIT
                )
            ]

        return DashboardRead(
            context=context,
            flags=config.flags,
            deliverables=items,
            clients=clients,
            metrics=metrics,
            recent_messages=recent,
            unread_messages=unread,
            roadmap=roadmap,
            reports=reports,
        )
