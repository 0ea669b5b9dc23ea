"""
api/routes/reports.py
---------------------
Client reports, all under /workspaces/{workspace_ref}/reports.

GET    /reports                             — Reports (client view: published and visible only)
GET    /reports/{report_id}                 — One report with its sections
POST   /reports                             — Create a report (admin)
PATCH  /reports/{report_id}                 — Update fields or status (admin)
POST   /reports/{report_id}/publish         — Publish (admin)
DELETE /reports/{report_id}                 — Delete (admin)
POST   /reports/{report_id}/sections        — Add a section (admin)
PATCH  /reports/{report_id}/sections/{id}   — Edit a section (admin)
DELETE /reports/{report_id}/sections/{id}   — Remove a section (admin)
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.db.session import get_db
from agency_portal.dependencies import AdminContext, GatedMemberContext
from agency_portal.schemas.report import (
    ReportCreate,
    ReportRead,
    ReportSectionCreate,
    ReportSectionUpdate,
    ReportUpdate,
)
from agency_portal.services.report_service import ReportService

router = APIRouter(prefix="/workspaces/{workspace_ref}/reports", tags=["Reports"])

DbSession = Annotated[AsyncSession, Depends(get_db)]


@router.get("", response_model=list[ReportRead], summary="List reports")
async def list_reports(ctx: GatedMemberContext, db: DbSession) -> list[ReportRead]:
    reports = await ReportService.list_reports(db, ctx.tenant.id, client_view=ctx.is_client_mode)
    return [ReportRead.model_validate(r) for r in reports]


@router.get("/{report_id}", response_model=ReportRead, summary="Get a report")
async def get_report(report_id: str, ctx: GatedMemberContext, db: DbSession) -> ReportRead:
    report = await ReportService.get_report(
        db, ctx.tenant.id, report_id, client_view=ctx.is_client_mode
    )
    return ReportRead.model_validate(report)


@router.post(
    "",
    response_model=ReportRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a report",
)
async def create_report(body: ReportCreate, ctx: AdminContext, db: DbSession) -> ReportRead:
    report = await ReportService.create_report(db, ctx.tenant.id, body, ctx.user.id)
    return ReportRead.model_validate(report)


@router.patch("/{report_id}", response_model=ReportRead, summary="Update a report")
async def update_report(
    report_id: str, body: ReportUpdate, ctx: AdminContext, db: DbSession
) -> ReportRead:
    report = await ReportService.update_report(db, ctx.tenant.id, report_id, body)
    return ReportRead.model_validate(report)


@router.post("/{report_id}/publish", response_model=ReportRead, summary="Publish a report")
async def publish_report(report_id: str, ctx: AdminContext, db: DbSession) -> ReportRead:
    report = await ReportService.publish_report(db, ctx.tenant.id, report_id)
    return ReportRead.model_validate(report)


@router.delete(
    "/{report_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a report",
)
async def delete_report(report_id: str, ctx: AdminContext, db: DbSession) -> None:
    await ReportService.delete_report(db, ctx.tenant.id, report_id)


# ── Sections ──────────────────────────────────────────────────────────────────

@router.post(
    "/{report_id}/sections",
    response_model=ReportRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add a report section",
)
async def add_section(
    report_id: str, body: ReportSectionCreate, ctx: AdminContext, db: DbSession
) -> ReportRead:
    report = await ReportService.add_section(db, ctx.tenant.id, report_id, body)
    return ReportRead.model_validate(report)


@router.patch(
    "/{report_id}/sections/{section_id}",
    response_model=ReportRead,
    summary="Edit a report section",
)
async def update_section(
    report_id: str,
    section_id: str,
    body: ReportSectionUpdate,
    ctx: AdminContext,
    db: DbSession,
) -> ReportRead:
    report = await ReportService.update_section(db, ctx.tenant.id, report_id, section_id, body)
    return ReportRead.model_validate(report)


@router.delete(
    "/{report_id}/sections/{section_id}",
    response_model=ReportRead,
    summary="Remove a report section",
)
async def delete_section(
    report_id: str, section_id: str, ctx: AdminContext, db: DbSession
) -> ReportRead:
    report = await ReportService.delete_section(db, ctx.tenant.id, report_id, section_id)
    return ReportRead.model_validate(report)
