"""
api/routes/deliverables.py
--------------------------
Deliverable endpoints, all under /workspaces/{workspace_ref}/deliverables.

Reads and comments are open to onboarded members; the response is projected for the
caller's view mode. Authoring and status changes require admin. Clients
have exactly two status operations: approve and request-revisions.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.db.session import get_db
from agency_portal.dependencies import AdminContext, GatedMemberContext
from agency_portal.models.deliverable import DeliverableStatus
from agency_portal.schemas.deliverable import (
    ActivityRead,
    AssetCreate,
    ChecklistItemCreate,
    CommentCreate,
    DeliverableCreate,
    DeliverableRead,
    DeliverableUpdateFields,
    RevisionRequest,
    StatusTransitionRequest,
    UpdateCreate,
)
from agency_portal.services.deliverable_service import DeliverableService, project_deliverable

router = APIRouter(prefix="/workspaces/{workspace_ref}/deliverables", tags=["Deliverables"])

DbSession = Annotated[AsyncSession, Depends(get_db)]


@router.get("", response_model=list[DeliverableRead], summary="List deliverables")
async def list_deliverables(
    ctx: GatedMemberContext,
    db: DbSession,
    status_filter: Optional[DeliverableStatus] = Query(default=None, alias="status"),
) -> list[DeliverableRead]:
    items = await DeliverableService.list_deliverables(
        db, ctx.tenant.id, client_view=ctx.is_client_mode, status=status_filter
    )
    return [project_deliverable(d, ctx.is_client_mode) for d in items]


@router.post(
    "",
    response_model=DeliverableRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a deliverable (starts as draft)",
)
async def create_deliverable(body: DeliverableCreate, ctx: AdminContext, db: DbSession) -> DeliverableRead:
    deliverable = await DeliverableService.create_deliverable(db, ctx.tenant.id, body, ctx.user.id)
    return project_deliverable(deliverable, client_view=False)


@router.get("/{deliverable_id}", response_model=DeliverableRead, summary="Get a deliverable")
async def get_deliverable(deliverable_id: str, ctx: GatedMemberContext, db: DbSession) -> DeliverableRead:
    deliverable = await DeliverableService.get_deliverable(
        db, ctx.tenant.id, deliverable_id, client_view=ctx.is_client_mode
    )
    return project_deliverable(deliverable, ctx.is_client_mode)


@router.patch("/{deliverable_id}", response_model=DeliverableRead, summary="Update deliverable fields")
async def update_deliverable(
    deliverable_id: str, body: DeliverableUpdateFields, ctx: AdminContext, db: DbSession
) -> DeliverableRead:
    deliverable = await DeliverableService.update_deliverable(db, ctx.tenant.id, deliverable_id, body)
    return project_deliverable(deliverable, client_view=False)


@router.post("/{deliverable_id}/archive", response_model=DeliverableRead, summary="Archive a deliverable")
async def archive_deliverable(deliverable_id: str, ctx: AdminContext, db: DbSession) -> DeliverableRead:
    deliverable = await DeliverableService.archive_deliverable(
        db, ctx.tenant.id, deliverable_id, ctx.user.id
    )
    return project_deliverable(deliverable, client_view=False)


# ── Lifecycle ─────────────────────────────────────────────────────────────────

@router.post(
    "/{deliverable_id}/status",
    response_model=DeliverableRead,
    summary="Change status (admin)",
)
async def change_status(
    deliverable_id: str, body: StatusTransitionRequest, ctx: AdminContext, db: DbSession
) -> DeliverableRead:
    """
    409 when the move is not allowed from the current status.
    422 with a `missing` list when completion or review preconditions fail
    and no override_reason is given.
    """
    deliverable = await DeliverableService.transition_status(
        db,
        ctx.tenant.id,
        deliverable_id,
        body.status,
        ctx.user.id,
        reason=body.reason,
        override_reason=body.override_reason,
    )
    return project_deliverable(deliverable, client_view=False)


@router.post("/{deliverable_id}/approve", response_model=DeliverableRead, summary="Client approval")
async def approve(deliverable_id: str, ctx: GatedMemberContext, db: DbSession) -> DeliverableRead:
    deliverable = await DeliverableService.client_approve(db, ctx.tenant.id, deliverable_id, ctx.user.id)
    return project_deliverable(deliverable, ctx.is_client_mode)


@router.post(
    "/{deliverable_id}/request-revisions",
    response_model=DeliverableRead,
    summary="Client revision request (comment required)",
)
async def request_revisions(
    deliverable_id: str, body: RevisionRequest, ctx: GatedMemberContext, db: DbSession
) -> DeliverableRead:
    deliverable = await DeliverableService.client_request_revisions(
        db, ctx.tenant.id, deliverable_id, body.comment, ctx.user.id, actor_role=ctx.effective_role
    )
    return project_deliverable(deliverable, ctx.is_client_mode)


@router.get(
    "/{deliverable_id}/activity",
    response_model=list[ActivityRead],
    summary="Status audit trail (oldest first)",
)
async def list_activity(deliverable_id: str, ctx: AdminContext, db: DbSession) -> list[ActivityRead]:
    rows = await DeliverableService.list_activity(db, ctx.tenant.id, deliverable_id)
    return [ActivityRead.model_validate(r) for r in rows]


# ── Nested records ────────────────────────────────────────────────────────────

@router.post(
    "/{deliverable_id}/checklist",
    response_model=DeliverableRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add a checklist item",
)
async def add_checklist_item(
    deliverable_id: str, body: ChecklistItemCreate, ctx: AdminContext, db: DbSession
) -> DeliverableRead:
    deliverable = await DeliverableService.add_checklist_item(db, ctx.tenant.id, deliverable_id, body.title)
    return project_deliverable(deliverable, client_view=False)


@router.post(
    "/{deliverable_id}/checklist/{item_id}/toggle",
    response_model=DeliverableRead,
    summary="Toggle a checklist item",
)
async def toggle_checklist_item(
    deliverable_id: str, item_id: str, ctx: AdminContext, db: DbSession
) -> DeliverableRead:
    deliverable = await DeliverableService.toggle_checklist_item(db, ctx.tenant.id, deliverable_id, item_id)
    return project_deliverable(deliverable, client_view=False)


@router.post(
    "/{deliverable_id}/assets",
    response_model=DeliverableRead,
    status_code=status.HTTP_201_CREATED,
    summary="Attach a proof item or other asset",
)
async def add_asset(
    deliverable_id: str, body: AssetCreate, ctx: AdminContext, db: DbSession
) -> DeliverableRead:
    deliverable = await DeliverableService.add_asset(db, ctx.tenant.id, deliverable_id, body, ctx.user.id)
    return project_deliverable(deliverable, client_view=False)


@router.post(
    "/{deliverable_id}/comments",
    response_model=DeliverableRead,
    status_code=status.HTTP_201_CREATED,
    summary="Comment on a deliverable",
)
async def add_comment(
    deliverable_id: str, body: CommentCreate, ctx: GatedMemberContext, db: DbSession
) -> DeliverableRead:
    deliverable = await DeliverableService.add_comment(
        db,
        ctx.tenant.id,
        deliverable_id,
        body.body,
        ctx.user.id,
        ctx.effective_role,
        client_view=ctx.is_client_mode,
    )
    return project_deliverable(deliverable, ctx.is_client_mode)


@router.post(
    "/{deliverable_id}/updates",
    response_model=DeliverableRead,
    status_code=status.HTTP_201_CREATED,
    summary="Post a timestamped update",
)
async def add_update(
    deliverable_id: str, body: UpdateCreate, ctx: AdminContext, db: DbSession
) -> DeliverableRead:
    deliverable = await DeliverableService.add_update(db, ctx.tenant.id, deliverable_id, body, ctx.user.id)
    return project_deliverable(deliverable, client_view=False)
