"""
api/routes/onboarding.py
------------------------
Onboarding endpoints under /workspaces/{workspace_ref}/onboarding.

Member side   — current flow and progress, step completion, terms, signature,
                "I've paid" affirmation.
Admin side    — templates, draft authoring (nodes, edges, order), publishing,
                payment status recording, per-member status.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.db.session import get_db
from agency_portal.dependencies import AdminContext, MemberContext
from agency_portal.schemas.onboarding import (
    AdminStatusRead,
    EdgeCreate,
    FlowCreate,
    FlowRead,
    MemberStatusRead,
    NodeCreate,
    NodeRead,
    NodeReorder,
    NodeUpdate,
    PaymentStatusUpdate,
    ProgressRead,
    SignatureCreate,
    SignatureRead,
    TemplateRead,
    TermsAcceptance,
    UserOnboardingRead,
)
from agency_portal.services.onboarding_service import OnboardingService, flow_to_read
from agency_portal.services.onboarding_templates import list_templates

router = APIRouter(prefix="/workspaces/{workspace_ref}/onboarding", tags=["Onboarding"])

DbSession = Annotated[AsyncSession, Depends(get_db)]


# ── Member side ───────────────────────────────────────────────────────────────

@router.get("", response_model=UserOnboardingRead, summary="Active flow and the caller's progress")
async def get_onboarding(ctx: MemberContext, db: DbSession) -> UserOnboardingRead:
    flow = await OnboardingService.get_active_flow(db, ctx.tenant.id)
    progress = await OnboardingService.list_progress(db, ctx.tenant.id, ctx.user.id)
    return UserOnboardingRead(
        state=ctx.gate.state,
        next_node_id=ctx.gate.next_node_id,
        flow=flow_to_read(flow) if flow else None,
        progress=[ProgressRead.model_validate(p) for p in progress],
    )


@router.post("/nodes/{node_id}/complete", response_model=ProgressRead, summary="Mark a step complete")
async def complete_node(node_id: str, ctx: MemberContext, db: DbSession) -> ProgressRead:
    progress = await OnboardingService.complete_node(db, ctx.tenant.id, ctx.user.id, node_id)
    return ProgressRead.model_validate(progress)


@router.post("/nodes/{node_id}/accept-terms", response_model=ProgressRead, summary="Accept terms and/or privacy")
async def accept_terms(
    node_id: str, body: TermsAcceptance, ctx: MemberContext, db: DbSession
) -> ProgressRead:
    progress = await OnboardingService.accept_terms(
        db, ctx.tenant.id, ctx.user.id, node_id, body.accept_terms, body.accept_privacy
    )
    return ProgressRead.model_validate(progress)


@router.post(
    "/nodes/{node_id}/sign",
    response_model=SignatureRead,
    status_code=status.HTTP_201_CREATED,
    summary="Sign the contract step",
)
async def sign_contract(
    node_id: str, body: SignatureCreate, request: Request, ctx: MemberContext, db: DbSession
) -> SignatureRead:
    signature = await OnboardingService.sign_contract(
        db,
        ctx.tenant.id,
        ctx.user.id,
        node_id,
        body.signed_name,
        body.signature_image_url,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return SignatureRead.model_validate(signature)


@router.post("/nodes/{node_id}/affirm-payment", response_model=ProgressRead, summary="\"I've paid\" (advisory)")
async def affirm_payment(node_id: str, ctx: MemberContext, db: DbSession) -> ProgressRead:
    progress = await OnboardingService.affirm_payment(db, ctx.tenant.id, ctx.user.id, node_id)
    return ProgressRead.model_validate(progress)


# ── Admin side ────────────────────────────────────────────────────────────────

@router.get("/templates", response_model=list[TemplateRead], summary="Available flow templates")
async def get_templates(ctx: AdminContext) -> list[TemplateRead]:
    return [TemplateRead(**t) for t in list_templates()]


@router.get("/flows", response_model=list[FlowRead], summary="All flows for this workspace")
async def list_flows(ctx: AdminContext, db: DbSession) -> list[FlowRead]:
    return [flow_to_read(f) for f in await OnboardingService.list_flows(db, ctx.tenant.id)]


@router.post(
    "/flows",
    response_model=FlowRead,
    status_code=status.HTTP_201_CREATED,
    summary="Start a draft flow from a template (replaces any existing draft)",
)
async def create_flow(body: FlowCreate, ctx: AdminContext, db: DbSession) -> FlowRead:
    flow = await OnboardingService.create_flow(db, ctx.tenant.id, template=body.template, name=body.name)
    return flow_to_read(flow)


@router.get("/flows/{flow_id}", response_model=FlowRead, summary="Get a flow")
async def get_flow(flow_id: str, ctx: AdminContext, db: DbSession) -> FlowRead:
    return flow_to_read(await OnboardingService.get_flow(db, ctx.tenant.id, flow_id))


@router.post(
    "/flows/{flow_id}/nodes",
    response_model=FlowRead,
    status_code=status.HTTP_201_CREATED,
    summary="Append a step",
)
async def add_node(flow_id: str, body: NodeCreate, ctx: AdminContext, db: DbSession) -> FlowRead:
    return flow_to_read(await OnboardingService.add_node(db, ctx.tenant.id, flow_id, body))


@router.patch("/flows/{flow_id}/nodes/{node_id}", response_model=FlowRead, summary="Edit a step")
async def update_node(
    flow_id: str, node_id: str, body: NodeUpdate, ctx: AdminContext, db: DbSession
) -> FlowRead:
    return flow_to_read(await OnboardingService.update_node(db, ctx.tenant.id, flow_id, node_id, body))


@router.delete("/flows/{flow_id}/nodes/{node_id}", response_model=FlowRead, summary="Delete a step")
async def delete_node(flow_id: str, node_id: str, ctx: AdminContext, db: DbSession) -> FlowRead:
    return flow_to_read(await OnboardingService.delete_node(db, ctx.tenant.id, flow_id, node_id))


@router.put("/flows/{flow_id}/order", response_model=FlowRead, summary="Reorder steps")
async def reorder_nodes(flow_id: str, body: NodeReorder, ctx: AdminContext, db: DbSession) -> FlowRead:
    return flow_to_read(await OnboardingService.reorder_nodes(db, ctx.tenant.id, flow_id, body.node_ids))


@router.post(
    "/flows/{flow_id}/edges",
    response_model=FlowRead,
    status_code=status.HTTP_201_CREATED,
    summary="Link two steps",
)
async def add_edge(flow_id: str, body: EdgeCreate, ctx: AdminContext, db: DbSession) -> FlowRead:
    return flow_to_read(await OnboardingService.add_edge(db, ctx.tenant.id, flow_id, body))


@router.delete("/flows/{flow_id}/edges/{edge_id}", response_model=FlowRead, summary="Remove a link")
async def delete_edge(flow_id: str, edge_id: str, ctx: AdminContext, db: DbSession) -> FlowRead:
    return flow_to_read(await OnboardingService.delete_edge(db, ctx.tenant.id, flow_id, edge_id))


@router.post("/flows/{flow_id}/publish", response_model=FlowRead, summary="Publish a draft flow")
async def publish_flow(flow_id: str, ctx: AdminContext, db: DbSession) -> FlowRead:
    return flow_to_read(await OnboardingService.publish_flow(db, ctx.tenant.id, flow_id))


@router.put(
    "/nodes/{node_id}/payment-status",
    response_model=NodeRead,
    summary="Record invoice payment status (payment-confirmation interface)",
)
async def record_payment_status(
    node_id: str, body: PaymentStatusUpdate, ctx: AdminContext, db: DbSession
) -> NodeRead:
    node = await OnboardingService.record_payment_status(db, ctx.tenant.id, node_id, body.payment_status)
    return NodeRead.model_validate(node)


@router.get("/status", response_model=AdminStatusRead, summary="Per-member progress on the active flow")
async def member_status(ctx: AdminContext, db: DbSession) -> AdminStatusRead:
    flow, statuses = await OnboardingService.member_status(db, ctx.tenant.id)
    return AdminStatusRead(
        flow_id=flow.id if flow else None,
        members=[MemberStatusRead.model_validate(s) for s in statuses],
    )
