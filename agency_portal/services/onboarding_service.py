"""
services/onboarding_service.py
------------------------------
Onboarding gate, flow authoring and per-user step completion.

Gate:
  A flow is active for a tenant when onboarding is enabled in its
  PortalConfig and a published flow with at least one node exists (the
  most recently published wins). Only effective role `member` is gated.

Authoring happens on draft flows; publishing freezes the draft as the
version served to members and archives the previously published one.

Completion is per (tenant, user, node) and monotonic: nothing in this
module ever moves a completed progress row back to pending.
"""

from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.core.exceptions import InvalidTransition, NotFound, ValidationIncomplete
from agency_portal.core.logging import get_logger
from agency_portal.db.base import utcnow
from agency_portal.models.onboarding import (
    ContractSignature,
    FlowStatus,
    NodeType,
    OnboardingEdge,
    OnboardingFlow,
    OnboardingNode,
    OnboardingProgress,
    PaymentStatus,
    ProgressStatus,
)
from agency_portal.models.tenant import Membership, PortalConfig, Role
from agency_portal.schemas.onboarding import (
    EdgeCreate,
    FlowRead,
    NodeCreate,
    NodeRead,
    NodeUpdate,
)
from agency_portal.services import onboarding_rules as rules
from agency_portal.services.onboarding_templates import build_template_nodes

logger = get_logger(__name__)

PAID_STATUSES = {PaymentStatus.paid.value, PaymentStatus.confirmed.value}


@dataclass(frozen=True)
class GateDecision:
    active: bool
    state: str
    blocked: bool
    next_node_id: Optional[str] = None


def flow_to_read(flow: OnboardingFlow) -> FlowRead:
    data = FlowRead.model_validate(flow)
    data.nodes = [
        NodeRead.model_validate(node).model_copy(
            update={"setup_missing": rules.setup_missing(node.type, node.title, node.config)}
        )
        for node in flow.nodes
    ]
    return data


def _validated_config(node_type: str, raw: Optional[dict]) -> dict:
    try:
        return rules.dump_node_config(rules.parse_node_config(node_type, raw))
    except ValidationError as exc:
        fields = [".".join(str(p) for p in err["loc"][1:]) or "config" for err in exc.errors()]
        raise ValidationIncomplete("Invalid step configuration", fields)


class OnboardingService:

    # ── Gate ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def is_enabled(db: AsyncSession, tenant_id: str) -> bool:
        result = await db.execute(
            select(PortalConfig.onboarding_enabled).where(PortalConfig.tenant_id == tenant_id)
        )
        return bool(result.scalar_one_or_none())

    @staticmethod
    async def get_active_flow(db: AsyncSession, tenant_id: str) -> Optional[OnboardingFlow]:
        result = await db.execute(
            select(OnboardingFlow)
            .where(
                OnboardingFlow.tenant_id == tenant_id,
                OnboardingFlow.status == FlowStatus.published.value,
            )
            .order_by(OnboardingFlow.published_at.desc(), OnboardingFlow.version.desc())
            .limit(1)
        )
        flow = result.scalar_one_or_none()
        if flow is None or not flow.nodes:
            return None
        return flow

    @staticmethod
    async def completed_node_ids(db: AsyncSession, tenant_id: str, user_id: str) -> set[str]:
        result = await db.execute(
            select(OnboardingProgress.node_id).where(
                OnboardingProgress.tenant_id == tenant_id,
                OnboardingProgress.user_id == user_id,
                OnboardingProgress.status == ProgressStatus.completed.value,
            )
        )
        return set(result.scalars().all())

    @staticmethod
    async def evaluate_gate(
        db: AsyncSession, tenant_id: str, user_id: str, effective_role: Role
    ) -> GateDecision:
        if not await OnboardingService.is_enabled(db, tenant_id):
            return GateDecision(active=False, state=rules.STATE_COMPLETE, blocked=False)
        flow = await OnboardingService.get_active_flow(db, tenant_id)
        if flow is None:
            return GateDecision(active=False, state=rules.STATE_COMPLETE, blocked=False)
        if Role(effective_role) != Role.member:
            return GateDecision(active=True, state=rules.STATE_COMPLETE, blocked=False)

        completed = await OnboardingService.completed_node_ids(db, tenant_id, user_id)
        state, next_node_id = rules.flow_state(flow.nodes, completed)
        return GateDecision(
            active=True,
            state=state,
            blocked=state != rules.STATE_COMPLETE,
            next_node_id=next_node_id,
        )

    # ── Flow authoring ───────────────────────────────────────────────────────

    @staticmethod
    async def list_flows(db: AsyncSession, tenant_id: str) -> list[OnboardingFlow]:
        result = await db.execute(
            select(OnboardingFlow)
            .where(OnboardingFlow.tenant_id == tenant_id)
            .order_by(OnboardingFlow.created_at.desc(), OnboardingFlow.version.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_flow(
        db: AsyncSession, tenant_id: str, flow_id: str, refresh: bool = False
    ) -> OnboardingFlow:
        stmt = select(OnboardingFlow).where(
            OnboardingFlow.id == flow_id,
            OnboardingFlow.tenant_id == tenant_id,
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await db.execute(stmt)
        flow = result.scalar_one_or_none()
        if flow is None:
            raise NotFound("Onboarding flow")
        return flow

    @staticmethod
    async def _get_draft(db: AsyncSession, tenant_id: str, flow_id: str) -> OnboardingFlow:
        flow = await OnboardingService.get_flow(db, tenant_id, flow_id)
        if flow.status != FlowStatus.draft.value:
            raise InvalidTransition("Only draft flows can be edited")
        return flow

    @staticmethod
    async def _latest_published_version(db: AsyncSession, tenant_id: str) -> int:
        result = await db.execute(
            select(func.max(OnboardingFlow.version)).where(
                OnboardingFlow.tenant_id == tenant_id,
                OnboardingFlow.status.in_([FlowStatus.published.value, FlowStatus.archived.value]),
                OnboardingFlow.published_at.is_not(None),
            )
        )
        return result.scalar_one_or_none() or 0

    @staticmethod
    async def create_flow(
        db: AsyncSession,
        tenant_id: str,
        template: str = "empty",
        name: Optional[str] = None,
        org_name: Optional[str] = None,
    ) -> OnboardingFlow:
        """
        Start a new draft from a template. An existing draft is replaced;
        published and archived flows are left alone.
        """
        specs = build_template_nodes(template, org_name=org_name)
        if specs is None:
            raise ValidationIncomplete(f"Unknown template '{template}'", ["template"])

        drafts = (
            select(OnboardingFlow.id)
            .where(
                OnboardingFlow.tenant_id == tenant_id,
                OnboardingFlow.status == FlowStatus.draft.value,
            )
            .scalar_subquery()
        )
        # Children first; edges reference nodes without an ORM relationship
        for model in (OnboardingEdge, OnboardingNode):
            await db.execute(
                delete(model).where(model.flow_id.in_(drafts)).execution_options(synchronize_session=False)
            )
        await db.execute(
            delete(OnboardingFlow)
            .where(
                OnboardingFlow.tenant_id == tenant_id,
                OnboardingFlow.status == FlowStatus.draft.value,
            )
            .execution_options(synchronize_session=False)
        )

        version = await OnboardingService._latest_published_version(db, tenant_id) + 1
        flow = OnboardingFlow(
            tenant_id=tenant_id,
            name=name or "Client Onboarding",
            status=FlowStatus.draft.value,
            version=version,
        )
        db.add(flow)
        await db.flush()

        nodes = []
        for spec in specs:
            node = OnboardingNode(
                flow_id=flow.id,
                type=spec["type"],
                title=spec["title"],
                required=spec["required"],
                config=_validated_config(spec["type"], spec["config"]),
                order_index=spec["order_index"],
            )
            db.add(node)
            nodes.append(node)
        await db.flush()
        for source, target in zip(nodes, nodes[1:]):
            db.add(OnboardingEdge(flow_id=flow.id, source_node_id=source.id, target_node_id=target.id))
        await db.flush()

        logger.info(
            "Onboarding flow created",
            tenant_id=tenant_id,
            flow_id=flow.id,
            template=template,
            nodes=len(nodes),
        )
        return await OnboardingService.get_flow(db, tenant_id, flow.id, refresh=True)

    @staticmethod
    async def add_node(
        db: AsyncSession, tenant_id: str, flow_id: str, data: NodeCreate
    ) -> OnboardingFlow:
        flow = await OnboardingService._get_draft(db, tenant_id, flow_id)
        order_index = max((n.order_index for n in flow.nodes), default=-1) + 1
        db.add(
            OnboardingNode(
                flow_id=flow.id,
                type=data.type.value,
                title=data.title.strip(),
                description=data.description,
                required=data.required,
                config=_validated_config(data.type.value, data.config),
                order_index=order_index,
            )
        )
        await db.flush()
        return await OnboardingService.get_flow(db, tenant_id, flow_id, refresh=True)

    @staticmethod
    def _node_in(flow: OnboardingFlow, node_id: str) -> OnboardingNode:
        node = next((n for n in flow.nodes if n.id == node_id), None)
        if node is None:
            raise NotFound("Onboarding step")
        return node

    @staticmethod
    async def update_node(
        db: AsyncSession, tenant_id: str, flow_id: str, node_id: str, data: NodeUpdate
    ) -> OnboardingFlow:
        flow = await OnboardingService._get_draft(db, tenant_id, flow_id)
        node = OnboardingService._node_in(flow, node_id)
        if data.title is not None:
            node.title = data.title.strip()
        if data.description is not None:
            node.description = data.description
        if data.required is not None:
            node.required = data.required
        if data.config is not None:
            node.config = _validated_config(node.type, data.config)
        await db.flush()
        return await OnboardingService.get_flow(db, tenant_id, flow_id, refresh=True)

    @staticmethod
    async def delete_node(
        db: AsyncSession, tenant_id: str, flow_id: str, node_id: str
    ) -> OnboardingFlow:
        flow = await OnboardingService._get_draft(db, tenant_id, flow_id)
        node = OnboardingService._node_in(flow, node_id)
        for edge in [e for e in flow.edges if node_id in (e.source_node_id, e.target_node_id)]:
            flow.edges.remove(edge)
        await db.flush()
        flow.nodes.remove(node)
        await db.flush()
        return await OnboardingService.get_flow(db, tenant_id, flow_id, refresh=True)

    @staticmethod
    async def reorder_nodes(
        db: AsyncSession, tenant_id: str, flow_id: str, node_ids: list[str]
    ) -> OnboardingFlow:
        flow = await OnboardingService._get_draft(db, tenant_id, flow_id)
        by_id = {n.id: n for n in flow.nodes}
        if len(node_ids) != len(by_id) or set(node_ids) != set(by_id):
            raise ValidationIncomplete("Reorder must list every step exactly once", ["node_ids"])
        for index, node_id in enumerate(node_ids):
            by_id[node_id].order_index = index
        await db.flush()
        return await OnboardingService.get_flow(db, tenant_id, flow_id, refresh=True)

    @staticmethod
    async def add_edge(
        db: AsyncSession, tenant_id: str, flow_id: str, data: EdgeCreate
    ) -> OnboardingFlow:
        flow = await OnboardingService._get_draft(db, tenant_id, flow_id)
        OnboardingService._node_in(flow, data.source_node_id)
        OnboardingService._node_in(flow, data.target_node_id)
        if data.source_node_id == data.target_node_id:
            raise ValidationIncomplete("A step cannot link to itself", ["target_node_id"])
        db.add(
            OnboardingEdge(
                flow_id=flow.id,
                source_node_id=data.source_node_id,
                target_node_id=data.target_node_id,
                condition=data.condition,
            )
        )
        await db.flush()
        return await OnboardingService.get_flow(db, tenant_id, flow_id, refresh=True)

    @staticmethod
    async def delete_edge(
        db: AsyncSession, tenant_id: str, flow_id: str, edge_id: str
    ) -> OnboardingFlow:
        flow = await OnboardingService._get_draft(db, tenant_id, flow_id)
        edge = next((e for e in flow.edges if e.id == edge_id), None)
        if edge is None:
            raise NotFound("Onboarding edge")
        flow.edges.remove(edge)
        await db.flush()
        return await OnboardingService.get_flow(db, tenant_id, flow_id, refresh=True)

    @staticmethod
    async def publish_flow(db: AsyncSession, tenant_id: str, flow_id: str) -> OnboardingFlow:
        flow = await OnboardingService._get_draft(db, tenant_id, flow_id)
        if not flow.nodes:
            raise ValidationIncomplete("Add at least one step before publishing", ["nodes"])

        missing = []
        for node in flow.nodes:
            label = node.title or node.type
            missing.extend(
                f"{label}: {field}"
                for field in rules.setup_missing(node.type, node.title, node.config)
            )
        if missing:
            raise ValidationIncomplete("Finish setting up every step before publishing", missing)

        previous = await db.execute(
            select(OnboardingFlow).where(
                OnboardingFlow.tenant_id == tenant_id,
                OnboardingFlow.status == FlowStatus.published.value,
            )
        )
        for old in previous.scalars().all():
            old.status = FlowStatus.archived.value

        flow.version = await OnboardingService._latest_published_version(db, tenant_id) + 1
        flow.status = FlowStatus.published.value
        flow.published_at = utcnow()
        await db.flush()
        logger.info(
            "Onboarding flow published",
            tenant_id=tenant_id,
            flow_id=flow.id,
            version=flow.version,
        )
        return await OnboardingService.get_flow(db, tenant_id, flow_id, refresh=True)

    @staticmethod
    async def record_payment_status(
        db: AsyncSession, tenant_id: str, node_id: str, payment_status: PaymentStatus
    ) -> OnboardingNode:
        """Entry point for the payment-confirmation interface. Authoritative."""
        result = await db.execute(
            select(OnboardingNode)
            .join(OnboardingFlow, OnboardingFlow.id == OnboardingNode.flow_id)
            .where(
                OnboardingNode.id == node_id,
                OnboardingFlow.tenant_id == tenant_id,
            )
        )
        node = result.scalar_one_or_none()
        if node is None:
            raise NotFound("Onboarding step")
        if node.type != NodeType.invoice.value:
            raise InvalidTransition("Payment status applies to invoice steps only")
        node.payment_status = PaymentStatus(payment_status).value
        await db.flush()
        logger.info(
            "Invoice payment status recorded",
            tenant_id=tenant_id,
            node_id=node_id,
            payment_status=node.payment_status,
        )
        return node

    # ── Member progress ──────────────────────────────────────────────────────

    @staticmethod
    async def list_progress(
        db: AsyncSession, tenant_id: str, user_id: str
    ) -> list[OnboardingProgress]:
        result = await db.execute(
            select(OnboardingProgress).where(
                OnboardingProgress.tenant_id == tenant_id,
                OnboardingProgress.user_id == user_id,
            )
        )
        return list(result.scalars().all())

    @staticmethod
    async def _active_node(db: AsyncSession, tenant_id: str, node_id: str) -> OnboardingNode:
        flow = await OnboardingService.get_active_flow(db, tenant_id)
        if flow is None:
            raise NotFound("Onboarding step")
        return OnboardingService._node_in(flow, node_id)

    @staticmethod
    async def _progress_row(
        db: AsyncSession, tenant_id: str, user_id: str, node_id: str
    ) -> OnboardingProgress:
        result = await db.execute(
            select(OnboardingProgress).where(
                OnboardingProgress.tenant_id == tenant_id,
                OnboardingProgress.user_id == user_id,
                OnboardingProgress.node_id == node_id,
            )
        )
        progress = result.scalar_one_or_none()
        if progress is None:
            progress = OnboardingProgress(
                tenant_id=tenant_id,
                user_id=user_id,
                node_id=node_id,
                status=ProgressStatus.pending.value,
                details={},
            )
            db.add(progress)
            await db.flush()
        return progress

    @staticmethod
    def _mark_completed(progress: OnboardingProgress) -> None:
        if progress.status != ProgressStatus.completed.value:
            progress.status = ProgressStatus.completed.value
            progress.completed_at = utcnow()

    @staticmethod
    async def _signature_for(
        db: AsyncSession, tenant_id: str, user_id: str, node_id: str
    ) -> Optional[ContractSignature]:
        result = await db.execute(
            select(ContractSignature).where(
                ContractSignature.tenant_id == tenant_id,
                ContractSignature.user_id == user_id,
                ContractSignature.node_id == node_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def complete_node(
        db: AsyncSession, tenant_id: str, user_id: str, node_id: str
    ) -> OnboardingProgress:
        """
        Explicit "mark complete". Type-specific preconditions:
          terms    → both acceptances recorded
          contract → a signature exists
          invoice  → payment status paid or confirmed
        """
        node = await OnboardingService._active_node(db, tenant_id, node_id)
        progress = await OnboardingService._progress_row(db, tenant_id, user_id, node_id)
        if progress.status == ProgressStatus.completed.value:
            return progress

        details = progress.details or {}
        if node.type == NodeType.terms.value:
            missing = [
                key for key in ("terms_accepted_at", "privacy_accepted_at") if not details.get(key)
            ]
            if missing:
                raise ValidationIncomplete("Accept both the terms and the privacy policy", missing)
        elif node.type == NodeType.contract.value:
            if await OnboardingService._signature_for(db, tenant_id, user_id, node_id) is None:
                raise ValidationIncomplete("Sign the agreement first", ["signature"])
        elif node.type == NodeType.invoice.value:
            if node.payment_status not in PAID_STATUSES:
                raise ValidationIncomplete("Payment has not been confirmed yet", ["payment_status"])

        OnboardingService._mark_completed(progress)
        await db.flush()
        logger.info("Onboarding step completed", tenant_id=tenant_id, user_id=user_id, node_id=node_id)
        return progress

    @staticmethod
    async def accept_terms(
        db: AsyncSession,
        tenant_id: str,
        user_id: str,
        node_id: str,
        accept_terms: bool,
        accept_privacy: bool,
    ) -> OnboardingProgress:
        """Records acceptances; completes the step once both are present."""
        node = await OnboardingService._active_node(db, tenant_id, node_id)
        if node.type != NodeType.terms.value:
            raise InvalidTransition("This step has no terms to accept")
        progress = await OnboardingService._progress_row(db, tenant_id, user_id, node_id)

        details = dict(progress.details or {})
        now = utcnow().isoformat()
        if accept_terms and not details.get("terms_accepted_at"):
            details["terms_accepted_at"] = now
        if accept_privacy and not details.get("privacy_accepted_at"):
            details["privacy_accepted_at"] = now
        progress.details = details

        if details.get("terms_accepted_at") and details.get("privacy_accepted_at"):
            OnboardingService._mark_completed(progress)
        await db.flush()
        return progress

    @staticmethod
    async def sign_contract(
        db: AsyncSession,
        tenant_id: str,
        user_id: str,
        node_id: str,
        signed_name: str,
        signature_image_url: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> ContractSignature:
        """
        Record the signing event and complete the step. Signing again
        returns the original signature unchanged.
        """
        node = await OnboardingService._active_node(db, tenant_id, node_id)
        if node.type != NodeType.contract.value:
            raise InvalidTransition("This step is not a contract")
        if not signed_name.strip() or not signature_image_url.strip():
            raise ValidationIncomplete(
                "A name and a signature are required", ["signed_name", "signature_image_url"]
            )

        existing = await OnboardingService._signature_for(db, tenant_id, user_id, node_id)
        if existing is not None:
            return existing

        flow = await OnboardingService.get_active_flow(db, tenant_id)
        terms = next((n for n in flow.nodes if n.type == NodeType.terms.value), None)
        terms_config = rules.parse_node_config(terms.type, terms.config) if terms else None
        contract_config = rules.parse_node_config(node.type, node.config)

        signature = ContractSignature(
            tenant_id=tenant_id,
            user_id=user_id,
            node_id=node_id,
            signed_name=signed_name.strip(),
            signature_image_url=signature_image_url,
            contract_sha256=rules.contract_digest(contract_config.html_content),
            terms_version=terms_config.terms_version if terms_config else None,
            privacy_version=terms_config.privacy_version if terms_config else None,
            ip=ip,
            user_agent=user_agent,
            signed_at=utcnow(),
        )
        try:
            async with db.begin_nested():
                db.add(signature)
        except IntegrityError:
            logger.info("Contract signed concurrently, returning existing", node_id=node_id)
            existing = await OnboardingService._signature_for(db, tenant_id, user_id, node_id)
            if existing is None:
                raise
            return existing

        progress = await OnboardingService._progress_row(db, tenant_id, user_id, node_id)
        progress.details = {**(progress.details or {}), "signature_id": signature.id}
        OnboardingService._mark_completed(progress)
        await db.flush()
        logger.info("Contract signed", tenant_id=tenant_id, user_id=user_id, node_id=node_id)
        return signature

    @staticmethod
    async def affirm_payment(
        db: AsyncSession, tenant_id: str, user_id: str, node_id: str
    ) -> OnboardingProgress:
        """
        The member's "I've paid" click. Stored as advisory metadata only;
        the step completes solely on a recorded paid/confirmed status.
        """
        node = await OnboardingService._active_node(db, tenant_id, node_id)
        if node.type != NodeType.invoice.value:
            raise InvalidTransition("This step has no invoice")
        progress = await OnboardingService._progress_row(db, tenant_id, user_id, node_id)
        details = dict(progress.details or {})
        details.setdefault("payment_affirmed_at", utcnow().isoformat())
        progress.details = details
        if node.payment_status in PAID_STATUSES:
            OnboardingService._mark_completed(progress)
        await db.flush()
        return progress

    # ── Status views ─────────────────────────────────────────────────────────

    @staticmethod
    async def member_status(db: AsyncSession, tenant_id: str) -> tuple[Optional[OnboardingFlow], list[dict]]:
        """Per-member, per-node status for the active flow."""
        flow = await OnboardingService.get_active_flow(db, tenant_id)
        if flow is None:
            return None, []

        members = await db.execute(
            select(Membership.user_id)
            .where(Membership.tenant_id == tenant_id, Membership.role == Role.member.value)
            .order_by(Membership.created_at, Membership.user_id)
        )
        node_ids = [n.id for n in flow.nodes]
        rows = await db.execute(
            select(OnboardingProgress).where(
                OnboardingProgress.tenant_id == tenant_id,
                OnboardingProgress.node_id.in_(node_ids),
            )
        )
        by_user: dict[str, dict[str, OnboardingProgress]] = {}
        for progress in rows.scalars().all():
            by_user.setdefault(progress.user_id, {})[progress.node_id] = progress

        statuses = []
        for user_id in members.scalars().all():
            user_rows = by_user.get(user_id, {})
            completed = {
                node_id for node_id, p in user_rows.items()
                if p.status == ProgressStatus.completed.value
            }
            state, next_node_id = rules.flow_state(flow.nodes, completed)
            statuses.append(
                {
                    "user_id": user_id,
                    "state": state,
                    "next_node_id": next_node_id,
                    "nodes": [
                        {
                            "node_id": node.id,
                            "status": user_rows[node.id].status if node.id in user_rows else ProgressStatus.pending.value,
                            "completed_at": user_rows[node.id].completed_at if node.id in user_rows else None,
                        }
                        for node in flow.nodes
                    ],
                }
            )
        return flow, statuses
