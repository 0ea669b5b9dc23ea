"""
services/deliverable_service.py
-------------------------------
Deliverable CRUD, nested records and the status lifecycle.

Critical security invariant:
  Every query includes tenant_id; a deliverable id from another tenant is
  indistinguishable from a missing one.

Status changes go through transition_status (admin) or the two narrow
client operations (approve, request_revisions). Each successful change
appends exactly one DeliverableActivity row; activity rows are never
updated or deleted.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.core.config import settings
from agency_portal.core.exceptions import InvalidTransition, NotFound, ValidationIncomplete
from agency_portal.core.logging import get_logger
from agency_portal.db.base import utcnow
from agency_portal.models.deliverable import (
    ChecklistItem,
    Deliverable,
    DeliverableActivity,
    DeliverableAsset,
    DeliverableComment,
    DeliverableStatus,
    DeliverableUpdate,
)
from agency_portal.models.tenant import Role
from agency_portal.schemas.deliverable import (
    AssetCreate,
    DeliverableCreate,
    DeliverableRead,
    DeliverableUpdateFields,
    UpdateCreate,
)
from agency_portal.services import deliverable_rules as rules
from agency_portal.services.access_service import author_role_for

logger = get_logger(__name__)


def project_deliverable(deliverable: Deliverable, client_view: bool) -> DeliverableRead:
    """Read-time projection. Client view drops nested items hidden from clients."""
    data = DeliverableRead.model_validate(deliverable)
    if client_view:
        data.assets = [a for a in data.assets if rules.is_client_visible(a.client_visible)]
        data.updates = [u for u in data.updates if rules.is_client_visible(u.client_visible)]
    return data


class DeliverableService:

    # ── Reads ────────────────────────────────────────────────────────────────

    @staticmethod
    async def _load(
        db: AsyncSession, tenant_id: str, deliverable_id: str, refresh: bool = False
    ) -> Deliverable:
        stmt = select(Deliverable).where(
            Deliverable.id == deliverable_id,
            Deliverable.tenant_id == tenant_id,
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await db.execute(stmt)
        deliverable = result.scalar_one_or_none()
        if deliverable is None:
            raise NotFound("Deliverable")
        return deliverable

    @staticmethod
    async def get_deliverable(
        db: AsyncSession,
        tenant_id: str,
        deliverable_id: str,
        client_view: bool = False,
    ) -> Deliverable:
        deliverable = await DeliverableService._load(db, tenant_id, deliverable_id)
        if client_view and (
            deliverable.archived
            or not rules.is_client_visible(deliverable.client_visible, deliverable.status)
        ):
            raise NotFound("Deliverable")
        return deliverable

    @staticmethod
    async def list_deliverables(
        db: AsyncSession,
        tenant_id: str,
        client_view: bool = False,
        status: Optional[DeliverableStatus] = None,
    ) -> list[Deliverable]:
        stmt = select(Deliverable).where(
            Deliverable.tenant_id == tenant_id,
            Deliverable.archived.is_(False),
        )
        if status is not None:
            stmt = stmt.where(Deliverable.status == status.value)
        if client_view:
            stmt = stmt.where(
                Deliverable.status != DeliverableStatus.draft.value,
                Deliverable.client_visible.is_not(False),
            )
        stmt = stmt.order_by(Deliverable.due_date.is_(None), Deliverable.due_date, Deliverable.created_at)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_activity(
        db: AsyncSession, tenant_id: str, deliverable_id: str
    ) -> list[DeliverableActivity]:
        await DeliverableService._load(db, tenant_id, deliverable_id)
        result = await db.execute(
            select(DeliverableActivity)
            .where(DeliverableActivity.deliverable_id == deliverable_id)
            .order_by(DeliverableActivity.created_at, DeliverableActivity.id)
        )
        return list(result.scalars().all())

    # ── Authoring ────────────────────────────────────────────────────────────

    @staticmethod
    async def create_deliverable(
        db: AsyncSession, tenant_id: str, data: DeliverableCreate, actor_user_id: str
    ) -> Deliverable:
        deliverable = Deliverable(
            tenant_id=tenant_id,
            title=data.title,
            type=data.type,
            description=data.description,
            due_date=data.due_date,
            assignee_user_id=data.assignee_user_id,
            client_visible=data.client_visible,
            required_proof_types=[p.value for p in data.required_proof_types],
            status=DeliverableStatus.draft.value,
            progress=0,
            created_by=actor_user_id,
        )
        db.add(deliverable)
        await db.flush()
        logger.info("Deliverable created", deliverable_id=deliverable.id, tenant_id=tenant_id)
        return await DeliverableService._load(db, tenant_id, deliverable.id, refresh=True)

    @staticmethod
    async def update_deliverable(
        db: AsyncSession, tenant_id: str, deliverable_id: str, data: DeliverableUpdateFields
    ) -> Deliverable:
        deliverable = await DeliverableService._load(db, tenant_id, deliverable_id)
        changes = data.model_dump(exclude_unset=True)
        if "title" in changes and changes["title"] is not None:
            changes["title"] = changes["title"].strip()
        if changes.get("required_proof_types") is not None:
            changes["required_proof_types"] = [p.value for p in data.required_proof_types]
        for field, value in changes.items():
            setattr(deliverable, field, value)
        await db.flush()
        return await DeliverableService._load(db, tenant_id, deliverable_id, refresh=True)

    @staticmethod
    async def archive_deliverable(
        db: AsyncSession, tenant_id: str, deliverable_id: str, actor_user_id: str
    ) -> Deliverable:
        deliverable = await DeliverableService._load(db, tenant_id, deliverable_id)
        if not deliverable.archived:
            deliverable.archived = True
            db.add(
                DeliverableActivity(
                    deliverable_id=deliverable.id,
                    actor_user_id=actor_user_id,
                    action="archived",
                    created_at=utcnow(),
                )
            )
            await db.flush()
            logger.info("Deliverable archived", deliverable_id=deliverable_id, tenant_id=tenant_id)
        return await DeliverableService._load(db, tenant_id, deliverable_id, refresh=True)

    # ── Checklist ────────────────────────────────────────────────────────────

    @staticmethod
    async def add_checklist_item(
        db: AsyncSession, tenant_id: str, deliverable_id: str, title: str
    ) -> Deliverable:
        deliverable = await DeliverableService._load(db, tenant_id, deliverable_id)
        position = max((i.position for i in deliverable.checklist_items), default=-1) + 1
        deliverable.checklist_items.append(ChecklistItem(title=title.strip(), position=position))
        deliverable.progress = rules.compute_progress(i.is_done for i in deliverable.checklist_items)
        await db.flush()
        return await DeliverableService._load(db, tenant_id, deliverable_id, refresh=True)

    @staticmethod
    async def toggle_checklist_item(
        db: AsyncSession, tenant_id: str, deliverable_id: str, item_id: str
    ) -> Deliverable:
        deliverable = await DeliverableService._load(db, tenant_id, deliverable_id)
        item = next((i for i in deliverable.checklist_items if i.id == item_id), None)
        if item is None:
            raise NotFound("Checklist item")
        item.is_done = not item.is_done
        deliverable.progress = rules.compute_progress(i.is_done for i in deliverable.checklist_items)
        await db.flush()
        return await DeliverableService._load(db, tenant_id, deliverable_id, refresh=True)

    # ── Assets, comments, updates ────────────────────────────────────────────

    @staticmethod
    async def add_asset(
        db: AsyncSession, tenant_id: str, deliverable_id: str, data: AssetCreate, actor_user_id: str
    ) -> Deliverable:
        deliverable = await DeliverableService._load(db, tenant_id, deliverable_id)
        deliverable.assets.append(
            DeliverableAsset(
                kind=data.kind,
                url=data.url,
                title=data.title,
                proof_type=data.proof_type.value if data.proof_type else None,
                is_required_proof=data.is_required_proof,
                client_visible=data.client_visible,
                created_by=actor_user_id,
            )
        )
        await db.flush()
        return await DeliverableService._load(db, tenant_id, deliverable_id, refresh=True)

    @staticmethod
    async def add_comment(
        db: AsyncSession,
        tenant_id: str,
        deliverable_id: str,
        body: str,
        author_user_id: str,
        author_effective_role: Role,
        client_view: bool = False,
    ) -> Deliverable:
        deliverable = await DeliverableService.get_deliverable(
            db, tenant_id, deliverable_id, client_view=client_view
        )
        deliverable.comments.append(
            DeliverableComment(
                author_user_id=author_user_id,
                author_role=author_role_for(author_effective_role),
                body=body.strip(),
                created_at=utcnow(),
            )
        )
        await db.flush()
        return await DeliverableService._load(db, tenant_id, deliverable_id, refresh=True)

    @staticmethod
    async def add_update(
        db: AsyncSession, tenant_id: str, deliverable_id: str, data: UpdateCreate, actor_user_id: str
    ) -> Deliverable:
        deliverable = await DeliverableService._load(db, tenant_id, deliverable_id)
        deliverable.updates.append(
            DeliverableUpdate(
                body=data.body.strip(),
                client_visible=data.client_visible,
                created_by=actor_user_id,
                created_at=utcnow(),
            )
        )
        await db.flush()
        return await DeliverableService._load(db, tenant_id, deliverable_id, refresh=True)

    # ── Lifecycle ────────────────────────────────────────────────────────────

    @staticmethod
    async def transition_status(
        db: AsyncSession,
        tenant_id: str,
        deliverable_id: str,
        target: DeliverableStatus,
        actor_user_id: str,
        reason: Optional[str] = None,
        override_reason: Optional[str] = None,
    ) -> Deliverable:
        """
        Admin/owner status change.

        Raises:
            InvalidTransition: the move is not in the transition table.
            ValidationIncomplete: entering complete (or in_review) with the
                predicate failing and no override reason.
        """
        deliverable = await DeliverableService._load(db, tenant_id, deliverable_id)
        DeliverableService._guard(deliverable, DeliverableStatus(target), override_reason)
        return await DeliverableService._apply(
            db, deliverable, DeliverableStatus(target), actor_user_id, override_reason or reason
        )

    @staticmethod
    def _guard(
        deliverable: Deliverable, target: DeliverableStatus, override_reason: Optional[str]
    ) -> None:
        current = DeliverableStatus(deliverable.status)
        if current == target:
            raise InvalidTransition(f"Deliverable is already {rules.STATUS_LABELS[current]}")
        if not rules.can_transition(current, target):
            raise InvalidTransition(rules.transition_error(current, target))

        override = (override_reason or "").strip()
        threshold = settings.DELIVERABLE_CHECKLIST_THRESHOLD
        if target == DeliverableStatus.complete and not override:
            missing = rules.completion_missing(deliverable, threshold)
            if missing:
                raise ValidationIncomplete(
                    "Cannot mark complete until required proof is attached "
                    f"and the checklist is at least {threshold}% done",
                    missing,
                )
        if target == DeliverableStatus.in_review and not override:
            missing = rules.review_missing(deliverable, threshold)
            if missing:
                raise ValidationIncomplete(
                    f"Progress must be at least {threshold}% with required proof "
                    "attached before sending to review",
                    missing,
                )

    @staticmethod
    async def _apply(
        db: AsyncSession,
        deliverable: Deliverable,
        target: DeliverableStatus,
        actor_user_id: str,
        reason: Optional[str],
    ) -> Deliverable:
        old_status = deliverable.status
        deliverable.status = target.value
        db.add(
            DeliverableActivity(
                deliverable_id=deliverable.id,
                actor_user_id=actor_user_id,
                action="status_changed",
                old_value=old_status,
                new_value=target.value,
                reason=reason,
                created_at=utcnow(),
            )
        )
        await db.flush()
        logger.info(
            "Deliverable status changed",
            deliverable_id=deliverable.id,
            tenant_id=deliverable.tenant_id,
            old_status=old_status,
            new_status=target.value,
        )
        return await DeliverableService._load(
            db, deliverable.tenant_id, deliverable.id, refresh=True
        )

    @staticmethod
    async def client_approve(
        db: AsyncSession, tenant_id: str, deliverable_id: str, actor_user_id: str
    ) -> Deliverable:
        deliverable = await DeliverableService.get_deliverable(
            db, tenant_id, deliverable_id, client_view=True
        )
        if deliverable.status != DeliverableStatus.in_review.value:
            raise InvalidTransition("Only deliverables in review can be approved")
        return await DeliverableService._apply(
            db, deliverable, DeliverableStatus.approved, actor_user_id, "Approved by client"
        )

    @staticmethod
    async def client_request_revisions(
        db: AsyncSession,
        tenant_id: str,
        deliverable_id: str,
        comment: str,
        actor_user_id: str,
        actor_role: Role = Role.member,
    ) -> Deliverable:
        comment = (comment or "").strip()
        if not comment:
            raise ValidationIncomplete("Describe what needs to change", ["comment"])
        deliverable = await DeliverableService.get_deliverable(
            db, tenant_id, deliverable_id, client_view=True
        )
        if deliverable.status != DeliverableStatus.in_review.value:
            raise InvalidTransition("Revisions can only be requested on deliverables in review")
        deliverable.comments.append(
            DeliverableComment(
                author_user_id=actor_user_id,
                author_role=author_role_for(actor_role),
                body=comment,
                created_at=utcnow(),
            )
        )
        return await DeliverableService._apply(
            db, deliverable, DeliverableStatus.revisions_requested, actor_user_id, comment
        )
