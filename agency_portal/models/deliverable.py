"""
models/deliverable.py
---------------------
Deliverable and its nested records.

Children (checklist items, assets, comments, updates, activity) load with
selectin so a fetched Deliverable is fully usable inside async code without
implicit lazy loads.

DeliverableActivity is the audit trail: rows are only ever inserted.
"""

from datetime import date, datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agency_portal.db.base import Base, TimestampMixin, generate_uuid


class DeliverableStatus(str, PyEnum):
    draft = "draft"
    planned = "planned"
    in_progress = "in_progress"
    in_review = "in_review"
    approved = "approved"
    revisions_requested = "revisions_requested"
    complete = "complete"
    blocked = "blocked"


class ProofType(str, PyEnum):
    url = "url"
    file = "file"
    screenshot = "screenshot"
    loom = "loom"
    gdrive = "gdrive"


class Deliverable(Base, TimestampMixin):
    __tablename__ = "deliverables"

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
    type: Mapped[str] = mapped_column(String(64), nullable=False, default="Other")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=DeliverableStatus.draft.value
    )
    assignee_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    # NULL counts as visible
    client_visible: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    required_proof_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)

    checklist_items: Mapped[list["ChecklistItem"]] = relationship(
        "ChecklistItem",
        back_populates="deliverable",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ChecklistItem.position",
    )
    assets: Mapped[list["DeliverableAsset"]] = relationship(
        "DeliverableAsset",
        back_populates="deliverable",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    comments: Mapped[list["DeliverableComment"]] = relationship(
        "DeliverableComment",
        back_populates="deliverable",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DeliverableComment.created_at",
    )
    updates: Mapped[list["DeliverableUpdate"]] = relationship(
        "DeliverableUpdate",
        back_populates="deliverable",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DeliverableUpdate.created_at",
    )

    def __repr__(self) -> str:
        return f"<Deliverable id={self.id} status={self.status}>"


class ChecklistItem(Base, TimestampMixin):
    __tablename__ = "deliverable_checklist_items"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    deliverable_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("deliverables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    is_done: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    deliverable: Mapped["Deliverable"] = relationship(
        "Deliverable", back_populates="checklist_items"
    )


class DeliverableAsset(Base, TimestampMixin):
    """A proof item or any other attachment."""

    __tablename__ = "deliverable_assets"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    deliverable_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("deliverables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind: Mapped[str] = mapped_column(String(32), nullable=False, default="link")
    url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    proof_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    is_required_proof: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    client_visible: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)

    deliverable: Mapped["Deliverable"] = relationship(
        "Deliverable", back_populates="assets"
    )


class DeliverableComment(Base, TimestampMixin):
    __tablename__ = "deliverable_comments"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    deliverable_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("deliverables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    author_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    author_role: Mapped[str] = mapped_column(String(16), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)

    deliverable: Mapped["Deliverable"] = relationship(
        "Deliverable", back_populates="comments"
    )


class DeliverableUpdate(Base, TimestampMixin):
    __tablename__ = "deliverable_updates"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    deliverable_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("deliverables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    client_visible: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)

    deliverable: Mapped["Deliverable"] = relationship(
        "Deliverable", back_populates="updates"
    )


class DeliverableActivity(Base):
    """Append-only status audit trail. No updated_at: rows never change."""

    __tablename__ = "deliverable_activity"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    deliverable_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("deliverables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    actor_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    old_value: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    new_value: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
