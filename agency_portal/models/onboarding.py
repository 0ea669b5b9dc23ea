"""
models/onboarding.py
--------------------
Onboarding flow graph, per-user progress and contract signatures.

A flow is a small graph of typed nodes (welcome, scope, terms, contract,
invoice, generic) ordered by order_index and linked by edges. Node config
is stored as JSON and validated into a typed variant wherever it is read
(see services/onboarding_rules.py).
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agency_portal.db.base import Base, TimestampMixin, generate_uuid


class FlowStatus(str, PyEnum):
    draft = "draft"
    published = "published"
    archived = "archived"


class NodeType(str, PyEnum):
    welcome = "welcome"
    scope = "scope"
    terms = "terms"
    contract = "contract"
    invoice = "invoice"
    generic = "generic"


class ProgressStatus(str, PyEnum):
    pending = "pending"
    completed = "completed"


class PaymentStatus(str, PyEnum):
    unpaid = "unpaid"
    paid = "paid"
    confirmed = "confirmed"


class OnboardingFlow(Base, TimestampMixin):
    __tablename__ = "onboarding_flows"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    tenant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=FlowStatus.draft.value
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    published_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    nodes: Mapped[list["OnboardingNode"]] = relationship(
        "OnboardingNode",
        back_populates="flow",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OnboardingNode.order_index",
    )
    edges: Mapped[list["OnboardingEdge"]] = relationship(
        "OnboardingEdge",
        back_populates="flow",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<OnboardingFlow id={self.id} status={self.status} v{self.version}>"


class OnboardingNode(Base, TimestampMixin):
    __tablename__ = "onboarding_nodes"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    flow_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("onboarding_flows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Invoice nodes only; written by the payment-confirmation interface
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.unpaid.value
    )

    flow: Mapped["OnboardingFlow"] = relationship("OnboardingFlow", back_populates="nodes")


class OnboardingEdge(Base, TimestampMixin):
    __tablename__ = "onboarding_edges"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    flow_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("onboarding_flows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    source_node_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("onboarding_nodes.id", ondelete="CASCADE"), nullable=False
    )
    target_node_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("onboarding_nodes.id", ondelete="CASCADE"), nullable=False
    )
    condition: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    flow: Mapped["OnboardingFlow"] = relationship("OnboardingFlow", back_populates="edges")


class OnboardingProgress(Base, TimestampMixin):
    __tablename__ = "onboarding_progress"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", "node_id", name="uq_progress_tenant_user_node"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    tenant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    node_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("onboarding_nodes.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProgressStatus.pending.value
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Acceptances, payment affirmation, signature id
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)


class ContractSignature(Base):
    """Immutable signing event. One per (tenant, user, node)."""

    __tablename__ = "contract_signatures"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", "node_id", name="uq_signature_tenant_user_node"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    tenant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    node_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("onboarding_nodes.id", ondelete="CASCADE"), nullable=False
    )
    signed_name: Mapped[str] = mapped_column(String(255), nullable=False)
    signature_image_url: Mapped[str] = mapped_column(Text, nullable=False)
    contract_sha256: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    terms_version: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    privacy_version: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    signed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
