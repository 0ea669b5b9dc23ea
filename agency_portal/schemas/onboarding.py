"""
schemas/onboarding.py
---------------------
Pydantic models for onboarding flows, nodes, edges and per-user progress.

Node `config` travels as a plain object on the wire; the service validates
it into the typed variant for the node's type (services/onboarding_rules.py).
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from agency_portal.models.onboarding import FlowStatus, NodeType, PaymentStatus, ProgressStatus


class FlowCreate(BaseModel):
    template: str = Field(default="empty", examples=["full", "simple", "empty"])
    name: Optional[str] = Field(default=None, max_length=255)


class NodeCreate(BaseModel):
    type: NodeType
    title: str = Field(default="", max_length=255)
    description: Optional[str] = None
    required: bool = True
    config: dict[str, Any] = Field(default_factory=dict)


class NodeUpdate(BaseModel):
    title: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    required: Optional[bool] = None
    config: Optional[dict[str, Any]] = None


class NodeReorder(BaseModel):
    node_ids: list[str] = Field(..., min_length=1)


class EdgeCreate(BaseModel):
    source_node_id: str
    target_node_id: str
    condition: Optional[dict[str, Any]] = None


class NodeRead(BaseModel):
    id: str
    flow_id: str
    type: NodeType
    title: str
    description: Optional[str] = None
    required: bool
    config: dict[str, Any]
    order_index: int
    payment_status: PaymentStatus
    setup_missing: list[str] = []

    model_config = {"from_attributes": True}


class EdgeRead(BaseModel):
    id: str
    source_node_id: str
    target_node_id: str
    condition: Optional[dict[str, Any]] = None

    model_config = {"from_attributes": True}


class FlowRead(BaseModel):
    id: str
    tenant_id: str
    name: str
    status: FlowStatus
    version: int
    published_at: Optional[datetime] = None
    nodes: list[NodeRead] = []
    edges: list[EdgeRead] = []

    model_config = {"from_attributes": True}


class TemplateRead(BaseModel):
    name: str
    label: str
    node_types: list[NodeType]


class TermsAcceptance(BaseModel):
    accept_terms: bool = False
    accept_privacy: bool = False


class SignatureCreate(BaseModel):
    signed_name: str = Field(..., min_length=1, max_length=255)
    signature_image_url: str = Field(..., min_length=1)


class SignatureRead(BaseModel):
    id: str
    node_id: str
    signed_name: str
    signature_image_url: str
    contract_sha256: Optional[str] = None
    terms_version: Optional[str] = None
    privacy_version: Optional[str] = None
    signed_at: datetime

    model_config = {"from_attributes": True}


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus


class ProgressRead(BaseModel):
    node_id: str
    status: ProgressStatus
    completed_at: Optional[datetime] = None
    details: dict[str, Any] = {}

    model_config = {"from_attributes": True}


class UserOnboardingRead(BaseModel):
    state: str
    next_node_id: Optional[str] = None
    flow: Optional[FlowRead] = None
    progress: list[ProgressRead] = []


class MemberStatusRead(BaseModel):
    user_id: str
    state: str
    next_node_id: Optional[str] = None
    nodes: list[ProgressRead] = []


class AdminStatusRead(BaseModel):
    flow_id: Optional[str] = None
    members: list[MemberStatusRead] = []
