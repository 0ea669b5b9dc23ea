"""
schemas/deliverable.py
----------------------
Pydantic models for deliverables and their nested records.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from agency_portal.models.deliverable import DeliverableStatus, ProofType


class DeliverableCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255, examples=["Landing page redesign"])
    type: str = Field(default="Other", max_length=64)
    description: Optional[str] = None
    due_date: Optional[date] = None
    assignee_user_id: Optional[str] = None
    client_visible: Optional[bool] = True
    required_proof_types: list[ProofType] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v


class DeliverableUpdateFields(BaseModel):
    """Partial update; status is changed only through the transition endpoint."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[str] = Field(default=None, max_length=64)
    description: Optional[str] = None
    due_date: Optional[date] = None
    assignee_user_id: Optional[str] = None
    client_visible: Optional[bool] = None
    required_proof_types: Optional[list[ProofType]] = None


class StatusTransitionRequest(BaseModel):
    status: DeliverableStatus
    reason: Optional[str] = Field(default=None, max_length=2000)
    override_reason: Optional[str] = Field(
        default=None,
        max_length=2000,
        description="Bypasses the completion/review predicate when set",
    )


class RevisionRequest(BaseModel):
    comment: str = Field(..., max_length=4000)


class ChecklistItemCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)


class ChecklistItemRead(BaseModel):
    id: str
    title: str
    is_done: bool
    position: int

    model_config = {"from_attributes": True}


class AssetCreate(BaseModel):
    kind: str = Field(default="link", max_length=32)
    url: str = Field(..., min_length=1)
    title: Optional[str] = Field(default=None, max_length=255)
    proof_type: Optional[ProofType] = None
    is_required_proof: bool = False
    client_visible: Optional[bool] = True


class AssetRead(BaseModel):
    id: str
    kind: str
    url: str
    title: Optional[str] = None
    proof_type: Optional[str] = None
    is_required_proof: bool
    client_visible: Optional[bool] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CommentCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=4000)


class CommentRead(BaseModel):
    id: str
    author_user_id: str
    author_role: str
    body: str
    created_at: datetime

    model_config = {"from_attributes": True}


class UpdateCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=8000)
    client_visible: Optional[bool] = True


class UpdateRead(BaseModel):
    id: str
    body: str
    client_visible: Optional[bool] = None
    created_by: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ActivityRead(BaseModel):
    id: str
    actor_user_id: str
    action: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class DeliverableRead(BaseModel):
    id: str
    tenant_id: str
    title: str
    type: str
    description: Optional[str] = None
    due_date: Optional[date] = None
    status: DeliverableStatus
    assignee_user_id: Optional[str] = None
    client_visible: Optional[bool] = None
    progress: int
    archived: bool
    required_proof_types: list[str]
    checklist_items: list[ChecklistItemRead] = []
    assets: list[AssetRead] = []
    comments: list[CommentRead] = []
    updates: list[UpdateRead] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
