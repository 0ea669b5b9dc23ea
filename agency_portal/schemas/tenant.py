"""
schemas/tenant.py
-----------------
Pydantic request/response models for tenants, workspaces and the
per-request context bundle.

Naming convention:
  XxxCreate  → inbound request body
  XxxRead    → outbound response body (never exposes internal fields)
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from agency_portal.models.tenant import Role, TenantKind


class TenantCreate(BaseModel):
    name: str = Field(
        ...,
        min_length=2,
        max_length=255,
        examples=["Acme Growth Agency"],
        description="Display name of the workspace",
    )

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class TenantRead(BaseModel):
    id: str
    external_id: Optional[str] = None
    name: str
    kind: TenantKind
    created_at: datetime

    model_config = {"from_attributes": True}


class WorkspaceRead(BaseModel):
    id: str
    external_id: Optional[str] = None
    name: str
    kind: TenantKind
    role: Role

    @property
    def ref(self) -> str:
        return self.external_id or self.id


class LandingRead(BaseModel):
    redirect_to: str
    workspaces: list[WorkspaceRead]


class OnboardingGateRead(BaseModel):
    active: bool
    state: str
    blocked: bool
    next_node_id: Optional[str] = None


class RequestContextRead(BaseModel):
    """The bundle every page consumes read-only."""
    tenant_id: str
    tenant_name: str
    tenant_kind: TenantKind
    effective_role: Role
    via_delegation: bool
    is_agency_mode: bool
    is_client_mode: bool
    onboarding_gate: OnboardingGateRead
