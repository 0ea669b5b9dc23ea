"""
schemas/portal.py
-----------------
Portal configuration, metrics and the dashboard bundle.

dashboard_layout is accepted in two shapes and stored normalised:
  list form:     {"sections": ["kpis", "updates"], "kpis": ["leads"]}
  boolean map:   {"sections": {"kpis": true, ...}, "kpis": {"leads": true, ...}}
Unknown section or KPI keys are rejected.
"""

from datetime import date
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

from agency_portal.schemas.deliverable import DeliverableRead
from agency_portal.schemas.message import MessageRead
from agency_portal.schemas.report import ReportRead, RoadmapItemRead
from agency_portal.schemas.tenant import RequestContextRead, TenantRead

SECTION_KEYS = ("kpis", "deliverables", "roadmap", "reports", "updates")
KPI_KEYS = ("leads", "spend", "cpl", "roas", "work_completed")

DEFAULT_SECTIONS = ("kpis", "deliverables", "updates")
DEFAULT_KPIS = KPI_KEYS


def _normalise(value, allowed: tuple[str, ...], what: str) -> list[str]:
    if isinstance(value, dict):
        keys = [k for k, enabled in value.items() if enabled]
        unknown = [k for k in value if k not in allowed]
    else:
        keys = list(value)
        unknown = [k for k in keys if k not in allowed]
    if unknown:
        raise ValueError(f"unknown {what} keys: {', '.join(sorted(unknown))}")
    # Canonical order, no duplicates
    return [k for k in allowed if k in keys]


class DashboardLayout(BaseModel):
    sections: list[str] = Field(default_factory=lambda: list(DEFAULT_SECTIONS))
    kpis: list[str] = Field(default_factory=lambda: list(DEFAULT_KPIS))

    @field_validator("sections", mode="before")
    @classmethod
    def check_sections(cls, v: Union[list, dict]) -> list[str]:
        return _normalise(v, SECTION_KEYS, "section")

    @field_validator("kpis", mode="before")
    @classmethod
    def check_kpis(cls, v: Union[list, dict]) -> list[str]:
        return _normalise(v, KPI_KEYS, "kpi")

    def flags(self) -> dict[str, bool]:
        """Derived booleans: show_<section> and kpi_<key>."""
        out = {f"show_{key}": key in self.sections for key in SECTION_KEYS}
        out.update({f"kpi_{key}": key in self.kpis for key in KPI_KEYS})
        return out


class PortalConfigUpdate(BaseModel):
    onboarding_enabled: Optional[bool] = None
    dashboard_layout: Optional[DashboardLayout] = None


class PortalConfigRead(BaseModel):
    tenant_id: str
    onboarding_enabled: bool
    dashboard_layout: DashboardLayout
    flags: dict[str, bool]


class MetricRead(BaseModel):
    period_start: date
    period_end: date
    leads: Optional[int] = None
    spend: Optional[float] = None
    cpl: Optional[float] = None
    roas: Optional[float] = None
    work_completed: Optional[int] = None

    model_config = {"from_attributes": True}


class DashboardRead(BaseModel):
    context: RequestContextRead
    flags: dict[str, bool]
    deliverables: list[DeliverableRead] = []
    clients: list[TenantRead] = []
    metrics: Optional[MetricRead] = None
    recent_messages: list[MessageRead] = []
    unread_messages: int = 0
    roadmap: list[RoadmapItemRead] = []
    reports: list[ReportRead] = []
