"""
schemas/report.py
-----------------
Pydantic models for reports, report sections and roadmap items.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from agency_portal.models.report import ReportSectionType, ReportStatus
from agency_portal.models.roadmap import RoadmapTimeframe


def _strip_required(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("must not be blank")
    return v


class _ReportPeriod(BaseModel):
    period_start: Optional[date] = None
    period_end: Optional[date] = None

    @model_validator(mode="after")
    def check_period(self):
        if self.period_start and self.period_end and self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self


class ReportCreate(_ReportPeriod):
    title: str = Field(..., min_length=1, max_length=255, examples=["May performance report"])
    summary: Optional[str] = None
    status: ReportStatus = ReportStatus.draft
    client_visible: bool = True

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        return _strip_required(v)


class ReportUpdate(_ReportPeriod):
    """Partial update; setting status to published publishes the report."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    summary: Optional[str] = None
    status: Optional[ReportStatus] = None
    client_visible: Optional[bool] = None


class ReportSectionCreate(BaseModel):
    section_type: ReportSectionType = ReportSectionType.custom
    title: Optional[str] = Field(default=None, max_length=255)
    content: str = ""
    order_index: Optional[int] = Field(
        default=None, ge=0, description="Appended after the last section when omitted"
    )


class ReportSectionUpdate(BaseModel):
    title: Optional[str] = Field(default=None, max_length=255)
    content: Optional[str] = None
    order_index: Optional[int] = Field(default=None, ge=0)


class ReportSectionRead(BaseModel):
    id: str
    section_type: ReportSectionType
    title: Optional[str]
    content: str
    order_index: int

    model_config = {"from_attributes": True}


class ReportRead(BaseModel):
    id: str
    tenant_id: str
    title: str
    summary: Optional[str]
    period_start: Optional[date]
    period_end: Optional[date]
    status: ReportStatus
    client_visible: bool
    published_at: Optional[datetime]
    created_by: str
    created_at: datetime
    sections: list[ReportSectionRead] = []

    model_config = {"from_attributes": True}


class RoadmapItemCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255, examples=["Launch retargeting campaign"])
    description: Optional[str] = None
    timeframe: RoadmapTimeframe

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class RoadmapItemRead(BaseModel):
    id: str
    title: str
    description: Optional[str]
    timeframe: RoadmapTimeframe
    order_index: int

    model_config = {"from_attributes": True}
