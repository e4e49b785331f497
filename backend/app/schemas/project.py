"""Pydantic schemas for projects and milestones."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from app.models.project import MILESTONE_STATUSES, PROJECT_STATUSES


class MilestoneIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    status: str = "pending"
    deadline: date | None = None
    billable: bool = True
    amount: Decimal = Decimal("0")

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        if v not in MILESTONE_STATUSES:
            raise ValueError(f"status must be one of {', '.join(MILESTONE_STATUSES)}")
        return v


class MilestoneUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    status: str | None = None
    deadline: date | None = None
    billable: bool | None = None
    amount: Decimal | None = None


class MilestoneOut(BaseModel):
    id: str
    position: int
    name: str
    description: str | None
    status: str
    deadline: date | None
    completed_date: datetime | None
    billable: bool
    amount: float

    model_config = {"from_attributes": True}


class ProjectCreate(BaseModel):
    client_id: str
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    status: str = "planned"
    priority: str = "medium"
    billing_type: str = "fixed"
    start_date: date
    deadline: date
    budget: Decimal | None = None
    milestones: list[MilestoneIn] = []


class ProjectUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    priority: str | None = None
    start_date: date | None = None
    deadline: date | None = None
    billing_type: str | None = None
    budget: Decimal | None = None
    client_id: str | None = None
    milestones: list[MilestoneIn] | None = None


class ProjectStatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        if v not in PROJECT_STATUSES:
            raise ValueError(f"status must be one of {', '.join(PROJECT_STATUSES)}")
        return v


class ProgressUpdate(BaseModel):
    progress: int = Field(..., ge=0, le=100)


class ProjectHealthOut(BaseModel):
    progress: int
    milestone_progress: int
    is_delayed: bool
    days_left: int
    display_status: str

    model_config = {"from_attributes": True}


class ProjectOut(BaseModel):
    id: str
    project_code: str
    title: str
    client_id: str
    description: str | None
    status: str
    progress: int
    priority: str
    start_date: date
    deadline: date
    actual_end_date: datetime | None
    billing_type: str
    budget: float | None
    milestones: list[MilestoneOut]
    health: ProjectHealthOut | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
