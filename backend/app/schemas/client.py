"""Pydantic schemas for clients and their recomputed rollups."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from app.models.client import CLIENT_STATUSES


class ClientCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    company_name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., max_length=255)
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    status: str = "active"
    notes: str | None = None

    @field_validator("email")
    @classmethod
    def email_shape(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("Invalid email address")
        return v

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        if v not in CLIENT_STATUSES:
            raise ValueError(f"status must be one of {', '.join(CLIENT_STATUSES)}")
        return v


class ClientOut(BaseModel):
    id: str
    name: str
    company_name: str
    email: str
    phone: str | None
    address: str | None
    city: str | None
    state: str | None
    postal_code: str | None
    status: str
    notes: str | None
    total_projects: int
    active_projects: int
    total_billed: float
    total_paid: float
    total_outstanding: float
    stats_updated_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ClientStatsOut(BaseModel):
    total_projects: int
    active_projects: int
    completed_projects: int
    total_billed: float
    total_paid: float
    total_outstanding: float
    invoice_count: int

    model_config = {"from_attributes": True}
