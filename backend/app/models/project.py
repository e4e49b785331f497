"""Project and its milestones.

Projects belong to exactly one client.  Progress may be driven by the
milestone completion ratio; "delayed" is never stored, it is derived at
read time (in-progress and past the deadline).

Lifecycle:  planned → in-progress → completed | on-hold | cancelled
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.utils.clock import utcnow

PROJECT_STATUSES = ("planned", "in-progress", "completed", "on-hold", "cancelled")
ACTIVE_PROJECT_STATUSES = ("planned", "in-progress")
MILESTONE_STATUSES = ("pending", "in-progress", "completed", "delayed")
BILLING_TYPES = ("fixed", "hourly", "monthly", "milestone")


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    project_code: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    client_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clients.id"), nullable=False, index=True
    )
    description: Mapped[str | None] = mapped_column(Text)

    # ── Status / progress ────────────────────────────────────
    status: Mapped[str] = mapped_column(String(30), default="planned", index=True)
    progress: Mapped[int] = mapped_column(Integer, default=0)
    priority: Mapped[str] = mapped_column(String(20), default="medium")

    # ── Schedule ─────────────────────────────────────────────
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    deadline: Mapped[date] = mapped_column(Date, nullable=False)
    actual_end_date: Mapped[datetime | None] = mapped_column(DateTime)

    # ── Commercial ───────────────────────────────────────────
    billing_type: Mapped[str] = mapped_column(String(20), default="fixed")
    budget: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    milestones: Mapped[list["Milestone"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Milestone.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}


class Milestone(Base):
    __tablename__ = "project_milestones"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    # pending | in-progress | completed | delayed
    status: Mapped[str] = mapped_column(String(20), default="pending")
    deadline: Mapped[date | None] = mapped_column(Date)
    completed_date: Mapped[datetime | None] = mapped_column(DateTime)
    billable: Mapped[bool] = mapped_column(Boolean, default=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    project: Mapped[Project] = relationship(back_populates="milestones")
