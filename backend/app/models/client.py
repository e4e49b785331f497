"""Client: the customer that commissions projects and receives invoices.

The five billing/project counters are denormalized rollups.  They are
only ever written by ``services.aggregates.recompute_client_stats`` and
are never incremented in place.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.utils.clock import utcnow

CLIENT_STATUSES = ("active", "inactive")


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(100))
    address: Mapped[str | None] = mapped_column(Text)
    city: Mapped[str | None] = mapped_column(String(100))
    state: Mapped[str | None] = mapped_column(String(100))
    postal_code: Mapped[str | None] = mapped_column(String(20))

    # active | inactive
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)
    notes: Mapped[str | None] = mapped_column(Text)

    # ── Derived rollups (recomputed, never hand-edited) ─────
    total_projects: Mapped[int] = mapped_column(Integer, default=0)
    active_projects: Mapped[int] = mapped_column(Integer, default=0)
    total_billed: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    total_paid: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    total_outstanding: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    stats_updated_at: Mapped[datetime | None] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
