"""Invoice, its line items, and its payment ledger.

An invoice belongs to exactly one client and one project; the client and
project display fields are snapshotted at creation so historical
invoices render unchanged when those records are later edited.

The ``invoice_payments`` rows are the ledger: append-only, and the only
thing that funds ``paid_amount``.  All monetary fields are written by
``services.invoices`` / ``services.ledger`` and nowhere else.

Lifecycle:  draft → sent → paid | overdue;  overdue → paid
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean, CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, Numeric,
    String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.utils.clock import utcnow

INVOICE_STATUSES = ("draft", "sent", "paid", "overdue")
DISCOUNT_TYPES = ("amount", "percentage")
PAYMENT_METHODS = (
    "Bank Transfer", "UPI", "Credit Card", "Cash", "Cheque", "Stripe", "PayPal",
    "Manual Payment",
)
PAYMENT_STATUSES = ("completed", "pending", "failed")


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    invoice_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )

    # ── References ───────────────────────────────────────────
    client_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clients.id"), nullable=False
    )
    # Nulled when a project with only soft-deleted invoices is removed;
    # project_name / project_code keep the invoice renderable.
    project_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="SET NULL"), index=True
    )

    # ── Snapshot (copied at creation) ────────────────────────
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    company_name: Mapped[str | None] = mapped_column(String(255))
    billing_address: Mapped[str | None] = mapped_column(Text)
    contact_email: Mapped[str | None] = mapped_column(String(255))
    project_name: Mapped[str] = mapped_column(String(255), nullable=False)
    project_code: Mapped[str | None] = mapped_column(String(50))
    billing_type: Mapped[str] = mapped_column(String(20), default="fixed")

    # ── Amounts ──────────────────────────────────────────────
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    # discount_value is what the operator typed (flat or %);
    # discount_amount is the resolved flat amount.
    discount_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    discount_type: Mapped[str] = mapped_column(String(20), default="amount")
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("18"))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    balance_due: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    # ── Status / dates ───────────────────────────────────────
    # draft | sent | paid | overdue
    status: Mapped[str] = mapped_column(String(20), default="draft")
    invoice_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # ── Payment terms ────────────────────────────────────────
    payment_method: Mapped[str] = mapped_column(String(30), default="Bank Transfer")
    payment_terms: Mapped[str | None] = mapped_column(String(255))
    bank_details: Mapped[str | None] = mapped_column(Text)

    # ── Metadata ─────────────────────────────────────────────
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(36))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    # ── Relationships ────────────────────────────────────────
    line_items: Mapped[list["InvoiceLineItem"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.position",
        lazy="selectin",
    )
    payments: Mapped[list["InvoicePayment"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoicePayment.position",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_invoices_client_active", "client_id", "is_active"),
        Index("ix_invoices_status_due", "status", "due_date"),
    )
    __mapper_args__ = {"version_id_col": version}

    def days_until_due(self, today: date) -> int:
        return (self.due_date - today).days


class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_items"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    invoice_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="line_items")


class InvoicePayment(Base):
    """One ledger entry.  Rows are appended, never updated or deleted."""

    __tablename__ = "invoice_payments"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    invoice_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    reference: Mapped[str] = mapped_column(String(100), nullable=False)
    # completed | pending | failed
    status: Mapped[str] = mapped_column(String(20), default="completed")
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    invoice: Mapped[Invoice] = relationship(back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_invoice_payments_amount_positive"),
    )
