"""Invoice state machine.

    draft → sent → paid | overdue;  overdue → paid
    paid is terminal (only the consistency audit touches it afterwards)

Every operation here validates first, mutates second, and finishes with
``settle_invoice`` so ``balance_due`` and ``status`` can never drift from
``total`` and ``paid_amount``.  Each mutation writes an activity-log row
and publishes ``InvoiceChanged``; the event subscribers keep client
rollups and the dashboard cache current.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.middleware.exceptions import (
    InvalidTransitionError,
    InvoiceValidationError,
    ResourceNotFoundError,
)
from app.models.client import Client
from app.models.invoice import (
    INVOICE_STATUSES,
    PAYMENT_METHODS,
    Invoice,
    InvoiceLineItem,
)
from app.models.project import Project
from app.services.calculator import PricedInvoice, price_invoice
from app.services.events import InvoiceChanged, publish
from app.services.ledger import (  # noqa: F401  (settle_invoice re-exported)
    MANUAL_PAYMENT_METHOD,
    append_payment,
    record_payment,
    reference_token,
    settle_invoice,
)
from app.utils.activity import log_activity
from app.utils.clock import utc_today, utcnow
from app.utils.money import ZERO, to_money
from app.utils.numbering import generate_invoice_number

logger = logging.getLogger(__name__)


def _validate_status(status: str) -> str:
    if status not in INVOICE_STATUSES:
        raise InvoiceValidationError(
            f"Invalid status value '{status}'",
            details={"allowed": list(INVOICE_STATUSES)},
        )
    return status


def _line_item_rows(priced: PricedInvoice) -> list[InvoiceLineItem]:
    return [
        InvoiceLineItem(
            position=i,
            description=line.description,
            quantity=line.quantity,
            rate=line.rate,
            amount=line.amount,
        )
        for i, line in enumerate(priced.line_items)
    ]


def _apply_pricing(invoice: Invoice, priced: PricedInvoice) -> None:
    totals = priced.totals
    invoice.subtotal = totals.subtotal
    invoice.discount_value = priced.discount_value
    invoice.discount_type = priced.discount_type
    invoice.discount_amount = totals.discount_amount
    invoice.tax_rate = priced.tax_rate
    invoice.tax_amount = totals.tax_amount
    invoice.total = totals.total


def _ensure_not_paid(invoice: Invoice, action: str) -> None:
    if invoice.status == "paid":
        raise InvalidTransitionError(
            f"Cannot {action} invoice {invoice.invoice_number}: it is already paid"
        )


async def _changed(
    db: AsyncSession,
    invoice: Invoice,
    action: str,
    summary: str,
    actor_id: str | None = None,
    details: dict | None = None,
) -> Invoice:
    await log_activity(
        db, actor_id,
        action=action,
        entity_type="invoice",
        entity_id=invoice.id,
        entity_code=invoice.invoice_number,
        summary=summary,
        details=details,
    )
    await db.flush()
    await publish(db, InvoiceChanged(invoice.id, invoice.client_id, action))
    return invoice


# ── Reads ────────────────────────────────────────────────────


async def get_invoice(
    db: AsyncSession, invoice_id: str, include_inactive: bool = False
) -> Invoice:
    stmt = select(Invoice).where(Invoice.id == invoice_id)
    if not include_inactive:
        stmt = stmt.where(Invoice.is_active == True)  # noqa: E712
    invoice = (await db.execute(stmt)).scalar_one_or_none()
    if not invoice:
        raise ResourceNotFoundError("Invoice", invoice_id)
    return invoice


async def list_invoices(
    db: AsyncSession,
    *,
    status: str | None = None,
    client_id: str | None = None,
    project_id: str | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Invoice], int]:
    """Active invoices, newest first, with the unpaginated total."""
    filters = [Invoice.is_active == True]  # noqa: E712
    if status and status != "all":
        filters.append(Invoice.status == _validate_status(status))
    if client_id:
        filters.append(Invoice.client_id == client_id)
    if project_id:
        filters.append(Invoice.project_id == project_id)
    if search:
        pattern = f"%{search}%"
        filters.append(or_(
            Invoice.invoice_number.ilike(pattern),
            Invoice.project_name.ilike(pattern),
            Invoice.client_name.ilike(pattern),
            Invoice.company_name.ilike(pattern),
        ))

    total = (await db.execute(
        select(func.count(Invoice.id)).where(*filters)
    )).scalar() or 0
    result = await db.execute(
        select(Invoice)
        .where(*filters)
        .order_by(Invoice.created_at.desc(), Invoice.invoice_number.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


# ── Create ───────────────────────────────────────────────────


async def create_invoice(
    db: AsyncSession,
    *,
    project_id: str,
    client_id: str,
    line_items,
    discount=0,
    discount_type: str = "amount",
    tax_rate=None,
    due_date: date | None = None,
    status: str = "draft",
    client_name: str | None = None,
    company_name: str | None = None,
    billing_address: str | None = None,
    contact_email: str | None = None,
    payment_method: str | None = None,
    payment_terms: str | None = None,
    bank_details: str | None = None,
    notes: str | None = None,
    actor_id: str | None = None,
    today: date | None = None,
) -> Invoice:
    """Price and persist a new invoice.

    An invoice created as ``paid`` gets one synthetic ledger row for its
    full total so that ``paid_amount`` is still funded by the ledger; a
    zero total cannot start out paid.
    """
    today = today or utc_today()
    status = _validate_status(status or "draft")
    payment_method = payment_method or settings.default_payment_method
    if payment_method not in PAYMENT_METHODS:
        raise InvoiceValidationError(f"Invalid payment method '{payment_method}'")
    if tax_rate is None:
        tax_rate = settings.default_tax_rate

    priced = price_invoice(line_items, discount, discount_type, tax_rate)
    if status == "paid" and priced.totals.total <= ZERO:
        raise InvoiceValidationError("An invoice with a zero total cannot be created as paid")

    project = await db.get(Project, project_id)
    if not project:
        raise ResourceNotFoundError("Project", project_id)
    client = await db.get(Client, client_id)
    if not client:
        raise ResourceNotFoundError("Client", client_id)
    if project.client_id != client.id:
        raise InvoiceValidationError(
            f"Project {project.project_code} does not belong to client {client.name}"
        )

    invoice = Invoice(
        invoice_number=await generate_invoice_number(db, today),
        client_id=client.id,
        project_id=project.id,
        client_name=client_name or client.name,
        company_name=company_name or client.company_name,
        billing_address=billing_address or client.address,
        contact_email=contact_email or client.email,
        project_name=project.title,
        project_code=project.project_code,
        billing_type=project.billing_type or "fixed",
        status=status,
        invoice_date=utcnow(),
        due_date=due_date or today + timedelta(days=settings.default_payment_terms_days),
        payment_method=payment_method,
        payment_terms=payment_terms or settings.default_payment_terms,
        bank_details=bank_details or "Account details will be provided separately",
        notes=notes,
        created_by=actor_id,
        is_active=True,
        paid_amount=ZERO,
        line_items=_line_item_rows(priced),
        payments=[],
    )
    _apply_pricing(invoice, priced)

    if status == "paid":
        append_payment(
            invoice, invoice.total, payment_method,
            reference=reference_token("INITIAL-PAY"),
            notes="Initial payment recorded",
        )
    settle_invoice(invoice, today)

    db.add(invoice)
    await db.flush()

    logger.info(
        "Invoice %s created for client %s: total=%s status=%s",
        invoice.invoice_number, client.id, invoice.total, invoice.status,
    )
    return await _changed(
        db, invoice, "created",
        f"Created invoice {invoice.invoice_number} for {invoice.total}",
        actor_id,
        {"total": str(invoice.total), "status": invoice.status},
    )


# ── Transitions ──────────────────────────────────────────────


async def send_invoice(
    db: AsyncSession, invoice_id: str, *, actor_id: str | None = None, today: date | None = None
) -> Invoice:
    invoice = await get_invoice(db, invoice_id)
    _ensure_not_paid(invoice, "send")

    invoice.status = "sent"
    invoice.invoice_date = utcnow()
    settle_invoice(invoice, today)
    return await _changed(
        db, invoice, "sent", f"Sent invoice {invoice.invoice_number}", actor_id,
    )


async def mark_overdue(
    db: AsyncSession, invoice_id: str, *, actor_id: str | None = None, today: date | None = None
) -> Invoice:
    invoice = await get_invoice(db, invoice_id)
    _ensure_not_paid(invoice, "mark overdue")
    if to_money(invoice.balance_due) <= ZERO:
        raise InvalidTransitionError(
            f"Cannot mark invoice {invoice.invoice_number} overdue: nothing is owed"
        )

    settle_invoice(invoice, today, forced_status="overdue")
    return await _changed(
        db, invoice, "marked_overdue",
        f"Marked invoice {invoice.invoice_number} overdue", actor_id,
    )


async def set_invoice_status(
    db: AsyncSession,
    invoice_id: str,
    status: str,
    *,
    actor_id: str | None = None,
    today: date | None = None,
) -> Invoice:
    """Operator status override.

    Moving to ``paid`` first records the shortfall as a "Manual Payment"
    ledger row; a zero-total invoice can never be paid.  The requested status wins over auto-derivation for this
    write; the balance clamp still applies.
    """
    status = _validate_status(status)
    invoice = await get_invoice(db, invoice_id)
    previous = invoice.status
    if previous == "paid" and status != "paid":
        raise InvalidTransitionError(
            f"Cannot move invoice {invoice.invoice_number} from paid to {status}"
        )
    if status == "paid" and to_money(invoice.total) <= ZERO:
        raise InvalidTransitionError(
            f"Cannot mark invoice {invoice.invoice_number} paid: its total is 0"
        )

    shortfall = to_money(invoice.total) - to_money(invoice.paid_amount)
    if status == "paid" and shortfall > ZERO:
        append_payment(
            invoice, shortfall, MANUAL_PAYMENT_METHOD,
            reference=reference_token("MANUAL-PAY"),
            notes="Payment recorded when status was set to paid",
        )

    settle_invoice(invoice, today, forced_status=status)
    return await _changed(
        db, invoice, "status_changed",
        f"Status of {invoice.invoice_number} changed from {previous} to {status}",
        actor_id,
        {"from": previous, "to": status},
    )


async def update_invoice(
    db: AsyncSession,
    invoice_id: str,
    *,
    line_items=None,
    discount=None,
    discount_type: str | None = None,
    tax_rate=None,
    due_date: date | None = None,
    notes: str | None = None,
    payment_terms: str | None = None,
    actor_id: str | None = None,
    today: date | None = None,
) -> Invoice:
    """Edit an unpaid invoice; any pricing input reprices it from scratch."""
    invoice = await get_invoice(db, invoice_id)
    _ensure_not_paid(invoice, "edit")

    reprice = any(v is not None for v in (line_items, discount, discount_type, tax_rate))
    priced = None
    if reprice:
        priced = price_invoice(
            line_items if line_items is not None else invoice.line_items,
            discount if discount is not None else invoice.discount_value,
            discount_type or invoice.discount_type,
            tax_rate if tax_rate is not None else invoice.tax_rate,
        )
        if priced.totals.total < to_money(invoice.paid_amount):
            raise InvoiceValidationError(
                f"New total {priced.totals.total} is below the "
                f"{invoice.paid_amount} already paid"
            )

    if priced is not None:
        if line_items is not None:
            invoice.line_items.clear()
            await db.flush()
            invoice.line_items.extend(_line_item_rows(priced))
        _apply_pricing(invoice, priced)
    if due_date is not None:
        invoice.due_date = due_date
    if notes is not None:
        invoice.notes = notes
    if payment_terms is not None:
        invoice.payment_terms = payment_terms

    settle_invoice(invoice, today)
    return await _changed(
        db, invoice, "repriced" if reprice else "updated",
        f"Updated invoice {invoice.invoice_number}", actor_id,
        {"total": str(invoice.total), "balance_due": str(invoice.balance_due)},
    )


async def delete_invoice(
    db: AsyncSession, invoice_id: str, *, actor_id: str | None = None
) -> None:
    """Soft delete: excluded from every later scan, kept for its number."""
    invoice = await get_invoice(db, invoice_id)
    invoice.is_active = False
    await _changed(
        db, invoice, "deleted", f"Deleted invoice {invoice.invoice_number}", actor_id,
    )
