"""Payment ledger and the invoice settlement rule.

This module owns the coupling between ``invoice_payments``, the
``paid_amount`` / ``balance_due`` fields and the derived ``status``:

  - ``append_payment`` is the only code that adds ledger rows and the
    only code that raises ``paid_amount`` (the auditor's repair path
    aside);
  - ``settle_invoice`` is the only code that writes ``balance_due`` and
    auto-derives ``status``.  Every invoice mutation ends with it.

``record_payment`` is the operator-facing entry point.
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.middleware.exceptions import (
    InvoiceValidationError,
    PaymentExceedsBalanceError,
    ResourceNotFoundError,
)
from app.models.invoice import Invoice, InvoicePayment, PAYMENT_METHODS
from app.services.events import InvoiceChanged, publish
from app.utils.activity import log_activity
from app.utils.clock import utc_today, utcnow
from app.utils.money import ZERO, clamp_non_negative, to_money

logger = logging.getLogger(__name__)

MANUAL_PAYMENT_METHOD = "Manual Payment"


def reference_token(prefix: str = "PAY") -> str:
    """Timestamp-based reference, e.g. ``PAY-1760745600123``."""
    return f"{prefix}-{int(time.time() * 1000)}"


def ledger_total(invoice: Invoice) -> Decimal:
    """Sum of completed ledger rows."""
    return to_money(sum(
        (p.amount for p in invoice.payments if p.status == "completed"),
        ZERO,
    ))


def append_payment(
    invoice: Invoice,
    amount: Decimal,
    method: str,
    reference: str | None = None,
    notes: str | None = None,
    payment_date: datetime | None = None,
) -> InvoicePayment:
    """Append one completed ledger row and fund ``paid_amount`` with it.

    Callers validate the amount first; ``settle_invoice`` must run after.
    """
    amount = to_money(amount)
    entry = InvoicePayment(
        position=len(invoice.payments),
        payment_date=payment_date or utcnow(),
        amount=amount,
        method=method,
        reference=reference or reference_token(),
        status="completed",
        notes=notes,
    )
    invoice.payments.append(entry)
    invoice.paid_amount = to_money(invoice.paid_amount) + amount
    return entry


def settle_invoice(
    invoice: Invoice,
    today: date | None = None,
    forced_status: str | None = None,
) -> Invoice:
    """Clamp ``balance_due`` and re-derive ``status``.

    ``balance_due = max(0, total - paid_amount)``.  Unless the caller
    forces a status for this write:
      - a zero balance on a non-zero total means ``paid``;
      - ``sent`` past its due date with money owing becomes ``overdue``.
    """
    today = today or utc_today()
    total = to_money(invoice.total)
    invoice.balance_due = clamp_non_negative(total - to_money(invoice.paid_amount))

    if forced_status is not None:
        invoice.status = forced_status
        return invoice

    if invoice.balance_due == ZERO and total > ZERO:
        invoice.status = "paid"
    elif (
        invoice.status == "sent"
        and invoice.due_date is not None
        and invoice.due_date < today
        and invoice.balance_due > ZERO
    ):
        invoice.status = "overdue"
    return invoice


async def _get_active_invoice(db: AsyncSession, invoice_id: str) -> Invoice:
    result = await db.execute(
        select(Invoice).where(Invoice.id == invoice_id, Invoice.is_active == True)  # noqa: E712
    )
    invoice = result.scalar_one_or_none()
    if not invoice:
        raise ResourceNotFoundError("Invoice", invoice_id)
    return invoice


async def record_payment(
    db: AsyncSession,
    invoice_id: str,
    amount,
    method: str = "Bank Transfer",
    reference: str | None = None,
    notes: str | None = None,
    date: datetime | None = None,
    *,
    actor_id: str | None = None,
    today=None,
) -> Invoice:
    """Record a payment against an active invoice.

    Every check runs before the invoice is touched, so a rejected
    payment leaves it exactly as it was.
    """
    invoice = await _get_active_invoice(db, invoice_id)

    try:
        amount = to_money(amount)
    except ValueError as exc:
        raise InvoiceValidationError("Payment amount must be a number") from exc
    if amount <= ZERO:
        raise InvoiceValidationError("Payment amount must be greater than 0")
    if method not in PAYMENT_METHODS:
        raise InvoiceValidationError(
            f"Invalid payment method '{method}'",
            details={"allowed": list(PAYMENT_METHODS)},
        )

    balance_due = to_money(invoice.balance_due)
    if balance_due <= ZERO:
        raise InvoiceValidationError("Invoice is already fully paid")
    if amount > balance_due:
        raise PaymentExceedsBalanceError(amount, balance_due)

    entry = append_payment(invoice, amount, method, reference, notes, date)
    settle_invoice(invoice, today)

    await log_activity(
        db, actor_id,
        action="payment_recorded",
        entity_type="invoice",
        entity_id=invoice.id,
        entity_code=invoice.invoice_number,
        summary=f"Recorded {amount} via {method}",
        details={
            "amount": str(amount),
            "reference": entry.reference,
            "paid_amount": str(invoice.paid_amount),
            "balance_due": str(invoice.balance_due),
            "status": invoice.status,
        },
    )
    await db.flush()

    logger.info(
        "Payment %s recorded on %s: paid=%s balance=%s status=%s",
        amount, invoice.invoice_number, invoice.paid_amount,
        invoice.balance_due, invoice.status,
    )
    await publish(db, InvoiceChanged(invoice.id, invoice.client_id, "payment_recorded"))
    return invoice
