"""Overdue sweep: sent invoices past their due date with money owing.

The sweep only ever moves ``sent`` to ``overdue``, so it is safe to run
alongside normal traffic.  Each invoice is handled in its own SAVEPOINT;
one failure is logged and counted and the sweep carries on.
"""

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.invoice import Invoice
from app.services.events import InvoiceChanged, publish
from app.services.ledger import settle_invoice
from app.utils.activity import log_activity
from app.utils.clock import utc_today

logger = logging.getLogger(__name__)


async def run_overdue_sweep(db: AsyncSession, today: date | None = None) -> dict:
    """Mark every qualifying invoice overdue.

    ``total_overdue`` is the number of candidates this pass found, so a
    second run on the same day reports zero.

    Returns:
        {"updated_count": int, "total_overdue": int, "failed": int}
    """
    today = today or utc_today()
    result = await db.execute(
        select(Invoice).where(
            Invoice.is_active == True,  # noqa: E712
            Invoice.status == "sent",
            Invoice.due_date < today,
            Invoice.balance_due > 0,
        ).order_by(Invoice.due_date)
    )
    candidates = list(result.scalars().all())

    updated = failed = 0
    for invoice in candidates:
        invoice_id, number = invoice.id, invoice.invoice_number
        try:
            async with db.begin_nested():
                settle_invoice(invoice, today, forced_status="overdue")
                await log_activity(
                    db,
                    action="marked_overdue",
                    entity_type="invoice",
                    entity_id=invoice_id,
                    entity_code=number,
                    summary=f"Invoice {number} is past due ({invoice.due_date})",
                    details={"balance_due": str(invoice.balance_due)},
                )
                await db.flush()
                await publish(db, InvoiceChanged(invoice_id, invoice.client_id, "overdue_sweep"))
            updated += 1
        except Exception:
            failed += 1
            logger.exception("Overdue sweep failed for invoice %s", number)

    logger.info(
        "Overdue sweep: %d of %d candidates marked overdue, %d failed",
        updated, len(candidates), failed,
    )
    return {"updated_count": updated, "total_overdue": len(candidates), "failed": failed}
