"""Consistency audit: repair invoices whose money fields disagree.

Rules, applied in priority order to every active invoice:

  paid_amount_mismatch  status is paid but paid_amount ≠ total
                        → paid_amount = total, balance_due = 0
  balance_mismatch      balance_due ≠ max(0, total − paid_amount)
                        → recompute balance_due
  status_not_paid       balance_due = 0, total > 0, status ≠ paid
                        → status = paid

Rules are re-applied until none fires, so an invoice left consistent by
one pass is never touched by the next (a second run reports zero fixes).
Each repaired invoice gets an activity-log row and an ``InvoiceChanged``
event so its client's rollups are recomputed.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.invoice import Invoice
from app.services.events import InvoiceChanged, publish
from app.utils.activity import log_activity
from app.utils.money import ZERO, clamp_non_negative, to_money

logger = logging.getLogger(__name__)

AUDIT_RULES = ("paid_amount_mismatch", "balance_mismatch", "status_not_paid")

# Rule 3 can make rule 1 applicable (a paid_amount above total); two
# rounds always reach a fixed point, the third is a guard.
MAX_ROUNDS = 3


def _apply_rules_once(invoice: Invoice) -> list[str]:
    fired = []
    total = to_money(invoice.total)

    if invoice.status == "paid" and to_money(invoice.paid_amount) != total:
        invoice.paid_amount = total
        invoice.balance_due = ZERO
        fired.append("paid_amount_mismatch")

    expected = clamp_non_negative(total - to_money(invoice.paid_amount))
    if to_money(invoice.balance_due) != expected:
        invoice.balance_due = expected
        fired.append("balance_mismatch")

    if to_money(invoice.balance_due) == ZERO and total > ZERO and invoice.status != "paid":
        invoice.status = "paid"
        fired.append("status_not_paid")

    return fired


def audit_invoice(invoice: Invoice) -> list[str]:
    """Repair ``invoice`` in place; return the rules that fired."""
    fired: list[str] = []
    for _ in range(MAX_ROUNDS):
        round_fired = _apply_rules_once(invoice)
        if not round_fired:
            break
        fired.extend(round_fired)
    return fired


async def run_consistency_audit(db: AsyncSession) -> dict:
    """Audit every active invoice.

    Returns:
        {
            "total_invoices": int,
            "fixed_invoices": int,
            "failed": int,
            "by_rule": {"paid_amount_mismatch": int, ...},
        }
    """
    result = await db.execute(
        select(Invoice)
        .where(Invoice.is_active == True)  # noqa: E712
        .order_by(Invoice.created_at, Invoice.id)
    )
    invoices = list(result.scalars().all())

    by_rule = {rule: 0 for rule in AUDIT_RULES}
    fixed = failed = 0
    for invoice in invoices:
        invoice_id, number = invoice.id, invoice.invoice_number
        try:
            async with db.begin_nested():
                before = {
                    "status": invoice.status,
                    "paid_amount": str(invoice.paid_amount),
                    "balance_due": str(invoice.balance_due),
                }
                fired = audit_invoice(invoice)
                if not fired:
                    continue

                for rule in fired:
                    logger.warning("Invoice %s violated %s; repaired", number, rule)
                await log_activity(
                    db,
                    action="repaired",
                    entity_type="invoice",
                    entity_id=invoice_id,
                    entity_code=number,
                    summary=f"Consistency audit repaired {', '.join(sorted(set(fired)))}",
                    details={
                        "rules": fired,
                        "before": before,
                        "after": {
                            "status": invoice.status,
                            "paid_amount": str(invoice.paid_amount),
                            "balance_due": str(invoice.balance_due),
                        },
                    },
                )
                await db.flush()
                await publish(db, InvoiceChanged(invoice_id, invoice.client_id, "audit_repair"))
            fixed += 1
            for rule in fired:
                by_rule[rule] += 1
        except Exception:
            failed += 1
            logger.exception("Consistency audit failed for invoice %s", number)

    logger.info(
        "Consistency audit: fixed %d of %d invoices (%d failed) %s",
        fixed, len(invoices), failed, by_rule,
    )
    return {
        "total_invoices": len(invoices),
        "fixed_invoices": fixed,
        "failed": failed,
        "by_rule": by_rule,
    }
