"""Billing dashboard rollup, computed from the authoritative rows.

Cached in Redis under ``dashboard:*``, one entry per ``today``; every domain
event invalidates it once its transaction commits.
"""

from datetime import date

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.client import Client
from app.models.invoice import Invoice
from app.models.project import Project
from app.schemas.dashboard import BillingSummary
from app.utils.cache import cached
from app.utils.clock import utc_today, utcnow
from app.utils.money import ZERO, to_money


@cached(prefix="dashboard", model=BillingSummary)
async def billing_summary(db: AsyncSession, today: date | None = None) -> BillingSummary:
    today = today or utc_today()
    active = Invoice.is_active == True  # noqa: E712

    by_status = dict((await db.execute(
        select(Invoice.status, func.count(Invoice.id)).where(active).group_by(Invoice.status)
    )).all())

    totals = (await db.execute(
        select(
            func.count(Invoice.id),
            func.coalesce(func.sum(Invoice.total), 0),
            func.coalesce(func.sum(Invoice.paid_amount), 0),
            func.coalesce(func.sum(Invoice.balance_due), 0),
        ).where(active)
    )).one()

    overdue_filter = and_(
        active,
        Invoice.balance_due > 0,
        or_(
            Invoice.status == "overdue",
            and_(Invoice.status == "sent", Invoice.due_date < today),
        ),
    )
    overdue = (await db.execute(
        select(func.count(Invoice.id), func.coalesce(func.sum(Invoice.balance_due), 0))
        .where(overdue_filter)
    )).one()

    clients = (await db.execute(
        select(
            func.count(Client.id),
            func.coalesce(func.sum(case((Client.status == "active", 1), else_=0)), 0),
        )
    )).one()

    projects_by_status = dict((await db.execute(
        select(Project.status, func.count(Project.id)).group_by(Project.status)
    )).all())
    delayed = (await db.execute(
        select(func.count(Project.id)).where(
            Project.status == "in-progress", Project.deadline < today,
        )
    )).scalar() or 0

    billed, collected = to_money(totals[1]), to_money(totals[2])
    return BillingSummary(
        invoice_count=totals[0] or 0,
        invoices_by_status=by_status,
        total_billed=float(billed),
        total_collected=float(collected),
        total_outstanding=float(to_money(totals[3])),
        collection_rate=float(round(collected / billed * 100, 2)) if billed > ZERO else 0.0,
        overdue_count=overdue[0] or 0,
        overdue_amount=float(to_money(overdue[1])),
        clients_total=clients[0] or 0,
        clients_active=int(clients[1] or 0),
        projects_total=sum(projects_by_status.values()),
        projects_by_status=projects_by_status,
        delayed_projects=delayed,
        generated_at=utcnow(),
    )
