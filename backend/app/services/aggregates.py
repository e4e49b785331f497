"""Client rollups and derived project health.

``recompute_client_stats`` always recomputes from the authoritative rows
(projects by status, active invoices) and overwrites the five counters on
the client.  Nothing here ever increments a counter, so any number of
overlapping recomputations for the same client converge on the same
values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.middleware.exceptions import ResourceNotFoundError
from app.models.client import Client
from app.models.invoice import Invoice
from app.models.project import ACTIVE_PROJECT_STATUSES, Milestone, Project
from app.utils.clock import utc_today, utcnow
from app.utils.money import to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientStats:
    total_projects: int
    active_projects: int
    completed_projects: int
    total_billed: Decimal
    total_paid: Decimal
    total_outstanding: Decimal
    invoice_count: int


@dataclass(frozen=True)
class ProjectHealth:
    progress: int
    milestone_progress: int
    is_delayed: bool
    days_left: int
    display_status: str


async def recompute_client_stats(db: AsyncSession, client_id: str) -> ClientStats:
    client = await db.get(Client, client_id)
    if not client:
        raise ResourceNotFoundError("Client", client_id)

    rows = await db.execute(
        select(Project.status, func.count(Project.id))
        .where(Project.client_id == client_id)
        .group_by(Project.status)
    )
    by_status = {status: count for status, count in rows.all()}

    invoice_row = (await db.execute(
        select(
            func.count(Invoice.id),
            func.coalesce(func.sum(Invoice.total), 0),
            func.coalesce(func.sum(Invoice.paid_amount), 0),
            func.coalesce(func.sum(Invoice.balance_due), 0),
        ).where(Invoice.client_id == client_id, Invoice.is_active == True)  # noqa: E712
    )).one()

    stats = ClientStats(
        total_projects=sum(by_status.values()),
        active_projects=sum(by_status.get(s, 0) for s in ACTIVE_PROJECT_STATUSES),
        completed_projects=by_status.get("completed", 0),
        total_billed=to_money(invoice_row[1]),
        total_paid=to_money(invoice_row[2]),
        total_outstanding=to_money(invoice_row[3]),
        invoice_count=invoice_row[0] or 0,
    )

    client.total_projects = stats.total_projects
    client.active_projects = stats.active_projects
    client.total_billed = stats.total_billed
    client.total_paid = stats.total_paid
    client.total_outstanding = stats.total_outstanding
    client.stats_updated_at = utcnow()
    await db.flush()

    logger.debug(
        "Client %s stats: projects=%d active=%d billed=%s paid=%s outstanding=%s",
        client_id, stats.total_projects, stats.active_projects,
        stats.total_billed, stats.total_paid, stats.total_outstanding,
    )
    return stats


async def recompute_all_client_stats(db: AsyncSession) -> dict:
    """Recompute every client; one client's failure does not stop the rest."""
    client_ids = list((await db.execute(
        select(Client.id).order_by(Client.created_at, Client.id)
    )).scalars().all())

    updated = failed = 0
    for client_id in client_ids:
        try:
            async with db.begin_nested():
                await recompute_client_stats(db, client_id)
            updated += 1
        except Exception:
            failed += 1
            logger.exception("Failed to recompute stats for client %s", client_id)

    logger.info(
        "Client stats recomputed: %d/%d updated, %d failed",
        updated, len(client_ids), failed,
    )
    return {"updated": updated, "total": len(client_ids), "failed": failed}


# ── Project health (derived, never stored) ─────────────────────


def calculate_progress(milestones: list[Milestone]) -> int:
    """Completed milestones as a whole percentage, rounded half up."""
    total = len(milestones or [])
    if total == 0:
        return 0
    completed = sum(1 for m in milestones if m.status == "completed")
    return (completed * 200 + total) // (total * 2)


def days_left(deadline: date, today: date | None = None) -> int:
    return (deadline - (today or utc_today())).days


def is_delayed(project: Project, today: date | None = None) -> bool:
    return (
        project.status == "in-progress"
        and project.deadline is not None
        and project.deadline < (today or utc_today())
    )


def project_health(project: Project, today: date | None = None) -> ProjectHealth:
    today = today or utc_today()
    delayed = is_delayed(project, today)
    return ProjectHealth(
        progress=project.progress or 0,
        milestone_progress=calculate_progress(project.milestones),
        is_delayed=delayed,
        days_left=days_left(project.deadline, today),
        display_status="delayed" if delayed else project.status,
    )
