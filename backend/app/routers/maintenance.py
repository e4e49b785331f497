"""Manual triggers for the batch maintenance passes.

Endpoints:
    POST /api/maintenance/overdue-sweep        Mark past-due sent invoices overdue
    POST /api/maintenance/consistency-audit    Repair inconsistent invoices
    POST /api/maintenance/recompute-clients    Recompute every client's rollups

The same passes run daily from the scheduler and from ``python -m app.cli``.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.maintenance import (
    ConsistencyAuditResult,
    OverdueSweepResult,
    RecomputeClientsResult,
)
from app.services.aggregates import recompute_all_client_stats
from app.services.audit import run_consistency_audit
from app.services.overdue import run_overdue_sweep

router = APIRouter()


@router.post("/overdue-sweep", response_model=OverdueSweepResult)
async def overdue_sweep(db: AsyncSession = Depends(get_db)):
    return OverdueSweepResult(**await run_overdue_sweep(db))


@router.post("/consistency-audit", response_model=ConsistencyAuditResult)
async def consistency_audit(db: AsyncSession = Depends(get_db)):
    return ConsistencyAuditResult(**await run_consistency_audit(db))


@router.post("/recompute-clients", response_model=RecomputeClientsResult)
async def recompute_clients(db: AsyncSession = Depends(get_db)):
    return RecomputeClientsResult(**await recompute_all_client_stats(db))
