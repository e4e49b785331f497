"""Billing dashboard router."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.dashboard import BillingSummary
from app.services.dashboard import billing_summary
from app.utils.clock import utc_today

router = APIRouter()


@router.get("/billing", response_model=BillingSummary)
async def get_billing_summary(db: AsyncSession = Depends(get_db)):
    """Invoice, client and project rollups (cached, invalidated on every change)."""
    # today is a keyword so the cache entry rolls over at midnight
    return await billing_summary(db, today=utc_today())
