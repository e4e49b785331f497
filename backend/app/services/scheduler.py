"""Background task scheduler: daily billing maintenance.

Uses FastAPI's lifespan context to start/stop an asyncio background loop.
No external dependencies (no Celery, no APScheduler), just an
asyncio.sleep loop that fires once per day at the configured hour.

Each run executes, in order and each in its own session/transaction:
  1. overdue sweep
  2. consistency audit
  3. client stats recompute-all

A failing pass is logged and the next one still runs.

Configuration:
    SCHEDULER_ENABLED=true
    MAINTENANCE_HOUR=2   (run at 02:00 UTC daily, via .env)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI

from app.config import settings
from app.database import async_session
from app.utils.cache import close_redis, discard_pending_invalidations, run_pending_invalidations

logger = logging.getLogger("crm.scheduler")


async def run_pass(name: str, func) -> dict | None:
    """Run one maintenance pass in its own session; commit or roll back."""
    try:
        async with async_session() as db:
            try:
                summary = await func(db)
                await db.commit()
            except Exception:
                await db.rollback()
                discard_pending_invalidations(db)
                raise
            await run_pending_invalidations(db)
            return summary
    except Exception:
        logger.exception("Maintenance pass %s failed", name)
        return None


async def run_daily_maintenance() -> dict:
    """Sweep, audit, then recompute every client's rollups."""
    from app.services.aggregates import recompute_all_client_stats
    from app.services.audit import run_consistency_audit
    from app.services.overdue import run_overdue_sweep

    logger.info("Starting daily billing maintenance")
    results = {}
    for name, func in (
        ("overdue_sweep", run_overdue_sweep),
        ("consistency_audit", run_consistency_audit),
        ("recompute_clients", recompute_all_client_stats),
    ):
        results[name] = await run_pass(name, func)
        if results[name] is not None:
            logger.info("Maintenance pass %s: %s", name, results[name])

    logger.info("Daily billing maintenance complete")
    return results


def seconds_until(target_hour: int, now: datetime) -> float:
    """Seconds from ``now`` to the next ``target_hour``:00 UTC."""
    next_run = now.replace(hour=target_hour, minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


async def _scheduler_loop() -> None:
    """Sleep loop that fires maintenance once per day."""
    while True:
        wait_seconds = seconds_until(settings.maintenance_hour, datetime.now(timezone.utc))
        logger.info("Next maintenance run in %.0f seconds", wait_seconds)

        await asyncio.sleep(wait_seconds)

        try:
            await run_daily_maintenance()
        except Exception:
            logger.exception("Unhandled error in daily maintenance")

        # Small buffer to avoid running twice in the same minute
        await asyncio.sleep(60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: start the scheduler on startup, cancel on shutdown."""
    task = None
    if settings.scheduler_enabled:
        task = asyncio.create_task(_scheduler_loop())
        logger.info("Maintenance scheduler started")
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Maintenance scheduler stopped")
        await close_redis()
