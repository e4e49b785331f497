"""Tests for the maintenance scheduler plumbing."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models.client import Client
from app.services import scheduler
from app.services.scheduler import run_daily_maintenance, run_pass, seconds_until


@pytest.mark.unit
class TestSecondsUntil:

    def test_later_today(self):
        now = datetime(2026, 5, 1, 0, 30, tzinfo=timezone.utc)
        assert seconds_until(2, now) == 90 * 60

    def test_rolls_to_tomorrow(self):
        now = datetime(2026, 5, 1, 2, 0, tzinfo=timezone.utc)
        assert seconds_until(2, now) == 24 * 3600

    def test_across_month_end(self):
        now = datetime(2026, 5, 31, 23, 0, tzinfo=timezone.utc)
        assert seconds_until(2, now) == 3 * 3600


@pytest.fixture
def scheduler_sessions(monkeypatch, session_factory):
    monkeypatch.setattr(scheduler, "async_session", session_factory)
    return session_factory


@pytest.mark.integration
@pytest.mark.asyncio
class TestRunPass:

    async def test_commits_on_success(self, scheduler_sessions):
        async def create_client(db):
            db.add(Client(name="Nightly", company_name="Nightly Ltd", email="n@example.com"))
            return {"created": 1}

        assert await run_pass("seed", create_client) == {"created": 1}

        async with scheduler_sessions() as db:
            names = (await db.execute(select(Client.name))).scalars().all()
        assert names == ["Nightly"]

    async def test_rolls_back_and_returns_none_on_failure(self, scheduler_sessions):
        async def broken(db):
            db.add(Client(name="Ghost", company_name="Ghost Ltd", email="g@example.com"))
            await db.flush()
            raise RuntimeError("pass failed")

        assert await run_pass("broken", broken) is None

        async with scheduler_sessions() as db:
            assert (await db.execute(select(Client))).scalars().all() == []

    async def test_daily_maintenance_runs_every_pass(self, scheduler_sessions):
        async with scheduler_sessions() as db:
            client = Client(
                name="Drifted", company_name="Drifted Ltd", email="d@example.com",
                total_billed=Decimal("123"),
            )
            db.add(client)
            await db.commit()

        results = await run_daily_maintenance()

        assert results["overdue_sweep"] == {"updated_count": 0, "total_overdue": 0, "failed": 0}
        assert results["consistency_audit"]["total_invoices"] == 0
        assert results["recompute_clients"] == {"updated": 1, "total": 1, "failed": 0}

        async with scheduler_sessions() as db:
            stored = (await db.execute(select(Client))).scalar_one()
        assert stored.total_billed == Decimal("0.00")

    async def test_failing_pass_does_not_stop_later_ones(self, scheduler_sessions, monkeypatch):
        import app.services.overdue as overdue

        async def explode(db, today=None):
            raise RuntimeError("sweep crashed")

        monkeypatch.setattr(overdue, "run_overdue_sweep", explode)

        results = await run_daily_maintenance()

        assert results["overdue_sweep"] is None
        assert results["consistency_audit"] is not None
        assert results["recompute_clients"] == {"updated": 0, "total": 0, "failed": 0}
