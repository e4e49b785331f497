"""Tests for client rollups and derived project health."""

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.middleware.exceptions import ResourceNotFoundError
from app.services.aggregates import (
    calculate_progress,
    days_left,
    is_delayed,
    project_health,
    recompute_all_client_stats,
    recompute_client_stats,
)
from app.services.invoices import delete_invoice
from app.services.ledger import record_payment


@pytest.mark.integration
@pytest.mark.asyncio
class TestRecomputeClientStats:

    async def test_totals_over_active_invoices(
        self, db_session, make_client, make_project, make_invoice
    ):
        client = await make_client()
        project = await make_project(client)
        first = await make_invoice(client, project, amount="1000")
        second = await make_invoice(client, project, amount="2000")
        await record_payment(db_session, first.id, "1000", "Cash")
        await record_payment(db_session, second.id, "500", "Cash")

        stats = await recompute_client_stats(db_session, client.id)

        assert stats.total_billed == Decimal("3000.00")
        assert stats.total_paid == Decimal("1500.00")
        assert stats.total_outstanding == Decimal("1500.00")
        assert stats.invoice_count == 2
        assert client.total_billed == Decimal("3000.00")
        assert client.total_outstanding == Decimal("1500.00")
        assert client.stats_updated_at is not None

    async def test_project_counts_by_status(self, db_session, make_client, make_project):
        client = await make_client()
        await make_project(client, status="planned")
        await make_project(client, status="in-progress")
        await make_project(client, status="completed")
        await make_project(client, status="cancelled")

        stats = await recompute_client_stats(db_session, client.id)
        assert stats.total_projects == 4
        assert stats.active_projects == 2
        assert stats.completed_projects == 1
        assert client.active_projects == 2

    async def test_deleted_invoices_excluded(
        self, db_session, make_client, make_project, make_invoice
    ):
        client = await make_client()
        project = await make_project(client)
        await make_invoice(client, project, amount="100")
        doomed = await make_invoice(client, project, amount="900")

        await delete_invoice(db_session, doomed.id)

        assert client.total_billed == Decimal("100.00")
        stats = await recompute_client_stats(db_session, client.id)
        assert stats.invoice_count == 1

    async def test_deterministic(self, db_session, make_client, make_project, make_invoice):
        client = await make_client()
        project = await make_project(client)
        await make_invoice(client, project, amount="640")

        first = await recompute_client_stats(db_session, client.id)
        second = await recompute_client_stats(db_session, client.id)
        assert first == second

    async def test_overwrites_drifted_counters(self, db_session, make_client, make_project, make_invoice):
        client = await make_client()
        project = await make_project(client)
        await make_invoice(client, project, amount="300")
        client.total_billed = Decimal("99999")
        client.total_projects = 42

        await recompute_client_stats(db_session, client.id)
        assert client.total_billed == Decimal("300.00")
        assert client.total_projects == 1

    async def test_unknown_client(self, db_session):
        with pytest.raises(ResourceNotFoundError):
            await recompute_client_stats(db_session, "nobody")

    async def test_invoice_mutations_keep_rollups_current(
        self, db_session, make_client, make_project, make_invoice
    ):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(client, project, amount="500")
        assert client.total_billed == Decimal("500.00")

        await record_payment(db_session, invoice.id, "200", "Cash")
        assert client.total_paid == Decimal("200.00")
        assert client.total_outstanding == Decimal("300.00")


@pytest.mark.integration
@pytest.mark.asyncio
class TestRecomputeAll:

    async def test_every_client_updated(self, db_session, make_client, make_project, make_invoice):
        a = await make_client()
        b = await make_client()
        await make_invoice(a, await make_project(a), amount="10")
        await make_invoice(b, await make_project(b), amount="20")
        a.total_billed = Decimal("0")

        result = await recompute_all_client_stats(db_session)

        assert result == {"updated": 2, "total": 2, "failed": 0}
        assert a.total_billed == Decimal("10.00")

    async def test_one_failure_does_not_stop_the_rest(
        self, db_session, make_client, monkeypatch
    ):
        good = await make_client()
        bad = await make_client()

        import app.services.aggregates as aggregates

        original = aggregates.recompute_client_stats

        async def flaky(db, client_id):
            if client_id == bad.id:
                raise RuntimeError("corrupt row")
            return await original(db, client_id)

        monkeypatch.setattr(aggregates, "recompute_client_stats", flaky)
        result = await recompute_all_client_stats(db_session)

        assert result == {"updated": 1, "total": 2, "failed": 1}
        await db_session.refresh(good)
        assert good.stats_updated_at is not None


@pytest.mark.unit
class TestProjectHealth:

    def _milestones(self, *statuses):
        return [SimpleNamespace(status=s) for s in statuses]

    def test_progress_from_milestones(self):
        assert calculate_progress([]) == 0
        assert calculate_progress(self._milestones("completed", "pending")) == 50
        assert calculate_progress(self._milestones("completed", "pending", "pending")) == 33
        assert calculate_progress(self._milestones("completed", "completed", "pending")) == 67

    def test_progress_rounds_half_up(self):
        milestones = self._milestones("completed", *["pending"] * 7)
        # 1/8 = 12.5%
        assert calculate_progress(milestones) == 13

    def test_delayed_only_when_in_progress_and_past_deadline(self, today):
        late = SimpleNamespace(status="in-progress", deadline=today - timedelta(days=1))
        on_hold = SimpleNamespace(status="on-hold", deadline=today - timedelta(days=1))
        on_time = SimpleNamespace(status="in-progress", deadline=today)
        assert is_delayed(late, today)
        assert not is_delayed(on_hold, today)
        assert not is_delayed(on_time, today)

    def test_days_left(self, today):
        assert days_left(today + timedelta(days=3), today) == 3
        assert days_left(today - timedelta(days=2), today) == -2

    def test_health_display_status(self, today):
        project = SimpleNamespace(
            status="in-progress",
            progress=40,
            deadline=today - timedelta(days=5),
            milestones=self._milestones("completed", "pending"),
        )
        health = project_health(project, today)
        assert health.is_delayed is True
        assert health.display_status == "delayed"
        assert health.milestone_progress == 50
        assert health.days_left == -5
