"""Tests for the overdue sweep."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models.activity_log import ActivityLog
from app.services.invoices import delete_invoice
from app.services.ledger import record_payment
from app.services.overdue import run_overdue_sweep


@pytest.mark.integration
@pytest.mark.asyncio
class TestOverdueSweep:

    async def _past_due(self, db_session, invoice, today, days=1):
        invoice.due_date = today - timedelta(days=days)
        await db_session.flush()
        return invoice

    async def test_marks_sent_invoice_past_due(
        self, db_session, make_client, make_project, make_invoice, today
    ):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(client, project, amount="1000")
        await record_payment(db_session, invoice.id, "400", "Cash")
        await self._past_due(db_session, invoice, today)

        result = await run_overdue_sweep(db_session, today=today)

        assert result == {"updated_count": 1, "total_overdue": 1, "failed": 0}
        assert invoice.status == "overdue"
        assert invoice.balance_due == Decimal("600.00")
        assert invoice.paid_amount == Decimal("400.00")

    async def test_leaves_other_invoices_alone(
        self, db_session, make_client, make_project, make_invoice, today
    ):
        client = await make_client()
        project = await make_project(client)
        draft = await make_invoice(client, project, status="draft")
        future = await make_invoice(client, project)
        paid = await make_invoice(client, project, amount="300")
        await record_payment(db_session, paid.id, "300", "Cash")
        await self._past_due(db_session, draft, today)
        await self._past_due(db_session, paid, today)

        result = await run_overdue_sweep(db_session, today=today)

        assert result["updated_count"] == 0
        assert draft.status == "draft"
        assert future.status == "sent"
        assert paid.status == "paid"

    async def test_due_today_is_not_overdue(
        self, db_session, make_client, make_project, make_invoice, today
    ):
        client = await make_client()
        invoice = await make_invoice(client, await make_project(client))
        invoice.due_date = today
        await db_session.flush()

        result = await run_overdue_sweep(db_session, today=today)
        assert result["updated_count"] == 0
        assert invoice.status == "sent"

    async def test_deleted_invoices_skipped(
        self, db_session, make_client, make_project, make_invoice, today
    ):
        client = await make_client()
        invoice = await make_invoice(client, await make_project(client))
        await self._past_due(db_session, invoice, today)
        await delete_invoice(db_session, invoice.id)

        result = await run_overdue_sweep(db_session, today=today)
        assert result["updated_count"] == 0

    async def test_total_overdue_counts_this_pass_only(
        self, db_session, make_client, make_project, make_invoice, today
    ):
        client = await make_client()
        project = await make_project(client)
        await make_invoice(client, project, due_date=today - timedelta(days=10))
        fresh = await make_invoice(client, project)
        await self._past_due(db_session, fresh, today, days=3)

        result = await run_overdue_sweep(db_session, today=today)
        assert result["updated_count"] == 1
        assert result["total_overdue"] == 1

    async def test_second_run_is_a_no_op(
        self, db_session, make_client, make_project, make_invoice, today
    ):
        client = await make_client()
        invoice = await make_invoice(client, await make_project(client))
        await self._past_due(db_session, invoice, today)

        await run_overdue_sweep(db_session, today=today)
        again = await run_overdue_sweep(db_session, today=today)
        assert again == {"updated_count": 0, "total_overdue": 0, "failed": 0}

    async def test_writes_activity_log(
        self, db_session, make_client, make_project, make_invoice, today
    ):
        client = await make_client()
        invoice = await make_invoice(client, await make_project(client))
        await self._past_due(db_session, invoice, today)

        await run_overdue_sweep(db_session, today=today)

        entries = (await db_session.execute(
            select(ActivityLog).where(
                ActivityLog.entity_id == invoice.id,
                ActivityLog.action == "marked_overdue",
            )
        )).scalars().all()
        assert len(entries) == 1
