"""Tests for the invoice state machine."""

from datetime import timedelta
from decimal import Decimal

import pytest

from app.config import settings
from app.middleware.exceptions import (
    InvalidTransitionError,
    InvoiceValidationError,
    ResourceNotFoundError,
)
from app.services.invoices import (
    create_invoice,
    delete_invoice,
    get_invoice,
    list_invoices,
    mark_overdue,
    send_invoice,
    set_invoice_status,
    update_invoice,
)
from app.services.ledger import ledger_total, record_payment


@pytest.mark.integration
@pytest.mark.asyncio
class TestCreateInvoice:

    async def test_priced_and_snapshotted(self, db_session, make_client, make_project, today):
        client = await make_client(name="Asha", company_name="Asha Labs")
        project = await make_project(client, title="Website", billing_type="milestone")

        invoice = await create_invoice(
            db_session,
            project_id=project.id,
            client_id=client.id,
            line_items=[
                {"description": "Design", "quantity": 2, "rate": 250},
                {"description": "Build", "quantity": 1, "rate": 500},
            ],
            discount=10,
            discount_type="percentage",
            tax_rate=18,
            today=today,
        )

        assert invoice.invoice_number == f"INV-{today.strftime('%Y%m')}-0001"
        assert invoice.subtotal == Decimal("1000.00")
        assert invoice.discount_amount == Decimal("100.00")
        assert invoice.tax_amount == Decimal("162.00")
        assert invoice.total == Decimal("1062.00")
        assert invoice.balance_due == Decimal("1062.00")
        assert invoice.paid_amount == Decimal("0")
        assert invoice.status == "draft"
        assert invoice.client_name == "Asha"
        assert invoice.company_name == "Asha Labs"
        assert invoice.project_name == "Website"
        assert invoice.billing_type == "milestone"
        assert invoice.due_date == today + timedelta(days=settings.default_payment_terms_days)
        assert [li.position for li in invoice.line_items] == [0, 1]

    async def test_created_paid_gets_initial_ledger_row(
        self, db_session, make_client, make_project, make_invoice
    ):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(client, project, amount="750", status="paid", payment_method="UPI")

        assert invoice.status == "paid"
        assert invoice.paid_amount == Decimal("750.00")
        assert invoice.balance_due == Decimal("0")
        assert len(invoice.payments) == 1
        assert invoice.payments[0].reference.startswith("INITIAL-PAY-")
        assert invoice.payments[0].method == "UPI"
        assert ledger_total(invoice) == invoice.paid_amount

    async def test_invoice_numbers_increment(self, make_client, make_project, make_invoice, today):
        client = await make_client()
        project = await make_project(client)
        first = await make_invoice(client, project)
        second = await make_invoice(client, project)
        assert first.invoice_number.endswith("-0001")
        assert second.invoice_number.endswith("-0002")

    async def test_project_must_belong_to_client(self, make_client, make_project, make_invoice):
        owner = await make_client()
        other = await make_client()
        project = await make_project(owner)
        with pytest.raises(InvoiceValidationError, match="does not belong"):
            await make_invoice(other, project)

    async def test_unknown_project(self, db_session, make_client):
        client = await make_client()
        with pytest.raises(ResourceNotFoundError):
            await create_invoice(
                db_session, project_id="missing", client_id=client.id,
                line_items=[{"description": "x", "quantity": 1, "rate": 1}],
            )

    async def test_invalid_status(self, make_client, make_project, make_invoice):
        client = await make_client()
        project = await make_project(client)
        with pytest.raises(InvoiceValidationError, match="Invalid status"):
            await make_invoice(client, project, status="archived")

    async def test_bad_line_item_rejected_before_lookup(self, db_session):
        with pytest.raises(InvoiceValidationError, match="Line item 1"):
            await create_invoice(
                db_session, project_id="missing", client_id="missing",
                line_items=[{"description": "", "quantity": 1, "rate": 1}],
            )

    @pytest.mark.parametrize("overrides", [
        {"amount": "0"},
        {"discount": 100, "discount_type": "percentage"},
    ])
    async def test_zero_total_cannot_start_paid(
        self, db_session, make_client, make_project, make_invoice, overrides
    ):
        client = await make_client()
        project = await make_project(client)
        with pytest.raises(InvoiceValidationError, match="zero total"):
            await make_invoice(client, project, status="paid", **overrides)


@pytest.mark.integration
@pytest.mark.asyncio
class TestTransitions:

    async def test_send_stamps_invoice_date(self, db_session, make_client, make_project, make_invoice):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(client, project, status="draft")
        created_at = invoice.invoice_date

        invoice = await send_invoice(db_session, invoice.id)
        assert invoice.status == "sent"
        assert invoice.invoice_date >= created_at

    async def test_mark_overdue(self, db_session, make_client, make_project, make_invoice):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(client, project)

        invoice = await mark_overdue(db_session, invoice.id)
        assert invoice.status == "overdue"

    async def test_overdue_invoice_paid_in_full_becomes_paid(
        self, db_session, make_client, make_project, make_invoice
    ):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(client, project, amount="300")
        await mark_overdue(db_session, invoice.id)

        invoice = await record_payment(db_session, invoice.id, "300", "Cash")
        assert invoice.status == "paid"

    async def test_set_paid_records_manual_shortfall(
        self, db_session, make_client, make_project, make_invoice
    ):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(client, project, amount="1000")
        await record_payment(db_session, invoice.id, "400", "UPI")

        invoice = await set_invoice_status(db_session, invoice.id, "paid")

        assert invoice.status == "paid"
        assert invoice.paid_amount == Decimal("1000.00")
        assert invoice.balance_due == Decimal("0")
        manual = invoice.payments[-1]
        assert manual.method == "Manual Payment"
        assert manual.amount == Decimal("600.00")
        assert manual.reference.startswith("MANUAL-PAY-")
        assert ledger_total(invoice) == invoice.paid_amount

    async def test_set_status_override_skips_derivation(
        self, db_session, make_client, make_project, make_invoice, today
    ):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(client, project, due_date=today + timedelta(days=5))

        invoice = await set_invoice_status(db_session, invoice.id, "overdue")
        assert invoice.status == "overdue"
        invoice = await set_invoice_status(db_session, invoice.id, "draft")
        assert invoice.status == "draft"

    async def test_paid_is_terminal(self, db_session, make_client, make_project, make_invoice):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(client, project, status="paid")

        with pytest.raises(InvalidTransitionError):
            await send_invoice(db_session, invoice.id)
        with pytest.raises(InvalidTransitionError):
            await mark_overdue(db_session, invoice.id)
        with pytest.raises(InvalidTransitionError):
            await set_invoice_status(db_session, invoice.id, "sent")
        with pytest.raises(InvalidTransitionError):
            await update_invoice(db_session, invoice.id, discount=5)
        assert invoice.status == "paid"

    async def test_invalid_status_value(self, db_session, make_client, make_project, make_invoice):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(client, project)
        with pytest.raises(InvoiceValidationError):
            await set_invoice_status(db_session, invoice.id, "void")

    async def test_zero_total_cannot_be_set_paid(
        self, db_session, make_client, make_project, make_invoice
    ):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(
            client, project, amount="400", discount=100, discount_type="percentage",
        )
        assert invoice.total == Decimal("0.00")
        assert invoice.status == "sent"

        with pytest.raises(InvalidTransitionError, match="total is 0"):
            await set_invoice_status(db_session, invoice.id, "paid")
        assert invoice.status == "sent"
        assert invoice.payments == []


@pytest.mark.integration
@pytest.mark.asyncio
class TestUpdateInvoice:

    async def test_reprice_overwrites_totals(self, db_session, make_client, make_project, make_invoice):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(client, project, amount="1000")
        await record_payment(db_session, invoice.id, "200", "Cash")

        invoice = await update_invoice(
            db_session, invoice.id,
            line_items=[{"description": "Revised scope", "quantity": 3, "rate": 500}],
            tax_rate=10,
        )

        assert len(invoice.line_items) == 1
        assert invoice.subtotal == Decimal("1500.00")
        assert invoice.tax_amount == Decimal("150.00")
        assert invoice.total == Decimal("1650.00")
        assert invoice.paid_amount == Decimal("200.00")
        assert invoice.balance_due == Decimal("1450.00")

    async def test_discount_only_reprices_existing_lines(
        self, db_session, make_client, make_project, make_invoice
    ):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(client, project, amount="400")

        invoice = await update_invoice(db_session, invoice.id, discount=100)
        assert invoice.subtotal == Decimal("400.00")
        assert invoice.total == Decimal("300.00")

    async def test_total_below_paid_rejected(self, db_session, make_client, make_project, make_invoice):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(client, project, amount="1000")
        await record_payment(db_session, invoice.id, "800", "Cash")

        with pytest.raises(InvoiceValidationError, match="already paid"):
            await update_invoice(
                db_session, invoice.id,
                line_items=[{"description": "Smaller", "quantity": 1, "rate": 500}],
            )
        assert invoice.total == Decimal("1000.00")

    async def test_moving_due_date_into_past_makes_overdue(
        self, db_session, make_client, make_project, make_invoice, today
    ):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(client, project)

        invoice = await update_invoice(db_session, invoice.id, due_date=today - timedelta(days=2))
        assert invoice.status == "overdue"


@pytest.mark.integration
@pytest.mark.asyncio
class TestDeleteAndList:

    async def test_soft_delete_hides_invoice(self, db_session, make_client, make_project, make_invoice):
        client = await make_client()
        project = await make_project(client)
        invoice = await make_invoice(client, project)

        await delete_invoice(db_session, invoice.id)

        assert invoice.is_active is False
        with pytest.raises(ResourceNotFoundError):
            await get_invoice(db_session, invoice.id)
        hidden = await get_invoice(db_session, invoice.id, include_inactive=True)
        assert hidden.id == invoice.id
        items, total = await list_invoices(db_session)
        assert total == 0 and items == []

    async def test_list_filters(self, db_session, make_client, make_project, make_invoice):
        acme = await make_client(company_name="Acme")
        other = await make_client(company_name="Globex")
        acme_project = await make_project(acme)
        other_project = await make_project(other)
        await make_invoice(acme, acme_project)
        await make_invoice(acme, acme_project, status="draft")
        await make_invoice(other, other_project)

        _, total = await list_invoices(db_session, client_id=acme.id)
        assert total == 2
        _, total = await list_invoices(db_session, status="draft")
        assert total == 1
        items, total = await list_invoices(db_session, search="globex")
        assert total == 1
        assert items[0].client_id == other.id
        items, total = await list_invoices(db_session, limit=1)
        assert len(items) == 1 and total == 3
