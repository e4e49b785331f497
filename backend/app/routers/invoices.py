"""Invoice router: thin HTTP layer over services.invoices / services.ledger.

Endpoints:
    GET    /api/invoices/                 List active invoices
    POST   /api/invoices/                 Create (priced server-side)
    GET    /api/invoices/{id}             Single invoice with line items + ledger
    PATCH  /api/invoices/{id}             Edit / reprice an unpaid invoice
    POST   /api/invoices/{id}/payments    Record a payment
    POST   /api/invoices/{id}/send        Mark sent
    POST   /api/invoices/{id}/overdue     Mark overdue
    PATCH  /api/invoices/{id}/status      Operator status override
    DELETE /api/invoices/{id}             Soft delete
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.common import PaginatedResponse
from app.schemas.invoice import (
    InvoiceCreate,
    InvoiceOut,
    InvoiceStatusUpdate,
    InvoiceSummary,
    InvoiceUpdate,
    PaymentCreate,
)
from app.services import invoices as invoice_service
from app.services.ledger import record_payment

router = APIRouter()


@router.get("/", response_model=PaginatedResponse[InvoiceSummary])
async def list_invoices(
    status: str | None = None,
    client_id: str | None = None,
    project_id: str | None = None,
    search: str | None = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    items, total = await invoice_service.list_invoices(
        db,
        status=status,
        client_id=client_id,
        project_id=project_id,
        search=search,
        limit=limit,
        offset=offset,
    )
    return PaginatedResponse[InvoiceSummary](
        items=[InvoiceSummary.model_validate(i) for i in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/", response_model=InvoiceOut, status_code=201)
async def create_invoice(body: InvoiceCreate, db: AsyncSession = Depends(get_db)):
    invoice = await invoice_service.create_invoice(db, **body.model_dump())
    return InvoiceOut.model_validate(invoice)


@router.get("/{invoice_id}", response_model=InvoiceOut)
async def get_invoice(invoice_id: str, db: AsyncSession = Depends(get_db)):
    return InvoiceOut.model_validate(await invoice_service.get_invoice(db, invoice_id))


@router.patch("/{invoice_id}", response_model=InvoiceOut)
async def update_invoice(
    invoice_id: str, body: InvoiceUpdate, db: AsyncSession = Depends(get_db),
):
    invoice = await invoice_service.update_invoice(
        db, invoice_id, **body.model_dump(exclude_unset=True),
    )
    return InvoiceOut.model_validate(invoice)


@router.post("/{invoice_id}/payments", response_model=InvoiceOut, status_code=201)
async def add_payment(
    invoice_id: str, body: PaymentCreate, db: AsyncSession = Depends(get_db),
):
    invoice = await record_payment(
        db,
        invoice_id,
        body.amount,
        method=body.method,
        reference=body.reference,
        notes=body.notes,
        date=body.date,
    )
    return InvoiceOut.model_validate(invoice)


@router.post("/{invoice_id}/send", response_model=InvoiceOut)
async def send_invoice(invoice_id: str, db: AsyncSession = Depends(get_db)):
    return InvoiceOut.model_validate(await invoice_service.send_invoice(db, invoice_id))


@router.post("/{invoice_id}/overdue", response_model=InvoiceOut)
async def mark_overdue(invoice_id: str, db: AsyncSession = Depends(get_db)):
    return InvoiceOut.model_validate(await invoice_service.mark_overdue(db, invoice_id))


@router.patch("/{invoice_id}/status", response_model=InvoiceOut)
async def set_status(
    invoice_id: str, body: InvoiceStatusUpdate, db: AsyncSession = Depends(get_db),
):
    invoice = await invoice_service.set_invoice_status(db, invoice_id, body.status)
    return InvoiceOut.model_validate(invoice)


@router.delete("/{invoice_id}", status_code=204)
async def delete_invoice(invoice_id: str, db: AsyncSession = Depends(get_db)):
    await invoice_service.delete_invoice(db, invoice_id)
