"""Pydantic schemas for invoices, line items and ledger payments.

Money comes in as Decimal (no float drift before the calculator
quantizes it) and goes out as float.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from app.models.invoice import DISCOUNT_TYPES, INVOICE_STATUSES, PAYMENT_METHODS


class LineItemIn(BaseModel):
    description: str
    quantity: Decimal = Decimal("1")
    rate: Decimal


class LineItemOut(BaseModel):
    id: str
    position: int
    description: str
    quantity: float
    rate: float
    amount: float

    model_config = {"from_attributes": True}


class InvoiceCreate(BaseModel):
    project_id: str
    client_id: str
    line_items: list[LineItemIn] = Field(..., min_length=1)
    discount: Decimal = Decimal("0")
    discount_type: str = "amount"
    tax_rate: Decimal | None = None
    due_date: date | None = None
    status: str = "draft"
    client_name: str | None = None
    company_name: str | None = None
    billing_address: str | None = None
    contact_email: str | None = None
    payment_method: str | None = None
    payment_terms: str | None = None
    bank_details: str | None = None
    notes: str | None = None

    @field_validator("discount_type")
    @classmethod
    def valid_discount_type(cls, v: str) -> str:
        if v not in DISCOUNT_TYPES:
            raise ValueError("discount_type must be 'amount' or 'percentage'")
        return v


class InvoiceUpdate(BaseModel):
    line_items: list[LineItemIn] | None = None
    discount: Decimal | None = None
    discount_type: str | None = None
    tax_rate: Decimal | None = None
    due_date: date | None = None
    notes: str | None = None
    payment_terms: str | None = None


class PaymentCreate(BaseModel):
    amount: Decimal
    method: str = "Bank Transfer"
    reference: str | None = None
    notes: str | None = None
    date: datetime | None = None

    @field_validator("amount")
    @classmethod
    def amount_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Amount must be positive")
        return v

    @field_validator("method")
    @classmethod
    def valid_method(cls, v: str) -> str:
        if v not in PAYMENT_METHODS:
            raise ValueError(f"method must be one of {', '.join(PAYMENT_METHODS)}")
        return v


class InvoiceStatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        if v not in INVOICE_STATUSES:
            raise ValueError(f"status must be one of {', '.join(INVOICE_STATUSES)}")
        return v


class PaymentOut(BaseModel):
    id: str
    position: int
    payment_date: datetime
    amount: float
    method: str
    reference: str
    status: str
    notes: str | None

    model_config = {"from_attributes": True}


class InvoiceSummary(BaseModel):
    id: str
    invoice_number: str
    client_id: str
    project_id: str | None
    client_name: str
    project_name: str
    total: float
    paid_amount: float
    balance_due: float
    status: str
    due_date: date
    created_at: datetime

    model_config = {"from_attributes": True}


class InvoiceOut(BaseModel):
    id: str
    invoice_number: str
    client_id: str
    project_id: str | None
    client_name: str
    company_name: str | None
    billing_address: str | None
    contact_email: str | None
    project_name: str
    project_code: str | None
    billing_type: str
    line_items: list[LineItemOut]
    subtotal: float
    discount_value: float
    discount_type: str
    discount_amount: float
    tax_rate: float
    tax_amount: float
    total: float
    paid_amount: float
    balance_due: float
    status: str
    invoice_date: datetime
    due_date: date
    payment_method: str
    payment_terms: str | None
    bank_details: str | None
    notes: str | None
    is_active: bool
    payments: list[PaymentOut]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
