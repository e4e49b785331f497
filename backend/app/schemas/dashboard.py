"""Billing dashboard rollup."""

from datetime import datetime

from pydantic import BaseModel


class BillingSummary(BaseModel):
    invoice_count: int
    invoices_by_status: dict[str, int]
    total_billed: float
    total_collected: float
    total_outstanding: float
    collection_rate: float
    overdue_count: int
    overdue_amount: float
    clients_total: int
    clients_active: int
    projects_total: int
    projects_by_status: dict[str, int]
    delayed_projects: int
    generated_at: datetime
