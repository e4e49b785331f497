"""Aggregate model imports for Alembic auto-detection and metadata.create_all."""

from app.models.client import Client  # noqa: F401
from app.models.project import Project, Milestone  # noqa: F401
from app.models.invoice import Invoice, InvoiceLineItem, InvoicePayment  # noqa: F401
from app.models.activity_log import ActivityLog  # noqa: F401

__all__ = [
    "Client",
    "Project", "Milestone",
    "Invoice", "InvoiceLineItem", "InvoicePayment",
    "ActivityLog",
]
