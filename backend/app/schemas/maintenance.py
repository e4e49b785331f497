"""Result shapes of the batch maintenance passes."""

from pydantic import BaseModel


class OverdueSweepResult(BaseModel):
    updated_count: int
    total_overdue: int
    failed: int = 0


class ConsistencyAuditResult(BaseModel):
    total_invoices: int
    fixed_invoices: int
    failed: int = 0
    by_rule: dict[str, int] = {}


class RecomputeClientsResult(BaseModel):
    updated: int
    total: int
    failed: int = 0
