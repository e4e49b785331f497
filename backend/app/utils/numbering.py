"""Sequential code generation for invoices and projects.

Formats:
  invoice:  {prefix}-{YYYYMM}-{seq:4}   e.g. INV-202610-0007, resets monthly
  project:  PROJ-{seq:3}                 e.g. PROJ-012, never resets

Invoice numbers take the highest existing suffix in the month plus one,
so gaps left by deleted rows are never reused.  Project codes count the
existing projects, falling back to the highest code plus one on a clash.
"""

import re
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.invoice import Invoice
from app.models.project import Project

INVOICE_SEQ_WIDTH = 4
PROJECT_SEQ_WIDTH = 3
PROJECT_PREFIX = "PROJ"


def _invoice_prefix(today: date) -> str:
    return f"{settings.invoice_number_prefix}-{today.strftime('%Y%m')}-"


def _next_sequence(codes: list[str], prefix: str) -> int:
    """Highest numeric suffix after ``prefix`` plus one."""
    pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")
    highest = 0
    for code in codes:
        match = pattern.match(code or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return highest + 1


async def generate_invoice_number(db: AsyncSession, today: date | None = None) -> str:
    """Generate the next invoice number for the month of ``today``.

    Soft-deleted invoices still hold their numbers, so they are included.
    """
    today = today or date.today()
    prefix = _invoice_prefix(today)
    result = await db.execute(
        select(Invoice.invoice_number).where(Invoice.invoice_number.like(f"{prefix}%"))
    )
    seq_num = _next_sequence(list(result.scalars().all()), prefix)
    return f"{prefix}{seq_num:0{INVOICE_SEQ_WIDTH}d}"


async def generate_project_code(db: AsyncSession) -> str:
    """Generate ``PROJ-###`` from the current project count."""
    count = (await db.execute(select(func.count(Project.id)))).scalar() or 0
    code = f"{PROJECT_PREFIX}-{count + 1:0{PROJECT_SEQ_WIDTH}d}"

    # A hard-deleted project can leave the count behind the highest code
    taken = (await db.execute(
        select(Project.id).where(Project.project_code == code)
    )).scalar_one_or_none()
    if taken is None:
        return code

    result = await db.execute(select(Project.project_code))
    seq_num = _next_sequence(list(result.scalars().all()), f"{PROJECT_PREFIX}-")
    return f"{PROJECT_PREFIX}-{seq_num:0{PROJECT_SEQ_WIDTH}d}"
