"""UTC clock helpers.

Timestamps are stored naive-UTC (``DateTime`` without tz) so that both
Postgres and SQLite round-trip them unchanged.
"""

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Naive UTC 'now' for column defaults and audit stamps."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()
