"""In-process domain events for invoice and project mutations.

Every mutation path publishes one event instead of calling the rollup
code itself.  Subscribers run inside a SAVEPOINT on the publisher's
session: a failing subscriber is logged and rolled back to its savepoint,
and the mutation that published the event still commits.

Default subscribers (see ``get_event_bus``):
  - recompute the stats of every affected client
  - invalidate the cached dashboard rollups once the session commits
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from app.utils.cache import invalidate_on_commit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvoiceChanged:
    invoice_id: str
    client_id: str
    reason: str

    @property
    def affected_client_ids(self) -> tuple[str, ...]:
        return (self.client_id,)


@dataclass(frozen=True)
class ProjectChanged:
    project_id: str
    client_id: str
    reason: str
    previous_client_id: str | None = None

    @property
    def affected_client_ids(self) -> tuple[str, ...]:
        if self.previous_client_id and self.previous_client_id != self.client_id:
            return (self.previous_client_id, self.client_id)
        return (self.client_id,)


DomainEvent = InvoiceChanged | ProjectChanged
Handler = Callable[[AsyncSession, DomainEvent], Awaitable[None]]


class EventBus:
    def __init__(self):
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type, handler: Handler) -> None:
        if handler in self._handlers[event_type]:
            self._handlers[event_type].remove(handler)

    def handlers_for(self, event_type: type) -> list[Handler]:
        return list(self._handlers.get(event_type, ()))

    async def publish(self, db: AsyncSession, event: DomainEvent) -> int:
        """Run every subscriber of ``type(event)``; return how many failed."""
        failed = 0
        for handler in self.handlers_for(type(event)):
            try:
                async with db.begin_nested():
                    await handler(db, event)
            except Exception:
                failed += 1
                logger.exception(
                    "Subscriber %s failed for %s (%s); rollups will be repaired "
                    "by the next maintenance pass",
                    getattr(handler, "__name__", handler),
                    type(event).__name__,
                    event.reason,
                )
        return failed


async def recompute_affected_clients(db: AsyncSession, event: DomainEvent) -> None:
    from app.services.aggregates import recompute_client_stats  # avoid circular

    for client_id in event.affected_client_ids:
        await recompute_client_stats(db, client_id)


async def invalidate_dashboard_cache(db: AsyncSession, event: DomainEvent) -> None:
    # keys go only after commit, see run_pending_invalidations
    invalidate_on_commit(db, "dashboard:*")


_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Process-wide bus with the default subscribers registered."""
    global _bus
    if _bus is None:
        _bus = EventBus()
        for event_type in (InvoiceChanged, ProjectChanged):
            _bus.subscribe(event_type, recompute_affected_clients)
            _bus.subscribe(event_type, invalidate_dashboard_cache)
    return _bus


async def publish(db: AsyncSession, event: DomainEvent) -> int:
    return await get_event_bus().publish(db, event)
