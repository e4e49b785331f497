"""Project and milestone mutations.

Projects feed the client rollups (total / active project counts), so every
mutation here publishes ``ProjectChanged``.  Completion rules:

  - status ``completed`` stamps ``actual_end_date`` and sets progress 100;
    leaving ``completed`` clears the end date
  - progress 100 means completed
  - every milestone completed means completed; milestone edits re-derive
    progress from the completion ratio

Completing a project never creates or changes invoices.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.middleware.exceptions import (
    ConflictError,
    ProjectValidationError,
    ResourceNotFoundError,
)
from app.models.client import Client
from app.models.invoice import Invoice
from app.models.project import (
    BILLING_TYPES,
    MILESTONE_STATUSES,
    PROJECT_STATUSES,
    Milestone,
    Project,
)
from app.services.aggregates import calculate_progress
from app.services.events import ProjectChanged, publish
from app.utils.activity import log_activity
from app.utils.clock import utcnow
from app.utils.money import to_money
from app.utils.numbering import generate_project_code

logger = logging.getLogger(__name__)

MILESTONE_FIELDS = ("name", "description", "status", "deadline", "billable", "amount")


def _check_choice(value: str, allowed: tuple, label: str) -> str:
    if value not in allowed:
        raise ProjectValidationError(
            f"Invalid {label} value '{value}'", details={"allowed": list(allowed)}
        )
    return value


def _check_schedule(start_date: date, deadline: date) -> None:
    if start_date and deadline and start_date >= deadline:
        raise ProjectValidationError("Deadline must be after start date")


def _milestone_values(data) -> dict:
    if hasattr(data, "model_dump"):
        data = data.model_dump(exclude_unset=True)
    values = {k: data[k] for k in MILESTONE_FIELDS if k in data and data[k] is not None}
    if not (values.get("name") or "").strip():
        raise ProjectValidationError("Milestone name is required")
    values["name"] = values["name"].strip()
    values["status"] = _check_choice(values.get("status", "pending"), MILESTONE_STATUSES, "milestone status")
    if "amount" in values:
        values["amount"] = to_money(values["amount"])
    if values["status"] == "completed":
        values["completed_date"] = utcnow()
    return values


def _complete(project: Project) -> None:
    project.status = "completed"
    project.progress = 100
    if project.actual_end_date is None:
        project.actual_end_date = utcnow()


def _sync_with_milestones(project: Project) -> None:
    """Progress from the milestone ratio; all completed ⇒ project completed."""
    milestones = project.milestones
    if not milestones:
        return
    project.progress = calculate_progress(milestones)
    if all(m.status == "completed" for m in milestones):
        _complete(project)


async def _changed(
    db: AsyncSession,
    project: Project,
    action: str,
    summary: str,
    actor_id: str | None = None,
    details: dict | None = None,
    previous_client_id: str | None = None,
) -> Project:
    await log_activity(
        db, actor_id,
        action=action,
        entity_type="project",
        entity_id=project.id,
        entity_code=project.project_code,
        summary=summary,
        details=details,
    )
    await db.flush()
    await publish(db, ProjectChanged(project.id, project.client_id, action, previous_client_id))
    return project


async def _get_client(db: AsyncSession, client_id: str) -> Client:
    client = await db.get(Client, client_id)
    if not client:
        raise ResourceNotFoundError("Client", client_id)
    return client


async def _active_invoice_count(db: AsyncSession, project_id: str) -> int:
    return (await db.execute(
        select(func.count(Invoice.id)).where(
            Invoice.project_id == project_id,
            Invoice.is_active == True,  # noqa: E712
        )
    )).scalar() or 0


async def get_project(db: AsyncSession, project_id: str) -> Project:
    project = (await db.execute(
        select(Project).where(Project.id == project_id)
    )).scalar_one_or_none()
    if not project:
        raise ResourceNotFoundError("Project", project_id)
    return project


async def list_projects(
    db: AsyncSession,
    *,
    client_id: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Project], int]:
    filters = []
    if client_id:
        filters.append(Project.client_id == client_id)
    if status and status != "all":
        filters.append(Project.status == _check_choice(status, PROJECT_STATUSES, "status"))

    total = (await db.execute(select(func.count(Project.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        select(Project)
        .where(*filters)
        .order_by(Project.created_at.desc(), Project.project_code.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def create_project(
    db: AsyncSession,
    *,
    client_id: str,
    title: str,
    start_date: date,
    deadline: date,
    description: str | None = None,
    status: str = "planned",
    priority: str = "medium",
    billing_type: str = "fixed",
    budget=None,
    milestones: list | None = None,
    actor_id: str | None = None,
) -> Project:
    if not (title or "").strip():
        raise ProjectValidationError("Title is required")
    _check_schedule(start_date, deadline)
    _check_choice(status, PROJECT_STATUSES, "status")
    _check_choice(billing_type, BILLING_TYPES, "billing type")
    milestone_rows = [
        Milestone(position=i, **_milestone_values(m))
        for i, m in enumerate(milestones or [])
    ]
    client = await _get_client(db, client_id)

    project = Project(
        project_code=await generate_project_code(db),
        title=title.strip(),
        client_id=client.id,
        description=description,
        status=status,
        progress=0,
        priority=priority,
        start_date=start_date,
        deadline=deadline,
        billing_type=billing_type,
        budget=to_money(budget) if budget is not None else None,
        milestones=milestone_rows,
    )
    if status == "completed":
        _complete(project)
    _sync_with_milestones(project)

    db.add(project)
    await db.flush()
    logger.info("Project %s created for client %s", project.project_code, client.id)
    return await _changed(
        db, project, "created", f"Created project {project.project_code}: {project.title}", actor_id,
    )


async def update_project(
    db: AsyncSession,
    project_id: str,
    *,
    title: str | None = None,
    description: str | None = None,
    priority: str | None = None,
    start_date: date | None = None,
    deadline: date | None = None,
    billing_type: str | None = None,
    budget=None,
    client_id: str | None = None,
    milestones: list | None = None,
    actor_id: str | None = None,
) -> Project:
    """Edit project fields.

    Moving the project to another client recomputes both clients and is
    refused while active invoices still bill it; passing ``milestones``
    replaces the whole list.
    """
    project = await get_project(db, project_id)
    if title is not None and not title.strip():
        raise ProjectValidationError("Title is required")
    _check_schedule(start_date or project.start_date, deadline or project.deadline)
    if billing_type is not None:
        _check_choice(billing_type, BILLING_TYPES, "billing type")
    new_rows = None
    if milestones is not None:
        new_rows = [Milestone(position=i, **_milestone_values(m)) for i, m in enumerate(milestones)]

    previous_client_id = None
    if client_id and client_id != project.client_id:
        await _get_client(db, client_id)
        billed = await _active_invoice_count(db, project.id)
        if billed:
            raise ConflictError(
                f"Project {project.project_code} has {billed} active invoice(s) "
                "for its current client; it cannot change client",
                error_code="PROJECT_HAS_INVOICES",
            )
        previous_client_id = project.client_id
        project.client_id = client_id

    if title is not None:
        project.title = title.strip()
    if description is not None:
        project.description = description
    if priority is not None:
        project.priority = priority
    if start_date is not None:
        project.start_date = start_date
    if deadline is not None:
        project.deadline = deadline
    if billing_type is not None:
        project.billing_type = billing_type
    if budget is not None:
        project.budget = to_money(budget)

    if new_rows is not None:
        project.milestones.clear()
        await db.flush()
        project.milestones.extend(new_rows)
        if new_rows:
            _sync_with_milestones(project)
        else:
            project.progress = 0

    return await _changed(
        db, project, "updated", f"Updated project {project.project_code}", actor_id,
        {"previous_client_id": previous_client_id} if previous_client_id else None,
        previous_client_id=previous_client_id,
    )


async def set_project_status(
    db: AsyncSession, project_id: str, status: str, *, actor_id: str | None = None
) -> Project:
    _check_choice(status, PROJECT_STATUSES, "status")
    project = await get_project(db, project_id)
    previous = project.status

    if status == "completed":
        project.actual_end_date = None
        _complete(project)
    else:
        project.status = status
        if previous == "completed":
            project.actual_end_date = None

    return await _changed(
        db, project, "status_changed",
        f"Status of {project.project_code} changed from {previous} to {status}",
        actor_id, {"from": previous, "to": status},
    )


async def update_progress(
    db: AsyncSession, project_id: str, progress: int, *, actor_id: str | None = None
) -> Project:
    if progress is None or not 0 <= progress <= 100:
        raise ProjectValidationError("Valid progress value (0-100) is required")
    project = await get_project(db, project_id)

    project.progress = progress
    if progress == 100:
        _complete(project)

    return await _changed(
        db, project, "progress_updated",
        f"Progress of {project.project_code} set to {progress}%", actor_id,
    )


async def add_milestone(
    db: AsyncSession, project_id: str, data, *, actor_id: str | None = None
) -> Project:
    values = _milestone_values(data)
    project = await get_project(db, project_id)

    project.milestones.append(Milestone(position=len(project.milestones), **values))
    _sync_with_milestones(project)

    return await _changed(
        db, project, "milestone_added",
        f"Added milestone '{values['name']}' to {project.project_code}", actor_id,
    )


async def update_milestone(
    db: AsyncSession, project_id: str, milestone_id: str, data, *, actor_id: str | None = None
) -> Project:
    project = await get_project(db, project_id)
    milestone = next((m for m in project.milestones if m.id == milestone_id), None)
    if milestone is None:
        raise ResourceNotFoundError("Milestone", milestone_id)

    if hasattr(data, "model_dump"):
        data = data.model_dump(exclude_unset=True)
    changes = {k: v for k, v in data.items() if k in MILESTONE_FIELDS}
    if "status" in changes:
        _check_choice(changes["status"], MILESTONE_STATUSES, "milestone status")
    if "name" in changes and not (changes["name"] or "").strip():
        raise ProjectValidationError("Milestone name is required")
    if "amount" in changes and changes["amount"] is not None:
        changes["amount"] = to_money(changes["amount"])

    previous = milestone.status
    for field, value in changes.items():
        setattr(milestone, field, value)
    if milestone.status == "completed" and milestone.completed_date is None:
        milestone.completed_date = utcnow()
    elif milestone.status != "completed":
        milestone.completed_date = None

    _sync_with_milestones(project)
    return await _changed(
        db, project, "milestone_updated",
        f"Milestone '{milestone.name}' on {project.project_code}: {previous} -> {milestone.status}",
        actor_id,
    )


async def delete_project(
    db: AsyncSession, project_id: str, *, actor_id: str | None = None
) -> None:
    """Hard delete.  Refused while any active invoice bills this project."""
    project = await get_project(db, project_id)

    billed = await _active_invoice_count(db, project_id)
    if billed:
        raise ConflictError(
            f"Project {project.project_code} has {billed} active invoice(s); "
            "delete or settle them first",
            error_code="PROJECT_HAS_INVOICES",
        )

    await db.execute(
        update(Invoice)
        .where(Invoice.project_id == project_id)
        .values(project_id=None)
        .execution_options(synchronize_session=False)
    )

    project_code, client_id = project.project_code, project.client_id
    await db.delete(project)
    await log_activity(
        db, actor_id,
        action="deleted",
        entity_type="project",
        entity_id=project_id,
        entity_code=project_code,
        summary=f"Deleted project {project_code}",
    )
    await db.flush()
    logger.info("Project %s deleted", project_code)
    await publish(db, ProjectChanged(project_id, client_id, "deleted"))
