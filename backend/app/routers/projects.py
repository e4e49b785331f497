"""Project router.

Endpoints:
    GET    /api/projects/                                  List projects
    POST   /api/projects/                                  Create project
    GET    /api/projects/{id}                              Project + derived health
    PATCH  /api/projects/{id}                              Edit fields / replace milestones
    PATCH  /api/projects/{id}/status                       Change status
    PATCH  /api/projects/{id}/progress                     Set progress (100 completes)
    POST   /api/projects/{id}/milestones                   Add milestone
    PATCH  /api/projects/{id}/milestones/{milestone_id}    Edit milestone
    DELETE /api/projects/{id}                              Hard delete (no active invoices)
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.project import Project
from app.schemas.common import PaginatedResponse
from app.schemas.project import (
    MilestoneIn,
    MilestoneUpdate,
    ProgressUpdate,
    ProjectCreate,
    ProjectHealthOut,
    ProjectOut,
    ProjectStatusUpdate,
    ProjectUpdate,
)
from app.services import projects as project_service
from app.services.aggregates import project_health

router = APIRouter()


def _out(project: Project) -> ProjectOut:
    out = ProjectOut.model_validate(project)
    out.health = ProjectHealthOut.model_validate(project_health(project))
    return out


@router.get("/", response_model=PaginatedResponse[ProjectOut])
async def list_projects(
    client_id: str | None = None,
    status: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    items, total = await project_service.list_projects(
        db, client_id=client_id, status=status, limit=limit, offset=offset,
    )
    return PaginatedResponse[ProjectOut](
        items=[_out(p) for p in items], total=total, limit=limit, offset=offset,
    )


@router.post("/", response_model=ProjectOut, status_code=201)
async def create_project(body: ProjectCreate, db: AsyncSession = Depends(get_db)):
    project = await project_service.create_project(db, **body.model_dump())
    return _out(project)


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project(project_id: str, db: AsyncSession = Depends(get_db)):
    return _out(await project_service.get_project(db, project_id))


@router.patch("/{project_id}", response_model=ProjectOut)
async def update_project(
    project_id: str, body: ProjectUpdate, db: AsyncSession = Depends(get_db),
):
    project = await project_service.update_project(
        db, project_id, **body.model_dump(exclude_unset=True),
    )
    return _out(project)


@router.patch("/{project_id}/status", response_model=ProjectOut)
async def update_status(
    project_id: str, body: ProjectStatusUpdate, db: AsyncSession = Depends(get_db),
):
    return _out(await project_service.set_project_status(db, project_id, body.status))


@router.patch("/{project_id}/progress", response_model=ProjectOut)
async def update_progress(
    project_id: str, body: ProgressUpdate, db: AsyncSession = Depends(get_db),
):
    return _out(await project_service.update_progress(db, project_id, body.progress))


@router.post("/{project_id}/milestones", response_model=ProjectOut, status_code=201)
async def add_milestone(
    project_id: str, body: MilestoneIn, db: AsyncSession = Depends(get_db),
):
    return _out(await project_service.add_milestone(db, project_id, body))


@router.patch("/{project_id}/milestones/{milestone_id}", response_model=ProjectOut)
async def update_milestone(
    project_id: str,
    milestone_id: str,
    body: MilestoneUpdate,
    db: AsyncSession = Depends(get_db),
):
    return _out(await project_service.update_milestone(db, project_id, milestone_id, body))


@router.delete("/{project_id}", status_code=204)
async def delete_project(project_id: str, db: AsyncSession = Depends(get_db)):
    await project_service.delete_project(db, project_id)
