"""Client router.

Endpoints:
    GET   /api/clients/                        List clients
    POST  /api/clients/                        Create client
    GET   /api/clients/{id}                    Single client with stored rollups
    POST  /api/clients/{id}/recompute-stats    Recompute rollups now
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.middleware.exceptions import ConflictError, ResourceNotFoundError
from app.models.client import Client
from app.schemas.client import ClientCreate, ClientOut, ClientStatsOut
from app.schemas.common import PaginatedResponse
from app.services.aggregates import recompute_client_stats

router = APIRouter()


@router.get("/", response_model=PaginatedResponse[ClientOut])
async def list_clients(
    status: str | None = None,
    search: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    filters = []
    if status:
        filters.append(Client.status == status)
    if search:
        pattern = f"%{search}%"
        filters.append(Client.name.ilike(pattern) | Client.company_name.ilike(pattern))

    total = (await db.execute(select(func.count(Client.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        select(Client).where(*filters).order_by(Client.name).limit(limit).offset(offset)
    )
    return PaginatedResponse[ClientOut](
        items=[ClientOut.model_validate(c) for c in result.scalars().all()],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/", response_model=ClientOut, status_code=201)
async def create_client(
    body: ClientCreate,
    db: AsyncSession = Depends(get_db),
):
    existing = await db.execute(select(Client.id).where(Client.email == body.email))
    if existing.scalar_one_or_none():
        raise ConflictError(f"A client with email {body.email} already exists", "DUPLICATE_RECORD")

    client = Client(**body.model_dump())
    db.add(client)
    await db.flush()
    return ClientOut.model_validate(client)


@router.get("/{client_id}", response_model=ClientOut)
async def get_client(client_id: str, db: AsyncSession = Depends(get_db)):
    client = await db.get(Client, client_id)
    if not client:
        raise ResourceNotFoundError("Client", client_id)
    return ClientOut.model_validate(client)


@router.post("/{client_id}/recompute-stats", response_model=ClientStatsOut)
async def recompute_stats(client_id: str, db: AsyncSession = Depends(get_db)):
    """Recompute the client's rollups from its projects and active invoices."""
    stats = await recompute_client_stats(db, client_id)
    return ClientStatsOut.model_validate(stats)
