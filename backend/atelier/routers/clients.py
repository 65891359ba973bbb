from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func

from atelier import balances, models, schemas
from atelier.clock import utcnow
from atelier.context import Actor
from atelier.db import database, row_to_dict
from atelier.deps import get_current_actor, require_admin
from atelier.errors import NotFoundError, StateConflictError

router = APIRouter(prefix="/clients", tags=["clients"])

CLIENT_COLS = ("id", "name", "phone", "email", "address", "notes", "created_at", "updated_at")


async def _get_client(client_id: int) -> dict:
    tbl = models.Client.__table__
    row = await database.fetch_one(select(tbl).where(tbl.c.id == client_id))
    if not row:
        raise NotFoundError("Client not found")
    return row_to_dict(row, CLIENT_COLS)


@router.post("/", response_model=schemas.ClientOut, status_code=201)
async def create_client(payload: schemas.ClientCreate, actor: Actor = Depends(get_current_actor)):
    tbl = models.Client.__table__
    now = utcnow()
    cid = await database.execute(
        tbl.insert().values(**payload.model_dump(), created_at=now, updated_at=now)
    )
    return await _get_client(cid)


@router.get("/", response_model=list[schemas.ClientOut])
async def list_clients(
    q: str | None = Query(default=None, description="Filter by name contains"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
):
    tbl = models.Client.__table__
    stmt = select(tbl).order_by(tbl.c.name).limit(limit).offset(offset)
    if q:
        stmt = stmt.where(tbl.c.name.ilike(f"%{q}%"))
    rows = await database.fetch_all(stmt)
    return [row_to_dict(r, CLIENT_COLS) for r in rows]


@router.get("/{client_id}", response_model=schemas.ClientOut)
async def get_client(client_id: int, actor: Actor = Depends(get_current_actor)):
    return await _get_client(client_id)


@router.get("/{client_id}/balance", response_model=schemas.ClientBalance)
async def client_balance(client_id: int, actor: Actor = Depends(get_current_actor)):
    return await balances.get_client_balance(client_id)


@router.patch("/{client_id}", response_model=schemas.ClientOut)
async def update_client(client_id: int, payload: schemas.ClientUpdate, actor: Actor = Depends(get_current_actor)):
    tbl = models.Client.__table__
    await _get_client(client_id)
    values = payload.model_dump(exclude_unset=True)
    await database.execute(tbl.update().where(tbl.c.id == client_id).values(**values, updated_at=utcnow()))
    return await _get_client(client_id)


@router.delete("/{client_id}", status_code=204)
async def delete_client(client_id: int, actor: Actor = Depends(require_admin)):
    ctbl = models.Client.__table__
    dtbl = models.Devis.__table__
    itbl = models.Invoice.__table__
    await _get_client(client_id)
    # un client référencé garde son historique
    for tbl in (dtbl, itbl):
        n = await database.fetch_val(select(func.count()).select_from(tbl).where(tbl.c.client_id == client_id))
        if int(n or 0) > 0:
            raise StateConflictError("Client has quotes or invoices and cannot be deleted")
    await database.execute(ctbl.delete().where(ctbl.c.id == client_id))
    return None
