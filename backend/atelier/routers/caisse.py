from typing import Optional

from fastapi import APIRouter, Depends, Query

from atelier import caisse, schemas
from atelier.context import Actor
from atelier.deps import require_admin
from atelier.enums import CaisseScope

router = APIRouter(prefix="/caisse", tags=["caisse"])


@router.get("/closures", response_model=list[schemas.ClosureOut])
async def list_closures(
    scope: Optional[CaisseScope] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(require_admin),
):
    return await caisse.list_closures(scope, limit, offset)


@router.get("/{scope}", response_model=schemas.CaissePeriod)
async def current_period(scope: CaisseScope, actor: Actor = Depends(require_admin)):
    return await caisse.current_period(scope)


@router.post("/{scope}/close", response_model=schemas.ClosureOut, status_code=201)
async def close_period(scope: CaisseScope, payload: schemas.ClosureCreate, actor: Actor = Depends(require_admin)):
    return await caisse.close_period(actor, scope, payload.notes)
