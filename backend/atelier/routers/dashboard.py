from fastapi import APIRouter, Depends

from atelier import reporting, schemas
from atelier.context import Actor
from atelier.deps import require_admin

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats", response_model=schemas.DashboardOut)
async def dashboard_stats(actor: Actor = Depends(require_admin)):
    return await reporting.dashboard_stats()
