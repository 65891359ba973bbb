from typing import Optional

from fastapi import APIRouter, Depends, Query

from atelier import payments, quotes, schemas
from atelier.context import Actor
from atelier.deps import check_devis_access, get_current_actor, require_admin
from atelier.enums import DevisStatus
from atelier.errors import PermissionDeniedError
from atelier.pricing import build_line_input

router = APIRouter(prefix="/devis", tags=["devis"])


def _line_input(payload: schemas.LineCreate, actor: Actor):
    if not actor.can_use(payload.machine_type):
        raise PermissionDeniedError(f"Machine {payload.machine_type.value} is not assigned to you")
    return build_line_input(payload.machine_type, payload.model_dump(exclude={"machine_type", "description"}))


@router.post("/", response_model=schemas.DevisOut, status_code=201)
async def create_devis(payload: schemas.DevisCreate, actor: Actor = Depends(get_current_actor)):
    return await quotes.create_quote(actor, payload.client_id, payload.notes)


@router.get("/", response_model=list[schemas.DevisSummary])
async def list_devis(
    status: Optional[DevisStatus] = None,
    client_id: Optional[int] = None,
    created_by_id: Optional[int] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
):
    if not actor.is_admin:
        created_by_id = actor.id
    return await quotes.list_quotes(status, client_id, created_by_id, limit, offset)


@router.post("/price-preview", response_model=schemas.LinePriceOut)
async def price_preview(payload: schemas.LineCreate, actor: Actor = Depends(get_current_actor)):
    priced = await quotes.preview_line_price(_line_input(payload, actor))
    return {
        "unit_price_cents": priced.unit_price_cents,
        "material_cost_cents": priced.material_cost_cents,
        "line_total_cents": priced.line_total_cents,
    }


@router.get("/{devis_id}", response_model=schemas.DevisOut)
async def get_devis(devis_id: int, actor: Actor = Depends(get_current_actor)):
    await check_devis_access(devis_id, actor)
    return await quotes.get_quote(devis_id)


@router.post("/{devis_id}/lines", response_model=schemas.DevisOut)
async def add_line(devis_id: int, payload: schemas.LineCreate, actor: Actor = Depends(get_current_actor)):
    await check_devis_access(devis_id, actor)
    return await quotes.add_line(actor, devis_id, _line_input(payload, actor), payload.description)


@router.delete("/{devis_id}/lines/{line_id}", response_model=schemas.DevisOut)
async def remove_line(devis_id: int, line_id: int, actor: Actor = Depends(get_current_actor)):
    await check_devis_access(devis_id, actor)
    return await quotes.remove_line(actor, devis_id, line_id)


@router.post("/{devis_id}/services", response_model=schemas.DevisOut)
async def add_service(devis_id: int, payload: schemas.DevisServiceAdd, actor: Actor = Depends(get_current_actor)):
    await check_devis_access(devis_id, actor)
    return await quotes.add_service(actor, devis_id, payload.service_id)


@router.delete("/{devis_id}/services/{service_id}", response_model=schemas.DevisOut)
async def remove_service(devis_id: int, service_id: int, actor: Actor = Depends(get_current_actor)):
    await check_devis_access(devis_id, actor)
    return await quotes.remove_service(actor, devis_id, service_id)


@router.post("/{devis_id}/validate", response_model=schemas.DevisOut)
async def validate_devis(devis_id: int, actor: Actor = Depends(require_admin)):
    return await quotes.validate_quote(actor, devis_id)


@router.post("/{devis_id}/cancel", response_model=schemas.DevisOut)
async def cancel_devis(devis_id: int, actor: Actor = Depends(require_admin)):
    return await quotes.cancel_quote(actor, devis_id)


@router.delete("/{devis_id}", status_code=204)
async def delete_devis(devis_id: int, actor: Actor = Depends(require_admin)):
    await quotes.delete_quote(actor, devis_id)
    return None


@router.post("/{devis_id}/payments", response_model=schemas.PaymentOut, status_code=201)
async def add_devis_payment(devis_id: int, payload: schemas.PaymentCreate, actor: Actor = Depends(get_current_actor)):
    await check_devis_access(devis_id, actor)
    return await payments.apply_payment(actor, devis_id=devis_id, **payload.model_dump())
