from typing import Optional

from fastapi import APIRouter, Depends, Query

from atelier import invoicing, schemas
from atelier.context import Actor
from atelier.deps import require_admin

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.get("/_list", response_model=list[schemas.InvoiceSummary])
async def list_invoices(
    client_id: Optional[int] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(require_admin),
):
    return await invoicing.list_invoices(client_id=client_id, limit=limit, offset=offset)


@router.get("/by-id/{invoice_id:int}", response_model=schemas.InvoiceOut)
async def get_invoice_by_id(invoice_id: int, actor: Actor = Depends(require_admin)):
    return await invoicing.get_invoice(invoice_id)


@router.post("/from-devis", response_model=schemas.InvoiceOut, status_code=201)
async def create_from_devis(payload: schemas.InvoiceFromDevis, actor: Actor = Depends(require_admin)):
    return await invoicing.create_invoice_from_quotes(actor, payload.devis_ids)


@router.post("/direct", response_model=schemas.InvoiceOut, status_code=201)
async def create_direct(payload: schemas.InvoiceDirectCreate, actor: Actor = Depends(require_admin)):
    return await invoicing.create_direct_invoice(
        actor, payload.client_id, [it.model_dump() for it in payload.items]
    )
