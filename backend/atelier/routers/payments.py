from fastapi import APIRouter, Depends

from atelier import payments, schemas
from atelier.context import Actor
from atelier.deps import check_devis_access, get_current_actor, require_admin

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/invoice/{invoice_id}", response_model=schemas.PaymentOut, status_code=201)
async def add_invoice_payment(invoice_id: int, payload: schemas.PaymentCreate, actor: Actor = Depends(require_admin)):
    return await payments.apply_payment(actor, invoice_id=invoice_id, **payload.model_dump())


@router.get("/invoice/{invoice_id}", response_model=list[schemas.PaymentOut])
async def list_invoice_payments(invoice_id: int, actor: Actor = Depends(require_admin)):
    return await payments.list_invoice_payments(invoice_id)


@router.get("/invoice/{invoice_id}/stats", response_model=schemas.PaymentStats)
async def invoice_payment_stats(invoice_id: int, actor: Actor = Depends(require_admin)):
    return await payments.invoice_payment_stats(invoice_id)


@router.get("/devis/{devis_id}", response_model=list[schemas.PaymentOut])
async def list_devis_payments(devis_id: int, actor: Actor = Depends(get_current_actor)):
    await check_devis_access(devis_id, actor)
    return await payments.list_devis_payments(devis_id)


@router.delete("/{payment_id}", status_code=204)
async def delete_payment(payment_id: int, actor: Actor = Depends(require_admin)):
    await payments.delete_payment(actor, payment_id)
    return None
