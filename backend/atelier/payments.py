"""Registre des paiements.

Un paiement vise une facture OU un devis VALIDATED. Le montant restant est
recalculé à partir de l'ensemble des paiements, dans la transaction qui
insère le nouveau paiement et sur une cible verrouillée.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, func, or_

from atelier import caisse, invoicing, models, quotes
from atelier.clock import as_utc, utcnow
from atelier.context import Actor
from atelier.db import database, retry_on_lock, row_to_dict
from atelier.enums import DevisStatus
from atelier.errors import NotFoundError, OverpaymentError, StateConflictError, ValidationError

log = logging.getLogger("atelier.payments")

PAYMENT_COLS = quotes.PAYMENT_COLS


async def _devis_paid_cents(devis_id: int) -> int:
    ptbl = models.Payment.__table__
    paid = await database.fetch_val(
        select(func.coalesce(func.sum(ptbl.c.amount_cents), 0)).where(ptbl.c.devis_id == devis_id)
    )
    return int(paid or 0)


async def _lock_target(invoice_id: Optional[int], devis_id: Optional[int]) -> tuple[int, int]:
    """Verrouille la cible et renvoie (total, déjà payé)."""
    if invoice_id is not None:
        itbl = models.Invoice.__table__
        row = await database.fetch_one(select(itbl).where(itbl.c.id == invoice_id).with_for_update())
        if not row:
            raise NotFoundError("Invoice not found")
        return int(row["total_cents"]), await invoicing.invoice_paid_cents(invoice_id)

    dtbl = models.Devis.__table__
    row = await database.fetch_one(select(dtbl).where(dtbl.c.id == devis_id).with_for_update())
    if not row:
        raise NotFoundError("Quote not found")
    if row["status"] != DevisStatus.VALIDATED.value:
        hint = "; pay its invoice instead" if row["status"] == DevisStatus.INVOICED.value else ""
        raise StateConflictError(f"Quote {row['reference']} is {row['status']}: payments need a VALIDATED quote{hint}")
    return int(row["total_cents"]), await _devis_paid_cents(devis_id)


async def get_payment(payment_id: int) -> dict:
    ptbl = models.Payment.__table__
    row = await database.fetch_one(select(ptbl).where(ptbl.c.id == payment_id))
    if not row:
        raise NotFoundError("Payment not found")
    return row_to_dict(row, PAYMENT_COLS)


@retry_on_lock
async def apply_payment(
    actor: Actor,
    amount_cents: int,
    invoice_id: Optional[int] = None,
    devis_id: Optional[int] = None,
    payment_date: Optional[datetime] = None,
    payment_method: Optional[str] = None,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    if (invoice_id is None) == (devis_id is None):
        raise ValidationError("A payment targets exactly one invoice or one quote")
    amount = int(amount_cents)
    if amount <= 0:
        raise ValidationError("Payment amount must be > 0")
    when = as_utc(payment_date) if payment_date else utcnow()
    ptbl = models.Payment.__table__

    async with database.transaction():
        await caisse.ensure_open(when, actor.role, what="payment")
        total, paid = await _lock_target(invoice_id, devis_id)
        remaining = total - paid
        if amount > remaining:
            log.warning(
                "overpayment_rejected invoice_id=%s devis_id=%s amount=%s remaining=%s actor=%s",
                invoice_id, devis_id, amount, remaining, actor.id,
            )
            raise OverpaymentError(amount, max(remaining, 0))
        payment_id = await database.execute(
            ptbl.insert().values(
                invoice_id=invoice_id,
                devis_id=devis_id,
                amount_cents=amount,
                payment_date=when,
                payment_method=payment_method,
                reference=reference,
                notes=notes,
                created_by_id=actor.id,
                created_at=utcnow(),
            )
        )
    log.info(
        "payment_applied payment_id=%s invoice_id=%s devis_id=%s amount=%s remaining=%s actor=%s",
        payment_id, invoice_id, devis_id, amount, remaining - amount, actor.id,
    )
    return await get_payment(payment_id)


@retry_on_lock
async def delete_payment(actor: Actor, payment_id: int) -> None:
    ptbl = models.Payment.__table__
    utbl = models.User.__table__
    async with database.transaction():
        payment = await get_payment(payment_id)
        if payment["invoice_id"] is None:
            raise StateConflictError("Only invoice payments can be deleted")
        creator_role = await database.fetch_val(select(utbl.c.role).where(utbl.c.id == payment["created_by_id"]))
        await caisse.ensure_open(payment["payment_date"], creator_role or actor.role, what="payment")
        await database.execute(ptbl.delete().where(ptbl.c.id == payment_id))
    log.info(
        "payment_deleted payment_id=%s invoice_id=%s amount=%s actor=%s",
        payment_id, payment["invoice_id"], payment["amount_cents"], actor.id,
    )


async def list_invoice_payments(invoice_id: int) -> list[dict]:
    """Paiements de la facture, acomptes versés sur ses devis compris."""
    itbl = models.Invoice.__table__
    dtbl = models.Devis.__table__
    ptbl = models.Payment.__table__
    if not await database.fetch_one(select(itbl.c.id).where(itbl.c.id == invoice_id)):
        raise NotFoundError("Invoice not found")
    linked = select(dtbl.c.id).where(dtbl.c.invoice_id == invoice_id)
    rows = await database.fetch_all(
        select(ptbl)
        .where(or_(ptbl.c.invoice_id == invoice_id, ptbl.c.devis_id.in_(linked)))
        .order_by(ptbl.c.payment_date.asc(), ptbl.c.id.asc())
    )
    return [row_to_dict(r, PAYMENT_COLS) for r in rows]


async def list_devis_payments(devis_id: int) -> list[dict]:
    dtbl = models.Devis.__table__
    ptbl = models.Payment.__table__
    if not await database.fetch_one(select(dtbl.c.id).where(dtbl.c.id == devis_id)):
        raise NotFoundError("Quote not found")
    rows = await database.fetch_all(
        select(ptbl).where(ptbl.c.devis_id == devis_id).order_by(ptbl.c.payment_date.asc(), ptbl.c.id.asc())
    )
    return [row_to_dict(r, PAYMENT_COLS) for r in rows]


async def invoice_payment_stats(invoice_id: int) -> dict:
    invoice = await invoicing.get_invoice(invoice_id)
    total, paid = invoice["total_cents"], invoice["paid_cents"]
    percent = round(paid * 100.0 / total, 2) if total > 0 else 100.0
    return {
        "invoice_id": invoice_id,
        "total_cents": total,
        "paid_cents": paid,
        "remaining_cents": total - paid,
        "percent_paid": percent,
        "is_paid": paid >= total,
        "status": invoice["status"],
    }
