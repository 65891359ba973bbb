from __future__ import annotations

import logging
import math
import os
from typing import Iterable, Optional

from sqlalchemy import select, func, or_

from atelier import models, quotes
from atelier.clock import utcnow
from atelier.context import Actor
from atelier.db import database, retry_on_lock, row_to_dict
from atelier.enums import DevisStatus, InvoiceStatus
from atelier.errors import NotFoundError, StateConflictError, ValidationError
from atelier.pricing import to_cents, _dec

log = logging.getLogger("atelier.invoicing")

CURRENCY = os.getenv("CURRENCY", "TND")
INVOICE_COLS = ("id", "reference", "total_cents", "currency", "client_id", "created_by_id", "created_at")
ITEM_COLS = ("id", "description", "quantity", "unit_price_cents", "total_cents")


def invoice_status(total_cents: int, paid_cents: int) -> InvoiceStatus:
    if paid_cents <= 0:
        return InvoiceStatus.PENDING
    if paid_cents < total_cents:
        return InvoiceStatus.PARTIAL
    return InvoiceStatus.PAID


async def invoice_paid_cents(invoice_id: int) -> int:
    """Règlements de la facture + acomptes versés sur les devis qu'elle regroupe."""
    ptbl = models.Payment.__table__
    dtbl = models.Devis.__table__
    linked = select(dtbl.c.id).where(dtbl.c.invoice_id == invoice_id)
    paid = await database.fetch_val(
        select(func.coalesce(func.sum(ptbl.c.amount_cents), 0)).where(
            or_(ptbl.c.invoice_id == invoice_id, ptbl.c.devis_id.in_(linked))
        )
    )
    return int(paid or 0)


def _with_payment_state(invoice: dict, paid: int) -> dict:
    invoice["paid_cents"] = paid
    invoice["remaining_cents"] = invoice["total_cents"] - paid
    invoice["status"] = invoice_status(invoice["total_cents"], paid).value
    return invoice


async def get_invoice(invoice_id: int) -> dict:
    itbl = models.Invoice.__table__
    ctbl = models.Client.__table__
    ltbl = models.InvoiceItem.__table__
    dtbl = models.Devis.__table__

    row = await database.fetch_one(
        select(itbl, ctbl.c.name.label("client_name"))
        .select_from(itbl.join(ctbl, ctbl.c.id == itbl.c.client_id))
        .where(itbl.c.id == invoice_id)
    )
    if not row:
        raise NotFoundError("Invoice not found")
    invoice = {**row_to_dict(row, INVOICE_COLS), "client_name": row["client_name"]}

    items = await database.fetch_all(
        select(ltbl).where(ltbl.c.invoice_id == invoice_id).order_by(ltbl.c.id.asc())
    )
    invoice["items"] = [row_to_dict(r, ITEM_COLS) for r in items]
    devis = await database.fetch_all(
        select(dtbl.c.id, dtbl.c.reference, dtbl.c.total_cents, dtbl.c.status)
        .where(dtbl.c.invoice_id == invoice_id)
        .order_by(dtbl.c.id.asc())
    )
    invoice["devis"] = [row_to_dict(r, ("id", "reference", "total_cents", "status")) for r in devis]
    return _with_payment_state(invoice, await invoice_paid_cents(invoice_id))


async def list_invoices(client_id: Optional[int] = None, limit: int = 50, offset: int = 0) -> list[dict]:
    itbl = models.Invoice.__table__
    ctbl = models.Client.__table__
    stmt = (
        select(itbl, ctbl.c.name.label("client_name"))
        .select_from(itbl.join(ctbl, ctbl.c.id == itbl.c.client_id))
        .order_by(itbl.c.id.desc())
        .limit(limit)
        .offset(offset)
    )
    if client_id is not None:
        stmt = stmt.where(itbl.c.client_id == client_id)
    rows = await database.fetch_all(stmt)
    out = []
    for r in rows:
        invoice = {**row_to_dict(r, INVOICE_COLS), "client_name": r["client_name"]}
        out.append(_with_payment_state(invoice, await invoice_paid_cents(invoice["id"])))
    return out


@retry_on_lock
async def create_invoice_from_quotes(actor: Actor, devis_ids: Iterable[int]) -> dict:
    """Fige des devis VALIDATED en une facture; tout ou rien."""
    ids = list(dict.fromkeys(int(i) for i in devis_ids))
    if not ids:
        raise ValidationError("At least one quote is required")
    dtbl = models.Devis.__table__
    itbl = models.Invoice.__table__

    async with database.transaction():
        rows = await database.fetch_all(
            select(dtbl).where(dtbl.c.id.in_(ids)).order_by(dtbl.c.id.asc()).with_for_update()
        )
        found = {r["id"] for r in rows}
        missing = [i for i in ids if i not in found]
        if missing:
            raise NotFoundError(f"Quote(s) not found: {', '.join(str(i) for i in missing)}")
        not_ready = [r["reference"] for r in rows if r["status"] != DevisStatus.VALIDATED.value]
        if not_ready:
            raise StateConflictError(f"Only VALIDATED quotes can be invoiced: {', '.join(not_ready)}")
        clients = {r["client_id"] for r in rows}
        if len(clients) > 1:
            raise ValidationError("All quotes of an invoice must belong to the same client")

        total = sum(int(r["total_cents"]) for r in rows)
        invoice_id, reference = await quotes.insert_numbered(
            itbl, "FAC",
            total_cents=total,
            currency=CURRENCY,
            client_id=clients.pop(),
            created_by_id=actor.id,
            created_at=utcnow(),
        )
        for r in rows:
            await quotes.mark_invoiced(r, invoice_id)

    log.info(
        "invoice_created_from_quotes invoice_id=%s ref=%s quotes=%s total=%s actor=%s",
        invoice_id, reference, ids, total, actor.id,
    )
    return await get_invoice(invoice_id)


@retry_on_lock
async def create_direct_invoice(actor: Actor, client_id: int, items: Iterable[dict]) -> dict:
    """Facture libre: items = [{description, quantity, unit_price_cents}]."""
    items = list(items)
    if not items:
        raise ValidationError("Invoice needs at least one item")
    priced = []
    for it in items:
        quantity = float(it["quantity"])
        unit_price = int(it["unit_price_cents"])
        if not str(it.get("description") or "").strip():
            raise ValidationError("Item description is required")
        if not math.isfinite(quantity) or quantity <= 0:
            raise ValidationError("Quantity must be a finite number > 0")
        if unit_price <= 0:
            raise ValidationError("Unit price must be > 0")
        priced.append((it["description"], quantity, unit_price, to_cents(_dec(quantity) * unit_price)))

    ctbl = models.Client.__table__
    itbl = models.Invoice.__table__
    ltbl = models.InvoiceItem.__table__
    total = sum(p[3] for p in priced)
    async with database.transaction():
        if not await database.fetch_one(select(ctbl.c.id).where(ctbl.c.id == client_id)):
            raise NotFoundError("Client not found")
        invoice_id, reference = await quotes.insert_numbered(
            itbl, "FAC",
            total_cents=total,
            currency=CURRENCY,
            client_id=client_id,
            created_by_id=actor.id,
            created_at=utcnow(),
        )
        for description, quantity, unit_price, line_total in priced:
            await database.execute(
                ltbl.insert().values(
                    invoice_id=invoice_id,
                    description=description,
                    quantity=quantity,
                    unit_price_cents=unit_price,
                    total_cents=line_total,
                )
            )
    log.info("invoice_created_direct invoice_id=%s ref=%s items=%s total=%s actor=%s",
             invoice_id, reference, len(priced), total, actor.id)
    return await get_invoice(invoice_id)
