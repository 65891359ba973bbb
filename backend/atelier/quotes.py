"""Agrégat devis: lignes, prestations, cycle de vie.

DRAFT -> VALIDATED -> INVOICED, et DRAFT/VALIDATED -> CANCELLED.
Le contenu n'est modifiable qu'en DRAFT; chaque modification recalcule
`total_cents` dans la même transaction que la ligne ajoutée/supprimée.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from sqlalchemy import Integer, select, and_, cast, func

from atelier import catalog, models
from atelier.clock import utcnow
from atelier.context import Actor
from atelier.db import database, is_unique_violation, retry_on_lock, row_to_dict
from atelier.enums import DevisStatus
from atelier.errors import NotFoundError, StateConflictError, ValidationError
from atelier.pricing import LineInput, PricedLine, resolve_line_price

log = logging.getLogger("atelier.quotes")

DEVIS_COLS = (
    "id", "reference", "status", "total_cents", "notes", "client_id", "created_by_id",
    "invoice_id", "created_at", "updated_at", "validated_at",
)
LINE_COLS = (
    "id", "devis_id", "machine_type", "description", "minutes", "meters", "material_meters",
    "quantity", "width", "height", "dimension_unit", "material_id", "service_id",
    "unit_price_cents", "material_cost_cents", "line_total_cents", "created_at",
)
PAYMENT_COLS = (
    "id", "invoice_id", "devis_id", "amount_cents", "payment_date", "payment_method",
    "reference", "notes", "created_by_id", "created_at",
)

# action -> (statuts de départ autorisés, statut d'arrivée)
TRANSITIONS = {
    "validate": ({DevisStatus.DRAFT}, DevisStatus.VALIDATED),
    "cancel": ({DevisStatus.DRAFT, DevisStatus.VALIDATED}, DevisStatus.CANCELLED),
    "invoice": ({DevisStatus.VALIDATED}, DevisStatus.INVOICED),
}


def quote_total(line_totals: Iterable[int], service_prices: Iterable[int]) -> int:
    return sum(int(x) for x in line_totals) + sum(int(x) for x in service_prices)


def next_status(current: DevisStatus | str, action: str) -> DevisStatus:
    allowed, target = TRANSITIONS[action]
    current = DevisStatus(current)
    if current not in allowed:
        raise StateConflictError(f"Cannot {action} a quote in status {current.value}")
    return target


async def make_reference(table, prefix: str) -> str:
    """Prochain numéro lisible PREFIX-AAAA-NNNN (séquence annuelle)."""
    year = utcnow().year
    head = f"{prefix}-{year}-"
    # max numérique du suffixe: DEV-2025-10000 doit passer après DEV-2025-9999
    last = await database.fetch_val(
        select(func.max(cast(func.substr(table.c.reference, len(head) + 1), Integer)))
        .where(table.c.reference.like(f"{head}%"))
    )
    seq = int(last) + 1 if last else 1
    return f"{head}{seq:04d}"


async def insert_numbered(table, prefix: str, **values) -> tuple[int, str]:
    """Insère une ligne sous un nouveau numéro; une collision devient un conflit."""
    reference = await make_reference(table, prefix)
    try:
        row_id = await database.execute(table.insert().values(reference=reference, **values))
    except Exception as exc:
        if not is_unique_violation(exc):
            raise
        log.warning("reference_collision ref=%s", reference)
        raise StateConflictError(f"Reference {reference} was just taken, retry") from exc
    return row_id, reference


async def _lock_quote(devis_id: int):
    dtbl = models.Devis.__table__
    row = await database.fetch_one(select(dtbl).where(dtbl.c.id == devis_id).with_for_update())
    if not row:
        raise NotFoundError("Quote not found")
    return row


def _require_draft(row) -> None:
    if row["status"] != DevisStatus.DRAFT.value:
        raise StateConflictError(f"Quote {row['reference']} is {row['status']}; only DRAFT quotes can be modified")


async def _store_total(devis_id: int) -> int:
    ltbl = models.DevisLine.__table__
    stbl = models.DevisServiceItem.__table__
    dtbl = models.Devis.__table__
    lines = await database.fetch_all(select(ltbl.c.line_total_cents).where(ltbl.c.devis_id == devis_id))
    services = await database.fetch_all(select(stbl.c.price_cents).where(stbl.c.devis_id == devis_id))
    total = quote_total((r["line_total_cents"] for r in lines), (r["price_cents"] for r in services))
    await database.execute(
        dtbl.update().where(dtbl.c.id == devis_id).values(total_cents=total, updated_at=utcnow())
    )
    return total


# ---- Lecture ----

async def get_quote(devis_id: int) -> dict:
    dtbl = models.Devis.__table__
    ctbl = models.Client.__table__
    ltbl = models.DevisLine.__table__
    stbl = models.DevisServiceItem.__table__
    fstbl = models.FixedService.__table__
    mtbl = models.Material.__table__
    ptbl = models.Payment.__table__

    row = await database.fetch_one(select(dtbl).where(dtbl.c.id == devis_id))
    if not row:
        raise NotFoundError("Quote not found")
    quote = row_to_dict(row, DEVIS_COLS)
    quote["client_name"] = await database.fetch_val(select(ctbl.c.name).where(ctbl.c.id == quote["client_id"]))

    lines = await database.fetch_all(
        select(ltbl, mtbl.c.name.label("material_name"))
        .select_from(ltbl.outerjoin(mtbl, mtbl.c.id == ltbl.c.material_id))
        .where(ltbl.c.devis_id == devis_id)
        .order_by(ltbl.c.id.asc())
    )
    quote["lines"] = [{**row_to_dict(r, LINE_COLS), "material_name": r["material_name"]} for r in lines]

    services = await database.fetch_all(
        select(stbl.c.id, stbl.c.service_id, stbl.c.price_cents, fstbl.c.name)
        .select_from(stbl.join(fstbl, fstbl.c.id == stbl.c.service_id))
        .where(stbl.c.devis_id == devis_id)
        .order_by(stbl.c.id.asc())
    )
    quote["services"] = [row_to_dict(r, ("id", "service_id", "price_cents", "name")) for r in services]

    payments = await database.fetch_all(
        select(ptbl).where(ptbl.c.devis_id == devis_id).order_by(ptbl.c.payment_date.asc(), ptbl.c.id.asc())
    )
    quote["payments"] = [row_to_dict(r, PAYMENT_COLS) for r in payments]
    quote["paid_cents"] = sum(int(p["amount_cents"]) for p in quote["payments"])
    quote["remaining_cents"] = quote["total_cents"] - quote["paid_cents"]
    return quote


async def list_quotes(
    status: Optional[DevisStatus] = None,
    client_id: Optional[int] = None,
    created_by_id: Optional[int] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict]:
    dtbl = models.Devis.__table__
    ctbl = models.Client.__table__
    conds = []
    if status is not None:
        conds.append(dtbl.c.status == DevisStatus(status).value)
    if client_id is not None:
        conds.append(dtbl.c.client_id == client_id)
    if created_by_id is not None:
        conds.append(dtbl.c.created_by_id == created_by_id)
    stmt = (
        select(dtbl, ctbl.c.name.label("client_name"))
        .select_from(dtbl.join(ctbl, ctbl.c.id == dtbl.c.client_id))
        .order_by(dtbl.c.id.desc())
        .limit(limit)
        .offset(offset)
    )
    if conds:
        stmt = stmt.where(and_(*conds))
    rows = await database.fetch_all(stmt)
    return [{**row_to_dict(r, DEVIS_COLS), "client_name": r["client_name"]} for r in rows]


# ---- Mutations ----

@retry_on_lock
async def create_quote(actor: Actor, client_id: int, notes: Optional[str] = None) -> dict:
    ctbl = models.Client.__table__
    dtbl = models.Devis.__table__
    async with database.transaction():
        exists = await database.fetch_one(select(ctbl.c.id).where(ctbl.c.id == client_id))
        if not exists:
            raise NotFoundError("Client not found")
        now = utcnow()
        devis_id, reference = await insert_numbered(
            dtbl, "DEV",
            status=DevisStatus.DRAFT.value,
            total_cents=0,
            notes=notes,
            client_id=client_id,
            created_by_id=actor.id,
            created_at=now,
            updated_at=now,
        )
    log.info("quote_created devis_id=%s ref=%s client=%s actor=%s", devis_id, reference, client_id, actor.id)
    return await get_quote(devis_id)


async def preview_line_price(line: LineInput) -> PricedLine:
    machine_price, material, service = await catalog.load_line_prices(line)
    return resolve_line_price(line, machine_price, material, service)


async def add_line(actor: Actor, devis_id: int, line: LineInput, description: Optional[str] = None) -> dict:
    ltbl = models.DevisLine.__table__
    async with database.transaction():
        row = await _lock_quote(devis_id)
        _require_draft(row)
        priced = await preview_line_price(line)
        line_id = await database.execute(
            ltbl.insert().values(
                devis_id=devis_id,
                machine_type=line.machine_type.value,
                description=description,
                unit_price_cents=priced.unit_price_cents,
                material_cost_cents=priced.material_cost_cents,
                line_total_cents=priced.line_total_cents,
                created_at=utcnow(),
                **line.as_columns(),
            )
        )
        total = await _store_total(devis_id)
    log.info(
        "quote_line_added devis_id=%s line_id=%s machine=%s line_total=%s total=%s actor=%s",
        devis_id, line_id, line.machine_type.value, priced.line_total_cents, total, actor.id,
    )
    return await get_quote(devis_id)


async def remove_line(actor: Actor, devis_id: int, line_id: int) -> dict:
    ltbl = models.DevisLine.__table__
    async with database.transaction():
        row = await _lock_quote(devis_id)
        _require_draft(row)
        found = await database.fetch_one(
            select(ltbl.c.id).where(and_(ltbl.c.id == line_id, ltbl.c.devis_id == devis_id))
        )
        if not found:
            raise NotFoundError("Line not found on this quote")
        await database.execute(ltbl.delete().where(ltbl.c.id == line_id))
        total = await _store_total(devis_id)
    log.info("quote_line_removed devis_id=%s line_id=%s total=%s actor=%s", devis_id, line_id, total, actor.id)
    return await get_quote(devis_id)


async def add_service(actor: Actor, devis_id: int, service_id: int) -> dict:
    stbl = models.DevisServiceItem.__table__
    async with database.transaction():
        row = await _lock_quote(devis_id)
        _require_draft(row)
        service = await catalog.active_service_price(service_id)
        dup = await database.fetch_one(
            select(stbl.c.id).where(and_(stbl.c.devis_id == devis_id, stbl.c.service_id == service_id))
        )
        if dup:
            raise ValidationError("Service already on this quote")
        await database.execute(
            stbl.insert().values(devis_id=devis_id, service_id=service_id, price_cents=service.price_cents)
        )
        total = await _store_total(devis_id)
    log.info("quote_service_added devis_id=%s service_id=%s total=%s actor=%s", devis_id, service_id, total, actor.id)
    return await get_quote(devis_id)


async def remove_service(actor: Actor, devis_id: int, service_id: int) -> dict:
    stbl = models.DevisServiceItem.__table__
    async with database.transaction():
        row = await _lock_quote(devis_id)
        _require_draft(row)
        found = await database.fetch_one(
            select(stbl.c.id).where(and_(stbl.c.devis_id == devis_id, stbl.c.service_id == service_id))
        )
        if not found:
            raise NotFoundError("Service not found on this quote")
        await database.execute(stbl.delete().where(stbl.c.id == found["id"]))
        total = await _store_total(devis_id)
    log.info("quote_service_removed devis_id=%s service_id=%s total=%s actor=%s", devis_id, service_id, total, actor.id)
    return await get_quote(devis_id)


async def validate_quote(actor: Actor, devis_id: int) -> dict:
    dtbl = models.Devis.__table__
    ltbl = models.DevisLine.__table__
    stbl = models.DevisServiceItem.__table__
    async with database.transaction():
        row = await _lock_quote(devis_id)
        target = next_status(row["status"], "validate")
        n_lines = await database.fetch_val(select(func.count()).select_from(ltbl).where(ltbl.c.devis_id == devis_id))
        n_services = await database.fetch_val(select(func.count()).select_from(stbl).where(stbl.c.devis_id == devis_id))
        if int(n_lines or 0) + int(n_services or 0) == 0:
            raise StateConflictError("Cannot validate an empty quote")
        now = utcnow()
        await database.execute(
            dtbl.update().where(dtbl.c.id == devis_id).values(status=target.value, validated_at=now, updated_at=now)
        )
    log.info("quote_validated devis_id=%s actor=%s", devis_id, actor.id)
    return await get_quote(devis_id)


async def cancel_quote(actor: Actor, devis_id: int) -> dict:
    dtbl = models.Devis.__table__
    async with database.transaction():
        row = await _lock_quote(devis_id)
        target = next_status(row["status"], "cancel")
        await database.execute(
            dtbl.update().where(dtbl.c.id == devis_id).values(status=target.value, updated_at=utcnow())
        )
    log.info("quote_cancelled devis_id=%s from=%s actor=%s", devis_id, row["status"], actor.id)
    return await get_quote(devis_id)


async def mark_invoiced(row, invoice_id: int) -> None:
    """Appelé uniquement par la facturation, dans sa transaction, sur une ligne déjà verrouillée."""
    dtbl = models.Devis.__table__
    target = next_status(row["status"], "invoice")
    await database.execute(
        dtbl.update()
        .where(and_(dtbl.c.id == row["id"], dtbl.c.status == DevisStatus.VALIDATED.value))
        .values(status=target.value, invoice_id=invoice_id, updated_at=utcnow())
    )


async def delete_quote(actor: Actor, devis_id: int) -> None:
    dtbl = models.Devis.__table__
    ltbl = models.DevisLine.__table__
    stbl = models.DevisServiceItem.__table__
    ptbl = models.Payment.__table__
    async with database.transaction():
        row = await _lock_quote(devis_id)
        if row["status"] == DevisStatus.INVOICED.value:
            raise StateConflictError("Invoiced quotes are permanent and cannot be deleted")
        n_payments = await database.fetch_val(
            select(func.count()).select_from(ptbl).where(ptbl.c.devis_id == devis_id)
        )
        if int(n_payments or 0) > 0:
            raise StateConflictError("Quote has recorded payments and cannot be deleted")
        await database.execute(ltbl.delete().where(ltbl.c.devis_id == devis_id))
        await database.execute(stbl.delete().where(stbl.c.devis_id == devis_id))
        await database.execute(dtbl.delete().where(dtbl.c.id == devis_id))
    log.info("quote_deleted devis_id=%s ref=%s status=%s actor=%s", devis_id, row["reference"], row["status"], actor.id)
