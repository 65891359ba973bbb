"""Solde client, calculé à la lecture à partir des devis et des paiements.

Les devis CANCELLED restent listés mais n'entrent pas dans les totaux.
Les paiements d'une facture sont répartis sur ses devis dans l'ordre des
ids, à hauteur du reste dû de chacun, pour ne pas compter deux fois le
même argent quand une facture regroupe plusieurs devis.
"""
from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy import select, func

from atelier import models
from atelier.db import database
from atelier.enums import DevisStatus
from atelier.errors import NotFoundError

log = logging.getLogger("atelier.balances")


def allocate_invoice_payments(quotes: list[dict], invoice_paid: dict[int, int]) -> dict[int, int]:
    """-> {devis_id: part des paiements facture imputée à ce devis}."""
    pools = dict(invoice_paid)
    shares: dict[int, int] = {}
    for q in sorted(quotes, key=lambda x: x["id"]):
        invoice_id = q.get("invoice_id")
        if invoice_id is None:
            continue
        room = max(q["total_cents"] - q["direct_paid_cents"], 0)
        share = min(pools.get(invoice_id, 0), room)
        shares[q["id"]] = share
        pools[invoice_id] = pools.get(invoice_id, 0) - share
    return shares


def summarize(quotes: list[dict]) -> dict:
    counted = [q for q in quotes if q["status"] != DevisStatus.CANCELLED.value]
    total = sum(q["total_cents"] for q in counted)
    paid = sum(q["paid_cents"] for q in counted)
    fully_paid = sum(1 for q in counted if q["is_fully_paid"])
    return {
        "total_devis_cents": total,
        "total_paid_cents": paid,
        "outstanding_cents": total - paid,
        "fully_paid_count": fully_paid,
        "pending_count": len(counted) - fully_paid,
    }


async def get_client_balance(client_id: int) -> dict:
    ctbl = models.Client.__table__
    dtbl = models.Devis.__table__
    itbl = models.Invoice.__table__
    ptbl = models.Payment.__table__

    client = await database.fetch_one(select(ctbl.c.id, ctbl.c.name).where(ctbl.c.id == client_id))
    if not client:
        raise NotFoundError("Client not found")

    rows = await database.fetch_all(
        select(
            dtbl.c.id, dtbl.c.reference, dtbl.c.status, dtbl.c.total_cents,
            dtbl.c.invoice_id, dtbl.c.created_at, itbl.c.reference.label("invoice_reference"),
        )
        .select_from(dtbl.outerjoin(itbl, itbl.c.id == dtbl.c.invoice_id))
        .where(dtbl.c.client_id == client_id)
        .order_by(dtbl.c.id.asc())
    )
    quote_ids = [r["id"] for r in rows]
    invoice_ids = sorted({r["invoice_id"] for r in rows if r["invoice_id"] is not None})

    direct_paid: dict[int, int] = defaultdict(int)
    if quote_ids:
        for r in await database.fetch_all(
            select(ptbl.c.devis_id, func.sum(ptbl.c.amount_cents).label("paid"))
            .where(ptbl.c.devis_id.in_(quote_ids))
            .group_by(ptbl.c.devis_id)
        ):
            direct_paid[r["devis_id"]] = int(r["paid"] or 0)

    invoice_paid: dict[int, int] = {}
    if invoice_ids:
        for r in await database.fetch_all(
            select(ptbl.c.invoice_id, func.sum(ptbl.c.amount_cents).label("paid"))
            .where(ptbl.c.invoice_id.in_(invoice_ids))
            .group_by(ptbl.c.invoice_id)
        ):
            invoice_paid[r["invoice_id"]] = int(r["paid"] or 0)

    quotes = [
        {
            "id": r["id"],
            "reference": r["reference"],
            "status": r["status"],
            "total_cents": int(r["total_cents"]),
            "invoice_id": r["invoice_id"],
            "invoice_reference": r["invoice_reference"],
            "created_at": r["created_at"],
            "direct_paid_cents": direct_paid[r["id"]],
        }
        for r in rows
    ]
    shares = allocate_invoice_payments(quotes, invoice_paid)
    for q in quotes:
        q["paid_cents"] = q.pop("direct_paid_cents") + shares.get(q["id"], 0)
        q["remaining_cents"] = q["total_cents"] - q["paid_cents"]
        q["is_fully_paid"] = q["remaining_cents"] <= 0

    return {
        "client_id": client["id"],
        "client_name": client["name"],
        **summarize(quotes),
        "devis": quotes,
    }
