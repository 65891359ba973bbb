from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select, func

from atelier import models
from atelier.clock import utcnow
from atelier.db import database
from atelier.enums import DevisStatus, UserRole


def month_keys(now: datetime, months: int = 6) -> list[str]:
    """Les `months` derniers mois, du plus ancien au courant ("YYYY-MM")."""
    year, month = now.year, now.month
    keys = []
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


async def _count(table, *conds) -> int:
    stmt = select(func.count()).select_from(table)
    for c in conds:
        stmt = stmt.where(c)
    return int(await database.fetch_val(stmt) or 0)


async def _sum(column) -> int:
    return int(await database.fetch_val(select(func.coalesce(func.sum(column), 0))) or 0)


async def _monthly(table, date_col, amount_col, since: datetime) -> dict[str, int]:
    # regroupement côté Python: strftime/date_trunc diffèrent entre sqlite et postgres
    rows = await database.fetch_all(
        select(date_col.label("d"), amount_col.label("amount")).select_from(table).where(date_col >= since)
    )
    buckets: dict[str, int] = {}
    for r in rows:
        key = r["d"].strftime("%Y-%m")
        buckets[key] = buckets.get(key, 0) + int(r["amount"])
    return buckets


async def dashboard_stats(now: Optional[datetime] = None, months: int = 6) -> dict:
    now = now or utcnow()
    ctbl = models.Client.__table__
    utbl = models.User.__table__
    dtbl = models.Devis.__table__
    itbl = models.Invoice.__table__
    ptbl = models.Payment.__table__
    etbl = models.Expense.__table__

    revenue = await _sum(ptbl.c.amount_cents)
    expenses = await _sum(etbl.c.amount_cents)

    by_status = {s.value: 0 for s in DevisStatus}
    for r in await database.fetch_all(
        select(dtbl.c.status, func.count().label("n")).group_by(dtbl.c.status)
    ):
        by_status[r["status"]] = int(r["n"])

    keys = month_keys(now, months)
    since = datetime.strptime(keys[0], "%Y-%m")
    income_by_month = await _monthly(ptbl, ptbl.c.payment_date, ptbl.c.amount_cents, since)
    expense_by_month = await _monthly(etbl, etbl.c.date, etbl.c.amount_cents, since)

    recent = await database.fetch_all(
        select(dtbl.c.id, dtbl.c.reference, dtbl.c.status, dtbl.c.total_cents, dtbl.c.created_at,
               ctbl.c.name.label("client_name"))
        .select_from(dtbl.join(ctbl, ctbl.c.id == dtbl.c.client_id))
        .order_by(dtbl.c.created_at.desc(), dtbl.c.id.desc())
        .limit(5)
    )

    return {
        "clients_count": await _count(ctbl),
        "employees_count": await _count(utbl, utbl.c.role == UserRole.EMPLOYEE.value, utbl.c.is_active.is_(True)),
        "devis_count": await _count(dtbl),
        "invoices_count": await _count(itbl),
        "total_revenue_cents": revenue,
        "total_expenses_cents": expenses,
        "net_profit_cents": revenue - expenses,
        "devis_by_status": by_status,
        "monthly": [
            {
                "month": k,
                "revenue_cents": income_by_month.get(k, 0),
                "expenses_cents": expense_by_month.get(k, 0),
            }
            for k in keys
        ],
        "recent_devis": [
            {
                "id": r["id"],
                "reference": r["reference"],
                "status": r["status"],
                "total_cents": int(r["total_cents"]),
                "client_name": r["client_name"],
                "created_at": r["created_at"],
            }
            for r in recent
        ],
    }
