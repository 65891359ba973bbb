"""Caisse: période ouverte et clôtures.

Une période va de la dernière clôture du même périmètre (ou EPOCH) jusqu'à
maintenant, bornes [début, fin). Une clôture fige les totaux de la période
et devient le début de la suivante; elle n'est jamais modifiée ni supprimée.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, and_, func

from atelier import models
from atelier.clock import EPOCH, utcnow
from atelier.context import Actor
from atelier.db import database, is_unique_violation, retry_on_lock, row_to_dict
from atelier.enums import CaisseScope, UserRole
from atelier.errors import StateConflictError

log = logging.getLogger("atelier.caisse")

CLOSURE_COLS = (
    "id", "scope", "period_start", "closure_date", "total_income_cents",
    "total_expense_cents", "balance_cents", "notes", "created_by_id",
)


def scopes_covering(creator_role: UserRole | str) -> list[CaisseScope]:
    """Périmètres dont les totaux incluent une écriture saisie par ce rôle."""
    if UserRole(creator_role) == UserRole.EMPLOYEE:
        return [CaisseScope.ADMIN_LEVEL, CaisseScope.EMPLOYEE_LEVEL]
    return [CaisseScope.ADMIN_LEVEL]


def _scope_filter(table, scope: CaisseScope):
    if CaisseScope(scope) == CaisseScope.ADMIN_LEVEL:
        return None
    utbl = models.User.__table__
    employees = select(utbl.c.id).where(utbl.c.role == UserRole.EMPLOYEE.value)
    return table.c.created_by_id.in_(employees)


def _window(table, column, scope: CaisseScope, start: datetime, end: datetime):
    conds = [column >= start, column < end]
    extra = _scope_filter(table, scope)
    if extra is not None:
        conds.append(extra)
    return and_(*conds)


async def last_closure(scope: CaisseScope) -> Optional[dict]:
    ftbl = models.FinancialClosure.__table__
    row = await database.fetch_one(
        select(ftbl)
        .where(ftbl.c.scope == CaisseScope(scope).value)
        .order_by(ftbl.c.closure_date.desc())
        .limit(1)
    )
    return row_to_dict(row, CLOSURE_COLS) if row else None


async def period_start(scope: CaisseScope) -> datetime:
    last = await last_closure(scope)
    return last["closure_date"] if last else EPOCH


async def closed_through(creator_role: UserRole | str) -> Optional[datetime]:
    """Fin de la plus récente clôture couvrant les écritures de ce rôle."""
    ftbl = models.FinancialClosure.__table__
    scopes = [s.value for s in scopes_covering(creator_role)]
    return await database.fetch_val(
        select(func.max(ftbl.c.closure_date)).where(ftbl.c.scope.in_(scopes))
    )


async def ensure_open(when: datetime, creator_role: UserRole | str, what: str = "entry") -> None:
    closed = await closed_through(creator_role)
    if closed is not None and when < closed:
        log.warning("closed_period_rejected what=%s date=%s closed_through=%s", what, when, closed)
        raise StateConflictError(
            f"Cannot change a {what} dated {when.isoformat()}: period closed through {closed.isoformat()}"
        )


async def _totals(scope: CaisseScope, start: datetime, end: datetime) -> dict:
    ptbl = models.Payment.__table__
    etbl = models.Expense.__table__
    income = await database.fetch_val(
        select(func.coalesce(func.sum(ptbl.c.amount_cents), 0))
        .where(_window(ptbl, ptbl.c.payment_date, scope, start, end))
    )
    n_payments = await database.fetch_val(
        select(func.count()).select_from(ptbl).where(_window(ptbl, ptbl.c.payment_date, scope, start, end))
    )
    expense = await database.fetch_val(
        select(func.coalesce(func.sum(etbl.c.amount_cents), 0))
        .where(_window(etbl, etbl.c.date, scope, start, end))
    )
    n_expenses = await database.fetch_val(
        select(func.count()).select_from(etbl).where(_window(etbl, etbl.c.date, scope, start, end))
    )
    income, expense = int(income or 0), int(expense or 0)
    return {
        "total_income_cents": income,
        "total_expense_cents": expense,
        "balance_cents": income - expense,
        "payments_count": int(n_payments or 0),
        "expenses_count": int(n_expenses or 0),
    }


async def revenue_by_employee(scope: CaisseScope, start: datetime, end: datetime) -> list[dict]:
    ptbl = models.Payment.__table__
    utbl = models.User.__table__
    rows = await database.fetch_all(
        select(
            utbl.c.id.label("user_id"),
            utbl.c.first_name,
            utbl.c.last_name,
            func.coalesce(func.sum(ptbl.c.amount_cents), 0).label("total_cents"),
            func.count(ptbl.c.id).label("payments_count"),
        )
        .select_from(ptbl.join(utbl, utbl.c.id == ptbl.c.created_by_id))
        .where(and_(
            _window(ptbl, ptbl.c.payment_date, scope, start, end),
            utbl.c.role == UserRole.EMPLOYEE.value,
        ))
        .group_by(utbl.c.id, utbl.c.first_name, utbl.c.last_name)
        .order_by(func.coalesce(func.sum(ptbl.c.amount_cents), 0).desc())
    )
    return [
        {
            "user_id": r["user_id"],
            "name": f"{r['first_name']} {r['last_name']}".strip(),
            "total_cents": int(r["total_cents"]),
            "payments_count": int(r["payments_count"]),
        }
        for r in rows
    ]


async def current_period(scope: CaisseScope, now: Optional[datetime] = None) -> dict:
    scope = CaisseScope(scope)
    start = await period_start(scope)
    end = now or utcnow()
    stats = await _totals(scope, start, end)
    return {
        "scope": scope.value,
        "period_start": start,
        "period_end": end,
        **stats,
        "revenue_by_employee": await revenue_by_employee(scope, start, end),
    }


@retry_on_lock
async def close_period(
    actor: Actor,
    scope: CaisseScope,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    scope = CaisseScope(scope)
    ftbl = models.FinancialClosure.__table__
    try:
        async with database.transaction():
            start = await period_start(scope)
            end = now or utcnow()
            if end <= start:
                raise StateConflictError("Period already closed up to now")
            stats = await _totals(scope, start, end)
            closure_id = await database.execute(
                ftbl.insert().values(
                    scope=scope.value,
                    period_start=start,
                    closure_date=end,
                    total_income_cents=stats["total_income_cents"],
                    total_expense_cents=stats["total_expense_cents"],
                    balance_cents=stats["balance_cents"],
                    notes=notes,
                    created_by_id=actor.id,
                )
            )
    except Exception as exc:
        if not is_unique_violation(exc):
            raise
        log.warning("closure_conflict scope=%s actor=%s", scope.value, actor.id)
        raise StateConflictError(f"A closure for scope {scope.value} already claimed this period") from exc

    log.info(
        "period_closed closure_id=%s scope=%s start=%s end=%s income=%s expense=%s balance=%s actor=%s",
        closure_id, scope.value, start, end, stats["total_income_cents"],
        stats["total_expense_cents"], stats["balance_cents"], actor.id,
    )
    row = await database.fetch_one(select(ftbl).where(ftbl.c.id == closure_id))
    return row_to_dict(row, CLOSURE_COLS)


async def list_closures(scope: Optional[CaisseScope] = None, limit: int = 50, offset: int = 0) -> list[dict]:
    ftbl = models.FinancialClosure.__table__
    stmt = select(ftbl).order_by(ftbl.c.closure_date.desc()).limit(limit).offset(offset)
    if scope is not None:
        stmt = stmt.where(ftbl.c.scope == CaisseScope(scope).value)
    rows = await database.fetch_all(stmt)
    return [row_to_dict(r, CLOSURE_COLS) for r in rows]
