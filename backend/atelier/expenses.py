from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, and_

from atelier import caisse, models
from atelier.clock import as_utc, utcnow
from atelier.context import Actor
from atelier.db import database, retry_on_lock, row_to_dict
from atelier.enums import ExpenseCategory
from atelier.errors import NotFoundError, ValidationError

log = logging.getLogger("atelier.expenses")

EXPENSE_COLS = (
    "id", "description", "amount_cents", "category", "date", "notes",
    "created_by_id", "created_at", "updated_at",
)


def _check_amount(amount_cents) -> int:
    amount = int(amount_cents)
    if amount <= 0:
        raise ValidationError("Expense amount must be > 0")
    return amount


async def _creator_role(user_id: int):
    utbl = models.User.__table__
    return await database.fetch_val(select(utbl.c.role).where(utbl.c.id == user_id))


async def list_expenses(
    category: Optional[ExpenseCategory] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> list[dict]:
    etbl = models.Expense.__table__
    conds = []
    if category is not None:
        conds.append(etbl.c.category == ExpenseCategory(category).value)
    if start is not None:
        conds.append(etbl.c.date >= as_utc(start))
    if end is not None:
        conds.append(etbl.c.date < as_utc(end))
    stmt = select(etbl).order_by(etbl.c.date.desc(), etbl.c.id.desc()).limit(limit).offset(offset)
    if conds:
        stmt = stmt.where(and_(*conds))
    rows = await database.fetch_all(stmt)
    return [row_to_dict(r, EXPENSE_COLS) for r in rows]


async def get_expense(expense_id: int) -> dict:
    etbl = models.Expense.__table__
    row = await database.fetch_one(select(etbl).where(etbl.c.id == expense_id))
    if not row:
        raise NotFoundError("Expense not found")
    return row_to_dict(row, EXPENSE_COLS)


@retry_on_lock
async def create_expense(actor: Actor, data: dict) -> dict:
    etbl = models.Expense.__table__
    amount = _check_amount(data["amount_cents"])
    when = as_utc(data["date"]) if data.get("date") else utcnow()
    category = ExpenseCategory(data.get("category") or ExpenseCategory.OTHER)
    async with database.transaction():
        await caisse.ensure_open(when, actor.role, what="expense")
        now = utcnow()
        expense_id = await database.execute(
            etbl.insert().values(
                description=data["description"],
                amount_cents=amount,
                category=category.value,
                date=when,
                notes=data.get("notes"),
                created_by_id=actor.id,
                created_at=now,
                updated_at=now,
            )
        )
    log.info("expense_created expense_id=%s amount=%s category=%s actor=%s", expense_id, amount, category.value, actor.id)
    return await get_expense(expense_id)


@retry_on_lock
async def update_expense(actor: Actor, expense_id: int, update: dict) -> dict:
    etbl = models.Expense.__table__
    async with database.transaction():
        existing = await get_expense(expense_id)
        role = await _creator_role(existing["created_by_id"]) or actor.role
        await caisse.ensure_open(existing["date"], role, what="expense")
        values = {k: v for k, v in update.items() if v is not None}
        if "amount_cents" in values:
            values["amount_cents"] = _check_amount(values["amount_cents"])
        if "category" in values:
            values["category"] = ExpenseCategory(values["category"]).value
        if "date" in values:
            values["date"] = as_utc(values["date"])
            await caisse.ensure_open(values["date"], role, what="expense")
        values["updated_at"] = utcnow()
        await database.execute(etbl.update().where(etbl.c.id == expense_id).values(**values))
    log.info("expense_updated expense_id=%s fields=%s actor=%s", expense_id, sorted(values), actor.id)
    return await get_expense(expense_id)


@retry_on_lock
async def delete_expense(actor: Actor, expense_id: int) -> None:
    etbl = models.Expense.__table__
    async with database.transaction():
        existing = await get_expense(expense_id)
        role = await _creator_role(existing["created_by_id"]) or actor.role
        await caisse.ensure_open(existing["date"], role, what="expense")
        await database.execute(etbl.delete().where(etbl.c.id == expense_id))
    log.info("expense_deleted expense_id=%s amount=%s actor=%s", expense_id, existing["amount_cents"], actor.id)
