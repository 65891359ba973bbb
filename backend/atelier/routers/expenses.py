from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from atelier import expenses, schemas
from atelier.context import Actor
from atelier.deps import require_admin
from atelier.enums import ExpenseCategory

router = APIRouter(prefix="/expenses", tags=["expenses"])


@router.get("/", response_model=list[schemas.ExpenseOut])
async def list_expenses(
    category: Optional[ExpenseCategory] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(require_admin),
):
    return await expenses.list_expenses(category, start, end, limit, offset)


@router.post("/", response_model=schemas.ExpenseOut, status_code=201)
async def create_expense(payload: schemas.ExpenseCreate, actor: Actor = Depends(require_admin)):
    return await expenses.create_expense(actor, payload.model_dump())


@router.get("/{expense_id}", response_model=schemas.ExpenseOut)
async def get_expense(expense_id: int, actor: Actor = Depends(require_admin)):
    return await expenses.get_expense(expense_id)


@router.patch("/{expense_id}", response_model=schemas.ExpenseOut)
async def update_expense(expense_id: int, payload: schemas.ExpenseUpdate, actor: Actor = Depends(require_admin)):
    return await expenses.update_expense(actor, expense_id, payload.model_dump(exclude_unset=True))


@router.delete("/{expense_id}", status_code=204)
async def delete_expense(expense_id: int, actor: Actor = Depends(require_admin)):
    await expenses.delete_expense(actor, expense_id)
    return None
