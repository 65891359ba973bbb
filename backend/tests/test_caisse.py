import asyncio
from datetime import timedelta

import pytest

from atelier import caisse, expenses, invoicing, payments
from atelier.clock import EPOCH, utcnow
from atelier.enums import CaisseScope
from atelier.errors import StateConflictError, ValidationError

from conftest import ADMIN, EMPLOYEE

pytestmark = pytest.mark.anyio


async def _paid_invoice(factory, amount: int, actor=ADMIN, when=None):
    quote = await factory.validated_quote(amount)
    invoice = await invoicing.create_invoice_from_quotes(ADMIN, [quote["id"]])
    await payments.apply_payment(actor, amount, invoice_id=invoice["id"], payment_date=when)
    return invoice


async def test_closure_balance_and_chaining(factory):
    t0 = utcnow() - timedelta(hours=3)
    await _paid_invoice(factory, 50000, when=t0)
    await expenses.create_expense(ADMIN, {"description": "Électricité", "amount_cents": 12000, "date": t0})

    first = await caisse.close_period(ADMIN, CaisseScope.ADMIN_LEVEL, notes="fin de mois",
                                      now=t0 + timedelta(hours=1))
    assert first["period_start"] == EPOCH
    assert first["total_income_cents"] == 50000
    assert first["total_expense_cents"] == 12000
    assert first["balance_cents"] == 38000

    await _paid_invoice(factory, 700, when=t0 + timedelta(hours=2))
    second = await caisse.close_period(ADMIN, CaisseScope.ADMIN_LEVEL, now=t0 + timedelta(hours=2, minutes=30))
    assert second["period_start"] == first["closure_date"]
    assert second["total_income_cents"] == 700
    assert second["balance_cents"] == 700

    history = await caisse.list_closures(CaisseScope.ADMIN_LEVEL)
    assert [c["id"] for c in history] == [second["id"], first["id"]]


async def test_closing_twice_at_the_same_instant_is_a_conflict(factory):
    now = utcnow()
    await caisse.close_period(ADMIN, CaisseScope.ADMIN_LEVEL, now=now)
    with pytest.raises(StateConflictError):
        await caisse.close_period(ADMIN, CaisseScope.ADMIN_LEVEL, now=now)
    assert len(await caisse.list_closures()) == 1


async def test_employee_scope_only_counts_employee_entries(factory):
    when = utcnow() - timedelta(minutes=5)
    await _paid_invoice(factory, 1000, actor=ADMIN, when=when)
    await _paid_invoice(factory, 2500, actor=EMPLOYEE, when=when)

    admin_view = await caisse.current_period(CaisseScope.ADMIN_LEVEL)
    employee_view = await caisse.current_period(CaisseScope.EMPLOYEE_LEVEL)
    assert admin_view["total_income_cents"] == 3500
    assert employee_view["total_income_cents"] == 2500
    assert employee_view["payments_count"] == 1
    assert employee_view["revenue_by_employee"] == [
        {"user_id": EMPLOYEE.id, "name": "Karim Trabelsi", "total_cents": 2500, "payments_count": 1}
    ]


async def test_scopes_close_independently(factory):
    now = utcnow()
    await caisse.close_period(ADMIN, CaisseScope.EMPLOYEE_LEVEL, now=now)
    assert await caisse.period_start(CaisseScope.EMPLOYEE_LEVEL) == now
    assert await caisse.period_start(CaisseScope.ADMIN_LEVEL) == EPOCH
    # une clôture employés verrouille les écritures des employés, pas celles de l'admin
    assert await caisse.closed_through("EMPLOYEE") == now
    assert await caisse.closed_through("ADMIN") is None


async def test_expenses_in_closed_period_are_locked(factory):
    old = utcnow() - timedelta(days=3)
    expense = await expenses.create_expense(ADMIN, {"description": "Loyer", "amount_cents": 80000,
                                                    "category": "RENT", "date": old})
    await caisse.close_period(ADMIN, CaisseScope.ADMIN_LEVEL, now=utcnow() - timedelta(days=1))

    with pytest.raises(StateConflictError):
        await expenses.update_expense(ADMIN, expense["id"], {"amount_cents": 1})
    with pytest.raises(StateConflictError):
        await expenses.delete_expense(ADMIN, expense["id"])
    with pytest.raises(StateConflictError):
        await expenses.create_expense(ADMIN, {"description": "Oubli", "amount_cents": 500, "date": old})

    fresh = await expenses.create_expense(ADMIN, {"description": "Fil", "amount_cents": 500})
    with pytest.raises(StateConflictError):
        await expenses.update_expense(ADMIN, fresh["id"], {"date": old})
    moved = await expenses.update_expense(ADMIN, fresh["id"], {"amount_cents": 650, "category": "MATERIAL"})
    assert moved["amount_cents"] == 650
    assert moved["category"] == "MATERIAL"


async def test_expense_amount_must_be_positive(factory):
    with pytest.raises(ValidationError):
        await expenses.create_expense(ADMIN, {"description": "Rien", "amount_cents": 0})
    assert await expenses.list_expenses() == []


async def test_concurrent_closures_of_one_scope(factory):
    now = utcnow()
    results = await asyncio.gather(
        caisse.close_period(ADMIN, CaisseScope.ADMIN_LEVEL, now=now),
        caisse.close_period(ADMIN, CaisseScope.ADMIN_LEVEL, now=now),
        return_exceptions=True,
    )
    assert sum(isinstance(r, dict) for r in results) == 1
    assert [type(r) for r in results if isinstance(r, Exception)] == [StateConflictError]
    assert len(await caisse.list_closures(CaisseScope.ADMIN_LEVEL)) == 1
