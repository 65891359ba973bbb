import asyncio
from datetime import timedelta

import pytest

from atelier import caisse, invoicing, payments
from atelier.clock import utcnow
from atelier.enums import CaisseScope
from atelier.errors import NotFoundError, OverpaymentError, StateConflictError, ValidationError

from conftest import ADMIN, EMPLOYEE

pytestmark = pytest.mark.anyio


async def _invoice(factory, total_cents: int) -> dict:
    quote = await factory.validated_quote(total_cents)
    return await invoicing.create_invoice_from_quotes(ADMIN, [quote["id"]])


async def test_partial_then_overpayment_is_rejected(factory):
    invoice = await _invoice(factory, 10000)
    await payments.apply_payment(ADMIN, 6000, invoice_id=invoice["id"], payment_method="Espèces")
    state = await invoicing.get_invoice(invoice["id"])
    assert state["status"] == "PARTIAL"
    assert state["remaining_cents"] == 4000

    with pytest.raises(OverpaymentError) as exc:
        await payments.apply_payment(ADMIN, 4100, invoice_id=invoice["id"])
    assert exc.value.remaining_cents == 4000
    assert (await invoicing.get_invoice(invoice["id"]))["paid_cents"] == 6000
    assert len(await payments.list_invoice_payments(invoice["id"])) == 1

    await payments.apply_payment(ADMIN, 4000, invoice_id=invoice["id"])
    stats = await payments.invoice_payment_stats(invoice["id"])
    assert stats["is_paid"] is True
    assert stats["percent_paid"] == 100.0
    assert stats["status"] == "PAID"


async def test_amount_and_target_are_checked(factory):
    invoice = await _invoice(factory, 1000)
    quote = await factory.validated_quote(1000)
    for amount in (0, -5):
        with pytest.raises(ValidationError):
            await payments.apply_payment(ADMIN, amount, invoice_id=invoice["id"])
    with pytest.raises(ValidationError):
        await payments.apply_payment(ADMIN, 100)
    with pytest.raises(ValidationError):
        await payments.apply_payment(ADMIN, 100, invoice_id=invoice["id"], devis_id=quote["id"])
    with pytest.raises(NotFoundError):
        await payments.apply_payment(ADMIN, 100, invoice_id=31337)


async def test_deposit_on_validated_quote_counts_on_its_invoice(factory):
    quote = await factory.validated_quote(10000)
    await payments.apply_payment(EMPLOYEE, 3000, devis_id=quote["id"])
    with pytest.raises(OverpaymentError):
        await payments.apply_payment(EMPLOYEE, 7001, devis_id=quote["id"])

    invoice = await invoicing.create_invoice_from_quotes(ADMIN, [quote["id"]])
    assert invoice["paid_cents"] == 3000
    assert invoice["status"] == "PARTIAL"
    with pytest.raises(OverpaymentError):
        await payments.apply_payment(ADMIN, 7001, invoice_id=invoice["id"])
    await payments.apply_payment(ADMIN, 7000, invoice_id=invoice["id"])
    assert (await invoicing.get_invoice(invoice["id"]))["status"] == "PAID"
    assert len(await payments.list_invoice_payments(invoice["id"])) == 2


async def test_only_validated_quotes_take_payments(factory):
    draft = await factory.draft_quote()
    with pytest.raises(StateConflictError):
        await payments.apply_payment(ADMIN, 100, devis_id=draft["id"])

    quote = await factory.validated_quote(1000)
    await invoicing.create_invoice_from_quotes(ADMIN, [quote["id"]])
    with pytest.raises(StateConflictError):
        await payments.apply_payment(ADMIN, 100, devis_id=quote["id"])


async def test_delete_invoice_payment_restores_remaining(factory):
    invoice = await _invoice(factory, 5000)
    payment = await payments.apply_payment(ADMIN, 5000, invoice_id=invoice["id"])
    assert (await invoicing.get_invoice(invoice["id"]))["status"] == "PAID"

    await payments.delete_payment(ADMIN, payment["id"])
    state = await invoicing.get_invoice(invoice["id"])
    assert state["status"] == "PENDING"
    assert state["remaining_cents"] == 5000
    with pytest.raises(NotFoundError):
        await payments.get_payment(payment["id"])


async def test_quote_payments_are_not_deletable(factory):
    quote = await factory.validated_quote(5000)
    payment = await payments.apply_payment(ADMIN, 100, devis_id=quote["id"])
    with pytest.raises(StateConflictError):
        await payments.delete_payment(ADMIN, payment["id"])
    assert [p["id"] for p in await payments.list_devis_payments(quote["id"])] == [payment["id"]]


async def test_closed_period_payments_are_locked(factory):
    invoice = await _invoice(factory, 10000)
    old = await payments.apply_payment(
        ADMIN, 1000, invoice_id=invoice["id"], payment_date=utcnow() - timedelta(days=2)
    )
    await caisse.close_period(ADMIN, CaisseScope.ADMIN_LEVEL, now=utcnow() - timedelta(days=1))

    with pytest.raises(StateConflictError):
        await payments.delete_payment(ADMIN, old["id"])
    with pytest.raises(StateConflictError):
        await payments.apply_payment(
            ADMIN, 1000, invoice_id=invoice["id"], payment_date=utcnow() - timedelta(days=3)
        )
    # la période ouverte accepte toujours
    await payments.apply_payment(ADMIN, 1000, invoice_id=invoice["id"])
    assert (await invoicing.get_invoice(invoice["id"]))["paid_cents"] == 2000


async def test_concurrent_payments_cannot_overpay(factory):
    invoice = await _invoice(factory, 10000)
    results = await asyncio.gather(
        payments.apply_payment(ADMIN, 6000, invoice_id=invoice["id"]),
        payments.apply_payment(ADMIN, 6000, invoice_id=invoice["id"]),
        return_exceptions=True,
    )
    accepted = [r for r in results if isinstance(r, dict)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(accepted) == 1
    assert len(rejected) == 1
    assert isinstance(rejected[0], OverpaymentError)
    assert rejected[0].remaining_cents == 4000
    assert (await invoicing.get_invoice(invoice["id"]))["paid_cents"] == 6000
