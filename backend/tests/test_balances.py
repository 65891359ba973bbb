import pytest

from atelier import balances, invoicing, payments, quotes
from atelier.errors import NotFoundError

from conftest import ADMIN

pytestmark = pytest.mark.anyio


async def test_client_balance_excludes_cancelled_from_totals(factory):
    client_id = await factory.client("Atelier Sfax")
    paid_up = await factory.validated_quote(4000, client_id)
    open_quote = await factory.validated_quote(6000, client_id)
    cancelled = await factory.validated_quote(9999, client_id)
    await quotes.cancel_quote(ADMIN, cancelled["id"])

    await payments.apply_payment(ADMIN, 4000, devis_id=paid_up["id"])
    await payments.apply_payment(ADMIN, 1000, devis_id=open_quote["id"])

    balance = await balances.get_client_balance(client_id)
    assert balance["client_name"] == "Atelier Sfax"
    assert len(balance["devis"]) == 3
    assert balance["total_devis_cents"] == 10000
    assert balance["total_paid_cents"] == 5000
    assert balance["outstanding_cents"] == 5000
    assert balance["fully_paid_count"] == 1
    assert balance["pending_count"] == 1

    by_id = {q["id"]: q for q in balance["devis"]}
    assert by_id[paid_up["id"]]["is_fully_paid"] is True
    assert by_id[open_quote["id"]]["remaining_cents"] == 5000


async def test_invoice_payments_count_once_across_its_quotes(factory):
    client_id = await factory.client()
    a = await factory.validated_quote(3000, client_id)
    b = await factory.validated_quote(2000, client_id)
    await payments.apply_payment(ADMIN, 500, devis_id=b["id"])
    invoice = await invoicing.create_invoice_from_quotes(ADMIN, [a["id"], b["id"]])
    await payments.apply_payment(ADMIN, 3500, invoice_id=invoice["id"])

    balance = await balances.get_client_balance(client_id)
    by_id = {q["id"]: q for q in balance["devis"]}
    assert by_id[a["id"]]["paid_cents"] == 3000
    assert by_id[b["id"]]["paid_cents"] == 500 + 500
    assert by_id[a["id"]]["invoice_reference"] == invoice["reference"]
    assert balance["total_paid_cents"] == 4000
    assert balance["outstanding_cents"] == 1000


def test_allocation_fills_quotes_in_order():
    quote_rows = [
        {"id": 2, "invoice_id": 10, "total_cents": 500, "direct_paid_cents": 0},
        {"id": 1, "invoice_id": 10, "total_cents": 1000, "direct_paid_cents": 200},
        {"id": 3, "invoice_id": None, "total_cents": 700, "direct_paid_cents": 700},
    ]
    assert balances.allocate_invoice_payments(quote_rows, {10: 1000}) == {1: 800, 2: 200}


async def test_unknown_client(factory):
    with pytest.raises(NotFoundError):
        await balances.get_client_balance(999)


async def test_client_without_quotes(factory):
    client_id = await factory.client()
    balance = await balances.get_client_balance(client_id)
    assert balance["devis"] == []
    assert balance["outstanding_cents"] == 0
