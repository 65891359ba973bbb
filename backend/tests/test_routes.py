import pytest
from httpx import ASGITransport, AsyncClient
from starlette.routing import Route

from atelier.auth_utils import create_access_token
from atelier.deps import get_current_actor
from atelier.main import app

from conftest import ADMIN, EMPLOYEE

pytestmark = pytest.mark.anyio


@pytest.fixture
async def http(db):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def act_as(actor):
    app.dependency_overrides[get_current_actor] = lambda: actor


async def _validated_devis(http, total_cents=10000):
    client = (await http.post("/clients/", json={"name": "Imprimerie Nour"})).json()
    devis = (await http.post("/devis/", json={"client_id": client["id"]})).json()
    r = await http.post(
        f"/devis/{devis['id']}/lines",
        json={"machine_type": "SERVICE_MAINTENANCE", "unit_price_cents": total_cents, "description": "Révision"},
    )
    assert r.status_code == 200, r.text
    r = await http.post(f"/devis/{devis['id']}/validate")
    assert r.status_code == 200, r.text
    return r.json()


async def test_quote_to_paid_invoice_over_http(http):
    act_as(ADMIN)
    devis = await _validated_devis(http)
    assert devis["status"] == "VALIDATED"
    assert devis["total_cents"] == 10000

    r = await http.post("/invoices/from-devis", json={"devis_ids": [devis["id"]]})
    assert r.status_code == 201, r.text
    invoice = r.json()

    r = await http.post(f"/payments/invoice/{invoice['id']}", json={"amount_cents": 6000})
    assert r.status_code == 201
    r = await http.post(f"/payments/invoice/{invoice['id']}", json={"amount_cents": 4100})
    assert r.status_code == 409
    assert r.json()["code"] == "OVERPAYMENT"

    r = await http.get(f"/invoices/by-id/{invoice['id']}")
    assert r.json()["status"] == "PARTIAL"
    r = await http.get(f"/payments/invoice/{invoice['id']}/stats")
    assert r.json()["remaining_cents"] == 4000


async def test_errors_map_to_status_and_code(http):
    act_as(ADMIN)
    r = await http.get("/devis/4242")
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"

    devis = await _validated_devis(http)
    r = await http.post(f"/devis/{devis['id']}/lines", json={"machine_type": "CNC", "minutes": 3})
    assert r.status_code == 409
    assert r.json()["code"] == "STATE_CONFLICT"

    client = (await http.post("/clients/", json={"name": "Client B"})).json()
    draft = (await http.post("/devis/", json={"client_id": client["id"]})).json()
    r = await http.post(f"/devis/{draft['id']}/lines", json={"machine_type": "CNC"})
    assert r.status_code == 422
    assert r.json()["code"] == "VALIDATION_ERROR"


async def test_employee_limits(http):
    act_as(ADMIN)
    client = (await http.post("/clients/", json={"name": "Client C"})).json()

    act_as(EMPLOYEE)
    devis = (await http.post("/devis/", json={"client_id": client["id"]})).json()
    r = await http.post(f"/devis/{devis['id']}/lines", json={"machine_type": "PLIAGE", "meters": 2})
    assert r.status_code == 403
    assert r.json()["code"] == "PERMISSION_DENIED"
    r = await http.post(f"/devis/{devis['id']}/lines", json={"machine_type": "CNC", "minutes": 2})
    assert r.status_code == 200

    r = await http.post(f"/devis/{devis['id']}/validate")
    assert r.status_code == 403
    r = await http.post("/caisse/ADMIN_LEVEL/close", json={})
    assert r.status_code == 403

    act_as(ADMIN)
    other = (await http.post("/devis/", json={"client_id": client["id"]})).json()
    act_as(EMPLOYEE)
    assert (await http.get(f"/devis/{other['id']}")).status_code == 403
    listed = (await http.get("/devis/")).json()
    assert [d["id"] for d in listed] == [devis["id"]]


async def test_bearer_token_resolves_the_actor(http):
    r = await http.get("/machines/my")
    assert r.status_code == 401

    token = create_access_token(EMPLOYEE.id, "EMPLOYEE")
    r = await http.get("/machines/my", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json() == ["CNC", "LASER"]

    r = await http.get("/machines/my", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


async def test_caisse_and_dashboard(http):
    act_as(ADMIN)
    devis = await _validated_devis(http, 5000)
    r = await http.post(f"/devis/{devis['id']}/payments", json={"amount_cents": 2000})
    assert r.status_code == 201
    r = await http.post("/expenses/", json={"description": "Gaz", "amount_cents": 500, "category": "UTILITIES"})
    assert r.status_code == 201

    period = (await http.get("/caisse/ADMIN_LEVEL")).json()
    assert period["balance_cents"] == 1500

    r = await http.post("/caisse/ADMIN_LEVEL/close", json={"notes": "journée"})
    assert r.status_code == 201
    closure = r.json()
    assert closure["balance_cents"] == 1500
    r = await http.get("/caisse/closures")
    assert [c["id"] for c in r.json()] == [closure["id"]]

    stats = (await http.get("/dashboard/stats")).json()
    assert stats["total_revenue_cents"] == 2000
    assert stats["net_profit_cents"] == 1500
    assert stats["devis_by_status"]["VALIDATED"] == 1
    assert len(stats["monthly"]) == 6


async def test_client_with_history_cannot_be_deleted(http):
    act_as(ADMIN)
    devis = await _validated_devis(http)
    r = await http.delete(f"/clients/{devis['client_id']}")
    assert r.status_code == 409
    balance = (await http.get(f"/clients/{devis['client_id']}/balance")).json()
    assert balance["outstanding_cents"] == 10000


def test_invoice_routes_use_int_converter():
    paths = {r.path for r in app.routes if isinstance(r, Route)}
    assert "/invoices/by-id/{invoice_id:int}" in paths
    assert all(not p.startswith("/invoices/{") for p in paths)


async def test_non_finite_numbers_are_rejected(http):
    act_as(ADMIN)
    r = await http.post(
        "/devis/price-preview",
        content='{"machine_type": "CNC", "minutes": NaN}',
        headers={"Content-Type": "application/json"},
    )
    assert r.status_code == 422
    assert r.json()["code"] == "VALIDATION_ERROR"


async def test_employee_cannot_list_payments_of_another_quote(http):
    act_as(ADMIN)
    devis = await _validated_devis(http)
    await http.post(f"/devis/{devis['id']}/payments", json={"amount_cents": 1000})

    act_as(EMPLOYEE)
    r = await http.get(f"/payments/devis/{devis['id']}")
    assert r.status_code == 403
    assert r.json()["code"] == "PERMISSION_DENIED"

    act_as(ADMIN)
    r = await http.get(f"/payments/devis/{devis['id']}")
    assert [p["amount_cents"] for p in r.json()] == [1000]
