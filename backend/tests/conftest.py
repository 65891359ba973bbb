import os
import tempfile

# base jetable, avant tout import d'atelier
_DB_PATH = os.path.join(tempfile.mkdtemp(prefix="atelier-tests-"), "test.db")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_PATH}"

import pytest

from atelier import catalog, models, quotes
from atelier.clock import utcnow
from atelier.context import Actor
from atelier.db import Base, database, engine
from atelier.enums import MachineType, UserRole
from atelier.pricing import build_line_input

ADMIN = Actor(id=1, role=UserRole.ADMIN)
EMPLOYEE = Actor(id=2, role=UserRole.EMPLOYEE, machines=frozenset({MachineType.CNC, MachineType.LASER}))


@pytest.fixture
def anyio_backend():
    return "asyncio"


class Factory:
    """Raccourcis de mise en place; passent par le cœur quand il existe."""

    async def client(self, name: str = "Menuiserie Ben Salah") -> int:
        now = utcnow()
        return await database.execute(
            models.Client.__table__.insert().values(name=name, created_at=now, updated_at=now)
        )

    async def machine_price(self, machine: MachineType, price_cents: int) -> None:
        await catalog.update_machine_price(machine, price_cents)

    async def material(self, price_cents: int = 1000, name: str = "Plexi 3mm", unit: str = "m²") -> int:
        material = await catalog.create_material(
            {"name": name, "price_per_unit_cents": price_cents, "unit": unit}
        )
        return material["id"]

    async def service(self, price_cents: int = 1500, name: str = "Pose") -> int:
        service = await catalog.create_service({"name": name, "price_cents": price_cents})
        return service["id"]

    async def draft_quote(self, client_id: int | None = None, actor: Actor = ADMIN) -> dict:
        client_id = client_id or await self.client()
        return await quotes.create_quote(actor, client_id)

    async def validated_quote(self, total_cents: int, client_id: int | None = None) -> dict:
        """Devis VALIDATED d'un montant exact (une ligne maintenance au prix manuel)."""
        quote = await self.draft_quote(client_id)
        line = build_line_input(MachineType.SERVICE_MAINTENANCE, {"unit_price_cents": total_cents})
        await quotes.add_line(ADMIN, quote["id"], line)
        return await quotes.validate_quote(ADMIN, quote["id"])


@pytest.fixture
async def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    await database.connect()
    try:
        utbl = models.User.__table__
        await database.execute(utbl.insert().values(
            id=ADMIN.id, username="admin", first_name="Amel", last_name="Admin", role="ADMIN", is_active=True,
        ))
        await database.execute(utbl.insert().values(
            id=EMPLOYEE.id, username="karim", first_name="Karim", last_name="Trabelsi", role="EMPLOYEE",
            is_active=True,
        ))
        mtbl = models.UserMachine.__table__
        for machine in EMPLOYEE.machines:
            await database.execute(mtbl.insert().values(user_id=EMPLOYEE.id, machine=machine.value))
        await catalog.ensure_machine_pricing()
        yield database
    finally:
        await database.disconnect()


@pytest.fixture
def factory(db):
    return Factory()
