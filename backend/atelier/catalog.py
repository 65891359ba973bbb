from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select, and_, func

from atelier import models
from atelier.clock import utcnow
from atelier.db import database, row_to_dict
from atelier.enums import DevisStatus, MachineType
from atelier.errors import NotFoundError, StateConflictError, ValidationError
from atelier.pricing import LineInput, MaintenanceInput, MaterialPrice, ServicePrice

log = logging.getLogger("atelier.catalog")

PRICING_COLS = ("id", "machine_type", "price_cents", "description", "updated_at")
MATERIAL_COLS = ("id", "name", "price_per_unit_cents", "unit", "description", "is_active", "created_at", "updated_at")
SERVICE_COLS = ("id", "name", "price_cents", "description", "is_active", "created_at", "updated_at")


# ---- Tarifs machines ----

async def ensure_machine_pricing() -> None:
    """Crée à 0 les tarifs absents (un par type de machine)."""
    ptbl = models.MachinePricing.__table__
    rows = await database.fetch_all(select(ptbl.c.machine_type))
    existing = {r["machine_type"] for r in rows}
    for machine in MachineType:
        if machine.value not in existing:
            await database.execute(
                ptbl.insert().values(machine_type=machine.value, price_cents=0, updated_at=utcnow())
            )


async def list_machine_pricing() -> list[dict]:
    ptbl = models.MachinePricing.__table__
    rows = await database.fetch_all(select(ptbl).order_by(ptbl.c.machine_type))
    return [row_to_dict(r, PRICING_COLS) for r in rows]


async def get_machine_price(machine: MachineType) -> int:
    ptbl = models.MachinePricing.__table__
    price = await database.fetch_val(
        select(ptbl.c.price_cents).where(ptbl.c.machine_type == machine.value)
    )
    if price is None:
        raise NotFoundError(f"No pricing configured for machine {machine.value}")
    return int(price)


async def update_machine_price(machine: MachineType, price_cents: int, description: Optional[str] = None) -> dict:
    if price_cents < 0:
        raise ValidationError("Machine price must be >= 0")
    ptbl = models.MachinePricing.__table__
    # les lignes existantes gardent le prix figé à leur création
    async with database.transaction():
        row = await database.fetch_one(select(ptbl.c.id).where(ptbl.c.machine_type == machine.value))
        values = {"price_cents": int(price_cents), "updated_at": utcnow()}
        if description is not None:
            values["description"] = description
        if row:
            await database.execute(ptbl.update().where(ptbl.c.id == row["id"]).values(**values))
        else:
            await database.execute(ptbl.insert().values(machine_type=machine.value, **values))
    log.info("machine_price_updated machine=%s price_cents=%s", machine.value, price_cents)
    row = await database.fetch_one(select(ptbl).where(ptbl.c.machine_type == machine.value))
    return row_to_dict(row, PRICING_COLS)


# ---- Références depuis les devis ----

async def _used_by_quotes(column, entry_id: int, finalized_only: bool) -> bool:
    dtbl = models.Devis.__table__
    ltbl = models.DevisLine.__table__
    stbl = models.DevisServiceItem.__table__
    conds = []
    for child in (ltbl, stbl):
        if column not in child.c:
            continue
        q = (
            select(func.count())
            .select_from(child.join(dtbl, dtbl.c.id == child.c.devis_id))
            .where(child.c[column] == entry_id)
        )
        if finalized_only:
            q = q.where(dtbl.c.status != DevisStatus.DRAFT.value)
        conds.append(q)
    for q in conds:
        if int(await database.fetch_val(q) or 0) > 0:
            return True
    return False


async def _check_price_change(column: str, entry_id: int, old_price: int, new_price: Optional[int]) -> None:
    if new_price is None or int(new_price) == int(old_price):
        return
    if await _used_by_quotes(column, entry_id, finalized_only=True):
        raise StateConflictError("Price is frozen: entry is used by a validated or invoiced quote")


# ---- Matières ----

async def list_materials(active_only: bool = False) -> list[dict]:
    mtbl = models.Material.__table__
    q = select(mtbl).order_by(mtbl.c.name)
    if active_only:
        q = q.where(mtbl.c.is_active.is_(True))
    rows = await database.fetch_all(q)
    return [row_to_dict(r, MATERIAL_COLS) for r in rows]


async def get_material(material_id: int) -> dict:
    mtbl = models.Material.__table__
    row = await database.fetch_one(select(mtbl).where(mtbl.c.id == material_id))
    if not row:
        raise NotFoundError("Material not found")
    return row_to_dict(row, MATERIAL_COLS)


async def create_material(data: dict) -> dict:
    if int(data["price_per_unit_cents"]) < 0:
        raise ValidationError("Material price must be >= 0")
    mtbl = models.Material.__table__
    now = utcnow()
    mid = await database.execute(
        mtbl.insert().values(
            name=data["name"],
            price_per_unit_cents=int(data["price_per_unit_cents"]),
            unit=data["unit"],
            description=data.get("description"),
            is_active=data.get("is_active", True),
            created_at=now,
            updated_at=now,
        )
    )
    return await get_material(mid)


async def update_material(material_id: int, update: dict) -> dict:
    mtbl = models.Material.__table__
    async with database.transaction():
        existing = await get_material(material_id)
        if update.get("price_per_unit_cents") is not None and int(update["price_per_unit_cents"]) < 0:
            raise ValidationError("Material price must be >= 0")
        await _check_price_change(
            "material_id", material_id, existing["price_per_unit_cents"], update.get("price_per_unit_cents")
        )
        data = {**existing, **{k: v for k, v in update.items() if v is not None}}
        await database.execute(
            mtbl.update().where(mtbl.c.id == material_id).values(
                name=data["name"],
                price_per_unit_cents=int(data["price_per_unit_cents"]),
                unit=data["unit"],
                description=data["description"],
                is_active=data["is_active"],
                updated_at=utcnow(),
            )
        )
    return await get_material(material_id)


async def delete_material(material_id: int) -> None:
    mtbl = models.Material.__table__
    async with database.transaction():
        await get_material(material_id)
        if await _used_by_quotes("material_id", material_id, finalized_only=False):
            raise StateConflictError("Material is used by quotes; deactivate it instead")
        await database.execute(mtbl.delete().where(mtbl.c.id == material_id))


# ---- Prestations fixes ----

async def list_services(active_only: bool = False) -> list[dict]:
    stbl = models.FixedService.__table__
    q = select(stbl).order_by(stbl.c.name)
    if active_only:
        q = q.where(stbl.c.is_active.is_(True))
    rows = await database.fetch_all(q)
    return [row_to_dict(r, SERVICE_COLS) for r in rows]


async def get_service(service_id: int) -> dict:
    stbl = models.FixedService.__table__
    row = await database.fetch_one(select(stbl).where(stbl.c.id == service_id))
    if not row:
        raise NotFoundError("Service not found")
    return row_to_dict(row, SERVICE_COLS)


async def create_service(data: dict) -> dict:
    if int(data["price_cents"]) < 0:
        raise ValidationError("Service price must be >= 0")
    stbl = models.FixedService.__table__
    now = utcnow()
    sid = await database.execute(
        stbl.insert().values(
            name=data["name"],
            price_cents=int(data["price_cents"]),
            description=data.get("description"),
            is_active=data.get("is_active", True),
            created_at=now,
            updated_at=now,
        )
    )
    return await get_service(sid)


async def update_service(service_id: int, update: dict) -> dict:
    stbl = models.FixedService.__table__
    async with database.transaction():
        existing = await get_service(service_id)
        if update.get("price_cents") is not None and int(update["price_cents"]) < 0:
            raise ValidationError("Service price must be >= 0")
        await _check_price_change("service_id", service_id, existing["price_cents"], update.get("price_cents"))
        data = {**existing, **{k: v for k, v in update.items() if v is not None}}
        await database.execute(
            stbl.update().where(stbl.c.id == service_id).values(
                name=data["name"],
                price_cents=int(data["price_cents"]),
                description=data["description"],
                is_active=data["is_active"],
                updated_at=utcnow(),
            )
        )
    return await get_service(service_id)


async def delete_service(service_id: int) -> None:
    stbl = models.FixedService.__table__
    async with database.transaction():
        await get_service(service_id)
        if await _used_by_quotes("service_id", service_id, finalized_only=False):
            raise StateConflictError("Service is used by quotes; deactivate it instead")
        await database.execute(stbl.delete().where(stbl.c.id == service_id))


# ---- Lecture des prix pour une ligne ----

async def active_material_price(material_id: int) -> MaterialPrice:
    material = await get_material(material_id)
    if not material["is_active"]:
        raise ValidationError(f"Material '{material['name']}' is inactive")
    return MaterialPrice(id=material["id"], price_per_unit_cents=int(material["price_per_unit_cents"]))


async def active_service_price(service_id: int) -> ServicePrice:
    service = await get_service(service_id)
    if not service["is_active"]:
        raise ValidationError(f"Service '{service['name']}' is inactive")
    return ServicePrice(id=service["id"], price_cents=int(service["price_cents"]))


async def load_line_prices(line: LineInput):
    """Prix catalogue courants nécessaires à la ligne: (prix machine, matière, prestation)."""
    machine_price = await get_machine_price(line.machine_type)
    material = None
    service = None
    material_id = getattr(line, "material_id", None)
    if material_id is not None:
        material = await active_material_price(int(material_id))
    if isinstance(line, MaintenanceInput) and line.service_id is not None:
        service = await active_service_price(int(line.service_id))
    return machine_price, material, service
