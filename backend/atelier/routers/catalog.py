from fastapi import APIRouter, Depends

from atelier import catalog, schemas
from atelier.context import Actor
from atelier.deps import get_current_actor, require_admin
from atelier.enums import MachineType

router = APIRouter(tags=["catalog"])


# ---- Machines ----
@router.get("/machines/pricing", response_model=list[schemas.MachinePricingOut])
async def list_machine_pricing(actor: Actor = Depends(get_current_actor)):
    return await catalog.list_machine_pricing()


@router.put("/machines/pricing/{machine_type}", response_model=schemas.MachinePricingOut)
async def update_machine_pricing(
    machine_type: MachineType, payload: schemas.MachinePricingUpdate, actor: Actor = Depends(require_admin)
):
    return await catalog.update_machine_price(machine_type, payload.price_cents, payload.description)


@router.get("/machines/my", response_model=list[MachineType])
async def my_machines(actor: Actor = Depends(get_current_actor)):
    if actor.is_admin:
        return list(MachineType)
    return sorted(actor.machines, key=lambda m: m.value)


# ---- Matières ----
@router.get("/materials", response_model=list[schemas.MaterialOut])
async def list_materials(active_only: bool = False, actor: Actor = Depends(get_current_actor)):
    return await catalog.list_materials(active_only=active_only)


@router.get("/materials/{material_id}", response_model=schemas.MaterialOut)
async def get_material(material_id: int, actor: Actor = Depends(get_current_actor)):
    return await catalog.get_material(material_id)


@router.post("/materials", response_model=schemas.MaterialOut, status_code=201)
async def create_material(payload: schemas.MaterialCreate, actor: Actor = Depends(require_admin)):
    return await catalog.create_material(payload.model_dump())


@router.patch("/materials/{material_id}", response_model=schemas.MaterialOut)
async def update_material(material_id: int, payload: schemas.MaterialUpdate, actor: Actor = Depends(require_admin)):
    return await catalog.update_material(material_id, payload.model_dump(exclude_unset=True))


@router.delete("/materials/{material_id}", status_code=204)
async def delete_material(material_id: int, actor: Actor = Depends(require_admin)):
    await catalog.delete_material(material_id)
    return None


# ---- Prestations ----
@router.get("/services", response_model=list[schemas.ServiceOut])
async def list_services(active_only: bool = False, actor: Actor = Depends(get_current_actor)):
    return await catalog.list_services(active_only=active_only)


@router.get("/services/{service_id}", response_model=schemas.ServiceOut)
async def get_service(service_id: int, actor: Actor = Depends(get_current_actor)):
    return await catalog.get_service(service_id)


@router.post("/services", response_model=schemas.ServiceOut, status_code=201)
async def create_service(payload: schemas.ServiceCreate, actor: Actor = Depends(require_admin)):
    return await catalog.create_service(payload.model_dump())


@router.patch("/services/{service_id}", response_model=schemas.ServiceOut)
async def update_service(service_id: int, payload: schemas.ServiceUpdate, actor: Actor = Depends(require_admin)):
    return await catalog.update_service(service_id, payload.model_dump(exclude_unset=True))


@router.delete("/services/{service_id}", status_code=204)
async def delete_service(service_id: int, actor: Actor = Depends(require_admin)):
    await catalog.delete_service(service_id)
    return None
