"""Calcul du prix d'une ligne de devis.

Chaque type de machine a sa propre variante d'entrée (`TimedInput`,
`MeteredInput`, ...) qui ne porte que les champs dont sa règle a besoin.
`build_line_input` valide une saisie brute et produit la bonne variante;
`resolve_line_price` applique la règle et renvoie les montants figés
(prix unitaire, coût matière, total) en centimes.

Tout le calcul se fait en Decimal; chaque composante est arrondie une seule
fois au centime (demi supérieur) et le total est la somme des composantes
arrondies, de sorte que `line_total_cents - material_cost_cents` est toujours
la part machine.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, ClassVar, Mapping, Optional, Union

from atelier.enums import MachineType
from atelier.errors import ValidationError

DIMENSION_UNITS = {"m": Decimal(1), "cm": Decimal(100)}


@dataclass(frozen=True)
class MaterialPrice:
    id: int
    price_per_unit_cents: int


@dataclass(frozen=True)
class ServicePrice:
    id: int
    price_cents: int


@dataclass(frozen=True)
class PricedLine:
    unit_price_cents: int
    material_cost_cents: int
    line_total_cents: int


# ---- Variantes d'entrée ----

@dataclass(frozen=True)
class TimedInput:
    """CNC / LASER: minutes machine, matière optionnelle facturée à la surface."""
    machine_type: MachineType
    minutes: float
    width: Optional[float] = None
    height: Optional[float] = None
    dimension_unit: str = "m"
    material_id: Optional[int] = None

    def as_columns(self) -> dict:
        return {
            "minutes": self.minutes, "width": self.width, "height": self.height,
            "dimension_unit": self.dimension_unit if self.width is not None else None,
            "material_id": self.material_id,
        }


@dataclass(frozen=True)
class MeteredInput:
    machine_type: ClassVar[MachineType] = MachineType.CHAMPS
    meters: float

    def as_columns(self) -> dict:
        return {"meters": self.meters}


@dataclass(frozen=True)
class CountInput:
    machine_type: ClassVar[MachineType] = MachineType.PANNEAUX
    quantity: float

    def as_columns(self) -> dict:
        return {"quantity": self.quantity}


@dataclass(frozen=True)
class FoldingInput:
    machine_type: ClassVar[MachineType] = MachineType.PLIAGE
    machine_meters: float
    material_meters: Optional[float] = None
    material_id: Optional[int] = None

    def as_columns(self) -> dict:
        return {
            "meters": self.machine_meters,
            "material_meters": self.material_meters,
            "material_id": self.material_id,
        }


@dataclass(frozen=True)
class MaintenanceInput:
    """Un seul des trois modes: prix manuel, matière x quantité, prestation x quantité."""
    machine_type: ClassVar[MachineType] = MachineType.SERVICE_MAINTENANCE
    unit_price_cents: Optional[int] = None
    material_id: Optional[int] = None
    service_id: Optional[int] = None
    quantity: Optional[float] = None

    @property
    def mode(self) -> str:
        if self.service_id is not None:
            return "service"
        if self.material_id is not None:
            return "material"
        return "manual"

    def as_columns(self) -> dict:
        return {
            "quantity": self.quantity,
            "material_id": self.material_id,
            "service_id": self.service_id,
        }


@dataclass(frozen=True)
class MaterialSaleInput:
    machine_type: ClassVar[MachineType] = MachineType.VENTE_MATERIAU
    material_id: int
    width: float
    height: float
    dimension_unit: str = "m"

    def as_columns(self) -> dict:
        return {
            "material_id": self.material_id, "width": self.width,
            "height": self.height, "dimension_unit": self.dimension_unit,
        }


LineInput = Union[TimedInput, MeteredInput, CountInput, FoldingInput, MaintenanceInput, MaterialSaleInput]

INPUT_TYPES: dict[MachineType, type] = {
    MachineType.CNC: TimedInput,
    MachineType.LASER: TimedInput,
    MachineType.CHAMPS: MeteredInput,
    MachineType.PANNEAUX: CountInput,
    MachineType.PLIAGE: FoldingInput,
    MachineType.SERVICE_MAINTENANCE: MaintenanceInput,
    MachineType.VENTE_MATERIAU: MaterialSaleInput,
}


# ---- Helpers ----

def _dec(value: Any) -> Decimal:
    return Decimal(str(value))


def to_cents(amount: Decimal) -> int:
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def area(width: float, height: float, unit: str) -> Decimal:
    """Surface en m²; les deux côtés sont convertis avant multiplication."""
    factor = DIMENSION_UNITS.get(unit)
    if factor is None:
        raise ValidationError(f"Unknown dimension unit '{unit}' (expected m or cm)")
    return (_dec(width) / factor) * (_dec(height) / factor)


def _positive(data: Mapping[str, Any], name: str, machine: MachineType, required: bool = True):
    value = data.get(name)
    if value is None:
        if required:
            raise ValidationError(f"{machine.value} line requires '{name}'")
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{name}' must be a number")
    if not math.isfinite(number) or number <= 0:
        raise ValidationError(f"'{name}' must be a finite number > 0")
    return number


def _unit(data: Mapping[str, Any]) -> str:
    unit = data.get("dimension_unit") or "m"
    if unit not in DIMENSION_UNITS:
        raise ValidationError(f"Unknown dimension unit '{unit}' (expected m or cm)")
    return unit


def _dimensions(data: Mapping[str, Any], machine: MachineType, required: bool):
    width = _positive(data, "width", machine, required=required)
    height = _positive(data, "height", machine, required=required)
    if (width is None) != (height is None):
        raise ValidationError("width and height must be given together")
    return width, height


# ---- Construction depuis une saisie brute ----

def build_line_input(machine_type: MachineType | str, data: Mapping[str, Any]) -> LineInput:
    """Valide la saisie pour ce type de machine; rien n'est mis à zéro en silence."""
    try:
        machine = MachineType(machine_type)
    except ValueError:
        raise ValidationError(f"Unknown machine type '{machine_type}'")

    if machine in (MachineType.CNC, MachineType.LASER):
        width, height = _dimensions(data, machine, required=False)
        material_id = data.get("material_id")
        if material_id is not None and width is None:
            raise ValidationError("width and height are required when a material is selected")
        return TimedInput(
            machine_type=machine,
            minutes=_positive(data, "minutes", machine),
            width=width,
            height=height,
            dimension_unit=_unit(data),
            material_id=material_id,
        )

    if machine == MachineType.CHAMPS:
        return MeteredInput(meters=_positive(data, "meters", machine))

    if machine == MachineType.PANNEAUX:
        return CountInput(quantity=_positive(data, "quantity", machine))

    if machine == MachineType.PLIAGE:
        material_id = data.get("material_id")
        material_meters = _positive(data, "material_meters", machine, required=material_id is not None)
        if material_meters is not None and material_id is None:
            raise ValidationError("material_meters requires a material")
        return FoldingInput(
            machine_meters=_positive(data, "meters", machine),
            material_meters=material_meters,
            material_id=material_id,
        )

    if machine == MachineType.SERVICE_MAINTENANCE:
        service_id = data.get("service_id")
        material_id = data.get("material_id")
        unit_price = data.get("unit_price_cents")
        given = [x for x in (service_id, material_id, unit_price) if x is not None]
        if not given:
            raise ValidationError(
                "SERVICE_MAINTENANCE line requires a unit price, a material or a service"
            )
        if len(given) > 1:
            raise ValidationError("SERVICE_MAINTENANCE line takes only one pricing mode")
        if unit_price is not None:
            return MaintenanceInput(unit_price_cents=int(_positive(data, "unit_price_cents", machine)))
        return MaintenanceInput(
            material_id=material_id,
            service_id=service_id,
            quantity=_positive(data, "quantity", machine),
        )

    if machine == MachineType.VENTE_MATERIAU:
        if data.get("material_id") is None:
            raise ValidationError("VENTE_MATERIAU line requires 'material_id'")
        width, height = _dimensions(data, machine, required=True)
        return MaterialSaleInput(
            material_id=data["material_id"], width=width, height=height, dimension_unit=_unit(data),
        )

    raise ValidationError(f"Unsupported machine type '{machine.value}'")


# ---- Règles de prix ----

def _require_material(line, material: Optional[MaterialPrice]) -> MaterialPrice:
    if material is None or material.id != line.material_id:
        raise ValidationError("Selected material is required to price this line")
    return material


def _resolve_timed(line: TimedInput, machine_price: int, material, service) -> PricedLine:
    machine_part = to_cents(_dec(line.minutes) * machine_price)
    material_cost = 0
    if line.material_id is not None:
        mat = _require_material(line, material)
        material_cost = to_cents(area(line.width, line.height, line.dimension_unit) * mat.price_per_unit_cents)
    return PricedLine(machine_price, material_cost, machine_part + material_cost)


def _resolve_metered(line: MeteredInput, machine_price: int, material, service) -> PricedLine:
    return PricedLine(machine_price, 0, to_cents(_dec(line.meters) * machine_price))


def _resolve_count(line: CountInput, machine_price: int, material, service) -> PricedLine:
    return PricedLine(machine_price, 0, to_cents(_dec(line.quantity) * machine_price))


def _resolve_folding(line: FoldingInput, machine_price: int, material, service) -> PricedLine:
    machine_part = to_cents(_dec(line.machine_meters) * machine_price)
    material_cost = 0
    if line.material_id is not None:
        mat = _require_material(line, material)
        material_cost = to_cents(_dec(line.material_meters) * mat.price_per_unit_cents)
    return PricedLine(machine_price, material_cost, machine_part + material_cost)


def _resolve_maintenance(line: MaintenanceInput, machine_price: int, material, service) -> PricedLine:
    if line.mode == "manual":
        return PricedLine(line.unit_price_cents, 0, line.unit_price_cents)
    if line.mode == "material":
        mat = _require_material(line, material)
        cost = to_cents(_dec(line.quantity) * mat.price_per_unit_cents)
        return PricedLine(mat.price_per_unit_cents, cost, cost)
    if service is None or service.id != line.service_id:
        raise ValidationError("Selected service is required to price this line")
    return PricedLine(service.price_cents, 0, to_cents(_dec(line.quantity) * service.price_cents))


def _resolve_material_sale(line: MaterialSaleInput, machine_price: int, material, service) -> PricedLine:
    mat = _require_material(line, material)
    cost = to_cents(area(line.width, line.height, line.dimension_unit) * mat.price_per_unit_cents)
    return PricedLine(mat.price_per_unit_cents, cost, cost)


_RESOLVERS: dict[type, Callable[..., PricedLine]] = {
    TimedInput: _resolve_timed,
    MeteredInput: _resolve_metered,
    CountInput: _resolve_count,
    FoldingInput: _resolve_folding,
    MaintenanceInput: _resolve_maintenance,
    MaterialSaleInput: _resolve_material_sale,
}


def resolve_line_price(
    line: LineInput,
    machine_price_cents: int,
    material: Optional[MaterialPrice] = None,
    service: Optional[ServicePrice] = None,
) -> PricedLine:
    resolver = _RESOLVERS.get(type(line))
    if resolver is None:
        raise TypeError(f"No pricing rule for {type(line).__name__}")
    return resolver(line, int(machine_price_cents), material, service)
