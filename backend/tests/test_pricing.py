from decimal import Decimal

import pytest

from atelier.enums import MachineType
from atelier.errors import ValidationError
from atelier.pricing import (
    INPUT_TYPES, _RESOLVERS, CountInput, FoldingInput, MaintenanceInput, MaterialPrice,
    MaterialSaleInput, MeteredInput, ServicePrice, TimedInput, area, build_line_input,
    resolve_line_price,
)

PLEXI = MaterialPrice(id=7, price_per_unit_cents=1000)


def test_cnc_minutes_without_material():
    line = build_line_input(MachineType.CNC, {"minutes": 30})
    priced = resolve_line_price(line, 200)
    assert isinstance(line, TimedInput)
    assert priced.unit_price_cents == 200
    assert priced.material_cost_cents == 0
    assert priced.line_total_cents == 6000


def test_material_sale_is_area_times_material_price():
    line = build_line_input(MachineType.VENTE_MATERIAU, {"material_id": 7, "width": 2, "height": 1.5})
    priced = resolve_line_price(line, 0, material=PLEXI)
    assert isinstance(line, MaterialSaleInput)
    assert priced.line_total_cents == 3000
    assert priced.material_cost_cents == 3000
    assert priced.unit_price_cents == 1000


def test_laser_with_material_in_centimeters():
    line = build_line_input(
        MachineType.LASER,
        {"minutes": 30, "material_id": 7, "width": 200, "height": 150, "dimension_unit": "cm"},
    )
    priced = resolve_line_price(line, 200, material=PLEXI)
    assert priced.material_cost_cents == 3000
    assert priced.line_total_cents == 9000


def test_area_converts_each_side():
    assert area(200, 150, "cm") == Decimal("3")
    assert area(2, 1.5, "m") == Decimal("3.0")
    with pytest.raises(ValidationError):
        area(1, 1, "mm")


def test_champs_rounds_half_up_to_the_cent():
    line = build_line_input(MachineType.CHAMPS, {"meters": 2.5})
    assert isinstance(line, MeteredInput)
    assert resolve_line_price(line, 101).line_total_cents == 253


def test_panneaux_per_piece():
    line = build_line_input(MachineType.PANNEAUX, {"quantity": 4})
    assert isinstance(line, CountInput)
    assert resolve_line_price(line, 500).line_total_cents == 2000


def test_pliage_machine_and_material_meters():
    line = build_line_input(MachineType.PLIAGE, {"meters": 3, "material_meters": 2, "material_id": 9})
    priced = resolve_line_price(line, 150, material=MaterialPrice(id=9, price_per_unit_cents=800))
    assert isinstance(line, FoldingInput)
    assert priced.material_cost_cents == 1600
    assert priced.line_total_cents == 2050


def test_pliage_material_needs_meters():
    with pytest.raises(ValidationError):
        build_line_input(MachineType.PLIAGE, {"meters": 3, "material_id": 9})


def test_maintenance_modes():
    manual = build_line_input(MachineType.SERVICE_MAINTENANCE, {"unit_price_cents": 5000})
    assert manual.mode == "manual"
    assert resolve_line_price(manual, 0).line_total_cents == 5000

    by_material = build_line_input(MachineType.SERVICE_MAINTENANCE, {"material_id": 3, "quantity": 3})
    priced = resolve_line_price(by_material, 0, material=MaterialPrice(id=3, price_per_unit_cents=250))
    assert by_material.mode == "material"
    assert priced.line_total_cents == 750
    assert priced.material_cost_cents == 750

    by_service = build_line_input(MachineType.SERVICE_MAINTENANCE, {"service_id": 4, "quantity": 2})
    priced = resolve_line_price(by_service, 0, service=ServicePrice(id=4, price_cents=1500))
    assert by_service.mode == "service"
    assert priced.line_total_cents == 3000


@pytest.mark.parametrize(
    "machine, data",
    [
        (MachineType.CNC, {}),
        (MachineType.CNC, {"minutes": 0}),
        (MachineType.LASER, {"minutes": -5}),
        (MachineType.CNC, {"minutes": 10, "material_id": 7}),
        (MachineType.CNC, {"minutes": 10, "width": 2}),
        (MachineType.CHAMPS, {"quantity": 3}),
        (MachineType.PANNEAUX, {"quantity": "beaucoup"}),
        (MachineType.SERVICE_MAINTENANCE, {}),
        (MachineType.SERVICE_MAINTENANCE, {"unit_price_cents": 100, "service_id": 1, "quantity": 1}),
        (MachineType.SERVICE_MAINTENANCE, {"service_id": 1}),
        (MachineType.VENTE_MATERIAU, {"width": 1, "height": 1}),
        (MachineType.VENTE_MATERIAU, {"material_id": 7, "width": 1, "height": 1, "dimension_unit": "mm"}),
        ("PLASMA", {"minutes": 3}),
        (MachineType.CNC, {"minutes": float("nan")}),
        (MachineType.LASER, {"minutes": float("inf")}),
        (MachineType.CHAMPS, {"meters": "Infinity"}),
        (MachineType.CNC, {"minutes": 10, "material_id": 7, "width": float("nan"), "height": 1}),
        (MachineType.SERVICE_MAINTENANCE, {"unit_price_cents": float("inf")}),
        (MachineType.SERVICE_MAINTENANCE, {"unit_price_cents": 0}),
    ],
)
def test_invalid_inputs_are_rejected(machine, data):
    with pytest.raises(ValidationError):
        build_line_input(machine, data)


def test_missing_selected_material_is_rejected():
    line = build_line_input(MachineType.VENTE_MATERIAU, {"material_id": 7, "width": 1, "height": 1})
    with pytest.raises(ValidationError):
        resolve_line_price(line, 0)
    with pytest.raises(ValidationError):
        resolve_line_price(line, 0, material=MaterialPrice(id=8, price_per_unit_cents=1))


def test_same_input_same_prices_same_total():
    line = build_line_input(MachineType.CNC, {"minutes": 12.5, "material_id": 7, "width": 0.3, "height": 0.7})
    assert resolve_line_price(line, 175, material=PLEXI) == resolve_line_price(line, 175, material=PLEXI)


def test_every_machine_type_has_an_input_and_a_rule():
    assert set(INPUT_TYPES) == set(MachineType)
    assert set(INPUT_TYPES.values()) <= set(_RESOLVERS)
    for machine, input_type in INPUT_TYPES.items():
        if input_type is not TimedInput:
            assert input_type.machine_type == machine


def test_default_dimension_unit_is_meters():
    line = build_line_input(MachineType.VENTE_MATERIAU, {"material_id": 7, "width": 1, "height": 2})
    assert line.dimension_unit == "m"
    assert MaintenanceInput().mode == "manual"
