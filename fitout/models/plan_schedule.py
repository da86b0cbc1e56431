"""
Execution plan schedule variants.

An execution plan is scheduled either day-by-day or phase-by-phase. The two
shapes are explicit variants instead of one loosely typed bag of optional
fields; ``parse_schedule`` is the single boundary where raw JSON becomes one
of them, and everything downstream handles both exhaustively.

    PlanDay   { date, work_description, materials[], labor_cost, material_cost }
    PlanPhase { name, start_date, end_date, materials[], estimated_cost }

Both carry ``PlannedMaterial { catalog_item_id, quantity, required_on }``
lines, which feed the procurement ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Union

from fitout.utils.helpers import parse_date, to_decimal, to_quantity

SCHEDULE_KINDS = ("days", "phases")


@dataclass(frozen=True)
class PlannedMaterial:
    catalog_item_id: str
    quantity: Decimal
    required_on: date
    item_name: str | None = None

    def to_dict(self) -> dict:
        return {
            "catalog_item_id": self.catalog_item_id,
            "item_name": self.item_name,
            "quantity": float(self.quantity),
            "required_on": self.required_on.isoformat(),
        }


@dataclass(frozen=True)
class PlanDay:
    date: date
    work_description: str = ""
    materials: tuple[PlannedMaterial, ...] = field(default_factory=tuple)
    labor_cost: Decimal = Decimal("0")
    material_cost: Decimal = Decimal("0")

    @property
    def cost(self) -> Decimal:
        return self.labor_cost + self.material_cost

    @property
    def label(self) -> str:
        return self.work_description or self.date.isoformat()

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "work_description": self.work_description,
            "materials": [m.to_dict() for m in self.materials],
            "labor_cost": float(self.labor_cost),
            "material_cost": float(self.material_cost),
        }


@dataclass(frozen=True)
class PlanPhase:
    name: str
    start_date: date
    end_date: date
    materials: tuple[PlannedMaterial, ...] = field(default_factory=tuple)
    estimated_cost: Decimal = Decimal("0")

    @property
    def cost(self) -> Decimal:
        return self.estimated_cost

    @property
    def label(self) -> str:
        return self.name

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "materials": [m.to_dict() for m in self.materials],
            "estimated_cost": float(self.estimated_cost),
        }


ScheduleItem = Union[PlanDay, PlanPhase]


class ScheduleError(ValueError):
    """Raw schedule JSON does not describe a valid plan."""


def parse_schedule(kind: str, raw_items) -> tuple[ScheduleItem, ...]:
    """Parse raw JSON schedule items into PlanDay or PlanPhase variants.

    Raises:
        ScheduleError: unknown kind, empty schedule, or a malformed item. The
            message names the offending item index.
    """
    if kind not in SCHEDULE_KINDS:
        raise ScheduleError(f"schedule kind must be one of {SCHEDULE_KINDS}, got {kind!r}")
    if not isinstance(raw_items, list) or not raw_items:
        raise ScheduleError(f"{kind} must be a non-empty list")

    parser = _parse_day if kind == "days" else _parse_phase
    items = []
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ScheduleError(f"{kind}[{idx}] must be an object")
        try:
            items.append(parser(raw))
        except (ValueError, TypeError, KeyError) as exc:
            raise ScheduleError(f"{kind}[{idx}]: {exc}") from exc
    return tuple(items)


def _parse_materials(raw_list) -> tuple[PlannedMaterial, ...]:
    materials = []
    for raw in raw_list or []:
        catalog_item_id = str(raw.get("catalog_item_id") or "").strip()
        if not catalog_item_id:
            raise ValueError("material catalog_item_id is required")
        quantity = to_quantity(raw.get("quantity"), "material quantity")
        if quantity <= 0:
            raise ValueError(f"material {catalog_item_id} quantity must be > 0")
        required_on = parse_date(raw.get("required_on"))
        if required_on is None:
            raise ValueError(f"material {catalog_item_id} required_on is required")
        materials.append(PlannedMaterial(
            catalog_item_id=catalog_item_id,
            quantity=quantity,
            required_on=required_on,
            item_name=raw.get("item_name"),
        ))
    return tuple(materials)


def _non_negative(raw, key) -> Decimal:
    value = to_decimal(raw.get(key) or 0, key)
    if value < 0:
        raise ValueError(f"{key} must be >= 0")
    return value


def _parse_day(raw: dict) -> PlanDay:
    day = parse_date(raw.get("date"))
    if day is None:
        raise ValueError("date is required")
    return PlanDay(
        date=day,
        work_description=(raw.get("work_description") or "").strip(),
        materials=_parse_materials(raw.get("materials")),
        labor_cost=_non_negative(raw, "labor_cost"),
        material_cost=_non_negative(raw, "material_cost"),
    )


def _parse_phase(raw: dict) -> PlanPhase:
    name = (raw.get("name") or "").strip()
    if not name:
        raise ValueError("name is required")
    start = parse_date(raw.get("start_date"))
    end = parse_date(raw.get("end_date"))
    if start is None or end is None:
        raise ValueError("start_date and end_date are required")
    if end < start:
        raise ValueError("end_date is before start_date")
    return PlanPhase(
        name=name,
        start_date=start,
        end_date=end,
        materials=_parse_materials(raw.get("materials")),
        estimated_cost=_non_negative(raw, "estimated_cost"),
    )


def schedule_total(items) -> Decimal:
    """Plan total that funds the cost center."""
    total = Decimal("0")
    for item in items:
        if isinstance(item, (PlanDay, PlanPhase)):
            total += item.cost
        else:
            raise TypeError(f"unknown schedule item {type(item).__name__}")
    return total


def iter_materials(items):
    """Yield (schedule_item, PlannedMaterial) for every material line, in plan order."""
    for item in items:
        if isinstance(item, (PlanDay, PlanPhase)):
            for material in item.materials:
                yield item, material
        else:
            raise TypeError(f"unknown schedule item {type(item).__name__}")
