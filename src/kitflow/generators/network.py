"""Synthetic hub-and-spoke network generator."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np
from faker import Faker

from kitflow.kits.core import TIERS, ResourceQuantity
from kitflow.network.core import Location, RouteTemplate, VehicleType
from kitflow.simulation.builder import (
    _KIT_CAPACITY_COLUMN,
    _SEAT_COLUMN,
    _STOCK_SUFFIX,
    DELIMITER,
    LOCATIONS_FILE,
    TEMPLATE_FILE,
    VEHICLES_FILE,
    WEEKDAY_COLUMNS,
)
from kitflow.simulation.world import DEFAULT_HUB_ID, World

if TYPE_CHECKING:
    from numpy.random import Generator

# Seats by tier (first, business, premium economy, economy) per fleet class
DEFAULT_FLEET = {
    "NB1": {"seats": [0, 12, 24, 150], "cost_per_kg_km": 0.0008},
    "WB1": {"seats": [8, 40, 40, 250], "cost_per_kg_km": 0.0010},
    "WB2": {"seats": [12, 60, 50, 320], "cost_per_kg_km": 0.0012},
}
CRUISE_SPEED_KMH = 800.0


class NetworkGenerator:
    """
    Generates a World: one depot, N spokes with Faker-generated names and
    codes, a small vehicle fleet and a weekly plan of hub-spoke rotations.
    """

    def __init__(self, seed: int = 42, config: dict[str, Any] | None = None) -> None:
        self.rng: Generator = np.random.default_rng(seed)
        self._faker = Faker()
        Faker.seed(seed)
        self.config = config or {}

    def _spoke_codes(self, n_spokes: int) -> list[tuple[str, str]]:
        """Unique three-letter codes, each paired with a fake city name."""
        seen: set[str] = {DEFAULT_HUB_ID}
        result: list[tuple[str, str]] = []
        while len(result) < n_spokes:
            city = self._faker.city()
            letters = [c for c in city.upper() if c.isalpha()]
            if len(letters) < 3:
                continue
            code = "".join(letters[:3])
            if code in seen:
                code = "".join(self.rng.choice(list("ABCDEFGHIJKLMNOPQRSTUVWXYZ"), size=3))
            if code in seen:
                continue
            seen.add(code)
            result.append((code, city))
        return result

    def _location(self, code: str, name: str, is_hub: bool) -> Location:
        scale = 20 if is_hub else 1
        capacity = ResourceQuantity.from_array(
            np.array([200, 800, 400, 4000]) * scale * self.rng.uniform(0.8, 1.2)
        )
        fill = self.rng.uniform(0.3, 0.6)
        processing = (
            ResourceQuantity()
            if is_hub
            else ResourceQuantity.from_array(self.rng.integers(1, 7, size=len(TIERS)))
        )
        return Location(
            id=code,
            name=name,
            is_hub=is_hub,
            capacity=capacity,
            processing_hours=processing,
            processing_cost={t: round(float(self.rng.uniform(2.0, 6.0)), 2) for t in TIERS},
            loading_cost={t: round(float(self.rng.uniform(1.0, 3.0)), 2) for t in TIERS},
            initial_stock=ResourceQuantity.from_array(capacity.as_array() * fill),
        )

    def _fleet(self) -> list[VehicleType]:
        fleet = []
        for type_id, spec in DEFAULT_FLEET.items():
            seats = ResourceQuantity.from_array(np.array(spec["seats"]))
            fleet.append(
                VehicleType(
                    id=type_id,
                    seats=seats,
                    # Room for every seat plus a margin for surplus routing
                    kit_capacity=ResourceQuantity.from_array(
                        np.ceil(seats.as_array() * 1.2)
                    ),
                    cost_per_kg_km=float(spec["cost_per_kg_km"]),
                )
            )
        return fleet

    def _weekdays(self) -> tuple[bool, ...]:
        flags = self.rng.random(len(WEEKDAY_COLUMNS)) < 0.85
        if not flags.any():
            flags[int(self.rng.integers(len(WEEKDAY_COLUMNS)))] = True
        return tuple(bool(f) for f in flags)

    def _rotation(self, spoke: str, distance: float) -> list[RouteTemplate]:
        """Outbound leg from the depot and the matching return leg."""
        hours = max(1, int(round(distance / CRUISE_SPEED_KMH)) + 1)
        out_dep = int(self.rng.integers(0, 24))
        out_arr = out_dep + hours
        back_dep = (out_arr + int(self.rng.integers(1, 4))) % 24
        back_arr = back_dep + hours
        weekdays = self._weekdays()
        return [
            RouteTemplate(
                origin_id=DEFAULT_HUB_ID,
                destination_id=spoke,
                departure_hour=out_dep,
                arrival_hour=out_arr % 24,
                arrival_next_day=out_arr >= 24,
                distance_km=distance,
                weekdays=weekdays,
            ),
            RouteTemplate(
                origin_id=spoke,
                destination_id=DEFAULT_HUB_ID,
                departure_hour=back_dep,
                arrival_hour=back_arr % 24,
                arrival_next_day=back_arr >= 24,
                distance_km=distance,
                weekdays=weekdays,
            ),
        ]

    def generate(self, n_spokes: int = 12, rotations_per_spoke: int = 2) -> World:
        world = World()
        world.add_location(self._location(DEFAULT_HUB_ID, "Central Depot", is_hub=True))
        for vehicle in self._fleet():
            world.add_vehicle_type(vehicle)

        for code, city in self._spoke_codes(n_spokes):
            world.add_location(self._location(code, city, is_hub=False))
            distance = float(round(self.rng.uniform(500.0, 8000.0)))
            for _ in range(rotations_per_spoke):
                for template in self._rotation(code, distance):
                    world.add_template(template)
        return world


def write_reference_csv(world: World, output_dir: str | Path) -> None:
    """Writes a World as the three ';'-delimited tables WorldBuilder reads."""
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    location_fields = ["code", "name"]
    for kind in ("processing_time", "processing_cost", "loading_cost"):
        location_fields += [f"{t.value}_{kind}" for t in TIERS]
    location_fields += [f"initial_{_STOCK_SUFFIX[t]}_stock" for t in TIERS]
    location_fields += [f"capacity_{_STOCK_SUFFIX[t]}" for t in TIERS]
    with open(out / LOCATIONS_FILE, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=location_fields, delimiter=DELIMITER)
        writer.writeheader()
        for loc in world.locations.values():
            row: dict[str, Any] = {"code": loc.id, "name": loc.name}
            for t in TIERS:
                row[f"{t.value}_processing_time"] = loc.processing_hours[t]
                row[f"{t.value}_processing_cost"] = loc.processing_cost.get(t, 0.0)
                row[f"{t.value}_loading_cost"] = loc.loading_cost.get(t, 0.0)
                row[f"initial_{_STOCK_SUFFIX[t]}_stock"] = loc.initial_stock[t]
                row[f"capacity_{_STOCK_SUFFIX[t]}"] = loc.capacity[t]
            writer.writerow(row)

    vehicle_fields = (
        ["type_code"]
        + [_SEAT_COLUMN[t] for t in TIERS]
        + [_KIT_CAPACITY_COLUMN[t] for t in TIERS]
        + ["cost_per_kg_per_km"]
    )
    with open(out / VEHICLES_FILE, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=vehicle_fields, delimiter=DELIMITER)
        writer.writeheader()
        for vehicle in world.vehicle_types.values():
            row = {"type_code": vehicle.id, "cost_per_kg_per_km": vehicle.cost_per_kg_km}
            for t in TIERS:
                row[_SEAT_COLUMN[t]] = vehicle.seats[t]
                row[_KIT_CAPACITY_COLUMN[t]] = vehicle.kit_capacity[t]
            writer.writerow(row)

    template_fields = [
        "depart_code",
        "arrival_code",
        "scheduled_hour",
        "scheduled_arrival_hour",
        "arrival_next_day",
        "distance_km",
    ] + WEEKDAY_COLUMNS
    with open(out / TEMPLATE_FILE, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=template_fields, delimiter=DELIMITER)
        writer.writeheader()
        for template in world.templates:
            row = {
                "depart_code": template.origin_id,
                "arrival_code": template.destination_id,
                "scheduled_hour": template.departure_hour,
                "scheduled_arrival_hour": template.arrival_hour,
                "arrival_next_day": "1" if template.arrival_next_day else "0",
                "distance_km": int(template.distance_km),
            }
            for day, runs in zip(WEEKDAY_COLUMNS, template.weekdays):
                row[day] = "1" if runs else "0"
            writer.writerow(row)
