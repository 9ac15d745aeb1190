import csv
import logging
from pathlib import Path
from typing import Any

from kitflow.kits.core import TIERS, ResourceQuantity, Tier
from kitflow.network.core import Location, RouteTemplate, VehicleType
from kitflow.simulation.world import DEFAULT_HUB_ID, World

logger = logging.getLogger(__name__)

LOCATIONS_FILE = "airports_with_stocks.csv"
VEHICLES_FILE = "aircraft_types.csv"
TEMPLATE_FILE = "flight_plan.csv"
DELIMITER = ";"

WEEKDAY_COLUMNS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]

# Column name fragments used by the reference tables, per tier
_STOCK_SUFFIX = {
    Tier.FIRST: "fc",
    Tier.BUSINESS: "bc",
    Tier.PREMIUM_ECONOMY: "pe",
    Tier.ECONOMY: "ec",
}
_SEAT_COLUMN = {
    Tier.FIRST: "first_class_seats",
    Tier.BUSINESS: "business_seats",
    Tier.PREMIUM_ECONOMY: "premium_economy_seats",
    Tier.ECONOMY: "economy_seats",
}
_KIT_CAPACITY_COLUMN = {
    Tier.FIRST: "first_class_kits_capacity",
    Tier.BUSINESS: "business_kits_capacity",
    Tier.PREMIUM_ECONOMY: "premium_economy_kits_capacity",
    Tier.ECONOMY: "economy_kits_capacity",
}


def _int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class WorldBuilder:
    """
    Builds the read-only World from the ';'-delimited reference tables:
    locations with stocks, vehicle types and the weekly departure plan.
    """

    def __init__(self, data_dir: str | Path, hub_id: str = DEFAULT_HUB_ID) -> None:
        self.data_dir = Path(data_dir)
        self.hub_id = hub_id
        self.world = World()

    def build(self) -> World:
        print(f"WorldBuilder: Loading reference data from {self.data_dir}...")
        self._load_locations_csv()
        self._load_vehicles_csv()
        self._load_templates_csv()
        # Fails loudly when no hub was declared
        hub = self.world.hub_id
        print(
            f"WorldBuilder: {len(self.world.locations)} locations (hub {hub}), "
            f"{len(self.world.vehicle_types)} vehicle types, "
            f"{len(self.world.templates)} route templates"
        )
        return self.world

    def _rows(self, filename: str) -> list[dict[str, str]]:
        path = self.data_dir / filename
        with open(path, encoding="utf-8", newline="") as f:
            reader = csv.DictReader(f, delimiter=DELIMITER)
            return [
                {k.strip(): (v or "").strip() for k, v in row.items() if k}
                for row in reader
            ]

    def _load_locations_csv(self) -> None:
        for row in self._rows(LOCATIONS_FILE):
            code = row.get("code", "")
            self.world.add_location(
                Location(
                    id=code,
                    name=row.get("name", code),
                    is_hub=code == self.hub_id,
                    capacity=ResourceQuantity(
                        **{t.value: _int(row.get(f"capacity_{_STOCK_SUFFIX[t]}")) for t in TIERS}
                    ),
                    processing_hours=ResourceQuantity(
                        **{t.value: _int(row.get(f"{t.value}_processing_time")) for t in TIERS}
                    ),
                    processing_cost={
                        t: _float(row.get(f"{t.value}_processing_cost")) for t in TIERS
                    },
                    loading_cost={t: _float(row.get(f"{t.value}_loading_cost")) for t in TIERS},
                    initial_stock=ResourceQuantity(
                        **{
                            t.value: _int(row.get(f"initial_{_STOCK_SUFFIX[t]}_stock"))
                            for t in TIERS
                        }
                    ),
                )
            )

    def _load_vehicles_csv(self) -> None:
        for row in self._rows(VEHICLES_FILE):
            self.world.add_vehicle_type(
                VehicleType(
                    id=row.get("type_code", ""),
                    seats=ResourceQuantity(
                        **{t.value: _int(row.get(_SEAT_COLUMN[t])) for t in TIERS}
                    ),
                    kit_capacity=ResourceQuantity(
                        **{t.value: _int(row.get(_KIT_CAPACITY_COLUMN[t])) for t in TIERS}
                    ),
                    cost_per_kg_km=_float(row.get("cost_per_kg_per_km")),
                )
            )

    def _load_templates_csv(self) -> None:
        for row in self._rows(TEMPLATE_FILE):
            origin = row.get("depart_code", "")
            destination = row.get("arrival_code", "")
            if origin not in self.world.locations or destination not in self.world.locations:
                logger.warning("Route %s -> %s references an unknown location", origin, destination)
            self.world.add_template(
                RouteTemplate(
                    origin_id=origin,
                    destination_id=destination,
                    departure_hour=_int(row.get("scheduled_hour")),
                    arrival_hour=_int(row.get("scheduled_arrival_hour")),
                    arrival_next_day=row.get("arrival_next_day") == "1",
                    distance_km=_float(row.get("distance_km")),
                    weekdays=tuple(row.get(day) == "1" for day in WEEKDAY_COLUMNS),
                )
            )
