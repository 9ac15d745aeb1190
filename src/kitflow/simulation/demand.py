from typing import Any

import numpy as np

from kitflow.config.loader import engine_section
from kitflow.kits.core import ResourceQuantity, Tier
from kitflow.simulation.catalog import DepartureCatalog
from kitflow.simulation.clock import HOURS_PER_DAY, HOURS_PER_WEEK, hour_of_week
from kitflow.simulation.world import World

DEFAULT_TYPICAL_LOAD = {
    "first": 10,
    "business": 50,
    "premium_economy": 25,
    "economy": 250,
}


class DemandForecaster:
    """
    Two-source demand estimator: known open departures plus the weekly
    route template. The sources are summed without deduplication, so the
    estimate leans high rather than low.
    """

    def __init__(
        self,
        world: World,
        catalog: DepartureCatalog,
        config: dict[str, Any] | None = None,
    ) -> None:
        self.world = world
        self.catalog = catalog
        params = engine_section(config or {}, "forecast")
        typical = {**DEFAULT_TYPICAL_LOAD, **params.get("typical_load", {})}
        self.typical_load = ResourceQuantity.from_tier_map(typical)

        # Pre-calculate ID to index maps to match InventoryLedger
        self.location_to_idx = {
            id: i for i, id in enumerate(sorted(self.world.locations.keys()))
        }

        # Template matches per origin per hour-of-week.
        # Shape: [Locations, 168]
        self.template_index = np.zeros(
            (len(self.location_to_idx), HOURS_PER_WEEK), dtype=np.int32
        )
        self._build_template_index()

    def _build_template_index(self) -> None:
        for template in self.world.templates:
            idx = self.location_to_idx.get(template.origin_id)
            if idx is None:
                continue
            for weekday, runs in enumerate(template.weekdays):
                if runs:
                    slot = weekday * HOURS_PER_DAY + template.departure_hour % HOURS_PER_DAY
                    self.template_index[idx, slot] += 1

    def template_matches(self, location_id: str, start: int, horizon: int) -> int:
        """Number of template departures from the location in [start, start + horizon)."""
        idx = self.location_to_idx.get(location_id)
        if idx is None or horizon < 0:
            return 0
        slots = [hour_of_week(r) for r in range(start, start + horizon)]
        return int(np.sum(self.template_index[idx, slots]))

    def scheduled_demand(
        self, location_id: str, tier: Tier, start: int, horizon: int
    ) -> int:
        """Template-only estimate: matches times the tier's typical load."""
        return self.template_matches(location_id, start, horizon) * self.typical_load[tier]

    def known_demand(self, location_id: str, tier: Tier, start: int, horizon: int) -> int:
        passengers = self.catalog.passengers_from(location_id, start, start + horizon)
        return passengers[tier]

    def demand(self, location_id: str, tier: Tier, start: int, horizon: int) -> int:
        return self.known_demand(location_id, tier, start, horizon) + self.scheduled_demand(
            location_id, tier, start, horizon
        )

    def demand_vector(self, location_id: str, start: int, horizon: int) -> ResourceQuantity:
        known = self.catalog.passengers_from(location_id, start, start + horizon)
        matches = self.template_matches(location_id, start, horizon)
        return ResourceQuantity.from_array(
            known.as_array() + matches * self.typical_load.as_array()
        )

    def network_demand(self, tier: Tier, start: int, horizon: int) -> int:
        """Sum of forecast demand across every location."""
        return sum(
            self.demand(loc_id, tier, start, horizon) for loc_id in self.location_to_idx
        )

    def route_distance(self, origin_id: str, destination_id: str) -> float:
        return self.world.route_distance(origin_id, destination_id)

