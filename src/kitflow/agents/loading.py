import logging
import math
from dataclasses import dataclass, field
from typing import Any

from kitflow.config.loader import engine_section
from kitflow.kits.core import LOWEST_TIER, TIERS, ResourceQuantity, Tier
from kitflow.network.core import Departure, VehicleType
from kitflow.simulation.clock import RunHorizon, to_round
from kitflow.simulation.demand import DemandForecaster
from kitflow.simulation.ledger import InventoryLedger
from kitflow.simulation.risk import RiskTracker
from kitflow.simulation.world import World

logger = logging.getLogger(__name__)

DEFAULT_EXPOSURE_WEIGHTS = {
    "first": 0.010,
    "business": 0.006,
    "premium_economy": 0.004,
    "economy": 0.003,
}
DEFAULT_DESTINATION_BUFFER = {
    "hub": 0.95,
    "first": 0.85,
    "business": 0.85,
    "premium_economy": 0.80,
    "economy": 0.70,
}
DEFAULT_EXTRA_CAP = {
    "first": 0.05,
    "business": 0.05,
    "premium_economy": 0.02,
    "economy": 0.0,
}
DEFAULT_SATURATION = {
    "first": 0.85,
    "business": 0.85,
    "premium_economy": 0.75,
    "economy": 0.85,
}
DEFAULT_ROOM_THRESHOLD = {
    "first": 0.20,
    "business": 0.20,
    "premium_economy": 0.30,
    "economy": 0.20,
}
DEFAULT_LOAD_FACTOR_BANDS = [[80, 0.90], [50, 0.85], [30, 0.80], [15, 0.75]]


@dataclass
class LoadDecision:
    """Per-tier quantities for one departure, split into base load and surplus."""

    departure_id: str
    origin_id: str
    destination_id: str
    quantity: ResourceQuantity = field(default_factory=ResourceQuantity)
    extra: ResourceQuantity = field(default_factory=ResourceQuantity)
    headroom_bound: set[Tier] = field(default_factory=set)
    skipped_reason: str | None = None


@dataclass(frozen=True)
class LoadRegime:
    """Which balancing rules are active for the current round."""

    bootstrap: bool
    spoke_cutoff: bool
    endgame: bool
    late_cutoff: bool
    final_window: bool

    @property
    def balancing_allowed(self) -> bool:
        return not (self.bootstrap or self.final_window)

    @property
    def spoke_routing_allowed(self) -> bool:
        return self.balancing_allowed and not (self.spoke_cutoff or self.late_cutoff)


class LoadPlanner:
    """
    Decides per-tier kit loads for every departure that is due.

    Base loads follow passenger demand, clamped by origin stock less a
    safety buffer, vehicle capacity and the destination's risk-adjusted
    headroom. Outside the bootstrap and late-run regimes, surplus depot
    stock is pushed to the most deficient spokes and spoke surplus is
    returned to the depot.
    """

    def __init__(
        self,
        world: World,
        ledger: InventoryLedger,
        forecaster: DemandForecaster,
        horizon: RunHorizon | None = None,
        risk: RiskTracker | None = None,
        config: dict[str, Any] | None = None,
    ) -> None:
        self.world = world
        self.ledger = ledger
        self.forecaster = forecaster
        self.horizon = horizon or RunHorizon()
        self.risk = risk

        config = config or {}
        params = engine_section(config, "loading")
        clock_params = engine_section(config, "clock")
        self.bootstrap_days = int(clock_params.get("bootstrap_days", 3))

        buffers = params.get("safety_buffer", {})
        self.hub_buffer = float(buffers.get("hub", 100))
        self.spoke_buffer = float(buffers.get("spoke", 20))
        bootstrap_buffer = params.get("bootstrap_hub_buffer", {})
        self.bootstrap_min_units = int(bootstrap_buffer.get("min_units", 500))
        self.bootstrap_capacity_fraction = float(
            bootstrap_buffer.get("capacity_fraction", 0.05)
        )

        self.destination_forecast_hours = int(params.get("destination_forecast_hours", 24))
        self.enable_extra_to_spokes = bool(params.get("enable_extra_to_spokes", True))
        self.enable_return_to_hub = bool(params.get("enable_return_to_hub", True))
        self.spoke_cutoff_day = int(params.get("spoke_balancing_cutoff_day", 15))
        self.endgame_day = int(params.get("endgame_return_day", 27))
        self.late_cutoff_rounds = int(params.get("late_cutoff_rounds", 12))
        self.final_window_rounds = int(params.get("final_window_rounds", 24))

        weights = {**DEFAULT_EXPOSURE_WEIGHTS, **params.get("exposure_weights", {})}
        self.exposure_weights = {t: float(weights[t.value]) for t in TIERS}

        dest_buffer = {**DEFAULT_DESTINATION_BUFFER, **params.get("destination_buffer", {})}
        self.hub_destination_buffer = float(dest_buffer["hub"])
        self.destination_buffer = {t: float(dest_buffer[t.value]) for t in TIERS}

        extra = params.get("extra_loading", {})
        cap = {**DEFAULT_EXTRA_CAP, **extra.get("cap_fraction", {})}
        saturation = {**DEFAULT_SATURATION, **extra.get("saturation", {})}
        room = {**DEFAULT_ROOM_THRESHOLD, **extra.get("room_threshold", {})}
        self.extra_cap_fraction = {t: float(cap[t.value]) for t in TIERS}
        self.saturation = {t: float(saturation[t.value]) for t in TIERS}
        self.room_threshold = {t: float(room[t.value]) for t in TIERS}
        self.room_share = float(extra.get("room_share", 0.3))

        factor = params.get("low_tier_load_factor", {})
        self.load_factor_floor = float(factor.get("floor", 0.70))
        self.load_factor_bands = sorted(
            ((float(r), float(f)) for r, f in factor.get("bands", DEFAULT_LOAD_FACTOR_BANDS)),
            reverse=True,
        )
        self.penalty_rate_per_km = float(factor.get("penalty_rate_per_km", 0.003))
        self.low_tier_kit_cost = float(factor.get("kit_cost", 50.0))
        self.low_tier_weight = float(factor.get("unit_weight_kg", 1.5))
        self.default_loading_cost = float(factor.get("default_loading_cost", 2.0))
        self.default_processing_cost = float(factor.get("default_processing_cost", 4.0))
        self.default_cost_rate = float(factor.get("default_cost_rate", 0.001))

    # ==================== REGIMES ====================

    def regime(self, day: int, hour: int) -> LoadRegime:
        remaining = self.horizon.rounds_remaining(to_round(day, hour))
        return LoadRegime(
            bootstrap=day < self.bootstrap_days,
            spoke_cutoff=day >= self.spoke_cutoff_day,
            endgame=day >= self.endgame_day,
            late_cutoff=remaining < self.late_cutoff_rounds,
            final_window=remaining < self.final_window_rounds,
        )

    # ==================== SCORING ====================

    def _distance(self, departure: Departure) -> float:
        if departure.distance_km > 0:
            return departure.distance_km
        return self.forecaster.route_distance(departure.origin_id, departure.destination_id)

    def exposure(self, departure: Departure) -> float:
        """Penalty exposure: sum of passengers x distance x tier weight."""
        distance = self._distance(departure)
        return sum(
            departure.passengers[t] * distance * self.exposure_weights[t] for t in TIERS
        )

    def order_departures(self, departures: list[Departure]) -> list[Departure]:
        """Depot-origin first, then descending penalty exposure."""
        return sorted(
            departures,
            key=lambda d: (0 if self.world.is_hub(d.origin_id) else 1, -self.exposure(d)),
        )

    def low_tier_load_factor(self, departure: Departure) -> float:
        """
        Fraction of lowest-tier passengers worth serving on this route.
        Compares the under-fulfillment penalty per unit with the full cost of
        carrying one unit; a high ratio loads closer to 100%.
        """
        origin = self.world.get_location(departure.origin_id)
        destination = self.world.get_location(departure.destination_id)
        vehicle = self.world.get_vehicle_type(departure.vehicle_type_id)
        distance = self._distance(departure)

        loading_cost = (
            origin.loading_cost.get(LOWEST_TIER, self.default_loading_cost)
            if origin
            else self.default_loading_cost
        )
        processing_cost = (
            destination.processing_cost.get(LOWEST_TIER, self.default_processing_cost)
            if destination
            else self.default_processing_cost
        )
        cost_rate = vehicle.cost_per_kg_km if vehicle else self.default_cost_rate
        transport_cost = loading_cost + distance * cost_rate * self.low_tier_weight + processing_cost

        penalty = self.penalty_rate_per_km * distance * self.low_tier_kit_cost
        if transport_cost <= 0:
            return self.load_factor_bands[0][1] if self.load_factor_bands else 1.0
        ratio = penalty / transport_cost

        for threshold, factor in self.load_factor_bands:
            if ratio >= threshold:
                return factor
        return self.load_factor_floor

    # ==================== CLAMPS ====================

    def safety_buffer(self, location_id: str, tier: Tier, bootstrap: bool) -> int:
        capacity = self.ledger.capacity_of(location_id, tier)
        is_hub = self.world.is_hub(location_id)
        if is_hub and bootstrap:
            return max(
                self.bootstrap_min_units,
                math.floor(capacity * self.bootstrap_capacity_fraction),
            )
        configured = self.hub_buffer if is_hub else self.spoke_buffer
        # Values below 1 are a fraction of capacity
        if configured < 1:
            return max(5, math.floor(capacity * configured))
        return int(configured)

    def destination_fraction(self, destination_id: str, tier: Tier) -> float:
        if self.world.is_hub(destination_id):
            base = self.hub_destination_buffer
        else:
            base = self.destination_buffer[tier]
        if self.risk is None:
            return base
        return self.risk.buffer_fraction(destination_id, tier, base)

    def destination_headroom(self, destination_id: str, tier: Tier) -> int:
        capacity = self.ledger.capacity_of(destination_id, tier)
        fraction = self.destination_fraction(destination_id, tier)
        committed = self.ledger.stock(destination_id, tier) + self.ledger.in_transit_to(
            destination_id, tier
        )
        return max(0, math.floor(capacity * fraction - committed))

    def _available(self, location_id: str, tier: Tier, bootstrap: bool) -> int:
        return max(
            0,
            self.ledger.stock(location_id, tier)
            - self.safety_buffer(location_id, tier, bootstrap),
        )

    # ==================== PLANNING ====================

    def _missing_reference(self, departure: Departure) -> str | None:
        if self.world.get_vehicle_type(departure.vehicle_type_id) is None:
            return f"unknown vehicle type {departure.vehicle_type_id!r}"
        if not self.ledger.has_location(departure.origin_id):
            return f"unknown origin {departure.origin_id!r}"
        if not self.ledger.has_location(departure.destination_id):
            return f"unknown destination {departure.destination_id!r}"
        return None

    def _base_load(
        self,
        departure: Departure,
        vehicle: VehicleType,
        regime: LoadRegime,
        decision: LoadDecision,
    ) -> None:
        for tier in TIERS:
            factor = self.low_tier_load_factor(departure) if tier == LOWEST_TIER else 1.0
            demand = math.floor(departure.passengers[tier] * factor)
            available = self._available(departure.origin_id, tier, regime.bootstrap)
            to_load = min(demand, available, vehicle.kit_capacity[tier])

            headroom = self.destination_headroom(departure.destination_id, tier)
            if to_load > headroom:
                logger.warning(
                    "Destination headroom binds for %s -> %s %s: wanted %d, room %d",
                    departure.id,
                    departure.destination_id,
                    tier.value,
                    to_load,
                    headroom,
                )
                decision.headroom_bound.add(tier)
                to_load = headroom

            to_load = min(to_load, self.ledger.stock(departure.origin_id, tier))
            if to_load > 0 and self.ledger.deduct(departure.origin_id, tier, to_load):
                decision.quantity[tier] = to_load

    def _destination_deficit(self, destination_id: str, tier: Tier, now: int, hours: int) -> int:
        demand = self.forecaster.demand(destination_id, tier, now, hours)
        return max(0, demand - self.ledger.committed(destination_id, tier))

    def _extra_to_spoke(
        self,
        departure: Departure,
        vehicle: VehicleType,
        tier: Tier,
        decision: LoadDecision,
        now: int,
        forecast_hours: int,
    ) -> int:
        if self.extra_cap_fraction[tier] <= 0:
            return 0
        destination_id = departure.destination_id

        dest_capacity = self.ledger.capacity_of(destination_id, tier)
        committed = self.ledger.committed(destination_id, tier)
        dest_room = max(0, dest_capacity - committed)
        if committed > dest_capacity * self.saturation[tier]:
            return 0
        if dest_room < dest_capacity * self.room_threshold[tier]:
            return 0

        deficit = self._destination_deficit(destination_id, tier, now, forecast_hours)
        remaining_capacity = vehicle.kit_capacity[tier] - decision.quantity[tier]
        remaining_stock = self._available(departure.origin_id, tier, bootstrap=False)
        return max(
            0,
            min(
                deficit,
                math.floor(dest_capacity * self.extra_cap_fraction[tier]),
                math.floor(dest_room * self.room_share),
                dest_room,
                remaining_capacity,
                remaining_stock,
            ),
        )

    def _return_to_hub(
        self,
        departure: Departure,
        vehicle: VehicleType,
        tier: Tier,
        decision: LoadDecision,
        now: int,
        regime: LoadRegime,
    ) -> int:
        hub_id = departure.destination_id

        hub_room = self.ledger.headroom(hub_id, tier)
        remaining_capacity = vehicle.kit_capacity[tier] - decision.quantity[tier]
        spare = self._available(departure.origin_id, tier, bootstrap=False)
        if hub_room <= 0 or remaining_capacity <= 0 or spare <= 0:
            return 0

        if regime.endgame:
            return min(remaining_capacity, spare, hub_room)

        upcoming = self.forecaster.demand(
            departure.origin_id, tier, now, self.destination_forecast_hours
        )
        surplus = max(0, spare - upcoming)
        return min(remaining_capacity, surplus, hub_room)

    def _add_extra(
        self, departure: Departure, tier: Tier, amount: int, decision: LoadDecision
    ) -> None:
        amount = min(amount, self.ledger.stock(departure.origin_id, tier))
        if amount <= 0:
            return
        if self.ledger.deduct(departure.origin_id, tier, amount):
            decision.quantity[tier] = decision.quantity[tier] + amount
            decision.extra[tier] = decision.extra[tier] + amount
            self.ledger.track_in_transit(
                departure.id,
                departure.destination_id,
                decision.quantity,
                departure.arrival_round,
            )

    def _route_surplus(
        self,
        departures: list[Departure],
        decisions: dict[str, LoadDecision],
        vehicles: dict[str, VehicleType],
        regime: LoadRegime,
        now: int,
    ) -> None:
        remaining = self.horizon.rounds_remaining(now)
        forecast_hours = min(self.destination_forecast_hours, remaining)

        if self.enable_extra_to_spokes and regime.spoke_routing_allowed:
            outbound = [
                d
                for d in departures
                if self.world.is_hub(d.origin_id)
                and not self.world.is_hub(d.destination_id)
                and d.id in vehicles
            ]
            for tier in TIERS:
                ranked = sorted(
                    outbound,
                    key=lambda d: -self._destination_deficit(
                        d.destination_id, tier, now, forecast_hours
                    ),
                )
                for departure in ranked:
                    amount = self._extra_to_spoke(
                        departure,
                        vehicles[departure.id],
                        tier,
                        decisions[departure.id],
                        now,
                        forecast_hours,
                    )
                    self._add_extra(departure, tier, amount, decisions[departure.id])

        if self.enable_return_to_hub:
            inbound = [
                d
                for d in departures
                if self.world.is_hub(d.destination_id)
                and not self.world.is_hub(d.origin_id)
                and d.id in vehicles
            ]
            for departure in inbound:
                for tier in TIERS:
                    amount = self._return_to_hub(
                        departure,
                        vehicles[departure.id],
                        tier,
                        decisions[departure.id],
                        now,
                        regime,
                    )
                    self._add_extra(departure, tier, amount, decisions[departure.id])

    def plan(self, departures: list[Departure], day: int, hour: int) -> list[LoadDecision]:
        """
        Returns one decision per departure, in planning order. Loads are
        deducted from origin stock and tracked in transit as they are decided.
        """
        now = to_round(day, hour)
        regime = self.regime(day, hour)
        ordered = self.order_departures(departures)
        decisions: dict[str, LoadDecision] = {}
        vehicles: dict[str, VehicleType] = {}

        for departure in ordered:
            decision = LoadDecision(
                departure_id=departure.id,
                origin_id=departure.origin_id,
                destination_id=departure.destination_id,
            )
            decisions[departure.id] = decision

            missing = self._missing_reference(departure)
            if missing is not None:
                logger.warning(
                    "Missing reference data for %s (%s): sending empty load",
                    departure.number or departure.id,
                    missing,
                )
                decision.skipped_reason = missing
                continue

            vehicle = self.world.vehicle_types[departure.vehicle_type_id]
            vehicles[departure.id] = vehicle
            self._base_load(departure, vehicle, regime, decision)
            self.ledger.track_in_transit(
                departure.id,
                departure.destination_id,
                decision.quantity,
                departure.arrival_round,
            )

        if regime.balancing_allowed:
            self._route_surplus(ordered, decisions, vehicles, regime, now)

        for decision in decisions.values():
            logger.debug(
                "Load %s %s->%s: %s (extra %s)",
                decision.departure_id,
                decision.origin_id,
                decision.destination_id,
                decision.quantity.to_wire(),
                decision.extra.to_wire(),
            )
        return [decisions[d.id] for d in ordered]
