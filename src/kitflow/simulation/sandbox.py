import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from kitflow.config.loader import engine_section
from kitflow.kits.core import N_TIERS, TIERS, ResourceQuantity
from kitflow.network.core import DepartureState
from kitflow.simulation.clock import RunHorizon, from_round, to_round, weekday
from kitflow.simulation.world import World
from kitflow.transport.base import (
    BaseTransport,
    DepartureUpdate,
    PenaltyNotice,
    RoundDecision,
    RoundOutcome,
    TransportError,
)

logger = logging.getLogger(__name__)

UNFULFILLED_CODE = "FLIGHT_UNFULFILLED"
OVERFLOW_CODE = "INVENTORY_EXCEEDS_CAPACITY"
NEGATIVE_CODE = "NEGATIVE_INVENTORY"
END_OF_RUN_CODE = "END_OF_GAME_UNFULFILLED_FLIGHT_KITS"


@dataclass
class SandboxFlight:
    id: str
    number: str
    origin_id: str
    destination_id: str
    departure_round: int
    arrival_round: int
    vehicle_type_id: str
    distance_km: float
    planned: ResourceQuantity
    actual: ResourceQuantity
    state: DepartureState | None = None
    load: ResourceQuantity = field(default_factory=ResourceQuantity)
    departed: bool = False


class SandboxEvaluator(BaseTransport):
    """
    Offline stand-in for the evaluation platform.

    Expands the weekly template into concrete flights with noisy passenger
    counts, announces them ahead of time, applies submitted loads and
    purchases, and charges the same classes of cost and penalty as the real
    platform. Penalties raised in one round are reported with the next.
    """

    def __init__(
        self,
        world: World,
        config: dict[str, Any] | None = None,
        horizon: RunHorizon | None = None,
        seed: int | None = None,
    ) -> None:
        self.world = world
        self.horizon = horizon or RunHorizon()
        params = engine_section(config or {}, "sandbox")
        self.seed = int(seed if seed is not None else params.get("seed", 42))
        self.rng = np.random.default_rng(self.seed)

        self.announce_lead = int(params.get("announce_lead_hours", 24))
        self.confirm_lead = int(params.get("confirm_lead_hours", 1))
        self.seat_load_factor = float(params.get("seat_load_factor", 0.8))
        noise = params.get("passenger_noise", {})
        self.gamma_shape = float(noise.get("gamma_shape", 10.0))
        self.gamma_scale = float(noise.get("gamma_scale", 0.1))

        kit_cost = {"first": 200.0, "business": 150.0, "premium_economy": 100.0, "economy": 50.0}
        kit_cost.update(params.get("kit_cost", {}))
        kit_weight = {"first": 5.0, "business": 3.0, "premium_economy": 2.5, "economy": 1.5}
        kit_weight.update(params.get("kit_weight_kg", {}))
        self.kit_cost = np.array([float(kit_cost[t.value]) for t in TIERS])
        self.kit_weight = np.array([float(kit_weight[t.value]) for t in TIERS])
        self.unfulfilled_rate = float(params.get("unfulfilled_rate_per_km", 0.003))
        self.overflow_per_kit = float(params.get("overflow_per_kit", 777.0))
        self.negative_per_kit = float(params.get("negative_per_kit", 5342.0))

        self.location_ids = sorted(world.locations.keys())
        self.location_to_idx = {loc_id: i for i, loc_id in enumerate(self.location_ids)}
        self.capacity = np.zeros((len(self.location_ids), N_TIERS), dtype=np.int64)
        self.stock = np.zeros((len(self.location_ids), N_TIERS), dtype=np.int64)
        for loc_id, location in world.locations.items():
            idx = self.location_to_idx[loc_id]
            self.capacity[idx, :] = location.capacity.as_array()
            self.stock[idx, :] = location.initial_stock.as_array()

        self.flights: dict[str, SandboxFlight] = {}
        self._generate_flights()

        self.session_id: str | None = None
        self.current_round = 0
        self.finished = False
        self.total_cost = 0.0
        self.cost_breakdown: dict[str, float] = {
            "loading": 0.0,
            "movement": 0.0,
            "processing": 0.0,
            "purchase": 0.0,
            "penalties": 0.0,
        }
        self._pending_penalties: list[PenaltyNotice] = []

    # ==================== SCHEDULE ====================

    def _draw_passengers(self, seats: ResourceQuantity) -> tuple[ResourceQuantity, ResourceQuantity]:
        mean = seats.as_array() * self.seat_load_factor
        noise = self.rng.gamma(self.gamma_shape, self.gamma_scale, size=N_TIERS)
        actual = np.minimum(np.floor(mean * noise), seats.as_array())
        planned = np.round(mean)
        return ResourceQuantity.from_array(planned), ResourceQuantity.from_array(actual)

    def _generate_flights(self) -> None:
        vehicle_ids = sorted(self.world.vehicle_types.keys())
        if not vehicle_ids:
            logger.warning("Sandbox has no vehicle types; no flights generated")
            return

        # One extra day so flights announced near the end are still generated
        for day in range(self.horizon.total_days + 1):
            for t_idx, template in enumerate(self.world.templates):
                if not template.runs_on(weekday(day)):
                    continue
                dep_round = to_round(day, template.departure_hour)
                vehicle_id = vehicle_ids[int(self.rng.integers(len(vehicle_ids)))]
                vehicle = self.world.vehicle_types[vehicle_id]
                planned, actual = self._draw_passengers(vehicle.seats)
                flight_id = f"FL-{day:02d}-{t_idx:04d}"
                self.flights[flight_id] = SandboxFlight(
                    id=flight_id,
                    number=f"KF{t_idx:04d}",
                    origin_id=template.origin_id,
                    destination_id=template.destination_id,
                    departure_round=dep_round,
                    arrival_round=dep_round + template.duration_hours,
                    vehicle_type_id=vehicle_id,
                    distance_km=template.distance_km,
                    planned=planned,
                    actual=actual,
                )

    def _update(self, flight: SandboxFlight, state: DepartureState) -> DepartureUpdate:
        flight.state = state
        dep_day, dep_hour = from_round(flight.departure_round)
        arr_day, arr_hour = from_round(flight.arrival_round)
        passengers = flight.planned if state == DepartureState.ANNOUNCED else flight.actual
        return DepartureUpdate(
            departure_id=flight.id,
            number=flight.number,
            state=state,
            origin_id=flight.origin_id,
            destination_id=flight.destination_id,
            departure_day=dep_day,
            departure_hour=dep_hour,
            arrival_day=arr_day,
            arrival_hour=arr_hour,
            passengers=passengers.copy(),
            vehicle_type_id=flight.vehicle_type_id,
            distance_km=flight.distance_km,
        )

    # ==================== PENALTIES ====================

    def _penalty(
        self, code: str, amount: float, reason: str, now: int, flight: SandboxFlight | None = None
    ) -> PenaltyNotice:
        day, hour = from_round(now)
        self.cost_breakdown["penalties"] += amount
        return PenaltyNotice(
            code=code,
            amount=amount,
            reason=reason,
            issued_day=day,
            issued_hour=hour,
            departure_id=flight.id if flight else None,
            departure_number=flight.number if flight else None,
        )

    def _check_inventory(self, now: int) -> list[PenaltyNotice]:
        penalties = []
        for loc_id, idx in self.location_to_idx.items():
            for tier in TIERS:
                stock = int(self.stock[idx, tier.index])
                capacity = int(self.capacity[idx, tier.index])
                if stock > capacity:
                    excess = stock - capacity
                    penalties.append(
                        self._penalty(
                            OVERFLOW_CODE,
                            excess * self.overflow_per_kit,
                            f"Airport {loc_id} has inventory of {stock} kits of kit type "
                            f"{tier.kit_code} which exceeds capacity of {capacity}",
                            now,
                        )
                    )
                    self.stock[idx, tier.index] = capacity
                elif stock < 0:
                    penalties.append(
                        self._penalty(
                            NEGATIVE_CODE,
                            -stock * self.negative_per_kit,
                            f"Airport {loc_id} has negative inventory of {stock} kits "
                            f"of kit type {tier.kit_code}",
                            now,
                        )
                    )
                    self.stock[idx, tier.index] = 0
        return penalties

    # ==================== ROUND STEPS ====================

    def _apply_purchase(self, order: ResourceQuantity | None) -> None:
        if order is None or order.is_zero():
            return
        hub_idx = self.location_to_idx[self.world.hub_id]
        quantity = order.as_array()
        self.stock[hub_idx, :] += quantity
        self.cost_breakdown["purchase"] += float(np.dot(quantity, self.kit_cost))

    def _register_loads(self, decision: RoundDecision, now: int) -> None:
        for load in decision.loads:
            flight = self.flights.get(load.departure_id)
            if flight is None or flight.state is None:
                raise TransportError(f"Load for unknown flight {load.departure_id}")
            if flight.departed:
                logger.debug("Late load for departed flight %s ignored", flight.id)
                continue
            flight.load = load.quantity.copy()

    def _depart(self, now: int) -> list[PenaltyNotice]:
        penalties = []
        for flight in self.flights.values():
            if flight.departure_round != now or flight.departed:
                continue
            flight.departed = True
            origin_idx = self.location_to_idx.get(flight.origin_id)
            origin = self.world.get_location(flight.origin_id)
            vehicle = self.world.vehicle_types[flight.vehicle_type_id]
            load = flight.load.as_array()
            if origin_idx is not None:
                self.stock[origin_idx, :] -= load

            loading_rates = np.array(
                [origin.loading_cost.get(t, 0.0) if origin else 0.0 for t in TIERS]
            )
            self.cost_breakdown["loading"] += float(np.dot(load, loading_rates))
            self.cost_breakdown["movement"] += float(
                flight.distance_km * vehicle.cost_per_kg_km * np.dot(load, self.kit_weight)
            )

            for tier in TIERS:
                missing = flight.actual[tier] - flight.load[tier]
                if missing <= 0:
                    continue
                penalties.append(
                    self._penalty(
                        UNFULFILLED_CODE,
                        missing
                        * self.unfulfilled_rate
                        * flight.distance_km
                        * self.kit_cost[tier.index],
                        f"Flight {flight.number} has unfulfilled {tier.display_name} Class "
                        f"passengers: missing {missing} kits",
                        now,
                        flight,
                    )
                )
        return penalties

    def _land(self, now: int) -> list[DepartureUpdate]:
        updates = []
        for flight in self.flights.values():
            if flight.arrival_round != now or not flight.departed:
                continue
            dest_idx = self.location_to_idx.get(flight.destination_id)
            destination = self.world.get_location(flight.destination_id)
            load = flight.load.as_array()
            if dest_idx is not None:
                self.stock[dest_idx, :] += load
            processing_rates = np.array(
                [destination.processing_cost.get(t, 0.0) if destination else 0.0 for t in TIERS]
            )
            self.cost_breakdown["processing"] += float(np.dot(load, processing_rates))
            updates.append(self._update(flight, DepartureState.COMPLETED))
        return updates

    def _announce(self, now: int) -> list[DepartureUpdate]:
        updates = []
        for flight in self.flights.values():
            if (
                flight.state is None
                and not flight.departed
                and flight.departure_round <= now + self.announce_lead
            ):
                updates.append(self._update(flight, DepartureState.ANNOUNCED))
            if (
                flight.state == DepartureState.ANNOUNCED
                and flight.departure_round <= now + self.confirm_lead
            ):
                updates.append(self._update(flight, DepartureState.CONFIRMED))
        return updates

    def _end_of_run_penalties(self, now: int) -> list[PenaltyNotice]:
        penalties = []
        for flight in self.flights.values():
            if flight.state is None or flight.departed:
                continue
            for tier in TIERS:
                passengers = flight.actual[tier]
                if passengers <= 0:
                    continue
                penalties.append(
                    self._penalty(
                        END_OF_RUN_CODE,
                        passengers
                        * self.unfulfilled_rate
                        * flight.distance_km
                        * self.kit_cost[tier.index],
                        f"Flight {flight.number} departs after the end of the run with "
                        f"{passengers} unfulfilled {tier.display_name} Class kits",
                        now,
                        flight,
                    )
                )
        return penalties

    def _outcome(self, now: int, updates: list[DepartureUpdate], penalties: list[PenaltyNotice]) -> RoundOutcome:
        self.total_cost = sum(self.cost_breakdown.values())
        day, hour = from_round(now)
        return RoundOutcome(
            day=day, hour=hour, updates=updates, penalties=penalties, total_cost=self.total_cost
        )

    # ==================== TRANSPORT ====================

    def start(self) -> str:
        self.session_id = f"sandbox-{self.seed}"
        return self.session_id

    def play_round(self, decision: RoundDecision) -> RoundOutcome:
        if self.session_id is None:
            raise TransportError("Session not started")
        if self.finished:
            raise TransportError("Session already ended")
        now = to_round(decision.day, decision.hour)
        if now != self.current_round:
            raise TransportError(
                f"Out-of-order round: expected {self.current_round}, got {now}"
            )

        reported = self._pending_penalties
        raised: list[PenaltyNotice] = []

        self._apply_purchase(decision.order)
        self._register_loads(decision, now)
        raised.extend(self._depart(now))
        updates = self._land(now)
        raised.extend(self._check_inventory(now))
        updates.extend(self._announce(now))

        if now >= self.horizon.last_round:
            reported = reported + raised + self._end_of_run_penalties(now)
            self._pending_penalties = []
            self.finished = True
            logger.info("Sandbox run complete, total cost %.2f", sum(self.cost_breakdown.values()))
        else:
            self._pending_penalties = raised

        self.current_round += 1
        return self._outcome(now, updates, reported)

    def end(self) -> RoundOutcome | None:
        if self.finished:
            return None
        self.finished = True
        return self._outcome(
            max(0, self.current_round - 1), [], self._pending_penalties
        )

    def stock_of(self, location_id: str) -> ResourceQuantity:
        """The sandbox's own view of a location's stock."""
        return ResourceQuantity.from_array(self.stock[self.location_to_idx[location_id], :])
