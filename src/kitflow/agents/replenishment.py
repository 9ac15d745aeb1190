import enum
import logging
import math
from dataclasses import dataclass
from typing import Any

from kitflow.config.loader import engine_section
from kitflow.kits.core import TIERS, ResourceQuantity, Tier
from kitflow.simulation.clock import HOURS_PER_DAY, RunHorizon, to_round
from kitflow.simulation.demand import DemandForecaster
from kitflow.simulation.ledger import InventoryLedger
from kitflow.simulation.world import World

logger = logging.getLogger(__name__)

DEFAULT_LEAD_TIME_HOURS = {
    "first": 48,
    "business": 36,
    "premium_economy": 24,
    "economy": 12,
}
DEFAULT_EMERGENCY_FLOOR = {
    "first": 400,
    "business": 2000,
    "premium_economy": 400,
    "economy": 10000,
}
DEFAULT_EMERGENCY_ORDER = {
    "first": 1800,
    "business": 6000,
    "premium_economy": 4000,
    "economy": 70000,
}
DEFAULT_MAX_PER_ORDER = {
    "first": 1000,
    "business": 3000,
    "premium_economy": 1000,
    "economy": 15000,
}
DEFAULT_RUN_BUDGET = {
    "first": 50000,
    "business": 100000,
    "premium_economy": 30000,
    "economy": 200000,
}
DEFAULT_RATE_LIMIT = {
    "first": 42000,
    "business": 42000,
    "premium_economy": 3000,
    "economy": 42000,
}


def _tier_param(
    params: dict[str, Any], name: str, defaults: dict[str, int]
) -> ResourceQuantity:
    return ResourceQuantity.from_tier_map({**defaults, **params.get(name, {})})


class OrderMode(enum.Enum):
    EMERGENCY = "emergency"
    BOOTSTRAP = "bootstrap"
    DEADLINE_BURST = "deadline_burst"
    REGULAR = "regular"


@dataclass
class TierOrder:
    tier: Tier
    mode: OrderMode
    requested: int
    quantity: int
    binding_cap: str


class ReplenishmentPlanner:
    """
    Decides depot acquisitions per tier. Modes are tried in priority order
    (emergency, bootstrap, deadline-burst, regular) and every amount is
    capped by the per-order limit, the remaining run budget, the rate limit
    and depot headroom. Acquired units land in depot stock immediately.
    """

    def __init__(
        self,
        world: World,
        ledger: InventoryLedger,
        forecaster: DemandForecaster,
        horizon: RunHorizon | None = None,
        config: dict[str, Any] | None = None,
    ) -> None:
        self.world = world
        self.ledger = ledger
        self.forecaster = forecaster
        self.horizon = horizon or RunHorizon()

        config = config or {}
        params = engine_section(config, "replenishment")
        clock_params = engine_section(config, "clock")
        self.bootstrap_days = int(clock_params.get("bootstrap_days", 3))

        lead_times = {**DEFAULT_LEAD_TIME_HOURS, **params.get("lead_time_hours", {})}
        self.lead_time = ResourceQuantity.from_tier_map(lead_times)
        self.emergency_floor = _tier_param(params, "emergency_floor", DEFAULT_EMERGENCY_FLOOR)
        self.emergency_order = _tier_param(params, "emergency_order", DEFAULT_EMERGENCY_ORDER)
        # Regular reorders stop once total expected reaches this level
        self.reorder_threshold = _tier_param(
            params, "reorder_threshold", DEFAULT_EMERGENCY_ORDER
        )
        self.max_per_order = _tier_param(params, "max_per_order", DEFAULT_MAX_PER_ORDER)
        self.run_budget = _tier_param(params, "run_budget", DEFAULT_RUN_BUDGET)
        self.rate_limit = _tier_param(params, "rate_limit", DEFAULT_RATE_LIMIT)

        self.bootstrap_fill_fraction = float(params.get("bootstrap_fill_fraction", 0.5))
        self.regular_interval = int(params.get("regular_interval_hours", 6))
        self.bootstrap_interval = int(params.get("bootstrap_interval_hours", 2))
        self.bootstrap_interval_days = int(params.get("bootstrap_interval_days", 2))
        self.forecast_hours = int(params.get("forecast_hours", 48))
        self.demand_buffer = float(params.get("demand_buffer", 1.0))
        self.min_regular_order = int(params.get("min_regular_order", 100))
        self.burst_window = int(params.get("burst_window_hours", 6))
        self.burst_multiplier = float(params.get("burst_multiplier", 1.5))

        self.ordered = ResourceQuantity()
        self.history: list[tuple[int, TierOrder]] = []

    @property
    def depot_id(self) -> str:
        return self.world.hub_id

    def _interval(self, day: int) -> int:
        if day < self.bootstrap_interval_days:
            return self.bootstrap_interval
        return self.regular_interval

    def _cap(self, tier: Tier, amount: int, headroom: int) -> tuple[int, str]:
        """Applies the four caps; returns the capped amount and which one bound."""
        caps = {
            "per_order": self.max_per_order[tier],
            "budget": max(0, self.run_budget[tier] - self.ordered[tier]),
            "rate_limit": self.rate_limit[tier],
            "headroom": headroom,
        }
        binding = min(caps, key=lambda k: caps[k])
        if amount <= caps[binding]:
            return max(0, amount), "none"
        return max(0, caps[binding]), binding

    def _choose_mode(
        self, tier: Tier, day: int, hour: int, now: int
    ) -> tuple[OrderMode, int] | None:
        depot = self.depot_id
        stock = self.ledger.stock(depot, tier)
        capacity = self.ledger.capacity_of(depot, tier)

        if stock < self.emergency_floor[tier]:
            return OrderMode.EMERGENCY, self.emergency_order[tier]

        if day < self.bootstrap_days and stock < capacity * self.bootstrap_fill_fraction:
            return OrderMode.BOOTSTRAP, self.max_per_order[tier]

        remaining = self.horizon.rounds_remaining(now)
        slack = remaining - self.lead_time[tier]
        if 0 <= slack < self.burst_window:
            forecast = self.forecaster.demand(depot, tier, now, remaining)
            amount = math.floor(forecast * self.demand_buffer * self.burst_multiplier) - stock
            if amount > 0:
                return OrderMode.DEADLINE_BURST, amount

        if hour % self._interval(day) != 0:
            return None

        total_expected = self.ledger.committed(depot, tier) + self.ordered[tier]
        if total_expected >= self.reorder_threshold[tier]:
            return None
        forecast = self.forecaster.demand(depot, tier, now, self.forecast_hours)
        amount = math.floor(forecast * self.demand_buffer - total_expected)
        if amount <= 0:
            return None
        return OrderMode.REGULAR, amount

    def plan_tier(self, tier: Tier, day: int, hour: int) -> TierOrder | None:
        now = to_round(day, hour)
        if self.horizon.rounds_remaining(now) < self.lead_time[tier]:
            return None

        headroom = self.ledger.headroom(self.depot_id, tier)
        if headroom <= 0:
            logger.info(
                "Day %d hour %d: no depot room for %s, skipping order", day, hour, tier.value
            )
            return None

        chosen = self._choose_mode(tier, day, hour, now)
        if chosen is None:
            return None
        mode, requested = chosen
        quantity, binding = self._cap(tier, requested, headroom)

        if mode == OrderMode.REGULAR and quantity <= self.min_regular_order:
            return None
        if quantity <= 0:
            return None
        return TierOrder(
            tier=tier, mode=mode, requested=requested, quantity=quantity, binding_cap=binding
        )

    def plan(self, day: int, hour: int) -> ResourceQuantity | None:
        """
        Returns this round's acquisition order, already credited to depot
        stock, or None when no tier orders.
        """
        order = ResourceQuantity()
        now = to_round(day, hour)
        for tier in TIERS:
            tier_order = self.plan_tier(tier, day, hour)
            if tier_order is None:
                continue
            added = self.ledger.add(self.depot_id, tier, tier_order.quantity)
            if added < tier_order.quantity:
                logger.warning(
                    "Depot credit clamped for %s: ordered %d, credited %d",
                    tier.value,
                    tier_order.quantity,
                    added,
                )
            order[tier] = tier_order.quantity
            self.ordered[tier] = self.ordered[tier] + tier_order.quantity
            self.history.append((now, tier_order))
            logger.info(
                "Day %d hour %d: %s order of %d %s kits (requested %d, cap %s)",
                day,
                hour,
                tier_order.mode.value,
                tier_order.quantity,
                tier.value,
                tier_order.requested,
                tier_order.binding_cap,
            )

        if order.is_zero():
            return None
        return order

    def days_of_cover(self, tier: Tier, now: int) -> float:
        """Depot stock expressed in days of forecast depot demand."""
        daily = self.forecaster.demand(self.depot_id, tier, now, HOURS_PER_DAY)
        if daily <= 0:
            return float("inf")
        return self.ledger.stock(self.depot_id, tier) / daily
