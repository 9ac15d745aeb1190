from dataclasses import dataclass
from typing import Any

import numpy as np

from kitflow.agents.loading import LoadDecision
from kitflow.config.loader import engine_section
from kitflow.kits.core import TIERS, ResourceQuantity
from kitflow.simulation.ledger import InventoryLedger
from kitflow.simulation.risk import PenaltyRecord
from kitflow.simulation.world import World

MIN_SAMPLES_FOR_VARIANCE = 2

DISTANCE_BANDS = [
    (2000.0, "<2000km"),
    (4000.0, "2000-4000km"),
    (6000.0, "4000-6000km"),
]
LONGEST_BAND = ">6000km"


@dataclass
class WelfordAccumulator:
    """
    Implements Welford's online algorithm for calculating mean and variance
    in a single pass (O(1) update).
    """

    count: int = 0
    mean: float = 0.0
    m2: float = 0.0  # Sum of squares of differences from the current mean
    total: float = 0.0

    def update(self, new_value: float) -> None:
        self.count += 1
        self.total += new_value
        delta = new_value - self.mean
        self.mean += delta / self.count
        delta2 = new_value - self.mean
        self.m2 += delta * delta2

    @property
    def variance(self) -> float:
        if self.count < MIN_SAMPLES_FOR_VARIANCE:
            return 0.0
        return self.m2 / (self.count - 1)

    @property
    def std_dev(self) -> float:
        return float(np.sqrt(self.variance))


def distance_band(distance_km: float) -> str:
    for upper, label in DISTANCE_BANDS:
        if distance_km < upper:
            return label
    return LONGEST_BAND


class RunMonitor:
    """
    Streaming run statistics: penalties per round, vehicle fill and
    acquisition volume, all kept in Welford accumulators.
    """

    def __init__(self, world: World) -> None:
        self.world = world
        self.penalty_tracker = WelfordAccumulator()
        self.fill_tracker = WelfordAccumulator()
        self.acquisition_tracker = WelfordAccumulator()
        self.units_loaded = ResourceQuantity()
        self.units_acquired = ResourceQuantity()
        self.empty_loads = 0

    def record_penalties(self, penalties: list[PenaltyRecord]) -> None:
        self.penalty_tracker.update(sum(p.amount for p in penalties))

    def record_loads(self, decisions: list[LoadDecision], vehicle_types: dict[str, str]) -> None:
        """vehicle_types maps departure id to its vehicle type id."""
        for decision in decisions:
            self.units_loaded = self.units_loaded + decision.quantity
            if decision.quantity.is_zero():
                self.empty_loads += 1
            vehicle = self.world.get_vehicle_type(vehicle_types.get(decision.departure_id, ""))
            if vehicle is None or vehicle.kit_capacity.total <= 0:
                continue
            self.fill_tracker.update(
                min(1.0, decision.quantity.total / vehicle.kit_capacity.total)
            )

    def record_acquisition(self, order: ResourceQuantity | None) -> None:
        volume = order.total if order is not None else 0
        if order is not None:
            self.units_acquired = self.units_acquired + order
        self.acquisition_tracker.update(float(volume))

    def get_report(self) -> dict[str, Any]:
        return {
            "penalty_per_round": {
                "mean": self.penalty_tracker.mean,
                "std": self.penalty_tracker.std_dev,
                "total": self.penalty_tracker.total,
            },
            "vehicle_fill": {
                "mean": self.fill_tracker.mean,
                "std": self.fill_tracker.std_dev,
                "samples": self.fill_tracker.count,
            },
            "acquisition_per_round": {
                "mean": self.acquisition_tracker.mean,
                "total": self.acquisition_tracker.total,
            },
            "units_loaded": self.units_loaded.to_wire(),
            "units_acquired": self.units_acquired.to_wire(),
            "empty_loads": self.empty_loads,
        }


class LedgerAuditor:
    """Checks ledger invariants each round. Findings are reported, never raised."""

    def __init__(self, ledger: InventoryLedger) -> None:
        self.ledger = ledger
        self.violation_count = 0

    def check_bounds(self) -> list[str]:
        violations: list[str] = []
        negative = np.argwhere(self.ledger.on_hand < 0)
        for loc_idx, tier_idx in negative:
            violations.append(
                f"Negative stock at {self.ledger.location_idx_to_id[int(loc_idx)]}."
                f"{TIERS[int(tier_idx)].value}: {int(self.ledger.on_hand[loc_idx, tier_idx])}"
            )
        over = np.argwhere(self.ledger.on_hand > self.ledger.capacity)
        for loc_idx, tier_idx in over:
            violations.append(
                f"Stock over capacity at {self.ledger.location_idx_to_id[int(loc_idx)]}."
                f"{TIERS[int(tier_idx)].value}: {int(self.ledger.on_hand[loc_idx, tier_idx])}"
                f" > {int(self.ledger.capacity[loc_idx, tier_idx])}"
            )
        return violations

    def check_overdue(self, now_round: int) -> list[str]:
        # In-transit batches past their ETA mean an arrival was never reported
        return [
            f"Batch {batch.departure_id} to {batch.destination_id} overdue "
            f"(eta {batch.eta_round}, now {now_round})"
            for batch in self.ledger.in_transit.values()
            if batch.eta_round < now_round
        ]

    def audit(self, now_round: int) -> list[str]:
        violations = self.check_bounds() + self.check_overdue(now_round)
        self.violation_count += len(violations)
        return violations


def summarize_penalties(
    penalties: list[PenaltyRecord], distances: dict[str, float] | None = None
) -> dict[str, Any]:
    """Totals by code and by location, and under-fulfillment by distance band."""
    distances = distances or {}
    by_code: dict[str, dict[str, float]] = {}
    by_location: dict[str, float] = {}
    by_band: dict[str, float] = {label: 0.0 for _, label in DISTANCE_BANDS}
    by_band[LONGEST_BAND] = 0.0

    for p in penalties:
        entry = by_code.setdefault(p.code, {"count": 0, "amount": 0.0})
        entry["count"] += 1
        entry["amount"] += p.amount
        location = p.location_id or "UNKNOWN"
        by_location[location] = by_location.get(location, 0.0) + p.amount
        if "UNFULFILLED" in p.code and p.departure_id in distances:
            by_band[distance_band(distances[p.departure_id])] += p.amount

    return {
        "total": sum(p.amount for p in penalties),
        "by_code": by_code,
        "by_location": dict(sorted(by_location.items(), key=lambda kv: -kv[1])),
        "unfulfilled_by_distance": by_band,
    }


def generate_cost_report(
    total_cost: float,
    penalty_summary: dict[str, Any],
    monitor_report: dict[str, Any],
    risk_summary: dict[str, Any],
    config: dict[str, Any] | None = None,
) -> str:
    """End-of-run cost and penalty breakdown as a text block."""
    scoring = engine_section(config or {}, "scoring")
    end_code = scoring.get("end_of_run_code", "END_OF_GAME_UNFULFILLED_FLIGHT_KITS")

    by_code = penalty_summary.get("by_code", {})
    end_of_run = by_code.get(end_code, {}).get("amount", 0.0)
    comparable = total_cost - end_of_run
    loaded = sum(monitor_report.get("units_loaded", {}).values())
    acquired = sum(monitor_report.get("units_acquired", {}).values())
    fill = monitor_report.get("vehicle_fill", {}).get("mean", 0.0)

    lines = [
        "==================================================",
        "            KIT ALLOCATION COST REPORT            ",
        "==================================================",
        f"1. TOTAL COST:                  {total_cost:,.2f}",
        f"2. END-OF-RUN UNFULFILLED:      {end_of_run:,.2f}",
        f"3. COMPARABLE SCORE:            {comparable:,.2f}",
        "--------------------------------------------------",
    ]
    for code, entry in sorted(by_code.items(), key=lambda kv: -kv[1]["amount"]):
        lines.append(f"{code[:30]:<31} {entry['amount']:>14,.2f} ({entry['count']})")
    lines += [
        "--------------------------------------------------",
        f"Kits Loaded:                    {loaded:,.0f}",
        f"Kits Acquired:                  {acquired:,.0f}",
        f"Mean Vehicle Fill:              {fill * 100:.1f}%",
        f"High-Risk Locations:            {', '.join(risk_summary.get('high_risk_locations', [])) or '-'}",
        "==================================================",
    ]
    return "\n".join(lines)
