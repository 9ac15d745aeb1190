import logging
from typing import Any

from kitflow.agents.loading import LoadDecision, LoadPlanner
from kitflow.agents.replenishment import ReplenishmentPlanner
from kitflow.config.loader import engine_section
from kitflow.kits.core import LOWEST_TIER, ResourceQuantity
from kitflow.network.core import DepartureState
from kitflow.simulation.catalog import DepartureCatalog
from kitflow.simulation.clock import HOURS_PER_DAY, RunHorizon, to_round
from kitflow.simulation.demand import DemandForecaster
from kitflow.simulation.ledger import InventoryLedger
from kitflow.simulation.monitor import (
    LedgerAuditor,
    RunMonitor,
    generate_cost_report,
    summarize_penalties,
)
from kitflow.simulation.risk import PenaltyRecord, RiskTracker
from kitflow.simulation.world import World
from kitflow.simulation.writer import SimulationWriter
from kitflow.transport.base import (
    BaseTransport,
    DepartureLoad,
    PenaltyNotice,
    RoundDecision,
    RoundOutcome,
    TransportError,
)
from kitflow.transport.codec import update_to_departure

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    The hourly round loop. Each round folds due processing into stock,
    plans loads and acquisitions, submits them, and absorbs the outcome
    before the next round is planned.
    """

    def __init__(
        self,
        world: World,
        transport: BaseTransport,
        config: dict[str, Any] | None = None,
        writer: SimulationWriter | None = None,
        horizon: RunHorizon | None = None,
    ) -> None:
        self.world = world
        self.transport = transport
        self.config = config or {}

        clock_params = engine_section(self.config, "clock")
        self.horizon = horizon or RunHorizon(int(clock_params.get("total_days", 30)))

        # 1. State
        self.catalog = DepartureCatalog()
        self.ledger = InventoryLedger(world, self.config)

        # 2. Engines & Agents
        self.forecaster = DemandForecaster(world, self.catalog, self.config)
        self.risk = RiskTracker(self.catalog, self.config)
        self.loader = LoadPlanner(
            world, self.ledger, self.forecaster, self.horizon, self.risk, self.config
        )
        self.replenisher = ReplenishmentPlanner(
            world, self.ledger, self.forecaster, self.horizon, self.config
        )

        # 3. Validation & Export
        self.monitor = RunMonitor(world)
        self.auditor = LedgerAuditor(self.ledger)
        self.writer = writer or SimulationWriter(enable_logging=False)

        self.session_id: str | None = None
        self.penalties: list[PenaltyRecord] = []
        self.total_cost = 0.0
        self.rounds_played = 0
        self._day_stats = self._empty_day_stats()

    @staticmethod
    def _empty_day_stats() -> dict[str, float]:
        return {"loads": 0, "kits": 0, "acquired": 0, "penalties": 0.0}

    # ==================== RUN LOOP ====================

    def run(self) -> float:
        """Plays every round of the horizon and returns the final total cost."""
        print(f"Starting kit allocation run for {self.horizon.total_days} days...")
        try:
            self.session_id = self.transport.start()
            for day, hour in self.horizon.iter_rounds():
                self._step(day, hour)
            final = self.transport.end()
            if final is not None:
                self._absorb(final, self.horizon.last_day, HOURS_PER_DAY - 1)
        except TransportError as e:
            logger.error(
                "Transport failure after %d rounds, aborting run: %s", self.rounds_played, e
            )
            self.writer.flush()
            self.save_results()
            raise
        print(f"Run Complete. Total cost: {self.total_cost:,.2f}")
        return self.total_cost

    def _step(self, day: int, hour: int) -> None:
        now = to_round(day, hour)

        # 1. Release processed kits whose ready time has passed
        self.ledger.advance_clock(day, hour)

        # 2. Loads for every departure that is due
        due = self.catalog.loadable(now)
        decisions = self.loader.plan(due, day, hour)
        for decision in decisions:
            self.catalog.mark_loaded(decision.departure_id)

        # 3. Depot acquisitions
        order = self.replenisher.plan(day, hour)

        # 4. Round-trip
        outcome = self.transport.play_round(
            RoundDecision(
                day=day,
                hour=hour,
                loads=[DepartureLoad(d.departure_id, d.quantity.copy()) for d in decisions],
                order=order,
            )
        )
        self.rounds_played += 1

        # 5. Absorb arrivals, schedule changes and penalties
        records = self._absorb(outcome, day, hour)

        # 6. Monitors, audit & data logging
        self._record_round_metrics(decisions, order, records)
        for violation in self.auditor.audit(now):
            logger.error("Ledger audit: %s", violation)
        self._log_round_data(decisions, order, records, day, hour)

        if hour == HOURS_PER_DAY - 1:
            self._print_daily_status(day, now)

    def _absorb(self, outcome: RoundOutcome, day: int, hour: int) -> list[PenaltyRecord]:
        for update in outcome.updates:
            departure = self.catalog.observe(update_to_departure(update))
            if update.state == DepartureState.COMPLETED:
                self.ledger.resolve_arrival(update.departure_id, departure.arrival_round)

        records = [self._to_record(p) for p in outcome.penalties]
        self.risk.record_round(records, day, hour)
        self.penalties.extend(records)
        self.total_cost = outcome.total_cost
        return records

    @staticmethod
    def _to_record(notice: PenaltyNotice) -> PenaltyRecord:
        return PenaltyRecord(
            code=notice.code,
            amount=notice.amount,
            reason=notice.reason,
            day=notice.issued_day,
            hour=notice.issued_hour,
            departure_id=notice.departure_id,
            departure_number=notice.departure_number,
        )

    # ==================== MONITORING ====================

    def _record_round_metrics(
        self,
        decisions: list[LoadDecision],
        order: ResourceQuantity | None,
        records: list[PenaltyRecord],
    ) -> None:
        vehicle_types = {}
        for decision in decisions:
            departure = self.catalog.get(decision.departure_id)
            if departure is not None:
                vehicle_types[decision.departure_id] = departure.vehicle_type_id
        self.monitor.record_loads(decisions, vehicle_types)
        self.monitor.record_acquisition(order)
        self.monitor.record_penalties(records)

        self._day_stats["loads"] += len(decisions)
        self._day_stats["kits"] += sum(d.quantity.total for d in decisions)
        self._day_stats["acquired"] += order.total if order is not None else 0
        self._day_stats["penalties"] += sum(r.amount for r in records)

    def _log_round_data(
        self,
        decisions: list[LoadDecision],
        order: ResourceQuantity | None,
        records: list[PenaltyRecord],
        day: int,
        hour: int,
    ) -> None:
        """Log data to the simulation writer."""
        self.writer.log_loads(decisions, day, hour)
        self.writer.log_acquisition(order, day, hour)
        self.writer.log_penalties(records, day, hour)
        self.writer.log_inventory(self.ledger, day, hour)

    def _print_daily_status(self, day: int, now: int) -> None:
        """Print high-level daily run status."""
        stats = self._day_stats
        cover = self.replenisher.days_of_cover(LOWEST_TIER, now)
        hot = [loc for loc in self.world.locations if self.risk.is_hot(loc, day)]
        print(
            f"Day {day:03}: Loads={stats['loads']:.0f}, "
            f"Kits={stats['kits']:.0f}, "
            f"Acq={stats['acquired']:.0f}, "
            f"Pen={stats['penalties']:,.0f}, "
            f"Cost={self.total_cost:,.0f}, "
            f"DepotCover={cover:.1f}d"
            + (f", Hot={','.join(sorted(hot))}" if hot else "")
        )
        self._day_stats = self._empty_day_stats()

    # ==================== RESULTS ====================

    def _departure_distances(self) -> dict[str, float]:
        distances = {}
        for departure in self.catalog.departures.values():
            distance = departure.distance_km or self.world.route_distance(
                departure.origin_id, departure.destination_id
            )
            distances[departure.id] = distance
        return distances

    def penalty_summary(self) -> dict[str, Any]:
        return summarize_penalties(self.penalties, self._departure_distances())

    def final_metrics(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "rounds_played": self.rounds_played,
            "total_cost": self.total_cost,
            "monitor": self.monitor.get_report(),
            "risk": self.risk.summary(),
            "audit_violations": self.auditor.violation_count,
            "departures": {
                state.value: count for state, count in self.catalog.count_by_state().items()
            },
        }

    def save_results(self) -> None:
        """Export all collected data."""
        self.writer.save(self.final_metrics(), self.penalty_summary())

    def generate_cost_report(self) -> str:
        return generate_cost_report(
            self.total_cost,
            self.penalty_summary(),
            self.monitor.get_report(),
            self.risk.summary(),
            self.config,
        )
