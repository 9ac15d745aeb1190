import logging
from typing import Any

import numpy as np

from kitflow.config.loader import engine_section
from kitflow.kits.core import N_TIERS, TIERS, ResourceQuantity, Tier
from kitflow.network.core import InProcessBatch, InTransitBatch
from kitflow.simulation.clock import to_round
from kitflow.simulation.world import World

logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    Sole owner of kit positions: on-hand stock, in-transit batches and
    in-process batches. Stock is held in numpy matrices [Locations, Tiers],
    with location IDs mapped to row indices for O(1) access.

    Totals are local estimates converging on the evaluator's figures, not
    copies of them. Every mutation keeps 0 <= stock <= capacity; violations
    are clamped or rejected and logged, never raised.
    """

    def __init__(self, world: World, config: dict[str, Any] | None = None) -> None:
        self.world = world
        params = engine_section(config or {}, "ledger")
        self.fast_path_threshold = int(params.get("fast_path_threshold_hours", 3))
        self.per_tier_processing = bool(params.get("per_tier_processing", False))

        # 1. Create Index Maps (sorted for deterministic indexing)
        self.location_id_to_idx: dict[str, int] = {}
        self.location_idx_to_id: dict[int, str] = {}
        for i, loc_id in enumerate(sorted(world.locations.keys())):
            self.location_id_to_idx[loc_id] = i
            self.location_idx_to_id[i] = loc_id

        self.n_locations = len(world.locations)

        # 2. Allocate State Tensors. Shape: [Locations, Tiers]
        self.capacity = np.zeros((self.n_locations, N_TIERS), dtype=np.int64)
        self.on_hand = np.zeros((self.n_locations, N_TIERS), dtype=np.int64)
        for loc_id, location in world.locations.items():
            idx = self.location_id_to_idx[loc_id]
            self.capacity[idx, :] = location.capacity.as_array()
            # Initial stock is trusted as declared, then clamped like any credit
            self.on_hand[idx, :] = np.minimum(
                location.initial_stock.as_array(), self.capacity[idx, :]
            )

        # 3. Discrete State
        self.in_transit: dict[str, InTransitBatch] = {}
        self.in_process: list[InProcessBatch] = []
        self.last_advanced_round: int | None = None

    # ==================== QUERIES ====================

    def has_location(self, location_id: str) -> bool:
        return location_id in self.location_id_to_idx

    def get_location_idx(self, location_id: str) -> int:
        return self.location_id_to_idx[location_id]

    def stock(self, location_id: str, tier: Tier) -> int:
        idx = self.location_id_to_idx.get(location_id)
        if idx is None:
            return 0
        return int(self.on_hand[idx, tier.index])

    def stock_of(self, location_id: str) -> ResourceQuantity:
        idx = self.location_id_to_idx.get(location_id)
        if idx is None:
            return ResourceQuantity()
        return ResourceQuantity.from_array(self.on_hand[idx, :])

    def capacity_of(self, location_id: str, tier: Tier) -> int:
        idx = self.location_id_to_idx.get(location_id)
        if idx is None:
            return 0
        return int(self.capacity[idx, tier.index])

    def in_transit_to(self, location_id: str, tier: Tier) -> int:
        return sum(
            b.quantity[tier]
            for b in self.in_transit.values()
            if b.destination_id == location_id
        )

    def in_process_at(self, location_id: str, tier: Tier) -> int:
        return sum(
            b.quantity[tier] for b in self.in_process if b.location_id == location_id
        )

    def committed(self, location_id: str, tier: Tier) -> int:
        """Stock plus everything already on its way to or landed at the location."""
        return (
            self.stock(location_id, tier)
            + self.in_transit_to(location_id, tier)
            + self.in_process_at(location_id, tier)
        )

    def headroom(self, location_id: str, tier: Tier) -> int:
        return max(
            0, self.capacity_of(location_id, tier) - self.committed(location_id, tier)
        )

    def expected_stock(
        self, location_id: str, now_round: int, within_hours: int = 24
    ) -> ResourceQuantity:
        """Stock plus in-transit and in-process batches due within the window."""
        result = self.stock_of(location_id).as_array()
        target = now_round + within_hours
        for batch in self.in_transit.values():
            if batch.destination_id == location_id and batch.eta_round <= target:
                result += batch.quantity.as_array()
        for batch in self.in_process:
            if batch.location_id == location_id and batch.ready_round <= target:
                result += batch.quantity.as_array()
        return ResourceQuantity.from_array(result)

    def tier_total(self, tier: Tier) -> int:
        """Network-wide units of a tier across every ledger position."""
        total = int(np.sum(self.on_hand[:, tier.index]))
        total += sum(b.quantity[tier] for b in self.in_transit.values())
        total += sum(b.quantity[tier] for b in self.in_process)
        return total

    # ==================== MUTATIONS ====================

    def deduct(self, location_id: str, tier: Tier, amount: int) -> bool:
        """Removes units from stock. Rejects rather than going negative."""
        amount = int(amount)
        if amount <= 0:
            return True
        idx = self.location_id_to_idx.get(location_id)
        if idx is None:
            logger.error("Deduct from unknown location %s rejected", location_id)
            return False
        available = int(self.on_hand[idx, tier.index])
        if available < amount:
            logger.error(
                "Deduct would go negative at %s.%s: has %d, requested %d",
                location_id,
                tier.value,
                available,
                amount,
            )
            return False
        self.on_hand[idx, tier.index] -= amount
        return True

    def add(self, location_id: str, tier: Tier, amount: int) -> int:
        """
        Credits units to stock, clamped to remaining capacity.
        Returns how many were actually added.
        """
        amount = int(amount)
        if amount <= 0:
            return 0
        idx = self.location_id_to_idx.get(location_id)
        if idx is None:
            logger.error("Credit to unknown location %s dropped", location_id)
            return 0
        room = max(0, int(self.capacity[idx, tier.index] - self.on_hand[idx, tier.index]))
        added = min(amount, room)
        self.on_hand[idx, tier.index] += added
        if added < amount:
            logger.warning(
                "Capacity clamp at %s.%s: %d of %d credited",
                location_id,
                tier.value,
                added,
                amount,
            )
        return added

    def add_quantity(self, location_id: str, quantity: ResourceQuantity) -> ResourceQuantity:
        return ResourceQuantity(
            **{t.value: self.add(location_id, t, quantity[t]) for t in TIERS}
        )

    def track_in_transit(
        self,
        departure_id: str,
        destination_id: str,
        quantity: ResourceQuantity,
        eta_round: int,
    ) -> None:
        self.in_transit[departure_id] = InTransitBatch(
            departure_id=departure_id,
            destination_id=destination_id,
            quantity=quantity.copy(),
            eta_round=eta_round,
        )

    def resolve_arrival(self, departure_id: str, arrival_round: int) -> None:
        """
        Moves a landed batch out of transit. Depot arrivals and fast
        processors go straight to stock; everything else waits out the
        location's processing duration.
        """
        batch = self.in_transit.pop(departure_id, None)
        if batch is None:
            logger.debug("Arrival for untracked departure %s ignored", departure_id)
            return

        location = self.world.get_location(batch.destination_id)
        if location is None:
            logger.error(
                "Arrival %s at unknown location %s dropped",
                departure_id,
                batch.destination_id,
            )
            return

        max_hours = location.max_processing_hours
        if self.world.is_hub(location.id) or max_hours < self.fast_path_threshold:
            self.add_quantity(location.id, batch.quantity)
            return

        if self.per_tier_processing:
            for tier in TIERS:
                if batch.quantity[tier] <= 0:
                    continue
                single = ResourceQuantity()
                single[tier] = batch.quantity[tier]
                self.in_process.append(
                    InProcessBatch(
                        location_id=location.id,
                        quantity=single,
                        ready_round=arrival_round + location.processing_hours[tier],
                    )
                )
            return

        self.in_process.append(
            InProcessBatch(
                location_id=location.id,
                quantity=batch.quantity.copy(),
                ready_round=arrival_round + max_hours,
            )
        )

    def advance_clock(self, day: int, hour: int) -> list[InProcessBatch]:
        """
        Folds every in-process batch whose ready time has elapsed into stock.
        Returns the batches released; a repeated call for the same time
        releases nothing.
        """
        now = to_round(day, hour)
        released: list[InProcessBatch] = []
        still_processing: list[InProcessBatch] = []
        for batch in self.in_process:
            if batch.ready_round <= now:
                self.add_quantity(batch.location_id, batch.quantity)
                released.append(batch)
            else:
                still_processing.append(batch)
        self.in_process = still_processing
        self.last_advanced_round = now
        return released

    # ==================== SNAPSHOTS ====================

    def snapshot(self) -> dict[str, ResourceQuantity]:
        return {
            loc_id: ResourceQuantity.from_array(self.on_hand[idx, :])
            for loc_id, idx in self.location_id_to_idx.items()
        }

    def fill_ratio(self) -> np.ndarray:
        """Stock as a fraction of capacity, 0 where capacity is 0."""
        with np.errstate(divide="ignore", invalid="ignore"):
            ratio = np.where(self.capacity > 0, self.on_hand / self.capacity, 0.0)
        return np.nan_to_num(ratio, nan=0.0)
