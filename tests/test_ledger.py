import numpy as np
import pytest

from kitflow.kits.core import TIERS, ResourceQuantity, Tier
from kitflow.network.core import Location
from kitflow.simulation.ledger import InventoryLedger
from kitflow.simulation.world import World


def build_world(spoke_processing: ResourceQuantity | None = None) -> World:
    world = World()
    world.add_location(
        Location(
            "HUB1",
            "Hub",
            is_hub=True,
            capacity=ResourceQuantity.uniform(1000),
            initial_stock=ResourceQuantity.uniform(500),
        )
    )
    world.add_location(
        Location(
            "SPK",
            "Spoke",
            capacity=ResourceQuantity.uniform(100),
            processing_hours=spoke_processing or ResourceQuantity(economy=4),
            initial_stock=ResourceQuantity.uniform(50),
        )
    )
    return world


@pytest.fixture
def ledger():
    return InventoryLedger(build_world())


def test_initial_stock_clamped_to_capacity():
    world = World()
    world.add_location(
        Location(
            "HUB1",
            "Hub",
            is_hub=True,
            capacity=ResourceQuantity.uniform(10),
            initial_stock=ResourceQuantity.uniform(25),
        )
    )
    ledger = InventoryLedger(world)
    assert ledger.stock("HUB1", Tier.ECONOMY) == 10


def test_deduct_rejects_overdraw(ledger):
    assert not ledger.deduct("SPK", Tier.ECONOMY, 51)
    assert ledger.stock("SPK", Tier.ECONOMY) == 50

    assert ledger.deduct("SPK", Tier.ECONOMY, 50)
    assert ledger.stock("SPK", Tier.ECONOMY) == 0

    # Unknown locations are rejected, not raised
    assert not ledger.deduct("NOPE", Tier.ECONOMY, 1)


def test_add_clamps_to_capacity(ledger):
    added = ledger.add("HUB1", Tier.FIRST, 600)
    assert added == 500
    assert ledger.stock("HUB1", Tier.FIRST) == 1000
    assert ledger.add("HUB1", Tier.FIRST, 1) == 0


def test_conservation_through_transit_and_processing(ledger):
    start_total = ledger.tier_total(Tier.ECONOMY)

    # Load 10 units at the hub onto a departure arriving at round 5
    assert ledger.deduct("HUB1", Tier.ECONOMY, 10)
    ledger.track_in_transit("D1", "SPK", ResourceQuantity(economy=10), eta_round=5)
    assert ledger.tier_total(Tier.ECONOMY) == start_total
    assert ledger.in_transit_to("SPK", Tier.ECONOMY) == 10

    # Spoke takes 4 hours to process
    ledger.resolve_arrival("D1", arrival_round=5)
    assert ledger.in_transit_to("SPK", Tier.ECONOMY) == 0
    assert ledger.in_process_at("SPK", Tier.ECONOMY) == 10
    assert ledger.tier_total(Tier.ECONOMY) == start_total

    assert ledger.advance_clock(0, 8) == []
    assert ledger.stock("SPK", Tier.ECONOMY) == 50

    released = ledger.advance_clock(0, 9)
    assert len(released) == 1
    assert ledger.stock("SPK", Tier.ECONOMY) == 60
    assert ledger.tier_total(Tier.ECONOMY) == start_total


def test_advance_clock_is_idempotent(ledger):
    ledger.track_in_transit("D1", "SPK", ResourceQuantity(economy=10), eta_round=5)
    ledger.resolve_arrival("D1", arrival_round=5)

    ledger.advance_clock(0, 9)
    before = ledger.on_hand.copy()
    assert ledger.advance_clock(0, 9) == []
    np.testing.assert_array_equal(ledger.on_hand, before)


def test_fast_path_and_hub_arrivals():
    ledger = InventoryLedger(build_world(spoke_processing=ResourceQuantity(economy=2)))

    ledger.track_in_transit("D1", "SPK", ResourceQuantity(economy=5), eta_round=3)
    ledger.resolve_arrival("D1", arrival_round=3)
    assert ledger.stock("SPK", Tier.ECONOMY) == 55
    assert ledger.in_process == []

    ledger.track_in_transit("D2", "HUB1", ResourceQuantity(first=7), eta_round=4)
    ledger.resolve_arrival("D2", arrival_round=4)
    assert ledger.stock("HUB1", Tier.FIRST) == 507


def test_untracked_arrival_is_ignored(ledger):
    before = ledger.on_hand.copy()
    ledger.resolve_arrival("GHOST", arrival_round=1)
    np.testing.assert_array_equal(ledger.on_hand, before)


def test_max_duration_processing_by_default():
    ledger = InventoryLedger(
        build_world(spoke_processing=ResourceQuantity(first=1, economy=5))
    )
    ledger.track_in_transit("D1", "SPK", ResourceQuantity(first=2, economy=3), eta_round=10)
    ledger.resolve_arrival("D1", arrival_round=10)

    # Whole batch waits for the slowest tier
    ledger.advance_clock(0, 11)
    assert ledger.stock("SPK", Tier.FIRST) == 50
    ledger.advance_clock(0, 15)
    assert ledger.stock("SPK", Tier.FIRST) == 52
    assert ledger.stock("SPK", Tier.ECONOMY) == 53


def test_per_tier_processing():
    config = {"engine_parameters": {"ledger": {"per_tier_processing": True}}}
    ledger = InventoryLedger(
        build_world(spoke_processing=ResourceQuantity(first=1, economy=5)), config
    )
    ledger.track_in_transit("D1", "SPK", ResourceQuantity(first=2, economy=3), eta_round=10)
    ledger.resolve_arrival("D1", arrival_round=10)
    assert len(ledger.in_process) == 2

    ledger.advance_clock(0, 11)
    assert ledger.stock("SPK", Tier.FIRST) == 52
    assert ledger.stock("SPK", Tier.ECONOMY) == 50

    ledger.advance_clock(0, 15)
    assert ledger.stock("SPK", Tier.ECONOMY) == 53


def test_headroom_and_expected_stock(ledger):
    ledger.track_in_transit("D1", "SPK", ResourceQuantity(economy=20), eta_round=30)
    assert ledger.committed("SPK", Tier.ECONOMY) == 70
    assert ledger.headroom("SPK", Tier.ECONOMY) == 30

    assert ledger.expected_stock("SPK", now_round=0, within_hours=24).economy == 50
    assert ledger.expected_stock("SPK", now_round=10, within_hours=24).economy == 70


def test_stock_stays_within_bounds_under_random_mutations(ledger):
    rng = np.random.default_rng(7)
    locations = ["HUB1", "SPK"]
    for _ in range(500):
        loc = locations[int(rng.integers(2))]
        tier = TIERS[int(rng.integers(len(TIERS)))]
        amount = int(rng.integers(0, 300))
        if rng.random() < 0.5:
            ledger.deduct(loc, tier, amount)
        else:
            ledger.add(loc, tier, amount)
        assert np.all(ledger.on_hand >= 0)
        assert np.all(ledger.on_hand <= ledger.capacity)


def test_snapshot_and_fill_ratio(ledger):
    snapshot = ledger.snapshot()
    assert snapshot["SPK"] == ResourceQuantity.uniform(50)
    ratio = ledger.fill_ratio()
    assert ratio[ledger.get_location_idx("SPK"), 0] == pytest.approx(0.5)
