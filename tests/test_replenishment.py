import pytest

from kitflow.agents.replenishment import OrderMode, ReplenishmentPlanner
from kitflow.kits.core import ResourceQuantity, Tier
from kitflow.network.core import Departure, Location
from kitflow.simulation.catalog import DepartureCatalog
from kitflow.simulation.clock import RunHorizon, to_round
from kitflow.simulation.demand import DemandForecaster
from kitflow.simulation.ledger import InventoryLedger
from kitflow.simulation.world import World

SCENARIO_CONFIG = {
    "engine_parameters": {
        "replenishment": {
            "emergency_floor": {"economy": 500},
            "emergency_order": {"economy": 1000},
            "rate_limit": {"economy": 5000},
        }
    }
}


def build_world(stock: int, capacity: int = 5000) -> World:
    world = World()
    # Only the lowest tier has depot room, so only it can be ordered
    world.add_location(
        Location(
            "HUB1",
            "Hub",
            is_hub=True,
            capacity=ResourceQuantity(economy=capacity),
            initial_stock=ResourceQuantity(economy=stock),
        )
    )
    world.add_location(Location("SPK", "Spoke", capacity=ResourceQuantity.uniform(100)))
    return world


def make_planner(world, config=None, catalog=None):
    catalog = catalog if catalog is not None else DepartureCatalog()
    ledger = InventoryLedger(world, config)
    forecaster = DemandForecaster(world, catalog, config)
    return ReplenishmentPlanner(world, ledger, forecaster, RunHorizon(30), config), ledger


def test_emergency_order_bypasses_interval_gate():
    planner, ledger = make_planner(build_world(stock=300), SCENARIO_CONFIG)

    # Hour 3 is off the 6-hourly regular interval
    order = planner.plan(5, 3)

    assert order == ResourceQuantity(economy=1000)
    assert ledger.stock("HUB1", Tier.ECONOMY) == 1300
    assert planner.ordered.economy == 1000
    assert planner.history[-1][1].mode == OrderMode.EMERGENCY


def test_zero_depot_headroom_gives_no_order():
    planner, ledger = make_planner(build_world(stock=300), SCENARIO_CONFIG)
    # Everything else already committed to the depot
    ledger.track_in_transit("D1", "HUB1", ResourceQuantity(economy=4700), eta_round=500)

    assert ledger.headroom("HUB1", Tier.ECONOMY) == 0
    assert planner.plan_tier(Tier.ECONOMY, 5, 0) is None
    assert planner.plan(5, 0) is None


def test_cap_reports_binding_limit():
    config = {
        "engine_parameters": {
            "replenishment": {
                "emergency_floor": {"economy": 500},
                "emergency_order": {"economy": 4000},
                "max_per_order": {"economy": 2500},
            }
        }
    }
    planner, _ = make_planner(build_world(stock=300), config)

    tier_order = planner.plan_tier(Tier.ECONOMY, 5, 3)

    assert tier_order.requested == 4000
    assert tier_order.quantity == 2500
    assert tier_order.binding_cap == "per_order"


def test_run_budget_limits_total_orders():
    config = {
        "engine_parameters": {
            "replenishment": {
                "emergency_floor": {"economy": 500},
                "emergency_order": {"economy": 1000},
                "run_budget": {"economy": 1500},
            }
        }
    }
    planner, ledger = make_planner(build_world(stock=300), config)

    assert planner.plan(5, 3).economy == 1000
    ledger.deduct("HUB1", Tier.ECONOMY, 1200)
    # Only 500 of the budget is left
    assert planner.plan(5, 4).economy == 500
    ledger.deduct("HUB1", Tier.ECONOMY, 500)
    assert planner.plan(5, 5) is None


def test_bootstrap_mode_above_emergency_floor():
    config = {"engine_parameters": {"replenishment": {"emergency_floor": {"economy": 500}}}}
    planner, _ = make_planner(build_world(stock=1000), config)

    tier_order = planner.plan_tier(Tier.ECONOMY, 1, 1)

    assert tier_order.mode == OrderMode.BOOTSTRAP
    # Asks for a full per-order lot, capped by the 4000 units of depot room
    assert tier_order.requested == 15000
    assert tier_order.quantity == 4000
    assert tier_order.binding_cap == "headroom"


def test_no_order_inside_lead_time():
    planner, _ = make_planner(build_world(stock=300), SCENARIO_CONFIG)
    # 11 rounds left, economy lead time is 12 hours
    assert planner.plan_tier(Tier.ECONOMY, 29, 12) is None


def test_deadline_burst_before_last_useful_order():
    catalog = DepartureCatalog()
    catalog.observe(
        Departure(
            "D1",
            "KF1",
            "HUB1",
            "SPK",
            departure_round=to_round(29, 14),
            arrival_round=to_round(29, 17),
            passengers=ResourceQuantity(economy=1000),
        )
    )
    config = {"engine_parameters": {"replenishment": {"emergency_floor": {"economy": 500}}}}
    planner, _ = make_planner(build_world(stock=1000), config, catalog)

    # 15 rounds left: inside the 6 hour window before the 12 hour lead time
    tier_order = planner.plan_tier(Tier.ECONOMY, 29, 8)

    assert tier_order.mode == OrderMode.DEADLINE_BURST
    # floor(1000 * 1.0 * 1.5) - 1000 in stock
    assert tier_order.quantity == 500


def test_regular_order_only_on_interval_hours():
    catalog = DepartureCatalog()
    catalog.observe(
        Departure(
            "D1",
            "KF1",
            "HUB1",
            "SPK",
            departure_round=to_round(10, 10),
            arrival_round=to_round(10, 13),
            passengers=ResourceQuantity(economy=3000),
        )
    )
    config = {"engine_parameters": {"replenishment": {"emergency_floor": {"economy": 500}}}}
    planner, _ = make_planner(build_world(stock=1000), config, catalog)

    assert planner.plan_tier(Tier.ECONOMY, 10, 3) is None

    tier_order = planner.plan_tier(Tier.ECONOMY, 10, 6)
    assert tier_order.mode == OrderMode.REGULAR
    # Forecast 3000 less the 1000 already at the depot
    assert tier_order.quantity == 2000


def test_small_regular_orders_are_dropped():
    catalog = DepartureCatalog()
    catalog.observe(
        Departure(
            "D1",
            "KF1",
            "HUB1",
            "SPK",
            departure_round=to_round(10, 10),
            arrival_round=to_round(10, 13),
            passengers=ResourceQuantity(economy=1050),
        )
    )
    config = {"engine_parameters": {"replenishment": {"emergency_floor": {"economy": 500}}}}
    planner, _ = make_planner(build_world(stock=1000), config, catalog)

    assert planner.plan_tier(Tier.ECONOMY, 10, 6) is None


def test_days_of_cover():
    planner, _ = make_planner(build_world(stock=1000))
    assert planner.days_of_cover(Tier.ECONOMY, 0) == float("inf")

    planner.forecaster.catalog.observe(
        Departure(
            "D1",
            "KF1",
            "HUB1",
            "SPK",
            departure_round=5,
            arrival_round=8,
            passengers=ResourceQuantity(economy=250),
        )
    )
    assert planner.days_of_cover(Tier.ECONOMY, 0) == pytest.approx(4.0)
