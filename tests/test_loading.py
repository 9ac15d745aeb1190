import pytest

from kitflow.agents.loading import LoadPlanner
from kitflow.kits.core import ResourceQuantity, Tier
from kitflow.network.core import Departure, DepartureState, Location, VehicleType
from kitflow.simulation.catalog import DepartureCatalog
from kitflow.simulation.clock import RunHorizon, to_round
from kitflow.simulation.demand import DemandForecaster
from kitflow.simulation.ledger import InventoryLedger
from kitflow.simulation.world import World


@pytest.fixture
def world():
    world = World()
    world.add_location(
        Location(
            "HUB1",
            "Hub",
            is_hub=True,
            capacity=ResourceQuantity.uniform(10000),
            initial_stock=ResourceQuantity.uniform(5000),
        )
    )
    world.add_location(
        Location(
            "SPA",
            "Spoke A",
            capacity=ResourceQuantity.uniform(100),
            initial_stock=ResourceQuantity(first=6, economy=50),
        )
    )
    world.add_location(
        Location(
            "SPB",
            "Spoke B",
            capacity=ResourceQuantity.uniform(100),
            initial_stock=ResourceQuantity(economy=65),
        )
    )
    world.add_vehicle_type(
        VehicleType(
            "V1",
            seats=ResourceQuantity(10, 20, 20, 100),
            kit_capacity=ResourceQuantity(first=10, business=20, premium_economy=20, economy=100),
            cost_per_kg_km=0.001,
        )
    )
    return world


def make_planner(world, config=None, catalog=None):
    catalog = catalog if catalog is not None else DepartureCatalog()
    ledger = InventoryLedger(world, config)
    forecaster = DemandForecaster(world, catalog, config)
    planner = LoadPlanner(world, ledger, forecaster, RunHorizon(30), config=config)
    return planner, ledger


def departure(
    dep_id, origin, destination, dep_round, passengers=None, vehicle="V1", distance=1000.0
):
    return Departure(
        dep_id,
        f"KF-{dep_id}",
        origin,
        destination,
        departure_round=dep_round,
        arrival_round=dep_round + 3,
        passengers=passengers or ResourceQuantity(),
        vehicle_type_id=vehicle,
        distance_km=distance,
        state=DepartureState.CONFIRMED,
    )


def test_load_clamped_by_origin_stock_less_buffer(world):
    config = {"engine_parameters": {"loading": {"safety_buffer": {"hub": 100, "spoke": 2}}}}
    planner, ledger = make_planner(world, config)
    now = to_round(5, 0)
    dep = departure("D1", "SPA", "SPB", now, ResourceQuantity(first=10))

    decisions = planner.plan([dep], 5, 0)

    # min(demand 10, stock 6 - buffer 2, vehicle 10)
    assert decisions[0].quantity.first == 4
    assert ledger.stock("SPA", Tier.FIRST) == 2
    assert ledger.in_transit["D1"].quantity.first == 4
    assert ledger.in_transit["D1"].eta_round == now + 3


def test_zero_origin_stock_gives_zero_load(world):
    planner, ledger = make_planner(world)
    dep = departure("D1", "SPB", "SPA", to_round(5, 0), ResourceQuantity(first=10))

    decisions = planner.plan([dep], 5, 0)

    assert decisions[0].quantity.first == 0
    assert ledger.stock("SPB", Tier.FIRST) == 0


def test_missing_reference_data_gives_empty_load(world):
    planner, ledger = make_planner(world)
    now = to_round(5, 0)
    unknown_vehicle = departure("D1", "HUB1", "SPA", now, ResourceQuantity(economy=50), vehicle="XXX")
    unknown_destination = departure("D2", "HUB1", "NOPE", now, ResourceQuantity(economy=50))
    before = ledger.on_hand.copy()

    decisions = planner.plan([unknown_vehicle, unknown_destination], 5, 0)

    assert len(decisions) == 2
    for decision in decisions:
        assert decision.quantity.is_zero()
        assert decision.skipped_reason is not None
    assert (ledger.on_hand == before).all()
    assert ledger.in_transit == {}


def test_destination_headroom_binds(world):
    planner, _ = make_planner(world)
    dep = departure("D1", "HUB1", "SPB", to_round(5, 0), ResourceQuantity(economy=50))

    decisions = planner.plan([dep], 5, 0)

    # floor(100 * 0.70) - 65 already at the spoke
    assert decisions[0].quantity.economy == 5
    assert Tier.ECONOMY in decisions[0].headroom_bound


def test_regimes(world):
    planner, _ = make_planner(world)

    assert planner.regime(1, 0).bootstrap
    assert not planner.regime(3, 0).bootstrap
    assert planner.regime(15, 0).spoke_cutoff
    assert planner.regime(27, 0).endgame

    # 24 rounds left after day 28 hour 23
    assert not planner.regime(28, 23).final_window
    assert planner.regime(29, 0).final_window
    assert not planner.regime(29, 0).late_cutoff
    assert planner.regime(29, 12).late_cutoff
    assert planner.regime(10, 0).spoke_routing_allowed
    assert not planner.regime(15, 0).spoke_routing_allowed
    assert not planner.regime(29, 12).spoke_routing_allowed

    assert planner.regime(10, 0).balancing_allowed
    assert not planner.regime(2, 0).balancing_allowed
    assert not planner.regime(29, 0).balancing_allowed


def test_bootstrap_hub_buffer(world):
    planner, _ = make_planner(world)
    # max(500, 5% of 10000)
    assert planner.safety_buffer("HUB1", Tier.ECONOMY, bootstrap=True) == 500
    assert planner.safety_buffer("HUB1", Tier.ECONOMY, bootstrap=False) == 100
    assert planner.safety_buffer("SPA", Tier.ECONOMY, bootstrap=True) == 20


def test_departure_ordering(world):
    planner, _ = make_planner(world)
    now = to_round(5, 0)
    small = departure("A", "SPA", "SPB", now, ResourceQuantity(economy=10))
    large = departure("B", "SPB", "SPA", now, ResourceQuantity(economy=50))
    from_hub = departure("C", "HUB1", "SPA", now, ResourceQuantity(economy=1))

    ordered = planner.order_departures([small, large, from_hub])

    assert [d.id for d in ordered] == ["C", "B", "A"]
    assert planner.exposure(large) == pytest.approx(50 * 1000 * 0.003)


def test_low_tier_load_factor(world):
    planner, _ = make_planner(world)
    dep = departure("D1", "HUB1", "SPA", 0, ResourceQuantity(economy=10), distance=1000.0)
    # Penalty 0.003 * 1000 * 50 = 150 against a 7.5 carrying cost, ratio 20
    assert planner.low_tier_load_factor(dep) == pytest.approx(0.75)


def test_endgame_returns_spoke_surplus_to_hub(world):
    planner, ledger = make_planner(world)
    dep = departure("D1", "SPA", "HUB1", to_round(28, 0))

    decisions = planner.plan([dep], 28, 0)

    # 50 on hand less the 20 unit spoke buffer
    assert decisions[0].extra.economy == 30
    assert decisions[0].quantity.economy == 30
    assert ledger.stock("SPA", Tier.ECONOMY) == 20
    assert ledger.in_transit["D1"].quantity.economy == 30


def test_no_balancing_near_the_end(world):
    planner, ledger = make_planner(world)
    dep = departure("D1", "SPA", "HUB1", to_round(29, 20))

    decisions = planner.plan([dep], 29, 20)

    assert decisions[0].extra.is_zero()
    assert ledger.stock("SPA", Tier.ECONOMY) == 50


def test_extra_to_deficient_spoke(world):
    catalog = DepartureCatalog()
    now = to_round(5, 0)
    catalog.observe(departure("OUT", "SPB", "SPA", now + 5, ResourceQuantity(first=30)))
    planner, ledger = make_planner(world, catalog=catalog)
    dep = departure("D1", "HUB1", "SPB", now, ResourceQuantity(first=2))

    decisions = planner.plan([dep], 5, 0)

    # Base load of 2, plus surplus capped at 5% of the spoke's capacity
    assert decisions[0].extra.first == 5
    assert decisions[0].quantity.first == 7
    assert ledger.in_transit["D1"].quantity.first == 7
    assert ledger.stock("HUB1", Tier.FIRST) == 4993


def test_late_cutoff_stops_spoke_routing_only(world):
    # Leave only the late cutoff in force near the end of the run
    config = {
        "engine_parameters": {
            "loading": {"spoke_balancing_cutoff_day": 99, "final_window_rounds": 0}
        }
    }

    def plan_at(day, hour):
        catalog = DepartureCatalog()
        now = to_round(day, hour)
        catalog.observe(departure("OUT", "SPB", "SPA", now + 5, ResourceQuantity(first=30)))
        planner, _ = make_planner(world, config, catalog)
        to_spoke = departure("D1", "HUB1", "SPB", now, ResourceQuantity(first=2))
        to_hub = departure("R1", "SPA", "HUB1", now)
        return {d.departure_id: d for d in planner.plan([to_spoke, to_hub], day, hour)}

    # 23 rounds left: surplus still flows to the deficient spoke
    early = plan_at(29, 0)
    assert early["D1"].extra.first == 5

    # 11 rounds left: no more surplus to spokes, endgame returns continue
    late = plan_at(29, 12)
    assert late["D1"].quantity.first == 2
    assert late["D1"].extra.is_zero()
    assert late["R1"].extra.economy == 30
