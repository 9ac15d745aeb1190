import pytest

from kitflow.kits.core import ResourceQuantity
from kitflow.network.core import DepartureState, Location, RouteTemplate, VehicleType
from kitflow.simulation.clock import RunHorizon, from_round
from kitflow.simulation.sandbox import (
    END_OF_RUN_CODE,
    OVERFLOW_CODE,
    UNFULFILLED_CODE,
    SandboxEvaluator,
)
from kitflow.simulation.world import World
from kitflow.transport.base import DepartureLoad, RoundDecision, TransportError


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
            "SPK",
            "Spoke",
            capacity=ResourceQuantity.uniform(500),
            initial_stock=ResourceQuantity.uniform(100),
        )
    )
    world.add_vehicle_type(
        VehicleType(
            "V1",
            seats=ResourceQuantity(4, 10, 10, 100),
            kit_capacity=ResourceQuantity(8, 20, 20, 200),
            cost_per_kg_km=0.001,
        )
    )
    world.add_template(RouteTemplate("HUB1", "SPK", 2, 5, distance_km=1000.0))
    world.add_template(RouteTemplate("SPK", "HUB1", 8, 11, distance_km=1000.0))
    return world


@pytest.fixture
def sandbox(world):
    sandbox = SandboxEvaluator(world, horizon=RunHorizon(2), seed=7)
    sandbox.start()
    return sandbox


def play(sandbox, round_index, loads=None, order=None):
    day, hour = from_round(round_index)
    return sandbox.play_round(RoundDecision(day=day, hour=hour, loads=loads or [], order=order))


def test_flights_generated_from_template(world):
    sandbox = SandboxEvaluator(world, horizon=RunHorizon(2), seed=7)
    # Two templates, every day, plus one day past the horizon
    assert len(sandbox.flights) == 6
    flight = sandbox.flights["FL-00-0000"]
    assert flight.departure_round == 2
    assert flight.arrival_round == 5
    assert flight.planned.economy == 80
    assert flight.actual <= ResourceQuantity(4, 10, 10, 100)


def test_start_and_round_order(sandbox):
    assert sandbox.session_id == "sandbox-7"
    with pytest.raises(TransportError):
        play(sandbox, 5)


def test_round_before_start_fails(world):
    sandbox = SandboxEvaluator(world, horizon=RunHorizon(2), seed=7)
    with pytest.raises(TransportError):
        play(sandbox, 0)


def test_announce_then_confirm(sandbox):
    first = play(sandbox, 0)
    announced = {u.departure_id: u for u in first.updates}
    assert set(announced) == {"FL-00-0000", "FL-00-0001"}
    assert all(u.state == DepartureState.ANNOUNCED for u in announced.values())
    assert announced["FL-00-0000"].passengers.economy == 80

    second = play(sandbox, 1)
    confirmed = [u for u in second.updates if u.state == DepartureState.CONFIRMED]
    assert [u.departure_id for u in confirmed] == ["FL-00-0000"]


def test_loads_move_stock_and_land(sandbox):
    for r in range(2):
        play(sandbox, r)
    play(sandbox, 2, loads=[DepartureLoad("FL-00-0000", ResourceQuantity(economy=10))])
    assert sandbox.stock_of("HUB1").economy == 4990

    play(sandbox, 3)
    play(sandbox, 4)
    outcome = play(sandbox, 5)
    landed = [u for u in outcome.updates if u.state == DepartureState.COMPLETED]
    assert [u.departure_id for u in landed] == ["FL-00-0000"]
    assert sandbox.stock_of("SPK").economy == 110
    assert sandbox.cost_breakdown["loading"] == pytest.approx(0.0)
    assert sandbox.cost_breakdown["movement"] > 0


def test_unfulfilled_penalty_reported_next_round(sandbox):
    for r in range(2):
        play(sandbox, r)
    departed = play(sandbox, 2)
    assert departed.penalties == []

    reported = play(sandbox, 3)
    codes = {p.code for p in reported.penalties}
    assert codes == {UNFULFILLED_CODE}
    penalty = reported.penalties[0]
    assert penalty.departure_id == "FL-00-0000"
    assert (penalty.issued_day, penalty.issued_hour) == (0, 2)
    assert "has unfulfilled" in penalty.reason


def test_overflow_is_penalized_and_clamped(sandbox):
    play(sandbox, 0, order=ResourceQuantity(economy=6000))
    assert sandbox.stock_of("HUB1").economy == 10000
    assert sandbox.cost_breakdown["purchase"] == pytest.approx(6000 * 50.0)

    outcome = play(sandbox, 1)
    overflow = [p for p in outcome.penalties if p.code == OVERFLOW_CODE]
    assert len(overflow) == 1
    assert overflow[0].amount == pytest.approx(1000 * 777.0)
    assert "Airport HUB1" in overflow[0].reason


def test_load_for_unknown_flight_fails(sandbox):
    with pytest.raises(TransportError):
        play(sandbox, 0, loads=[DepartureLoad("FL-99-9999", ResourceQuantity(economy=1))])


def test_run_ends_after_final_round(sandbox):
    outcomes = [play(sandbox, r) for r in range(RunHorizon(2).total_rounds)]

    final_codes = {p.code for p in outcomes[-1].penalties}
    assert END_OF_RUN_CODE in final_codes
    assert outcomes[-1].total_cost == pytest.approx(sum(sandbox.cost_breakdown.values()))
    assert sandbox.finished
    assert sandbox.end() is None
    with pytest.raises(TransportError):
        play(sandbox, 48)
