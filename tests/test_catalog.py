from kitflow.kits.core import ResourceQuantity
from kitflow.network.core import Departure, DepartureState
from kitflow.simulation.catalog import DepartureCatalog


def make_departure(state=DepartureState.ANNOUNCED, passengers=None, dep_round=10):
    return Departure(
        "D1",
        "KF0001",
        "HUB1",
        "SPK",
        departure_round=dep_round,
        arrival_round=dep_round + 4,
        passengers=passengers or ResourceQuantity(economy=100),
        vehicle_type_id="V1",
        state=state,
    )


def test_state_only_moves_forward():
    catalog = DepartureCatalog()
    catalog.observe(make_departure())
    catalog.observe(make_departure(DepartureState.CONFIRMED, ResourceQuantity(economy=90)))
    assert catalog.get("D1").state == DepartureState.CONFIRMED
    assert catalog.get("D1").passengers.economy == 90

    catalog.observe(make_departure(DepartureState.ANNOUNCED, ResourceQuantity(economy=80)))
    assert catalog.get("D1").state == DepartureState.CONFIRMED
    assert catalog.get("D1").passengers.economy == 90


def test_completed_entries_are_frozen():
    catalog = DepartureCatalog()
    catalog.observe(make_departure(DepartureState.COMPLETED))
    catalog.observe(make_departure(DepartureState.CONFIRMED, ResourceQuantity(economy=5)))

    departure = catalog.get("D1")
    assert departure.state == DepartureState.COMPLETED
    assert departure.passengers.economy == 100
    assert len(catalog) == 1


def test_zero_passenger_update_keeps_previous_counts():
    catalog = DepartureCatalog()
    catalog.observe(make_departure())
    catalog.observe(make_departure(DepartureState.CONFIRMED, ResourceQuantity()))
    # Zero counts never overwrite the announced ones
    assert catalog.get("D1").passengers.economy == 100


def test_loadable_and_loaded_tracking():
    catalog = DepartureCatalog()
    catalog.observe(make_departure(dep_round=10))

    assert catalog.loadable(9) == []
    assert [d.id for d in catalog.loadable(10)] == ["D1"]

    catalog.mark_loaded("D1")
    assert catalog.is_loaded("D1")
    assert catalog.loadable(11) == []


def test_queries():
    catalog = DepartureCatalog()
    catalog.observe(make_departure(dep_round=10))

    assert "D1" in catalog
    assert catalog.passengers_from("HUB1", 0, 10).economy == 100
    assert catalog.passengers_from("HUB1", 11, 20).is_zero()
    assert catalog.origin_of("D1") == "HUB1"
    assert catalog.origin_of(None) is None
    assert catalog.find_by_number("KF0001").id == "D1"
    assert catalog.find_by_number("KF9999") is None
    assert catalog.count_by_state()[DepartureState.ANNOUNCED] == 1
