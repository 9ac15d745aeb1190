import logging

from kitflow.kits.core import ResourceQuantity
from kitflow.network.core import Departure, DepartureState

logger = logging.getLogger(__name__)


class DepartureCatalog:
    """
    Append-only record of every departure observed during a run.
    State only moves forward (Announced -> Confirmed -> Completed);
    Completed entries are frozen and kept for forecasting history.
    """

    def __init__(self) -> None:
        self.departures: dict[str, Departure] = {}
        self.loaded: set[str] = set()

    def __len__(self) -> int:
        return len(self.departures)

    def __contains__(self, departure_id: str) -> bool:
        return departure_id in self.departures

    def get(self, departure_id: str) -> Departure | None:
        return self.departures.get(departure_id)

    def observe(self, update: Departure) -> Departure:
        """
        Folds a lifecycle update into the catalog. Backward transitions and
        any change to a Completed entry are ignored.
        """
        current = self.departures.get(update.id)
        if current is None:
            self.departures[update.id] = update
            return update

        if current.state == DepartureState.COMPLETED:
            return current

        if update.state.rank < current.state.rank:
            logger.debug(
                "Ignoring backward transition for %s: %s -> %s",
                update.id,
                current.state.value,
                update.state.value,
            )
            return current

        current.state = update.state
        current.departure_round = update.departure_round
        current.arrival_round = update.arrival_round
        # Later updates carry firmer passenger counts
        if not update.passengers.is_zero():
            current.passengers = update.passengers.copy()
        if update.vehicle_type_id:
            current.vehicle_type_id = update.vehicle_type_id
        if update.distance_km > 0:
            current.distance_km = update.distance_km
        return current

    def mark_loaded(self, departure_id: str) -> None:
        self.loaded.add(departure_id)

    def is_loaded(self, departure_id: str) -> bool:
        return departure_id in self.loaded

    def loadable(self, now_round: int) -> list[Departure]:
        """Open departures due at or before now that have not yet been answered."""
        return [
            d
            for d in self.departures.values()
            if d.is_open
            and d.departure_round <= now_round
            and d.id not in self.loaded
        ]

    def open_from(self, location_id: str, start: int, end: int) -> list[Departure]:
        return [
            d
            for d in self.departures.values()
            if d.is_open
            and d.origin_id == location_id
            and start <= d.departure_round <= end
        ]

    def passengers_from(self, location_id: str, start: int, end: int) -> ResourceQuantity:
        total = ResourceQuantity()
        for departure in self.open_from(location_id, start, end):
            total = total + departure.passengers
        return total

    def origin_of(self, departure_id: str | None) -> str | None:
        if not departure_id:
            return None
        departure = self.departures.get(departure_id)
        return departure.origin_id if departure else None

    def find_by_number(self, number: str | None) -> Departure | None:
        if not number:
            return None
        for departure in self.departures.values():
            if departure.number == number:
                return departure
        return None

    def count_by_state(self) -> dict[DepartureState, int]:
        counts = {state: 0 for state in DepartureState}
        for departure in self.departures.values():
            counts[departure.state] += 1
        return counts
