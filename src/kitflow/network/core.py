import enum
from dataclasses import dataclass, field

from kitflow.kits.core import TIERS, ResourceQuantity, Tier


@dataclass
class Location:
    """
    A station in the hub-and-spoke network. Capacity is a hard per-tier
    ceiling on stock.
    """

    id: str
    name: str
    is_hub: bool = False

    capacity: ResourceQuantity = field(default_factory=ResourceQuantity)
    processing_hours: ResourceQuantity = field(default_factory=ResourceQuantity)
    processing_cost: dict[Tier, float] = field(default_factory=dict)
    loading_cost: dict[Tier, float] = field(default_factory=dict)
    initial_stock: ResourceQuantity = field(default_factory=ResourceQuantity)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Location ID cannot be empty")

    @property
    def max_processing_hours(self) -> int:
        return max(self.processing_hours[t] for t in TIERS)


@dataclass
class VehicleType:
    id: str
    seats: ResourceQuantity = field(default_factory=ResourceQuantity)
    kit_capacity: ResourceQuantity = field(default_factory=ResourceQuantity)
    cost_per_kg_km: float = 0.0

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Vehicle type ID cannot be empty")


@dataclass
class RouteTemplate:
    """One line of the recurring weekly departure plan."""

    origin_id: str
    destination_id: str
    departure_hour: int
    arrival_hour: int
    arrival_next_day: bool = False
    distance_km: float = 0.0
    # Index 0..6, matched against day % 7
    weekdays: tuple[bool, ...] = (True,) * 7

    def runs_on(self, weekday: int) -> bool:
        return bool(self.weekdays[weekday])

    @property
    def duration_hours(self) -> int:
        hours = self.arrival_hour - self.departure_hour
        if self.arrival_next_day:
            hours += 24
        return max(1, hours)


class DepartureState(enum.Enum):
    ANNOUNCED = "announced"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return _STATE_ORDER.index(self)


_STATE_ORDER = [
    DepartureState.ANNOUNCED,
    DepartureState.CONFIRMED,
    DepartureState.COMPLETED,
]


@dataclass
class Departure:
    id: str
    number: str
    origin_id: str
    destination_id: str
    departure_round: int
    arrival_round: int
    passengers: ResourceQuantity = field(default_factory=ResourceQuantity)
    vehicle_type_id: str = ""
    distance_km: float = 0.0
    state: DepartureState = DepartureState.ANNOUNCED

    @property
    def is_open(self) -> bool:
        return self.state != DepartureState.COMPLETED


@dataclass
class InTransitBatch:
    departure_id: str
    destination_id: str
    quantity: ResourceQuantity
    eta_round: int


@dataclass
class InProcessBatch:
    location_id: str
    quantity: ResourceQuantity
    ready_round: int
