"""Base classes and payload types for round-trip transports."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from kitflow.kits.core import ResourceQuantity
from kitflow.network.core import DepartureState


class TransportError(RuntimeError):
    """A round-trip to the evaluation system failed. Fatal for the run."""


@dataclass
class DepartureLoad:
    departure_id: str
    quantity: ResourceQuantity


@dataclass
class RoundDecision:
    day: int
    hour: int
    loads: list[DepartureLoad] = field(default_factory=list)
    # None means the order is omitted from the payload
    order: ResourceQuantity | None = None


@dataclass
class DepartureUpdate:
    departure_id: str
    number: str
    state: DepartureState
    origin_id: str
    destination_id: str
    departure_day: int
    departure_hour: int
    arrival_day: int
    arrival_hour: int
    passengers: ResourceQuantity = field(default_factory=ResourceQuantity)
    vehicle_type_id: str = ""
    distance_km: float = 0.0


@dataclass
class PenaltyNotice:
    code: str
    amount: float
    reason: str
    issued_day: int
    issued_hour: int
    departure_id: str | None = None
    departure_number: str | None = None


@dataclass
class RoundOutcome:
    day: int
    hour: int
    updates: list[DepartureUpdate] = field(default_factory=list)
    penalties: list[PenaltyNotice] = field(default_factory=list)
    total_cost: float = 0.0


class BaseTransport(ABC):
    """Abstract base class for anything that can evaluate a run round by round."""

    @abstractmethod
    def start(self) -> str:
        """Open a session and return its identifier."""
        pass

    @abstractmethod
    def play_round(self, decision: RoundDecision) -> RoundOutcome:
        """Submit one round's decisions and return that round's outcome."""
        pass

    @abstractmethod
    def end(self) -> RoundOutcome | None:
        """Close the session. None when the system already closed it."""
        pass
