"""Mapping between the evaluation platform's JSON payloads and transport types."""

from typing import Any

from kitflow.kits.core import ResourceQuantity
from kitflow.network.core import Departure, DepartureState
from kitflow.simulation.clock import to_round
from kitflow.transport.base import (
    DepartureUpdate,
    PenaltyNotice,
    RoundDecision,
    RoundOutcome,
    TransportError,
)

EVENT_STATES = {
    "SCHEDULED": DepartureState.ANNOUNCED,
    "CHECKED_IN": DepartureState.CONFIRMED,
    "LANDED": DepartureState.COMPLETED,
}


def encode_decision(decision: RoundDecision) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "day": decision.day,
        "hour": decision.hour,
        "flightLoads": [
            {"flightId": load.departure_id, "loadedKits": load.quantity.to_wire()}
            for load in decision.loads
        ],
    }
    if decision.order is not None and not decision.order.is_zero():
        payload["kitPurchasingOrders"] = decision.order.to_wire()
    return payload


def _time(data: dict[str, Any] | None) -> tuple[int, int]:
    data = data or {}
    return int(data.get("day", 0)), int(data.get("hour", 0))


def decode_update(data: dict[str, Any]) -> DepartureUpdate:
    event = data.get("eventType", "")
    state = EVENT_STATES.get(event)
    if state is None:
        raise TransportError(f"Unknown flight event type: {event!r}")
    dep_day, dep_hour = _time(data.get("departure"))
    arr_day, arr_hour = _time(data.get("arrival"))
    return DepartureUpdate(
        departure_id=str(data["flightId"]),
        number=str(data.get("flightNumber", "")),
        state=state,
        origin_id=str(data.get("originAirport", "")),
        destination_id=str(data.get("destinationAirport", "")),
        departure_day=dep_day,
        departure_hour=dep_hour,
        arrival_day=arr_day,
        arrival_hour=arr_hour,
        passengers=ResourceQuantity.from_wire(data.get("passengers")),
        vehicle_type_id=str(data.get("aircraftType", "") or ""),
        distance_km=float(data.get("distance", 0) or 0),
    )


def decode_penalty(data: dict[str, Any]) -> PenaltyNotice:
    return PenaltyNotice(
        code=str(data.get("code", "")),
        amount=float(data.get("penalty", 0) or 0),
        reason=str(data.get("reason", "") or ""),
        issued_day=int(data.get("issuedDay", 0) or 0),
        issued_hour=int(data.get("issuedHour", 0) or 0),
        departure_id=data.get("flightId"),
        departure_number=data.get("flightNumber"),
    )


def decode_outcome(data: dict[str, Any]) -> RoundOutcome:
    if not isinstance(data, dict):
        raise TransportError(f"Expected a JSON object, got {type(data).__name__}")
    return RoundOutcome(
        day=int(data.get("day", 0)),
        hour=int(data.get("hour", 0)),
        updates=[decode_update(u) for u in data.get("flightUpdates", []) or []],
        penalties=[decode_penalty(p) for p in data.get("penalties", []) or []],
        total_cost=float(data.get("totalCost", 0) or 0),
    )


def update_to_departure(update: DepartureUpdate) -> Departure:
    return Departure(
        id=update.departure_id,
        number=update.number,
        origin_id=update.origin_id,
        destination_id=update.destination_id,
        departure_round=to_round(update.departure_day, update.departure_hour),
        arrival_round=to_round(update.arrival_day, update.arrival_hour),
        passengers=update.passengers.copy(),
        vehicle_type_id=update.vehicle_type_id,
        distance_km=update.distance_km,
        state=update.state,
    )
