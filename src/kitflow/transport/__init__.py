"""Transports that submit round decisions and return round outcomes."""

from kitflow.transport.base import (
    BaseTransport,
    DepartureLoad,
    DepartureUpdate,
    PenaltyNotice,
    RoundDecision,
    RoundOutcome,
    TransportError,
)
from kitflow.transport.http_client import HttpTransport

__all__ = [
    "BaseTransport",
    "DepartureLoad",
    "DepartureUpdate",
    "HttpTransport",
    "PenaltyNotice",
    "RoundDecision",
    "RoundOutcome",
    "TransportError",
]
