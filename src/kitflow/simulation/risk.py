import enum
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from kitflow.config.loader import engine_section
from kitflow.kits.core import Tier
from kitflow.simulation.catalog import DepartureCatalog

logger = logging.getLogger(__name__)

OVERFLOW_CODE = "INVENTORY_EXCEEDS_CAPACITY"


class PenaltyKind(enum.Enum):
    OVERFLOW = "overflow"
    UNDERFILL = "underfill"
    OTHER = "other"

    @classmethod
    def classify(cls, code: str) -> "PenaltyKind":
        if code == OVERFLOW_CODE:
            return cls.OVERFLOW
        if "UNFULFILLED" in code:
            return cls.UNDERFILL
        return cls.OTHER


@dataclass
class ParsedReason:
    """Whatever could be recovered from a penalty's free text. Any field may be None."""

    location_id: str | None = None
    tier: Tier | None = None
    quantity: int | None = None
    capacity: int | None = None


@dataclass
class PenaltyRecord:
    code: str
    amount: float
    reason: str
    day: int
    hour: int
    departure_id: str | None = None
    departure_number: str | None = None
    kind: PenaltyKind = PenaltyKind.OTHER
    parsed: ParsedReason = field(default_factory=ParsedReason)
    # Location after catalog fallback, used for attribution
    location_id: str | None = None

    def __post_init__(self) -> None:
        self.kind = PenaltyKind.classify(self.code)


# Free-text shapes seen in penalty reasons
_LOCATION_PATTERNS = [
    re.compile(r"for airport (\w+)", re.IGNORECASE),
    re.compile(r"Airport (\w+)"),
]
_KIT_CODE_PATTERN = re.compile(
    r"kit type (A_FIRST|B_BUSINESS|C_PREMIUM_ECONOMY|D_ECONOMY)", re.IGNORECASE
)
_CLASS_PATTERN = re.compile(r"(First|Business|Premium Economy|Economy) Class", re.IGNORECASE)
_INVENTORY_PATTERN = re.compile(r"inventory of (-?\d+) kits.*capacity of (\d+)", re.IGNORECASE)
_UNFULFILLED_PATTERN = re.compile(r"unfulfilled.*?(\d+) kits", re.IGNORECASE)
_TRAILING_KITS_PATTERN = re.compile(r"of (\d+) kits\.?$", re.IGNORECASE)


def parse_penalty_reason(reason: str | None) -> ParsedReason:
    """Best-effort extraction of location, tier and magnitude from penalty text."""
    parsed = ParsedReason()
    if not reason:
        return parsed

    for pattern in _LOCATION_PATTERNS:
        match = pattern.search(reason)
        if match:
            parsed.location_id = match.group(1)
            break

    match = _KIT_CODE_PATTERN.search(reason)
    if match:
        parsed.tier = Tier.from_text(match.group(1))
    else:
        match = _CLASS_PATTERN.search(reason)
        if match:
            parsed.tier = Tier.from_text(match.group(1))

    match = _INVENTORY_PATTERN.search(reason)
    if match:
        parsed.quantity = int(match.group(1))
        parsed.capacity = int(match.group(2))
        return parsed

    for pattern in (_UNFULFILLED_PATTERN, _TRAILING_KITS_PATTERN):
        match = pattern.search(reason)
        if match:
            parsed.quantity = int(match.group(1))
            break
    return parsed


@dataclass
class RiskProfile:
    location_id: str
    score: float = 0.5
    overflow_count: int = 0
    underfill_count: int = 0
    overflow_by_tier: dict[Tier, int] = field(default_factory=dict)
    underfill_by_tier: dict[Tier, int] = field(default_factory=dict)
    last_overflow_day: int = -1


class RiskTracker:
    """
    Per-location overflow risk learned from reported penalties.
    Overflow pushes a location's score up, under-fulfillment nudges it down,
    and every round all scores decay so risk fades without fresh evidence.
    """

    def __init__(
        self,
        catalog: DepartureCatalog | None = None,
        config: dict[str, Any] | None = None,
    ) -> None:
        self.catalog = catalog
        params = engine_section(config or {}, "risk")
        self.initial_score = float(params.get("initial_score", 0.5))
        self.overflow_step = float(params.get("overflow_step", 0.1))
        self.underfill_step = float(params.get("underfill_step", 0.02))
        self.score_floor = float(params.get("score_floor", 0.1))
        self.score_ceiling = float(params.get("score_ceiling", 1.0))
        self.decay = float(params.get("decay", 0.99))
        self.threshold = float(params.get("threshold", 0.7))
        self.correction = float(params.get("correction", 0.1))
        self.buffer_min = float(params.get("buffer_min", 0.5))
        self.buffer_max = float(params.get("buffer_max", 0.95))
        self.hot_window_days = int(params.get("hot_window_days", 2))
        self.hot_min_overflows = int(params.get("hot_min_overflows", 3))

        history_rounds = int(params.get("history_rounds", 72))
        self.profiles: dict[str, RiskProfile] = {}
        self.history: deque[PenaltyRecord] = deque()
        self.round_totals: deque[float] = deque(maxlen=history_rounds)
        self.history_rounds = history_rounds
        self.unattributed = 0

    def _profile(self, location_id: str) -> RiskProfile:
        profile = self.profiles.get(location_id)
        if profile is None:
            profile = RiskProfile(location_id=location_id, score=self.initial_score)
            self.profiles[location_id] = profile
        return profile

    def _resolve_location(self, record: PenaltyRecord) -> str | None:
        if record.parsed.location_id:
            return record.parsed.location_id
        if self.catalog is None:
            return None
        origin = self.catalog.origin_of(record.departure_id)
        if origin is None:
            departure = self.catalog.find_by_number(record.departure_number)
            origin = departure.origin_id if departure else None
        return origin

    def _apply(self, record: PenaltyRecord) -> None:
        if record.kind == PenaltyKind.OTHER or record.location_id is None:
            return

        profile = self._profile(record.location_id)
        tier = record.parsed.tier
        if record.kind == PenaltyKind.OVERFLOW:
            profile.overflow_count += 1
            profile.last_overflow_day = record.day
            profile.score = min(self.score_ceiling, profile.score + self.overflow_step)
            if tier is not None:
                profile.overflow_by_tier[tier] = profile.overflow_by_tier.get(tier, 0) + 1
        else:
            profile.underfill_count += 1
            profile.score = max(self.score_floor, profile.score - self.underfill_step)
            if tier is not None:
                profile.underfill_by_tier[tier] = (
                    profile.underfill_by_tier.get(tier, 0) + 1
                )

    def record_round(
        self, penalties: list[PenaltyRecord], day: int, hour: int
    ) -> list[PenaltyRecord]:
        """
        Folds one round's penalties into the per-location profiles, then
        applies the per-round decay to every profile.
        """
        round_total = 0.0
        for record in penalties:
            round_total += record.amount
            record.parsed = parse_penalty_reason(record.reason)
            record.location_id = self._resolve_location(record)
            if record.location_id is None and record.kind != PenaltyKind.OTHER:
                self.unattributed += 1
                logger.debug("Unattributed %s penalty: %s", record.code, record.reason)
            if record.kind == PenaltyKind.OVERFLOW:
                logger.warning(
                    "Overflow reported at %s (day %d hour %d): %s",
                    record.location_id,
                    day,
                    hour,
                    record.reason,
                )
            self._apply(record)
            self.history.append(record)

        for profile in self.profiles.values():
            profile.score *= self.decay

        self.round_totals.append(round_total)
        horizon = day * 24 + hour - self.history_rounds
        while self.history and self.history[0].day * 24 + self.history[0].hour < horizon:
            self.history.popleft()
        return penalties

    def buffer_fraction(self, location_id: str, tier: Tier, base: float) -> float:
        """Destination fill fraction, tightened for locations prone to overflow."""
        buffer = base
        profile = self.profiles.get(location_id)
        if profile is not None and profile.score > self.threshold:
            buffer -= (profile.score - self.threshold) * self.correction
        return max(self.buffer_min, min(self.buffer_max, buffer))

    def risk_score(self, location_id: str) -> float:
        profile = self.profiles.get(location_id)
        return profile.score if profile is not None else self.initial_score

    def is_hot(self, location_id: str, day: int) -> bool:
        profile = self.profiles.get(location_id)
        if profile is None:
            return False
        return (
            profile.last_overflow_day >= day - self.hot_window_days
            and profile.overflow_count > self.hot_min_overflows
        )

    def summary(self) -> dict[str, Any]:
        recent = list(self.round_totals)[-6:]
        return {
            "tracked_locations": len(self.profiles),
            "high_risk_locations": sorted(
                loc for loc, p in self.profiles.items() if p.score > self.threshold
            ),
            "overflow_events": sum(p.overflow_count for p in self.profiles.values()),
            "underfill_events": sum(p.underfill_count for p in self.profiles.values()),
            "unattributed_penalties": self.unattributed,
            "recent_penalty_avg": sum(recent) / len(recent) if recent else 0.0,
        }
