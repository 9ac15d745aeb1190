import enum
import logging
from dataclasses import dataclass
from typing import Any, Iterator

import numpy as np

logger = logging.getLogger(__name__)


class Tier(enum.Enum):
    """
    Service class of a kit. Declaration order is A (highest) to D (lowest)
    and doubles as the column index in the ledger matrices.
    """

    FIRST = "first"
    BUSINESS = "business"
    PREMIUM_ECONOMY = "premium_economy"
    ECONOMY = "economy"

    @property
    def index(self) -> int:
        return TIERS.index(self)

    @property
    def letter(self) -> str:
        return "ABCD"[self.index]

    @property
    def wire_key(self) -> str:
        """Key used in the evaluation platform's JSON payloads."""
        return _WIRE_KEYS[self]

    @property
    def kit_code(self) -> str:
        """Code used in penalty texts, e.g. D_ECONOMY."""
        return f"{self.letter}_{self.name}"

    @property
    def display_name(self) -> str:
        """Name used in penalty texts, e.g. 'Premium Economy'."""
        return self.name.replace("_", " ").title()

    @classmethod
    def from_wire(cls, key: str) -> "Tier":
        for tier, wire in _WIRE_KEYS.items():
            if wire == key:
                return tier
        raise ValueError(f"Unknown tier key: {key}")

    @classmethod
    def from_text(cls, text: str) -> "Tier | None":
        """Best-effort match of a kit code, display name or letter."""
        normalized = text.strip().upper().replace(" ", "_")
        for tier in TIERS:
            if normalized in (tier.kit_code, tier.name, tier.letter):
                return tier
        return None


TIERS: tuple[Tier, ...] = tuple(Tier)
N_TIERS = len(TIERS)
LOWEST_TIER = Tier.ECONOMY

_WIRE_KEYS = {
    Tier.FIRST: "first",
    Tier.BUSINESS: "business",
    Tier.PREMIUM_ECONOMY: "premiumEconomy",
    Tier.ECONOMY: "economy",
}


def _floor_count(tier: Tier, value: Any) -> int:
    count = int(value)
    if count < 0:
        logger.debug("Negative %s count %d floored to 0", tier.value, count)
        return 0
    return count


@dataclass
class ResourceQuantity:
    """
    Four named kit counters, one per tier. Never negative: subtraction
    floors at zero.
    """

    first: int = 0
    business: int = 0
    premium_economy: int = 0
    economy: int = 0

    def __post_init__(self) -> None:
        for tier in TIERS:
            setattr(self, tier.value, _floor_count(tier, getattr(self, tier.value)))

    def __getitem__(self, tier: Tier) -> int:
        return int(getattr(self, tier.value))

    def __setitem__(self, tier: Tier, value: int) -> None:
        setattr(self, tier.value, _floor_count(tier, value))

    def __iter__(self) -> Iterator[tuple[Tier, int]]:
        for tier in TIERS:
            yield tier, self[tier]

    def __add__(self, other: "ResourceQuantity") -> "ResourceQuantity":
        return ResourceQuantity.from_array(self.as_array() + other.as_array())

    def __sub__(self, other: "ResourceQuantity") -> "ResourceQuantity":
        return ResourceQuantity.from_array(self.as_array() - other.as_array())

    def __le__(self, other: "ResourceQuantity") -> bool:
        return bool(np.all(self.as_array() <= other.as_array()))

    def __ge__(self, other: "ResourceQuantity") -> bool:
        return bool(np.all(self.as_array() >= other.as_array()))

    @property
    def total(self) -> int:
        return sum(self[t] for t in TIERS)

    def is_zero(self) -> bool:
        return self.total == 0

    def copy(self) -> "ResourceQuantity":
        return ResourceQuantity(
            self.first, self.business, self.premium_economy, self.economy
        )

    def as_array(self) -> np.ndarray:
        return np.array([self[t] for t in TIERS], dtype=np.int64)

    @classmethod
    def from_array(cls, values: np.ndarray | list[int]) -> "ResourceQuantity":
        arr = np.asarray(values, dtype=np.int64)
        return cls(int(arr[0]), int(arr[1]), int(arr[2]), int(arr[3]))

    @classmethod
    def uniform(cls, value: int) -> "ResourceQuantity":
        return cls(value, value, value, value)

    def to_wire(self) -> dict[str, int]:
        return {t.wire_key: self[t] for t in TIERS}

    @classmethod
    def from_wire(cls, data: dict[str, Any] | None) -> "ResourceQuantity":
        data = data or {}
        return cls(
            **{t.value: int(data.get(t.wire_key, 0) or 0) for t in TIERS}
        )

    @classmethod
    def from_tier_map(
        cls, data: dict[str, Any] | None, default: int = 0
    ) -> "ResourceQuantity":
        """Build from a config dict keyed by lower-case tier names."""
        data = data or {}
        return cls(**{t.value: int(data.get(t.value, default)) for t in TIERS})
