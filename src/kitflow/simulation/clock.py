"""Simulated clock helpers. Time is an absolute round index: day * 24 + hour."""

from dataclasses import dataclass

HOURS_PER_DAY = 24
DAYS_PER_WEEK = 7
HOURS_PER_WEEK = HOURS_PER_DAY * DAYS_PER_WEEK
DEFAULT_TOTAL_DAYS = 30


def to_round(day: int, hour: int) -> int:
    return day * HOURS_PER_DAY + hour


def from_round(round_index: int) -> tuple[int, int]:
    return divmod(round_index, HOURS_PER_DAY)


def weekday(day: int) -> int:
    return day % DAYS_PER_WEEK


def hour_of_week(round_index: int) -> int:
    day, hour = from_round(round_index)
    return weekday(day) * HOURS_PER_DAY + hour


@dataclass(frozen=True)
class RunHorizon:
    """Fixed run length plus the derived 'how much time is left' queries."""

    total_days: int = DEFAULT_TOTAL_DAYS

    @property
    def total_rounds(self) -> int:
        return self.total_days * HOURS_PER_DAY

    @property
    def last_round(self) -> int:
        return self.total_rounds - 1

    @property
    def last_day(self) -> int:
        return self.total_days - 1

    def rounds_remaining(self, round_index: int) -> int:
        """Rounds left after this one (0 on the final round)."""
        return max(0, self.last_round - round_index)

    def iter_rounds(self) -> list[tuple[int, int]]:
        return [from_round(r) for r in range(self.total_rounds)]
