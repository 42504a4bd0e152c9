"""
Weekly slot grid: days x periods. Slots are (Weekday, period) pairs; the
"Monday_Period1" string form exists only for persisted patterns and display.
"""

import re
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Dict, Hashable, Iterator, List, Optional, Sequence, Tuple, Union

from timetable_ai.core.config import settings
from timetable_ai.core.enums import Weekday

_PERIOD_RE = re.compile(r"^(?:period|p)?\s*(\d+)$", re.IGNORECASE)


def parse_period(value: Union[int, str]) -> int:
    """Accept 3, "3", "Period 3" or "Period3"."""
    if isinstance(value, int) and not isinstance(value, bool):
        period = value
    else:
        match = _PERIOD_RE.match(str(value).strip())
        if not match:
            raise ValueError(f"Unknown period: {value!r}")
        period = int(match.group(1))
    if period < 1:
        raise ValueError(f"Period must be 1 or greater, got {period}")
    return period


def slot_key(day: Union[Weekday, int, str], period: Union[int, str]) -> str:
    return f"{Weekday.parse(day).label}_Period{parse_period(period)}"


@dataclass(frozen=True, order=True)
class Slot:
    day: Weekday
    period: int

    @property
    def key(self) -> str:
        return slot_key(self.day, self.period)

    @classmethod
    def from_key(cls, key: str) -> "Slot":
        """Parse "Monday_Period1" (also "Monday_Period 1" / "Monday-Period 1")."""
        day_part, sep, period_part = key.replace("-", "_").partition("_")
        if not sep:
            raise ValueError(f"Malformed slot key: {key!r}")
        return cls(Weekday.parse(day_part), parse_period(period_part))


def key_day(key: str) -> Optional[Weekday]:
    """Weekday of a slot key, or None when the key cannot be parsed."""
    try:
        return Slot.from_key(key).day
    except ValueError:
        return None


class SlotGrid:
    """Fixed cross product of days and periods for one generation run."""

    def __init__(self, days: Sequence[Weekday], periods_per_day: int) -> None:
        if not days:
            raise ValueError("Grid needs at least one day")
        if periods_per_day < 1:
            raise ValueError("Grid needs at least one period per day")
        self.days: List[Weekday] = list(days)
        self.periods: List[int] = list(range(1, periods_per_day + 1))
        self._day_index: Dict[Weekday, int] = {day: i for i, day in enumerate(self.days)}

    @property
    def size(self) -> int:
        return len(self.days) * len(self.periods)

    @property
    def last_period(self) -> int:
        return self.periods[-1]

    def __len__(self) -> int:
        return self.size

    def __iter__(self) -> Iterator[Slot]:
        for day in self.days:
            for period in self.periods:
                yield Slot(day, period)

    def __contains__(self, slot: Slot) -> bool:
        return slot.day in self._day_index and 1 <= slot.period <= len(self.periods)

    def cell(self, slot: Slot) -> Tuple[int, int]:
        return self._day_index[slot.day], slot.period - 1

    def rotated(self, offset: int) -> Iterator[Slot]:
        """
        Every cell exactly once, starting from a round-robin offset: days outer,
        periods inner, both shifted by `offset` and wrapped.
        """
        n_days = len(self.days)
        n_periods = len(self.periods)
        for d in range(n_days):
            day = self.days[(offset + d) % n_days]
            for p in range(n_periods):
                yield Slot(day, self.periods[(offset + p) % n_periods])


class Occupancy:
    """Day x period boolean grid per owner (a class or a teacher)."""

    def __init__(self, grid: SlotGrid) -> None:
        self.grid = grid
        self._cells: Dict[Hashable, List[List[bool]]] = {}

    def _rows(self, owner: Hashable) -> List[List[bool]]:
        rows = self._cells.get(owner)
        if rows is None:
            rows = [[False] * len(self.grid.periods) for _ in self.grid.days]
            self._cells[owner] = rows
        return rows

    def is_free(self, owner: Hashable, slot: Slot) -> bool:
        d, p = self.grid.cell(slot)
        return not self._rows(owner)[d][p]

    def mark(self, owner: Hashable, slot: Slot) -> None:
        d, p = self.grid.cell(slot)
        self._rows(owner)[d][p] = True

    def used(self, owner: Hashable) -> int:
        return sum(sum(row) for row in self._rows(owner))


class PeriodClock:
    """Maps abstract periods to wall-clock windows (Period 1 = 08:00-08:45)."""

    def __init__(
        self,
        first_start: time,
        period_minutes: int,
        passing_minutes: int,
        mapped_periods: int,
    ) -> None:
        self.first_start = first_start
        self.period_minutes = period_minutes
        self.passing_minutes = passing_minutes
        self.mapped_periods = mapped_periods

    @classmethod
    def from_settings(cls) -> "PeriodClock":
        return cls(
            first_start=datetime.strptime(settings.timetable_first_period_start, "%H:%M").time(),
            period_minutes=settings.timetable_period_minutes,
            passing_minutes=settings.timetable_passing_minutes,
            mapped_periods=settings.timetable_mapped_periods,
        )

    def window(self, period: int) -> Optional[Tuple[time, time]]:
        """Start/end for a period, or None when the period is outside the mapping table."""
        if period < 1 or period > self.mapped_periods:
            return None
        step = self.period_minutes + self.passing_minutes
        start = datetime.combine(datetime.min, self.first_start) + timedelta(minutes=step * (period - 1))
        end = start + timedelta(minutes=self.period_minutes)
        if end.date() != datetime.min.date():
            return None
        return start.time(), end.time()

    @staticmethod
    def label(period: int) -> str:
        return f"Period {period}"
