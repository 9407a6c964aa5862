"""Wall-clock cadences for scheduler jobs."""

from dataclasses import dataclass
from datetime import datetime, timedelta

MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY, SUNDAY = range(7)


@dataclass(frozen=True)
class Cadence:
    """Fire daily at ``hour:minute``, or weekly when ``weekday`` is set (Monday=0)."""

    hour: int
    minute: int = 0
    weekday: int | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.hour < 24 or not 0 <= self.minute < 60:
            raise ValueError(f"Invalid time of day {self.hour:02d}:{self.minute:02d}")
        if self.weekday is not None and not 0 <= self.weekday < 7:
            raise ValueError(f"Invalid weekday {self.weekday}")

    def next_run(self, after: datetime) -> datetime:
        """First fire time strictly after ``after``, in ``after``'s timezone."""
        candidate = after.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if self.weekday is None:
            if candidate <= after:
                candidate += timedelta(days=1)
            return candidate
        candidate += timedelta(days=(self.weekday - after.weekday()) % 7)
        if candidate <= after:
            candidate += timedelta(days=7)
        return candidate

    def describe(self) -> str:
        days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
        when = "daily" if self.weekday is None else f"every {days[self.weekday]}"
        return f"{when} at {self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class IntervalCadence:
    minutes: int

    def __post_init__(self) -> None:
        if self.minutes <= 0:
            raise ValueError("Interval must be positive")

    def next_run(self, after: datetime) -> datetime:
        return after + timedelta(minutes=self.minutes)

    def describe(self) -> str:
        return f"every {self.minutes} min"
