# app/utils/day_range.py
"""
Day-granularity arithmetic shared by the overlap detector, the payment
reconciliation engine and the reconciliation scheduler.

All datetimes handled here are naive wall-clock values in the fleet's
operating timezone (``settings.TIMEZONE``); MongoDB stores them as-is.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterator, Optional, Union
from zoneinfo import ZoneInfo

from app.config import get_settings

DateLike = Union[date, datetime]
Clock = Callable[[], datetime]

END_OF_DAY = time(23, 59, 59, 999000)


def local_now() -> datetime:
    """Current wall-clock time in the fleet timezone, without tzinfo."""
    tz = ZoneInfo(get_settings().TIMEZONE)
    return datetime.now(tz).replace(tzinfo=None)


def to_day(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def start_of_day(value: DateLike) -> datetime:
    return datetime.combine(to_day(value), time.min)


def end_of_day(value: DateLike) -> datetime:
    return datetime.combine(to_day(value), END_OF_DAY)


def parse_shift_time(value: str) -> time:
    """Parse an "HH:MM" wall-clock bound."""
    try:
        hours, minutes = value.split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid shift time '{value}', expected HH:MM")


def day_end_at(day: DateLike, shift_end: Optional[str] = None) -> datetime:
    """The instant a working day ends: its shift end when known, else 23:59:59.999."""
    if shift_end:
        return datetime.combine(to_day(day), parse_shift_time(shift_end))
    return end_of_day(day)


@dataclass(frozen=True)
class DayRange:
    """Inclusive range of calendar days; ``end=None`` means open-ended."""

    start: date
    end: Optional[date] = None

    @classmethod
    def of(cls, start: DateLike, end: Optional[DateLike] = None) -> "DayRange":
        return cls(to_day(start), to_day(end) if end is not None else None)

    @property
    def is_open(self) -> bool:
        return self.end is None

    @property
    def is_empty(self) -> bool:
        return self.end is not None and self.end < self.start

    def contains(self, value: DateLike) -> bool:
        day = to_day(value)
        if day < self.start:
            return False
        return self.end is None or day <= self.end

    def overlaps(self, other: "DayRange") -> bool:
        if self.end is not None and other.start > self.end:
            return False
        if other.end is not None and self.start > other.end:
            return False
        return True

    def clamp_end(self, limit: DateLike) -> "DayRange":
        """Close the range at ``limit`` (or earlier, if it already ends before)."""
        limit_day = to_day(limit)
        end = limit_day if self.end is None else min(self.end, limit_day)
        return DayRange(self.start, end)

    def days(self) -> Iterator[date]:
        if self.end is None:
            raise ValueError("Cannot enumerate the days of an open-ended range")
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    @property
    def start_datetime(self) -> datetime:
        return start_of_day(self.start)

    @property
    def end_datetime(self) -> Optional[datetime]:
        return end_of_day(self.end) if self.end is not None else None
