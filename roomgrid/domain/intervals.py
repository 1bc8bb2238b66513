"""
Interval algebra for the weekly grid.

Times are "HH:MM" strings at the edges of the system and minutes since
midnight inside it. All ranges are half-open: ``[start, end)``.
"""

from __future__ import annotations

import datetime
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from .exceptions import ValidationError

MINUTES_PER_DAY = 24 * 60

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_time(value: str) -> int:
    """
    Convert an "HH:MM" string to minutes since midnight.

    "24:00" is accepted so a range can end at midnight.
    """
    match = _TIME_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValidationError(f"Malformed time '{value}', expected HH:MM")

    hours, minutes = int(match.group(1)), int(match.group(2))
    total = hours * 60 + minutes
    if minutes > 59 or total > MINUTES_PER_DAY:
        raise ValidationError(f"Time out of range: '{value}'")
    return total


def format_time(minutes: int) -> str:
    """Convert minutes since midnight back to "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable time-of-day range in minutes.

    Invariant: start must be before end.
    """
    start: int
    end: int

    def __post_init__(self):
        if self.start >= self.end:
            raise ValidationError(
                f"Start time {format_time(self.start)} must be before end time {format_time(self.end)}"
            )

    @classmethod
    def from_strings(cls, start_time: str, end_time: str) -> "TimeRange":
        """Build a range from two "HH:MM" strings."""
        return cls(start=parse_time(start_time), end=parse_time(end_time))

    @property
    def start_time(self) -> str:
        return format_time(self.start)

    @property
    def end_time(self) -> str:
        return format_time(self.end)

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return self.end - self.start

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another."""
        return self.start < other.end and self.end > other.start

    def contains(self, other: "TimeRange") -> bool:
        """Check if another range lies completely inside this one."""
        return self.start <= other.start and other.end <= self.end

    def intersect(self, other: "TimeRange") -> Optional["TimeRange"]:
        """
        Calculate the intersection of two time ranges.
        Returns None if there is no overlap.
        """
        if not self.overlaps(other):
            return None

        return TimeRange(start=max(self.start, other.start), end=min(self.end, other.end))

    def shift_to(self, start: int) -> "TimeRange":
        """Return a range of the same duration beginning at ``start``."""
        return TimeRange(start=start, end=start + self.duration_minutes())

    def __str__(self) -> str:
        return f"{self.start_time}-{self.end_time}"


@dataclass(frozen=True)
class DayInterval:
    """
    A time range pinned to a weekday and, optionally, a calendar date.
    """
    day: str
    range: TimeRange
    date: Optional[datetime.date] = None


def same_day(a: DayInterval, b: DayInterval) -> bool:
    """
    Dated intervals compare by date; otherwise by weekday name.
    """
    if a.date is not None and b.date is not None:
        return a.date == b.date
    return a.day == b.day


def overlaps(a: DayInterval, b: DayInterval) -> bool:
    """True iff both intervals fall on the same day and their ranges intersect."""
    return same_day(a, b) and a.range.overlaps(b.range)


def merge_same_day(ranges: Iterable[TimeRange]) -> List[TimeRange]:
    """
    Merge overlapping or adjacent time ranges of a single day.

    Example: [09:00-10:00, 10:00-11:00, 10:30-12:00] -> [09:00-12:00]
    """
    sorted_ranges = sorted(ranges, key=lambda r: (r.start, r.end))
    if not sorted_ranges:
        return []

    merged: List[TimeRange] = [sorted_ranges[0]]

    for current in sorted_ranges[1:]:
        last = merged[-1]

        # Back-to-back counts as contiguous
        if current.start <= last.end:
            merged[-1] = TimeRange(start=last.start, end=max(last.end, current.end))
        else:
            merged.append(current)

    return merged


def intersect(ranges_a: Sequence[TimeRange], ranges_b: Sequence[TimeRange]) -> List[TimeRange]:
    """
    Calculate the pairwise intersection of two lists of time ranges.

    Returns every non-empty overlap between a range in ``ranges_a`` and a range
    in ``ranges_b``, ordered by start time.
    """
    intersections: List[TimeRange] = []

    for range_a in ranges_a:
        for range_b in ranges_b:
            overlap = range_a.intersect(range_b)
            if overlap is not None:
                intersections.append(overlap)

    return sorted(intersections, key=lambda r: (r.start, r.end))


def split_range(time_range: TimeRange, step_minutes: int) -> List[TimeRange]:
    """
    Cut a range into consecutive pieces of ``step_minutes``.

    The final piece is clipped to the range end.
    """
    if step_minutes <= 0:
        raise ValidationError("step_minutes must be greater than zero")

    pieces: List[TimeRange] = []
    current = time_range.start
    while current < time_range.end:
        piece_end = min(current + step_minutes, time_range.end)
        pieces.append(TimeRange(start=current, end=piece_end))
        current = piece_end
    return pieces


def describe_ranges(ranges: Iterable[TimeRange]) -> str:
    """Human-readable list such as "09:00-10:00, 13:00-15:00"."""
    return ", ".join(str(r) for r in ranges)
