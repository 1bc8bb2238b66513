"""
Domain models for rooms, members and the time-slot ledger.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

import pendulum
from pendulum import Date, DateTime
from pydantic import BaseModel, Field, field_validator, model_validator

from .exceptions import ValidationError
from .intervals import DayInterval, TimeRange, format_time, parse_time

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DEFAULT_PRIORITY = 3

# Subjects that mark a slot as movable by a smart exchange
SUBJECT_AUTO_ASSIGNED = "Auto-assigned"
SUBJECT_EXCHANGE_RESULT = "Exchange result"
SUBJECT_AUTO_RELOCATED = "Auto-relocated"
MOVABLE_SUBJECTS = frozenset({SUBJECT_AUTO_ASSIGNED, SUBJECT_EXCHANGE_RESULT, SUBJECT_AUTO_RELOCATED})


class SlotStatus(str, Enum):
    CONFIRMED = "confirmed"
    ASSIGNED = "assigned"
    CONFLICT = "conflict"


class MemberRole(str, Enum):
    OWNER = "owner"
    MEMBER = "member"


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> DateTime:
    return pendulum.now("UTC")


def normalize_day(value: str) -> str:
    """Lower-case and validate an English weekday name."""
    day = value.strip().lower() if isinstance(value, str) else ""
    if day not in WEEKDAYS:
        raise ValidationError(f"Unknown weekday '{value}'. Use one of: {', '.join(WEEKDAYS)}")
    return day


def weekday_name(value: Date) -> str:
    return WEEKDAYS[value.weekday()]


def preference_weekday(value: Date) -> int:
    """Weekday number used by preference entries (0=Sunday, 6=Saturday)."""
    return value.isoweekday() % 7


def parse_date(value: Any) -> Optional[Date]:
    """Parse a "YYYY-MM-DD" string (or pass through a date) into a pendulum Date."""
    if value is None or value == "":
        return None
    if isinstance(value, DateTime):
        return value.date()
    if isinstance(value, Date):
        return value
    if hasattr(value, "isoformat"):
        value = value.isoformat()[:10]
    try:
        return pendulum.from_format(str(value), "YYYY-MM-DD").date()
    except ValueError as exc:
        raise ValidationError(f"Malformed date '{value}', expected YYYY-MM-DD") from exc


def format_date(value: Optional[Date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_timestamp(value: Optional[str]) -> Optional[DateTime]:
    if not value:
        return None
    return pendulum.parse(value).in_timezone("UTC")


def format_timestamp(value: Optional[DateTime]) -> Optional[str]:
    return value.in_timezone("UTC").to_iso8601_string() if value is not None else None


def _normalize_range(start_time: str, end_time: str) -> TimeRange:
    return TimeRange.from_strings(start_time, end_time)


@dataclass(frozen=True)
class SlotSpec:
    """
    A proposed interval carried by a request (no owner, no status).
    """
    day: str
    start_time: str
    end_time: str
    subject: str = ""
    date: Optional[Date] = None

    def __post_init__(self):
        time_range = _normalize_range(self.start_time, self.end_time)
        object.__setattr__(self, "day", normalize_day(self.day))
        object.__setattr__(self, "start_time", time_range.start_time)
        object.__setattr__(self, "end_time", time_range.end_time)
        object.__setattr__(self, "date", parse_date(self.date))

    @property
    def time_range(self) -> TimeRange:
        return TimeRange.from_strings(self.start_time, self.end_time)

    @property
    def interval(self) -> DayInterval:
        return DayInterval(day=self.day, range=self.time_range, date=self.date)

    def to_document(self) -> Dict[str, Any]:
        return {
            "day": self.day,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "subject": self.subject,
            "date": format_date(self.date),
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "SlotSpec":
        return cls(
            day=data["day"],
            start_time=data["startTime"],
            end_time=data["endTime"],
            subject=data.get("subject") or "",
            date=data.get("date"),
        )

    def __str__(self) -> str:
        when = format_date(self.date) or self.day
        return f"{when} {self.start_time}-{self.end_time}"


@dataclass
class TimeSlot:
    """
    One (user, day, interval) entry in a room's ledger.
    """
    user_id: str
    day: str
    start_time: str
    end_time: str
    subject: str = ""
    priority: int = DEFAULT_PRIORITY
    status: SlotStatus = SlotStatus.CONFIRMED
    date: Optional[Date] = None
    assigned_by: Optional[str] = None
    assigned_at: Optional[DateTime] = None
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        time_range = _normalize_range(self.start_time, self.end_time)
        self.day = normalize_day(self.day)
        self.start_time = time_range.start_time
        self.end_time = time_range.end_time
        self.date = parse_date(self.date)
        self.status = SlotStatus(self.status)
        if not 1 <= self.priority <= 5:
            raise ValidationError(f"Priority must be between 1 and 5, got {self.priority}")

    @classmethod
    def from_spec(cls, spec: SlotSpec, user_id: str, **kwargs: Any) -> "TimeSlot":
        return cls(
            user_id=user_id,
            day=spec.day,
            start_time=spec.start_time,
            end_time=spec.end_time,
            subject=kwargs.pop("subject", spec.subject),
            date=spec.date,
            **kwargs,
        )

    @property
    def time_range(self) -> TimeRange:
        return TimeRange.from_strings(self.start_time, self.end_time)

    @property
    def interval(self) -> DayInterval:
        return DayInterval(day=self.day, range=self.time_range, date=self.date)

    @property
    def resting_status(self) -> SlotStatus:
        """Status the slot returns to once it no longer collides."""
        return SlotStatus.ASSIGNED if self.assigned_by else SlotStatus.CONFIRMED

    def matches(self, day: str, start_time: str, end_time: str, date: Optional[Date] = None) -> bool:
        """Exact (day, start, end) match; the date is compared only when both sides carry one."""
        if self.day != normalize_day(day):
            return False
        time_range = _normalize_range(start_time, end_time)
        if (self.start_time, self.end_time) != (time_range.start_time, time_range.end_time):
            return False
        date = parse_date(date)
        return date is None or self.date is None or self.date == date

    def matches_spec(self, spec: SlotSpec) -> bool:
        return self.matches(spec.day, spec.start_time, spec.end_time, spec.date)

    def to_spec(self) -> SlotSpec:
        return SlotSpec(
            day=self.day,
            start_time=self.start_time,
            end_time=self.end_time,
            subject=self.subject,
            date=self.date,
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user": self.user_id,
            "day": self.day,
            "date": format_date(self.date),
            "startTime": self.start_time,
            "endTime": self.end_time,
            "subject": self.subject,
            "priority": self.priority,
            "status": self.status.value,
            "assignedBy": self.assigned_by,
            "assignedAt": format_timestamp(self.assigned_at),
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "TimeSlot":
        return cls(
            id=data["id"],
            user_id=data["user"],
            day=data["day"],
            date=data.get("date"),
            start_time=data["startTime"],
            end_time=data["endTime"],
            subject=data.get("subject") or "",
            priority=data.get("priority", DEFAULT_PRIORITY),
            status=data.get("status", SlotStatus.CONFIRMED.value),
            assigned_by=data.get("assignedBy"),
            assigned_at=parse_timestamp(data.get("assignedAt")),
        )


@dataclass
class Member:
    """
    A participant's seat in a room.
    """
    user_id: str
    color: str
    role: MemberRole = MemberRole.MEMBER
    joined_at: DateTime = field(default_factory=utc_now)
    total_progress_minutes: int = 0
    carry_over_minutes: int = 0

    @property
    def is_owner(self) -> bool:
        return self.role == MemberRole.OWNER

    def to_document(self) -> Dict[str, Any]:
        return {
            "user": self.user_id,
            "color": self.color,
            "role": self.role.value,
            "joinedAt": format_timestamp(self.joined_at),
            "totalProgressMinutes": self.total_progress_minutes,
            "carryOverMinutes": self.carry_over_minutes,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Member":
        return cls(
            user_id=data["user"],
            color=data["color"],
            role=MemberRole(data.get("role", MemberRole.MEMBER.value)),
            joined_at=parse_timestamp(data.get("joinedAt")) or utc_now(),
            total_progress_minutes=data.get("totalProgressMinutes", 0),
            carry_over_minutes=data.get("carryOverMinutes", 0),
        )


@dataclass(frozen=True)
class PreferenceEntry:
    """
    One entry of a user's recurring weekly availability.

    ``day_of_week`` uses 0=Sunday .. 6=Saturday. An entry with
    ``specific_date`` applies to that date only.
    """
    day_of_week: int
    start_time: str
    end_time: str
    priority: int = DEFAULT_PRIORITY
    specific_date: Optional[Date] = None

    def __post_init__(self):
        if self.day_of_week not in range(7):
            raise ValidationError(f"day_of_week must be between 0 and 6, got {self.day_of_week}")
        _normalize_range(self.start_time, self.end_time)
        object.__setattr__(self, "specific_date", parse_date(self.specific_date))

    @property
    def time_range(self) -> TimeRange:
        return TimeRange.from_strings(self.start_time, self.end_time)

    def applies_to(self, target: Date) -> bool:
        if self.specific_date is not None:
            return self.specific_date == target
        return self.day_of_week == preference_weekday(target)


def _check_time(value: str) -> str:
    return format_time(parse_time(value))


class BlockedTime(BaseModel):
    """Daily recurring blocked interval (e.g. lunch break)."""
    name: str
    start_time: str
    end_time: str

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        return _check_time(value)

    @model_validator(mode="after")
    def validate_order(self) -> "BlockedTime":
        _normalize_range(self.start_time, self.end_time)
        return self


class RoomException(BaseModel):
    """Owner-synced exception, either weekly recurring or date specific."""
    type: Literal["daily_recurring", "date_specific"]
    name: str
    start_time: str
    end_time: str
    day_of_week: Optional[int] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        return _check_time(value)

    @field_validator("day_of_week")
    @classmethod
    def validate_day_of_week(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value not in range(7):
            raise ValueError(f"day_of_week must be between 0 and 6, got {value}")
        return value

    @model_validator(mode="after")
    def validate_kind(self) -> "RoomException":
        if self.type == "daily_recurring" and self.day_of_week is None:
            raise ValueError("daily_recurring exceptions need day_of_week")
        if self.type == "date_specific" and (not self.start_date or not self.end_date):
            raise ValueError("date_specific exceptions need start_date and end_date")
        return self


class RoomSettings(BaseModel):
    """Per-room working window, blocked times and exceptions."""
    start_hour: int = 9
    end_hour: int = 18
    blocked_times: List[BlockedTime] = Field(default_factory=list)
    room_exceptions: List[RoomException] = Field(default_factory=list)

    @field_validator("start_hour")
    @classmethod
    def validate_start_hour(cls, v: int) -> int:
        """Validate hour is between 0 and 23."""
        if not 0 <= v <= 23:
            raise ValueError(f"start_hour must be between 0 and 23, got {v}")
        return v

    @field_validator("end_hour")
    @classmethod
    def validate_end_hour(cls, v: int) -> int:
        """Validate hour is between 1 and 24."""
        if not 1 <= v <= 24:
            raise ValueError(f"end_hour must be between 1 and 24, got {v}")
        return v

    @model_validator(mode="after")
    def validate_hours_order(self) -> "RoomSettings":
        """Ensure the working window opens before it closes."""
        if self.end_hour <= self.start_hour:
            raise ValueError("end_hour must be later than start_hour")
        return self
