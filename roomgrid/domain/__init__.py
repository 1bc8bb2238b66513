"""
Domain layer - Room aggregate, interval algebra and resolvers.
"""

from .auto_assign import AutoAssignReport, ConflictEntry, auto_assign
from .exchange import ExchangeOutcome, ExchangePlan, SmartExchangeResolver
from .intervals import DayInterval, TimeRange
from .models import Member, PreferenceEntry, RoomSettings, SlotSpec, SlotStatus, TimeSlot
from .requests import (
    ExchangeRequest,
    Request,
    RequestStatus,
    RequestType,
    SlotRelease,
    SlotSwap,
    TimeChange,
    TimeRequest,
)
from .room import Room

__all__ = [
    "AutoAssignReport",
    "ConflictEntry",
    "auto_assign",
    "ExchangeOutcome",
    "ExchangePlan",
    "SmartExchangeResolver",
    "DayInterval",
    "TimeRange",
    "Member",
    "PreferenceEntry",
    "RoomSettings",
    "SlotSpec",
    "SlotStatus",
    "TimeSlot",
    "ExchangeRequest",
    "Request",
    "RequestStatus",
    "RequestType",
    "SlotRelease",
    "SlotSwap",
    "TimeChange",
    "TimeRequest",
    "Room",
]
