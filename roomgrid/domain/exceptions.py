"""
Domain-specific exception hierarchy for the room coordination engine.
"""

from __future__ import annotations

from typing import Sequence


class RoomGridError(Exception):
    """Base class for all application-level errors."""


class ValidationError(RoomGridError, ValueError):
    """Raised when input is malformed (empty name, bad time, bad settings)."""


class RequestStateError(ValidationError):
    """Raised when a request is handled or cancelled after it left ``pending``."""


class PermissionDeniedError(RoomGridError):
    """Raised when the actor lacks owner, member or target-user rights."""


class NotFoundError(RoomGridError, LookupError):
    """Raised when a room, request, slot or member does not exist."""


class CapacityError(RoomGridError):
    """Raised when a room has no free member seats."""


class SelfRemovalError(RoomGridError):
    """Raised when the owner is targeted for removal from their own room."""


class NoWorkError(RoomGridError):
    """Raised when a batch operation finds nothing to process."""


class NoAssignmentError(RoomGridError):
    """Raised when the requester holds no movable block."""


class ConcurrentModificationError(RoomGridError):
    """Raised when a room document changed between read and write."""


class ExchangeRejectedError(RoomGridError):
    """Base class for smart exchange validation failures."""


class NotPreferredError(ExchangeRejectedError):
    """Raised when the target day is outside the owner's or requester's preferences."""


class NoOverlapError(ExchangeRejectedError):
    """Raised when owner and requester share no preferred window on the target day."""


class NoAlternativeError(ExchangeRejectedError):
    """Raised when the member giving up an exchange destination has nowhere to go."""


class OutOfWindowError(ExchangeRejectedError):
    """Raised when the destination does not fit in any shared window."""

    def __init__(self, message: str, windows: Sequence[str] = ()):
        super().__init__(message)
        self.windows = list(windows)
