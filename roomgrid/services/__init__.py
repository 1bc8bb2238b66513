"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .coordination import CoordinationService, PreferenceStoreProtocol, RoomStoreProtocol, SlotView

__all__ = ["CoordinationService", "PreferenceStoreProtocol", "RoomStoreProtocol", "SlotView"]
