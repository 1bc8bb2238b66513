"""
Adapters layer - Room document storage and preference lookup.
"""

from .preference_store import InMemoryPreferenceStore, YamlPreferenceStore
from .room_store import InMemoryRoomStore, JsonFileRoomStore

__all__ = ["InMemoryPreferenceStore", "YamlPreferenceStore", "InMemoryRoomStore", "JsonFileRoomStore"]
