"""
Read-only stores for users' recurring weekly availability.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

import yaml

from ..domain.exceptions import ValidationError
from ..domain.models import PreferenceEntry

logger = logging.getLogger(__name__)


def _entries_from_data(user_id: str, raw_entries) -> List[PreferenceEntry]:
    if not isinstance(raw_entries, list):
        raise ValidationError(f"Preferences for {user_id} must be a list")

    entries: List[PreferenceEntry] = []
    for raw in raw_entries:
        if not isinstance(raw, dict):
            raise ValidationError(f"Preference entry for {user_id} must be a mapping, got {raw!r}")
        try:
            entries.append(PreferenceEntry(**raw))
        except TypeError as exc:
            raise ValidationError(f"Invalid preference entry for {user_id}: {exc}") from exc
    return entries


class InMemoryPreferenceStore:
    """Preferences held in a dictionary keyed by user id."""

    def __init__(self, preferences: Optional[Mapping[str, Iterable[PreferenceEntry]]] = None) -> None:
        self._preferences: Dict[str, List[PreferenceEntry]] = {
            user_id: list(entries) for user_id, entries in (preferences or {}).items()
        }

    def set_preferences(self, user_id: str, entries: Iterable[PreferenceEntry]) -> None:
        self._preferences[user_id] = list(entries)

    def get_preferences(self, user_id: str) -> List[PreferenceEntry]:
        return list(self._preferences.get(user_id, []))


class YamlPreferenceStore:
    """
    Preferences read from a YAML mapping of user id to a list of entries.

    Example:

        alice:
          - day_of_week: 3
            start_time: "13:00"
            end_time: "17:00"

    The file is re-read on every lookup so edits apply without a restart.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> Dict[str, List[PreferenceEntry]]:
        if not self.path.exists():
            logger.warning("Preferences file %s not found; treating all users as having none", self.path)
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValidationError(f"Invalid YAML in {self.path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValidationError("Preferences file must contain a mapping at the root level.")

        return {str(user_id): _entries_from_data(str(user_id), raw) for user_id, raw in data.items()}

    def get_preferences(self, user_id: str) -> List[PreferenceEntry]:
        return self._load().get(user_id, [])
