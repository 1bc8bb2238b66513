"""
Tests for room and preference stores.
"""

import json

import pendulum
import pytest

from roomgrid.adapters.preference_store import InMemoryPreferenceStore, YamlPreferenceStore
from roomgrid.adapters.room_store import InMemoryRoomStore, JsonFileRoomStore
from roomgrid.domain.exceptions import CapacityError, ConcurrentModificationError, NotFoundError, ValidationError
from roomgrid.domain.models import PreferenceEntry, SlotSpec
from roomgrid.domain.requests import Request, TimeRequest
from roomgrid.domain.room import Room


def _room(code: str = "ABC123", max_members: int = 5) -> Room:
    return Room.create(name="Room", owner_id="owner", invite_code=code, max_members=max_members)


@pytest.fixture(params=["memory", "json"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryRoomStore()
    return JsonFileRoomStore(tmp_path / "rooms")


class TestRoomStore:
    """Behaviour shared by every room store."""

    def test_create_and_get(self, store):
        room = _room()
        store.create(room)
        loaded = store.get(room.id)
        assert loaded.to_document() == room.to_document()

    def test_missing_room(self, store):
        with pytest.raises(NotFoundError):
            store.get("missing")

    def test_invite_codes_are_unique(self, store):
        store.create(_room("ABC123"))
        assert store.invite_code_exists("ABC123")
        assert not store.invite_code_exists("XYZ789")
        with pytest.raises(ValidationError):
            store.create(_room("ABC123"))

    def test_find_by_invite_code(self, store):
        room = store.create(_room("ABC123"))
        assert store.find_by_invite_code("ABC123").id == room.id
        assert store.find_by_invite_code("NOPE00") is None

    def test_save_bumps_version(self, store):
        room = store.create(_room())
        room.name = "Renamed"
        store.save(room)
        loaded = store.get(room.id)
        assert loaded.version == 1
        assert loaded.name == "Renamed"

    def test_stale_save_is_rejected(self, store):
        """Two read-modify-write cycles on the same version cannot both win."""
        room = store.create(_room())
        first = store.get(room.id)
        second = store.get(room.id)
        first.name = "First"
        store.save(first)
        second.name = "Second"
        with pytest.raises(ConcurrentModificationError):
            store.save(second)
        assert store.get(room.id).name == "First"

    def test_add_member_if_absent(self, store):
        room = store.create(_room(max_members=1))
        stored, member = store.add_member_if_absent(room.id, "alice")
        assert member is not None and member.user_id == "alice"
        stored, again = store.add_member_if_absent(room.id, "alice")
        assert again is None
        with pytest.raises(CapacityError):
            store.add_member_if_absent(room.id, "bob")
        assert store.get(room.id).member_count == 1

    def test_find_by_request_and_list_for_user(self, store):
        room = _room()
        room.add_member("alice")
        request = room.add_request(
            Request(requester_id="alice", payload=TimeRequest(SlotSpec("monday", "09:00", "10:00")))
        )
        store.create(room)
        store.create(_room("OTHER1"))

        assert store.find_by_request(request.id).id == room.id
        assert [r.id for r in store.list_for_user("alice")] == [room.id]
        assert len(store.list_for_user("owner")) == 2
        with pytest.raises(NotFoundError):
            store.find_by_request("missing")

    def test_delete(self, store):
        room = store.create(_room())
        store.delete(room.id)
        with pytest.raises(NotFoundError):
            store.get(room.id)


class TestJsonFileRoomStore:
    """Tests specific to the JSON file store."""

    def test_one_document_per_room(self, tmp_path):
        store = JsonFileRoomStore(tmp_path)
        room = store.create(_room())
        path = tmp_path / f"{room.id}.json"
        assert path.exists()
        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["inviteCode"] == "ABC123"
        assert document["members"][0]["role"] == "owner"

    def test_corrupt_document(self, tmp_path):
        store = JsonFileRoomStore(tmp_path)
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(ValidationError):
            store.get("broken")


class TestPreferenceStores:
    """Tests for preference lookup."""

    def test_in_memory(self):
        entry = PreferenceEntry(day_of_week=3, start_time="13:00", end_time="17:00")
        store = InMemoryPreferenceStore({"owner": [entry]})
        assert store.get_preferences("owner") == [entry]
        assert store.get_preferences("nobody") == []

    def test_yaml(self, tmp_path):
        path = tmp_path / "preferences.yaml"
        path.write_text(
            "owner:\n"
            "  - day_of_week: 3\n"
            "    start_time: '13:00'\n"
            "    end_time: '17:00'\n"
            "  - day_of_week: 0\n"
            "    start_time: '09:00'\n"
            "    end_time: '10:00'\n"
            "    specific_date: 2024-11-27\n",
            encoding="utf-8",
        )
        entries = YamlPreferenceStore(path).get_preferences("owner")
        assert len(entries) == 2
        assert entries[1].specific_date == pendulum.date(2024, 11, 27)

    def test_yaml_missing_file_means_no_preferences(self, tmp_path):
        assert YamlPreferenceStore(tmp_path / "missing.yaml").get_preferences("owner") == []

    def test_yaml_invalid_entry(self, tmp_path):
        path = tmp_path / "preferences.yaml"
        path.write_text("owner:\n  - day_of_week: 9\n    start_time: '13:00'\n    end_time: '17:00'\n", encoding="utf-8")
        with pytest.raises(ValidationError):
            YamlPreferenceStore(path).get_preferences("owner")
