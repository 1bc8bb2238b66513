"""
Tests for greedy auto-assignment.
"""

import pendulum
import pytest

from roomgrid.domain.auto_assign import ConflictEntry, auto_assign
from roomgrid.domain.exceptions import NoWorkError, PermissionDeniedError
from roomgrid.domain.exchange import SmartExchangeResolver
from roomgrid.domain.models import SUBJECT_AUTO_ASSIGNED, PreferenceEntry, SlotSpec, SlotStatus
from roomgrid.domain.requests import Request, RequestStatus, SlotRelease, TimeRequest
from roomgrid.domain.room import Room


def _spec(day: str, start: str, end: str) -> SlotSpec:
    return SlotSpec(day=day, start_time=start, end_time=end)


def _room() -> Room:
    room = Room.create(name="Room", owner_id="owner", invite_code="ABC123", max_members=5)
    for user_id in ("alice", "bob", "carol"):
        room.add_member(user_id)
    return room


class TestAutoAssign:
    """Tests for auto_assign."""

    def test_free_requests_are_approved(self):
        room = _room()
        first = room.add_request(Request(requester_id="alice", payload=TimeRequest(_spec("monday", "09:00", "10:00"))))
        second = room.add_request(Request(requester_id="bob", payload=TimeRequest(_spec("monday", "10:00", "11:00"))))

        report = auto_assign(room, "owner")

        assert report.assigned_count == 2
        assert report.conflicts == []
        assert first.status is RequestStatus.APPROVED
        assert second.status is RequestStatus.APPROVED
        assert all(slot.status is SlotStatus.CONFIRMED for slot in room.time_slots)

    def test_later_request_sees_earlier_placement(self):
        """Two requests for the same interval never both succeed."""
        room = _room()
        room.add_request(Request(requester_id="alice", payload=TimeRequest(_spec("monday", "09:00", "10:00"))))
        loser = room.add_request(Request(requester_id="bob", payload=TimeRequest(_spec("monday", "09:30", "10:30"))))

        report = auto_assign(room, "owner")

        assert report.assigned_count == 1
        assert report.conflicts == [ConflictEntry("bob", "monday", "09:30", "10:30")]
        assert loser.status is RequestStatus.PENDING
        assert len(room.time_slots) == 1

    def test_existing_ledger_blocks_request(self):
        room = _room()
        room.submit_slots("carol", [_spec("tuesday", "13:00", "14:00")])
        room.add_request(Request(requester_id="alice", payload=TimeRequest(_spec("tuesday", "13:30", "14:30"))))

        report = auto_assign(room, "owner")

        assert report.assigned_count == 0
        assert len(report.conflicts) == 1

    def test_other_request_types_are_ignored(self):
        room = _room()
        room.add_request(Request(requester_id="alice", payload=SlotRelease(_spec("monday", "09:00", "10:00"))))
        with pytest.raises(NoWorkError):
            auto_assign(room, "owner")

    def test_no_pending_requests(self):
        with pytest.raises(NoWorkError):
            auto_assign(_room(), "owner")

    def test_owner_only(self):
        room = _room()
        room.add_request(Request(requester_id="alice", payload=TimeRequest(_spec("monday", "09:00", "10:00"))))
        with pytest.raises(PermissionDeniedError):
            auto_assign(room, "alice")

    def test_assigned_slots_can_be_exchanged(self):
        """Slots placed by auto-assign form a movable block for smart exchange."""
        room = _room()
        room.add_request(Request(requester_id="alice", payload=TimeRequest(_spec("monday", "10:00", "11:00"))))
        auto_assign(room, "owner")

        assert [s.subject for s in room.slots_for("alice")] == [SUBJECT_AUTO_ASSIGNED]
        plan = SmartExchangeResolver().plan(
            room,
            "alice",
            target_day="wednesday",
            today=pendulum.date(2024, 11, 25),
            owner_preferences=[PreferenceEntry(day_of_week=3, start_time="13:00", end_time="17:00")],
            requester_preferences=[PreferenceEntry(day_of_week=3, start_time="09:00", end_time="15:00")],
        )
        assert plan.block.slots == room.slots_for("alice")
        assert str(plan.destination) == "13:00-14:00"
