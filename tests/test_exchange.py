"""
Tests for the smart exchange resolver.
"""

import pendulum
import pytest

from roomgrid.domain.exceptions import (
    NoAlternativeError,
    NoAssignmentError,
    NoOverlapError,
    NotPreferredError,
    OutOfWindowError,
)
from roomgrid.domain.exchange import SmartExchangeResolver, find_blocks, select_block, week_start
from roomgrid.domain.intervals import TimeRange
from roomgrid.domain.models import (
    SUBJECT_AUTO_ASSIGNED,
    SUBJECT_AUTO_RELOCATED,
    SUBJECT_EXCHANGE_RESULT,
    PreferenceEntry,
    SlotSpec,
)
from roomgrid.domain.requests import ExchangeRequest, RequestStatus
from roomgrid.domain.room import Room

MONDAY = pendulum.date(2024, 11, 25)
WEDNESDAY = pendulum.date(2024, 11, 27)

OWNER_PREFS = [PreferenceEntry(day_of_week=3, start_time="13:00", end_time="17:00")]
ALICE_PREFS = [PreferenceEntry(day_of_week=3, start_time="09:00", end_time="15:00")]


def _room() -> Room:
    """Alice holds an auto-assigned Monday 10:00-11:00 block made of two 30-minute slots."""
    room = Room.create(name="Room", owner_id="owner", invite_code="ABC123", max_members=5)
    room.add_member("alice")
    room.add_member("bob")
    for start, end in (("10:00", "10:30"), ("10:30", "11:00")):
        room.assign_slot("owner", SlotSpec("monday", start, end, subject=SUBJECT_AUTO_ASSIGNED), "alice")
    return room


def _plan(resolver, room, target_day="wednesday", owner=OWNER_PREFS, requester=ALICE_PREFS, **kwargs):
    return resolver.plan(
        room,
        "alice",
        target_day=target_day,
        today=MONDAY,
        owner_preferences=owner,
        requester_preferences=requester,
        **kwargs,
    )


class TestBlocks:
    """Tests for block discovery and selection."""

    def test_week_start_is_monday(self):
        assert week_start(pendulum.date(2024, 12, 1)) == MONDAY
        assert week_start(MONDAY) == MONDAY

    def test_back_to_back_slots_fold_into_one_block(self):
        room = _room()
        blocks = find_blocks(room.slots_for("alice"), MONDAY)
        assert len(blocks) == 1
        assert blocks[0].range == TimeRange.from_strings("10:00", "11:00")
        assert blocks[0].date == MONDAY

    def test_only_movable_subjects_count(self):
        room = _room()
        room.submit_slots("alice", [SlotSpec("tuesday", "09:00", "10:00", subject="Own study")])
        assert len(find_blocks(room.slots_for("alice"), MONDAY)) == 1

    def test_prefers_block_not_on_target_day(self):
        room = _room()
        room.assign_slot("owner", SlotSpec("wednesday", "09:00", "10:00", subject=SUBJECT_AUTO_ASSIGNED), "alice")
        blocks = find_blocks(room.slots_for("alice"), MONDAY)
        chosen = select_block(blocks, WEDNESDAY, MONDAY)
        assert chosen.date == MONDAY

    def test_falls_back_to_block_on_target_day(self):
        room = _room()
        blocks = find_blocks(room.slots_for("alice"), MONDAY)
        assert select_block(blocks, MONDAY, MONDAY).date == MONDAY

    def test_no_blocks(self):
        with pytest.raises(NoAssignmentError):
            select_block([], WEDNESDAY, MONDAY)


class TestPlan:
    """Tests for destination validation."""

    def test_first_shared_window_start_without_time(self):
        """Owner 13-17 and requester 9-15 on Wednesday place a 1h block at 13:00-14:00."""
        plan = _plan(SmartExchangeResolver(), _room())
        assert plan.target_date == WEDNESDAY
        assert plan.destination == TimeRange.from_strings("13:00", "14:00")
        assert plan.windows == [TimeRange.from_strings("13:00", "15:00")]

    def test_owner_not_preferred(self):
        with pytest.raises(NotPreferredError, match="owner"):
            _plan(SmartExchangeResolver(), _room(), target_day="thursday")

    def test_requester_not_preferred(self):
        owner = OWNER_PREFS + [PreferenceEntry(day_of_week=4, start_time="09:00", end_time="12:00")]
        with pytest.raises(NotPreferredError, match="your preferred day"):
            _plan(SmartExchangeResolver(), _room(), target_day="thursday", owner=owner)

    def test_no_overlap(self):
        requester = [PreferenceEntry(day_of_week=3, start_time="08:00", end_time="12:00")]
        with pytest.raises(NoOverlapError):
            _plan(SmartExchangeResolver(), _room(), requester=requester)

    def test_out_of_window_lists_windows(self):
        with pytest.raises(OutOfWindowError) as excinfo:
            _plan(SmartExchangeResolver(), _room(), target_time="14:30")
        assert excinfo.value.windows == ["13:00-15:00"]
        assert "13:00-15:00" in str(excinfo.value)

    def test_explicit_time_inside_window(self):
        plan = _plan(SmartExchangeResolver(), _room(), target_time="14:00")
        assert plan.destination == TimeRange.from_strings("14:00", "15:00")

    def test_specific_date_preference_overrides_weekday(self):
        owner = [PreferenceEntry(day_of_week=0, start_time="13:00", end_time="17:00", specific_date="2024-11-27")]
        plan = _plan(SmartExchangeResolver(), _room(), owner=owner)
        assert plan.destination == TimeRange.from_strings("13:00", "14:00")


class TestExecute:
    """Tests for applying an exchange."""

    def test_free_destination_moves_block(self):
        room = _room()
        resolver = SmartExchangeResolver(slot_minutes=30)
        outcome = resolver.execute(room, "alice", _plan(resolver, room))

        assert outcome.immediate_swap
        moved = room.slots_for("alice")
        assert [(s.day, s.date, s.start_time, s.end_time) for s in moved] == [
            ("wednesday", WEDNESDAY, "13:00", "13:30"),
            ("wednesday", WEDNESDAY, "13:30", "14:00"),
        ]
        assert all(s.subject == SUBJECT_EXCHANGE_RESULT for s in moved)
        assert all(s.assigned_by == "owner" for s in moved)

    def test_already_at_destination_is_noop(self):
        room = Room.create(name="Room", owner_id="owner", invite_code="ABC123", max_members=5)
        room.add_member("alice")
        room.assign_slot(
            "owner",
            SlotSpec("wednesday", "13:00", "14:00", subject=SUBJECT_EXCHANGE_RESULT, date="2024-11-27"),
            "alice",
        )
        before = [s.to_document() for s in room.time_slots]
        resolver = SmartExchangeResolver()

        outcome = resolver.execute(room, "alice", _plan(resolver, room))

        assert outcome.unchanged
        assert [s.to_document() for s in room.time_slots] == before

    def test_occupied_destination_creates_exchange_request(self):
        """A held destination escalates to its holder and leaves the ledger unchanged."""
        room = _room()
        room.assign_slot("owner", SlotSpec("wednesday", "13:00", "14:00", subject=SUBJECT_AUTO_ASSIGNED), "bob")
        before = [s.to_document() for s in room.time_slots]
        resolver = SmartExchangeResolver()

        outcome = resolver.execute(room, "alice", _plan(resolver, room))

        assert outcome.needs_approval
        assert outcome.occupied_by == "bob"
        request = room.get_request(outcome.request_id)
        assert isinstance(request.payload, ExchangeRequest)
        assert request.payload.target_user_id == "bob"
        assert len(request.payload.requester_slots) == 2
        assert request.status is RequestStatus.PENDING
        assert [s.to_document() for s in room.time_slots] == before

    def test_auto_place_when_occupied(self):
        room = _room()
        room.assign_slot("owner", SlotSpec("wednesday", "13:00", "14:00", subject=SUBJECT_AUTO_ASSIGNED), "bob")
        resolver = SmartExchangeResolver(auto_place_when_occupied=True)

        outcome = resolver.execute(room, "alice", _plan(resolver, room))

        assert outcome.immediate_swap and outcome.auto_relocated
        moved = room.slots_for("alice")
        assert [(s.start_time, s.end_time) for s in moved] == [("14:00", "14:30"), ("14:30", "15:00")]
        assert all(s.subject == SUBJECT_AUTO_RELOCATED for s in moved)


class TestDisplacedPlacement:
    """Tests for approving an escalated exchange."""

    OWNER = OWNER_PREFS + [PreferenceEntry(day_of_week=1, start_time="09:00", end_time="12:00")]
    BOB = [PreferenceEntry(day_of_week=1, start_time="10:00", end_time="12:00")]

    def _escalate(self):
        room = _room()
        room.assign_slot("owner", SlotSpec("wednesday", "13:00", "14:00", subject=SUBJECT_AUTO_ASSIGNED), "bob")
        resolver = SmartExchangeResolver()
        outcome = resolver.execute(room, "alice", _plan(resolver, room, owner=self.OWNER))
        return room, resolver, room.get_request(outcome.request_id)

    def test_released_block_counts_as_free(self):
        """Bob's first free shared time is the Monday block Alice gives up."""
        room, resolver, request = self._escalate()

        placement = resolver.place_displaced(
            room, request, today=MONDAY, owner_preferences=self.OWNER, target_preferences=self.BOB,
        )

        assert placement.date == MONDAY
        assert placement.range == TimeRange.from_strings("10:00", "11:00")

    def test_approval_swaps_both_sides(self):
        room, resolver, request = self._escalate()
        placement = resolver.place_displaced(
            room, request, today=MONDAY, owner_preferences=self.OWNER, target_preferences=self.BOB,
        )

        room.handle_request(request.id, "bob", RequestStatus.APPROVED, displaced_to=placement)

        assert [(s.date, s.start_time, s.end_time) for s in room.slots_for("alice")] == [
            (WEDNESDAY, "13:00", "13:30"),
            (WEDNESDAY, "13:30", "14:00"),
        ]
        assert [(s.date, s.start_time, s.end_time) for s in room.slots_for("bob")] == [
            (MONDAY, "10:00", "10:30"),
            (MONDAY, "10:30", "11:00"),
        ]
        assert request.status is RequestStatus.APPROVED

    def test_no_alternative_for_target(self):
        """Bob is only available on a day the owner is not."""
        room, resolver, request = self._escalate()
        bob = [PreferenceEntry(day_of_week=2, start_time="09:00", end_time="12:00")]

        with pytest.raises(NoAlternativeError):
            resolver.place_displaced(
                room, request, today=MONDAY, owner_preferences=self.OWNER, target_preferences=bob,
            )

    def test_skips_days_already_past(self):
        room, resolver, request = self._escalate()
        with pytest.raises(NoAlternativeError):
            resolver.place_displaced(
                room, request, today=WEDNESDAY, owner_preferences=self.OWNER, target_preferences=self.BOB,
            )


def test_blocks_do_not_mix_subjects():
    """Back-to-back slots with different movable subjects stay separate blocks."""
    room = Room.create(name="Room", owner_id="owner", invite_code="ABC123", max_members=5)
    room.add_member("alice")
    room.assign_slot("owner", SlotSpec("monday", "10:00", "10:30", subject=SUBJECT_AUTO_ASSIGNED), "alice")
    room.assign_slot("owner", SlotSpec("monday", "10:30", "11:00", subject=SUBJECT_EXCHANGE_RESULT), "alice")

    blocks = find_blocks(room.slots_for("alice"), MONDAY)

    assert [(b.subject, str(b.range)) for b in blocks] == [
        (SUBJECT_AUTO_ASSIGNED, "10:00-10:30"),
        (SUBJECT_EXCHANGE_RESULT, "10:30-11:00"),
    ]
