"""
Smart exchange: move a requester's movable block to another day or time.

The resolver validates the destination against both the owner's and the
requester's recurring availability, then either relocates the block
immediately or escalates to the member occupying the destination.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Sequence

from pendulum import Date, DateTime

from .exceptions import NoAlternativeError, NoAssignmentError, NoOverlapError, NotPreferredError, OutOfWindowError
from .intervals import (
    DayInterval,
    TimeRange,
    describe_ranges,
    intersect,
    merge_same_day,
    overlaps,
    parse_time,
    split_range,
)
from .models import (
    MOVABLE_SUBJECTS,
    SUBJECT_AUTO_RELOCATED,
    SUBJECT_EXCHANGE_RESULT,
    WEEKDAYS,
    PreferenceEntry,
    SlotSpec,
    TimeSlot,
    format_date,
    normalize_day,
    utc_now,
    weekday_name,
)
from .requests import ExchangeRequest, Request
from .room import Room

logger = logging.getLogger(__name__)


@dataclass
class Block:
    """A contiguous run of one user's movable slots on a single date."""
    date: Date
    slots: List[TimeSlot] = field(default_factory=list)

    @property
    def day(self) -> str:
        return weekday_name(self.date)

    @property
    def subject(self) -> str:
        return self.slots[0].subject

    @property
    def range(self) -> TimeRange:
        return TimeRange(
            start=min(s.time_range.start for s in self.slots),
            end=max(s.time_range.end for s in self.slots),
        )

    def duration_minutes(self) -> int:
        return self.range.duration_minutes()

    def __str__(self) -> str:
        return f"{self.day} {format_date(self.date)} {self.range}"


@dataclass(frozen=True)
class ExchangePlan:
    """A validated destination for one block."""
    block: Block
    target_date: Date
    destination: TimeRange
    windows: List[TimeRange]
    explicit_time: bool

    @property
    def target_day(self) -> str:
        return weekday_name(self.target_date)

    @property
    def interval(self) -> DayInterval:
        return DayInterval(day=self.target_day, range=self.destination, date=self.target_date)

    @property
    def is_noop(self) -> bool:
        return self.block.date == self.target_date and self.block.range == self.destination


@dataclass
class ExchangeOutcome:
    immediate_swap: bool = False
    needs_approval: bool = False
    unchanged: bool = False
    auto_relocated: bool = False
    occupied_by: Optional[str] = None
    request_id: Optional[str] = None
    slots: List[TimeSlot] = field(default_factory=list)
    message: str = ""


def week_start(today: Date) -> Date:
    """Monday of the week containing ``today``."""
    return today.subtract(days=today.weekday())


def resolve_date(slot: TimeSlot, monday: Date) -> Date:
    """Calendar date of a slot; undated slots fall in the week starting ``monday``."""
    if slot.date is not None:
        return slot.date
    return monday.add(days=WEEKDAYS.index(slot.day))


def find_blocks(slots: Iterable[TimeSlot], monday: Date) -> List[Block]:
    """
    Group movable slots by date and fold back-to-back entries with the
    same subject into blocks.

    Blocks are returned ordered by date, then start time.
    """
    by_date = {}
    for slot in slots:
        if slot.subject not in MOVABLE_SUBJECTS:
            continue
        by_date.setdefault(resolve_date(slot, monday), []).append(slot)

    blocks: List[Block] = []
    for slot_date in sorted(by_date):
        day_slots = sorted(by_date[slot_date], key=lambda s: (s.time_range.start, s.time_range.end))
        current = Block(date=slot_date, slots=[day_slots[0]])
        for slot in day_slots[1:]:
            if slot.time_range.start <= current.range.end and slot.subject == current.subject:
                current.slots.append(slot)
            else:
                blocks.append(current)
                current = Block(date=slot_date, slots=[slot])
        blocks.append(current)
    return blocks


def select_block(
    blocks: Sequence[Block],
    target_date: Date,
    monday: Date,
    source_day: Optional[str] = None,
) -> Block:
    """
    Pick the block to move.

    Preference: a current-week block not on the target date, then a
    current-week block already on it, then any block.
    """
    if not blocks:
        raise NoAssignmentError("You have no assigned time to move. Run auto-assignment first.")

    sunday = monday.add(days=6)
    current_week = [b for b in blocks if monday <= b.date <= sunday]
    if source_day:
        current_week = [b for b in current_week if b.day == source_day]

    for block in current_week:
        if block.date != target_date:
            return block
    for block in current_week:
        return block

    return sorted(blocks, key=lambda b: (b.date == target_date, b.date, b.range.start))[0]


def _windows_for(entries: Iterable[PreferenceEntry], target_date: Date) -> List[TimeRange]:
    return merge_same_day(e.time_range for e in entries if e.applies_to(target_date))


def _placements(windows: Iterable[TimeRange], duration: int, step: int) -> Iterator[TimeRange]:
    """Every ``duration``-long range inside ``windows``, starting ``step`` minutes apart."""
    for window in windows:
        start = window.start
        while start + duration <= window.end:
            yield TimeRange(start=start, end=start + duration)
            start += step


class SmartExchangeResolver:
    """
    Plans and executes one block relocation at a time.

    Args:
        slot_minutes: Granularity of re-emitted destination slots
        auto_place_when_occupied: Look for another free placement inside the
            shared windows before escalating to the occupying member
    """

    def __init__(self, slot_minutes: int = 30, auto_place_when_occupied: bool = False) -> None:
        self.slot_minutes = slot_minutes
        self.auto_place_when_occupied = auto_place_when_occupied

    def plan(
        self,
        room: Room,
        requester_id: str,
        *,
        target_day: str,
        today: Date,
        owner_preferences: Sequence[PreferenceEntry],
        requester_preferences: Sequence[PreferenceEntry],
        target_time: Optional[str] = None,
        source_day: Optional[str] = None,
    ) -> ExchangePlan:
        """
        Validate a move and compute its destination without touching the room.

        Raises:
            NoAssignmentError: The requester has no movable block
            NotPreferredError: Owner or requester has no availability that day
            NoOverlapError: Their availability never overlaps that day
            OutOfWindowError: The destination leaves every shared window
        """
        room.require_participant(requester_id)

        target_day = normalize_day(target_day)
        if source_day:
            source_day = normalize_day(source_day)

        monday = week_start(today)
        target_date = monday.add(days=WEEKDAYS.index(target_day))

        blocks = find_blocks(room.slots_for(requester_id), monday)
        block = select_block(blocks, target_date, monday, source_day)
        duration = block.duration_minutes()

        owner_windows = _windows_for(owner_preferences, target_date)
        if not owner_windows:
            raise NotPreferredError(
                f"{target_day.capitalize()} ({format_date(target_date)}) is not the owner's preferred day. "
                "You can only move to days and times the owner is available."
            )
        requester_windows = _windows_for(requester_preferences, target_date)
        if not requester_windows:
            raise NotPreferredError(
                f"{target_day.capitalize()} ({format_date(target_date)}) is not your preferred day."
            )

        windows = intersect(owner_windows, requester_windows)
        if not windows:
            raise NoOverlapError(
                f"Your availability ({describe_ranges(requester_windows)}) and the owner's "
                f"({describe_ranges(owner_windows)}) do not overlap on {target_day.capitalize()}."
            )

        if target_time:
            start = parse_time(target_time)
        elif block.date == target_date:
            start = block.range.start
        else:
            start = windows[0].start

        destination = TimeRange(start=start, end=start + duration)
        if not any(window.contains(destination) for window in windows):
            raise OutOfWindowError(
                f"{destination} does not fit inside the shared available time on "
                f"{target_day.capitalize()}: {describe_ranges(windows)}",
                windows=[str(window) for window in windows],
            )

        return ExchangePlan(
            block=block,
            target_date=target_date,
            destination=destination,
            windows=windows,
            explicit_time=bool(target_time),
        )

    def execute(
        self,
        room: Room,
        requester_id: str,
        plan: ExchangePlan,
        now: Optional[DateTime] = None,
    ) -> ExchangeOutcome:
        """
        Apply a plan: relocate when free, otherwise escalate to the occupant.
        """
        if plan.is_noop:
            return ExchangeOutcome(
                unchanged=True,
                slots=list(plan.block.slots),
                message=f"Your time is already at {plan.target_day.capitalize()} {plan.destination}",
            )

        occupants = room.collisions(plan.interval, exclude_user=requester_id)
        if not occupants:
            return self._relocate(room, plan, plan.destination, SUBJECT_EXCHANGE_RESULT)

        if self.auto_place_when_occupied and not plan.explicit_time:
            alternative = self._find_free_placement(room, requester_id, plan)
            if alternative is not None:
                outcome = self._relocate(room, plan, alternative, SUBJECT_AUTO_RELOCATED)
                outcome.auto_relocated = True
                return outcome

        return self._escalate(room, requester_id, plan, occupants, now)

    def _relocate(self, room: Room, plan: ExchangePlan, destination: TimeRange, subject: str) -> ExchangeOutcome:
        created = room.relocate_slots(
            plan.block.slots,
            plan.target_date,
            split_range(destination, self.slot_minutes),
            subject,
        )
        logger.info(
            "Moved block %s to %s %s in room %s",
            plan.block, plan.target_day, destination, room.id,
        )
        return ExchangeOutcome(
            immediate_swap=True,
            slots=created,
            message=f"Moved to {plan.target_day.capitalize()} {destination}",
        )

    def _find_free_placement(self, room: Room, requester_id: str, plan: ExchangePlan) -> Optional[TimeRange]:
        duration = plan.destination.duration_minutes()
        for candidate in _placements(plan.windows, duration, self.slot_minutes):
            interval = DayInterval(day=plan.target_day, range=candidate, date=plan.target_date)
            if not room.collisions(interval, exclude_user=requester_id):
                return candidate
        return None

    def place_displaced(
        self,
        room: Room,
        request: Request,
        *,
        today: Date,
        owner_preferences: Sequence[PreferenceEntry],
        target_preferences: Sequence[PreferenceEntry],
    ) -> DayInterval:
        """
        Find where the member giving up an exchange destination moves to.

        Days from ``today`` to the end of the current week are scanned in
        order, skipping the destination date. The first free range of the
        destination's length inside both the member's and the owner's
        availability wins. The requester's block counts as free, since the
        exchange releases it.

        Raises:
            NoAlternativeError: No such placement exists
        """
        payload: ExchangeRequest = request.payload
        destination = payload.time_slot.interval
        duration = destination.range.duration_minutes()
        monday = week_start(today)
        destination_date = destination.date or monday.add(days=WEEKDAYS.index(destination.day))

        released = {
            slot.id for slot in room.slots_for(request.requester_id)
            if any(slot.matches_spec(spec) for spec in payload.requester_slots)
        }
        blocking = [slot for slot in room.time_slots if slot.id not in released]

        for offset in range(7):
            candidate_date = monday.add(days=offset)
            if candidate_date < today or candidate_date == destination_date:
                continue
            windows = intersect(
                _windows_for(target_preferences, candidate_date),
                _windows_for(owner_preferences, candidate_date),
            )
            day = weekday_name(candidate_date)
            for candidate in _placements(windows, duration, self.slot_minutes):
                interval = DayInterval(day=day, range=candidate, date=candidate_date)
                if not any(overlaps(slot.interval, interval) for slot in blocking):
                    return interval

        raise NoAlternativeError(
            f"No free time fits the availability of {payload.target_user_id} this week, "
            "so the exchange cannot be accepted."
        )

    def _escalate(
        self,
        room: Room,
        requester_id: str,
        plan: ExchangePlan,
        occupants: Sequence[TimeSlot],
        now: Optional[DateTime],
    ) -> ExchangeOutcome:
        occupied_by = occupants[0].user_id
        payload = ExchangeRequest(
            time_slot=SlotSpec(
                day=plan.target_day,
                start_time=plan.destination.start_time,
                end_time=plan.destination.end_time,
                subject=SUBJECT_EXCHANGE_RESULT,
                date=plan.target_date,
            ),
            target_user_id=occupied_by,
            requester_slots=tuple(slot.to_spec() for slot in plan.block.slots),
            target_slots=tuple(slot.to_spec() for slot in occupants if slot.user_id == occupied_by),
            desired_day=plan.target_day,
            desired_time=plan.destination.start_time,
        )
        request = room.add_request(
            Request(
                requester_id=requester_id,
                payload=payload,
                message=f"Exchange request for {plan.target_day.capitalize()} {plan.destination}",
                created_at=now or utc_now(),
            )
        )
        logger.info(
            "Destination %s %s in room %s is held by %s; created exchange request %s",
            plan.target_day, plan.destination, room.id, occupied_by, request.id,
        )
        return ExchangeOutcome(
            needs_approval=True,
            occupied_by=occupied_by,
            request_id=request.id,
            message=f"That time is taken. An exchange request was sent to {occupied_by}.",
        )
