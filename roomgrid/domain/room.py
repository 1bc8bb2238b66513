"""
The Room aggregate.

A room owns its members, its time-slot ledger and its negotiation requests.
Every mutation goes through a method here so that membership, colour and
conflict invariants are enforced in one place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pendulum import Date, DateTime

from .colors import OWNER_COLOR, assign_color
from .exceptions import (
    CapacityError,
    NoAlternativeError,
    NotFoundError,
    PermissionDeniedError,
    RequestStateError,
    SelfRemovalError,
    ValidationError,
)
from .intervals import DayInterval, TimeRange, overlaps, split_range
from .models import (
    SUBJECT_EXCHANGE_RESULT,
    Member,
    MemberRole,
    RoomSettings,
    SlotSpec,
    SlotStatus,
    TimeSlot,
    format_timestamp,
    new_id,
    parse_timestamp,
    utc_now,
    weekday_name,
)
from .requests import (
    ExchangeRequest,
    Request,
    RequestStatus,
    SlotRelease,
    SlotSwap,
    TimeChange,
    TimeRequest,
    payload_target,
)

logger = logging.getLogger(__name__)


@dataclass
class Room:
    """
    Aggregate root for one coordination room.

    ``max_members`` counts regular members only; the owner holds a Member
    record for colouring but never takes a seat.
    """
    name: str
    owner_id: str
    invite_code: str
    max_members: int = 10
    description: str = ""
    settings: RoomSettings = field(default_factory=RoomSettings)
    members: List[Member] = field(default_factory=list)
    time_slots: List[TimeSlot] = field(default_factory=list)
    requests: List[Request] = field(default_factory=list)
    created_at: DateTime = field(default_factory=utc_now)
    updated_at: DateTime = field(default_factory=utc_now)
    version: int = 0
    id: str = field(default_factory=new_id)

    @classmethod
    def create(
        cls,
        *,
        name: str,
        owner_id: str,
        invite_code: str,
        max_members: int,
        description: str = "",
        settings: Optional[RoomSettings] = None,
        now: Optional[DateTime] = None,
    ) -> "Room":
        """Build a new room holding only its owner."""
        if not name or not name.strip():
            raise ValidationError("Room name is required")
        now = now or utc_now()
        room = cls(
            name=name.strip(),
            owner_id=owner_id,
            invite_code=invite_code,
            max_members=max_members,
            description=(description or "").strip(),
            settings=settings or RoomSettings(),
            created_at=now,
            updated_at=now,
        )
        room.members.append(Member(user_id=owner_id, color=OWNER_COLOR, role=MemberRole.OWNER, joined_at=now))
        return room

    # -- membership ---------------------------------------------------------

    def is_owner(self, user_id: str) -> bool:
        return self.owner_id == user_id

    def get_member(self, user_id: str) -> Optional[Member]:
        for member in self.members:
            if member.user_id == user_id:
                return member
        return None

    def is_participant(self, user_id: str) -> bool:
        """Owner or member."""
        return self.is_owner(user_id) or self.get_member(user_id) is not None

    def is_regular_member(self, user_id: str) -> bool:
        return not self.is_owner(user_id) and self.get_member(user_id) is not None

    @property
    def member_count(self) -> int:
        """Seats taken by regular members."""
        return len({m.user_id for m in self.members if not m.is_owner and m.user_id != self.owner_id})

    @property
    def is_full(self) -> bool:
        return self.member_count >= self.max_members

    def require_owner(self, user_id: str, action: str = "do this") -> None:
        if not self.is_owner(user_id):
            raise PermissionDeniedError(f"Only the room owner can {action}")

    def require_participant(self, user_id: str) -> None:
        if not self.is_participant(user_id):
            raise PermissionDeniedError("You are not a member of this room")

    def repair_membership(self, user_id: str) -> bool:
        """
        Collapse duplicate Member rows for ``user_id`` into one with a fresh colour.

        Returns True when a repair happened.
        """
        entries = [m for m in self.members if m.user_id == user_id]
        if len(entries) <= 1:
            return False

        self.members = [m for m in self.members if m.user_id != user_id]
        color = assign_color(m.color for m in self.members)
        self.members.append(Member(user_id=user_id, color=color, joined_at=entries[0].joined_at))
        logger.warning(
            "Repaired %d duplicate membership rows for user %s in room %s",
            len(entries), user_id, self.id,
        )
        return True

    def add_member(self, user_id: str, now: Optional[DateTime] = None) -> Optional[Member]:
        """
        Insert ``user_id`` unless already present.

        Returns the new Member, or None when the user was already in the room.
        Raises CapacityError when the room is full.
        """
        if self.is_participant(user_id):
            return None
        if self.is_full:
            raise CapacityError(f"Room '{self.name}' is full ({self.max_members} members)")

        member = Member(
            user_id=user_id,
            color=assign_color(m.color for m in self.members),
            joined_at=now or utc_now(),
        )
        self.members.append(member)
        return member

    def remove_member(self, member_id: str) -> None:
        """Drop a member with their slots and every request naming them."""
        if self.is_owner(member_id):
            raise SelfRemovalError("The room owner cannot be removed from the room")
        if self.get_member(member_id) is None:
            raise NotFoundError(f"User {member_id} is not a member of this room")

        self.members = [m for m in self.members if m.user_id != member_id]
        self.time_slots = [s for s in self.time_slots if s.user_id != member_id]
        self.requests = [r for r in self.requests if not r.involves(member_id)]
        self.reevaluate_conflicts()

    # -- ledger -------------------------------------------------------------

    def slots_for(self, user_id: str) -> List[TimeSlot]:
        return [s for s in self.time_slots if s.user_id == user_id]

    def get_slot(self, slot_id: str) -> TimeSlot:
        for slot in self.time_slots:
            if slot.id == slot_id:
                return slot
        raise NotFoundError(f"Time slot {slot_id} not found")

    def collisions(self, interval: DayInterval, exclude_user: Optional[str] = None) -> List[TimeSlot]:
        """Slots overlapping ``interval``, optionally ignoring one user's slots."""
        return [
            slot for slot in self.time_slots
            if slot.user_id != exclude_user and overlaps(slot.interval, interval)
        ]

    def has_collision(self, interval: DayInterval) -> bool:
        return any(overlaps(slot.interval, interval) for slot in self.time_slots)

    def reevaluate_conflicts(self) -> None:
        """
        Flag every slot that overlaps another slot on the same day as
        ``conflict``; return all others to their resting status.
        """
        intervals = [slot.interval for slot in self.time_slots]
        for index, slot in enumerate(self.time_slots):
            colliding = any(
                other_index != index and overlaps(intervals[index], other)
                for other_index, other in enumerate(intervals)
            )
            if colliding:
                slot.status = SlotStatus.CONFLICT
            elif slot.status is SlotStatus.CONFLICT:
                slot.status = slot.resting_status

    def submit_slots(self, user_id: str, specs: Sequence[SlotSpec]) -> int:
        """
        Accumulatively add the caller's slots; an empty list clears them all.

        Returns the number of slots added (or removed, when clearing).
        """
        self.require_participant(user_id)

        if not specs:
            before = len(self.time_slots)
            self.time_slots = [s for s in self.time_slots if s.user_id != user_id]
            removed = before - len(self.time_slots)
            self.reevaluate_conflicts()
            return removed

        added = 0
        for spec in specs:
            if any(existing.matches_spec(spec) for existing in self.slots_for(user_id)):
                continue
            self.time_slots.append(TimeSlot.from_spec(spec, user_id, status=SlotStatus.CONFIRMED))
            added += 1

        self.reevaluate_conflicts()
        return added

    def remove_slot(self, user_id: str, day: str, start_time: str, end_time: str) -> int:
        """Remove the caller's own slot(s) at (day, start, end)."""
        self.require_participant(user_id)
        before = len(self.time_slots)
        self.time_slots = [
            s for s in self.time_slots
            if not (s.user_id == user_id and s.matches(day, start_time, end_time))
        ]
        self.reevaluate_conflicts()
        return before - len(self.time_slots)

    def assign_slot(
        self,
        actor_id: str,
        spec: SlotSpec,
        target_user_id: str,
        now: Optional[DateTime] = None,
    ) -> TimeSlot:
        """Owner force-assignment of an interval to a member."""
        self.require_owner(actor_id, "assign time slots")
        if self.get_member(target_user_id) is None:
            raise NotFoundError(f"User {target_user_id} is not a member of this room")

        slot = TimeSlot.from_spec(
            spec,
            target_user_id,
            status=SlotStatus.ASSIGNED,
            assigned_by=actor_id,
            assigned_at=now or utc_now(),
        )
        self.time_slots.append(slot)
        self.reevaluate_conflicts()
        return slot

    def delete_slot(self, actor_id: str, slot_id: str) -> TimeSlot:
        self.require_owner(actor_id, "delete time slots")
        slot = self.get_slot(slot_id)
        self.time_slots.remove(slot)
        self.reevaluate_conflicts()
        return slot

    def clear_slots(self, actor_id: str) -> int:
        self.require_owner(actor_id, "delete all time slots")
        removed = len(self.time_slots)
        self.time_slots = []
        self.reevaluate_conflicts()
        return removed

    def relocate_slots(
        self,
        slots: Iterable[TimeSlot],
        destination_date: Date,
        pieces: Sequence[TimeRange],
        subject: str,
    ) -> List[TimeSlot]:
        """
        Replace ``slots`` with one new slot per piece on ``destination_date``.

        Ownership, priority and assignment provenance carry over from the
        first source slot.
        """
        sources = list(slots)
        if not sources:
            raise NotFoundError("No slots to relocate")
        template = sources[0]
        source_ids = {s.id for s in sources}
        self.time_slots = [s for s in self.time_slots if s.id not in source_ids]

        created = self._emit(template, template.user_id, weekday_name(destination_date), destination_date, pieces, subject)
        self.reevaluate_conflicts()
        return created

    def _emit(
        self,
        template: TimeSlot,
        user_id: str,
        day: str,
        date: Optional[Date],
        pieces: Sequence[TimeRange],
        subject: str,
    ) -> List[TimeSlot]:
        created = [
            TimeSlot(
                user_id=user_id,
                day=day,
                date=date,
                start_time=piece.start_time,
                end_time=piece.end_time,
                subject=subject,
                priority=template.priority,
                assigned_by=template.assigned_by,
                assigned_at=template.assigned_at,
                status=template.resting_status,
            )
            for piece in pieces
        ]
        self.time_slots.extend(created)
        return created

    def _cut_out(self, user_id: str, interval: DayInterval) -> List[TimeSlot]:
        """
        Remove ``interval`` from the user's overlapping slots.

        The parts of those slots lying outside ``interval`` stay in the
        ledger as new slots. Returns the slots that were cut.
        """
        window = interval.range
        kept: List[TimeSlot] = []
        cut: List[TimeSlot] = []
        for slot in self.time_slots:
            if slot.user_id != user_id or not overlaps(slot.interval, interval):
                kept.append(slot)
                continue
            cut.append(slot)
            own = slot.time_range
            if own.start < window.start:
                head = TimeRange(start=own.start, end=window.start)
                kept.append(replace(slot, id=new_id(), start_time=head.start_time, end_time=head.end_time))
            if own.end > window.end:
                tail = TimeRange(start=window.end, end=own.end)
                kept.append(replace(slot, id=new_id(), start_time=tail.start_time, end_time=tail.end_time))
        self.time_slots = kept
        return cut

    # -- requests -----------------------------------------------------------

    def get_request(self, request_id: str) -> Request:
        for request in self.requests:
            if request.id == request_id:
                return request
        raise NotFoundError(f"Request {request_id} not found")

    def pending_requests(self, payload_type: Optional[type] = None) -> List[Request]:
        return [
            r for r in self.requests
            if r.is_pending and (payload_type is None or isinstance(r.payload, payload_type))
        ]

    def add_request(self, request: Request) -> Request:
        """Store a pending request after checking who may file it."""
        self.require_participant(request.requester_id)
        target = payload_target(request.payload)
        if target is not None:
            if target == request.requester_id:
                raise ValidationError("A request cannot target its own requester")
            if not self.is_participant(target):
                raise ValidationError(f"Target user {target} is not a member of this room")
        self.requests.append(request)
        return request

    def cancel_request(self, request_id: str, actor_id: str) -> Request:
        request = self.get_request(request_id)
        if request.requester_id != actor_id:
            raise PermissionDeniedError("Only the requester can cancel this request")
        if not request.is_pending:
            raise RequestStateError(f"Request {request_id} was already {request.status.value}")
        self.requests.remove(request)
        return request

    def can_decide(self, request: Request, actor_id: str) -> bool:
        target = request.target_user_id
        if target is not None:
            return actor_id == target
        return self.is_owner(actor_id)

    def handle_request(
        self,
        request_id: str,
        actor_id: str,
        decision: RequestStatus,
        now: Optional[DateTime] = None,
        *,
        displaced_to: Optional[DayInterval] = None,
        slot_minutes: int = 30,
    ) -> Request:
        """
        Approve or reject a pending request.

        Swap-like requests are decided by their named target, everything else
        by the owner. Approval applies the payload's ledger effect.

        Approving an exchange request needs ``displaced_to``, the placement
        found for the member giving up the destination; ``slot_minutes`` is
        the size of the slots re-emitted by the exchange.
        """
        request = self.get_request(request_id)
        self.check_decision(request, actor_id)

        decision = RequestStatus(decision)
        if decision is RequestStatus.APPROVED:
            self._apply_approval(request, displaced_to, slot_minutes)
        request.resolve(decision, actor_id, now)
        return request

    def check_decision(self, request: Request, actor_id: str) -> None:
        """Raise unless ``actor_id`` may decide ``request`` now."""
        if not self.can_decide(request, actor_id):
            if request.target_user_id is not None:
                raise PermissionDeniedError("Only the requested user can answer this request")
            raise PermissionDeniedError("Only the room owner can handle this request")
        if not request.is_pending:
            raise RequestStateError(f"Request {request.id} was already {request.status.value}")

    def _apply_approval(self, request: Request, displaced_to: Optional[DayInterval], slot_minutes: int) -> None:
        payload = request.payload
        if isinstance(payload, TimeRequest):
            self._approve_time_request(request.requester_id, payload)
        elif isinstance(payload, TimeChange):
            self._approve_time_change(request.requester_id, payload)
        elif isinstance(payload, SlotRelease):
            self._approve_slot_release(request.requester_id, payload)
        elif isinstance(payload, SlotSwap):
            self._approve_slot_swap(request.requester_id, payload)
        elif isinstance(payload, ExchangeRequest):
            self._approve_exchange(request.requester_id, payload, displaced_to, slot_minutes)
        else:
            raise TypeError(f"Unhandled request payload {type(payload).__name__}")
        self.reevaluate_conflicts()

    def _remove_first(self, user_id: str, spec: SlotSpec) -> Optional[TimeSlot]:
        for slot in self.time_slots:
            if slot.user_id == user_id and slot.matches_spec(spec):
                self.time_slots.remove(slot)
                return slot
        return None

    def _approve_time_request(self, requester_id: str, payload: TimeRequest) -> None:
        self.time_slots.append(TimeSlot.from_spec(payload.time_slot, requester_id, status=SlotStatus.CONFIRMED))

    def _approve_time_change(self, requester_id: str, payload: TimeChange) -> None:
        if self._remove_first(requester_id, payload.target_slot) is None:
            logger.warning("Time change in room %s: original slot %s no longer exists", self.id, payload.target_slot)
        self.time_slots.append(TimeSlot.from_spec(payload.time_slot, requester_id, status=SlotStatus.CONFIRMED))

    def _approve_slot_release(self, requester_id: str, payload: SlotRelease) -> None:
        if self._remove_first(requester_id, payload.time_slot) is None:
            logger.warning("Slot release in room %s: slot %s no longer exists", self.id, payload.time_slot)

    def _approve_slot_swap(self, requester_id: str, payload: SlotSwap) -> None:
        for slot in self.time_slots:
            if slot.user_id == payload.target_user_id and slot.matches_spec(payload.time_slot):
                slot.user_id = requester_id
                return
        raise NotFoundError(f"User {payload.target_user_id} no longer holds {payload.time_slot}")

    def _approve_exchange(
        self,
        requester_id: str,
        payload: ExchangeRequest,
        displaced_to: Optional[DayInterval],
        slot_minutes: int,
    ) -> None:
        """
        Two-way swap.

        Exactly the requested destination is cut out of the target's slots
        and refilled with the requester's block. The requester's old block
        is released and the target moves to ``displaced_to``. Both sides
        keep the length of the destination.
        """
        target_id = payload.target_user_id
        destination = payload.time_slot.interval
        if not any(s.user_id == target_id and overlaps(s.interval, destination) for s in self.time_slots):
            raise NotFoundError(f"User {target_id} no longer holds {payload.time_slot}")
        if displaced_to is None:
            raise NoAlternativeError(f"No free time was found for {target_id} to move to")
        if displaced_to.range.duration_minutes() != destination.range.duration_minutes():
            raise ValidationError(f"Placement {displaced_to.range} does not match {destination.range}")

        block = [
            slot for slot in self.time_slots
            if slot.user_id == requester_id
            and any(slot.matches_spec(spec) for spec in payload.requester_slots)
        ]
        block_ids = {s.id for s in block}
        cut = self._cut_out(target_id, destination)
        self.time_slots = [s for s in self.time_slots if s.id not in block_ids]

        self._emit(
            block[0] if block else cut[0], requester_id, destination.day, destination.date,
            split_range(destination.range, slot_minutes), SUBJECT_EXCHANGE_RESULT,
        )
        self._emit(
            cut[0], target_id, displaced_to.day, displaced_to.date,
            split_range(displaced_to.range, slot_minutes), SUBJECT_EXCHANGE_RESULT,
        )
        logger.info(
            "Exchange in room %s: %s takes %s, %s moves to %s %s",
            self.id, requester_id, payload.time_slot, target_id, displaced_to.day, displaced_to.range,
        )

    # -- persistence --------------------------------------------------------

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "owner": self.owner_id,
            "inviteCode": self.invite_code,
            "maxMembers": self.max_members,
            "settings": self.settings.model_dump(),
            "members": [m.to_document() for m in self.members],
            "timeSlots": [s.to_document() for s in self.time_slots],
            "requests": [r.to_document() for r in self.requests],
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "version": self.version,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Room":
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description") or "",
            owner_id=data["owner"],
            invite_code=data["inviteCode"],
            max_members=data.get("maxMembers", 10),
            settings=RoomSettings.model_validate(data.get("settings") or {}),
            members=[Member.from_document(m) for m in data.get("members", [])],
            time_slots=[TimeSlot.from_document(s) for s in data.get("timeSlots", [])],
            requests=[Request.from_document(r) for r in data.get("requests", [])],
            created_at=parse_timestamp(data.get("createdAt")) or utc_now(),
            updated_at=parse_timestamp(data.get("updatedAt")) or utc_now(),
            version=data.get("version", 0),
        )
