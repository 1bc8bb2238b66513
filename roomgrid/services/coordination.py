"""
Application service for room coordination.

The service loads a Room aggregate from the store, lets the aggregate (or one
of the domain resolvers) apply a mutation, and persists the whole document.
Writers to the same room are serialized by a per-room lock, and the store's
optimistic version check catches writers outside this process; a conflicting
cycle is retried a bounded number of times.
"""

from __future__ import annotations

import logging
import secrets
import string
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, TypeVar, Union

import pendulum
import pydantic
from pendulum import DateTime

from ..config import AppConfig
from ..domain.auto_assign import AutoAssignReport, auto_assign
from ..domain.exceptions import (
    CapacityError,
    ConcurrentModificationError,
    NotFoundError,
    SelfRemovalError,
    ValidationError,
)
from ..domain.exchange import ExchangeOutcome, SmartExchangeResolver
from ..domain.models import SUBJECT_AUTO_ASSIGNED, Member, PreferenceEntry, RoomSettings, SlotSpec, TimeSlot
from ..domain.requests import ExchangeRequest, Request, RequestPayload, RequestStatus
from ..domain.room import Room

logger = logging.getLogger(__name__)

INVITE_CODE_LENGTH = 6
INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits

T = TypeVar("T")


class RoomStoreProtocol(Protocol):
    """Protocol describing the room document store used by the service."""

    def get(self, room_id: str) -> Room:
        """Load a room or raise NotFoundError."""

    def create(self, room: Room) -> Room:
        """Persist a new room."""

    def save(self, room: Room) -> Room:
        """Persist a loaded room, enforcing its version."""

    def delete(self, room_id: str) -> None:
        """Remove a room."""

    def invite_code_exists(self, invite_code: str) -> bool:
        """Return True if any room uses ``invite_code``."""

    def find_by_invite_code(self, invite_code: str) -> Optional[Room]:
        """Return the room with ``invite_code`` or None."""

    def find_by_request(self, request_id: str) -> Room:
        """Return the room holding ``request_id`` or raise NotFoundError."""

    def list_for_user(self, user_id: str) -> List[Room]:
        """Return rooms the user owns or belongs to."""

    def add_member_if_absent(
        self, room_id: str, user_id: str, now: Optional[DateTime] = None
    ) -> Tuple[Room, Optional[Member]]:
        """Atomically add a member unless present; enforce capacity."""


class PreferenceStoreProtocol(Protocol):
    """Protocol describing read access to recurring weekly availability."""

    def get_preferences(self, user_id: str) -> List[PreferenceEntry]:
        """Return the user's availability entries."""


@dataclass(frozen=True)
class SlotView:
    """A ledger slot resolved for display."""
    slot: TimeSlot
    color: str
    display_name: str


class CoordinationService:
    """
    Orchestrates rooms, the time-slot ledger, requests and the resolvers.

    Args:
        room_store: Where room documents live
        preference_store: Read-only recurring availability, used by smart exchange
        config: Defaults, limits and the user directory
        clock: Returns "now"; injected so tests can pin the current week
    """

    def __init__(
        self,
        room_store: RoomStoreProtocol,
        preference_store: PreferenceStoreProtocol,
        config: Optional[AppConfig] = None,
        clock: Optional[Callable[[], DateTime]] = None,
    ) -> None:
        self._rooms = room_store
        self._preferences = preference_store
        self._config = config or AppConfig()
        self._clock = clock or (lambda: pendulum.now(self._config.timezone))
        self._exchange = SmartExchangeResolver(
            slot_minutes=self._config.exchange.slot_minutes,
            auto_place_when_occupied=self._config.exchange.auto_place_when_occupied,
        )
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # -- plumbing -----------------------------------------------------------

    def _room_lock(self, room_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(room_id, threading.Lock())

    def _mutate(self, room_id: str, mutation: Callable[[Room], T]) -> Tuple[Room, T]:
        """
        Run one read-modify-write cycle on a room.

        A mutation that raises leaves the stored document untouched.
        """
        retries = self._config.max_write_retries
        attempt = 1
        with self._room_lock(room_id):
            while True:
                room = self._rooms.get(room_id)
                result = mutation(room)
                try:
                    self._rooms.save(room)
                    return room, result
                except ConcurrentModificationError:
                    if attempt >= retries:
                        raise
                    logger.warning(
                        "Write conflict on room %s (attempt %d of %d), retrying",
                        room_id, attempt, retries,
                    )
                    attempt += 1

    def _now(self) -> DateTime:
        return self._clock()

    def _generate_invite_code(self) -> str:
        while True:
            code = "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))
            if not self._rooms.invite_code_exists(code):
                return code

    def _check_max_members(self, max_members: int) -> int:
        limits = self._config.defaults
        if not limits.min_members <= max_members <= limits.max_members_limit:
            raise ValidationError(
                f"max_members must be between {limits.min_members} and {limits.max_members_limit}, "
                f"got {max_members}"
            )
        return max_members

    def _build_settings(
        self,
        settings: Union[RoomSettings, Mapping[str, Any], None],
        base: Optional[RoomSettings] = None,
    ) -> RoomSettings:
        if base is None:
            base = RoomSettings(
                start_hour=self._config.defaults.start_hour,
                end_hour=self._config.defaults.end_hour,
            )
        if settings is None:
            return base
        if isinstance(settings, RoomSettings):
            settings = settings.model_dump(exclude_unset=True)
        merged = {**base.model_dump(), **dict(settings)}
        try:
            return RoomSettings.model_validate(merged)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid room settings: {exc}") from exc

    def slot_views(self, room: Room) -> List[SlotView]:
        """Resolve colours and display names for every slot in the ledger."""
        views = []
        for slot in room.time_slots:
            member = room.get_member(slot.user_id)
            views.append(
                SlotView(
                    slot=slot,
                    color=member.color if member else "",
                    display_name=self._config.display_name(slot.user_id),
                )
            )
        return views

    # -- rooms & membership -------------------------------------------------

    def create_room(
        self,
        owner_id: str,
        name: str,
        description: str = "",
        max_members: Optional[int] = None,
        settings: Union[RoomSettings, Mapping[str, Any], None] = None,
    ) -> Room:
        """Create a room holding only its owner and return it."""
        if max_members is None:
            max_members = self._config.defaults.max_members
        room = Room.create(
            name=name,
            owner_id=owner_id,
            invite_code=self._generate_invite_code(),
            max_members=self._check_max_members(max_members),
            description=description,
            settings=self._build_settings(settings),
            now=self._now(),
        )
        self._rooms.create(room)
        logger.info("Room %s (%s) created by %s with invite code %s", room.id, room.name, owner_id, room.invite_code)
        return room

    def join_room(self, invite_code: str, user_id: str) -> Room:
        """
        Join a room by invite code.

        Joining twice is harmless and never changes the member's colour.
        """
        code = (invite_code or "").strip().upper()
        room = self._rooms.find_by_invite_code(code)
        if room is None:
            raise NotFoundError(f"No room with invite code {code}")

        if room.is_owner(user_id):
            return room

        if len([m for m in room.members if m.user_id == user_id]) > 1:
            room, _ = self._mutate(room.id, lambda r: r.repair_membership(user_id))

        room, member = self._rooms.add_member_if_absent(room.id, user_id, self._now())
        if member is not None:
            logger.info("User %s joined room %s with colour %s", user_id, room.id, member.color)
        return room

    def get_room(self, room_id: str, actor_id: str) -> Room:
        room = self._rooms.get(room_id)
        room.require_participant(actor_id)
        return room

    def list_rooms(self, user_id: str) -> Dict[str, List[Room]]:
        rooms = self._rooms.list_for_user(user_id)
        return {
            "owned": [room for room in rooms if room.is_owner(user_id)],
            "joined": [room for room in rooms if not room.is_owner(user_id)],
        }

    def update_room(
        self,
        room_id: str,
        actor_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        max_members: Optional[int] = None,
        settings: Union[RoomSettings, Mapping[str, Any], None] = None,
    ) -> Room:
        """Owner-only edit of room metadata, capacity and settings."""

        def mutation(room: Room) -> None:
            room.require_owner(actor_id, "update the room")
            if name is not None:
                if not name.strip():
                    raise ValidationError("Room name is required")
                room.name = name.strip()
            if description is not None:
                room.description = description.strip()
            if max_members is not None:
                self._check_max_members(max_members)
                if max_members < room.member_count:
                    raise CapacityError(
                        f"Room has {room.member_count} members; max_members cannot be {max_members}"
                    )
                room.max_members = max_members
            if settings is not None:
                room.settings = self._build_settings(settings, base=room.settings)

        room, _ = self._mutate(room_id, mutation)
        logger.info("Room %s updated by %s", room_id, actor_id)
        return room

    def delete_room(self, room_id: str, actor_id: str) -> None:
        with self._room_lock(room_id):
            room = self._rooms.get(room_id)
            room.require_owner(actor_id, "delete the room")
            self._rooms.delete(room_id)
        logger.info("Room %s deleted by %s", room_id, actor_id)

    def remove_member(self, room_id: str, member_id: str, actor_id: str) -> Room:
        """Owner removes a member along with their slots and requests."""

        def mutation(room: Room) -> None:
            room.require_owner(actor_id, "remove members")
            room.remove_member(member_id)

        room, _ = self._mutate(room_id, mutation)
        logger.info("Member %s removed from room %s by %s", member_id, room_id, actor_id)
        return room

    def leave_room(self, room_id: str, user_id: str) -> Room:
        def mutation(room: Room) -> None:
            if room.is_owner(user_id):
                raise SelfRemovalError("The room owner cannot leave; delete the room instead")
            room.remove_member(user_id)

        room, _ = self._mutate(room_id, mutation)
        logger.info("User %s left room %s", user_id, room_id)
        return room

    # -- time-slot ledger ---------------------------------------------------

    def submit_slots(self, room_id: str, user_id: str, slots: Sequence[SlotSpec]) -> List[SlotView]:
        """Add the caller's slots; an empty sequence clears them."""
        room, count = self._mutate(room_id, lambda r: r.submit_slots(user_id, slots))
        if slots:
            logger.info("User %s submitted %d new slot(s) in room %s", user_id, count, room_id)
        else:
            logger.info("User %s cleared %d slot(s) in room %s", user_id, count, room_id)
        return self.slot_views(room)

    def remove_slot(self, room_id: str, user_id: str, day: str, start_time: str, end_time: str) -> List[SlotView]:
        room, _ = self._mutate(room_id, lambda r: r.remove_slot(user_id, day, start_time, end_time))
        return self.slot_views(room)

    def assign_slot(
        self,
        room_id: str,
        owner_id: str,
        day: str,
        start_time: str,
        end_time: str,
        target_user_id: str,
        subject: str = SUBJECT_AUTO_ASSIGNED,
        date: Optional[str] = None,
    ) -> List[SlotView]:
        """Owner force-assigns an interval to a member."""
        spec = SlotSpec(day=day, start_time=start_time, end_time=end_time, subject=subject, date=date)
        room, _ = self._mutate(room_id, lambda r: r.assign_slot(owner_id, spec, target_user_id, self._now()))
        logger.info("Owner %s assigned %s to %s in room %s", owner_id, spec, target_user_id, room_id)
        return self.slot_views(room)

    def delete_slot(self, room_id: str, owner_id: str, slot_id: str) -> List[SlotView]:
        room, _ = self._mutate(room_id, lambda r: r.delete_slot(owner_id, slot_id))
        logger.info("Owner %s deleted slot %s in room %s", owner_id, slot_id, room_id)
        return self.slot_views(room)

    def delete_all_slots(self, room_id: str, owner_id: str) -> List[SlotView]:
        room, removed = self._mutate(room_id, lambda r: r.clear_slots(owner_id))
        logger.info("Owner %s cleared %d slot(s) in room %s", owner_id, removed, room_id)
        return self.slot_views(room)

    # -- requests -----------------------------------------------------------

    def create_request(self, room_id: str, requester_id: str, payload: RequestPayload, message: str = "") -> Request:
        """Store a pending request; the ledger is untouched until approval."""
        request = Request(requester_id=requester_id, payload=payload, message=message, created_at=self._now())
        self._mutate(room_id, lambda r: r.add_request(request))
        logger.info("User %s filed %s request %s in room %s", requester_id, request.type.value, request.id, room_id)
        return request

    def handle_request(self, request_id: str, actor_id: str, decision: Union[RequestStatus, str]) -> Request:
        """Approve or reject a pending request, applying its effect on approval."""
        try:
            decision = RequestStatus(decision)
        except ValueError as exc:
            raise ValidationError(f"Decision must be 'approved' or 'rejected', got {decision!r}") from exc

        room_id = self._rooms.find_by_request(request_id).id

        def mutation(room: Room) -> Request:
            now = self._now()
            displaced_to = None
            request = room.get_request(request_id)
            if decision is RequestStatus.APPROVED and isinstance(request.payload, ExchangeRequest):
                room.check_decision(request, actor_id)
                displaced_to = self._exchange.place_displaced(
                    room,
                    request,
                    today=now.date(),
                    owner_preferences=self._preferences.get_preferences(room.owner_id),
                    target_preferences=self._preferences.get_preferences(request.payload.target_user_id),
                )
            return room.handle_request(
                request_id, actor_id, decision, now,
                displaced_to=displaced_to,
                slot_minutes=self._config.exchange.slot_minutes,
            )

        _, request = self._mutate(room_id, mutation)
        logger.info("Request %s %s by %s in room %s", request_id, decision.value, actor_id, room_id)
        return request

    def cancel_request(self, request_id: str, actor_id: str) -> Request:
        room_id = self._rooms.find_by_request(request_id).id
        _, request = self._mutate(room_id, lambda r: r.cancel_request(request_id, actor_id))
        logger.info("Request %s cancelled by %s", request_id, actor_id)
        return request

    def list_requests(self, user_id: str, direction: str = "received") -> List[Request]:
        """
        Requests the user sent, or those waiting on the user's decision.
        """
        if direction not in ("sent", "received"):
            raise ValidationError(f"direction must be 'sent' or 'received', got {direction!r}")

        found: List[Request] = []
        for room in self._rooms.list_for_user(user_id):
            for request in room.requests:
                if direction == "sent":
                    if request.requester_id == user_id:
                        found.append(request)
                elif request.is_pending and request.requester_id != user_id and room.can_decide(request, user_id):
                    found.append(request)
        return sorted(found, key=lambda r: r.created_at, reverse=True)

    # -- resolvers ----------------------------------------------------------

    def auto_assign(self, room_id: str, owner_id: str) -> AutoAssignReport:
        _, report = self._mutate(room_id, lambda r: auto_assign(r, owner_id, self._now()))
        return report

    def smart_exchange(
        self,
        room_id: str,
        requester_id: str,
        target_day: str,
        target_time: Optional[str] = None,
        source_day: Optional[str] = None,
    ) -> ExchangeOutcome:
        """
        Move the requester's movable block to ``target_day``.

        The block moves at once when the destination is free; otherwise an
        exchange request is sent to the member holding it.
        """

        def mutation(room: Room) -> ExchangeOutcome:
            now = self._now()
            plan = self._exchange.plan(
                room,
                requester_id,
                target_day=target_day,
                target_time=target_time,
                source_day=source_day,
                today=now.date(),
                owner_preferences=self._preferences.get_preferences(room.owner_id),
                requester_preferences=self._preferences.get_preferences(requester_id),
            )
            return self._exchange.execute(room, requester_id, plan, now)

        _, outcome = self._mutate(room_id, mutation)
        return outcome
