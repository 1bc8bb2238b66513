"""
Greedy auto-assignment of pending time requests.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from pendulum import DateTime

from .exceptions import NoWorkError
from .models import SUBJECT_AUTO_ASSIGNED, SlotStatus, TimeSlot, utc_now
from .requests import RequestStatus, TimeRequest
from .room import Room

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictEntry:
    """A time request left pending because its interval was taken."""
    requester_id: str
    day: str
    start_time: str
    end_time: str


@dataclass
class AutoAssignReport:
    assigned_count: int = 0
    conflicts: List[ConflictEntry] = field(default_factory=list)


def auto_assign(room: Room, actor_id: str, now: Optional[DateTime] = None) -> AutoAssignReport:
    """
    Approve every pending time request whose interval is still free.

    Placed slots are marked auto-assigned so a smart exchange can move them.

    Requests are processed in list order and each check sees the slots
    placed earlier in the same run, so two requests for the same interval
    never both succeed.

    Raises:
        PermissionDeniedError: If ``actor_id`` is not the room owner
        NoWorkError: If there are no pending time requests
    """
    room.require_owner(actor_id, "run auto-assignment")

    pending = room.pending_requests(TimeRequest)
    if not pending:
        raise NoWorkError("There are no pending time requests to assign")

    now = now or utc_now()
    report = AutoAssignReport()

    for request in pending:
        spec = request.payload.time_slot
        if room.has_collision(spec.interval):
            report.conflicts.append(
                ConflictEntry(
                    requester_id=request.requester_id,
                    day=spec.day,
                    start_time=spec.start_time,
                    end_time=spec.end_time,
                )
            )
            continue

        room.time_slots.append(
            TimeSlot.from_spec(spec, request.requester_id, subject=SUBJECT_AUTO_ASSIGNED, status=SlotStatus.CONFIRMED)
        )
        request.resolve(RequestStatus.APPROVED, actor_id, now)
        report.assigned_count += 1

    room.reevaluate_conflicts()
    logger.info(
        "Auto-assign in room %s: %d assigned, %d left pending",
        room.id, report.assigned_count, len(report.conflicts),
    )
    return report
