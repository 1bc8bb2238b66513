"""
Negotiation requests and their typed payloads.

Each request type is its own payload class so that approval can dispatch on
the payload rather than on a free-form type string.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from pendulum import DateTime

from .exceptions import RequestStateError, ValidationError
from .models import SlotSpec, format_timestamp, new_id, parse_timestamp, utc_now


class RequestType(str, Enum):
    TIME_REQUEST = "time_request"
    TIME_CHANGE = "time_change"
    SLOT_RELEASE = "slot_release"
    SLOT_SWAP = "slot_swap"
    EXCHANGE_REQUEST = "exchange_request"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class TimeRequest:
    """Ask the owner for a new slot."""
    time_slot: SlotSpec

    type = RequestType.TIME_REQUEST


@dataclass(frozen=True)
class TimeChange:
    """Ask the owner to replace ``target_slot`` with ``time_slot``."""
    time_slot: SlotSpec
    target_slot: SlotSpec

    type = RequestType.TIME_CHANGE


@dataclass(frozen=True)
class SlotRelease:
    """Ask the owner to drop one of the requester's slots."""
    time_slot: SlotSpec

    type = RequestType.SLOT_RELEASE


@dataclass(frozen=True)
class SlotSwap:
    """Ask ``target_user_id`` to hand over their slot at ``time_slot``."""
    time_slot: SlotSpec
    target_user_id: str

    type = RequestType.SLOT_SWAP


@dataclass(frozen=True)
class ExchangeRequest:
    """
    Escalated smart exchange: the requester wants to move their block to
    ``time_slot``, which ``target_user_id`` currently occupies.
    """
    time_slot: SlotSpec
    target_user_id: str
    requester_slots: Tuple[SlotSpec, ...] = ()
    target_slots: Tuple[SlotSpec, ...] = ()
    desired_day: str = ""
    desired_time: str = ""

    type = RequestType.EXCHANGE_REQUEST


RequestPayload = Union[TimeRequest, TimeChange, SlotRelease, SlotSwap, ExchangeRequest]

# Payload types decided by the named target user rather than the owner
TARGETED_TYPES = (SlotSwap, ExchangeRequest)


def payload_target(payload: RequestPayload) -> Optional[str]:
    """Return the named target user for swap-like payloads."""
    if isinstance(payload, TARGETED_TYPES):
        return payload.target_user_id
    return None


def payload_to_document(payload: RequestPayload) -> Dict[str, Any]:
    document: Dict[str, Any] = {
        "type": payload.type.value,
        "timeSlot": payload.time_slot.to_document(),
    }
    if isinstance(payload, TimeChange):
        document["targetSlot"] = payload.target_slot.to_document()
    if isinstance(payload, TARGETED_TYPES):
        document["targetUserId"] = payload.target_user_id
    if isinstance(payload, ExchangeRequest):
        document["requesterSlots"] = [spec.to_document() for spec in payload.requester_slots]
        document["targetSlots"] = [spec.to_document() for spec in payload.target_slots]
        document["desiredDay"] = payload.desired_day
        document["desiredTime"] = payload.desired_time
    return document


def payload_from_document(data: Dict[str, Any]) -> RequestPayload:
    try:
        request_type = RequestType(data["type"])
    except (KeyError, ValueError) as exc:
        raise ValidationError(f"Unknown request type: {data.get('type')!r}") from exc

    time_slot = SlotSpec.from_document(data["timeSlot"])

    if request_type is RequestType.TIME_REQUEST:
        return TimeRequest(time_slot=time_slot)
    if request_type is RequestType.TIME_CHANGE:
        return TimeChange(time_slot=time_slot, target_slot=SlotSpec.from_document(data["targetSlot"]))
    if request_type is RequestType.SLOT_RELEASE:
        return SlotRelease(time_slot=time_slot)
    if request_type is RequestType.SLOT_SWAP:
        return SlotSwap(time_slot=time_slot, target_user_id=data["targetUserId"])
    return ExchangeRequest(
        time_slot=time_slot,
        target_user_id=data["targetUserId"],
        requester_slots=tuple(SlotSpec.from_document(s) for s in data.get("requesterSlots", [])),
        target_slots=tuple(SlotSpec.from_document(s) for s in data.get("targetSlots", [])),
        desired_day=data.get("desiredDay", ""),
        desired_time=data.get("desiredTime", ""),
    )


@dataclass
class Request:
    """
    A pending or resolved negotiation item stored on the room.
    """
    requester_id: str
    payload: RequestPayload
    message: str = ""
    status: RequestStatus = RequestStatus.PENDING
    created_at: DateTime = field(default_factory=utc_now)
    resolved_at: Optional[DateTime] = None
    resolved_by: Optional[str] = None
    id: str = field(default_factory=new_id)

    @property
    def type(self) -> RequestType:
        return self.payload.type

    @property
    def target_user_id(self) -> Optional[str]:
        return payload_target(self.payload)

    @property
    def is_pending(self) -> bool:
        return self.status is RequestStatus.PENDING

    def involves(self, user_id: str) -> bool:
        return self.requester_id == user_id or self.target_user_id == user_id

    def resolve(self, status: RequestStatus, actor_id: str, now: Optional[DateTime] = None) -> None:
        """Move the request out of ``pending``; a request resolves exactly once."""
        if not self.is_pending:
            raise RequestStateError(f"Request {self.id} was already {self.status.value}")
        if status is RequestStatus.PENDING:
            raise ValidationError("A request can only be approved or rejected")
        self.status = status
        self.resolved_by = actor_id
        self.resolved_at = now or utc_now()

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "requester": self.requester_id,
            "payload": payload_to_document(self.payload),
            "message": self.message,
            "status": self.status.value,
            "createdAt": format_timestamp(self.created_at),
            "resolvedAt": format_timestamp(self.resolved_at),
            "resolvedBy": self.resolved_by,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Request":
        return cls(
            id=data["id"],
            requester_id=data["requester"],
            payload=payload_from_document(data["payload"]),
            message=data.get("message") or "",
            status=RequestStatus(data.get("status", RequestStatus.PENDING.value)),
            created_at=parse_timestamp(data.get("createdAt")) or utc_now(),
            resolved_at=parse_timestamp(data.get("resolvedAt")),
            resolved_by=data.get("resolvedBy"),
        )
