"""
Room document stores.

Rooms are persisted whole, one JSON-compatible document per room. Saves are
guarded by the room's ``version`` counter; a save whose version does not
match the stored document raises ``ConcurrentModificationError``.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pendulum import DateTime

from ..domain.exceptions import ConcurrentModificationError, NotFoundError, ValidationError
from ..domain.models import Member, utc_now
from ..domain.room import Room

logger = logging.getLogger(__name__)


class InMemoryRoomStore:
    """
    Dictionary-backed store used by tests and as the base for file storage.

    Subclasses override ``_read``, ``_write``, ``_remove`` and ``_documents``
    to change where documents live; locking and version checks stay here.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._rooms: Dict[str, Dict[str, Any]] = {}

    # -- storage hooks ------------------------------------------------------

    def _read(self, room_id: str) -> Optional[Dict[str, Any]]:
        document = self._rooms.get(room_id)
        return json.loads(json.dumps(document)) if document is not None else None

    def _write(self, document: Dict[str, Any]) -> None:
        self._rooms[document["id"]] = json.loads(json.dumps(document))

    def _remove(self, room_id: str) -> None:
        self._rooms.pop(room_id, None)

    def _documents(self) -> Iterator[Dict[str, Any]]:
        for room_id in list(self._rooms):
            document = self._read(room_id)
            if document is not None:
                yield document

    # -- public API ---------------------------------------------------------

    def get(self, room_id: str) -> Room:
        with self._lock:
            document = self._read(room_id)
        if document is None:
            raise NotFoundError(f"Room {room_id} not found")
        return Room.from_document(document)

    def create(self, room: Room) -> Room:
        with self._lock:
            if self._read(room.id) is not None:
                raise ValidationError(f"Room {room.id} already exists")
            if self.invite_code_exists(room.invite_code):
                raise ValidationError(f"Invite code {room.invite_code} is already in use")
            self._write(room.to_document())
        return room

    def save(self, room: Room) -> Room:
        """
        Persist ``room`` if nobody saved it since it was loaded.

        The room's version is bumped on success.
        """
        with self._lock:
            current = self._read(room.id)
            if current is None:
                raise NotFoundError(f"Room {room.id} not found")
            if current.get("version", 0) != room.version:
                raise ConcurrentModificationError(
                    f"Room {room.id} changed concurrently "
                    f"(expected version {room.version}, found {current.get('version', 0)})"
                )
            room.version += 1
            room.updated_at = utc_now()
            self._write(room.to_document())
        return room

    def delete(self, room_id: str) -> None:
        with self._lock:
            if self._read(room_id) is None:
                raise NotFoundError(f"Room {room_id} not found")
            self._remove(room_id)

    def invite_code_exists(self, invite_code: str) -> bool:
        with self._lock:
            return any(doc["inviteCode"] == invite_code for doc in self._documents())

    def find_by_invite_code(self, invite_code: str) -> Optional[Room]:
        with self._lock:
            for document in self._documents():
                if document["inviteCode"] == invite_code:
                    return Room.from_document(document)
        return None

    def find_by_request(self, request_id: str) -> Room:
        with self._lock:
            for document in self._documents():
                if any(r["id"] == request_id for r in document.get("requests", [])):
                    return Room.from_document(document)
        raise NotFoundError(f"Request {request_id} not found")

    def list_for_user(self, user_id: str) -> List[Room]:
        """Rooms the user owns or belongs to, oldest first."""
        with self._lock:
            rooms = [
                Room.from_document(doc) for doc in self._documents()
                if doc["owner"] == user_id or any(m["user"] == user_id for m in doc.get("members", []))
            ]
        return sorted(rooms, key=lambda room: room.created_at)

    def add_member_if_absent(
        self,
        room_id: str,
        user_id: str,
        now: Optional[DateTime] = None,
    ) -> Tuple[Room, Optional[Member]]:
        """
        Atomically insert ``user_id`` as a member unless already present.

        Presence and capacity are checked against the stored document while
        the store lock is held, so two racing joins cannot over-fill a room.

        Returns:
            The stored room and the new Member, or None if the user was
            already in the room
        """
        with self._lock:
            document = self._read(room_id)
            if document is None:
                raise NotFoundError(f"Room {room_id} not found")
            room = Room.from_document(document)
            member = room.add_member(user_id, now)
            if member is not None:
                room.version += 1
                room.updated_at = utc_now()
                self._write(room.to_document())
        return room, member


class JsonFileRoomStore(InMemoryRoomStore):
    """
    One ``<room id>.json`` file per room under ``data_dir``.
    """

    def __init__(self, data_dir: Path) -> None:
        super().__init__()
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, room_id: str) -> Path:
        return self.data_dir / f"{room_id}.json"

    def _read(self, room_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(room_id)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Corrupt room document {path}: {exc}") from exc

    def _write(self, document: Dict[str, Any]) -> None:
        # Write to a sibling temp file first so readers never see half a document
        fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self._path(document["id"]))
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _remove(self, room_id: str) -> None:
        path = self._path(room_id)
        if path.exists():
            path.unlink()

    def _documents(self) -> Iterator[Dict[str, Any]]:
        for path in sorted(self.data_dir.glob("*.json")):
            document = self._read(path.stem)
            if document is not None:
                yield document
