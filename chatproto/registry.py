import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import DuplicateUsernameError

"""
registry.py — in-memory session and room bookkeeping.

Both registries are shared by every connection task. Each owns a
threading.Lock and does its read-modify-write steps while holding it.
Nothing in here awaits or does I/O.
"""


@dataclass(eq=False)
class Session:
    """Server-side state for one logged-in connection."""

    id: str
    username: str
    current_room: Optional[str] = None


@dataclass(eq=False)
class Room:
    """A named broadcast group. Members are keyed by session id."""

    name: str
    _members: Dict[str, Session] = field(default_factory=dict, repr=False)


class SessionRegistry:
    """session id → Session, with unique usernames among active sessions."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(self, username: str) -> Session:
        """
        Claim `username` and return its new Session.

        Raises:
            DuplicateUsernameError: an active session already uses the name
                (case-sensitive). Nothing is stored in that case.
        """
        with self._lock:
            for existing in self._sessions.values():
                if existing.username == username:
                    raise DuplicateUsernameError(username)
            session = Session(id=str(uuid.uuid4()), username=username)
            self._sessions[session.id] = session
            return session

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        if session_id is None:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: Optional[str]) -> Optional[Session]:
        """Drop and return a session. Room cleanup is the caller's job."""
        if session_id is None:
            return None
        with self._lock:
            return self._sessions.pop(session_id, None)

    def find_by_username(self, username: str) -> Optional[Session]:
        with self._lock:
            for session in self._sessions.values():
                if session.username == username:
                    return session
        return None

    def set_room(self, session_id: str, room: Optional[str]) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.current_room = room

    def snapshot(self) -> List[Session]:
        """Active sessions in login order."""
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class RoomRegistry:
    """room name → Room. Rooms appear on first join and are never removed."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Room] = {}
        self._lock = threading.Lock()

    def get_or_create(self, name: str) -> Room:
        with self._lock:
            room = self._rooms.get(name)
            if room is None:
                room = Room(name)
                self._rooms[name] = room
            return room

    def get(self, name: Optional[str]) -> Optional[Room]:
        if name is None:
            return None
        with self._lock:
            return self._rooms.get(name)

    def add_member(self, room: Room, session: Session) -> None:
        # setdefault keeps the first entry; re-adding is a no-op
        with self._lock:
            room._members.setdefault(session.id, session)

    def remove_member(self, room: Room, session: Session) -> None:
        with self._lock:
            room._members.pop(session.id, None)

    def members(self, room: Room) -> List[Session]:
        """Snapshot of the room's members, safe to iterate while others join/leave."""
        with self._lock:
            return list(room._members.values())
