"""Room registry for pairing one desktop host with one phone client."""

import asyncio
import inspect
import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from .. import config
from ..errors import RoomAlreadyBound, RoomExpired, RoomNotFound

logger = logging.getLogger("relay.rooms")

# Uppercase letters and digits without the look-alikes 0/O and 1/I
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6


def generate_room_code() -> str:
    """Generate a random 6-character room code."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def normalize_code(code: str) -> str:
    return code.strip().upper()


@dataclass
class Room:
    code: str
    host_id: str
    client_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    expires_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def peer_of(self, conn_id: str) -> Optional[str]:
        """Return the other bound participant, or None."""
        if conn_id == self.host_id:
            return self.client_id
        if conn_id == self.client_id:
            return self.host_id
        return None

    def to_dict(self) -> dict:
        return {
            "room_code": self.code,
            "has_client": self.client_id is not None,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }


class RoomRegistry:
    """The table of live rooms.

    Every method is short and synchronous and holds the registry lock for
    its whole body, so creation, joins, removals and the sweep never
    interleave mid-mutation even when called from different threads.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        code_factory: Callable[[], str] = generate_room_code,
        ttl_s: float = config.ROOM_TTL_S,
        joined_ttl_s: float = config.ROOM_JOINED_TTL_S,
    ):
        self._rooms: dict[str, Room] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._code_factory = code_factory
        self._ttl_s = ttl_s
        self._joined_ttl_s = joined_ttl_s

    def __len__(self) -> int:
        return len(self._rooms)

    def create_room(self, host_id: str) -> Room:
        """Create a room owned by host_id under a fresh, unique code."""
        with self._lock:
            return self._create_locked(host_id)

    def _create_locked(self, host_id: str) -> Room:
        now = self._clock()
        code = self._code_factory()
        while code in self._rooms:
            code = self._code_factory()

        room = Room(code=code, host_id=host_id, created_at=now, expires_at=now + self._ttl_s)
        self._rooms[code] = room
        logger.info(f"Room created: {code} by host {host_id}")
        return room

    def join_room(self, code: str, client_id: str) -> Room:
        """Bind client_id to the room with this code.

        Raises RoomNotFound, RoomExpired (the room is deleted) or
        RoomAlreadyBound.
        """
        code = normalize_code(code)
        with self._lock:
            room = self._rooms.get(code)
            if room is None:
                logger.info(f"Room not found: {code}")
                raise RoomNotFound(code)

            now = self._clock()
            if room.is_expired(now):
                del self._rooms[code]
                logger.info(f"Room expired: {code}")
                raise RoomExpired(code)

            if room.client_id:
                logger.info(f"Room already has a client: {code}")
                raise RoomAlreadyBound(code)

            room.client_id = client_id
            room.expires_at = now + self._joined_ttl_s
            logger.info(f"Client {client_id} joined room {code}")
            return room

    def regenerate_room(self, host_id: str) -> tuple[Room, list[Room]]:
        """Invalidate every room host_id owns and issue a new one.

        Returns (new_room, orphaned_rooms). Clients bound to an orphaned
        room are left holding a dead code.
        """
        with self._lock:
            orphaned = [r for r in self._rooms.values() if r.host_id == host_id]
            for room in orphaned:
                del self._rooms[room.code]
                logger.info(f"Room invalidated: {room.code}")
            return self._create_locked(host_id), orphaned

    def remove_connection(self, conn_id: str) -> Optional[Room]:
        """Detach a departed connection from its room.

        A departing host destroys the room. A departing client only frees
        the client slot, so the room can be joined again. Returns the
        affected room, or None.
        """
        with self._lock:
            room = self._room_for_locked(conn_id)
            if room is None:
                return None
            if room.host_id == conn_id:
                del self._rooms[room.code]
                logger.info(f"Host left, room destroyed: {room.code}")
            else:
                room.client_id = None
                logger.info(f"Client left room: {room.code}")
            return room

    def get(self, code: str) -> Optional[Room]:
        with self._lock:
            return self._rooms.get(normalize_code(code))

    def room_for(self, conn_id: str) -> Optional[Room]:
        with self._lock:
            return self._room_for_locked(conn_id)

    def _room_for_locked(self, conn_id: str) -> Optional[Room]:
        for room in self._rooms.values():
            if room.host_id == conn_id or room.client_id == conn_id:
                return room
        return None

    def touch(self, code: str) -> bool:
        """Keep a bound room alive while traffic flows through it."""
        with self._lock:
            room = self._rooms.get(normalize_code(code))
            if room is None or room.client_id is None:
                return False
            room.expires_at = self._clock() + self._joined_ttl_s
            return True

    def sweep_expired(self) -> list[Room]:
        """Delete all rooms past their expiry. Returns the deleted rooms."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> list[Room]:
        expired = [r for r in self._rooms.values() if r.is_expired(now)]
        for room in expired:
            del self._rooms[room.code]
            logger.info(f"Cleaned up expired room: {room.code}")
        return expired

    async def run_sweeper(self, interval_s: float = config.ROOM_SWEEP_INTERVAL_S,
                          on_expired: Optional[Callable[[list[Room]], object]] = None):
        """Periodically delete expired rooms until cancelled."""
        while True:
            try:
                await asyncio.sleep(interval_s)
                expired = self.sweep_expired()
                if expired and on_expired:
                    result = on_expired(expired)
                    if inspect.isawaitable(result):
                        await result
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Room sweep failed: {e}")
