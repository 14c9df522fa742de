"""Relay channel: routes frames between the host and client of each room.

Protocol (JSON text frames, one connection per participant):
- Desktop sends: {type: "create-room"}
- Server sends:  {type: "room-created", success, roomCode}
- Phone sends:   {type: "join-room", roomCode}
- Server sends:  {type: "room-joined", success, roomCode, hostId} or {success: false, error, reason}
- Server sends (to host): {type: "client-joined", socketId}
- Either sends:  {type: "offer" | "answer" | "ice-candidate", ...} → forwarded to the peer with "from"
- Phone sends:   {type: "remote-message", message} → forwarded to the host only
- Server sends:  {type: "peer-disconnected"} when the other side leaves
- Server sends (to host): {type: "room-expired", roomCode}
- Either sends:  {type: "ping", timestamp} → {type: "pong", timestamp}
"""

import logging
import time
import uuid
from typing import Optional, Protocol

from .. import messages as m
from ..errors import JoinError
from .rooms import Room, RoomRegistry

logger = logging.getLogger("relay.channel")


def new_connection_id() -> str:
    return uuid.uuid4().hex[:12]


class Connection(Protocol):
    conn_id: str

    async def send_json(self, frame: dict) -> None: ...


class RelayChannel:
    """Owns the participant-to-connection map for one relay server.

    Nothing outside this class adds or removes connections; the server
    endpoint only reports arrivals, frames and departures.
    """

    def __init__(self, registry: RoomRegistry):
        self.registry = registry
        self._connections: dict[str, Connection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def is_connected(self, conn_id: str) -> bool:
        return conn_id in self._connections

    def connect(self, conn: Connection):
        self._connections[conn.conn_id] = conn
        logger.info(f"Client connected: {conn.conn_id}")

    async def disconnect(self, conn_id: str):
        """Forget a connection, update its room and tell the remaining peer."""
        if self._connections.pop(conn_id, None) is None:
            return
        logger.info(f"Client disconnected: {conn_id}")
        room = self.registry.remove_connection(conn_id)
        if room is None:
            return
        peer = room.client_id if room.host_id == conn_id else room.host_id
        if peer:
            await self._send(peer, {"type": m.PEER_DISCONNECTED})

    async def handle(self, conn_id: str, frame: dict):
        """Process one inbound frame from conn_id."""
        msg_type = frame.get("type")

        if msg_type == m.CREATE_ROOM:
            await self._create_room(conn_id)

        elif msg_type == m.JOIN_ROOM:
            await self._join_room(conn_id, frame.get("roomCode"))

        elif msg_type in m.SIGNALING_FRAMES:
            room = self.registry.room_for(conn_id)
            peer = room.peer_of(conn_id) if room else None
            if peer:
                await self._send(peer, {**frame, "from": conn_id})

        elif msg_type == m.REMOTE_MESSAGE:
            room = self.registry.room_for(conn_id)
            # Application messages only flow phone → desktop
            if room and room.client_id == conn_id:
                self.registry.touch(room.code)
                await self._send(room.host_id, {"type": m.REMOTE_MESSAGE, "message": frame.get("message")})
            else:
                logger.debug(f"Dropped remote-message from unbound or host connection {conn_id}")

        elif msg_type == m.PING:
            await self._send(conn_id, {"type": m.PONG, "timestamp": frame.get("timestamp", time.time())})

        elif msg_type == m.PONG:
            pass

        else:
            logger.warning(f"Ignoring unknown frame type {msg_type!r} from {conn_id}")

    async def _create_room(self, conn_id: str):
        current = self.registry.room_for(conn_id)
        if current and current.client_id == conn_id:
            await self._send(conn_id, {
                "type": m.ROOM_CREATED,
                "success": False,
                "error": "Connection is already a client of another room",
            })
            return

        room, orphaned = self.registry.regenerate_room(conn_id)
        await self._send(conn_id, {"type": m.ROOM_CREATED, "success": True, "roomCode": room.code})
        for old in orphaned:
            if old.client_id:
                await self._send(old.client_id, {"type": m.PEER_DISCONNECTED})

    async def _join_room(self, conn_id: str, code):
        if not isinstance(code, str) or not code.strip():
            await self._send(conn_id, {**JoinError("").to_reply(), "type": m.ROOM_JOINED})
            return

        current = self.registry.room_for(conn_id)
        if current is not None:
            logger.info(f"Connection {conn_id} tried to join {code} while in room {current.code}")
            await self._send(conn_id, {**JoinError(code).to_reply(), "type": m.ROOM_JOINED})
            return

        try:
            room = self.registry.join_room(code, conn_id)
        except JoinError as e:
            await self._send(conn_id, {**e.to_reply(), "type": m.ROOM_JOINED})
            return

        await self._send(conn_id, {"type": m.ROOM_JOINED, "success": True,
                                   "roomCode": room.code, "hostId": room.host_id})
        await self._send(room.host_id, {"type": m.CLIENT_JOINED, "socketId": conn_id})

    async def expire(self, rooms: list[Room]):
        """Tell participants of swept rooms that their code is gone."""
        for room in rooms:
            await self._send(room.host_id, {"type": m.ROOM_EXPIRED, "roomCode": room.code})
            if room.client_id:
                await self._send(room.client_id, {"type": m.PEER_DISCONNECTED})

    async def sweep(self) -> list[Room]:
        expired = self.registry.sweep_expired()
        if expired:
            await self.expire(expired)
        return expired

    async def _send(self, conn_id: Optional[str], frame: dict) -> bool:
        """Send a frame to a participant. Missing or broken targets are skipped."""
        conn = self._connections.get(conn_id) if conn_id else None
        if conn is None:
            logger.debug(f"No connection for {conn_id}; dropped {frame.get('type')}")
            return False
        try:
            await conn.send_json(frame)
            return True
        except Exception as e:
            logger.debug(f"Send to {conn_id} failed ({e}); dropped {frame.get('type')}")
            return False
