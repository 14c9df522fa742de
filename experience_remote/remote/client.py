"""Phone side of a pairing session."""

import asyncio
import logging
import time
from typing import Callable, Optional
from urllib.parse import parse_qs, urlsplit

from pydantic import BaseModel

from .. import config
from .. import messages as m
from ..errors import (
    GENERIC_JOIN_ERROR, ConnectTimeout, JoinError, RemoteError, TransportUnavailable,
    join_error_from_reply,
)
from ..events import Subscribers
from ..link import ConnectionState, Link, WebSocketLink

logger = logging.getLogger("remote.client")


def parse_pairing_url(url: str) -> tuple[Optional[str], Optional[str]]:
    """Extract (server_url, room_code) from either pairing URL form.

    The server is None when the URL names none (path form).
    """
    parts = urlsplit(url)
    query = parse_qs(parts.query)
    room = query.get("room", [None])[0]
    server = query.get("server", [None])[0]
    if room is None:
        segment = parts.path.rstrip("/").rsplit("/", 1)[-1]
        room = segment or None
    return server, room.upper() if room else None


class ClientSession:
    def __init__(
        self,
        server_url: str = config.DEFAULT_RELAY_URL,
        link_factory: Callable[[str], Link] = WebSocketLink,
        connect_timeout_s: float = config.CONNECT_TIMEOUT_S,
    ):
        self.server_url = server_url
        self.link_factory = link_factory
        self.connect_timeout_s = connect_timeout_s

        self.state = ConnectionState.DISCONNECTED
        self.error: Optional[str] = None
        self.last_error: Optional[RemoteError] = None
        self.room_code: Optional[str] = None
        self.host_id: Optional[str] = None
        self._link: Optional[Link] = None
        self._unsubscribe: list[Callable[[], None]] = []
        self._state_changed = Subscribers("client.state")
        self._signaling = Subscribers("client.signaling")

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def on_state_changed(self, callback: Callable[[ConnectionState], object]) -> Callable[[], None]:
        return self._state_changed.subscribe(callback)

    def on_signaling(self, callback: Callable[[dict], object]) -> Callable[[], None]:
        """Offer/answer/ice-candidate frames from the room's desktop."""
        return self._signaling.subscribe(callback)

    def _set_state(self, state: ConnectionState, error: Optional[str] = None):
        self.error = error
        if state == self.state:
            return
        logger.info(f"Client state: {self.state.value} -> {state.value}")
        self.state = state
        self._state_changed.emit(state)

    async def connect(self, code: str, server_url: Optional[str] = None) -> bool:
        """Connect to the relay and join room code. Call again to retry.

        Returns True once connected. On failure the session is left in the
        error state with a user-facing message in .error.
        """
        await self._teardown()
        self.host_id = None
        if server_url:
            self.server_url = server_url
        self.room_code = code.strip().upper()
        self.last_error = None
        self._set_state(ConnectionState.CONNECTING)

        link = self.link_factory(self.server_url)
        try:
            await asyncio.wait_for(self._open_and_join(link), timeout=self.connect_timeout_s)
        except asyncio.TimeoutError:
            await self._fail(link, ConnectTimeout(f"Connecting to room {self.room_code} timed out"))
            return False
        except RemoteError as e:
            await self._fail(link, e)
            return False

        self._link = link
        self._unsubscribe = [link.on_frame(self._on_frame), link.on_closed(self._on_closed)]
        logger.info(f"Joined room {self.room_code}")
        self._set_state(ConnectionState.CONNECTED)
        return True

    async def _open_and_join(self, link: Link):
        await link.open(timeout=self.connect_timeout_s)
        reply = await link.request(
            {"type": m.JOIN_ROOM, "roomCode": self.room_code}, m.ROOM_JOINED, self.connect_timeout_s,
        )
        if not reply.get("success"):
            raise join_error_from_reply(self.room_code, reply)
        self.host_id = reply.get("hostId")

    async def _fail(self, link: Link, error: RemoteError):
        logger.warning(f"Connect failed: {error}")
        self.last_error = error
        try:
            await link.close()
        except RemoteError as e:
            logger.debug(f"Error closing failed link: {e}")
        if isinstance(error, JoinError):
            message = GENERIC_JOIN_ERROR
        elif isinstance(error, ConnectTimeout):
            message = "Connection timed out. Check the code and try again."
        else:
            message = "Could not reach the desktop. Check your network and try again."
        self._set_state(ConnectionState.ERROR, message)

    async def retry(self) -> bool:
        if self.room_code is None:
            return False
        return await self.connect(self.room_code)

    async def send(self, message) -> bool:
        """Send one relay message to the desktop. Dropped when not connected."""
        if not self.connected or self._link is None:
            return False
        payload = m.dump_message(message) if isinstance(message, BaseModel) else message
        try:
            await self._link.send({"type": m.REMOTE_MESSAGE, "message": payload})
            return True
        except TransportUnavailable as e:
            logger.warning(f"Send failed: {e}")
            return False

    async def send_signal(self, frame: dict):
        if frame.get("type") not in m.SIGNALING_FRAMES:
            raise ValueError(f"Not a signaling frame: {frame.get('type')!r}")
        if self._link is None:
            raise TransportUnavailable("Not connected")
        await self._link.send(frame)

    async def ping(self) -> float:
        """Round trip to the relay in milliseconds."""
        if self._link is None:
            raise TransportUnavailable("Not connected")
        sent = time.time()
        await self._link.request({"type": m.PING, "timestamp": sent}, m.PONG, self.connect_timeout_s)
        return (time.time() - sent) * 1000

    async def _on_frame(self, frame: dict):
        msg_type = frame.get("type")
        if msg_type == m.PEER_DISCONNECTED:
            logger.info("Desktop disconnected")
            await self.disconnect()
        elif msg_type in m.SIGNALING_FRAMES:
            # Only the desktop that owns the joined room may signal
            if self.host_id and frame.get("from") == self.host_id:
                self._signaling.emit(frame)

    def _on_closed(self):
        logger.warning("Relay connection lost")
        self._detach()
        self._set_state(ConnectionState.DISCONNECTED)

    def _detach(self):
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        self._link = None

    async def _teardown(self):
        link = self._link
        self._detach()
        if link is not None:
            await link.close()

    async def disconnect(self):
        await self._teardown()
        self._set_state(ConnectionState.DISCONNECTED)
