"""Desktop side of a pairing session.

The host holds one relay link, owns one room at a time and hands every
remote-message from its phone to the dispatcher. Host states:

- disconnected: no relay link
- connecting: room issued, waiting for a phone
- connected: a phone is bound to the room
- error: the relay could not be reached or refused the room
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import urlencode

from .. import config
from .. import messages as m
from ..errors import RemoteError, TransportUnavailable
from ..events import Subscribers
from ..link import ConnectionState, Link
from .dispatch import Dispatcher

logger = logging.getLogger("desktop.host")


@dataclass(frozen=True)
class Pairing:
    room_code: str
    remote_url: str
    server_url: str

    def to_dict(self) -> dict:
        return {"roomCode": self.room_code, "remoteUrl": self.remote_url, "serverUrl": self.server_url}


def build_pairing_url(web_remote_url: str, server_url: str, room_code: str,
                      default_relay_url: str = config.DEFAULT_RELAY_URL) -> str:
    """URL the phone opens to join. The server is left out when it is the default."""
    base = web_remote_url.rstrip("/")
    if server_url.rstrip("/") == default_relay_url.rstrip("/"):
        return f"{base}/{room_code}"
    return f"{base}?{urlencode({'server': server_url, 'room': room_code})}"


class HostSession:
    def __init__(
        self,
        link_factory: Callable[[], Link],
        dispatcher: Dispatcher,
        web_remote_url: str = config.WEB_REMOTE_URL,
        default_relay_url: str = config.DEFAULT_RELAY_URL,
        request_timeout_s: float = config.CONNECT_TIMEOUT_S,
    ):
        self.link_factory = link_factory
        self.dispatcher = dispatcher
        self.web_remote_url = web_remote_url
        self.default_relay_url = default_relay_url
        self.request_timeout_s = request_timeout_s

        self.state = ConnectionState.DISCONNECTED
        self.error: Optional[str] = None
        self.pairing: Optional[Pairing] = None
        self.server_url: Optional[str] = None
        self.peer_id: Optional[str] = None
        self._link: Optional[Link] = None
        self._unsubscribe: list[Callable[[], None]] = []
        self._regenerate_task: Optional[asyncio.Task] = None

        self._pairing_changed = Subscribers("host.pairing")
        self._state_changed = Subscribers("host.state")
        self._signaling = Subscribers("host.signaling")

    @property
    def attached(self) -> bool:
        return self._link is not None and self._link.is_open

    def on_pairing(self, callback: Callable[[Pairing], object]) -> Callable[[], None]:
        return self._pairing_changed.subscribe(callback)

    def on_state_changed(self, callback: Callable[[ConnectionState], object]) -> Callable[[], None]:
        return self._state_changed.subscribe(callback)

    def on_signaling(self, callback: Callable[[dict], object]) -> Callable[[], None]:
        """Offer/answer/ice-candidate frames from the bound phone."""
        return self._signaling.subscribe(callback)

    def _set_state(self, state: ConnectionState, error: Optional[str] = None):
        self.error = error
        if state == self.state:
            return
        logger.info(f"Host state: {self.state.value} -> {state.value}")
        self.state = state
        self._state_changed.emit(state)

    async def start(self, server_url: str) -> Pairing:
        """Attach to the relay and issue the first room for server_url."""
        self.server_url = server_url
        if not self.attached:
            await self._attach()
        return await self.regenerate()

    async def restart(self, server_url: str) -> Pairing:
        """The advertised relay URL changed; issue a room and URL for it."""
        logger.info(f"Relay URL changed to {server_url}")
        return await self.start(server_url)

    async def _attach(self):
        link = self.link_factory()
        try:
            await link.open(timeout=self.request_timeout_s)
        except RemoteError as e:
            self._set_state(ConnectionState.ERROR, str(e))
            raise
        self._link = link
        self._unsubscribe = [link.on_frame(self._on_frame), link.on_closed(self._on_closed)]

    async def regenerate(self) -> Pairing:
        """Invalidate the current code and mint a new one."""
        if self._link is None:
            raise TransportUnavailable("Host is not attached to a relay")
        try:
            reply = await self._link.request({"type": m.CREATE_ROOM}, m.ROOM_CREATED, self.request_timeout_s)
        except RemoteError as e:
            self._set_state(ConnectionState.ERROR, str(e))
            raise
        if not reply.get("success"):
            error = reply.get("error") or "Room creation refused"
            self._set_state(ConnectionState.ERROR, error)
            raise RemoteError(error)

        code = reply["roomCode"]
        self.peer_id = None
        self.pairing = Pairing(
            room_code=code,
            remote_url=build_pairing_url(self.web_remote_url, self.server_url, code, self.default_relay_url),
            server_url=self.server_url,
        )
        logger.info(f"Room code: {code}")
        logger.info(f"Remote URL: {self.pairing.remote_url}")
        self._set_state(ConnectionState.CONNECTING)
        self._pairing_changed.emit(self.pairing)
        return self.pairing

    async def send_signal(self, frame: dict):
        """Send an offer/answer/ice-candidate frame to the bound phone."""
        if frame.get("type") not in m.SIGNALING_FRAMES:
            raise ValueError(f"Not a signaling frame: {frame.get('type')!r}")
        if self._link is None:
            raise TransportUnavailable("Host is not attached to a relay")
        await self._link.send(frame)

    def _on_frame(self, frame: dict):
        msg_type = frame.get("type")

        if msg_type == m.REMOTE_MESSAGE:
            self.dispatcher.dispatch(frame.get("message"))

        elif msg_type == m.CLIENT_JOINED:
            self.peer_id = frame.get("socketId")
            logger.info(f"Client joined: {self.peer_id}")
            self._set_state(ConnectionState.CONNECTED)

        elif msg_type == m.PEER_DISCONNECTED:
            logger.info("Peer disconnected")
            self.peer_id = None
            if self.pairing is not None:
                self._set_state(ConnectionState.CONNECTING)

        elif msg_type == m.ROOM_EXPIRED:
            if self.pairing and frame.get("roomCode") == self.pairing.room_code:
                logger.info(f"Room {self.pairing.room_code} expired; issuing a new code")
                self._regenerate_task = asyncio.ensure_future(self._regenerate_quietly())

        elif msg_type in m.SIGNALING_FRAMES:
            # Stale or foreign senders are ignored
            if self.peer_id and frame.get("from") == self.peer_id:
                self._signaling.emit(frame)

        elif msg_type == m.PONG:
            pass

        else:
            logger.debug(f"Ignoring frame {msg_type!r}")

    async def _regenerate_quietly(self):
        try:
            await self.regenerate()
        except RemoteError as e:
            logger.error(f"Could not replace expired room: {e}")

    def _on_closed(self):
        logger.warning("Relay link closed")
        self._detach()
        self.peer_id = None
        self._set_state(ConnectionState.DISCONNECTED)

    def _detach(self):
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        self._link = None

    async def stop(self):
        task, self._regenerate_task = self._regenerate_task, None
        if task is not None and not task.done():
            task.cancel()
        link = self._link
        self._detach()
        if link is not None:
            await link.close()
        self.pairing = None
        self.peer_id = None
        self._set_state(ConnectionState.DISCONNECTED)
