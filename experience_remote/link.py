"""Links: one participant's duplex frame connection to a relay channel.

A link carries JSON frames ({"type": ...}) in both directions. Replies to
room calls are matched by frame type with request(); everything else is
delivered to on_frame subscribers in arrival order.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional
from urllib.parse import urlsplit, urlunsplit

import websockets

from .errors import ConnectTimeout, TransportUnavailable
from .events import Subscribers
from .relay.channel import RelayChannel, new_connection_id

logger = logging.getLogger("link")


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


def to_ws_url(server_url: str) -> str:
    """Map an http(s) relay base URL to its WebSocket endpoint."""
    parts = urlsplit(server_url.rstrip("/"))
    scheme = {"http": "ws", "https": "wss"}.get(parts.scheme, parts.scheme)
    return urlunsplit((scheme, parts.netloc, parts.path + "/ws", "", ""))


class Link(ABC):
    """Shared reply matching and event plumbing for link implementations."""

    def __init__(self):
        self._frames = Subscribers("link.frame")
        self._closed = Subscribers("link.closed")
        self._waiters: dict[str, list[asyncio.Future]] = {}
        self._is_open = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    def on_frame(self, callback: Callable[[dict], object]) -> Callable[[], None]:
        return self._frames.subscribe(callback)

    def on_closed(self, callback: Callable[[], object]) -> Callable[[], None]:
        return self._closed.subscribe(callback)

    @abstractmethod
    async def open(self, timeout: float): ...

    @abstractmethod
    async def send(self, frame: dict): ...

    @abstractmethod
    async def close(self): ...

    async def request(self, frame: dict, reply_type: str, timeout: float) -> dict:
        """Send a frame and wait for the next frame of reply_type."""
        future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(reply_type, []).append(future)
        try:
            await self.send(frame)
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise ConnectTimeout(f"No {reply_type} reply within {timeout}s")
        finally:
            waiters = self._waiters.get(reply_type, [])
            if future in waiters:
                waiters.remove(future)

    def _deliver(self, frame: dict):
        waiters = self._waiters.get(frame.get("type"))
        if waiters:
            future = waiters.pop(0)
            if not future.done():
                future.set_result(frame)
                return
        self._frames.emit(frame)

    def _mark_closed(self):
        if not self._is_open:
            return
        self._is_open = False
        for waiters in self._waiters.values():
            for future in waiters:
                if not future.done():
                    future.set_exception(TransportUnavailable("Link closed"))
        self._waiters.clear()
        self._closed.emit()


class WebSocketLink(Link):
    """Connection to a relay server's /ws endpoint."""

    def __init__(self, server_url: str):
        super().__init__()
        self.server_url = server_url
        self.ws_url = to_ws_url(server_url)
        self._ws = None
        self._reader: Optional[asyncio.Task] = None

    async def open(self, timeout: float):
        try:
            self._ws = await asyncio.wait_for(websockets.connect(self.ws_url), timeout=timeout)
        except asyncio.TimeoutError:
            raise ConnectTimeout(f"Connecting to {self.server_url} timed out after {timeout}s")
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise TransportUnavailable(f"Cannot reach relay at {self.server_url}: {e}") from e

        self._is_open = True
        self._reader = asyncio.create_task(self._read_loop(self._ws))
        logger.info(f"Connected to relay at {self.ws_url}")

    async def _read_loop(self, ws):
        try:
            async for raw in ws:
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Ignoring non-JSON frame from relay")
                    continue
                if isinstance(frame, dict):
                    self._deliver(frame)
        except websockets.ConnectionClosed:
            pass
        except Exception as e:
            logger.error(f"Relay link reader error: {e}")
        finally:
            self._mark_closed()

    async def send(self, frame: dict):
        if not self._is_open or self._ws is None:
            raise TransportUnavailable("Link is not open")
        try:
            await self._ws.send(json.dumps(frame))
        except websockets.ConnectionClosed as e:
            raise TransportUnavailable(f"Relay connection closed: {e}") from e

    async def close(self):
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing relay link: {e}")
        if self._reader is not None:
            try:
                await asyncio.wait_for(self._reader, timeout=2.0)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                self._reader.cancel()
            self._reader = None
        self._mark_closed()


class LocalLink(Link):
    """In-process connection to a RelayChannel running in the same loop."""

    def __init__(self, channel: RelayChannel):
        super().__init__()
        self.channel = channel
        self.conn_id = new_connection_id()

    async def open(self, timeout: float = 0):
        if self._is_open:
            return
        self.channel.connect(self)
        self._is_open = True

    async def send_json(self, frame: dict):
        # Called by the channel when it routes a frame to this participant
        self._deliver(frame)

    async def send(self, frame: dict):
        if not self._is_open:
            raise TransportUnavailable("Link is not open")
        await self.channel.handle(self.conn_id, frame)

    async def close(self):
        if not self._is_open:
            return
        await self.channel.disconnect(self.conn_id)
        self._mark_closed()
