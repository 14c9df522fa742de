"""Transport strategy selection for the desktop host.

The embedded relay server always runs. The URL advertised to the phone is,
in order of preference: a reachable hosted relay, a public tunnel to the
embedded server, or the embedded server's localhost URL (local-only mode,
phone on the same network).
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

import httpx

from .. import config
from ..errors import TransportUnavailable
from ..events import Subscribers
from .tunnel import Tunnel, TunnelBinding

logger = logging.getLogger("desktop.transport")


class TransportState(str, Enum):
    IDLE = "idle"
    STARTING_LOCAL_SERVER = "starting_local_server"
    HOSTED_RELAY = "hosted_relay"
    AWAITING_TUNNEL = "awaiting_tunnel"
    READY = "ready"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


class TransportMode(str, Enum):
    HOSTED = "hosted"
    TUNNEL = "tunnel"
    LOCAL = "local"


class RelayServer(Protocol):
    port: int

    async def start(self) -> None: ...
    async def stop(self) -> None: ...


class TunnelProvider(Protocol):
    async def open(self, port: int) -> Tunnel: ...


async def probe_health(url: str, timeout: float = 3.0) -> bool:
    """True if a relay answers its liveness endpoint."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.get(f"{url.rstrip('/')}/health")
            return resp.status_code == 200
    except httpx.HTTPError as e:
        logger.info(f"Hosted relay {url} unreachable: {e}")
        return False


class TransportSelector:
    def __init__(
        self,
        server: RelayServer,
        tunnel_provider: Optional[TunnelProvider] = None,
        hosted_relay_url: str = config.HOSTED_RELAY_URL,
        max_attempts: int = config.TUNNEL_MAX_ATTEMPTS,
        retry_delay_s: float = config.TUNNEL_RETRY_DELAY_S,
        probe: Callable[[str], Awaitable[bool]] = probe_health,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self.server = server
        self.tunnel_provider = tunnel_provider
        self.hosted_relay_url = hosted_relay_url
        self.max_attempts = max_attempts
        self.retry_delay_s = retry_delay_s
        self._probe = probe
        self._sleep = sleep

        self.state = TransportState.IDLE
        self.mode: Optional[TransportMode] = None
        self.binding: Optional[TunnelBinding] = None
        self._url: Optional[str] = None
        self._tunnel: Optional[Tunnel] = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._stop_requested = False
        self._url_changed = Subscribers("transport.url_changed")
        self._state_changed = Subscribers("transport.state_changed")

    @property
    def port(self) -> int:
        return self.server.port

    @property
    def local_url(self) -> str:
        return f"http://localhost:{self.port}"

    @property
    def local_only(self) -> bool:
        return self.mode == TransportMode.LOCAL

    def get_current_url(self) -> Optional[str]:
        return self._url

    def on_url_changed(self, callback: Callable[[str], object]) -> Callable[[], None]:
        return self._url_changed.subscribe(callback)

    def on_state_changed(self, callback: Callable[[TransportState], object]) -> Callable[[], None]:
        return self._state_changed.subscribe(callback)

    def _set_state(self, state: TransportState):
        if state == self.state:
            return
        logger.debug(f"Transport {self.state.value} -> {state.value}")
        self.state = state
        self._state_changed.emit(state)

    async def start(self) -> str:
        """Bring up the local server and pick the advertised URL."""
        if self.state not in (TransportState.IDLE, TransportState.STOPPED):
            return self._url
        self._stop_requested = False

        self._set_state(TransportState.STARTING_LOCAL_SERVER)
        try:
            await self.server.start()
        except TransportUnavailable:
            self._set_state(TransportState.STOPPED)
            raise

        if self.hosted_relay_url and await self._probe(self.hosted_relay_url):
            self._set_state(TransportState.HOSTED_RELAY)
            self.mode = TransportMode.HOSTED
            self._url = self.hosted_relay_url
            logger.info(f"Using hosted relay: {self._url}")
            self._set_state(TransportState.READY)
            return self._url

        self._set_state(TransportState.AWAITING_TUNNEL)
        tunnel = await self._open_tunnel() if self.tunnel_provider else None
        if tunnel is not None:
            self._adopt(tunnel, attempt=0)
        else:
            logger.warning(f"No public tunnel; running in local-only mode at {self.local_url}")
            self._go_local()
        self._set_state(TransportState.READY)
        return self._url

    async def _open_tunnel(self) -> Optional[Tunnel]:
        try:
            return await self.tunnel_provider.open(self.port)
        except Exception as e:
            logger.warning(f"Failed to create tunnel: {e}")
            return None

    def _adopt(self, tunnel: Tunnel, attempt: int):
        self._tunnel = tunnel
        self.binding = TunnelBinding(local_port=self.port, public_url=tunnel.url, attempt_count=attempt)
        self.mode = TransportMode.TUNNEL
        self._url = tunnel.url
        self._monitor_task = asyncio.create_task(self._monitor(tunnel))

    def _go_local(self):
        self._tunnel = None
        self.binding = None
        self.mode = TransportMode.LOCAL
        self._url = self.local_url

    async def _monitor(self, tunnel: Tunnel):
        await tunnel.wait_closed()
        if self._stop_requested or tunnel is not self._tunnel:
            return
        logger.warning(f"Tunnel closed: {tunnel.url}")
        await self._reconnect()

    async def _reconnect(self):
        self._set_state(TransportState.RECONNECTING)
        for attempt in range(1, self.max_attempts + 1):
            logger.info(f"Attempting to reconnect tunnel (attempt {attempt}/{self.max_attempts})...")
            tunnel = await self._open_tunnel()
            if self._stop_requested:
                if tunnel is not None:
                    await tunnel.close()
                return
            if tunnel is not None:
                self._adopt(tunnel, attempt=attempt)
                self._set_state(TransportState.READY)
                logger.info(f"Tunnel reconnected: {tunnel.url}")
                self._url_changed.emit(self._url)
                return
            if attempt < self.max_attempts:
                await self._sleep(self.retry_delay_s)

        logger.error(f"Max tunnel reconnect attempts reached; continuing in local-only mode at {self.local_url}")
        self._go_local()
        self._set_state(TransportState.READY)
        self._url_changed.emit(self._url)

    async def disconnect(self):
        """Tear down the tunnel and the local server. Safe to call repeatedly."""
        if self.state in (TransportState.IDLE, TransportState.STOPPED):
            return
        self._stop_requested = True

        task, self._monitor_task = self._monitor_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        tunnel, self._tunnel = self._tunnel, None
        if tunnel is not None:
            await tunnel.close()
        self.binding = None

        await self.server.stop()
        self._set_state(TransportState.STOPPED)
        logger.info("Transport stopped")
