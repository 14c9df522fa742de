"""Desktop process: embedded relay, transport selection, pairing and dispatch.

Run with: python -m experience_remote.desktop
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Awaitable, Callable, Optional

from .. import config
from ..errors import RemoteError, TransportUnavailable
from ..link import ConnectionState, LocalLink, WebSocketLink
from ..relay.channel import RelayChannel
from ..relay.rooms import RoomRegistry
from ..relay.server import LocalRelayServer, create_app
from .dispatch import Dispatcher
from .host import HostSession, Pairing
from .sinks import InputSink, OscTriggerSink, PyAutoGUIInputSink, TriggerSink
from .transport import TransportMode, TransportSelector, TunnelProvider
from .tunnel import SubprocessTunnelProvider

logger = logging.getLogger("desktop.app")


class DesktopApp:
    def __init__(
        self,
        input_sink: Optional[InputSink],
        trigger_sink: Optional[TriggerSink],
        tunnel_provider: Optional[TunnelProvider] = None,
        port: int = config.RELAY_PORT,
        host: str = config.RELAY_HOST,
        hosted_relay_url: str = config.HOSTED_RELAY_URL,
        web_remote_url: str = config.WEB_REMOTE_URL,
        server=None,
        reattach_attempts: int = config.RELAY_REATTACH_ATTEMPTS,
        reattach_delay_s: float = config.RELAY_REATTACH_DELAY_S,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self.registry = RoomRegistry()
        self.channel = RelayChannel(self.registry)
        self.server = server or LocalRelayServer(
            create_app(channel=self.channel, service_name="experience-remote-desktop"), host, port,
        )
        self.transport = TransportSelector(self.server, tunnel_provider, hosted_relay_url)
        self.trigger_sink = trigger_sink
        self.dispatcher = Dispatcher(input_sink, trigger_sink)
        self.host = HostSession(self._make_link, self.dispatcher, web_remote_url)
        self.reattach_attempts = reattach_attempts
        self.reattach_delay_s = reattach_delay_s
        self._sleep = sleep
        self._reattach_task: Optional[asyncio.Task] = None
        self._stopping = False
        self._unsubscribe = []

    def _make_link(self):
        # The desktop talks to its own embedded relay in-process
        if self.transport.mode == TransportMode.HOSTED:
            return WebSocketLink(self.transport.get_current_url())
        return LocalLink(self.channel)

    async def start(self) -> Pairing:
        self._stopping = False
        url = await self.transport.start()
        pairing = await self.host.start(url)
        self._unsubscribe.append(self.transport.on_url_changed(self._on_url_changed))
        self._unsubscribe.append(self.host.on_state_changed(self._on_host_state))
        return pairing

    async def _on_url_changed(self, url: str):
        await self.host.restart(url)

    def _on_host_state(self, state: ConnectionState):
        if state != ConnectionState.DISCONNECTED or self._stopping:
            return
        if self.reattach_attempts > 0 and self._reattach_task is None:
            self._reattach_task = asyncio.ensure_future(self._reattach())

    async def _reattach(self):
        """Re-join the relay after the host's link dropped."""
        try:
            for attempt in range(1, self.reattach_attempts + 1):
                await self._sleep(self.reattach_delay_s)
                if self._stopping or self.host.attached:
                    return
                logger.info(f"Re-attaching to relay (attempt {attempt}/{self.reattach_attempts})...")
                try:
                    await self.host.start(self.transport.get_current_url())
                    return
                except RemoteError as e:
                    logger.warning(f"Re-attach failed: {e}")
            logger.error("Could not re-attach to the relay; regenerate the room to retry")
        finally:
            self._reattach_task = None

    async def _cancel_reattach(self):
        task, self._reattach_task = self._reattach_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def room_data(self) -> Optional[dict]:
        if self.host.pairing is None:
            return None
        return {**self.host.pairing.to_dict(), "state": self.host.state.value}

    def settings(self) -> dict:
        return {"oscHost": config.get_setting("osc_host"), "oscPort": config.get_setting("osc_port")}

    def update_osc_settings(self, host: str, port: int, persist: bool = False) -> dict:
        config.update_setting("osc_host", host)
        config.update_setting("osc_port", int(port))
        if isinstance(self.trigger_sink, OscTriggerSink):
            self.trigger_sink.update_settings(host, int(port))
        if persist:
            config.persist_settings()
        return self.settings()

    async def reconnect(self) -> Optional[dict]:
        """Attach to the current relay URL again and issue a fresh room."""
        await self._cancel_reattach()
        await self.host.start(self.transport.get_current_url())
        return self.room_data()

    async def regenerate_room(self) -> Optional[dict]:
        if not self.host.attached:
            return await self.reconnect()
        await self.host.regenerate()
        return self.room_data()

    async def stop(self):
        self._stopping = True
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        await self._cancel_reattach()
        await self.host.stop()
        await self.transport.disconnect()


def _print_pairing(pairing: Pairing):
    print()
    print(f"  Room code:  {pairing.room_code}")
    print(f"  Remote URL: {pairing.remote_url}")
    print()


def _create_sinks() -> tuple[Optional[InputSink], Optional[TriggerSink]]:
    input_sink = trigger_sink = None
    try:
        input_sink = PyAutoGUIInputSink()
        logger.info("Input controller initialized")
    except Exception as e:
        logger.error(f"Failed to initialize input controller: {e}")
    try:
        trigger_sink = OscTriggerSink()
    except OSError as e:
        logger.error(f"Failed to initialize OSC client: {e}")
    return input_sink, trigger_sink


async def run():
    input_sink, trigger_sink = _create_sinks()
    provider = SubprocessTunnelProvider() if config.TUNNEL_ENABLED else None
    app = DesktopApp(input_sink, trigger_sink, tunnel_provider=provider)

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    app.host.on_pairing(_print_pairing)
    logger.info(f"experience-remote desktop starting (pid={os.getpid()})")
    try:
        await app.start()
        await shutdown.wait()
    except TransportUnavailable as e:
        logger.error(f"Cannot start: {e}")
    finally:
        logger.info("Shutting down...")
        await app.stop()


def main():
    try:
        import setproctitle
        setproctitle.setproctitle("experience-remote")
    except ImportError:
        pass

    config.LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
        handlers=[
            logging.FileHandler(config.LOG_DIR / "desktop.log"),
            logging.StreamHandler(sys.stdout),
        ],
    )
    asyncio.run(run())
