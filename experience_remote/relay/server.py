"""Experience Remote - Relay Server

Pairs a desktop host with a phone client under a short room code and relays
events between them:
- WebSocket at /ws for room calls, signaling and remote-control messages
- REST endpoints for liveness and room diagnostics

The same app runs as the publicly hosted relay (python -m
experience_remote.relay) and embedded inside the desktop process.
"""

import asyncio
import contextlib
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import config
from ..errors import TransportUnavailable
from .channel import RelayChannel, new_connection_id
from .rooms import RoomRegistry, normalize_code

logger = logging.getLogger("relay.server")

SERVICE_NAME = "experience-remote-relay"


class WebSocketConnection:
    """Adapts a FastAPI WebSocket to the relay channel's connection interface."""

    def __init__(self, ws: WebSocket, conn_id: Optional[str] = None):
        self.ws = ws
        self.conn_id = conn_id or new_connection_id()

    async def send_json(self, frame: dict):
        await self.ws.send_text(json.dumps(frame))


def create_app(
    registry: Optional[RoomRegistry] = None,
    channel: Optional[RelayChannel] = None,
    sweep_interval_s: float = config.ROOM_SWEEP_INTERVAL_S,
    service_name: str = SERVICE_NAME,
) -> FastAPI:
    """Build the relay app around a registry and channel (fresh ones by default)."""
    if channel is None:
        channel = RelayChannel(registry or RoomRegistry())
    registry = channel.registry

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(registry.run_sweeper(sweep_interval_s, on_expired=channel.expire))
        logger.info(f"Room sweeper started (every {sweep_interval_s}s)")
        yield
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass

    app = FastAPI(title="Experience Remote Relay", lifespan=lifespan)
    app.state.registry = registry
    app.state.channel = channel

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # --- REST API ---

    @app.get("/")
    async def index():
        return JSONResponse({"status": "ok", "service": service_name})

    @app.get("/health")
    async def health():
        """Liveness probe for monitoring. Not part of the pairing protocol."""
        return JSONResponse({"status": "healthy"})

    @app.get("/api/rooms/{code}")
    async def room_status(code: str):
        room = registry.get(code)
        if room is None:
            return JSONResponse({"room_code": normalize_code(code), "live": False, "joinable": False}, status_code=404)
        return JSONResponse({**room.to_dict(), "live": True, "joinable": room.client_id is None})

    # --- WebSocket: relay channel ---

    @app.websocket("/ws")
    async def relay_ws(ws: WebSocket):
        """One participant's duplex connection. See relay.channel for the protocol."""
        await ws.accept()
        conn = WebSocketConnection(ws)
        channel.connect(conn)

        try:
            while True:
                raw = await ws.receive_text()
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"Ignoring non-JSON frame from {conn.conn_id}")
                    continue
                if not isinstance(data, dict):
                    logger.warning(f"Ignoring non-object frame from {conn.conn_id}")
                    continue
                await channel.handle(conn.conn_id, data)

        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error(f"Relay WebSocket error ({conn.conn_id}): {e}")
        finally:
            await channel.disconnect(conn.conn_id)

    return app


class _EmbeddedUvicorn(uvicorn.Server):
    """uvicorn server that leaves process signals to the host application."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self):
        pass


class LocalRelayServer:
    """Runs a relay app inside the current event loop on a fixed port."""

    def __init__(self, app: FastAPI, host: str = config.RELAY_HOST, port: int = config.RELAY_PORT):
        self.app = app
        self.host = host
        self.port = port
        self._server: Optional[_EmbeddedUvicorn] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, timeout: float = 10.0):
        if self.running:
            return
        uv_config = uvicorn.Config(self.app, host=self.host, port=self.port, log_level="warning", lifespan="on")
        self._server = _EmbeddedUvicorn(uv_config)
        self._task = asyncio.create_task(self._serve(self._server))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self._server.started:
            if self._task.done():
                self._task = None
                raise TransportUnavailable(f"Relay server failed to start on port {self.port}")
            if loop.time() > deadline:
                await self.stop()
                raise TransportUnavailable(f"Relay server did not start within {timeout}s")
            await asyncio.sleep(0.05)
        logger.info(f"Embedded relay server running on port {self.port}")

    async def _serve(self, server: _EmbeddedUvicorn):
        try:
            await server.serve()
        except SystemExit:
            # uvicorn exits the process when it cannot bind
            logger.error(f"Relay server could not bind {self.host}:{self.port}")

    async def stop(self, timeout: float = 5.0):
        if self._task is None:
            return
        task, self._task = self._task, None
        self._server.should_exit = True
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            task.cancel()
        except Exception as e:
            logger.warning(f"Relay server stopped with error: {e}")
        logger.info("Embedded relay server stopped")


app = create_app()
