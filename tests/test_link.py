"""
Module: test_link.py
Purpose: Link plumbing, and a full WebSocket pairing against an embedded relay server
"""

import asyncio
import socket

import pytest

from experience_remote import messages as m
from experience_remote.desktop.dispatch import Dispatcher
from experience_remote.desktop.host import HostSession
from experience_remote.errors import ConnectTimeout, TransportUnavailable
from experience_remote.link import ConnectionState, Link, LocalLink, WebSocketLink, to_ws_url
from experience_remote.relay.channel import RelayChannel
from experience_remote.relay.rooms import RoomRegistry
from experience_remote.relay.server import LocalRelayServer, create_app
from experience_remote.remote.client import ClientSession


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestWsUrl:

    @pytest.mark.parametrize("server, expected", [
        ("http://localhost:3001", "ws://localhost:3001/ws"),
        ("https://brave-fox.loca.lt/", "wss://brave-fox.loca.lt/ws"),
        ("https://relay.example.com/base", "wss://relay.example.com/base/ws"),
    ])
    def test_scheme_mapping(self, server, expected):
        assert to_ws_url(server) == expected


class TestLinkBase:

    def test_base_is_abstract(self):
        with pytest.raises(TypeError):
            Link()


class TestLocalLink:

    @pytest.mark.asyncio
    async def test_send_before_open(self, channel):
        link = LocalLink(channel)
        with pytest.raises(TransportUnavailable):
            await link.send({"type": m.PING, "timestamp": 1})

    @pytest.mark.asyncio
    async def test_request_timeout(self, channel):
        link = LocalLink(channel)
        await link.open()
        with pytest.raises(ConnectTimeout):
            # Nothing ever answers with this type
            await link.request({"type": m.PING, "timestamp": 1}, "never", 0.05)

    @pytest.mark.asyncio
    async def test_close_notifies_once(self, channel):
        link = LocalLink(channel)
        closed = []
        link.on_closed(lambda: closed.append(True))
        await link.open()
        await link.close()
        await link.close()
        assert closed == [True]
        assert not link.is_open
        assert not channel.is_connected(link.conn_id)

    @pytest.mark.asyncio
    async def test_unmatched_frames_go_to_subscribers(self, channel):
        link = LocalLink(channel)
        frames = []
        link.on_frame(frames.append)
        await link.open()
        await link.send({"type": m.PING, "timestamp": 3})
        assert frames == [{"type": m.PONG, "timestamp": 3}]


class TestWebSocketLink:

    @pytest.mark.asyncio
    async def test_unreachable_relay(self):
        link = WebSocketLink(f"http://127.0.0.1:{free_port()}")
        with pytest.raises(TransportUnavailable):
            await link.open(timeout=2)

    @pytest.mark.asyncio
    async def test_pairing_over_websockets(self, input_sink, trigger_sink):
        port = free_port()
        registry = RoomRegistry(code_factory=lambda: "A7F3K9")
        channel = RelayChannel(registry)
        server = LocalRelayServer(create_app(channel=channel), host="127.0.0.1", port=port)
        await server.start()
        url = f"http://127.0.0.1:{port}"

        host = HostSession(lambda: WebSocketLink(url), Dispatcher(input_sink, trigger_sink),
                           web_remote_url="https://remote.example.app", default_relay_url=url)
        phone = ClientSession(url, connect_timeout_s=5)
        try:
            pairing = await host.start(url)
            assert pairing.remote_url == "https://remote.example.app/A7F3K9"

            assert await phone.connect("a7f3k9") is True
            await phone.send({"type": "mouse_move", "dx": 5, "dy": -3})
            await phone.send({"type": "osc", "trigger": 2})

            for _ in range(100):
                if trigger_sink.sent and host.state == ConnectionState.CONNECTED:
                    break
                await asyncio.sleep(0.02)

            assert input_sink.calls == [("move_cursor", 5, -3)]
            assert trigger_sink.sent == [("/remote/osc/2", [])]
            assert host.state == ConnectionState.CONNECTED
            assert await phone.ping() >= 0
        finally:
            await phone.disconnect()
            await host.stop()
            await server.stop()
        assert not server.running


class TestLocalRelayServer:

    @pytest.mark.asyncio
    async def test_port_in_use(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen()
            port = blocker.getsockname()[1]
            server = LocalRelayServer(create_app(), host="127.0.0.1", port=port)
            with pytest.raises(TransportUnavailable):
                await server.start(timeout=5)
        assert not server.running

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        server = LocalRelayServer(create_app(), host="127.0.0.1", port=free_port())
        await server.start()
        assert server.running
        await server.stop()
        await server.stop()
        assert not server.running
