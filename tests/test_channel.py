"""
Module: test_channel.py
Purpose: Relay channel routing between a room's host and client

Coverage:
- create-room / join-room replies and client-joined notification
- remote-message forwarding direction
- Signaling forwarding with sender identity
- Disconnect notifications and room-expired
- Ping/pong and silent drops
"""

import pytest

from experience_remote import messages as m
from experience_remote.link import LocalLink
from experience_remote.relay.channel import RelayChannel
from experience_remote.relay.rooms import RoomRegistry


class Recorder:
    def __init__(self, link: LocalLink):
        self.frames = []
        link.on_frame(self.frames.append)

    def types(self):
        return [f["type"] for f in self.frames]


async def open_pair(channel: RelayChannel):
    host, phone = LocalLink(channel), LocalLink(channel)
    await host.open()
    await phone.open()
    return host, phone, Recorder(host), Recorder(phone)


async def pair(channel: RelayChannel):
    host, phone, host_rec, phone_rec = await open_pair(channel)
    created = await host.request({"type": m.CREATE_ROOM}, m.ROOM_CREATED, 1)
    joined = await phone.request(
        {"type": m.JOIN_ROOM, "roomCode": created["roomCode"]}, m.ROOM_JOINED, 1,
    )
    assert joined["success"] is True
    return host, phone, host_rec, phone_rec, created["roomCode"]


@pytest.fixture
def fixed_channel(clock):
    return RelayChannel(RoomRegistry(clock=clock, code_factory=lambda: "A7F3K9"))


class TestRoomCalls:

    @pytest.mark.asyncio
    async def test_create_and_join(self, fixed_channel):
        host, phone, host_rec, _ = await open_pair(fixed_channel)

        created = await host.request({"type": m.CREATE_ROOM}, m.ROOM_CREATED, 1)
        assert created == {"type": m.ROOM_CREATED, "success": True, "roomCode": "A7F3K9"}

        joined = await phone.request({"type": m.JOIN_ROOM, "roomCode": "a7f3k9"}, m.ROOM_JOINED, 1)
        assert joined["success"] is True
        assert joined["roomCode"] == "A7F3K9"
        assert joined["hostId"] == host.conn_id
        assert host_rec.frames == [{"type": m.CLIENT_JOINED, "socketId": phone.conn_id}]

    @pytest.mark.asyncio
    async def test_join_unknown_room(self, channel):
        _, phone, _, _ = await open_pair(channel)
        reply = await phone.request({"type": m.JOIN_ROOM, "roomCode": "ZZZZZZ"}, m.ROOM_JOINED, 1)
        assert reply["success"] is False
        assert reply["reason"] == "not_found"
        assert "may have expired" in reply["error"]

    @pytest.mark.asyncio
    async def test_join_missing_code(self, channel):
        _, phone, _, _ = await open_pair(channel)
        reply = await phone.request({"type": m.JOIN_ROOM}, m.ROOM_JOINED, 1)
        assert reply["success"] is False

    @pytest.mark.asyncio
    async def test_second_phone_refused(self, channel):
        host, phone, _, _, code = await pair(channel)
        intruder = LocalLink(channel)
        await intruder.open()
        reply = await intruder.request({"type": m.JOIN_ROOM, "roomCode": code}, m.ROOM_JOINED, 1)
        assert reply["success"] is False
        assert reply["reason"] == "already_bound"

    @pytest.mark.asyncio
    async def test_regenerate_orphans_phone(self, channel):
        host, phone, _, phone_rec, code = await pair(channel)

        created = await host.request({"type": m.CREATE_ROOM}, m.ROOM_CREATED, 1)

        assert created["roomCode"] != code
        assert phone_rec.types() == [m.PEER_DISCONNECTED]
        assert channel.registry.get(code) is None

    @pytest.mark.asyncio
    async def test_client_cannot_create_room(self, channel):
        _, phone, _, _, _ = await pair(channel)
        reply = await phone.request({"type": m.CREATE_ROOM}, m.ROOM_CREATED, 1)
        assert reply["success"] is False


class TestForwarding:

    @pytest.mark.asyncio
    async def test_remote_message_reaches_host_in_order(self, channel):
        host, phone, host_rec, _, _ = await pair(channel)
        host_rec.frames.clear()

        for i in range(5):
            await phone.send({"type": m.REMOTE_MESSAGE, "message": {"type": "mouse_move", "dx": i, "dy": 0}})

        assert [f["message"]["dx"] for f in host_rec.frames] == [0, 1, 2, 3, 4]
        assert all(f["type"] == m.REMOTE_MESSAGE for f in host_rec.frames)

    @pytest.mark.asyncio
    async def test_remote_message_from_host_dropped(self, channel):
        host, phone, _, phone_rec, _ = await pair(channel)
        await host.send({"type": m.REMOTE_MESSAGE, "message": {"type": "click", "button": "left"}})
        assert phone_rec.frames == []

    @pytest.mark.asyncio
    async def test_remote_message_unbound_dropped(self, channel):
        stray = LocalLink(channel)
        await stray.open()
        await stray.send({"type": m.REMOTE_MESSAGE, "message": {"type": "click"}})

    @pytest.mark.asyncio
    async def test_signaling_tagged_with_sender(self, channel):
        host, phone, host_rec, phone_rec, _ = await pair(channel)
        host_rec.frames.clear()

        await phone.send({"type": m.OFFER, "sdp": "v=0"})
        await host.send({"type": m.ANSWER, "sdp": "v=1"})
        await host.send({"type": m.ICE_CANDIDATE, "candidate": {"sdpMid": "0"}})

        assert host_rec.frames == [{"type": m.OFFER, "sdp": "v=0", "from": phone.conn_id}]
        assert phone_rec.frames == [
            {"type": m.ANSWER, "sdp": "v=1", "from": host.conn_id},
            {"type": m.ICE_CANDIDATE, "candidate": {"sdpMid": "0"}, "from": host.conn_id},
        ]

    @pytest.mark.asyncio
    async def test_ping_pong(self, channel):
        link = LocalLink(channel)
        await link.open()
        reply = await link.request({"type": m.PING, "timestamp": 12.5}, m.PONG, 1)
        assert reply == {"type": m.PONG, "timestamp": 12.5}

    @pytest.mark.asyncio
    async def test_unknown_frame_ignored(self, channel):
        link = LocalLink(channel)
        rec = Recorder(link)
        await link.open()
        await link.send({"type": "bogus"})
        assert rec.frames == []


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_phone_leaving_notifies_host(self, channel):
        host, phone, host_rec, _, code = await pair(channel)
        host_rec.frames.clear()

        await phone.close()

        assert host_rec.types() == [m.PEER_DISCONNECTED]
        assert channel.registry.get(code).client_id is None
        assert not channel.is_connected(phone.conn_id)

    @pytest.mark.asyncio
    async def test_host_leaving_destroys_room(self, channel):
        host, phone, _, phone_rec, code = await pair(channel)

        await host.close()

        assert phone_rec.types() == [m.PEER_DISCONNECTED]
        assert channel.registry.get(code) is None

    @pytest.mark.asyncio
    async def test_sweep_notifies_host(self, channel, clock):
        host, phone, host_rec, phone_rec, code = await pair(channel)
        host_rec.frames.clear()
        clock.advance(601)

        expired = await channel.sweep()

        assert [r.code for r in expired] == [code]
        assert host_rec.frames == [{"type": m.ROOM_EXPIRED, "roomCode": code}]
        assert phone_rec.types() == [m.PEER_DISCONNECTED]

    @pytest.mark.asyncio
    async def test_send_to_closed_participant_is_silent(self, channel):
        host, phone, _, _, _ = await pair(channel)
        await host.close()
        # Room is gone; nothing to forward to and no error
        await phone.send({"type": m.OFFER, "sdp": "x"})
