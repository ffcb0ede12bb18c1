"""호스트 세션 협상 테스트

실행: python -m pytest backend/test/test_host_session.py -v
"""

import asyncio

import pytest
from aiortc.sdp import candidate_from_sdp

from conftest import FakeCapture, FakeInjector, no_ice_servers
from screenlink.input import INJECTION_FAILED_MESSAGE
from screenlink.webrtc import (
    CAPTURE_DENIED_MESSAGE,
    ROOM_REQUIRED_MESSAGE,
    SIGNALING_ERROR_MESSAGE,
    SIGNALING_URL_REQUIRED_MESSAGE,
    ConnectionStatus,
    HostSession,
)

SRFLX = "842163049 1 udp 1677729535 203.0.113.5 51234 typ srflx raddr 10.0.0.2 rport 51234"


def _host(settings, peers, relays, capture=None, injector=None) -> HostSession:
    return HostSession(
        settings,
        capture or FakeCapture(),
        injector=injector or FakeInjector(),
        peer_factory=peers,
        relay_connector=relays,
        ice_resolver=no_ice_servers,
    )


async def _deliver(relay, *messages):
    for message in messages:
        relay.push(message)
    await relay.drain()


class TestHostStart:
    """호스트 시작/검증 테스트"""

    @pytest.mark.asyncio
    async def test_start_joins_room(self, settings, peers, relays, capture):
        host = _host(settings, peers, relays, capture=capture)
        statuses = []
        host.on_status_callback = statuses.append

        assert await host.start() is True

        assert relays.last.sent[0] == {"type": "join", "room": "AB12CD", "role": "host"}
        assert statuses == [ConnectionStatus.STARTING, ConnectionStatus.WAITING_FOR_PEER]
        pc = peers.last
        assert pc.tracks == [capture.track]
        assert [(c.label, c.ordered) for c in pc.channels] == [("control", True)]
        assert host.capture_info.width == 1920
        await host.stop()

    @pytest.mark.asyncio
    async def test_room_required(self, settings, peers, relays):
        host = _host(settings.model_copy(update={"room": ""}), peers, relays)
        assert await host.start() is False
        assert host.status == ConnectionStatus.ERROR
        assert host.error.message == ROOM_REQUIRED_MESSAGE
        assert relays.relays == []

    @pytest.mark.asyncio
    async def test_signaling_url_required(self, settings, peers, relays):
        host = _host(settings.model_copy(update={"signaling_url": "   "}), peers, relays)
        assert await host.start() is False
        assert host.error.message == SIGNALING_URL_REQUIRED_MESSAGE

    @pytest.mark.asyncio
    async def test_capture_denied(self, settings, peers, relays):
        host = _host(settings, peers, relays, capture=FakeCapture(fail=True))
        assert await host.start() is False
        assert host.status == ConnectionStatus.ERROR
        assert host.error.message == CAPTURE_DENIED_MESSAGE
        assert peers.created == []
        assert relays.relays == []

    @pytest.mark.asyncio
    async def test_relay_connect_failure(self, settings, peers, relays):
        relays.fail = True
        host = _host(settings, peers, relays)
        assert await host.start() is False
        assert host.status == ConnectionStatus.DISCONNECTED
        assert host.error.message == SIGNALING_ERROR_MESSAGE

    @pytest.mark.asyncio
    async def test_relay_dropped_before_join(self, settings, peers, relays):
        relays.drop_on_connect = True
        host = _host(settings, peers, relays)
        statuses = []
        host.on_status_callback = statuses.append

        assert await host.start() is False
        await relays.last.drain()

        assert relays.last.sent == []
        assert ConnectionStatus.WAITING_FOR_PEER not in statuses
        assert host.status == ConnectionStatus.DISCONNECTED
        await host.stop()


class TestHostNegotiation:
    """offer 생성 및 시그널 처리 테스트"""

    @pytest.mark.asyncio
    async def test_single_offer_for_joined_and_peer_joined(self, settings, peers, relays):
        host = _host(settings, peers, relays)
        await host.start()
        relay = relays.last

        await _deliver(
            relay,
            {"type": "joined", "room": "AB12CD", "role": "host", "peerPresent": True},
            {"type": "peer_joined", "role": "client"},
        )
        await host.wait_pending()

        offers = relay.signals()
        assert len(offers) == 1
        assert offers[0]["data"] == {
            "kind": "description",
            "description": {"type": "offer", "sdp": "v=0 local-offer"},
        }
        assert peers.last.offers_created == 1
        assert host.peer_present is True
        assert host.status == ConnectionStatus.NEGOTIATING
        await host.stop()

    @pytest.mark.asyncio
    async def test_no_offer_when_alone(self, settings, peers, relays):
        host = _host(settings, peers, relays)
        await host.start()
        await _deliver(relays.last, {"type": "joined", "room": "AB12CD", "role": "host", "peerPresent": False})
        await host.wait_pending()
        assert relays.last.signals() == []
        assert host.status == ConnectionStatus.WAITING_FOR_PEER
        await host.stop()

    @pytest.mark.asyncio
    async def test_offer_again_after_completion(self, settings, peers, relays):
        host = _host(settings, peers, relays)
        await host.start()
        relay = relays.last
        await _deliver(relay, {"type": "peer_joined", "role": "client"})
        await host.wait_pending()
        await _deliver(relay, {"type": "peer_joined", "role": "client"})
        await host.wait_pending()
        assert len(relay.signals()) == 2
        await host.stop()

    @pytest.mark.asyncio
    async def test_applies_answer_and_candidates(self, settings, peers, relays):
        host = _host(settings, peers, relays)
        await host.start()
        relay = relays.last
        await _deliver(
            relay,
            {"type": "signal", "from": "client",
             "data": {"kind": "description", "description": {"type": "answer", "sdp": "v=0 remote-answer"}}},
            {"type": "signal", "from": "client",
             "data": {"kind": "candidate", "candidate": {"candidate": f"candidate:{SRFLX}", "sdpMid": "0", "sdpMLineIndex": 0}}},
            {"type": "signal", "from": "client",
             "data": {"kind": "candidate", "candidate": {"candidate": "candidate:garbage"}}},
            {"type": "signal", "from": "client", "data": {"kind": "bogus"}},
        )
        pc = peers.last
        assert pc.remoteDescription.type == "answer"
        assert pc.remoteDescription.sdp == "v=0 remote-answer"
        (candidate,) = pc.candidates
        assert candidate.ip == "203.0.113.5"
        assert candidate.sdpMid == "0"
        assert candidate.sdpMLineIndex == 0
        await host.stop()

    @pytest.mark.asyncio
    async def test_forwards_local_candidates_while_relay_open(self, settings, peers, relays):
        host = _host(settings, peers, relays)
        await host.start()
        relay, pc = relays.last, peers.last

        candidate = candidate_from_sdp(SRFLX)
        candidate.sdpMid = "0"
        candidate.sdpMLineIndex = 0
        await asyncio.gather(*pc.emit("icecandidate", candidate))
        await asyncio.gather(*pc.emit("icecandidate", None))

        (signal,) = relay.signals()
        sent = signal["data"]["candidate"]
        assert signal["data"]["kind"] == "candidate"
        assert sent["candidate"].startswith("candidate:842163049 1 udp")
        assert (sent["sdpMid"], sent["sdpMLineIndex"]) == ("0", 0)

        relay.is_open = False
        await asyncio.gather(*pc.emit("icecandidate", candidate))
        assert len(relay.signals()) == 1
        await host.stop()


class TestHostStatus:
    """상태 전이 테스트"""

    @pytest.mark.asyncio
    async def test_peer_connection_state_mapping(self, settings, peers, relays):
        host = _host(settings, peers, relays)
        await host.start()
        pc = peers.last

        await asyncio.gather(*pc.set_connection_state("connected"))
        assert host.status == ConnectionStatus.CONNECTED
        await asyncio.gather(*pc.set_connection_state("failed"))
        assert host.status == ConnectionStatus.DISCONNECTED
        await asyncio.gather(*pc.set_connection_state("connected"))
        await asyncio.gather(*pc.set_connection_state("disconnected"))
        assert host.status == ConnectionStatus.DISCONNECTED
        await asyncio.gather(*pc.set_connection_state("closed"))
        assert host.status == ConnectionStatus.IDLE
        await host.stop()

    @pytest.mark.asyncio
    async def test_peer_left_returns_to_waiting(self, settings, peers, relays):
        host = _host(settings, peers, relays)
        await host.start()
        await _deliver(relays.last, {"type": "peer_joined", "role": "client"})
        await host.wait_pending()
        await asyncio.gather(*peers.last.set_connection_state("connected"))

        await _deliver(relays.last, {"type": "peer_left", "role": "client"})
        assert host.status == ConnectionStatus.WAITING_FOR_PEER
        assert host.peer_present is False
        await host.stop()

    @pytest.mark.asyncio
    async def test_relay_error_message(self, settings, peers, relays):
        host = _host(settings, peers, relays)
        await host.start()
        await _deliver(relays.last, {"type": "error", "code": "room_full", "message": "Room is full"})
        assert host.status == ConnectionStatus.ERROR
        assert host.error.message == "room_full: Room is full"
        await host.stop()

    @pytest.mark.asyncio
    async def test_relay_lost(self, settings, peers, relays):
        from screenlink.webrtc import RelayConnectionError

        host = _host(settings, peers, relays)
        await host.start()
        relays.last.fail(RelayConnectionError("relay connection lost"))
        await relays.last.drain()

        assert host.status == ConnectionStatus.DISCONNECTED
        assert host.error.message == SIGNALING_ERROR_MESSAGE
        await host.stop()

    @pytest.mark.asyncio
    async def test_relay_closed_normally(self, settings, peers, relays):
        host = _host(settings, peers, relays)
        await host.start()
        await relays.last.close()
        await relays.last.drain()
        assert host.status == ConnectionStatus.DISCONNECTED
        assert host.error is None
        await host.stop()

    @pytest.mark.asyncio
    async def test_deeply_nested_frame_does_not_stop_reader(self, settings, peers, relays):
        host = _host(settings, peers, relays)
        await host.start()
        relay = relays.last

        await _deliver(relay, "[" * 200_000 + "]" * 200_000, {"type": "peer_joined", "role": "client"})
        await host.wait_pending()

        assert not host._reader_task.done()
        assert peers.last.offers_created == 1
        assert len(relay.signals()) == 1
        await host.stop()


class TestHostControlChannel:
    """control 채널 테스트"""

    @pytest.mark.asyncio
    async def test_hello_and_host_info_on_open(self, settings, peers, relays):
        host = _host(settings, peers, relays)
        await host.start()
        channel = peers.last.channels[0]
        channel.open()

        assert channel.sent_messages == [
            {"t": "hello", "protocol": 1, "role": "host"},
            {"t": "host_info", "protocol": 1, "capture": {"width": 1920, "height": 1080, "frameRate": 30.0}},
        ]
        await host.stop()

    @pytest.mark.asyncio
    async def test_ping_answered_with_pong(self, settings, peers, relays):
        host = _host(settings, peers, relays)
        await host.start()
        channel = peers.last.channels[0]
        channel.open()
        channel.receive({"t": "ping", "id": 7, "ts": 123.5})

        assert channel.sent_messages[-1] == {"t": "pong", "id": 7, "ts": 123.5}
        await host.stop()

    @pytest.mark.asyncio
    async def test_deeply_nested_control_frame_ignored(self, settings, peers, relays):
        host = _host(settings, peers, relays)
        await host.start()
        channel = peers.last.channels[0]
        channel.open()

        channel.receive("[" * 200_000 + "]" * 200_000)
        channel.receive({"t": "ping", "id": 8, "ts": 1.0})

        assert channel.sent_messages[-1] == {"t": "pong", "id": 8, "ts": 1.0}
        await host.stop()

    @pytest.mark.asyncio
    async def test_input_injected_only_with_consent(self, settings, peers, relays):
        injector = FakeInjector()
        host = _host(settings, peers, relays, injector=injector)
        await host.start()
        channel = peers.last.channels[0]
        channel.open()
        batch = {"t": "input", "events": [{"k": "mouse_move", "x": 0.5, "y": 0.5}, {"k": "nope"}]}

        channel.receive(batch)
        await host.input_consumer.wait_pending()
        assert injector.calls == []

        host.allow_control = True
        channel.receive(batch)
        channel.receive("{broken")
        await host.input_consumer.wait_pending()

        (events, width, height), = injector.calls
        assert [e.k for e in events] == ["mouse_move"]
        assert (width, height) == (1920, 1080)
        await host.stop()

    @pytest.mark.asyncio
    async def test_injection_failure_surfaces_once(self, settings, peers, relays):
        host = _host(settings, peers, relays, injector=FakeInjector(fail=True))
        errors = []
        host.on_error_callback = lambda error: errors.append(error.message if error else None)
        await host.start()
        channel = peers.last.channels[0]
        channel.open()
        host.allow_control = True

        for _ in range(2):
            channel.receive({"t": "input", "events": [{"k": "key", "code": "KeyA", "down": True}]})
            await host.input_consumer.wait_pending()

        assert errors == [INJECTION_FAILED_MESSAGE]
        assert host.error.message == INJECTION_FAILED_MESSAGE
        await host.stop()


class TestHostTeardown:
    """정리 테스트"""

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, settings, peers, relays, capture):
        host = _host(settings, peers, relays, capture=capture)
        await host.start()
        pc, relay = peers.last, relays.last
        channel = pc.channels[0]

        await host.stop()
        await host.stop()

        assert host.status == ConnectionStatus.IDLE
        assert channel.readyState == "closed"
        assert pc.closed is True
        assert relay.closed is True
        assert capture.closed == 1
        assert host.pc is None and host.relay is None and host.channel is None

    @pytest.mark.asyncio
    async def test_teardown_order(self, settings, peers, relays, capture):
        close_log = []
        peers.close_log = relays.close_log = capture.close_log = close_log
        host = _host(settings, peers, relays, capture=capture)
        await host.start()
        peers.last.channels[0].open()

        await host.stop()

        assert close_log == ["channel", "peer", "relay", "capture"]

    @pytest.mark.asyncio
    async def test_late_events_after_stop_ignored(self, settings, peers, relays):
        host = _host(settings, peers, relays)
        await host.start()
        pc, relay = peers.last, relays.last
        await host.stop()

        await asyncio.gather(*pc.set_connection_state("connected"))
        candidate = candidate_from_sdp(SRFLX)
        await asyncio.gather(*pc.emit("icecandidate", candidate))

        assert host.status == ConnectionStatus.IDLE
        assert relay.signals() == []

    @pytest.mark.asyncio
    async def test_restart_replaces_previous_attempt(self, settings, peers, relays, capture):
        host = _host(settings, peers, relays, capture=capture)
        await host.start()
        first_pc, first_relay = peers.last, relays.last

        await host.start()

        assert first_pc.closed is True
        assert first_relay.closed is True
        assert len(peers.created) == 2
        assert host.pc is peers.last
        assert capture.opened == 2
        assert capture.closed == 1
        await host.stop()
