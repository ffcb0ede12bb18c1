"""WebRTC 세션 협상 엔진 (호스트/클라이언트 공통).

한 번의 연결 시도는 하나의 릴레이 연결, 하나의 RTCPeerConnection,
하나의 데이터 채널로 구성됩니다. 새 시도는 항상 이전 시도를 먼저 정리합니다.

Architecture:
    - 세션 세대(generation) ID: 시도마다 증가하며, 모든 이벤트 핸들러와
      비동기 작업은 완료 시점에 자신의 세대가 현재 세대인지 확인합니다.
      정리 이후 늦게 도착한 콜백은 아무 일도 하지 않습니다.
    - Single-flight 가드: offer/answer 생성은 각각 동시에 하나만 진행됩니다.
      진행 중에 들어온 요청은 버립니다 (glare 회피).
    - 릴레이 메시지는 도착 순서대로 디코딩/처리되며, offer/answer 작업은
      별도 태스크로 실행되어 가드가 중복을 제거합니다.

Status Transitions:
    - 릴레이 연결 → join 전송 → waiting_for_peer
    - 릴레이 종료 → disconnected (idle 제외)
    - 릴레이 오류 → error ("Signaling WebSocket error")
    - 릴레이 error{code, message} → error ("code: message")
    - 피어 연결 상태: connected → connected, failed/disconnected → disconnected,
      closed → idle

Teardown Order:
    데이터 채널 → 텔레메트리 → 피어 연결 → 릴레이 → 로컬 미디어 → 가드 초기화 → idle
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from ..protocol import (
    CandidatePayload,
    ControlMessage,
    DescriptionPayload,
    ErrorMessage,
    HelloMessage,
    IceCandidateInit,
    JoinMessage,
    JoinedMessage,
    PeerJoinedMessage,
    PeerLeftMessage,
    PeerSignalMessage,
    PingMessage,
    PongMessage,
    RelayMessage,
    Role,
    SessionDescriptionInit,
    SignalMessage,
    WireModel,
    decode_control_message,
    decode_relay_message,
    decode_signal_payload,
    safe_parse_json,
)
from .config import SessionSettings
from .ice import resolve_ice_servers
from .relay_client import RelayConnection, RelayConnectionError

logger = logging.getLogger(__name__)

SIGNALING_ERROR_MESSAGE = "Signaling WebSocket error"
ROOM_REQUIRED_MESSAGE = "Room code is required"
SIGNALING_URL_REQUIRED_MESSAGE = "Signaling WebSocket URL is required"

_CANDIDATE_PREFIX = "candidate:"


class ConnectionStatus(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    CONNECTING = "connecting"
    WAITING_FOR_PEER = "waiting_for_peer"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass
class SessionError:
    """사용자에게 표시할 짧은 오류 메시지와 원인 예외."""

    message: str
    cause: Optional[BaseException] = None


def create_peer_connection(ice_servers: List[RTCIceServer]) -> RTCPeerConnection:
    return RTCPeerConnection(configuration=RTCConfiguration(iceServers=ice_servers))


class PeerSession:
    """호스트/클라이언트 세션의 공통 협상 로직.

    서브클래스는 역할별 동작을 아래 훅으로 구현합니다:
        _acquire_media, _setup_peer, _on_joined, _on_peer_joined, _on_peer_left,
        _on_remote_description, _on_channel_open, _on_control_message,
        _stop_telemetry, _release_media

    Attributes:
        settings (SessionSettings): 시도 단위 설정
        status (ConnectionStatus): 현재 연결 상태
        error (Optional[SessionError]): 마지막 오류
        pc: 현재 피어 연결 (없으면 None)
        relay (Optional[RelayConnection]): 현재 릴레이 연결
        channel: 현재 control 데이터 채널
        on_status_callback (Optional[Callable]): 상태 변경 알림
        on_error_callback (Optional[Callable]): 오류 알림
        on_pong_callback (Optional[Callable]): ping 왕복 시간(ms) 알림

    Note:
        - peer_factory / relay_connector / ice_resolver 는 테스트에서 교체 가능합니다
        - 모든 메서드는 하나의 asyncio 이벤트 루프에서 호출되어야 합니다
    """

    role: Role = "host"
    initial_status = ConnectionStatus.STARTING

    def __init__(
        self,
        settings: SessionSettings,
        peer_factory: Optional[Callable[[List[RTCIceServer]], Any]] = None,
        relay_connector: Optional[Callable[[str], Awaitable[RelayConnection]]] = None,
        ice_resolver: Optional[Callable[[SessionSettings], Awaitable[List[RTCIceServer]]]] = None,
    ):
        self.settings = settings
        self.status = ConnectionStatus.IDLE
        self.error: Optional[SessionError] = None

        self.pc = None
        self.relay: Optional[RelayConnection] = None
        self.channel = None

        self.on_status_callback: Optional[Callable[[ConnectionStatus], None]] = None
        self.on_error_callback: Optional[Callable[[Optional[SessionError]], None]] = None
        self.on_pong_callback: Optional[Callable[[float], None]] = None

        self._peer_factory = peer_factory or create_peer_connection
        self._relay_connector = relay_connector or RelayConnection.connect
        self._ice_resolver = ice_resolver or resolve_ice_servers

        self._generation = 0
        self._making_offer = False
        self._making_answer = False
        self._reader_task: Optional[asyncio.Task] = None
        self._description_task: Optional[asyncio.Task] = None
        # GC 방지를 위해 실행 중인 협상 태스크 보관
        self._tasks: Set[asyncio.Task] = set()

        self._ping_seq = 0
        self._pending_pings: Dict[int, float] = {}

    # ============================================================
    # 상태 / 오류
    # ============================================================

    @property
    def generation(self) -> int:
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self.status:
            return
        self.status = status
        logger.info(f"[WebRTC] {self.role} 상태 변경: {status.value}")
        if self.on_status_callback:
            self.on_status_callback(status)

    def _set_error(self, error: Optional[SessionError]) -> None:
        self.error = error
        if error is not None:
            logger.error(f"[WebRTC] {self.role} 오류: {error.message}")
        if self.on_error_callback:
            self.on_error_callback(error)

    def _fail(self, message: str, cause: Optional[BaseException] = None) -> None:
        self._set_status(ConnectionStatus.ERROR)
        self._set_error(SessionError(message, cause))

    # ============================================================
    # 시작 / 정리
    # ============================================================

    async def start(self) -> bool:
        """새 연결 시도를 시작합니다. 이전 시도는 먼저 정리됩니다.

        Returns:
            bool: 릴레이에 join 을 보냈으면 True. 검증/캡처/릴레이 연결 실패 시 False
        """
        await self.stop()
        generation = self._generation

        if self.error is not None:
            self._set_error(None)
        self._set_status(self.initial_status)

        if not self.settings.room:
            self._fail(ROOM_REQUIRED_MESSAGE)
            return False

        signaling_url = self.settings.signaling_url.strip()
        if not signaling_url:
            self._fail(SIGNALING_URL_REQUIRED_MESSAGE)
            return False

        if not await self._acquire_media(generation):
            return False
        if not self._is_current(generation):
            return False

        ice_servers = await self._ice_resolver(self.settings)
        if not self._is_current(generation):
            return False

        pc = self._peer_factory(ice_servers)
        self.pc = pc
        self._register_peer_handlers(pc, generation)
        self._setup_peer(pc, generation)

        try:
            relay = await self._relay_connector(signaling_url)
        except RelayConnectionError as e:
            if self._is_current(generation):
                logger.warning(f"[WebRTC] 릴레이 연결 실패: {e}")
                self._on_relay_error(e)
                self._on_relay_closed()
            return False

        if not self._is_current(generation):
            await relay.close()
            return False

        self.relay = relay
        joined = await self._on_relay_open(generation)
        self._reader_task = asyncio.create_task(self._read_relay(relay, generation))
        return joined

    async def stop(self) -> None:
        """현재 시도를 정리합니다. 여러 번 호출해도 안전합니다."""
        self._generation += 1

        channel, self.channel = self.channel, None
        if channel is not None:
            channel.close()

        self._stop_telemetry()

        pc, self.pc = self.pc, None
        if pc is not None:
            await pc.close()

        relay, self.relay = self.relay, None
        if relay is not None:
            await relay.close()

        reader, self._reader_task = self._reader_task, None
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        self._tasks.clear()
        self._description_task = None

        await self._release_media()

        self._making_offer = False
        self._making_answer = False
        self._pending_pings.clear()
        self._set_status(ConnectionStatus.IDLE)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_pending(self) -> None:
        """진행 중인 협상 태스크가 모두 끝날 때까지 기다립니다."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ============================================================
    # 피어 연결 이벤트
    # ============================================================

    def _register_peer_handlers(self, pc, generation: int) -> None:
        @pc.on("connectionstatechange")
        async def on_connectionstatechange():
            if not self._is_current(generation):
                return
            state = pc.connectionState
            logger.info(f"[WebRTC] {self.role} 연결 상태: {state}")
            if state == "connected":
                self._set_status(ConnectionStatus.CONNECTED)
            elif state in ("failed", "disconnected"):
                self._set_status(ConnectionStatus.DISCONNECTED)
            elif state == "closed":
                self._set_status(ConnectionStatus.IDLE)

        @pc.on("icecandidate")
        async def on_icecandidate(candidate):
            if not self._is_current(generation) or candidate is None:
                return
            await self._forward_candidate(candidate)

    async def _forward_candidate(self, candidate) -> None:
        relay = self.relay
        if relay is None or not relay.is_open:
            logger.debug("[WebRTC] 릴레이 닫힘, 로컬 ICE candidate 버림")
            return
        sdp = candidate_to_sdp(candidate)
        payload = CandidatePayload(candidate=IceCandidateInit(
            candidate=f"{_CANDIDATE_PREFIX}{sdp}",
            sdpMid=candidate.sdpMid,
            sdpMLineIndex=candidate.sdpMLineIndex,
        ))
        await relay.send(SignalMessage(data=payload.to_wire()))

    async def _apply_remote_candidate(self, init: IceCandidateInit, generation: int) -> None:
        # 진행 중인 remote description 적용이 끝난 뒤에 candidate 를 추가
        pending = self._description_task
        if pending is not None and not pending.done():
            await asyncio.wait([pending])
        pc = self.pc
        if pc is None or not self._is_current(generation):
            return
        try:
            candidate_str = init.candidate
            if candidate_str.startswith(_CANDIDATE_PREFIX):
                candidate_str = candidate_str[len(_CANDIDATE_PREFIX):]
            candidate = candidate_from_sdp(candidate_str)
            candidate.sdpMid = init.sdp_mid
            candidate.sdpMLineIndex = init.sdp_mline_index
            await pc.addIceCandidate(candidate)
        except Exception as e:
            logger.debug(f"[WebRTC] ICE candidate 적용 실패 (무시): {e}")

    async def _send_local_description(self, pc) -> bool:
        description = pc.localDescription
        relay = self.relay
        if description is None or relay is None:
            return False
        payload = DescriptionPayload(description=SessionDescriptionInit(
            type=description.type,
            sdp=description.sdp,
        ))
        return await relay.send(SignalMessage(data=payload.to_wire()))

    # ============================================================
    # Offer / Answer
    # ============================================================

    def _request_offer(self) -> None:
        if self._making_offer:
            logger.info("[WebRTC] offer 생성 중, 중복 요청 무시")
            return
        self._making_offer = True
        self._spawn(self._make_offer(self._generation))

    async def _make_offer(self, generation: int) -> None:
        try:
            if not self._is_current(generation):
                return
            self._set_status(ConnectionStatus.NEGOTIATING)
            pc, relay = self.pc, self.relay
            if pc is None or relay is None or not relay.is_open:
                return
            offer = await pc.createOffer()
            if not self._is_current(generation):
                return
            await pc.setLocalDescription(offer)
            if not self._is_current(generation):
                return
            if await self._send_local_description(pc):
                logger.info("[WebRTC] offer 전송 완료")
        except Exception as e:
            if self._is_current(generation):
                logger.warning(f"[WebRTC] offer 생성 실패 (무시): {type(e).__name__}: {e}")
        finally:
            if self._is_current(generation):
                self._making_offer = False

    def _request_answer(self, offer: SessionDescriptionInit) -> None:
        if self._making_answer:
            logger.info("[WebRTC] answer 생성 중, 중복 offer 무시")
            return
        self._making_answer = True
        self._description_task = self._spawn(self._make_answer(offer, self._generation))

    async def _make_answer(self, offer: SessionDescriptionInit, generation: int) -> None:
        try:
            if not self._is_current(generation):
                return
            self._set_status(ConnectionStatus.NEGOTIATING)
            pc = self.pc
            if pc is None:
                return
            await pc.setRemoteDescription(RTCSessionDescription(sdp=offer.sdp, type=offer.type))
            if not self._is_current(generation):
                return
            answer = await pc.createAnswer()
            if not self._is_current(generation):
                return
            await pc.setLocalDescription(answer)
            if not self._is_current(generation):
                return
            if await self._send_local_description(pc):
                logger.info("[WebRTC] answer 전송 완료")
        except Exception as e:
            if self._is_current(generation):
                logger.warning(f"[WebRTC] answer 생성 실패 (무시): {type(e).__name__}: {e}")
        finally:
            if self._is_current(generation):
                self._making_answer = False

    # ============================================================
    # 릴레이
    # ============================================================

    async def _on_relay_open(self, generation: int) -> bool:
        relay = self.relay
        if relay is None:
            return False
        sent = await relay.send(JoinMessage(room=self.settings.room, role=self.role))
        if not sent:
            logger.warning("[WebRTC] join 전송 실패, 릴레이가 닫혀 있음")
            return False
        if self._is_current(generation):
            logger.info(f"[WebRTC] 룸 참가 요청: room={self.settings.room}, role={self.role}")
            self._set_status(ConnectionStatus.WAITING_FOR_PEER)
        return True

    def _on_relay_error(self, cause: Optional[BaseException] = None) -> None:
        self._fail(SIGNALING_ERROR_MESSAGE, cause)

    def _on_relay_closed(self) -> None:
        if self.status != ConnectionStatus.IDLE:
            self._set_status(ConnectionStatus.DISCONNECTED)

    async def _read_relay(self, relay: RelayConnection, generation: int) -> None:
        try:
            async for raw in relay.messages():
                if not self._is_current(generation):
                    return
                message = decode_relay_message(safe_parse_json(raw))
                if message is None:
                    continue
                await self._dispatch_relay(message, generation)
        except RelayConnectionError as e:
            if self._is_current(generation):
                logger.warning(f"[WebRTC] 릴레이 수신 오류: {e}")
                self._on_relay_error(e)
        if self._is_current(generation):
            logger.info("[WebRTC] 릴레이 연결 종료됨")
            self._on_relay_closed()

    async def _dispatch_relay(self, message: RelayMessage, generation: int) -> None:
        if isinstance(message, ErrorMessage):
            self._fail(f"{message.code}: {message.message}")
        elif isinstance(message, JoinedMessage):
            logger.info(f"[WebRTC] 룸 참가 완료: room={message.room}, 상대 피어 존재={message.peer_present}")
            self._on_joined(message)
        elif isinstance(message, PeerJoinedMessage):
            logger.info(f"[WebRTC] 상대 피어 입장: {message.role}")
            self._on_peer_joined(message)
        elif isinstance(message, PeerLeftMessage):
            logger.info(f"[WebRTC] 상대 피어 퇴장: {message.role}")
            self._on_peer_left(message)
        elif isinstance(message, PeerSignalMessage):
            payload = decode_signal_payload(message.data)
            if isinstance(payload, DescriptionPayload):
                await self._on_remote_description(payload.description, generation)
            elif isinstance(payload, CandidatePayload):
                await self._apply_remote_candidate(payload.candidate, generation)

    # ============================================================
    # 데이터 채널
    # ============================================================

    def _attach_channel(self, channel, generation: int) -> None:
        """control 채널을 현재 세션에 연결하고 메시지/열림 이벤트를 등록합니다."""
        self.channel = channel

        @channel.on("message")
        def on_message(data):
            if not self._is_current(generation):
                return
            message = decode_control_message(safe_parse_json(data))
            if message is None:
                return
            self._handle_control_message(message)

        @channel.on("close")
        def on_close():
            logger.info("[WebRTC] control 채널 닫힘")

        if channel.readyState == "open":
            self._on_channel_open()
            return

        @channel.on("open")
        def on_open():
            if self._is_current(generation):
                logger.info("[WebRTC] control 채널 열림")
                self._on_channel_open()

    def send_control(self, message: WireModel) -> bool:
        """control 채널로 메시지를 전송합니다. 채널이 열려있지 않으면 False."""
        channel = self.channel
        if channel is None or channel.readyState != "open":
            return False
        channel.send(message.to_json())
        return True

    def send_ping(self) -> Optional[int]:
        """control 채널 왕복 시간 측정용 ping 을 보냅니다.

        Returns:
            Optional[int]: 전송한 ping id. 채널이 닫혀 있으면 None
        """
        self._ping_seq += 1
        ping = PingMessage(id=self._ping_seq, ts=time.time() * 1000)
        if not self.send_control(ping):
            return None
        self._pending_pings[ping.id] = time.monotonic()
        return ping.id

    def _handle_control_message(self, message: ControlMessage) -> None:
        if isinstance(message, PingMessage):
            self.send_control(PongMessage(id=message.id, ts=message.ts))
        elif isinstance(message, PongMessage):
            sent_at = self._pending_pings.pop(message.id, None)
            if sent_at is None:
                return
            rtt_ms = (time.monotonic() - sent_at) * 1000
            logger.debug(f"[WebRTC] control 채널 RTT: {rtt_ms:.1f}ms")
            if self.on_pong_callback:
                self.on_pong_callback(rtt_ms)
        elif isinstance(message, HelloMessage):
            logger.info(f"[WebRTC] hello 수신: role={message.role}, protocol={message.protocol}")
        else:
            self._on_control_message(message)

    # ============================================================
    # 역할별 훅
    # ============================================================

    async def _acquire_media(self, generation: int) -> bool:
        return True

    def _setup_peer(self, pc, generation: int) -> None:
        pass

    def _on_joined(self, message: JoinedMessage) -> None:
        pass

    def _on_peer_joined(self, message: PeerJoinedMessage) -> None:
        pass

    def _on_peer_left(self, message: PeerLeftMessage) -> None:
        pass

    async def _on_remote_description(self, description: SessionDescriptionInit, generation: int) -> None:
        pass

    def _on_channel_open(self) -> None:
        pass

    def _on_control_message(self, message: ControlMessage) -> None:
        pass

    def _stop_telemetry(self) -> None:
        pass

    async def _release_media(self) -> None:
        pass

