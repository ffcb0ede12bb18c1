"""pytest 설정 및 공유 fixture

테스트 인프라:
- 가짜 피어 연결 / 데이터 채널 (aiortc 이벤트 인터페이스 모사)
- 가짜 릴레이 연결 (수신 큐 기반)
- 가짜 캡처 장치 / 주입 서비스
- 세션 설정 fixture
"""

import asyncio
import json
import sys
from collections import defaultdict
from pathlib import Path
from typing import Any, List, Optional

import pytest
from aiortc import RTCSessionDescription

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from screenlink.input import InjectionError  # noqa: E402
from screenlink.protocol import CaptureInfo, WireModel  # noqa: E402
from screenlink.webrtc import (  # noqa: E402
    CaptureError,
    CaptureHandle,
    RelayConnectionError,
    SessionSettings,
)


# ===== 이벤트 에미터 =====


class FakeEmitter:
    """pyee 와 같은 on()/emit() 인터페이스. emit() 은 코루틴 핸들러의 태스크 목록을 반환"""

    def __init__(self):
        self._handlers = defaultdict(list)

    def on(self, event, handler=None):
        def register(fn):
            self._handlers[event].append(fn)
            return fn
        return register if handler is None else register(handler)

    def emit(self, event, *args) -> List[asyncio.Future]:
        futures = []
        for handler in list(self._handlers[event]):
            result = handler(*args)
            if asyncio.iscoroutine(result):
                futures.append(asyncio.ensure_future(result))
        return futures


# ===== WebRTC Fake =====


class FakeDataChannel(FakeEmitter):
    def __init__(self, label: str = "control", ordered: bool = True):
        super().__init__()
        self.label = label
        self.ordered = ordered
        self.readyState = "connecting"
        self.sent: List[str] = []
        self.close_log: Optional[List[str]] = None

    def send(self, data: str):
        if self.readyState != "open":
            raise RuntimeError("channel is not open")
        self.sent.append(data)

    @property
    def sent_messages(self) -> List[Any]:
        return [json.loads(data) for data in self.sent]

    def open(self):
        self.readyState = "open"
        self.emit("open")

    def receive(self, message: Any):
        self.emit("message", message if isinstance(message, str) else json.dumps(message))

    def close(self):
        if self.readyState == "closed":
            return
        if self.close_log is not None:
            self.close_log.append("channel")
        self.readyState = "closed"
        self.emit("close")


class FakePeerConnection(FakeEmitter):
    def __init__(self, ice_servers=None):
        super().__init__()
        self.ice_servers = ice_servers
        self.connectionState = "new"
        self.localDescription: Optional[RTCSessionDescription] = None
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.tracks: List[Any] = []
        self.channels: List[FakeDataChannel] = []
        self.candidates: List[Any] = []
        self.offers_created = 0
        self.answers_created = 0
        self.stats: dict = {}
        self.stats_calls = 0
        self.closed = False
        self.close_log: Optional[List[str]] = None

    def addTrack(self, track):
        self.tracks.append(track)

    def createDataChannel(self, label, ordered=True):
        channel = FakeDataChannel(label, ordered)
        channel.close_log = self.close_log
        self.channels.append(channel)
        return channel

    async def createOffer(self):
        await asyncio.sleep(0)
        self.offers_created += 1
        return RTCSessionDescription(sdp="v=0 local-offer", type="offer")

    async def createAnswer(self):
        await asyncio.sleep(0)
        self.answers_created += 1
        return RTCSessionDescription(sdp="v=0 local-answer", type="answer")

    async def setLocalDescription(self, description):
        await asyncio.sleep(0)
        self.localDescription = description

    async def setRemoteDescription(self, description):
        await asyncio.sleep(0)
        self.remoteDescription = description

    async def addIceCandidate(self, candidate):
        self.candidates.append(candidate)

    async def getStats(self):
        self.stats_calls += 1
        return dict(self.stats)

    def set_connection_state(self, state: str) -> List[asyncio.Future]:
        self.connectionState = state
        return self.emit("connectionstatechange")

    async def close(self):
        if self.close_log is not None:
            self.close_log.append("peer")
        self.closed = True
        self.set_connection_state("closed")


class FakePeerFactory:
    def __init__(self):
        self.created: List[FakePeerConnection] = []
        self.close_log: Optional[List[str]] = None

    def __call__(self, ice_servers):
        pc = FakePeerConnection(ice_servers)
        pc.close_log = self.close_log
        self.created.append(pc)
        return pc

    @property
    def last(self) -> FakePeerConnection:
        return self.created[-1]


# ===== Relay Fake =====


class FakeRelay:
    """수신 큐 기반 릴레이. drain() 은 넣은 메시지가 모두 처리될 때까지 대기"""

    def __init__(self, url: str):
        self.url = url
        self.sent: List[Any] = []
        self.is_open = True
        self.closed = False
        self.close_log: Optional[List[str]] = None
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, message) -> bool:
        if not self.is_open:
            return False
        payload = message.to_json() if isinstance(message, WireModel) else message
        self.sent.append(json.loads(payload))
        return True

    async def messages(self):
        while True:
            item = await self._incoming.get()
            try:
                if item is None:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item
            finally:
                self._incoming.task_done()

    def push(self, message: Any):
        self._incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def fail(self, error: Exception):
        self._incoming.put_nowait(error)

    async def drain(self):
        await self._incoming.join()
        await asyncio.sleep(0)

    async def close(self):
        if self.closed:
            return
        if self.close_log is not None:
            self.close_log.append("relay")
        self.is_open = False
        self.closed = True
        self._incoming.put_nowait(None)

    def signals(self) -> List[dict]:
        return [m for m in self.sent if m.get("type") == "signal"]


class FakeRelayConnector:
    def __init__(self):
        self.relays: List[FakeRelay] = []
        self.fail = False
        self.drop_on_connect = False
        self.close_log: Optional[List[str]] = None

    async def __call__(self, url: str) -> FakeRelay:
        if self.fail:
            raise RelayConnectionError("relay connect failed: refused")
        relay = FakeRelay(url)
        relay.close_log = self.close_log
        if self.drop_on_connect:
            # 핸드셰이크 직후 연결이 끊긴 릴레이
            relay.is_open = False
            relay._incoming.put_nowait(None)
        self.relays.append(relay)
        return relay

    @property
    def last(self) -> FakeRelay:
        return self.relays[-1]


async def no_ice_servers(settings):
    return []


# ===== Capture / Injection Fake =====


class FakeCapture:
    def __init__(self, width: int = 1920, height: int = 1080, fail: bool = False):
        self.info = CaptureInfo(width=width, height=height, frameRate=30.0)
        self.fail = fail
        self.opened = 0
        self.closed = 0
        self.track = object()
        self.close_log: Optional[List[str]] = None

    async def open(self) -> CaptureHandle:
        if self.fail:
            raise CaptureError("permission denied")
        self.opened += 1
        return CaptureHandle(track=self.track, info=self.info)

    async def close(self):
        if self.close_log is not None:
            self.close_log.append("capture")
        self.closed += 1


class FakeInjector:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[tuple] = []

    async def inject(self, events, capture_width, capture_height):
        self.calls.append((list(events), capture_width, capture_height))
        if self.fail:
            raise InjectionError("accessibility permission missing")


# ===== Fixtures =====


@pytest.fixture
def settings() -> SessionSettings:
    return SessionSettings(
        signaling_url="ws://relay.test/ws",
        room="ab-12cd",
        stun_url="",
        use_turn_from_signaling=False,
    )


@pytest.fixture
def peers() -> FakePeerFactory:
    return FakePeerFactory()


@pytest.fixture
def relays() -> FakeRelayConnector:
    return FakeRelayConnector()


@pytest.fixture
def capture() -> FakeCapture:
    return FakeCapture()


@pytest.fixture
def injector() -> FakeInjector:
    return FakeInjector()
