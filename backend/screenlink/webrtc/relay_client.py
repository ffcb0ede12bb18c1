"""시그널링 릴레이 WebSocket 클라이언트.

연결 시도마다 하나의 RelayConnection 을 사용합니다. 릴레이는 협상 메시지만
중계하며 미디어는 다루지 않습니다.
"""

import asyncio
import logging
from typing import AsyncIterator, Union

import websockets
from websockets.protocol import State

from ..protocol import WireModel
from .config import connection_config

logger = logging.getLogger(__name__)


class RelayConnectionError(Exception):
    """릴레이 연결 수립 또는 수신 중 발생한 전송 오류."""


class RelayConnection:
    """릴레이와의 WebSocket 연결 래퍼.

    Attributes:
        url (str): 릴레이 WebSocket URL

    Examples:
        >>> relay = await RelayConnection.connect("ws://localhost:8080/ws")
        >>> await relay.send(JoinMessage(room="AB12CD", role="client"))
        >>> async for raw in relay.messages():
        ...     print(raw)
        >>> await relay.close()
    """

    def __init__(self, websocket, url: str):
        self._ws = websocket
        self.url = url

    @classmethod
    async def connect(cls, url: str) -> "RelayConnection":
        """릴레이에 연결합니다.

        Raises:
            RelayConnectionError: 연결 실패 (잘못된 URL, 핸드셰이크 실패, 네트워크 오류)
        """
        logger.info(f"[Relay] 연결 중: {url}")
        try:
            ws = await websockets.connect(
                url,
                ping_interval=connection_config.RELAY_PING_INTERVAL,
                ping_timeout=connection_config.RELAY_PING_TIMEOUT,
                open_timeout=connection_config.RELAY_OPEN_TIMEOUT,
            )
        except (websockets.exceptions.WebSocketException, OSError, asyncio.TimeoutError) as e:
            raise RelayConnectionError(f"relay connect failed: {e}") from e
        logger.info("[Relay] 연결됨")
        return cls(ws, url)

    @property
    def is_open(self) -> bool:
        return self._ws.state is State.OPEN

    async def send(self, message: Union[WireModel, str]) -> bool:
        """메시지를 전송합니다. 연결이 열려있지 않으면 버리고 False 반환."""
        if not self.is_open:
            return False
        payload = message.to_json() if isinstance(message, WireModel) else message
        try:
            await self._ws.send(payload)
        except websockets.exceptions.ConnectionClosed:
            logger.debug("[Relay] 전송 중 연결 종료됨, 메시지 버림")
            return False
        return True

    async def messages(self) -> AsyncIterator[str]:
        """수신 메시지를 도착 순서대로 반환합니다.

        정상 종료 시 반복이 끝나고, 비정상 종료 시 RelayConnectionError 를 던집니다.
        """
        try:
            async for raw in self._ws:
                yield raw
        except websockets.exceptions.ConnectionClosedOK:
            return
        except (websockets.exceptions.ConnectionClosedError, OSError) as e:
            raise RelayConnectionError(f"relay connection lost: {e}") from e

    async def close(self) -> None:
        await self._ws.close()
        logger.info("[Relay] 연결 종료")
