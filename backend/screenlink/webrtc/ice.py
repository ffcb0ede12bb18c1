"""ICE 서버 목록 구성.

설정의 STUN URL과, 선택적으로 릴레이의 /turn 엔드포인트에서 받은
TURN 자격증명을 합쳐 RTCIceServer 목록을 만듭니다.

Note:
    - TURN 조회는 항상 best-effort 입니다. 네트워크 오류, 비정상 상태 코드,
      스키마 불일치는 모두 빈 목록으로 처리되고 STUN 만으로 계속 진행합니다.
    - 응답 항목 중 유효하지 않은 것은 개별적으로 건너뜁니다.
"""

import asyncio
import logging
from typing import Any, List, Optional
from urllib.parse import urlsplit, urlunsplit

import requests
from aiortc import RTCIceServer

from .config import SessionSettings, connection_config

logger = logging.getLogger(__name__)

_HTTP_SCHEMES = {"ws": "http", "wss": "https"}


def build_static_servers(settings: SessionSettings) -> List[RTCIceServer]:
    """설정으로부터 정적 ICE 서버 목록을 만듭니다.

    STUN URL(공백 제거 후)이 비어있지 않을 때만 STUN 항목을 포함합니다.
    """
    servers: List[RTCIceServer] = []
    stun_url = settings.stun_url.strip()
    if stun_url:
        servers.append(RTCIceServer(urls=[stun_url]))
    return servers


def derive_http_base(ws_url: str) -> Optional[str]:
    """릴레이 WebSocket URL에서 HTTP(S) 베이스 URL을 구합니다.

    ws → http, wss → https 로 바꾸고 path/query/fragment 를 비웁니다.
    WebSocket 스킴이 아니거나 파싱할 수 없으면 None.

    Examples:
        >>> derive_http_base("wss://relay.example.com:8443/ws?x=1#f")
        'https://relay.example.com:8443'
    """
    try:
        parts = urlsplit(ws_url.strip())
    except ValueError:
        return None
    scheme = _HTTP_SCHEMES.get(parts.scheme.lower())
    if scheme is None or not parts.netloc:
        return None
    return urlunsplit((scheme, parts.netloc, "", "", ""))


def parse_turn_response(raw: Any) -> Optional[List[RTCIceServer]]:
    """/turn 응답 본문을 RTCIceServer 목록으로 변환합니다.

    최상위 구조가 맞지 않으면 None, 개별 항목이 잘못되면 그 항목만 건너뜁니다.
    """
    if not isinstance(raw, dict):
        return None
    entries = raw.get("iceServers")
    if not isinstance(entries, list):
        return None

    servers: List[RTCIceServer] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        urls = entry.get("urls")
        if isinstance(urls, list):
            if not all(isinstance(u, str) for u in urls):
                continue
        elif not isinstance(urls, str):
            continue
        username = entry.get("username")
        credential = entry.get("credential")
        servers.append(RTCIceServer(
            urls=urls,
            username=username if isinstance(username, str) else None,
            credential=credential if isinstance(credential, str) else None,
        ))
    return servers


def _get_turn_json(url: str) -> Any:
    response = requests.get(url, timeout=connection_config.TURN_FETCH_TIMEOUT)
    response.raise_for_status()
    return response.json()


async def fetch_turn_servers(settings: SessionSettings) -> List[RTCIceServer]:
    """릴레이에서 TURN 서버 목록을 조회합니다.

    Args:
        settings: 세션 설정 (use_turn_from_signaling 이 꺼져 있으면 조회하지 않음)

    Returns:
        List[RTCIceServer]: TURN 서버 목록. 실패 시 빈 목록.
    """
    if not settings.use_turn_from_signaling:
        return []

    base = derive_http_base(settings.signaling_url)
    if not base:
        logger.warning(f"[WebRTC] TURN 조회 불가: WebSocket URL 아님 ({settings.signaling_url})")
        return []

    try:
        raw = await asyncio.to_thread(_get_turn_json, f"{base}/turn")
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"[WebRTC] TURN 자격증명 조회 실패, STUN만 사용: {e}")
        return []

    servers = parse_turn_response(raw)
    if servers is None:
        logger.warning("[WebRTC] TURN 응답 형식 오류, STUN만 사용")
        return []

    logger.info(f"[WebRTC] TURN 서버 {len(servers)}개 수신")
    return servers


async def resolve_ice_servers(settings: SessionSettings) -> List[RTCIceServer]:
    """정적 STUN 목록과 TURN 조회 결과를 합칩니다."""
    servers = build_static_servers(settings)
    if servers:
        logger.info(f"[WebRTC] STUN 서버 설정: {settings.stun_url}")
    else:
        logger.info("[WebRTC] STUN 서버 설정 없음")

    turn_servers = await fetch_turn_servers(settings)
    if not turn_servers:
        logger.info("[WebRTC] TURN 서버 없음 - STUN/host 후보만 사용")
    return servers + turn_servers
