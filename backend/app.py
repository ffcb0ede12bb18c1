"""screenlink CLI - P2P 화면 공유 호스트/클라이언트 실행기.

같은 룸 코드로 호스트와 클라이언트를 실행하면 시그널링 릴레이를 통해
WebRTC 연결이 수립됩니다.

Usage:
    호스트 (화면 공유, 원격 제어 허용):
        $ python app.py host --room AB12CD --allow-control
    클라이언트:
        $ python app.py client --room AB12CD

주요 기능:
    - 환경변수(config/.env, SCREENLINK_*) 기반 세션 설정, CLI 옵션으로 덮어쓰기
    - 콘솔 + 일자별 파일 로깅, 오래된 로그 자동 정리
    - 호스트: ffmpeg 캡처 장치 선택, dry-run 입력 주입
    - 클라이언트: 연결 통계 주기적 출력, control 채널 ping
"""
import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

from dotenv import load_dotenv

# Load 환경변수 from config/.env
load_dotenv(Path(__file__).parent / "config" / ".env")


# 로그 설정
os.makedirs("logs", exist_ok=True)
log_filename = f"logs/screenlink_{datetime.now().strftime('%Y%m%d')}.log"

# 로그 레벨 (환경변수로 제어)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# 로그 보관 기간 (일) - 기본 60일 (2개월)
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "60"))


def cleanup_old_logs(log_dir: str = "logs", retention_days: int = LOG_RETENTION_DAYS) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)

    Returns:
        삭제된 파일 수
    """
    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in Path(log_dir).glob("screenlink_*.log"):
        try:
            date_str = log_file.stem.replace("screenlink_", "")
            file_date = datetime.strptime(date_str, "%Y%m%d")
            if file_date < cutoff_date:
                log_file.unlink()
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count


logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(),  # 콘솔 출력
        logging.FileHandler(log_filename, encoding="utf-8"),  # 파일 저장
    ]
)
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={LOG_LEVEL}")

from screenlink import (  # noqa: E402
    ClientSession,
    ConnectionStatus,
    HostSession,
    LoggingInjectionService,
    MediaPlayerCapture,
    SessionSettings,
    generate_room_code,
)

# 플랫폼별 기본 캡처 장치 (ffmpeg 입력 포맷, 입력 이름)
DEFAULT_CAPTURE = {
    "linux": ("x11grab", ":0.0"),
    "darwin": ("avfoundation", "1:none"),
    "win32": ("gdigrab", "desktop"),
}

# 클라이언트 control 채널 ping 주기 (초)
PING_INTERVAL = 5.0


def build_settings(args: argparse.Namespace) -> SessionSettings:
    """환경변수 설정 위에 CLI 옵션을 덮어씁니다."""
    overrides = {}
    if args.signaling_url is not None:
        overrides["signaling_url"] = args.signaling_url
    if args.room is not None:
        overrides["room"] = args.room
    if args.stun_url is not None:
        overrides["stun_url"] = args.stun_url
    if args.turn:
        overrides["use_turn_from_signaling"] = True
    return SessionSettings(**overrides)


def _log_status(role: str):
    def on_status(status: ConnectionStatus):
        logger.info(f"[{role}] 상태: {status.value}")
    return on_status


def _log_error(role: str):
    def on_error(error):
        if error is not None:
            logger.error(f"[{role}] {error.message}")
    return on_error


async def run_host(args: argparse.Namespace) -> int:
    settings = build_settings(args)
    if not settings.room:
        settings = settings.model_copy(update={"room": generate_room_code()})
        logger.info(f"룸 코드 생성: {settings.room}")

    default_format, default_source = DEFAULT_CAPTURE.get(sys.platform, (None, ""))
    options = {"framerate": str(args.framerate)}
    if args.video_size:
        options["video_size"] = args.video_size
    capture = MediaPlayerCapture(
        args.source or default_source,
        format=args.format or default_format,
        options=options,
    )

    host = HostSession(settings, capture, injector=LoggingInjectionService())
    host.on_status_callback = _log_status("Host")
    host.on_error_callback = _log_error("Host")
    host.allow_control = args.allow_control

    print(f"Room: {settings.room}")
    if not await host.start():
        await host.stop()
        return 1

    try:
        await asyncio.Event().wait()
    finally:
        await host.stop()
    return 0


async def run_client(args: argparse.Namespace) -> int:
    settings = build_settings(args)
    client = ClientSession(settings)
    client.on_status_callback = _log_status("Client")
    client.on_error_callback = _log_error("Client")
    client.on_stats_callback = lambda stats: logger.info(f"[Client] {stats.summary()}")
    client.on_pong_callback = lambda rtt_ms: logger.info(f"[Client] control RTT {rtt_ms:.1f}ms")

    if not await client.start():
        await client.stop()
        return 1

    try:
        while True:
            await asyncio.sleep(PING_INTERVAL)
            if client.status == ConnectionStatus.CONNECTED:
                client.send_ping()
    finally:
        await client.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="screenlink P2P screen sharing")
    subparsers = parser.add_subparsers(dest="role", required=True)

    def add_common(sub: argparse.ArgumentParser):
        sub.add_argument("--room", type=str, default=None,
                         help="Room code (default: SCREENLINK_ROOM)")
        sub.add_argument("--signaling-url", type=str, default=None,
                         help="Signaling relay WebSocket URL (default: SCREENLINK_SIGNALING_URL)")
        sub.add_argument("--stun-url", type=str, default=None,
                         help="STUN server URL, empty string disables STUN")
        sub.add_argument("--turn", action="store_true",
                         help="Fetch TURN credentials from the relay /turn endpoint")

    host = subparsers.add_parser("host", help="Share this screen")
    add_common(host)
    host.add_argument("--source", type=str, default=None,
                      help="ffmpeg capture input (e.g. ':0.0', '1:none', 'desktop')")
    host.add_argument("--format", type=str, default=None,
                      help="ffmpeg capture format (x11grab, avfoundation, gdigrab)")
    host.add_argument("--framerate", type=int, default=30,
                      help="Capture frame rate")
    host.add_argument("--video-size", type=str, default=None,
                      help="Capture size, e.g. 1920x1080")
    host.add_argument("--allow-control", action="store_true",
                      help="Accept remote input (dry-run injection)")

    client = subparsers.add_parser("client", help="View and control a remote screen")
    add_common(client)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    deleted_logs = cleanup_old_logs()
    if deleted_logs > 0:
        logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 ({LOG_RETENTION_DAYS}일 이상)")

    runner = run_host if args.role == "host" else run_client
    try:
        return asyncio.run(runner(args))
    except KeyboardInterrupt:
        logger.info("종료 요청 - 세션 정리 완료")
        return 0


if __name__ == "__main__":
    sys.exit(main())
