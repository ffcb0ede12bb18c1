"""포인터 좌표 정규화.

뷰포트(표시 영역) 픽셀 좌표를 원격 영상 기준 [0, 1] 좌표로 변환합니다.
영상은 원본 비율을 유지한 채 뷰포트 중앙에 가장 크게 표시된다고 가정합니다
(레터박스/필러박스).
"""

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class Viewport:
    """영상이 표시되는 영역 (화면 픽셀 기준)."""

    left: float
    top: float
    width: float
    height: float


def clamp01(v: float) -> float:
    if v < 0:
        return 0.0
    if v > 1:
        return 1.0
    return v


def normalize_pointer(
    client_x: float,
    client_y: float,
    viewport: Viewport,
    video_size: Optional[Tuple[int, int]] = None,
) -> Optional[Tuple[float, float]]:
    """포인터 위치를 정규화된 영상 좌표로 변환합니다.

    Args:
        client_x: 포인터 x (화면 픽셀)
        client_y: 포인터 y (화면 픽셀)
        viewport: 영상 표시 영역
        video_size: 원격 영상 (width, height). 모르면 뷰포트 전체 기준으로 계산

    Returns:
        Optional[Tuple[float, float]]: [0, 1] 범위로 clamp 된 (x, y).
            뷰포트 크기가 0 이하이면 None

    Examples:
        >>> normalize_pointer(400, 300, Viewport(0, 0, 800, 600), (1920, 1080))
        (0.5, 0.5)
        >>> normalize_pointer(10, 10, Viewport(0, 0, 800, 600), (1920, 1080))
        (0.0, 0.0)
    """
    if viewport.width <= 0 or viewport.height <= 0:
        return None

    if not video_size or video_size[0] <= 0 or video_size[1] <= 0:
        x = clamp01((client_x - viewport.left) / viewport.width)
        y = clamp01((client_y - viewport.top) / viewport.height)
        return x, y

    video_width, video_height = video_size

    # 종횡비 비교: viewport.width / viewport.height > video_width / video_height
    if viewport.width * video_height > video_width * viewport.height:
        # 좌우 여백 (pillarbox)
        displayed_height = viewport.height
        displayed_width = viewport.height * video_width / video_height
        pad_x = (viewport.width - displayed_width) / 2
        pad_y = 0.0
    else:
        # 상하 여백 (letterbox)
        displayed_width = viewport.width
        displayed_height = viewport.width * video_height / video_width
        pad_x = 0.0
        pad_y = (viewport.height - displayed_height) / 2

    x = clamp01((client_x - viewport.left - pad_x) / displayed_width)
    y = clamp01((client_y - viewport.top - pad_y) / displayed_height)
    return x, y
