"""룸 코드 정규화 및 생성.

룸 코드는 `[A-Z0-9]` 문자만 사용합니다. 비교나 전송 전에 항상
normalize_room()을 거쳐야 합니다.
"""

import re
import secrets

# 혼동하기 쉬운 문자(0/O, 1/I)는 생성 시 제외
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

_DISALLOWED = re.compile(r"[^A-Z0-9]+")


def normalize_room(raw: str) -> str:
    """룸 코드를 정규화합니다.

    앞뒤 공백 제거 → 대문자 변환 → 허용되지 않는 문자 제거 순으로 처리하며,
    여러 번 적용해도 결과가 같습니다.

    Args:
        raw: 사용자가 입력한 룸 코드

    Returns:
        str: `[A-Z0-9]*` 형태의 룸 코드 (빈 문자열 가능)

    Examples:
        >>> normalize_room("  ab-12 cd ")
        'AB12CD'
    """
    return _DISALLOWED.sub("", raw.strip().upper())


def generate_room_code(length: int = 6) -> str:
    """새 룸 코드를 무작위로 생성합니다."""
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(length))
