"""
ID 생성: run_id, 아티팩트 파일명

규칙:
- 아티팩트 파일명은 결정론적: 동일 (family, key) → 동일 이름
- run_id만 매 실행 새로 발급
"""

import uuid
from datetime import UTC, datetime

from rtlexport.domain.constants import ARTIFACT_HASH_LENGTH, RUN_ID_PREFIX


def generate_run_id() -> str:
    """
    Run ID 생성.

    고유성 보장: UUID v4
    포맷: RUN-{timestamp}-{uuid[:8]}

    Returns:
        run_id 문자열
    """
    now = datetime.now(UTC)
    timestamp = now.strftime("%Y%m%d%H%M%S")
    unique = uuid.uuid4().hex[:8]

    return f"{RUN_ID_PREFIX}{timestamp}-{unique}"


def artifact_stem(family: str, key: str) -> str:
    """
    아티팩트 파일명(확장자 제외) 겸 HDL 모듈 이름.

    결정론적: 동일 family + key → 동일 stem
    포맷: {family}_{key[:10]}

    Args:
        family: 모듈 family 이름
        key: artifact key (SHA-256 hex)

    Returns:
        HDL 식별자로도 유효한 문자열
    """
    return f"{sanitize_identifier(family)}_{key[:ARTIFACT_HASH_LENGTH]}"


def sanitize_identifier(value: str) -> str:
    """
    HDL 식별자/파일명에 쓸 수 있도록 문자열 정리.

    - 공백, 하이픈, 점 → 밑줄
    - 그 외 비ASCII/특수문자 제거
    - 숫자로 시작하면 앞에 m_ 추가
    - 최대 40자
    """
    sanitized = ""
    for c in value:
        if c.isascii() and (c.isalnum() or c == "_"):
            sanitized += c
        elif c in " -.":
            sanitized += "_"

    # 연속 밑줄 정리
    while "__" in sanitized:
        sanitized = sanitized.replace("__", "_")

    sanitized = sanitized.strip("_")

    if not sanitized:
        return "module"
    if sanitized[0].isdigit():
        sanitized = f"m_{sanitized}"
    return sanitized[:40]
