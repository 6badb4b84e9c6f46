"""
해시 계산: descriptor_id, artifact key

규칙:
- 정렬된 키로 직렬화 (sort_keys=True)
- 값은 타입 태그 포함 (int 4 와 str "4"는 다른 키)
- SHA-256
"""

import hashlib
import json
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from rtlexport.domain.schemas import Discriminant, EnumValue


def canonical_value(value: Any) -> list[Any]:
    """
    파라미터 값을 타입 태그가 붙은 정규 형태로 변환.

    Args:
        value: int, str, EnumValue

    Returns:
        ["int", 4] / ["str", "x"] / ["enum", "signed"]
    """
    if isinstance(value, EnumValue):
        return ["enum", value.value]
    if isinstance(value, bool):
        return ["bool", value]
    if isinstance(value, int):
        return ["int", value]
    return ["str", str(value)]


def canonical_params(params: Mapping[str, Any]) -> dict[str, list[Any]]:
    """resolved 파라미터 전체의 정규 형태 (키 정렬)."""
    return {name: canonical_value(params[name]) for name in sorted(params)}


def _digest(payload: Any) -> str:
    serialized = json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(serialized.encode()).hexdigest()


def compute_descriptor_id(name: str, discriminants: Iterable[Discriminant]) -> str:
    """
    템플릿 시그니처 해시.

    discriminant 순서와 무관하도록 정렬 후 직렬화한다.
    (같은 조건을 다른 순서로 적은 두 항목은 같은 시그니처)

    Args:
        name: family 이름
        discriminants: 조건 목록

    Returns:
        SHA-256 해시 문자열
    """
    conds = sorted(
        (d.canonical() for d in discriminants),
        key=lambda c: json.dumps(c, sort_keys=True),
    )
    return _digest({"name": name, "discriminants": conds})


def compute_artifact_key(descriptor_id: str, params: Mapping[str, Any]) -> str:
    """
    Dedup 캐시 키: (템플릿 identity, resolved 파라미터).

    Args:
        descriptor_id: 템플릿 시그니처 해시
        params: resolved 파라미터

    Returns:
        SHA-256 해시 문자열
    """
    return _digest({"template": descriptor_id, "params": canonical_params(params)})


def compute_file_hash(file_path: Path, algorithm: str = "sha256") -> str:
    """
    파일 해시 계산.

    Args:
        file_path: 파일 경로
        algorithm: 해시 알고리즘 (기본: sha256)

    Returns:
        해시 문자열
    """
    h = hashlib.new(algorithm)
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()
