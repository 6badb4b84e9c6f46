"""
Dedup 캐시: (템플릿 identity, resolved 파라미터) → concretize 결과

동시성 규칙:
- 조회 + in-flight 등록은 하나의 락 구간에서 원자적으로 수행
- 같은 키의 첫 요청자만 concretize 실행, 이후 요청자는 그 결과를 기다림
- 실패도 캐시함 (실패하는 generator를 키당 한 번만 호출)
- concretize 자체는 락 밖에서 실행
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from rtlexport.domain.errors import ExportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Slot(Generic[T]):
    """키 하나의 in-flight/완료 상태."""
    done: threading.Event = field(default_factory=threading.Event)
    value: T | None = None
    error: ExportError | None = None


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0


class DedupCache(Generic[T]):
    """
    키별 1회 계산 보장 memo 테이블.

    Usage:
        cache = DedupCache()
        artifact, hit = cache.get_or_compute(key, lambda: concretize(match))
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._slots: dict[str, _Slot[T]] = {}
        self.stats = CacheStats()

    def get_or_compute(self, key: str, compute: Callable[[], T]) -> tuple[T, bool]:
        """
        캐시 조회, 없으면 계산 후 저장.

        Args:
            key: artifact key
            compute: 캐시 miss 시 호출할 함수 (ExportError를 raise할 수 있음)

        Returns:
            (값, cache hit 여부)

        Raises:
            ExportError: compute가 (이번 또는 이전 호출에서) 실패한 경우
        """
        with self._lock:
            slot = self._slots.get(key)
            owner = slot is None
            if owner:
                slot = _Slot()
                self._slots[key] = slot
                self.stats.misses += 1
            else:
                self.stats.hits += 1

        assert slot is not None

        if owner:
            try:
                slot.value = compute()
            except ExportError as e:
                slot.error = e
            except BaseException:
                # 예상 밖 예외: 대기자가 영원히 멈추지 않도록 슬롯 제거 후 전파
                with self._lock:
                    self._slots.pop(key, None)
                slot.done.set()
                raise
            slot.done.set()
        else:
            slot.done.wait()
            logger.debug(f"Dedup cache hit: {key[:12]}")

        if slot.error is not None:
            raise slot.error
        if slot.value is None:
            # 소유자가 예상 밖 예외로 빠진 경우: 직접 다시 계산
            return self.get_or_compute(key, compute)
        return slot.value, not owner

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._slots

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)
