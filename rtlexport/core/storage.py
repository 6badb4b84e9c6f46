"""
출력 저장소 관리: 원자적 쓰기 + 출력 디렉터리 락

규칙:
- 원자적 쓰기: temp → rename + fsync
- 출력 루트 락: 같은 디렉터리에 두 run이 동시에 쓰지 않도록 FileLock

파일시스템 안정성 (best-effort):
- fsync로 가능한 환경에서 내구성 강화 (파일 + 디렉토리)
- fsync 실패 시 경고 남기고 계속 진행
"""

import json
import logging
import os
import tempfile
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from filelock import FileLock, Timeout

from rtlexport.domain.constants import OUTPUT_LOCK_FILENAME
from rtlexport.domain.errors import ErrorCodes, IOFailure

logger = logging.getLogger(__name__)

# 락 timeout 기본값 (초)
DEFAULT_LOCK_TIMEOUT = 10.0

# =============================================================================
# Output Root
# =============================================================================


def ensure_output_root(output_dir: Path) -> Path:
    """
    출력 디렉터리 생성 (이미 있으면 그대로).

    Args:
        output_dir: 출력 루트

    Returns:
        출력 루트 경로

    Raises:
        IOFailure: OUTPUT_ROOT (fatal)
    """
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise IOFailure(
            ErrorCodes.OUTPUT_ROOT,
            f"cannot create output directory: {e}",
            fatal=True,
            path=str(output_dir),
        ) from e

    if not output_dir.is_dir():
        raise IOFailure(
            ErrorCodes.OUTPUT_ROOT,
            "output path exists and is not a directory",
            fatal=True,
            path=str(output_dir),
        )
    return output_dir


@contextmanager
def output_lock(output_dir: Path, config: dict) -> Generator[Path, None, None]:
    """
    출력 디렉터리 전체에 대한 락.

    사용법:
        with output_lock(output_dir, config):
            # 아티팩트/manifest 쓰기

    Args:
        output_dir: 출력 루트 (이미 존재해야 함)
        config: 설정 (export.lock_timeout)

    Yields:
        lock 파일 경로

    Raises:
        IOFailure: OUTPUT_LOCKED (fatal)
    """
    timeout = config.get("export", {}).get("lock_timeout", DEFAULT_LOCK_TIMEOUT)
    lock_path = output_dir / OUTPUT_LOCK_FILENAME
    lock = FileLock(lock_path, timeout=timeout)

    try:
        lock.acquire()
    except Timeout as e:
        raise IOFailure(
            ErrorCodes.OUTPUT_LOCKED,
            "another export run holds the output directory",
            fatal=True,
            path=str(output_dir),
            timeout=timeout,
        ) from e

    try:
        yield lock_path
    finally:
        lock.release()


# =============================================================================
# Atomic Write
# =============================================================================


def _fsync_dir(dir_path: Path) -> None:
    """
    디렉토리 fsync (가능한 환경에서).

    rename 후 디렉토리 엔트리까지 내구성을 강화하려면 필요.
    일부 OS/파일시스템에서는 지원되지 않을 수 있음.
    """
    try:
        dir_fd = os.open(str(dir_path), os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
    except (OSError, AttributeError) as e:
        logger.warning(
            f"Directory fsync failed for {dir_path}: {e}. "
            f"Rename durability may not be guaranteed."
        )


def atomic_write_text(path: Path, text: str) -> None:
    """
    원자적 텍스트 쓰기.

    동작:
    - 중간 상태 없음: temp → rename
    - 실패 시 cleanup: temp 파일 삭제, 기존 파일 보존

    Args:
        path: 저장할 파일 경로
        text: 내용
    """
    dir_path = path.parent
    dir_path.mkdir(parents=True, exist_ok=True)

    temp_path = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            dir=dir_path,
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
            newline="",
        ) as f:
            temp_path = Path(f.name)
            f.write(text)
            f.flush()
            try:
                os.fsync(f.fileno())
            except OSError as e:
                logger.warning(
                    f"File fsync failed for {path}: {e}. "
                    f"Data may not be durable on power loss."
                )

        os.replace(temp_path, path)  # 원자적

        _fsync_dir(dir_path)

    except Exception:
        if temp_path and temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass
        raise


def atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    """
    원자적 JSON 쓰기 (indent=2, 키 순서 유지).

    Args:
        path: 저장할 파일 경로
        data: JSON 직렬화할 데이터
    """
    atomic_write_text(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
