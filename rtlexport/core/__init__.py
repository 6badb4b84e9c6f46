"""
Core layer: 출력 안전 핵심 모듈.

역할:
- 해시 (descriptor_id, artifact key), ID, dedup 캐시
- 원자적 쓰기, 출력 락, run log
- timeout 제한 프로세스 호출
"""

from .cache import DedupCache
from .hashing import compute_artifact_key, compute_descriptor_id
from .ids import artifact_stem, generate_run_id
from .logging import complete_run_log, create_run_log, emit_warning, save_run_log
from .process import BoundedProcessCall, CallResult
from .storage import (
    atomic_write_json,
    atomic_write_text,
    ensure_output_root,
    output_lock,
)

__all__ = [
    # cache
    "DedupCache",
    # hashing
    "compute_descriptor_id",
    "compute_artifact_key",
    # ids
    "generate_run_id",
    "artifact_stem",
    # logging
    "create_run_log",
    "emit_warning",
    "complete_run_log",
    "save_run_log",
    # process
    "BoundedProcessCall",
    "CallResult",
    # storage
    "atomic_write_json",
    "atomic_write_text",
    "ensure_output_root",
    "output_lock",
]
