"""
Run logging: run log schema, events, warnings

규칙:
- 경고 필수 컨텍스트: level, code, instance, message
- run log는 성공/실패/중단 모두 저장
"""

import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from rtlexport.core.ids import generate_run_id
from rtlexport.core.storage import atomic_write_json
from rtlexport.domain.schemas import RunLog, RunSummary, WarningLog

# 병렬 실행 시 warnings 리스트 보호
_warnings_lock = threading.Lock()

# =============================================================================
# Run Log Management
# =============================================================================


def create_run_log(template_sources: list[str] | None = None) -> RunLog:
    """
    새 RunLog 생성.

    Args:
        template_sources: 로드한 템플릿 DB 소스 목록

    Returns:
        초기화된 RunLog
    """
    now = datetime.now(UTC).isoformat()

    return RunLog(
        run_id=generate_run_id(),
        started_at=now,
        result="pending",
        template_sources=list(template_sources or []),
    )


def emit_warning(
    run_log: RunLog,
    code: str,
    instance: str,
    message: str,
    **context: Any,
) -> None:
    """
    경고 이벤트 기록.

    Args:
        run_log: RunLog 인스턴스
        code: 경고 코드 (예: UNDECLARED_PARAMETER_DROPPED)
        instance: 인스턴스 이름
        message: 경고 메시지
        **context: 추가 컨텍스트
    """
    warning = WarningLog(
        level="warning",
        code=code,
        instance=instance,
        message=message,
        context=context,
    )
    with _warnings_lock:
        run_log.warnings.append(warning)


def complete_run_log(
    run_log: RunLog,
    summary: RunSummary | None = None,
    error_code: str | None = None,
    error_context: dict[str, Any] | None = None,
) -> None:
    """
    RunLog 완료 처리.

    summary 없이 error_code만 있으면 fatal 중단으로 기록.

    Args:
        run_log: RunLog 인스턴스
        summary: 실행 요약
        error_code: 에러 코드 (fatal 시)
        error_context: 에러 컨텍스트 (fatal 시)
    """
    run_log.finished_at = datetime.now(UTC).isoformat()

    if summary is not None:
        run_log.summary = summary.to_dict()
        run_log.result = "success" if summary.success else "failed"
    else:
        run_log.result = "aborted"

    if error_code is not None:
        run_log.error_code = error_code
        run_log.error_context = error_context


def save_run_log(run_log: RunLog, logs_dir: Path) -> Path:
    """
    RunLog를 파일로 저장.

    Args:
        run_log: RunLog 인스턴스
        logs_dir: logs/ 디렉터리 경로

    Returns:
        저장된 파일 경로
    """
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / f"run_{run_log.run_id}.json"
    atomic_write_json(log_path, run_log.to_dict())
    return log_path

