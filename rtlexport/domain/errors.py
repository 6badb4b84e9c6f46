"""
Error definitions for the export engine.

규칙:
- 조용한 실패 금지 → 모든 실패는 코드가 있는 ExportError로 표현
- 치명적(fatal): LoadError, InvalidRequest, 출력 루트 IOFailure → 즉시 중단
- 인스턴스 단위: UnmatchedInstance, SchemaViolation, GenerationFailure,
  아티팩트 IOFailure → 기록 후 계속 진행
"""

from typing import Any


class ExportError(Exception):
    """
    Export 엔진 에러의 공통 베이스.

    Usage:
        raise SchemaViolation(ErrorCodes.PARAM_RANGE, "width out of range", param="width")
    """

    kind = "ExportError"
    fatal = False

    def __init__(self, code: str, message: str = "", **context: Any) -> None:
        self.code = code
        self.message = message
        self.context = context
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
        text = f"[{self.code}] {self.message}" if self.message else f"[{self.code}]"
        return f"{text} ({ctx_str})" if ctx_str else text

    def to_dict(self) -> dict[str, Any]:
        """로그/JSON 직렬화용."""
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
        }


class LoadError(ExportError):
    """템플릿 DB 로드 실패 (형식 오류, 모호한 중복 정의)."""

    kind = "LoadError"
    fatal = True


class InvalidRequest(ExportError):
    """인스턴스 요청 자체가 잘못됨 (형식 오류, 이름 중복)."""

    kind = "InvalidRequest"
    fatal = True


class UnmatchedInstance(ExportError):
    """후보 템플릿이 하나도 discriminant를 만족하지 않음."""

    kind = "UnmatchedInstance"


class SchemaViolation(ExportError):
    """resolved 파라미터가 템플릿 스키마를 위반."""

    kind = "SchemaViolation"


class GenerationFailure(ExportError):
    """generator 프로세스 실패, 출력 누락, timeout."""

    kind = "GenerationFailure"


class IOFailure(ExportError):
    """
    출력 쓰기 실패.

    출력 루트에 대한 실패는 fatal=True로 생성해서 실행을 중단한다.
    """

    kind = "IOFailure"

    def __init__(self, code: str, message: str = "", fatal: bool = False, **context: Any) -> None:
        self.fatal = fatal
        super().__init__(code, message, **context)


class Skipped(ExportError):
    """fail_fast 모드에서 앞선 실패 때문에 처리하지 않은 인스턴스."""

    kind = "Skipped"


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return str(value)


# =============================================================================
# Error Codes
# =============================================================================

class ErrorCodes:
    """에러 코드 상수. manifest/run log의 failure.code 값으로 그대로 기록됨."""

    # === Load (fatal) ===
    SOURCE_UNREADABLE = "SOURCE_UNREADABLE"
    MALFORMED_DESCRIPTOR = "MALFORMED_DESCRIPTOR"
    AMBIGUOUS_DESCRIPTOR = "AMBIGUOUS_DESCRIPTOR"

    # === Request (fatal) ===
    MALFORMED_INSTANCE = "MALFORMED_INSTANCE"
    DUPLICATE_INSTANCE = "DUPLICATE_INSTANCE"

    # === Match ===
    NO_MATCHING_TEMPLATE = "NO_MATCHING_TEMPLATE"

    # === Schema ===
    PARAM_MISSING = "PARAM_MISSING"
    PARAM_TYPE = "PARAM_TYPE"
    PARAM_RANGE = "PARAM_RANGE"
    PARAM_CHOICE = "PARAM_CHOICE"
    PARAM_UNDECLARED = "PARAM_UNDECLARED"
    PLACEHOLDER_MISSING = "PLACEHOLDER_MISSING"
    PLACEHOLDER_UNUSED = "PLACEHOLDER_UNUSED"
    RENDER_FAILED = "RENDER_FAILED"

    # === Generator ===
    GENERATOR_EXIT = "GENERATOR_EXIT"
    GENERATOR_TIMEOUT = "GENERATOR_TIMEOUT"
    GENERATOR_NO_OUTPUT = "GENERATOR_NO_OUTPUT"
    GENERATOR_LAUNCH = "GENERATOR_LAUNCH"
    GENERATOR_CANCELLED = "GENERATOR_CANCELLED"

    # === Output ===
    OUTPUT_ROOT = "OUTPUT_ROOT"
    OUTPUT_LOCKED = "OUTPUT_LOCKED"
    ARTIFACT_WRITE = "ARTIFACT_WRITE"

    # === Engine ===
    SKIPPED_AFTER_FAILURE = "SKIPPED_AFTER_FAILURE"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # === Warnings (run log) ===
    UNDECLARED_PARAMETER_DROPPED = "UNDECLARED_PARAMETER_DROPPED"
