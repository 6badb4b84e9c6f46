"""
Data schemas for the export engine.

규칙:
- ComponentInstance, TemplateDescriptor는 생성 후 불변 (frozen)
- 파라미터 값 타입: int, str, EnumValue (bool/float 금지)
- 직렬화는 to_dict()로 통일 (manifest, run log)
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, ClassVar

from .constants import (
    ALWAYS_OPERATORS,
    EXACT_OPERATORS,
    HDL_EXTENSIONS,
)
from .errors import ErrorCodes, ExportError, InvalidRequest, SchemaViolation

# =============================================================================
# Parameter Values
# =============================================================================

@dataclass(frozen=True)
class EnumValue:
    """열거형 파라미터 값. 문서에서는 {enum: <value>} 형태로 기록."""
    value: str

    def __str__(self) -> str:
        return self.value


ParamValue = int | str | EnumValue


def plain_value(value: Any) -> Any:
    """비교/치환용 원시값 (EnumValue → str)."""
    return value.value if isinstance(value, EnumValue) else value


def parse_param_value(raw: Any) -> ParamValue:
    """
    문서의 원시 값을 ParamValue로 변환.

    Raises:
        ValueError: 지원하지 않는 타입
    """
    if isinstance(raw, dict) and set(raw) == {"enum"}:
        return EnumValue(str(raw["enum"]))
    if isinstance(raw, bool) or not isinstance(raw, (int, str)):
        raise ValueError(f"unsupported parameter value: {raw!r}")
    return raw


def encode_param_value(value: ParamValue) -> Any:
    """parse_param_value의 역변환 (JSON/YAML 출력용)."""
    if isinstance(value, EnumValue):
        return {"enum": value.value}
    return value


# =============================================================================
# Component Instance
# =============================================================================

@dataclass(frozen=True)
class ComponentInstance:
    """
    상위 컴파일러가 만든 모듈 요청 1건.

    name: run 안에서 유일한 인스턴스 이름 (진단 메시지에 사용)
    module: 모듈 family 이름 (예: adder)
    """
    name: str
    module: str
    parameters: Mapping[str, ParamValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    def describe(self) -> str:
        """예: adder0: adder(width=4, kind=signed)"""
        params = ", ".join(
            f"{k}={plain_value(v)}" for k, v in sorted(self.parameters.items())
        )
        return f"{self.name}: {self.module}({params})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "module": self.module,
            "parameters": {
                k: encode_param_value(v) for k, v in sorted(self.parameters.items())
            },
        }

    @classmethod
    def from_dict(cls, data: Any, index: int = 0) -> "ComponentInstance":
        """
        문서 항목에서 인스턴스 생성.

        Raises:
            InvalidRequest: MALFORMED_INSTANCE
        """
        if not isinstance(data, dict):
            raise InvalidRequest(
                ErrorCodes.MALFORMED_INSTANCE,
                "instance entry must be a mapping",
                index=index,
            )

        module = data.get("module")
        if not isinstance(module, str) or not module:
            raise InvalidRequest(
                ErrorCodes.MALFORMED_INSTANCE,
                "instance requires a 'module' name",
                index=index,
            )
        name = data.get("name") or f"{module}_{index}"

        raw_params = data.get("parameters") or {}
        if not isinstance(raw_params, dict):
            raise InvalidRequest(
                ErrorCodes.MALFORMED_INSTANCE,
                "'parameters' must be a mapping",
                instance=name,
            )

        params: dict[str, ParamValue] = {}
        for key, raw in raw_params.items():
            try:
                params[str(key)] = parse_param_value(raw)
            except ValueError as e:
                raise InvalidRequest(
                    ErrorCodes.MALFORMED_INSTANCE,
                    str(e),
                    instance=name,
                    param=key,
                ) from e

        return cls(name=str(name), module=module, parameters=params)


# =============================================================================
# Template Descriptor
# =============================================================================

@dataclass(frozen=True)
class Discriminant:
    """
    후보 판정 조건 1개.

    op별 value 형태:
    - "==", "!=", "<", "<=", ">", ">=": 단일 값
    - "in": 값 tuple
    - "between": (min, max) 포함 구간
    - "any": None (항상 참)
    """
    param: str
    op: str
    value: Any = None

    @property
    def kind(self) -> str:
        """exact, range, always 중 하나."""
        if self.op in EXACT_OPERATORS:
            return "exact"
        if self.op in ALWAYS_OPERATORS:
            return "always"
        return "range"

    def holds(self, actual: ParamValue | None) -> bool:
        """인스턴스 값이 조건을 만족하는지."""
        if self.op == "any":
            return True
        if actual is None:
            return False

        value = plain_value(actual)
        if self.op == "==":
            return bool(value == plain_value(self.value))
        if self.op == "!=":
            return bool(value != plain_value(self.value))
        if self.op == "in":
            return value in tuple(plain_value(v) for v in self.value)

        # 순서 비교는 정수만
        if not isinstance(value, int) or isinstance(value, bool):
            return False
        if self.op == "between":
            low, high = self.value
            return bool(low <= value <= high)
        if self.op == "<":
            return bool(value < self.value)
        if self.op == "<=":
            return bool(value <= self.value)
        if self.op == ">":
            return bool(value > self.value)
        if self.op == ">=":
            return bool(value >= self.value)
        return False

    def describe(self) -> str:
        if self.op == "any":
            return f"{self.param} any"
        if self.op == "between":
            return f"{self.param} in [{self.value[0]}, {self.value[1]}]"
        if self.op == "in":
            return f"{self.param} in {{{', '.join(str(v) for v in self.value)}}}"
        return f"{self.param} {self.op} {plain_value(self.value)}"

    def canonical(self) -> list[Any]:
        """해시/정렬용 정규 표현."""
        if isinstance(self.value, tuple):
            value: Any = [encode_param_value(v) for v in self.value]
        else:
            value = encode_param_value(self.value) if self.value is not None else None
        return [self.param, self.op, value]


@dataclass(frozen=True)
class ParamSpec:
    """템플릿이 선언한 파라미터 스키마 1개."""
    name: str
    type: str  # int, str, enum
    min: int | None = None
    max: int | None = None
    choices: tuple[str, ...] | None = None
    default: ParamValue | None = None

    @property
    def required(self) -> bool:
        return self.default is None

    def check(self, value: Any) -> ParamValue:
        """
        값 검증 후 정규화된 값 반환.

        Raises:
            SchemaViolation: PARAM_TYPE, PARAM_RANGE, PARAM_CHOICE
        """
        if self.type == "int":
            if isinstance(value, bool) or not isinstance(value, int):
                raise SchemaViolation(
                    ErrorCodes.PARAM_TYPE,
                    f"parameter '{self.name}' must be an integer",
                    param=self.name,
                    value=plain_value(value),
                )
            if (self.min is not None and value < self.min) or (
                self.max is not None and value > self.max
            ):
                raise SchemaViolation(
                    ErrorCodes.PARAM_RANGE,
                    f"parameter '{self.name}' out of range",
                    param=self.name,
                    value=value,
                    min=self.min,
                    max=self.max,
                )
            return value

        if self.type == "str":
            if not isinstance(value, str):
                raise SchemaViolation(
                    ErrorCodes.PARAM_TYPE,
                    f"parameter '{self.name}' must be a string",
                    param=self.name,
                    value=plain_value(value),
                )
            if self.choices is not None and value not in self.choices:
                raise SchemaViolation(
                    ErrorCodes.PARAM_CHOICE,
                    f"parameter '{self.name}' not in allowed values",
                    param=self.name,
                    value=value,
                    choices=list(self.choices),
                )
            return value

        # enum: 문자열도 허용하되 EnumValue로 정규화
        if isinstance(value, bool) or not isinstance(value, (str, EnumValue)):
            raise SchemaViolation(
                ErrorCodes.PARAM_TYPE,
                f"parameter '{self.name}' must be an enumerated value",
                param=self.name,
                value=plain_value(value),
            )
        raw = plain_value(value)
        if self.choices is not None and raw not in self.choices:
            raise SchemaViolation(
                ErrorCodes.PARAM_CHOICE,
                f"parameter '{self.name}' not in allowed values",
                param=self.name,
                value=raw,
                choices=list(self.choices),
            )
        return EnumValue(raw)

    def canonical(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "min": self.min,
            "max": self.max,
            "choices": list(self.choices) if self.choices is not None else None,
            "default": encode_param_value(self.default) if self.default is not None else None,
        }


@dataclass(frozen=True)
class StaticTemplate:
    """Static 치환 전략: Jinja2 텍스트 ({{ name }} placeholder)."""
    tag: ClassVar[str] = "static"

    text: str
    path: Path | None = None  # 파일에서 읽었다면 원본 경로

    def canonical(self) -> dict[str, Any]:
        return {"tag": self.tag, "text": self.text}


@dataclass(frozen=True)
class GeneratorInvocation:
    """
    Generator 호출 전략.

    command: $PARAMS, $OUTPUT, $OUTPUT_DIR, $MODULE_NAME, $SOURCE_DIR, $<param> 치환
    output: 생성될 파일명 ($MODULE_NAME 치환, None이면 <module_name><ext>)
    timeout: 초 단위 (None이면 설정값 사용)
    """
    tag: ClassVar[str] = "generator"

    command: str
    output: str | None = None
    timeout: float | None = None

    def canonical(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "command": self.command,
            "output": self.output,
            "timeout": self.timeout,
        }


Strategy = StaticTemplate | GeneratorInvocation


@dataclass(frozen=True)
class TemplateDescriptor:
    """
    템플릿 DB 항목 1개.

    descriptor_id는 (name, discriminants) 시그니처의 SHA-256이며
    후보 정렬과 tie-break의 기준이 된다.
    """
    name: str
    discriminants: tuple[Discriminant, ...]
    parameters: tuple[ParamSpec, ...]
    strategy: Strategy
    descriptor_id: str
    hdl: str = "verilog"
    source_dir: Path | None = field(default=None, compare=False)

    @property
    def schema(self) -> dict[str, ParamSpec]:
        return {p.name: p for p in self.parameters}

    @property
    def extension(self) -> str:
        return HDL_EXTENSIONS[self.hdl]

    def definition(self) -> dict[str, Any]:
        """충돌 판정용: 시그니처 외의 정의 부분."""
        return {
            "parameters": [p.canonical() for p in self.parameters],
            "strategy": self.strategy.canonical(),
            "hdl": self.hdl,
        }

    def describe(self) -> str:
        conds = ", ".join(d.describe() for d in self.discriminants) or "always"
        return f"{self.name}[{conds}] ({self.strategy.tag})"


# =============================================================================
# Match / Artifact / Manifest
# =============================================================================

@dataclass(frozen=True)
class Match:
    """인스턴스 + 선택된 템플릿 + resolved 파라미터."""
    instance: ComponentInstance
    descriptor: TemplateDescriptor
    params: Mapping[str, ParamValue]
    dropped: tuple[str, ...] = ()  # 스키마에 없어 버려진 인스턴스 파라미터

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))


@dataclass
class ConcretizedArtifact:
    """concretize 결과. path는 Output Writer가 저장한 뒤 채워짐."""
    key: str
    family: str
    hdl: str
    content: str
    descriptor_id: str = ""
    path: Path | None = None

    @property
    def extension(self) -> str:
        return HDL_EXTENSIONS[self.hdl]


@dataclass
class InstanceFailure:
    """인스턴스 단위 실패 기록."""
    instance: str
    module: str
    parameters: dict[str, Any]
    kind: str
    code: str
    message: str = ""
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_error(cls, instance: ComponentInstance, error: ExportError) -> "InstanceFailure":
        data = error.to_dict()
        return cls(
            instance=instance.name,
            module=instance.module,
            parameters=instance.to_dict()["parameters"],
            kind=error.kind,
            code=error.code,
            message=error.message,
            context=data["context"],
        )

    def describe(self) -> str:
        """진단 1줄: 인스턴스와 요청 파라미터를 포함."""
        params = ", ".join(
            f"{k}={plain_value(parse_param_value(v))}" for k, v in self.parameters.items()
        )
        text = f"{self.instance}: {self.module}({params}) -> {self.kind} [{self.code}]"
        return f"{text} {self.message}" if self.message else text

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


@dataclass
class ManifestEntry:
    """원본 인스턴스 → 아티팩트 경로 또는 실패."""
    instance: ComponentInstance
    artifact: ConcretizedArtifact | None = None
    failure: InstanceFailure | None = None
    descriptor_id: str | None = None
    cache_hit: bool = False

    @property
    def succeeded(self) -> bool:
        return self.failure is None and self.artifact is not None and self.artifact.path is not None

    def to_dict(self, root: Path | None = None) -> dict[str, Any]:
        data: dict[str, Any] = self.instance.to_dict()
        data["template"] = self.descriptor_id
        if self.succeeded:
            assert self.artifact is not None and self.artifact.path is not None
            path = self.artifact.path
            data["artifact"] = str(path.relative_to(root)) if root else str(path)
            data["key"] = self.artifact.key
            data["cache_hit"] = self.cache_hit
        else:
            data["failure"] = self.failure.to_dict() if self.failure else None
        return data


@dataclass
class RunSummary:
    """실행 요약. 모든 인스턴스가 아티팩트를 가졌을 때만 success."""
    total: int = 0
    matched: int = 0
    generated: int = 0
    artifacts: int = 0
    failures: list[InstanceFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures and self.generated == self.total

    def format_report(self) -> list[str]:
        lines = [
            f"instances: {self.total}, matched: {self.matched}, "
            f"generated: {self.generated}, artifacts: {self.artifacts}, "
            f"failures: {len(self.failures)}"
        ]
        lines.extend(f"  FAIL {f.describe()}" for f in self.failures)
        return lines

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "matched": self.matched,
            "generated": self.generated,
            "artifacts": self.artifacts,
            "success": self.success,
            "failures": [
                {"instance": f.instance, **f.to_dict()} for f in self.failures
            ],
        }


@dataclass(frozen=True)
class Design:
    """
    Top-level 디자인.

    name: 최상위 모듈 이름 (<name>.<ext> 파일, ASIC 스크립트의 top)
    content: 디자인 HDL 텍스트 (None이면 파일을 쓰지 않음)
    """
    name: str
    content: str | None = None
    hdl: str = "verilog"

    def __post_init__(self) -> None:
        if self.hdl not in HDL_EXTENSIONS:
            raise ValueError(f"unsupported hdl {self.hdl!r}")

    @property
    def extension(self) -> str:
        return HDL_EXTENSIONS[self.hdl]

    @classmethod
    def from_file(cls, name: str, path: Path) -> "Design":
        """디자인 파일 로드. hdl은 확장자로 결정."""
        suffix = path.suffix.lower()
        hdl = next((h for h, ext in HDL_EXTENSIONS.items() if ext == suffix), None)
        if hdl is None:
            raise ValueError(f"cannot infer hdl from design file extension {suffix!r}")
        return cls(name=name, content=path.read_text(encoding="utf-8"), hdl=hdl)


# =============================================================================
# Run Log Schemas
# =============================================================================

@dataclass
class WarningLog:
    """
    경고 로그.

    경고 필수 컨텍스트: level, code, instance, message
    """
    level: str = "warning"
    code: str = ""
    instance: str = ""
    message: str = ""
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "code": self.code,
            "instance": self.instance,
            "message": self.message,
            "context": self.context,
        }


@dataclass
class RunLog:
    """
    실행 로그.

    run 단위 실행 결과 및 메타데이터.
    """
    run_id: str
    started_at: str  # ISO 8601
    finished_at: str | None = None
    result: str = "pending"  # pending, success, failed

    # Inputs
    template_sources: list[str] = field(default_factory=list)
    templates_loaded: int = 0
    policy: str = ""

    # Outcome
    summary: dict[str, Any] | None = None
    warnings: list[WarningLog] = field(default_factory=list)

    # Error (fatal)
    error_code: str | None = None
    error_context: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "result": self.result,
            "template_sources": self.template_sources,
            "templates_loaded": self.templates_loaded,
            "policy": self.policy,
            "summary": self.summary,
            "warnings": [w.to_dict() for w in self.warnings],
            "error_code": self.error_code,
            "error_context": self.error_context,
        }
