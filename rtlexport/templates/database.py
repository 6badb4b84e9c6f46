"""
템플릿 DB: descriptor 로드 + family별 인덱스.

핵심 규칙:
- 잘못된 항목은 LoadError (fatal, 매칭 시작 전에 중단)
- 같은 (name, discriminants) 시그니처 + 다른 정의 → AMBIGUOUS_DESCRIPTOR
- 완전히 같은 항목의 중복 정의는 하나로 합침
- lookup_candidates()는 로드 순서와 무관한 정렬 (descriptor_id 오름차순)
- 한 문서의 로드는 전부 성공하거나 전부 반영되지 않음
"""

import json
import logging
import re
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

import yaml
from jinja2 import TemplateSyntaxError

from rtlexport.core.hashing import compute_descriptor_id
from rtlexport.domain.constants import (
    ALL_OPERATORS,
    DEFAULT_HDL,
    HDL_EXTENSIONS,
    PARAM_TYPES,
)
from rtlexport.domain.errors import ErrorCodes, LoadError, SchemaViolation
from rtlexport.domain.schemas import (
    Discriminant,
    EnumValue,
    GeneratorInvocation,
    ParamSpec,
    StaticTemplate,
    Strategy,
    TemplateDescriptor,
    parse_param_value,
)
from rtlexport.render.static import check_syntax

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# family 이름: 영문/숫자/밑줄/점 (예: adder, handshake.addi)
TEMPLATE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")
PARAM_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

SOURCE_SUFFIXES = (".yaml", ".yml", ".json")

# 순서 비교 연산자 (정수 값 필요)
ORDERING_OPERATORS = frozenset(["<", "<=", ">", ">="])


# =============================================================================
# Source Reading
# =============================================================================

def read_source_document(path: Path) -> Any:
    """
    YAML/JSON 문서 읽기.

    Raises:
        LoadError: SOURCE_UNREADABLE
    """
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise LoadError(
            ErrorCodes.SOURCE_UNREADABLE,
            f"cannot read template source: {e}",
            source=str(path),
        ) from e


def iter_source_files(source: Path) -> list[Path]:
    """파일이면 그대로, 디렉터리면 YAML/JSON 파일을 이름순으로."""
    if source.is_dir():
        return sorted(
            p for p in source.iterdir()
            if p.is_file() and p.suffix in SOURCE_SUFFIXES
        )
    return [source]


# =============================================================================
# Descriptor Parsing
# =============================================================================

def _malformed(origin: str, message: str, **context: Any) -> LoadError:
    return LoadError(ErrorCodes.MALFORMED_DESCRIPTOR, message, origin=origin, **context)


def parse_param_spec(name: Any, raw: Any, origin: str) -> ParamSpec:
    """
    파라미터 스키마 1개 파싱.

    허용 형태:
        width: int
        width: {type: int, min: 1, max: 64, default: 8}
        kind: {type: enum, choices: [signed, unsigned]}
    """
    if not isinstance(name, str) or not PARAM_NAME_PATTERN.match(name):
        raise _malformed(origin, f"invalid parameter name: {name!r}")

    if isinstance(raw, str):
        raw = {"type": raw}
    if not isinstance(raw, dict):
        raise _malformed(origin, f"parameter '{name}' must be a type name or mapping")

    ptype = raw.get("type")
    if ptype not in PARAM_TYPES:
        raise _malformed(origin, f"parameter '{name}' has unknown type {ptype!r}", allowed=list(PARAM_TYPES))

    low, high = raw.get("min"), raw.get("max")
    for bound in (low, high):
        if bound is not None and (isinstance(bound, bool) or not isinstance(bound, int)):
            raise _malformed(origin, f"parameter '{name}' bounds must be integers")
    if (low is not None or high is not None) and ptype != "int":
        raise _malformed(origin, f"parameter '{name}': min/max only apply to int")
    if low is not None and high is not None and low > high:
        raise _malformed(origin, f"parameter '{name}': min > max")

    choices = raw.get("choices")
    if choices is not None:
        if ptype == "int" or not isinstance(choices, list) or not choices:
            raise _malformed(origin, f"parameter '{name}': choices must be a non-empty list of strings")
        choices = tuple(str(c) for c in choices)
    elif ptype == "enum":
        raise _malformed(origin, f"enum parameter '{name}' requires choices")

    spec = ParamSpec(name=name, type=ptype, min=low, max=high, choices=choices)

    if "default" in raw and raw["default"] is not None:
        try:
            default = spec.check(parse_param_value(raw["default"]))
        except (ValueError, SchemaViolation) as e:
            raise _malformed(origin, f"parameter '{name}': invalid default ({e})") from e
        spec = ParamSpec(
            name=name, type=ptype, min=low, max=high, choices=choices, default=default,
        )
    return spec


def parse_discriminant(raw: Any, schema: Mapping[str, ParamSpec], origin: str) -> Discriminant:
    """
    discriminant 1개 파싱.

    허용 형태:
        {param: width, op: "<=", value: 8}
        {param: width, op: between, min: 9, max: 64}
        {param: kind, op: in, values: [signed, unsigned]}
        {param: width, op: any}
    """
    if not isinstance(raw, dict):
        raise _malformed(origin, "discriminant must be a mapping")

    param, op = raw.get("param"), raw.get("op", "==")
    if param not in schema:
        raise _malformed(origin, f"discriminant on undeclared parameter {param!r}")
    if op not in ALL_OPERATORS:
        raise _malformed(origin, f"unknown discriminant operator {op!r}", allowed=sorted(ALL_OPERATORS))

    try:
        if op == "any":
            return Discriminant(param=param, op=op)

        if op == "between":
            low, high = raw.get("min"), raw.get("max")
            if not all(isinstance(b, int) and not isinstance(b, bool) for b in (low, high)) or low > high:
                raise ValueError("'between' needs integer min <= max")
            return Discriminant(param=param, op=op, value=(low, high))

        if op == "in":
            values = raw.get("values")
            if not isinstance(values, list) or not values:
                raise ValueError("'in' needs a non-empty 'values' list")
            return Discriminant(
                param=param, op=op, value=tuple(parse_param_value(v) for v in values),
            )

        if "value" not in raw:
            raise ValueError(f"operator {op!r} needs a 'value'")
        value = parse_param_value(raw["value"])
        if op in ORDERING_OPERATORS and not isinstance(value, int):
            raise ValueError(f"operator {op!r} needs an integer value")
        return Discriminant(param=param, op=op, value=value)

    except ValueError as e:
        raise _malformed(origin, f"discriminant on '{param}': {e}") from e


def _check_discriminant_type(cond: Discriminant, spec: ParamSpec, origin: str) -> None:
    """조건 값의 타입이 선언된 파라미터 타입과 맞는지 (범위는 검사하지 않음)."""
    if cond.op == "any":
        return
    if cond.op in ORDERING_OPERATORS or cond.op == "between":
        ok = spec.type == "int"
    else:
        values = cond.value if cond.op == "in" else (cond.value,)
        if spec.type == "int":
            ok = all(isinstance(v, int) for v in values)
        elif spec.type == "str":
            ok = all(isinstance(v, str) for v in values)
        else:
            ok = all(isinstance(v, (str, EnumValue)) for v in values)
    if not ok:
        raise _malformed(
            origin,
            f"discriminant '{cond.describe()}' does not fit {spec.type} parameter '{spec.name}'",
        )


def _parse_static(raw: Any, source_dir: Path | None, origin: str) -> StaticTemplate:
    if not isinstance(raw, dict) or ("text" in raw) == ("path" in raw):
        raise _malformed(origin, "static strategy needs exactly one of 'text' or 'path'")

    path = None
    if "path" in raw:
        path = Path(raw["path"])
        if not path.is_absolute() and source_dir is not None:
            path = source_dir / path
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise _malformed(origin, f"cannot read static template: {e}", path=str(path)) from e
    else:
        text = raw["text"]
        if not isinstance(text, str):
            raise _malformed(origin, "static 'text' must be a string")

    try:
        check_syntax(text)
    except TemplateSyntaxError as e:
        raise _malformed(origin, f"template syntax error: {e.message}", line=e.lineno) from e

    return StaticTemplate(text=text, path=path)


def _parse_generator(raw: Any, source_dir: Path | None, origin: str) -> GeneratorInvocation:
    if isinstance(raw, str):
        raw = {"command": raw}
    if not isinstance(raw, dict):
        raise _malformed(origin, "generator strategy must be a command string or mapping")

    command = raw.get("command")
    if not isinstance(command, str) or not command.strip():
        raise _malformed(origin, "generator needs a non-empty 'command'")

    output = raw.get("output")
    if output is not None and (not isinstance(output, str) or "/" in output or not output):
        raise _malformed(origin, "generator 'output' must be a plain file name")

    timeout = raw.get("timeout")
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise _malformed(origin, "generator 'timeout' must be a positive number")
        timeout = float(timeout)

    return GeneratorInvocation(command=command, output=output, timeout=timeout)


# strategy 태그 → 문서 파서. 핸들러는 render.registry에 같은 태그로 등록됨.
STRATEGY_PARSERS: dict[str, Callable[[Any, Path | None, str], Strategy]] = {
    StaticTemplate.tag: _parse_static,
    GeneratorInvocation.tag: _parse_generator,
}


def parse_descriptor(entry: Any, source_dir: Path | None, origin: str) -> TemplateDescriptor:
    """
    템플릿 항목 1개 파싱 + 검증.

    Args:
        entry: 문서의 templates[i]
        source_dir: 상대 경로 기준 디렉터리 (static path, $SOURCE_DIR)
        origin: 에러 메시지용 위치 (예: "db.yaml#templates[2]")

    Returns:
        TemplateDescriptor

    Raises:
        LoadError: MALFORMED_DESCRIPTOR
    """
    if not isinstance(entry, dict):
        raise _malformed(origin, "template entry must be a mapping")

    name = entry.get("name")
    if not isinstance(name, str) or not TEMPLATE_NAME_PATTERN.match(name):
        raise _malformed(origin, f"invalid template name: {name!r}")

    hdl = entry.get("hdl", DEFAULT_HDL)
    if hdl not in HDL_EXTENSIONS:
        raise _malformed(origin, f"unknown hdl {hdl!r}", allowed=sorted(HDL_EXTENSIONS))

    raw_params = entry.get("parameters") or {}
    if not isinstance(raw_params, dict):
        raise _malformed(origin, "'parameters' must be a mapping")
    specs = tuple(
        parse_param_spec(pname, praw, origin)
        for pname, praw in sorted(raw_params.items(), key=lambda kv: str(kv[0]))
    )
    schema = {s.name: s for s in specs}

    raw_conds = entry.get("discriminants") or []
    if not isinstance(raw_conds, list):
        raise _malformed(origin, "'discriminants' must be a list")
    discriminants = tuple(parse_discriminant(c, schema, origin) for c in raw_conds)
    seen: set[str] = set()
    for cond in discriminants:
        _check_discriminant_type(cond, schema[cond.param], origin)
        if cond.describe() in seen:
            raise _malformed(origin, f"duplicate discriminant '{cond.describe()}'")
        seen.add(cond.describe())

    tags = [tag for tag in STRATEGY_PARSERS if tag in entry]
    if len(tags) != 1:
        raise _malformed(
            origin,
            "template needs exactly one strategy",
            found=tags,
            allowed=sorted(STRATEGY_PARSERS),
        )
    strategy = STRATEGY_PARSERS[tags[0]](entry[tags[0]], source_dir, origin)

    return TemplateDescriptor(
        name=name,
        discriminants=discriminants,
        parameters=specs,
        strategy=strategy,
        descriptor_id=compute_descriptor_id(name, discriminants),
        hdl=hdl,
        source_dir=source_dir,
    )


# =============================================================================
# Template Database
# =============================================================================

class TemplateDatabase:
    """
    템플릿 descriptor 인덱스.

    run마다 한 번 생성해서 Matcher/Concretizer에 명시적으로 전달한다.

    문서 형식:
        templates:
          - name: adder
            hdl: verilog
            parameters: {width: {type: int, min: 1}}
            discriminants: [{param: width, op: "<=", value: 8}]
            static: {path: adder.v.j2}
    """

    def __init__(self) -> None:
        self._families: dict[str, dict[str, TemplateDescriptor]] = {}
        self._origins: dict[str, str] = {}
        self.sources: list[str] = []

    @classmethod
    def from_sources(cls, sources: Iterable[Path | str | Mapping[str, Any]]) -> "TemplateDatabase":
        """여러 소스를 순서대로 로드한 DB 생성."""
        database = cls()
        for source in sources:
            database.load(source)
        return database

    # =========================================================================
    # Load
    # =========================================================================

    def load(self, source: Path | str | Mapping[str, Any]) -> int:
        """
        소스 1개를 인덱스에 병합.

        Args:
            source: YAML/JSON 파일, 그 파일들이 있는 디렉터리, 또는 이미 파싱된 문서

        Returns:
            새로 추가된 descriptor 수

        Raises:
            LoadError: SOURCE_UNREADABLE, MALFORMED_DESCRIPTOR, AMBIGUOUS_DESCRIPTOR
        """
        if isinstance(source, Mapping):
            return self._load_document(source, None, "<memory>")

        path = Path(source)
        if not path.exists():
            raise LoadError(
                ErrorCodes.SOURCE_UNREADABLE,
                "template source not found",
                source=str(path),
            )

        added = 0
        for file_path in iter_source_files(path):
            document = read_source_document(file_path)
            added += self._load_document(document, file_path.parent.resolve(), str(file_path))
        return added

    def _load_document(self, document: Any, source_dir: Path | None, label: str) -> int:
        if not isinstance(document, Mapping) or not isinstance(document.get("templates"), list):
            raise LoadError(
                ErrorCodes.MALFORMED_DESCRIPTOR,
                "template source must contain a 'templates' list",
                source=label,
            )

        # 1) 전체 파싱 (실패 시 인덱스 변경 없음)
        parsed: list[tuple[TemplateDescriptor, str]] = []
        for index, entry in enumerate(document["templates"]):
            origin = f"{label}#templates[{index}]"
            parsed.append((parse_descriptor(entry, source_dir, origin), origin))

        # 2) 충돌 검사 (기존 인덱스 + 같은 문서 내)
        staged: dict[str, tuple[TemplateDescriptor, str]] = {}
        for descriptor, origin in parsed:
            existing = staged.get(descriptor.descriptor_id)
            existing_origin = origin
            if existing is None:
                current = self._families.get(descriptor.name, {}).get(descriptor.descriptor_id)
                if current is not None:
                    existing = (current, self.origin_of(current))
            if existing is not None:
                other, existing_origin = existing
                if other.definition() != descriptor.definition():
                    raise LoadError(
                        ErrorCodes.AMBIGUOUS_DESCRIPTOR,
                        f"conflicting definitions for '{descriptor.describe()}'",
                        first=existing_origin,
                        second=origin,
                    )
                logger.debug(f"Duplicate template merged: {origin} == {existing_origin}")
                continue
            staged[descriptor.descriptor_id] = (descriptor, origin)

        # 3) 반영
        for descriptor_id, (descriptor, origin) in staged.items():
            self._families.setdefault(descriptor.name, {})[descriptor_id] = descriptor
            self._origins[descriptor_id] = origin

        self.sources.append(label)
        logger.info(f"Loaded {len(staged)} template(s) from {label}")
        return len(staged)

    # =========================================================================
    # Read
    # =========================================================================

    def lookup_candidates(self, family: str) -> list[TemplateDescriptor]:
        """
        family 이름이 같은 descriptor 전체.

        Returns:
            descriptor_id 오름차순 목록 (로드 순서와 무관)
        """
        entries = self._families.get(family, {})
        return [entries[k] for k in sorted(entries)]

    def origin_of(self, descriptor: TemplateDescriptor) -> str:
        """descriptor가 정의된 위치 (예: db.yaml#templates[0])."""
        return self._origins.get(descriptor.descriptor_id, "<unknown>")

    def families(self) -> list[str]:
        return sorted(self._families)

    def __contains__(self, family: object) -> bool:
        return family in self._families

    def __len__(self) -> int:
        return sum(len(v) for v in self._families.values())
