"""
Static 치환 렌더러: Jinja2 기반.

규칙:
- placeholder: {{ width }}, {{ module_name }} 등
- StrictUndefined: 정의되지 않은 변수는 렌더 에러
- 템플릿의 placeholder 집합 == resolved 파라미터 집합 (+ 예약 placeholder)
  - 누락: PLACEHOLDER_MISSING, 미사용: PLACEHOLDER_UNUSED
- 같은 (템플릿, 파라미터) → 항상 같은 바이트 (순수 함수)
"""

from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from jinja2 import Environment, StrictUndefined, Template, TemplateError, meta

from rtlexport.domain.constants import RESERVED_PLACEHOLDERS
from rtlexport.domain.errors import ErrorCodes, SchemaViolation
from rtlexport.domain.schemas import ParamValue, StaticTemplate, plain_value

# 렌더 결과가 환경에 좌우되지 않도록 옵션 고정
_ENV = Environment(
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    autoescape=False,
)


def check_syntax(text: str) -> None:
    """
    템플릿 문법 검사 (DB 로드 시 사용).

    Raises:
        jinja2.TemplateSyntaxError
    """
    _ENV.parse(text)


@lru_cache(maxsize=256)
def detect_placeholders(text: str) -> frozenset[str]:
    """
    텍스트에서 placeholder 이름 집합 추출.

    Jinja2 AST 기준이므로 {% for %} 루프 변수 등은 제외된다.
    """
    return frozenset(meta.find_undeclared_variables(_ENV.parse(text)))


@lru_cache(maxsize=256)
def _compile(text: str) -> Template:
    return _ENV.from_string(text)


class StaticRenderer:
    """
    Static 템플릿 렌더러.

    Usage:
        renderer = StaticRenderer(descriptor.strategy)
        text = renderer.render(params, module_name="adder_0123456789")
    """

    def __init__(self, template: StaticTemplate):
        self.template = template

    def placeholders(self) -> frozenset[str]:
        return detect_placeholders(self.template.text)

    def check_bindings(self, params: Mapping[str, ParamValue]) -> None:
        """
        placeholder와 파라미터 집합 일치 여부 검사.

        Raises:
            SchemaViolation: PLACEHOLDER_MISSING, PLACEHOLDER_UNUSED
        """
        used = self.placeholders()
        missing = sorted(used - set(params) - RESERVED_PLACEHOLDERS)
        if missing:
            raise SchemaViolation(
                ErrorCodes.PLACEHOLDER_MISSING,
                "template placeholders have no parameter binding",
                placeholders=missing,
            )

        unused = sorted(set(params) - used)
        if unused:
            raise SchemaViolation(
                ErrorCodes.PLACEHOLDER_UNUSED,
                "parameters are not referenced by the template",
                parameters=unused,
            )

    def render(self, params: Mapping[str, ParamValue], module_name: str) -> str:
        """
        파라미터 치환 결과 반환.

        Args:
            params: resolved 파라미터
            module_name: 생성될 HDL 모듈 이름 (예약 placeholder)

        Returns:
            치환된 텍스트

        Raises:
            SchemaViolation: PLACEHOLDER_*, RENDER_FAILED
        """
        self.check_bindings(params)

        context: dict[str, Any] = {name: plain_value(v) for name, v in params.items()}
        context["module_name"] = module_name

        try:
            return _compile(self.template.text).render(context)
        except TemplateError as e:
            raise SchemaViolation(
                ErrorCodes.RENDER_FAILED,
                str(e),
                template=str(self.template.path) if self.template.path else "<inline>",
            ) from e


def render_static(
    template: StaticTemplate,
    params: Mapping[str, ParamValue],
    module_name: str,
) -> str:
    """Static 치환 (간편 함수)."""
    return StaticRenderer(template).render(params, module_name)
