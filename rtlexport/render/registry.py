"""
Concretizer: strategy 태그 → 핸들러 dispatch.

규칙:
- strategy는 닫힌 variant (static, generator), 태그별 핸들러 1개
- 새 strategy는 register_strategy()로 명시 등록 (상속 확장 금지)
- 핸들러 호출 전 resolved 파라미터를 스키마로 다시 검증
- 모듈 이름 = 아티팩트 파일명 stem (family + key 해시)
"""

import logging
from collections.abc import Callable, Iterable

from rtlexport.core.hashing import compute_artifact_key
from rtlexport.core.ids import artifact_stem
from rtlexport.domain.errors import ErrorCodes, SchemaViolation
from rtlexport.domain.schemas import (
    ConcretizedArtifact,
    GeneratorInvocation,
    Match,
    StaticTemplate,
)
from rtlexport.render.generator import GeneratorRunner
from rtlexport.render.static import StaticRenderer

logger = logging.getLogger(__name__)

# (match, module_name, config) → 아티팩트 텍스트
StrategyHandler = Callable[[Match, str, dict], str]


def concretize_static(match: Match, module_name: str, config: dict) -> str:
    """Static 치환 핸들러."""
    strategy = match.descriptor.strategy
    assert isinstance(strategy, StaticTemplate)
    return StaticRenderer(strategy).render(match.params, module_name)


def concretize_generator(match: Match, module_name: str, config: dict) -> str:
    """Generator 호출 핸들러."""
    strategy = match.descriptor.strategy
    assert isinstance(strategy, GeneratorInvocation)
    runner = GeneratorRunner(strategy, config, match.descriptor.source_dir)
    output = runner.run(
        match.params,
        module_name=module_name,
        extension=match.descriptor.extension,
        family=match.descriptor.name,
    )
    if output.stderr:
        logger.debug(f"{module_name} generator stderr: {output.stderr.strip()}")
    return output.content


STRATEGY_HANDLERS: dict[str, StrategyHandler] = {
    StaticTemplate.tag: concretize_static,
    GeneratorInvocation.tag: concretize_generator,
}


def register_strategy(tag: str, handler: StrategyHandler) -> None:
    """
    strategy 핸들러 등록.

    Raises:
        ValueError: 이미 등록된 태그
    """
    if tag in STRATEGY_HANDLERS:
        raise ValueError(f"strategy handler already registered: {tag!r}")
    STRATEGY_HANDLERS[tag] = handler


def check_handlers(tags: Iterable[str]) -> None:
    """
    모든 strategy 태그에 핸들러가 있는지 확인.

    Raises:
        ValueError: 핸들러 없는 태그
    """
    missing = sorted(set(tags) - set(STRATEGY_HANDLERS))
    if missing:
        raise ValueError(f"no concretization handler for strategies: {missing}")


class Concretizer:
    """
    Match → ConcretizedArtifact.

    Usage:
        concretizer = Concretizer(config)
        key = concretizer.key_for(match)
        artifact = concretizer.concretize(match)
    """

    def __init__(self, config: dict, handlers: dict[str, StrategyHandler] | None = None):
        self.config = config
        self.handlers = handlers if handlers is not None else STRATEGY_HANDLERS

    def key_for(self, match: Match) -> str:
        """dedup 캐시 키."""
        return compute_artifact_key(match.descriptor.descriptor_id, match.params)

    def concretize(self, match: Match) -> ConcretizedArtifact:
        """
        전략별 핸들러로 아티팩트 생성.

        Raises:
            SchemaViolation: 스키마 위반, placeholder 불일치
            GenerationFailure: generator 실패
        """
        self._validate(match)

        descriptor = match.descriptor
        key = self.key_for(match)
        module_name = artifact_stem(descriptor.name, key)

        handler = self.handlers[descriptor.strategy.tag]
        content = handler(match, module_name, self.config)

        logger.info(f"Concretized {module_name} via {descriptor.strategy.tag}")
        return ConcretizedArtifact(
            key=key,
            family=descriptor.name,
            hdl=descriptor.hdl,
            content=content,
            descriptor_id=descriptor.descriptor_id,
        )

    @staticmethod
    def _validate(match: Match) -> None:
        schema = match.descriptor.schema
        unknown = sorted(set(match.params) - set(schema))
        if unknown:
            raise SchemaViolation(
                ErrorCodes.PARAM_UNDECLARED,
                "bindings contain undeclared parameters",
                instance=match.instance.name,
                parameters=unknown,
            )
        for name, spec in schema.items():
            if name not in match.params:
                raise SchemaViolation(
                    ErrorCodes.PARAM_MISSING,
                    f"required parameter '{name}' not bound",
                    instance=match.instance.name,
                    param=name,
                )
            spec.check(match.params[name])
