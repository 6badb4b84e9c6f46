"""
Matcher: 인스턴스 → 가장 구체적인 템플릿 선택 + 파라미터 resolve.

선택 규칙 (SpecificityPolicy "exact-range-always"):
1. exact discriminant (==, in) 개수가 많은 쪽
2. range discriminant (<, <=, >, >=, !=, between) 개수가 많은 쪽
3. always discriminant (any) 개수가 많은 쪽
4. descriptor_id 오름차순 (로드 순서는 절대 사용하지 않음)

서로 다른 파라미터에 걸린 exact 1개 vs range 1개는 exact 쪽이 이긴다.
후보가 없으면 UnmatchedInstance, 스키마 위반은 SchemaViolation.
select()와 resolve()는 분리되어 있어 resolve 실패에도 선택된 템플릿을 알 수 있다.
"""

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from rtlexport.domain.errors import (
    ErrorCodes,
    SchemaViolation,
    UnmatchedInstance,
)
from rtlexport.domain.schemas import (
    ComponentInstance,
    Match,
    ParamValue,
    TemplateDescriptor,
)
from rtlexport.templates.database import TemplateDatabase

logger = logging.getLogger(__name__)


# =============================================================================
# Specificity Policy
# =============================================================================

@dataclass(frozen=True)
class SpecificityPolicy:
    """
    후보 간 전순서(total order) 정책.

    kind_order 앞쪽 종류의 discriminant 개수가 많을수록 우선.
    같으면 descriptor_id 오름차순.
    """
    name: str
    kind_order: tuple[str, ...] = ("exact", "range", "always")

    def rank(self, descriptor: TemplateDescriptor) -> tuple[object, ...]:
        """작을수록 구체적인 정렬 키."""
        counts = Counter(d.kind for d in descriptor.discriminants)
        return (*(-counts[kind] for kind in self.kind_order), descriptor.descriptor_id)

    def order(self, candidates: Iterable[TemplateDescriptor]) -> list[TemplateDescriptor]:
        """가장 구체적인 것부터 정렬."""
        return sorted(candidates, key=self.rank)

    def select(self, candidates: Sequence[TemplateDescriptor]) -> TemplateDescriptor:
        return min(candidates, key=self.rank)


EXACT_RANGE_ALWAYS = SpecificityPolicy(name="exact-range-always")

POLICIES: dict[str, SpecificityPolicy] = {
    EXACT_RANGE_ALWAYS.name: EXACT_RANGE_ALWAYS,
}
DEFAULT_POLICY = EXACT_RANGE_ALWAYS.name


def get_policy(name: str) -> SpecificityPolicy:
    """
    이름으로 정책 조회.

    Raises:
        ValueError: 등록되지 않은 정책
    """
    try:
        return POLICIES[name]
    except KeyError:
        raise ValueError(
            f"unknown specificity policy {name!r} (known: {sorted(POLICIES)})"
        ) from None


# =============================================================================
# Matcher
# =============================================================================

class Matcher:
    """
    템플릿 선택기.

    Usage:
        matcher = Matcher(database)
        descriptor = matcher.select(instance)
        match = matcher.resolve(instance, descriptor)
    """

    def __init__(
        self,
        database: TemplateDatabase,
        policy: SpecificityPolicy = EXACT_RANGE_ALWAYS,
    ):
        self.database = database
        self.policy = policy

    def candidates(self, instance: ComponentInstance) -> list[TemplateDescriptor]:
        """discriminant를 모두 만족하는 후보 (구체적인 순)."""
        survivors = [
            d for d in self.database.lookup_candidates(instance.module)
            if self._accepts(d, instance)
        ]
        return self.policy.order(survivors)

    def select(self, instance: ComponentInstance) -> TemplateDescriptor:
        """
        가장 구체적인 후보 선택.

        Raises:
            UnmatchedInstance: NO_MATCHING_TEMPLATE
        """
        survivors = self.candidates(instance)
        if not survivors:
            known = self.database.lookup_candidates(instance.module)
            context: dict[str, object] = {
                "instance": instance.name,
                "module": instance.module,
                "considered": [d.describe() for d in known],
            }
            if known:
                message = f"no '{instance.module}' template accepts the requested parameters"
            else:
                message = f"no template for module family '{instance.module}'"
                context["families"] = self.database.families()
            raise UnmatchedInstance(ErrorCodes.NO_MATCHING_TEMPLATE, message, **context)

        chosen = survivors[0]
        if len(survivors) > 1:
            logger.debug(
                f"{instance.name}: {len(survivors)} candidates, "
                f"policy {self.policy.name} chose {chosen.describe()} "
                f"({self.database.origin_of(chosen)})"
            )
        return chosen

    def resolve(self, instance: ComponentInstance, descriptor: TemplateDescriptor) -> Match:
        """
        선택된 템플릿 스키마로 파라미터 resolve.

        - 선언된 파라미터: 인스턴스 값 또는 default
        - 선언되지 않은 인스턴스 파라미터: 버리고 dropped에 기록

        Raises:
            SchemaViolation: PARAM_MISSING, PARAM_TYPE, PARAM_RANGE, PARAM_CHOICE
        """
        params: dict[str, ParamValue] = {}
        for spec in descriptor.parameters:
            if spec.name in instance.parameters:
                try:
                    params[spec.name] = spec.check(instance.parameters[spec.name])
                except SchemaViolation as e:
                    e.context.setdefault("instance", instance.name)
                    e.context.setdefault("template", descriptor.describe())
                    e.context.setdefault("origin", self.database.origin_of(descriptor))
                    raise
            elif spec.default is not None:
                params[spec.name] = spec.default
            else:
                raise SchemaViolation(
                    ErrorCodes.PARAM_MISSING,
                    f"required parameter '{spec.name}' not provided",
                    instance=instance.name,
                    param=spec.name,
                    template=descriptor.describe(),
                    origin=self.database.origin_of(descriptor),
                )

        dropped = tuple(sorted(set(instance.parameters) - set(params)))
        return Match(instance=instance, descriptor=descriptor, params=params, dropped=dropped)

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    @staticmethod
    def _accepts(descriptor: TemplateDescriptor, instance: ComponentInstance) -> bool:
        schema = descriptor.schema
        for cond in descriptor.discriminants:
            value = instance.parameters.get(cond.param)
            if value is None:
                value = schema[cond.param].default
            if not cond.holds(value):
                return False
        return True
