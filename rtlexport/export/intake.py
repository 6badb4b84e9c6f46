"""
인스턴스 문서 로드.

형식 (YAML/JSON):
    instances:
      - name: add_a
        module: adder
        parameters: {width: 4, mode: {enum: fast}}

인스턴스 이름은 run 안에서 유일해야 한다 (이름 없는 항목은 <module>_<index>).
"""

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from rtlexport.domain.errors import ErrorCodes, InvalidRequest, LoadError
from rtlexport.domain.schemas import ComponentInstance
from rtlexport.templates.database import read_source_document

logger = logging.getLogger(__name__)


def parse_instances(document: Any, origin: str = "<memory>") -> list[ComponentInstance]:
    """
    instances 문서 → ComponentInstance 목록.

    Raises:
        InvalidRequest: MALFORMED_INSTANCE, DUPLICATE_INSTANCE
    """
    if isinstance(document, dict):
        entries = document.get("instances")
    else:
        entries = document

    if not isinstance(entries, list):
        raise InvalidRequest(
            ErrorCodes.MALFORMED_INSTANCE,
            "instance document must contain an 'instances' list",
            source=origin,
        )

    instances = [ComponentInstance.from_dict(entry, index) for index, entry in enumerate(entries)]
    check_unique_names(instances)
    return instances


def load_instances(path: Path) -> list[ComponentInstance]:
    """
    인스턴스 파일 로드.

    Raises:
        InvalidRequest: 파일을 읽을 수 없거나 형식 오류
    """
    try:
        document = read_source_document(path)
    except LoadError as e:
        raise InvalidRequest(
            ErrorCodes.MALFORMED_INSTANCE,
            f"cannot read instance document: {e.__cause__ or e.message}",
            source=str(path),
        ) from e

    instances = parse_instances(document, origin=str(path))
    logger.info(f"Loaded {len(instances)} instances from {path}")
    return instances


def check_unique_names(instances: Iterable[ComponentInstance]) -> None:
    """
    Raises:
        InvalidRequest: DUPLICATE_INSTANCE
    """
    seen: dict[str, ComponentInstance] = {}
    for instance in instances:
        first = seen.setdefault(instance.name, instance)
        if first is not instance:
            raise InvalidRequest(
                ErrorCodes.DUPLICATE_INSTANCE,
                f"instance name '{instance.name}' used more than once",
                instance=instance.name,
                modules=[first.module, instance.module],
            )


def as_instances(items: Sequence[ComponentInstance | dict[str, Any]]) -> list[ComponentInstance]:
    """dict/ComponentInstance 혼합 입력 정규화 (API 호출용)."""
    return [
        item if isinstance(item, ComponentInstance) else ComponentInstance.from_dict(item, index)
        for index, item in enumerate(items)
    ]
