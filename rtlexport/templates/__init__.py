"""
Templates layer: 템플릿 DB + 매칭.

역할:
- 템플릿 descriptor 로드/검증/인덱스 (database.py)
- 인스턴스 → 템플릿 선택, 파라미터 resolve (matcher.py)
"""

from .database import (
    TemplateDatabase,
    parse_descriptor,
    read_source_document,
)
from .matcher import (
    DEFAULT_POLICY,
    EXACT_RANGE_ALWAYS,
    Matcher,
    SpecificityPolicy,
    get_policy,
)

__all__ = [
    # database
    "TemplateDatabase",
    "parse_descriptor",
    "read_source_document",
    # matcher
    "Matcher",
    "SpecificityPolicy",
    "EXACT_RANGE_ALWAYS",
    "DEFAULT_POLICY",
    "get_policy",
]
