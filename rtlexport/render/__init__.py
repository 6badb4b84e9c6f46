"""
Render layer: match → HDL 텍스트.

역할:
- Jinja2 static 치환 (static.py)
- 외부 generator 호출 (generator.py)
- strategy 태그별 dispatch (registry.py)
"""

from .generator import GeneratorOutput, GeneratorRunner
from .registry import (
    STRATEGY_HANDLERS,
    Concretizer,
    check_handlers,
    register_strategy,
)
from .static import StaticRenderer, detect_placeholders, render_static

__all__ = [
    "Concretizer",
    "STRATEGY_HANDLERS",
    "register_strategy",
    "check_handlers",
    "StaticRenderer",
    "render_static",
    "detect_placeholders",
    "GeneratorRunner",
    "GeneratorOutput",
]
