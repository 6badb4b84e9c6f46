"""
Export layer: 인스턴스 → 출력 디렉터리.

역할:
- 인스턴스 문서 로드 (intake.py)
- 아티팩트/manifest 저장 (writer.py)
- 파이프라인 오케스트레이션 (engine.py)
- ASIC flow 스크립트 (asic.py)
"""

from .asic import AsicSettings, write_asic_scripts
from .engine import ExportEngine, ExportResult
from .intake import check_unique_names, load_instances, parse_instances
from .writer import OutputWriter, summarize

__all__ = [
    "ExportEngine",
    "ExportResult",
    "OutputWriter",
    "summarize",
    "load_instances",
    "parse_instances",
    "check_unique_names",
    "AsicSettings",
    "write_asic_scripts",
]
