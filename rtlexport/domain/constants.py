"""
Domain Constants: export 엔진 전역 상수.

파일명 정책, HDL 확장자, discriminant 연산자 분류 등 시스템 전반에서 사용되는 값들.
"""

# =============================================================================
# Output Layout (출력 디렉토리 구조)
# =============================================================================
# <output_dir>/
# ├── <family>_<hash10>.<ext>   # 아티팩트 (중복 제거됨)
# ├── <design_name>.<ext>       # top-level 디자인 (선택)
# ├── manifest.json
# ├── logs/run_<run_id>.json
# ├── synthesize.tcl            # ASIC 스크립트 (선택)
# └── config.tcl

MANIFEST_FILENAME = "manifest.json"
LOGS_DIR = "logs"
OUTPUT_LOCK_FILENAME = ".rtlexport.lock"
SYNTH_SCRIPT_FILENAME = "synthesize.tcl"
LIBRELANE_CONFIG_FILENAME = "config.tcl"
LIBRELANE_RUN_SCRIPT_FILENAME = "run_librelane.sh"

# 아티팩트 파일명에 쓰는 해시 길이
ARTIFACT_HASH_LENGTH = 10

# =============================================================================
# HDL
# =============================================================================

HDL_EXTENSIONS = {
    "verilog": ".v",
    "systemverilog": ".sv",
    "vhdl": ".vhd",
}
DEFAULT_HDL = "verilog"

# =============================================================================
# Parameter Types
# =============================================================================

PARAM_TYPES = ("int", "str", "enum")

# =============================================================================
# Discriminant Operators
# =============================================================================
# 분류는 SpecificityPolicy에서 사용:
# exact > range > always

EXACT_OPERATORS = frozenset(["==", "in"])
RANGE_OPERATORS = frozenset(["<", "<=", ">", ">=", "!=", "between"])
ALWAYS_OPERATORS = frozenset(["any"])
ALL_OPERATORS = EXACT_OPERATORS | RANGE_OPERATORS | ALWAYS_OPERATORS

# =============================================================================
# Static Template
# =============================================================================

# 모든 static 템플릿에 항상 제공되는 예약 placeholder
RESERVED_PLACEHOLDERS = frozenset(["module_name"])

# =============================================================================
# Generator Command Placeholders
# =============================================================================

GENERATOR_PARAMS_FILENAME = "params.json"
GENERATOR_PLACEHOLDERS = ("PARAMS", "OUTPUT", "OUTPUT_DIR", "MODULE_NAME", "SOURCE_DIR")

# =============================================================================
# ID Prefixes
# =============================================================================

RUN_ID_PREFIX = "RUN-"
