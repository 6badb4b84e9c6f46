"""
rtl-export CLI 진입점.

사용법:
    rtl-export instances.yaml out/ templates/

    # 병렬 + ASIC 스크립트
    rtl-export instances.yaml out/ templates/ extra.yaml \\
        --design-name top --design-file top.v --workers 4 --asic

종료 코드:
    0: 모든 인스턴스 성공
    1: 인스턴스 단위 실패 있음 (나머지는 저장됨)
    2: fatal (템플릿 로드 실패, 잘못된 요청, 출력 디렉터리 문제)
"""

import argparse
import copy
import logging
import sys
from pathlib import Path
from typing import Any

import yaml

from rtlexport.domain.errors import ExportError
from rtlexport.domain.schemas import Design
from rtlexport.export.engine import ExportEngine
from rtlexport.export.intake import load_instances
from rtlexport.templates.database import TemplateDatabase

logger = logging.getLogger(__name__)

# =============================================================================
# Configuration
# =============================================================================

DEFAULT_CONFIG: dict[str, Any] = {
    "export": {
        "manifest_filename": "manifest.json",
        "workers": 1,
        "fail_fast": False,
        "lock_timeout": 10.0,
        "logs_dir": "logs",
        "policy": "exact-range-always",
    },
    "generator": {
        "timeout": 300.0,
        "env": {},
    },
    "asic": {
        "enabled": False,
        "pdk": "sky130",
        "library": "sky130_fd_sc_hd",
        "clock_period": 10.0,
        "clock_port": "clock",
        "die_area": "0 0 1000 1000",
        "place_density": 0.6,
        "librelane_path": None,
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Path | None = None) -> dict:
    """설정 파일 로드 (기본값 위에 병합)."""
    if config_path is None:
        # 프로젝트 루트의 default.yaml
        config_path = Path(__file__).parent.parent / "default.yaml"

    if not config_path.exists():
        return copy.deepcopy(DEFAULT_CONFIG)

    with open(config_path, encoding="utf-8") as f:
        data: dict[Any, Any] = yaml.safe_load(f) or {}
    return _deep_merge(DEFAULT_CONFIG, data)


def apply_overrides(config: dict, args: argparse.Namespace) -> dict:
    """CLI 옵션 → 설정 덮어쓰기."""
    config = copy.deepcopy(config)
    if args.workers is not None:
        config["export"]["workers"] = args.workers
    if args.fail_fast:
        config["export"]["fail_fast"] = True
    if args.asic:
        config["asic"]["enabled"] = True
    if args.pdk:
        config["asic"]["pdk"] = args.pdk
    if args.library:
        config["asic"]["library"] = args.library
    if args.librelane_path:
        config["asic"]["librelane_path"] = str(args.librelane_path)
    return config


def configure_logging(config: dict, verbose: bool = False) -> None:
    log_config = config.get("logging", {})
    level = "DEBUG" if verbose else str(log_config.get("level", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=log_config.get("format", DEFAULT_CONFIG["logging"]["format"]),
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# =============================================================================
# CLI
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rtl-export",
        description="컴포넌트 인스턴스 → 파라미터화된 RTL 아티팩트",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("instances", type=Path, help="인스턴스 문서 (YAML/JSON)")
    parser.add_argument("output_dir", type=Path, help="출력 디렉터리")
    parser.add_argument(
        "templates",
        type=Path,
        nargs="+",
        help="템플릿 DB 소스 (파일 또는 디렉터리, 순서대로 로드)",
    )
    parser.add_argument("--config", type=Path, help="설정 파일 (기본: default.yaml)")
    parser.add_argument("--design-name", help="top-level 디자인 이름")
    parser.add_argument("--design-file", type=Path, help="top-level 디자인 HDL 파일")
    parser.add_argument("--workers", type=int, help="병렬 worker 수 (기본: 1)")
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        help="첫 실패 후 남은 인스턴스 처리 중단",
    )
    parser.add_argument(
        "--asic",
        action="store_true",
        help="Yosys/LibreLane 스크립트 생성 (디자인 이름 필요)",
    )
    parser.add_argument("--pdk", help="PDK (기본: sky130)")
    parser.add_argument("--library", help="표준 셀 라이브러리 (기본: sky130_fd_sc_hd)")
    parser.add_argument(
        "--librelane-path",
        type=Path,
        help="LibreLane 설치 경로 (지정 시 run_librelane.sh 생성, 실행은 하지 않음)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="DEBUG 로그 출력")
    return parser


def build_design(args: argparse.Namespace) -> Design | None:
    """
    Raises:
        ValueError: 확장자로 hdl을 알 수 없는 디자인 파일
        OSError: 디자인 파일 읽기 실패
    """
    if args.design_file is not None:
        return Design.from_file(args.design_name or args.design_file.stem, args.design_file)
    if args.design_name:
        return Design(name=args.design_name)
    return None


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = apply_overrides(load_config(args.config), args)
    configure_logging(config, args.verbose)

    try:
        database = TemplateDatabase.from_sources(args.templates)
        instances = load_instances(args.instances)
        design = build_design(args)
        engine = ExportEngine(database, config)
        result = engine.run(instances, args.output_dir, design=design)
    except ExportError as e:
        logger.error(f"{e.kind}: {e}")
        print(f"error: {e.kind} {e}", file=sys.stderr)
        return 2
    except (ValueError, OSError) as e:
        logger.error(f"Invalid invocation: {e}")
        print(f"error: {e}", file=sys.stderr)
        return 2

    for line in result.summary.format_report():
        print(line)
    print(f"status: {'success' if result.success else 'failure'}")
    print(f"manifest: {result.manifest_path}")

    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
