"""
Pytest fixtures for the export engine tests.

테스트 구성:
- 설정: 기본 설정 파일 / 테스트용 최소 설정
- 템플릿: adder (static: width <= 8, generator: width > 8)
- generator: sys.executable로 실행하는 작은 Python 스크립트
"""

import shlex
import sys
import textwrap
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from rtlexport.domain.schemas import ComponentInstance
from rtlexport.templates.database import TemplateDatabase

ADDER_STATIC_TEXT = (
    "module {{ module_name }} (\n"
    "  input  [{{ width - 1 }}:0] a,\n"
    "  input  [{{ width - 1 }}:0] b,\n"
    "  output [{{ width }}:0] sum\n"
    ");\n"
    "  assign sum = a + b;\n"
    "endmodule\n"
)

# argv: <params.json> <output>
ADDER_GENERATOR_SCRIPT = textwrap.dedent("""\
    import json
    import sys

    params_path, output_path = sys.argv[1], sys.argv[2]
    with open(params_path, encoding="utf-8") as f:
        doc = json.load(f)

    width = doc["parameters"]["width"]
    name = doc["module_name"]
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(f"module {name} (input [{width - 1}:0] a, b, output [{width}:0] sum);\\n")
        f.write("  assign sum = a + b;\\n")
        f.write("endmodule\\n")
""")


def python_command(script: Path, *args: str) -> str:
    """generator command 문자열: <python> <script> <args...>"""
    parts = [shlex.quote(sys.executable), shlex.quote(str(script)), *args]
    return " ".join(parts)


# =============================================================================
# Config Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """프로젝트 루트 경로."""
    return Path(__file__).parent.parent


@pytest.fixture
def default_config_path(project_root: Path) -> Path:
    """default.yaml 경로."""
    return project_root / "default.yaml"


@pytest.fixture
def default_config(default_config_path: Path) -> dict:
    """기본 설정 로드."""
    with open(default_config_path, encoding="utf-8") as f:
        return yaml.safe_load(f)


@pytest.fixture
def config() -> dict:
    """테스트용 최소 설정."""
    return {
        "export": {
            "workers": 1,
            "fail_fast": False,
            "lock_timeout": 0.5,
        },
        "generator": {
            "timeout": 30.0,
        },
    }


# =============================================================================
# Generator Fixtures
# =============================================================================

@pytest.fixture
def write_script(tmp_path: Path) -> Callable[[str, str], Path]:
    """tmp_path/scripts/ 아래 generator 스크립트 작성."""
    scripts_dir = tmp_path / "scripts"
    scripts_dir.mkdir()

    def _write(body: str, name: str = "gen.py") -> Path:
        path = scripts_dir / name
        path.write_text(textwrap.dedent(body), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def command_for() -> Callable[..., str]:
    """스크립트 경로 → generator command 문자열."""
    return python_command


@pytest.fixture
def adder_generator(write_script: Callable[[str, str], Path]) -> Path:
    """width를 받아 adder를 생성하는 generator 스크립트."""
    return write_script(ADDER_GENERATOR_SCRIPT, "adder_gen.py")


# =============================================================================
# Template Fixtures
# =============================================================================

@pytest.fixture
def adder_static_text() -> str:
    """width를 쓰는 adder static 템플릿 텍스트."""
    return ADDER_STATIC_TEXT


@pytest.fixture
def adder_document(adder_generator: Path) -> dict[str, Any]:
    """adder 템플릿 문서 (width <= 8: static, width > 8: generator)."""
    width = {"type": "int", "min": 1, "max": 64}
    return {
        "templates": [
            {
                "name": "adder",
                "parameters": {"width": width},
                "discriminants": [{"param": "width", "op": "<=", "value": 8}],
                "static": {"text": ADDER_STATIC_TEXT},
            },
            {
                "name": "adder",
                "parameters": {"width": width},
                "discriminants": [{"param": "width", "op": ">", "value": 8}],
                "generator": {"command": python_command(adder_generator, "$PARAMS", "$OUTPUT")},
            },
        ],
    }


@pytest.fixture
def adder_database(adder_document: dict[str, Any]) -> TemplateDatabase:
    """adder 템플릿만 로드된 DB."""
    return TemplateDatabase.from_sources([adder_document])


@pytest.fixture
def adder_templates_file(tmp_path: Path, adder_document: dict[str, Any]) -> Path:
    """adder 템플릿 문서를 YAML 파일로 저장."""
    path = tmp_path / "templates" / "adder.yaml"
    path.parent.mkdir()
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(adder_document, f, sort_keys=False)
    return path


# =============================================================================
# Instance Fixtures
# =============================================================================

@pytest.fixture
def make_instance() -> Callable[..., ComponentInstance]:
    """ComponentInstance 생성 헬퍼."""

    def _make(name: str, module: str = "adder", **parameters: Any) -> ComponentInstance:
        return ComponentInstance(name=name, module=module, parameters=parameters)

    return _make
