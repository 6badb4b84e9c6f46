"""
ASIC flow 스크립트: Yosys synthesize.tcl + LibreLane config.tcl (+ run_librelane.sh).

스크립트만 생성하고 flow 실행은 하지 않는다.
run_librelane.sh는 asic.librelane_path가 있을 때만 쓴다 (실행 권한만 부여).
liberty 경로: $::env(PDK_ROOT)/<pdk>/libs.ref/<lib>/liberty/<lib>__tt_025C_1v80.lib
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from jinja2 import Environment, StrictUndefined

from rtlexport.core.ids import sanitize_identifier
from rtlexport.core.storage import atomic_write_text
from rtlexport.domain.constants import (
    LIBRELANE_CONFIG_FILENAME,
    LIBRELANE_RUN_SCRIPT_FILENAME,
    SYNTH_SCRIPT_FILENAME,
)
from rtlexport.domain.errors import ErrorCodes, IOFailure
from rtlexport.domain.schemas import ConcretizedArtifact

logger = logging.getLogger(__name__)

_ENV = Environment(undefined=StrictUndefined, keep_trailing_newline=True, autoescape=False)

SYNTH_SCRIPT_TEMPLATE = _ENV.from_string("""\
# ASIC synthesis script for {{ design }}
# Generated by rtl-export

# Read design files
{% for command, file in sources -%}
{{ command }} {{ file }}
{% endfor %}
# Hierarchy check
hierarchy -check -top {{ design }}

# Generic synthesis
proc; opt; fsm; opt; memory; opt

# Technology mapping
techmap; opt

# Map to standard cells
dfflibmap -liberty {{ liberty }}
abc -liberty {{ liberty }}

# Write synthesized netlist
write_verilog -noattr {{ output_dir }}/{{ design }}_synthesized.v
write_liberty {{ output_dir }}/{{ design }}.lib

# Write statistics
tee -o {{ output_dir }}/{{ design }}_stat.txt stat -liberty {{ liberty }}
""")

LIBRELANE_CONFIG_TEMPLATE = _ENV.from_string("""\
# LibreLane configuration for {{ design }}
# Generated by rtl-export

set ::env(DESIGN_NAME) "{{ design }}"
set ::env(VERILOG_FILES) "{{ output_dir }}/{{ design }}_synthesized.v"
set ::env(PDK) "{{ asic.pdk }}"
set ::env(STD_CELL_LIBRARY) "{{ asic.library }}"

# Clock
set ::env(CLOCK_PERIOD) "{{ asic.clock_period }}"
set ::env(CLOCK_PORT) "{{ asic.clock_port }}"
set ::env(CLOCK_NET) "{{ asic.clock_port }}"

# Floorplan
set ::env(DIE_AREA) "{{ asic.die_area }}"
set ::env(PLACE_SITE) "{{ asic.place_site }}"
set ::env(PLACE_DENSITY) "{{ asic.place_density }}"

# Synthesis
set ::env(SYNTH_STRATEGY) "DELAY 0"
set ::env(SYNTH_MAX_FANOUT) "5"

# Routing
set ::env(ROUTING_STRATEGY) "2"

# Timing
set ::env(STA_WRITE_LIB) "1"
set ::env(STA_USE_ARC_ENERGY) "1"

# Power
set ::env(POWER_OPTIMIZATION) "1"

# Verification
set ::env(RUN_KLAYOUT_DRC) "1"
set ::env(RUN_KLAYOUT_XOR) "1"
""")

LIBRELANE_RUN_TEMPLATE = _ENV.from_string("""\
#!/bin/bash
set -e

cd {{ output_dir }}
export PDK_ROOT={{ librelane }}/pdks
export OPENLANE_ROOT={{ librelane }}
export OPENLANE_IMAGE_NAME=efabless/openlane:current
export CARAVEL_ROOT={{ librelane }}/caravel
export CARAVEL_LITE=1

# Run LibreLane flow
{{ librelane }}/flow.tcl -design {{ design }} -tag rtlexport
""")

# HDL → Yosys read 명령
READ_COMMANDS = {
    "verilog": "read_verilog",
    "systemverilog": "read_verilog -sv",
    "vhdl": "read_vhdl",  # yosys-ghdl plugin
}


@dataclass(frozen=True)
class AsicSettings:
    """asic 설정 섹션."""
    pdk: str = "sky130"
    library: str = "sky130_fd_sc_hd"
    clock_period: float = 10.0
    clock_port: str = "clock"
    die_area: str = "0 0 1000 1000"
    place_site: str = "unithd"
    place_density: float = 0.6
    librelane_path: str | None = None

    @classmethod
    def from_config(cls, config: dict) -> "AsicSettings":
        asic = config.get("asic", {})
        defaults = cls()
        return cls(
            pdk=str(asic.get("pdk", defaults.pdk)),
            library=str(asic.get("library", defaults.library)),
            clock_period=float(asic.get("clock_period", defaults.clock_period)),
            clock_port=str(asic.get("clock_port", defaults.clock_port)),
            die_area=str(asic.get("die_area", defaults.die_area)),
            place_site=str(asic.get("place_site", defaults.place_site)),
            place_density=float(asic.get("place_density", defaults.place_density)),
            librelane_path=str(asic["librelane_path"]) if asic.get("librelane_path") else None,
        )

    @property
    def liberty(self) -> str:
        return (
            f"$::env(PDK_ROOT)/{self.pdk}/libs.ref/{self.library}"
            f"/liberty/{self.library}__tt_025C_1v80.lib"
        )


def render_synthesis_script(
    design_name: str,
    output_dir: Path,
    artifacts: Sequence[ConcretizedArtifact],
    settings: AsicSettings,
    design_file: Path | None = None,
    design_hdl: str = "verilog",
) -> str:
    """Yosys 스크립트 텍스트. 아티팩트는 파일명 순으로 읽는다."""
    sources = []
    if design_file is not None:
        sources.append((READ_COMMANDS[design_hdl], str(output_dir / design_file.name)))
    for artifact in sorted(artifacts, key=lambda a: str(a.path)):
        if artifact.path is not None:
            sources.append((READ_COMMANDS[artifact.hdl], str(output_dir / artifact.path.name)))

    return SYNTH_SCRIPT_TEMPLATE.render(
        design=sanitize_identifier(design_name),
        sources=sources,
        liberty=settings.liberty,
        output_dir=str(output_dir),
    )


def render_librelane_config(design_name: str, output_dir: Path, settings: AsicSettings) -> str:
    return LIBRELANE_CONFIG_TEMPLATE.render(
        design=sanitize_identifier(design_name),
        output_dir=str(output_dir),
        asic=settings,
    )


def render_librelane_run_script(design_name: str, output_dir: Path, librelane_path: str) -> str:
    return LIBRELANE_RUN_TEMPLATE.render(
        design=sanitize_identifier(design_name),
        output_dir=str(output_dir),
        librelane=librelane_path.rstrip("/"),
    )


def write_asic_scripts(
    design_name: str,
    output_dir: Path,
    artifacts: Sequence[ConcretizedArtifact],
    config: dict,
    design_file: Path | None = None,
    design_hdl: str = "verilog",
) -> list[Path]:
    """
    synthesize.tcl, config.tcl 저장 (librelane_path가 있으면 run_librelane.sh도).

    Returns:
        저장된 스크립트 경로 목록

    Raises:
        IOFailure: ARTIFACT_WRITE (fatal)
    """
    settings = AsicSettings.from_config(config)
    root = output_dir.resolve()
    scripts = {
        SYNTH_SCRIPT_FILENAME: render_synthesis_script(
            design_name, root, artifacts, settings, design_file, design_hdl,
        ),
        LIBRELANE_CONFIG_FILENAME: render_librelane_config(design_name, root, settings),
    }
    if settings.librelane_path:
        scripts[LIBRELANE_RUN_SCRIPT_FILENAME] = render_librelane_run_script(
            design_name, root, settings.librelane_path,
        )

    written = []
    for filename, text in scripts.items():
        path = output_dir / filename
        try:
            atomic_write_text(path, text)
            if filename == LIBRELANE_RUN_SCRIPT_FILENAME:
                path.chmod(0o755)
        except OSError as e:
            raise IOFailure(
                ErrorCodes.ARTIFACT_WRITE,
                f"cannot write ASIC script: {e}",
                fatal=True,
                path=str(path),
            ) from e
        written.append(path)

    logger.info(f"Wrote ASIC scripts for {design_name} ({settings.pdk}/{settings.library})")
    return written
