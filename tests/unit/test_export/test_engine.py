"""
test_engine.py - ExportEngine 테스트

DoD:
- 같은 (template, params) → 아티팩트 1개, 나머지는 cache hit
- 인스턴스 단위 실패는 기록 후 계속, 실패도 키별로 1번만 계산
- fail_fast → 이후 인스턴스 Skipped
- 병렬 실행에서도 manifest는 입력 순서
- run log는 성공/실패/중단 모두 저장
"""

import json
import threading
from collections.abc import Callable
from pathlib import Path

import pytest

from rtlexport.core.storage import output_lock
from rtlexport.domain.errors import ErrorCodes, InvalidRequest, IOFailure
from rtlexport.domain.schemas import ComponentInstance, Design
from rtlexport.export.engine import ExportEngine
from rtlexport.export.writer import OutputWriter
from rtlexport.templates.database import TemplateDatabase

MakeInstance = Callable[..., ComponentInstance]


def _read_log(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


# argv: <counter file> - 호출될 때마다 한 줄 추가 후 실패
COUNTING_FAILURE_SCRIPT = """\
    import sys

    with open(sys.argv[1], "a", encoding="utf-8") as f:
        f.write("called\\n")
    sys.stderr.write("width not supported")
    sys.exit(3)
"""


@pytest.fixture
def engine(adder_database: TemplateDatabase, config: dict) -> ExportEngine:
    return ExportEngine(adder_database, config)


# =============================================================================
# Dedup
# =============================================================================

class TestDedup:
    """동일 아티팩트 공유."""

    def test_same_params_share_artifact(self, engine: ExportEngine, make_instance: MakeInstance, tmp_path: Path):
        out = tmp_path / "out"

        result = engine.run([make_instance("a1", width=4), make_instance("a2", width=4)], out)

        first, second = result.entries
        assert first.artifact.path == second.artifact.path
        assert (first.cache_hit, second.cache_hit) == (False, True)
        assert result.summary.artifacts == 1
        assert len(list(out.glob("*.v"))) == 1

    def test_static_and_generator(self, engine: ExportEngine, make_instance: MakeInstance, tmp_path: Path):
        result = engine.run([make_instance("small", width=4), make_instance("big", width=32)], tmp_path / "out")

        small, big = result.entries
        assert result.success
        assert "[3:0] a" in small.artifact.path.read_text(encoding="utf-8")
        assert "[31:0] a" in big.artifact.path.read_text(encoding="utf-8")
        assert small.descriptor_id != big.descriptor_id

    def test_dict_instances_accepted(self, engine: ExportEngine, tmp_path: Path):
        result = engine.run(
            [{"name": "a", "module": "adder", "parameters": {"width": 4}}], tmp_path / "out",
        )

        assert result.success

    def test_rerun_is_stable(self, engine: ExportEngine, make_instance: MakeInstance, tmp_path: Path):
        """같은 입력 두 번 → 같은 아티팩트 파일/내용."""
        out = tmp_path / "out"
        instances = [make_instance("a", width=4), make_instance("b", width=16)]

        first = engine.run(instances, out)
        contents = {p.name: p.read_text(encoding="utf-8") for p in out.glob("*.v")}
        second = engine.run(instances, out)

        assert [e.artifact.path for e in first.entries] == [e.artifact.path for e in second.entries]
        assert {p.name: p.read_text(encoding="utf-8") for p in out.glob("*.v")} == contents
        assert first.run_id != second.run_id


# =============================================================================
# Failures
# =============================================================================

class TestFailures:
    """인스턴스 단위 실패."""

    def test_unmatched_recorded_and_others_continue(
        self, engine: ExportEngine, make_instance: MakeInstance, tmp_path: Path,
    ):
        instances = [
            make_instance("a", width=4),
            make_instance("m", module="multiplier_special", width=4),
            make_instance("b", width=32),
        ]

        result = engine.run(instances, tmp_path / "out")

        assert result.success is False
        assert result.summary.generated == 2
        assert result.summary.matched == 2
        failure = result.entries[1].failure
        assert failure.kind == "UnmatchedInstance"
        assert failure.code == ErrorCodes.NO_MATCHING_TEMPLATE
        assert result.manifest_path.exists()

    def test_schema_violation_recorded(self, engine: ExportEngine, make_instance: MakeInstance, tmp_path: Path):
        """템플릿은 선택됐고 resolve에서 실패 → matched로 센다."""
        result = engine.run([make_instance("a", width=128)], tmp_path / "out")

        entry = result.entries[0]
        assert entry.failure.kind == "SchemaViolation"
        assert entry.failure.code == ErrorCodes.PARAM_RANGE
        assert entry.descriptor_id is not None
        assert (result.summary.matched, result.summary.generated) == (1, 0)
        manifest = json.loads(result.manifest_path.read_text(encoding="utf-8"))
        assert manifest["instances"][0]["template"] == entry.descriptor_id

    def test_generator_failure_memoized(
        self, write_script, command_for, config: dict, make_instance: MakeInstance, tmp_path: Path,
    ):
        """같은 키의 실패는 generator를 다시 돌리지 않는다."""
        counter = tmp_path / "calls.txt"
        script = write_script(COUNTING_FAILURE_SCRIPT)
        database = TemplateDatabase.from_sources([{
            "templates": [{
                "name": "adder",
                "parameters": {"width": "int"},
                "generator": {"command": command_for(script, str(counter))},
            }],
        }])

        result = ExportEngine(database, config).run(
            [make_instance("a1", width=64), make_instance("a2", width=64)], tmp_path / "out",
        )

        assert [e.failure.code for e in result.entries] == [ErrorCodes.GENERATOR_EXIT] * 2
        assert all(e.descriptor_id is not None for e in result.entries)
        assert counter.read_text(encoding="utf-8").splitlines() == ["called"]
        assert result.summary.matched == 2

    def test_fail_fast_skips_rest(
        self, adder_database: TemplateDatabase, config: dict, make_instance: MakeInstance, tmp_path: Path,
    ):
        config["export"]["fail_fast"] = True
        engine = ExportEngine(adder_database, config)

        result = engine.run(
            [
                make_instance("a", width=4),
                make_instance("m", module="multiplier_special"),
                make_instance("b", width=8),
            ],
            tmp_path / "out",
        )

        assert result.entries[0].succeeded
        assert result.entries[1].failure.kind == "UnmatchedInstance"
        assert result.entries[2].failure.kind == "Skipped"
        assert result.entries[2].failure.code == ErrorCodes.SKIPPED_AFTER_FAILURE

    def test_duplicate_names_rejected(self, engine: ExportEngine, make_instance: MakeInstance, tmp_path: Path):
        out = tmp_path / "out"

        with pytest.raises(InvalidRequest) as exc_info:
            engine.run([make_instance("a", width=4), make_instance("a", width=8)], out)

        assert exc_info.value.code == ErrorCodes.DUPLICATE_INSTANCE
        assert not out.exists()

    def test_unknown_policy(self, adder_database: TemplateDatabase, config: dict):
        config["export"]["policy"] = "first-loaded"

        with pytest.raises(ValueError):
            ExportEngine(adder_database, config)


# =============================================================================
# Parallel
# =============================================================================

class TestParallel:
    """workers > 1."""

    def test_input_order_preserved(
        self, adder_database: TemplateDatabase, config: dict, make_instance: MakeInstance, tmp_path: Path,
    ):
        config["export"]["workers"] = 4
        widths = [32, 4, 16, 4, 32, 8, 12, 16]
        instances = [make_instance(f"i{n}", width=w) for n, w in enumerate(widths)]

        result = ExportEngine(adder_database, config).run(instances, tmp_path / "out")

        assert [e.instance.name for e in result.entries] == [i.name for i in instances]
        assert result.success
        assert result.summary.artifacts == len(set(widths))
        assert sum(not e.cache_hit for e in result.entries) == len(set(widths))

    def test_matches_sequential_manifest(
        self, adder_database: TemplateDatabase, config: dict, make_instance: MakeInstance, tmp_path: Path,
    ):
        instances = [make_instance(f"i{w}", width=w) for w in (4, 8, 16, 32)]
        sequential = ExportEngine(adder_database, config).run(instances, tmp_path / "seq")
        config["export"]["workers"] = 3
        parallel = ExportEngine(adder_database, config).run(instances, tmp_path / "par")

        def artifacts(manifest: Path) -> list[dict]:
            return json.loads(manifest.read_text(encoding="utf-8"))["artifacts"]

        assert artifacts(sequential.manifest_path) == artifacts(parallel.manifest_path)

    def test_fail_fast_parallel(
        self, adder_database: TemplateDatabase, config: dict, make_instance: MakeInstance, tmp_path: Path,
    ):
        config["export"].update(workers=2, fail_fast=True)
        instances = [make_instance("m", module="multiplier_special")]
        instances += [make_instance(f"g{w}", width=w) for w in range(9, 15)]

        result = ExportEngine(adder_database, config).run(instances, tmp_path / "out")

        assert [e.instance.name for e in result.entries] == [i.name for i in instances]
        assert result.entries[-1].failure.kind == "Skipped"


# =============================================================================
# Run Log / Output
# =============================================================================

class TestRunLog:
    """run log 저장."""

    def test_success_logged(self, engine: ExportEngine, make_instance: MakeInstance, tmp_path: Path):
        result = engine.run([make_instance("a", width=4)], tmp_path / "out")

        log = _read_log(result.run_log_path)
        assert result.run_log_path.parent == tmp_path / "out" / "logs"
        assert log["run_id"] == result.run_id
        assert log["result"] == "success"
        assert log["policy"] == "exact-range-always"
        assert log["templates_loaded"] == 2
        assert log["summary"]["generated"] == 1

    def test_failure_logged(self, engine: ExportEngine, make_instance: MakeInstance, tmp_path: Path):
        result = engine.run([make_instance("m", module="multiplier_special")], tmp_path / "out")

        assert _read_log(result.run_log_path)["result"] == "failed"

    def test_dropped_parameter_warning(self, engine: ExportEngine, make_instance: MakeInstance, tmp_path: Path):
        result = engine.run([make_instance("a", width=4, depth=2)], tmp_path / "out")

        warnings = _read_log(result.run_log_path)["warnings"]
        assert result.success
        assert [w["code"] for w in warnings] == [ErrorCodes.UNDECLARED_PARAMETER_DROPPED]
        assert warnings[0]["instance"] == "a"
        assert warnings[0]["context"]["parameters"] == ["depth"]

    def test_aborted_run_logged(
        self, engine: ExportEngine, make_instance: MakeInstance, tmp_path: Path, monkeypatch,
    ):
        def fail(self, *args, **kwargs):
            raise IOFailure(ErrorCodes.ARTIFACT_WRITE, "cannot write manifest", fatal=True)

        monkeypatch.setattr(OutputWriter, "write_manifest", fail)
        out = tmp_path / "out"

        with pytest.raises(IOFailure):
            engine.run([make_instance("a", width=4)], out)

        logs = list((out / "logs").glob("run_*.json"))
        assert len(logs) == 1
        log = _read_log(logs[0])
        assert log["result"] == "aborted"
        assert log["error_code"] == ErrorCodes.ARTIFACT_WRITE

    def test_output_locked(self, engine: ExportEngine, make_instance: MakeInstance, tmp_path: Path, config: dict):
        """다른 run이 출력 디렉터리를 잡고 있으면 fatal."""
        out = tmp_path / "out"
        out.mkdir()
        holding = threading.Event()
        release = threading.Event()

        def holder() -> None:
            with output_lock(out, config):
                holding.set()
                release.wait(5)

        t = threading.Thread(target=holder)
        t.start()
        holding.wait(5)
        try:
            with pytest.raises(IOFailure) as exc_info:
                engine.run([make_instance("a", width=4)], out)
        finally:
            release.set()
            t.join()

        assert exc_info.value.code == ErrorCodes.OUTPUT_LOCKED
        assert not (out / "manifest.json").exists()


class TestDesignAndAsic:
    """디자인 파일 + ASIC 스크립트."""

    def test_design_written(self, engine: ExportEngine, make_instance: MakeInstance, tmp_path: Path):
        design = Design(name="top", content="module top; endmodule\n")

        result = engine.run([make_instance("a", width=4)], tmp_path / "out", design=design)

        assert result.design_path == tmp_path / "out" / "top.v"
        manifest = json.loads(result.manifest_path.read_text(encoding="utf-8"))
        assert manifest["design"]["file"] == "top.v"
        assert result.scripts == []

    def test_asic_scripts(
        self, adder_database: TemplateDatabase, config: dict, make_instance: MakeInstance, tmp_path: Path,
    ):
        config["asic"] = {"enabled": True, "pdk": "sky130", "library": "sky130_fd_sc_hs"}
        out = tmp_path / "out"
        design = Design(name="top", content="module top; endmodule\n")

        result = ExportEngine(adder_database, config).run(
            [make_instance("a", width=4), make_instance("b", width=32)], out, design=design,
        )

        assert [p.name for p in result.scripts] == ["synthesize.tcl", "config.tcl"]
        script = (out / "synthesize.tcl").read_text(encoding="utf-8")
        assert f"read_verilog {out.resolve() / 'top.v'}" in script
        for entry in result.entries:
            assert f"read_verilog {out.resolve() / entry.artifact.path.name}" in script
        assert "hierarchy -check -top top" in script
        assert "sky130_fd_sc_hs__tt_025C_1v80.lib" in script

    def test_asic_without_design(
        self, adder_database: TemplateDatabase, config: dict, make_instance: MakeInstance, tmp_path: Path,
    ):
        config["asic"] = {"enabled": True}

        result = ExportEngine(adder_database, config).run([make_instance("a", width=4)], tmp_path / "out")

        assert result.scripts == []
        assert not (tmp_path / "out" / "synthesize.tcl").exists()
