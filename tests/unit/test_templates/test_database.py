"""
test_database.py - 템플릿 DB 테스트

테스트 케이스:
- TC1: 파일/디렉터리/문서 로드, lookup은 descriptor_id 순
- TC2: 형식 오류, 중복 discriminant → LoadError MALFORMED_DESCRIPTOR (로드 중단)
- TC3: 같은 시그니처 + 다른 정의 → AMBIGUOUS_DESCRIPTOR (두 위치 보고)
- TC4: 완전히 같은 중복은 하나로 합침
- TC5: 문서 단위 트랜잭션 (실패한 문서는 반영되지 않음)
"""

import json
from pathlib import Path
from typing import Any

import pytest
import yaml

from rtlexport.domain.errors import ErrorCodes, LoadError
from rtlexport.domain.schemas import EnumValue, GeneratorInvocation, StaticTemplate
from rtlexport.templates.database import (
    TemplateDatabase,
    parse_descriptor,
    read_source_document,
)


def _static(name: str = "adder", cond: dict | None = None, text: str = "{{ width }}", **extra: Any) -> dict:
    entry: dict[str, Any] = {
        "name": name,
        "parameters": {"width": {"type": "int", "min": 1, "max": 64}},
        "discriminants": [cond] if cond else [],
        "static": {"text": text},
    }
    entry.update(extra)
    return entry


def _doc(*entries: dict) -> dict:
    return {"templates": list(entries)}


# =============================================================================
# Load
# =============================================================================

class TestLoad:
    """로드 정상 케이스."""

    def test_load_document(self):
        database = TemplateDatabase.from_sources([_doc(_static())])

        assert len(database) == 1
        assert database.families() == ["adder"]
        assert database.sources == ["<memory>"]

    def test_load_yaml_file(self, tmp_path: Path):
        path = tmp_path / "db.yaml"
        path.write_text(yaml.safe_dump(_doc(_static())), encoding="utf-8")

        database = TemplateDatabase.from_sources([path])

        assert len(database) == 1
        assert database.sources == [str(path)]

    def test_load_json_file(self, tmp_path: Path):
        path = tmp_path / "db.json"
        path.write_text(json.dumps(_doc(_static())), encoding="utf-8")

        assert len(TemplateDatabase.from_sources([path])) == 1

    def test_load_directory(self, tmp_path: Path):
        (tmp_path / "a.yaml").write_text(
            yaml.safe_dump(_doc(_static(cond={"param": "width", "op": "<=", "value": 8}))),
        )
        (tmp_path / "b.yml").write_text(
            yaml.safe_dump(_doc(_static(cond={"param": "width", "op": ">", "value": 8}))),
        )
        (tmp_path / "notes.txt").write_text("ignored")

        database = TemplateDatabase.from_sources([tmp_path])

        assert len(database.lookup_candidates("adder")) == 2

    def test_static_path_relative_to_source(self, tmp_path: Path):
        (tmp_path / "adder.v.j2").write_text("module {{ module_name }}; // {{ width }}\nendmodule\n")
        entry = _static()
        entry["static"] = {"path": "adder.v.j2"}
        path = tmp_path / "db.yaml"
        path.write_text(yaml.safe_dump(_doc(entry)))

        descriptor = TemplateDatabase.from_sources([path]).lookup_candidates("adder")[0]

        assert isinstance(descriptor.strategy, StaticTemplate)
        assert "{{ width }}" in descriptor.strategy.text
        assert descriptor.source_dir == tmp_path.resolve()

    def test_missing_source(self, tmp_path: Path):
        with pytest.raises(LoadError) as exc_info:
            TemplateDatabase.from_sources([tmp_path / "nope.yaml"])

        assert exc_info.value.code == ErrorCodes.SOURCE_UNREADABLE

    def test_unparsable_yaml(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text("templates: [unclosed", encoding="utf-8")

        with pytest.raises(LoadError) as exc_info:
            read_source_document(path)

        assert exc_info.value.code == ErrorCodes.SOURCE_UNREADABLE


class TestLookupOrder:
    """lookup_candidates 정렬 테스트."""

    def test_independent_of_load_order(self):
        first = _static(cond={"param": "width", "op": "<=", "value": 8})
        second = _static(cond={"param": "width", "op": ">", "value": 8})

        a = TemplateDatabase.from_sources([_doc(first, second)])
        b = TemplateDatabase.from_sources([_doc(second), _doc(first)])

        ids_a = [d.descriptor_id for d in a.lookup_candidates("adder")]
        ids_b = [d.descriptor_id for d in b.lookup_candidates("adder")]
        assert ids_a == ids_b
        assert ids_a == sorted(ids_a)

    def test_unknown_family_empty(self):
        assert TemplateDatabase().lookup_candidates("adder") == []


# =============================================================================
# Malformed
# =============================================================================

class TestMalformed:
    """형식 오류 → MALFORMED_DESCRIPTOR."""

    @pytest.mark.parametrize(
        "entry",
        [
            {"name": "adder"},  # strategy 없음
            _static(generator="gen"),  # strategy 2개
            _static(name="9bad"),
            _static(hdl="chisel"),
            _static(cond={"param": "depth", "op": "==", "value": 4}),  # 선언 안 된 파라미터
            _static(cond={"param": "width", "op": "~=", "value": 4}),
            _static(cond={"param": "width", "op": "<", "value": "8"}),
            _static(cond={"param": "width", "op": "between", "min": 9}),
            _static(cond={"param": "width", "op": "==", "value": "eight"}),  # 타입 불일치
            _static(text="{% if %}"),
            {"name": "adder", "parameters": {"width": "float"}, "static": {"text": ""}},
            {"name": "adder", "parameters": {"kind": {"type": "enum"}}, "static": {"text": ""}},
            {"name": "adder", "parameters": {"w": {"type": "int", "min": 8, "max": 1}}, "static": {"text": ""}},
            {"name": "adder", "parameters": {"w": {"type": "int", "max": 4, "default": 8}}, "static": {"text": ""}},
            {"name": "adder", "generator": {"command": ""}},
            {"name": "adder", "generator": {"command": "gen", "output": "../x.v"}},
            {"name": "adder", "generator": {"command": "gen", "timeout": 0}},
        ],
    )
    def test_rejected(self, entry: dict):
        with pytest.raises(LoadError) as exc_info:
            TemplateDatabase.from_sources([_doc(entry)])

        assert exc_info.value.code == ErrorCodes.MALFORMED_DESCRIPTOR
        assert "templates[0]" in exc_info.value.context["origin"]

    def test_missing_templates_list(self):
        with pytest.raises(LoadError) as exc_info:
            TemplateDatabase.from_sources([{"template": []}])

        assert exc_info.value.code == ErrorCodes.MALFORMED_DESCRIPTOR

    def test_duplicate_discriminant(self):
        """같은 조건을 두 번 쓰면 더 구체적인 것으로 취급되지 않고 거부."""
        entry = _static(cond={"param": "width", "op": "==", "value": 4})
        entry["discriminants"] = entry["discriminants"] * 2

        with pytest.raises(LoadError) as exc_info:
            TemplateDatabase.from_sources([_doc(entry)])

        assert exc_info.value.code == ErrorCodes.MALFORMED_DESCRIPTOR
        assert "width == 4" in exc_info.value.message


# =============================================================================
# Conflicts
# =============================================================================

class TestConflicts:
    """중복 정의 테스트."""

    def test_conflicting_definition_is_ambiguous(self):
        cond = {"param": "width", "op": "<=", "value": 8}

        with pytest.raises(LoadError) as exc_info:
            TemplateDatabase.from_sources([
                _doc(_static(cond=cond, text="a {{ width }}")),
                _doc(_static(cond=cond, text="b {{ width }}")),
            ])

        error = exc_info.value
        assert error.code == ErrorCodes.AMBIGUOUS_DESCRIPTOR
        assert error.context["first"] == "<memory>#templates[0]"
        assert error.context["second"] == "<memory>#templates[0]"

    def test_conflict_within_document(self):
        cond = {"param": "width", "op": "<=", "value": 8}

        with pytest.raises(LoadError) as exc_info:
            TemplateDatabase.from_sources([
                _doc(_static(cond=cond, text="a {{ width }}"), _static(cond=cond, text="b {{ width }}")),
            ])

        assert exc_info.value.context["first"].endswith("templates[0]")
        assert exc_info.value.context["second"].endswith("templates[1]")

    def test_exact_duplicate_merged(self):
        entry = _static(cond={"param": "width", "op": "<=", "value": 8})

        database = TemplateDatabase.from_sources([_doc(entry), _doc(entry)])

        assert len(database) == 1

    def test_failed_document_not_applied(self):
        """두 번째 항목이 잘못되면 첫 번째 항목도 반영되지 않음."""
        database = TemplateDatabase()
        good = _static(cond={"param": "width", "op": "<=", "value": 8})

        with pytest.raises(LoadError):
            database.load(_doc(good, {"name": "adder"}))

        assert len(database) == 0
        assert database.sources == []


# =============================================================================
# parse_descriptor
# =============================================================================

class TestParseDescriptor:
    """항목 파싱 세부 테스트."""

    def test_generator_shorthand(self):
        descriptor = parse_descriptor(
            {"name": "adder", "parameters": {"width": "int"}, "generator": "gen $width"},
            None,
            "t",
        )

        assert isinstance(descriptor.strategy, GeneratorInvocation)
        assert descriptor.strategy.command == "gen $width"
        assert descriptor.schema["width"].type == "int"

    def test_default_op_is_equality(self):
        descriptor = parse_descriptor(
            {
                "name": "fifo",
                "parameters": {"depth": "int"},
                "discriminants": [{"param": "depth", "value": 16}],
                "static": {"text": "{{ depth }}"},
            },
            None,
            "t",
        )

        assert descriptor.discriminants[0].op == "=="

    def test_enum_discriminant_and_default(self):
        descriptor = parse_descriptor(
            {
                "name": "mult",
                "hdl": "vhdl",
                "parameters": {"kind": {"type": "enum", "choices": ["booth", "array"], "default": "array"}},
                "discriminants": [{"param": "kind", "op": "in", "values": [{"enum": "booth"}]}],
                "static": {"text": "{{ kind }}"},
            },
            None,
            "t",
        )

        assert descriptor.schema["kind"].default == EnumValue("array")
        assert descriptor.discriminants[0].value == (EnumValue("booth"),)
        assert descriptor.extension == ".vhd"

    def test_descriptor_id_ignores_condition_order(self):
        params = {"width": "int", "kind": "str"}
        c1 = {"param": "width", "op": "<=", "value": 8}
        c2 = {"param": "kind", "value": "s"}
        a = parse_descriptor(
            {"name": "x", "parameters": params, "discriminants": [c1, c2], "static": {"text": ""}}, None, "t",
        )
        b = parse_descriptor(
            {"name": "x", "parameters": params, "discriminants": [c2, c1], "static": {"text": ""}}, None, "t",
        )

        assert a.descriptor_id == b.descriptor_id
