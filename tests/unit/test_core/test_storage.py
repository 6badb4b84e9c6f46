"""
test_storage.py - 출력 저장소 테스트

테스트 케이스:
- TC1: 출력 루트 생성 (idempotent), 파일이면 fatal OUTPUT_ROOT
- TC2: 출력 락 - 두 번째 락은 timeout 후 OUTPUT_LOCKED
- TC3: 원자적 쓰기 - 내용 그대로, temp 파일 남지 않음
"""

import json
import threading
import time
from pathlib import Path

import pytest

from rtlexport.core.storage import (
    atomic_write_json,
    atomic_write_text,
    ensure_output_root,
    output_lock,
)
from rtlexport.domain.errors import ErrorCodes, IOFailure


class TestEnsureOutputRoot:
    """출력 루트 생성 테스트."""

    def test_creates_nested(self, tmp_path: Path):
        root = tmp_path / "a" / "b" / "out"

        assert ensure_output_root(root) == root
        assert root.is_dir()

    def test_idempotent(self, tmp_path: Path):
        root = tmp_path / "out"
        ensure_output_root(root)
        (root / "keep.v").write_text("x")

        ensure_output_root(root)

        assert (root / "keep.v").read_text() == "x"

    def test_file_in_the_way_is_fatal(self, tmp_path: Path):
        target = tmp_path / "out"
        target.write_text("not a directory")

        with pytest.raises(IOFailure) as exc_info:
            ensure_output_root(target)

        assert exc_info.value.code == ErrorCodes.OUTPUT_ROOT
        assert exc_info.value.fatal is True


class TestOutputLock:
    """출력 디렉터리 락 테스트."""

    def test_second_holder_times_out(self, tmp_path: Path):
        """다른 run이 락을 잡고 있으면 OUTPUT_LOCKED."""
        config = {"export": {"lock_timeout": 0.2}}
        holding = threading.Event()
        release = threading.Event()

        def holder() -> None:
            with output_lock(tmp_path, config):
                holding.set()
                release.wait(5)

        t = threading.Thread(target=holder)
        t.start()
        holding.wait(5)

        try:
            with pytest.raises(IOFailure) as exc_info:
                with output_lock(tmp_path, config):
                    pass
        finally:
            release.set()
            t.join()

        assert exc_info.value.code == ErrorCodes.OUTPUT_LOCKED
        assert exc_info.value.fatal is True

    def test_sequential_runs_succeed(self, tmp_path: Path):
        """락은 블록 종료 시 해제."""
        config = {"export": {"lock_timeout": 0.2}}

        with output_lock(tmp_path, config):
            pass
        with output_lock(tmp_path, config) as lock_path:
            assert lock_path.parent == tmp_path

    def test_waits_for_release(self, tmp_path: Path):
        """timeout 안에 해제되면 두 번째 요청자가 이어서 진입."""
        config = {"export": {"lock_timeout": 5}}
        order: list[str] = []
        holding = threading.Event()

        def holder() -> None:
            with output_lock(tmp_path, config):
                holding.set()
                time.sleep(0.2)
                order.append("first_end")

        t = threading.Thread(target=holder)
        t.start()
        holding.wait(5)
        with output_lock(tmp_path, config):
            order.append("second_start")
        t.join()

        assert order == ["first_end", "second_start"]


class TestAtomicWrite:
    """원자적 쓰기 테스트."""

    def test_writes_text_verbatim(self, tmp_path: Path):
        path = tmp_path / "adder.v"
        text = "module adder;\r\nendmodule\n"

        atomic_write_text(path, text)

        assert path.read_bytes() == text.encode("utf-8")

    def test_replaces_existing(self, tmp_path: Path):
        path = tmp_path / "adder.v"
        path.write_text("old")

        atomic_write_text(path, "new")

        assert path.read_text() == "new"

    def test_no_temp_files_left(self, tmp_path: Path):
        atomic_write_text(tmp_path / "a.v", "x")

        assert [p.name for p in tmp_path.iterdir()] == ["a.v"]

    def test_creates_parent(self, tmp_path: Path):
        path = tmp_path / "logs" / "run.json"

        atomic_write_json(path, {"b": 1, "a": "한글"})

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data == {"b": 1, "a": "한글"}
        assert list(data) == ["b", "a"]
