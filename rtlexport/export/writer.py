"""
Output Writer: 아티팩트/디자인/manifest 저장.

규칙:
- 출력 루트는 없으면 생성, 실패는 fatal IOFailure
- 아티팩트 파일명: <family>_<hash10>.<ext> (동일 키 → 동일 파일)
- 같은 내용이 이미 있으면 다시 쓰지 않음 (파일 해시 비교)
- 모든 쓰기는 원자적 (temp → rename)
- 아티팩트 1개 쓰기 실패는 그 아티팩트를 공유하는 인스턴스만 실패
"""

import hashlib
import logging
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from rtlexport.core.hashing import compute_file_hash
from rtlexport.core.ids import artifact_stem, sanitize_identifier
from rtlexport.core.storage import atomic_write_json, atomic_write_text, ensure_output_root
from rtlexport.domain.constants import MANIFEST_FILENAME
from rtlexport.domain.errors import ErrorCodes, IOFailure
from rtlexport.domain.schemas import (
    ConcretizedArtifact,
    Design,
    ManifestEntry,
    RunSummary,
)

logger = logging.getLogger(__name__)


class OutputWriter:
    """
    출력 디렉터리 writer.

    Usage:
        writer = OutputWriter(output_dir, config)
        writer.prepare()
        artifact = writer.persist(artifact)
        writer.write_manifest(entries, summary, run_id)
    """

    def __init__(self, root: Path, config: dict):
        self.root = Path(root)
        self.manifest_filename = config.get("export", {}).get(
            "manifest_filename", MANIFEST_FILENAME
        )
        self._lock = threading.Lock()
        self._claimed: dict[str, str] = {}  # 파일명 → artifact key
        self.written: list[ConcretizedArtifact] = []
        self.design_path: Path | None = None

    def prepare(self) -> Path:
        """
        출력 루트 준비.

        Raises:
            IOFailure: OUTPUT_ROOT (fatal)
        """
        return ensure_output_root(self.root)

    def artifact_path(self, artifact: ConcretizedArtifact) -> Path:
        return self.root / f"{artifact_stem(artifact.family, artifact.key)}{artifact.extension}"

    def persist(self, artifact: ConcretizedArtifact) -> ConcretizedArtifact:
        """
        아티팩트 저장.

        Returns:
            path가 채워진 ConcretizedArtifact

        Raises:
            IOFailure: ARTIFACT_WRITE (인스턴스 단위)
        """
        path = self.artifact_path(artifact)

        with self._lock:
            owner = self._claimed.setdefault(path.name, artifact.key)
        if owner != artifact.key:
            raise IOFailure(
                ErrorCodes.ARTIFACT_WRITE,
                "artifact file name already used by a different artifact",
                path=path.name,
                key=artifact.key,
                other_key=owner,
            )

        try:
            if self._is_current(path, artifact.content):
                logger.debug(f"Artifact unchanged, not rewritten: {path.name}")
            else:
                atomic_write_text(path, artifact.content)
                logger.info(f"Wrote artifact {path.name}")
        except OSError as e:
            raise IOFailure(
                ErrorCodes.ARTIFACT_WRITE,
                f"cannot write artifact: {e}",
                path=str(path),
                key=artifact.key,
            ) from e

        stored = ConcretizedArtifact(
            key=artifact.key,
            family=artifact.family,
            hdl=artifact.hdl,
            content=artifact.content,
            descriptor_id=artifact.descriptor_id,
            path=path,
        )
        with self._lock:
            self.written.append(stored)
        return stored

    def write_design(self, design: Design) -> Path | None:
        """
        top-level 디자인 파일 저장 (<design_name>.<ext>).

        Returns:
            저장 경로 (content가 없으면 None)

        Raises:
            IOFailure: ARTIFACT_WRITE (fatal)
        """
        if design.content is None:
            return None

        path = self.root / f"{sanitize_identifier(design.name)}{design.extension}"
        try:
            atomic_write_text(path, design.content)
        except OSError as e:
            raise IOFailure(
                ErrorCodes.ARTIFACT_WRITE,
                f"cannot write design file: {e}",
                fatal=True,
                path=str(path),
            ) from e

        logger.info(f"Wrote design {path.name}")
        self.design_path = path
        return path

    def write_manifest(
        self,
        entries: Sequence[ManifestEntry],
        summary: RunSummary,
        run_id: str,
        design: Design | None = None,
        policy: str = "",
    ) -> Path:
        """
        manifest.json 저장 (인스턴스 입력 순서 유지).

        Raises:
            IOFailure: ARTIFACT_WRITE (fatal)
        """
        path = self.root / self.manifest_filename
        try:
            atomic_write_json(path, self.manifest_document(entries, summary, run_id, design, policy))
        except OSError as e:
            raise IOFailure(
                ErrorCodes.ARTIFACT_WRITE,
                f"cannot write manifest: {e}",
                fatal=True,
                path=str(path),
            ) from e
        return path

    def manifest_document(
        self,
        entries: Sequence[ManifestEntry],
        summary: RunSummary,
        run_id: str,
        design: Design | None = None,
        policy: str = "",
    ) -> dict[str, Any]:
        design_doc = None
        if design is not None:
            design_doc = {
                "name": design.name,
                "hdl": design.hdl,
                "file": self.design_path.name if self.design_path else None,
            }

        artifacts = sorted(
            (
                {
                    "file": a.path.name,
                    "key": a.key,
                    "family": a.family,
                    "hdl": a.hdl,
                    "template": a.descriptor_id,
                }
                for a in self.written
                if a.path is not None
            ),
            key=lambda item: item["file"],
        )

        return {
            "run_id": run_id,
            "policy": policy,
            "design": design_doc,
            "summary": summary.to_dict(),
            "artifacts": artifacts,
            "instances": [entry.to_dict(self.root) for entry in entries],
        }

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    @staticmethod
    def _is_current(path: Path, content: str) -> bool:
        if not path.is_file():
            return False
        expected = hashlib.sha256(content.encode("utf-8")).hexdigest()
        return compute_file_hash(path) == expected


def summarize(entries: Sequence[ManifestEntry]) -> RunSummary:
    """manifest 엔트리 → RunSummary."""
    summary = RunSummary(total=len(entries))
    keys = set()
    for entry in entries:
        if entry.descriptor_id is not None:
            summary.matched += 1
        if entry.succeeded:
            assert entry.artifact is not None
            summary.generated += 1
            keys.add(entry.artifact.key)
        elif entry.failure is not None:
            summary.failures.append(entry.failure)
    summary.artifacts = len(keys)
    return summary
