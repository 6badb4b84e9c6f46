"""
Export Engine: 인스턴스 목록 → 출력 디렉터리.

파이프라인:
1. 인스턴스 이름 유일성 확인 (InvalidRequest, fatal)
2. 출력 루트 생성 + 락
3. 인스턴스별: select → resolve → dedup 캐시(concretize + persist)
4. manifest.json, 디자인 파일, (옵션) ASIC 스크립트
5. run log 저장 (성공/실패/중단 모두)

규칙:
- 인스턴스 단위 실패는 기록 후 계속 (fail_fast면 이후 인스턴스는 Skipped)
- manifest 순서는 항상 입력 순서
- workers > 1이면 ThreadPoolExecutor, in-flight 개수는 workers 이하
"""

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path

from rtlexport.core.cache import DedupCache
from rtlexport.core.logging import (
    complete_run_log,
    create_run_log,
    emit_warning,
    save_run_log,
)
from rtlexport.core.storage import output_lock
from rtlexport.domain.constants import LOGS_DIR
from rtlexport.domain.errors import (
    ErrorCodes,
    ExportError,
    SchemaViolation,
    Skipped,
    UnmatchedInstance,
)
from rtlexport.domain.schemas import (
    ComponentInstance,
    ConcretizedArtifact,
    Design,
    InstanceFailure,
    ManifestEntry,
    Match,
    RunLog,
    RunSummary,
)
from rtlexport.export.asic import write_asic_scripts
from rtlexport.export.intake import as_instances, check_unique_names
from rtlexport.export.writer import OutputWriter, summarize
from rtlexport.render.registry import Concretizer, check_handlers
from rtlexport.templates.database import STRATEGY_PARSERS, TemplateDatabase
from rtlexport.templates.matcher import DEFAULT_POLICY, Matcher, get_policy

logger = logging.getLogger(__name__)


@dataclass
class ExportResult:
    """run() 결과."""
    run_id: str
    summary: RunSummary
    entries: list[ManifestEntry]
    manifest_path: Path
    run_log_path: Path | None = None
    design_path: Path | None = None
    scripts: list[Path] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.summary.success


class ExportEngine:
    """
    Export 엔진. 템플릿 DB는 생성 시 한 번 주입.

    Usage:
        database = TemplateDatabase.from_sources([Path("templates/")])
        engine = ExportEngine(database, config)
        result = engine.run(instances, Path("out"), design=Design("top"))
    """

    def __init__(self, database: TemplateDatabase, config: dict):
        """
        Args:
            database: 로드된 템플릿 DB
            config: 설정 (export.workers, export.fail_fast, export.policy, asic.*)

        Raises:
            ValueError: 알 수 없는 정책, 핸들러 없는 strategy
        """
        check_handlers(STRATEGY_PARSERS)

        export_config = config.get("export", {})
        self.database = database
        self.config = config
        self.workers = max(1, int(export_config.get("workers", 1)))
        self.fail_fast = bool(export_config.get("fail_fast", False))
        self.logs_dir_name = export_config.get("logs_dir", LOGS_DIR)
        self.asic_enabled = bool(config.get("asic", {}).get("enabled", False))

        self.policy = get_policy(export_config.get("policy", DEFAULT_POLICY))
        self.matcher = Matcher(database, self.policy)
        self.concretizer = Concretizer(config)

    def run(
        self,
        instances: Sequence[ComponentInstance | dict],
        output_dir: Path,
        design: Design | None = None,
    ) -> ExportResult:
        """
        export 실행.

        Args:
            instances: 인스턴스 목록 (dict면 ComponentInstance로 변환)
            output_dir: 출력 루트
            design: top-level 디자인 (이름만 있어도 ASIC 스크립트 생성 가능)

        Returns:
            ExportResult

        Raises:
            InvalidRequest: 인스턴스 형식 오류, 이름 중복
            IOFailure: 출력 루트 생성/락/manifest 실패 (fatal)
        """
        component_instances = as_instances(instances)
        check_unique_names(component_instances)

        output_dir = Path(output_dir)
        writer = OutputWriter(output_dir, self.config)
        writer.prepare()

        with output_lock(output_dir, self.config):
            run_log = create_run_log(self.database.sources)
            run_log.templates_loaded = len(self.database)
            run_log.policy = self.policy.name
            logs_dir = output_dir / self.logs_dir_name

            try:
                result = self._export(component_instances, writer, run_log, design)
            except ExportError as e:
                logger.error(f"Export aborted: {e}")
                complete_run_log(run_log, error_code=e.code, error_context=e.to_dict()["context"])
                save_run_log(run_log, logs_dir)
                raise
            except Exception as e:
                logger.exception("Export aborted by unexpected error")
                complete_run_log(
                    run_log,
                    error_code=ErrorCodes.INTERNAL_ERROR,
                    error_context={"error": f"{type(e).__name__}: {e}"},
                )
                save_run_log(run_log, logs_dir)
                raise

            complete_run_log(run_log, summary=result.summary)
            result.run_log_path = save_run_log(run_log, logs_dir)

        logger.info(
            f"Export {run_log.run_id} {run_log.result}: "
            f"{result.summary.generated}/{result.summary.total} instances, "
            f"{result.summary.artifacts} artifacts"
        )
        return result

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _export(
        self,
        instances: list[ComponentInstance],
        writer: OutputWriter,
        run_log: RunLog,
        design: Design | None,
    ) -> ExportResult:
        cache: DedupCache[ConcretizedArtifact] = DedupCache()

        def process(instance: ComponentInstance) -> ManifestEntry:
            return self._process(instance, cache, writer, run_log)

        if self.workers > 1 and len(instances) > 1:
            entries = self._run_parallel(instances, process)
        else:
            entries = self._run_sequential(instances, process)

        summary = summarize(entries)
        logger.debug(f"Dedup cache: {cache.stats.misses} computed, {cache.stats.hits} reused")

        design_path = writer.write_design(design) if design is not None else None
        manifest_path = writer.write_manifest(
            entries, summary, run_log.run_id, design=design, policy=self.policy.name,
        )

        scripts: list[Path] = []
        if self.asic_enabled:
            if design is None:
                logger.warning("ASIC scripts requested without a design name, skipped")
            else:
                scripts = write_asic_scripts(
                    design.name,
                    writer.root,
                    writer.written,
                    self.config,
                    design_file=design_path,
                    design_hdl=design.hdl,
                )

        return ExportResult(
            run_id=run_log.run_id,
            summary=summary,
            entries=entries,
            manifest_path=manifest_path,
            design_path=design_path,
            scripts=scripts,
        )

    def _process(
        self,
        instance: ComponentInstance,
        cache: DedupCache[ConcretizedArtifact],
        writer: OutputWriter,
        run_log: RunLog,
    ) -> ManifestEntry:
        """인스턴스 1개 처리. 인스턴스 단위 에러는 ManifestEntry.failure로 반환."""
        try:
            descriptor = self.matcher.select(instance)
        except UnmatchedInstance as e:
            logger.warning(f"{instance.describe()}: {e}")
            return ManifestEntry(instance=instance, failure=InstanceFailure.from_error(instance, e))

        # 여기서부터는 매칭된 인스턴스 (실패해도 descriptor_id 기록)
        try:
            match = self.matcher.resolve(instance, descriptor)
        except SchemaViolation as e:
            logger.warning(f"{instance.describe()}: {e}")
            return ManifestEntry(
                instance=instance,
                failure=InstanceFailure.from_error(instance, e),
                descriptor_id=descriptor.descriptor_id,
            )

        if match.dropped:
            self._warn_dropped(run_log, match)

        key = self.concretizer.key_for(match)
        try:
            artifact, hit = cache.get_or_compute(
                key, lambda: writer.persist(self.concretizer.concretize(match))
            )
        except ExportError as e:
            if e.fatal:
                raise
            logger.warning(f"{instance.describe()}: {e}")
            return ManifestEntry(
                instance=instance,
                failure=InstanceFailure.from_error(instance, e),
                descriptor_id=match.descriptor.descriptor_id,
            )

        return ManifestEntry(
            instance=instance,
            artifact=artifact,
            descriptor_id=match.descriptor.descriptor_id,
            cache_hit=hit,
        )

    def _run_sequential(
        self,
        instances: list[ComponentInstance],
        process: Callable[[ComponentInstance], ManifestEntry],
    ) -> list[ManifestEntry]:
        entries: list[ManifestEntry] = []
        failed = False
        for instance in instances:
            if failed and self.fail_fast:
                entries.append(self._skipped(instance))
                continue
            entry = process(instance)
            failed = failed or entry.failure is not None
            entries.append(entry)
        return entries

    def _run_parallel(
        self,
        instances: list[ComponentInstance],
        process: Callable[[ComponentInstance], ManifestEntry],
    ) -> list[ManifestEntry]:
        results: list[ManifestEntry | None] = [None] * len(instances)
        pending = iter(enumerate(instances))
        in_flight: dict[Future[ManifestEntry], int] = {}
        stop = False

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="rtlexport") as pool:

            def submit_next() -> bool:
                item = next(pending, None)
                if item is None:
                    return False
                index, instance = item
                in_flight[pool.submit(process, instance)] = index
                return True

            while len(in_flight) < self.workers and submit_next():
                pass

            while in_flight:
                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    index = in_flight.pop(future)
                    entry = future.result()
                    results[index] = entry
                    if entry.failure is not None and self.fail_fast:
                        stop = True
                while not stop and len(in_flight) < self.workers and submit_next():
                    pass

        return [
            entry if entry is not None else self._skipped(instances[index])
            for index, entry in enumerate(results)
        ]

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    @staticmethod
    def _skipped(instance: ComponentInstance) -> ManifestEntry:
        error = Skipped(
            ErrorCodes.SKIPPED_AFTER_FAILURE,
            "not processed because an earlier instance failed (fail-fast)",
        )
        return ManifestEntry(instance=instance, failure=InstanceFailure.from_error(instance, error))

    @staticmethod
    def _warn_dropped(run_log: RunLog, match: Match) -> None:
        message = (
            f"parameters not declared by {match.descriptor.describe()} were ignored: "
            f"{', '.join(match.dropped)}"
        )
        logger.warning(f"{match.instance.name}: {message}")
        emit_warning(
            run_log,
            ErrorCodes.UNDECLARED_PARAMETER_DROPPED,
            match.instance.name,
            message,
            parameters=list(match.dropped),
            template=match.descriptor.descriptor_id,
        )
