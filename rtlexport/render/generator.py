"""
Generator 호출 렌더러: 외부 프로그램에 아티팩트 생성을 위임.

호출 계약:
- 새 작업 디렉터리에 파라미터 문서(params.json)를 쓴 뒤 실행
- command 치환: $PARAMS, $OUTPUT, $OUTPUT_DIR, $MODULE_NAME, $SOURCE_DIR, $<param>
- 셸 없이 실행, timeout 강제 (timeout == nonzero exit와 동일 취급)
- 성공 = exit 0 + $OUTPUT 파일 존재
- 작업 디렉터리는 항상 삭제 (실패한 호출의 부분 출력은 버려짐)
"""

import json
import logging
import shlex
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Any

from rtlexport.core.process import BoundedProcessCall, CallResult
from rtlexport.core.storage import atomic_write_json
from rtlexport.domain.constants import GENERATOR_PARAMS_FILENAME
from rtlexport.domain.errors import ErrorCodes, GenerationFailure
from rtlexport.domain.schemas import (
    GeneratorInvocation,
    ParamValue,
    encode_param_value,
    plain_value,
)

logger = logging.getLogger(__name__)

# generator 기본 timeout (초)
DEFAULT_GENERATOR_TIMEOUT = 300.0

# 실패 컨텍스트에 남길 stderr 길이
STDERR_CONTEXT_CHARS = 500


@dataclass
class GeneratorOutput:
    """generator 성공 결과."""
    content: str
    stdout: str = ""
    stderr: str = ""


class GeneratorRunner:
    """
    Generator 호출기.

    Usage:
        runner = GeneratorRunner(descriptor.strategy, config, descriptor.source_dir)
        output = runner.run(params, module_name="adder_0123456789", extension=".v")
    """

    def __init__(
        self,
        invocation: GeneratorInvocation,
        config: dict,
        source_dir: Path | None = None,
    ):
        """
        Args:
            invocation: 템플릿의 generator 전략
            config: 설정 (generator.timeout, generator.env)
            source_dir: 템플릿 문서 디렉터리 ($SOURCE_DIR, 작업 디렉터리 기준)
        """
        self.invocation = invocation
        self.source_dir = source_dir
        gen_config = config.get("generator", {})
        self.timeout = float(
            invocation.timeout or gen_config.get("timeout", DEFAULT_GENERATOR_TIMEOUT)
        )
        self.env = {str(k): str(v) for k, v in (gen_config.get("env") or {}).items()}

    def build_argv(self, params: Mapping[str, ParamValue], placeholders: Mapping[str, str]) -> list[str]:
        """
        command 템플릿 → argv.

        토큰 단위로 치환하므로 경로에 공백이 있어도 인자가 쪼개지지 않는다.

        Raises:
            GenerationFailure: GENERATOR_LAUNCH (알 수 없는 placeholder)
        """
        mapping = {name: str(plain_value(v)) for name, v in params.items()}
        mapping.update(placeholders)

        try:
            tokens = shlex.split(self.invocation.command)
            return [Template(token).substitute(mapping) for token in tokens]
        except (KeyError, ValueError) as e:
            raise GenerationFailure(
                ErrorCodes.GENERATOR_LAUNCH,
                f"cannot build generator command: {e}",
                command=self.invocation.command,
            ) from e

    def output_name(self, module_name: str, extension: str) -> str:
        if self.invocation.output is None:
            return f"{module_name}{extension}"
        return Template(self.invocation.output).safe_substitute(MODULE_NAME=module_name)

    def run(
        self,
        params: Mapping[str, ParamValue],
        module_name: str,
        extension: str,
        family: str = "",
    ) -> GeneratorOutput:
        """
        generator 실행 후 출력 내용 반환.

        Args:
            params: resolved 파라미터
            module_name: 생성될 HDL 모듈 이름
            extension: 기대하는 출력 확장자 (.v, .sv, .vhd)
            family: 파라미터 문서에 기록할 family 이름

        Returns:
            GeneratorOutput

        Raises:
            GenerationFailure: GENERATOR_LAUNCH, GENERATOR_EXIT, GENERATOR_TIMEOUT,
                               GENERATOR_NO_OUTPUT, GENERATOR_CANCELLED
        """
        with tempfile.TemporaryDirectory(prefix="rtlexport-gen-") as work:
            work_dir = Path(work)
            out_dir = work_dir / "out"
            out_dir.mkdir()

            params_path = work_dir / GENERATOR_PARAMS_FILENAME
            atomic_write_json(params_path, self._params_document(params, module_name, family))

            output_path = out_dir / self.output_name(module_name, extension)
            placeholders = {
                "PARAMS": str(params_path),
                "OUTPUT": str(output_path),
                "OUTPUT_DIR": str(out_dir),
                "MODULE_NAME": module_name,
                "SOURCE_DIR": str(self.source_dir or Path.cwd()),
            }
            argv = self.build_argv(params, placeholders)

            logger.info(f"Running generator for {module_name}: {shlex.join(argv)}")
            call = BoundedProcessCall(
                argv, timeout=self.timeout, cwd=self.source_dir, env=self.env,
            )
            result = call.run()

            self._raise_for_result(result, argv, output_path)

            try:
                content = output_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise GenerationFailure(
                    ErrorCodes.GENERATOR_NO_OUTPUT,
                    f"generator output unreadable: {e}",
                    command=argv[0],
                    output=output_path.name,
                ) from e

        return GeneratorOutput(content=content, stdout=result.stdout, stderr=result.stderr)

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _params_document(
        self,
        params: Mapping[str, ParamValue],
        module_name: str,
        family: str,
    ) -> dict[str, Any]:
        return {
            "module_name": module_name,
            "family": family,
            "parameters": {name: encode_param_value(params[name]) for name in sorted(params)},
        }

    def _raise_for_result(self, result: CallResult, argv: list[str], output_path: Path) -> None:
        context: dict[str, Any] = {
            "command": argv[0],
            "stderr": result.stderr[-STDERR_CONTEXT_CHARS:],
        }

        if result.launch_error is not None:
            raise GenerationFailure(
                ErrorCodes.GENERATOR_LAUNCH,
                f"generator could not be started: {result.launch_error}",
                **context,
            )
        if result.timed_out:
            raise GenerationFailure(
                ErrorCodes.GENERATOR_TIMEOUT,
                f"generator exceeded {self.timeout:g}s",
                timeout=self.timeout,
                **context,
            )
        if result.cancelled:
            raise GenerationFailure(
                ErrorCodes.GENERATOR_CANCELLED,
                "generator call was cancelled",
                **context,
            )
        if result.returncode != 0:
            if result.returncode is not None and result.returncode < 0:
                message = f"generator terminated by signal {-result.returncode}"
            else:
                message = f"generator exited with status {result.returncode}"
            raise GenerationFailure(
                ErrorCodes.GENERATOR_EXIT,
                message,
                returncode=result.returncode,
                **context,
            )
        if not output_path.is_file():
            raise GenerationFailure(
                ErrorCodes.GENERATOR_NO_OUTPUT,
                "generator succeeded but did not produce its output",
                output=output_path.name,
                **context,
            )
