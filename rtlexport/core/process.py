"""
외부 프로세스 호출: timeout 제한 + 취소 가능

규칙:
- 셸 없이 argv로 실행 (shell=False)
- 자식은 새 세션(프로세스 그룹)으로 시작, kill은 그룹 전체에
- timeout 초과 시 그룹 kill, timed_out=True로 반환 (kill 후 출력 drain도 시간 제한)
- cancel()은 다른 스레드에서 호출 가능 (실행 중이면 그룹 kill)
- 실행 실패(파일 없음 등)는 예외 대신 launch_error로 반환
"""

import logging
import os
import signal
import subprocess
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# 출력 캡처 최대 보존 길이 (manifest/run log 크기 제한)
MAX_CAPTURED_CHARS = 4000

# kill 후 파이프 drain 최대 대기 (초)
DRAIN_TIMEOUT = 2.0


@dataclass
class CallResult:
    """프로세스 호출 결과."""
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    cancelled: bool = False
    launch_error: str | None = None

    @property
    def ok(self) -> bool:
        return (
            self.returncode == 0
            and not self.timed_out
            and not self.cancelled
            and self.launch_error is None
        )


def _tail(text: str | bytes | None) -> str:
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text[-MAX_CAPTURED_CHARS:]


class BoundedProcessCall:
    """
    timeout이 강제되는 동기 프로세스 호출.

    Usage:
        call = BoundedProcessCall(["gen", "--out", "x.v"], timeout=30)
        result = call.run()
        # 다른 스레드에서: call.cancel()
    """

    def __init__(
        self,
        argv: Sequence[str],
        timeout: float,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ):
        """
        Args:
            argv: 실행할 명령 (argv[0]은 프로그램)
            timeout: 최대 실행 시간 (초)
            cwd: 작업 디렉터리
            env: 추가 환경 변수 (현재 환경 위에 덮어씀)
        """
        self.argv = list(argv)
        self.timeout = timeout
        self.cwd = cwd
        self.env = dict(env or {})
        self._process: subprocess.Popen[bytes] | None = None
        self._lock = threading.Lock()
        self._cancelled = False

    def run(self) -> CallResult:
        """
        프로세스 실행 후 종료까지 대기.

        Returns:
            CallResult (예외를 던지지 않음)
        """
        env = {**os.environ, **self.env} if self.env else None

        with self._lock:
            if self._cancelled:
                return CallResult(returncode=None, cancelled=True)
            try:
                self._process = subprocess.Popen(
                    self.argv,
                    cwd=self.cwd,
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    start_new_session=True,
                )
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to launch {self.argv[:1]}: {e}")
                return CallResult(returncode=None, launch_error=str(e))
            process = self._process

        try:
            stdout, stderr = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            self._kill_group(process)
            stdout, stderr = self._drain(process)
            logger.warning(f"Process timed out after {self.timeout}s: {self.argv[:1]}")
            return CallResult(
                returncode=process.returncode,
                stdout=_tail(stdout),
                stderr=_tail(stderr),
                timed_out=True,
            )

        return CallResult(
            returncode=process.returncode,
            stdout=_tail(stdout),
            stderr=_tail(stderr),
            cancelled=self._cancelled,
        )

    def cancel(self) -> None:
        """실행 중이면 그룹 kill, 아직 시작 전이면 시작하지 않도록 표시."""
        with self._lock:
            self._cancelled = True
            process = self._process
        if process is not None and process.poll() is None:
            self._kill_group(process)

    def _kill_group(self, process: subprocess.Popen[bytes]) -> None:
        # 자식이 띄운 손자 프로세스까지 (pgid == 자식 pid)
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.warning(f"Failed to kill process group of {self.argv[:1]}: {e}")
            process.kill()

    def _drain(self, process: subprocess.Popen[bytes]) -> tuple[bytes | None, bytes | None]:
        """kill 이후 남은 출력 회수. 파이프를 쥔 프로세스가 남아 있어도 DRAIN_TIMEOUT 안에 반환."""
        try:
            return process.communicate(timeout=DRAIN_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.warning(f"Output pipes of {self.argv[:1]} still open after kill, closed")
            for pipe in (process.stdout, process.stderr):
                if pipe is not None:
                    pipe.close()
            process.wait(timeout=DRAIN_TIMEOUT)
            return None, None
