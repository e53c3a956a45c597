"""Run generated bash scripts as bounded local subprocesses inside a workspace root."""

from __future__ import annotations

import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from tool_offload.utils.fs import is_within

if TYPE_CHECKING:
    from collections.abc import Mapping

TIMED_OUT_EXIT_CODE = -1


class ScriptExecutionError(RuntimeError):
    """Base error for script executor failures."""


class ExecutionPolicyError(ScriptExecutionError):
    """Raised when a script would run outside the workspace root."""


@dataclass(frozen=True, slots=True)
class ScriptExecutionResult:
    exit_code: int
    stdout: bytes
    stderr: str
    timed_out: bool
    duration_ms: float

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.exit_code == 0


class ScriptExecutor:
    """Execute ``bash -c <script>`` in its own process group.

    stdout is captured as raw bytes so replayed output hashes the same way the
    recorded output was hashed. On timeout the whole process group is killed,
    including any children the script started.
    """

    def __init__(
        self,
        workspace_root: Path | str,
        *,
        default_timeout_seconds: float = 30.0,
        env_overrides: Mapping[str, str] | None = None,
        shell: str = "bash",
    ) -> None:
        root = Path(workspace_root).resolve(strict=True)
        if not root.is_dir():
            raise NotADirectoryError(f"{root!s} is not a directory")
        if default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0")

        self._workspace_root = root
        self._default_timeout_seconds = float(default_timeout_seconds)
        self._env_overrides = dict(env_overrides or {})
        self._shell = shell

    @property
    def workspace_root(self) -> Path:
        return self._workspace_root

    def run(
        self,
        script: str,
        *,
        working_dir: Path | str = ".",
        timeout_seconds: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ScriptExecutionResult:
        resolved_cwd = self._resolve_cwd(working_dir)
        effective_timeout = (
            self._default_timeout_seconds if timeout_seconds is None else float(timeout_seconds)
        )
        if effective_timeout <= 0:
            raise ValueError("timeout_seconds must be > 0")

        started = time.perf_counter()
        with subprocess.Popen(
            [self._shell, "-c", script],
            cwd=resolved_cwd,
            env=self._build_environment(env),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        ) as process:
            try:
                stdout, stderr = process.communicate(timeout=effective_timeout)
            except subprocess.TimeoutExpired:
                _kill_process_group(process)
                stdout, stderr = process.communicate()
                return ScriptExecutionResult(
                    exit_code=TIMED_OUT_EXIT_CODE,
                    stdout=stdout or b"",
                    stderr=_decode(stderr),
                    timed_out=True,
                    duration_ms=(time.perf_counter() - started) * 1000.0,
                )

        return ScriptExecutionResult(
            exit_code=process.returncode,
            stdout=stdout or b"",
            stderr=_decode(stderr),
            timed_out=False,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    def _resolve_cwd(self, working_dir: Path | str) -> Path:
        candidate = Path(working_dir)
        if not candidate.is_absolute():
            candidate = self._workspace_root / candidate
        path = candidate.resolve(strict=True)
        if not path.is_dir():
            raise NotADirectoryError(f"{path!s} is not a directory")
        if not is_within(path, self._workspace_root):
            raise ExecutionPolicyError(
                f"working directory {path!s} is outside workspace {self._workspace_root!s}"
            )
        return path

    def _build_environment(self, env: Mapping[str, str] | None) -> dict[str, str]:
        merged: dict[str, str] = {}
        host_path = os.environ.get("PATH")
        if host_path:
            merged["PATH"] = host_path
        merged.update(self._env_overrides)
        if env is not None:
            merged.update(env)
        return merged


def _kill_process_group(process: subprocess.Popen[bytes]) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        # Exited between the timeout and the kill.
        pass


def _decode(value: bytes | None) -> str:
    if value is None:
        return ""
    return value.decode("utf-8", errors="replace")


__all__ = [
    "TIMED_OUT_EXIT_CODE",
    "ExecutionPolicyError",
    "ScriptExecutionError",
    "ScriptExecutionResult",
    "ScriptExecutor",
]
