"""
tool-offload — dry-run validator

File: src/tool_offload/offload/dry_run.py

Purpose
- Replay a generated script once and compare its stdout hash with the output
  hash recorded for the operation it replaces.

Functional requirements
- Invalid scripts and scripts without a recorded baseline never start a subprocess.
- A script the executor refuses or cannot start (missing working directory,
  path outside the workspace, no shell) is an ``execution_error`` verdict; no
  executor error escapes ``validate``.
- Failure precedence after execution: timeout, non-zero exit, hash mismatch.
- Every verdict is logged as ``offload_dry_run_verdict``.
- ``validate_many`` runs dry runs concurrently under a bounded pool and returns
  results in input order. A caller-supplied ``CancellationToken`` stops it early.

Non-functional requirements
- Dry runs never touch the pattern store; the baseline travels on the script.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import structlog

from tool_offload.domain.models import DryRunFailure, DryRunResult
from tool_offload.offload.executor import ScriptExecutionError
from tool_offload.utils.concurrency import CancellationToken, WorkerPool
from tool_offload.utils.hashing import hash_output

if TYPE_CHECKING:
    from tool_offload.domain.models import GeneratedScript
    from tool_offload.offload.executor import ScriptExecutor

_HASH_PREFIX = 12
_NOT_RUN_EXIT_CODE = -1


class DryRunValidator:
    def __init__(self, executor: ScriptExecutor, *, logger: Any | None = None) -> None:
        self._executor = executor
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def validate(self, generated: GeneratedScript) -> DryRunResult:
        if not generated.is_valid:
            return self._verdict(
                generated,
                failure_kind=DryRunFailure.INVALID,
                failure_reason="Script is invalid or generated for unsupported tool",
            )

        expected = generated.expected_output_hash
        if not expected:
            return self._verdict(
                generated,
                failure_kind=DryRunFailure.NO_BASELINE,
                failure_reason="No stored execution data found for output comparison",
            )

        operation = generated.operation
        try:
            execution = self._executor.run(
                operation.script,
                working_dir=operation.working_dir,
                timeout_seconds=operation.timeout / 1000.0,
                env=operation.env,
            )
        except (OSError, ScriptExecutionError) as exc:
            return self._verdict(
                generated,
                expected_output_hash=expected,
                failure_kind=DryRunFailure.EXECUTION_ERROR,
                failure_reason=f"Script could not be executed: {exc}",
            )
        actual = hash_output(execution.stdout)

        failure_kind: DryRunFailure | None = None
        failure_reason: str | None = None
        if execution.timed_out:
            failure_kind = DryRunFailure.TIMEOUT
            failure_reason = (
                f"Timed out after {operation.timeout} ms "
                f"(exit code {execution.exit_code})"
            )
        elif execution.exit_code != 0:
            failure_kind = DryRunFailure.NON_ZERO_EXIT
            failure_reason = f"Non-zero exit code: {execution.exit_code}"
        elif actual != expected:
            failure_kind = DryRunFailure.HASH_MISMATCH
            failure_reason = (
                f"Output hash mismatch: expected {expected[:_HASH_PREFIX]}..., "
                f"got {actual[:_HASH_PREFIX]}..."
            )

        return self._verdict(
            generated,
            actual_output_hash=actual,
            expected_output_hash=expected,
            exit_code=execution.exit_code,
            duration_ms=execution.duration_ms,
            failure_kind=failure_kind,
            failure_reason=failure_reason,
        )

    async def validate_many(
        self,
        scripts: Sequence[GeneratedScript],
        *,
        max_concurrency: int = 4,
        cancel_token: CancellationToken | None = None,
    ) -> list[DryRunResult]:
        """Validate ``scripts`` concurrently; results come back in input order.

        Cancelling ``cancel_token`` stops dry runs that have not started yet and
        raises ``asyncio.CancelledError``. A dry run already in flight keeps
        running in its worker thread until its subprocess exits.
        """

        pool: WorkerPool[DryRunResult] = WorkerPool(
            max_concurrency=max_concurrency,
            cancel_token=cancel_token if cancel_token is not None else CancellationToken(),
        )
        return await pool.run_ordered(
            asyncio.to_thread(self.validate, generated) for generated in scripts
        )

    def _verdict(
        self,
        generated: GeneratedScript,
        *,
        failure_kind: DryRunFailure | None,
        failure_reason: str | None,
        actual_output_hash: str = "",
        expected_output_hash: str = "",
        exit_code: int = _NOT_RUN_EXIT_CODE,
        duration_ms: float = 0.0,
    ) -> DryRunResult:
        result = DryRunResult(
            generated_script=generated,
            passed=failure_kind is None,
            actual_output_hash=actual_output_hash,
            expected_output_hash=expected_output_hash,
            exit_code=exit_code,
            duration_ms=duration_ms,
            failure_reason=failure_reason,
            failure_kind=failure_kind,
        )
        self._logger.info(
            "offload_dry_run_verdict",
            operation_id=result.operation_id,
            passed=result.passed,
            failure_kind=None if failure_kind is None else failure_kind.value,
            exit_code=exit_code,
            duration_ms=round(duration_ms, 3),
        )
        return result


__all__ = ["DryRunValidator"]
