"""
tool-offload — unit tests for the dry-run validator

File: tests/unit/offload/test_dry_run.py

Purpose
- Validate dry-run verdicts for generated scripts replayed through a real executor.

What this test file should cover
- Invalid scripts and missing baselines never start a subprocess.
- Failure precedence: timeout, non-zero exit, hash mismatch.
- Concurrent validation returns results in input order.
- Executor errors become ``execution_error`` verdicts instead of escaping.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from tool_offload.domain.models import (
    ClassifiedOperation,
    DeterminismClassification,
    DeterminismScore,
    DryRunFailure,
    GeneratedScript,
    OffloadOperation,
    OperationKey,
    PromotionCandidate,
)
from tool_offload.offload.dry_run import DryRunValidator
from tool_offload.offload.executor import ScriptExecutor
from tool_offload.utils.concurrency import CancellationToken
from tool_offload.utils.hashing import hash_output


@dataclass
class RecordingLogger:
    events: list[tuple[str, dict]] = field(default_factory=list)

    def info(self, event: str, **kwargs: object) -> None:
        self.events.append((event, kwargs))

    def warning(self, event: str, **kwargs: object) -> None:
        self.events.append((event, kwargs))


class ExplodingExecutor:
    def run(self, *args: object, **kwargs: object) -> None:
        raise AssertionError("executor must not be called")


def _generated(
    script: str,
    *,
    expected: str | None,
    is_valid: bool = True,
    timeout_ms: int = 5_000,
    op_id: str | None = None,
    working_dir: str = ".",
) -> GeneratedScript:
    key = OperationKey.for_input("Bash", {"command": script})
    candidate = PromotionCandidate(
        operation=ClassifiedOperation(
            score=DeterminismScore(key, 0.0, 5, 1, ("s1",)),
            classification=DeterminismClassification.DETERMINISTIC,
            determinism=1.0,
        ),
        tool_name="Bash",
        frequency=5,
        estimated_token_savings=10,
        composite_score=0.9,
        meets_confidence=True,
    )
    return GeneratedScript(
        operation=OffloadOperation(
            id=op_id or key.id,
            script=script,
            script_type="bash",
            working_dir=working_dir,
            timeout=timeout_ms,
        ),
        source_candidate=candidate,
        script_content=script,
        is_valid=is_valid,
        expected_output_hash=expected,
    )


@pytest.fixture
def validator(tmp_path: Path) -> DryRunValidator:
    return DryRunValidator(ScriptExecutor(tmp_path), logger=RecordingLogger())


@pytest.mark.unit
def test_matching_output_passes(validator: DryRunValidator) -> None:
    result = validator.validate(_generated("echo hi", expected=hash_output("hi\n")))

    assert result.passed
    assert result.failure_kind is None
    assert result.failure_reason is None
    assert result.exit_code == 0
    assert result.actual_output_hash == result.expected_output_hash


@pytest.mark.unit
def test_invalid_script_is_not_executed() -> None:
    logger = RecordingLogger()
    validator = DryRunValidator(ExplodingExecutor(), logger=logger)  # type: ignore[arg-type]

    result = validator.validate(_generated("exit 1", expected="abc", is_valid=False))

    assert not result.passed
    assert result.failure_kind is DryRunFailure.INVALID
    assert result.failure_reason == "Script is invalid or generated for unsupported tool"
    assert (result.exit_code, result.duration_ms) == (-1, 0.0)
    assert logger.events[0][0] == "offload_dry_run_verdict"
    assert logger.events[0][1]["failure_kind"] == "invalid"


@pytest.mark.unit
def test_missing_baseline_is_not_executed() -> None:
    validator = DryRunValidator(ExplodingExecutor(), logger=RecordingLogger())  # type: ignore[arg-type]

    result = validator.validate(_generated("echo hi", expected=None))

    assert result.failure_kind is DryRunFailure.NO_BASELINE
    assert result.failure_reason == "No stored execution data found for output comparison"
    assert result.actual_output_hash == result.expected_output_hash == ""


@pytest.mark.unit
def test_non_zero_exit_outranks_hash_mismatch(validator: DryRunValidator) -> None:
    result = validator.validate(_generated("echo nope; exit 1", expected=hash_output("hi\n")))

    assert result.failure_kind is DryRunFailure.NON_ZERO_EXIT
    assert result.failure_reason == "Non-zero exit code: 1"
    assert result.exit_code == 1


@pytest.mark.unit
def test_hash_mismatch_reports_digest_prefixes(validator: DryRunValidator) -> None:
    expected = hash_output("hi\n")

    result = validator.validate(_generated("echo bye", expected=expected))

    actual = hash_output("bye\n")
    assert result.failure_kind is DryRunFailure.HASH_MISMATCH
    assert result.failure_reason == (
        f"Output hash mismatch: expected {expected[:12]}..., got {actual[:12]}..."
    )


@pytest.mark.unit
def test_timeout_outranks_everything(validator: DryRunValidator) -> None:
    result = validator.validate(
        _generated("sleep 5; exit 4", expected=hash_output(""), timeout_ms=200)
    )

    assert result.failure_kind is DryRunFailure.TIMEOUT
    assert result.failure_reason == "Timed out after 200 ms (exit code -1)"
    assert result.exit_code == -1


@pytest.mark.unit
def test_result_serializes_with_operation_id(validator: DryRunValidator) -> None:
    generated = _generated("printf x", expected=hash_output("x"), op_id="Bash:fixed")

    payload = validator.validate(generated).to_dict()

    assert payload["operationId"] == "Bash:fixed"
    assert payload["passed"] is True
    assert payload["failureKind"] is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_validate_many_preserves_input_order(validator: DryRunValidator) -> None:
    scripts = [
        _generated("sleep 0.3; echo a", expected=hash_output("a\n")),
        _generated("echo b", expected=hash_output("wrong")),
        _generated("sleep 0.1; echo c", expected=hash_output("c\n")),
        _generated("exit 0", expected=None),
    ]

    results = await validator.validate_many(scripts, max_concurrency=2)

    assert [result.generated_script for result in results] == scripts
    assert [result.passed for result in results] == [True, False, True, False]
    assert results[1].failure_kind is DryRunFailure.HASH_MISMATCH
    assert results[3].failure_kind is DryRunFailure.NO_BASELINE


@pytest.mark.unit
@pytest.mark.parametrize(
    ("working_dir", "reason"),
    [
        ("gone", "No such file or directory"),
        ("..", "is outside workspace"),
    ],
)
def test_executor_errors_become_execution_error_verdicts(
    tmp_path: Path, working_dir: str, reason: str
) -> None:
    logger = RecordingLogger()
    validator = DryRunValidator(ScriptExecutor(tmp_path), logger=logger)
    expected = hash_output("hi\n")

    result = validator.validate(_generated("echo hi", expected=expected, working_dir=working_dir))

    assert not result.passed
    assert result.failure_kind is DryRunFailure.EXECUTION_ERROR
    assert result.failure_reason is not None
    assert result.failure_reason.startswith("Script could not be executed: ")
    assert reason in result.failure_reason
    assert (result.exit_code, result.actual_output_hash) == (-1, "")
    assert result.expected_output_hash == expected
    assert logger.events[-1][1]["failure_kind"] == "execution_error"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_validate_many_keeps_going_past_an_unrunnable_script(
    validator: DryRunValidator,
) -> None:
    scripts = [
        _generated("echo a", expected=hash_output("a\n")),
        _generated("echo b", expected=hash_output("b\n"), working_dir="missing"),
        _generated("echo c", expected=hash_output("c\n")),
    ]

    results = await validator.validate_many(scripts, max_concurrency=3)

    assert [result.failure_kind for result in results] == [
        None,
        DryRunFailure.EXECUTION_ERROR,
        None,
    ]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_validate_many_honours_a_cancelled_token() -> None:
    validator = DryRunValidator(ExplodingExecutor(), logger=RecordingLogger())  # type: ignore[arg-type]
    token = CancellationToken()
    token.cancel()

    with pytest.raises(asyncio.CancelledError):
        await validator.validate_many(
            [_generated("echo a", expected=hash_output("a\n"))], cancel_token=token
        )
