"""Unit tests for core domain models."""

from __future__ import annotations

import json

import pytest

from tool_offload.domain import models
from tool_offload.utils.hashing import compute_input_hash, hash_output


def _pair(**overrides: object) -> models.ToolExecutionPair:
    params: dict[str, object] = {
        "pair_id": "pair-1",
        "tool_name": "Read",
        "tool_input": {"file_path": "/tmp/a.txt"},
        "output": "alpha\n",
        "session_id": "session-1",
        "timestamp": "2026-02-01T12:00:00Z",
    }
    params.update(overrides)
    return models.ToolExecutionPair.captured(**params)  # type: ignore[arg-type]


def _observation(**overrides: object) -> models.SessionObservation:
    params: dict[str, object] = {
        "session_id": "session-1",
        "start_time": 1_000,
        "end_time": 61_000,
        "duration_minutes": 1.0,
        "source": models.SessionSource.STARTUP,
        "reason": models.SessionEndReason.OTHER,
    }
    params.update(overrides)
    return models.SessionObservation(**params)  # type: ignore[arg-type]


@pytest.mark.unit
def test_captured_pair_hashes_output_and_marks_complete() -> None:
    pair = _pair()

    assert pair.is_complete
    assert pair.status is models.PairStatus.COMPLETE
    assert pair.output_hash == hash_output("alpha\n")
    assert pair.session_id == "session-1"
    assert pair.operation_key.id == f"Read:{compute_input_hash({'file_path': '/tmp/a.txt'})}"


@pytest.mark.unit
def test_captured_pair_without_output_is_partial() -> None:
    pair = _pair(output=None)

    assert not pair.is_complete
    assert pair.output_hash is None


@pytest.mark.unit
def test_empty_output_is_still_a_complete_pair() -> None:
    pair = _pair(output="")

    assert pair.is_complete
    assert pair.output_hash == hash_output("")


@pytest.mark.unit
def test_pair_status_and_hash_must_agree() -> None:
    with pytest.raises(ValueError, match="must be null for partial pairs"):
        models.ToolExecutionPair(
            id="p",
            tool_name="Read",
            input={},
            output=None,
            output_hash="abc",
            status=models.PairStatus.PARTIAL,
            timestamp="t",
            context=models.ExecutionContext(session_id="s"),
        )
    with pytest.raises(ValueError, match="is required for complete pairs"):
        models.ToolExecutionPair(
            id="p",
            tool_name="Read",
            input={},
            output="x",
            output_hash=None,
            status=models.PairStatus.COMPLETE,
            timestamp="t",
            context=models.ExecutionContext(session_id="s"),
        )


@pytest.mark.unit
def test_pair_wire_format_uses_camel_case_keys() -> None:
    payload = _pair().to_dict()

    assert set(payload) == {
        "id",
        "toolName",
        "input",
        "output",
        "outputHash",
        "status",
        "timestamp",
        "context",
    }
    assert payload["context"] == {"sessionId": "session-1"}
    assert models.ToolExecutionPair.from_dict(payload).to_dict() == payload


@pytest.mark.unit
def test_from_dict_tolerates_unknown_keys() -> None:
    payload = _pair().to_dict()
    payload["producerVersion"] = "2.1"

    parsed = models.ToolExecutionPair.from_dict(payload)

    assert parsed.id == "pair-1"


@pytest.mark.unit
def test_from_dict_reports_missing_fields_with_path() -> None:
    with pytest.raises(ValueError, match=r"ToolExecutionPair: missing required fields: \['toolName'\]"):
        models.ToolExecutionPair.from_dict(
            {
                "id": "p",
                "input": {},
                "status": "partial",
                "timestamp": "t",
                "context": {"sessionId": "s"},
            }
        )


@pytest.mark.unit
def test_from_dict_rejects_text_that_cannot_be_encoded_as_utf8() -> None:
    payload = _pair().to_dict()
    payload["input"] = json.loads('{"file_path": "\\ud800"}')

    with pytest.raises(
        ValueError, match=r"ToolExecutionPair\.input\.file_path: contains characters"
    ):
        models.ToolExecutionPair.from_dict(payload)

    payload = _pair().to_dict()
    payload["output"] = "\ud800"
    with pytest.raises(ValueError, match="unpaired surrogate"):
        models.ToolExecutionPair.from_dict(payload)


@pytest.mark.unit
def test_from_json_rejects_non_object_root() -> None:
    with pytest.raises(ValueError, match="JSON root must be an object"):
        models.OperationKey.from_json("[1, 2]")


@pytest.mark.unit
def test_batch_counts_complete_and_partial_pairs() -> None:
    pairs = [_pair(pair_id="a"), _pair(pair_id="b", output=None), _pair(pair_id="c")]

    batch = models.StoredExecutionBatch.from_pairs("session-1", pairs, captured_at=42)

    assert batch.complete_count == 2
    assert batch.partial_count == 1
    assert [pair.id for pair in batch.complete_pairs()] == ["a", "c"]
    assert batch.to_dict()["capturedAt"] == 42


@pytest.mark.unit
def test_batch_from_dict_fills_missing_counts_and_context() -> None:
    pairs = [_pair(pair_id="a").to_dict(), _pair(pair_id="b", output=None).to_dict()]

    batch = models.StoredExecutionBatch.from_dict({"sessionId": "s-9", "pairs": pairs})

    assert batch.context.session_id == "s-9"
    assert (batch.complete_count, batch.partial_count) == (1, 1)
    assert batch.captured_at == 0


@pytest.mark.unit
def test_operation_key_parse_splits_on_last_colon() -> None:
    key = models.OperationKey.parse("mcp:tool:abc123")

    assert key.tool_name == "mcp:tool"
    assert key.input_hash == "abc123"
    assert str(key) == "mcp:tool:abc123"

    with pytest.raises(ValueError, match="expected '<toolName>:<inputHash>'"):
        models.OperationKey.parse("no-separator")


@pytest.mark.unit
def test_operation_key_is_independent_of_input_key_order() -> None:
    first = models.OperationKey.for_input("Grep", {"pattern": "x", "path": "src"})
    second = models.OperationKey.for_input("Grep", {"path": "src", "pattern": "x"})

    assert first == second


@pytest.mark.unit
def test_session_metrics_add_componentwise() -> None:
    total = models.SessionMetrics(1, 2, 3, 4, 5, 6) + models.SessionMetrics(6, 5, 4, 3, 2, 1)

    assert total == models.SessionMetrics(7, 7, 7, 7, 7, 7)


@pytest.mark.unit
def test_observation_tier_only_moves_towards_persistent() -> None:
    ephemeral = _observation().with_tier(models.ObservationTier.EPHEMERAL)
    persistent = ephemeral.promote_tier()

    assert persistent.tier is models.ObservationTier.PERSISTENT
    with pytest.raises(ValueError, match="cannot move a persistent observation to ephemeral"):
        persistent.with_tier(models.ObservationTier.EPHEMERAL)


@pytest.mark.unit
def test_observation_missing_tier_reads_as_persistent() -> None:
    observation = _observation()

    assert observation.tier is None
    assert observation.effective_tier is models.ObservationTier.PERSISTENT
    assert observation.normalize_tier().tier is models.ObservationTier.PERSISTENT
    assert "tier" not in observation.to_dict()


@pytest.mark.unit
def test_observation_keeps_reversed_time_bounds_for_anomaly_detection() -> None:
    observation = _observation(start_time=90_000, end_time=10_000)

    assert observation.start_time > observation.end_time


@pytest.mark.unit
def test_observation_round_trips_through_json() -> None:
    observation = _observation(
        metrics=models.SessionMetrics(user_messages=4, tool_calls=9),
        top_commands=("git status",),
        top_tools=("Bash", "Read"),
        tier=models.ObservationTier.EPHEMERAL,
        squashed_from=3,
    )

    raw = observation.to_json()

    assert json.loads(raw)["squashedFrom"] == 3
    assert models.SessionObservation.from_json(raw) == observation


@pytest.mark.unit
@pytest.mark.parametrize(
    ("field", "value", "message"),
    [
        ("source", "boot", "invalid value 'boot'"),
        ("durationMinutes", "ten", "expected number"),
        ("squashedFrom", 0, "must be >= 1"),
        ("tier", "archived", "invalid value 'archived'"),
    ],
)
def test_observation_from_dict_rejects_bad_fields(field: str, value: object, message: str) -> None:
    payload = _observation().to_dict()
    payload[field] = value  # type: ignore[assignment]

    with pytest.raises(ValueError, match=message):
        models.SessionObservation.from_dict(payload)


@pytest.mark.unit
def test_offload_operation_validates_timeout_and_env() -> None:
    operation = models.OffloadOperation(
        id="Bash:abc",
        script="echo hi",
        script_type=models.ScriptType.BASH,
        working_dir=".",
        timeout=1_000,
        env={"LANG": "C"},
    )

    assert operation.to_dict()["scriptType"] == "bash"
    assert models.OffloadOperation.from_dict(operation.to_dict()) == operation

    with pytest.raises(ValueError, match="OffloadOperation.timeout: must be >= 1"):
        models.OffloadOperation(
            id="x", script="true", script_type="bash", working_dir=".", timeout=0
        )


@pytest.mark.unit
def test_promotion_candidate_round_trip_and_key() -> None:
    key = models.OperationKey.for_input("Read", {"file_path": "/a"})
    score = models.DeterminismScore(
        operation=key,
        variance_score=0.0,
        observation_count=5,
        unique_outputs=1,
        session_ids=("s1", "s2"),
    )
    candidate = models.PromotionCandidate(
        operation=models.ClassifiedOperation(
            score=score,
            classification=models.DeterminismClassification.DETERMINISTIC,
            determinism=1.0,
        ),
        tool_name="Read",
        frequency=5,
        estimated_token_savings=12,
        composite_score=0.5,
        meets_confidence=True,
    )

    assert candidate.key == key
    assert models.PromotionCandidate.from_dict(candidate.to_dict()) == candidate


@pytest.mark.unit
def test_determinism_score_rejects_out_of_range_variance() -> None:
    with pytest.raises(ValueError, match="must be <= 1.0"):
        models.DeterminismScore(
            operation=models.OperationKey("Read", "abc"),
            variance_score=1.5,
            observation_count=3,
            unique_outputs=3,
            session_ids=(),
        )
