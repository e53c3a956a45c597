"""
tool-offload — unit tests for the determinism analyzer

File: tests/unit/observation/test_determinism_analyzer.py

Purpose
- Validate grouping, variance scoring, and classification of recorded executions.

What this test file should cover
- Partial pairs never contribute to a group.
- Groups below the sample-size gate are not reported.
- Sort orders of ``analyze`` and ``classify``.
- Corrupt batches are skipped with a warning.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from tool_offload.constants import CATEGORY_EXECUTIONS
from tool_offload.domain.models import (
    DeterminismClassification,
    OperationKey,
    StoredExecutionBatch,
    ToolExecutionPair,
)
from tool_offload.observation.determinism_analyzer import (
    DeterminismAnalyzer,
    DeterminismConfig,
    classify_determinism,
    variance_score,
)
from tool_offload.storage.pattern_store import PatternStore


@dataclass
class RecordingLogger:
    events: list[tuple[str, dict]] = field(default_factory=list)

    def info(self, event: str, **kwargs: object) -> None:
        self.events.append((event, kwargs))

    def warning(self, event: str, **kwargs: object) -> None:
        self.events.append((event, kwargs))


def _pair(index: int, tool: str, tool_input: dict, output: str | None, session: str) -> ToolExecutionPair:
    return ToolExecutionPair.captured(
        pair_id=f"pair-{index}",
        tool_name=tool,
        tool_input=tool_input,
        output=output,
        session_id=session,
        timestamp=f"2026-02-01T12:00:{index:02d}Z",
    )


def _record(store: PatternStore, session: str, pairs: list[ToolExecutionPair]) -> None:
    batch = StoredExecutionBatch.from_pairs(session, pairs, captured_at=1)
    store.append(CATEGORY_EXECUTIONS, batch.to_dict())


@pytest.fixture
def store(tmp_path: Path) -> PatternStore:
    return PatternStore(tmp_path / "patterns", logger=RecordingLogger())


@pytest.mark.unit
def test_variance_formula() -> None:
    assert variance_score(1, 1) == 0.0
    assert variance_score(5, 1) == 0.0
    assert variance_score(5, 5) == 1.0
    assert variance_score(3, 2) == 0.5


@pytest.mark.unit
def test_classification_thresholds_are_inclusive() -> None:
    assert classify_determinism(0.95) is DeterminismClassification.DETERMINISTIC
    assert classify_determinism(0.9499) is DeterminismClassification.SEMI_DETERMINISTIC
    assert classify_determinism(0.7) is DeterminismClassification.SEMI_DETERMINISTIC
    assert classify_determinism(0.69) is DeterminismClassification.NON_DETERMINISTIC


@pytest.mark.unit
def test_groups_across_batches_and_ignores_partial_pairs(store: PatternStore) -> None:
    read = {"file_path": "/a.txt"}
    _record(store, "s1", [_pair(0, "Read", read, "A", "s1"), _pair(1, "Read", read, None, "s1")])
    _record(store, "s2", [_pair(2, "Read", read, "A", "s2"), _pair(3, "Read", read, "A", "s2")])

    scores = DeterminismAnalyzer(store, logger=RecordingLogger()).analyze()

    assert len(scores) == 1
    score = scores[0]
    assert score.operation == OperationKey.for_input("Read", read)
    assert score.observation_count == 3
    assert score.unique_outputs == 1
    assert score.variance_score == 0.0
    assert score.session_ids == ("s1", "s2")


@pytest.mark.unit
def test_groups_below_min_sample_size_are_dropped(store: PatternStore) -> None:
    _record(
        store,
        "s1",
        [
            _pair(0, "Bash", {"command": "date"}, "mon", "s1"),
            _pair(1, "Bash", {"command": "date"}, "tue", "s1"),
        ],
    )

    analyzer = DeterminismAnalyzer(store, DeterminismConfig(min_sample_size=3), logger=RecordingLogger())

    assert analyzer.analyze() == []


@pytest.mark.unit
def test_analyze_sorts_by_variance_and_classify_by_determinism(store: PatternStore) -> None:
    stable = {"file_path": "/stable"}
    flaky = {"command": "date"}
    mixed = {"pattern": "x"}
    pairs = [
        *(_pair(index, "Read", stable, "same", "s1") for index in range(4)),
        *(_pair(10 + index, "Bash", flaky, f"t{index}", "s1") for index in range(4)),
        *(_pair(20 + index, "Grep", mixed, "a" if index < 3 else "b", "s1") for index in range(4)),
    ]
    _record(store, "s1", pairs)
    analyzer = DeterminismAnalyzer(store, logger=RecordingLogger())

    scores = analyzer.analyze()
    classified = analyzer.classify()

    assert [score.operation.tool_name for score in scores] == ["Read", "Grep", "Bash"]
    assert [round(score.variance_score, 4) for score in scores] == [0.0, 0.3333, 1.0]
    assert [item.score.operation.tool_name for item in classified] == ["Read", "Grep", "Bash"]
    assert [item.classification for item in classified] == [
        DeterminismClassification.DETERMINISTIC,
        DeterminismClassification.NON_DETERMINISTIC,
        DeterminismClassification.NON_DETERMINISTIC,
    ]
    assert classified[0].determinism == 1.0


@pytest.mark.unit
def test_corrupt_batch_is_skipped_with_warning(store: PatternStore) -> None:
    logger = RecordingLogger()
    store.append(CATEGORY_EXECUTIONS, {"sessionId": "bad"})
    read = {"file_path": "/a"}
    _record(store, "s1", [_pair(index, "Read", read, "A", "s1") for index in range(3)])

    scores = DeterminismAnalyzer(store, logger=logger).analyze()

    assert len(scores) == 1
    skipped = [kwargs for name, kwargs in logger.events if name == "execution_batch_skipped"]
    assert len(skipped) == 1
    assert skipped[0]["entry_index"] == 0
    completed = [kwargs for name, kwargs in logger.events if name == "determinism_analysis_completed"]
    assert completed == [{"operations": 1, "min_sample_size": 3}]


@pytest.mark.unit
def test_unsigned_batch_with_unpaired_surrogate_is_skipped(store: PatternStore) -> None:
    logger = RecordingLogger()
    read = {"file_path": "/a"}
    _record(store, "s1", [_pair(index, "Read", read, "A", "s1") for index in range(3)])
    legacy = StoredExecutionBatch.from_pairs(
        "s2", [_pair(9, "Read", {"file_path": "PLACEHOLDER"}, "B", "s2")], captured_at=1
    )
    line = json.dumps({"timestamp": 2, "category": CATEGORY_EXECUTIONS, "data": legacy.to_dict()})
    with store.path_for(CATEGORY_EXECUTIONS).open("a", encoding="utf-8") as handle:
        handle.write(line.replace("PLACEHOLDER", "\\ud800") + "\n")

    scores = DeterminismAnalyzer(store, logger=logger).analyze()

    assert [score.operation.tool_name for score in scores] == ["Read"]
    skipped = [kwargs for name, kwargs in logger.events if name == "execution_batch_skipped"]
    assert len(skipped) == 1
    assert skipped[0]["entry_index"] == 1
    assert "unpaired surrogate" in skipped[0]["reason"]


@pytest.mark.unit
def test_config_validation() -> None:
    with pytest.raises(ValueError, match="min_sample_size must be >= 1"):
        DeterminismConfig(min_sample_size=0)
    with pytest.raises(ValueError, match="thresholds must satisfy"):
        DeterminismConfig(deterministic_threshold=0.5, semi_deterministic_threshold=0.7)
