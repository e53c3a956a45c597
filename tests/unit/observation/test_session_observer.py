"""
tool-offload — unit tests for the session observer pipeline

File: tests/unit/observation/test_session_observer.py

Purpose
- Validate routing of session observations between the ephemeral buffer and
  persistent storage, and persistence of captured execution batches.

What this test file should cover
- Rate-limited observations are dropped before any storage write.
- Low-signal observations are buffered as ephemeral.
- Promotion flushes the buffer through the squasher.
- Cross-session counts from the buffer contribute to scoring.
- Concurrent observers never lose a buffered observation during a flush.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from tool_offload.constants import CATEGORY_EXECUTIONS, CATEGORY_SESSIONS
from tool_offload.domain.models import (
    ObservationTier,
    SessionEndReason,
    SessionMetrics,
    SessionObservation,
    SessionSource,
    ToolExecutionPair,
)
from tool_offload.observation.promotion_evaluator import PromotionCriteria, PromotionEvaluator
from tool_offload.observation.session_observer import SessionObserver
from tool_offload.safety.rate_limiter import RateLimitConfig, RateLimiter


@dataclass
class RecordingLogger:
    events: list[tuple[str, dict]] = field(default_factory=list)

    def info(self, event: str, **kwargs: object) -> None:
        self.events.append((event, kwargs))

    def warning(self, event: str, **kwargs: object) -> None:
        self.events.append((event, kwargs))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


def _observation(
    session_id: str,
    *,
    start: int = 0,
    end: int = 60_000,
    metrics: SessionMetrics | None = None,
    commands: tuple[str, ...] = (),
    tier: ObservationTier | None = None,
) -> SessionObservation:
    return SessionObservation(
        session_id=session_id,
        start_time=start,
        end_time=end,
        duration_minutes=(end - start) / 60_000,
        source=SessionSource.STARTUP,
        reason=SessionEndReason.PROMPT_INPUT_EXIT,
        metrics=metrics or SessionMetrics(),
        top_commands=commands,
        tier=tier,
    )


def _observer(tmp_path: Path, logger: RecordingLogger, **kwargs: object) -> SessionObserver:
    return SessionObserver(tmp_path / "patterns", logger=logger, **kwargs)  # type: ignore[arg-type]


@pytest.mark.unit
def test_low_signal_observation_is_buffered_as_ephemeral(tmp_path: Path) -> None:
    logger = RecordingLogger()
    observer = _observer(tmp_path, logger)

    stored = observer.observe(_observation("s1"))

    assert stored is not None
    assert stored.tier is ObservationTier.EPHEMERAL
    assert observer.store.read(CATEGORY_SESSIONS) == []
    assert [item.session_id for item in observer.ephemeral.read_all()] == ["s1"]
    assert "session_observation_scored" in logger.names()


@pytest.mark.unit
def test_promoted_observation_is_persisted_and_flushes_buffer(tmp_path: Path) -> None:
    logger = RecordingLogger()
    observer = _observer(tmp_path, logger)
    observer.observe(_observation("s1", metrics=SessionMetrics(user_messages=3)))
    observer.observe(_observation("s2", start=60_000, end=180_000))

    promoted = observer.observe(
        _observation("s3", metrics=SessionMetrics(tool_calls=2, unique_files_read=1))
    )

    assert promoted is not None
    assert promoted.tier is ObservationTier.PERSISTENT
    sessions = [
        SessionObservation.from_dict(entry.data) for entry in observer.store.read(CATEGORY_SESSIONS)
    ]
    assert [item.session_id for item in sessions] == ["s3", "s1"]
    aggregate = sessions[1]
    assert aggregate.squashed_from == 2
    assert aggregate.tier is ObservationTier.PERSISTENT
    assert (aggregate.start_time, aggregate.end_time) == (0, 180_000)
    assert observer.ephemeral.read_all() == []
    squashed = [kwargs for name, kwargs in logger.events if name == "ephemeral_buffer_squashed"]
    assert squashed == [{"squashed_from": 2, "score": 0.35, "persisted": True}]


@pytest.mark.unit
def test_low_scoring_aggregate_is_discarded_on_flush(tmp_path: Path) -> None:
    observer = _observer(
        tmp_path,
        RecordingLogger(),
        evaluator=PromotionEvaluator(PromotionCriteria(min_score=0.3)),
    )
    observer.observe(_observation("s1"))

    observer.observe(_observation("s2", metrics=SessionMetrics(tool_calls=1)))

    sessions = observer.store.read(CATEGORY_SESSIONS)
    assert [entry.data["sessionId"] for entry in sessions] == ["s2"]
    assert observer.ephemeral.get_size() == 0


@pytest.mark.unit
def test_cross_session_pattern_count_promotes_repeated_pattern(tmp_path: Path) -> None:
    observer = _observer(tmp_path, RecordingLogger())
    observer.observe(_observation("s1", commands=("make",)))
    observer.observe(_observation("s2", commands=("make",)))
    assert observer.store.read(CATEGORY_SESSIONS) == []

    third = observer.observe(_observation("s3", commands=("make",)))

    assert third is not None
    assert third.tier is ObservationTier.PERSISTENT


@pytest.mark.unit
def test_rate_limited_observation_is_dropped(tmp_path: Path) -> None:
    logger = RecordingLogger()
    limiter = RateLimiter.from_config(RateLimitConfig(max_per_session=1, max_per_hour=10))
    observer = _observer(tmp_path, logger, rate_limiter=limiter)

    assert observer.observe(_observation("s1")) is not None
    assert observer.observe(_observation("s1")) is None

    assert observer.ephemeral.get_size() == 1
    limited = [kwargs for name, kwargs in logger.events if name == "session_observation_rate_limited"]
    assert len(limited) == 1
    assert limited[0]["session_id"] == "s1"


@pytest.mark.unit
def test_already_persistent_observation_keeps_tier_when_buffered(tmp_path: Path) -> None:
    observer = _observer(tmp_path, RecordingLogger())

    stored = observer.observe(_observation("s1", tier=ObservationTier.PERSISTENT))

    assert stored is not None
    assert stored.tier is ObservationTier.PERSISTENT
    assert observer.ephemeral.get_size() == 1


@pytest.mark.unit
def test_record_executions_persists_batch(tmp_path: Path) -> None:
    logger = RecordingLogger()
    observer = _observer(tmp_path, logger)
    pairs = [
        ToolExecutionPair.captured(
            pair_id="p1",
            tool_name="Read",
            tool_input={"file_path": "/a"},
            output="A",
            session_id="s1",
            timestamp="t1",
        ),
        ToolExecutionPair.captured(
            pair_id="p2",
            tool_name="Bash",
            tool_input={"command": "sleep 100"},
            output=None,
            session_id="s1",
            timestamp="t2",
        ),
    ]

    batch = observer.record_executions("s1", pairs)

    entries = observer.store.read(CATEGORY_EXECUTIONS)
    assert len(entries) == 1
    assert entries[0].data == batch.to_dict()
    assert ("execution_batch_recorded", {"session_id": "s1", "complete": 1, "partial": 1}) in logger.events


@pytest.mark.unit
def test_concurrent_observers_account_for_every_buffered_observation(tmp_path: Path) -> None:
    logger = RecordingLogger()
    observer = _observer(tmp_path, logger)
    buffered: list[str] = []

    def worker(thread_index: int) -> None:
        for step in range(12):
            session_id = f"t{thread_index}-{step}"
            metrics = (
                SessionMetrics(tool_calls=2, unique_files_read=1)
                if step % 4 == 3
                else SessionMetrics()
            )
            stored = observer.observe(_observation(session_id, metrics=metrics))
            assert stored is not None
            if stored.tier is ObservationTier.EPHEMERAL:
                buffered.append(session_id)

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    flushed = sum(
        kwargs["squashed_from"] for name, kwargs in logger.events if name == "ephemeral_buffer_squashed"
    )
    assert buffered
    assert flushed + len(observer.ephemeral.read_all()) == len(buffered)
