"""
tool-offload — determinism analyzer

File: src/tool_offload/observation/determinism_analyzer.py

Purpose
- Read the persisted execution corpus and measure how reproducible each
  (tool, input) operation is across its recorded executions.

Functional requirements
- Only complete pairs count; partial pairs never contribute.
- Groups smaller than ``min_sample_size`` are discarded, never reported.
- ``variance = (unique outputs - 1) / (observations - 1)``; 0 for a single observation.
- ``analyze`` sorts ascending by variance; ``classify`` sorts descending by determinism.
- A batch that fails to parse is skipped with a warning; analysis continues.

Non-functional requirements
- Each pass works on a point-in-time snapshot of the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from tool_offload.constants import CATEGORY_EXECUTIONS
from tool_offload.domain.models import (
    ClassifiedOperation,
    DeterminismClassification,
    DeterminismScore,
    OperationKey,
    StoredExecutionBatch,
    ToolExecutionPair,
)

if TYPE_CHECKING:
    from tool_offload.storage.pattern_store import PatternStore


@dataclass(frozen=True, slots=True)
class DeterminismConfig:
    min_sample_size: int = 3
    deterministic_threshold: float = 0.95
    semi_deterministic_threshold: float = 0.7

    def __post_init__(self) -> None:
        if self.min_sample_size < 1:
            raise ValueError("min_sample_size must be >= 1")
        if not 0.0 <= self.semi_deterministic_threshold <= self.deterministic_threshold <= 1.0:
            raise ValueError(
                "thresholds must satisfy 0 <= semi_deterministic <= deterministic <= 1"
            )


DEFAULT_DETERMINISM_CONFIG = DeterminismConfig()


@dataclass(slots=True)
class OperationSamples:
    """Complete executions recorded for one operation key."""

    key: OperationKey
    pairs: list[ToolExecutionPair] = field(default_factory=list)

    @property
    def observation_count(self) -> int:
        return len(self.pairs)

    def unique_output_hashes(self) -> set[str]:
        return {pair.output_hash for pair in self.pairs if pair.output_hash is not None}

    def session_ids(self) -> tuple[str, ...]:
        return tuple(sorted({pair.session_id for pair in self.pairs}))


def variance_score(observation_count: int, unique_outputs: int) -> float:
    if observation_count <= 1:
        return 0.0
    return (unique_outputs - 1) / (observation_count - 1)


def classify_determinism(
    determinism: float, config: DeterminismConfig = DEFAULT_DETERMINISM_CONFIG
) -> DeterminismClassification:
    if determinism >= config.deterministic_threshold:
        return DeterminismClassification.DETERMINISTIC
    if determinism >= config.semi_deterministic_threshold:
        return DeterminismClassification.SEMI_DETERMINISTIC
    return DeterminismClassification.NON_DETERMINISTIC


def load_batches(store: PatternStore, *, logger: Any) -> list[StoredExecutionBatch]:
    """Parse every ``executions`` envelope, skipping those that do not hold a valid batch."""

    batches: list[StoredExecutionBatch] = []
    for index, envelope in enumerate(store.read(CATEGORY_EXECUTIONS)):
        try:
            batches.append(StoredExecutionBatch.from_dict(envelope.data))
        except ValueError as exc:
            logger.warning("execution_batch_skipped", entry_index=index, reason=str(exc))
    return batches


def group_complete_pairs(
    batches: list[StoredExecutionBatch],
) -> dict[OperationKey, OperationSamples]:
    grouped: dict[OperationKey, OperationSamples] = {}
    for batch in batches:
        for pair in batch.complete_pairs():
            key = pair.operation_key
            samples = grouped.get(key)
            if samples is None:
                samples = OperationSamples(key=key)
                grouped[key] = samples
            samples.pairs.append(pair)
    return grouped


class DeterminismAnalyzer:
    def __init__(
        self,
        store: PatternStore,
        config: DeterminismConfig = DEFAULT_DETERMINISM_CONFIG,
        *,
        logger: Any | None = None,
    ) -> None:
        self._store = store
        self._config = config
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def config(self) -> DeterminismConfig:
        return self._config

    def sampled_groups(self) -> dict[OperationKey, OperationSamples]:
        """Return operation groups that pass the sample-size gate."""

        batches = load_batches(self._store, logger=self._logger)
        groups = group_complete_pairs(batches)
        return {
            key: samples
            for key, samples in groups.items()
            if samples.observation_count >= self._config.min_sample_size
        }

    def analyze(self) -> list[DeterminismScore]:
        return self.score_groups(self.sampled_groups())

    def classify(self) -> list[ClassifiedOperation]:
        return self.classify_scores(self.analyze())

    def score_groups(
        self, groups: dict[OperationKey, OperationSamples]
    ) -> list[DeterminismScore]:
        scores = [self._score(samples) for samples in groups.values()]
        scores.sort(key=lambda item: (item.variance_score, item.operation.id))
        self._logger.info(
            "determinism_analysis_completed",
            operations=len(scores),
            min_sample_size=self._config.min_sample_size,
        )
        return scores

    def classify_scores(self, scores: list[DeterminismScore]) -> list[ClassifiedOperation]:
        classified = [
            ClassifiedOperation(
                score=score,
                classification=classify_determinism(1.0 - score.variance_score, self._config),
                determinism=1.0 - score.variance_score,
            )
            for score in scores
        ]
        classified.sort(key=lambda item: (-item.determinism, item.score.operation.id))
        return classified

    @staticmethod
    def _score(samples: OperationSamples) -> DeterminismScore:
        unique = len(samples.unique_output_hashes())
        return DeterminismScore(
            operation=samples.key,
            variance_score=variance_score(samples.observation_count, unique),
            observation_count=samples.observation_count,
            unique_outputs=unique,
            session_ids=samples.session_ids(),
        )


__all__ = [
    "DEFAULT_DETERMINISM_CONFIG",
    "DeterminismAnalyzer",
    "DeterminismConfig",
    "OperationSamples",
    "classify_determinism",
    "group_complete_pairs",
    "load_batches",
    "variance_score",
]
