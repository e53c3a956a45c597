"""Rank deterministic tool operations as offload candidates."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import structlog

from tool_offload.constants import PROMOTABLE_TOOL_NAMES
from tool_offload.domain.models import PromotionCandidate
from tool_offload.observation.determinism_analyzer import (
    DEFAULT_DETERMINISM_CONFIG,
    DeterminismAnalyzer,
    DeterminismConfig,
    OperationSamples,
)
from tool_offload.utils.hashing import canonical_json

if TYPE_CHECKING:
    from tool_offload.storage.pattern_store import PatternStore

DETERMINISM_WEIGHT: Final[float] = 0.40
FREQUENCY_WEIGHT: Final[float] = 0.35
TOKEN_SAVINGS_WEIGHT: Final[float] = 0.25

# Frequency and savings saturate at these values.
_FREQUENCY_SATURATION: Final[int] = 20
_TOKEN_SAVINGS_SATURATION: Final[int] = 500


@dataclass(frozen=True, slots=True)
class PromotionDetectorConfig:
    min_determinism: float = 0.95
    min_confidence: float = 0.0
    chars_per_token: int = 4

    def __post_init__(self) -> None:
        if not 0.0 <= self.min_determinism <= 1.0:
            raise ValueError("min_determinism must be within [0, 1]")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValueError("min_confidence must be within [0, 1]")
        if self.chars_per_token <= 0:
            raise ValueError("chars_per_token must be > 0")


DEFAULT_PROMOTION_DETECTOR_CONFIG: Final[PromotionDetectorConfig] = PromotionDetectorConfig()


def estimate_token_savings(samples: OperationSamples, chars_per_token: int) -> int:
    """Estimate tokens saved per replay: input JSON plus mean output length."""

    if not samples.pairs:
        return 0
    input_chars = len(canonical_json(samples.pairs[0].input))
    output_chars = sum(len(pair.output or "") for pair in samples.pairs) / len(samples.pairs)
    return math.ceil((input_chars + output_chars) / chars_per_token)


def composite_score(determinism: float, frequency: int, token_savings: int) -> float:
    frequency_factor = min(frequency / _FREQUENCY_SATURATION, 1.0)
    savings_factor = min(token_savings / _TOKEN_SAVINGS_SATURATION, 1.0)
    raw = (
        DETERMINISM_WEIGHT * determinism
        + FREQUENCY_WEIGHT * frequency_factor
        + TOKEN_SAVINGS_WEIGHT * savings_factor
    )
    return round(min(max(raw, 0.0), 1.0), 6)


class PromotionDetector:
    """Turn classified operations into ranked :class:`PromotionCandidate` records."""

    def __init__(
        self,
        store: PatternStore,
        config: PromotionDetectorConfig = DEFAULT_PROMOTION_DETECTOR_CONFIG,
        *,
        determinism_config: DeterminismConfig = DEFAULT_DETERMINISM_CONFIG,
        logger: Any | None = None,
    ) -> None:
        self._config = config
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._analyzer = DeterminismAnalyzer(store, determinism_config, logger=self._logger)

    def detect(self) -> list[PromotionCandidate]:
        groups = self._analyzer.sampled_groups()
        classified = self._analyzer.classify_scores(self._analyzer.score_groups(groups))

        candidates: list[PromotionCandidate] = []
        for operation in classified:
            key = operation.score.operation
            if key.tool_name not in PROMOTABLE_TOOL_NAMES:
                continue
            if operation.determinism < self._config.min_determinism:
                continue
            savings = estimate_token_savings(groups[key], self._config.chars_per_token)
            frequency = operation.score.observation_count
            score = composite_score(operation.determinism, frequency, savings)
            candidates.append(
                PromotionCandidate(
                    operation=operation,
                    tool_name=key.tool_name,
                    frequency=frequency,
                    estimated_token_savings=savings,
                    composite_score=score,
                    meets_confidence=score >= self._config.min_confidence,
                )
            )

        candidates.sort(key=lambda item: (-item.composite_score, item.key.id))
        self._logger.info(
            "promotion_candidates_detected",
            candidates=len(candidates),
            meeting_confidence=sum(1 for item in candidates if item.meets_confidence),
        )
        return candidates


__all__ = [
    "DEFAULT_PROMOTION_DETECTOR_CONFIG",
    "PromotionDetector",
    "PromotionDetectorConfig",
    "composite_score",
    "estimate_token_savings",
]
