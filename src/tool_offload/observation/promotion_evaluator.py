"""
Promotion scoring for session observations.

A consolidated observation earns persistent storage when the weighted sum of
six independent signals reaches ``PromotionCriteria.min_score``:

- tool calls (0.30)
- duration (0.20 at five minutes, 0.10 from two minutes)
- file activity (0.20)
- user engagement (0.15 at five messages, 0.05 from three)
- rich metadata (0.15)
- cross-session frequency (0.30 from external context, else 0.20 when the
  record was squashed from two or more originals)

The evaluator is pure: no I/O and no state between calls.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from tool_offload.domain.models import SessionObservation

TOOL_CALL_WEIGHT: Final[float] = 0.30
LONG_DURATION_WEIGHT: Final[float] = 0.20
SHORT_DURATION_WEIGHT: Final[float] = 0.10
FILE_ACTIVITY_WEIGHT: Final[float] = 0.20
HIGH_ENGAGEMENT_WEIGHT: Final[float] = 0.15
MODERATE_ENGAGEMENT_WEIGHT: Final[float] = 0.05
RICH_METADATA_WEIGHT: Final[float] = 0.15
CROSS_SESSION_WEIGHT: Final[float] = 0.30
SQUASHED_FALLBACK_WEIGHT: Final[float] = 0.20

_LONG_DURATION_MINUTES: Final[float] = 5.0
_SHORT_DURATION_MINUTES: Final[float] = 2.0
_HIGH_ENGAGEMENT_MESSAGES: Final[int] = 5
_MODERATE_ENGAGEMENT_MESSAGES: Final[int] = 3
_MIN_CROSS_SESSIONS: Final[int] = 2
_MIN_SQUASHED: Final[int] = 2
_SCORE_PRECISION: Final[int] = 6


@dataclass(frozen=True, slots=True)
class PromotionCriteria:
    min_score: float = 0.3

    def __post_init__(self) -> None:
        if not 0.0 <= self.min_score <= 1.0:
            raise ValueError("min_score must be within [0, 1]")


DEFAULT_PROMOTION_CRITERIA: Final[PromotionCriteria] = PromotionCriteria()


@dataclass(frozen=True, slots=True)
class CrossSessionContext:
    """Number of distinct sessions that produced the same observation pattern."""

    cross_session_count: int


@dataclass(frozen=True, slots=True)
class PromotionResult:
    promote: bool
    score: float
    reasons: tuple[str, ...]


class PromotionEvaluator:
    def __init__(self, criteria: PromotionCriteria = DEFAULT_PROMOTION_CRITERIA) -> None:
        self._criteria = criteria

    @property
    def criteria(self) -> PromotionCriteria:
        return self._criteria

    def evaluate(
        self,
        observation: SessionObservation,
        context: CrossSessionContext | None = None,
    ) -> PromotionResult:
        score = 0.0
        reasons: list[str] = []
        metrics = observation.metrics

        if metrics.tool_calls >= 1:
            score += TOOL_CALL_WEIGHT
            reasons.append(f"{metrics.tool_calls} tool calls (+{TOOL_CALL_WEIGHT:.2f})")

        duration = observation.duration_minutes
        if duration >= _LONG_DURATION_MINUTES:
            score += LONG_DURATION_WEIGHT
            reasons.append(f"long duration {duration:g} min (+{LONG_DURATION_WEIGHT:.2f})")
        elif duration >= _SHORT_DURATION_MINUTES:
            score += SHORT_DURATION_WEIGHT
            reasons.append(f"moderate duration {duration:g} min (+{SHORT_DURATION_WEIGHT:.2f})")

        if metrics.unique_files_read > 0 or metrics.unique_files_written > 0:
            score += FILE_ACTIVITY_WEIGHT
            reasons.append(
                f"files accessed: {metrics.unique_files_read} read, "
                f"{metrics.unique_files_written} written (+{FILE_ACTIVITY_WEIGHT:.2f})"
            )

        if metrics.user_messages >= _HIGH_ENGAGEMENT_MESSAGES:
            score += HIGH_ENGAGEMENT_WEIGHT
            reasons.append(
                f"{metrics.user_messages} user messages (+{HIGH_ENGAGEMENT_WEIGHT:.2f})"
            )
        elif metrics.user_messages >= _MODERATE_ENGAGEMENT_MESSAGES:
            score += MODERATE_ENGAGEMENT_WEIGHT
            reasons.append(
                f"moderate engagement, {metrics.user_messages} user messages "
                f"(+{MODERATE_ENGAGEMENT_WEIGHT:.2f})"
            )

        if observation.has_rich_metadata:
            score += RICH_METADATA_WEIGHT
            reasons.append(f"rich metadata present (+{RICH_METADATA_WEIGHT:.2f})")

        # Two signals for one concept: explicit cross-session context wins, and
        # the squashed count is consulted only when no context was supplied.
        if context is not None:
            if context.cross_session_count >= _MIN_CROSS_SESSIONS:
                score += CROSS_SESSION_WEIGHT
                reasons.append(
                    f"pattern seen across {context.cross_session_count} sessions "
                    f"(+{CROSS_SESSION_WEIGHT:.2f})"
                )
        elif (observation.squashed_from or 0) >= _MIN_SQUASHED:
            score += SQUASHED_FALLBACK_WEIGHT
            reasons.append(
                f"squashed from {observation.squashed_from} observations "
                f"(+{SQUASHED_FALLBACK_WEIGHT:.2f})"
            )

        capped = round(min(score, 1.0), _SCORE_PRECISION)
        return PromotionResult(
            promote=capped >= self._criteria.min_score,
            score=capped,
            reasons=tuple(reasons),
        )


__all__ = [
    "DEFAULT_PROMOTION_CRITERIA",
    "CrossSessionContext",
    "PromotionCriteria",
    "PromotionEvaluator",
    "PromotionResult",
]
