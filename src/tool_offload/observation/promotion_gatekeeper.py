"""
tool-offload — promotion gatekeeper

File: src/tool_offload/observation/promotion_gatekeeper.py

Purpose
- Decide whether a promotion candidate may be turned into a replacement script.

Functional requirements
- Three gates, all inclusive: determinism, composite confidence, and observation count.
- Every gate contributes one reasoning line stating whether it passed or failed,
  so a rejection lists every failing gate, not only the first.
- Evidence records the observed values beside the thresholds they were checked against.
- When a store is supplied, each decision is appended to the ``decisions`` category.

Non-functional requirements
- Evaluation is deterministic for a given candidate and clock reading.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Final

import structlog

from tool_offload.constants import CATEGORY_DECISIONS
from tool_offload.domain.models import utc_now

if TYPE_CHECKING:
    from tool_offload.domain.models import JSONValue, PromotionCandidate
    from tool_offload.storage.pattern_store import PatternStore

WallClock = Callable[[], datetime]


@dataclass(frozen=True, slots=True)
class GatekeeperConfig:
    min_determinism: float = 0.95
    min_confidence: float = 0.85
    min_observations: int = 5

    def __post_init__(self) -> None:
        if not 0.0 <= self.min_determinism <= 1.0:
            raise ValueError("min_determinism must be within [0, 1]")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValueError("min_confidence must be within [0, 1]")
        if self.min_observations < 1:
            raise ValueError("min_observations must be >= 1")


DEFAULT_GATEKEEPER_CONFIG: Final[GatekeeperConfig] = GatekeeperConfig()


@dataclass(frozen=True, slots=True)
class GatekeeperEvidence:
    determinism: float
    composite_score: float
    observation_count: int
    threshold_determinism: float
    threshold_confidence: float
    threshold_min_observations: int

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "determinism": self.determinism,
            "compositeScore": self.composite_score,
            "observationCount": self.observation_count,
            "thresholdDeterminism": self.threshold_determinism,
            "thresholdConfidence": self.threshold_confidence,
            "thresholdMinObservations": self.threshold_min_observations,
        }


@dataclass(frozen=True, slots=True)
class GatekeeperDecision:
    approved: bool
    reasoning: tuple[str, ...]
    evidence: GatekeeperEvidence
    candidate: PromotionCandidate
    timestamp: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "approved": self.approved,
            "reasoning": list(self.reasoning),
            "evidence": self.evidence.to_dict(),
            "operationId": self.candidate.key.id,
            "toolName": self.candidate.tool_name,
            "timestamp": self.timestamp,
        }


class PromotionGatekeeper:
    def __init__(
        self,
        config: GatekeeperConfig = DEFAULT_GATEKEEPER_CONFIG,
        store: PatternStore | None = None,
        *,
        clock: WallClock = utc_now,
        logger: Any | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def config(self) -> GatekeeperConfig:
        return self._config

    def evaluate(self, candidate: PromotionCandidate) -> GatekeeperDecision:
        config = self._config
        determinism = candidate.operation.determinism
        confidence = candidate.composite_score
        observations = candidate.operation.score.observation_count

        gates = (
            (
                determinism >= config.min_determinism,
                f"determinism {determinism:.4f} >= {config.min_determinism:.4f}",
                f"determinism {determinism:.4f} < {config.min_determinism:.4f}",
            ),
            (
                confidence >= config.min_confidence,
                f"confidence {confidence:.4f} >= {config.min_confidence:.4f}",
                f"confidence {confidence:.4f} < {config.min_confidence:.4f}",
            ),
            (
                observations >= config.min_observations,
                f"observation count {observations} >= {config.min_observations}",
                f"observation count {observations} < {config.min_observations}",
            ),
        )
        reasoning = tuple(
            f"passed: {ok_text}" if ok else f"failed: {fail_text}"
            for ok, ok_text, fail_text in gates
        )
        approved = all(ok for ok, _, _ in gates)

        decision = GatekeeperDecision(
            approved=approved,
            reasoning=reasoning,
            evidence=GatekeeperEvidence(
                determinism=determinism,
                composite_score=confidence,
                observation_count=observations,
                threshold_determinism=config.min_determinism,
                threshold_confidence=config.min_confidence,
                threshold_min_observations=config.min_observations,
            ),
            candidate=candidate,
            timestamp=self._clock().isoformat(),
        )

        if self._store is not None:
            self._store.append(CATEGORY_DECISIONS, decision.to_dict())

        self._logger.info(
            "promotion_gate_decision",
            operation_id=candidate.key.id,
            approved=approved,
            failed_gates=sum(1 for ok, _, _ in gates if not ok),
        )
        return decision


__all__ = [
    "DEFAULT_GATEKEEPER_CONFIG",
    "GatekeeperConfig",
    "GatekeeperDecision",
    "GatekeeperEvidence",
    "PromotionGatekeeper",
    "WallClock",
]
