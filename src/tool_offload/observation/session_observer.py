"""
tool-offload — session observer pipeline

File: src/tool_offload/observation/session_observer.py

Purpose
- Route each finished session observation to persistent or ephemeral storage.
- Persist captured tool execution batches for later determinism analysis.

Functional requirements
- Rate limiting runs first; a rejected observation is dropped and logged.
- Promotion is scored with the cross-session count of the observation's pattern
  taken from the ephemeral buffer.
- A promoted observation is written to ``sessions`` as persistent. The buffer is
  then squashed into one aggregate, which is persisted only if it also scores
  high enough. The buffer is drained in one locked step, so an observation
  buffered concurrently is either squashed or kept for the next flush.
- An observation that is not promoted goes to the buffer tagged ephemeral.

Non-functional requirements
- Storage writes go through the shared per-file locks of the storage layer.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any

import structlog

from tool_offload.constants import CATEGORY_EXECUTIONS, CATEGORY_SESSIONS
from tool_offload.domain.models import (
    ObservationTier,
    SessionObservation,
    StoredExecutionBatch,
    ToolExecutionPair,
)
from tool_offload.observation.promotion_evaluator import (
    CrossSessionContext,
    PromotionEvaluator,
)
from tool_offload.observation.squasher import squash_observations
from tool_offload.safety.rate_limiter import RateLimitConfig, RateLimiter
from tool_offload.storage.ephemeral_store import EphemeralStore, pattern_key
from tool_offload.storage.pattern_store import PatternStore


class SessionObserver:
    def __init__(
        self,
        patterns_dir: Path | str,
        rate_limits: RateLimitConfig | None = None,
        evaluator: PromotionEvaluator | None = None,
        *,
        rate_limiter: RateLimiter | None = None,
        store: PatternStore | None = None,
        ephemeral: EphemeralStore | None = None,
        logger: Any | None = None,
    ) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._evaluator = evaluator if evaluator is not None else PromotionEvaluator()
        if rate_limiter is None:
            rate_limiter = RateLimiter.from_config(rate_limits or RateLimitConfig())
        self._rate_limiter = rate_limiter
        if store is None:
            store = PatternStore(patterns_dir, logger=self._logger)
        self._store = store
        self._ephemeral = (
            ephemeral
            if ephemeral is not None
            else EphemeralStore(patterns_dir, logger=self._logger)
        )

    @property
    def store(self) -> PatternStore:
        return self._store

    @property
    def ephemeral(self) -> EphemeralStore:
        return self._ephemeral

    def observe(self, observation: SessionObservation) -> SessionObservation | None:
        """Store ``observation`` and return it in its stored tier, or ``None`` if rate-limited."""

        decision = self._rate_limiter.check_limit(observation.session_id)
        if not decision.allowed:
            self._logger.warning(
                "session_observation_rate_limited",
                session_id=observation.session_id,
                reason=decision.reason,
            )
            return None

        key = pattern_key(observation)
        context = CrossSessionContext(
            cross_session_count=self._ephemeral.get_session_counts().get(key, 0)
        )
        result = self._evaluator.evaluate(observation, context)
        self._logger.info(
            "session_observation_scored",
            session_id=observation.session_id,
            score=result.score,
            promote=result.promote,
            cross_session_count=context.cross_session_count,
        )

        if not result.promote:
            # A record that already reached persistent keeps its tier in the buffer.
            buffered = (
                observation
                if observation.tier is ObservationTier.PERSISTENT
                else observation.with_tier(ObservationTier.EPHEMERAL)
            )
            self._ephemeral.append(buffered, session_id=observation.session_id)
            return buffered

        persistent = observation.promote_tier()
        self._store.append(CATEGORY_SESSIONS, persistent.to_dict())
        self._flush_buffer()
        return persistent

    def record_executions(
        self, session_id: str, pairs: Sequence[ToolExecutionPair]
    ) -> StoredExecutionBatch:
        batch = StoredExecutionBatch.from_pairs(session_id, pairs)
        self._store.append(CATEGORY_EXECUTIONS, batch.to_dict())
        self._logger.info(
            "execution_batch_recorded",
            session_id=session_id,
            complete=batch.complete_count,
            partial=batch.partial_count,
        )
        return batch

    def _flush_buffer(self) -> None:
        squashed = squash_observations(self._ephemeral.drain())
        if squashed is not None:
            result = self._evaluator.evaluate(squashed)
            if result.promote:
                self._store.append(CATEGORY_SESSIONS, squashed.to_dict())
            self._logger.info(
                "ephemeral_buffer_squashed",
                squashed_from=squashed.squashed_from,
                score=result.score,
                persisted=result.promote,
            )


__all__ = ["SessionObserver"]
