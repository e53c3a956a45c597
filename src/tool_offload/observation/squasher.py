"""Merge consecutive partial session observations into one persistent record."""

from __future__ import annotations

import math
from dataclasses import replace
from functools import reduce
from typing import TYPE_CHECKING

from tool_offload.domain.models import ObservationTier, SessionObservation

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

_MS_PER_MINUTE = 60_000


def squash_observations(
    observations: Sequence[SessionObservation],
) -> SessionObservation | None:
    """Return one persistent observation covering ``observations``, or ``None`` when empty.

    The first observation anchors ``session_id``, ``source`` and ``reason``.
    ``squashed_from`` counts originals, so squashing a previously squashed record
    adds its own count rather than 1.
    """

    if not observations:
        return None

    first = observations[0]
    if len(observations) == 1:
        return replace(first, tier=ObservationTier.PERSISTENT, squashed_from=_weight(first))

    start_time = min(item.start_time for item in observations)
    end_time = max(item.end_time for item in observations)
    metrics = reduce(lambda total, item: total + item.metrics, observations[1:], first.metrics)

    return SessionObservation(
        session_id=first.session_id,
        start_time=start_time,
        end_time=end_time,
        duration_minutes=_round_half_up((end_time - start_time) / _MS_PER_MINUTE),
        source=first.source,
        reason=first.reason,
        metrics=metrics,
        top_commands=_union(item.top_commands for item in observations),
        top_files=_union(item.top_files for item in observations),
        top_tools=_union(item.top_tools for item in observations),
        active_skills=_union(item.active_skills for item in observations),
        tier=ObservationTier.PERSISTENT,
        squashed_from=sum(_weight(item) for item in observations),
    )


def _weight(observation: SessionObservation) -> int:
    return observation.squashed_from or 1


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _union(groups: Iterable[tuple[str, ...]]) -> tuple[str, ...]:
    # First-seen order, duplicates dropped.
    merged: dict[str, None] = {}
    for group in groups:
        for item in group:
            merged.setdefault(item, None)
    return tuple(merged)


__all__ = ["squash_observations"]
