"""
tool-offload — rate limiter and anomaly detector

File: src/tool_offload/safety/rate_limiter.py

Purpose
- Bound log growth with a per-session ceiling and a shared sliding hourly ceiling.
- Flag structurally impossible session observations before they are retained.

Functional requirements
- ``check_limit`` returns a decision; rejection is an expected outcome, not an error.
- The session ceiling is checked before the shared hourly ceiling.
- ``detect_anomalies`` reports duplicate timestamps, reversed time bounds, and
  reported durations that disagree with the time bounds.

Non-functional requirements
- Counters are process-local and guarded by a lock; the clock is injected so
  window expiry is testable without real elapsed time.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum

from tool_offload.constants import DURATION_MISMATCH_TOLERANCE_MINUTES
from tool_offload.domain.models import SessionObservation

Clock = Callable[[], float]

_HOUR_SECONDS = 3600.0
_MS_PER_MINUTE = 60_000.0

DEFAULT_MAX_PER_SESSION = 50
DEFAULT_MAX_PER_HOUR = 200


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    max_per_session: int = DEFAULT_MAX_PER_SESSION
    max_per_hour: int = DEFAULT_MAX_PER_HOUR


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    reason: str | None = None


class AnomalyKind(StrEnum):
    DUPLICATE_TIMESTAMP = "duplicate-timestamp"
    IMPOSSIBLE_DURATION = "impossible-duration"
    DURATION_MISMATCH = "duration-mismatch"


@dataclass(frozen=True, slots=True)
class Anomaly:
    kind: AnomalyKind
    index: int
    message: str


class RateLimiter:
    """Per-session and sliding-hour observation ceilings with an injected clock."""

    def __init__(
        self,
        *,
        max_per_session: int = DEFAULT_MAX_PER_SESSION,
        max_per_hour: int = DEFAULT_MAX_PER_HOUR,
        clock: Clock = time.monotonic,
    ) -> None:
        if max_per_session <= 0:
            raise ValueError("max_per_session must be > 0")
        if max_per_hour <= 0:
            raise ValueError("max_per_hour must be > 0")
        self._max_per_session = max_per_session
        self._max_per_hour = max_per_hour
        self._clock = clock
        self._session_counts: dict[str, int] = {}
        self._window: deque[float] = deque()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: RateLimitConfig, *, clock: Clock = time.monotonic) -> RateLimiter:
        return cls(
            max_per_session=config.max_per_session,
            max_per_hour=config.max_per_hour,
            clock=clock,
        )

    @property
    def max_per_session(self) -> int:
        return self._max_per_session

    @property
    def max_per_hour(self) -> int:
        return self._max_per_hour

    def check_limit(self, session_id: str) -> RateLimitDecision:
        with self._lock:
            session_count = self._session_counts.get(session_id, 0)
            if session_count >= self._max_per_session:
                return RateLimitDecision(
                    allowed=False,
                    reason=(
                        f"per-session limit exceeded for session {session_id!r} "
                        f"(maxPerSession={self._max_per_session})"
                    ),
                )

            now = self._clock()
            cutoff = now - _HOUR_SECONDS
            while self._window and self._window[0] <= cutoff:
                self._window.popleft()
            if len(self._window) >= self._max_per_hour:
                return RateLimitDecision(
                    allowed=False,
                    reason=f"hourly limit exceeded (maxPerHour={self._max_per_hour})",
                )

            self._session_counts[session_id] = session_count + 1
            self._window.append(now)
            return RateLimitDecision(allowed=True)

    def reset(self, session_id: str) -> None:
        with self._lock:
            self._session_counts.pop(session_id, None)

    def session_count(self, session_id: str) -> int:
        with self._lock:
            return self._session_counts.get(session_id, 0)


def detect_anomalies(
    entries: Sequence[SessionObservation | Mapping[str, object]],
) -> list[Anomaly]:
    """Scan ``entries`` for duplicate start times and impossible or inconsistent durations."""

    anomalies: list[Anomaly] = []
    first_seen: dict[float, int] = {}

    for index, entry in enumerate(entries):
        start, end, duration = _time_fields(entry)

        if start is not None:
            if start in first_seen:
                anomalies.append(
                    Anomaly(
                        kind=AnomalyKind.DUPLICATE_TIMESTAMP,
                        index=index,
                        message=f"startTime {start:g} duplicates entry {first_seen[start]}",
                    )
                )
            else:
                first_seen[start] = index

        if start is None or end is None:
            continue

        if end < start:
            anomalies.append(
                Anomaly(
                    kind=AnomalyKind.IMPOSSIBLE_DURATION,
                    index=index,
                    message=f"endTime {end:g} precedes startTime {start:g}",
                )
            )

        if duration is not None:
            computed = (end - start) / _MS_PER_MINUTE
            if abs(duration - computed) > DURATION_MISMATCH_TOLERANCE_MINUTES:
                anomalies.append(
                    Anomaly(
                        kind=AnomalyKind.DURATION_MISMATCH,
                        index=index,
                        message=(
                            f"durationMinutes {duration:g} differs from computed "
                            f"{computed:.2f} by more than {DURATION_MISMATCH_TOLERANCE_MINUTES:g}"
                        ),
                    )
                )

    return anomalies


def _time_fields(
    entry: SessionObservation | Mapping[str, object],
) -> tuple[float | None, float | None, float | None]:
    if isinstance(entry, SessionObservation):
        return float(entry.start_time), float(entry.end_time), float(entry.duration_minutes)
    return (
        _as_number(entry.get("startTime")),
        _as_number(entry.get("endTime")),
        _as_number(entry.get("durationMinutes")),
    )


def _as_number(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


__all__ = [
    "DEFAULT_MAX_PER_HOUR",
    "DEFAULT_MAX_PER_SESSION",
    "Anomaly",
    "AnomalyKind",
    "Clock",
    "RateLimitConfig",
    "RateLimitDecision",
    "RateLimiter",
    "detect_anomalies",
]
