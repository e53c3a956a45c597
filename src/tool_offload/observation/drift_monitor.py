"""Track output drift of promoted operations and decide when to demote them."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import structlog

from tool_offload.domain.models import DryRunFailure, utc_now
from tool_offload.observation.promotion_gatekeeper import WallClock
from tool_offload.utils.hashing import hash_output

if TYPE_CHECKING:
    from tool_offload.domain.models import DryRunResult

# Dry-run outcomes that never reached an output comparison.
_UNCOMPARED: Final[frozenset[DryRunFailure]] = frozenset(
    {DryRunFailure.INVALID, DryRunFailure.NO_BASELINE, DryRunFailure.EXECUTION_ERROR}
)


@dataclass(frozen=True, slots=True)
class DriftMonitorConfig:
    sensitivity: int = 3
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.sensitivity < 1:
            raise ValueError("sensitivity must be >= 1")


DEFAULT_DRIFT_MONITOR_CONFIG: Final[DriftMonitorConfig] = DriftMonitorConfig()


@dataclass(frozen=True, slots=True)
class DriftEvent:
    operation_id: str
    timestamp: str
    matched: bool
    actual_hash: str
    expected_hash: str
    consecutive_mismatches: int


@dataclass(frozen=True, slots=True)
class DemotionDecision:
    operation_id: str
    demoted: bool
    reason: str
    consecutive_mismatches: int
    events: tuple[DriftEvent, ...]


@dataclass(slots=True)
class _OperationState:
    consecutive_mismatches: int
    events: deque[DriftEvent]


class DriftMonitor:
    """In-memory drift history per operation id.

    Only the most recent ``sensitivity`` events are retained per operation; a
    match resets the consecutive mismatch count to zero.
    """

    def __init__(
        self,
        config: DriftMonitorConfig = DEFAULT_DRIFT_MONITOR_CONFIG,
        *,
        clock: WallClock = utc_now,
        logger: Any | None = None,
    ) -> None:
        self._config = config
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._states: dict[str, _OperationState] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> DriftMonitorConfig:
        return self._config

    def record(
        self, operation_id: str, actual_output: str | bytes, expected_hash: str
    ) -> DriftEvent:
        actual_hash = hash_output(actual_output)
        return self._record(operation_id, actual_hash == expected_hash, actual_hash, expected_hash)

    def record_dry_run(self, result: DryRunResult) -> DriftEvent | None:
        """Feed a dry-run verdict; results that never compared output are ignored."""

        if result.failure_kind in _UNCOMPARED:
            return None
        return self._record(
            result.operation_id,
            result.passed,
            result.actual_output_hash,
            result.expected_output_hash,
        )

    def check(self, operation_id: str) -> DemotionDecision:
        with self._lock:
            state = self._states.get(operation_id)
            mismatches = state.consecutive_mismatches if state is not None else 0
            events = tuple(state.events) if state is not None else ()

        sensitivity = self._config.sensitivity
        if not self._config.enabled:
            demoted = False
            reason = "drift monitoring disabled"
        elif mismatches >= sensitivity:
            demoted = True
            reason = (
                f"{mismatches} consecutive output mismatches "
                f"reached sensitivity {sensitivity}"
            )
        else:
            demoted = False
            reason = f"{mismatches} consecutive output mismatches, below sensitivity {sensitivity}"

        if demoted:
            self._logger.warning(
                "offload_operation_demoted",
                operation_id=operation_id,
                consecutive_mismatches=mismatches,
            )
        return DemotionDecision(
            operation_id=operation_id,
            demoted=demoted,
            reason=reason,
            consecutive_mismatches=mismatches,
            events=events,
        )

    def reset(self, operation_id: str) -> None:
        with self._lock:
            self._states.pop(operation_id, None)

    def _record(
        self, operation_id: str, matched: bool, actual_hash: str, expected_hash: str
    ) -> DriftEvent:
        with self._lock:
            state = self._states.get(operation_id)
            if state is None:
                state = _OperationState(
                    consecutive_mismatches=0,
                    events=deque(maxlen=self._config.sensitivity),
                )
                self._states[operation_id] = state
            state.consecutive_mismatches = 0 if matched else state.consecutive_mismatches + 1
            event = DriftEvent(
                operation_id=operation_id,
                timestamp=self._clock().isoformat(),
                matched=matched,
                actual_hash=actual_hash,
                expected_hash=expected_hash,
                consecutive_mismatches=state.consecutive_mismatches,
            )
            state.events.append(event)

        self._logger.info(
            "offload_drift_recorded",
            operation_id=operation_id,
            matched=matched,
            consecutive_mismatches=event.consecutive_mismatches,
        )
        return event


__all__ = [
    "DEFAULT_DRIFT_MONITOR_CONFIG",
    "DemotionDecision",
    "DriftEvent",
    "DriftMonitor",
    "DriftMonitorConfig",
]
