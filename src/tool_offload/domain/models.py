"""Dataclass domain models with strict validation and camelCase wire serialization.

Persisted records are written by external capture producers in camelCase JSON.
Each model parses that shape in ``from_dict`` and emits it again in ``to_dict``;
attribute names stay snake_case on the Python side.
"""

from __future__ import annotations

import json
import math
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, NoReturn, TypeVar

from tool_offload.utils.hashing import compute_input_hash, hash_output

if TYPE_CHECKING:
    from collections.abc import Iterable

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=StrEnum)

_MAX_JSON_DEPTH = 32


class PairStatus(StrEnum):
    COMPLETE = "complete"
    PARTIAL = "partial"


class ObservationTier(StrEnum):
    EPHEMERAL = "ephemeral"
    PERSISTENT = "persistent"


class SessionSource(StrEnum):
    STARTUP = "startup"
    RESUME = "resume"
    CLEAR = "clear"
    COMPACT = "compact"


class SessionEndReason(StrEnum):
    CLEAR = "clear"
    LOGOUT = "logout"
    PROMPT_INPUT_EXIT = "prompt_input_exit"
    BYPASS_PERMISSIONS_DISABLED = "bypass_permissions_disabled"
    OTHER = "other"


class DeterminismClassification(StrEnum):
    DETERMINISTIC = "deterministic"
    SEMI_DETERMINISTIC = "semi-deterministic"
    NON_DETERMINISTIC = "non-deterministic"


class ScriptType(StrEnum):
    BASH = "bash"


class DryRunFailure(StrEnum):
    """Fixed taxonomy of dry-run failure categories."""

    INVALID = "invalid"
    NO_BASELINE = "no_baseline"
    NON_ZERO_EXIT = "non_zero_exit"
    TIMEOUT = "timeout"
    HASH_MISMATCH = "hash_mismatch"
    EXECUTION_ERROR = "execution_error"


class ArtifactType(StrEnum):
    OBSERVATION = "observation"
    PATTERN = "pattern"
    CANDIDATE = "candidate"
    SCRIPT = "script"
    DECISION = "decision"
    EXECUTION = "execution"


class PipelineStage(StrEnum):
    CAPTURE = "capture"
    ANALYSIS = "analysis"
    DETECTION = "detection"
    GENERATION = "generation"
    GATEKEEPING = "gatekeeping"
    FEEDBACK = "feedback"


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        _fail(self.__class__.__name__, "to_dict is not implemented for this model type")

    def to_json(self) -> str:
        return _canonical_json(self.to_dict())

    @classmethod
    def from_json(cls: type[TModel], raw: str) -> TModel:
        if not isinstance(raw, str):
            _fail(cls.__name__, f"expected JSON string, got {type(raw).__name__}")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        if not isinstance(parsed, dict):
            _fail(cls.__name__, "JSON root must be an object")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        _fail(cls.__name__, "from_dict is not implemented for this model type")


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _expect_object(value: object, path: str, *, required: set[str]) -> dict[str, object]:
    # Unknown keys are tolerated: capture producers may add fields over time.
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")
    return parsed


def _utf8_text(value: str, path: str) -> str:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        _fail(path, "contains characters that are not valid UTF-8 (unpaired surrogate)")
    return value


def _as_str(value: object, path: str, *, allow_empty: bool = False) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    if not allow_empty and not value.strip():
        _fail(path, "must not be empty")
    return _utf8_text(value, path)


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, path, allow_empty=True)


def _as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    _fail(path, f"expected boolean, got {type(value).__name__}")


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_optional_int(value: object, path: str, *, minimum: int | None = None) -> int | None:
    if value is None:
        return None
    return _as_int(value, path, minimum=minimum)


def _as_float(
    value: object,
    path: str,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        _fail(path, "must be finite")
    if minimum is not None and parsed < minimum:
        _fail(path, f"must be >= {minimum}")
    if maximum is not None and parsed > maximum:
        _fail(path, f"must be <= {maximum}")
    return parsed


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(item.value for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_sequence(value: object, path: str) -> list[object]:
    if isinstance(value, (list, tuple)):
        return list(value)
    _fail(path, f"expected array, got {type(value).__name__}")


def _as_str_tuple(value: object, path: str) -> tuple[str, ...]:
    return tuple(
        _as_str(item, f"{path}[{index}]", allow_empty=True)
        for index, item in enumerate(_as_sequence(value, path))
    )


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_JSON_DEPTH:
        _fail(path, f"JSON nesting exceeds max depth {_MAX_JSON_DEPTH}")

    if value is None or isinstance(value, (bool, int)):
        return value
    if isinstance(value, str):
        return _utf8_text(value, path)
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, (list, tuple)):
        return [
            _as_json_value(item, f"{path}[{idx}]", depth=depth + 1)
            for idx, item in enumerate(value)
        ]
    if isinstance(value, Mapping):
        parsed: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, f"object key must be string, got {type(key).__name__}")
            _utf8_text(key, path)
            parsed[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return parsed

    _fail(path, f"value is not JSON-serializable ({type(value).__name__})")


def _as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        _fail(path, "expected JSON object")
    return parsed


def _as_str_dict(value: object, path: str) -> dict[str, str]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    parsed: dict[str, str] = {}
    for key, item in value.items():
        parsed_key = _as_str(key, f"{path}.<key>")
        parsed[parsed_key] = _as_str(item, f"{path}.{parsed_key}", allow_empty=True)
    return parsed


def now_epoch_ms() -> int:
    """Return wall-clock time in epoch milliseconds."""

    return int(time.time() * 1000)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class ExecutionContext(CanonicalModel):
    session_id: str
    phase: str | None = None
    active_skill: str | None = None

    def __post_init__(self) -> None:
        _as_str(self.session_id, "ExecutionContext.session_id")
        _as_optional_str(self.phase, "ExecutionContext.phase")
        _as_optional_str(self.active_skill, "ExecutionContext.active_skill")

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = {"sessionId": self.session_id}
        if self.phase is not None:
            out["phase"] = self.phase
        if self.active_skill is not None:
            out["activeSkill"] = self.active_skill
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ExecutionContext:
        parsed = _expect_object(data, "ExecutionContext", required={"sessionId"})
        return cls(
            session_id=_as_str(parsed["sessionId"], "ExecutionContext.sessionId"),
            phase=_as_optional_str(parsed.get("phase"), "ExecutionContext.phase"),
            active_skill=_as_optional_str(
                parsed.get("activeSkill"), "ExecutionContext.activeSkill"
            ),
        )


@dataclass(slots=True)
class ToolExecutionPair(CanonicalModel):
    """One captured tool call. ``output_hash`` is ``None`` exactly when the pair is partial."""

    id: str
    tool_name: str
    input: dict[str, JSONValue]
    output: str | None
    output_hash: str | None
    status: PairStatus
    timestamp: str
    context: ExecutionContext

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "ToolExecutionPair.id")
        self.tool_name = _as_str(self.tool_name, "ToolExecutionPair.tool_name")
        self.input = _as_json_object(self.input, "ToolExecutionPair.input")
        self.output = _as_optional_str(self.output, "ToolExecutionPair.output")
        self.output_hash = _as_optional_str(self.output_hash, "ToolExecutionPair.output_hash")
        self.status = _as_enum(PairStatus, self.status, "ToolExecutionPair.status")
        self.timestamp = _as_str(self.timestamp, "ToolExecutionPair.timestamp")
        if not isinstance(self.context, ExecutionContext):
            _fail("ToolExecutionPair.context", "expected ExecutionContext")

        if self.status is PairStatus.PARTIAL and self.output_hash is not None:
            _fail("ToolExecutionPair.output_hash", "must be null for partial pairs")
        if self.status is PairStatus.COMPLETE and self.output_hash is None:
            _fail("ToolExecutionPair.output_hash", "is required for complete pairs")

    @classmethod
    def captured(
        cls,
        *,
        pair_id: str,
        tool_name: str,
        tool_input: Mapping[str, object],
        output: str | None,
        session_id: str,
        timestamp: str,
    ) -> ToolExecutionPair:
        """Build a pair from raw capture data; a missing output yields a partial pair."""

        complete = output is not None
        return cls(
            id=pair_id,
            tool_name=tool_name,
            input=dict(tool_input),  # type: ignore[arg-type]
            output=output,
            output_hash=hash_output(output) if output is not None else None,
            status=PairStatus.COMPLETE if complete else PairStatus.PARTIAL,
            timestamp=timestamp,
            context=ExecutionContext(session_id=session_id),
        )

    @property
    def is_complete(self) -> bool:
        return self.status is PairStatus.COMPLETE

    @property
    def session_id(self) -> str:
        return self.context.session_id

    @property
    def operation_key(self) -> OperationKey:
        return OperationKey.for_input(self.tool_name, self.input)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "toolName": self.tool_name,
            "input": self.input,
            "output": self.output,
            "outputHash": self.output_hash,
            "status": self.status.value,
            "timestamp": self.timestamp,
            "context": self.context.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ToolExecutionPair:
        parsed = _expect_object(
            data,
            "ToolExecutionPair",
            required={"id", "toolName", "input", "status", "timestamp", "context"},
        )
        return cls(
            id=_as_str(parsed["id"], "ToolExecutionPair.id"),
            tool_name=_as_str(parsed["toolName"], "ToolExecutionPair.toolName"),
            input=_as_json_object(parsed["input"], "ToolExecutionPair.input"),
            output=_as_optional_str(parsed.get("output"), "ToolExecutionPair.output"),
            output_hash=_as_optional_str(
                parsed.get("outputHash"), "ToolExecutionPair.outputHash"
            ),
            status=_as_enum(PairStatus, parsed["status"], "ToolExecutionPair.status"),
            timestamp=_as_str(parsed["timestamp"], "ToolExecutionPair.timestamp"),
            context=ExecutionContext.from_dict(
                _expect_object(parsed["context"], "ToolExecutionPair.context", required=set())
            ),
        )


@dataclass(slots=True)
class StoredExecutionBatch(CanonicalModel):
    """One session's captured pairs as persisted in the ``executions`` category."""

    session_id: str
    context: ExecutionContext
    pairs: tuple[ToolExecutionPair, ...]
    complete_count: int
    partial_count: int
    captured_at: int

    def __post_init__(self) -> None:
        self.session_id = _as_str(self.session_id, "StoredExecutionBatch.session_id")
        self.pairs = tuple(self.pairs)
        for index, pair in enumerate(self.pairs):
            if not isinstance(pair, ToolExecutionPair):
                _fail(f"StoredExecutionBatch.pairs[{index}]", "expected ToolExecutionPair")
        self.complete_count = _as_int(
            self.complete_count, "StoredExecutionBatch.complete_count", minimum=0
        )
        self.partial_count = _as_int(
            self.partial_count, "StoredExecutionBatch.partial_count", minimum=0
        )
        self.captured_at = _as_int(self.captured_at, "StoredExecutionBatch.captured_at", minimum=0)

    @classmethod
    def from_pairs(
        cls,
        session_id: str,
        pairs: Iterable[ToolExecutionPair],
        *,
        captured_at: int | None = None,
    ) -> StoredExecutionBatch:
        materialized = tuple(pairs)
        complete = sum(1 for pair in materialized if pair.is_complete)
        return cls(
            session_id=session_id,
            context=ExecutionContext(session_id=session_id),
            pairs=materialized,
            complete_count=complete,
            partial_count=len(materialized) - complete,
            captured_at=now_epoch_ms() if captured_at is None else captured_at,
        )

    def complete_pairs(self) -> tuple[ToolExecutionPair, ...]:
        return tuple(pair for pair in self.pairs if pair.is_complete)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "sessionId": self.session_id,
            "context": self.context.to_dict(),
            "pairs": [pair.to_dict() for pair in self.pairs],
            "completeCount": self.complete_count,
            "partialCount": self.partial_count,
            "capturedAt": self.captured_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> StoredExecutionBatch:
        parsed = _expect_object(
            data,
            "StoredExecutionBatch",
            required={"sessionId", "pairs"},
        )
        session_id = _as_str(parsed["sessionId"], "StoredExecutionBatch.sessionId")
        raw_context = parsed.get("context")
        context = (
            ExecutionContext(session_id=session_id)
            if raw_context is None
            else ExecutionContext.from_dict(
                _expect_object(raw_context, "StoredExecutionBatch.context", required=set())
            )
        )
        pairs = tuple(
            ToolExecutionPair.from_dict(
                _expect_object(item, f"StoredExecutionBatch.pairs[{index}]", required=set())
            )
            for index, item in enumerate(
                _as_sequence(parsed["pairs"], "StoredExecutionBatch.pairs")
            )
        )
        complete = sum(1 for pair in pairs if pair.is_complete)
        return cls(
            session_id=session_id,
            context=context,
            pairs=pairs,
            complete_count=_as_int(
                parsed.get("completeCount", complete), "StoredExecutionBatch.completeCount"
            ),
            partial_count=_as_int(
                parsed.get("partialCount", len(pairs) - complete),
                "StoredExecutionBatch.partialCount",
            ),
            captured_at=_as_int(parsed.get("capturedAt", 0), "StoredExecutionBatch.capturedAt"),
        )


@dataclass(frozen=True, slots=True, order=True)
class OperationKey(CanonicalModel):
    """Identity of a cacheable operation: tool name plus canonical input hash."""

    tool_name: str
    input_hash: str

    @classmethod
    def for_input(cls, tool_name: str, tool_input: Mapping[str, object]) -> OperationKey:
        return cls(tool_name=tool_name, input_hash=compute_input_hash(tool_input))

    @classmethod
    def parse(cls, raw: str) -> OperationKey:
        tool_name, sep, input_hash = raw.rpartition(":")
        if not sep or not tool_name or not input_hash:
            _fail("OperationKey", f"expected '<toolName>:<inputHash>', got {raw!r}")
        return cls(tool_name=tool_name, input_hash=input_hash)

    @property
    def id(self) -> str:
        return f"{self.tool_name}:{self.input_hash}"

    def __str__(self) -> str:
        return self.id

    def to_dict(self) -> dict[str, JSONValue]:
        return {"toolName": self.tool_name, "inputHash": self.input_hash}

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> OperationKey:
        parsed = _expect_object(data, "OperationKey", required={"toolName", "inputHash"})
        return cls(
            tool_name=_as_str(parsed["toolName"], "OperationKey.toolName"),
            input_hash=_as_str(parsed["inputHash"], "OperationKey.inputHash"),
        )


@dataclass(frozen=True, slots=True)
class DeterminismScore(CanonicalModel):
    operation: OperationKey
    variance_score: float
    observation_count: int
    unique_outputs: int
    session_ids: tuple[str, ...]

    def __post_init__(self) -> None:
        _as_float(self.variance_score, "DeterminismScore.variance_score", minimum=0.0, maximum=1.0)
        _as_int(self.observation_count, "DeterminismScore.observation_count", minimum=0)
        _as_int(self.unique_outputs, "DeterminismScore.unique_outputs", minimum=0)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "operation": self.operation.to_dict(),
            "varianceScore": self.variance_score,
            "observationCount": self.observation_count,
            "uniqueOutputs": self.unique_outputs,
            "sessionIds": list(self.session_ids),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> DeterminismScore:
        parsed = _expect_object(
            data,
            "DeterminismScore",
            required={"operation", "varianceScore", "observationCount", "uniqueOutputs"},
        )
        return cls(
            operation=OperationKey.from_dict(
                _expect_object(parsed["operation"], "DeterminismScore.operation", required=set())
            ),
            variance_score=_as_float(parsed["varianceScore"], "DeterminismScore.varianceScore"),
            observation_count=_as_int(
                parsed["observationCount"], "DeterminismScore.observationCount"
            ),
            unique_outputs=_as_int(parsed["uniqueOutputs"], "DeterminismScore.uniqueOutputs"),
            session_ids=_as_str_tuple(
                parsed.get("sessionIds", ()), "DeterminismScore.sessionIds"
            ),
        )


@dataclass(frozen=True, slots=True)
class ClassifiedOperation(CanonicalModel):
    score: DeterminismScore
    classification: DeterminismClassification
    determinism: float

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "score": self.score.to_dict(),
            "classification": self.classification.value,
            "determinism": self.determinism,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ClassifiedOperation:
        parsed = _expect_object(
            data, "ClassifiedOperation", required={"score", "classification", "determinism"}
        )
        return cls(
            score=DeterminismScore.from_dict(
                _expect_object(parsed["score"], "ClassifiedOperation.score", required=set())
            ),
            classification=_as_enum(
                DeterminismClassification,
                parsed["classification"],
                "ClassifiedOperation.classification",
            ),
            determinism=_as_float(
                parsed["determinism"], "ClassifiedOperation.determinism", minimum=0.0
            ),
        )


@dataclass(frozen=True, slots=True)
class SessionMetrics(CanonicalModel):
    user_messages: int = 0
    assistant_messages: int = 0
    tool_calls: int = 0
    unique_files_read: int = 0
    unique_files_written: int = 0
    unique_commands_run: int = 0

    def __post_init__(self) -> None:
        for name in (
            "user_messages",
            "assistant_messages",
            "tool_calls",
            "unique_files_read",
            "unique_files_written",
            "unique_commands_run",
        ):
            _as_int(getattr(self, name), f"SessionMetrics.{name}", minimum=0)

    def __add__(self, other: SessionMetrics) -> SessionMetrics:
        if not isinstance(other, SessionMetrics):
            return NotImplemented
        return SessionMetrics(
            user_messages=self.user_messages + other.user_messages,
            assistant_messages=self.assistant_messages + other.assistant_messages,
            tool_calls=self.tool_calls + other.tool_calls,
            unique_files_read=self.unique_files_read + other.unique_files_read,
            unique_files_written=self.unique_files_written + other.unique_files_written,
            unique_commands_run=self.unique_commands_run + other.unique_commands_run,
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "userMessages": self.user_messages,
            "assistantMessages": self.assistant_messages,
            "toolCalls": self.tool_calls,
            "uniqueFilesRead": self.unique_files_read,
            "uniqueFilesWritten": self.unique_files_written,
            "uniqueCommandsRun": self.unique_commands_run,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> SessionMetrics:
        parsed = _expect_object(data, "SessionMetrics", required=set())
        return cls(
            user_messages=_as_int(parsed.get("userMessages", 0), "SessionMetrics.userMessages"),
            assistant_messages=_as_int(
                parsed.get("assistantMessages", 0), "SessionMetrics.assistantMessages"
            ),
            tool_calls=_as_int(parsed.get("toolCalls", 0), "SessionMetrics.toolCalls"),
            unique_files_read=_as_int(
                parsed.get("uniqueFilesRead", 0), "SessionMetrics.uniqueFilesRead"
            ),
            unique_files_written=_as_int(
                parsed.get("uniqueFilesWritten", 0), "SessionMetrics.uniqueFilesWritten"
            ),
            unique_commands_run=_as_int(
                parsed.get("uniqueCommandsRun", 0), "SessionMetrics.uniqueCommandsRun"
            ),
        )


@dataclass(frozen=True, slots=True)
class SessionObservation(CanonicalModel):
    """Session-level rollup.

    ``tier`` is ``None`` until a storage decision assigns one; readers treat a
    missing tier as persistent. Tier only moves ephemeral -> persistent.
    ``start_time`` may exceed ``end_time``: such records are kept so the anomaly
    detector can flag them.
    """

    session_id: str
    start_time: int
    end_time: int
    duration_minutes: float
    source: SessionSource
    reason: SessionEndReason
    metrics: SessionMetrics = field(default_factory=SessionMetrics)
    top_commands: tuple[str, ...] = ()
    top_files: tuple[str, ...] = ()
    top_tools: tuple[str, ...] = ()
    active_skills: tuple[str, ...] = ()
    tier: ObservationTier | None = None
    squashed_from: int | None = None

    def __post_init__(self) -> None:
        _as_str(self.session_id, "SessionObservation.session_id")
        _as_int(self.start_time, "SessionObservation.start_time")
        _as_int(self.end_time, "SessionObservation.end_time")
        _as_float(self.duration_minutes, "SessionObservation.duration_minutes")
        object.__setattr__(
            self, "source", _as_enum(SessionSource, self.source, "SessionObservation.source")
        )
        object.__setattr__(
            self, "reason", _as_enum(SessionEndReason, self.reason, "SessionObservation.reason")
        )
        if not isinstance(self.metrics, SessionMetrics):
            _fail("SessionObservation.metrics", "expected SessionMetrics")
        for name in ("top_commands", "top_files", "top_tools", "active_skills"):
            object.__setattr__(
                self, name, _as_str_tuple(getattr(self, name), f"SessionObservation.{name}")
            )
        if self.tier is not None:
            object.__setattr__(
                self, "tier", _as_enum(ObservationTier, self.tier, "SessionObservation.tier")
            )
        _as_optional_int(self.squashed_from, "SessionObservation.squashed_from", minimum=1)

    @property
    def effective_tier(self) -> ObservationTier:
        return self.tier if self.tier is not None else ObservationTier.PERSISTENT

    @property
    def has_rich_metadata(self) -> bool:
        return bool(self.top_commands or self.top_files or self.top_tools)

    def with_tier(self, tier: ObservationTier) -> SessionObservation:
        """Return a copy with ``tier`` assigned; demoting a persistent record is rejected."""

        target = _as_enum(ObservationTier, tier, "SessionObservation.tier")
        if self.tier is ObservationTier.PERSISTENT and target is ObservationTier.EPHEMERAL:
            _fail("SessionObservation.tier", "cannot move a persistent observation to ephemeral")
        return replace(self, tier=target)

    def promote_tier(self) -> SessionObservation:
        return self.with_tier(ObservationTier.PERSISTENT)

    def normalize_tier(self) -> SessionObservation:
        """Return a copy whose missing tier is made explicit as persistent."""

        if self.tier is not None:
            return self
        return replace(self, tier=ObservationTier.PERSISTENT)

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = {
            "sessionId": self.session_id,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "durationMinutes": self.duration_minutes,
            "source": self.source.value,
            "reason": self.reason.value,
            "metrics": self.metrics.to_dict(),
            "topCommands": list(self.top_commands),
            "topFiles": list(self.top_files),
            "topTools": list(self.top_tools),
            "activeSkills": list(self.active_skills),
        }
        if self.tier is not None:
            out["tier"] = self.tier.value
        if self.squashed_from is not None:
            out["squashedFrom"] = self.squashed_from
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> SessionObservation:
        parsed = _expect_object(
            data,
            "SessionObservation",
            required={"sessionId", "startTime", "endTime", "durationMinutes", "source", "reason"},
        )
        raw_tier = parsed.get("tier")
        return cls(
            session_id=_as_str(parsed["sessionId"], "SessionObservation.sessionId"),
            start_time=_as_int(parsed["startTime"], "SessionObservation.startTime"),
            end_time=_as_int(parsed["endTime"], "SessionObservation.endTime"),
            duration_minutes=_as_float(
                parsed["durationMinutes"], "SessionObservation.durationMinutes"
            ),
            source=_as_enum(SessionSource, parsed["source"], "SessionObservation.source"),
            reason=_as_enum(SessionEndReason, parsed["reason"], "SessionObservation.reason"),
            metrics=SessionMetrics.from_dict(
                _expect_object(
                    parsed.get("metrics", {}), "SessionObservation.metrics", required=set()
                )
            ),
            top_commands=_as_str_tuple(
                parsed.get("topCommands", ()), "SessionObservation.topCommands"
            ),
            top_files=_as_str_tuple(parsed.get("topFiles", ()), "SessionObservation.topFiles"),
            top_tools=_as_str_tuple(parsed.get("topTools", ()), "SessionObservation.topTools"),
            active_skills=_as_str_tuple(
                parsed.get("activeSkills", ()), "SessionObservation.activeSkills"
            ),
            tier=None
            if raw_tier is None
            else _as_enum(ObservationTier, raw_tier, "SessionObservation.tier"),
            squashed_from=_as_optional_int(
                parsed.get("squashedFrom"), "SessionObservation.squashedFrom", minimum=1
            ),
        )


@dataclass(frozen=True, slots=True)
class PromotionCandidate(CanonicalModel):
    operation: ClassifiedOperation
    tool_name: str
    frequency: int
    estimated_token_savings: int
    composite_score: float
    meets_confidence: bool

    @property
    def key(self) -> OperationKey:
        return self.operation.score.operation

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "operation": self.operation.to_dict(),
            "toolName": self.tool_name,
            "frequency": self.frequency,
            "estimatedTokenSavings": self.estimated_token_savings,
            "compositeScore": self.composite_score,
            "meetsConfidence": self.meets_confidence,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> PromotionCandidate:
        parsed = _expect_object(
            data,
            "PromotionCandidate",
            required={
                "operation",
                "toolName",
                "frequency",
                "estimatedTokenSavings",
                "compositeScore",
                "meetsConfidence",
            },
        )
        return cls(
            operation=ClassifiedOperation.from_dict(
                _expect_object(parsed["operation"], "PromotionCandidate.operation", required=set())
            ),
            tool_name=_as_str(parsed["toolName"], "PromotionCandidate.toolName"),
            frequency=_as_int(parsed["frequency"], "PromotionCandidate.frequency", minimum=0),
            estimated_token_savings=_as_int(
                parsed["estimatedTokenSavings"], "PromotionCandidate.estimatedTokenSavings"
            ),
            composite_score=_as_float(
                parsed["compositeScore"], "PromotionCandidate.compositeScore"
            ),
            meets_confidence=_as_bool(
                parsed["meetsConfidence"], "PromotionCandidate.meetsConfidence"
            ),
        )


@dataclass(frozen=True, slots=True)
class OffloadOperation(CanonicalModel):
    """Script handed to an external execution layer; ``timeout`` is in milliseconds."""

    id: str
    script: str
    script_type: ScriptType
    working_dir: str
    timeout: int
    env: Mapping[str, str] = field(default_factory=dict)
    label: str | None = None

    def __post_init__(self) -> None:
        _as_str(self.id, "OffloadOperation.id")
        _as_str(self.script, "OffloadOperation.script")
        object.__setattr__(
            self,
            "script_type",
            _as_enum(ScriptType, self.script_type, "OffloadOperation.script_type"),
        )
        _as_str(self.working_dir, "OffloadOperation.working_dir")
        _as_int(self.timeout, "OffloadOperation.timeout", minimum=1)
        object.__setattr__(self, "env", _as_str_dict(self.env, "OffloadOperation.env"))
        _as_optional_str(self.label, "OffloadOperation.label")

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = {
            "id": self.id,
            "script": self.script,
            "scriptType": self.script_type.value,
            "workingDir": self.working_dir,
            "timeout": self.timeout,
            "env": dict(self.env),
        }
        if self.label is not None:
            out["label"] = self.label
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> OffloadOperation:
        parsed = _expect_object(
            data,
            "OffloadOperation",
            required={"id", "script", "scriptType", "workingDir", "timeout"},
        )
        return cls(
            id=_as_str(parsed["id"], "OffloadOperation.id"),
            script=_as_str(parsed["script"], "OffloadOperation.script"),
            script_type=_as_enum(ScriptType, parsed["scriptType"], "OffloadOperation.scriptType"),
            working_dir=_as_str(parsed["workingDir"], "OffloadOperation.workingDir"),
            timeout=_as_int(parsed["timeout"], "OffloadOperation.timeout", minimum=1),
            env=_as_str_dict(parsed.get("env", {}), "OffloadOperation.env"),
            label=_as_optional_str(parsed.get("label"), "OffloadOperation.label"),
        )


@dataclass(frozen=True, slots=True)
class GeneratedScript(CanonicalModel):
    operation: OffloadOperation
    source_candidate: PromotionCandidate
    script_content: str
    is_valid: bool
    expected_output_hash: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "operation": self.operation.to_dict(),
            "sourceCandidate": self.source_candidate.to_dict(),
            "scriptContent": self.script_content,
            "isValid": self.is_valid,
            "expectedOutputHash": self.expected_output_hash,
        }


@dataclass(frozen=True, slots=True)
class DryRunResult(CanonicalModel):
    """Verdict of replaying a generated script against its recorded output hash."""

    generated_script: GeneratedScript
    passed: bool
    actual_output_hash: str
    expected_output_hash: str
    exit_code: int
    duration_ms: float
    failure_reason: str | None = None
    failure_kind: DryRunFailure | None = None

    @property
    def operation_id(self) -> str:
        return self.generated_script.operation.id

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "operationId": self.operation_id,
            "passed": self.passed,
            "actualOutputHash": self.actual_output_hash,
            "expectedOutputHash": self.expected_output_hash,
            "exitCode": self.exit_code,
            "durationMs": self.duration_ms,
            "failureReason": self.failure_reason,
            "failureKind": None if self.failure_kind is None else self.failure_kind.value,
        }


@dataclass(frozen=True, slots=True)
class LineageEntry(CanonicalModel):
    """Provenance of one pipeline artifact.

    ``inputs`` and ``outputs`` hold artifact ids such as ``obs:<session>:<key>``,
    ``pat:<key>``, ``cand:<key>``, ``script:<operationId>`` or
    ``gate:<operationId>:<timestamp>``.
    """

    artifact_id: str
    artifact_type: ArtifactType
    stage: PipelineStage
    timestamp: str
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    metadata: Mapping[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _as_str(self.artifact_id, "LineageEntry.artifact_id")
        object.__setattr__(
            self,
            "artifact_type",
            _as_enum(ArtifactType, self.artifact_type, "LineageEntry.artifact_type"),
        )
        object.__setattr__(
            self, "stage", _as_enum(PipelineStage, self.stage, "LineageEntry.stage")
        )
        _as_str(self.timestamp, "LineageEntry.timestamp")
        object.__setattr__(self, "inputs", _as_str_tuple(self.inputs, "LineageEntry.inputs"))
        object.__setattr__(self, "outputs", _as_str_tuple(self.outputs, "LineageEntry.outputs"))
        object.__setattr__(
            self, "metadata", _as_json_object(self.metadata, "LineageEntry.metadata")
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "artifactId": self.artifact_id,
            "artifactType": self.artifact_type.value,
            "stage": self.stage.value,
            "inputs": list(self.inputs),
            "outputs": list(self.outputs),
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> LineageEntry:
        parsed = _expect_object(
            data,
            "LineageEntry",
            required={"artifactId", "artifactType", "stage", "timestamp"},
        )
        return cls(
            artifact_id=_as_str(parsed["artifactId"], "LineageEntry.artifactId"),
            artifact_type=_as_enum(
                ArtifactType, parsed["artifactType"], "LineageEntry.artifactType"
            ),
            stage=_as_enum(PipelineStage, parsed["stage"], "LineageEntry.stage"),
            timestamp=_as_str(parsed["timestamp"], "LineageEntry.timestamp"),
            inputs=_as_str_tuple(parsed.get("inputs", []), "LineageEntry.inputs"),
            outputs=_as_str_tuple(parsed.get("outputs", []), "LineageEntry.outputs"),
            metadata=_as_json_object(parsed.get("metadata", {}), "LineageEntry.metadata"),
        )


__all__ = [
    "ArtifactType",
    "CanonicalModel",
    "ClassifiedOperation",
    "DeterminismClassification",
    "DeterminismScore",
    "DryRunFailure",
    "DryRunResult",
    "ExecutionContext",
    "GeneratedScript",
    "JSONScalar",
    "JSONValue",
    "LineageEntry",
    "ObservationTier",
    "OffloadOperation",
    "OperationKey",
    "PairStatus",
    "PipelineStage",
    "PromotionCandidate",
    "ScriptType",
    "SessionEndReason",
    "SessionMetrics",
    "SessionObservation",
    "SessionSource",
    "StoredExecutionBatch",
    "ToolExecutionPair",
    "now_epoch_ms",
    "utc_now",
]
