"""Domain model exports."""

from tool_offload.domain.models import (
    ArtifactType,
    CanonicalModel,
    ClassifiedOperation,
    DeterminismClassification,
    DeterminismScore,
    DryRunFailure,
    DryRunResult,
    ExecutionContext,
    GeneratedScript,
    JSONValue,
    LineageEntry,
    ObservationTier,
    OffloadOperation,
    OperationKey,
    PairStatus,
    PipelineStage,
    PromotionCandidate,
    ScriptType,
    SessionEndReason,
    SessionMetrics,
    SessionObservation,
    SessionSource,
    StoredExecutionBatch,
    ToolExecutionPair,
    now_epoch_ms,
    utc_now,
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
