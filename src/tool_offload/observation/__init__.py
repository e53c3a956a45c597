"""Session retention, determinism analysis, and promotion decisions."""

from tool_offload.observation.determinism_analyzer import (
    DEFAULT_DETERMINISM_CONFIG,
    DeterminismAnalyzer,
    DeterminismConfig,
    classify_determinism,
    variance_score,
)
from tool_offload.observation.drift_monitor import (
    DEFAULT_DRIFT_MONITOR_CONFIG,
    DemotionDecision,
    DriftEvent,
    DriftMonitor,
    DriftMonitorConfig,
)
from tool_offload.observation.lineage_tracker import LineageChain, LineageTracker
from tool_offload.observation.promotion_detector import (
    DEFAULT_PROMOTION_DETECTOR_CONFIG,
    PromotionDetector,
    PromotionDetectorConfig,
)
from tool_offload.observation.promotion_evaluator import (
    DEFAULT_PROMOTION_CRITERIA,
    CrossSessionContext,
    PromotionCriteria,
    PromotionEvaluator,
    PromotionResult,
)
from tool_offload.observation.promotion_gatekeeper import (
    DEFAULT_GATEKEEPER_CONFIG,
    GatekeeperConfig,
    GatekeeperDecision,
    GatekeeperEvidence,
    PromotionGatekeeper,
)
from tool_offload.observation.session_observer import SessionObserver
from tool_offload.observation.squasher import squash_observations

__all__ = [
    "DEFAULT_DETERMINISM_CONFIG",
    "DEFAULT_DRIFT_MONITOR_CONFIG",
    "DEFAULT_GATEKEEPER_CONFIG",
    "DEFAULT_PROMOTION_CRITERIA",
    "DEFAULT_PROMOTION_DETECTOR_CONFIG",
    "CrossSessionContext",
    "DemotionDecision",
    "DeterminismAnalyzer",
    "DeterminismConfig",
    "DriftEvent",
    "DriftMonitor",
    "DriftMonitorConfig",
    "GatekeeperConfig",
    "GatekeeperDecision",
    "GatekeeperEvidence",
    "LineageChain",
    "LineageTracker",
    "PromotionCriteria",
    "PromotionDetector",
    "PromotionDetectorConfig",
    "PromotionEvaluator",
    "PromotionGatekeeper",
    "PromotionResult",
    "SessionObserver",
    "classify_determinism",
    "squash_observations",
    "variance_score",
]
