"""Integrity checks and rate limiting applied before observations are retained."""

from tool_offload.safety.checksum import (
    ChecksumFailure,
    ChecksumVerification,
    EntryValidation,
    compute_checksum,
    create_checksummed_entry,
    validate_jsonl_entry,
    verify_checksum,
)
from tool_offload.safety.rate_limiter import (
    Anomaly,
    AnomalyKind,
    RateLimitConfig,
    RateLimitDecision,
    RateLimiter,
    detect_anomalies,
)

__all__ = [
    "Anomaly",
    "AnomalyKind",
    "ChecksumFailure",
    "ChecksumVerification",
    "EntryValidation",
    "RateLimitConfig",
    "RateLimitDecision",
    "RateLimiter",
    "compute_checksum",
    "create_checksummed_entry",
    "detect_anomalies",
    "validate_jsonl_entry",
    "verify_checksum",
]
