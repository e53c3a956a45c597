"""Stable constants shared across offload components."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Pattern store categories.
CATEGORY_EXECUTIONS: Final[str] = "executions"
CATEGORY_SESSIONS: Final[str] = "sessions"
CATEGORY_DECISIONS: Final[str] = "decisions"
CATEGORY_LINEAGE: Final[str] = "lineage"

# File layout inside the patterns directory.
PATTERN_FILE_SUFFIX: Final[str] = ".jsonl"
EPHEMERAL_FILENAME: Final[str] = ".ephemeral.jsonl"
CHECKSUM_FIELD: Final[str] = "_checksum"

# Tools whose captured operations may become offload candidates.
PROMOTABLE_TOOL_NAMES: Final[frozenset[str]] = frozenset(
    {"Read", "Write", "Bash", "Glob", "Grep", "Edit", "WebFetch"}
)

# Anomaly tolerance between reported and computed session duration.
DURATION_MISMATCH_TOLERANCE_MINUTES: Final[float] = 2.0

__all__ = [
    "CATEGORY_DECISIONS",
    "CATEGORY_EXECUTIONS",
    "CATEGORY_LINEAGE",
    "CATEGORY_SESSIONS",
    "CHECKSUM_FIELD",
    "CONFIG_SCHEMA_VERSION",
    "DURATION_MISMATCH_TOLERANCE_MINUTES",
    "EPHEMERAL_FILENAME",
    "PATTERN_FILE_SUFFIX",
    "PROMOTABLE_TOOL_NAMES",
]
