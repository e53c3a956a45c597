"""Append-only JSONL storage for execution batches, sessions, and decisions."""

from tool_offload.storage.ephemeral_store import EphemeralStore, pattern_key
from tool_offload.storage.pattern_store import (
    PatternEnvelope,
    PatternStore,
    ReadReport,
    SkippedLine,
)

__all__ = [
    "EphemeralStore",
    "PatternEnvelope",
    "PatternStore",
    "ReadReport",
    "SkippedLine",
    "pattern_key",
]
