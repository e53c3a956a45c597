"""Utility exports for filesystem, hashing, and concurrency helpers."""

from tool_offload.utils.concurrency import (
    CancellationToken,
    KeyedLocks,
    WorkerPool,
)
from tool_offload.utils.fs import append_line, atomic_write, is_within
from tool_offload.utils.hashing import (
    canonical_json,
    compute_input_hash,
    hash_output,
    sha256_bytes,
    sha256_text,
)

__all__ = [
    "CancellationToken",
    "KeyedLocks",
    "WorkerPool",
    "append_line",
    "atomic_write",
    "canonical_json",
    "compute_input_hash",
    "hash_output",
    "is_within",
    "sha256_bytes",
    "sha256_text",
]
