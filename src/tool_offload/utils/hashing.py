"""
tool-offload — hashing utilities

File: src/tool_offload/utils/hashing.py

Purpose
- Provide deterministic SHA-256 helpers for bytes, text, and JSON payloads.
- Define the content addresses used across the pipeline: input hashes for
  operation identity and output hashes for captured or replayed stdout.

Functional requirements
- JSON payloads hash identically regardless of key insertion order.
- Output hashes of a replayed script and of the original capture use the same digest.

Non-functional requirements
- Standard library only; behavior is cross-platform deterministic.
"""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

__all__ = [
    "canonical_json",
    "compute_input_hash",
    "hash_output",
    "sha256_bytes",
    "sha256_text",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def canonical_json(value: object) -> str:
    """Serialize ``value`` with sorted keys and compact separators."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_input_hash(tool_input: Mapping[str, object]) -> str:
    """Return the content address of a tool input object."""

    return sha256_text(canonical_json(dict(tool_input)))


def hash_output(output: str | bytes) -> str:
    """Return the digest recorded as ``outputHash`` for captured or replayed output."""

    if isinstance(output, bytes):
        return sha256_bytes(output)
    return sha256_text(output)
