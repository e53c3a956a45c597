"""
tool-offload — integrity layer

File: src/tool_offload/safety/checksum.py

Purpose
- Compute and verify tamper-evident checksums for persisted log envelopes.
- Validate the shape of one JSONL line before anything else touches it.

Functional requirements
- The checksum covers only the envelope's ``data`` payload, serialized canonically.
- Verification and line validation return structured results; they never raise.

Non-functional requirements
- Standard library only; digests are stable across platforms and key orderings.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from tool_offload.constants import CHECKSUM_FIELD
from tool_offload.utils.hashing import canonical_json, sha256_text

__all__ = [
    "ChecksumFailure",
    "ChecksumVerification",
    "EntryValidation",
    "compute_checksum",
    "create_checksummed_entry",
    "validate_jsonl_entry",
    "verify_checksum",
]


class ChecksumFailure(StrEnum):
    INVALID = "invalid"
    TAMPERED = "tampered"


@dataclass(frozen=True, slots=True)
class ChecksumVerification:
    valid: bool
    failure: ChecksumFailure | None = None
    message: str | None = None

    @property
    def tampered(self) -> bool:
        return self.failure is ChecksumFailure.TAMPERED


@dataclass(frozen=True, slots=True)
class EntryValidation:
    """Discriminated result: ``entry`` is set when ``ok``, otherwise ``error``."""

    ok: bool
    entry: dict[str, Any] | None = None
    error: str | None = None


def compute_checksum(data: Mapping[str, object]) -> str:
    """Return the SHA-256 hex digest of the canonical JSON form of ``data``."""

    return sha256_text(canonical_json(data))


def create_checksummed_entry(envelope: Mapping[str, object]) -> dict[str, object]:
    """Return a copy of ``envelope`` carrying a ``_checksum`` over its ``data`` field."""

    data = envelope.get("data")
    if not isinstance(data, Mapping):
        raise ValueError("envelope.data: expected object")
    entry = dict(envelope)
    entry[CHECKSUM_FIELD] = compute_checksum(data)
    return entry


def verify_checksum(entry: Mapping[str, object]) -> ChecksumVerification:
    """Recompute the checksum of ``entry['data']`` and compare it to the stored one."""

    stored = entry.get(CHECKSUM_FIELD)
    if not isinstance(stored, str):
        return ChecksumVerification(
            valid=False,
            failure=ChecksumFailure.INVALID,
            message=f"invalid entry: {CHECKSUM_FIELD} is missing or not a string",
        )

    data = entry.get("data")
    if not isinstance(data, Mapping):
        return ChecksumVerification(
            valid=False,
            failure=ChecksumFailure.INVALID,
            message="invalid entry: data is missing or not an object",
        )

    try:
        actual = compute_checksum(data)
    except (TypeError, ValueError, RecursionError) as exc:
        return ChecksumVerification(
            valid=False,
            failure=ChecksumFailure.INVALID,
            message=f"invalid entry: data is not serializable ({exc})",
        )

    if actual != stored:
        return ChecksumVerification(
            valid=False,
            failure=ChecksumFailure.TAMPERED,
            message=(
                "checksum mismatch: entry data was tampered with or corrupted "
                f"(expected {stored[:12]}..., got {actual[:12]}...)"
            ),
        )
    return ChecksumVerification(valid=True)


def validate_jsonl_entry(line: str) -> EntryValidation:
    """Parse one JSONL line and check the envelope fields ``timestamp``, ``category``, ``data``."""

    try:
        parsed = json.loads(line)
    except (ValueError, TypeError) as exc:
        return EntryValidation(ok=False, error=f"invalid JSON: {exc}")
    except RecursionError:
        return EntryValidation(ok=False, error="invalid JSON: nesting too deep to decode")

    if not isinstance(parsed, dict):
        return EntryValidation(
            ok=False, error=f"entry must be a JSON object, got {type(parsed).__name__}"
        )

    timestamp = parsed.get("timestamp")
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        return EntryValidation(ok=False, error="entry.timestamp: expected number")
    if not isinstance(parsed.get("category"), str):
        return EntryValidation(ok=False, error="entry.category: expected string")
    if not isinstance(parsed.get("data"), dict):
        return EntryValidation(ok=False, error="entry.data: expected object")

    return EntryValidation(ok=True, entry=parsed)
