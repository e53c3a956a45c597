"""
tool-offload — append-only pattern store

File: src/tool_offload/storage/pattern_store.py

Purpose
- Persist checksummed envelopes as JSON lines, one file per category.
- Read a point-in-time snapshot of a category, skipping corrupt or tampered lines.

Functional requirements
- Envelope shape: ``{timestamp, category, data, _checksum, ...extra}``; the checksum covers ``data``.
- Appends to one file are serialized through a per-path lock shared by every
  store instance in the process.
- A bad line never aborts a read; it is skipped with a warning event.

Non-functional requirements
- No cross-process locking; the write paths here are the only ones this package owns.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final

import structlog

from tool_offload.constants import CHECKSUM_FIELD, PATTERN_FILE_SUFFIX
from tool_offload.domain.models import now_epoch_ms
from tool_offload.safety.checksum import (
    create_checksummed_entry,
    validate_jsonl_entry,
    verify_checksum,
)
from tool_offload.utils.concurrency import KeyedLocks
from tool_offload.utils.fs import append_line, atomic_write
from tool_offload.utils.hashing import canonical_json

_CATEGORY_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-z][a-z0-9_-]*$")
_ENVELOPE_FIELDS: Final[frozenset[str]] = frozenset(
    {"timestamp", "category", "data", CHECKSUM_FIELD}
)

WRITE_LOCKS: Final[KeyedLocks] = KeyedLocks()

EpochClock = Callable[[], int]


@dataclass(frozen=True, slots=True)
class PatternEnvelope:
    """One verified log line."""

    timestamp: float
    category: str
    data: dict[str, Any]
    checksum: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SkippedLine:
    line_number: int
    reason: str


@dataclass(frozen=True, slots=True)
class ReadReport:
    entries: tuple[PatternEnvelope, ...]
    skipped: tuple[SkippedLine, ...]


def build_envelope(
    category: str,
    data: Mapping[str, object],
    *,
    timestamp: float,
    extra: Mapping[str, object] | None = None,
) -> dict[str, object]:
    """Return a checksummed envelope ready to be written as one line."""

    envelope: dict[str, object] = dict(extra or {})
    envelope.update({"timestamp": timestamp, "category": category, "data": dict(data)})
    return create_checksummed_entry(envelope)


def parse_envelope_line(
    line: str,
    *,
    allow_unsigned: bool,
) -> PatternEnvelope | str:
    """Return the verified envelope for ``line`` or a rejection reason."""

    validation = validate_jsonl_entry(line)
    if not validation.ok or validation.entry is None:
        return validation.error or "invalid entry"

    entry = validation.entry
    checksum = entry.get(CHECKSUM_FIELD)
    if checksum is not None or not allow_unsigned:
        verification = verify_checksum(entry)
        if not verification.valid:
            return verification.message or "checksum verification failed"

    return PatternEnvelope(
        timestamp=entry["timestamp"],
        category=entry["category"],
        data=entry["data"],
        checksum=checksum if isinstance(checksum, str) else None,
        extra={key: value for key, value in entry.items() if key not in _ENVELOPE_FIELDS},
    )


class PatternStore:
    """JSONL store with one ``<category>.jsonl`` file per category under ``patterns_dir``.

    Lines written before checksums existed carry no ``_checksum``; they are
    accepted when ``allow_unsigned`` is true. A present but mismatching
    checksum is always rejected.
    """

    def __init__(
        self,
        patterns_dir: Path | str,
        *,
        allow_unsigned: bool = True,
        clock: EpochClock = now_epoch_ms,
        logger: Any | None = None,
    ) -> None:
        self._patterns_dir = Path(patterns_dir)
        self._allow_unsigned = allow_unsigned
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def patterns_dir(self) -> Path:
        return self._patterns_dir

    def path_for(self, category: str) -> Path:
        if not _CATEGORY_PATTERN.fullmatch(category):
            raise ValueError(f"invalid category name: {category!r}")
        return self._patterns_dir / f"{category}{PATTERN_FILE_SUFFIX}"

    def append(
        self,
        category: str,
        data: Mapping[str, object],
        *,
        extra: Mapping[str, object] | None = None,
    ) -> dict[str, object]:
        """Append one checksummed envelope and return it."""

        path = self.path_for(category)
        envelope = build_envelope(category, data, timestamp=self._clock(), extra=extra)
        line = canonical_json(envelope)
        with WRITE_LOCKS.hold(str(path.resolve())):
            append_line(path, line)
        return envelope

    def read(self, category: str) -> list[PatternEnvelope]:
        return list(self.read_report(category).entries)

    def read_report(self, category: str) -> ReadReport:
        """Read ``category`` and report which lines were skipped and why."""

        path = self.path_for(category)
        return read_envelopes(
            path,
            allow_unsigned=self._allow_unsigned,
            logger=self._logger,
            category=category,
        )

    def truncate(self, category: str) -> None:
        path = self.path_for(category)
        with WRITE_LOCKS.hold(str(path.resolve())):
            if path.exists():
                atomic_write(path, "")


def read_envelopes(
    path: Path,
    *,
    allow_unsigned: bool,
    logger: Any,
    category: str,
) -> ReadReport:
    if not path.exists():
        return ReadReport(entries=(), skipped=())

    with WRITE_LOCKS.hold(str(path.resolve())):
        raw_lines = path.read_bytes().splitlines()

    entries: list[PatternEnvelope] = []
    skipped: list[SkippedLine] = []
    for line_number, raw in enumerate(raw_lines, start=1):
        if not raw.strip():
            continue
        parsed: PatternEnvelope | str
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            parsed = f"line is not valid UTF-8: {exc.reason}"
        else:
            parsed = parse_envelope_line(text, allow_unsigned=allow_unsigned)
        if isinstance(parsed, str):
            skipped.append(SkippedLine(line_number=line_number, reason=parsed))
            logger.warning(
                "pattern_store_line_skipped",
                category=category,
                path=str(path),
                line_number=line_number,
                reason=parsed,
            )
            continue
        entries.append(parsed)
    return ReadReport(entries=tuple(entries), skipped=tuple(skipped))


__all__ = [
    "WRITE_LOCKS",
    "PatternEnvelope",
    "PatternStore",
    "ReadReport",
    "SkippedLine",
    "build_envelope",
    "parse_envelope_line",
    "read_envelopes",
]
