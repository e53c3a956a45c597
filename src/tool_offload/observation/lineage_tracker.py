"""
tool-offload — lineage tracker

File: src/tool_offload/observation/lineage_tracker.py

Purpose
- Record which artifacts each pipeline stage consumed and produced, and trace
  an artifact back to the captures it came from or forward to the scripts,
  decisions and executions derived from it.

Functional requirements
- Entries are appended to the ``lineage`` category of a ``PatternStore``, so a
  fresh tracker over the same directory sees everything recorded before.
- Upstream of X: entries whose ``outputs`` name X, then recursively their own
  upstream. Downstream of X: entries whose ``inputs`` name X, recursively.
- Traversal visits every artifact id at most once; cycles and self references
  terminate and the queried artifact never appears in its own trace.
- Stored lines that fail model validation are skipped with a warning.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from tool_offload.constants import CATEGORY_LINEAGE
from tool_offload.domain.models import LineageEntry

if TYPE_CHECKING:
    from tool_offload.domain.models import ArtifactType
    from tool_offload.storage.pattern_store import PatternStore


@dataclass(frozen=True, slots=True)
class LineageChain:
    artifact: LineageEntry
    upstream: tuple[LineageEntry, ...]
    downstream: tuple[LineageEntry, ...]


class LineageTracker:
    def __init__(self, store: PatternStore, *, logger: Any | None = None) -> None:
        self._store = store
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def record(self, entry: LineageEntry) -> None:
        self._store.append(CATEGORY_LINEAGE, entry.to_dict())
        self._logger.info(
            "lineage_recorded",
            artifact_id=entry.artifact_id,
            artifact_type=entry.artifact_type.value,
            stage=entry.stage.value,
        )

    def entries(self) -> list[LineageEntry]:
        """All readable entries in append order."""

        loaded: list[LineageEntry] = []
        for index, envelope in enumerate(self._store.read(CATEGORY_LINEAGE)):
            try:
                loaded.append(LineageEntry.from_dict(envelope.data))
            except ValueError as exc:
                self._logger.warning("lineage_entry_skipped", entry_index=index, reason=str(exc))
        return loaded

    def upstream(self, artifact_id: str) -> list[LineageEntry]:
        return _trace(self.entries(), artifact_id, lambda entry: entry.outputs)

    def downstream(self, artifact_id: str) -> list[LineageEntry]:
        return _trace(self.entries(), artifact_id, lambda entry: entry.inputs)

    def chain(self, artifact_id: str) -> LineageChain | None:
        """Full trace around ``artifact_id``, or None when it was never recorded."""

        entries = self.entries()
        latest = _latest_by_id(entries).get(artifact_id)
        if latest is None:
            return None
        return LineageChain(
            artifact=latest,
            upstream=tuple(_trace(entries, artifact_id, lambda entry: entry.outputs)),
            downstream=tuple(_trace(entries, artifact_id, lambda entry: entry.inputs)),
        )

    def by_artifact_type(self, artifact_type: ArtifactType) -> list[LineageEntry]:
        return [entry for entry in self.entries() if entry.artifact_type == artifact_type]


def _latest_by_id(entries: list[LineageEntry]) -> dict[str, LineageEntry]:
    # Later records for the same artifact replace earlier ones.
    return {entry.artifact_id: entry for entry in entries}


def _trace(
    entries: list[LineageEntry],
    start: str,
    links: Callable[[LineageEntry], tuple[str, ...]],
) -> list[LineageEntry]:
    """Breadth-first walk over entries whose ``links`` name an already reached id."""

    latest = _latest_by_id(entries)
    seen = {start}
    found: list[LineageEntry] = []
    pending = deque([start])
    while pending:
        current = pending.popleft()
        for artifact_id, entry in latest.items():
            if artifact_id in seen or current not in links(entry):
                continue
            seen.add(artifact_id)
            found.append(entry)
            pending.append(artifact_id)
    return found


__all__ = [
    "LineageChain",
    "LineageTracker",
]
