"""Ephemeral observation buffer kept in ``.ephemeral.jsonl`` beside the pattern files."""

from __future__ import annotations

from collections import defaultdict
from pathlib import Path
from typing import Any

import structlog

from tool_offload.constants import CATEGORY_SESSIONS, EPHEMERAL_FILENAME
from tool_offload.domain.models import SessionObservation, now_epoch_ms
from tool_offload.storage.pattern_store import (
    WRITE_LOCKS,
    EpochClock,
    PatternEnvelope,
    build_envelope,
    read_envelopes,
)
from tool_offload.utils.fs import append_line, atomic_write
from tool_offload.utils.hashing import canonical_json

_SESSION_ID_FIELD = "session_id"


def pattern_key(observation: SessionObservation) -> str:
    """Key grouping observations that show the same command and tool pattern."""

    commands = ",".join(sorted(observation.top_commands))
    tools = ",".join(sorted(observation.top_tools))
    return f"{commands}|{tools}"


class EphemeralStore:
    """Buffer for observations that did not earn persistent storage on their own."""

    def __init__(
        self,
        patterns_dir: Path | str,
        *,
        clock: EpochClock = now_epoch_ms,
        logger: Any | None = None,
    ) -> None:
        self._path = Path(patterns_dir) / EPHEMERAL_FILENAME
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def path(self) -> Path:
        return self._path

    def append(self, observation: SessionObservation, session_id: str | None = None) -> None:
        extra = {_SESSION_ID_FIELD: session_id} if session_id is not None else None
        envelope = build_envelope(
            CATEGORY_SESSIONS,
            observation.to_dict(),
            timestamp=self._clock(),
            extra=extra,
        )
        with WRITE_LOCKS.hold(str(self._path.resolve())):
            append_line(self._path, canonical_json(envelope))

    def read_all(self) -> list[SessionObservation]:
        """Return buffered observations in append order; a missing tier reads as persistent."""

        observations: list[SessionObservation] = []
        for envelope in self._read_envelopes():
            parsed = self._parse(envelope)
            if parsed is not None:
                observations.append(parsed.normalize_tier())
        return observations

    def drain(self) -> list[SessionObservation]:
        """Return the buffered observations and empty the buffer under one lock hold.

        An ``append`` from another thread lands either in the returned list or
        in the emptied buffer, never in neither.
        """

        with WRITE_LOCKS.hold(str(self._path.resolve())):
            observations = self.read_all()
            self.clear()
        return observations

    def clear(self) -> None:
        with WRITE_LOCKS.hold(str(self._path.resolve())):
            if self._path.exists():
                atomic_write(self._path, "")

    def get_size(self) -> int:
        return len(self._read_envelopes())

    def get_session_counts(self) -> dict[str, int]:
        """Return the number of distinct sessions per observation pattern key."""

        sessions: defaultdict[str, set[str]] = defaultdict(set)
        for envelope in self._read_envelopes():
            observation = self._parse(envelope)
            if observation is None:
                continue
            tagged = envelope.extra.get(_SESSION_ID_FIELD)
            session = tagged if isinstance(tagged, str) and tagged else observation.session_id
            sessions[pattern_key(observation)].add(session)
        return {key: len(members) for key, members in sorted(sessions.items())}

    def _read_envelopes(self) -> tuple[PatternEnvelope, ...]:
        report = read_envelopes(
            self._path,
            allow_unsigned=True,
            logger=self._logger,
            category=CATEGORY_SESSIONS,
        )
        return report.entries

    def _parse(self, envelope: PatternEnvelope) -> SessionObservation | None:
        try:
            return SessionObservation.from_dict(envelope.data)
        except ValueError as exc:
            self._logger.warning("ephemeral_observation_skipped", reason=str(exc))
            return None


__all__ = ["EphemeralStore", "pattern_key"]
