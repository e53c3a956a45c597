"""
tool-offload — replacement script generator

File: src/tool_offload/offload/script_generator.py

Purpose
- Synthesize a bash script that reproduces a promoted tool operation from the
  input recorded on one of its complete executions.

Functional requirements
- Per-tool bodies come from an explicit strategy table of pure functions.
- Interpolated values are shell-quoted; Bash commands are replayed verbatim.
- A tool without a strategy, or an input missing the fields a strategy needs,
  yields an ``exit 1`` stub and ``is_valid = False``.
- The operation id is the ``<toolName>:<inputHash>`` key and the expected output
  hash is copied from the representative pair.
- Write scripts resolve their target against the working directory they run in
  and exit 1 without writing when it lies outside it. They print nothing, so
  a dry run of one only passes when the recorded Write output was empty.

Non-functional requirements
- Generation never executes anything; dry runs live in ``offload.dry_run``.
"""

from __future__ import annotations

import shlex
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import structlog

from tool_offload.domain.models import (
    GeneratedScript,
    OffloadOperation,
    ScriptType,
    utc_now,
)
from tool_offload.observation.determinism_analyzer import load_batches

if TYPE_CHECKING:
    from tool_offload.domain.models import PromotionCandidate, ToolExecutionPair
    from tool_offload.observation.promotion_gatekeeper import WallClock
    from tool_offload.storage.pattern_store import PatternStore

_HEADER_RULE: Final[str] = "# " + "=" * 60
_HEREDOC_DELIMITER: Final[str] = "SCRIPT_EOF"

# Refuses a target whose directory resolves outside the working directory.
_WRITE_GUARD: Final[str] = (
    'target_dir=$(cd "$(dirname -- "$target")" 2>/dev/null && pwd -P) || target_dir=\n'
    'case "$target_dir/" in\n'
    '  "$(pwd -P)"/*) ;;\n'
    '  *) echo "refusing to write outside $(pwd -P): $target" >&2; exit 1 ;;\n'
    "esac\n"
)


@dataclass(frozen=True, slots=True)
class ScriptBody:
    body: str
    script_type: ScriptType = ScriptType.BASH


ScriptStrategy = Callable[[Mapping[str, object]], ScriptBody | None]


def _read_body(tool_input: Mapping[str, object]) -> ScriptBody | None:
    path = tool_input.get("file_path")
    if not isinstance(path, str) or not path:
        return None
    return ScriptBody(f"cat {shlex.quote(path)}")


def _bash_body(tool_input: Mapping[str, object]) -> ScriptBody | None:
    command = tool_input.get("command")
    if not isinstance(command, str) or not command.strip():
        return None
    return ScriptBody(command)


def _write_body(tool_input: Mapping[str, object]) -> ScriptBody | None:
    path = tool_input.get("file_path")
    content = tool_input.get("content")
    if not isinstance(path, str) or not path or not isinstance(content, str):
        return None
    delimiter = _heredoc_delimiter(content)
    # The here-document appends a newline; head -c trims the file to the exact payload.
    size = len(content.encode("utf-8"))
    return ScriptBody(
        f"target={shlex.quote(path)}\n"
        + _WRITE_GUARD
        + f"head -c {size} << '{delimiter}' > \"$target\"\n{content}\n{delimiter}"
    )


def _glob_body(tool_input: Mapping[str, object]) -> ScriptBody | None:
    path = _optional_str(tool_input.get("path")) or "."
    pattern = _optional_str(tool_input.get("pattern")) or "*"
    if pattern.startswith("**/"):
        pattern = pattern[3:]
    return ScriptBody(f"find {shlex.quote(path)} -name {shlex.quote(pattern)} -type f | sort")


def _grep_body(tool_input: Mapping[str, object]) -> ScriptBody | None:
    pattern = tool_input.get("pattern")
    if not isinstance(pattern, str) or not pattern:
        return None
    path = _optional_str(tool_input.get("path")) or "."
    return ScriptBody(f"grep -r {shlex.quote(pattern)} {shlex.quote(path)}")


SCRIPT_STRATEGIES: Final[Mapping[str, ScriptStrategy]] = {
    "Read": _read_body,
    "Bash": _bash_body,
    "Write": _write_body,
    "Glob": _glob_body,
    "Grep": _grep_body,
}


def unsupported_body(tool_name: str) -> ScriptBody:
    return ScriptBody(f"# ERROR: Tool '{tool_name}' is not supported for script generation\nexit 1")


def build_script_body(
    tool_name: str,
    tool_input: Mapping[str, object],
    strategies: Mapping[str, ScriptStrategy] = SCRIPT_STRATEGIES,
) -> tuple[ScriptBody, bool]:
    """Return ``(body, supported)`` for ``tool_name`` applied to ``tool_input``."""

    strategy = strategies.get(tool_name)
    if strategy is None:
        return unsupported_body(tool_name), False
    body = strategy(tool_input)
    if body is None:
        return unsupported_body(tool_name), False
    return body, True


@dataclass(frozen=True, slots=True)
class ScriptGeneratorConfig:
    default_timeout_ms: int = 30_000
    default_working_dir: str = "."

    def __post_init__(self) -> None:
        if self.default_timeout_ms <= 0:
            raise ValueError("default_timeout_ms must be > 0")
        if not self.default_working_dir.strip():
            raise ValueError("default_working_dir must not be empty")


DEFAULT_SCRIPT_GENERATOR_CONFIG: Final[ScriptGeneratorConfig] = ScriptGeneratorConfig()


class ScriptGenerator:
    def __init__(
        self,
        store: PatternStore,
        config: ScriptGeneratorConfig = DEFAULT_SCRIPT_GENERATOR_CONFIG,
        *,
        strategies: Mapping[str, ScriptStrategy] = SCRIPT_STRATEGIES,
        clock: WallClock = utc_now,
        logger: Any | None = None,
    ) -> None:
        self._store = store
        self._config = config
        self._strategies = strategies
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def generate(self, candidate: PromotionCandidate) -> GeneratedScript:
        key = candidate.key
        representative = self.find_representative_pair(candidate)
        tool_input: Mapping[str, object] = representative.input if representative else {}

        body, supported = build_script_body(candidate.tool_name, tool_input, self._strategies)
        content = self._header(candidate) + "\n" + body.body + "\n"

        operation = OffloadOperation(
            id=key.id,
            script=content,
            script_type=body.script_type,
            working_dir=self._config.default_working_dir,
            timeout=self._config.default_timeout_ms,
            env={},
            label=f"Auto-promoted {candidate.tool_name} operation",
        )
        generated = GeneratedScript(
            operation=operation,
            source_candidate=candidate,
            script_content=content,
            is_valid=supported,
            expected_output_hash=representative.output_hash if representative else None,
        )
        self._logger.info(
            "offload_script_generated",
            operation_id=key.id,
            is_valid=supported,
            has_baseline=generated.expected_output_hash is not None,
        )
        return generated

    def find_representative_pair(self, candidate: PromotionCandidate) -> ToolExecutionPair | None:
        """Return the first complete recorded pair with the candidate's tool and input hash."""

        key = candidate.key
        for batch in load_batches(self._store, logger=self._logger):
            for pair in batch.complete_pairs():
                if pair.tool_name == candidate.tool_name and pair.operation_key == key:
                    return pair
        return None

    def _header(self, candidate: PromotionCandidate) -> str:
        score = candidate.operation.score
        return "\n".join(
            (
                "#!/bin/bash",
                _HEADER_RULE,
                "# Auto-generated by tool-offload promotion pipeline",
                f"# Source pattern: {candidate.key.id}",
                f"# Confidence: {candidate.composite_score}",
                f"# Sessions: {len(score.session_ids)}",
                f"# Observations: {candidate.frequency}",
                f"# Generated: {self._clock().isoformat()}",
                _HEADER_RULE,
            )
        )


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


def _heredoc_delimiter(content: str) -> str:
    lines = set(content.split("\n"))
    delimiter = _HEREDOC_DELIMITER
    suffix = 0
    while delimiter in lines:
        suffix += 1
        delimiter = f"{_HEREDOC_DELIMITER}_{suffix}"
    return delimiter


__all__ = [
    "DEFAULT_SCRIPT_GENERATOR_CONFIG",
    "SCRIPT_STRATEGIES",
    "ScriptBody",
    "ScriptGenerator",
    "ScriptGeneratorConfig",
    "ScriptStrategy",
    "build_script_body",
    "unsupported_body",
]
