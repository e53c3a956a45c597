"""
tool-offload — config schema

File: src/tool_offload/config/schema.py

Purpose
- Built-in defaults for every ``offload.toml`` section plus the strict rules a
  merged config must satisfy before ``OffloadSettings`` is built from it.

Functional requirements
- Every problem is reported as a dotted field path and a message; validation
  never stops at the first failure.
- Unknown keys are rejected. Unknown keys that look like credentials get their
  own message so secrets stay out of the config file.
- ``determinism.semi_deterministic_threshold`` may not exceed
  ``determinism.deterministic_threshold``.
- A ``meta.schema_version`` other than the supported one is rejected with
  migration guidance.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, Protocol, TypedDict

from tool_offload.constants import CONFIG_SCHEMA_VERSION

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

REDACTED_VALUE: Final[str] = "<redacted>"

# Resolved against the directory of the config file by the loader.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "patterns_dir"),
    ("paths", "workspace_root"),
    ("observability", "log_dir"),
)

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_WORD_SPLIT = re.compile(r"[^a-z0-9]+")
_SECRET_WORDS: Final[frozenset[str]] = frozenset(
    {"secret", "secrets", "token", "password", "passwd", "apikey", "credential", "credentials"}
)
_SECRET_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "private_key",
)


class MetaConfig(TypedDict):
    schema_version: int


class DeterminismSection(TypedDict):
    min_sample_size: int
    deterministic_threshold: float
    semi_deterministic_threshold: float


class PromotionSection(TypedDict):
    min_score: float
    min_determinism: float
    min_confidence: float
    chars_per_token: int


class RateLimitsSection(TypedDict):
    max_per_session: int
    max_per_hour: int


class GatekeeperSection(TypedDict):
    min_determinism: float
    min_confidence: float
    min_observations: int


class ScriptsSection(TypedDict):
    default_timeout_ms: int
    default_working_dir: str
    max_concurrency: int


class DriftSection(TypedDict):
    sensitivity: int
    enabled: bool


class PathsSection(TypedDict):
    patterns_dir: str
    workspace_root: str


class ObservabilitySection(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    redact_secrets: bool
    console: bool


class OffloadConfig(TypedDict):
    meta: MetaConfig
    determinism: DeterminismSection
    promotion: PromotionSection
    rate_limits: RateLimitsSection
    gatekeeper: GatekeeperSection
    scripts: ScriptsSection
    drift: DriftSection
    paths: PathsSection
    observability: ObservabilitySection


DEFAULT_CONFIG: Final[OffloadConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "determinism": {
        "min_sample_size": 3,
        "deterministic_threshold": 0.95,
        "semi_deterministic_threshold": 0.7,
    },
    "promotion": {
        "min_score": 0.3,
        "min_determinism": 0.95,
        "min_confidence": 0.0,
        "chars_per_token": 4,
    },
    "rate_limits": {
        "max_per_session": 50,
        "max_per_hour": 200,
    },
    "gatekeeper": {
        "min_determinism": 0.95,
        "min_confidence": 0.85,
        "min_observations": 5,
    },
    "scripts": {
        "default_timeout_ms": 30000,
        "default_working_dir": ".",
        "max_concurrency": 4,
    },
    "drift": {
        "sensitivity": 3,
        "enabled": True,
    },
    "paths": {
        "patterns_dir": ".planning/patterns",
        "workspace_root": ".",
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "redact_secrets": True,
        "console": False,
    },
}



@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """One failed rule, addressed by dotted path (``drift.sensitivity``)."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """The merged config broke at least one rule; ``issues`` lists all of them."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "unknown validation failure"))


class _Rejected(Exception):
    """A single value failed its field rule."""


class _FieldRule(Protocol):
    def check(self, value: object) -> object: ...


def _kind(value: object) -> str:
    return type(value).__name__


@dataclass(frozen=True, slots=True)
class _Integer:
    minimum: int = 1

    def check(self, value: object) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise _Rejected(f"expected integer, got {_kind(value)}")
        if value < self.minimum:
            raise _Rejected(f"must be >= {self.minimum}")
        return value


@dataclass(frozen=True, slots=True)
class _Fraction:
    """Finite number in ``[0.0, 1.0]``; ints are widened to float."""

    def check(self, value: object) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _Rejected(f"expected number, got {_kind(value)}")
        number = float(value)
        if not math.isfinite(number):
            raise _Rejected("must be finite")
        if number < 0.0:
            raise _Rejected(f"must be >= {0.0}")
        if number > 1.0:
            raise _Rejected(f"must be <= {1.0}")
        return number


@dataclass(frozen=True, slots=True)
class _Flag:
    def check(self, value: object) -> bool:
        if not isinstance(value, bool):
            raise _Rejected(f"expected boolean, got {_kind(value)}")
        return value


@dataclass(frozen=True, slots=True)
class _Text:
    """Stripped, non-empty string; path-valued fields also refuse NUL bytes."""

    is_path: bool = False

    def check(self, value: object) -> str:
        if not isinstance(value, str):
            raise _Rejected(f"expected string, got {_kind(value)}")
        text = value.strip()
        if not text:
            raise _Rejected("must not be empty")
        if self.is_path and "\x00" in text:
            raise _Rejected("must not contain NUL bytes")
        return text


@dataclass(frozen=True, slots=True)
class _Choice:
    choices: tuple[str, ...]

    def check(self, value: object) -> str:
        text = _Text().check(value).upper()
        if text not in self.choices:
            expected = ", ".join(sorted(self.choices))
            raise _Rejected(f"invalid value {text!r}; expected one of: {expected}")
        return text


_FRACTION = _Fraction()
_POSITIVE = _Integer(minimum=1)
_FLAG = _Flag()
_PATH = _Text(is_path=True)

_RULES: Final[Mapping[str, Mapping[str, _FieldRule]]] = {
    "meta": {"schema_version": _POSITIVE},
    "determinism": {
        "min_sample_size": _POSITIVE,
        "deterministic_threshold": _FRACTION,
        "semi_deterministic_threshold": _FRACTION,
    },
    "promotion": {
        "min_score": _FRACTION,
        "min_determinism": _FRACTION,
        "min_confidence": _FRACTION,
        "chars_per_token": _POSITIVE,
    },
    "rate_limits": {"max_per_session": _POSITIVE, "max_per_hour": _POSITIVE},
    "gatekeeper": {
        "min_determinism": _FRACTION,
        "min_confidence": _FRACTION,
        "min_observations": _POSITIVE,
    },
    "scripts": {
        "default_timeout_ms": _POSITIVE,
        "default_working_dir": _PATH,
        "max_concurrency": _POSITIVE,
    },
    "drift": {"sensitivity": _POSITIVE, "enabled": _FLAG},
    "paths": {"patterns_dir": _PATH, "workspace_root": _PATH},
    "observability": {
        "log_level": _Choice(LOG_LEVELS),
        "log_dir": _PATH,
        "redact_secrets": _FLAG,
        "console": _FLAG,
    },
}

_KNOWN_FIELDS: Final[frozenset[str]] = frozenset(
    name for rules in _RULES.values() for name in rules
)


def default_config() -> OffloadConfig:
    """Deep copy of ``DEFAULT_CONFIG`` that callers may mutate."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version == ConfigSchemaVersion:
        return "schema version is current"
    if found_version < ConfigSchemaVersion:
        relation, remedy = "older", "upgrade offload.toml to the current schema"
    else:
        relation, remedy = "newer", "upgrade the tool-offload runtime"
    return (
        f"schema version {found_version} is {relation} than supported "
        f"{ConfigSchemaVersion}; {remedy}"
    )


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Return ``base`` with ``overlay`` merged in, recursing into nested tables.

    Neither input is mutated and the result shares no containers with them.
    """

    merged: dict[str, Any] = {key: _copy_tree(base[key]) for key in sorted(base)}
    for key in sorted(overlay):
        incoming = overlay[key]
        if isinstance(incoming, Mapping):
            current = merged.get(key)
            merged[key] = merge_config(current if isinstance(current, Mapping) else {}, incoming)
        else:
            merged[key] = copy.deepcopy(incoming)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Check ``config`` against every section rule and collect all issues.

    On success ``config`` holds the normalized values (stripped strings,
    upper-cased log level, floats for fractions).
    """

    issues: list[ConfigValidationIssue] = []
    root = _string_keyed(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=tuple(issues))

    issues.extend(_unknown_keys(root, _RULES, prefix=""))
    normalized: dict[str, Any] = {}
    for section, rules in sorted(_RULES.items()):
        if section not in root:
            issues.append(ConfigValidationIssue(section, "missing required section"))
            continue
        table = _string_keyed(root[section], section, issues)
        if table is None:
            continue
        issues.extend(_unknown_keys(table, rules, prefix=f"{section}."))
        normalized[section] = values = {}
        for name, rule in sorted(rules.items()):
            dotted = f"{section}.{name}"
            if name not in table:
                issues.append(ConfigValidationIssue(dotted, "missing required field"))
                continue
            try:
                values[name] = rule.check(table[name])
            except _Rejected as exc:
                issues.append(ConfigValidationIssue(dotted, str(exc)))

    issues.extend(_cross_field_issues(normalized))
    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Copy of ``config`` with credential-looking keys masked, for logs and dumps."""

    if not isinstance(config, Mapping):
        return {}
    return _masked(config)


def _string_keyed(
    value: object, path: str, issues: list[ConfigValidationIssue]
) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.append(ConfigValidationIssue(path, f"expected object, got {_kind(value)}"))
        return None
    table: dict[str, object] = {}
    for key, item in value.items():
        if isinstance(key, str):
            table[key] = item
        else:
            issues.append(
                ConfigValidationIssue(path, f"object key must be string, got {_kind(key)}")
            )
    return table


def _unknown_keys(
    table: Mapping[str, object], known: Mapping[str, object], *, prefix: str
) -> list[ConfigValidationIssue]:
    found = []
    for key in sorted(set(table) - set(known)):
        message = (
            "embedded secret values are forbidden in offload config"
            if _is_secret_key(key)
            else "unknown field"
        )
        found.append(ConfigValidationIssue(prefix + key, message))
    return found


def _cross_field_issues(normalized: Mapping[str, Any]) -> list[ConfigValidationIssue]:
    found = []
    version = normalized.get("meta", {}).get("schema_version")
    if isinstance(version, int) and version != ConfigSchemaVersion:
        found.append(ConfigValidationIssue("meta.schema_version", migration_guidance(version)))

    determinism = normalized.get("determinism", {})
    semi = determinism.get("semi_deterministic_threshold")
    full = determinism.get("deterministic_threshold")
    if semi is not None and full is not None and semi > full:
        found.append(
            ConfigValidationIssue(
                "determinism.semi_deterministic_threshold",
                "must be <= determinism.deterministic_threshold",
            )
        )
    return found


def _is_secret_key(key: object) -> bool:
    if not isinstance(key, str) or key in _KNOWN_FIELDS:
        return False
    words = [word for word in _WORD_SPLIT.split(_CAMEL_BOUNDARY.sub(r"\1_\2", key).lower()) if word]
    snake = "_".join(words)
    return not _SECRET_WORDS.isdisjoint(words) or any(phrase in snake for phrase in _SECRET_PHRASES)


def _copy_tree(value: object) -> object:
    if isinstance(value, Mapping):
        return {key: _copy_tree(value[key]) for key in sorted(value)}
    return copy.deepcopy(value)


def _masked(value: object) -> Any:
    if isinstance(value, Mapping):
        return {
            key: REDACTED_VALUE if _is_secret_key(key) else _masked(value[key])
            for key in sorted(value)
        }
    if isinstance(value, (list, tuple)):
        return [_masked(item) for item in value]
    return value


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "OffloadConfig",
    "PATH_FIELDS",
    "REDACTED_VALUE",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
