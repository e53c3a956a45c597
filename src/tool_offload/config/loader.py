"""
tool-offload — config loader

File: src/tool_offload/config/loader.py

Purpose
- Fold the four config sources into one validated mapping: built-in defaults,
  ``offload.toml``, ``OFFLOAD_*`` environment variables, and explicit overrides.

Functional requirements
- Later sources win: overrides > env > file > defaults.
- Env names are ``OFFLOAD_<SECTION>__<FIELD>``; only keys that exist in the
  defaults are bound, and each value is coerced to the type of its default.
- The file layer is validated on its own before env and overrides apply, so a
  bad file is reported against the file rather than a later layer.
- Path fields are resolved against the directory holding the config file.

Non-functional requirements
- Loading is a pure function of the file contents and the given environment.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from tool_offload.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "offload.toml"
ENV_PREFIX: Final[str] = "OFFLOAD_"
ENV_PATH_SEPARATOR: Final[str] = "__"

ConfigPath = tuple[str, ...]


class ConfigLoadError(ValueError):
    """A config source could not be read or one of its values could not be coerced."""


def _parse_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if lowered in {"0", "false", "f", "no", "n", "off"}:
        return False
    raise ValueError(raw)


# Checked in order: bool before int because bool is an int subclass.
_COERCERS: Final[tuple[tuple[type, Callable[[str], object], str], ...]] = (
    (bool, _parse_bool, "a boolean (true/false/1/0/yes/no/on/off)"),
    (int, int, "an integer"),
    (float, float, "a number"),
    (str, str, "a string"),
)


@dataclass(frozen=True, slots=True)
class EnvBinding:
    """One environment variable mapped onto a config key with a typed default."""

    env_name: str
    path: ConfigPath
    default: object

    def coerce(self, raw: str) -> object:
        value = raw.strip()
        for kind, parse, label in _COERCERS:
            if isinstance(self.default, kind):
                try:
                    return parse(value)
                except ValueError as exc:
                    dotted = ".".join(self.path)
                    raise ConfigLoadError(
                        f"{self.env_name} -> {dotted} must be {label}"
                    ) from exc
        return value


def env_name_for_path(path: ConfigPath) -> str:
    return ENV_PREFIX + ENV_PATH_SEPARATOR.join(part.upper() for part in path)


def env_bindings(defaults: Mapping[str, object] = DEFAULT_CONFIG) -> dict[str, EnvBinding]:
    """Return every bindable env name keyed by name."""

    return {
        env_name_for_path(path): EnvBinding(env_name_for_path(path), path, value)
        for path, value in _leaves(defaults)
    }


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    Without ``config_path`` an ``offload.toml`` in the working directory is used
    when present; an explicit path that does not exist is an error.
    """

    source = (
        Path(config_path).expanduser().resolve()
        if config_path is not None
        else (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    )
    env = os.environ if environ is None else environ

    config = assert_valid_config(
        merge_config(default_config(), _read_toml(source, required=config_path is not None))
    )
    for layer in (_env_layer(env), _override_layer(cli_overrides or {})):
        config = merge_config(config, layer)
    config = assert_valid_config(config)

    return normalize_paths(config, base_dir=source.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Return a copy of ``config`` with relative path fields anchored at ``base_dir``."""

    resolved = merge_config({}, config)
    for path in PATH_FIELDS:
        section = resolved.get(path[0])
        if not isinstance(section, dict) or not isinstance(section.get(path[1]), str):
            continue
        candidate = Path(os.path.expandvars(section[path[1]])).expanduser()
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        section[path[1]] = Path(os.path.normpath(candidate)).as_posix()
    return resolved


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Serialize the redacted config as canonical JSON."""

    return json.dumps(
        redact_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for name, binding in sorted(env_bindings().items()):
        if name in environ:
            _plant(layer, binding.path, binding.coerce(environ[name]))
    return layer


def _override_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted in sorted(overrides):
        path = tuple(part for part in dotted.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid override key {dotted!r}")
        value = overrides[dotted]
        if isinstance(value, Mapping):
            existing = _dig(layer, path)
            value = merge_config(existing if isinstance(existing, Mapping) else {}, value)
        _plant(layer, path, value)
    return layer


def _leaves(
    payload: Mapping[str, object], prefix: ConfigPath = ()
) -> Iterator[tuple[ConfigPath, object]]:
    for key in sorted(payload):
        value = payload[key]
        if isinstance(value, Mapping):
            yield from _leaves(value, (*prefix, key))
        else:
            yield (*prefix, key), value


def _plant(target: dict[str, Any], path: ConfigPath, value: object) -> None:
    node = target
    for part in path[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[path[-1]] = value


def _dig(payload: Mapping[str, object], path: ConfigPath) -> object | None:
    node: object = payload
    for part in path:
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ENV_PATH_SEPARATOR",
    "ENV_PREFIX",
    "ConfigLoadError",
    "EnvBinding",
    "dump_effective_config",
    "env_bindings",
    "env_name_for_path",
    "load_config",
    "normalize_paths",
]
