"""
tool-offload — structured logging

File: src/tool_offload/observability/logging.py

Purpose
- Write every offload decision event as one JSON object per line to
  ``<log_dir>/<run_id>/offload.jsonl``.
- Carry correlation ids (run, session, operation) onto every line without
  threading them through call signatures.

Functional requirements
- Components log through ``structlog``; ``setup_structured_logging`` points
  structlog at the stdlib logger tree so structlog events and plain
  ``logging`` records share one sink.
- Correlation ids live in structlog's context variables; ``correlation_scope``
  binds them for a block and the queue handler snapshots them on the emitting
  thread.
- Correlation keys are top-level JSON keys; every other extra lands under
  ``fields``. Secret-looking keys and inline credentials are masked.

Non-functional requirements
- Emitting never blocks: records go through a bounded queue and are counted,
  not waited on, when it is full.
- ``shutdown_logging`` drains the queue, closes sinks and restores structlog
  defaults; it is safe to call repeatedly.
"""

from __future__ import annotations

import atexit
import json
import logging
import logging.handlers
import math
import queue
import re
import threading
import time
import uuid
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Final

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]

DEFAULT_LOGGER_NAME: Final[str] = "tool_offload"
REDACTED: Final[str] = "***REDACTED***"

CORRELATION_KEYS: Final[tuple[str, ...]] = (
    "run_id",
    "correlation_id",
    "session_id",
    "operation_id",
)

# Attributes every LogRecord carries; anything else on a record is an extra.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    logging.makeLogRecord({}).__dict__
) | {"message", "asctime", "taskName"}
_SNAPSHOT_ATTRIBUTE: Final[str] = "offload_context"


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Settings for one run's JSON-lines sink; ``run_id`` is generated when omitted."""

    log_dir: Path | str = Path("logs")
    level: int | str = "INFO"
    redact_secrets: bool = True
    console: bool = False
    run_id: str | None = None
    logger_name: str = DEFAULT_LOGGER_NAME
    queue_size: int = 4096
    log_filename: str = "offload.jsonl"


@dataclass(frozen=True, slots=True)
class SecretRedactor:
    """Mask values under secret-looking keys and credentials embedded in text."""

    key_terms: tuple[str, ...] = (
        "secret",
        "token",
        "password",
        "passphrase",
        "api_key",
        "apikey",
        "authorization",
        "credential",
        "cookie",
        "private_key",
    )
    assignment: re.Pattern[str] = re.compile(
        r"(?i)\b(api[_-]?key|token|password|secret|client_secret|authorization)\b(\s*[:=]\s*)[^\s,;]+"
    )
    bearer: re.Pattern[str] = re.compile(r"(?i)\bbearer\s+[\w.~+/-]+=*")

    def __call__(self, value: JSONValue) -> JSONValue:
        if isinstance(value, str):
            return self.redact_text(value)
        if isinstance(value, list):
            return [self(item) for item in value]
        if isinstance(value, dict):
            return {
                key: REDACTED if self.is_sensitive_key(key) else self(item)
                for key, item in value.items()
            }
        return value

    def is_sensitive_key(self, key: str) -> bool:
        lowered = key.lower()
        return any(term in lowered for term in self.key_terms)

    def redact_text(self, text: str) -> str:
        masked = self.assignment.sub(rf"\1\2{REDACTED}", text)
        return self.bearer.sub(f"Bearer {REDACTED}", masked)


_DEFAULT_REDACTOR: Final[SecretRedactor] = SecretRedactor()


def default_log_redactor(value: JSONValue) -> JSONValue:
    return _DEFAULT_REDACTOR(value)


def _passthrough(value: JSONValue) -> JSONValue:
    return value


class _SnapshotQueueHandler(logging.handlers.QueueHandler):
    """Enqueue without blocking and pin the caller's correlation context on each record."""

    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The listener thread has its own context, so capture it here.
        setattr(record, _SNAPSHOT_ATTRIBUTE, structlog.contextvars.get_contextvars())
        return super().prepare(record)

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


class OffloadJsonFormatter(logging.Formatter):
    """Render a record as one sorted, compact JSON object."""

    def __init__(self, *, run_id: str, redactor: LogRedactor) -> None:
        super().__init__()
        self._run_id = run_id
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, JSONValue] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": self._redacted_text(record.getMessage()),
            "run_id": self._run_id,
        }

        snapshot = getattr(record, _SNAPSHOT_ATTRIBUTE, None) or {}
        extras: dict[str, object] = {}
        for source in (snapshot, _record_extras(record)):
            for key, value in source.items():
                if key in CORRELATION_KEYS:
                    if isinstance(value, str) and value.strip():
                        payload[key] = value.strip()
                else:
                    extras[key] = value
        if extras:
            payload["fields"] = self._redactor(to_json_value(extras))

        if record.exc_info:
            payload["exception"] = self._redacted_text(self.formatException(record.exc_info))

        return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def _redacted_text(self, text: str) -> str:
        redacted = self._redactor(text)
        return redacted if isinstance(redacted, str) else json.dumps(redacted, sort_keys=True)


def _record_extras(record: logging.LogRecord) -> dict[str, object]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRIBUTES
        and key != _SNAPSHOT_ATTRIBUTE
        and not key.startswith("_")
    }


def to_json_value(value: object) -> JSONValue:
    """Coerce arbitrary log payloads into JSON-safe values."""

    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else repr(value)
    if isinstance(value, Enum):
        return to_json_value(value.value)
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat().replace("+00:00", "Z")
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): to_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((to_json_value(item) for item in value), key=repr)
    return repr(value)


@dataclass(eq=False)
class StructuredLoggingHandle:
    """A running sink: the configured logger plus the listener feeding its files."""

    logger: logging.Logger
    run_id: str
    log_path: Path
    _handler: _SnapshotQueueHandler
    _listener: logging.handlers.QueueListener
    _sinks: tuple[logging.Handler, ...]
    _closed: bool = False
    _close_lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def dropped_records(self) -> int:
        return self._handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        pending = self._handler.queue
        while getattr(pending, "unfinished_tasks", 0) and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._close_lock:
            if self._closed:
                return
            self.flush(timeout_seconds=timeout_seconds)
            self._listener.stop()
            self.logger.removeHandler(self._handler)
            self._handler.close()
            for sink in self._sinks:
                sink.close()
            self._closed = True


_active: StructuredLoggingHandle | None = None
_active_lock = threading.Lock()
_atexit_installed = False


def configure_structlog() -> None:
    """Send structlog events through stdlib logging; event keys become record extras."""

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def setup_structured_logging(config: LoggingConfig | None = None) -> StructuredLoggingHandle:
    """Start a JSON-lines sink for one run, replacing any sink already active."""

    global _active, _atexit_installed

    config = config or LoggingConfig()
    run_id = _checked_name(config.run_id or new_run_id(), "run_id")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    filename = _checked_name(config.log_filename, "log_filename")
    level = _level_number(config.level)

    with _active_lock:
        previous, _active = _active, None
    if previous is not None:
        previous.shutdown()

    log_path = Path(config.log_dir) / run_id / filename
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = OffloadJsonFormatter(
        run_id=run_id,
        redactor=default_log_redactor if config.redact_secrets else _passthrough,
    )
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.console:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(config.logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False

    handler = _SnapshotQueueHandler(queue.Queue(maxsize=config.queue_size))
    handler.setLevel(level)
    listener = logging.handlers.QueueListener(
        handler.queue, *sinks, respect_handler_level=True
    )
    listener.start()
    logger.addHandler(handler)
    configure_structlog()

    handle = StructuredLoggingHandle(
        logger=logger,
        run_id=run_id,
        log_path=log_path,
        _handler=handler,
        _listener=listener,
        _sinks=tuple(sinks),
    )
    with _active_lock:
        _active = handle
        if not _atexit_installed:
            atexit.register(shutdown_logging)
            _atexit_installed = True
    return handle


def shutdown_logging(
    handle: StructuredLoggingHandle | None = None,
    *,
    timeout_seconds: float = 2.0,
) -> None:
    """Close ``handle`` (default: the active sink) and restore structlog defaults."""

    global _active

    target = handle if handle is not None else get_active_logging_handle()
    if target is None:
        return
    target.shutdown(timeout_seconds=timeout_seconds)

    with _active_lock:
        if _active is target:
            _active = None
            structlog.reset_defaults()


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _active_lock:
        return _active


def new_run_id() -> str:
    return f"{datetime.now(tz=UTC):%Y%m%dT%H%M%SZ}-{uuid.uuid4().hex[:8]}"


def get_correlation_context() -> dict[str, str]:
    return {
        key: value
        for key, value in structlog.contextvars.get_contextvars().items()
        if isinstance(value, str)
    }


def set_correlation_fields(**fields: str | None) -> Mapping[str, object]:
    """Bind correlation ids for the current context, skipping ``None`` values.

    Returns reset tokens for :func:`reset_correlation_fields`.
    """

    to_bind: dict[str, str] = {}
    for key, value in fields.items():
        if value is None:
            continue
        cleaned = value.strip() if isinstance(value, str) else ""
        if not cleaned:
            raise ValueError(f"correlation value for {key!r} must be a non-empty string")
        to_bind[key] = cleaned

    return structlog.contextvars.bind_contextvars(**to_bind)


def reset_correlation_fields(tokens: Mapping[str, object]) -> None:
    structlog.contextvars.reset_contextvars(**tokens)


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    tokens = set_correlation_fields(**fields)
    try:
        yield
    finally:
        reset_correlation_fields(tokens)


def _checked_name(value: str, label: str) -> str:
    cleaned = value.strip()
    if not cleaned:
        raise ValueError(f"{label} must not be empty")
    if Path(cleaned).name != cleaned:
        raise ValueError(f"{label} must not include path separators")
    return cleaned


def _level_number(value: int | str) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(value.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return resolved


__all__ = [
    "CORRELATION_KEYS",
    "DEFAULT_LOGGER_NAME",
    "JSONScalar",
    "JSONValue",
    "LogRedactor",
    "LoggingConfig",
    "OffloadJsonFormatter",
    "SecretRedactor",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "new_run_id",
    "reset_correlation_fields",
    "set_correlation_fields",
    "setup_structured_logging",
    "shutdown_logging",
    "to_json_value",
]
