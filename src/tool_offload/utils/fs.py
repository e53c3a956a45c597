"""
tool-offload — filesystem helpers

File: src/tool_offload/utils/fs.py

Purpose
- Line appends for the JSONL stores, whole-file replacement for truncation,
  and the workspace containment check used by the script executor.

Functional requirements
- ``append_line`` issues one ``O_APPEND`` write per line, so a line is never
  split even when another process appends to the same file.
- ``atomic_write`` never leaves a half-written target behind.

Non-functional requirements
- In-process serialization is the caller's job (``KeyedLocks``).
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

_APPEND_FLAGS = os.O_WRONLY | os.O_CREAT | os.O_APPEND


def append_line(path: PathLike, line: str, *, encoding: str = "utf-8") -> None:
    """Append ``line`` and a trailing newline, creating parent directories as needed."""

    if "\n" in line:
        raise ValueError("line must not contain newline characters")
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = memoryview((line + "\n").encode(encoding))

    descriptor = os.open(target, _APPEND_FLAGS, 0o644)
    try:
        while payload:
            written = os.write(descriptor, payload)
            payload = payload[written:]
        os.fsync(descriptor)
    finally:
        os.close(descriptor)


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """Replace ``path`` with ``data`` via a synced sibling temp file and ``os.replace``."""

    target = Path(path)
    directory = target.parent.resolve(strict=True)
    payload = data if isinstance(data, bytes) else data.encode(encoding)

    with tempfile.NamedTemporaryFile(
        "wb", dir=directory, prefix=f".{target.name}.", suffix=".tmp", delete=False
    ) as staging:
        staging_path = Path(staging.name)
        try:
            staging.write(payload)
            staging.flush()
            os.fsync(staging.fileno())
        except BaseException:
            staging.close()
            with contextlib.suppress(OSError):
                staging_path.unlink()
            raise

    try:
        os.replace(staging_path, target)
    except BaseException:
        with contextlib.suppress(OSError):
            staging_path.unlink()
        raise


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Whether existing ``child`` resolves to ``parent`` or somewhere beneath it."""

    try:
        root = Path(parent).resolve(strict=True)
        candidate = Path(child).resolve(strict=True)
    except (FileNotFoundError, NotADirectoryError):
        return False
    return root.is_dir() and candidate.is_relative_to(root)


__all__ = [
    "append_line",
    "atomic_write",
    "is_within",
]
