"""
tool-offload — package root

File: src/tool_offload/__init__.py

Purpose
- Identify captured tool operations that are safe to replace with verified scripts.

Import boundary
- No side effects at import time (no config loading, no logging init).
- Submodules are imported by callers; the root only exposes the version.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
