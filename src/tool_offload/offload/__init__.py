"""Replacement script synthesis, sandboxed execution, and dry-run verification."""

from tool_offload.offload.dry_run import DryRunValidator
from tool_offload.offload.executor import (
    ExecutionPolicyError,
    ScriptExecutionError,
    ScriptExecutionResult,
    ScriptExecutor,
)
from tool_offload.offload.script_generator import (
    DEFAULT_SCRIPT_GENERATOR_CONFIG,
    SCRIPT_STRATEGIES,
    ScriptBody,
    ScriptGenerator,
    ScriptGeneratorConfig,
    build_script_body,
)

__all__ = [
    "DEFAULT_SCRIPT_GENERATOR_CONFIG",
    "SCRIPT_STRATEGIES",
    "DryRunValidator",
    "ExecutionPolicyError",
    "ScriptBody",
    "ScriptExecutionError",
    "ScriptExecutionResult",
    "ScriptExecutor",
    "ScriptGenerator",
    "ScriptGeneratorConfig",
    "build_script_body",
]
