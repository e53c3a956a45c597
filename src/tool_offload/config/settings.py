"""Typed component configs built from a validated config mapping."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from tool_offload.config.loader import load_config
from tool_offload.config.schema import assert_valid_config
from tool_offload.observation.determinism_analyzer import DeterminismConfig
from tool_offload.observation.drift_monitor import DriftMonitorConfig
from tool_offload.observation.promotion_detector import PromotionDetectorConfig
from tool_offload.observation.promotion_evaluator import PromotionCriteria
from tool_offload.observation.promotion_gatekeeper import GatekeeperConfig
from tool_offload.observability.logging import LoggingConfig
from tool_offload.offload.script_generator import ScriptGeneratorConfig
from tool_offload.safety.rate_limiter import RateLimitConfig


@dataclass(frozen=True, slots=True)
class OffloadSettings:
    determinism: DeterminismConfig
    promotion_criteria: PromotionCriteria
    detector: PromotionDetectorConfig
    rate_limits: RateLimitConfig
    gatekeeper: GatekeeperConfig
    scripts: ScriptGeneratorConfig
    dry_run_concurrency: int
    drift: DriftMonitorConfig
    patterns_dir: Path
    workspace_root: Path
    logging: LoggingConfig

    @classmethod
    def from_mapping(cls, config: Mapping[str, object]) -> OffloadSettings:
        validated = assert_valid_config(config)
        determinism = validated["determinism"]
        promotion = validated["promotion"]
        scripts = validated["scripts"]
        paths = validated["paths"]
        observability = validated["observability"]

        return cls(
            determinism=DeterminismConfig(**determinism),
            promotion_criteria=PromotionCriteria(min_score=promotion["min_score"]),
            detector=PromotionDetectorConfig(
                min_determinism=promotion["min_determinism"],
                min_confidence=promotion["min_confidence"],
                chars_per_token=promotion["chars_per_token"],
            ),
            rate_limits=RateLimitConfig(**validated["rate_limits"]),
            gatekeeper=GatekeeperConfig(**validated["gatekeeper"]),
            scripts=ScriptGeneratorConfig(
                default_timeout_ms=scripts["default_timeout_ms"],
                default_working_dir=scripts["default_working_dir"],
            ),
            dry_run_concurrency=scripts["max_concurrency"],
            drift=DriftMonitorConfig(**validated["drift"]),
            patterns_dir=Path(paths["patterns_dir"]),
            workspace_root=Path(paths["workspace_root"]),
            logging=LoggingConfig(
                log_dir=Path(observability["log_dir"]),
                level=observability["log_level"],
                redact_secrets=observability["redact_secrets"],
                console=observability["console"],
            ),
        )

    @classmethod
    def load(
        cls,
        config_path: str | Path | None = None,
        *,
        cli_overrides: Mapping[str, object] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> OffloadSettings:
        loaded: dict[str, Any] = load_config(
            config_path, cli_overrides=cli_overrides, environ=environ
        )
        return cls.from_mapping(loaded)


__all__ = ["OffloadSettings"]
