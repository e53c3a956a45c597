"""
tool-offload — unit tests for config schema

File: tests/unit/config/test_schema.py

Purpose
- Validate strict schema rules, structured issues, and redaction.

What this test file should cover
- Defaults validate cleanly and deep copies are independent.
- Unknown and sensitive fields are rejected with distinct messages.
- Type, range, and cross-field rules report field paths.
- Schema version mismatches carry migration guidance.
"""

from __future__ import annotations

import pytest

from tool_offload.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)


def _issues(config: object) -> dict[str, str]:
    return {issue.path: issue.message for issue in validate_config(config).issues}


@pytest.mark.unit
def test_defaults_are_valid() -> None:
    result = validate_config(default_config())

    assert result.is_valid
    assert result.config == DEFAULT_CONFIG


@pytest.mark.unit
def test_default_config_returns_independent_copy() -> None:
    config = default_config()
    config["drift"]["sensitivity"] = 99

    assert DEFAULT_CONFIG["drift"]["sensitivity"] == 3


@pytest.mark.unit
def test_non_mapping_root_is_rejected() -> None:
    assert _issues(["nope"]) == {"<root>": "expected object, got list"}


@pytest.mark.unit
def test_unknown_and_sensitive_fields_are_rejected() -> None:
    config = merge_config(
        default_config(),
        {"scripts": {"shell": "zsh", "apiKey": "x"}, "plugins": {}},
    )

    issues = _issues(config)

    assert issues["scripts.shell"] == "unknown field"
    assert issues["scripts.apiKey"] == "embedded secret values are forbidden in offload config"
    assert issues["plugins"] == "unknown field"


@pytest.mark.unit
def test_missing_section_and_field_are_reported() -> None:
    config = default_config()
    del config["gatekeeper"]  # type: ignore[misc]
    del config["drift"]["enabled"]  # type: ignore[misc]

    issues = _issues(config)

    assert issues["gatekeeper"] == "missing required section"
    assert issues["drift.enabled"] == "missing required field"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("overlay", "path", "message"),
    [
        ({"determinism": {"min_sample_size": 0}}, "determinism.min_sample_size", "must be >= 1"),
        ({"promotion": {"min_score": 1.5}}, "promotion.min_score", "must be <= 1.0"),
        ({"rate_limits": {"max_per_hour": "many"}}, "rate_limits.max_per_hour", "expected integer, got str"),
        ({"drift": {"enabled": 1}}, "drift.enabled", "expected boolean, got int"),
        ({"paths": {"patterns_dir": "  "}}, "paths.patterns_dir", "must not be empty"),
        ({"gatekeeper": {"min_observations": True}}, "gatekeeper.min_observations", "expected integer, got bool"),
        (
            {"observability": {"log_level": "verbose"}},
            "observability.log_level",
            "invalid value 'VERBOSE'; expected one of: DEBUG, ERROR, INFO, WARNING",
        ),
    ],
)
def test_field_rules_report_paths(overlay: dict, path: str, message: str) -> None:
    assert _issues(merge_config(default_config(), overlay))[path] == message


@pytest.mark.unit
def test_log_level_is_normalized_to_upper_case() -> None:
    config = assert_valid_config(
        merge_config(default_config(), {"observability": {"log_level": "debug"}})
    )

    assert config["observability"]["log_level"] == "DEBUG"


@pytest.mark.unit
def test_semi_threshold_must_not_exceed_deterministic_threshold() -> None:
    config = merge_config(
        default_config(),
        {"determinism": {"deterministic_threshold": 0.6, "semi_deterministic_threshold": 0.7}},
    )

    assert _issues(config) == {
        "determinism.semi_deterministic_threshold": "must be <= determinism.deterministic_threshold"
    }


@pytest.mark.unit
def test_schema_version_mismatch_carries_migration_guidance() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": 2}})

    assert _issues(config)["meta.schema_version"] == migration_guidance(2)
    assert "upgrade the tool-offload runtime" in migration_guidance(2)
    assert migration_guidance(1) == "schema version is current"


@pytest.mark.unit
def test_assert_valid_config_raises_with_rendered_issues() -> None:
    config = merge_config(default_config(), {"drift": {"sensitivity": 0}})

    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(config)

    assert "- drift.sensitivity: must be >= 1" in str(excinfo.value)
    assert len(excinfo.value.issues) == 1


@pytest.mark.unit
def test_merge_is_deep_and_does_not_mutate_inputs() -> None:
    base = {"a": {"b": 1, "c": [1]}}
    overlay = {"a": {"c": [2]}, "d": 3}

    merged = merge_config(base, overlay)
    merged["a"]["c"].append(9)

    assert merged == {"a": {"b": 1, "c": [2, 9]}, "d": 3}
    assert base == {"a": {"b": 1, "c": [1]}}
    assert overlay == {"a": {"c": [2]}, "d": 3}


@pytest.mark.unit
def test_redact_config_masks_sensitive_keys() -> None:
    redacted = redact_config({"auth": {"client_secret": "x", "user": "me"}, "list": [{"token": 1}]})

    assert redacted == {
        "auth": {"client_secret": "<redacted>", "user": "me"},
        "list": [{"token": "<redacted>"}],
    }
    assert redact_config("not a mapping") == {}


@pytest.mark.unit
def test_redact_config_keeps_known_setting_names() -> None:
    redacted = redact_config(default_config())

    assert redacted["observability"]["redact_secrets"] is True
    assert redacted["promotion"]["chars_per_token"] == 4
