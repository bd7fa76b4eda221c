"""Tests for YAML and environment configuration loading."""

import pytest

from agent_routing.config import DEFAULT_CONFIG_PATH, ConfigLoader, EngineConfig, load_config
from agent_routing.errors import ConfigurationError, ErrorCode


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(ConfigLoader.ENV_MAPPINGS) + ["ROUTING_TEST_ENFORCEMENT"]:
        monkeypatch.delenv(name, raising=False)


def write(tmp_path, text: str):
    path = tmp_path / "routing.yaml"
    path.write_text(text)
    return path


def test_bundled_defaults_load():
    """The shipped routing.yaml validates and matches the built-in defaults."""
    assert DEFAULT_CONFIG_PATH.exists()
    config = load_config()
    assert config.anomaly.window_size == 40
    assert config.canary.circuit_breaker_ttl_s == 900
    assert config.cost_budget.enforcement == "warn"
    assert config.fallback.always_free_model == "opencode/big-pickle"


def test_missing_file_uses_defaults(tmp_path):
    """A path that does not exist falls back to model defaults."""
    assert load_config(tmp_path / "absent.yaml") == EngineConfig()


def test_empty_file_uses_defaults(tmp_path):
    """An empty document is treated as no overrides."""
    assert load_config(write(tmp_path, "")) == EngineConfig()


def test_partial_file_merges_with_defaults(tmp_path):
    """Sections not mentioned keep their defaults."""
    config = load_config(write(tmp_path, "selection:\n  beam_width: 3\n"))
    assert config.selection.beam_width == 3
    assert config.selection.max_alternatives_per_role == 5
    assert config.shadow.min_samples == 30


def test_shadow_section_exposes_only_evaluation_settings(tmp_path):
    """Retired shadow keys in older files are ignored rather than carried."""
    config = load_config(write(tmp_path, "shadow:\n  canary_percentage: 5\n  evaluation_period_s: 3600\n"))
    assert set(type(config.shadow).model_fields) == {
        "enabled",
        "min_samples",
        "regression_threshold",
        "promote_threshold",
        "max_latency_regression_pct",
    }
    assert not hasattr(config.shadow, "canary_percentage")


def test_env_overrides_file(tmp_path, monkeypatch):
    """ROUTING_* variables win over file values and are type-converted."""
    monkeypatch.setenv("ROUTING_CANARY_MIN_SAMPLES", "12")
    monkeypatch.setenv("ROUTING_SHADOW_ENABLED", "false")
    monkeypatch.setenv("ROUTING_Q_EPSILON", "0.2")
    config = load_config(write(tmp_path, "canary:\n  min_samples: 50\n"))
    assert config.canary.min_samples == 12
    assert config.shadow.enabled is False
    assert config.q_agent.epsilon == 0.2


def test_placeholder_substitution(tmp_path, monkeypatch):
    """${VAR:default} takes the environment value, else the default."""
    path = write(tmp_path, "cost_budget:\n  enforcement: ${ROUTING_TEST_ENFORCEMENT:hard}\n")
    assert load_config(path).cost_budget.enforcement == "hard"
    monkeypatch.setenv("ROUTING_TEST_ENFORCEMENT", "soft")
    assert load_config(path).cost_budget.enforcement == "soft"


def test_invalid_value_raises(tmp_path):
    """Out-of-range values surface as a configuration error."""
    with pytest.raises(ConfigurationError) as exc:
        load_config(write(tmp_path, "canary:\n  min_samples: 0\n"))
    assert exc.value.code == ErrorCode.CONFIGURATION_ERROR


def test_non_mapping_raises(tmp_path):
    """A top-level list is rejected."""
    with pytest.raises(ConfigurationError):
        load_config(write(tmp_path, "- a\n- b\n"))


def test_malformed_yaml_raises(tmp_path):
    """Unparseable YAML is a configuration error, not a crash."""
    with pytest.raises(ConfigurationError):
        load_config(write(tmp_path, "selection: [unclosed\n"))
