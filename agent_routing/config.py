# Copyright 2025 ATP Project Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Engine configuration.

Loads tunables from a YAML file with ``${VAR:default}`` substitution and
``ROUTING_*`` environment overrides, then validates them into ``EngineConfig``.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import pydantic
import yaml
from pydantic import BaseModel, Field

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "configs" / "routing.yaml"


class SelectionConfig(BaseModel):
    beam_width: int = Field(default=5, ge=1)
    diversity_weight: float = Field(default=10.0, ge=0.0)
    max_alternatives_per_role: int = Field(default=5, ge=1)
    max_per_provider_per_role: int = Field(default=2, ge=1)
    max_providers_per_role: int = Field(default=6, ge=1)


class AnomalyConfig(BaseModel):
    window_size: int = Field(default=40, ge=2)
    min_samples: int = Field(default=8, ge=2)
    latency_spike_factor: float = 1.8
    cost_spike_factor: float = 1.7
    fallback_spike_factor: float = 1.8
    fallback_spike_floor: float = 0.25
    success_drop_margin: float = 0.10
    success_drop_ceiling: float = 0.85


class ShadowConfig(BaseModel):
    enabled: bool = True
    min_samples: int = Field(default=30, ge=1)
    regression_threshold: float = Field(default=0.08, ge=0.0)
    promote_threshold: float = Field(default=0.06, ge=0.0)
    max_latency_regression_pct: float = 0.35


class CanaryConfig(BaseModel):
    min_samples: int = Field(default=30, ge=1)
    promote_threshold: float = 0.05
    rollback_threshold: float = -0.08
    max_latency_regression_pct: float = 0.2
    max_cost_increase_pct: float = 0.2
    min_success_drop_pct: float = 0.05
    circuit_breaker_ttl_s: float = Field(default=15 * 60.0, gt=0)


class QAgentConfig(BaseModel):
    alpha: float = Field(default=0.12, gt=0.0, le=1.0)
    gamma: float = Field(default=0.9, ge=0.0, le=1.0)
    epsilon: float = Field(default=0.08, ge=0.0, le=1.0)
    initial_value: float = 0.0


class CostBudgetConfig(BaseModel):
    daily_usd_limit: float | None = Field(default=None, ge=0)
    monthly_usd_limit: float | None = Field(default=None, ge=0)
    enforcement: str = Field(default="warn", pattern="^(hard|block|soft|warn)$")


class ExperimentsConfig(BaseModel):
    metrics_window: int = Field(default=2000, ge=1)


class FallbackConfig(BaseModel):
    always_free_model: str = "opencode/big-pickle"
    forecast_horizon_days: int = Field(default=14, ge=1)
    quota_warning_daily_remaining: int = Field(default=50, ge=0)


class EngineConfig(BaseModel):
    selection: SelectionConfig = Field(default_factory=SelectionConfig)
    anomaly: AnomalyConfig = Field(default_factory=AnomalyConfig)
    shadow: ShadowConfig = Field(default_factory=ShadowConfig)
    canary: CanaryConfig = Field(default_factory=CanaryConfig)
    q_agent: QAgentConfig = Field(default_factory=QAgentConfig)
    cost_budget: CostBudgetConfig = Field(default_factory=CostBudgetConfig)
    experiments: ExperimentsConfig = Field(default_factory=ExperimentsConfig)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)


class ConfigLoader:
    """YAML configuration loader with environment variable override support."""

    ENV_MAPPINGS = {
        "ROUTING_BEAM_WIDTH": "selection.beam_width",
        "ROUTING_DIVERSITY_WEIGHT": "selection.diversity_weight",
        "ROUTING_MAX_ALTERNATIVES": "selection.max_alternatives_per_role",
        "ROUTING_ANOMALY_MIN_SAMPLES": "anomaly.min_samples",
        "ROUTING_SHADOW_ENABLED": "shadow.enabled",
        "ROUTING_SHADOW_MIN_SAMPLES": "shadow.min_samples",
        "ROUTING_CANARY_MIN_SAMPLES": "canary.min_samples",
        "ROUTING_CIRCUIT_TTL_S": "canary.circuit_breaker_ttl_s",
        "ROUTING_Q_ALPHA": "q_agent.alpha",
        "ROUTING_Q_GAMMA": "q_agent.gamma",
        "ROUTING_Q_EPSILON": "q_agent.epsilon",
        "ROUTING_DAILY_USD_LIMIT": "cost_budget.daily_usd_limit",
        "ROUTING_MONTHLY_USD_LIMIT": "cost_budget.monthly_usd_limit",
        "ROUTING_COST_ENFORCEMENT": "cost_budget.enforcement",
        "ROUTING_FREE_FALLBACK_MODEL": "fallback.always_free_model",
    }

    def __init__(self, config_path: str | Path | None = None):
        self.config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    def load(self) -> EngineConfig:
        """Load, override and validate the configuration."""
        raw: dict[str, Any] = {}
        if self.config_path.exists():
            logger.info(f"Loading routing config from {self.config_path}")
            raw = self._read_yaml_file(self.config_path)
        else:
            logger.info(f"No routing config at {self.config_path}; using defaults")

        raw = self._override_with_env_vars(raw)
        try:
            return EngineConfig.model_validate(raw)
        except pydantic.ValidationError as e:
            raise ConfigurationError(f"Invalid routing configuration: {e}") from e

    def _read_yaml_file(self, file_path: Path) -> dict[str, Any]:
        try:
            content = file_path.read_text(encoding="utf-8")
            config = yaml.safe_load(self._substitute_env_vars(content))
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config from {file_path}: {e}")
            raise ConfigurationError(f"Unreadable routing configuration {file_path}: {e}") from e
        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ConfigurationError(f"Routing configuration {file_path} must be a mapping")
        return config

    def _substitute_env_vars(self, content: str) -> str:
        """Replace ``${VAR}`` and ``${VAR:default}`` with environment values."""

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            if ":" in var_name:
                var_name, default_value = var_name.split(":", 1)
                return os.getenv(var_name, default_value)
            return os.getenv(var_name, match.group(0))

        return re.sub(r"\$\{([^}]+)\}", replace_var, content)

    def _override_with_env_vars(self, config: dict[str, Any]) -> dict[str, Any]:
        for env_var, config_path in self.ENV_MAPPINGS.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                self._set_nested_value(config, config_path, self._convert_value(env_value))
        return config

    def _set_nested_value(self, config: dict[str, Any], path: str, value: Any) -> None:
        keys = path.split(".")
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _convert_value(self, value: str) -> Any:
        if value.lower() in ("true", "false"):
            return value.lower() == "true"
        try:
            return int(value)
        except ValueError:
            pass
        try:
            return float(value)
        except ValueError:
            pass
        return value


def load_config(path: str | Path | None = None) -> EngineConfig:
    """Load the engine configuration from ``path`` (or the bundled default)."""
    return ConfigLoader(path).load()
