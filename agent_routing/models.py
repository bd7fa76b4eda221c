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

"""Data model shared by every routing component.

Records supplied by collaborators (catalog, policy, quota, telemetry,
experiments) are pydantic models validated at the boundary. Derived values
that never leave the engine (scores, verdicts) are plain dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AgentRole(str, Enum):
    """Fixed set of task archetypes that each need a model assignment."""

    ORCHESTRATOR = "orchestrator"
    ORACLE = "oracle"
    DESIGNER = "designer"
    EXPLORER = "explorer"
    LIBRARIAN = "librarian"
    FIXER = "fixer"


ALL_ROLES: tuple[AgentRole, ...] = tuple(AgentRole)


class BillingMode(str, Enum):
    SUBSCRIPTION = "subscription"
    PAYGO = "paygo"


class ModelStatus(str, Enum):
    ACTIVE = "active"
    ALPHA = "alpha"
    BETA = "beta"
    DEPRECATED = "deprecated"


class PolicyMode(str, Enum):
    SUBSCRIPTION_ONLY = "subscription-only"
    PAYGO_ONLY = "paygo-only"
    HYBRID = "hybrid"
    COST_FIRST = "cost-first"
    QUALITY_FIRST = "quality-first"


class PacingMode(str, Enum):
    QUALITY_FIRST = "quality-first"
    BALANCED = "balanced"
    ECONOMY = "economy"


class Enforcement(str, Enum):
    SOFT = "soft"
    HARD = "hard"


class WinnerLayer(str, Enum):
    """Decision layer that produced a role's final assignment."""

    PINNED_MODEL = "pinned-model"
    EXPERIMENT_OVERRIDE = "experiment-override"
    PROVIDER_FALLBACK_POLICY = "provider-fallback-policy"
    SCORING_DEFAULT = "scoring-default"


class Recommendation(str, Enum):
    PROMOTE = "promote"
    HOLD = "hold"
    ROLLBACK = "rollback"


def provider_of(model_id: str) -> str:
    """Provider namespace is the first path segment of a model id."""
    head = model_id.split("/", 1)[0]
    return head or "unknown"


class CatalogModel(BaseModel):
    """A concrete backend model endpoint as supplied by the catalog."""

    model_config = ConfigDict(frozen=True)

    model: str
    provider_id: str = ""
    name: str = ""
    status: ModelStatus = ModelStatus.ACTIVE
    context_limit: int = Field(default=128_000, ge=0)
    output_limit: int = Field(default=16_000, ge=0)
    reasoning: bool = False
    toolcall: bool = False
    attachment: bool = False
    cost_input: float | None = None  # USD per 1M input tokens
    cost_output: float | None = None  # USD per 1M output tokens
    daily_request_limit: int | None = None
    access: BillingMode | None = None  # explicit billing override

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("model"):
            data = dict(data)
            if not data.get("provider_id"):
                data["provider_id"] = provider_of(data["model"])
            if not data.get("name"):
                data["name"] = data["model"]
        return data

    @property
    def blended_cost(self) -> float:
        """Blended per-1M-token price, weighting input 70/30 against output."""
        return (self.cost_input or 0.0) * 0.7 + (self.cost_output or 0.0) * 0.3

    @property
    def is_free(self) -> bool:
        return not (self.cost_input or 0.0) and not (self.cost_output or 0.0)


class SubscriptionBudget(BaseModel):
    daily_requests: int | None = Field(default=None, ge=0)
    monthly_requests: int | None = Field(default=None, ge=0)
    enforcement: Enforcement = Enforcement.SOFT


class PaygoBudget(BaseModel):
    daily_usd_limit: float | None = Field(default=None, ge=0)
    monthly_usd_limit: float | None = Field(default=None, ge=0)


class RoutingPolicy(BaseModel):
    mode: PolicyMode = PolicyMode.HYBRID
    subscription_budget: SubscriptionBudget | None = None
    paygo_budget: PaygoBudget | None = None


class QuotaStatus(BaseModel):
    daily_remaining: int
    monthly_remaining: int
    last_checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PacingPolicy(BaseModel):
    """Provider-specific monthly pacing; only affects that provider's models."""

    mode: PacingMode
    provider: str = "chutes"
    monthly_budget: float | None = None
    monthly_used: float | None = None


class UsageSnapshot(BaseModel):
    date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    calls: int = Field(ge=0)
    by_role: dict[AgentRole, int] = Field(default_factory=dict)


class AgentAssignment(BaseModel):
    model: str
    billing_mode: BillingMode | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    reasoning: str | None = None
    variant: str | None = None


class TelemetrySample(BaseModel):
    """Aggregated runtime metrics for one (role, model) reporting interval."""

    success_rate: float = Field(ge=0.0, le=1.0)
    avg_latency_ms: float = Field(ge=0.0)
    p95_latency_ms: float = Field(default=0.0, ge=0.0)
    avg_cost_usd: float = Field(default=0.0, ge=0.0)
    fallback_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    sample_count: int = Field(default=1, ge=0)
    quality_score: float | None = None


class ExperimentVariant(BaseModel):
    id: str
    description: str = ""
    assignment_overrides: dict[AgentRole, AgentAssignment] = Field(default_factory=dict)


class Experiment(BaseModel):
    id: str
    name: str
    variants: list[ExperimentVariant] = Field(min_length=1)
    allocation: dict[str, float]
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Provenance(BaseModel):
    winner_layer: WinnerLayer
    winner_model: str


class ScoringMeta(BaseModel):
    engine_version_applied: str = "v3"
    shadow_compared: bool = False


class CanaryTrendSummary(BaseModel):
    experiment_id: str | None = None
    promote_count: int = 0
    hold_count: int = 0
    rollback_count: int = 0
    recommended_action: Recommendation = Recommendation.HOLD


class PlanMetadata(BaseModel):
    policy: str
    provider_distribution: dict[str, int] = Field(default_factory=dict)
    estimated_daily_cost_usd: float = 0.0
    quota_pressure: str = "healthy"
    canary_trend: CanaryTrendSummary | None = None


class RoutingPlan(BaseModel):
    agents: dict[AgentRole, AgentAssignment] = Field(default_factory=dict)
    chains: dict[AgentRole, list[str]] = Field(default_factory=dict)
    provenance: dict[AgentRole, Provenance] = Field(default_factory=dict)
    scoring: ScoringMeta = Field(default_factory=ScoringMeta)
    explanations: dict[AgentRole, str] = Field(default_factory=dict)
    metadata: PlanMetadata


@dataclass
class ScoreComponent:
    name: str
    weight: float
    value: float
    normalized_score: float
    description: str

    @property
    def contribution(self) -> float:
        return self.normalized_score * self.weight


@dataclass
class ScoredCandidate:
    role: AgentRole
    model: CatalogModel
    billing_mode: BillingMode
    total_score: float
    components: list[ScoreComponent]
    tier: str

    @property
    def model_id(self) -> str:
        return self.model.model

    @property
    def provider_id(self) -> str:
        return self.model.provider_id


@dataclass
class ScoringContext:
    """Everything besides the model and role that feeds a score."""

    policy: RoutingPolicy
    quota_status: QuotaStatus
    provider_usage: dict[str, int] = field(default_factory=dict)
    pacing: PacingPolicy | None = None

    def with_usage(self, provider_usage: dict[str, int]) -> ScoringContext:
        return ScoringContext(
            policy=self.policy,
            quota_status=self.quota_status,
            provider_usage=provider_usage,
            pacing=self.pacing,
        )


@dataclass
class MetricAggregate:
    """Averaged metrics for one side of a baseline comparison."""

    sample_count: int
    success_rate: float
    avg_latency_ms: float
    avg_cost_usd: float
    fallback_rate: float = 0.0
    quality_score: float | None = None


@dataclass
class CanaryDecision:
    variant_id: str
    recommendation: Recommendation
    sample_count: int
    composite_score: float
    reasons: list[str] = field(default_factory=list)


@dataclass
class RoutingDecisionExplanation:
    role: AgentRole
    selected_model: str
    selected_billing_mode: BillingMode
    score: float
    summary: str
    top_factors: list[str] = field(default_factory=list)
    alternatives: list[dict[str, Any]] = field(default_factory=list)
