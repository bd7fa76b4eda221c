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

"""Candidate scoring for (model, role) pairs.

The score is a weighted sum of named components so that callers can
explain a decision by pointing at the largest contributions:

- capability fit for the role (reasoning, tool calling, attachments, context)
- latency and cost fit
- billing policy fit and quota pressure
- provider pacing, provider diversity and model maturity

``score_candidate`` is pure: the same inputs always give the same result.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from .models import (
    AgentRole,
    BillingMode,
    CatalogModel,
    ModelStatus,
    PacingMode,
    PolicyMode,
    ScoreComponent,
    ScoredCandidate,
    ScoringContext,
)

logger = logging.getLogger(__name__)

# Per-role importance of each capability dimension (points at 100% fit).
ROLE_WEIGHTS: dict[AgentRole, dict[str, float]] = {
    AgentRole.ORCHESTRATOR: {"reasoning": 24, "toolcall": 20, "attachment": 2, "context": 12, "speed": 4, "cost": 4},
    AgentRole.ORACLE: {"reasoning": 28, "toolcall": 10, "attachment": 2, "context": 16, "speed": 2, "cost": 2},
    AgentRole.DESIGNER: {"reasoning": 10, "toolcall": 14, "attachment": 20, "context": 8, "speed": 4, "cost": 4},
    AgentRole.EXPLORER: {"reasoning": 2, "toolcall": 24, "attachment": 2, "context": 6, "speed": 18, "cost": 10},
    AgentRole.LIBRARIAN: {"reasoning": 8, "toolcall": 22, "attachment": 2, "context": 22, "speed": 6, "cost": 8},
    AgentRole.FIXER: {"reasoning": 10, "toolcall": 20, "attachment": 2, "context": 10, "speed": 14, "cost": 8},
}

# Blended USD per 1M tokens treated as maximal cost intensity for quota pressure.
QUOTA_COST_REFERENCE = 10.0
QUOTA_BASE_PENALTY = 8.0
QUOTA_COST_PENALTY = 60.0

_FAST_PATTERN = re.compile(r"nano|flash|mini|lite|haiku|fast")
_MID_PATTERN = re.compile(r"turbo|small")
_SLOW_PATTERN = re.compile(r"opus|pro|thinking")


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def infer_billing_mode(model: CatalogModel) -> BillingMode:
    """Explicit access wins; otherwise free models ride the subscription."""
    if model.access is not None:
        return model.access
    return BillingMode.SUBSCRIPTION if model.is_free else BillingMode.PAYGO


def context_score(context_limit: int) -> float:
    return clamp(min(context_limit, 1_000_000) / 1_000_000 * 100, 0, 100)


def speed_score(model: CatalogModel) -> float:
    text = f"{model.model} {model.name}".lower()
    if _FAST_PATTERN.search(text):
        return 85
    if _MID_PATTERN.search(text):
        return 70
    if _SLOW_PATTERN.search(text):
        return 35
    return 55


def cost_score(model: CatalogModel) -> float:
    blended = model.blended_cost
    if blended <= 0:
        return 100
    return clamp(100 - blended * 3.5, 0, 100)


def cost_intensity(model: CatalogModel) -> float:
    return clamp(model.blended_cost / QUOTA_COST_REFERENCE, 0, 1)


def quota_remaining_ratio(context: ScoringContext) -> float:
    """Tightest of the daily and monthly remaining ratios (1.0 when unbudgeted)."""
    budget = context.policy.subscription_budget
    ratios = [1.0]
    if budget is not None:
        if budget.daily_requests:
            ratios.append(context.quota_status.daily_remaining / budget.daily_requests)
        if budget.monthly_requests:
            ratios.append(context.quota_status.monthly_remaining / budget.monthly_requests)
    return clamp(min(ratios), 0, 1)


def billing_policy_score(billing_mode: BillingMode, context: ScoringContext) -> float:
    mode = context.policy.mode
    if mode == PolicyMode.SUBSCRIPTION_ONLY:
        return 24 if billing_mode == BillingMode.SUBSCRIPTION else -200
    if mode == PolicyMode.PAYGO_ONLY:
        return 18 if billing_mode == BillingMode.PAYGO else -120
    return 10 if billing_mode == BillingMode.SUBSCRIPTION else 0


def quota_pressure_score(model: CatalogModel, context: ScoringContext) -> float:
    """Penalty that grows as quota drains, steeper for expensive models."""
    ratio = quota_remaining_ratio(context)
    pressure = clamp((0.75 - ratio) / 0.75, 0, 1)
    if pressure <= 0:
        return 0.0
    return -pressure * (QUOTA_BASE_PENALTY + QUOTA_COST_PENALTY * cost_intensity(model))


def diversity_score(model: CatalogModel, context: ScoringContext) -> float:
    usage = context.provider_usage.get(model.provider_id, 0)
    if usage >= 3:
        return -18
    if usage >= 2:
        return -8
    if usage == 0:
        return 6
    return 0


def maturity_score(model: CatalogModel) -> float:
    if model.status == ModelStatus.DEPRECATED or "deprecated" in model.model.lower():
        return -80
    if model.status == ModelStatus.ALPHA:
        return -8
    if model.status == ModelStatus.BETA:
        return 4
    return 10


def pacing_score(model: CatalogModel, role: AgentRole, context: ScoringContext) -> float:
    pacing = context.pacing
    if pacing is None or model.provider_id != pacing.provider:
        return 0.0

    budget = pacing.monthly_budget
    used = pacing.monthly_used or 0.0
    ratio = clamp(used / budget, 0, 1.5) if budget and budget > 0 else 0.0

    efficiency = cost_score(model)
    quality = 100 if model.reasoning else 75 if model.toolcall else 45
    if role in (AgentRole.ORACLE, AgentRole.ORCHESTRATOR):
        role_priority = 1.2
    elif role == AgentRole.DESIGNER:
        role_priority = 1.0
    else:
        role_priority = 0.85

    if pacing.mode == PacingMode.QUALITY_FIRST:
        quality_bonus = quality / 100 * 12 * role_priority
        if ratio >= 0.95:
            return quality_bonus - 16
        if ratio >= 0.85:
            return quality_bonus - 8
        return quality_bonus

    if pacing.mode == PacingMode.BALANCED:
        if ratio < 0.7:
            return 4.0
        return efficiency / 100 * 10 - (ratio - 0.7) * 30

    economy_bonus = efficiency / 100 * 18
    quality_penalty = (100 - quality) / 100 * -4
    if ratio >= 0.6:
        return economy_bonus + quality_penalty + 4
    return economy_bonus + quality_penalty


def score_tier(total: float) -> str:
    if total >= 80:
        return "optimal"
    if total >= 55:
        return "acceptable"
    if total >= 35:
        return "suboptimal"
    return "unsuitable"


def score_candidate(model: CatalogModel, role: AgentRole, context: ScoringContext) -> ScoredCandidate:
    """Score ``model`` for ``role`` under ``context``."""
    weights = ROLE_WEIGHTS[role]
    billing_mode = infer_billing_mode(model)
    mode = context.policy.mode

    speed = speed_score(model)
    cost = cost_score(model)
    role_fit = (
        (100 if model.reasoning else 0) * weights["reasoning"] / 100
        + (100 if model.toolcall else 0) * weights["toolcall"] / 100
        + (100 if model.attachment else 0) * weights["attachment"] / 100
        + context_score(model.context_limit) * weights["context"] / 100
    )
    pacing_label = context.pacing.provider if context.pacing else "provider"

    components = [
        ScoreComponent(
            name="roleFit",
            weight=1.25 if mode == PolicyMode.QUALITY_FIRST else 1.0,
            value=0,
            normalized_score=role_fit,
            description=f"Role capability alignment for {role.value}",
        ),
        ScoreComponent(
            name="latencyFit",
            weight=0.6,
            value=speed,
            normalized_score=speed * weights["speed"] / 100,
            description="Speed preference for this role",
        ),
        ScoreComponent(
            name="costFit",
            weight=1.6 if mode == PolicyMode.COST_FIRST else 0.7,
            value=cost,
            normalized_score=cost * weights["cost"] / 100,
            description="Cost efficiency contribution",
        ),
        ScoreComponent(
            name="billingPolicyFit",
            weight=1.1,
            value=0,
            normalized_score=billing_policy_score(billing_mode, context),
            description=f"Policy {mode.value} vs {billing_mode.value}",
        ),
        ScoreComponent(
            name="quotaPressure",
            weight=0.9,
            value=quota_remaining_ratio(context),
            normalized_score=quota_pressure_score(model, context),
            description="Quota pressure impact, steeper for costly models",
        ),
        ScoreComponent(
            name="providerPacing",
            weight=0.9,
            value=0,
            normalized_score=pacing_score(model, role, context),
            description=f"Monthly pacing adjustment for {pacing_label}",
        ),
        ScoreComponent(
            name="diversityAdjustment",
            weight=0.8,
            value=context.provider_usage.get(model.provider_id, 0),
            normalized_score=diversity_score(model, context),
            description="Provider concentration balancing",
        ),
        ScoreComponent(
            name="modelMaturity",
            weight=0.5,
            value=0,
            normalized_score=maturity_score(model),
            description="Model status and maturity score",
        ),
    ]

    total = sum(component.contribution for component in components)
    return ScoredCandidate(
        role=role,
        model=model,
        billing_mode=billing_mode,
        total_score=round(total, 3),
        components=components,
        tier=score_tier(total),
    )


def rank_candidates(
    models: Iterable[CatalogModel], role: AgentRole, context: ScoringContext
) -> list[ScoredCandidate]:
    """Score every model and sort best-first (ties broken by provider, then id)."""
    scored = [score_candidate(model, role, context) for model in models]
    scored.sort(key=lambda c: (-c.total_score, c.model.provider_id, c.model.model))
    return scored


def assignment_confidence(candidate: ScoredCandidate) -> float:
    return clamp(candidate.total_score / 120, 0, 1)


def assignment_reasoning(candidate: ScoredCandidate) -> str:
    return ", ".join(f"{c.name}:{c.normalized_score:.1f}" for c in candidate.components[:3])
