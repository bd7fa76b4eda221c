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

"""Routing plan assembly.

For every role the first matching layer wins and is recorded as provenance:

1. pinned preference present in the catalog (``pinned-model``)
2. active experiment variant override (``experiment-override``)
3. canary rollback forcing the always-free model into chain slot 1
   (``provider-fallback-policy``)
4. beam-search winner (``scoring-default``)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

from .canary import summarize_canary_trends
from .config import EngineConfig
from .diversity import CircuitBreaker, build_ranked_alternatives, select_with_beam_search
from .explain import explain_routing_decision
from .metrics import (
    PLAN_BUILD_SECONDS,
    PLAN_LAYER_TOTAL,
    PLANS_BUILT_TOTAL,
)
from .models import (
    ALL_ROLES,
    AgentAssignment,
    AgentRole,
    BillingMode,
    CanaryDecision,
    CatalogModel,
    ExperimentVariant,
    PacingPolicy,
    PlanMetadata,
    Provenance,
    QuotaStatus,
    Recommendation,
    RoutingDecisionExplanation,
    RoutingPlan,
    RoutingPolicy,
    ScoredCandidate,
    ScoringContext,
    ScoringMeta,
    UsageSnapshot,
    WinnerLayer,
)
from .preferences import ModelPreferences, resolve_preferred_model
from .quota_forecast import forecast_quota
from .scoring import assignment_confidence, assignment_reasoning, score_candidate

logger = logging.getLogger(__name__)

ENGINE_VERSION = "v3"

# Token volume assumed per routed call when estimating daily paygo spend.
ESTIMATED_TOKENS_PER_CALL = 2_000


@dataclass
class PlanResult:
    plan: RoutingPlan
    explanations: dict[AgentRole, RoutingDecisionExplanation]


def _assignment(candidate: ScoredCandidate, variant: str | None = None) -> AgentAssignment:
    return AgentAssignment(
        model=candidate.model_id,
        billing_mode=candidate.billing_mode,
        confidence=assignment_confidence(candidate),
        reasoning=assignment_reasoning(candidate),
        variant=variant,
    )


def _dedupe(items: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(items))


class PlanBuilder:
    """Builds a ``RoutingPlan`` covering every role from the current inputs."""

    def __init__(self, config: EngineConfig | None = None, circuit_breaker: CircuitBreaker | None = None) -> None:
        self.config = config or EngineConfig()
        self.circuit_breaker = circuit_breaker

    def _is_open(self, role: AgentRole, model: str) -> bool:
        return self.circuit_breaker is not None and self.circuit_breaker.is_circuit_open(role, model)

    def build(
        self,
        catalog: Sequence[CatalogModel],
        policy: RoutingPolicy,
        quota_status: QuotaStatus,
        usage_history: Sequence[UsageSnapshot] = (),
        pacing: PacingPolicy | None = None,
        model_preferences: ModelPreferences | None = None,
        experiment_id: str | None = None,
        experiment_variant: ExperimentVariant | None = None,
        experiment_trend_decisions: Sequence[CanaryDecision] | None = None,
        shadow_compared: bool = False,
    ) -> PlanResult:
        started = time.perf_counter()
        selection = self.config.selection
        free_model = self.config.fallback.always_free_model
        catalog = list(catalog)
        by_id = {m.model: m for m in catalog}
        context = ScoringContext(policy=policy, quota_status=quota_status, pacing=pacing)

        winners = select_with_beam_search(ALL_ROLES, catalog, selection, context, self.circuit_breaker)

        agents: dict[AgentRole, AgentAssignment] = {}
        chains: dict[AgentRole, list[str]] = {}
        provenance: dict[AgentRole, Provenance] = {}
        explanations: dict[AgentRole, RoutingDecisionExplanation] = {}

        for role in ALL_ROLES:
            ranked = build_ranked_alternatives(
                role,
                catalog,
                context,
                depth=selection.max_alternatives_per_role,
                max_per_provider=selection.max_per_provider_per_role,
                max_providers=selection.max_providers_per_role,
                circuit_breaker=self.circuit_breaker,
            )

            layer = WinnerLayer.SCORING_DEFAULT
            selected = winners.get(role)
            variant_id = None
            note = None

            pinned = resolve_preferred_model(role, model_preferences, by_id)
            override = experiment_variant.assignment_overrides.get(role) if experiment_variant else None
            if pinned is not None:
                selected = score_candidate(by_id[pinned], role, context)
                layer = WinnerLayer.PINNED_MODEL
                note = "Pinned by preference."
                PLAN_LAYER_TOTAL.labels(layer=WinnerLayer.PINNED_MODEL.value).inc()
            elif override is not None and override.model in by_id and not self._is_open(role, override.model):
                selected = score_candidate(by_id[override.model], role, context)
                layer = WinnerLayer.EXPERIMENT_OVERRIDE
                variant_id = experiment_variant.id
                note = f"Experiment {experiment_id or 'override'} variant {variant_id}."
                PLAN_LAYER_TOTAL.labels(layer=WinnerLayer.EXPERIMENT_OVERRIDE.value).inc()
            elif override is not None:
                logger.warning(
                    f"Ignoring experiment override {override.model} for {role.value}: "
                    "not in catalog or circuit open"
                )

            if selected is None:
                logger.warning(f"No model available for role {role.value}")
                continue

            assignment = _assignment(selected, variant=variant_id)
            if layer == WinnerLayer.EXPERIMENT_OVERRIDE and override.billing_mode is not None:
                assignment = assignment.model_copy(update={"billing_mode": override.billing_mode})
            agents[role] = assignment

            chain = [selected.model_id] + [c.model_id for c in ranked]
            if free_model in by_id and not self._is_open(role, free_model):
                chain.append(free_model)
            chains[role] = _dedupe(chain)
            provenance[role] = Provenance(winner_layer=layer, winner_model=selected.model_id)

            explanation = explain_routing_decision(role, ranked, alternatives=3, selected=selected, note=note)
            if explanation is not None:
                explanations[role] = explanation

        canary_trend = summarize_canary_trends(experiment_trend_decisions or (), experiment_id)
        if canary_trend is not None and canary_trend.recommended_action == Recommendation.ROLLBACK:
            self._apply_rollback_fallback(chains, provenance, free_model, by_id)

        forecast = forecast_quota(quota_status, usage_history, self.config.fallback.forecast_horizon_days)
        if forecast.predicted_exhaustion_date is not None:
            quota_pressure = "critical"
        elif quota_status.daily_remaining < self.config.fallback.quota_warning_daily_remaining:
            quota_pressure = "warning"
        else:
            quota_pressure = "healthy"

        distribution: dict[str, int] = {}
        for assignment in agents.values():
            provider = by_id[assignment.model].provider_id
            distribution[provider] = distribution.get(provider, 0) + 1

        policy_marker = policy.mode.value
        if pacing is not None:
            policy_marker = f"{policy_marker};{pacing.provider}:{pacing.mode.value}"

        daily_calls = forecast.points[0].predicted_usage if usage_history else 0
        plan = RoutingPlan(
            agents=agents,
            chains=chains,
            provenance=provenance,
            scoring=ScoringMeta(engine_version_applied=ENGINE_VERSION, shadow_compared=shadow_compared),
            explanations={role: e.summary for role, e in explanations.items()},
            metadata=PlanMetadata(
                policy=policy_marker,
                provider_distribution=distribution,
                estimated_daily_cost_usd=self._estimate_daily_cost(agents, by_id, daily_calls),
                quota_pressure=quota_pressure,
                canary_trend=canary_trend,
            ),
        )

        PLANS_BUILT_TOTAL.inc()
        PLAN_BUILD_SECONDS.observe(time.perf_counter() - started)
        logger.info(
            f"Built routing plan for {len(agents)} roles (policy={policy_marker}, quota={quota_pressure})"
        )
        return PlanResult(plan=plan, explanations=explanations)

    def _apply_rollback_fallback(
        self,
        chains: dict[AgentRole, list[str]],
        provenance: dict[AgentRole, Provenance],
        free_model: str,
        by_id: dict[str, CatalogModel],
    ) -> None:
        """Move the always-free model into slot 1 of every scoring-default chain."""
        if free_model not in by_id:
            logger.warning(f"Canary rollback requested but {free_model} is not in the catalog; chains unchanged")
            return
        protected = {WinnerLayer.PINNED_MODEL, WinnerLayer.EXPERIMENT_OVERRIDE}
        for role, chain in chains.items():
            if not chain or chain[0] == free_model or provenance[role].winner_layer in protected:
                continue
            if self._is_open(role, free_model):
                logger.warning(f"Circuit open for {free_model} on {role.value}; rollback fallback skipped")
                continue
            rest = [m for m in chain[1:] if m != free_model]
            chains[role] = [chain[0], free_model, *rest]
            provenance[role] = Provenance(winner_layer=WinnerLayer.PROVIDER_FALLBACK_POLICY, winner_model=chain[0])
            PLAN_LAYER_TOTAL.labels(layer=WinnerLayer.PROVIDER_FALLBACK_POLICY.value).inc()

    @staticmethod
    def _estimate_daily_cost(
        agents: dict[AgentRole, AgentAssignment], by_id: dict[str, CatalogModel], daily_calls: int
    ) -> float:
        """Spread recent daily calls evenly over roles and price the paygo share."""
        if not agents or daily_calls <= 0:
            return 0.0
        calls_per_role = daily_calls / len(agents)
        total = 0.0
        for assignment in agents.values():
            if assignment.billing_mode != BillingMode.PAYGO:
                continue
            total += calls_per_role * ESTIMATED_TOKENS_PER_CALL / 1_000_000 * by_id[assignment.model].blended_cost
        return round(total, 4)
