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

"""Shadow evaluation of candidate models against the serving baseline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .canary import CanaryThresholds, evaluate_against_baseline
from .config import ShadowConfig
from .metrics import CANARY_DECISIONS_TOTAL
from .models import AgentRole, BillingMode, MetricAggregate, Recommendation, TelemetrySample

logger = logging.getLogger(__name__)


@dataclass
class ShadowModelMetrics:
    """Sample-weighted running metrics for one (role, model)."""

    role: AgentRole
    model: str
    samples: int = 0
    success_rate: float = 0.0
    avg_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    avg_cost_usd: float = 0.0
    fallback_rate: float = 0.0
    quality_score: float | None = None
    billing_mode: BillingMode | None = None

    def merge(self, sample: TelemetrySample) -> None:
        added = max(1, sample.sample_count)
        total = self.samples + added

        def blend(current: float, new: float) -> float:
            return (current * self.samples + new * added) / total

        self.success_rate = blend(self.success_rate, sample.success_rate)
        self.avg_latency_ms = blend(self.avg_latency_ms, sample.avg_latency_ms)
        self.p95_latency_ms = blend(self.p95_latency_ms, sample.p95_latency_ms)
        self.avg_cost_usd = blend(self.avg_cost_usd, sample.avg_cost_usd)
        self.fallback_rate = blend(self.fallback_rate, sample.fallback_rate)
        if sample.quality_score is not None:
            if self.quality_score is None:
                self.quality_score = sample.quality_score
            else:
                self.quality_score = blend(self.quality_score, sample.quality_score)
        self.samples = total

    def aggregate(self) -> MetricAggregate:
        return MetricAggregate(
            sample_count=self.samples,
            success_rate=self.success_rate,
            avg_latency_ms=self.avg_latency_ms,
            avg_cost_usd=self.avg_cost_usd,
            fallback_rate=self.fallback_rate,
            quality_score=self.quality_score,
        )


@dataclass
class ShadowEvaluationResult:
    candidate_model: str
    baseline_model: str
    role: AgentRole
    recommendation: Recommendation
    confidence: float
    composite_score: float = 0.0
    reasons: list[str] = field(default_factory=list)
    candidate: ShadowModelMetrics | None = None
    baseline: ShadowModelMetrics | None = None


class ShadowEvaluationEngine:
    """Compares candidate shadow traffic against a baseline model per role."""

    def __init__(self, config: ShadowConfig | None = None) -> None:
        self.config = config or ShadowConfig()
        self._store: dict[tuple[AgentRole, str], ShadowModelMetrics] = {}

    @property
    def thresholds(self) -> CanaryThresholds:
        cfg = self.config
        return CanaryThresholds(
            min_samples=cfg.min_samples,
            promote_threshold=cfg.promote_threshold,
            rollback_threshold=-cfg.regression_threshold,
            max_latency_regression_pct=cfg.max_latency_regression_pct,
            max_cost_increase_pct=None,
            min_success_drop_pct=cfg.regression_threshold,
        )

    def record_metrics(
        self,
        role: AgentRole,
        model: str,
        sample: TelemetrySample,
        billing_mode: BillingMode | None = None,
    ) -> ShadowModelMetrics:
        key = (role, model)
        metrics = self._store.get(key)
        if metrics is None:
            metrics = ShadowModelMetrics(role=role, model=model)
            self._store[key] = metrics
        metrics.merge(sample)
        if billing_mode is not None:
            metrics.billing_mode = billing_mode
        return metrics

    def get_metrics(self, role: AgentRole, model: str) -> ShadowModelMetrics | None:
        return self._store.get((role, model))

    def evaluate_candidate(self, candidate_model: str, baseline_model: str, role: AgentRole) -> ShadowEvaluationResult:
        candidate = self._store.get((role, candidate_model))
        baseline = self._store.get((role, baseline_model))
        result = ShadowEvaluationResult(
            candidate_model=candidate_model,
            baseline_model=baseline_model,
            role=role,
            recommendation=Recommendation.HOLD,
            confidence=0.0,
            candidate=candidate,
            baseline=baseline,
        )

        if candidate is None or baseline is None:
            missing = candidate_model if candidate is None else baseline_model
            result.reasons.append(f"Insufficient metrics: nothing recorded for {missing}")
            logger.warning(f"Shadow evaluation for {role.value} skipped; no metrics for {missing}")
            return result
        if not self.config.enabled:
            result.reasons.append("Shadow evaluation disabled.")
            return result

        decision = evaluate_against_baseline(candidate_model, candidate.aggregate(), baseline.aggregate(), self.thresholds)
        result.recommendation = decision.recommendation
        result.composite_score = decision.composite_score
        result.reasons.extend(decision.reasons)
        if min(candidate.samples, baseline.samples) < self.config.min_samples:
            return result

        comparison_latency = (
            (candidate.avg_latency_ms - baseline.avg_latency_ms) / baseline.avg_latency_ms
            if baseline.avg_latency_ms > 0
            else 0.0
        )
        comparison_cost = (
            (candidate.avg_cost_usd - baseline.avg_cost_usd) / baseline.avg_cost_usd
            if baseline.avg_cost_usd > 0
            else 0.0
        )
        if comparison_latency > 0.1:
            result.reasons.append("Latency regressed materially.")
        if comparison_cost > 0.1:
            result.reasons.append("Cost increased materially.")
        if candidate.fallback_rate - baseline.fallback_rate > 0.05:
            result.reasons.append("Fallback rate increased materially.")

        result.confidence = max(0.0, min(1.0, min(candidate.samples, baseline.samples) / (self.config.min_samples * 2)))

        if result.recommendation == Recommendation.ROLLBACK:
            CANARY_DECISIONS_TOTAL.labels(source="shadow", recommendation="rollback").inc()
            logger.warning(f"Shadow candidate {candidate_model} for {role.value} regressed: {result.reasons[0]}")
        elif result.recommendation == Recommendation.PROMOTE:
            CANARY_DECISIONS_TOTAL.labels(source="shadow", recommendation="promote").inc()
            logger.info(f"Shadow candidate {candidate_model} for {role.value} ready to promote")
        return result
