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

"""Promote / hold / rollback verdicts for a candidate against a baseline.

Shared by experiment trend evaluation and shadow evaluation. The composite
score combines, relative to the baseline:

- success-rate delta (+0.45)
- relative latency change (-0.20)
- relative cost change (-0.15)
- fallback-rate delta (-0.20)
- quality delta on a 0-100 scale (+0.10, only when both sides report it)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .config import CanaryConfig
from .experiments import ExperimentResult
from .metrics import CANARY_DECISIONS_TOTAL
from .models import CanaryDecision, CanaryTrendSummary, MetricAggregate, Recommendation

logger = logging.getLogger(__name__)

SUCCESS_WEIGHT = 0.45
LATENCY_WEIGHT = 0.20
COST_WEIGHT = 0.15
FALLBACK_WEIGHT = 0.20
QUALITY_WEIGHT = 0.10

FALLBACK_REGRESSION_FLOOR = 0.2
FALLBACK_REGRESSION_FACTOR = 1.6

BASELINE_REASON = "Baseline variant."


@dataclass
class CanaryThresholds:
    min_samples: int = 30
    promote_threshold: float = 0.05
    rollback_threshold: float = -0.08
    max_latency_regression_pct: float = 0.2
    max_cost_increase_pct: float | None = 0.2  # None disables the cost guard
    min_success_drop_pct: float = 0.05

    @classmethod
    def from_config(cls, config: CanaryConfig) -> CanaryThresholds:
        return cls(
            min_samples=config.min_samples,
            promote_threshold=config.promote_threshold,
            rollback_threshold=config.rollback_threshold,
            max_latency_regression_pct=config.max_latency_regression_pct,
            max_cost_increase_pct=config.max_cost_increase_pct,
            min_success_drop_pct=config.min_success_drop_pct,
        )


@dataclass
class BaselineComparison:
    success_delta: float
    latency_regression_pct: float
    cost_increase_pct: float
    fallback_delta: float
    quality_delta: float | None
    composite_score: float


def compare(candidate: MetricAggregate, baseline: MetricAggregate) -> BaselineComparison:
    success_delta = candidate.success_rate - baseline.success_rate
    latency_pct = (
        (candidate.avg_latency_ms - baseline.avg_latency_ms) / baseline.avg_latency_ms
        if baseline.avg_latency_ms > 0
        else 0.0
    )
    cost_pct = (
        (candidate.avg_cost_usd - baseline.avg_cost_usd) / baseline.avg_cost_usd
        if baseline.avg_cost_usd > 0
        else 0.0
    )
    fallback_delta = candidate.fallback_rate - baseline.fallback_rate
    quality_delta = None
    if candidate.quality_score is not None and baseline.quality_score is not None:
        quality_delta = (candidate.quality_score - baseline.quality_score) / 100

    composite = (
        success_delta * SUCCESS_WEIGHT
        - latency_pct * LATENCY_WEIGHT
        - cost_pct * COST_WEIGHT
        - fallback_delta * FALLBACK_WEIGHT
        + (quality_delta or 0.0) * QUALITY_WEIGHT
    )
    return BaselineComparison(success_delta, latency_pct, cost_pct, fallback_delta, quality_delta, composite)


def hard_regressions(
    comparison: BaselineComparison,
    candidate: MetricAggregate,
    baseline: MetricAggregate,
    thresholds: CanaryThresholds,
) -> list[str]:
    reasons: list[str] = []
    if comparison.success_delta <= -thresholds.min_success_drop_pct:
        reasons.append(f"success rate dropped {abs(comparison.success_delta) * 100:.1f}pts")
    if comparison.latency_regression_pct >= thresholds.max_latency_regression_pct:
        reasons.append(f"latency regressed {comparison.latency_regression_pct * 100:.1f}%")
    if (
        thresholds.max_cost_increase_pct is not None
        and comparison.cost_increase_pct >= thresholds.max_cost_increase_pct
    ):
        reasons.append(f"cost increased {comparison.cost_increase_pct * 100:.1f}%")
    if candidate.fallback_rate > max(FALLBACK_REGRESSION_FLOOR, baseline.fallback_rate * FALLBACK_REGRESSION_FACTOR):
        reasons.append(f"fallback rate {candidate.fallback_rate * 100:.1f}%")
    return reasons


def evaluate_against_baseline(
    variant_id: str,
    candidate: MetricAggregate,
    baseline: MetricAggregate,
    thresholds: CanaryThresholds,
) -> CanaryDecision:
    """Verdict for ``candidate`` measured against ``baseline``."""
    observed = min(candidate.sample_count, baseline.sample_count)
    if observed < thresholds.min_samples:
        return CanaryDecision(
            variant_id=variant_id,
            recommendation=Recommendation.HOLD,
            sample_count=candidate.sample_count,
            composite_score=0.0,
            reasons=[f"Insufficient samples: {observed}/{thresholds.min_samples}"],
        )

    comparison = compare(candidate, baseline)
    composite = comparison.composite_score
    regressions = hard_regressions(comparison, candidate, baseline, thresholds)

    if regressions or composite <= thresholds.rollback_threshold:
        detail = ", ".join(regressions) if regressions else "composite below rollback threshold"
        return CanaryDecision(
            variant_id, Recommendation.ROLLBACK, candidate.sample_count, composite,
            [f"Regression detected: {composite * 100:.1f}% composite ({detail})"],
        )
    if composite >= thresholds.promote_threshold and comparison.success_delta >= 0:
        return CanaryDecision(
            variant_id, Recommendation.PROMOTE, candidate.sample_count, composite,
            [f"Candidate outperforms baseline by {composite * 100:.1f}%"],
        )
    return CanaryDecision(
        variant_id, Recommendation.HOLD, candidate.sample_count, composite,
        [f"Performance change is neutral: {composite * 100:.1f}%"],
    )


def aggregate_from_result(result: ExperimentResult) -> MetricAggregate:
    return MetricAggregate(
        sample_count=result.sample_count,
        success_rate=result.avg_success_rate,
        avg_latency_ms=result.avg_latency_ms,
        avg_cost_usd=result.avg_cost_usd,
        fallback_rate=result.avg_fallback_rate,
        quality_score=result.avg_quality_score,
    )


def evaluate_trends(
    results: Sequence[ExperimentResult],
    thresholds: CanaryThresholds,
    baseline_variant_id: str | None = None,
) -> list[CanaryDecision]:
    """One decision per variant; the baseline (given id, else first) always holds."""
    if not results:
        return []

    baseline = next((r for r in results if r.variant_id == baseline_variant_id), results[0])
    baseline_aggregate = aggregate_from_result(baseline)

    decisions: list[CanaryDecision] = []
    for result in results:
        if result.variant_id == baseline.variant_id:
            decisions.append(
                CanaryDecision(result.variant_id, Recommendation.HOLD, result.sample_count, 0.0, [BASELINE_REASON])
            )
            continue
        decision = evaluate_against_baseline(
            result.variant_id, aggregate_from_result(result), baseline_aggregate, thresholds
        )
        if decision.recommendation == Recommendation.ROLLBACK:
            CANARY_DECISIONS_TOTAL.labels(source="experiment", recommendation="rollback").inc()
            logger.warning(f"Variant {result.variant_id} rolled back: {decision.reasons[0]}")
        elif decision.recommendation == Recommendation.PROMOTE:
            CANARY_DECISIONS_TOTAL.labels(source="experiment", recommendation="promote").inc()
        decisions.append(decision)
    return decisions


def summarize_canary_trends(
    decisions: Sequence[CanaryDecision], experiment_id: str | None = None
) -> CanaryTrendSummary | None:
    """Fold per-variant decisions into one experiment-level recommendation.

    Any rollback wins. Promotion needs at least one promote and no hold from a
    non-baseline variant; the baseline's own hold is counted but never blocks it.
    """
    if not decisions:
        return None

    counts = {rec: 0 for rec in Recommendation}
    baseline_holds = 0
    for decision in decisions:
        counts[decision.recommendation] += 1
        if decision.recommendation == Recommendation.HOLD and decision.reasons == [BASELINE_REASON]:
            baseline_holds += 1

    if counts[Recommendation.ROLLBACK] > 0:
        action = Recommendation.ROLLBACK
    elif counts[Recommendation.PROMOTE] > 0 and counts[Recommendation.HOLD] == baseline_holds:
        action = Recommendation.PROMOTE
    else:
        action = Recommendation.HOLD

    return CanaryTrendSummary(
        experiment_id=experiment_id,
        promote_count=counts[Recommendation.PROMOTE],
        hold_count=counts[Recommendation.HOLD],
        rollback_count=counts[Recommendation.ROLLBACK],
        recommended_action=action,
    )
