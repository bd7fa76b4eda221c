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

"""Routing runtime: the stateful aggregate a host owns.

Telemetry flows in through ``ingest``. The evaluation entry points turn the
accumulated metrics into promote / hold / rollback verdicts and open circuit
breakers on rollback; ``build_plan`` then routes around open breakers.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, Field

from .anomaly import AnomalyDetector, DetectedAnomaly
from .canary import CanaryThresholds, evaluate_trends
from .config import EngineConfig, load_config
from .cost_tracker import CostTracker
from .experiments import ExperimentManager
from .hot_swap import HotSwapManager, RuntimeRoutingConfig
from .metrics import TELEMETRY_INGESTED_TOTAL
from .models import (
    AgentRole,
    BillingMode,
    CanaryDecision,
    CatalogModel,
    PacingPolicy,
    QuotaStatus,
    Recommendation,
    RoutingPolicy,
    TelemetrySample,
    UsageSnapshot,
)
from .plan_builder import PlanBuilder, PlanResult
from .preferences import ModelPreferences
from .rl import RoutingQAgent
from .scoring import infer_billing_mode
from .shadow_evaluation import ShadowEvaluationEngine, ShadowEvaluationResult

logger = logging.getLogger(__name__)


class ExperimentRef(BaseModel):
    experiment_id: str
    variant_id: str | None = None
    subject_id: str | None = None


class RuntimeMetricIngest(TelemetrySample):
    """One telemetry report for a (role, model), optionally tied to an experiment."""

    role: AgentRole
    model: str
    billing_mode: BillingMode | None = None
    input_tokens: int | None = Field(default=None, ge=0)
    output_tokens: int | None = Field(default=None, ge=0)
    experiment: ExperimentRef | None = None

    def sample(self) -> TelemetrySample:
        return TelemetrySample.model_validate(self.model_dump(include=set(TelemetrySample.model_fields)))


@dataclass
class IngestResult:
    anomalies: list[DetectedAnomaly] = field(default_factory=list)
    variant_id: str | None = None
    cost_usd: float | None = None


class RoutingRuntime:
    def __init__(
        self,
        config: EngineConfig | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.anomaly_detector = AnomalyDetector(self.config.anomaly, clock=clock)
        self.cost_tracker = CostTracker(self.config.cost_budget)
        self.experiments = ExperimentManager(self.config.experiments.metrics_window)
        self.shadow_evaluation = ShadowEvaluationEngine(self.config.shadow)
        self.q_agent = RoutingQAgent(self.config.q_agent, rng=rng)
        self.hot_swap = HotSwapManager()
        self.plan_builder = PlanBuilder(self.config, circuit_breaker=self.anomaly_detector)
        self._catalog: dict[str, CatalogModel] = {}
        self._trend_decisions: dict[str, list[CanaryDecision]] = {}
        self._shadow_compared = False

    def set_catalog(self, catalog: Sequence[CatalogModel]) -> None:
        """Catalog used to price ingested token usage."""
        self._catalog = {m.model: m for m in catalog}

    def ingest(self, report: RuntimeMetricIngest) -> IngestResult:
        sample = report.sample()
        result = IngestResult()
        TELEMETRY_INGESTED_TOTAL.inc()

        self.anomaly_detector.record(report.role, report.model, sample)
        result.anomalies = self.anomaly_detector.detect(report.role, report.model)
        self.shadow_evaluation.record_metrics(report.role, report.model, sample, billing_mode=report.billing_mode)

        if report.input_tokens is not None or report.output_tokens is not None:
            catalog_model = self._catalog.get(report.model)
            billing_mode = report.billing_mode
            if billing_mode is None:
                billing_mode = infer_billing_mode(catalog_model) if catalog_model else BillingMode.PAYGO
            result.cost_usd = self.cost_tracker.record_usage(
                report.role,
                report.model,
                billing_mode,
                report.input_tokens or 0,
                report.output_tokens or 0,
                catalog_model=catalog_model,
            )

        ref = report.experiment
        if ref is None:
            return result

        variant_id = ref.variant_id
        if variant_id is None:
            if ref.subject_id is None:
                logger.warning(
                    f"Experiment metrics for {ref.experiment_id} skipped: neither variant_id nor subject_id given"
                )
                return result
            variant_id = self.experiments.pick_variant(ref.experiment_id, ref.subject_id).id

        self.experiments.record_variant_metrics(ref.experiment_id, variant_id, sample)
        result.variant_id = variant_id
        return result

    def evaluate_shadow_canary(
        self,
        candidate_model: str,
        baseline_model: str,
        role: AgentRole,
        circuit_breaker_ttl_s: float | None = None,
    ) -> ShadowEvaluationResult:
        evaluation = self.shadow_evaluation.evaluate_candidate(candidate_model, baseline_model, role)
        self._shadow_compared = True
        if evaluation.recommendation == Recommendation.ROLLBACK:
            reason = evaluation.reasons[0] if evaluation.reasons else "shadow regression detected"
            self.anomaly_detector.open_circuit(
                role,
                candidate_model,
                reason,
                circuit_breaker_ttl_s if circuit_breaker_ttl_s is not None else self.config.canary.circuit_breaker_ttl_s,
            )
        return evaluation

    def evaluate_experiment_canary_trends(
        self,
        experiment_id: str,
        baseline_variant_id: str | None = None,
        thresholds: CanaryThresholds | None = None,
        circuit_breaker_ttl_s: float | None = None,
    ) -> list[CanaryDecision]:
        """Verdict per variant; rolled-back variants get their override models' breakers opened."""
        thresholds = thresholds or CanaryThresholds.from_config(self.config.canary)
        decisions = evaluate_trends(self.experiments.summarize(experiment_id), thresholds, baseline_variant_id)
        self._trend_decisions[experiment_id] = decisions

        experiment = self.experiments.get_experiment(experiment_id)
        if experiment is None:
            return decisions
        ttl = circuit_breaker_ttl_s if circuit_breaker_ttl_s is not None else self.config.canary.circuit_breaker_ttl_s
        variants = {v.id: v for v in experiment.variants}
        for decision in decisions:
            if decision.recommendation != Recommendation.ROLLBACK:
                continue
            variant = variants.get(decision.variant_id)
            if variant is None:
                continue
            for role, assignment in variant.assignment_overrides.items():
                self.anomaly_detector.open_circuit(
                    role,
                    assignment.model,
                    f"Experiment {experiment_id} variant {variant.id} rolled back",
                    ttl,
                )
        return decisions

    def build_plan(
        self,
        catalog: Sequence[CatalogModel],
        policy: RoutingPolicy,
        quota_status: QuotaStatus,
        usage_history: Sequence[UsageSnapshot] = (),
        pacing: PacingPolicy | None = None,
        model_preferences: ModelPreferences | None = None,
        experiment_id: str | None = None,
        subject_id: str | None = None,
        experiment_trend_decisions: Sequence[CanaryDecision] | None = None,
    ) -> PlanResult:
        """Build a plan, resolving the subject's experiment variant and the latest trend verdicts."""
        self.set_catalog(catalog)
        variant = None
        if experiment_id is not None:
            if subject_id is not None:
                variant = self.experiments.pick_variant(experiment_id, subject_id)
            if experiment_trend_decisions is None:
                experiment_trend_decisions = self._trend_decisions.get(experiment_id)

        return self.plan_builder.build(
            catalog,
            policy,
            quota_status,
            usage_history=usage_history,
            pacing=pacing,
            model_preferences=model_preferences,
            experiment_id=experiment_id,
            experiment_variant=variant,
            experiment_trend_decisions=experiment_trend_decisions,
            shadow_compared=self._shadow_compared,
        )

    def publish_plan(self, result: PlanResult) -> RuntimeRoutingConfig:
        return self.hot_swap.apply(result.plan.agents, result.plan.chains)


def create_runtime(
    config: EngineConfig | None = None,
    config_path: str | Path | None = None,
    clock: Callable[[], float] = time.time,
    rng: random.Random | None = None,
) -> RoutingRuntime:
    """Runtime from an explicit config, a YAML file, or the bundled defaults."""
    if config is None:
        config = load_config(config_path)
    return RoutingRuntime(config, clock=clock, rng=rng)
