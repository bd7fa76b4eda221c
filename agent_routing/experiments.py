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

"""A/B routing experiments.

Subjects are bucketed deterministically: the same (experiment, subject)
pair always lands in the same variant, across processes and restarts.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

from .errors import ExperimentAllocationError, UnknownExperimentError
from .metrics import EXPERIMENT_ASSIGNMENTS_TOTAL, EXPERIMENTS_REGISTERED
from .models import AgentAssignment, AgentRole, Experiment, ExperimentVariant, TelemetrySample

logger = logging.getLogger(__name__)

DEFAULT_METRICS_WINDOW = 2000


def hash_string(value: str) -> int:
    """Polynomial hash ``h = h * 31 + unit`` wrapped to a signed 32-bit int.

    Iterates UTF-16 code units, so characters outside the BMP contribute
    their surrogate pair.
    """
    data = value.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        h = (h * 31 + (data[i] | data[i + 1] << 8)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def bucket_for(experiment_id: str, subject_id: str) -> int:
    return abs(hash_string(f"{experiment_id}|{subject_id}")) % 100


@dataclass
class ExperimentResult:
    variant_id: str
    sample_count: int
    avg_success_rate: float
    avg_latency_ms: float
    avg_cost_usd: float
    avg_fallback_rate: float = 0.0
    avg_quality_score: float | None = None


class ExperimentManager:
    def __init__(self, metrics_window: int = DEFAULT_METRICS_WINDOW) -> None:
        self.metrics_window = metrics_window
        self._experiments: dict[str, Experiment] = {}
        self._metrics: dict[tuple[str, str], deque[TelemetrySample]] = {}

    def register(self, experiment: Experiment) -> None:
        total = sum(experiment.allocation.values())
        if round(total) != 100:
            raise ExperimentAllocationError(
                f"Experiment {experiment.id} allocation must sum to 100 (got {total:g})"
            )
        if experiment.id not in self._experiments:
            EXPERIMENTS_REGISTERED.inc()
        self._experiments[experiment.id] = experiment
        logger.info(
            f"Registered experiment {experiment.id} with variants "
            f"{[v.id for v in experiment.variants]}"
        )

    def get_experiment(self, experiment_id: str) -> Experiment | None:
        return self._experiments.get(experiment_id)

    def pick_variant(self, experiment_id: str, subject_id: str) -> ExperimentVariant:
        experiment = self._experiments.get(experiment_id)
        if experiment is None:
            raise UnknownExperimentError(f"Unknown experiment: {experiment_id}")

        bucket = bucket_for(experiment_id, subject_id)
        EXPERIMENT_ASSIGNMENTS_TOTAL.inc()
        cursor = 0.0
        for variant in experiment.variants:
            cursor += experiment.allocation.get(variant.id, 0.0)
            if bucket < cursor:
                return variant
        return experiment.variants[0]

    @staticmethod
    def apply_variant_overrides(
        assignments: dict[AgentRole, AgentAssignment], variant: ExperimentVariant
    ) -> dict[AgentRole, AgentAssignment]:
        """Return a copy of ``assignments`` with the variant's per-role overrides applied."""
        output = dict(assignments)
        output.update(variant.assignment_overrides)
        return output

    def record_variant_metrics(self, experiment_id: str, variant_id: str, sample: TelemetrySample) -> None:
        key = (experiment_id, variant_id)
        window = self._metrics.get(key)
        if window is None:
            window = deque(maxlen=self.metrics_window)
            self._metrics[key] = window
        window.append(sample)

    def summarize(self, experiment_id: str) -> list[ExperimentResult]:
        experiment = self._experiments.get(experiment_id)
        if experiment is None:
            return []

        results: list[ExperimentResult] = []
        for variant in experiment.variants:
            rows = self._metrics.get((experiment_id, variant.id), ())
            n = len(rows)
            if n == 0:
                results.append(ExperimentResult(variant.id, 0, 0.0, 0.0, 0.0))
                continue
            qualities = [r.quality_score for r in rows if r.quality_score is not None]
            results.append(
                ExperimentResult(
                    variant_id=variant.id,
                    sample_count=n,
                    avg_success_rate=sum(r.success_rate for r in rows) / n,
                    avg_latency_ms=sum(r.avg_latency_ms for r in rows) / n,
                    avg_cost_usd=sum(r.avg_cost_usd for r in rows) / n,
                    avg_fallback_rate=sum(r.fallback_rate for r in rows) / n,
                    avg_quality_score=sum(qualities) / len(qualities) if qualities else None,
                )
            )
        return results
