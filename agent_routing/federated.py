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

"""Federated reward aggregation.

Merges locally computed reward and feature updates from independent routers.
Each key is averaged over the updates that report it, weighted by the
update's sample count (never less than 1).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field

from .metrics import FEDERATED_ROUNDS_TOTAL

logger = logging.getLogger(__name__)


class FederatedUpdate(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_rewards: dict[str, float] = Field(default_factory=dict)
    feature_adjustments: dict[str, float] = Field(default_factory=dict)
    sample_count: int = 0


class AggregatedFederatedUpdate(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    participants: int = 0
    model_rewards: dict[str, float] = Field(default_factory=dict)
    feature_adjustments: dict[str, float] = Field(default_factory=dict)


def _weighted_merge(rows: Sequence[tuple[dict[str, float], int]]) -> dict[str, float]:
    sums: dict[str, float] = {}
    weights: dict[str, float] = {}
    for values, sample_count in rows:
        weight = max(1, sample_count)
        for key, value in values.items():
            sums[key] = sums.get(key, 0.0) + value * weight
            weights[key] = weights.get(key, 0.0) + weight
    return {key: sums[key] / weights[key] for key in sums}


class FederatedAggregator:
    def aggregate(self, updates: Sequence[FederatedUpdate]) -> AggregatedFederatedUpdate:
        if not updates:
            return AggregatedFederatedUpdate()

        result = AggregatedFederatedUpdate(
            participants=len(updates),
            model_rewards=_weighted_merge([(u.model_rewards, u.sample_count) for u in updates]),
            feature_adjustments=_weighted_merge([(u.feature_adjustments, u.sample_count) for u in updates]),
        )
        FEDERATED_ROUNDS_TOTAL.inc()
        logger.info(
            f"Aggregated {result.participants} federated updates covering "
            f"{len(result.model_rewards)} models"
        )
        return result
