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

"""Tabular Q-learning over (role, quota bucket, task bucket) states.

Actions are (model, billing mode) pairs. The table is plain nested dicts so a
snapshot can be persisted by the host and restored with ``load``.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from dataclasses import dataclass

from .config import QAgentConfig
from .metrics import Q_UPDATES_TOTAL
from .models import AgentRole, BillingMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutingState:
    role: AgentRole
    quota_bucket: str  # critical | low | healthy
    task_bucket: str  # reasoning | speed | balanced

    @property
    def key(self) -> str:
        return f"{self.role.value}|{self.quota_bucket}|{self.task_bucket}"


@dataclass(frozen=True)
class RoutingAction:
    model: str
    billing_mode: BillingMode

    @property
    def key(self) -> str:
        return f"{self.model}|{self.billing_mode.value}"


@dataclass
class RoutingReward:
    success: float
    latency_penalty: float = 0.0
    cost_penalty: float = 0.0
    quality_bonus: float = 0.0

    @property
    def total(self) -> float:
        return self.success + self.quality_bonus - self.latency_penalty - self.cost_penalty


class RoutingQAgent:
    def __init__(self, config: QAgentConfig | None = None, rng: random.Random | None = None) -> None:
        self.config = config or QAgentConfig()
        self._rng = rng or random.Random()
        self._table: dict[str, dict[str, float]] = {}

    def value(self, state: RoutingState, action: RoutingAction) -> float:
        return self._table.get(state.key, {}).get(action.key, self.config.initial_value)

    def select(self, state: RoutingState, actions: Sequence[RoutingAction]) -> RoutingAction:
        """Epsilon-greedy choice; ties keep the caller's ordering."""
        if not actions:
            raise ValueError("select requires at least one action")
        if self._rng.random() < self.config.epsilon:
            return actions[self._rng.randrange(len(actions))]
        best = actions[0]
        best_value = self.value(state, best)
        for action in actions[1:]:
            v = self.value(state, action)
            if v > best_value:
                best, best_value = action, v
        return best

    def update(
        self,
        state: RoutingState,
        action: RoutingAction,
        reward: RoutingReward,
        next_state: RoutingState,
        available_next_actions: Sequence[RoutingAction] = (),
    ) -> float:
        """Apply one Q-learning step and return the new value."""
        alpha, gamma = self.config.alpha, self.config.gamma
        current = self.value(state, action)
        max_next = max(
            [0.0] + [self.value(next_state, a) for a in available_next_actions],
        )
        updated = current + alpha * (reward.total + gamma * max_next - current)
        self._table.setdefault(state.key, {})[action.key] = updated
        Q_UPDATES_TOTAL.inc()
        logger.debug(f"Q[{state.key}][{action.key}] {current:.4f} -> {updated:.4f}")
        return updated

    def snapshot(self) -> dict[str, dict[str, float]]:
        return {state: dict(row) for state, row in self._table.items()}

    def load(self, snapshot: dict[str, dict[str, float]]) -> None:
        self._table = {state: {action: float(v) for action, v in row.items()} for state, row in snapshot.items()}
        logger.info(f"Loaded Q-table with {len(self._table)} states")
