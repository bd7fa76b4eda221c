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

"""Spend tracking against daily and monthly USD limits.

Enforcement modes:
- ``hard`` / ``block``: once a limit is exceeded ``check_budget`` reports
  ``ok=False`` and ``blocked=True``; callers should stop routing paid traffic.
- ``soft`` / ``warn``: exceeding a limit only produces messages.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from .config import CostBudgetConfig
from .metrics import BUDGET_BREACHES_TOTAL, COST_USD_RECORDED
from .models import AgentRole, BillingMode, CatalogModel

logger = logging.getLogger(__name__)

BLOCKING_ENFORCEMENT = frozenset({"hard", "block"})


@dataclass
class CostUsageSnapshot:
    daily_usd: float = 0.0
    monthly_usd: float = 0.0
    by_role: dict[AgentRole, float] = field(default_factory=dict)
    by_model: dict[str, float] = field(default_factory=dict)
    by_billing_mode: dict[BillingMode, float] = field(default_factory=dict)


@dataclass
class BudgetCheck:
    ok: bool
    messages: list[str] = field(default_factory=list)
    blocked: bool = False


@dataclass
class CostOptimizationSuggestion:
    role: AgentRole
    from_model: str
    to_model: str
    estimated_savings_per_mtok_usd: float
    reason: str


class CostTracker:
    def __init__(self, budget: CostBudgetConfig | None = None) -> None:
        self.budget = budget or CostBudgetConfig()
        self._usage = CostUsageSnapshot()

    def record_usage(
        self,
        role: AgentRole,
        model: str,
        billing_mode: BillingMode,
        input_tokens: int,
        output_tokens: int,
        catalog_model: CatalogModel | None = None,
    ) -> float:
        """Accumulate spend for one call and return its USD cost.

        Subscription usage and calls without a catalog price cost nothing.
        """
        usd = 0.0
        if billing_mode == BillingMode.PAYGO and catalog_model is not None:
            usd = (input_tokens + output_tokens) / 1_000_000 * catalog_model.blended_cost

        u = self._usage
        u.daily_usd += usd
        u.monthly_usd += usd
        u.by_role[role] = u.by_role.get(role, 0.0) + usd
        u.by_model[model] = u.by_model.get(model, 0.0) + usd
        u.by_billing_mode[billing_mode] = u.by_billing_mode.get(billing_mode, 0.0) + usd
        COST_USD_RECORDED.observe(usd)
        return usd

    def snapshot(self) -> CostUsageSnapshot:
        return copy.deepcopy(self._usage)

    def check_budget(self) -> BudgetCheck:
        messages: list[str] = []
        limits = (
            ("Daily", self._usage.daily_usd, self.budget.daily_usd_limit),
            ("Monthly", self._usage.monthly_usd, self.budget.monthly_usd_limit),
        )
        for label, spent, limit in limits:
            if limit is not None and spent > limit:
                messages.append(f"{label} budget exceeded: {spent:.3f} > {limit:.3f}")

        blocked = bool(messages) and self.budget.enforcement in BLOCKING_ENFORCEMENT
        if messages:
            BUDGET_BREACHES_TOTAL.inc()
            logger.warning(f"Budget check ({self.budget.enforcement}): {'; '.join(messages)}")
        return BudgetCheck(ok=not blocked, messages=messages, blocked=blocked)

    def is_blocked(self) -> bool:
        return self.check_budget().blocked

    def reset_daily(self) -> None:
        self._usage.daily_usd = 0.0

    def reset_monthly(self) -> None:
        self._usage = CostUsageSnapshot()

    @staticmethod
    def suggest_optimizations(
        assignments: dict[AgentRole, str], catalog: Iterable[CatalogModel]
    ) -> list[CostOptimizationSuggestion]:
        """Point each assigned model at the cheapest cheaper model from the same provider."""
        models = list(catalog)
        by_id = {m.model: m for m in models}
        suggestions: list[CostOptimizationSuggestion] = []
        for role, model_id in assignments.items():
            current = by_id.get(model_id)
            if current is None:
                continue
            same_provider = sorted(
                (m for m in models if m.provider_id == current.provider_id),
                key=lambda m: m.blended_cost,
            )
            cheaper = next((m for m in same_provider if m.blended_cost < current.blended_cost), None)
            if cheaper is None:
                continue
            suggestions.append(
                CostOptimizationSuggestion(
                    role=role,
                    from_model=current.model,
                    to_model=cheaper.model,
                    estimated_savings_per_mtok_usd=round(current.blended_cost - cheaper.blended_cost, 3),
                    reason="Cheaper same-provider model available",
                )
            )
        return suggestions
