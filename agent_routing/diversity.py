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

"""Provider-diverse candidate ranking and plan-level beam search.

- ``rank_provider_representatives`` caps how many candidates each provider
  contributes and how many providers are considered for a role.
- ``build_ranked_alternatives`` greedily builds a fallback chain that spreads
  across providers before repeating one.
- ``select_with_beam_search`` picks one candidate per role, keeping the best
  ``beam_width`` partial plans and rewarding an even provider spread.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from .config import SelectionConfig
from .models import AgentRole, CatalogModel, ScoredCandidate, ScoringContext
from .scoring import rank_candidates

logger = logging.getLogger(__name__)


class CircuitBreaker(Protocol):
    def is_circuit_open(self, role: AgentRole, model: str) -> bool: ...


@dataclass
class PartialPlan:
    selections: dict[AgentRole, ScoredCandidate] = field(default_factory=dict)
    provider_usage: dict[str, int] = field(default_factory=dict)
    total_score: float = 0.0


def _selectable(
    models: Iterable[CatalogModel], role: AgentRole, circuit_breaker: CircuitBreaker | None
) -> list[CatalogModel]:
    if circuit_breaker is None:
        return list(models)
    return [m for m in models if not circuit_breaker.is_circuit_open(role, m.model)]


def diversity_bonus(provider_usage: dict[str, int]) -> float:
    """1.0 for a perfectly even spread, falling towards 0 as usage concentrates."""
    counts = list(provider_usage.values())
    if not counts:
        return 0.0
    ideal = sum(counts) / len(counts)
    if ideal <= 0:
        return 0.0
    variance = sum((c - ideal) ** 2 for c in counts) / len(counts)
    return max(0.0, 1 - variance / (ideal * ideal))


def rank_provider_representatives(
    models: Iterable[CatalogModel],
    role: AgentRole,
    context: ScoringContext,
    max_per_provider: int,
    max_providers: int,
    circuit_breaker: CircuitBreaker | None = None,
) -> list[ScoredCandidate]:
    ranked = rank_candidates(_selectable(models, role, circuit_breaker), role, context)

    grouped: dict[str, list[ScoredCandidate]] = {}
    for candidate in ranked:
        if len(grouped.get(candidate.provider_id, ())) < max_per_provider:
            grouped.setdefault(candidate.provider_id, []).append(candidate)

    # Providers ordered by their best candidate; dict order keeps ties stable
    providers = sorted(grouped.values(), key=lambda items: -items[0].total_score)
    kept = providers[: max(0, max_providers)]
    result = [candidate for items in kept for candidate in items]
    result.sort(key=lambda c: (-c.total_score, c.provider_id, c.model_id))
    return result


def build_ranked_alternatives(
    role: AgentRole,
    models: Iterable[CatalogModel],
    context: ScoringContext,
    depth: int,
    max_per_provider: int = 2,
    max_providers: int | None = None,
    circuit_breaker: CircuitBreaker | None = None,
) -> list[ScoredCandidate]:
    """Greedy chain preferring a provider not yet in the chain at each step."""
    remaining = rank_provider_representatives(
        models,
        role,
        context,
        max_per_provider=max_per_provider,
        max_providers=max_providers if max_providers is not None else 1 << 30,
        circuit_breaker=circuit_breaker,
    )

    chain: list[ScoredCandidate] = []
    seen_providers: set[str] = set()
    while remaining and len(chain) < depth:
        pick = next((c for c in remaining if c.provider_id not in seen_providers), remaining[0])
        remaining.remove(pick)
        chain.append(pick)
        seen_providers.add(pick.provider_id)
    return chain


def select_with_beam_search(
    roles: Sequence[AgentRole],
    models: Sequence[CatalogModel],
    config: SelectionConfig,
    context: ScoringContext,
    circuit_breaker: CircuitBreaker | None = None,
) -> dict[AgentRole, ScoredCandidate]:
    """Choose one candidate per role, maximising total score plus diversity.

    Roles without any selectable candidate are left out of the result.
    """
    beam = [PartialPlan()]

    for role in roles:
        next_beam: list[PartialPlan] = []
        for plan in beam:
            ranked = rank_provider_representatives(
                models,
                role,
                context.with_usage(plan.provider_usage),
                max_per_provider=config.max_per_provider_per_role,
                max_providers=config.max_providers_per_role,
                circuit_breaker=circuit_breaker,
            )
            for candidate in ranked[: config.beam_width]:
                usage = dict(plan.provider_usage)
                usage[candidate.provider_id] = usage.get(candidate.provider_id, 0) + 1
                next_beam.append(
                    PartialPlan(
                        selections={**plan.selections, role: candidate},
                        provider_usage=usage,
                        total_score=plan.total_score + candidate.total_score,
                    )
                )

        if not next_beam:
            logger.warning(f"No selectable candidate for role {role.value}; leaving it unassigned")
            continue

        next_beam.sort(
            key=lambda p: -(p.total_score + diversity_bonus(p.provider_usage) * config.diversity_weight)
        )
        beam = next_beam[: config.beam_width]

    winner = beam[0]
    logger.debug(
        "Beam search winner: "
        + ", ".join(f"{role.value}={c.model_id}" for role, c in winner.selections.items())
    )
    return dict(winner.selections)
