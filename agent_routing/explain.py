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

"""Human-readable rationale for a role's routing decision."""

from __future__ import annotations

from collections.abc import Sequence

from .models import AgentRole, RoutingDecisionExplanation, ScoredCandidate


def top_factors(candidate: ScoredCandidate, limit: int = 3) -> list[str]:
    """Components with the largest absolute contribution, biggest first."""
    ranked = sorted(candidate.components, key=lambda c: abs(c.contribution), reverse=True)
    return [f"{c.name}={c.normalized_score:.1f}" for c in ranked[:limit]]


def tradeoff_text(winner: ScoredCandidate, candidate: ScoredCandidate) -> str:
    delta = winner.total_score - candidate.total_score
    if delta < 8:
        return "near tie; pick based on latency/cost preference"
    if delta < 20:
        return "moderate score gap with meaningful tradeoffs"
    return "clear score gap; alternative is fallback-only"


def explain_routing_decision(
    role: AgentRole,
    ranked: Sequence[ScoredCandidate],
    alternatives: int = 3,
    selected: ScoredCandidate | None = None,
    note: str | None = None,
) -> RoutingDecisionExplanation | None:
    """Explain why ``selected`` (default: the top of ``ranked``) serves ``role``.

    ``note`` is prepended to the summary when the winner came from a layer
    other than scoring (a pinned preference, for example).
    """
    winner = selected or (ranked[0] if ranked else None)
    if winner is None:
        return None

    others = [c for c in ranked if c.model_id != winner.model_id][:alternatives]
    summary = (
        f"{winner.model_id} selected for {role.value} with score "
        f"{winner.total_score:.1f} ({winner.tier})."
    )
    if note:
        summary = f"{note} {summary}"

    return RoutingDecisionExplanation(
        role=role,
        selected_model=winner.model_id,
        selected_billing_mode=winner.billing_mode,
        score=winner.total_score,
        summary=summary,
        top_factors=top_factors(winner),
        alternatives=[
            {
                "model": c.model_id,
                "billing_mode": c.billing_mode.value,
                "score": c.total_score,
                "tradeoff": tradeoff_text(winner, c),
            }
            for c in others
        ],
    )
