"""Tests for provider-diverse ranking and beam search."""

from conftest import CATALOG

from agent_routing.config import SelectionConfig
from agent_routing.diversity import (
    build_ranked_alternatives,
    diversity_bonus,
    rank_provider_representatives,
    select_with_beam_search,
)
from agent_routing.models import (
    ALL_ROLES,
    AgentRole,
    Enforcement,
    PolicyMode,
    QuotaStatus,
    RoutingPolicy,
    ScoringContext,
    SubscriptionBudget,
)


class BlockList:
    """Circuit breaker stand-in that blocks a fixed set of (role, model) pairs."""

    def __init__(self, blocked):
        self.blocked = set(blocked)

    def is_circuit_open(self, role, model):
        return (role, model) in self.blocked


def make_context() -> ScoringContext:
    return ScoringContext(
        policy=RoutingPolicy(mode=PolicyMode.HYBRID, subscription_budget=SubscriptionBudget(enforcement=Enforcement.SOFT)),
        quota_status=QuotaStatus(daily_remaining=5000, monthly_remaining=60000),
    )


class TestProviderRepresentatives:
    def setup_method(self):
        self.context = make_context()

    def test_bounded_per_provider_and_provider_count(self):
        """At most one candidate from each of at most two providers."""
        ranked = rank_provider_representatives(CATALOG, AgentRole.ORACLE, self.context, 1, 2)
        providers = {c.provider_id for c in ranked}
        assert len(ranked) <= 2
        assert len(providers) <= 2

    def test_sorted_by_score(self):
        """Representatives come back best-first."""
        ranked = rank_provider_representatives(CATALOG, AgentRole.FIXER, self.context, 2, 6)
        scores = [c.total_score for c in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_circuit_open_models_are_excluded(self):
        """A blocked (role, model) pair never appears for that role."""
        breaker = BlockList({(AgentRole.ORACLE, "nanogpt/gpt-4o-mini")})
        ranked = rank_provider_representatives(CATALOG, AgentRole.ORACLE, self.context, 2, 6, breaker)
        assert "nanogpt/gpt-4o-mini" not in [c.model_id for c in ranked]

        other_role = rank_provider_representatives(CATALOG, AgentRole.FIXER, self.context, 2, 6, breaker)
        assert "nanogpt/gpt-4o-mini" in [c.model_id for c in other_role]

    def test_zero_per_provider_returns_nothing(self):
        """A per-provider cap of zero keeps no candidates."""
        assert rank_provider_representatives(CATALOG, AgentRole.ORACLE, self.context, 0, 6) == []

    def test_zero_providers_returns_nothing(self):
        """A provider cap of zero keeps no providers."""
        assert rank_provider_representatives(CATALOG, AgentRole.ORACLE, self.context, 2, 0) == []


class TestRankedAlternatives:
    def test_spreads_across_providers_first(self):
        """The first entries cover distinct providers before any repeats."""
        chain = build_ranked_alternatives(AgentRole.ORACLE, CATALOG, make_context(), depth=5)
        providers = [c.provider_id for c in chain]
        distinct = len({m.provider_id for m in CATALOG})
        assert len(set(providers[:distinct])) == distinct
        assert len(chain) == 5

    def test_depth_bounds_length(self):
        """Never longer than the requested depth."""
        chain = build_ranked_alternatives(AgentRole.EXPLORER, CATALOG, make_context(), depth=2)
        assert len(chain) == 2

    def test_empty_catalog(self):
        """No models, no alternatives."""
        assert build_ranked_alternatives(AgentRole.EXPLORER, [], make_context(), depth=3) == []


class TestBeamSearch:
    def test_assigns_every_role(self):
        """A non-empty catalog yields one winner per role."""
        winners = select_with_beam_search(ALL_ROLES, CATALOG, SelectionConfig(), make_context())
        assert set(winners) == set(ALL_ROLES)

    def test_empty_catalog_leaves_roles_unassigned(self):
        """No candidates means no assignments rather than an error."""
        assert select_with_beam_search(ALL_ROLES, [], SelectionConfig(), make_context()) == {}

    def test_blocked_role_is_skipped(self):
        """A role whose every model is blocked is left out; the rest still resolve."""
        breaker = BlockList({(AgentRole.DESIGNER, m.model) for m in CATALOG})
        winners = select_with_beam_search(ALL_ROLES, CATALOG, SelectionConfig(), make_context(), breaker)
        assert AgentRole.DESIGNER not in winners
        assert len(winners) == len(ALL_ROLES) - 1


def test_diversity_bonus():
    """Even spread scores 1, concentration lowers it, nothing scores 0."""
    assert diversity_bonus({}) == 0.0
    assert diversity_bonus({"a": 1, "b": 1}) == 1.0
    assert diversity_bonus({"a": 3, "b": 1}) == 0.75
