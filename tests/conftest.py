"""Shared fixtures for routing engine tests."""

# Ensure project root on sys.path so tests run without an editable install
import os
import sys

root = os.path.dirname(os.path.abspath(__file__))
proj = os.path.abspath(os.path.join(root, ".."))
if proj not in sys.path:
    sys.path.insert(0, proj)

import pytest  # noqa: E402

from agent_routing.models import (  # noqa: E402
    CatalogModel,
    Enforcement,
    PolicyMode,
    QuotaStatus,
    RoutingPolicy,
    SubscriptionBudget,
)

FREE_MODEL = "opencode/big-pickle"


def make_model(model: str, **overrides) -> CatalogModel:
    """Catalog entry with capable defaults (reasoning and tool calling on, 200k context)."""
    fields = {
        "model": model,
        "context_limit": 200_000,
        "output_limit": 32_000,
        "reasoning": True,
        "toolcall": True,
    }
    fields.update(overrides)
    return CatalogModel(**fields)


CATALOG = [
    make_model("nanogpt/gpt-4o", cost_input=2, cost_output=8),
    make_model("nanogpt/gpt-4o-mini", cost_input=0.4, cost_output=1.2),
    make_model("chutes/kimi-k2.5", cost_input=0.2, cost_output=0.5),
    make_model("chutes/minimax-m2.5", reasoning=False, cost_input=0.1),
    make_model(FREE_MODEL, cost_input=0, cost_output=0),
    make_model("openai/gpt-5.3-codex", cost_input=4, cost_output=12),
]


@pytest.fixture
def catalog() -> list[CatalogModel]:
    return list(CATALOG)


@pytest.fixture
def catalog_without_free() -> list[CatalogModel]:
    return [m for m in CATALOG if m.provider_id != "opencode" and m.model != "chutes/minimax-m2.5"]


@pytest.fixture
def hybrid_policy() -> RoutingPolicy:
    return RoutingPolicy(
        mode=PolicyMode.HYBRID,
        subscription_budget=SubscriptionBudget(
            daily_requests=120, monthly_requests=3_000, enforcement=Enforcement.SOFT
        ),
    )


@pytest.fixture
def quota_status() -> QuotaStatus:
    return QuotaStatus(daily_remaining=90, monthly_remaining=2_400)
