"""Tests for shadow evaluation of candidate models."""

import pytest

from agent_routing.config import ShadowConfig
from agent_routing.models import AgentRole, BillingMode, Recommendation, TelemetrySample
from agent_routing.shadow_evaluation import ShadowEvaluationEngine


def sample(success, latency, cost, fallback=0.05, count=40, quality=None) -> TelemetrySample:
    return TelemetrySample(
        success_rate=success,
        avg_latency_ms=latency,
        p95_latency_ms=latency * 2,
        avg_cost_usd=cost,
        fallback_rate=fallback,
        sample_count=count,
        quality_score=quality,
    )


class TestShadowEvaluationEngine:
    def setup_method(self):
        self.engine = ShadowEvaluationEngine(ShadowConfig(min_samples=30))
        self.role = AgentRole.ORACLE

    def test_holds_below_min_samples(self):
        """Thin evidence never moves the recommendation."""
        self.engine.record_metrics(self.role, "nanogpt/gpt-4o", sample(0.9, 1200, 0.05, count=10))
        self.engine.record_metrics(self.role, "nanogpt/gpt-4o-mini", sample(0.99, 500, 0.01, count=10))
        result = self.engine.evaluate_candidate("nanogpt/gpt-4o-mini", "nanogpt/gpt-4o", self.role)
        assert result.recommendation == Recommendation.HOLD
        assert result.reasons == ["Insufficient samples: 10/30"]
        assert result.confidence == 0.0

    def test_promotes_cheaper_faster_candidate(self):
        """A faster, cheaper candidate with equal-or-better success is promoted."""
        self.engine.record_metrics(self.role, "nanogpt/gpt-4o", sample(0.9, 1200, 0.05))
        self.engine.record_metrics(self.role, "nanogpt/gpt-4o-mini", sample(0.92, 900, 0.01, fallback=0.04))
        result = self.engine.evaluate_candidate("nanogpt/gpt-4o-mini", "nanogpt/gpt-4o", self.role)
        assert result.recommendation == Recommendation.PROMOTE
        assert result.composite_score > 0.06
        assert result.confidence == pytest.approx(40 / 60)

    def test_rolls_back_on_success_drop(self):
        """A success drop past the regression threshold rolls back."""
        self.engine.record_metrics(self.role, "nanogpt/gpt-4o", sample(0.9, 1200, 0.05))
        self.engine.record_metrics(self.role, "chutes/minimax-m2.5", sample(0.8, 1500, 0.01, fallback=0.15))
        result = self.engine.evaluate_candidate("chutes/minimax-m2.5", "nanogpt/gpt-4o", self.role)
        assert result.recommendation == Recommendation.ROLLBACK
        assert result.reasons[0].startswith("Regression detected")
        assert "Latency regressed materially." in result.reasons
        assert "Fallback rate increased materially." in result.reasons

    def test_cost_increase_alone_does_not_roll_back(self):
        """Shadow comparisons carry no hard cost guard."""
        self.engine.record_metrics(self.role, "nanogpt/gpt-4o-mini", sample(0.9, 1000, 0.01))
        self.engine.record_metrics(self.role, "nanogpt/gpt-4o", sample(0.91, 1000, 0.012))
        result = self.engine.evaluate_candidate("nanogpt/gpt-4o", "nanogpt/gpt-4o-mini", self.role)
        assert result.recommendation == Recommendation.HOLD
        assert "Cost increased materially." in result.reasons

    def test_missing_metrics_hold(self):
        """An unrecorded side yields hold, not an error."""
        self.engine.record_metrics(self.role, "nanogpt/gpt-4o", sample(0.9, 1200, 0.05))
        result = self.engine.evaluate_candidate("nanogpt/gpt-4o-mini", "nanogpt/gpt-4o", self.role)
        assert result.recommendation == Recommendation.HOLD
        assert result.reasons[0].startswith("Insufficient metrics")
        assert result.candidate is None

    def test_disabled_engine_holds(self):
        """With shadow evaluation switched off every candidate holds."""
        engine = ShadowEvaluationEngine(ShadowConfig(enabled=False))
        engine.record_metrics(self.role, "a/base", sample(0.9, 1200, 0.05))
        engine.record_metrics(self.role, "a/cand", sample(0.5, 5000, 0.05))
        result = engine.evaluate_candidate("a/cand", "a/base", self.role)
        assert result.recommendation == Recommendation.HOLD
        assert result.reasons == ["Shadow evaluation disabled."]

    def test_metrics_are_per_role(self):
        """Recording under one role does not feed another."""
        self.engine.record_metrics(AgentRole.FIXER, "nanogpt/gpt-4o", sample(0.9, 1200, 0.05))
        assert self.engine.get_metrics(self.role, "nanogpt/gpt-4o") is None


class TestMetricAccumulation:
    def test_sample_weighted_average(self):
        """Averages weight each report by its sample count."""
        engine = ShadowEvaluationEngine()
        engine.record_metrics(AgentRole.FIXER, "a/m", sample(1.0, 1000, 0.02, count=10))
        metrics = engine.record_metrics(
            AgentRole.FIXER, "a/m", sample(0.6, 2000, 0.02, count=30), billing_mode=BillingMode.PAYGO
        )
        assert metrics.samples == 40
        assert metrics.success_rate == pytest.approx(0.7)
        assert metrics.avg_latency_ms == pytest.approx(1750)
        assert metrics.billing_mode == BillingMode.PAYGO

    def test_zero_count_reports_weigh_one(self):
        """A report without a sample count still counts once."""
        engine = ShadowEvaluationEngine()
        metrics = engine.record_metrics(AgentRole.FIXER, "a/m", sample(0.8, 1000, 0.0, count=0))
        assert metrics.samples == 1

    def test_quality_only_blends_when_reported(self):
        """Quality starts from the first report that carries it."""
        engine = ShadowEvaluationEngine()
        engine.record_metrics(AgentRole.FIXER, "a/m", sample(0.9, 1000, 0.0, count=10))
        metrics = engine.record_metrics(AgentRole.FIXER, "a/m", sample(0.9, 1000, 0.0, count=10, quality=80))
        assert metrics.quality_score == 80


def test_thresholds_follow_config():
    """Rollback and success-drop thresholds derive from the regression threshold."""
    thresholds = ShadowEvaluationEngine(ShadowConfig(regression_threshold=0.1, min_samples=5)).thresholds
    assert thresholds.rollback_threshold == -0.1
    assert thresholds.min_success_drop_pct == 0.1
    assert thresholds.max_cost_increase_pct is None
    assert thresholds.min_samples == 5
