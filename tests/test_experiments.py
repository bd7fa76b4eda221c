"""Tests for experiment registration, bucketing and metric windows."""

import pytest

from agent_routing.errors import ErrorCode, ExperimentAllocationError, UnknownExperimentError
from agent_routing.experiments import ExperimentManager, bucket_for, hash_string
from agent_routing.models import AgentAssignment, AgentRole, Experiment, ExperimentVariant, TelemetrySample


def make_experiment(allocation: dict[str, float], variant_ids=None) -> Experiment:
    variant_ids = variant_ids or list(allocation)
    return Experiment(
        id="exp-routing",
        name="routing experiment",
        variants=[ExperimentVariant(id=v, description=v) for v in variant_ids],
        allocation=allocation,
    )


def sample(success: float, latency: float = 1000.0, cost: float = 0.03, quality: float | None = None) -> TelemetrySample:
    return TelemetrySample(
        success_rate=success, avg_latency_ms=latency, avg_cost_usd=cost, fallback_rate=0.05, quality_score=quality
    )


class TestHash:
    def test_matches_32bit_polynomial_hash(self):
        """Known values of the signed 32-bit ``h * 31 + c`` hash."""
        assert hash_string("") == 0
        assert hash_string("a") == 97
        assert hash_string("hello") == 99162322

    def test_wraps_to_signed_32bit(self):
        """Overflow wraps exactly like 32-bit integer arithmetic."""
        assert hash_string("polygenelubricants") == -(2**31)
        assert -(2**31) <= hash_string("x" * 100) < 2**31

    def test_astral_characters_hash_as_surrogate_pairs(self):
        """An emoji contributes its two UTF-16 code units, not its code point."""
        assert hash_string("\U0001F600") == 0xD83D * 31 + 0xDE00
        assert hash_string("exp|user-\U0001F600") == 1727990726

    def test_bucket_range(self):
        """Buckets fall in [0, 100)."""
        for subject in ("user-1", "user-2", "polygenelubricants", ""):
            assert 0 <= bucket_for("exp", subject) < 100


class TestRegistration:
    def setup_method(self):
        self.manager = ExperimentManager()

    def test_allocation_must_sum_to_100(self):
        """40 + 40 is rejected with a typed error."""
        with pytest.raises(ExperimentAllocationError) as exc:
            self.manager.register(make_experiment({"control": 40, "variant-a": 40}))
        assert exc.value.code == ErrorCode.EXPERIMENT_ALLOCATION
        assert self.manager.get_experiment("exp-routing") is None

    def test_rounded_allocation_is_accepted(self):
        """Allocations that round to 100 register."""
        self.manager.register(make_experiment({"a": 33.4, "b": 33.3, "c": 33.3}))
        assert self.manager.get_experiment("exp-routing") is not None

    def test_unknown_experiment_raises(self):
        """Bucketing against an unregistered id fails loudly."""
        with pytest.raises(UnknownExperimentError):
            self.manager.pick_variant("missing", "user-1")


class TestBucketing:
    def setup_method(self):
        self.manager = ExperimentManager()
        self.manager.register(make_experiment({"control": 50, "variant-a": 50}))

    def test_pick_is_idempotent(self):
        """The same subject always lands in the same variant."""
        first = self.manager.pick_variant("exp-routing", "user-123")
        for _ in range(5):
            assert self.manager.pick_variant("exp-routing", "user-123").id == first.id

    def test_pick_follows_bucket(self):
        """Buckets below the first allocation go to the first variant."""
        for subject in (f"user-{i}" for i in range(50)):
            expected = "control" if bucket_for("exp-routing", subject) < 50 else "variant-a"
            assert self.manager.pick_variant("exp-routing", subject).id == expected

    def test_gap_falls_back_to_first_variant(self):
        """Buckets not covered by any declared variant go to the first variant."""
        manager = ExperimentManager()
        manager.register(make_experiment({"control": 10, "retired": 90}, variant_ids=["control", "b"]))
        assert {manager.pick_variant("exp-routing", f"s{i}").id for i in range(40)} == {"control"}


class TestMetrics:
    def setup_method(self):
        self.manager = ExperimentManager(metrics_window=5)
        self.manager.register(make_experiment({"control": 50, "variant-a": 50}))

    def test_window_keeps_most_recent(self):
        """Only the last N samples per variant are retained."""
        for i in range(8):
            self.manager.record_variant_metrics("exp-routing", "control", sample(0.5 if i < 3 else 1.0))
        control = self.manager.summarize("exp-routing")[0]
        assert control.sample_count == 5
        assert control.avg_success_rate == 1.0

    def test_summarize_averages(self):
        """Averages are simple means over retained rows."""
        self.manager.record_variant_metrics("exp-routing", "control", sample(0.9, latency=800, quality=80))
        self.manager.record_variant_metrics("exp-routing", "control", sample(0.7, latency=1200))
        control = self.manager.summarize("exp-routing")[0]
        assert control.sample_count == 2
        assert control.avg_success_rate == pytest.approx(0.8)
        assert control.avg_latency_ms == pytest.approx(1000)
        assert control.avg_fallback_rate == pytest.approx(0.05)
        assert control.avg_quality_score == 80

    def test_summarize_reports_zeros_for_empty_variant(self):
        """A variant without data reports zero averages."""
        results = {r.variant_id: r for r in self.manager.summarize("exp-routing")}
        empty = results["variant-a"]
        assert (empty.sample_count, empty.avg_success_rate, empty.avg_latency_ms, empty.avg_cost_usd) == (0, 0, 0, 0)

    def test_summarize_unknown_experiment_is_empty(self):
        """Unknown experiments summarise to nothing."""
        assert self.manager.summarize("missing") == []


def test_apply_variant_overrides():
    """Overrides replace only the roles they name and leave the input untouched."""
    base = {
        AgentRole.ORACLE: AgentAssignment(model="nanogpt/gpt-4o"),
        AgentRole.FIXER: AgentAssignment(model="chutes/kimi-k2.5"),
    }
    variant = ExperimentVariant(
        id="variant-a", assignment_overrides={AgentRole.ORACLE: AgentAssignment(model="openai/gpt-5.3-codex")}
    )
    merged = ExperimentManager.apply_variant_overrides(base, variant)
    assert merged[AgentRole.ORACLE].model == "openai/gpt-5.3-codex"
    assert merged[AgentRole.FIXER].model == "chutes/kimi-k2.5"
    assert base[AgentRole.ORACLE].model == "nanogpt/gpt-4o"
