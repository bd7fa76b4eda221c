"""Tests for anomaly detection and circuit breakers."""

from agent_routing.anomaly import AnomalyDetector
from agent_routing.config import AnomalyConfig
from agent_routing.models import AgentRole, TelemetrySample

MODEL = "nanogpt/gpt-4o-mini"


def normal_sample() -> TelemetrySample:
    return TelemetrySample(
        success_rate=0.96, avg_latency_ms=900, p95_latency_ms=4000, avg_cost_usd=0.01, fallback_rate=0.05, sample_count=30
    )


def spike_sample() -> TelemetrySample:
    return TelemetrySample(
        success_rate=0.7, avg_latency_ms=3000, p95_latency_ms=4000, avg_cost_usd=0.04, fallback_rate=0.5, sample_count=30
    )


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestAnomalyDetection:
    def setup_method(self):
        self.detector = AnomalyDetector()

    def test_requires_minimum_samples(self):
        """Fewer than eight samples never produce anomalies."""
        for _ in range(6):
            self.detector.record(AgentRole.FIXER, MODEL, normal_sample())
        self.detector.record(AgentRole.FIXER, MODEL, spike_sample())
        assert self.detector.history_size(AgentRole.FIXER, MODEL) == 7
        assert self.detector.detect(AgentRole.FIXER, MODEL) == []

    def test_detects_every_spike_type(self):
        """A sample far off the baseline trips all four detectors."""
        for _ in range(8):
            self.detector.record(AgentRole.FIXER, MODEL, normal_sample())
        self.detector.record(AgentRole.FIXER, MODEL, spike_sample())

        anomalies = self.detector.detect(AgentRole.FIXER, MODEL)
        by_type = {a.type: a.severity for a in anomalies}
        assert by_type == {
            "latency-spike": "high",
            "cost-spike": "medium",
            "fallback-spike": "critical",
            "error-spike": "high",
        }

    def test_steady_traffic_is_quiet(self):
        """Stable telemetry produces nothing."""
        for _ in range(12):
            self.detector.record(AgentRole.FIXER, MODEL, normal_sample())
        assert self.detector.detect(AgentRole.FIXER, MODEL) == []

    def test_zero_baseline_cost_is_not_a_spike(self):
        """Free models with zero baseline cost never report a cost spike."""
        free = TelemetrySample(success_rate=0.95, avg_latency_ms=500)
        for _ in range(8):
            self.detector.record(AgentRole.ORACLE, "opencode/big-pickle", free)
        self.detector.record(
            AgentRole.ORACLE, "opencode/big-pickle", TelemetrySample(success_rate=0.95, avg_latency_ms=500, avg_cost_usd=1.0)
        )
        assert self.detector.detect(AgentRole.ORACLE, "opencode/big-pickle") == []

    def test_window_is_bounded(self):
        """History keeps only the most recent window."""
        detector = AnomalyDetector(AnomalyConfig(window_size=10))
        for _ in range(25):
            detector.record(AgentRole.FIXER, MODEL, normal_sample())
        assert detector.history_size(AgentRole.FIXER, MODEL) == 10

    def test_histories_are_per_role(self):
        """The same model under different roles keeps separate windows."""
        self.detector.record(AgentRole.FIXER, MODEL, normal_sample())
        assert self.detector.history_size(AgentRole.ORACLE, MODEL) == 0


class TestCircuitBreaker:
    def setup_method(self):
        self.clock = FakeClock()
        self.detector = AnomalyDetector(clock=self.clock)

    def test_closed_by_default(self):
        """Nothing is blocked until a circuit is opened."""
        assert not self.detector.is_circuit_open(AgentRole.FIXER, MODEL)

    def test_open_until_ttl_elapses(self):
        """The breaker blocks for exactly the TTL, then reads closed."""
        self.detector.open_circuit(AgentRole.FIXER, MODEL, "shadow regression", ttl_seconds=30)
        state = self.detector.circuit_state(AgentRole.FIXER, MODEL)
        assert state is not None
        assert state.reason == "shadow regression"
        assert state.blocked_until == 1030

        self.clock.now = 1029.9
        assert self.detector.is_circuit_open(AgentRole.FIXER, MODEL)

        self.clock.now = 1030
        assert not self.detector.is_circuit_open(AgentRole.FIXER, MODEL)
        assert self.detector.circuit_state(AgentRole.FIXER, MODEL) is None

    def test_scoped_to_role(self):
        """Opening a circuit for one role leaves other roles routable."""
        self.detector.open_circuit(AgentRole.FIXER, MODEL, "regression", ttl_seconds=60)
        assert not self.detector.is_circuit_open(AgentRole.ORACLE, MODEL)

    def test_reopen_extends_deadline(self):
        """Re-opening replaces the deadline and reason."""
        self.detector.open_circuit(AgentRole.FIXER, MODEL, "first", ttl_seconds=10)
        self.clock.now = 1005
        self.detector.open_circuit(AgentRole.FIXER, MODEL, "second", ttl_seconds=10)
        self.clock.now = 1012
        state = self.detector.circuit_state(AgentRole.FIXER, MODEL)
        assert state is not None
        assert state.reason == "second"
