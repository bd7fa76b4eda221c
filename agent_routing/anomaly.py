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

"""Rolling-window anomaly detection and per (role, model) circuit breakers."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from .config import AnomalyConfig
from .metrics import (
    ANOMALIES_DETECTED_TOTAL,
    CIRCUIT_BREAKER_EVENTS_TOTAL,
    CIRCUIT_BREAKERS_OPEN,
)
from .models import AgentRole, TelemetrySample

logger = logging.getLogger(__name__)


@dataclass
class DetectedAnomaly:
    role: AgentRole
    model: str
    severity: str  # low | medium | high | critical
    type: str  # latency-spike | cost-spike | fallback-spike | error-spike
    message: str


@dataclass
class CircuitBreakerState:
    blocked_until: float  # epoch seconds
    reason: str


class AnomalyDetector:
    """Keeps the last N telemetry samples per (role, model) and flags spikes.

    The newest sample is compared against the average of every earlier sample
    still in the window. Breakers expire lazily: the first read past the
    deadline reports closed and drops the stored state.
    """

    def __init__(self, config: AnomalyConfig | None = None, clock: Callable[[], float] = time.time) -> None:
        self.config = config or AnomalyConfig()
        self._clock = clock
        self._history: dict[tuple[AgentRole, str], deque[TelemetrySample]] = {}
        self._breakers: dict[tuple[AgentRole, str], CircuitBreakerState] = {}

    def record(self, role: AgentRole, model: str, sample: TelemetrySample) -> None:
        key = (role, model)
        window = self._history.get(key)
        if window is None:
            window = deque(maxlen=self.config.window_size)
            self._history[key] = window
        window.append(sample)

    def history_size(self, role: AgentRole, model: str) -> int:
        return len(self._history.get((role, model), ()))

    def detect(self, role: AgentRole, model: str) -> list[DetectedAnomaly]:
        samples = list(self._history.get((role, model), ()))
        if len(samples) < self.config.min_samples:
            return []

        cfg = self.config
        latest = samples[-1]
        baseline = samples[:-1]
        n = len(baseline)
        avg_latency = sum(s.avg_latency_ms for s in baseline) / n
        avg_cost = sum(s.avg_cost_usd for s in baseline) / n
        avg_fallback = sum(s.fallback_rate for s in baseline) / n
        avg_success = sum(s.success_rate for s in baseline) / n

        anomalies: list[DetectedAnomaly] = []
        if avg_latency > 0 and latest.avg_latency_ms > avg_latency * cfg.latency_spike_factor:
            anomalies.append(
                DetectedAnomaly(
                    role, model, "high", "latency-spike",
                    f"Latency spiked {latest.avg_latency_ms / avg_latency:.2f}x",
                )
            )
        if avg_cost > 0 and latest.avg_cost_usd > avg_cost * cfg.cost_spike_factor:
            anomalies.append(
                DetectedAnomaly(
                    role, model, "medium", "cost-spike",
                    f"Cost spiked {latest.avg_cost_usd / avg_cost:.2f}x",
                )
            )
        if latest.fallback_rate > max(cfg.fallback_spike_floor, avg_fallback * cfg.fallback_spike_factor):
            anomalies.append(
                DetectedAnomaly(
                    role, model, "critical", "fallback-spike",
                    f"Fallback rate rose to {latest.fallback_rate * 100:.1f}%",
                )
            )
        if latest.success_rate < min(cfg.success_drop_ceiling, avg_success - cfg.success_drop_margin):
            anomalies.append(
                DetectedAnomaly(
                    role, model, "high", "error-spike",
                    f"Success rate dropped to {latest.success_rate * 100:.1f}%",
                )
            )

        if anomalies:
            for anomaly in anomalies:
                ANOMALIES_DETECTED_TOTAL.labels(type=anomaly.type).inc()
            logger.warning(
                f"{len(anomalies)} anomalies for {role.value}|{model}: "
                + "; ".join(a.message for a in anomalies)
            )
        return anomalies

    def open_circuit(self, role: AgentRole, model: str, reason: str, ttl_seconds: float) -> None:
        key = (role, model)
        if key not in self._breakers:
            CIRCUIT_BREAKERS_OPEN.inc()
        self._breakers[key] = CircuitBreakerState(blocked_until=self._clock() + ttl_seconds, reason=reason)
        CIRCUIT_BREAKER_EVENTS_TOTAL.labels(event="opened").inc()
        logger.info(f"Circuit opened for {role.value}|{model} for {ttl_seconds:.0f}s: {reason}")

    def circuit_state(self, role: AgentRole, model: str) -> CircuitBreakerState | None:
        """Current breaker state, or None when closed (expired state is cleared)."""
        key = (role, model)
        state = self._breakers.get(key)
        if state is None:
            return None
        if self._clock() >= state.blocked_until:
            del self._breakers[key]
            CIRCUIT_BREAKERS_OPEN.dec()
            CIRCUIT_BREAKER_EVENTS_TOTAL.labels(event="expired").inc()
            logger.debug(f"Circuit for {role.value}|{model} expired")
            return None
        return state

    def is_circuit_open(self, role: AgentRole, model: str) -> bool:
        return self.circuit_state(role, model) is not None
