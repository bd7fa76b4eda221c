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

"""Prometheus metrics for the routing engine.

Every metric is registered on the engine's own ``REGISTRY`` rather than the
process-wide default, so embedding hosts choose whether and how to expose it
(``render_metrics`` returns the text exposition format).
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

REGISTRY = CollectorRegistry(auto_describe=True)

# Plan assembly
PLANS_BUILT_TOTAL = Counter("routing_plans_built_total", "Routing plans built", registry=REGISTRY)
PLAN_BUILD_SECONDS = Histogram(
    "routing_plan_build_seconds",
    "Wall time spent building a routing plan",
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5],
    registry=REGISTRY,
)
PLAN_LAYER_TOTAL = Counter(
    "routing_plan_layer_total",
    "Role assignments decided by a non-default layer",
    ["layer"],
    registry=REGISTRY,
)

# Telemetry and anomaly detection
TELEMETRY_INGESTED_TOTAL = Counter("routing_telemetry_ingested_total", "Telemetry reports ingested", registry=REGISTRY)
ANOMALIES_DETECTED_TOTAL = Counter(
    "routing_anomalies_detected_total", "Anomalies flagged by type", ["type"], registry=REGISTRY
)
CIRCUIT_BREAKER_EVENTS_TOTAL = Counter(
    "routing_circuit_breaker_events_total", "Circuit breaker openings and expiries", ["event"], registry=REGISTRY
)
CIRCUIT_BREAKERS_OPEN = Gauge("routing_circuit_breakers_open", "Circuit breakers currently open", registry=REGISTRY)

# Experiments and canaries
EXPERIMENTS_REGISTERED = Gauge("routing_experiments_registered", "Registered experiments", registry=REGISTRY)
EXPERIMENT_ASSIGNMENTS_TOTAL = Counter(
    "routing_experiment_assignments_total", "Subjects bucketed into a variant", registry=REGISTRY
)
CANARY_DECISIONS_TOTAL = Counter(
    "routing_canary_decisions_total",
    "Non-hold canary verdicts by source",
    ["source", "recommendation"],
    registry=REGISTRY,
)

# Learning
Q_UPDATES_TOTAL = Counter("routing_q_updates_total", "Q-table updates applied", registry=REGISTRY)
FEDERATED_ROUNDS_TOTAL = Counter("routing_federated_rounds_total", "Federated aggregation rounds", registry=REGISTRY)

# Spend
COST_USD_RECORDED = Histogram(
    "routing_cost_usd_recorded",
    "USD cost of each recorded call",
    buckets=[0.001, 0.01, 0.1, 1.0, 10.0],
    registry=REGISTRY,
)
BUDGET_BREACHES_TOTAL = Counter("routing_budget_breaches_total", "Budget checks over a limit", registry=REGISTRY)

# Errors
ERRORS_TOTAL = Counter("routing_errors_total", "Marshalled errors by code", ["code"], registry=REGISTRY)


def render_metrics() -> bytes:
    """Current engine metrics in the Prometheus text exposition format."""
    return generate_latest(REGISTRY)
