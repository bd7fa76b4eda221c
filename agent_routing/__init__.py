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

"""Routing decision engine mapping agent roles to backend models."""

from .anomaly import AnomalyDetector
from .config import EngineConfig, load_config
from .cost_tracker import CostTracker
from .errors import ExperimentAllocationError, RoutingError, UnknownExperimentError, marshal_exception
from .experiments import ExperimentManager
from .federated import FederatedAggregator, FederatedUpdate
from .hot_swap import HotSwapManager
from .models import AgentRole, CatalogModel, QuotaStatus, RoutingPlan, RoutingPolicy
from .plan_builder import PlanBuilder, PlanResult
from .quota_forecast import forecast_quota
from .rl import RoutingQAgent
from .runtime import RoutingRuntime, RuntimeMetricIngest, create_runtime
from .scoring import rank_candidates, score_candidate
from .shadow_evaluation import ShadowEvaluationEngine

__version__ = "0.1.0"

__all__ = [
    "AgentRole",
    "AnomalyDetector",
    "CatalogModel",
    "CostTracker",
    "EngineConfig",
    "ExperimentAllocationError",
    "ExperimentManager",
    "FederatedAggregator",
    "FederatedUpdate",
    "HotSwapManager",
    "PlanBuilder",
    "PlanResult",
    "QuotaStatus",
    "RoutingError",
    "RoutingPlan",
    "RoutingPolicy",
    "RoutingQAgent",
    "RoutingRuntime",
    "RuntimeMetricIngest",
    "ShadowEvaluationEngine",
    "UnknownExperimentError",
    "create_runtime",
    "forecast_quota",
    "load_config",
    "marshal_exception",
    "rank_candidates",
    "score_candidate",
]
