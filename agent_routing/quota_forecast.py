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

"""Straight-line quota exhaustion forecast from recent daily usage."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from .models import QuotaStatus, UsageSnapshot

HISTORY_WINDOW = 14

EXHAUSTION_RECOMMENDATIONS = (
    "Shift high-volume agents to paygo or alternate providers.",
    "Increase fallback depth to reduce hard failures near quota exhaustion.",
)
HEALTHY_RECOMMENDATION = "Quota forecast is healthy; keep hybrid mode and monitor weekly."


@dataclass
class QuotaForecastPoint:
    date: datetime
    predicted_usage: int
    predicted_remaining: int
    risk_level: str  # none | low | medium | high | critical


@dataclass
class QuotaForecast:
    points: list[QuotaForecastPoint]
    confidence: float
    predicted_exhaustion_date: datetime | None = None
    recommendations: list[str] = field(default_factory=list)


def risk_level(remaining: float, baseline: float) -> str:
    if remaining <= 0:
        return "critical"
    if baseline <= 0:
        return "none"
    pct = remaining / baseline
    if pct < 0.1:
        return "critical"
    if pct < 0.25:
        return "high"
    if pct < 0.5:
        return "medium"
    if pct < 0.75:
        return "low"
    return "none"


def forecast_quota(
    quota: QuotaStatus,
    history: Sequence[UsageSnapshot],
    horizon_days: int,
    start: datetime | None = None,
) -> QuotaForecast:
    horizon_days = max(1, horizon_days)
    recent = list(history)[-HISTORY_WINDOW:]
    mean = sum(entry.calls for entry in recent) / len(recent) if recent else 0.0
    daily_average = max(1, math.floor(mean + 0.5))  # half rounds up
    start = start or datetime.now(timezone.utc)

    points: list[QuotaForecastPoint] = []
    remaining = quota.daily_remaining
    exhaustion: datetime | None = None
    for day in range(horizon_days):
        date = start + timedelta(days=day)
        remaining -= daily_average
        if exhaustion is None and remaining <= 0:
            exhaustion = date
        points.append(
            QuotaForecastPoint(
                date=date,
                predicted_usage=daily_average,
                predicted_remaining=max(0, remaining),
                risk_level=risk_level(remaining, quota.daily_remaining),
            )
        )

    if len(recent) >= 7:
        confidence = 0.82
    elif len(recent) >= 3:
        confidence = 0.65
    else:
        confidence = 0.45

    recommendations = list(EXHAUSTION_RECOMMENDATIONS) if exhaustion else [HEALTHY_RECOMMENDATION]
    return QuotaForecast(
        points=points,
        confidence=confidence,
        predicted_exhaustion_date=exhaustion,
        recommendations=recommendations,
    )
