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

"""Per-role pinned model preferences."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

from .models import ALL_ROLES, AgentRole

PROVIDER_MODEL_PATTERN = re.compile(r"^[^/\s]+/[^\s]+$")

ModelPreferences = dict[AgentRole, list[str]]


def normalize_model_preferences(value: Any) -> ModelPreferences | None:
    """Clean raw preferences into ``{role: [provider/model, ...]}``.

    Unknown roles, non-list entries and ids that are not ``provider/model``
    are dropped. Returns None when nothing usable remains.
    """
    if not isinstance(value, Mapping):
        return None

    normalized: ModelPreferences = {}
    for role in ALL_ROLES:
        raw = value.get(role, value.get(role.value))
        if not isinstance(raw, (list, tuple)):
            continue
        entries: list[str] = []
        for entry in raw:
            if not isinstance(entry, str):
                continue
            entry = entry.strip()
            if PROVIDER_MODEL_PATTERN.match(entry) and entry not in entries:
                entries.append(entry)
        if entries:
            normalized[role] = entries
    return normalized or None


def resolve_preferred_model(
    role: AgentRole, preferences: ModelPreferences | None, candidates: Iterable[str]
) -> str | None:
    """First preferred id present among ``candidates`` (case-insensitive), in catalog spelling."""
    wanted = (preferences or {}).get(role)
    if not wanted:
        return None
    by_lower = {candidate.lower(): candidate for candidate in candidates}
    for model_id in wanted:
        resolved = by_lower.get(model_id.lower())
        if resolved:
            return resolved
    return None
