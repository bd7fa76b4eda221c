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

"""Versioned holder of the active routing assignments.

Publishing a new plan bumps the version and notifies subscribers with the
roles whose primary model changed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from .models import AgentAssignment, AgentRole

logger = logging.getLogger(__name__)


@dataclass
class RuntimeRoutingConfig:
    version: int = 0
    assignments: dict[AgentRole, AgentAssignment] = field(default_factory=dict)
    chains: dict[AgentRole, list[str]] = field(default_factory=dict)

    def copy(self) -> RuntimeRoutingConfig:
        return RuntimeRoutingConfig(
            version=self.version,
            assignments={role: a.model_copy(deep=True) for role, a in self.assignments.items()},
            chains={role: list(chain) for role, chain in self.chains.items()},
        )


@dataclass
class HotSwapEvent:
    from_version: int
    to_version: int
    changed_roles: list[AgentRole]


Subscriber = Callable[[HotSwapEvent], None]


class HotSwapManager:
    def __init__(self, initial: RuntimeRoutingConfig | None = None) -> None:
        self._config = initial.copy() if initial else RuntimeRoutingConfig()
        self._subscribers: list[Subscriber] = []

    @property
    def version(self) -> int:
        return self._config.version

    def current(self) -> RuntimeRoutingConfig:
        """Deep copy of the active config; mutating it does not affect the manager."""
        return self._config.copy()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; the returned function removes it again."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def apply(
        self,
        assignments: dict[AgentRole, AgentAssignment],
        chains: dict[AgentRole, list[str]],
    ) -> RuntimeRoutingConfig:
        previous = self._config
        changed = [
            role
            for role, assignment in assignments.items()
            if previous.assignments.get(role) is None or previous.assignments[role].model != assignment.model
        ]
        self._config = RuntimeRoutingConfig(
            version=previous.version + 1, assignments=dict(assignments), chains=dict(chains)
        ).copy()

        event = HotSwapEvent(from_version=previous.version, to_version=self._config.version, changed_roles=changed)
        logger.info(
            f"Routing config v{event.from_version} -> v{event.to_version}; "
            f"changed roles: {[r.value for r in changed] or 'none'}"
        )
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                logger.error(f"Hot-swap subscriber failed: {e}")
        return self.current()
