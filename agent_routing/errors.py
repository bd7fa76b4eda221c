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

"""Error taxonomy for the routing engine.

Provides:
- Stable ``ErrorCode`` values.
- Exception hierarchy rooted at ``RoutingError``.
- ``marshal_exception`` producing a structured payload and bumping per-code counters.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TypedDict

from .metrics import ERRORS_TOTAL


class ErrorCode(str, Enum):
    EXPERIMENT_ALLOCATION = "experiment_allocation_invalid"
    UNKNOWN_EXPERIMENT = "unknown_experiment"
    CONFIGURATION_ERROR = "configuration_error"
    VALIDATION_ERROR = "validation_error"
    INTERNAL = "internal_error"


class ErrorPayload(TypedDict):
    error: str
    detail: str


def error_response(code: ErrorCode, detail: str = "") -> ErrorPayload:
    return {"error": code.value, "detail": detail}


@dataclass(eq=False)
class RoutingError(Exception):
    code: ErrorCode
    detail: str = ""

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.code.value}: {self.detail}" if self.detail else self.code.value


class ExperimentAllocationError(RoutingError):
    def __init__(self, detail: str = "") -> None:
        super().__init__(ErrorCode.EXPERIMENT_ALLOCATION, detail)


class UnknownExperimentError(RoutingError):
    def __init__(self, detail: str = "") -> None:
        super().__init__(ErrorCode.UNKNOWN_EXPERIMENT, detail)


class ConfigurationError(RoutingError):
    def __init__(self, detail: str = "") -> None:
        super().__init__(ErrorCode.CONFIGURATION_ERROR, detail)


class ValidationError(RoutingError):
    def __init__(self, detail: str = "") -> None:
        super().__init__(ErrorCode.VALIDATION_ERROR, detail)


def marshal_exception(exc: Exception) -> ErrorPayload:
    """Map any exception to ErrorPayload and increment per-code metrics.

    Unknown exceptions map to INTERNAL.
    """
    if isinstance(exc, RoutingError):
        code = exc.code
        detail = exc.detail
    else:
        code = ErrorCode.INTERNAL
        detail = str(exc)
    ERRORS_TOTAL.labels(code=code.value).inc()
    return error_response(code, detail)
