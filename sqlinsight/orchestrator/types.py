"""Core types and DTOs for the orchestration layer."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlinsight.core.config import Settings
from sqlinsight.exceptions import NoDimensionsEnabledError
from sqlinsight.tools.base import ToolResult

NO_DIMENSIONS_ERROR = "no analysis requested"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class OrchestratorState(str, Enum):
    """Lifecycle of one orchestration run."""

    IDLE = "idle"
    DIMENSION_SELECTION = "dimension_selection"
    DISPATCH = "dispatch"
    AWAITING = "awaiting"
    AGGREGATION = "aggregation"
    DONE = "done"
    ERROR_TERMINAL = "error_terminal"  # zero dimensions enabled


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class OrchestratorConfig:
    """Timeout and retry policy. Tunable defaults, not contracts."""

    tool_timeout_seconds: float = 60.0
    max_retries: int = 2
    retry_confidence_threshold: float = 0.5
    retry_base_delay: float = 1.0
    retry_max_delay: float = 8.0
    parallel_execution: bool = True
    batch_max_concurrent: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> OrchestratorConfig:
        return cls(
            tool_timeout_seconds=settings.tool_timeout_seconds,
            max_retries=settings.tool_max_retries,
            retry_confidence_threshold=settings.retry_confidence_threshold,
            retry_base_delay=settings.retry_base_delay,
            retry_max_delay=settings.retry_max_delay,
            parallel_execution=settings.parallel_execution,
            batch_max_concurrent=settings.batch_max_concurrent,
        )


# ---------------------------------------------------------------------------
# Analysis Context: request-scoped input and scratch space
# ---------------------------------------------------------------------------


@dataclass
class AnalysisContext:
    """One analysis request.

    ``dimensions`` holds explicit flags; a registered dimension that is not
    mentioned is enabled. The orchestrator writes per-dimension results and
    errors back here; each run replaces what an earlier run wrote.
    """

    subject: str
    variant: str = "generic"
    dimensions: dict[str, bool] = field(default_factory=dict)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    results: dict[str, dict[str, Any] | None] = field(default_factory=dict)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def is_enabled(self, dimension: str) -> bool:
        return self.dimensions.get(dimension, True) is not False

    def set_result(self, dimension: str, data: dict[str, Any] | None) -> None:
        self.results[dimension] = data

    def add_error(self, stage: str, message: str, dimension: str | None = None) -> None:
        self.errors.append(
            {
                "stage": stage,
                "dimension": dimension,
                "message": message,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )


# ---------------------------------------------------------------------------
# Orchestration Result: output of one run
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DimensionTiming:
    dimension: str
    elapsed_ms: int = 0
    attempts: int = 0
    timed_out: bool = False


@dataclass(frozen=True)
class OrchestrationResult:
    """Aggregated analysis across dimensions.

    ``by_dimension`` has a key for every requested dimension: the tool's
    (possibly fallback) data for dimensions that ran, None for disabled ones.
    """

    request_id: str
    success: bool
    state: OrchestratorState
    by_dimension: dict[str, dict[str, Any] | None]
    overall_confidence: float = 0.0
    timings: dict[str, DimensionTiming] = field(default_factory=dict)
    total_elapsed_ms: int = 0
    invocation_count: int = 0
    errors: tuple[dict[str, Any], ...] = ()
    tool_results: dict[str, ToolResult] = field(default_factory=dict)
    error: str | None = None
    variant: str = "generic"
    execution_mode: str = "parallel"

    @property
    def enabled_dimensions(self) -> list[str]:
        return [name for name, data in self.by_dimension.items() if data is not None]

    def raise_for_error(self) -> None:
        """Raise for the fatal zero-dimension case; no-op otherwise."""
        if self.state == OrchestratorState.ERROR_TERMINAL:
            raise NoDimensionsEnabledError(self.error or NO_DIMENSIONS_ERROR)

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "success": self.success,
            "state": self.state.value,
            "error": self.error,
            "data": self.by_dimension,
            "metadata": {
                "overall_confidence": self.overall_confidence,
                "total_elapsed_ms": self.total_elapsed_ms,
                "invocation_count": self.invocation_count,
                "variant": self.variant,
                "execution_mode": self.execution_mode,
                "enabled_dimensions": self.enabled_dimensions,
                "timings": {
                    name: {
                        "elapsed_ms": t.elapsed_ms,
                        "attempts": t.attempts,
                        "timed_out": t.timed_out,
                    }
                    for name, t in self.timings.items()
                },
            },
            "errors": list(self.errors),
        }
