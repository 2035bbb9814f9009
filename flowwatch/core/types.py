"""Domain types for flow definitions, run results, incidents and metrics.

Timestamps are epoch seconds (``float``); latencies and durations are
integer milliseconds.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator

from flowwatch.core.actions import StepAction, parse_step_config


class FlowKind(StrEnum):
    """How a flow's steps are executed."""

    API = "api"
    BROWSER = "browser"


class RunStatus(StrEnum):
    """Overall outcome of one run."""

    PASSED = "passed"
    FAILED = "failed"
    DEGRADED = "degraded"


class StepStatus(StrEnum):
    """Outcome of one step within a run."""

    PASSED = "passed"
    FAILED = "failed"
    SLOW = "slow"
    SKIPPED = "skipped"


# ── Definitions ─────────────────────────────────────────────────


class StepDefinition(BaseModel):
    """One checkable unit of a flow.

    ``config`` is the raw action configuration as delivered by the definitions
    source; ``action`` is its validated, typed form and is filled in by the
    owning :class:`FlowDefinition`.
    """

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    id: str = ""
    flow_id: str = ""
    position: int
    name: str = ""
    threshold_p95_ms: int = 1000
    threshold_p99_ms: int = 2000
    config: dict[str, Any] = Field(default_factory=dict)

    _action: StepAction | None = PrivateAttr(default=None)

    @property
    def action(self) -> StepAction:
        if self._action is None:
            raise ValueError(f"step {self.position} has not been validated against a flow kind")
        return self._action

    @property
    def label(self) -> str:
        return f"{self.position}. {self.name}" if self.name else str(self.position)


class FlowDefinition(BaseModel):
    """A periodically executed business transaction.

    Accepts the persistence layer's field names (``type``, ``interval_s``) as
    aliases. Step configuration is parsed into typed actions at construction,
    so a malformed step fails here rather than mid-run.
    """

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    id: str
    name: str = ""
    kind: FlowKind = Field(default=FlowKind.API, alias="type")
    interval_seconds: int = Field(default=300, alias="interval_s", ge=1)
    enabled: bool = True
    config: dict[str, Any] = Field(default_factory=dict)
    steps: list[StepDefinition] = Field(default_factory=list)

    @property
    def base_url(self) -> str:
        return str(self.config.get("baseUrl") or self.config.get("base_url") or "")

    @model_validator(mode="after")
    def _validate_steps(self) -> FlowDefinition:
        self.steps.sort(key=lambda s: s.position)
        positions = [s.position for s in self.steps]
        if positions and positions != list(range(1, len(positions) + 1)):
            raise ValueError(
                f"step positions must be unique, contiguous and 1-based, got {positions}"
            )
        for step in self.steps:
            if not step.flow_id:
                step.flow_id = self.id
            step._action = parse_step_config(self.kind.value, step.config)
        return self

    def with_steps(self, steps: list[dict[str, Any]] | list[StepDefinition]) -> FlowDefinition:
        """Return a copy of this flow carrying the given steps (re-validated)."""
        data = self.model_dump(by_alias=True, exclude={"steps"})
        data["steps"] = [
            s.model_dump() if isinstance(s, StepDefinition) else s for s in steps
        ]
        return FlowDefinition.model_validate(data)

    def bind_steps(self, steps: list[StepDefinition]) -> FlowDefinition:
        """Return a copy of this flow that runs exactly ``steps``.

        Steps fetched separately from the flow are parsed against its kind
        here. Positions need not be contiguous, so a subset of a flow can be
        executed on its own.

        Raises:
            pydantic.ValidationError: when a step's config is malformed.
        """
        bound: list[StepDefinition] = []
        for step in sorted(steps, key=lambda s: s.position):
            copy = step.model_copy(update={"flow_id": step.flow_id or self.id})
            copy._action = parse_step_config(self.kind.value, copy.config)
            bound.append(copy)
        return self.model_copy(update={"steps": bound})


# ── Results ─────────────────────────────────────────────────────


class StepResult(BaseModel):
    """Outcome of one step in one run."""

    position: int
    step_id: str = ""
    status: StepStatus
    latency_ms: int | None = None
    started_at: float = 0.0
    completed_at: float = 0.0
    error: str | None = None
    logs: list[str] = Field(default_factory=list)
    http_status: int | None = None
    response_body: str | None = None
    screenshot: str | None = None  # base64 PNG


class RunResult(BaseModel):
    """Outcome of one complete execution of a flow."""

    run_id: str
    flow_id: str
    status: RunStatus
    started_at: float = 0.0
    completed_at: float = 0.0
    duration_ms: int = 0
    step_results: list[StepResult] = Field(default_factory=list)
    error: str | None = None

    @property
    def first_failed(self) -> StepResult | None:
        return next((r for r in self.step_results if r.status == StepStatus.FAILED), None)

    @property
    def first_slow(self) -> StepResult | None:
        return next((r for r in self.step_results if r.status == StepStatus.SLOW), None)


# ── Incidents ───────────────────────────────────────────────────


class IncidentStatus(StrEnum):
    OPEN = "open"
    RESOLVED = "resolved"


class IncidentSeverity(StrEnum):
    CRITICAL = "critical"
    WARNING = "warning"


class Incident(BaseModel):
    """Open or resolved record of a flow outage."""

    id: str
    flow_id: str
    failed_step_id: str | None = None
    run_id: str | None = None
    resolution_run_id: str | None = None
    status: IncidentStatus = IncidentStatus.OPEN
    severity: IncidentSeverity = IncidentSeverity.CRITICAL
    title: str = ""
    description: str | None = None
    opened_at: float = 0.0
    resolved_at: float | None = None
    last_alert_sent_at: float | None = None
    channels_notified: set[str] = Field(default_factory=set)


# ── Metrics ─────────────────────────────────────────────────────


class LatencySummary(BaseModel):
    """Nearest-rank percentiles over a set of latency samples."""

    p50: int | None = None
    p95: int | None = None
    p99: int | None = None
    avg: int | None = None
    count: int = 0


class HourlyMetric(BaseModel):
    """Per-step hourly rollup, upserted by (step_id, hour)."""

    flow_id: str
    step_id: str
    hour: float
    p50_ms: int | None = None
    p95_ms: int | None = None
    p99_ms: int | None = None
    avg_ms: int | None = None
    error_rate: float = 0.0
    sample_count: int = 0
