"""Core module — config, types, events, logging."""

from flowwatch.core.config import Settings, get_settings, load_settings, reset_settings
from flowwatch.core.events import EngineEvent, EngineEventType, EventBus
from flowwatch.core.logging import run_log_context, setup_logging
from flowwatch.core.types import (
    FlowDefinition,
    FlowKind,
    HourlyMetric,
    Incident,
    IncidentSeverity,
    IncidentStatus,
    LatencySummary,
    RunResult,
    RunStatus,
    StepDefinition,
    StepResult,
    StepStatus,
)

__all__ = [
    "EngineEvent",
    "EngineEventType",
    "EventBus",
    "FlowDefinition",
    "FlowKind",
    "HourlyMetric",
    "Incident",
    "IncidentSeverity",
    "IncidentStatus",
    "LatencySummary",
    "RunResult",
    "RunStatus",
    "Settings",
    "StepDefinition",
    "StepResult",
    "StepStatus",
    "get_settings",
    "load_settings",
    "reset_settings",
    "run_log_context",
    "setup_logging",
]
