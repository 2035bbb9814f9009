"""Typed engine events and the in-process bus that fans them out."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum

import structlog
from pydantic import BaseModel, Field

from flowwatch.core.types import FlowDefinition, Incident, RunResult, StepResult

logger = structlog.stdlib.get_logger()


class EngineEventType(StrEnum):
    RUN_STARTED = "RUN_STARTED"
    STEP_COMPLETED = "STEP_COMPLETED"
    RUN_COMPLETED = "RUN_COMPLETED"
    INCIDENT_OPENED = "INCIDENT_OPENED"
    INCIDENT_UPDATED = "INCIDENT_UPDATED"
    INCIDENT_RESOLVED = "INCIDENT_RESOLVED"


class EngineEvent(BaseModel):
    """One engine state change. Which payload fields are set depends on type."""

    event_type: EngineEventType
    flow: FlowDefinition
    run_id: str = ""
    run: RunResult | None = None
    step: StepResult | None = None
    incident: Incident | None = None
    timestamp: float = Field(default_factory=time.time)

    @property
    def flow_id(self) -> str:
        return self.flow.id


EngineEventCallback = Callable[[EngineEvent], Awaitable[None] | None]


class EventBus:
    """Publishes engine events to subscribers in registration order.

    A failing subscriber is logged and never stops delivery to the others.

    Usage::

        bus = EventBus()
        bus.on_event(incident_manager.on_engine_event)
        bus.on_event(metrics.on_engine_event)
        await bus.emit(EngineEvent(...))
    """

    def __init__(self) -> None:
        self._callbacks: list[EngineEventCallback] = []

    def on_event(self, callback: EngineEventCallback) -> None:
        """Register a callback for engine events."""
        self._callbacks.append(callback)

    async def emit(self, event: EngineEvent) -> None:
        """Dispatch an event to all registered callbacks."""
        for cb in self._callbacks:
            try:
                result = cb(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(
                    "engine_event_callback_error",
                    event_type=event.event_type,
                    flow_id=event.flow_id,
                )
