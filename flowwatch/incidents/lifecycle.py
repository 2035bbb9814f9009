"""Incident lifecycle: open on failure, re-alert after cooldown, resolve on recovery."""

from __future__ import annotations

import math
import time
import uuid
from collections.abc import Callable

import structlog

from flowwatch.core.events import EngineEvent, EngineEventType, EventBus
from flowwatch.core.types import (
    FlowDefinition,
    Incident,
    IncidentSeverity,
    IncidentStatus,
    RunResult,
    RunStatus,
    StepDefinition,
    StepResult,
    StepStatus,
)
from flowwatch.incidents.store import IncidentStore
from flowwatch.monitor.dispatcher import AlertDispatcher
from flowwatch.monitor.formatters import incident_title
from flowwatch.monitor.types import AlertKind

logger = structlog.stdlib.get_logger()


def _problem_step(run: RunResult) -> StepResult | None:
    return run.first_failed or run.first_slow


def _find_step(flow: FlowDefinition, result: StepResult | None) -> StepDefinition | None:
    if result is None:
        return None
    for step in flow.steps:
        if (result.step_id and step.id == result.step_id) or step.position == result.position:
            return step
    return None


def _description(
    run: RunResult,
    problem: StepResult | None,
    step: StepDefinition | None,
) -> str | None:
    if problem is None:
        return run.error
    if problem.error:
        return problem.error
    if problem.status == StepStatus.SLOW and step is not None:
        return (
            f"Latency {problem.latency_ms}ms exceeded p95 threshold "
            f"{step.threshold_p95_ms}ms"
        )
    return run.error


class IncidentLifecycleManager:
    """Single writer of incident state; at most one open incident per flow.

    - A failed or degraded run opens an incident (critical for failed,
      warning for degraded) and alerts every channel.
    - Further failures update the open incident with the latest detail and
      escalate its severity. Alerts are re-sent only once ``cooldown_secs``
      have passed since the last one.
    - A passed run resolves every open incident of the flow and sends one
      resolution notice per channel.

    Usage::

        manager = IncidentLifecycleManager(store, dispatcher, bus=bus)
        bus.on_event(manager.on_engine_event)
    """

    def __init__(
        self,
        store: IncidentStore,
        dispatcher: AlertDispatcher,
        bus: EventBus | None = None,
        cooldown_secs: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._bus = bus
        self._cooldown_secs = cooldown_secs
        self._clock = clock

    # ── Callback entry point ────────────────────────────────────

    async def on_engine_event(self, event: EngineEvent) -> None:
        """Callback for ``EventBus.on_event()``."""
        if event.event_type == EngineEventType.RUN_COMPLETED and event.run is not None:
            await self.handle_run(event.flow, event.run)

    async def handle_run(self, flow: FlowDefinition, run: RunResult) -> None:
        if run.status == RunStatus.PASSED:
            await self.handle_recovery(flow, run)
        else:
            await self.handle_failure(flow, run)

    # ── Transitions ─────────────────────────────────────────────

    async def handle_failure(self, flow: FlowDefinition, run: RunResult) -> Incident:
        """Open or update the flow's incident for a failed/degraded run."""
        problem = _problem_step(run)
        step = _find_step(flow, problem)
        severity = (
            IncidentSeverity.CRITICAL if run.status == RunStatus.FAILED
            else IncidentSeverity.WARNING
        )
        description = _description(run, problem, step)
        now = self._clock()

        async with self._store.lock(flow.id):
            open_incidents = await self._store.open_for_flow(flow.id)
            created = not open_incidents
            suppressed = False
            channels: set[str] = set()

            if created:
                incident = Incident(
                    id=str(uuid.uuid4()),
                    flow_id=flow.id,
                    failed_step_id=(step.id or None) if step is not None else None,
                    run_id=run.run_id,
                    severity=severity,
                    title=incident_title(flow, step),
                    description=description,
                    opened_at=now,
                )
            else:
                incident = open_incidents[0]
                incident.description = description
                incident.run_id = run.run_id
                if step is not None and step.id:
                    incident.failed_step_id = step.id
                if severity == IncidentSeverity.CRITICAL:
                    incident.severity = severity

                since_alert = (
                    now - incident.last_alert_sent_at
                    if incident.last_alert_sent_at is not None
                    else math.inf
                )
                if since_alert < self._cooldown_secs:
                    await self._store.save(incident)
                    suppressed = True

            if not suppressed:
                incident.last_alert_sent_at = now
                channels = await self._dispatcher.notify(AlertKind.OPENED, incident, flow, step)
                incident.channels_notified |= channels
                await self._store.save(incident)

        if suppressed:
            logger.info(
                "incident_alert_suppressed",
                incident_id=incident.id,
                flow_id=flow.id,
                since_alert_secs=round(since_alert),
                cooldown_secs=self._cooldown_secs,
            )
            await self._emit(EngineEventType.INCIDENT_UPDATED, flow, run, incident)
            return incident

        logger.warning(
            "incident_opened" if created else "incident_realerted",
            incident_id=incident.id,
            flow_id=flow.id,
            severity=incident.severity,
            title=incident.title,
            channels=sorted(channels),
        )
        await self._emit(
            EngineEventType.INCIDENT_OPENED if created else EngineEventType.INCIDENT_UPDATED,
            flow,
            run,
            incident,
        )
        return incident

    async def handle_recovery(self, flow: FlowDefinition, run: RunResult) -> list[Incident]:
        """Resolve every open incident of the flow."""
        now = self._clock()
        async with self._store.lock(flow.id):
            resolved = await self._store.open_for_flow(flow.id)
            for incident in resolved:
                incident.status = IncidentStatus.RESOLVED
                incident.resolved_at = now
                incident.resolution_run_id = run.run_id
                await self._store.save(incident)

        for incident in resolved:
            channels = await self._dispatcher.notify(AlertKind.RESOLVED, incident, flow)
            logger.info(
                "incident_resolved",
                incident_id=incident.id,
                flow_id=flow.id,
                open_secs=round(now - incident.opened_at),
                channels=sorted(channels),
            )
            await self._emit(EngineEventType.INCIDENT_RESOLVED, flow, run, incident)
        return resolved

    async def _emit(
        self,
        event_type: EngineEventType,
        flow: FlowDefinition,
        run: RunResult,
        incident: Incident,
    ) -> None:
        if self._bus is None:
            return
        await self._bus.emit(EngineEvent(
            event_type=event_type,
            flow=flow,
            run_id=run.run_id,
            run=run,
            incident=incident,
        ))
