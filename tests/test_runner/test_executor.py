"""Tests for the flow executor: events, crash handling, sink submission."""

from __future__ import annotations

import httpx

from flowwatch.core.events import EngineEvent, EngineEventType, EventBus
from flowwatch.core.types import (
    FlowDefinition,
    FlowKind,
    RunResult,
    RunStatus,
    StepDefinition,
    StepResult,
    StepStatus,
)
from flowwatch.flows.exceptions import ResultSinkError
from flowwatch.flows.sink import ResultSink
from flowwatch.incidents.lifecycle import IncidentLifecycleManager
from flowwatch.incidents.store import InMemoryIncidentStore
from flowwatch.monitor.dispatcher import AlertDispatcher
from flowwatch.runner.api import ApiStepRunner
from flowwatch.runner.base import BaseStepRunner
from flowwatch.runner.executor import FlowExecutor, step_summary


class RecordingSink(ResultSink):
    def __init__(self, fail: bool = False) -> None:
        self.runs: list[RunResult] = []
        self.fail = fail

    async def submit(self, flow: FlowDefinition, run: RunResult) -> None:
        if self.fail:
            raise ResultSinkError("backend down")
        self.runs.append(run)


class CrashingRunner(BaseStepRunner):
    async def run(self, flow, steps=None, run_id=None, on_step=None) -> RunResult:
        raise RuntimeError("browser binary missing")

    async def _execute_step(self, session, flow, step, ctx, logs):
        return None


def _flow(kind: str = "api") -> FlowDefinition:
    return FlowDefinition.model_validate({
        "id": "f1",
        "name": "Health",
        "type": kind,
        "config": {"baseUrl": "https://api.test"},
        "steps": [
            {"position": 1, "config": {"url": "/a"}},
            {"position": 2, "config": {"url": "/b"}},
        ] if kind == "api" else [],
    })


def _api_runner(status: int = 200) -> ApiStepRunner:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={})

    return ApiStepRunner(transport=httpx.MockTransport(handler))


def _recording_bus() -> tuple[EventBus, list[EngineEvent]]:
    bus = EventBus()
    events: list[EngineEvent] = []
    bus.on_event(events.append)
    return bus, events


class TestExecute:
    async def test_events_in_order(self) -> None:
        bus, events = _recording_bus()
        sink = RecordingSink()
        executor = FlowExecutor({FlowKind.API: _api_runner()}, sink=sink, bus=bus)

        run = await executor.execute(_flow())

        assert [e.event_type for e in events] == [
            EngineEventType.RUN_STARTED,
            EngineEventType.STEP_COMPLETED,
            EngineEventType.STEP_COMPLETED,
            EngineEventType.RUN_COMPLETED,
        ]
        assert {e.run_id for e in events} == {run.run_id}
        assert events[-1].run is run
        assert sink.runs == [run]
        assert run.status == RunStatus.PASSED

    async def test_timestamps_set(self) -> None:
        ticks = iter([10.0, 10.25])
        executor = FlowExecutor(
            {FlowKind.API: _api_runner()},
            clock=lambda: next(ticks),
            now=lambda: 1_700_000_000.0,
        )
        run = await executor.execute(_flow())
        assert run.started_at == 1_700_000_000.0
        assert run.duration_ms == 250

    async def test_explicit_steps(self) -> None:
        flow = _flow()
        executor = FlowExecutor({FlowKind.API: _api_runner()})
        run = await executor.execute(flow, steps=flow.steps[:1])
        assert len(run.step_results) == 1

    async def test_separately_fetched_steps_are_bound(self) -> None:
        flow = FlowDefinition(id="f1", name="Health", config={"baseUrl": "https://api.test"})
        steps = [
            StepDefinition(id="s2", position=2, name="Orders", config={"url": "/b"}),
            StepDefinition(id="s1", position=1, name="Home", config={"url": "/a"}),
        ]
        bus, events = _recording_bus()
        executor = FlowExecutor({FlowKind.API: _api_runner()}, bus=bus)

        run = await executor.execute(flow, steps)

        assert run.status == RunStatus.PASSED
        assert [r.step_id for r in run.step_results] == ["s1", "s2"]
        completed = events[-1]
        assert [s.id for s in completed.flow.steps] == ["s1", "s2"]
        assert completed.flow.steps[0].flow_id == "f1"
        assert flow.steps == []

    async def test_separately_fetched_failure_names_step(self) -> None:
        flow = FlowDefinition(id="f1", name="Health", config={"baseUrl": "https://api.test"})
        steps = [StepDefinition(id="s1", position=1, name="Home", config={"url": "/a"})]
        bus = EventBus()
        store = InMemoryIncidentStore()
        manager = IncidentLifecycleManager(store, AlertDispatcher(channels=[]), bus=bus)
        bus.on_event(manager.on_engine_event)
        executor = FlowExecutor({FlowKind.API: _api_runner(status=500)}, bus=bus)

        run = await executor.execute(flow, steps)

        assert run.status == RunStatus.FAILED
        [incident] = await store.open_for_flow("f1")
        assert incident.failed_step_id == "s1"
        assert incident.title == "Health - Step 1 failed: Home"

    async def test_malformed_step_config_fails_run(self) -> None:
        flow = FlowDefinition(id="f1")
        steps = [StepDefinition(position=1, config={"url": "/a", "method": "FETCH"})]
        executor = FlowExecutor({FlowKind.API: _api_runner()})
        run = await executor.execute(flow, steps)
        assert run.status == RunStatus.FAILED
        assert run.error.startswith("Runner crash: ")


class TestCrash:
    async def test_runner_crash_becomes_failed_run(self) -> None:
        bus, events = _recording_bus()
        sink = RecordingSink()
        executor = FlowExecutor({FlowKind.API: CrashingRunner()}, sink=sink, bus=bus)

        run = await executor.execute(_flow())

        assert run.status == RunStatus.FAILED
        assert run.error == "Runner crash: browser binary missing"
        assert run.step_results == []
        assert sink.runs == [run]
        assert events[-1].event_type == EngineEventType.RUN_COMPLETED

    async def test_missing_runner(self) -> None:
        executor = FlowExecutor({FlowKind.API: _api_runner()})
        run = await executor.execute(_flow("browser"))
        assert run.status == RunStatus.FAILED
        assert "no runner registered" in run.error


class TestSubmission:
    async def test_sink_failure_does_not_raise(self) -> None:
        bus, events = _recording_bus()
        executor = FlowExecutor(
            {FlowKind.API: _api_runner()}, sink=RecordingSink(fail=True), bus=bus
        )
        run = await executor.execute(_flow())
        assert run.status == RunStatus.PASSED
        assert events[-1].event_type == EngineEventType.RUN_COMPLETED

    async def test_failed_run_submitted(self) -> None:
        sink = RecordingSink()
        executor = FlowExecutor({FlowKind.API: _api_runner(500)}, sink=sink)
        await executor.execute(_flow())
        assert sink.runs[0].status == RunStatus.FAILED
        assert sink.runs[0].step_results[1].status == StepStatus.SKIPPED


class TestStepSummary:
    def test_marks(self) -> None:
        results = [
            StepResult(position=1, status=StepStatus.PASSED),
            StepResult(position=2, status=StepStatus.SLOW),
            StepResult(position=3, status=StepStatus.FAILED),
            StepResult(position=4, status=StepStatus.SKIPPED),
        ]
        assert step_summary(results) == "1:ok 2:slow 3:x 4:-"
