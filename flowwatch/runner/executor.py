"""Flow executor: dispatches a flow to its step runner and reports the run."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping

import structlog

from flowwatch.core.events import EngineEvent, EngineEventType, EventBus
from flowwatch.core.logging import run_log_context
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
from flowwatch.runner.base import BaseStepRunner, elapsed_ms, new_run_id

logger = structlog.stdlib.get_logger()

_STEP_MARKS = {
    StepStatus.PASSED: "ok",
    StepStatus.SLOW: "slow",
    StepStatus.FAILED: "x",
    StepStatus.SKIPPED: "-",
}


def step_summary(results: list[StepResult]) -> str:
    """Compact per-step outcome, e.g. ``1:ok 2:slow 3:x 4:-``."""
    return " ".join(f"{r.position}:{_STEP_MARKS[r.status]}" for r in results)


class FlowExecutor:
    """Runs one flow end to end.

    Picks the runner for ``flow.kind``, publishes run and step events on the
    bus, converts any runner crash into a failed run, and hands the result to
    the sink. Never raises for a run that went wrong.

    Usage::

        executor = FlowExecutor(
            runners={FlowKind.API: ApiStepRunner(cfg)},
            sink=HttpResultSink(settings.backend),
            bus=bus,
        )
        run = await executor.execute(flow)
    """

    def __init__(
        self,
        runners: Mapping[FlowKind, BaseStepRunner],
        sink: ResultSink | None = None,
        bus: EventBus | None = None,
        clock: Callable[[], float] = time.perf_counter,
        now: Callable[[], float] = time.time,
    ) -> None:
        self._runners = dict(runners)
        self._sink = sink
        self._bus = bus or EventBus()
        self._clock = clock
        self._now = now

    @property
    def bus(self) -> EventBus:
        return self._bus

    async def execute(
        self,
        flow: FlowDefinition,
        steps: list[StepDefinition] | None = None,
    ) -> RunResult:
        """Execute ``steps`` (defaults to ``flow.steps``) and report the run."""
        run_id = new_run_id()
        with run_log_context(flow.id, run_id):
            return await self._execute(flow, steps, run_id)

    async def _execute(
        self,
        flow: FlowDefinition,
        steps: list[StepDefinition] | None,
        run_id: str,
    ) -> RunResult:
        started_at = self._now()
        t0 = self._clock()

        logger.info(
            "run_started",
            flow_name=flow.name,
            kind=flow.kind,
        )
        await self._bus.emit(EngineEvent(
            event_type=EngineEventType.RUN_STARTED,
            flow=flow,
            run_id=run_id,
        ))

        bound = flow

        async def on_step(result: StepResult) -> None:
            await self._bus.emit(EngineEvent(
                event_type=EngineEventType.STEP_COMPLETED,
                flow=bound,
                run_id=run_id,
                step=result,
            ))

        try:
            runner = self._runners.get(flow.kind)
            if runner is None:
                raise RuntimeError(f"no runner registered for flow kind {flow.kind!r}")
            if steps is not None:
                bound = flow.bind_steps(steps)
            run = await runner.run(bound, run_id=run_id, on_step=on_step)
        except Exception as exc:
            logger.exception("runner_crashed")
            run = RunResult(
                run_id=run_id,
                flow_id=flow.id,
                status=RunStatus.FAILED,
                error=f"Runner crash: {exc}",
            )

        run = run.model_copy(update={
            "started_at": started_at,
            "completed_at": self._now(),
            "duration_ms": elapsed_ms(t0, self._clock()),
        })

        logger.info(
            "run_completed",
            flow_name=flow.name,
            status=run.status,
            duration_ms=run.duration_ms,
            steps=step_summary(run.step_results),
        )

        await self._submit(bound, run)
        await self._bus.emit(EngineEvent(
            event_type=EngineEventType.RUN_COMPLETED,
            flow=bound,
            run_id=run_id,
            run=run,
        ))
        return run

    async def _submit(self, flow: FlowDefinition, run: RunResult) -> None:
        if self._sink is None:
            return
        try:
            await self._sink.submit(flow, run)
        except ResultSinkError as exc:
            logger.error("run_submit_failed", error=str(exc))
        except Exception:
            logger.exception("run_submit_error")
