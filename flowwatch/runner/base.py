"""Shared control flow for step runners.

Steps run strictly in position order. The first failure switches the run
into skip mode: every later step is recorded as skipped without being
executed. A step slower than its p95 threshold is ``slow`` and escalates a
passing run to ``degraded``; a failure always wins.
"""

from __future__ import annotations

import abc
import contextlib
import datetime
import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from flowwatch.core.types import (
    FlowDefinition,
    RunResult,
    RunStatus,
    StepDefinition,
    StepResult,
    StepStatus,
)
from flowwatch.runner.exceptions import StepError

logger = structlog.stdlib.get_logger()

SKIPPED_ERROR = "Skipped: previous step failed"

StepCallback = Callable[[StepResult], Awaitable[None]]


@dataclass
class StepOutcome:
    """What a successfully executed step observed."""

    http_status: int | None = None
    response_body: str | None = None


def new_run_id() -> str:
    return str(uuid.uuid4())


def log_time() -> str:
    """Wall-clock prefix for step log lines (``HH:MM:SS.mmm``)."""
    return datetime.datetime.now(datetime.UTC).strftime("%H:%M:%S.%f")[:12]


def elapsed_ms(start: float, end: float) -> int:
    return max(0, round((end - start) * 1000))


def skipped_result(step: StepDefinition, now: float) -> StepResult:
    return StepResult(
        position=step.position,
        step_id=step.id,
        status=StepStatus.SKIPPED,
        latency_ms=None,
        started_at=now,
        completed_at=now,
        error=SKIPPED_ERROR,
    )


class BaseStepRunner(abc.ABC):
    """Runs one flow's steps sequentially and builds its :class:`RunResult`.

    Subclasses provide the per-run session (an HTTP client, a browser page)
    and the execution of a single step.

    Args:
        clock: Monotonic clock used for latencies, in seconds.
        now: Wall clock used for timestamps, in epoch seconds.
    """

    kind: str = ""

    def __init__(
        self,
        clock: Callable[[], float] = time.perf_counter,
        now: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        self._now = now

    async def run(
        self,
        flow: FlowDefinition,
        steps: list[StepDefinition] | None = None,
        run_id: str | None = None,
        on_step: StepCallback | None = None,
    ) -> RunResult:
        """Execute the steps (defaults to ``flow.steps``) and return the run."""
        if steps is not None:
            flow = flow.bind_steps(steps)
        steps = flow.steps
        run_id = run_id or new_run_id()
        started_at = self._now()
        t0 = self._clock()
        ctx: dict[str, Any] = {}
        results: list[StepResult] = []
        status = RunStatus.PASSED
        skipping = False

        async with self._session(flow) as session:
            for step in steps:
                if skipping:
                    result = skipped_result(step, self._now())
                else:
                    result = await self._run_step(session, flow, step, ctx)
                    if result.status == StepStatus.FAILED:
                        status = RunStatus.FAILED
                        skipping = True
                    elif result.status == StepStatus.SLOW and status == RunStatus.PASSED:
                        status = RunStatus.DEGRADED
                results.append(result)
                if on_step is not None:
                    await on_step(result)

        return RunResult(
            run_id=run_id,
            flow_id=flow.id,
            status=status,
            started_at=started_at,
            completed_at=self._now(),
            duration_ms=elapsed_ms(t0, self._clock()),
            step_results=results,
        )

    async def _run_step(
        self,
        session: Any,
        flow: FlowDefinition,
        step: StepDefinition,
        ctx: dict[str, Any],
    ) -> StepResult:
        logs = self._preamble(session)
        started_at = self._now()
        t0 = self._clock()
        outcome = StepOutcome()
        error: str | None = None

        try:
            outcome = await self._execute_step(session, flow, step, ctx, logs) or outcome
        except StepError as exc:
            error = str(exc)
            outcome = StepOutcome(exc.http_status, exc.response_body)
        except Exception as exc:
            error = str(exc) or type(exc).__name__

        latency = elapsed_ms(t0, self._clock())

        if error is not None:
            logs.append(f"[{log_time()}] FAILED: {error}")
            logger.warning(
                "step_failed",
                flow_id=flow.id,
                position=step.position,
                step=step.name,
                error=error,
            )
            status = StepStatus.FAILED
        elif latency > step.threshold_p95_ms:
            logs.append(
                f"Latency {latency}ms exceeded p95 threshold {step.threshold_p95_ms}ms"
            )
            status = StepStatus.SLOW
        else:
            status = StepStatus.PASSED

        screenshot = await self._capture(session, logs)

        return StepResult(
            position=step.position,
            step_id=step.id,
            status=status,
            latency_ms=latency,
            started_at=started_at,
            completed_at=self._now(),
            error=error,
            logs=logs,
            http_status=outcome.http_status,
            response_body=outcome.response_body,
            screenshot=screenshot,
        )

    # ── Hooks ───────────────────────────────────────────────────

    @contextlib.asynccontextmanager
    async def _session(self, flow: FlowDefinition) -> AsyncIterator[Any]:
        """Per-run resource shared by all steps of one run."""
        yield None

    def _preamble(self, session: Any) -> list[str]:
        """Initial log lines for a step."""
        return []

    async def _capture(self, session: Any, logs: list[str]) -> str | None:
        """Artifact captured after every executed step (pass or fail)."""
        return None

    @abc.abstractmethod
    async def _execute_step(
        self,
        session: Any,
        flow: FlowDefinition,
        step: StepDefinition,
        ctx: dict[str, Any],
        logs: list[str],
    ) -> StepOutcome | None:
        """Execute one step, appending log lines.

        Raises:
            StepError: on an assertion or action failure. Any other exception
                also fails the step.
        """
