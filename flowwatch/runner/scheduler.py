"""Polling scheduler: launches due flows concurrently, one run per flow at a time."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from types import TracebackType

import structlog

from flowwatch.core.config import SchedulerConfig
from flowwatch.core.types import FlowDefinition
from flowwatch.flows.exceptions import DefinitionsUnavailableError, FlowError
from flowwatch.flows.source import DefinitionsSource
from flowwatch.runner.exceptions import FlowInFlightError
from flowwatch.runner.executor import FlowExecutor

logger = structlog.stdlib.get_logger()


class Scheduler:
    """Fires each enabled flow every ``interval_seconds``.

    Each tick lists the enabled flows. A flow that is not in flight and whose
    due time has passed gets its next due time set to ``now + interval``
    *before* its run is launched, so a slow run never delays the next cycle.
    Flows never seen before are due immediately. Due times and the in-flight
    set are only touched under ``_lock``.

    Usage::

        scheduler = Scheduler(source, executor, settings.scheduler)
        async with scheduler:
            await stop_event.wait()
    """

    def __init__(
        self,
        source: DefinitionsSource,
        executor: FlowExecutor,
        config: SchedulerConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = source
        self._executor = executor
        self._config = config or SchedulerConfig()
        self._clock = clock
        self._next_due: dict[str, float] = {}
        self._in_flight: set[str] = set()
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._loop_task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    def next_due(self, flow_id: str) -> float | None:
        return self._next_due.get(flow_id)

    async def tick(self) -> list[str]:
        """Launch every due flow. Returns the ids of flows launched."""
        try:
            flows = await self._source.list_enabled()
        except DefinitionsUnavailableError as exc:
            logger.warning("definitions_unreachable", error=str(exc))
            return []
        except Exception:
            logger.exception("definitions_list_error")
            return []

        now = self._clock()
        due: list[FlowDefinition] = []
        async with self._lock:
            for flow in flows:
                if not flow.enabled or flow.id in self._in_flight:
                    continue
                if now < self._next_due.get(flow.id, 0.0):
                    continue
                self._next_due[flow.id] = now + flow.interval_seconds
                self._in_flight.add(flow.id)
                due.append(flow)

        for flow in due:
            self._launch(flow)
        if due:
            logger.debug("scheduler_tick", launched=[f.id for f in due])
        return [f.id for f in due]

    async def run_now(self, flow_id: str) -> FlowDefinition:
        """Launch a flow immediately, outside its schedule.

        Returns once the run is accepted, not once it completes. The
        schedule itself is left unchanged.

        Raises:
            FlowNotFoundError: the flow does not exist.
            DefinitionsUnavailableError: the definitions source is unreachable.
            DefinitionError: the fetched flow is malformed.
            FlowInFlightError: the flow is already running.
        """
        flow = await self._source.get_flow(flow_id)
        async with self._lock:
            if flow.id in self._in_flight:
                raise FlowInFlightError(flow.id)
            self._in_flight.add(flow.id)
        logger.info("flow_triggered", flow_id=flow.id, flow_name=flow.name)
        self._launch(flow)
        return flow

    def _launch(self, flow: FlowDefinition) -> None:
        task = asyncio.create_task(self._run(flow), name=f"flow-{flow.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, flow: FlowDefinition) -> None:
        try:
            if not flow.steps:
                flow = await self._source.get_flow(flow.id)
            if not flow.steps:
                logger.warning("flow_has_no_steps", flow_id=flow.id, flow_name=flow.name)
                return
            await self._executor.execute(flow)
        except FlowError as exc:
            logger.error("flow_fetch_failed", flow_id=flow.id, error=str(exc))
        except Exception:
            logger.exception("flow_run_error", flow_id=flow.id)
        finally:
            async with self._lock:
                self._in_flight.discard(flow.id)

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        """Tick immediately, then every ``poll_interval_ms``."""
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._loop())
        logger.info("scheduler_started", poll_interval_ms=self._config.poll_interval_ms)

    async def stop(self, drain: bool = True) -> None:
        """Stop ticking. In-flight runs are awaited unless ``drain`` is False."""
        self._running = False
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        if self._tasks:
            if drain:
                await asyncio.gather(*self._tasks, return_exceptions=True)
            else:
                for task in self._tasks:
                    task.cancel()
        logger.info("scheduler_stopped")

    async def wait_idle(self) -> None:
        """Wait for all launched runs to finish."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _loop(self) -> None:
        interval_secs = self._config.poll_interval_ms / 1000.0
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("scheduler_tick_error")

            try:
                await asyncio.sleep(interval_secs)
            except asyncio.CancelledError:
                break

    async def __aenter__(self) -> Scheduler:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
