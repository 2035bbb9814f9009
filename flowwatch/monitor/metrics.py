"""MetricsAggregator: per-step latency percentiles and hourly rollups.

Subscribes to the engine event bus and aggregates:
- Per-step hourly p50/p95/p99/avg, error rate and sample count
- Rolling-window latency percentiles per step
- Flow-level hourly run counts
"""

from __future__ import annotations

import math
import time
from collections import deque
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from flowwatch.core.events import EngineEvent, EngineEventType
from flowwatch.core.types import (
    HourlyMetric,
    LatencySummary,
    RunResult,
    RunStatus,
    StepResult,
    StepStatus,
)

_HOUR_SECS = 3600


def percentile(sorted_values: Sequence[int], p: float) -> int | None:
    """Nearest-rank percentile of an ascending sequence; None when empty."""
    n = len(sorted_values)
    if n == 0:
        return None
    idx = math.ceil(p / 100 * n) - 1
    return sorted_values[min(max(idx, 0), n - 1)]


def summarize_latencies(latencies: Iterable[int | None]) -> LatencySummary:
    """p50/p95/p99/avg over the non-null samples."""
    values = sorted(v for v in latencies if v is not None)
    if not values:
        return LatencySummary()
    return LatencySummary(
        p50=percentile(values, 50),
        p95=percentile(values, 95),
        p99=percentile(values, 99),
        avg=round(sum(values) / len(values)),
        count=len(values),
    )


def hour_bucket(ts: float) -> float:
    """Start of the wall-clock hour containing ``ts``."""
    return float(math.floor(ts / _HOUR_SECS) * _HOUR_SECS)


def rollup_hour(
    flow_id: str,
    step_id: str,
    hour: float,
    results: Iterable[StepResult],
) -> HourlyMetric | None:
    """Aggregate one step's results for one hour. None when there are none.

    Every result counts towards ``sample_count`` and the error rate; only
    results with a latency contribute to the percentiles. The output depends
    only on the multiset of inputs, so recomputing is idempotent.
    """
    rows = list(results)
    if not rows:
        return None
    summary = summarize_latencies(r.latency_ms for r in rows)
    failures = sum(1 for r in rows if r.status == StepStatus.FAILED)
    return HourlyMetric(
        flow_id=flow_id,
        step_id=step_id,
        hour=hour,
        p50_ms=summary.p50,
        p95_ms=summary.p95,
        p99_ms=summary.p99,
        avg_ms=summary.avg,
        error_rate=failures / len(rows),
        sample_count=len(rows),
    )


@dataclass
class FlowHourStats:
    """Run counts for one flow in one hour."""

    flow_id: str
    hour: float
    total: int = 0
    passed: int = 0
    failed: int = 0
    degraded: int = 0
    total_duration_ms: int = 0

    @property
    def avg_duration_ms(self) -> int | None:
        if self.total == 0:
            return None
        return round(self.total_duration_ms / self.total)

    def add(self, run: RunResult) -> None:
        self.total += 1
        self.total_duration_ms += run.duration_ms
        if run.status == RunStatus.PASSED:
            self.passed += 1
        elif run.status == RunStatus.FAILED:
            self.failed += 1
        else:
            self.degraded += 1


def step_key(flow_id: str, result: StepResult) -> str:
    """Metrics key of a step result; falls back to the position when unnamed."""
    return result.step_id or f"{flow_id}#{result.position}"


class MetricsAggregator:
    """Collects step latency metrics from engine events.

    Raw samples are kept for ``window_hours``; hourly rollups and flow run
    counts for ``retention_days``.

    Usage::

        metrics = MetricsAggregator()
        bus.on_event(metrics.on_engine_event)

        # Query at any time:
        metrics.hourly("step-1")
        metrics.window_summary("step-1")
    """

    def __init__(
        self,
        max_samples_per_bucket: int = 10_000,
        window_hours: float = 24.0,
        retention_days: float = 7.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_samples = max_samples_per_bucket
        self._window_secs = window_hours * _HOUR_SECS
        self._retention_secs = max(retention_days * 24 * _HOUR_SECS, self._window_secs)
        self._clock = clock
        self._samples: dict[tuple[str, float], deque[StepResult]] = {}
        self._hourly: dict[tuple[str, float], HourlyMetric] = {}
        self._flow_hours: dict[tuple[str, float], FlowHourStats] = {}
        self._step_flow: dict[str, str] = {}
        self._runs_recorded = 0

    # ── Callback entry point ────────────────────────────────────

    def on_engine_event(self, event: EngineEvent) -> None:
        """Callback for ``EventBus.on_event()``."""
        if event.event_type == EngineEventType.RUN_COMPLETED and event.run is not None:
            self.record_run(event.run)

    def record_run(self, run: RunResult) -> None:
        self._runs_recorded += 1
        run_hour = hour_bucket(run.started_at)
        stats = self._flow_hours.setdefault(
            (run.flow_id, run_hour), FlowHourStats(flow_id=run.flow_id, hour=run_hour)
        )
        stats.add(run)

        touched: set[tuple[str, float]] = set()
        for result in run.step_results:
            key = (step_key(run.flow_id, result), hour_bucket(result.started_at))
            self._step_flow[key[0]] = run.flow_id
            bucket = self._samples.setdefault(key, deque(maxlen=self._max_samples))
            bucket.append(result)
            touched.add(key)

        for key in touched:
            self.rollup(*key)

        self._prune_samples()
        self._prune_rollups()

    def rollup(self, step_id: str, hour: float) -> HourlyMetric | None:
        """Recompute and upsert the (step, hour) metric from retained samples."""
        bucket = self._samples.get((step_id, hour))
        metric = rollup_hour(self._step_flow.get(step_id, ""), step_id, hour, bucket or ())
        if metric is not None:
            self._hourly[(step_id, hour)] = metric
        return metric

    def _prune_samples(self) -> None:
        # Raw samples outside the window are dropped; their hourly rollups stay.
        horizon = hour_bucket(self._clock() - self._window_secs) - _HOUR_SECS
        for key in [k for k in self._samples if k[1] < horizon]:
            del self._samples[key]

    def _prune_rollups(self) -> None:
        horizon = hour_bucket(self._clock() - self._retention_secs) - _HOUR_SECS
        for key in [k for k in self._hourly if k[1] < horizon]:
            del self._hourly[key]
        for key in [k for k in self._flow_hours if k[1] < horizon]:
            del self._flow_hours[key]
        live = {sid for sid, _ in self._hourly} | {sid for sid, _ in self._samples}
        for sid in [s for s in self._step_flow if s not in live]:
            del self._step_flow[sid]

    # ── Queries ─────────────────────────────────────────────────

    def hourly(self, step_id: str | None = None) -> list[HourlyMetric]:
        """Hourly metrics, oldest first, optionally for one step."""
        return [
            m for (sid, _), m in sorted(self._hourly.items(), key=lambda kv: kv[0][1])
            if step_id is None or sid == step_id
        ]

    def get_hourly(self, step_id: str, hour: float) -> HourlyMetric | None:
        return self._hourly.get((step_id, hour_bucket(hour)))

    def window_summary(self, step_id: str, window_hours: float | None = None) -> LatencySummary:
        """Percentiles over passed/slow samples within the trailing window."""
        window = self._window_secs if window_hours is None else window_hours * _HOUR_SECS
        since = self._clock() - window
        latencies = [
            r.latency_ms
            for (sid, _), bucket in self._samples.items()
            if sid == step_id
            for r in bucket
            if r.status in (StepStatus.PASSED, StepStatus.SLOW) and r.started_at > since
        ]
        return summarize_latencies(latencies)

    def flow_hourly(self, flow_id: str) -> list[FlowHourStats]:
        """Flow-level run counts per hour, oldest first."""
        return sorted(
            (s for (fid, _), s in self._flow_hours.items() if fid == flow_id),
            key=lambda s: s.hour,
        )

    def summary(self) -> dict[str, object]:
        return {
            "runs_recorded": self._runs_recorded,
            "steps_tracked": len(self._step_flow),
            "hourly_rows": len(self._hourly),
        }
