"""Result sinks: where completed runs are handed off for persistence."""

from __future__ import annotations

import abc
import datetime
from typing import Any

import httpx
import structlog

from flowwatch.core.config import BackendConfig
from flowwatch.core.types import FlowDefinition, RunResult, StepResult
from flowwatch.flows.exceptions import ResultSinkError

logger = structlog.stdlib.get_logger()


def _iso(ts: float) -> str | None:
    if not ts:
        return None
    return datetime.datetime.fromtimestamp(ts, datetime.UTC).isoformat()


def _step_payload(result: StepResult) -> dict[str, Any]:
    return {
        "position": result.position,
        "stepId": result.step_id or None,
        "status": result.status.value,
        "latencyMs": result.latency_ms,
        "startedAt": _iso(result.started_at),
        "completedAt": _iso(result.completed_at),
        "error": result.error,
        "logs": result.logs,
        "httpStatus": result.http_status,
        "responseBody": result.response_body,
        "screenshot": result.screenshot,
    }


def run_payload(run: RunResult) -> dict[str, Any]:
    """Serialise a run into the backend's ``POST /api/runs`` body."""
    return {
        "runId": run.run_id,
        "flowId": run.flow_id,
        "status": run.status.value,
        "startedAt": _iso(run.started_at),
        "completedAt": _iso(run.completed_at),
        "durationMs": run.duration_ms,
        "stepResults": [_step_payload(r) for r in run.step_results],
        "error": run.error,
    }


class ResultSink(abc.ABC):
    """Accepts completed runs."""

    @abc.abstractmethod
    async def submit(self, flow: FlowDefinition, run: RunResult) -> None:
        """Hand off a completed run.

        Raises:
            ResultSinkError: when the run could not be delivered.
        """

    async def close(self) -> None:
        """Release resources."""


class HttpResultSink(ResultSink):
    """Posts runs to the persistence backend."""

    def __init__(
        self,
        config: BackendConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = f"{config.url.rstrip('/')}/api/runs"
        self._timeout = config.submit_timeout_secs
        self._http = httpx.AsyncClient(transport=transport)

    async def submit(self, flow: FlowDefinition, run: RunResult) -> None:
        try:
            response = await self._http.post(
                self._url,
                json=run_payload(run),
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ResultSinkError(
                f"backend returned {exc.response.status_code} for run {run.run_id}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ResultSinkError(f"run submission failed: {exc}") from exc

    async def close(self) -> None:
        await self._http.aclose()


class LoggingResultSink(ResultSink):
    """Logs runs instead of persisting them (no backend configured)."""

    async def submit(self, flow: FlowDefinition, run: RunResult) -> None:
        logger.info(
            "run_result",
            flow_id=run.flow_id,
            flow_name=flow.name,
            run_id=run.run_id,
            status=run.status,
            duration_ms=run.duration_ms,
            steps=[f"{r.position}:{r.status.value}" for r in run.step_results],
            error=run.error,
        )
