"""Step runner for HTTP API flows."""

from __future__ import annotations

import contextlib
import json
import time
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx

from flowwatch.core.actions import ApiRequest
from flowwatch.core.config import RunnerConfig
from flowwatch.core.types import FlowDefinition, StepDefinition
from flowwatch.runner.assertions import assert_schema, assert_status
from flowwatch.runner.base import BaseStepRunner, StepOutcome, log_time
from flowwatch.runner.exceptions import StepAssertionError, StepError
from flowwatch.runner.expressions import evaluate
from flowwatch.runner.templating import get_path, render_value, resolve_url


def _body_text(data: Any) -> str:
    if isinstance(data, str):
        return data
    return json.dumps(data, default=str)


class ApiStepRunner(BaseStepRunner):
    """Executes API steps with one shared variable context per run.

    Per step: template the request from captured variables, issue it, then
    check status, schema and expression assertions before capturing
    variables for later steps. Non-2xx responses are inspected, never raised
    as transport errors.

    Args:
        config: Runner settings (timeouts, body truncation limits).
        transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
    """

    kind = "api"

    def __init__(
        self,
        config: RunnerConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.perf_counter,
        now: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(clock=clock, now=now)
        self._config = config or RunnerConfig()
        self._transport = transport

    @contextlib.asynccontextmanager
    async def _session(self, flow: FlowDefinition) -> AsyncIterator[httpx.AsyncClient]:
        async with httpx.AsyncClient(
            transport=self._transport,
            follow_redirects=True,
            headers={"User-Agent": self._config.user_agent},
        ) as client:
            yield client

    async def _execute_step(
        self,
        session: httpx.AsyncClient,
        flow: FlowDefinition,
        step: StepDefinition,
        ctx: dict[str, Any],
        logs: list[str],
    ) -> StepOutcome:
        req = step.action
        if not isinstance(req, ApiRequest):
            raise StepError(f"step {step.position} is not an API request")

        if not req.url:
            raise StepError("API step requires a url")
        url = resolve_url(req.url, flow.base_url, ctx)
        headers = {k: str(v) for k, v in render_value(req.headers, ctx).items()}
        body = render_value(req.body, ctx)
        params = render_value(req.params, ctx) or None

        logs.append(f"[{log_time()}] -> {req.method} {url}")
        if body is not None:
            logs.append(f"  Body: {_body_text(body)[:200]}")

        timeout_ms = req.timeout_ms or self._config.request_timeout_ms
        request_kwargs: dict[str, Any] = {
            "headers": headers,
            "params": params,
            "timeout": timeout_ms / 1000,
        }
        if isinstance(body, str):
            request_kwargs["content"] = body
        elif body is not None:
            request_kwargs["json"] = body

        try:
            response = await session.request(req.method, url, **request_kwargs)
        except httpx.TimeoutException as exc:
            raise StepError(f"timeout of {timeout_ms}ms exceeded: {req.method} {url}") from exc
        except httpx.HTTPError as exc:
            raise StepError(f"{type(exc).__name__}: {exc}") from exc

        try:
            data: Any = response.json()
        except ValueError:
            data = response.text
        text = _body_text(data)
        stored = text[: self._config.response_body_limit]
        logs.append(f"  <- HTTP {response.status_code}")

        try:
            assert_status(
                response.status_code, req.assert_status, text, self._config.error_body_limit
            )
            if req.assert_schema:
                assert_schema(data, req.assert_schema)
                logs.append(f"  Schema ok: {', '.join(req.assert_schema)}")
            if req.assert_expr:
                if not evaluate(req.assert_expr, data, ctx):
                    raise StepAssertionError(f"Assertion failed: {req.assert_expr}")
                logs.append(f"  Assert ok: {req.assert_expr}")
        except StepError as exc:
            exc.http_status = response.status_code
            exc.response_body = stored
            raise

        for name, path in req.capture.items():
            ctx[name] = get_path(data, path)
            logs.append(f"  Captured ctx.{name} = {json.dumps(ctx[name], default=str)}")

        return StepOutcome(http_status=response.status_code, response_body=stored)
