"""Manual trigger server: run a flow on demand over HTTP.

Exposes:
- ``POST /run``    → ``{"flowId": "..."}``; accepts and runs in the background
- ``GET /health``  → liveness payload
"""

from __future__ import annotations

import datetime
import hmac
from typing import Any

import structlog
from aiohttp import web

from flowwatch.flows.exceptions import (
    DefinitionError,
    DefinitionsUnavailableError,
    FlowNotFoundError,
)
from flowwatch.runner.exceptions import FlowInFlightError
from flowwatch.runner.scheduler import Scheduler

logger = structlog.stdlib.get_logger()

SERVICE_NAME = "flowwatch-runner"

SCHEDULER_KEY = web.AppKey("scheduler", Scheduler)
SECRET_KEY = web.AppKey("secret", str)
BACKEND_KEY = web.AppKey("backend_url", str)


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


@web.middleware
async def _secret_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Require ``X-Runner-Secret`` on ``POST /run`` when a secret is configured."""
    secret = request.app[SECRET_KEY]
    if secret and request.path == "/run":
        supplied = request.headers.get("X-Runner-Secret", "")
        if not hmac.compare_digest(supplied, secret):
            logger.warning("trigger_unauthorized", remote=request.remote)
            return _error(401, "Unauthorized: wrong runner secret")
    return await handler(request)


async def _handle_run(request: web.Request) -> web.Response:
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    flow_id = payload.get("flowId") if isinstance(payload, dict) else None
    if not flow_id:
        return _error(400, "flowId is required")

    scheduler = request.app[SCHEDULER_KEY]
    try:
        flow = await scheduler.run_now(str(flow_id))
    except FlowNotFoundError:
        return _error(404, "Flow not found")
    except DefinitionsUnavailableError as exc:
        return _error(502, f"Could not fetch flow: {exc}")
    except DefinitionError as exc:
        logger.warning("trigger_invalid_definition", flow_id=str(flow_id), error=str(exc))
        return _error(422, f"Invalid flow definition: {exc}")
    except FlowInFlightError as exc:
        return _error(409, str(exc))

    return web.json_response(
        {"ok": True, "message": f'"{flow.name or flow.id}" queued for immediate execution'},
        status=202,
    )


async def _handle_health(request: web.Request) -> web.Response:
    return web.json_response({
        "status": "ok",
        "service": SERVICE_NAME,
        "ts": datetime.datetime.now(datetime.UTC).isoformat(),
        "backend": request.app[BACKEND_KEY],
    })


def create_trigger_app(
    scheduler: Scheduler,
    secret: str = "",
    backend_url: str = "",
) -> web.Application:
    """Create the aiohttp trigger application."""
    app = web.Application(middlewares=[_secret_middleware])
    app[SCHEDULER_KEY] = scheduler
    app[SECRET_KEY] = secret
    app[BACKEND_KEY] = backend_url
    app.router.add_post("/run", _handle_run)
    app.router.add_get("/health", _handle_health)
    return app


async def start_trigger_server(
    scheduler: Scheduler,
    host: str = "0.0.0.0",
    port: int = 4001,
    secret: str = "",
    backend_url: str = "",
) -> web.AppRunner:
    """Start the trigger server. Returns the runner for cleanup."""
    app = create_trigger_app(scheduler, secret=secret, backend_url=backend_url)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("trigger_server_started", host=host, port=port)
    return runner
