#!/usr/bin/env python3
"""Runner entrypoint: wires all components and runs the monitoring loop.

Usage::

    # Run with default config (config/settings.yaml + environment)
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # Local flow definitions instead of the backend API
    python scripts/run.py --flows config/flows.example.yaml

    # Override log level
    python scripts/run.py --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from flowwatch.core.config import load_settings
from flowwatch.core.events import EventBus
from flowwatch.core.logging import setup_logging
from flowwatch.core.types import FlowKind
from flowwatch.flows.sink import HttpResultSink, LoggingResultSink, ResultSink
from flowwatch.flows.source import (
    DefinitionsSource,
    FileDefinitionsSource,
    HttpDefinitionsSource,
)
from flowwatch.incidents.lifecycle import IncidentLifecycleManager
from flowwatch.incidents.store import InMemoryIncidentStore
from flowwatch.monitor.factory import create_alert_dispatcher
from flowwatch.monitor.metrics import MetricsAggregator
from flowwatch.runner.api import ApiStepRunner
from flowwatch.runner.browser import BrowserStepRunner
from flowwatch.runner.executor import FlowExecutor
from flowwatch.runner.scheduler import Scheduler
from flowwatch.runner.trigger import start_trigger_server

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    """Start all components and run until interrupted."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    definitions_path = args.flows or settings.definitions.path

    logger.info(
        "runner_starting",
        backend=settings.backend.url,
        definitions=definitions_path or "backend",
        poll_interval_ms=settings.scheduler.poll_interval_ms,
    )

    # ── Definitions source + result sink ────────────────────────
    source: DefinitionsSource
    sink: ResultSink
    if definitions_path:
        source = FileDefinitionsSource(definitions_path)
        sink = LoggingResultSink()
    else:
        source = HttpDefinitionsSource(settings.backend)
        sink = HttpResultSink(settings.backend)

    # ── Event bus + subscribers ─────────────────────────────────
    bus = EventBus()

    metrics = MetricsAggregator(
        max_samples_per_bucket=settings.metrics.max_samples_per_bucket,
        window_hours=settings.metrics.window_hours,
        retention_days=settings.metrics.retention_days,
    )
    bus.on_event(metrics.on_engine_event)

    dispatcher = create_alert_dispatcher(settings.alerts)
    incidents = IncidentLifecycleManager(
        store=InMemoryIncidentStore(),
        dispatcher=dispatcher,
        bus=bus,
        cooldown_secs=settings.alerts.cooldown_secs,
    )
    bus.on_event(incidents.on_engine_event)

    # ── Executor + scheduler ────────────────────────────────────
    executor = FlowExecutor(
        runners={
            FlowKind.API: ApiStepRunner(settings.runner),
            FlowKind.BROWSER: BrowserStepRunner(settings.runner),
        },
        sink=sink,
        bus=bus,
    )
    scheduler = Scheduler(source, executor, settings.scheduler)

    # ── Start everything ────────────────────────────────────────
    await scheduler.start()

    trigger_runner = None
    if settings.server.enabled:
        trigger_runner = await start_trigger_server(
            scheduler,
            host=settings.server.host,
            port=settings.server.port,
            secret=settings.server.secret.get_secret_value(),
            backend_url=settings.backend.url,
        )

    logger.info(
        "runner_running",
        channels=dispatcher.channel_names,
        trigger_server="active" if trigger_runner else "disabled",
    )

    # ── Wait for shutdown signal ────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ───────────────────────────────────────
    logger.info("runner_shutting_down")

    if trigger_runner is not None:
        await trigger_runner.cleanup()

    await scheduler.stop()
    await dispatcher.close()
    await sink.close()
    await source.close()

    logger.info("runner_stopped", **metrics.summary())
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the FlowWatch synthetic monitoring engine.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--flows",
        default=None,
        help="Read flow definitions from a local YAML/JSON file instead of the backend",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
