"""Structured logging setup using structlog.

Run-scoped fields (``flow_id``, ``run_id``) are carried in contextvars so
every log line emitted while a run is executing, including those from the
step runners and the HTTP clients, can be correlated without passing them
through each call.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from flowwatch.core.config import get_settings

SERVICE_NAME = "flowwatch-runner"

# Libraries that log every request at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "aiohttp.access", "asyncio")


def _add_service(
    _logger: object, _method: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Route structlog and stdlib records through one stderr handler.

    Args:
        level: Log level override (e.g. "DEBUG"). Uses ``logging.level`` if None.
        fmt: ``"json"`` or ``"console"``. Uses ``logging.format`` if None.
    """
    cfg = get_settings().logging
    log_level = logging.getLevelName((level or cfg.level).upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if (fmt or cfg.format).lower() == "json"
        else structlog.dev.ConsoleRenderer()
    )

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


@contextmanager
def run_log_context(flow_id: str, run_id: str) -> Iterator[None]:
    """Bind ``flow_id`` and ``run_id`` to every log line inside the block."""
    with structlog.contextvars.bound_contextvars(flow_id=flow_id, run_id=run_id):
        yield
