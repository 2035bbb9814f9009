"""Central alert dispatcher: fans incident alerts out to channels concurrently."""

from __future__ import annotations

import asyncio

import structlog

from flowwatch.core.types import FlowDefinition, Incident, StepDefinition
from flowwatch.monitor.channels import NotificationChannel
from flowwatch.monitor.formatters import format_incident_opened, format_incident_resolved
from flowwatch.monitor.types import AlertKind, AlertMessage

# Dedicated structured logger for alert decision records.
alert_logger = structlog.get_logger("alert_log")

logger = structlog.get_logger(__name__)


class AlertDispatcher:
    """Routes incident transitions to notification channels.

    - Every notification is logged via *alert_logger*.
    - All channels are attempted concurrently; one channel failing (returning
      False or raising) never affects the others.
    - Only configured channels are registered, so an unconfigured channel is
      never attempted rather than reported as failed.
    """

    def __init__(
        self,
        channels: list[NotificationChannel] | None = None,
        dashboard_url: str = "",
    ) -> None:
        self._channels: list[NotificationChannel] = channels or []
        self._dashboard_url = dashboard_url

    @property
    def channel_names(self) -> list[str]:
        return [ch.name for ch in self._channels]

    async def notify(
        self,
        kind: AlertKind,
        incident: Incident,
        flow: FlowDefinition,
        failed_step: StepDefinition | None = None,
    ) -> set[str]:
        """Send an opened/resolved alert. Returns the channels that accepted it."""
        if kind == AlertKind.RESOLVED:
            msg = format_incident_resolved(incident, flow, self._dashboard_url)
        else:
            msg = format_incident_opened(incident, flow, failed_step, self._dashboard_url)
        return await self.send(msg)

    async def send(self, msg: AlertMessage) -> set[str]:
        """Dispatch a formatted AlertMessage to every channel."""
        delivered: set[str] = set()
        if self._channels:
            outcomes = await asyncio.gather(
                *(self._send_one(ch, msg) for ch in self._channels)
            )
            delivered = {ch.name for ch, ok in zip(self._channels, outcomes) if ok}
        self._log_decision(msg, delivered)
        return delivered

    async def _send_one(self, channel: NotificationChannel, msg: AlertMessage) -> bool:
        try:
            return await channel.send(msg)
        except Exception:
            logger.exception(
                "channel_dispatch_error",
                channel=channel.name or type(channel).__name__,
                title=msg.title,
            )
            return False

    def _log_decision(self, msg: AlertMessage, delivered: set[str]) -> None:
        alert_logger.info(
            "alert",
            kind=msg.kind.value,
            severity=msg.severity.name,
            title=msg.title,
            incident_id=msg.incident_id,
            flow_id=msg.flow_id,
            attempted=self.channel_names,
            delivered=sorted(delivered),
        )

    # ── Lifecycle ───────────────────────────────────────────────

    async def close(self) -> None:
        for ch in self._channels:
            try:
                await ch.close()
            except Exception:
                logger.exception("channel_close_error", channel=ch.name)
