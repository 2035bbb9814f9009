"""Convenience factory for wiring the alerting stack."""

from __future__ import annotations

import structlog

from flowwatch.core.config import AlertsConfig
from flowwatch.monitor.channels import EmailChannel, NotificationChannel, SlackChannel
from flowwatch.monitor.dispatcher import AlertDispatcher

logger = structlog.get_logger(__name__)


def create_alert_dispatcher(config: AlertsConfig) -> AlertDispatcher:
    """Build a dispatcher with every channel whose credentials are present."""
    channels: list[NotificationChannel] = []

    if config.slack.configured:
        channels.append(SlackChannel(config.slack, timeout_secs=config.channel_timeout_secs))

    if config.email.configured:
        channels.append(EmailChannel(config.email, timeout_secs=config.channel_timeout_secs))

    logger.info("alert_channels_configured", channels=[ch.name for ch in channels])
    return AlertDispatcher(channels=channels, dashboard_url=config.dashboard_url)
