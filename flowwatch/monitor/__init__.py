"""Alerting and metrics: channels, dispatcher, formatters and latency rollups."""

from flowwatch.monitor.channels import EmailChannel, NotificationChannel, SlackChannel
from flowwatch.monitor.dispatcher import AlertDispatcher
from flowwatch.monitor.factory import create_alert_dispatcher
from flowwatch.monitor.metrics import MetricsAggregator, percentile, rollup_hour
from flowwatch.monitor.types import AlertKind, AlertMessage, Severity

__all__ = [
    "AlertDispatcher",
    "AlertKind",
    "AlertMessage",
    "EmailChannel",
    "MetricsAggregator",
    "NotificationChannel",
    "Severity",
    "SlackChannel",
    "create_alert_dispatcher",
    "percentile",
    "rollup_hour",
]
