"""Pure functions that turn incident transitions into AlertMessage objects."""

from __future__ import annotations

import datetime

from flowwatch.core.types import FlowDefinition, Incident, IncidentSeverity, StepDefinition
from flowwatch.monitor.types import AlertKind, AlertMessage, Severity

_SEVERITY: dict[IncidentSeverity, Severity] = {
    IncidentSeverity.CRITICAL: Severity.CRITICAL,
    IncidentSeverity.WARNING: Severity.WARNING,
}

# Error detail is cut to this length in alerts.
DETAIL_LIMIT = 600


def format_duration(seconds: float) -> str:
    """Human incident duration: ``42s``, ``3m 5s`` or ``2h 14m``."""
    s = max(0, round(seconds))
    if s > 3600:
        return f"{s // 3600}h {(s % 3600) // 60}m"
    if s > 60:
        return f"{s // 60}m {s % 60}s"
    return f"{s}s"


def _utc(ts: float) -> str:
    return datetime.datetime.fromtimestamp(ts, datetime.UTC).strftime("%a, %d %b %Y %H:%M:%S UTC")


def incident_title(flow: FlowDefinition, failed_step: StepDefinition | None) -> str:
    name = flow.name or flow.id
    if failed_step is None:
        return f"{name} - Execution failed"
    return f"{name} - Step {failed_step.position} failed: {failed_step.name}"


def _links(dashboard_url: str, flow: FlowDefinition, incident: Incident) -> dict[str, str]:
    base = dashboard_url.rstrip("/")
    return {
        "View Flow": f"{base}/flows/{flow.id}",
        "Incident": f"{base}/incidents/{incident.id}",
    }


def format_incident_opened(
    incident: Incident,
    flow: FlowDefinition,
    failed_step: StepDefinition | None = None,
    dashboard_url: str = "",
) -> AlertMessage:
    """Alert for a new (or re-alerted) open incident."""
    severity = _SEVERITY[incident.severity]
    label = "CRITICAL FAILURE" if severity == Severity.CRITICAL else "DEGRADED PERFORMANCE"
    detected = incident.last_alert_sent_at or incident.opened_at
    return AlertMessage(
        kind=AlertKind.OPENED,
        severity=severity,
        title=incident.title,
        headline=label,
        detail=(incident.description or "")[:DETAIL_LIMIT],
        fields={
            "Flow": flow.name or flow.id,
            "Type": flow.kind.value.upper(),
            "Failed step": failed_step.label if failed_step is not None else "Unknown",
            "Detected": _utc(detected),
            "Severity": incident.severity.value.upper(),
            "Interval": f"Every {flow.interval_seconds}s",
        },
        links=_links(dashboard_url, flow, incident) if dashboard_url else {},
        incident_id=incident.id,
        flow_id=flow.id,
        dashboard_url=dashboard_url,
        timestamp=detected,
    )


def format_incident_resolved(
    incident: Incident,
    flow: FlowDefinition,
    dashboard_url: str = "",
) -> AlertMessage:
    """Resolution notice carrying how long the incident was open."""
    resolved_at = incident.resolved_at or incident.opened_at
    return AlertMessage(
        kind=AlertKind.RESOLVED,
        severity=Severity.INFO,
        title=f"Resolved: {flow.name or flow.id}",
        headline="RESOLVED",
        fields={
            "Flow": flow.name or flow.id,
            "Incident duration": format_duration(resolved_at - incident.opened_at),
            "Status": "All steps passing",
            "Resolved at": _utc(resolved_at),
        },
        links=_links(dashboard_url, flow, incident) if dashboard_url else {},
        incident_id=incident.id,
        flow_id=flow.id,
        dashboard_url=dashboard_url,
        timestamp=resolved_at,
    )
