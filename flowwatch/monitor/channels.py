"""Notification channels: Slack webhook and Resend email delivery."""

from __future__ import annotations

import abc
from pathlib import Path
from typing import Any

import aiohttp
import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape

from flowwatch.core.config import EmailConfig, SlackConfig
from flowwatch.monitor.types import AlertKind, AlertMessage, Severity

logger = structlog.get_logger(__name__)

# Accent colours keyed by severity.
_COLORS: dict[Severity, str] = {
    Severity.INFO: "#00E676",     # green
    Severity.WARNING: "#FFCA28",  # amber
    Severity.CRITICAL: "#FF3D54", # red
}

_TEMPLATE_DIR = Path(__file__).parent / "templates"
_jinja_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


class NotificationChannel(abc.ABC):
    """Base class for alert delivery channels."""

    name: str = ""

    @abc.abstractmethod
    async def send(self, msg: AlertMessage) -> bool:
        """Send an alert message. Returns True on success."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class _HttpChannel(NotificationChannel):
    """Shared lazy aiohttp session handling."""

    def __init__(self, timeout_secs: float = 5.0) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout_secs)
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


# ── Slack ───────────────────────────────────────────────────────


def build_slack_payload(msg: AlertMessage) -> dict[str, Any]:
    """Slack incoming-webhook body: headline text plus a colour-coded block set."""
    color = _COLORS.get(msg.severity, "#95A5A6")
    if msg.kind == AlertKind.RESOLVED:
        text = f"*FlowWatch {msg.title}*"
        header = f"*{msg.title}*"
    else:
        text = f"*FlowWatch Alert: {msg.title}*"
        header = f"*{msg.severity.name}: {msg.title}*"

    blocks: list[dict[str, Any]] = [
        {"type": "section", "text": {"type": "mrkdwn", "text": header}},
    ]
    if msg.fields:
        blocks.append({
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*{k}:*\n{v}"} for k, v in msg.fields.items()
            ],
        })
    if msg.detail:
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Error:*\n```{msg.detail[:500]}```"},
        })
    if msg.links:
        elements = [
            {"type": "button", "text": {"type": "plain_text", "text": label}, "url": url}
            for label, url in msg.links.items()
        ]
        elements[0]["style"] = "danger" if msg.severity == Severity.CRITICAL else "primary"
        blocks.append({"type": "actions", "elements": elements})
    if msg.dashboard_url:
        blocks.append({"type": "divider"})
        blocks.append({
            "type": "context",
            "elements": [{
                "type": "mrkdwn",
                "text": f"FlowWatch synthetic monitor · <{msg.dashboard_url}|Open Dashboard>",
            }],
        })

    return {"text": text, "attachments": [{"color": color, "blocks": blocks}]}


class SlackChannel(_HttpChannel):
    """Delivers alerts via a Slack incoming webhook."""

    name = "slack"

    def __init__(self, config: SlackConfig, timeout_secs: float = 5.0) -> None:
        super().__init__(timeout_secs)
        self._webhook_url = config.webhook_url.get_secret_value()

    async def send(self, msg: AlertMessage) -> bool:
        payload = build_slack_payload(msg)
        try:
            session = self._get_session()
            async with session.post(self._webhook_url, json=payload) as resp:
                if resp.status in (200, 204):
                    return True
                body = await resp.text()
                logger.warning(
                    "slack_send_failed",
                    status=resp.status,
                    body=body[:200],
                    incident_id=msg.incident_id,
                )
                return False
        except Exception:
            logger.exception("slack_send_error", incident_id=msg.incident_id)
            return False


# ── Email ───────────────────────────────────────────────────────


def render_email_html(msg: AlertMessage) -> str:
    """Render the HTML alert email."""
    template = _jinja_env.get_template("alert_email.html")
    return template.render(msg=msg, accent=_COLORS.get(msg.severity, "#95A5A6"))


def email_subject(msg: AlertMessage) -> str:
    if msg.kind == AlertKind.RESOLVED:
        return f"[FlowWatch RESOLVED] {msg.title}"
    return f"[FlowWatch {msg.severity.name}] {msg.title}"


class EmailChannel(_HttpChannel):
    """Delivers alerts as HTML email through the Resend HTTP API."""

    name = "email"

    def __init__(self, config: EmailConfig, timeout_secs: float = 5.0) -> None:
        super().__init__(timeout_secs)
        self._api_key = config.api_key.get_secret_value()
        self._api_url = config.api_url
        self._to = [addr.strip() for addr in config.to.split(",") if addr.strip()]
        self._sender = config.sender

    async def send(self, msg: AlertMessage) -> bool:
        payload = {
            "from": self._sender,
            "to": self._to,
            "subject": email_subject(msg),
            "html": render_email_html(msg),
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            session = self._get_session()
            async with session.post(self._api_url, json=payload, headers=headers) as resp:
                if 200 <= resp.status < 300:
                    return True
                body = await resp.text()
                logger.warning(
                    "email_send_failed",
                    status=resp.status,
                    body=body[:200],
                    incident_id=msg.incident_id,
                )
                return False
        except Exception:
            logger.exception("email_send_error", incident_id=msg.incident_id)
            return False
