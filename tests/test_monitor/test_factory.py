"""Tests for the monitor factory — wiring logic with various config combinations."""

from __future__ import annotations

from pydantic import SecretStr

from flowwatch.core.config import AlertsConfig, EmailConfig, SlackConfig
from flowwatch.monitor.channels import EmailChannel, SlackChannel
from flowwatch.monitor.dispatcher import AlertDispatcher
from flowwatch.monitor.factory import create_alert_dispatcher


# ── Helpers ─────────────────────────────────────────────────────


def _alerts(**kw: object) -> AlertsConfig:
    defaults: dict[str, object] = {}
    defaults.update(kw)
    return AlertsConfig(**defaults)  # type: ignore[arg-type]


_SLACK = SlackConfig(webhook_url=SecretStr("https://hooks.slack.com/services/T/B/x"))
_EMAIL = EmailConfig(api_key=SecretStr("re_x"), to="ops@example.com")


# ── Config Combinations ────────────────────────────────────────


class TestFactoryWiring:
    def test_no_channels_configured(self) -> None:
        disp = create_alert_dispatcher(_alerts())
        assert isinstance(disp, AlertDispatcher)
        assert disp.channel_names == []

    def test_slack_only(self) -> None:
        disp = create_alert_dispatcher(_alerts(slack=_SLACK))
        assert len(disp._channels) == 1
        assert isinstance(disp._channels[0], SlackChannel)

    def test_email_only(self) -> None:
        disp = create_alert_dispatcher(_alerts(email=_EMAIL))
        assert isinstance(disp._channels[0], EmailChannel)

    def test_both(self) -> None:
        disp = create_alert_dispatcher(_alerts(slack=_SLACK, email=_EMAIL))
        assert disp.channel_names == ["slack", "email"]

    def test_placeholder_webhook_skipped(self) -> None:
        slack = SlackConfig(webhook_url=SecretStr("https://hooks.slack.com/REPLACE_ME"))
        disp = create_alert_dispatcher(_alerts(slack=slack))
        assert disp.channel_names == []

    def test_email_without_recipient_skipped(self) -> None:
        disp = create_alert_dispatcher(_alerts(email=EmailConfig(api_key=SecretStr("re_x"))))
        assert disp.channel_names == []

    def test_dashboard_url_passed(self) -> None:
        disp = create_alert_dispatcher(_alerts(dashboard_url="https://dash.example.com"))
        assert disp._dashboard_url == "https://dash.example.com"
