"""Pydantic settings loaded from YAML configuration with environment overrides."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, SecretStr

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")

# Environment variable → dotted settings path.
_ENV_OVERRIDES: dict[str, str] = {
    "FLOWWATCH_POLL_INTERVAL_MS": "scheduler.poll_interval_ms",
    "FLOWWATCH_REQUEST_TIMEOUT_MS": "runner.request_timeout_ms",
    "FLOWWATCH_BROWSER_TIMEOUT_MS": "runner.browser_timeout_ms",
    "FLOWWATCH_BROWSER_HEADLESS": "runner.browser_headless",
    "FLOWWATCH_BACKEND_URL": "backend.url",
    "FLOWWATCH_DEFINITIONS_PATH": "definitions.path",
    "ALERT_COOLDOWN_SECONDS": "alerts.cooldown_secs",
    "FRONTEND_URL": "alerts.dashboard_url",
    "SLACK_WEBHOOK_URL": "alerts.slack.webhook_url",
    "RESEND_API_KEY": "alerts.email.api_key",
    "ALERT_EMAIL_TO": "alerts.email.to",
    "ALERT_EMAIL_FROM": "alerts.email.sender",
    "RUNNER_SECRET": "server.secret",
    "RUNNER_HOST": "server.host",
    "RUNNER_PORT": "server.port",
    "LOG_LEVEL": "logging.level",
    "LOG_FORMAT": "logging.format",
}


class SchedulerConfig(BaseModel):
    """Flow scheduler configuration."""

    poll_interval_ms: int = 10_000


class RunnerConfig(BaseModel):
    """Step runner configuration (API and browser)."""

    request_timeout_ms: int = 10_000
    browser_timeout_ms: int = 15_000
    browser_headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 800
    user_agent: str = "FlowWatch-Synthetic/1.0 Mozilla/5.0 (compatible)"
    response_body_limit: int = 2000
    error_body_limit: int = 300


class BackendConfig(BaseModel):
    """Persistence collaborator endpoints (definitions + result sink)."""

    url: str = "http://localhost:4000"
    list_timeout_secs: float = 5.0
    fetch_timeout_secs: float = 8.0
    submit_timeout_secs: float = 60.0


class DefinitionsConfig(BaseModel):
    """Where flow definitions come from.

    When ``path`` is set, flows are read from a local YAML/JSON file instead of
    the backend API.
    """

    path: str = ""


class SlackConfig(BaseModel):
    """Slack incoming-webhook channel."""

    webhook_url: SecretStr = SecretStr("")

    @property
    def configured(self) -> bool:
        url = self.webhook_url.get_secret_value()
        return bool(url) and "REPLACE" not in url


class EmailConfig(BaseModel):
    """Email channel delivered through the Resend HTTP API."""

    api_key: SecretStr = SecretStr("")
    to: str = ""
    sender: str = "FlowWatch Alerts <alerts@flowwatch.local>"
    api_url: str = "https://api.resend.com/emails"

    @property
    def configured(self) -> bool:
        return bool(self.api_key.get_secret_value()) and bool(self.to)


class AlertsConfig(BaseModel):
    """Incident alerting configuration."""

    cooldown_secs: float = 300.0
    dashboard_url: str = "http://localhost:3000"
    channel_timeout_secs: float = 5.0
    slack: SlackConfig = SlackConfig()
    email: EmailConfig = EmailConfig()


class MetricsConfig(BaseModel):
    """Latency metrics aggregation."""

    max_samples_per_bucket: int = 10_000
    window_hours: float = 24.0
    retention_days: float = 7.0


class ServerConfig(BaseModel):
    """Manual-trigger HTTP server."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 4001
    secret: SecretStr = SecretStr("")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class Settings(BaseModel):
    """Root settings container."""

    scheduler: SchedulerConfig = SchedulerConfig()
    runner: RunnerConfig = RunnerConfig()
    backend: BackendConfig = BackendConfig()
    definitions: DefinitionsConfig = DefinitionsConfig()
    alerts: AlertsConfig = AlertsConfig()
    metrics: MetricsConfig = MetricsConfig()
    server: ServerConfig = ServerConfig()
    logging: LoggingConfig = LoggingConfig()


def _apply_env_overrides(data: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    """Write any recognised environment variables into the raw settings dict.

    Values stay strings; pydantic coerces them to the field types.
    """
    for var, dotted in _ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or raw.strip() == "":
            continue
        node = data
        *parents, leaf = dotted.split(".")
        for key in parents:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[leaf] = raw.strip()
    return data


def load_settings(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Load settings from a YAML file, apply env overrides and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.
        env: Environment mapping. Defaults to ``os.environ``.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    data = _apply_env_overrides(data, os.environ if env is None else env)
    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
