"""Domain types for the alerting subsystem."""

from __future__ import annotations

import time
from enum import IntEnum, StrEnum
from typing import Any

from pydantic import BaseModel, Field


class Severity(IntEnum):
    """Alert severity, ordered from least to most urgent."""

    INFO = 1
    WARNING = 2
    CRITICAL = 3


class AlertKind(StrEnum):
    """Which incident transition an alert announces."""

    OPENED = "opened"
    RESOLVED = "resolved"


class AlertMessage(BaseModel):
    """Normalised alert ready for dispatch to channels.

    ``fields`` are short label/value pairs shown side by side; ``links`` are
    labelled URLs rendered as buttons. ``detail`` is the error text, if any.
    """

    kind: AlertKind
    severity: Severity
    title: str
    headline: str = ""
    detail: str = ""
    fields: dict[str, str] = Field(default_factory=dict)
    links: dict[str, str] = Field(default_factory=dict)
    incident_id: str = ""
    flow_id: str = ""
    dashboard_url: str = ""
    timestamp: float = Field(default_factory=time.time)
    raw: dict[str, Any] = Field(default_factory=dict)
