"""Incident state machine and storage."""

from flowwatch.incidents.lifecycle import IncidentLifecycleManager
from flowwatch.incidents.store import IncidentStore, InMemoryIncidentStore

__all__ = [
    "InMemoryIncidentStore",
    "IncidentLifecycleManager",
    "IncidentStore",
]
