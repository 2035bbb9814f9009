"""Incident storage. The lifecycle manager is its only writer."""

from __future__ import annotations

import abc
import asyncio
import contextlib
from collections.abc import AsyncIterator

from flowwatch.core.types import Incident, IncidentStatus


class IncidentStore(abc.ABC):
    """Persistence for incidents.

    ``lock(flow_id)`` serialises the check-then-create sequence for one flow;
    a store shared between engine instances must back it with a transaction
    or an equivalent cross-process lock.
    """

    @abc.abstractmethod
    async def open_for_flow(self, flow_id: str) -> list[Incident]:
        """Open incidents of a flow, newest first."""

    @abc.abstractmethod
    async def get(self, incident_id: str) -> Incident | None: ...

    @abc.abstractmethod
    async def save(self, incident: Incident) -> None:
        """Insert or replace an incident by id."""

    @abc.abstractmethod
    def lock(self, flow_id: str) -> contextlib.AbstractAsyncContextManager[None]: ...


class InMemoryIncidentStore(IncidentStore):
    """Process-local store with one asyncio lock per flow."""

    def __init__(self) -> None:
        self._incidents: dict[str, Incident] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def open_for_flow(self, flow_id: str) -> list[Incident]:
        return sorted(
            (
                i.model_copy(deep=True)
                for i in self._incidents.values()
                if i.flow_id == flow_id and i.status == IncidentStatus.OPEN
            ),
            key=lambda i: i.opened_at,
            reverse=True,
        )

    async def get(self, incident_id: str) -> Incident | None:
        incident = self._incidents.get(incident_id)
        return incident.model_copy(deep=True) if incident is not None else None

    async def save(self, incident: Incident) -> None:
        self._incidents[incident.id] = incident.model_copy(deep=True)

    def all(self) -> list[Incident]:
        return sorted(self._incidents.values(), key=lambda i: i.opened_at)

    @contextlib.asynccontextmanager
    async def lock(self, flow_id: str) -> AsyncIterator[None]:
        flow_lock = self._locks.setdefault(flow_id, asyncio.Lock())
        async with flow_lock:
            yield
