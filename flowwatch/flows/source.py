"""Flow definitions sources: backend HTTP API or a local YAML/JSON file."""

from __future__ import annotations

import abc
import json
from pathlib import Path
from typing import Any

import httpx
import structlog
import yaml
from pydantic import ValidationError

from flowwatch.core.config import BackendConfig
from flowwatch.core.types import FlowDefinition
from flowwatch.flows.exceptions import (
    DefinitionError,
    DefinitionsUnavailableError,
    FlowNotFoundError,
)

logger = structlog.stdlib.get_logger()


def build_flow(data: dict[str, Any], steps: list[dict[str, Any]] | None = None) -> FlowDefinition:
    """Validate a raw flow record (plus optional separate step records).

    Raises:
        DefinitionError: when the flow or any of its steps is malformed.
    """
    payload = dict(data)
    if steps is not None:
        payload["steps"] = steps
    try:
        return FlowDefinition.model_validate(payload)
    except ValidationError as exc:
        raise DefinitionError(f"invalid flow {payload.get('id')!r}: {exc}") from exc


class DefinitionsSource(abc.ABC):
    """Read-only access to flow definitions."""

    @abc.abstractmethod
    async def list_enabled(self) -> list[FlowDefinition]:
        """Return all enabled flows. Steps may be omitted."""

    @abc.abstractmethod
    async def get_flow(self, flow_id: str) -> FlowDefinition:
        """Return one flow with its steps sorted by position.

        Raises:
            FlowNotFoundError: unknown flow id.
            DefinitionsUnavailableError: source unreachable.
        """

    async def close(self) -> None:
        """Release resources."""


class HttpDefinitionsSource(DefinitionsSource):
    """Fetches flows from the persistence backend's REST API."""

    def __init__(
        self,
        config: BackendConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._base = config.url.rstrip("/")
        self._http = httpx.AsyncClient(transport=transport)

    async def _get_json(self, path: str, timeout: float) -> Any:
        url = f"{self._base}{path}"
        try:
            response = await self._http.get(url, timeout=timeout)
        except httpx.HTTPError as exc:
            raise DefinitionsUnavailableError(f"GET {url} failed: {exc}") from exc
        if response.status_code == 404:
            raise FlowNotFoundError(path.rsplit("/", 1)[-1])
        if response.status_code >= 400:
            raise DefinitionsUnavailableError(f"GET {url} returned {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise DefinitionsUnavailableError(f"GET {url} returned invalid JSON") from exc

    async def list_enabled(self) -> list[FlowDefinition]:
        body = await self._get_json("/api/flows", self._config.list_timeout_secs)
        raw_flows = body.get("flows") if isinstance(body, dict) else None
        if not isinstance(raw_flows, list):
            raise DefinitionsUnavailableError("flow list response missing 'flows'")

        flows: list[FlowDefinition] = []
        for raw in raw_flows:
            if not isinstance(raw, dict) or not raw.get("enabled", True):
                continue
            try:
                flows.append(build_flow(raw))
            except DefinitionError as exc:
                logger.warning("flow_definition_invalid", flow_id=raw.get("id"), error=str(exc))
        return flows

    async def get_flow(self, flow_id: str) -> FlowDefinition:
        body = await self._get_json(f"/api/flows/{flow_id}", self._config.fetch_timeout_secs)
        raw_flow = body.get("flow") if isinstance(body, dict) else None
        if not isinstance(raw_flow, dict):
            raise FlowNotFoundError(flow_id)
        steps = body.get("steps")
        return build_flow(raw_flow, steps if isinstance(steps, list) else None)

    async def close(self) -> None:
        await self._http.aclose()


class FileDefinitionsSource(DefinitionsSource):
    """Reads flows (with inline steps) from a YAML or JSON file.

    The file is re-read on every call so edits are picked up on the next
    scheduler tick. Expected shape::

        flows:
          - id: checkout
            name: Checkout
            type: api
            interval_s: 60
            config: {baseUrl: "https://shop.example.com"}
            steps:
              - {position: 1, name: Home, config: {url: "/"}}
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def _load_raw(self) -> list[dict[str, Any]]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise DefinitionsUnavailableError(f"cannot read {self._path}: {exc}") from exc

        try:
            if self._path.suffix.lower() == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (ValueError, yaml.YAMLError) as exc:
            raise DefinitionsUnavailableError(f"cannot parse {self._path}: {exc}") from exc

        raw_flows = data.get("flows") if isinstance(data, dict) else None
        if not isinstance(raw_flows, list):
            raise DefinitionsUnavailableError(f"{self._path}: top-level 'flows' list missing")
        return [raw for raw in raw_flows if isinstance(raw, dict)]

    async def list_enabled(self) -> list[FlowDefinition]:
        flows: list[FlowDefinition] = []
        for raw in self._load_raw():
            if not raw.get("enabled", True):
                continue
            try:
                flows.append(build_flow(raw))
            except DefinitionError as exc:
                logger.warning("flow_definition_invalid", flow_id=raw.get("id"), error=str(exc))
        return flows

    async def get_flow(self, flow_id: str) -> FlowDefinition:
        for raw in self._load_raw():
            if str(raw.get("id")) == flow_id:
                return build_flow(raw)
        raise FlowNotFoundError(flow_id)
