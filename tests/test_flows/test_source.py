"""Tests for the HTTP and file definitions sources."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from flowwatch.core.config import BackendConfig
from flowwatch.core.types import FlowKind
from flowwatch.flows.exceptions import (
    DefinitionError,
    DefinitionsUnavailableError,
    FlowNotFoundError,
)
from flowwatch.flows.source import FileDefinitionsSource, HttpDefinitionsSource, build_flow

_FLOW = {"id": "f1", "name": "Login", "type": "api", "interval_s": 60, "enabled": True}
_STEPS = [
    {"id": "s2", "position": 2, "name": "me", "config": {"url": "/me"}},
    {"id": "s1", "position": 1, "name": "login", "config": {"method": "POST", "url": "/login"}},
]


def _source(handler) -> HttpDefinitionsSource:
    return HttpDefinitionsSource(
        BackendConfig(url="http://backend.test/"),
        transport=httpx.MockTransport(handler),
    )


class TestBuildFlow:
    def test_steps_supplied_separately(self) -> None:
        flow = build_flow(_FLOW, _STEPS)
        assert [s.id for s in flow.steps] == ["s1", "s2"]

    def test_invalid_flow_wrapped(self) -> None:
        with pytest.raises(DefinitionError, match="f1"):
            build_flow({**_FLOW, "interval_s": -5})


class TestHttpDefinitionsSource:
    async def test_list_enabled(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url == "http://backend.test/api/flows"
            return httpx.Response(200, json={"flows": [
                _FLOW,
                {**_FLOW, "id": "f2", "enabled": False},
                {**_FLOW, "id": "f3", "type": "browser"},
            ]})

        source = _source(handler)
        flows = await source.list_enabled()
        await source.close()

        assert [f.id for f in flows] == ["f1", "f3"]
        assert flows[1].kind == FlowKind.BROWSER

    async def test_list_skips_invalid_flow(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"flows": [_FLOW, {"id": "bad", "interval_s": 0}]})

        flows = await _source(handler).list_enabled()
        assert [f.id for f in flows] == ["f1"]

    async def test_get_flow_with_steps(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/flows/f1"
            return httpx.Response(200, json={"flow": _FLOW, "steps": _STEPS})

        flow = await _source(handler).get_flow("f1")
        assert [s.position for s in flow.steps] == [1, 2]
        assert flow.steps[0].action.method == "POST"

    async def test_get_flow_404(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "not found"})

        with pytest.raises(FlowNotFoundError):
            await _source(handler).get_flow("nope")

    async def test_server_error_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        with pytest.raises(DefinitionsUnavailableError):
            await _source(handler).list_enabled()

    async def test_connection_error_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(DefinitionsUnavailableError, match="refused"):
            await _source(handler).list_enabled()

    async def test_malformed_body_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[1, 2, 3])

        with pytest.raises(DefinitionsUnavailableError):
            await _source(handler).list_enabled()


class TestFileDefinitionsSource:
    def _write(self, tmp_path: Path, text: str, name: str = "flows.yaml") -> Path:
        path = tmp_path / name
        path.write_text(text)
        return path

    async def test_yaml(self, tmp_path: Path) -> None:
        path = self._write(tmp_path, """
flows:
  - id: home
    type: browser
    interval_s: 30
    steps:
      - {position: 1, config: {action: navigate, url: "https://x.test"}}
  - id: paused
    enabled: false
""")
        source = FileDefinitionsSource(path)
        flows = await source.list_enabled()
        assert [f.id for f in flows] == ["home"]

        flow = await source.get_flow("home")
        assert flow.steps[0].action.url == "https://x.test"

    async def test_json(self, tmp_path: Path) -> None:
        path = self._write(
            tmp_path, json.dumps({"flows": [{**_FLOW, "steps": _STEPS}]}), "flows.json"
        )
        flow = await FileDefinitionsSource(path).get_flow("f1")
        assert len(flow.steps) == 2

    async def test_unknown_flow(self, tmp_path: Path) -> None:
        path = self._write(tmp_path, "flows: []\n")
        with pytest.raises(FlowNotFoundError):
            await FileDefinitionsSource(path).get_flow("ghost")

    async def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(DefinitionsUnavailableError):
            await FileDefinitionsSource(tmp_path / "nope.yaml").list_enabled()

    async def test_missing_flows_key(self, tmp_path: Path) -> None:
        path = self._write(tmp_path, "other: 1\n")
        with pytest.raises(DefinitionsUnavailableError, match="flows"):
            await FileDefinitionsSource(path).list_enabled()
