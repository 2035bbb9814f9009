"""Tests for flow definitions, typed step actions and result helpers."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from flowwatch.core.actions import (
    ApiRequest,
    AssertText,
    Navigate,
    Press,
    UnknownAction,
    parse_step_config,
)
from flowwatch.core.types import (
    FlowDefinition,
    FlowKind,
    RunResult,
    RunStatus,
    StepResult,
    StepStatus,
)


def _flow(**kw) -> FlowDefinition:
    data = {
        "id": "f1",
        "name": "Checkout",
        "type": "api",
        "interval_s": 60,
        "steps": [{"position": 1, "name": "ping", "config": {"url": "/ping"}}],
    }
    data.update(kw)
    return FlowDefinition.model_validate(data)


class TestFlowDefinition:
    def test_aliases(self) -> None:
        flow = _flow()
        assert flow.kind == FlowKind.API
        assert flow.interval_seconds == 60

    def test_field_names_accepted(self) -> None:
        flow = FlowDefinition(id="f2", kind=FlowKind.BROWSER, interval_seconds=30)
        assert flow.kind == FlowKind.BROWSER
        assert flow.steps == []

    def test_numeric_id_coerced(self) -> None:
        flow = _flow(id=17)
        assert flow.id == "17"

    def test_interval_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            _flow(interval_s=0)

    def test_steps_sorted_and_linked(self) -> None:
        flow = _flow(steps=[
            {"position": 2, "name": "b", "config": {"url": "/b"}},
            {"position": 1, "name": "a", "config": {"url": "/a"}},
        ])
        assert [s.name for s in flow.steps] == ["a", "b"]
        assert all(s.flow_id == "f1" for s in flow.steps)

    def test_gap_in_positions_rejected(self) -> None:
        with pytest.raises(ValidationError, match="contiguous"):
            _flow(steps=[
                {"position": 1, "config": {"url": "/a"}},
                {"position": 3, "config": {"url": "/c"}},
            ])

    def test_duplicate_positions_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _flow(steps=[
                {"position": 1, "config": {"url": "/a"}},
                {"position": 1, "config": {"url": "/b"}},
            ])

    def test_base_url(self) -> None:
        assert _flow(config={"baseUrl": "https://api.test"}).base_url == "https://api.test"
        assert _flow().base_url == ""

    def test_step_action_parsed(self) -> None:
        step = _flow().steps[0]
        assert isinstance(step.action, ApiRequest)
        assert step.action.url == "/ping"
        assert step.label == "1. ping"

    def test_malformed_step_rejected_at_load(self) -> None:
        with pytest.raises(ValidationError):
            _flow(steps=[{"position": 1, "config": {"method": "FETCH"}}])

    def test_with_steps_revalidates(self) -> None:
        flow = _flow(steps=[])
        full = flow.with_steps([{"position": 1, "config": {"url": "/x"}}])
        assert flow.steps == []
        assert full.steps[0].action.url == "/x"
        assert full.interval_seconds == 60


class TestApiRequest:
    def test_aliases_and_defaults(self) -> None:
        req = ApiRequest.model_validate({
            "method": "post",
            "url": "/orders",
            "assertStatus": 201,
            "assertSchema": {"id": "number"},
            "assertFn": "data.id > 0",
            "captureVar": {"orderId": "id"},
        })
        assert req.method == "POST"
        assert req.assert_status == 201
        assert req.assert_schema == {"id": "number"}
        assert req.assert_expr == "data.id > 0"
        assert req.capture == {"orderId": "id"}

    def test_default_status_200(self) -> None:
        assert ApiRequest().assert_status == 200

    def test_unknown_schema_type_rejected(self) -> None:
        with pytest.raises(ValidationError, match="unknown type"):
            ApiRequest.model_validate({"assertSchema": {"id": "integer"}})


class TestBrowserActions:
    def test_navigate_is_default(self) -> None:
        action = parse_step_config("browser", {"url": "https://x.test"})
        assert isinstance(action, Navigate)

    def test_discriminated(self) -> None:
        action = parse_step_config(
            "browser", {"action": "assertText", "selector": "h1", "text": "Hi"}
        )
        assert isinstance(action, AssertText)
        assert action.text == "Hi"

    def test_press_default_key(self) -> None:
        action = parse_step_config("browser", {"action": "press", "selector": "#q"})
        assert isinstance(action, Press)
        assert action.key == "Enter"

    def test_missing_selector_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_step_config("browser", {"action": "click"})

    def test_unknown_action_tolerated(self) -> None:
        action = parse_step_config("browser", {"action": "scrollTo", "y": 400})
        assert isinstance(action, UnknownAction)
        assert action.action == "scrollTo"
        assert action.raw["y"] == 400


class TestRunResult:
    def _run(self, *statuses: StepStatus) -> RunResult:
        return RunResult(
            run_id="r1",
            flow_id="f1",
            status=RunStatus.FAILED,
            step_results=[
                StepResult(position=i + 1, status=s) for i, s in enumerate(statuses)
            ],
        )

    def test_first_failed(self) -> None:
        run = self._run(StepStatus.SLOW, StepStatus.FAILED, StepStatus.SKIPPED)
        assert run.first_failed.position == 2
        assert run.first_slow.position == 1

    def test_none_when_absent(self) -> None:
        run = self._run(StepStatus.PASSED)
        assert run.first_failed is None
        assert run.first_slow is None
