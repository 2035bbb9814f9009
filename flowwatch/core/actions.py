"""Typed step configuration: one model per API request or browser action.

Raw step config arrives as loosely-typed JSON from the definitions source.
:func:`parse_step_config` turns it into one of the models below, so a
malformed step is rejected when the flow definition is loaded.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

_HTTP_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}


class _ActionModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True, extra="ignore", frozen=True, coerce_numbers_to_str=True
    )


# ── API ─────────────────────────────────────────────────────────


class ApiRequest(_ActionModel):
    """One HTTP call plus its assertions and variable captures.

    Field aliases match the camelCase keys stored in step configs
    (``assertStatus``, ``assertSchema``, ``assertFn``, ``captureVar``).
    """

    method: str = "GET"
    url: str = ""
    headers: dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    params: dict[str, Any] = Field(default_factory=dict)
    timeout_ms: int | None = Field(default=None, alias="timeout", gt=0)
    assert_status: int = Field(default=200, alias="assertStatus")
    assert_schema: dict[str, str] = Field(default_factory=dict, alias="assertSchema")
    assert_expr: str | None = Field(default=None, alias="assertFn")
    capture: dict[str, str] = Field(default_factory=dict, alias="captureVar")

    @field_validator("method")
    @classmethod
    def _upper_method(cls, v: str) -> str:
        method = (v or "GET").strip().upper()
        if method not in _HTTP_METHODS:
            raise ValueError(f"unsupported HTTP method: {v!r}")
        return method

    @field_validator("assert_schema")
    @classmethod
    def _known_types(cls, v: dict[str, str]) -> dict[str, str]:
        allowed = {"number", "string", "boolean", "object", "array", "null", "undefined"}
        for field, typ in v.items():
            if typ not in allowed:
                raise ValueError(f"assertSchema[{field!r}]: unknown type {typ!r}")
        return v


# ── Browser ─────────────────────────────────────────────────────


class Navigate(_ActionModel):
    action: Literal["navigate"] = "navigate"
    url: str = Field(min_length=1)


class Click(_ActionModel):
    action: Literal["click"]
    selector: str = Field(min_length=1)


class Fill(_ActionModel):
    action: Literal["fill"]
    selector: str = Field(min_length=1)
    value: str = ""


class Select(_ActionModel):
    action: Literal["select"]
    selector: str = Field(min_length=1)
    value: str


class Hover(_ActionModel):
    action: Literal["hover"]
    selector: str = Field(min_length=1)


class Press(_ActionModel):
    action: Literal["press"]
    selector: str = Field(min_length=1)
    key: str = "Enter"


class WaitFor(_ActionModel):
    action: Literal["waitFor"]
    selector: str = Field(min_length=1)
    timeout_ms: int | None = Field(default=None, alias="timeout", gt=0)


class WaitForUrl(_ActionModel):
    action: Literal["waitForUrl"]
    pattern: str = Field(min_length=1)


class AssertText(_ActionModel):
    action: Literal["assertText"]
    selector: str = Field(min_length=1)
    text: str


class AssertUrl(_ActionModel):
    action: Literal["assertUrl"]
    pattern: str = Field(min_length=1)


class AssertVisible(_ActionModel):
    action: Literal["assertVisible"]
    selector: str = Field(min_length=1)


class Evaluate(_ActionModel):
    action: Literal["evaluate"]
    script: str = Field(min_length=1)


class Screenshot(_ActionModel):
    action: Literal["screenshot"]


class UnknownAction(_ActionModel):
    """An action kind this version does not know; run as a logged no-op."""

    action: str
    raw: dict[str, Any] = Field(default_factory=dict)


KnownBrowserAction = Annotated[
    Navigate
    | Click
    | Fill
    | Select
    | Hover
    | Press
    | WaitFor
    | WaitForUrl
    | AssertText
    | AssertUrl
    | AssertVisible
    | Evaluate
    | Screenshot,
    Field(discriminator="action"),
]

BrowserAction = (
    Navigate
    | Click
    | Fill
    | Select
    | Hover
    | Press
    | WaitFor
    | WaitForUrl
    | AssertText
    | AssertUrl
    | AssertVisible
    | Evaluate
    | Screenshot
    | UnknownAction
)

StepAction = ApiRequest | BrowserAction

BROWSER_ACTIONS = frozenset({
    "navigate",
    "click",
    "fill",
    "select",
    "hover",
    "press",
    "waitFor",
    "waitForUrl",
    "assertText",
    "assertUrl",
    "assertVisible",
    "evaluate",
    "screenshot",
})

_browser_adapter: TypeAdapter[Any] = TypeAdapter(KnownBrowserAction)


def parse_browser_action(config: dict[str, Any]) -> BrowserAction:
    """Validate a browser step config; unknown action kinds are tolerated."""
    data = dict(config or {})
    action = str(data.get("action") or "navigate")
    data["action"] = action
    if action not in BROWSER_ACTIONS:
        return UnknownAction(action=action, raw=data)
    return _browser_adapter.validate_python(data)


def parse_step_config(kind: str, config: dict[str, Any]) -> StepAction:
    """Validate raw step config for a flow of the given kind (``api``/``browser``).

    Raises:
        pydantic.ValidationError: when the config is malformed.
    """
    if kind == "browser":
        return parse_browser_action(config)
    return ApiRequest.model_validate(config or {})
