"""``{{name}}`` substitution against the per-run variable context."""

from __future__ import annotations

import json
import re
from typing import Any

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict | list):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def render_template(text: str, ctx: dict[str, Any]) -> str:
    """Replace each ``{{name}}`` with the context value; unknown names become ""."""
    return _PLACEHOLDER.sub(lambda m: _to_text(ctx.get(m.group(1))), text)


def render_value(value: Any, ctx: dict[str, Any]) -> Any:
    """Apply :func:`render_template` to every string inside a JSON-like value."""
    if isinstance(value, str):
        return render_template(value, ctx)
    if isinstance(value, dict):
        return {k: render_value(v, ctx) for k, v in value.items()}
    if isinstance(value, list):
        return [render_value(v, ctx) for v in value]
    return value


def resolve_url(url: str, base_url: str, ctx: dict[str, Any]) -> str:
    """Render a step URL and prefix the flow's base URL when it is relative."""
    rendered = render_template(url, ctx)
    if rendered.startswith("http"):
        return rendered
    return f"{base_url}{rendered}"


def get_path(obj: Any, path: str) -> Any:
    """Walk a dotted path (``a.b.0.c``) into parsed JSON. Missing → None."""
    current = obj
    for part in path.split("."):
        if part == "":
            continue
        if isinstance(current, dict):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, list):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return None
        else:
            return None
    return current
