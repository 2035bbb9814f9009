"""Sandboxed boolean expressions for API step assertions.

Expressions are compiled by a small recursive-descent parser into closures;
nothing is handed to :func:`eval`. Only two names are visible: ``data``
(the parsed response body) and ``ctx`` (the run's captured variables).

Supported::

    data.length > 0 && data[0].id != null
    ctx.userId in data.ids
    Array.isArray(data) and len(data.items) >= 3
    data.tags.includes('beta') || !data.archived
    data.total % 2 == 0

Truthiness follows the syntax flows are authored in: ``0``, ``""``,
``null`` and ``false`` are falsy, empty lists and objects are truthy.
"""

from __future__ import annotations

import functools
import math
import re
from collections.abc import Callable
from typing import Any

from flowwatch.runner.exceptions import ExpressionError

MAX_EXPRESSION_LENGTH = 2000

_TOKEN = re.compile(
    r"""\s*(?:
        (?P<number>\d+(?:\.\d+)?)
        |(?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
        |(?P<name>[A-Za-z_$][A-Za-z0-9_$]*)
        |(?P<op>===|!==|==|!=|<=|>=|&&|\|\||[<>!+\-*/%().\[\],])
    )""",
    re.VERBOSE,
)
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}

_LITERALS: dict[str, Any] = {
    "true": True,
    "True": True,
    "false": False,
    "False": False,
    "null": None,
    "None": None,
    "undefined": None,
}
_ROOTS = {"data", "ctx"}

Env = dict[str, Any]
Node = Callable[[Env], Any]


class _ArrayNamespace:
    """Stands in for the ``Array`` global; only ``isArray`` is reachable."""


_ARRAY = _ArrayNamespace()


class _Builtin:
    """A whitelisted callable reachable from an expression."""

    def __init__(self, name: str, fn: Callable[..., Any]) -> None:
        self.name = name
        self.fn = fn

    def __call__(self, *args: Any) -> Any:
        return self.fn(*args)


def _length(value: Any) -> int | None:
    if isinstance(value, str | list | dict):
        return len(value)
    return None


def _includes(container: Any) -> _Builtin:
    def fn(item: Any) -> bool:
        if isinstance(container, str):
            return isinstance(item, str) and item in container
        return any(_equal(item, v) for v in container)

    return _Builtin("includes", fn)


_BUILTINS: dict[str, _Builtin] = {
    "len": _Builtin("len", _length),
}
_IS_ARRAY = _Builtin("isArray", lambda v: isinstance(v, list))


# ── Value semantics ─────────────────────────────────────────────


def truthy(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, int | float) and not isinstance(value, bool):
        return value != 0 and value == value
    if isinstance(value, str):
        return value != ""
    return True


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return bool(a == b)


def _order(op: str, a: Any, b: Any) -> bool:
    if not ((_is_number(a) and _is_number(b)) or (isinstance(a, str) and isinstance(b, str))):
        return False
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


def _contains(item: Any, container: Any) -> bool:
    if isinstance(container, str):
        return isinstance(item, str) and item in container
    if isinstance(container, dict):
        return isinstance(item, str) and item in container
    if isinstance(container, list):
        return any(_equal(item, v) for v in container)
    return False


def _arith(op: str, a: Any, b: Any) -> Any:
    if op == "+" and isinstance(a, str) and isinstance(b, str):
        return a + b
    if not (_is_number(a) and _is_number(b)):
        raise ExpressionError(f"operator {op!r} needs numbers, got {a!r} and {b!r}")
    if op == "+":
        return a + b
    if op == "-":
        return a - b
    if op == "*":
        return a * b
    if b == 0:
        raise ExpressionError("division by zero")
    if op == "/":
        return a / b
    return a % b


def _member(obj: Any, name: str) -> Any:
    if obj is _ARRAY:
        if name == "isArray":
            return _IS_ARRAY
        raise ExpressionError(f"Array.{name} is not available")
    if isinstance(obj, dict) and name in obj:
        return obj[name]
    if name == "length":
        return _length(obj)
    if name == "includes" and isinstance(obj, str | list):
        return _includes(obj)
    if isinstance(obj, dict):
        return obj.get(name)
    return None


def _position(key: Any) -> int | None:
    # Integral, finite, non-negative numbers only; anything else indexes nothing.
    if not _is_number(key) or not math.isfinite(key) or int(key) != key or key < 0:
        return None
    return int(key)


def _index(obj: Any, key: Any) -> Any:
    if isinstance(obj, dict):
        return obj.get(str(key) if _is_number(key) else key)
    if isinstance(obj, list | str):
        idx = _position(key)
        return obj[idx] if idx is not None and idx < len(obj) else None
    return None


# ── Parser ──────────────────────────────────────────────────────


def _tokenize(expr: str) -> list[tuple[str, Any]]:
    tokens: list[tuple[str, Any]] = []
    pos = 0
    end = len(expr.rstrip())
    while pos < end:
        m = _TOKEN.match(expr, pos)
        if m is None or m.end() == pos:
            raise ExpressionError(f"unexpected character {expr[pos:].strip()[:1]!r}")
        pos = m.end()
        kind = m.lastgroup
        text = m.group(kind)
        if kind == "number":
            tokens.append(("value", float(text) if "." in text else int(text)))
        elif kind == "string":
            body = re.sub(r"\\(.)", lambda e: _ESCAPES.get(e.group(1), e.group(1)), text[1:-1])
            tokens.append(("value", body))
        elif kind == "name" and text in _LITERALS:
            tokens.append(("value", _LITERALS[text]))
        elif kind == "name" and text in ("and", "or", "not", "in"):
            tokens.append(("op", text))
        else:
            tokens.append((kind, text))
    tokens.append(("end", None))
    return tokens


class _Parser:
    def __init__(self, tokens: list[tuple[str, Any]]) -> None:
        self._tokens = tokens
        self._pos = 0

    def _peek(self, offset: int = 0) -> tuple[str, Any]:
        return self._tokens[min(self._pos + offset, len(self._tokens) - 1)]

    def _accept(self, *ops: str) -> str | None:
        kind, text = self._peek()
        if kind == "op" and text in ops:
            self._pos += 1
            return text
        return None

    def _expect(self, op: str) -> None:
        if self._accept(op) is None:
            raise ExpressionError(f"expected {op!r}, got {self._peek()[1]!r}")

    def parse(self) -> Node:
        node = self._or()
        if self._peek()[0] != "end":
            raise ExpressionError(f"unexpected token {self._peek()[1]!r}")
        return node

    def _or(self) -> Node:
        left = self._and()
        while self._accept("||", "or"):
            right = self._and()
            left = (lambda lhs, rhs: lambda env: (v if truthy(v := lhs(env)) else rhs(env)))(
                left, right
            )
        return left

    def _and(self) -> Node:
        left = self._not()
        while self._accept("&&", "and"):
            right = self._not()
            left = (lambda lhs, rhs: lambda env: (rhs(env) if truthy(v := lhs(env)) else v))(
                left, right
            )
        return left

    def _not(self) -> Node:
        if self._accept("!", "not"):
            operand = self._not()
            return lambda env: not truthy(operand(env))
        return self._comparison()

    def _comparison(self) -> Node:
        left = self._additive()
        kind, text = self._peek()
        if kind != "op":
            return left
        if text == "not" and self._peek(1) == ("op", "in"):
            self._pos += 2
            right = self._additive()
            return lambda env: not _contains(left(env), right(env))
        op = self._accept("===", "!==", "==", "!=", "<", "<=", ">", ">=", "in")
        if op is None:
            return left
        right = self._additive()
        if op in ("==", "==="):
            return lambda env: _equal(left(env), right(env))
        if op in ("!=", "!=="):
            return lambda env: not _equal(left(env), right(env))
        if op == "in":
            return lambda env: _contains(left(env), right(env))
        return lambda env: _order(op, left(env), right(env))

    def _additive(self) -> Node:
        left = self._multiplicative()
        while op := self._accept("+", "-"):
            right = self._multiplicative()
            left = (lambda o, lhs, rhs: lambda env: _arith(o, lhs(env), rhs(env)))(
                op, left, right
            )
        return left

    def _multiplicative(self) -> Node:
        left = self._unary()
        while op := self._accept("*", "/", "%"):
            right = self._unary()
            left = (lambda o, lhs, rhs: lambda env: _arith(o, lhs(env), rhs(env)))(
                op, left, right
            )
        return left

    def _unary(self) -> Node:
        if self._accept("-"):
            operand = self._unary()
            return lambda env: _arith("-", 0, operand(env))
        return self._postfix()

    def _postfix(self) -> Node:
        node = self._primary()
        while True:
            if self._accept("."):
                kind, name = self._peek()
                if kind != "name":
                    raise ExpressionError(f"expected a field name after '.', got {name!r}")
                self._pos += 1
                node = (lambda base, n: lambda env: _member(base(env), n))(node, name)
            elif self._accept("["):
                key = self._or()
                self._expect("]")
                node = (lambda base, k: lambda env: _index(base(env), k(env)))(node, key)
            elif self._accept("("):
                args = self._arguments(")")
                node = (lambda fn, a: lambda env: _call(fn(env), [x(env) for x in a]))(node, args)
            else:
                return node

    def _arguments(self, closer: str) -> list[Node]:
        args: list[Node] = []
        if self._accept(closer):
            return args
        while True:
            args.append(self._or())
            if self._accept(closer):
                return args
            self._expect(",")

    def _primary(self) -> Node:
        kind, text = self._peek()
        self._pos += 1
        if kind == "value":
            return lambda env: text
        if kind == "name":
            if text in _ROOTS:
                return lambda env: env.get(text)
            if text == "Array":
                return lambda env: _ARRAY
            if text in _BUILTINS:
                builtin = _BUILTINS[text]
                return lambda env: builtin
            raise ExpressionError(f"unknown name {text!r}")
        if kind == "op" and text == "(":
            node = self._or()
            self._expect(")")
            return node
        if kind == "op" and text == "[":
            items = self._arguments("]")
            return lambda env: [item(env) for item in items]
        raise ExpressionError(f"unexpected token {text!r}")


def _call(fn: Any, args: list[Any]) -> Any:
    if not isinstance(fn, _Builtin):
        raise ExpressionError("value is not callable")
    if len(args) != 1:
        raise ExpressionError(f"{fn.name}() takes exactly one argument")
    return fn(*args)


@functools.lru_cache(maxsize=512)
def compile_expression(expr: str) -> Node:
    """Parse an expression once; the result is reused across runs."""
    if len(expr) > MAX_EXPRESSION_LENGTH:
        raise ExpressionError(f"expression longer than {MAX_EXPRESSION_LENGTH} characters")
    if not expr.strip():
        raise ExpressionError("empty expression")
    return _Parser(_tokenize(expr)).parse()


def evaluate(expr: str, data: Any, ctx: dict[str, Any]) -> bool:
    """Evaluate an assertion expression against a response body and captured vars.

    Raises:
        ExpressionError: when the expression is malformed or cannot be evaluated.
    """
    try:
        node = compile_expression(expr)
        return truthy(node({"data": data, "ctx": dict(ctx)}))
    except ExpressionError as exc:
        raise ExpressionError(f"Assertion expression error: {exc} in: {expr}") from exc
    except (TypeError, ValueError, OverflowError, RecursionError) as exc:
        raise ExpressionError(f"Assertion expression error: {exc} in: {expr}") from exc
