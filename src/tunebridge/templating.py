"""Template resolution for method configs.

Strings inside a method config may embed ``{{expression}}`` placeholders that
are evaluated against request-time variables, e.g. ``"{{(page - 1) * limit}}"``.

Expressions are parsed with :mod:`ast` and walked by a small evaluator that
only understands literals, variable lookup, arithmetic, comparisons, boolean
logic, conditionals and a whitelist of pure helpers. Config authors write
these expressions in JavaScript style, so ``&&``, ``||``, ``!``, ``===`` and
``!==`` are accepted and mapped onto their Python counterparts, and results
are stringified the way a JavaScript template would render them.

A placeholder that cannot be evaluated renders as ``"0"``; the rest of the
template still resolves.
"""

from __future__ import annotations

import ast
from collections.abc import Mapping
import json
import logging
import math
import re
from typing import Any
from urllib.parse import quote

from tunebridge.errors import ExpressionEvalError

logger = logging.getLogger(__name__)

TemplateValue = Any

PLACEHOLDER_RE = re.compile(r"\{\{(.+?)\}\}")
FALLBACK_RENDER = "0"

_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_NUMERIC_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
_STRING_LITERAL_RE = re.compile(r"""("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')""")
_LEADING_INT_RE = re.compile(r"^\s*[+-]?\d+")
_LEADING_FLOAT_RE = re.compile(r"^\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")

_MAX_EXPONENT = 64
_MAX_INT_BITS = 1024
_MAX_STRING_LENGTH = 100_000

_LITERAL_NAMES: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
    "True": True,
    "False": False,
    "None": None,
}


def encode_uri_component(value: str) -> str:
    """Percent-encode *value* with the same unreserved set as JavaScript."""
    return quote(value, safe="!*'()")


def coerce_variable(value: Any) -> Any:
    """Turn a fully numeric string into an int or float; leave anything else."""
    if not isinstance(value, str):
        return value
    text = value.strip()
    if _INTEGER_RE.match(text):
        return int(text)
    if _NUMERIC_RE.match(text):
        return float(text)
    return value


def build_bindings(variables: Mapping[str, Any] | None) -> dict[str, Any]:
    """Build the evaluation context for a request's variables."""
    if not variables:
        return {}
    return {str(name): coerce_variable(value) for name, value in variables.items()}


def render(value: Any) -> str:
    """Stringify an evaluation result the way a JS template literal would."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return ",".join("" if item is None else render(item) for item in value)
    if isinstance(value, Mapping):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _normalize_operators(source: str) -> str:
    """Map JS boolean/equality operators to Python, leaving string literals alone."""
    pieces = _STRING_LITERAL_RE.split(source)
    for i in range(0, len(pieces), 2):
        code = pieces[i]
        code = code.replace("===", "==").replace("!==", "!=")
        code = code.replace("&&", " and ").replace("||", " or ")
        code = re.sub(r"!(?!=)", " not ", code)
        pieces[i] = code
    return "".join(pieces).strip()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float))


def is_truthy(value: Any) -> bool:
    """Truthiness as template authors expect it: containers are always true."""
    if isinstance(value, (list, tuple, Mapping)):
        return True
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def _to_number(value: Any) -> int | float:
    if _is_number(value):
        return value
    coerced = coerce_variable(value.strip() if isinstance(value, str) else value)
    if isinstance(coerced, str) and not coerced.strip():
        return 0
    if not _is_number(coerced):
        raise ExpressionEvalError(f"not a number: {value!r}")
    return coerced


def _parse_int(value: Any, radix: int = 10) -> int:
    if _is_number(value):
        return int(value)
    text = render(value)
    if radix != 10:
        match = re.match(r"^\s*[+-]?[0-9a-zA-Z]+", text)
        if match is None:
            raise ExpressionEvalError(f"parseInt: no digits in {text!r}")
        return int(match.group(0), radix)
    match = _LEADING_INT_RE.match(text)
    if match is None:
        raise ExpressionEvalError(f"parseInt: no digits in {text!r}")
    return int(match.group(0))


def _parse_float(value: Any) -> float:
    if _is_number(value):
        return float(value)
    match = _LEADING_FLOAT_RE.match(render(value))
    if match is None:
        raise ExpressionEvalError(f"parseFloat: no digits in {value!r}")
    return float(match.group(0))


def _number(value: Any) -> int | float:
    result = _to_number(value)
    if isinstance(result, float) and result.is_integer():
        return int(result)
    return result


def _round_half_up(value: Any) -> int:
    return math.floor(_to_number(value) + 0.5)


_FUNCTIONS: dict[str, Any] = {
    "Math.floor": lambda x: math.floor(_to_number(x)),
    "Math.ceil": lambda x: math.ceil(_to_number(x)),
    "Math.round": _round_half_up,
    "Math.abs": lambda x: abs(_to_number(x)),
    "Math.max": lambda *xs: max(_to_number(x) for x in xs),
    "Math.min": lambda *xs: min(_to_number(x) for x in xs),
    "parseInt": _parse_int,
    "parseFloat": _parse_float,
    "String": render,
    "Number": _number,
    "encodeURIComponent": lambda x: encode_uri_component(render(x)),
}


class _Evaluator:
    """Walk a parsed expression, refusing anything outside the small grammar."""

    def __init__(self, bindings: Mapping[str, Any]) -> None:
        self._bindings = bindings

    def evaluate(self, node: ast.AST) -> Any:
        match node:
            case ast.Constant(value=value):
                if value is None or isinstance(value, (bool, int, float, str)):
                    return value
                raise ExpressionEvalError(f"unsupported literal: {value!r}")
            case ast.Name(id=name):
                if name in self._bindings:
                    return self._bindings[name]
                if name in _LITERAL_NAMES:
                    return _LITERAL_NAMES[name]
                raise ExpressionEvalError(f"unknown variable: {name}")
            case ast.UnaryOp(op=op, operand=operand):
                return self._unary(op, self.evaluate(operand))
            case ast.BinOp(left=left, op=op, right=right):
                return self._binary(op, self.evaluate(left), self.evaluate(right))
            case ast.BoolOp(op=op, values=values):
                return self._boolean(op, values)
            case ast.Compare(left=left, ops=ops, comparators=comparators):
                return self._compare(left, ops, comparators)
            case ast.IfExp(test=test, body=body, orelse=orelse):
                branch = body if is_truthy(self.evaluate(test)) else orelse
                return self.evaluate(branch)
            case ast.Call(func=func, args=args, keywords=[]):
                fn = _FUNCTIONS.get(self._callable_name(func))
                if fn is None:
                    raise ExpressionEvalError(f"unsupported call: {ast.unparse(func)}")
                return fn(*(self.evaluate(arg) for arg in args))
            case ast.Attribute(value=value, attr="length"):
                return len(self.evaluate(value))
            case ast.Subscript(value=value, slice=index):
                container = self.evaluate(value)
                if not isinstance(container, (str, list, tuple, Mapping)):
                    raise ExpressionEvalError("subscript of a non-container")
                return container[self.evaluate(index)]
            case _:
                raise ExpressionEvalError(
                    f"unsupported expression: {type(node).__name__}"
                )

    @staticmethod
    def _callable_name(func: ast.AST) -> str:
        match func:
            case ast.Name(id=name):
                return name
            case ast.Attribute(value=ast.Name(id=owner), attr=attr):
                return f"{owner}.{attr}"
            case _:
                return ""

    @staticmethod
    def _unary(op: ast.unaryop, operand: Any) -> Any:
        match op:
            case ast.Not():
                return not is_truthy(operand)
            case ast.USub():
                return -_to_number(operand)
            case ast.UAdd():
                return _to_number(operand)
            case _:
                raise ExpressionEvalError(f"unsupported operator: {type(op).__name__}")

    @staticmethod
    def _binary(op: ast.operator, left: Any, right: Any) -> Any:
        if isinstance(op, ast.Add) and (isinstance(left, str) or isinstance(right, str)):
            joined = render(left) + render(right)
            if len(joined) > _MAX_STRING_LENGTH:
                raise ExpressionEvalError("string result too long")
            return joined
        if not (_is_number(left) and _is_number(right)):
            raise ExpressionEvalError(
                f"arithmetic on non-numbers: {left!r}, {right!r}"
            )
        match op:
            case ast.Add():
                result = left + right
            case ast.Sub():
                result = left - right
            case ast.Mult():
                result = left * right
            case ast.Div():
                result = left / right
            case ast.FloorDiv():
                result = left // right
            case ast.Mod():
                result = left % right
            case ast.Pow():
                if abs(right) > _MAX_EXPONENT:
                    raise ExpressionEvalError("exponent too large")
                result = left**right
                if isinstance(result, complex):
                    raise ExpressionEvalError("complex result")
            case _:
                raise ExpressionEvalError(f"unsupported operator: {type(op).__name__}")
        if isinstance(result, int) and result.bit_length() > _MAX_INT_BITS:
            raise ExpressionEvalError("integer result too large")
        return result

    def _boolean(self, op: ast.boolop, values: list[ast.expr]) -> Any:
        # Short-circuit and return the deciding operand, like JS && and ||.
        result: Any = None
        for node in values:
            result = self.evaluate(node)
            if isinstance(op, ast.And) and not is_truthy(result):
                return result
            if isinstance(op, ast.Or) and is_truthy(result):
                return result
        return result

    def _compare(
        self, left: ast.expr, ops: list[ast.cmpop], comparators: list[ast.expr]
    ) -> bool:
        current = self.evaluate(left)
        for op, node in zip(ops, comparators, strict=True):
            other = self.evaluate(node)
            match op:
                case ast.Eq():
                    ok = current == other
                case ast.NotEq():
                    ok = current != other
                case ast.Lt():
                    ok = current < other
                case ast.LtE():
                    ok = current <= other
                case ast.Gt():
                    ok = current > other
                case ast.GtE():
                    ok = current >= other
                case ast.In():
                    ok = current in other
                case ast.NotIn():
                    ok = current not in other
                case _:
                    raise ExpressionEvalError(
                        f"unsupported comparison: {type(op).__name__}"
                    )
            if not ok:
                return False
            current = other
        return True


def evaluate_expression(source: str, bindings: Mapping[str, Any]) -> Any:
    """Evaluate one placeholder expression under *bindings*.

    Raises:
        ExpressionEvalError: the expression is malformed, uses a construct
            outside the grammar, or fails while evaluating.
    """
    try:
        tree = ast.parse(_normalize_operators(source), mode="eval")
        return _Evaluator(bindings).evaluate(tree.body)
    except ExpressionEvalError:
        raise
    except (
        SyntaxError,
        TypeError,
        ValueError,
        KeyError,
        IndexError,
        ArithmeticError,
        RecursionError,
    ) as e:
        raise ExpressionEvalError(f"{type(e).__name__}: {e}") from e


def _resolve_string(text: str, bindings: Mapping[str, Any]) -> str:
    def _substitute(match: re.Match[str]) -> str:
        expression = match.group(1)
        try:
            return render(evaluate_expression(expression, bindings))
        except (ExpressionEvalError, ValueError) as e:
            logger.warning("Template expression %r failed: %s", expression, e)
            return FALLBACK_RENDER

    return PLACEHOLDER_RE.sub(_substitute, text)


def resolve_template(value: TemplateValue, bindings: Mapping[str, Any]) -> TemplateValue:
    """Resolve every placeholder in *value*, returning a new value of the same shape.

    Strings have their placeholders substituted, sequences and mappings are
    rebuilt recursively, and any other scalar is returned unchanged. The input
    is never mutated.
    """
    if isinstance(value, str):
        return _resolve_string(value, bindings)
    if isinstance(value, (list, tuple)):
        return [resolve_template(item, bindings) for item in value]
    if isinstance(value, Mapping):
        return {key: resolve_template(item, bindings) for key, item in value.items()}
    return value
