"""Declarative response transforms.

A method config's ``transform`` is a pipeline of named, pure operators rather
than executable code. It may be given as a list of steps, a single step, or a
JSON string encoding either::

    [
        {"op": "pick", "path": "data.list"},
        {"op": "filter", "where": "duration > 0"},
        {"op": "map", "fields": {"id": "rid", "name": "name", "artist": "artist.name"}},
        {"op": "wrap", "key": "data"},
    ]

Operators:

- ``pick``: navigate a dotted path (integer segments index into lists).
- ``map``: project each element into ``{out_key: value at in_path}``.
- ``rename``: rename keys of each element.
- ``filter``: keep elements whose expression is truthy; the element's keys
  (and the element itself as ``item``) are bound as variables.
- ``wrap``: wrap the value as ``{key: value}``.
- ``default``: replace a null value with a literal.

Any malformed pipeline raises :class:`~tunebridge.errors.TransformError`.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
import json
from typing import Any

from tunebridge.errors import ExpressionEvalError, TransformError
from tunebridge.templating import evaluate_expression, is_truthy

TransformSpec = str | Mapping[str, Any] | Sequence[Mapping[str, Any]]

_MISSING = object()


def get_path(value: Any, path: str) -> Any:
    """Return the value at dotted *path*, or None when any segment is missing."""
    current = value
    for segment in (s for s in path.split(".") if s):
        if isinstance(current, Mapping):
            current = current.get(segment, _MISSING)
        elif isinstance(current, list) and segment.lstrip("-").isdigit():
            index = int(segment)
            current = current[index] if -len(current) <= index < len(current) else _MISSING
        else:
            current = _MISSING
        if current is _MISSING:
            return None
    return current


def _each(value: Any, fn: Callable[[Any], Any]) -> Any:
    if isinstance(value, list):
        return [fn(item) for item in value]
    return fn(value)


def _require(step: Mapping[str, Any], name: str, kind: type | tuple[type, ...]) -> Any:
    arg = step.get(name)
    if not isinstance(arg, kind):
        raise TransformError(f"{step.get('op')!r} step needs a {name!r} argument")
    return arg


def _pick(value: Any, step: Mapping[str, Any]) -> Any:
    return get_path(value, _require(step, "path", str))


def _map(value: Any, step: Mapping[str, Any]) -> Any:
    fields: Mapping[str, Any] = _require(step, "fields", Mapping)

    def project(item: Any) -> dict[str, Any]:
        if not isinstance(item, Mapping):
            raise TransformError(f"map expects objects, got {type(item).__name__}")
        return {out: get_path(item, str(src)) for out, src in fields.items()}

    return _each(value, project)


def _rename(value: Any, step: Mapping[str, Any]) -> Any:
    fields: Mapping[str, Any] = _require(step, "fields", Mapping)

    def rename(item: Any) -> Any:
        if not isinstance(item, Mapping):
            return item
        return {str(fields.get(k, k)): v for k, v in item.items()}

    return _each(value, rename)


def _filter(value: Any, step: Mapping[str, Any]) -> Any:
    where: str = _require(step, "where", str)
    if not isinstance(value, list):
        raise TransformError(f"filter expects a list, got {type(value).__name__}")

    def keep(item: Any) -> bool:
        bindings: dict[str, Any] = dict(item) if isinstance(item, Mapping) else {}
        bindings["item"] = item
        try:
            return is_truthy(evaluate_expression(where, bindings))
        except ExpressionEvalError:
            return False

    return [item for item in value if keep(item)]


def _wrap(value: Any, step: Mapping[str, Any]) -> Any:
    return {_require(step, "key", str): value}


def _default(value: Any, step: Mapping[str, Any]) -> Any:
    return step.get("value") if value is None else value


OPERATORS: dict[str, Callable[[Any, Mapping[str, Any]], Any]] = {
    "pick": _pick,
    "map": _map,
    "rename": _rename,
    "filter": _filter,
    "wrap": _wrap,
    "default": _default,
}


def parse_transform(spec: TransformSpec) -> list[Mapping[str, Any]]:
    """Normalize *spec* into a validated list of steps."""
    if isinstance(spec, str):
        try:
            spec = json.loads(spec)
        except json.JSONDecodeError as e:
            raise TransformError(
                "transform is not a declarative pipeline",
                hint="Express transforms as JSON steps like {'op': 'pick', 'path': 'data'}.",
            ) from e

    steps = [spec] if isinstance(spec, Mapping) else spec
    if not isinstance(steps, (list, tuple)):
        raise TransformError(f"transform must be a list of steps, got {type(steps).__name__}")

    for step in steps:
        if not isinstance(step, Mapping):
            raise TransformError(f"transform step must be an object, got {step!r}")
        op = step.get("op")
        if not isinstance(op, str) or op not in OPERATORS:
            raise TransformError(
                f"unknown transform operator: {op!r}",
                hint=f"Supported operators: {', '.join(sorted(OPERATORS))}",
            )
    return list(steps)


def apply_transform(spec: TransformSpec, payload: Any) -> Any:
    """Run the transform pipeline over *payload* and return the new value.

    The payload is not mutated; operators build new containers.
    """
    value = payload
    for step in parse_transform(spec):
        value = OPERATORS[step["op"]](value, step)
    return value
