from __future__ import annotations

import copy
import json

import pytest

from tunebridge.errors import TransformError
from tunebridge.transforms import apply_transform, get_path, parse_transform

pytestmark = pytest.mark.unit

PAYLOAD = {
    "result": {
        "songs": [
            {"rid": 1, "name": "A", "artist": {"name": "X"}, "duration": 200},
            {"rid": 2, "name": "B", "artist": {"name": "Y"}, "duration": 0},
            {"rid": 3, "name": "C", "artist": None, "duration": 180},
        ]
    }
}


def test_get_path_walks_mappings_and_list_indices() -> None:
    assert get_path(PAYLOAD, "result.songs.0.artist.name") == "X"
    assert get_path(PAYLOAD, "result.songs.-1.rid") == 3
    assert get_path(PAYLOAD, "result.songs.9") is None
    assert get_path(PAYLOAD, "result.missing.deep") is None
    assert get_path(PAYLOAD, "") is PAYLOAD


def test_full_pipeline() -> None:
    pipeline = [
        {"op": "pick", "path": "result.songs"},
        {"op": "filter", "where": "duration > 0"},
        {"op": "map", "fields": {"id": "rid", "title": "name", "artist": "artist.name"}},
        {"op": "wrap", "key": "list"},
    ]
    snapshot = copy.deepcopy(PAYLOAD)

    out = apply_transform(pipeline, PAYLOAD)

    assert out == {
        "list": [
            {"id": 1, "title": "A", "artist": "X"},
            {"id": 3, "title": "C", "artist": None},
        ]
    }
    assert PAYLOAD == snapshot


def test_json_string_and_single_step_forms() -> None:
    as_json = json.dumps({"op": "pick", "path": "result.songs.1.name"})
    assert apply_transform(as_json, PAYLOAD) == "B"
    assert apply_transform({"op": "pick", "path": "result.songs.0.rid"}, PAYLOAD) == 1


def test_rename_leaves_unlisted_keys() -> None:
    out = apply_transform(
        [{"op": "rename", "fields": {"rid": "id"}}], [{"rid": 1, "name": "A"}, "skip"]
    )
    assert out == [{"id": 1, "name": "A"}, "skip"]


def test_default_only_replaces_null() -> None:
    assert apply_transform([{"op": "pick", "path": "nope"}, {"op": "default", "value": []}], {}) == []
    assert apply_transform({"op": "default", "value": []}, {"a": 1}) == {"a": 1}


def test_filter_binds_item_and_drops_failing_rows() -> None:
    rows = [{"n": 1}, {"n": "x"}, 5]
    assert apply_transform({"op": "filter", "where": "n * 2 > 1"}, rows) == [{"n": 1}]
    assert apply_transform({"op": "filter", "where": "item == 5"}, rows) == [5]


@pytest.mark.parametrize(
    "spec",
    [
        "return data.list",
        "function(d) { return d }",
        [{"op": "eval", "code": "x"}],
        [{"path": "a"}],
        [{"op": ["pick"]}],
        ["pick"],
        42,
    ],
)
def test_non_declarative_transforms_are_rejected(spec: object) -> None:
    with pytest.raises(TransformError):
        parse_transform(spec)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "pipeline",
    [
        [{"op": "pick"}],
        [{"op": "wrap", "key": 3}],
        [{"op": "filter", "where": "x"}],
        [{"op": "map", "fields": {"a": "b"}}],
    ],
)
def test_bad_operator_arguments_raise(pipeline: list[dict[str, object]]) -> None:
    with pytest.raises(TransformError):
        apply_transform(pipeline, {"not": "a list"} if pipeline[0]["op"] == "filter" else [1])
