"""
Unit tests for JSON serialization helpers.
"""

import json
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID

from remotesql.serialization import RemoteSqlJSONEncoder, json_dumps, json_loads, to_jsonable
from remotesql.serialization.json import CIRCULAR_MARKER


class Color(Enum):
    RED = "red"


class WithToDict:
    def to_dict(self):
        return {"kind": "custom"}


class Opaque:
    def __repr__(self) -> str:
        return "<Opaque>"


class TestEncoder:
    def test_encodes_special_types(self):
        uid = UUID("12345678-1234-5678-1234-567812345678")
        when = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        encoded = json.loads(
            json.dumps(
                {"id": uid, "at": when, "color": Color.RED, "obj": WithToDict()},
                cls=RemoteSqlJSONEncoder,
            )
        )
        assert encoded == {
            "id": str(uid),
            "at": "2024-01-02T03:04:05+00:00",
            "color": "red",
            "obj": {"kind": "custom"},
        }

    def test_encodes_exceptions(self):
        encoded = json.loads(json.dumps(ValueError("bad"), cls=RemoteSqlJSONEncoder))
        assert encoded == {"type": "ValueError", "message": "bad"}


class TestToJsonable:
    def test_circular_dict(self):
        payload: dict = {"a": 1}
        payload["self"] = payload
        assert to_jsonable(payload) == {"a": 1, "self": CIRCULAR_MARKER}

    def test_circular_list(self):
        items: list = [1]
        items.append(items)
        assert to_jsonable(items) == [1, CIRCULAR_MARKER]

    def test_shared_reference_is_not_circular(self):
        shared = {"x": 1}
        assert to_jsonable({"a": shared, "b": shared}) == {"a": {"x": 1}, "b": {"x": 1}}

    def test_exception_with_cause(self):
        try:
            try:
                raise KeyError("inner")
            except KeyError as e:
                raise RuntimeError("outer") from e
        except RuntimeError as e:
            data = to_jsonable(e)

        assert data["type"] == "RuntimeError"
        assert data["cause"]["type"] == "KeyError"

    def test_unknown_objects_fall_back_to_repr(self):
        assert to_jsonable({"o": Opaque()}) == {"o": "<Opaque>"}

    def test_to_dict_that_raises_falls_back_to_repr(self):
        class Broken:
            def to_dict(self):
                raise RuntimeError("no")

            def __repr__(self) -> str:
                return "<Broken>"

        assert to_jsonable(Broken()) == "<Broken>"


def test_json_dumps_handles_everything():
    payload: dict = {"err": ValueError("x")}
    payload["loop"] = payload
    assert json_loads(json_dumps(payload)) == {
        "err": {"type": "ValueError", "message": "x"},
        "loop": CIRCULAR_MARKER,
    }
