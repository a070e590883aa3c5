"""
JSON serialization utilities for remotesql types.

Audit details and debug traces may contain values that the standard
encoder rejects, or structures that reference themselves. ``to_jsonable``
converts such values into plain JSON-compatible data and never raises.

Example:
    >>> from remotesql.serialization import json_dumps
    >>> payload = {"a": 1}
    >>> payload["self"] = payload
    >>> json_dumps(payload)
    '{"a": 1, "self": "[Circular]"}'
"""

import json
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

CIRCULAR_MARKER = "[Circular]"
MAX_DEPTH = 32


class RemoteSqlJSONEncoder(json.JSONEncoder):
    """
    JSON encoder that handles UUID, datetime, Enum and exception objects.

    - UUID objects: Converted to string representation
    - datetime/date objects: Converted to ISO 8601 format string
    - Enum members: Converted to their value
    - Exceptions: Converted to ``{"type": ..., "message": ...}``
    - Objects with ``to_dict()``: Converted via that method

    Example:
        >>> import json
        >>> from uuid import uuid4
        >>> json.dumps({"id": uuid4()}, cls=RemoteSqlJSONEncoder)
    """

    def default(self, obj: Any) -> Any:
        """
        Convert non-serializable objects to JSON-serializable formats.

        Args:
            obj: Object to serialize

        Returns:
            JSON-serializable representation

        Raises:
            TypeError: If object type is not supported
        """
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, BaseException):
            return {"type": type(obj).__name__, "message": str(obj)}
        to_dict = getattr(obj, "to_dict", None)
        if callable(to_dict):
            return to_dict()
        return super().default(obj)


def to_jsonable(obj: Any, _seen: set[int] | None = None, _depth: int = 0) -> Any:
    """
    Convert an arbitrary object into JSON-compatible data.

    Containers are walked recursively. Objects already on the current path
    are replaced with ``"[Circular]"``, and anything the encoder cannot
    handle falls back to ``repr``. This function does not raise.

    Args:
        obj: Object to convert

    Returns:
        Data composed of dict, list, str, int, float, bool and None
    """
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj

    if _depth >= MAX_DEPTH:
        return repr(obj)

    seen = _seen if _seen is not None else set()
    marker = id(obj)
    if marker in seen:
        return CIRCULAR_MARKER

    seen.add(marker)
    try:
        if isinstance(obj, dict):
            return {str(k): to_jsonable(v, seen, _depth + 1) for k, v in obj.items()}
        if isinstance(obj, (list, tuple, set, frozenset)):
            return [to_jsonable(v, seen, _depth + 1) for v in obj]
        if isinstance(obj, BaseException):
            result: dict[str, Any] = {"type": type(obj).__name__, "message": str(obj)}
            if obj.__cause__ is not None:
                result["cause"] = to_jsonable(obj.__cause__, seen, _depth + 1)
            return result
        to_dict = getattr(obj, "to_dict", None)
        if callable(to_dict):
            try:
                return to_jsonable(to_dict(), seen, _depth + 1)
            except Exception:
                return repr(obj)
        try:
            return RemoteSqlJSONEncoder().default(obj)
        except TypeError:
            return repr(obj)
    finally:
        seen.discard(marker)


def json_dumps(obj: Any) -> str:
    """
    Serialize any object to a JSON string.

    Args:
        obj: Object to serialize

    Returns:
        JSON string representation
    """
    return json.dumps(to_jsonable(obj), cls=RemoteSqlJSONEncoder)


def json_loads(s: str) -> Any:
    """
    Deserialize JSON string to Python object.

    Args:
        s: JSON string to deserialize

    Returns:
        Python object representation
    """
    return json.loads(s)


__all__ = [
    "CIRCULAR_MARKER",
    "RemoteSqlJSONEncoder",
    "json_dumps",
    "json_loads",
    "to_jsonable",
]
