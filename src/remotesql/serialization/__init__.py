"""
Serialization utilities for remotesql.

This module provides JSON serialization that tolerates the payloads found
in error and trace data: UUIDs, datetimes, enums, exceptions, records with
``to_dict`` and circular references.

Example:
    >>> from remotesql.serialization import json_dumps, to_jsonable
    >>> error = ValueError("boom")
    >>> json_dumps({"error": error})
    '{"error": {"type": "ValueError", "message": "boom"}}'
"""

from remotesql.serialization.json import (
    RemoteSqlJSONEncoder,
    json_dumps,
    json_loads,
    to_jsonable,
)

__all__ = [
    "RemoteSqlJSONEncoder",
    "json_dumps",
    "json_loads",
    "to_jsonable",
]
