"""
JSON:API envelope decoding.

Public API surface:
- decode(raw: bytes | str) -> Document
- Resource / Document
- as_string, as_int, as_bool, as_map, as_datetime, relationship_id

Notes
- Envelope shape problems raise DecodeError; nothing partial is returned.
- Attribute access is permissive: missing or wrong-typed values become the
  zero value of the requested type.
"""

from __future__ import annotations

import dataclasses
import datetime
import json
import typing as t

from .errors import DecodeError

__all__ = [
    "Document",
    "Resource",
    "as_bool",
    "as_datetime",
    "as_int",
    "as_map",
    "as_string",
    "decode",
    "relationship_id",
]


@dataclasses.dataclass
class Resource:
    id: str
    type: str
    attributes: dict[str, t.Any] = dataclasses.field(default_factory=dict)
    relationships: dict[str, t.Any] = dataclasses.field(default_factory=dict)
    links: dict[str, t.Any] = dataclasses.field(default_factory=dict)

    def attr(self, name: str) -> t.Any:
        return self.attributes.get(name)

    def related_id(self, name: str) -> str:
        return relationship_id(self.relationships.get(name))


@dataclasses.dataclass
class Document:
    data: Resource | list[Resource] | None
    included: list[Resource] = dataclasses.field(default_factory=list)
    meta: dict[str, t.Any] = dataclasses.field(default_factory=dict)
    links: dict[str, t.Any] = dataclasses.field(default_factory=dict)

    def resources(self) -> list[Resource]:
        """Primary data as a list, in server order."""
        if self.data is None:
            return []
        if isinstance(self.data, Resource):
            return [self.data]
        return list(self.data)

    def single(self) -> Resource | None:
        if isinstance(self.data, Resource):
            return self.data
        return None

    def require_single(self, what: str = "resource") -> Resource:
        res = self.single()
        if res is None:
            raise DecodeError(f"parsing {what}: expected a single resource object")
        return res

    def included_of(self, type_: str) -> list[Resource]:
        return [inc for inc in self.included if inc.type == type_]


# ---------------------------
# Total conversion helpers
# ---------------------------

def as_string(value: t.Any) -> str:
    return value if isinstance(value, str) else ""


def as_int(value: t.Any) -> int:
    # JSON numbers arrive as float; truncate, never round
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        try:
            return int(value)
        except (OverflowError, ValueError):
            return 0
    return 0


def as_bool(value: t.Any) -> bool:
    return value if isinstance(value, bool) else False


def as_map(value: t.Any) -> dict[str, t.Any]:
    return value if isinstance(value, dict) else {}


def as_datetime(value: t.Any) -> datetime.datetime | None:
    """RFC 3339 timestamp as an aware datetime; naive values are taken as UTC."""
    if not isinstance(value, str) or not value:
        return None
    try:
        dt = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt


def relationship_id(rel: t.Any) -> str:
    """Identifier of a to-one relationship, or "" when the relation is absent.

    Only a concrete {"id": ..., "type": ...} pair counts as present; null data,
    to-many lists and link-only relationships all flatten to "".
    """
    data = as_map(rel).get("data")
    if not isinstance(data, dict):
        return ""
    rid = data.get("id")
    if not isinstance(rid, str) or not isinstance(data.get("type"), str):
        return ""
    return rid


# ---------------------------
# Envelope parsing
# ---------------------------

def _resource(obj: t.Any, where: str) -> Resource:
    if not isinstance(obj, dict):
        raise DecodeError(f"{where}: expected a resource object, got {type(obj).__name__}")
    rid = obj.get("id")
    return Resource(
        id=rid if isinstance(rid, str) else "",
        type=as_string(obj.get("type")),
        attributes=as_map(obj.get("attributes")),
        relationships=as_map(obj.get("relationships")),
        links=as_map(obj.get("links")),
    )


def decode(raw: bytes | str) -> Document:
    """Parse a JSON:API success envelope into a Document."""
    try:
        doc = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"parsing response: {exc}") from exc
    if not isinstance(doc, dict):
        raise DecodeError(f"parsing response: expected a JSON object, got {type(doc).__name__}")

    data = doc.get("data")
    primary: Resource | list[Resource] | None
    if data is None:
        primary = None
    elif isinstance(data, dict):
        primary = _resource(data, "data")
    elif isinstance(data, list):
        primary = [_resource(item, f"data[{i}]") for i, item in enumerate(data)]
    else:
        raise DecodeError(f"parsing response: 'data' must be an object or array, got {type(data).__name__}")

    included_raw = doc.get("included")
    included = []
    if isinstance(included_raw, list):
        included = [_resource(item, f"included[{i}]") for i, item in enumerate(included_raw)]

    return Document(
        data=primary,
        included=included,
        meta=as_map(doc.get("meta")),
        links=as_map(doc.get("links")),
    )
