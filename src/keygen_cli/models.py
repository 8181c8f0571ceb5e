from __future__ import annotations

import dataclasses
import typing as t

from .errors import DecodeError
from .jsonapi import Document, Resource, as_bool, as_int, as_map, as_string

# Fields rendered only when non-empty
_OMIT_EMPTY = {"omit_empty": True}


@dataclasses.dataclass
class License:
    id: str
    key: str = ""
    name: str = ""
    status: str = ""
    expiry: str = ""
    created: str = ""
    updated: str = ""
    metadata: dict[str, t.Any] = dataclasses.field(default_factory=dict, metadata=_OMIT_EMPTY)
    policy_id: str = dataclasses.field(default="", metadata=_OMIT_EMPTY)
    product_id: str = dataclasses.field(default="", metadata=_OMIT_EMPTY)
    owner_id: str = dataclasses.field(default="", metadata=_OMIT_EMPTY)


@dataclasses.dataclass
class Component:
    id: str
    fingerprint: str = ""
    name: str = ""
    created: str = ""
    updated: str = ""
    machine_id: str = dataclasses.field(default="", metadata=_OMIT_EMPTY)


@dataclasses.dataclass
class Machine:
    id: str
    fingerprint: str = ""
    name: str = ""
    hostname: str = ""
    platform: str = ""
    ip: str = ""
    cores: int = 0
    created: str = ""
    updated: str = ""
    license_id: str = dataclasses.field(default="", metadata=_OMIT_EMPTY)
    components: list[Component] = dataclasses.field(default_factory=list, metadata=_OMIT_EMPTY)


@dataclasses.dataclass
class User:
    id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    role: str = ""
    status: str = ""
    created: str = ""
    updated: str = ""
    metadata: dict[str, t.Any] = dataclasses.field(default_factory=dict, metadata=_OMIT_EMPTY)

    @property
    def full_name(self) -> str:
        return " ".join(x for x in (self.first_name, self.last_name) if x)


@dataclasses.dataclass
class Token:
    id: str
    kind: str = ""
    token: str = ""
    expiry: str = ""
    created: str = ""
    bearer_id: str = dataclasses.field(default="", metadata=_OMIT_EMPTY)
    bearer_type: str = dataclasses.field(default="", metadata=_OMIT_EMPTY)


@dataclasses.dataclass
class Product:
    id: str
    name: str = ""


@dataclasses.dataclass
class ValidationResult:
    """Outcome of a validate action, read from the envelope's meta block."""

    valid: bool = False
    detail: str = ""
    code: str = ""
    metadata: dict[str, t.Any] = dataclasses.field(default_factory=dict, metadata=_OMIT_EMPTY)

    @classmethod
    def from_meta(cls, meta: t.Any) -> "ValidationResult":
        meta = as_map(meta)
        return cls(
            valid=as_bool(meta.get("valid")),
            detail=as_string(meta.get("detail")),
            code=as_string(meta.get("code")),
            metadata={k: v for k, v in meta.items() if k not in ("valid", "detail", "code")},
        )


def to_dict(record: t.Any) -> dict[str, t.Any]:
    """Plain dict for JSON output, dropping empty relationship ids and maps."""
    out: dict[str, t.Any] = {}
    for f in dataclasses.fields(record):
        value = getattr(record, f.name)
        if f.metadata.get("omit_empty") and not value:
            continue
        if isinstance(value, list):
            value = [to_dict(v) if dataclasses.is_dataclass(v) else v for v in value]
        out[f.name] = value
    return out


# ----------------------------
# Resource -> record mappings
# ----------------------------

def license_from_resource(res: Resource) -> License:
    return License(
        id=res.id,
        key=as_string(res.attr("key")),
        name=as_string(res.attr("name")),
        status=as_string(res.attr("status")),
        expiry=as_string(res.attr("expiry")),
        created=as_string(res.attr("created")),
        updated=as_string(res.attr("updated")),
        metadata=as_map(res.attr("metadata")),
        policy_id=res.related_id("policy"),
        product_id=res.related_id("product"),
        owner_id=res.related_id("owner"),
    )


def machine_from_resource(res: Resource) -> Machine:
    return Machine(
        id=res.id,
        fingerprint=as_string(res.attr("fingerprint")),
        name=as_string(res.attr("name")),
        hostname=as_string(res.attr("hostname")),
        platform=as_string(res.attr("platform")),
        ip=as_string(res.attr("ip")),
        cores=as_int(res.attr("cores")),
        created=as_string(res.attr("created")),
        updated=as_string(res.attr("updated")),
        license_id=res.related_id("license"),
    )


def component_from_resource(res: Resource) -> Component:
    return Component(
        id=res.id,
        fingerprint=as_string(res.attr("fingerprint")),
        name=as_string(res.attr("name")),
        created=as_string(res.attr("created")),
        updated=as_string(res.attr("updated")),
        machine_id=res.related_id("machine"),
    )


def user_from_resource(res: Resource) -> User:
    return User(
        id=res.id,
        email=as_string(res.attr("email")),
        first_name=as_string(res.attr("firstName")),
        last_name=as_string(res.attr("lastName")),
        role=as_string(res.attr("role")),
        status=as_string(res.attr("status")),
        created=as_string(res.attr("created")),
        updated=as_string(res.attr("updated")),
        metadata=as_map(res.attr("metadata")),
    )


def token_from_resource(res: Resource) -> Token:
    bearer = as_map(res.relationships.get("bearer"))
    return Token(
        id=res.id,
        kind=as_string(res.attr("kind")),
        token=as_string(res.attr("token")),
        expiry=as_string(res.attr("expiry")),
        created=as_string(res.attr("created")),
        bearer_id=res.related_id("bearer"),
        bearer_type=as_string(as_map(bearer.get("data")).get("type")),
    )


def product_from_resource(res: Resource) -> Product:
    return Product(id=res.id, name=as_string(res.attr("name")))


# ----------------------------
# Machine/component assembly
# ----------------------------

def components_by_machine(doc: Document) -> dict[str, list[Component]]:
    """Index side-loaded components by their own machine relationship."""
    lookup: dict[str, list[Component]] = {}
    for inc in doc.included_of("components"):
        comp = component_from_resource(inc)
        if not comp.machine_id:
            continue
        lookup.setdefault(comp.machine_id, []).append(comp)
    return lookup


def attach_components(machines: list[Machine], doc: Document) -> list[Machine]:
    lookup = components_by_machine(doc)
    for m in machines:
        m.components = list(lookup.get(m.id, []))
    return machines


def component_for_machine(component: Component, machine_id: str) -> Component:
    """Fill in the machine id known from the request context.

    A component whose own machine relationship names a different machine is
    reported rather than overwritten.
    """
    if component.machine_id and machine_id and component.machine_id != machine_id:
        raise DecodeError(
            f"component {component.id} belongs to machine {component.machine_id}, "
            f"not {machine_id}"
        )
    if machine_id:
        return dataclasses.replace(component, machine_id=machine_id)
    return component
