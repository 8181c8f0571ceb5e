from __future__ import annotations

import typing as t

from .errors import NotFound
from .jsonapi import Document, decode
from .models import (
    Component,
    License,
    Machine,
    Product,
    Token,
    User,
    ValidationResult,
    attach_components,
    component_for_machine,
    component_from_resource,
    license_from_resource,
    machine_from_resource,
    product_from_resource,
    token_from_resource,
    user_from_resource,
)
from .transport import Transport

PAGE_SIZE_MAX = 100


class KeygenClient:
    """
    Typed wrapper over the Keygen REST API.

    Each method issues exactly one request (except the page-walking finders)
    and maps the decoded envelope into domain records.
    """

    def __init__(self, transport: Transport):
        self.transport = transport

    @property
    def token(self) -> str:
        return self.transport.token

    def _get(self, path: str, params: t.Mapping[str, t.Any] | None = None) -> Document:
        return decode(self.transport.get(path, params))

    def _post(self, path: str, payload: t.Any = None) -> Document:
        return decode(self.transport.post(path, payload))

    # ---- Licenses ----

    def list_licenses(self, params: t.Mapping[str, str] | None = None) -> list[License]:
        doc = self._get("/licenses", params)
        return [license_from_resource(r) for r in doc.resources()]

    def get_license(self, license_id: str) -> License:
        return license_from_resource(self._get(f"/licenses/{license_id}").require_single("license"))

    def validate_license(self, license_id: str) -> tuple[ValidationResult, License | None]:
        """Validation outcome plus the license, when the response carries one."""
        doc = self._post(f"/licenses/{license_id}/actions/validate")
        res = doc.single()
        return ValidationResult.from_meta(doc.meta), (license_from_resource(res) if res else None)

    def _license_action(self, license_id: str, verb: str) -> License:
        doc = self._post(f"/licenses/{license_id}/actions/{verb}")
        return license_from_resource(doc.require_single("license"))

    def renew_license(self, license_id: str) -> License:
        return self._license_action(license_id, "renew")

    def suspend_license(self, license_id: str) -> License:
        return self._license_action(license_id, "suspend")

    def reinstate_license(self, license_id: str) -> License:
        return self._license_action(license_id, "reinstate")

    def update_license(self, license_id: str, attributes: dict[str, t.Any]) -> License:
        payload = {"data": {"type": "licenses", "id": license_id, "attributes": attributes}}
        doc = decode(self.transport.patch(f"/licenses/{license_id}", payload))
        return license_from_resource(doc.require_single("license"))

    def license_machines(self, license_id: str) -> list[Machine]:
        doc = self._get(f"/licenses/{license_id}/machines", {"include": "components"})
        machines = [machine_from_resource(r) for r in doc.resources()]
        return attach_components(machines, doc)

    # ---- Machines & components ----

    def list_machines(self, page: int = 1, limit: int = PAGE_SIZE_MAX) -> list[Machine]:
        doc = self._get("/machines", {"page[size]": limit, "page[number]": page})
        return [machine_from_resource(r) for r in doc.resources()]

    def get_machine(self, machine_id: str) -> Machine:
        doc = self._get(f"/machines/{machine_id}", {"include": "components"})
        machine = machine_from_resource(doc.require_single("machine"))
        return attach_components([machine], doc)[0]

    def list_components(self, machine_id: str, page: int = 1, limit: int = PAGE_SIZE_MAX) -> list[Component]:
        doc = self._get(
            f"/machines/{machine_id}/components",
            {"page[size]": limit, "page[number]": page},
        )
        return [component_for_machine(component_from_resource(r), machine_id) for r in doc.resources()]

    def get_component(self, component_id: str) -> Component:
        return component_from_resource(self._get(f"/components/{component_id}").require_single("component"))

    def delete_component(self, component_id: str) -> None:
        self.transport.delete(f"/components/{component_id}")

    def find_component_by_fingerprint(self, fingerprint: str) -> Component | None:
        """Walk every machine page until a component with this fingerprint turns up."""
        page = 1
        while True:
            machines = self.list_machines(page=page)
            if not machines:
                return None
            for machine in machines:
                for comp in self.list_components(machine.id):
                    if comp.fingerprint == fingerprint:
                        return comp
            if len(machines) < PAGE_SIZE_MAX:
                return None
            page += 1

    # ---- Users ----

    def list_users(self, params: t.Mapping[str, str] | None = None) -> list[User]:
        return [user_from_resource(r) for r in self._get("/users", params).resources()]

    def get_user(self, user_id: str) -> User:
        return user_from_resource(self._get(f"/users/{user_id}").require_single("user"))

    def find_user_by_email(self, email: str) -> User:
        users = self.list_users({"email": email})
        if not users:
            raise NotFound(f"user not found: {email}")
        return users[0]

    def user_licenses(self, user_id: str) -> list[License]:
        return [license_from_resource(r) for r in self._get(f"/users/{user_id}/licenses").resources()]

    def update_user(self, user_id: str, attributes: dict[str, t.Any]) -> User:
        payload = {"data": {"type": "users", "id": user_id, "attributes": attributes}}
        doc = decode(self.transport.patch(f"/users/{user_id}", payload))
        return user_from_resource(doc.require_single("user"))

    # ---- Products ----

    def list_products(self) -> list[Product]:
        return [product_from_resource(r) for r in self._get("/products").resources()]

    # ---- Tokens ----

    def create_token(self, email: str, password: str) -> Token:
        """Exchange user credentials for a bearer token (HTTP basic auth)."""
        raw = self.transport.request("POST", "/tokens", basic_auth=(email, password))
        return token_from_resource(decode(raw).require_single("token"))

    def whoami(self) -> Document:
        return self._get("/me")
