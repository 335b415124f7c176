"""Catalog of ERP resources and their mutation descriptors.

Each resource declares its path and form schemas once. The descriptors it
builds invalidate the list key, which is a prefix of every detail key, so
one write refreshes the list and any open detail of that resource.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from dokuma import schemas
from dokuma.codes import generate_fabric_code
from dokuma.http import ResourceClient, json_body
from dokuma.types import Message, MutationDescriptor, ResourceKey
from dokuma.views import EntityActions, ListView, LookupSpec

Payload = dict[str, Any]
PayloadHook = Callable[[Payload], Payload]


@dataclass(frozen=True)
class Resource:
    """One REST collection at /api/<module>/<resource>."""

    name: str  # singular, for messages
    path: str
    schema: type[BaseModel]
    edit_schema: type[BaseModel] | None = None
    search_fields: tuple[str, ...] = ("name",)
    secret_fields: tuple[str, ...] = ()
    category_field: str | None = None
    defaults: Mapping[str, Any] | None = None
    id_field: str = "id"
    # Applied to the create payload before it is sent
    prepare_create: PayloadHook | None = None
    extra_invalidates: tuple[ResourceKey, ...] = ()

    def list_key(self) -> ResourceKey:
        return (self.path,)

    def detail_key(self, entity_id: Any) -> ResourceKey:
        return (self.path, entity_id)

    def lookup(self, label_field: str = "name") -> LookupSpec:
        return LookupSpec(key=self.list_key(), id_field=self.id_field, label_field=label_field)

    @property
    def _invalidates(self) -> tuple[ResourceKey, ...]:
        return (self.list_key(), *self.extra_invalidates)

    def _failure(self, verb: str) -> Message:
        return Message("Error", f"Could not {verb} {self.name}.")

    def create(self, client: ResourceClient) -> MutationDescriptor[Payload, Any]:
        """POST a new entity."""

        async def execute(payload: Payload) -> Any:
            if self.prepare_create is not None:
                payload = self.prepare_create(dict(payload))
            return json_body(await client.request("POST", self.path, payload))

        return MutationDescriptor(
            execute=execute,
            invalidates=self._invalidates,
            success=Message(f"{self.name.capitalize()} created", f"New {self.name} saved."),
            failure=self._failure("create"),
        )

    def _write(self, client: ResourceClient, method: str) -> Callable[[Payload], Any]:
        async def execute(payload: Payload) -> Any:
            data = dict(payload)
            entity_id = data.pop(self.id_field)
            return json_body(await client.request(method, f"{self.path}/{entity_id}", data))

        return execute

    def update(self, client: ResourceClient) -> MutationDescriptor[Payload, Any]:
        """PATCH the fields of an entity. The payload carries its id."""
        return MutationDescriptor(
            execute=self._write(client, "PATCH"),
            invalidates=self._invalidates,
            success=Message(f"{self.name.capitalize()} updated", f"The {self.name} was saved."),
            failure=self._failure("update"),
        )

    def replace(self, client: ResourceClient) -> MutationDescriptor[Payload, Any]:
        """PUT a full entity. The payload carries its id."""
        return MutationDescriptor(
            execute=self._write(client, "PUT"),
            invalidates=self._invalidates,
            success=Message(f"{self.name.capitalize()} updated", f"The {self.name} was saved."),
            failure=self._failure("update"),
        )

    def delete(self, client: ResourceClient) -> MutationDescriptor[Any, Any]:
        """DELETE an entity by id."""

        async def execute(entity_id: Any) -> Any:
            return json_body(await client.request("DELETE", f"{self.path}/{entity_id}"))

        return MutationDescriptor(
            execute=execute,
            invalidates=self._invalidates,
            success=Message(f"{self.name.capitalize()} deleted", f"The {self.name} was removed."),
            failure=self._failure("delete"),
        )

    def actions(self, client: ResourceClient) -> EntityActions:
        """Everything a ListView needs to edit this resource."""
        return EntityActions(
            schema=self.schema,
            edit_schema=self.edit_schema,
            create=self.create(client),
            update=self.update(client),
            delete=self.delete(client),
            defaults=self.defaults,
            secret_fields=self.secret_fields,
            id_field=self.id_field,
            delete_prompt=f"Delete this {self.name}? This cannot be undone.",
        )

    def view(
        self,
        client: ResourceClient,
        *,
        lookups: Mapping[str, LookupSpec] | None = None,
        **kwargs: Any,
    ) -> ListView:
        """A ListView over this resource's list with its actions wired in."""
        return ListView(
            self.list_key(),
            search_fields=self.search_fields,
            category_field=self.category_field,
            lookups=lookups,
            actions=self.actions(client),
            **kwargs,
        )


def _with_fabric_code(payload: Payload) -> Payload:
    if not payload.get("code"):
        payload["code"] = generate_fabric_code(str(payload.get("name", "")))
    return payload


FABRIC_TYPES = Resource(
    name="fabric type",
    path="/api/product-development/fabric-types",
    schema=schemas.FabricTypeForm,
    search_fields=("name", "code", "description"),
    prepare_create=_with_fabric_code,
)

MASTER_FABRICS = Resource(
    name="fabric",
    path="/api/master/fabrics",
    schema=schemas.MasterItemForm,
    search_fields=("name", "code", "description"),
)

MASTER_YARNS = Resource(
    name="yarn type",
    path="/api/master/yarns",
    schema=schemas.MasterItemForm,
    search_fields=("name", "code", "description"),
)

RAW_MATERIALS = Resource(
    name="raw material",
    path="/api/master/raw-materials",
    schema=schemas.RawMaterialForm,
    search_fields=("name", "code", "description"),
    category_field="unit",
)

DEPARTMENTS = Resource(
    name="department",
    path="/api/departments",
    schema=schemas.DepartmentForm,
    search_fields=("name", "code"),
)

ROLES = Resource(
    name="role",
    path="/api/admin/roles",
    schema=schemas.RoleForm,
)

USERS = Resource(
    name="user",
    path="/api/admin/users",
    schema=schemas.UserCreate,
    edit_schema=schemas.UserUpdate,
    search_fields=("username", "full_name", "email"),
    secret_fields=("password",),
    category_field="role",
)

DYE_CHEMICALS = Resource(
    name="chemical",
    path="/api/dye-recipes/chemicals",
    schema=schemas.ChemicalForm,
    search_fields=("code", "name", "supplier"),
    category_field="type",
)

TWISTING_ORDERS = Resource(
    name="twisting order",
    path="/api/yarn-spinning/twisting-orders",
    schema=schemas.TwistingOrderForm,
    search_fields=("order_number", "notes"),
    category_field="status",
)

YARN_ISSUE_CARDS = Resource(
    name="issue card",
    path="/api/yarn-warehouse/issue-cards",
    schema=schemas.IssueCardForm,
    search_fields=("card_number", "lot_number", "issued_to"),
    # Issuing yarn lowers warehouse stock
    extra_invalidates=(("/api/yarn-warehouse/inventory",),),
)

CATALOG: dict[str, Resource] = {
    r.path: r
    for r in (
        FABRIC_TYPES,
        MASTER_FABRICS,
        MASTER_YARNS,
        RAW_MATERIALS,
        DEPARTMENTS,
        ROLES,
        USERS,
        DYE_CHEMICALS,
        TWISTING_ORDERS,
        YARN_ISSUE_CARDS,
    )
}
