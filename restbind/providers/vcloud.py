"""vCloud (API v0.8) virtual datacenter binding.

Resources are read with ``GET /<kind>/<id>`` under the versioned API root
(e.g. ``https://vcloud.example.com/api/v0.8``) and answered in XML with a
vCloud media type per resource kind. Resources point at each other through
``href`` attributes; the last path segment of an href is the id the getters
take.

Logging in is outside this binding: pass the session token returned by
``POST /login`` as an endpoint default header (``x-vcloud-authorization``).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field

from restbind.client import RestClient
from restbind.errors import ParseError
from restbind.models import (
    DescriptorTable,
    NotFoundStrategy,
    OperationDescriptor,
    ParameterBinding,
)
from restbind.parsers import ParserRegistry, Step, compose, field, typed, xml_parser

ORG_XML = "application/vnd.vmware.vcloud.org+xml"
CATALOG_XML = "application/vnd.vmware.vcloud.catalog+xml"
CATALOG_ITEM_XML = "application/vnd.vmware.vcloud.catalogItem+xml"
VDC_XML = "application/vnd.vmware.vcloud.vdc+xml"
TASKS_LIST_XML = "application/vnd.vmware.vcloud.tasksList+xml"
TASK_XML = "application/vnd.vmware.vcloud.task+xml"
VAPP_XML = "application/vnd.vmware.vcloud.vApp+xml"
NETWORK_XML = "application/vnd.vmware.vcloud.network+xml"


def resource_id(href: str) -> str:
    """Id of a resource from its href: the last segment of the URL path."""
    path = urlsplit(href).path.rstrip("/")
    resource = path.rsplit("/", 1)[-1]
    if not resource:
        raise ValueError(f"href has no resource id: {href!r}")
    return resource


# =============================================================================
# Domain
# =============================================================================


class NamedResource(BaseModel):
    """A reference to another resource (``Link``, ``CatalogItem``, ``Network``...)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    href: str = Field(alias="@href")
    name: str | None = Field(default=None, alias="@name")
    type: str | None = Field(default=None, alias="@type")
    rel: str | None = Field(default=None, alias="@rel")

    @property
    def id(self) -> str:
        return resource_id(self.href)


class _Resource(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    href: str = Field(alias="@href")
    name: str | None = Field(default=None, alias="@name")
    links: list[NamedResource] = Field(default_factory=list, alias="Link")

    @property
    def id(self) -> str:
        return resource_id(self.href)

    def links_of_type(self, media_type: str) -> list[NamedResource]:
        return [link for link in self.links if link.type == media_type]


class Organization(_Resource):
    """An organization and the catalog, VDCs and task lists it links to."""

    @property
    def catalog(self) -> NamedResource | None:
        catalogs = self.links_of_type(CATALOG_XML)
        return catalogs[0] if catalogs else None

    @property
    def vdcs(self) -> list[NamedResource]:
        return self.links_of_type(VDC_XML)

    @property
    def tasks_lists(self) -> list[NamedResource]:
        return self.links_of_type(TASKS_LIST_XML)


class Catalog(_Resource):
    description: str | None = Field(default=None, alias="Description")
    items: list[NamedResource] = Field(default_factory=list, alias="CatalogItems")


class VDC(_Resource):
    description: str | None = Field(default=None, alias="Description")
    resource_entities: list[NamedResource] = Field(
        default_factory=list, alias="ResourceEntities"
    )
    available_networks: list[NamedResource] = Field(
        default_factory=list, alias="AvailableNetworks"
    )

    @property
    def vapps(self) -> list[NamedResource]:
        return [entity for entity in self.resource_entities if entity.type == VAPP_XML]


class TaskStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


class TaskError(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    message: str | None = Field(default=None, alias="@message")
    major_error_code: int | None = Field(default=None, alias="@majorErrorCode")
    minor_error_code: str | None = Field(default=None, alias="@minorErrorCode")


class Task(BaseModel):
    """An asynchronous operation; ``owner`` is the resource it acts on."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    href: str = Field(alias="@href")
    status: TaskStatus = Field(alias="@status")
    start_time: datetime | None = Field(default=None, alias="@startTime")
    end_time: datetime | None = Field(default=None, alias="@endTime")
    owner: NamedResource | None = Field(default=None, alias="Owner")
    result: NamedResource | None = Field(default=None, alias="Result")
    error: TaskError | None = Field(default=None, alias="Error")

    @property
    def id(self) -> str:
        return resource_id(self.href)


class TasksList(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    href: str = Field(alias="@href")
    tasks: list[Task] = Field(default_factory=list, alias="Task")

    @property
    def id(self) -> str:
        return resource_id(self.href)


class VApp(_Resource):
    status: int | None = Field(default=None, alias="@status")
    size: int | None = Field(default=None, alias="@size")
    description: str | None = Field(default=None, alias="Description")


# =============================================================================
# Descriptors and parsers
# =============================================================================


def _get(operation_id: str, kind: str, media_type: str, parser: str) -> OperationDescriptor:
    return OperationDescriptor(
        operation_id=operation_id,
        method="GET",
        path_template=f"/{kind}/{{id}}",
        fixed_headers=(("Accept", media_type),),
        bindings=(ParameterBinding.path("id"),),
        parser=parser,
        not_found=NotFoundStrategy.RETURN_NULL,
    )


VCLOUD_OPERATIONS = DescriptorTable([
    _get("getOrganization", "org", ORG_XML, "vcloud.org"),
    _get("getCatalog", "catalog", CATALOG_XML, "vcloud.catalog"),
    _get("getVDC", "vdc", VDC_XML, "vcloud.vdc"),
    _get("getTasksList", "tasksList", TASKS_LIST_XML, "vcloud.tasks_list"),
    _get("getTask", "task", TASK_XML, "vcloud.task"),
    _get("getVApp", "vApp", VAPP_XML, "vcloud.vapp"),
])


def _flatten(container: str, item: str) -> Step:
    """Step replacing ``{container: {item: [...]}}`` with ``{container: [...]}``."""

    def step(resource: Any) -> Any:
        if not isinstance(resource, dict):
            raise ParseError(f"Expected a resource element, got {type(resource).__name__}")
        if container not in resource:
            return resource
        wrapper = resource[container]
        # <CatalogItems/> parses to None
        if wrapper is None:
            return {**resource, container: []}
        if not isinstance(wrapper, dict):
            raise ParseError(f"{container} has text content instead of {item} elements")
        return {**resource, container: wrapper.get(item, [])}

    return step


def _resource(model: Any, root: str, force_list: set[str], *steps: Step) -> Any:
    return typed(model, compose(xml_parser(force_list | {"Link"}), field(root), *steps))


def vcloud_parsers() -> ParserRegistry:
    """Registry holding the built-in parsers plus the vCloud resource ones."""
    return ParserRegistry({
        "vcloud.org": _resource(Organization, "Org", set()),
        "vcloud.catalog": _resource(
            Catalog, "Catalog", {"CatalogItem"}, _flatten("CatalogItems", "CatalogItem")
        ),
        "vcloud.vdc": _resource(
            VDC,
            "Vdc",
            {"ResourceEntity", "Network"},
            _flatten("ResourceEntities", "ResourceEntity"),
            _flatten("AvailableNetworks", "Network"),
        ),
        "vcloud.tasks_list": typed(
            TasksList, compose(xml_parser({"Task"}), field("TasksList"))
        ),
        "vcloud.task": typed(Task, compose(xml_parser(), field("Task"))),
        "vcloud.vapp": _resource(VApp, "VApp", set()),
    })


# =============================================================================
# Typed client
# =============================================================================


class VCloudClient:
    """Typed facade over the vCloud resource getters.

    Every getter returns None when the resource does not exist.

    Usage:
        endpoint = EndpointConfig(
            base_url="https://vcloud.example.com/api/v0.8",
            headers={"x-vcloud-authorization": token},
        )
        with VCloudClient.connect(endpoint) as vcloud:
            org = vcloud.get_organization("188849")
            vdc = vcloud.default_vdc(org)
    """

    def __init__(self, client: RestClient) -> None:
        self._client = client

    @classmethod
    def connect(cls, endpoint: Any, **kwargs: Any) -> VCloudClient:
        return cls(RestClient(endpoint, VCLOUD_OPERATIONS, parsers=vcloud_parsers(), **kwargs))

    def __enter__(self) -> VCloudClient:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    @property
    def rest(self) -> RestClient:
        return self._client

    def get_organization(self, org_id: str) -> Organization | None:
        return self._client.call("getOrganization", org_id)

    def get_catalog(self, catalog_id: str) -> Catalog | None:
        return self._client.call("getCatalog", catalog_id)

    def get_vdc(self, vdc_id: str) -> VDC | None:
        return self._client.call("getVDC", vdc_id)

    def get_tasks_list(self, tasks_list_id: str) -> TasksList | None:
        return self._client.call("getTasksList", tasks_list_id)

    def get_task(self, task_id: str) -> Task | None:
        return self._client.call("getTask", task_id)

    def get_vapp(self, vapp_id: str) -> VApp | None:
        return self._client.call("getVApp", vapp_id)

    # The organization's first link of each kind is its default

    def default_catalog(self, org: Organization) -> Catalog | None:
        return self.get_catalog(org.catalog.id) if org.catalog else None

    def default_vdc(self, org: Organization) -> VDC | None:
        return self.get_vdc(org.vdcs[0].id) if org.vdcs else None

    def default_tasks_list(self, org: Organization) -> TasksList | None:
        return self.get_tasks_list(org.tasks_lists[0].id) if org.tasks_lists else None
