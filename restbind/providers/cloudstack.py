"""CloudStack snapshot API binding.

Every CloudStack call is ``GET /client/api?response=json&command=<name>&...``;
the command and its arguments travel in the query string and each JSON
response is wrapped in a single ``<command>response`` key.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field

from restbind.client import RestClient
from restbind.models import (
    DescriptorTable,
    NotFoundStrategy,
    OperationDescriptor,
    ParameterBinding,
)
from restbind.options import RequestOptions, option
from restbind.parsers import (
    ParserRegistry,
    as_list,
    compose,
    field,
    only_element,
    typed,
    unwrap_only_json_value,
    unwrap_only_value,
)

API_PATH = "/client/api"
ACCEPT_JSON = (("Accept", "application/json"),)


# =============================================================================
# Domain
# =============================================================================


class Interval(str, Enum):
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class SnapshotType(str, Enum):
    MANUAL = "MANUAL"
    RECURRING = "RECURRING"


class Snapshot(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: int
    name: str | None = None
    account: str | None = None
    domain: str | None = None
    domain_id: int | None = Field(default=None, alias="domainid")
    volume_id: int | None = Field(default=None, alias="volumeid")
    volume_name: str | None = Field(default=None, alias="volumename")
    volume_type: str | None = Field(default=None, alias="volumetype")
    snapshot_type: SnapshotType | None = Field(default=None, alias="snapshottype")
    interval: Interval | None = Field(default=None, alias="intervaltype")
    state: str | None = None
    created: str | None = None
    job_id: int | None = Field(default=None, alias="jobid")
    job_status: int | None = Field(default=None, alias="jobstatus")


class SnapshotPolicy(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: int
    volume_id: int | None = Field(default=None, alias="volumeid")
    interval: Interval | None = Field(default=None, alias="intervaltype")
    schedule: str | None = None
    timezone: str | None = None
    max_snaps: int | None = Field(default=None, alias="maxsnaps")


class AsyncCreateResponse(BaseModel):
    """Id of the resource being created and the job creating it."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: int
    job_id: int = Field(alias="jobid")


class SnapshotPolicySchedule:
    """Interval plus CloudStack's MM[:HH[:DD]] schedule string.

    Contributes ``intervaltype`` and ``schedule`` query pairs, so it is passed
    where an options value is expected.
    """

    __slots__ = ("interval", "time")

    def __init__(self, interval: Interval, time: str) -> None:
        self.interval = interval
        self.time = time

    @classmethod
    def hourly(cls, minute: int) -> SnapshotPolicySchedule:
        return cls(Interval.HOURLY, f"{minute:02d}")

    @classmethod
    def daily(cls, hour: int, minute: int) -> SnapshotPolicySchedule:
        return cls(Interval.DAILY, f"{minute:02d}:{hour:02d}")

    @classmethod
    def weekly(cls, day: int, hour: int, minute: int) -> SnapshotPolicySchedule:
        return cls(Interval.WEEKLY, f"{minute:02d}:{hour:02d}:{day:02d}")

    @classmethod
    def monthly(cls, day: int, hour: int, minute: int) -> SnapshotPolicySchedule:
        return cls(Interval.MONTHLY, f"{minute:02d}:{hour:02d}:{day:02d}")

    def bindings(self) -> tuple[tuple[str, str, Any], ...]:
        return (("query", "intervaltype", self.interval), ("query", "schedule", self.time))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SnapshotPolicySchedule):
            return NotImplemented
        return (self.interval, self.time) == (other.interval, other.time)

    def __hash__(self) -> int:
        return hash((self.interval, self.time))

    def __repr__(self) -> str:
        return f"SnapshotPolicySchedule({self.interval.value}, {self.time!r})"


# =============================================================================
# Options
# =============================================================================


class AccountInDomainOptions(RequestOptions):
    __slots__ = ()

    @option
    def account_in_domain(self, account: str, domain_id: int) -> Self:
        return self.query("account", account).query("domainid", domain_id)

    @option
    def domain_id(self, domain_id: int) -> Self:
        return self.query("domainid", domain_id)


class CreateSnapshotOptions(AccountInDomainOptions):
    __slots__ = ()

    @option
    def policy_id(self, policy_id: int) -> Self:
        return self.query("policyid", policy_id)


class ListSnapshotsOptions(AccountInDomainOptions):
    __slots__ = ()

    @option
    def id(self, snapshot_id: int) -> Self:
        return self.query("id", snapshot_id)

    @option
    def interval(self, interval: Interval) -> Self:
        return self.query("intervaltype", interval)

    @option
    def is_recursive(self, recursive: bool) -> Self:
        return self.query("isrecursive", recursive)

    @option
    def keyword(self, keyword: str) -> Self:
        return self.query("keyword", keyword)

    @option
    def name(self, name: str) -> Self:
        return self.query("name", name)

    @option
    def snapshot_type(self, snapshot_type: SnapshotType) -> Self:
        return self.query("snapshottype", snapshot_type)

    @option
    def volume_id(self, volume_id: int) -> Self:
        return self.query("volumeid", volume_id)


class ListSnapshotPoliciesOptions(AccountInDomainOptions):
    __slots__ = ()

    @option
    def keyword(self, keyword: str) -> Self:
        return self.query("keyword", keyword)


# =============================================================================
# Descriptors and parsers
# =============================================================================


def _command(
    operation_id: str,
    command: str,
    *bindings: ParameterBinding,
    parser: str,
    not_found: NotFoundStrategy = NotFoundStrategy.MAP_TO_EXCEPTION,
) -> OperationDescriptor:
    return OperationDescriptor(
        operation_id=operation_id,
        method="GET",
        path_template=API_PATH,
        fixed_query=(("response", "json"), ("command", command)),
        fixed_headers=ACCEPT_JSON,
        bindings=bindings,
        parser=parser,
        not_found=not_found,
    )


Q = ParameterBinding.query
OPTIONS = ParameterBinding.options()

SNAPSHOT_OPERATIONS = DescriptorTable([
    _command(
        "createSnapshot", "createSnapshot", Q("volumeid"), OPTIONS,
        parser="cloudstack.async_create",
    ),
    _command(
        "listSnapshots", "listSnapshots", OPTIONS,
        parser="cloudstack.snapshots",
        not_found=NotFoundStrategy.RETURN_EMPTY_COLLECTION,
    ),
    _command(
        "getSnapshot", "listSnapshots", Q("id"),
        parser="cloudstack.snapshot",
        not_found=NotFoundStrategy.RETURN_NULL,
    ),
    _command(
        "deleteSnapshot", "deleteSnapshot", Q("id"),
        parser="void",
        not_found=NotFoundStrategy.RETURN_VOID,
    ),
    # Query order follows the API's documented parameter order; the schedule
    # contributes intervaltype and schedule last.
    _command(
        "createSnapshotPolicy", "createSnapshotPolicy",
        Q("timezone"), Q("maxsnaps"), Q("volumeid"), OPTIONS,
        parser="cloudstack.snapshot_policy",
    ),
    _command(
        "deleteSnapshotPolicy", "deleteSnapshotPolicies", Q("id"),
        parser="void",
        not_found=NotFoundStrategy.RETURN_VOID,
    ),
    _command(
        "deleteSnapshotPolicies", "deleteSnapshotPolicies", Q("ids"),
        parser="void",
        not_found=NotFoundStrategy.RETURN_VOID,
    ),
    _command(
        "listSnapshotPolicies", "listSnapshotPolicies", Q("volumeid"), OPTIONS,
        parser="cloudstack.snapshot_policies",
        not_found=NotFoundStrategy.RETURN_EMPTY_COLLECTION,
    ),
])


def _list_of(key: str, model: Any) -> Any:
    # {"listxresponse": {"count": n, key: [...]}}; an empty listing omits key
    return typed(list[model], compose(unwrap_only_json_value, field(key, []), as_list))


def snapshot_parsers() -> ParserRegistry:
    """Registry holding the built-in parsers plus the CloudStack snapshot ones."""
    return ParserRegistry({
        "cloudstack.async_create": typed(AsyncCreateResponse, unwrap_only_json_value),
        "cloudstack.snapshots": _list_of("snapshot", Snapshot),
        "cloudstack.snapshot": typed(
            Snapshot | None,
            compose(unwrap_only_json_value, field("snapshot", []), as_list, only_element),
        ),
        "cloudstack.snapshot_policy": typed(
            SnapshotPolicy, compose(unwrap_only_json_value, unwrap_only_value)
        ),
        "cloudstack.snapshot_policies": _list_of("snapshotpolicy", SnapshotPolicy),
    })


# =============================================================================
# Typed client
# =============================================================================


class SnapshotClient:
    """Typed facade over the snapshot operations.

    Usage:
        with SnapshotClient.connect("http://localhost:8080") as snapshots:
            job = snapshots.create_snapshot(5, CreateSnapshotOptions.policy_id(9))
    """

    def __init__(self, client: RestClient) -> None:
        self._client = client

    @classmethod
    def connect(cls, endpoint: Any, **kwargs: Any) -> SnapshotClient:
        return cls(RestClient(endpoint, SNAPSHOT_OPERATIONS, parsers=snapshot_parsers(), **kwargs))

    def __enter__(self) -> SnapshotClient:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    @property
    def rest(self) -> RestClient:
        return self._client

    def create_snapshot(
        self, volume_id: int, *options: CreateSnapshotOptions
    ) -> AsyncCreateResponse:
        return self._client.call("createSnapshot", volume_id, *options)

    def list_snapshots(self, *options: ListSnapshotsOptions) -> list[Snapshot]:
        return list(self._client.call("listSnapshots", *options))

    def get_snapshot(self, snapshot_id: int) -> Snapshot | None:
        return self._client.call("getSnapshot", snapshot_id)

    def delete_snapshot(self, snapshot_id: int) -> None:
        self._client.call("deleteSnapshot", snapshot_id)

    def create_snapshot_policy(
        self,
        schedule: SnapshotPolicySchedule,
        max_snaps: int,
        timezone: str,
        volume_id: int,
    ) -> SnapshotPolicy:
        return self._client.call("createSnapshotPolicy", timezone, max_snaps, volume_id, schedule)

    def delete_snapshot_policy(self, policy_id: int) -> None:
        self._client.call("deleteSnapshotPolicy", policy_id)

    def delete_snapshot_policies(self, policy_ids: list[int] | tuple[int, ...]) -> None:
        self._client.call("deleteSnapshotPolicies", policy_ids)

    def list_snapshot_policies(
        self, volume_id: int, *options: ListSnapshotPoliciesOptions
    ) -> list[SnapshotPolicy]:
        return list(self._client.call("listSnapshotPolicies", volume_id, *options))
