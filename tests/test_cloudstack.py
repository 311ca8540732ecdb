"""Tests for the CloudStack snapshot binding.

Tests cover:
- Request lines for every snapshot operation, with and without options
- Parser and not-found strategy chosen per operation
- Schedule helper formatting
- Typed parsing of recorded CloudStack responses
- SnapshotClient end to end through httpx.MockTransport
"""

import json

import httpx
import pytest

from restbind.builder import RequestBuilder
from restbind.errors import IllegalArgumentError, ResourceNotFoundError
from restbind.executor import Executor
from restbind.models import EndpointConfig, NotFoundStrategy
from restbind.providers.cloudstack import (
    SNAPSHOT_OPERATIONS,
    AsyncCreateResponse,
    CreateSnapshotOptions,
    Interval,
    ListSnapshotPoliciesOptions,
    ListSnapshotsOptions,
    Snapshot,
    SnapshotClient,
    SnapshotPolicy,
    SnapshotPolicySchedule,
    SnapshotType,
    snapshot_parsers,
)
from tests.conftest import CLOUDSTACK_URL, RecordingTransport

API = f"{CLOUDSTACK_URL}/client/api?response=json"


def request_line(builder: RequestBuilder, operation_id: str, *args: object) -> str:
    return builder.build(SNAPSHOT_OPERATIONS[operation_id], args).request_line


class TestSnapshotRequests:
    """Request lines match what the CloudStack API expects."""

    def test_create_snapshot(self, cloudstack_builder: RequestBuilder) -> None:
        assert request_line(cloudstack_builder, "createSnapshot", 5) == (
            f"GET {API}&command=createSnapshot&volumeid=5 HTTP/1.1"
        )

    def test_create_snapshot_options(self, cloudstack_builder: RequestBuilder) -> None:
        options = CreateSnapshotOptions.account_in_domain("acc", 7).policy_id(9)
        assert request_line(cloudstack_builder, "createSnapshot", 5, options) == (
            f"GET {API}&command=createSnapshot&volumeid=5&account=acc&domainid=7&policyid=9 HTTP/1.1"
        )

    def test_list_snapshots(self, cloudstack_builder: RequestBuilder) -> None:
        assert request_line(cloudstack_builder, "listSnapshots") == (
            f"GET {API}&command=listSnapshots HTTP/1.1"
        )

    def test_get_snapshot(self, cloudstack_builder: RequestBuilder) -> None:
        assert request_line(cloudstack_builder, "getSnapshot", 5) == (
            f"GET {API}&command=listSnapshots&id=5 HTTP/1.1"
        )

    def test_list_snapshots_options(self, cloudstack_builder: RequestBuilder) -> None:
        options = (
            ListSnapshotsOptions.account_in_domain("acc", 7)
            .id(5)
            .interval(Interval.MONTHLY)
            .is_recursive(True)
            .keyword("fred")
            .name("fred's snapshot")
            .snapshot_type(SnapshotType.RECURRING)
            .volume_id(11)
        )
        assert request_line(cloudstack_builder, "listSnapshots", options) == (
            f"GET {API}&command=listSnapshots&account=acc&domainid=7&id=5&intervaltype=MONTHLY"
            "&isrecursive=true&keyword=fred&name=fred%27s%20snapshot&snapshottype=RECURRING"
            "&volumeid=11 HTTP/1.1"
        )

    def test_delete_snapshot(self, cloudstack_builder: RequestBuilder) -> None:
        assert request_line(cloudstack_builder, "deleteSnapshot", 14) == (
            f"GET {API}&command=deleteSnapshot&id=14 HTTP/1.1"
        )

    def test_create_snapshot_policy(self, cloudstack_builder: RequestBuilder) -> None:
        schedule = SnapshotPolicySchedule.monthly(5, 6, 7)
        assert request_line(cloudstack_builder, "createSnapshotPolicy", "UTC", 10, 12, schedule) == (
            f"GET {API}&command=createSnapshotPolicy&timezone=UTC&maxsnaps=10&volumeid=12"
            "&intervaltype=MONTHLY&schedule=07%3A06%3A05 HTTP/1.1"
        )

    def test_delete_snapshot_policy(self, cloudstack_builder: RequestBuilder) -> None:
        assert request_line(cloudstack_builder, "deleteSnapshotPolicy", 7) == (
            f"GET {API}&command=deleteSnapshotPolicies&id=7 HTTP/1.1"
        )

    def test_delete_snapshot_policies(self, cloudstack_builder: RequestBuilder) -> None:
        assert request_line(cloudstack_builder, "deleteSnapshotPolicies", [3, 5, 7]) == (
            f"GET {API}&command=deleteSnapshotPolicies&ids=3%2C5%2C7 HTTP/1.1"
        )

    def test_list_snapshot_policies(self, cloudstack_builder: RequestBuilder) -> None:
        assert request_line(cloudstack_builder, "listSnapshotPolicies", 10) == (
            f"GET {API}&command=listSnapshotPolicies&volumeid=10 HTTP/1.1"
        )

    def test_list_snapshot_policies_options(self, cloudstack_builder: RequestBuilder) -> None:
        options = ListSnapshotPoliciesOptions.account_in_domain("fred", 4).keyword("bob")
        assert request_line(cloudstack_builder, "listSnapshotPolicies", 10, options) == (
            f"GET {API}&command=listSnapshotPolicies&volumeid=10&account=fred&domainid=4"
            "&keyword=bob HTTP/1.1"
        )

    def test_no_payload_on_any_operation(self, cloudstack_builder: RequestBuilder) -> None:
        request = cloudstack_builder.build(SNAPSHOT_OPERATIONS["createSnapshot"], [5])
        assert request.payload is None
        assert request.content_type is None
        assert request.header("Accept") == "application/json"


class TestSnapshotStrategies:
    """Each operation declares the parser and not-found strategy it needs."""

    @pytest.mark.parametrize(
        "operation_id,strategy",
        [
            ("createSnapshot", NotFoundStrategy.MAP_TO_EXCEPTION),
            ("listSnapshots", NotFoundStrategy.RETURN_EMPTY_COLLECTION),
            ("getSnapshot", NotFoundStrategy.RETURN_NULL),
            ("deleteSnapshot", NotFoundStrategy.RETURN_VOID),
            ("createSnapshotPolicy", NotFoundStrategy.MAP_TO_EXCEPTION),
            ("deleteSnapshotPolicy", NotFoundStrategy.RETURN_VOID),
            ("deleteSnapshotPolicies", NotFoundStrategy.RETURN_VOID),
            ("listSnapshotPolicies", NotFoundStrategy.RETURN_EMPTY_COLLECTION),
        ],
    )
    def test_not_found_strategy(self, operation_id: str, strategy: NotFoundStrategy) -> None:
        assert SNAPSHOT_OPERATIONS[operation_id].not_found == strategy

    def test_delete_operations_release_body(self) -> None:
        for operation_id in ("deleteSnapshot", "deleteSnapshotPolicy", "deleteSnapshotPolicies"):
            assert SNAPSHOT_OPERATIONS[operation_id].parser == "void"

    def test_every_parser_is_registered(self) -> None:
        registry = snapshot_parsers()
        for descriptor in SNAPSHOT_OPERATIONS.values():
            assert descriptor.parser in registry


class TestSnapshotPolicySchedule:
    """Schedule strings are MM[:HH[:DD]]."""

    def test_hourly(self) -> None:
        schedule = SnapshotPolicySchedule.hourly(5)
        assert (schedule.interval, schedule.time) == (Interval.HOURLY, "05")

    def test_daily(self) -> None:
        schedule = SnapshotPolicySchedule.daily(6, 5)
        assert (schedule.interval, schedule.time) == (Interval.DAILY, "05:06")

    def test_weekly(self) -> None:
        schedule = SnapshotPolicySchedule.weekly(2, 6, 5)
        assert (schedule.interval, schedule.time) == (Interval.WEEKLY, "05:06:02")

    def test_monthly(self) -> None:
        schedule = SnapshotPolicySchedule.monthly(5, 6, 7)
        assert (schedule.interval, schedule.time) == (Interval.MONTHLY, "07:06:05")

    def test_bindings(self) -> None:
        assert SnapshotPolicySchedule.hourly(30).bindings() == (
            ("query", "intervaltype", Interval.HOURLY),
            ("query", "schedule", "30"),
        )

    def test_equality(self) -> None:
        assert SnapshotPolicySchedule.daily(1, 2) == SnapshotPolicySchedule.daily(1, 2)
        assert SnapshotPolicySchedule.daily(1, 2) != SnapshotPolicySchedule.daily(2, 1)


class TestSnapshotParsers:
    """Recorded CloudStack bodies parse into typed models."""

    @pytest.fixture
    def parsers(self):
        return snapshot_parsers()

    def test_async_create(self, parsers) -> None:
        body = b'{"createsnapshotresponse": {"id": 12, "jobid": 34}}'
        result = parsers.get("cloudstack.async_create")(body)
        assert result == AsyncCreateResponse(id=12, job_id=34)

    def test_snapshot_list(self, parsers) -> None:
        body = json.dumps({
            "listsnapshotsresponse": {
                "count": 2,
                "snapshot": [
                    {"id": 1, "name": "nightly", "volumeid": 11, "intervaltype": "DAILY",
                     "snapshottype": "RECURRING", "state": "BackedUp"},
                    {"id": 2, "name": "manual", "volumeid": 11, "snapshottype": "MANUAL"},
                ],
            }
        }).encode()
        result = parsers.get("cloudstack.snapshots")(body)
        assert [s.id for s in result] == [1, 2]
        assert result[0].interval == Interval.DAILY
        assert result[1].snapshot_type == SnapshotType.MANUAL

    def test_empty_listing_is_empty_list(self, parsers) -> None:
        assert parsers.get("cloudstack.snapshots")(b'{"listsnapshotsresponse": {}}') == []

    def test_single_snapshot(self, parsers) -> None:
        body = b'{"listsnapshotsresponse": {"count": 1, "snapshot": [{"id": 5}]}}'
        assert parsers.get("cloudstack.snapshot")(body) == Snapshot(id=5)

    def test_single_snapshot_absent(self, parsers) -> None:
        assert parsers.get("cloudstack.snapshot")(b'{"listsnapshotsresponse": {}}') is None

    def test_snapshot_policy(self, parsers) -> None:
        body = json.dumps({
            "createsnapshotpolicyresponse": {
                "snapshotpolicy": {
                    "id": 3, "volumeid": 12, "intervaltype": "MONTHLY",
                    "schedule": "07:06:05", "timezone": "UTC", "maxsnaps": 10,
                }
            }
        }).encode()
        policy = parsers.get("cloudstack.snapshot_policy")(body)
        assert policy == SnapshotPolicy(
            id=3, volume_id=12, interval=Interval.MONTHLY,
            schedule="07:06:05", timezone="UTC", max_snaps=10,
        )


def snapshot_client(handler) -> tuple[SnapshotClient, RecordingTransport]:
    transport = RecordingTransport(handler)
    endpoint = EndpointConfig(base_url=CLOUDSTACK_URL)
    return SnapshotClient.connect(endpoint, executor=Executor(endpoint, transport)), transport


class TestSnapshotClient:
    """Typed facade over a mocked transport."""

    def test_create_snapshot(self) -> None:
        client, transport = snapshot_client(
            lambda request: httpx.Response(
                200, json={"createsnapshotresponse": {"id": 1, "jobid": 2}}
            )
        )
        with client:
            job = client.create_snapshot(5, CreateSnapshotOptions.policy_id(9))

        assert job == AsyncCreateResponse(id=1, job_id=2)
        params = transport.requests[0].url.params
        assert params["command"] == "createSnapshot"
        assert params["volumeid"] == "5"
        assert params["policyid"] == "9"

    def test_list_snapshots_404_is_empty(self) -> None:
        client, _ = snapshot_client(lambda request: httpx.Response(404))
        with client:
            assert client.list_snapshots() == []

    def test_get_snapshot_404_is_none(self) -> None:
        client, _ = snapshot_client(lambda request: httpx.Response(404))
        with client:
            assert client.get_snapshot(5) is None

    def test_delete_snapshot_404_is_void(self) -> None:
        client, _ = snapshot_client(lambda request: httpx.Response(404, text="gone"))
        with client:
            assert client.delete_snapshot(5) is None

    def test_create_snapshot_404_raises(self) -> None:
        client, _ = snapshot_client(lambda request: httpx.Response(404, text="no volume"))
        with client, pytest.raises(ResourceNotFoundError) as exc_info:
            client.create_snapshot(5)
        assert exc_info.value.status_code == 404
        assert exc_info.value.body == b"no volume"

    def test_create_snapshot_policy_reorders_arguments(self) -> None:
        client, transport = snapshot_client(
            lambda request: httpx.Response(
                200,
                json={"createsnapshotpolicyresponse": {"snapshotpolicy": {"id": 3}}},
            )
        )
        with client:
            policy = client.create_snapshot_policy(
                SnapshotPolicySchedule.monthly(5, 6, 7), 10, "UTC", 12
            )

        assert policy.id == 3
        assert list(transport.requests[0].url.params.items()) == [
            ("response", "json"),
            ("command", "createSnapshotPolicy"),
            ("timezone", "UTC"),
            ("maxsnaps", "10"),
            ("volumeid", "12"),
            ("intervaltype", "MONTHLY"),
            ("schedule", "07:06:05"),
        ]

    def test_bad_request_raises_illegal_argument(self) -> None:
        client, _ = snapshot_client(
            lambda request: httpx.Response(400, json={"errortext": "bad volume id"})
        )
        with client, pytest.raises(IllegalArgumentError):
            client.delete_snapshot_policies([3, 5, 7])
