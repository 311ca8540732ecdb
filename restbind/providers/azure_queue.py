"""Azure Storage Queue API binding.

Queue names and message ids travel in the path, responses are XML, and
putMessage sends an XML envelope. Every request carries the service version
header and an ``x-ms-date`` stamp added by a filter stage.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field

from restbind.client import RestClient
from restbind.errors import ParseError
from restbind.filters import ContentMD5, DateHeader, FilterStage
from restbind.models import (
    DescriptorTable,
    NotFoundStrategy,
    OperationDescriptor,
    ParameterBinding,
)
from restbind.options import RequestOptions, option
from restbind.parsers import ParserRegistry, compose, field, typed, xml_parser

API_VERSION = "2009-09-19"
XML_CONTENT_TYPE = "application/xml"


# =============================================================================
# Domain
# =============================================================================


class QueueInfo(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    name: str = Field(alias="Name")
    url: str | None = Field(default=None, alias="Url")
    metadata: dict[str, str | None] | None = Field(default=None, alias="Metadata")


class ListQueuesResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    account: str | None = Field(default=None, alias="@AccountName")
    prefix: str | None = Field(default=None, alias="Prefix")
    marker: str | None = Field(default=None, alias="Marker")
    max_results: int | None = Field(default=None, alias="MaxResults")
    queues: list[QueueInfo] = Field(default_factory=list, alias="Queues")
    next_marker: str | None = Field(default=None, alias="NextMarker")


class QueueMessage(BaseModel):
    """A message as returned by getMessages or peekMessages.

    Peeked messages carry no pop receipt and are not made invisible.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    message_id: str = Field(alias="MessageId")
    insertion_time: str | None = Field(default=None, alias="InsertionTime")
    expiration_time: str | None = Field(default=None, alias="ExpirationTime")
    pop_receipt: str | None = Field(default=None, alias="PopReceipt")
    time_next_visible: str | None = Field(default=None, alias="TimeNextVisible")
    dequeue_count: int | None = Field(default=None, alias="DequeueCount")
    message_text: str | None = Field(default=None, alias="MessageText")


def message_envelope(text: str) -> dict[str, Any]:
    """putMessage payload: <QueueMessage><MessageText>text</MessageText></QueueMessage>."""
    return {"QueueMessage": {"MessageText": text}}


# =============================================================================
# Options
# =============================================================================


class ListQueuesOptions(RequestOptions):
    __slots__ = ()

    @option
    def prefix(self, prefix: str) -> Self:
        return self.query("prefix", prefix)

    @option
    def marker(self, marker: str) -> Self:
        return self.query("marker", marker)

    @option
    def max_results(self, max_results: int) -> Self:
        return self.query("maxresults", max_results)

    @option
    def include_metadata(self) -> Self:
        return self.query("include", "metadata")


class CreateQueueOptions(RequestOptions):
    __slots__ = ()

    @option
    def metadata(self, name: str, value: str) -> Self:
        return self.header(f"x-ms-meta-{name}", value)


class PutMessageOptions(RequestOptions):
    __slots__ = ()

    @option
    def ttl(self, seconds: int) -> Self:
        return self.query("messagettl", seconds)

    @option
    def visibility_timeout(self, seconds: int) -> Self:
        return self.query("visibilitytimeout", seconds)


class GetMessagesOptions(RequestOptions):
    __slots__ = ()

    @option
    def num_messages(self, count: int) -> Self:
        return self.query("numofmessages", count)

    @option
    def visibility_timeout(self, seconds: int) -> Self:
        return self.query("visibilitytimeout", seconds)


class PeekMessagesOptions(RequestOptions):
    __slots__ = ()

    @option
    def num_messages(self, count: int) -> Self:
        return self.query("numofmessages", count)


# =============================================================================
# Descriptors, parsers and filters
# =============================================================================

DATE_FILTER = "date:x-ms-date"

P = ParameterBinding.path
OPTIONS = ParameterBinding.options()


def _operation(
    operation_id: str,
    method: str,
    path_template: str,
    *bindings: ParameterBinding,
    parser: str = "void",
    fixed_query: tuple[tuple[str, str], ...] = (),
    not_found: NotFoundStrategy = NotFoundStrategy.MAP_TO_EXCEPTION,
    payload_content_type: str | None = None,
    filters: tuple[str, ...] = (DATE_FILTER,),
) -> OperationDescriptor:
    return OperationDescriptor(
        operation_id=operation_id,
        method=method,
        path_template=path_template,
        fixed_query=fixed_query,
        fixed_headers=(("x-ms-version", API_VERSION),),
        bindings=bindings,
        parser=parser,
        not_found=not_found,
        payload_content_type=payload_content_type,
        filters=filters,
    )


QUEUE_OPERATIONS = DescriptorTable([
    _operation(
        "listQueues", "GET", "/", OPTIONS,
        parser="azure.queues",
        fixed_query=(("comp", "list"),),
    ),
    _operation("createQueue", "PUT", "/{queue}", P("queue"), OPTIONS),
    _operation(
        "deleteQueue", "DELETE", "/{queue}", P("queue"),
        not_found=NotFoundStrategy.RETURN_VOID,
    ),
    _operation(
        "putMessage", "POST", "/{queue}/messages",
        P("queue"), ParameterBinding.payload(), OPTIONS,
        payload_content_type=XML_CONTENT_TYPE,
        filters=(DATE_FILTER, "content_md5"),
    ),
    _operation(
        "getMessages", "GET", "/{queue}/messages", P("queue"), OPTIONS,
        parser="azure.messages",
        not_found=NotFoundStrategy.RETURN_EMPTY_COLLECTION,
    ),
    _operation(
        "peekMessages", "GET", "/{queue}/messages", P("queue"), OPTIONS,
        parser="azure.messages",
        fixed_query=(("peekonly", "true"),),
        not_found=NotFoundStrategy.RETURN_EMPTY_COLLECTION,
    ),
    _operation(
        "deleteMessage", "DELETE", "/{queue}/messages/{messageid}",
        P("queue"), P("messageid"), ParameterBinding.query("popreceipt"),
        not_found=NotFoundStrategy.RETURN_VOID,
    ),
    _operation(
        "clearMessages", "DELETE", "/{queue}/messages", P("queue"),
        not_found=NotFoundStrategy.RETURN_VOID,
    ),
])


def _queue_listing(results: Any) -> dict[str, Any]:
    # <Queues/> parses to None; <Queues><Queue>..</Queue></Queues> to {"Queue": [...]}
    if results is None:
        results = {}
    if not isinstance(results, Mapping):
        raise ParseError("EnumerationResults has text content instead of child elements")
    listing = dict(results)
    queues = listing.pop("Queues", None) or {}
    if not isinstance(queues, Mapping):
        raise ParseError("Queues has text content instead of Queue elements")
    listing["Queues"] = queues.get("Queue", [])
    return listing


def queue_parsers() -> ParserRegistry:
    """Registry holding the built-in parsers plus the queue ones."""
    return ParserRegistry({
        "azure.queues": typed(
            ListQueuesResponse,
            compose(xml_parser({"Queue"}), field("EnumerationResults"), _queue_listing),
        ),
        "azure.messages": typed(
            list[QueueMessage],
            compose(
                xml_parser({"QueueMessage"}),
                field("QueueMessagesList"),
                field("QueueMessage", []),
            ),
        ),
    })


def queue_filters(clock: Callable[[], datetime] | None = None) -> dict[str, FilterStage]:
    date_stage = DateHeader("x-ms-date", clock=clock)
    md5_stage = ContentMD5()
    return {date_stage.name: date_stage, md5_stage.name: md5_stage}


# =============================================================================
# Typed client
# =============================================================================


class QueueClient:
    """Typed facade over the queue operations.

    Usage:
        with QueueClient.connect("https://acct.queue.core.windows.net") as queues:
            queues.create_queue("jobs")
            queues.put_message("jobs", "hello")
            for message in queues.get_messages("jobs"):
                queues.delete_message("jobs", message.message_id, message.pop_receipt)
    """

    def __init__(self, client: RestClient) -> None:
        self._client = client

    @classmethod
    def connect(
        cls,
        endpoint: Any,
        clock: Callable[[], datetime] | None = None,
        **kwargs: Any,
    ) -> QueueClient:
        return cls(
            RestClient(
                endpoint,
                QUEUE_OPERATIONS,
                parsers=queue_parsers(),
                filters=queue_filters(clock),
                **kwargs,
            )
        )

    def __enter__(self) -> QueueClient:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    @property
    def rest(self) -> RestClient:
        return self._client

    def list_queues(self, *options: ListQueuesOptions) -> ListQueuesResponse:
        return self._client.call("listQueues", *options)

    def create_queue(self, queue: str, *options: CreateQueueOptions) -> None:
        self._client.call("createQueue", queue, *options)

    def delete_queue(self, queue: str) -> None:
        self._client.call("deleteQueue", queue)

    def put_message(self, queue: str, text: str, *options: PutMessageOptions) -> None:
        self._client.call("putMessage", queue, message_envelope(text), *options)

    def get_messages(
        self, queue: str, *options: GetMessagesOptions
    ) -> list[QueueMessage]:
        return list(self._client.call("getMessages", queue, *options))

    def peek_messages(
        self, queue: str, *options: PeekMessagesOptions
    ) -> list[QueueMessage]:
        return list(self._client.call("peekMessages", queue, *options))

    def delete_message(self, queue: str, message_id: str, pop_receipt: str) -> None:
        self._client.call("deleteMessage", queue, message_id, pop_receipt)

    def clear_messages(self, queue: str) -> None:
        self._client.call("clearMessages", queue)
