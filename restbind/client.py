"""RestClient - Runs the full pipeline for an operation id.

    args -> RequestBuilder -> FilterChain -> Executor -> ResponseInterpreter

Everything the client holds is built in __init__ and only read afterwards:
the descriptor table, one filter chain per operation, the parser registry
and the executor. Calls share no mutable state and may run from any number
of threads.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from restbind.builder import RequestBuilder
from restbind.executor import Executor
from restbind.filters import FilterChain, FilterStage
from restbind.interpreter import ResponseInterpreter
from restbind.models import (
    BuiltRequest,
    DescriptorTable,
    EndpointConfig,
    Failure,
    ResponseOutcome,
)
from restbind.parsers import ParserRegistry

logger = logging.getLogger(__name__)


class RestClient:
    """Metadata-driven client for one endpoint.

    Usage:
        with RestClient(EndpointConfig(base_url="http://localhost:8080"), table) as client:
            outcome = client.invoke("listSnapshots")     # ResponseOutcome
            snapshots = client.call("listSnapshots")     # value, or raises
    """

    def __init__(
        self,
        endpoint: EndpointConfig | str,
        table: DescriptorTable,
        *,
        parsers: ParserRegistry | None = None,
        filters: Mapping[str, FilterStage] | None = None,
        executor: Executor | None = None,
    ) -> None:
        """Initialize the client and validate every descriptor against it.

        Args:
            endpoint: Endpoint config, or a bare base URL.
            table: Operations this client can invoke.
            parsers: Parser registry; defaults to the built-in parsers.
            filters: Filter stages by name, referenced from descriptors.
            executor: Transport to use; created from *endpoint* if omitted.

        Raises:
            DescriptorError: If a descriptor names an unknown parser or filter.
        """
        if isinstance(endpoint, str):
            endpoint = EndpointConfig(base_url=endpoint)
        self._endpoint = endpoint
        self._table = table
        self._builder = RequestBuilder(endpoint.base_url)
        self._interpreter = ResponseInterpreter(parsers)

        available = dict(filters or {})
        self._chains: dict[str, FilterChain] = {}
        for operation_id, descriptor in table.items():
            # Fail at startup rather than on first call
            self._interpreter.parsers.get(descriptor.parser)
            self._chains[operation_id] = FilterChain.from_names(descriptor.filters, available)

        self._owns_executor = executor is None
        self._executor = executor or Executor(endpoint)

    def __enter__(self) -> "RestClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_executor:
            self._executor.close()

    @property
    def table(self) -> DescriptorTable:
        return self._table

    @property
    def endpoint(self) -> EndpointConfig:
        return self._endpoint

    def prepare(self, operation_id: str, *args: Any) -> BuiltRequest:
        """Build and filter a request without sending it.

        Raises:
            DescriptorError: If the operation is unknown.
            BindingError: If the arguments do not fit the operation.
        """
        descriptor = self._table.lookup(operation_id)
        request = self._builder.build(descriptor, args)
        return self._chains[operation_id].apply(request)

    def invoke(self, operation_id: str, *args: Any) -> ResponseOutcome:
        """Run the operation and return its classified outcome.

        Raises:
            DescriptorError: If the operation is unknown.
            BindingError: If the arguments do not fit the operation.
            TransportError: If no response was received.
        """
        descriptor = self._table.lookup(operation_id)
        request = self.prepare(operation_id, *args)
        response = self._executor.dispatch(request)
        outcome = self._interpreter.interpret_response(descriptor, response)
        if isinstance(outcome, Failure):
            logger.debug("%s failed: %s", operation_id, outcome.message)
        return outcome

    def call(self, operation_id: str, *args: Any) -> Any:
        """Run the operation and return its value.

        Raises:
            ClassifiedFailure: Subclass matching the failure kind.
        """
        return self.invoke(operation_id, *args).unwrap()
