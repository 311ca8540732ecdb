"""Executor - Sends built requests to an endpoint and captures responses.

The executor is the transport boundary: it hands a BuiltRequest to httpx and
returns a WireResponse. It has no opinion on the response; classification is
the interpreter's job. Connection reuse and TLS are httpx's; there are no
retries here.
"""

from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Any

import httpx

from restbind.errors import RestBindError, TransportError
from restbind.models import BuiltRequest, EndpointConfig, WireResponse

logger = logging.getLogger(__name__)


class ExecutorError(RestBindError):
    """Raised when the executor cannot be configured."""


def _sanitize_header_value(value: str) -> str:
    """Replace non-ASCII characters with '?'.

    HTTP header values must be ASCII (RFC 7230); httpx refuses anything else.
    """
    return value.encode("ascii", errors="replace").decode("ascii")


class Executor:
    """Dispatches requests to one endpoint.

    Usage:
        with Executor(endpoint_config) as executor:
            response = executor.dispatch(built_request)

    Thread-safe: httpx.Client may be shared between threads, and the rate
    limiter serializes only the timestamp bookkeeping.
    """

    def __init__(
        self,
        endpoint: EndpointConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            endpoint: Endpoint configuration (headers, timeouts, TLS, rate limit).
            transport: Optional httpx transport, e.g. httpx.MockTransport in tests.
        """
        self._endpoint = endpoint
        self._default_timeout = endpoint.timeout
        self._operation_timeouts = dict(endpoint.operation_timeouts)

        # Rate limiting state
        requests_per_second = (
            endpoint.rate_limit.requests_per_second if endpoint.rate_limit else None
        )
        self._min_interval = 1.0 / requests_per_second if requests_per_second else 0.0
        self._last_request_time: float = 0.0
        self._rate_limit_lock = Lock()

        self._client = httpx.Client(**self._build_client_kwargs(endpoint, transport))

    def __enter__(self) -> "Executor":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    @property
    def endpoint(self) -> EndpointConfig:
        return self._endpoint

    def _build_client_kwargs(
        self,
        endpoint: EndpointConfig,
        transport: httpx.BaseTransport | None,
    ) -> dict[str, Any]:
        """Build kwargs for httpx.Client including TLS configuration."""
        kwargs: dict[str, Any] = {
            "headers": {k: _sanitize_header_value(v) for k, v in endpoint.headers.items()},
            "timeout": endpoint.timeout,
        }

        if endpoint.cert and endpoint.key:
            kwargs["cert"] = (endpoint.cert, endpoint.key)

        if endpoint.ca_bundle:
            kwargs["verify"] = endpoint.ca_bundle
        elif not endpoint.verify_ssl:
            kwargs["verify"] = False
        # else: use httpx default (True)

        if transport is not None:
            kwargs["transport"] = transport

        return kwargs

    def get_timeout(self, operation_id: str) -> float:
        """Get timeout for an operation."""
        return self._operation_timeouts.get(operation_id, self._default_timeout)

    def _wait_for_rate_limit(self) -> None:
        """Wait if necessary to respect rate limit."""
        if self._min_interval <= 0:
            return

        with self._rate_limit_lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                time.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()

    def dispatch(self, request: BuiltRequest) -> WireResponse:
        """Send a request and capture the response.

        Raises:
            TransportError: If no HTTP response was received.
        """
        headers = [(k, _sanitize_header_value(v)) for k, v in request.headers]
        if request.content_type and request.header("content-type") is None:
            headers.append(("Content-Type", request.content_type))

        timeout = self.get_timeout(request.operation_id)

        self._wait_for_rate_limit()

        try:
            start_time = time.perf_counter()
            http_response = self._client.request(
                method=request.method,
                url=request.url,
                headers=headers,
                content=request.payload,
                timeout=timeout,
            )
            elapsed_ms = (time.perf_counter() - start_time) * 1000
        except httpx.TimeoutException as e:
            raise TransportError(f"{request.operation_id} request timeout: {e}") from e
        except httpx.ConnectError as e:
            raise TransportError(f"{request.operation_id} connection error: {e}") from e
        except httpx.RequestError as e:
            raise TransportError(f"{request.operation_id} request error: {e}") from e
        except UnicodeEncodeError as e:
            # Header names are not sanitized; non-ASCII there is a caller bug
            raise TransportError(
                f"{request.operation_id} encoding error: non-ASCII character "
                f"{e.object[e.start:e.end]!r} in request"
            ) from e

        logger.debug(
            "%s -> %d (%.1f ms)", request.request_line, http_response.status_code, elapsed_ms
        )
        return self._convert_response(http_response, elapsed_ms)

    def _convert_response(self, response: httpx.Response, elapsed_ms: float) -> WireResponse:
        """Convert httpx Response to WireResponse (lowercase keys, list values)."""
        headers: dict[str, list[str]] = {}
        for key, value in response.headers.multi_items():
            headers.setdefault(key.lower(), []).append(value)

        return WireResponse(
            status_code=response.status_code,
            headers=headers,
            body=response.content,
            elapsed_ms=elapsed_ms,
            http_version=getattr(response, "http_version", "HTTP/1.1"),
        )
