"""Filter Chain - Ordered request mutators applied between build and dispatch.

A stage receives a BuiltRequest and returns a (possibly new) BuiltRequest.
Stages may add or change headers and the payload; they must leave scheme,
host and path alone. That rule is not checked at runtime;
assert_target_identity() is the check tests use.
"""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Protocol

import httpx

from restbind.errors import DescriptorError
from restbind.models import BuiltRequest


class FilterStage(Protocol):
    """A named request transformation."""

    name: str

    def __call__(self, request: BuiltRequest) -> BuiltRequest: ...


class FilterChain:
    """Immutable ordered sequence of stages."""

    def __init__(self, stages: Iterable[FilterStage] = ()) -> None:
        self._stages = tuple(stages)

    @classmethod
    def from_names(
        cls,
        names: Iterable[str],
        available: Mapping[str, FilterStage],
    ) -> FilterChain:
        """Resolve stage names (as carried by a descriptor) against *available*."""
        stages = []
        for name in names:
            if name not in available:
                raise DescriptorError(
                    f"Unknown filter '{name}'. Available: {', '.join(sorted(available)) or '(none)'}"
                )
            stages.append(available[name])
        return cls(stages)

    @property
    def stages(self) -> tuple[FilterStage, ...]:
        return self._stages

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(stage.name for stage in self._stages)

    def apply(self, request: BuiltRequest) -> BuiltRequest:
        for stage in self._stages:
            request = stage(request)
        return request

    def then(self, *stages: FilterStage) -> FilterChain:
        """Return a new chain with *stages* appended."""
        return FilterChain((*self._stages, *stages))

    def __len__(self) -> int:
        return len(self._stages)


def target_identity(request: BuiltRequest) -> tuple[str, str, int | None, str]:
    """(scheme, host, port, path) of the request's URL."""
    url = httpx.URL(request.url)
    return url.scheme, url.host, url.port, url.raw_path.split(b"?", 1)[0].decode("ascii")


def assert_target_identity(before: BuiltRequest, after: BuiltRequest) -> None:
    """Raise AssertionError if a filter changed scheme, host, port or path."""
    expected = target_identity(before)
    actual = target_identity(after)
    if expected != actual:
        raise AssertionError(f"Filter chain changed request target: {expected} -> {actual}")


# =============================================================================
# Built-in stages
# =============================================================================


class DefaultHeaders:
    """Adds headers that the request does not already carry."""

    name = "default_headers"

    def __init__(self, headers: Mapping[str, str]) -> None:
        self._headers = tuple(headers.items())

    def __call__(self, request: BuiltRequest) -> BuiltRequest:
        for header_name, value in self._headers:
            if request.header(header_name) is None:
                request = request.with_header(header_name, value)
        return request


class DateHeader:
    """Stamps the current time as an RFC 1123 date header."""

    def __init__(
        self,
        header_name: str = "Date",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.header_name = header_name
        self.name = "date" if header_name.lower() == "date" else f"date:{header_name.lower()}"
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def __call__(self, request: BuiltRequest) -> BuiltRequest:
        now = self._clock().astimezone(timezone.utc)
        return request.with_header(self.header_name, format_datetime(now, usegmt=True))


class ContentMD5:
    """Sets Content-MD5 to the base64 MD5 digest of the payload."""

    name = "content_md5"

    def __call__(self, request: BuiltRequest) -> BuiltRequest:
        if request.payload is None:
            return request
        digest = hashlib.md5(request.payload).digest()
        return request.with_header("Content-MD5", base64.b64encode(digest).decode("ascii"))
