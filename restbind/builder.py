"""Request Builder - Turns a descriptor plus call arguments into a BuiltRequest.

Order of the query string: the descriptor's fixed pairs, then QUERY bindings
in declaration order, then OPTIONS contributions in the order each options
value accumulated them. Headers follow the same order; a later header with
the same (case-insensitive) name overwrites the earlier value in place.

The builder is pure: it holds only the base URL and reads the descriptor, so
one instance is shared by every caller of an endpoint.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from urllib.parse import quote
from uuid import UUID

from pydantic import BaseModel

from restbind.errors import BindingError
from restbind.models import (
    PLACEHOLDER_PATTERN,
    BindingRole,
    BuiltRequest,
    OperationDescriptor,
    ParameterBinding,
)
from restbind.xml_body import dict_to_xml

logger = logging.getLogger(__name__)

_OPTION_ROLES = {BindingRole.QUERY, BindingRole.HEADER}
_SCALAR_TYPES = (int, float, Decimal, UUID)


# =============================================================================
# Value rendering and encoding
# =============================================================================


def percent_encode(value: str) -> str:
    """Percent-encode everything outside the RFC 3986 unreserved set.

    Space becomes %20 (never '+'), so the same function serves path
    segments, query keys and query values.
    """
    return quote(value, safe="")


def render_value(value: Any) -> str:
    """Render a call argument as the string that goes on the wire.

    Raises:
        BindingError: If the value has no wire rendering (mappings and
            arbitrary objects) or is bytes that are not UTF-8.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return render_value(value.value)
    if isinstance(value, str):
        return value
    if hasattr(value, "to_query_value"):
        return str(value.to_query_value())
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise BindingError(f"Bytes argument is not valid UTF-8: {e}") from e
    if isinstance(value, _SCALAR_TYPES):
        return str(value)
    if isinstance(value, Mapping):
        raise BindingError("Mapping arguments have no wire rendering; use a payload binding")
    if isinstance(value, (set, frozenset)):
        try:
            items = sorted(value)
        except TypeError as e:
            raise BindingError(f"Cannot order set elements for rendering: {e}") from e
        return ",".join(render_value(item) for item in items)
    if isinstance(value, (list, tuple)):
        return ",".join(render_value(item) for item in value)
    raise BindingError(f"Cannot render {type(value).__name__} argument as a string")


def encode_query(pairs: Sequence[tuple[str, str]]) -> str:
    """Encode already-rendered pairs as key=value&... without reordering."""
    return "&".join(f"{percent_encode(k)}={percent_encode(v)}" for k, v in pairs)


def _set_header(headers: list[tuple[str, str]], name: str, value: str) -> None:
    lower = name.lower()
    for i, (existing, _) in enumerate(headers):
        if existing.lower() == lower:
            headers[i] = (existing, value)
            return
    headers.append((name, value))


# =============================================================================
# Payload serialization
# =============================================================================


def _media_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


def _to_plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return value


def serialize_payload(value: Any, content_type: str) -> bytes:
    """Serialize a PAYLOAD argument according to its declared content type.

    Raises:
        BindingError: If the value cannot be represented in that content type.
    """
    media_type = _media_type(content_type)

    if isinstance(value, bytes):
        return value

    value = _to_plain(value)

    if media_type == "application/json" or media_type.endswith("+json"):
        try:
            return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise BindingError(f"Payload is not JSON serializable: {e}") from e

    if media_type in ("application/xml", "text/xml") or media_type.endswith("+xml"):
        if isinstance(value, str):
            return value.encode("utf-8")
        if isinstance(value, dict):
            try:
                return dict_to_xml(value)
            except ValueError as e:
                raise BindingError(f"Payload cannot be rendered as XML: {e}") from e
        raise BindingError(f"XML payload must be a dict or str, got {type(value).__name__}")

    if media_type == "application/x-www-form-urlencoded":
        if not isinstance(value, Mapping):
            raise BindingError(f"Form payload must be a mapping, got {type(value).__name__}")
        return encode_query([(str(k), render_value(v)) for k, v in value.items()]).encode("ascii")

    if isinstance(value, str):
        return value.encode("utf-8")

    raise BindingError(
        f"Cannot serialize {type(value).__name__} as {content_type}; pass bytes or str"
    )


# =============================================================================
# Request Builder
# =============================================================================


class RequestBuilder:
    """Builds requests for one endpoint.

    Usage:
        builder = RequestBuilder("http://localhost:8080")
        request = builder.build(descriptor, [5])
        request.request_line
        # 'GET http://localhost:8080/client/api?response=json&command=createSnapshot&volumeid=5 HTTP/1.1'
    """

    def __init__(self, base_url: str) -> None:
        if not base_url.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {base_url!r}")
        self._base_url = base_url.rstrip("/")

    @property
    def base_url(self) -> str:
        return self._base_url

    def build(self, descriptor: OperationDescriptor, args: Sequence[Any] = ()) -> BuiltRequest:
        """Resolve a descriptor and its arguments into a concrete request.

        Raises:
            BindingError: If an argument does not fit its binding.
        """
        bound, options = self._split_arguments(descriptor, args)

        path = self._resolve_path(descriptor, bound)

        query: list[tuple[str, str]] = list(descriptor.fixed_query)
        headers: list[tuple[str, str]] = []
        for name, value in descriptor.fixed_headers:
            _set_header(headers, name, value)

        payload: bytes | None = None
        content_type: str | None = None

        for binding, value in bound:
            if value is None:
                if binding.optional:
                    continue
                raise BindingError(
                    f"{descriptor.operation_id}: {self._describe(binding)} argument must not be None"
                )
            if binding.role == BindingRole.QUERY:
                query.append((binding.name, render_value(value)))
            elif binding.role == BindingRole.HEADER:
                _set_header(headers, binding.name, render_value(value))
            elif binding.role == BindingRole.PAYLOAD:
                content_type = descriptor.payload_content_type or "application/octet-stream"
                payload = serialize_payload(value, content_type)

        for role, name, value in self._expand_options(descriptor, options):
            if role == BindingRole.QUERY:
                query.append((name, value))
            else:
                _set_header(headers, name, value)

        url = self._base_url + path
        if query:
            url = f"{url}?{encode_query(query)}"

        request = BuiltRequest(
            operation_id=descriptor.operation_id,
            method=descriptor.method,
            url=url,
            headers=tuple(headers),
            payload=payload,
            content_type=content_type,
        )
        logger.debug("Built %s", request.request_line)
        return request

    @staticmethod
    def _describe(binding: ParameterBinding) -> str:
        if binding.name:
            return f"{binding.role.value} '{binding.name}'"
        return binding.role.value

    def _split_arguments(
        self,
        descriptor: OperationDescriptor,
        args: Sequence[Any],
    ) -> tuple[list[tuple[ParameterBinding, Any]], list[Any]]:
        """Pair positional arguments with bindings; leftovers go to OPTIONS."""
        fixed = descriptor.bindings[:-1] if descriptor.accepts_options else descriptor.bindings

        if len(args) > len(fixed) and not descriptor.accepts_options:
            raise BindingError(
                f"{descriptor.operation_id} takes {len(fixed)} argument(s), got {len(args)}"
            )

        bound: list[tuple[ParameterBinding, Any]] = []
        for i, binding in enumerate(fixed):
            if i < len(args):
                bound.append((binding, args[i]))
            elif binding.optional:
                bound.append((binding, None))
            else:
                raise BindingError(
                    f"{descriptor.operation_id}: missing {self._describe(binding)} argument"
                )
        return bound, list(args[len(fixed):])

    def _resolve_path(
        self,
        descriptor: OperationDescriptor,
        bound: list[tuple[ParameterBinding, Any]],
    ) -> str:
        """Substitute every placeholder once, in a single pass over the template."""
        values = {b.name: v for b, v in bound if b.role == BindingRole.PATH}

        def substitute(match: Any) -> str:
            name = match.group(1)
            value = values.get(name)
            if value is None:
                raise BindingError(f"{descriptor.operation_id}: path '{name}' has no value")
            rendered = render_value(value)
            if not rendered:
                raise BindingError(
                    f"{descriptor.operation_id}: path '{name}' rendered to an empty string"
                )
            return percent_encode(rendered)

        path = PLACEHOLDER_PATTERN.sub(substitute, descriptor.path_template)
        if "{" in path or "}" in path:
            raise BindingError(
                f"{descriptor.operation_id}: unresolved placeholder in '{path}'"
            )
        return path

    def _expand_options(
        self,
        descriptor: OperationDescriptor,
        options: list[Any],
    ) -> list[tuple[BindingRole, str, str]]:
        """Flatten option values into rendered (role, name, value) triples."""
        expanded: list[tuple[BindingRole, str, str]] = []
        for opt in options:
            if opt is None:
                continue
            bindings = getattr(opt, "bindings", None)
            if not callable(bindings):
                raise BindingError(
                    f"{descriptor.operation_id}: options argument {type(opt).__name__} "
                    f"does not provide bindings()"
                )
            for triple in bindings():
                try:
                    role, name, value = triple
                    role = BindingRole(role)
                except (TypeError, ValueError) as e:
                    raise BindingError(
                        f"{descriptor.operation_id}: malformed option binding {triple!r}"
                    ) from e
                if role not in _OPTION_ROLES:
                    raise BindingError(
                        f"{descriptor.operation_id}: options may only contribute query or "
                        f"header bindings, got {role.value}"
                    )
                if not isinstance(name, str) or not name or value is None:
                    raise BindingError(
                        f"{descriptor.operation_id}: malformed option binding {triple!r}"
                    )
                expanded.append((role, name, render_value(value)))
        return expanded


def build_request(
    descriptor: OperationDescriptor,
    args: Sequence[Any],
    base_url: str,
) -> BuiltRequest:
    """One-shot helper: RequestBuilder(base_url).build(descriptor, args)."""
    return RequestBuilder(base_url).build(descriptor, args)
