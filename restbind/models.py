"""Data models for restbind.

All models use Pydantic v2. Engine metadata (descriptors, bindings) and the
per-call wire values are frozen: a descriptor is built once and shared by
every caller, a BuiltRequest is never mutated after the builder returns it.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from enum import Enum
from typing import Annotated, Any, Literal, Self, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from restbind.errors import (
    AuthorizationError,
    ClassifiedFailure,
    DescriptorError,
    IllegalArgumentError,
    IllegalStateError,
    RateLimitedError,
    ResourceNotFoundError,
    ResponseParseError,
    ServerError,
)

# {name} tokens in a URL template. Names follow identifier rules.
PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _pairs(value: Any) -> Any:
    """Accept a mapping where an ordered tuple of pairs is expected (YAML input)."""
    if isinstance(value, Mapping):
        return tuple((str(k), str(v)) for k, v in value.items())
    return value


# =============================================================================
# Engine Metadata Models
# =============================================================================


class BindingRole(str, Enum):
    """Where a call argument lands in the request."""

    PATH = "path"
    QUERY = "query"
    HEADER = "header"
    PAYLOAD = "payload"
    OPTIONS = "options"  # Expands into query/header pairs at call time


class ParameterBinding(BaseModel):
    """Role of one formal argument of an operation."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    role: BindingRole = Field(description="Binding role")
    name: str | None = Field(
        default=None, description="Placeholder, query key or header name"
    )
    optional: bool = Field(
        default=False, description="Omit the binding when the argument is None"
    )

    @model_validator(mode="after")
    def check_name(self) -> Self:
        named = (BindingRole.PATH, BindingRole.QUERY, BindingRole.HEADER)
        if self.role in named and not self.name:
            raise ValueError(f"{self.role.value} binding requires a name")
        if self.role not in named and self.name is not None:
            raise ValueError(f"{self.role.value} binding does not take a name")
        return self

    @classmethod
    def path(cls, name: str) -> ParameterBinding:
        return cls(role=BindingRole.PATH, name=name)

    @classmethod
    def query(cls, name: str, optional: bool = False) -> ParameterBinding:
        return cls(role=BindingRole.QUERY, name=name, optional=optional)

    @classmethod
    def header(cls, name: str, optional: bool = False) -> ParameterBinding:
        return cls(role=BindingRole.HEADER, name=name, optional=optional)

    @classmethod
    def payload(cls, optional: bool = False) -> ParameterBinding:
        return cls(role=BindingRole.PAYLOAD, optional=optional)

    @classmethod
    def options(cls) -> ParameterBinding:
        return cls(role=BindingRole.OPTIONS)


class NotFoundStrategy(str, Enum):
    """What a 404 (or a whitelisted 4xx) turns into for one operation."""

    MAP_TO_EXCEPTION = "map_to_exception"
    RETURN_NULL = "return_null"
    RETURN_EMPTY_COLLECTION = "return_empty_collection"
    RETURN_VOID = "return_void"


class OperationDescriptor(BaseModel):
    """Static description of one remote operation.

    Bindings are positional: binding i describes call argument i. An OPTIONS
    binding, when present, is last and absorbs every remaining argument.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    operation_id: str = Field(description="Operation identity used for lookup")
    method: str = Field(default="GET", description="HTTP method")
    path_template: str = Field(description="Path with {placeholder} tokens, e.g. /{queue}/messages")
    fixed_query: tuple[tuple[str, str], ...] = Field(
        default=(), description="Query pairs sent on every call, in order"
    )
    fixed_headers: tuple[tuple[str, str], ...] = Field(
        default=(), description="Headers sent on every call, in order"
    )
    bindings: tuple[ParameterBinding, ...] = Field(
        default=(), description="One binding per call argument position"
    )
    parser: str = Field(default="json", description="Success parser name")
    not_found: NotFoundStrategy = Field(
        default=NotFoundStrategy.MAP_TO_EXCEPTION, description="Not-found strategy"
    )
    tolerated_statuses: frozenset[int] = Field(
        default=frozenset(),
        description="4xx statuses besides 404 handled by the not-found strategy",
    )
    payload_content_type: str | None = Field(
        default=None, description="Content type used to serialize the PAYLOAD argument"
    )
    filters: tuple[str, ...] = Field(
        default=(), description="Filter stage names, applied in order"
    )

    @field_validator("fixed_query", "fixed_headers", mode="before")
    @classmethod
    def accept_mapping(cls, v: Any) -> Any:
        return _pairs(v)

    @field_validator("method")
    @classmethod
    def upper_method(cls, v: str) -> str:
        return v.upper()

    @field_validator("path_template")
    @classmethod
    def check_path_template(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("path_template must start with '/'")
        if "?" in v or "#" in v:
            raise ValueError("path_template must not carry a query or fragment; use fixed_query")
        return v

    @field_validator("tolerated_statuses")
    @classmethod
    def check_tolerated(cls, v: frozenset[int]) -> frozenset[int]:
        for status in v:
            if not 400 <= status <= 499:
                raise ValueError(f"tolerated status {status} is not a 4xx code")
        return v

    @model_validator(mode="after")
    def check_bindings(self) -> Self:
        roles = [b.role for b in self.bindings]

        if roles.count(BindingRole.PAYLOAD) > 1:
            raise ValueError("at most one payload binding per operation")
        if roles.count(BindingRole.OPTIONS) > 1:
            raise ValueError("at most one options binding per operation")
        if BindingRole.OPTIONS in roles and roles[-1] != BindingRole.OPTIONS:
            raise ValueError("options binding must be the last binding")

        placeholders = self.placeholders
        if len(set(placeholders)) != len(placeholders):
            raise ValueError(f"duplicate placeholder in {self.path_template!r}")
        path_names = [b.name for b in self.bindings if b.role == BindingRole.PATH]
        if sorted(path_names) != sorted(placeholders):
            raise ValueError(
                f"path bindings {path_names} do not match placeholders {list(placeholders)}"
            )
        return self

    @property
    def placeholders(self) -> tuple[str, ...]:
        """Placeholder names in template order."""
        return tuple(PLACEHOLDER_PATTERN.findall(self.path_template))

    @property
    def accepts_options(self) -> bool:
        return bool(self.bindings) and self.bindings[-1].role == BindingRole.OPTIONS


class DescriptorTable(Mapping[str, OperationDescriptor]):
    """Read-only operation id -> descriptor lookup, built once at startup."""

    def __init__(self, descriptors: Iterable[OperationDescriptor] = ()) -> None:
        table: dict[str, OperationDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.operation_id in table:
                raise DescriptorError(
                    f"Duplicate operation id '{descriptor.operation_id}'"
                )
            table[descriptor.operation_id] = descriptor
        self._table = table

    def __getitem__(self, operation_id: str) -> OperationDescriptor:
        return self._table[operation_id]

    def lookup(self, operation_id: str) -> OperationDescriptor:
        """Like table[operation_id] but raises DescriptorError for unknown ids."""
        try:
            return self._table[operation_id]
        except KeyError:
            raise DescriptorError(f"Unknown operation '{operation_id}'") from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._table)

    def __len__(self) -> int:
        return len(self._table)

    def merged(self, other: DescriptorTable) -> DescriptorTable:
        """Return a new table holding both sets of descriptors."""
        return DescriptorTable([*self.values(), *other.values()])


# =============================================================================
# Wire Models
# =============================================================================


class BuiltRequest(BaseModel):
    """A fully resolved HTTP request, ready for filters and dispatch.

    Headers are ordered (name, value) pairs. Header lookups are
    case-insensitive; the first spelling of a name is kept on overwrite.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    operation_id: str = Field(description="Operation that produced this request")
    method: str = Field(description="HTTP method")
    url: str = Field(description="Absolute URL including the encoded query string")
    headers: tuple[tuple[str, str], ...] = Field(default=(), description="Ordered headers")
    payload: bytes | None = Field(default=None, description="Body bytes")
    content_type: str | None = Field(default=None, description="Payload content type")

    @model_validator(mode="after")
    def check_payload(self) -> Self:
        if self.content_type is not None and self.payload is None:
            raise ValueError("content_type requires a payload")
        return self

    @property
    def request_line(self) -> str:
        return f"{self.method} {self.url} HTTP/1.1"

    def header(self, name: str) -> str | None:
        lower = name.lower()
        for key, value in self.headers:
            if key.lower() == lower:
                return value
        return None

    def with_header(self, name: str, value: str) -> BuiltRequest:
        """Return a copy with the header set, replacing any existing value."""
        lower = name.lower()
        headers = list(self.headers)
        for i, (key, _) in enumerate(headers):
            if key.lower() == lower:
                headers[i] = (key, value)
                break
        else:
            headers.append((name, value))
        return self.model_copy(update={"headers": tuple(headers)})

    def without_header(self, name: str) -> BuiltRequest:
        lower = name.lower()
        headers = tuple((k, v) for k, v in self.headers if k.lower() != lower)
        return self.model_copy(update={"headers": headers})

    def with_payload(self, payload: bytes | None, content_type: str | None) -> BuiltRequest:
        return self.model_copy(update={"payload": payload, "content_type": content_type})


class WireResponse(BaseModel):
    """One HTTP response as received from the transport.

    Header keys are lowercase. Header values are arrays for repeated headers.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    status_code: int = Field(description="HTTP status code")
    headers: dict[str, list[str]] = Field(
        default_factory=dict, description="Response headers (lowercase keys, array values)"
    )
    body: bytes = Field(default=b"", description="Raw body bytes")
    elapsed_ms: float = Field(default=0.0, description="Response time in milliseconds")
    http_version: str = Field(default="HTTP/1.1", description="Protocol version")

    def header(self, name: str) -> str | None:
        values = self.headers.get(name.lower())
        return values[0] if values else None


# =============================================================================
# Outcome Models
# =============================================================================


class ErrorKind(str, Enum):
    """Classification of a failed call."""

    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    ILLEGAL_ARGUMENT = "illegal_argument"
    ILLEGAL_STATE = "illegal_state"
    RATE_LIMITED = "rate_limited"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    UNEXPECTED_STATUS = "unexpected_status"
    PARSE_ERROR = "parse_error"


_STATUS_KINDS = {
    400: ErrorKind.ILLEGAL_ARGUMENT,
    401: ErrorKind.AUTHORIZATION,
    403: ErrorKind.AUTHORIZATION,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.ILLEGAL_STATE,
    429: ErrorKind.RATE_LIMITED,
}

_KIND_EXCEPTIONS: dict[ErrorKind, type[ClassifiedFailure]] = {
    ErrorKind.AUTHORIZATION: AuthorizationError,
    ErrorKind.NOT_FOUND: ResourceNotFoundError,
    ErrorKind.ILLEGAL_ARGUMENT: IllegalArgumentError,
    ErrorKind.ILLEGAL_STATE: IllegalStateError,
    ErrorKind.RATE_LIMITED: RateLimitedError,
    ErrorKind.SERVER_ERROR: ServerError,
    ErrorKind.PARSE_ERROR: ResponseParseError,
}


def classify_status(status_code: int) -> ErrorKind:
    """Map a non-2xx status to its ErrorKind."""
    if status_code in _STATUS_KINDS:
        return _STATUS_KINDS[status_code]
    if 400 <= status_code <= 499:
        return ErrorKind.CLIENT_ERROR
    if 500 <= status_code <= 599:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.UNEXPECTED_STATUS


class AbsenceKind(str, Enum):
    """Which empty result a not-found strategy produced."""

    NULL = "null"
    EMPTY_COLLECTION = "empty_collection"
    VOID = "void"


class Success(BaseModel):
    """2xx response parsed by the declared parser."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    outcome: Literal["success"] = "success"
    value: Any = Field(default=None, description="Parser result")

    @property
    def is_success(self) -> bool:
        return True

    def unwrap(self) -> Any:
        return self.value


class EmptySuccess(BaseModel):
    """Not-found status absorbed by the operation's not-found strategy."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    outcome: Literal["empty"] = "empty"
    absence: AbsenceKind = Field(description="Which empty result was produced")
    status_code: int = Field(description="Status that was absorbed")
    value: Any = Field(default=None, description="None or an empty tuple")

    @property
    def is_success(self) -> bool:
        return True

    def unwrap(self) -> Any:
        return self.value


class Failure(BaseModel):
    """Any other outcome: carries the status and raw body for the caller."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    outcome: Literal["failure"] = "failure"
    kind: ErrorKind = Field(description="Failure classification")
    status_code: int = Field(description="HTTP status code")
    body: bytes = Field(default=b"", description="Raw response body")
    message: str = Field(default="", description="Human-readable summary")
    operation_id: str | None = Field(default=None, description="Failed operation")

    @property
    def is_success(self) -> bool:
        return False

    def to_exception(self) -> ClassifiedFailure:
        exc_type = _KIND_EXCEPTIONS.get(self.kind, ClassifiedFailure)
        return exc_type(
            self.message or f"{self.operation_id}: HTTP {self.status_code}",
            kind=self.kind,
            status_code=self.status_code,
            body=self.body,
            operation_id=self.operation_id,
        )

    def unwrap(self) -> Any:
        raise self.to_exception()


ResponseOutcome = Annotated[Union[Success, EmptySuccess, Failure], Field(discriminator="outcome")]


# =============================================================================
# Runtime Configuration Models
# =============================================================================


class RateLimitConfig(BaseModel):
    """Rate limiting configuration."""

    model_config = ConfigDict(extra="forbid")

    requests_per_second: float = Field(gt=0, description="Maximum requests per second")


class EndpointConfig(BaseModel):
    """Connection settings for one provider endpoint."""

    model_config = ConfigDict(extra="forbid")

    base_url: str = Field(description="Base URI, e.g. http://localhost:8080")
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Headers added to every request (supports ${ENV_VAR} substitution)",
    )
    timeout: float = Field(default=30.0, gt=0, description="Default timeout in seconds")
    operation_timeouts: dict[str, float] = Field(
        default_factory=dict, description="Per-operation timeout overrides"
    )
    verify_ssl: bool = Field(default=True, description="Verify server certificates")
    ca_bundle: str | None = Field(default=None, description="Path to a CA bundle")
    cert: str | None = Field(default=None, description="Client certificate (mTLS)")
    key: str | None = Field(default=None, description="Client private key (mTLS)")
    rate_limit: RateLimitConfig | None = Field(default=None, description="Rate limiting")

    @field_validator("base_url")
    @classmethod
    def check_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must be an http(s) URL")
        return v.rstrip("/")

    @model_validator(mode="after")
    def check_cert_pair(self) -> Self:
        if (self.cert is None) != (self.key is None):
            raise ValueError("cert and key must be given together")
        return self


class RuntimeConfig(BaseModel):
    """Top-level runtime configuration file structure."""

    model_config = ConfigDict(extra="forbid")

    endpoints: dict[str, EndpointConfig] = Field(description="Endpoint name -> config mapping")
