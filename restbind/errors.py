"""Error taxonomy shared by the request engine.

- BindingError: call-time arguments do not fit the operation's bindings
- DescriptorError: the descriptor table or a registry it refers to is inconsistent
- TransportError: the request never produced an HTTP response
- ParseError: a success parser rejected a 2xx body
- ClassifiedFailure: non-2xx status not absorbed by a not-found strategy,
  with one subclass per ErrorKind so callers can catch what they care about
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from restbind.models import ErrorKind


class RestBindError(Exception):
    """Base class for all restbind errors."""


class BindingError(RestBindError, ValueError):
    """Raised when an argument cannot satisfy its declared binding role."""


class DescriptorError(RestBindError, ValueError):
    """Raised for duplicate or unknown operations, parsers and filters."""


class TransportError(RestBindError):
    """Raised when dispatch fails before a response is received."""


class ParseError(RestBindError):
    """Raised by success parsers when a body cannot be decoded."""


class ClassifiedFailure(RestBindError):
    """A non-success response, carrying the original status and raw body."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        status_code: int,
        body: bytes = b"",
        operation_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.body = body
        self.operation_id = operation_id


class AuthorizationError(ClassifiedFailure):
    """401 or 403."""


class ResourceNotFoundError(ClassifiedFailure):
    """404 on an operation that maps not-found to an exception."""


class IllegalArgumentError(ClassifiedFailure):
    """400."""


class IllegalStateError(ClassifiedFailure):
    """409."""


class RateLimitedError(ClassifiedFailure):
    """429."""


class ServerError(ClassifiedFailure):
    """5xx."""


class ResponseParseError(ClassifiedFailure):
    """A 2xx response whose body the declared parser could not handle."""
