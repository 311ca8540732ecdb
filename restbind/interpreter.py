"""Response Interpreter - Classifies a wire response into a ResponseOutcome.

    2xx                          -> declared parser -> Success
                                    (ParseError -> Failure(PARSE_ERROR))
    404 or a tolerated 4xx       -> not-found strategy decides:
        MAP_TO_EXCEPTION         -> Failure(kind of the status)
        RETURN_NULL              -> EmptySuccess(NULL, None)
        RETURN_EMPTY_COLLECTION  -> EmptySuccess(EMPTY_COLLECTION, ())
        RETURN_VOID              -> EmptySuccess(VOID, None), body ignored
    anything else                -> Failure(kind of the status)

The interpreter never raises for a response; turning a Failure into an
exception is the caller's choice (ResponseOutcome.unwrap()).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from restbind.errors import ParseError
from restbind.models import (
    AbsenceKind,
    EmptySuccess,
    ErrorKind,
    Failure,
    NotFoundStrategy,
    OperationDescriptor,
    ResponseOutcome,
    Success,
    WireResponse,
    classify_status,
)
from restbind.parsers import ParserRegistry

logger = logging.getLogger(__name__)

# Cap on how much of a failed body goes into the summary message
_MESSAGE_BODY_LIMIT = 200


def is_success_status(status_code: int) -> bool:
    return 200 <= status_code <= 299


def _header_value(headers: Mapping[str, Any], name: str) -> str:
    for key, value in headers.items():
        if key.lower() == name:
            if isinstance(value, (list, tuple)):
                return str(value[0]) if value else ""
            return str(value)
    return ""


def _body_excerpt(body: bytes) -> str:
    text = body[:_MESSAGE_BODY_LIMIT].decode("utf-8", errors="replace").strip()
    if len(body) > _MESSAGE_BODY_LIMIT:
        text += "..."
    return text


class ResponseInterpreter:
    """Maps (descriptor, status, headers, body) to a ResponseOutcome."""

    def __init__(self, parsers: ParserRegistry | None = None) -> None:
        self._parsers = parsers or ParserRegistry()

    @property
    def parsers(self) -> ParserRegistry:
        return self._parsers

    def interpret(
        self,
        descriptor: OperationDescriptor,
        status_code: int,
        headers: Mapping[str, Any],
        body: bytes,
    ) -> ResponseOutcome:
        if is_success_status(status_code):
            return self._parse_success(descriptor, status_code, headers, body)

        if status_code == 404 or status_code in descriptor.tolerated_statuses:
            outcome = self._apply_not_found(descriptor, status_code, body)
            if outcome is not None:
                return outcome

        kind = classify_status(status_code)
        if kind == ErrorKind.UNEXPECTED_STATUS:
            logger.warning(
                "%s returned unexpected status %d", descriptor.operation_id, status_code
            )
        return self._failure(descriptor, kind, status_code, body)

    def interpret_response(
        self,
        descriptor: OperationDescriptor,
        response: WireResponse,
    ) -> ResponseOutcome:
        return self.interpret(descriptor, response.status_code, response.headers, response.body)

    def _parse_success(
        self,
        descriptor: OperationDescriptor,
        status_code: int,
        headers: Mapping[str, Any],
        body: bytes,
    ) -> ResponseOutcome:
        parser = self._parsers.get(descriptor.parser)
        try:
            value = parser(body)
        except (ParseError, ValueError, TypeError, KeyError, AttributeError) as e:
            # Parser bugs on odd bodies are reported as parse failures too
            content_type = _header_value(headers, "content-type") or "unknown"
            return Failure(
                kind=ErrorKind.PARSE_ERROR,
                status_code=status_code,
                body=body,
                message=(
                    f"{descriptor.operation_id}: parser '{descriptor.parser}' failed on "
                    f"{content_type} body: {e}"
                ),
                operation_id=descriptor.operation_id,
            )
        return Success(value=value)

    def _apply_not_found(
        self,
        descriptor: OperationDescriptor,
        status_code: int,
        body: bytes,
    ) -> ResponseOutcome | None:
        """Return the strategy's outcome, or None to fall through to a Failure."""
        strategy = descriptor.not_found
        if strategy == NotFoundStrategy.RETURN_NULL:
            return EmptySuccess(absence=AbsenceKind.NULL, status_code=status_code)
        elif strategy == NotFoundStrategy.RETURN_EMPTY_COLLECTION:
            return EmptySuccess(
                absence=AbsenceKind.EMPTY_COLLECTION, status_code=status_code, value=()
            )
        elif strategy == NotFoundStrategy.RETURN_VOID:
            # Body is released unread
            return EmptySuccess(absence=AbsenceKind.VOID, status_code=status_code)
        return None

    def _failure(
        self,
        descriptor: OperationDescriptor,
        kind: ErrorKind,
        status_code: int,
        body: bytes,
    ) -> Failure:
        message = f"{descriptor.operation_id}: HTTP {status_code} ({kind.value})"
        excerpt = _body_excerpt(body)
        if excerpt:
            message = f"{message}: {excerpt}"
        return Failure(
            kind=kind,
            status_code=status_code,
            body=body,
            message=message,
            operation_id=descriptor.operation_id,
        )
