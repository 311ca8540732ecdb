"""Success parsers and the registry descriptors refer to them through.

A parser is any ``Callable[[bytes], Any]`` that returns the caller's value or
raises ParseError. Descriptors only carry a parser name, so provider modules
register their typed parsers once at startup and descriptors stay plain data.

Built-in names:
    identity                 raw body bytes
    text                     body decoded as UTF-8
    json                     whole body as JSON (empty body -> None)
    unwrap_only_json_value   value of a single-key JSON object
    xml                      body as a dict (see xml_body.xml_to_dict)
    void                     ignore the body, return None
"""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pydantic import TypeAdapter, ValidationError

from restbind.errors import DescriptorError, ParseError
from restbind.xml_body import xml_to_dict

Parser = Callable[[bytes], Any]
Step = Callable[[Any], Any]

_MISSING = object()


def parse_identity(body: bytes) -> bytes:
    return body


def parse_text(body: bytes) -> str:
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"Body is not valid UTF-8: {e}") from e


def parse_json(body: bytes) -> Any:
    if not body.strip():
        return None
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"Invalid JSON body: {e}") from e


def unwrap_only_value(data: Any) -> Any:
    """Return the value of a single-key object; an empty object unwraps to None."""
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object to unwrap, got {type(data).__name__}")
    if not data:
        return None
    if len(data) != 1:
        raise ParseError(f"Expected exactly one key to unwrap, got {sorted(data)}")
    return next(iter(data.values()))


def unwrap_only_json_value(body: bytes) -> Any:
    return unwrap_only_value(parse_json(body))


def parse_void(body: bytes) -> None:
    """Release the payload and return nothing."""
    return None


def xml_parser(force_list: Iterable[str] = ()) -> Parser:
    """Build an XML parser that always lists the given tags."""
    tags = frozenset(force_list)

    def parse(body: bytes) -> dict[str, Any]:
        try:
            return xml_to_dict(body, force_list=tags)
        except ET.ParseError as e:
            raise ParseError(f"Invalid XML body: {e}") from e

    return parse


parse_xml = xml_parser()


# =============================================================================
# Composition helpers
# =============================================================================


def field(name: str, default: Any = _MISSING) -> Step:
    """Step that selects one key of a mapping, optionally with a default."""

    def select(data: Any) -> Any:
        if isinstance(data, Mapping) and name in data:
            return data[name]
        if data is None or isinstance(data, Mapping):
            if default is not _MISSING:
                return default
        raise ParseError(f"Field '{name}' not found")

    return select


def only_element(data: Any) -> Any:
    """Step that reduces a 0/1 element sequence to None or its element."""
    items = list(data or ())
    if len(items) > 1:
        raise ParseError(f"Expected at most one element, got {len(items)}")
    return items[0] if items else None


def as_list(data: Any) -> list[Any]:
    """Step that normalizes None/scalar/list to a list."""
    if data is None:
        return []
    if isinstance(data, list):
        return data
    return [data]


def compose(parser: Parser, *steps: Step) -> Parser:
    """Run *parser* then each step on the previous result."""

    def parse(body: bytes) -> Any:
        value = parser(body)
        for step in steps:
            value = step(value)
        return value

    return parse


def unwrap_json_field(name: str, default: Any = _MISSING) -> Parser:
    """Parser returning one field of a JSON object body."""
    return compose(parse_json, field(name, default))


def typed(model: Any, parser: Parser = parse_json) -> Parser:
    """Validate the output of *parser* into *model* (any pydantic-supported type)."""
    adapter = TypeAdapter(model)

    def parse(body: bytes) -> Any:
        try:
            return adapter.validate_python(parser(body))
        except ValidationError as e:
            raise ParseError(f"Body does not match {model!r}: {e.error_count()} error(s)") from e

    return parse


# =============================================================================
# Registry
# =============================================================================


class ParserRegistry:
    """Name -> parser lookup, populated at startup and read-only afterwards."""

    def __init__(self, parsers: Mapping[str, Parser] | None = None) -> None:
        self._parsers: dict[str, Parser] = {
            "identity": parse_identity,
            "text": parse_text,
            "json": parse_json,
            "unwrap_only_json_value": unwrap_only_json_value,
            "xml": parse_xml,
            "void": parse_void,
        }
        for name, parser in (parsers or {}).items():
            self.register(name, parser)

    def register(self, name: str, parser: Parser) -> None:
        if name in self._parsers:
            raise DescriptorError(f"Parser '{name}' is already registered")
        self._parsers[name] = parser

    def get(self, name: str) -> Parser:
        try:
            return self._parsers[name]
        except KeyError:
            raise DescriptorError(
                f"Unknown parser '{name}'. Registered: {', '.join(sorted(self._parsers))}"
            ) from None

    def __contains__(self, name: object) -> bool:
        return name in self._parsers

    def names(self) -> list[str]:
        return sorted(self._parsers)
