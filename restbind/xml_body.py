"""XML bodies as plain Python data.

Storage-style providers answer in XML and some of their write operations
expect an XML payload (e.g. a queue message envelope). Both directions go
through plain dicts so parsers and payload serializers can treat XML the same
way they treat JSON.

Mapping rules:
- namespace URIs are dropped from tag names
- attributes become ``@name`` keys, mixed text becomes ``#text``
- repeated child tags (or tags listed in ``force_list``) become lists
- text-only leaves become strings, empty elements become None
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Any


def xml_to_dict(
    xml_bytes: bytes,
    force_list: frozenset[str] | set[str] | None = None,
) -> dict[str, Any]:
    """Parse XML bytes into ``{root_tag: converted_root}``.

    Args:
        xml_bytes: Raw XML document.
        force_list: Tags that always map to a list, so a response holding a
            single ``<Queue>`` has the same shape as one holding several.

    Raises:
        ET.ParseError: If the document is not well-formed.
    """
    root = ET.fromstring(xml_bytes)
    return {_local_name(root.tag): _convert(root, frozenset(force_list or ()))}


def _local_name(tag: str) -> str:
    # ElementTree spells namespaced tags as {uri}Name
    return tag.rsplit("}", 1)[-1] if tag.startswith("{") else tag


def _convert(element: ET.Element, force_list: frozenset[str]) -> Any:
    converted: dict[str, Any] = {
        f"@{name}": value
        for name, value in element.attrib.items()
        if not name.startswith(("xmlns", "{"))
    }

    grouped: dict[str, list[Any]] = {}
    for child in element:
        grouped.setdefault(_local_name(child.tag), []).append(_convert(child, force_list))
    for tag, values in grouped.items():
        converted[tag] = values if tag in force_list or len(values) > 1 else values[0]

    text = (element.text or "").strip()
    if text and not converted:
        return text
    if text:
        converted["#text"] = text
    return converted or None


def dict_to_xml(data: dict[str, Any]) -> bytes:
    """Serialize ``{root_tag: value}`` as UTF-8 XML with a declaration.

    Dicts become child elements, lists become repeated siblings, None becomes
    an empty element and scalars become text. ``@attr`` keys are written as
    attributes and ``#text`` as element text.

    Raises:
        ValueError: If *data* is not a dict with exactly one key.
    """
    if not isinstance(data, dict) or len(data) != 1:
        raise ValueError("XML payload must be a dict with exactly one root key")

    [(root_tag, root_value)] = data.items()
    return ET.tostring(_build(root_tag, root_value), encoding="utf-8", xml_declaration=True)


def _build(tag: str, value: Any) -> ET.Element:
    element = ET.Element(tag)
    if value is None:
        return element
    if not isinstance(value, dict):
        element.text = _scalar(value)
        return element

    for key, child in value.items():
        if key.startswith("@"):
            element.set(key[1:], _scalar(child))
        elif key == "#text":
            element.text = _scalar(child)
        elif isinstance(child, list):
            element.extend(_build(key, item) for item in child)
        else:
            element.append(_build(key, child))
    return element


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
