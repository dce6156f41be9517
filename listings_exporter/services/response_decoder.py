"""
Decode Trading API response bodies (XML or JSON) into one response tree.

The tree uses plain values only: dict, list, str and None. XML is mapped
the way eBay SDKs usually present it:

- namespaces are stripped from tags and attributes
- attributes become keys of the element's dict
- an element with attributes (or children) keeps its text under "_"
- a repeated child element becomes a list, a single one stays bare
"""
import json
import logging
import xml.etree.ElementTree as ET
from typing import Any, Dict, Optional

from listings_exporter.exceptions import DecodeError
from listings_exporter.models.ebay_export import Node

logger = logging.getLogger(__name__)

TEXT_KEY = "_"


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _element_to_node(element: ET.Element) -> Node:
    children = list(element)
    text = (element.text or "").strip()

    if not children and not element.attrib:
        return text

    node: Dict[str, Any] = {}
    for name, value in element.attrib.items():
        node[_local_name(name)] = value

    for child in children:
        key = _local_name(child.tag)
        value = _element_to_node(child)
        if key in node:
            existing = node[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                node[key] = [existing, value]
        else:
            node[key] = value

    if text:
        node[TEXT_KEY] = text
    return node


def _normalize_json(value: Any) -> Node:
    if isinstance(value, dict):
        return {str(k): _normalize_json(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize_json(v) for v in value]
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None or isinstance(value, str):
        return value
    return str(value)


def decode_xml(body: str) -> Dict[str, Node]:
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise DecodeError(f"Malformed XML response: {e}") from e
    return {_local_name(root.tag): _element_to_node(root)}


def decode_json(body: str) -> Dict[str, Node]:
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Malformed JSON response: {e}") from e
    if not isinstance(data, dict):
        raise DecodeError(f"Expected a JSON object, got {type(data).__name__}")
    return _normalize_json(data)


def decode_response(body: Optional[str], content_type: str = "") -> Dict[str, Node]:
    """
    Decode a response body into a response tree.

    The Content-Type decides the format; without one the first non-blank
    character is used ('{' means JSON, '<' means XML).

    Raises:
        DecodeError: If the body is empty or cannot be parsed
    """
    if body is None or not body.strip():
        raise DecodeError("Empty response body")

    content_type = (content_type or "").lower()
    if "json" in content_type:
        return decode_json(body)
    if "xml" in content_type:
        return decode_xml(body)

    first = body.lstrip()[0]
    if first in "{[":
        return decode_json(body)
    if first == "<":
        return decode_xml(body)
    raise DecodeError(f"Unrecognized response format (content-type '{content_type}')")


def as_list(node: Node) -> list:
    """Collapsed single elements become one-element lists; None becomes []"""
    if node is None:
        return []
    if isinstance(node, list):
        return node
    return [node]


def get_path(node: Node, path: str) -> Node:
    """
    Walk a dotted path through a response tree.

    Numeric segments index into lists. A non-numeric segment applied to a
    list looks into its first element. Missing segments give None.
    """
    current = node
    for segment in path.split("."):
        if current is None:
            return None
        if segment.isdigit():
            items = as_list(current)
            index = int(segment)
            current = items[index] if index < len(items) else None
            continue
        if isinstance(current, list):
            current = current[0] if current else None
            if current is None:
                return None
        if isinstance(current, dict):
            current = current.get(segment)
        elif segment == TEXT_KEY:
            # plain scalar already is the node's own text
            continue
        else:
            return None
    return current
