"""
Request body decoders.

Selects a decoder by content type and turns the raw body into a parameter
object. Multipart bodies go through Starlette's form parser; XML through
``xml.etree``.
"""

import json
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Dict, Optional

from starlette.datastructures import UploadFile
from starlette.requests import Request

from services.funcgate.core.exceptions import ParameterParseError
from services.funcgate.models.value import Buffer
from services.funcgate.services.parameter_assembler import parse_urlencoded

logger = logging.getLogger("funcgate.body_decoders")

URLENCODED = "application/x-www-form-urlencoded"
JSON_TYPES = ("application/json", "text/json")
XML_TYPES = ("text/xml", "application/xml", "application/atom+xml")
TEXT_PLAIN = "text/plain"
MULTIPART = "multipart/form-data"

XML_ATTRIBUTE_PREFIX = "@_"
XML_TEXT_KEY = "#text"


@dataclass
class DecodedBody:
    params: Dict[str, Any]
    convert: bool


def media_type(content_type: Optional[str]) -> str:
    return (content_type or "").split(";")[0].strip().lower()


def decode_json(raw: bytes) -> Dict[str, Any]:
    try:
        value = json.loads(raw.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        raise ParameterParseError("Invalid JSON")
    if not isinstance(value, dict):
        raise ParameterParseError("Invalid JSON: Must be an object")
    return value


def decode_text_plain(raw: bytes) -> Dict[str, Any]:
    """Accept text/plain only when it holds a JSON object (possibly JSON-encoded twice)."""
    try:
        value = json.loads(raw.decode("utf-8"))
        if isinstance(value, str):
            value = json.loads(value)
    except (ValueError, UnicodeDecodeError):
        value = None
    if not isinstance(value, dict):
        raise ParameterParseError("Invalid JSON: Must be an object")
    return value


def _xml_element(element: ET.Element) -> Any:
    children = list(element)
    text = (element.text or "").strip()
    if not children and not element.attrib:
        return text
    node: Dict[str, Any] = {}
    for key, value in element.attrib.items():
        node[f"{XML_ATTRIBUTE_PREFIX}{key}"] = value
    for child in children:
        value = _xml_element(child)
        if child.tag in node:
            existing = node[child.tag]
            node[child.tag] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            node[child.tag] = value
    if text:
        node[XML_TEXT_KEY] = text
    return node


def decode_xml(raw: bytes) -> Dict[str, Any]:
    """
    Convert an XML document into nested dicts keyed by tag name.

    Attributes become ``@_name`` keys, mixed text becomes ``#text``, repeated
    tags become lists and leaf values stay strings.
    """
    try:
        root = ET.fromstring(raw)
    except ET.ParseError as e:
        raise ParameterParseError(f"Invalid XML: {e}")
    return {root.tag: _xml_element(root)}


async def decode_multipart(request: Request) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    form = await request.form()
    try:
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                data = await value.read()
                part_type = media_type(value.content_type)
                if part_type == "application/json":
                    try:
                        params[key] = json.loads(data.decode("utf-8"))
                    except (ValueError, UnicodeDecodeError):
                        raise ParameterParseError(f"Invalid multipart form-data with key: {key}")
                else:
                    params[key] = Buffer(data, content_type=value.content_type)
            else:
                params[key] = value
    finally:
        await form.close()
    return params


async def decode_body(
    request: Request, method: str, raw: bytes, convert_strings: bool = False
) -> DecodedBody:
    """
    Decode a request body into a parameter object.

    ``GET``/``DELETE`` carry parameters in the query only. Unknown content
    types yield an empty object.

    Raises:
        ParameterParseError: missing Content-Type or undecodable body
    """
    if method in ("GET", "DELETE"):
        return DecodedBody({}, convert_strings)

    content_type = media_type(request.headers.get("content-type"))
    if not content_type:
        raise ParameterParseError('Must supply "Content-Type" header')
    if not raw:
        return DecodedBody({}, convert_strings)

    if content_type == URLENCODED:
        return DecodedBody(parse_urlencoded(raw.decode("utf-8", errors="replace")), True)
    if content_type in JSON_TYPES:
        return DecodedBody(decode_json(raw), convert_strings)
    if content_type == MULTIPART:
        return DecodedBody(await decode_multipart(request), convert_strings)
    if content_type in XML_TYPES:
        return DecodedBody(decode_xml(raw), convert_strings)
    if content_type == TEXT_PLAIN:
        return DecodedBody(decode_text_plain(raw), convert_strings)
    logger.debug(f"Ignoring body with unsupported content type {content_type}")
    return DecodedBody({}, convert_strings)
