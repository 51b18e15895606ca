"""Response decoding and error extraction for the request core.

:func:`raise_for_response` turns a non-2xx :class:`httpx.Response` into the
matching :class:`~snowkit.exceptions.ServiceNowError` subclass, and
:func:`decode_body` decodes a successful body in the requested format.

The instance reports errors as::

    {"error": {"message": "No Record found", "detail": "..."}, "status": "failure"}

When the body does not have that shape (HTML error pages from a proxy,
plain text, empty bodies) the raw text becomes the message.
"""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from typing import Any, Optional

import httpx

from snowkit.exceptions import ServiceNowError, ValidationError

FORMAT_JSON = "json"
FORMAT_XML = "xml"
FORMAT_RAW = "raw"
FORMATS = (FORMAT_JSON, FORMAT_XML, FORMAT_RAW)

_ACCEPT = {
    FORMAT_JSON: "application/json",
    FORMAT_XML: "application/xml",
    FORMAT_RAW: "*/*",
}


def accept_header(fmt: str) -> str:
    """Return the ``Accept`` header value for *fmt*.

    Raises:
        ValidationError: If *fmt* is not a supported format.
    """
    try:
        return _ACCEPT[fmt]
    except KeyError:
        raise ValidationError(
            f"unsupported response format '{fmt}' (expected one of: {', '.join(FORMATS)})"
        ) from None


def parse_error_body(response: httpx.Response) -> tuple[str, Optional[str]]:
    """Extract ``(message, detail)`` from an error response."""
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            detail = error.get("detail")
            return str(error["message"]), str(detail) if detail else None
    return response.text, None


def raise_for_response(response: httpx.Response) -> None:
    """Raise the classified error for a non-2xx *response*; do nothing otherwise."""
    if response.is_success:
        return
    message, detail = parse_error_body(response)
    raise ServiceNowError.from_status(response.status_code, message, detail)


def decode_body(response: httpx.Response, fmt: str = FORMAT_JSON) -> Any:
    """Decode a successful response body.

    Args:
        response: A 2xx response.
        fmt: ``"json"``, ``"xml"`` (nested dicts, see :func:`xml_to_dict`),
            or ``"raw"`` (the body bytes).

    Returns:
        The decoded body, or ``None`` when the body is empty.

    Raises:
        ValidationError: If the body cannot be decoded in *fmt*.
    """
    content = response.content
    if fmt == FORMAT_RAW:
        return content
    if not content.strip():
        return None
    if fmt == FORMAT_XML:
        try:
            root = ET.fromstring(content)
        except ET.ParseError as exc:
            raise ValidationError(f"failed to decode XML response: {exc}") from exc
        return {root.tag: xml_to_dict(root)}
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError(f"failed to decode JSON response: {exc}") from exc


def xml_to_dict(element: ET.Element) -> Any:
    """Convert an element into plain Python data.

    Leaf elements become their text (``""`` when empty). Elements with
    children become dicts keyed by child tag; repeated tags collect into
    lists. Attributes are kept under ``"@name"`` keys.

    Example:
        ``<response><result><number>INC1</number></result></response>``
        becomes ``{"result": {"number": "INC1"}}`` for the ``response``
        element.
    """
    children = list(element)
    if not children and not element.attrib:
        return (element.text or "").strip()

    data: dict[str, Any] = {f"@{k}": v for k, v in element.attrib.items()}
    for child in children:
        value = xml_to_dict(child)
        if child.tag in data:
            existing = data[child.tag]
            if not isinstance(existing, list):
                data[child.tag] = existing = [existing]
            existing.append(value)
        else:
            data[child.tag] = value
    text = (element.text or "").strip()
    if text and not children:
        data["#text"] = text
    return data
