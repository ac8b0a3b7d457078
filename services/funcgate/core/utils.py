"""
Gateway Utility Module
"""

import json
import re
from typing import Any, Dict, Iterable, Optional

EXECUTION_UUID_HEADER = "x-execution-uuid"


def format_header_key(key: str) -> str:
    """``content-type`` -> ``Content-Type``"""
    return "-".join(part[:1].upper() + part[1:] for part in key.split("-"))


def standard_headers(
    allow_origin: str,
    methods: Iterable[str],
    request_headers: Optional[str],
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """
    Merge the CORS headers every response carries into ``headers``.

    Values already present in ``headers`` win.
    ``access-control-expose-headers`` lists every header key plus
    ``x-execution-uuid``.
    """
    merged = {key.lower(): value for key, value in (headers or {}).items()}
    merged.setdefault("access-control-allow-origin", allow_origin)
    merged.setdefault("access-control-allow-methods", ", ".join(methods))
    merged.setdefault("access-control-allow-headers", request_headers or "")
    exposed = [key for key in merged if key != "access-control-expose-headers"]
    if EXECUTION_UUID_HEADER not in exposed:
        exposed.append(EXECUTION_UUID_HEADER)
    merged["access-control-expose-headers"] = ", ".join(exposed)
    return merged


def remote_address(forwarded_for: Optional[str], client_host: Optional[str]) -> Optional[str]:
    """First ``x-forwarded-for`` entry, else the socket peer."""
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return client_host


def parse_json_header(value: Optional[str]) -> Dict[str, Any]:
    """JSON object from a header value; anything else becomes ``{}``."""
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


_HEADER_NAME_RE = re.compile(r"^[A-Za-z0-9\-_]+$")


def response_header_error(name: str, value: Any) -> Optional[str]:
    """Why a function-supplied response header is unusable, or None."""
    if re.search(r"\s", name):
        return f'Response header name "{name}" may not contain space characters'
    if not _HEADER_NAME_RE.match(name):
        return f'Response header name "{name}" must only contain alphanumeric values, - and _'
    if not isinstance(value, (str, bool, int, float)):
        return f'The value of your "{name}" response header is missing or invalid'
    return None


def header_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
