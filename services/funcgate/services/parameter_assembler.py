"""
Parameter assembler.

Parses URL-encoded query strings (with the ``a[]``, ``a[N]`` and ``a.b``
key grammar), merges them with the decoded body, and validates the merged
map against a definition's parameters.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl

from services.funcgate.core.exceptions import ParameterError, ParameterParseError
from services.funcgate.models.schema import FunctionDefinition
from services.funcgate.services import type_schema

logger = logging.getLogger("funcgate.parameter_assembler")

MODE_FLAGS = ("_background", "_stream", "_debug")
MAX_ARRAY_INDEX = 65535

_ARRAY_KEY_RE = re.compile(r"^(.*?)((\[([^\]]*)\])+?)$")


@dataclass
class ParsedParam:
    value: Any
    convert: bool


class _PendingArray:
    """Array under construction: explicit indices first, pushed entries after."""

    def __init__(self):
        self.indexed: List[Any] = []
        self.pushed: List[Any] = []

    def to_list(self) -> List[Any]:
        return self.indexed + self.pushed


def _split_keys(param_name: str) -> List[str]:
    """Split on dots outside brackets: ``a[].b.c[0]`` -> ``["a[]", "b", "c[0]"]``."""
    keys = []
    depth = 0
    current = ""
    for char in param_name:
        if char == "[":
            depth += 1
        elif char == "]":
            depth = max(depth - 1, 0)
        elif char == "." and not depth:
            keys.append(current)
            current = ""
            continue
        current += char
    keys.append(current)
    return keys


def _parse_index(index: str, descriptive_name: str) -> int:
    try:
        n = int(index)
    except ValueError:
        n = None
    if n is None:
        raise ParameterParseError(
            f"{descriptive_name}: Array indices in URL encoded values must be integer values"
        )
    if n < 0:
        raise ParameterParseError(
            f"{descriptive_name}: Array indices in URL encoded values must be > 0"
        )
    if n > MAX_ARRAY_INDEX:
        raise ParameterParseError(
            f"{descriptive_name}: Array indices in URL encoded values limited to {MAX_ARRAY_INDEX}"
        )
    return n


def _finalize(value: Any) -> Any:
    if isinstance(value, _PendingArray):
        return [_finalize(item) for item in value.to_list()]
    if isinstance(value, list):
        return [_finalize(item) for item in value]
    if isinstance(value, dict):
        return {key: _finalize(item) for key, item in value.items()}
    return value


def parse_urlencoded(text: Optional[str]) -> Dict[str, Any]:
    """
    Parse a URL-encoded string into nested values.

    Repeated keys collect into lists; ``a[]`` pushes, ``a[N]`` assigns an
    index (padding with None) and ``a.b`` builds objects. Leaves stay strings.

    Raises:
        ParameterParseError: on conflicting or malformed keys
    """
    raw: Dict[str, Any] = {}
    for key, value in parse_qsl(text or "", keep_blank_values=True):
        if key in raw:
            existing = raw[key]
            raw[key] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            raw[key] = value

    params: Dict[str, Any] = {}
    for param_name, value in raw.items():
        keys = _split_keys(param_name)
        scope: Any = params
        for i, key in enumerate(keys):
            last_key = i == len(keys) - 1
            array_match = _ARRAY_KEY_RE.match(key)
            if array_match:
                name = array_match.group(1)
                prefix = ".".join(keys[:i] + [name])
                if name not in scope:
                    scope[name] = _PendingArray()
                current = scope[name]
                indices = array_match.group(2)[1:-1].split("][")
                for j, index in enumerate(indices):
                    descriptive_name = f"{prefix}[{']['.join(indices[: j + 1])}]"
                    if not isinstance(current, _PendingArray):
                        raise ParameterParseError(
                            f"{descriptive_name}: already set, can not set as Array"
                        )
                    last_index = j == len(indices) - 1
                    if last_index and last_key:
                        item = value
                    elif last_index:
                        item = {}
                    else:
                        item = _PendingArray()
                    if index:
                        n = _parse_index(index, descriptive_name)
                        if n >= len(current.indexed):
                            current.indexed.extend([None] * (n + 1 - len(current.indexed)))
                        existing = current.indexed[n]
                        if not last_key or not last_index:
                            # Reuse a container already built by a sibling key.
                            if isinstance(existing, type(item)):
                                item = existing
                        current.indexed[n] = item
                    elif isinstance(item, list):
                        current.pushed.extend(item)
                    else:
                        current.pushed.append(item)
                    current = item
                scope = current
            elif not last_key:
                path = ".".join(keys[: i + 1])
                if key not in scope:
                    scope[key] = {}
                current = scope[key]
                if isinstance(current, _PendingArray):
                    raise ParameterParseError(f"{path}: already set as Array, can not set as Object")
                if not isinstance(current, dict):
                    raise ParameterParseError(
                        f'{path}: can not set subfield "{keys[i + 1]}" on value "{current}"'
                    )
                scope = current
            elif key in scope:
                raise ParameterParseError(f"{'.'.join(keys[: i + 1])}: already set")
            else:
                scope[key] = value
    return _finalize(params)


def assemble(
    query_string: Optional[str],
    body_value: Optional[Dict[str, Any]],
    convert_body: bool,
) -> Dict[str, ParsedParam]:
    """
    Merge query and body parameters.

    Args:
        query_string: raw URL query (leaves are strings, always converted)
        body_value: decoded body object
        convert_body: True when body leaves are string typed

    Raises:
        ParameterParseError: malformed query, or a key present in both sources
    """
    params: Dict[str, ParsedParam] = {
        key: ParsedParam(value, True) for key, value in parse_urlencoded(query_string).items()
    }
    for key, value in (body_value or {}).items():
        if key in params:
            raise ParameterParseError(f'Can not specify "{key}" in both query and body parameters')
        params[key] = ParsedParam(value, convert_body)
    return params


def extract_mode_flags(parsed: Dict[str, ParsedParam]) -> Dict[str, Any]:
    """Pull ``_background``/``_stream``/``_debug``, decoding JSON strings to objects when possible."""
    flags: Dict[str, Any] = {}
    for key in MODE_FLAGS:
        if key not in parsed:
            continue
        value = parsed[key].value
        if isinstance(value, str) and value:
            try:
                decoded = json.loads(value)
            except ValueError:
                decoded = None
            if isinstance(decoded, dict):
                value = decoded
        flags[key] = value
    return flags


def validate_params(
    definition: FunctionDefinition, parsed: Dict[str, ParsedParam]
) -> Tuple[Dict[str, Any], List[Any]]:
    """
    Validate merged parameters against ``definition.params``.

    Keys not declared by the definition (other than mode flags) are ignored.

    Returns:
        (params by name, positional argument list)

    Raises:
        ParameterError: with one detail entry per failing parameter
    """
    errors: Dict[str, Any] = {}
    values: Dict[str, Any] = {}
    for spec in definition.params:
        entry = parsed.get(spec.name)
        value = entry.value if entry is not None else None
        convert = entry.convert if entry is not None else False
        if value is None:
            if spec.has_default:
                value = spec.default
                convert = False
            elif not spec.nullable:
                errors[spec.name] = {"message": "required", "required": True}
                continue
        result, details = type_schema.validate_slot(spec, value, convert=convert)
        if details is not None:
            errors[spec.name] = details
            continue
        values[spec.name] = result
    if errors:
        logger.debug(f"Parameter validation failed for {definition.name}: {list(errors)}")
        raise ParameterError(errors)
    return values, [values[spec.name] for spec in definition.params]
