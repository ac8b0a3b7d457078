"""
Value model.

Parameters and return values are native Python values. ``value_kind`` tags
each one so coercion logic can switch on an explicit discriminator, and
``Buffer`` carries raw bytes together with an optional content type.
"""

from enum import Enum
from typing import Any, Optional


class ValueKind(str, Enum):
    NULL = "null"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    OBJECT = "object"
    ARRAY = "array"
    BUFFER = "buffer"


class Buffer(bytes):
    """Raw bytes tagged with an optional content type."""

    content_type: Optional[str]

    def __new__(cls, data: bytes = b"", content_type: Optional[str] = None):
        obj = super().__new__(cls, data)
        obj.content_type = content_type
        return obj

    def __repr__(self) -> str:
        return f"Buffer[{len(self)}]"


def value_kind(value: Any) -> ValueKind:
    """Classify a native value. Raises TypeError for unsupported types."""
    if value is None:
        return ValueKind.NULL
    # bool is a subclass of int, check it first.
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, int):
        return ValueKind.INTEGER
    if isinstance(value, float):
        return ValueKind.FLOAT
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, (bytes, bytearray, memoryview)):
        return ValueKind.BUFFER
    if isinstance(value, dict):
        return ValueKind.OBJECT
    if isinstance(value, (list, tuple)):
        return ValueKind.ARRAY
    raise TypeError(f"Unsupported value type: {type(value).__name__}")


def as_buffer(value: Any, content_type: Optional[str] = None) -> Buffer:
    if isinstance(value, Buffer) and content_type is None:
        return value
    if content_type is None:
        content_type = getattr(value, "content_type", None)
    return Buffer(bytes(value), content_type=content_type)
