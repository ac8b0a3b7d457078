"""
Type schema engine.

Validates and coerces wire values against a TypeSchema, reporting the exact
location of the first mismatch, and renders validated values back into
their JSON wire form.

Paths are lists of field names (str) and array indices (int), formatted as
``user.posts[0].messages[2]``.
"""

import base64
import binascii
import copy
import dataclasses
import json
import math
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Union

from services.funcgate.models.schema import ParamSpec, TypeKind, TypeSchema
from services.funcgate.models.value import Buffer, ValueKind, as_buffer, value_kind

PathSegment = Union[str, int]

_INTEGER_RE = re.compile(r"^[-+]?\d+$")
_NUMBER_RE = re.compile(r"^[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?$")

TRUE_STRINGS = frozenset({"t", "true", "1"})
FALSE_STRINGS = frozenset({"f", "false", "0"})

_BUFFER_MARKER_KEYS = frozenset({"_base64", "contentType", "_content_type"})


class SchemaMismatch(Exception):
    """A value does not match the kind (or options) its schema declares."""

    def __init__(self, path: Sequence[PathSegment], schema: Optional[TypeSchema], value: Any):
        self.path = list(path)
        self.schema = schema
        self.value = value
        expected = schema.type_name() if schema is not None else "nothing"
        super().__init__(
            f"{format_path(self.path)}: expected ({expected}), got ({check(value)})"
        )

    @property
    def mismatch(self) -> Optional[str]:
        """Dotted location, only for failures below the root."""
        return format_path(self.path) if len(self.path) > 1 else None


class ConstraintViolation(Exception):
    """A value of the right kind falls outside its declared range or size."""

    def __init__(self, path: Sequence[PathSegment], message: str):
        self.path = list(path)
        self.message = message
        super().__init__(message)

    @property
    def mismatch(self) -> Optional[str]:
        return format_path(self.path) if len(self.path) > 1 else None


def format_path(path: Sequence[PathSegment]) -> str:
    out = ""
    for segment in path:
        if isinstance(segment, int):
            out += f"[{segment}]"
        elif out:
            out += f".{segment}"
        else:
            out = str(segment)
    return out


def format_number(value: Union[int, float]) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def check(value: Any) -> str:
    """Wire type name of a value as reported in ``actual.type``."""
    try:
        kind = value_kind(value)
    except TypeError:
        return type(value).__name__
    return {
        ValueKind.NULL: "any",
        ValueKind.BOOLEAN: "boolean",
        ValueKind.INTEGER: "number",
        ValueKind.FLOAT: "number",
        ValueKind.STRING: "string",
        ValueKind.OBJECT: "object",
        ValueKind.ARRAY: "array",
        ValueKind.BUFFER: "buffer",
    }[kind]


# ===========================================
# Coercion
# ===========================================


def coerce_string(kind: TypeKind, value: str) -> Any:
    """
    Convert a string-typed wire leaf toward ``kind``.

    Returns the input unchanged when no conversion applies, so the caller
    reports the mismatch against the original string.
    """
    if kind == TypeKind.INTEGER:
        text = value.strip()
        if _INTEGER_RE.match(text):
            return int(text)
        if _NUMBER_RE.match(text):
            number = float(text)
            # Decimal strings never become integers.
            return value if number.is_integer() else number
        return value
    if kind == TypeKind.NUMBER:
        text = value.strip()
        if _INTEGER_RE.match(text):
            return int(text)
        if _NUMBER_RE.match(text):
            return float(text)
        return value
    if kind == TypeKind.BOOLEAN:
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
        return value
    if kind in (TypeKind.OBJECT, TypeKind.ARRAY, TypeKind.BUFFER, TypeKind.HTTP):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def reported_leaf(kind: TypeKind, value: str) -> Any:
    """
    A string leaf as shown in mismatch details: converted like ``coerce_string``,
    except that decimal strings read as numbers for integer slots too, so
    ``"47.0"`` and ``"47.2"`` are both reported as numbers.
    """
    if kind == TypeKind.INTEGER and _NUMBER_RE.match(value.strip()):
        return coerce_string(TypeKind.NUMBER, value)
    return coerce_string(kind, value)


def jsonify(value: Any) -> Any:
    """Normalize values returned by user code into Value shapes."""
    if isinstance(value, (bytes, bytearray, memoryview)) and not isinstance(value, Buffer):
        return as_buffer(value)
    if isinstance(value, (str, int, float, bool, Buffer)) or value is None:
        return value
    if isinstance(value, dict):
        return {str(k): jsonify(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonify(v) for v in value]
    if hasattr(value, "model_dump"):
        return jsonify(value.model_dump(mode="python"))
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return jsonify(dataclasses.asdict(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (set, frozenset)):
        return [jsonify(v) for v in value]
    return value


# ===========================================
# Validation
# ===========================================


def validate(
    schema: TypeSchema,
    value: Any,
    path: Optional[Sequence[PathSegment]] = None,
    convert: bool = False,
) -> Any:
    """
    Validate ``value`` against ``schema`` and return the coerced value.

    Args:
        schema: declared type
        value: wire value
        path: location of ``value`` (root name first)
        convert: True when leaves arrived as strings (query / url-encoded)

    Raises:
        SchemaMismatch: kind or options mismatch
        ConstraintViolation: range or size violation
    """
    path = list(path) if path is not None else ["$"]

    if value is None:
        if schema.nullable or schema.kind == TypeKind.ANY:
            return None
        raise SchemaMismatch(path, schema, value)

    if schema.kind == TypeKind.UNION:
        return _validate_union(schema, value, path, convert)

    if convert and isinstance(value, str):
        value = coerce_string(schema.kind, value)

    try:
        kind = value_kind(value)
    except TypeError:
        raise SchemaMismatch(path, schema, value)

    result = _VALIDATORS[schema.kind](schema, value, kind, path, convert)
    _check_constraints(schema, result, path)
    return result


def _validate_union(schema: TypeSchema, value: Any, path: List[PathSegment], convert: bool):
    alternatives = list(schema.alternatives)
    if convert and isinstance(value, str):
        # String-like alternatives last.
        alternatives.sort(key=lambda alt: alt.kind in (TypeKind.STRING, TypeKind.ANY))
    for alternative in alternatives:
        try:
            return validate(alternative, value, path, convert)
        except (SchemaMismatch, ConstraintViolation):
            continue
    raise SchemaMismatch(path, schema, value)


def _validate_options(schema: TypeSchema, value: Any, path: List[PathSegment]) -> Any:
    if schema.values is not None and value not in schema.values:
        raise SchemaMismatch(path, schema, value)
    return value


def _validate_string(schema, value, kind, path, convert):
    if kind != ValueKind.STRING:
        raise SchemaMismatch(path, schema, value)
    return _validate_options(schema, value, path)


def _validate_integer(schema, value, kind, path, convert):
    if kind == ValueKind.INTEGER:
        return _validate_options(schema, value, path)
    if kind == ValueKind.FLOAT and math.isfinite(value) and value.is_integer():
        return _validate_options(schema, int(value), path)
    raise SchemaMismatch(path, schema, value)


def _validate_number(schema, value, kind, path, convert):
    if kind == ValueKind.INTEGER or (kind == ValueKind.FLOAT and math.isfinite(value)):
        return _validate_options(schema, value, path)
    raise SchemaMismatch(path, schema, value)


def _validate_boolean(schema, value, kind, path, convert):
    if kind != ValueKind.BOOLEAN:
        raise SchemaMismatch(path, schema, value)
    return value


def _validate_any(schema, value, kind, path, convert):
    if schema.values is not None:
        return _validate_options(schema, value, path)
    return value


def _validate_enum(schema, value, kind, path, convert):
    if kind == ValueKind.STRING:
        for name, literal in schema.members or []:
            if name == value:
                return copy.deepcopy(literal)
    raise SchemaMismatch(path, schema, value)


def _validate_buffer(schema, value, kind, path, convert):
    if kind == ValueKind.BUFFER:
        return as_buffer(value)
    if kind == ValueKind.OBJECT:
        decoded = decode_buffer_object(value)
        if decoded is not None:
            return decoded
    raise SchemaMismatch(path, schema, value)


def _validate_array(schema, value, kind, path, convert):
    if kind != ValueKind.ARRAY:
        raise SchemaMismatch(path, schema, value)
    if schema.element_schema is None:
        return list(value)
    return [
        validate(schema.element_schema, element, path + [index], convert)
        for index, element in enumerate(value)
    ]


def _validate_object(schema, value, kind, path, convert):
    if kind != ValueKind.OBJECT:
        raise SchemaMismatch(path, schema, value)
    shapes = schema.shapes
    if not shapes:
        return dict(value)
    if len(shapes) == 1:
        return _validate_shape(shapes[0], value, path, convert)
    for shape in shapes:
        try:
            return _validate_shape(shape, value, path, convert)
        except (SchemaMismatch, ConstraintViolation):
            continue
    # No shape matched: report at the object itself.
    raise SchemaMismatch(path, schema, value)


def _validate_shape(
    shape: List[ParamSpec], value: Dict[str, Any], path: List[PathSegment], convert: bool
) -> Dict[str, Any]:
    fields = {field.name: field for field in shape}
    out: Dict[str, Any] = {}
    for key, item in value.items():
        field = fields.get(key)
        if field is None:
            raise SchemaMismatch(path + [key], None, item)
        if item is None and field.has_default:
            out[key] = copy.deepcopy(field.default)
            continue
        out[key] = validate(field.type_schema, item, path + [key], convert)
    for field in shape:
        if field.name in out:
            continue
        if field.has_default:
            out[field.name] = copy.deepcopy(field.default)
        elif field.required:
            raise SchemaMismatch(path + [field.name], field.type_schema, None)
    return out


# Fields of an ``object.http`` value; ``body`` is required.
_HTTP_FIELDS = {
    "statusCode": TypeSchema(kind=TypeKind.INTEGER, range_min=100, range_max=599),
    "headers": TypeSchema(kind=TypeKind.OBJECT),
    "body": TypeSchema(
        kind=TypeKind.UNION,
        alternatives=[TypeSchema(kind=TypeKind.STRING), TypeSchema(kind=TypeKind.BUFFER)],
    ),
}


def _validate_http(schema, value, kind, path, convert):
    if kind != ValueKind.OBJECT:
        raise SchemaMismatch(path, schema, value)
    out: Dict[str, Any] = {}
    for key, item in value.items():
        field = _HTTP_FIELDS.get(key)
        if field is None:
            raise SchemaMismatch(path + [key], None, item)
        out[key] = validate(field, item, path + [key], convert)
    if "body" not in out:
        raise SchemaMismatch(path + ["body"], _HTTP_FIELDS["body"], None)
    return out


_VALIDATORS = {
    TypeKind.STRING: _validate_string,
    TypeKind.INTEGER: _validate_integer,
    TypeKind.NUMBER: _validate_number,
    TypeKind.BOOLEAN: _validate_boolean,
    TypeKind.OBJECT: _validate_object,
    TypeKind.ARRAY: _validate_array,
    TypeKind.BUFFER: _validate_buffer,
    TypeKind.ANY: _validate_any,
    TypeKind.ENUM: _validate_enum,
    TypeKind.HTTP: _validate_http,
}


def _check_constraints(schema: TypeSchema, value: Any, path: List[PathSegment]) -> None:
    if schema.has_range and isinstance(value, (int, float)) and not isinstance(value, bool):
        if schema.range_min is not None and value < schema.range_min:
            raise ConstraintViolation(
                path, f"must be greater than or equal to {format_number(schema.range_min)}"
            )
        if schema.range_max is not None and value > schema.range_max:
            raise ConstraintViolation(
                path, f"must be less than or equal to {format_number(schema.range_max)}"
            )
    if schema.has_size and isinstance(value, (str, list, bytes)):
        size = len(value)
        if schema.size_min is not None and size < schema.size_min:
            raise ConstraintViolation(
                path, f"must be greater than or equal to {schema.size_min}"
            )
        if schema.size_max is not None and size > schema.size_max:
            raise ConstraintViolation(path, f"must be less than or equal to {schema.size_max}")


# ===========================================
# Buffers & rendering
# ===========================================


def decode_buffer_object(value: Dict[str, Any]) -> Optional[Buffer]:
    """
    Decode ``{"_base64": ...}`` or ``{"_bytes": [...]}`` into a Buffer.

    Returns None when the object is not a buffer encoding.
    """
    keys = set(value.keys())
    if "_base64" in value and keys <= _BUFFER_MARKER_KEYS:
        encoded = value["_base64"]
        if not isinstance(encoded, str):
            return None
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            return None
        content_type = value.get("contentType") or value.get("_content_type")
        return Buffer(raw, content_type=content_type)
    if keys == {"_bytes"} and isinstance(value["_bytes"], list):
        try:
            return Buffer(bytes(value["_bytes"]))
        except (TypeError, ValueError):
            return None
    return None


def as_binary_response(value: Any) -> Optional[Buffer]:
    """Buffer for a top-level return that renders as raw bytes, else None."""
    if isinstance(value, (bytes, bytearray)):
        return as_buffer(value)
    if isinstance(value, dict) and "_base64" in value:
        return decode_buffer_object(value)
    return None


def render(value: Any) -> Any:
    """Wire (JSON) form of a value; buffers become ``{"_base64": ...}``."""
    kind = value_kind(value)
    if kind == ValueKind.BUFFER:
        return {"_base64": base64.b64encode(bytes(value)).decode("ascii")}
    if kind == ValueKind.OBJECT:
        return {key: render(item) for key, item in value.items()}
    if kind == ValueKind.ARRAY:
        return [render(item) for item in value]
    return value


def dumps(value: Any, pretty: bool = False) -> str:
    """JSON-encode a value in wire form."""
    if pretty:
        return json.dumps(render(value), indent=2, ensure_ascii=False)
    return json.dumps(render(value), ensure_ascii=False, separators=(",", ":"))


def describe_value(value: Any) -> str:
    """Short human rendering used in mismatch messages."""
    if isinstance(value, (bytes, bytearray)):
        return f"Buffer[{len(value)}]"
    try:
        return json.dumps(render(value), indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return repr(value)


def safe_render(value: Any) -> Any:
    """Wire form for error details; unsupported objects become their repr."""
    try:
        return render(value)
    except TypeError:
        return repr(value)


# ===========================================
# Error details
# ===========================================


def mismatch_details(
    spec: ParamSpec, value: Any, error: SchemaMismatch, label: str = "value"
) -> Dict[str, Any]:
    """
    Build the detail entry for a top-level slot whose value did not match.

    ``expected``/``actual`` always describe the slot itself; ``mismatch``
    points at the first invalid leaf for nested failures.
    """
    schema = spec.type_schema
    actual_type = check(value)
    details: Dict[str, Any] = {
        "message": (
            f"invalid {label}: {describe_value(value)} ({actual_type}), "
            f"expected ({schema.type_name()})"
        ),
        "invalid": True,
    }
    if error.mismatch:
        details["mismatch"] = error.mismatch
    expected: Dict[str, Any] = {"type": schema.type_name()}
    if schema.object_schema is not None:
        expected["schema"] = [p.describe() for p in schema.object_schema]
        if schema.alternate_schemas:
            expected["alternateSchemas"] = [
                [p.describe() for p in shape] for shape in schema.alternate_schemas
            ]
    elif schema.element_schema is not None:
        expected["schema"] = [schema.element_schema.describe()]
    elif schema.members is not None:
        expected["members"] = [[name, literal] for name, literal in schema.members]
    elif schema.values is not None:
        details["message"] += f" matching one of {json.dumps(schema.values)}"
        expected["values"] = list(schema.values)
    details["expected"] = expected
    details["actual"] = {"value": safe_render(value), "type": actual_type}
    return details


def constraint_details(error: ConstraintViolation) -> Dict[str, Any]:
    details: Dict[str, Any] = {"message": error.message, "invalid": True}
    if error.mismatch:
        details["mismatch"] = error.mismatch
    return details


def validate_slot(
    spec: ParamSpec,
    value: Any,
    root: Optional[str] = None,
    convert: bool = False,
    label: str = "value",
):
    """
    Validate a declared slot (parameter, stream payload or return value).

    Returns ``(value, None)`` on success or ``(None, details)`` on failure.
    """
    path = [root if root is not None else spec.name]
    try:
        return validate(spec.type_schema, value, path, convert), None
    except SchemaMismatch as e:
        if convert and isinstance(value, str):
            value = reported_leaf(spec.type_schema.kind, value)
        return None, mismatch_details(spec, value, e, label)
    except ConstraintViolation as e:
        return None, constraint_details(e)
