"""
Function definition parser.

Turns a function file into FunctionDefinition objects: the parameter list
and defaults come from the module's AST, the types from the invocable's
docstring.

Docstring grammar (fields in this order, free text first is the description):

    Adds two numbers.
    @origin example.com
    @background params a
    @private
    @keys OPENAI_KEY
    @param {integer{0,100}} a first operand
    @param {?number} b second operand
    @param {object} opts
    @ {string} label
    @ {enum} unit
        ["metric", "m"]
        ["imperial", "ft"]
    @stream {string} progress
    @returns {number} total
"""

import ast
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from services.funcgate.core.exceptions import DefinitionError
from services.funcgate.models.schema import (
    BackgroundSpec,
    Capabilities,
    FunctionDefinition,
    ParamSpec,
    TypeKind,
    TypeSchema,
)
from services.funcgate.services import type_schema

logger = logging.getLogger("funcgate.definition_parser")

DESCRIPTION_FIELD = "description"
DEFINITION_FIELDS = ["origin", "background", "private", "keys", "param", "stream", "returns"]

HANDLER_NAME = "handler"
HTTP_METHODS = ("GET", "POST", "PUT", "DELETE")
CONTEXT_PARAM = "context"

RESERVED_NAMES = frozenset({"_stream", "_background", "_debug"})
NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

TYPE_NAMES = {
    "string": TypeKind.STRING,
    "number": TypeKind.NUMBER,
    "float": TypeKind.NUMBER,
    "integer": TypeKind.INTEGER,
    "boolean": TypeKind.BOOLEAN,
    "object": TypeKind.OBJECT,
    "array": TypeKind.ARRAY,
    "buffer": TypeKind.BUFFER,
    "any": TypeKind.ANY,
    "enum": TypeKind.ENUM,
    "object.http": TypeKind.HTTP,
}
SCHEMA_TYPES = {TypeKind.OBJECT, TypeKind.ARRAY}
OPTIONS_TYPES = {TypeKind.STRING, TypeKind.NUMBER, TypeKind.INTEGER, TypeKind.ANY}
RANGE_TYPES = {TypeKind.NUMBER, TypeKind.INTEGER}
SIZE_TYPES = {TypeKind.STRING, TypeKind.ARRAY, TypeKind.BUFFER}

BACKGROUND_MODES = ("info", "empty", "params")
DEFAULT_BACKGROUND_MODE = "info"

_TYPEDEF_RE = re.compile(r"\{(.*?)\}(\s+|$)")
_ARRAY_SUFFIX_RE = re.compile(r"\[(\d*(\.\.)?\d*)?\]$")
_NUM = r"[\-\+]?\d+(?:\.\d*)?(?:e[\-\+]?\d+)?"
_TYPE_RE = re.compile(
    r"^(.*?)(?:\{(\d*(?:\.\.)?\d*|(?:" + _NUM + r")?,(?:" + _NUM + r")?)\})?$", re.IGNORECASE
)
_SUBTYPE_RE = re.compile(r"<(.*?)>$")
_ORIGIN_RE = re.compile(
    r"^(https?://)?([a-z0-9\-]{0,255}\.)*?([a-z0-9\-]{1,255})(:[0-9]{1,5})?$", re.IGNORECASE
)
_BRACE_PAIRS = {"{": "}", "[": "]", "(": ")", "<": ">"}


@dataclass
class _Entry:
    """One docstring field with its continuation and schema lines."""

    field: str
    values: List[str]
    text_schema: List[List[str]] = field(default_factory=list)


@dataclass
class DocDefinition:
    description: str = ""
    params: List[ParamSpec] = field(default_factory=list)
    returns: Optional[ParamSpec] = None
    streams: List[ParamSpec] = field(default_factory=list)
    origins: Optional[List[str]] = None
    background: Optional[BackgroundSpec] = None
    private: bool = False
    keys: List[str] = field(default_factory=list)


def is_valid_name(name: str) -> bool:
    return bool(NAME_RE.match(name)) and name not in RESERVED_NAMES


class DocstringParser:
    """Parses the structured docstring grammar into a DocDefinition."""

    def parse(self, docstring: Optional[str]) -> DocDefinition:
        entries: List[_Entry] = []
        for line in (docstring or "").splitlines():
            self._reduce_line(entries, line)
        definition = DocDefinition()
        for entry in entries:
            try:
                self._apply(definition, entry)
            except DefinitionError as e:
                raise DefinitionError(f'Comment Definition Error ("{entry.field}"): {e}') from e
        return definition

    # ----- line grouping -----

    def _reduce_line(self, entries: List[_Entry], line: str) -> None:
        line = line.strip() if not line.lstrip().startswith("@") else line.lstrip()
        previous = entries[-1] if entries else None

        if not line.startswith("@"):
            if previous is None:
                if line:
                    entries.append(_Entry(DESCRIPTION_FIELD, [line]))
                return
            last_schema_item = previous.text_schema[-1] if previous.text_schema else [""]
            if re.match(r"^\{\??enum\}", last_schema_item[0].strip(), re.IGNORECASE):
                # Enum members inside a schema belong to the schema line.
                last_schema_item.append(line)
            else:
                previous.values.append(line)
            return

        rest = line[1:]
        name, _, remainder = rest.partition(" ")
        if not name and previous and previous.field in ("param", "stream", "returns"):
            previous.text_schema.append([remainder])
            return
        if name not in DEFINITION_FIELDS:
            raise DefinitionError(f'Invalid Definition Field: "{name}"')
        if (
            previous
            and previous.field != DESCRIPTION_FIELD
            and DEFINITION_FIELDS.index(previous.field) > DEFINITION_FIELDS.index(name)
        ):
            raise DefinitionError(
                f"Invalid Definition Field Order: "
                f'"{previous.field}" must follow "{name}" '
                f"(Order: {', '.join(DEFINITION_FIELDS)})"
            )
        if name in ("param", "returns") and previous and previous.field == name:
            if self._extend_previous(previous, name, remainder.strip()):
                return
        elif name == "returns" and any(e.field == "returns" for e in entries):
            raise DefinitionError("Can only return a single value")
        entries.append(_Entry(name, [remainder.strip()]))

    def _extend_previous(self, previous: _Entry, name: str, line: str) -> bool:
        """Handle ``@param {type} obj.field``; False when ``line`` starts a new slot."""
        parent = self.build_param(previous.values, previous.text_schema)
        raw_type, dotted_name, description = split_type_token(line)
        names = dotted_name.split(".")
        if names[0] != parent.name:
            if name == "returns":
                raise DefinitionError("Can not extend returns with a new parameter")
            return False
        if parent.type_schema.kind != TypeKind.OBJECT:
            raise DefinitionError('Can only define parameter properties for type "object"')
        identifiers = [names.pop(0)]
        if not names:
            raise DefinitionError(f'Already defined "{".".join(identifiers)}"')
        current = parent.type_schema.object_schema or []
        while names:
            identifiers.append(names.pop(0))
            child = next((p for p in current if p.name == identifiers[-1]), None)
            if child is not None:
                current = child.type_schema.object_schema or []
                if not names:
                    raise DefinitionError(f'Already defined "{".".join(identifiers)}"')
            elif names:
                raise DefinitionError(f'No definition found for "{".".join(identifiers)}"')
            else:
                indent = "  " * (len(identifiers) - 2)
                previous.text_schema.append(
                    [f"{indent}{raw_type} {identifiers[-1]} {description}".rstrip()]
                )
        return True

    # ----- fields -----

    def _apply(self, definition: DocDefinition, entry: _Entry) -> None:
        if entry.field == DESCRIPTION_FIELD:
            definition.description = "\n".join(entry.values).strip()
        elif entry.field == "param":
            param = self.build_param(entry.values, entry.text_schema)
            if not is_valid_name(param.name):
                raise DefinitionError(f'Invalid parameter name "{param.name}"')
            definition.params.append(param)
        elif entry.field == "stream":
            stream = self.build_param(entry.values, entry.text_schema)
            if not is_valid_name(stream.name):
                raise DefinitionError(f'Invalid stream name "{stream.name}"')
            if any(s.name == stream.name for s in definition.streams):
                raise DefinitionError(f'Stream "{stream.name}" already defined')
            definition.streams.append(stream)
        elif entry.field == "returns":
            definition.returns = self.build_param(entry.values, entry.text_schema)
        elif entry.field == "origin":
            definition.origins = (definition.origins or []) + parse_origin(entry.values)
        elif entry.field == "background":
            definition.background = parse_background(entry.values)
        elif entry.field == "private":
            definition.private = True
        elif entry.field == "keys":
            definition.keys.extend(" ".join(entry.values).split())

    # ----- parameters -----

    def build_param(
        self, values: List[str], text_schema: Optional[List[List[str]]] = None, depth: int = 0
    ) -> ParamSpec:
        text_schema = [list(item) for item in (text_schema or [])]
        value = " ".join(values)

        if "{:}" in value and "{?}" in value and value.index("{?}") > value.index("{:}"):
            raise DefinitionError("options {?} must come before range {:}")
        options_text = ""
        range_text = ""
        if "{?}" in value:
            value, _, options_text = value.partition("{?}")
            options_text, _, range_text = options_text.partition("{:}")
        else:
            value, _, range_text = value.partition("{:}")
        value = value.strip()
        options_text = options_text.strip()
        range_text = range_text.strip()

        typedef = _TYPEDEF_RE.search(value)
        if not typedef:
            raise DefinitionError(f'Invalid type definition in "{value}"')
        raw_type = typedef.group(0).strip()
        value = value[len(raw_type):].strip()

        type_list = split_type_list(typedef.group(1))
        options: Optional[List[Any]] = None
        json_values = []
        remaining = []
        for entry in type_list:
            try:
                json_values.append(json.loads(entry))
            except ValueError:
                remaining.append(entry)
        type_list = remaining
        if json_values:
            options = json_values
            if all(isinstance(v, str) for v in json_values):
                base = "string"
            elif all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in json_values):
                base = "number"
            else:
                base = None
            if base and base not in type_list:
                type_list.insert(0, base)
            elif not base and (not type_list or type_list[0] != "any"):
                type_list.insert(0, "any")

        first_type = type_list[0]
        while True:
            suffix = _ARRAY_SUFFIX_RE.search(first_type)
            if not suffix:
                break
            first_type = first_type[: len(first_type) - len(suffix.group(0))]
            first_type = f"array<{first_type}>" + (f"{{{suffix.group(1)}}}" if suffix.group(1) else "")

        matches = _TYPE_RE.match(first_type)
        if not matches:
            raise DefinitionError(f'Invalid type in "{value}"')
        type_name = (matches.group(1) or "").lower()
        type_range = matches.group(2)
        nullable = False
        if type_name.startswith("?"):
            type_name = type_name[1:]
            nullable = True

        element_schema = None
        subtype = _SUBTYPE_RE.search(type_name)
        if subtype:
            type_name = type_name[: len(type_name) - len(subtype.group(0))]
            if type_name != "array":
                raise DefinitionError(
                    f'Type "{type_name}" does not support subtyping in {matches.group(0).strip()}'
                )
            element_schema = self.build_param([f"{{{subtype.group(1)}}}"]).type_schema

        if type_name not in TYPE_NAMES:
            supported = ", ".join(f'"{t}"' for t in TYPE_NAMES)
            raise DefinitionError(f'Type "{type_name}" not supported, must be one of {supported}')
        kind = TYPE_NAMES[type_name]

        size_min = size_max = None
        range_span: Optional[List[Any]] = None
        if type_range:
            if "," in type_range:
                low, _, high = type_range.partition(",")
                range_span = [float(low) if low else None, float(high) if high else None]
            else:
                size_min, size_max = parse_size(type_range)

        if kind == TypeKind.ENUM:
            tokens = values[0].strip().split(" ")[1:]
            name = tokens[0] if tokens else ""
            return ParamSpec(
                name=name,
                description=" ".join(tokens[1:]).strip(),
                type_schema=TypeSchema(
                    kind=kind, nullable=nullable, members=parse_enum_members(values[1:])
                ),
            )

        name, _, description = value.partition(" ")
        description = description.strip()

        object_schema = None
        alternate_schemas: List[List[ParamSpec]] = []
        if element_schema is not None or text_schema:
            if kind not in SCHEMA_TYPES:
                raise DefinitionError(f'Can not provide schema for type: "{type_name}"')
            if element_schema is not None:
                if text_schema:
                    raise DefinitionError("Can not provide text schema and subtype schema")
            else:
                shapes = self._parse_schemas(text_schema, depth, kind == TypeKind.OBJECT)
                if kind == TypeKind.OBJECT:
                    object_schema = shapes[0]
                    alternate_schemas = shapes[1:]
                else:
                    element_schema = shapes[0][0].type_schema

        if options_text:
            try:
                options = json.loads(options_text)
            except ValueError:
                options = None
            if not isinstance(options, list):
                raise DefinitionError(
                    f'Options {{?}}: Invalid options for "{name}", expecting a JSON array'
                )
        if options is not None:
            if kind not in OPTIONS_TYPES:
                raise DefinitionError(
                    f'Options {{?}}: Not allowed for type "{type_name}" on parameter "{name}"'
                )
            if not options:
                raise DefinitionError("Options {?}: Must provide non-zero options length")
            for option in options:
                if not _matches_kind(kind, option):
                    raise DefinitionError(
                        f'Options {{?}}: "{name}", type mismatch for type {type_name} '
                        f'("{json.dumps(options)}")'
                    )

        if range_text and range_span is None:
            try:
                range_span = json.loads(range_text)
            except ValueError:
                range_span = None
            if not isinstance(range_span, list):
                raise DefinitionError(
                    f'Range {{:}} "{name}" invalid, expecting array [min, max] ("{range_text}")'
                )
        if range_span is not None:
            label = type_range or ":"
            if kind not in RANGE_TYPES:
                raise DefinitionError(
                    f'Range {{{label}}} not allowed for type "{type_name}" on parameter "{name}"'
                )
            for bound in range_span:
                if bound is not None and not _matches_kind(kind, bound):
                    raise DefinitionError(
                        f'Range {{{label}}} "{name}", type mismatch for type {type_name}'
                    )
            if len(range_span) != 2:
                raise DefinitionError(
                    f'Range {{{label}}} "{name}" invalid length, expecting array [min, max]'
                )
            if None not in range_span and range_span[0] > range_span[1]:
                raise DefinitionError(
                    f'Range {{{label}}} "{name}" invalid, max must be greater than min in [min, max]'
                )

        if (size_min is not None or size_max is not None) and kind not in SIZE_TYPES:
            raise DefinitionError(
                f'Size {{{type_range}}} not allowed for type "{type_name}" on parameter "{name}"'
            )

        primary = TypeSchema(
            kind=kind,
            nullable=nullable and len(type_list) == 1,
            range_min=range_span[0] if range_span else None,
            range_max=range_span[1] if range_span else None,
            size_min=size_min,
            size_max=size_max,
            values=options,
            object_schema=object_schema,
            alternate_schemas=alternate_schemas,
            element_schema=element_schema,
        )
        schema = primary
        if len(type_list) > 1:
            alternatives = [primary] + [
                self.build_param([f"{{{entry}}}"]).type_schema for entry in type_list[1:]
            ]
            schema = TypeSchema(kind=TypeKind.UNION, nullable=nullable, alternatives=alternatives)
        return ParamSpec(name=name, description=description, type_schema=schema)

    # ----- schema lines -----

    def _parse_schemas(
        self, text_schema: List[List[str]], depth: int, allow_multiple: bool
    ) -> List[List[ParamSpec]]:
        first_line = text_schema[0][0]
        shapes = []
        while text_schema:
            line = text_schema[0][0]
            shape = self._parse_shape(text_schema, depth)
            if not allow_multiple and len(shape) > 1:
                raise DefinitionError(
                    f'Invalid Schema definition at "{line}": Schema for "array" can only '
                    f"support one top-level key that maps to every element."
                )
            shapes.append(shape)
        if not allow_multiple and len(shapes) > 1:
            raise DefinitionError(
                f'Invalid Schema definition at "{first_line}": Schema for "array" does not '
                f"support OR (alternateSchemas)."
            )
        if any(not shape for shape in shapes):
            raise DefinitionError(
                f'Invalid Schema definition at "{first_line}": OR (alternateSchemas) requires '
                f"all schema lengths to be non-zero"
            )
        return shapes

    def _parse_shape(self, text_schema: List[List[str]], depth: int) -> List[ParamSpec]:
        params: List[ParamSpec] = []
        while text_schema:
            values = text_schema.pop(0)
            line = values[0]
            current = line_depth(line)
            if current != depth:
                raise DefinitionError(
                    f'Invalid Schema definition at: "{line}", invalid line depth '
                    f"(expecting {depth}, found {current})"
                )
            if line.strip() == "OR":
                if not text_schema:
                    raise DefinitionError(
                        f'Invalid Schema definition at "{line}": OR (alternateSchemas) can not '
                        f"end a schema definition"
                    )
                return params
            end = next(
                (i for i, item in enumerate(text_schema) if line_depth(item[0]) <= current),
                len(text_schema),
            )
            sub_schema = text_schema[:end]
            del text_schema[:end]
            params.append(self.build_param(values, sub_schema, depth + 1))
        return params


# ===========================================
# Helpers
# ===========================================


def split_type_token(line: str) -> Tuple[str, str, str]:
    """Split ``{type} name description`` into its three parts."""
    typedef = _TYPEDEF_RE.search(line)
    if not typedef:
        raise DefinitionError(f'Invalid type definition in "{line}"')
    raw_type = typedef.group(0).strip()
    rest = line[typedef.end():].strip()
    name, _, description = rest.partition(" ")
    return raw_type, name, description.strip()


def split_type_list(text: str) -> List[str]:
    """Split ``a|b`` on pipes outside of brackets."""
    entries = [""]
    stack: List[str] = []
    for char in text:
        if not stack and char == "|":
            entries.append("")
            continue
        if char in _BRACE_PAIRS:
            stack.append(char)
        elif stack and char == _BRACE_PAIRS[stack[-1]]:
            stack.pop()
        entries[-1] += char
    return entries


def line_depth(line: str) -> int:
    indent = len(line) - len(line.lstrip())
    if indent % 2:
        raise DefinitionError(
            f'Invalid Schema definition at: "{line}", improper depth, '
            f"expected {round(indent / 2)}, received {indent / 2}"
        )
    return indent // 2


def parse_size(text: str) -> Tuple[Optional[int], Optional[int]]:
    low, sep, high = text.partition("..")
    try:
        if sep:
            size_min = float(low) if low else None
            size_max = float(high) if high else None
        else:
            size_min = size_max = float(low)
    except ValueError:
        raise DefinitionError(f"Size {{{text}}} invalid: min and max must be valid integers")
    for bound in (size_min, size_max):
        if bound is not None and not bound.is_integer():
            raise DefinitionError(f"Size {{{text}}} invalid: min and max must be valid integers")
    if size_min is not None and size_max is not None and size_min > size_max:
        raise DefinitionError(f"Size {{{text}}} invalid: max must be greater than min")
    if size_min is not None and size_min < 0:
        raise DefinitionError(f"Size {{{text}}} invalid: min must be greater than or equal to 0")
    if size_max is not None and size_max < 0:
        raise DefinitionError(f"Size {{{text}}} invalid: max must be greater than or equal to 0")
    return (
        int(size_min) if size_min is not None else None,
        int(size_max) if size_max is not None else None,
    )


def parse_enum_members(lines: List[str]) -> List[Tuple[str, Any]]:
    members: List[Tuple[str, Any]] = []
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            member = json.loads(line)
        except ValueError:
            raise DefinitionError("Enum members must be a JSON array of length 2.")
        if not isinstance(member, list) or len(member) != 2:
            raise DefinitionError("Enum members must be a JSON array of length 2.")
        if not isinstance(member[0], str):
            raise DefinitionError("The left hand side of enum members must be a string")
        members.append((member[0], member[1]))
    seen = set()
    for identifier in sorted(name for name, _ in members):
        if identifier in seen:
            raise DefinitionError(f'Invalid Enum. Duplicate member "{identifier}" found')
        seen.add(identifier)
    return members


def parse_origin(values: List[str]) -> List[str]:
    value = " ".join(values).strip()
    if not _ORIGIN_RE.match(value):
        raise DefinitionError(
            f'Invalid origin: "{value}". Must be a valid hostname consisting of alphanumeric '
            f'characters or "-" separated by ".". Supported protocols are "http://" and '
            f'"https://", if left absent both will be enabled.'
        )
    if re.match(r"^https?://", value, re.IGNORECASE):
        return [value]
    return [f"https://{value}", f"http://{value}"]


def parse_background(values: List[str]) -> BackgroundSpec:
    tokens = " ".join(values).split(" ")
    mode = tokens[0].strip() or DEFAULT_BACKGROUND_MODE
    if mode not in BACKGROUND_MODES:
        raise DefinitionError(
            f'Invalid Background mode: "{mode}". Please specify `@background MODE` where MODE '
            f'is one of: "{", ".join(BACKGROUND_MODES)}" (without quotes). If no mode is '
            f'provided, the default "{DEFAULT_BACKGROUND_MODE}" will be used.'
        )
    return BackgroundSpec(mode=mode, value=" ".join(tokens[1:]).strip())


def _matches_kind(kind: TypeKind, value: Any) -> bool:
    try:
        type_schema.validate(TypeSchema(kind=kind), value)
    except (type_schema.SchemaMismatch, type_schema.ConstraintViolation):
        return False
    return True


# ===========================================
# Function files
# ===========================================


def _literal_default(node: ast.expr, param_name: str) -> Any:
    try:
        value = ast.literal_eval(node)
    except (ValueError, TypeError, SyntaxError):
        raise DefinitionError(f'Default value for "{param_name}" must be a literal')
    return type_schema.jsonify(value)


def _function_params(node: Union[ast.FunctionDef, ast.AsyncFunctionDef]):
    """Positional parameters as ``(name, has_default, default)`` plus the context slot."""
    args = node.args
    if args.vararg or args.kwarg or args.kwonlyargs:
        raise DefinitionError(
            "Variadic (*args, **kwargs) and keyword-only parameters are not supported"
        )
    positional = list(args.posonlyargs) + list(args.args)
    defaults: List[Optional[ast.expr]] = [None] * (len(positional) - len(args.defaults))
    defaults += list(args.defaults)

    context_param = None
    if positional and positional[-1].arg == CONTEXT_PARAM:
        default = defaults[-1]
        # ``context=None`` is allowed so it can follow parameters with defaults.
        if default is not None and not (isinstance(default, ast.Constant) and default.value is None):
            raise DefinitionError(
                f'When specified, "{CONTEXT_PARAM}" can only be assigned a default value of None'
            )
        context_param = CONTEXT_PARAM
        positional = positional[:-1]
        defaults = defaults[:-1]

    params = []
    for arg, default in zip(positional, defaults):
        if arg.arg == CONTEXT_PARAM:
            raise DefinitionError(f'When specified, "{CONTEXT_PARAM}" must be the last parameter')
        if not is_valid_name(arg.arg):
            raise DefinitionError(f'Invalid parameter name "{arg.arg}"')
        if default is None:
            params.append((arg.arg, False, None))
        else:
            params.append((arg.arg, True, _literal_default(default, arg.arg)))
    return params, context_param


def _merge_params(function_params, doc_params: List[ParamSpec]) -> List[ParamSpec]:
    if doc_params and len(doc_params) != len(function_params):
        raise DefinitionError(
            f"Commented parameters do not match function footprint "
            f"(expected: {len(doc_params)}, actual: {len(function_params)})"
        )
    merged = []
    for i, (name, has_default, default) in enumerate(function_params):
        if not doc_params:
            merged.append(
                ParamSpec(
                    name=name,
                    type_schema=TypeSchema(kind=TypeKind.ANY),
                    has_default=has_default,
                    default=default,
                )
            )
            continue
        doc = doc_params[i]
        if doc.nullable and not has_default:
            raise DefinitionError(
                f'Comment parameter definition "{doc.name}" is marked as optional but does not '
                f"have a default value"
            )
        if doc.name != name:
            raise DefinitionError(
                f'Comment parameter definition "{doc.name}" does not match function parameter "{name}"'
            )
        schema = doc.type_schema
        if has_default:
            if default is None and not schema.nullable:
                schema = schema.model_copy(update={"nullable": True})
            try:
                type_schema.validate(schema, default, [name])
            except type_schema.SchemaMismatch:
                raise DefinitionError(_default_mismatch_message(doc, default))
            except type_schema.ConstraintViolation as e:
                raise DefinitionError(f'Parameter "{doc.name}" defaultValue invalid: {e.message}')
        merged.append(
            ParamSpec(
                name=name,
                type_schema=schema,
                description=doc.description,
                has_default=has_default,
                default=default,
            )
        )
    return merged


def _default_mismatch_message(doc: ParamSpec, default: Any) -> str:
    schema = doc.type_schema
    encoded = json.dumps(type_schema.safe_render(default))
    if schema.members is not None:
        return f'Parameter "{doc.name}" does not have member {encoded}'
    if schema.object_schema is not None:
        return f'Parameter "{doc.name}" schema does not match {encoded}'
    if schema.values is not None:
        return f'Parameter "{doc.name}" options ({json.dumps(schema.values)}) do not contain {encoded}'
    return (
        f'Parameter "{doc.name}" type "{schema.type_name()}" does not match the default value '
        f'{encoded} ("{type_schema.check(default)}")'
    )


class DefinitionParser:
    def __init__(self):
        self.docstrings = DocstringParser()

    def parse(self, name: str, source_path: str, source: Union[str, bytes]) -> List[FunctionDefinition]:
        """
        Parse one function file.

        Args:
            name: route name derived from the file path
            source_path: file path (for messages and later import)
            source: file contents

        Returns:
            One definition for ``handler``, or one per HTTP method function

        Raises:
            DefinitionError: when the file does not export a valid invocable
        """
        if isinstance(source, bytes):
            source = source.decode("utf-8")
        try:
            module = ast.parse(source, filename=source_path)
        except SyntaxError as e:
            raise DefinitionError(f"Syntax error: {e}")

        functions: Dict[str, Union[ast.FunctionDef, ast.AsyncFunctionDef]] = {}
        for node in module.body:
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                if node.name == HANDLER_NAME or node.name in HTTP_METHODS:
                    functions[node.name] = node

        methods = [m for m in HTTP_METHODS if m in functions]
        if HANDLER_NAME in functions and methods:
            raise DefinitionError(
                f'Can not define method functions "{", ".join(HTTP_METHODS)}" '
                f'if a "{HANDLER_NAME}" function is defined.'
            )
        if HANDLER_NAME in functions:
            return [self._build(name, source_path, functions[HANDLER_NAME], None)]
        if not methods:
            raise DefinitionError(
                f'No "{HANDLER_NAME}" function found. Define "def {HANDLER_NAME}(...)" '
                f'or one of "{", ".join(HTTP_METHODS)}".'
            )
        return [self._build(name, source_path, functions[m], m) for m in methods]

    def _build(self, name, source_path, node, method) -> FunctionDefinition:
        doc = self.docstrings.parse(ast.get_docstring(node))
        function_params, context_param = _function_params(node)
        params = _merge_params(function_params, doc.params)
        return FunctionDefinition(
            name=name,
            source_path=source_path,
            handler_name=method or HANDLER_NAME,
            method=method,
            is_async=isinstance(node, ast.AsyncFunctionDef),
            description=doc.description,
            params=params,
            context_param=context_param,
            returns=doc.returns or ParamSpec(name="", type_schema=TypeSchema(kind=TypeKind.ANY)),
            streams={s.name: s for s in doc.streams},
            capabilities=Capabilities(
                background=doc.background is not None,
                stream=bool(doc.streams),
            ),
            background=doc.background,
            origins=doc.origins,
            private=doc.private,
            keys=doc.keys,
        )
