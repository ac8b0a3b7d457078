"""
Definition domain models.

Describes a parsed function file as immutable Pydantic models: the
recursive TypeSchema, the ParamSpec wrapping it, and the FunctionDefinition
built once per exported invocable at load time.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class TypeKind(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"
    BUFFER = "buffer"
    ANY = "any"
    ENUM = "enum"
    UNION = "union"
    HTTP = "object.http"


class TypeSchema(BaseModel):
    """
    Recursive value type description.

    Only the fields relevant to ``kind`` are populated: ``object_schema`` and
    ``alternate_schemas`` for objects, ``element_schema`` for arrays,
    ``members`` for enums and ``alternatives`` for unions.
    """

    model_config = ConfigDict(frozen=True)

    kind: TypeKind
    nullable: bool = False
    range_min: Optional[float] = None
    range_max: Optional[float] = None
    size_min: Optional[int] = None
    size_max: Optional[int] = None
    values: Optional[List[Any]] = None
    members: Optional[List[Tuple[str, Any]]] = None
    object_schema: Optional[List["ParamSpec"]] = None
    alternate_schemas: List[List["ParamSpec"]] = Field(default_factory=list)
    element_schema: Optional["TypeSchema"] = None
    alternatives: List["TypeSchema"] = Field(default_factory=list)

    @property
    def has_range(self) -> bool:
        return self.range_min is not None or self.range_max is not None

    @property
    def has_size(self) -> bool:
        return self.size_min is not None or self.size_max is not None

    @property
    def shapes(self) -> List[List["ParamSpec"]]:
        """All declared object shapes, primary first."""
        if self.object_schema is None:
            return []
        return [self.object_schema] + list(self.alternate_schemas)

    def type_name(self) -> str:
        if self.kind == TypeKind.UNION:
            return "|".join(alt.type_name() for alt in self.alternatives)
        return self.kind.value

    def describe(self) -> Dict[str, Any]:
        """JSON-friendly summary used in error details."""
        summary: Dict[str, Any] = {"type": self.type_name()}
        if self.object_schema is not None:
            summary["schema"] = [p.describe() for p in self.object_schema]
            if self.alternate_schemas:
                summary["alternateSchemas"] = [
                    [p.describe() for p in shape] for shape in self.alternate_schemas
                ]
        elif self.element_schema is not None:
            summary["schema"] = [self.element_schema.describe()]
        elif self.members is not None:
            summary["members"] = [[name, value] for name, value in self.members]
        elif self.values is not None:
            summary["values"] = list(self.values)
        if self.kind == TypeKind.UNION:
            summary["alternateTypes"] = [alt.describe() for alt in self.alternatives]
        if self.has_range:
            summary["range"] = {"min": self.range_min, "max": self.range_max}
        if self.has_size:
            summary["size"] = {"min": self.size_min, "max": self.size_max}
        return summary


class ParamSpec(BaseModel):
    """A named, documented slot holding a TypeSchema."""

    model_config = ConfigDict(frozen=True)

    name: str
    type_schema: TypeSchema
    description: str = ""
    has_default: bool = False
    default: Any = None

    @property
    def nullable(self) -> bool:
        return self.type_schema.nullable

    @property
    def required(self) -> bool:
        return not self.has_default and not self.type_schema.nullable

    def describe(self) -> Dict[str, Any]:
        summary = {"name": self.name, "description": self.description}
        summary.update(self.type_schema.describe())
        if self.nullable:
            summary["nullable"] = True
        return summary


class BackgroundSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Literal["info", "empty", "params"] = "info"
    value: str = ""

    @property
    def param_names(self) -> List[str]:
        return [v for v in self.value.split() if v]


class Capabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    background: bool = False
    stream: bool = False
    debug: bool = True


class FunctionDefinition(BaseModel):
    """
    Parsed, schema-bearing description of one exported invocable.

    ``handler_name`` is the module attribute to call: ``handler`` for the
    default export, or the HTTP method name for the multi-method form.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    source_path: str
    handler_name: str = "handler"
    method: Optional[str] = None
    is_async: bool = False
    description: str = ""
    params: List[ParamSpec] = Field(default_factory=list)
    context_param: Optional[str] = None
    returns: ParamSpec
    streams: Dict[str, ParamSpec] = Field(default_factory=dict)
    capabilities: Capabilities = Field(default_factory=Capabilities)
    background: Optional[BackgroundSpec] = None
    origins: Optional[List[str]] = None
    private: bool = False
    keys: List[str] = Field(default_factory=list)

    @property
    def route_key(self) -> str:
        return f"{self.name}#{self.method}" if self.method else self.name

    def enums(self) -> Dict[str, Dict[str, Any]]:
        """Enum parameters as ``{param: {member: literal}}``."""
        found: Dict[str, Dict[str, Any]] = {}
        for param in self.params:
            if param.type_schema.kind == TypeKind.ENUM:
                found[param.name] = {name: value for name, value in param.type_schema.members or []}
        return found


TypeSchema.model_rebuild()
ParamSpec.model_rebuild()
FunctionDefinition.model_rebuild()
