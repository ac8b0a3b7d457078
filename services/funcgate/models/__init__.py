"""
Data model definitions package.

Aggregates definition, value and invocation models for use in other modules.
"""

from .context import ExecutionContext
from .result import InvocationResult
from .schema import (
    BackgroundSpec,
    Capabilities,
    FunctionDefinition,
    ParamSpec,
    TypeKind,
    TypeSchema,
)
from .value import Buffer, ValueKind

__all__ = [
    "BackgroundSpec",
    "Buffer",
    "Capabilities",
    "ExecutionContext",
    "FunctionDefinition",
    "InvocationResult",
    "ParamSpec",
    "TypeKind",
    "TypeSchema",
    "ValueKind",
]
