"""
Services package.

Provides definition loading, parameter handling and the dispatch pipeline.
"""

from .definition_parser import DefinitionParser
from .function_registry import FunctionRegistry

__all__ = [
    "DefinitionParser",
    "FunctionRegistry",
]
